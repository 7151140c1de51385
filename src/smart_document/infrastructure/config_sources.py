from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, get_args, get_origin

import yaml
from pydantic import BaseModel
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from smart_document import errors

SEARCH_PATHS: tuple[str, ...] = ("./etc", "../etc", "../../etc")


def find_config_file(name: str, *dirs: str | Path) -> Path | None:
    """Return the first ``<dir>/<name>`` that exists, searching *dirs* first."""
    for directory in (*dirs, *SEARCH_PATHS):
        candidate = Path(directory) / name
        if candidate.is_file():
            return candidate
    return None


def read_yaml(path: Path | None) -> dict[str, Any]:
    """Parse *path* as a YAML mapping; a missing path yields ``{}``."""
    if path is None:
        return {}
    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        raise errors.internal(exc, "failed to read config file").with_context(
            "path", str(path)
        ) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise errors.new(
            errors.ErrorCode.INTERNAL, "config file must contain a mapping"
        ).with_context("path", str(path))
    return data


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _is_model(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, BaseModel)


def _is_list(annotation: Any) -> bool:
    return annotation is list or get_origin(annotation) is list or any(
        _is_list(arg) for arg in get_args(annotation)
    )


def iter_env_keys(
    model: type[BaseModel], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], FieldInfo]]:
    """Yield the key path of every leaf field of *model*."""
    for name, info in model.model_fields.items():
        path = (*prefix, name)
        if _is_model(info.annotation):
            yield from iter_env_keys(info.annotation, path)
        else:
            yield path, info


class PrefixedEnvSource(PydanticBaseSettingsSource):
    """Environment source mapping ``a.b.c`` to ``<PREFIX>_A_B_C``.

    Only keys the settings model declares are looked up, so nested fields
    whose names contain underscores resolve unambiguously.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        prefix: str,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(settings_cls)
        self.prefix = prefix.rstrip("_").upper()
        self.environ = os.environ if environ is None else environ

    def env_name(self, path: tuple[str, ...]) -> str:
        return "_".join((self.prefix, *path)).upper()

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        # Values are collected per leaf in __call__.
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for path, info in iter_env_keys(self.settings_cls):
            raw = self.environ.get(self.env_name(path))
            if raw is None or raw == "":
                continue
            value: Any = raw
            if _is_list(info.annotation):
                value = [item.strip() for item in raw.split(",") if item.strip()]
            node = data
            for part in path[:-1]:
                node = node.setdefault(part, {})
            node[path[-1]] = value
        return data
