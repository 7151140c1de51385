"""Structured logging on top of loguru.

A :class:`Logger` owns the sinks described by a :class:`LoggingConfig`.
One logger can be installed process-wide with :func:`init_logger`; the
module-level helpers forward to it and do nothing until it exists.
"""

from __future__ import annotations

import contextlib
import gzip
import itertools
import json
import shutil
import sys
import threading
import time
import traceback
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, NoReturn

from loguru import logger as _logger

from smart_document.config import LoggingConfig
from smart_document.errors import as_app_error

_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
    "fatal": "CRITICAL",
    "panic": "CRITICAL",
}

_CONSOLE_FMT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<lvl>{level:<8}</lvl> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<lvl>{message}</lvl>{extra[_fields]}\n{exception}"
)


def parse_level(level: str) -> str:
    try:
        return _LEVELS[level.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown log level: {level}") from None


def _fields(record: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record["extra"].items() if not k.startswith("_")}


def _json_line(record: Mapping[str, Any]) -> str:
    payload: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "caller": f"{record['file'].name}:{record['line']}",
        "message": record["message"],
    }
    payload.update(_fields(record))
    exc = record["exception"]
    if exc is not None and exc.type is not None:
        payload["stacktrace"] = "".join(
            traceback.format_exception(exc.type, exc.value, exc.traceback)
        )
    return json.dumps(payload, default=str, ensure_ascii=False)


def _json_format(record: Mapping[str, Any]) -> str:
    record["extra"]["_json"] = _json_line(record)
    return "{extra[_json]}\n"


def _console_format(record: Mapping[str, Any]) -> str:
    fields = _fields(record)
    record["extra"]["_fields"] = (
        " | " + " ".join(f"{k}={v}" for k, v in fields.items()) if fields else ""
    )
    return _CONSOLE_FMT


def make_retention(max_backups: int, max_age_days: int) -> Callable[[list[str]], None]:
    """Keep at most *max_backups* rotated files, none older than *max_age_days*.

    Zero disables the corresponding rule.
    """

    def retention(files: list[str]) -> None:
        paths = sorted((Path(f) for f in files), key=lambda p: p.stat().st_mtime)
        doomed: list[Path] = []
        if max_age_days > 0:
            cutoff = time.time() - max_age_days * 86400
            doomed.extend(p for p in paths if p.stat().st_mtime < cutoff)
        if max_backups > 0:
            keep = [p for p in paths if p not in doomed]
            doomed.extend(keep[: max(0, len(keep) - max_backups)])
        for path in doomed:
            path.unlink(missing_ok=True)

    return retention


def make_compression(active_file: str) -> Callable[[str], None]:
    """Gzip rotated files; the active file is left as is when the sink closes."""
    active = Path(active_file).resolve()

    def compression(path: str) -> None:
        source = Path(path)
        if source.resolve() == active or not source.exists():
            return
        with source.open("rb") as src, gzip.open(f"{source}.gz", "wb") as dst:
            shutil.copyfileobj(src, dst)
        source.unlink()

    return compression


_Record = tuple[str, str, tuple[Any, ...], dict[str, Any]]


def _render(message: str, args: tuple[Any, ...]) -> str:
    return message.format(*args) if args else message


def _http_record(
    method: str, path: str, user_id: str, status_code: int, duration_ms: float
) -> _Record:
    fields = {
        "method": method,
        "path": path,
        "user_id": user_id,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    return "INFO", "HTTP Request", (), fields


def _db_query_record(
    query: str, duration_ms: float, err: BaseException | None
) -> _Record:
    fields: dict[str, Any] = {"query": query, "duration_ms": duration_ms}
    if err is None:
        return "DEBUG", "Database Query", (), fields
    fields["error"] = str(err)
    return "ERROR", "Database Query Failed", (), fields


def _stack_record(err: BaseException, message: str) -> _Record:
    app_err = as_app_error(err)
    if app_err is not None and app_err.stack_trace:
        stack = app_err.stack_trace
    else:
        stack = "".join(traceback.format_exception(err)).rstrip("\n")
    # Braces in the message must not be treated as format fields.
    return "ERROR", "{}", (message,), {"error": str(err), "stack": stack}


_sink_ids = itertools.count(1)


def _sink_filter(
    sink_id: int, capture_untagged: bool
) -> Callable[[Mapping[str, Any]], bool]:
    def accept(record: Mapping[str, Any]) -> bool:
        owner = record["extra"].get("_sink")
        if owner is None:
            return capture_untagged
        return owner == sink_id

    return accept


class Logger:
    """Leveled, field-aware logger bound to its own loguru sinks.

    Records are tagged with the instance's sink id, so two loggers never
    write to each other's sinks. With ``capture_untagged`` the sinks also
    take records emitted through loguru directly.
    """

    def __init__(
        self,
        cfg: LoggingConfig | None,
        *,
        capture_untagged: bool = False,
        _bound: Any = None,
        _handler_ids: tuple[int, ...] = (),
    ) -> None:
        self.config = cfg
        if _bound is not None or cfg is None:
            self._log = _bound
            self._handler_ids = _handler_ids
            return

        sink_id = next(_sink_ids)
        level = parse_level(cfg.level)
        accept = _sink_filter(sink_id, capture_untagged)
        handler_ids: list[int] = []
        match cfg.output:
            case "file":
                handler_ids.append(self._add_file_sink(level, cfg, accept))
            case "both":
                handler_ids.append(self._add_console_sink(level, cfg.format, accept))
                handler_ids.append(self._add_file_sink(level, cfg, accept))
            case _:
                handler_ids.append(self._add_console_sink(level, cfg.format, accept))
        self._handler_ids = tuple(handler_ids)
        self._log = _logger.bind(_sink=sink_id)

    @classmethod
    def disabled(cls) -> Logger:
        return cls(None)

    @property
    def enabled(self) -> bool:
        return self._log is not None

    @staticmethod
    def _add_console_sink(level: str, fmt: str, accept: Callable[..., bool]) -> int:
        if fmt == "json":
            return _logger.add(
                sys.stdout, level=level, format=_json_format, filter=accept, colorize=False
            )
        return _logger.add(
            sys.stdout, level=level, format=_console_format, filter=accept, colorize=None
        )

    @staticmethod
    def _add_file_sink(level: str, cfg: LoggingConfig, accept: Callable[..., bool]) -> int:
        Path(cfg.file).parent.mkdir(parents=True, exist_ok=True)
        return _logger.add(
            cfg.file,
            level=level,
            format=_json_format,
            filter=accept,
            rotation=f"{cfg.max_size} MB" if cfg.max_size > 0 else None,
            retention=make_retention(cfg.max_backups, cfg.max_age),
            compression=make_compression(cfg.file) if cfg.compress else None,
            enqueue=True,
            encoding="utf-8",
        )

    def _emit(
        self,
        level: str,
        message: str,
        args: tuple[Any, ...],
        fields: dict[str, Any],
    ) -> None:
        if self._log is None:
            return
        log = self._log.bind(**fields) if fields else self._log
        log.opt(depth=2).log(level, message, *args)

    def debug(self, message: str, *args: Any, **fields: Any) -> None:
        self._emit("DEBUG", message, args, fields)

    def info(self, message: str, *args: Any, **fields: Any) -> None:
        self._emit("INFO", message, args, fields)

    def warning(self, message: str, *args: Any, **fields: Any) -> None:
        self._emit("WARNING", message, args, fields)

    warn = warning

    def error(self, message: str, *args: Any, **fields: Any) -> None:
        self._emit("ERROR", message, args, fields)

    def fatal(self, message: str, *args: Any, **fields: Any) -> NoReturn:
        self._emit("CRITICAL", message, args, fields)
        self.sync()
        raise SystemExit(1)

    def panic(self, message: str, *args: Any, **fields: Any) -> NoReturn:
        self._emit("CRITICAL", message, args, fields)
        raise RuntimeError(_render(message, args))

    def with_fields(self, fields: Mapping[str, Any]) -> Logger:
        if self._log is None:
            return self
        return Logger(
            self.config, _bound=self._log.bind(**fields), _handler_ids=self._handler_ids
        )

    def log_http_request(
        self, method: str, path: str, user_id: str, status_code: int, duration_ms: float
    ) -> None:
        self._emit(*_http_record(method, path, user_id, status_code, duration_ms))

    def log_db_query(
        self, query: str, duration_ms: float, err: BaseException | None = None
    ) -> None:
        self._emit(*_db_query_record(query, duration_ms, err))

    def error_with_stack(self, err: BaseException, message: str) -> None:
        self._emit(*_stack_record(err, message))

    def sync(self) -> None:
        if self._log is not None:
            _logger.complete()

    def close(self) -> None:
        self.sync()
        for handler_id in self._handler_ids:
            with contextlib.suppress(ValueError):
                _logger.remove(handler_id)
        self._handler_ids = ()
        self._log = None


# ---------- process-wide logger ----------

_global: Logger | None = None
_lock = threading.Lock()


def init_logger(cfg: LoggingConfig) -> Logger:
    """Install the process-wide logger.

    Replaces loguru's default stderr sink and also takes records logged
    through loguru directly. Raises ``RuntimeError`` when a logger is
    already installed; call :func:`shutdown_logger` first.
    """
    global _global
    with _lock:
        if _global is not None:
            raise RuntimeError("logger already initialized")
        _logger.remove()
        _global = Logger(cfg, capture_untagged=True)
        return _global


def shutdown_logger() -> None:
    global _global
    with _lock:
        current, _global = _global, None
    if current is not None:
        current.close()


def get_logger() -> Logger:
    """Return the process-wide logger, or a disabled one before init."""
    return _global if _global is not None else Logger.disabled()


def debug(message: str, *args: Any, **fields: Any) -> None:
    if _global is not None:
        _global._emit("DEBUG", message, args, fields)


def info(message: str, *args: Any, **fields: Any) -> None:
    if _global is not None:
        _global._emit("INFO", message, args, fields)


def warn(message: str, *args: Any, **fields: Any) -> None:
    if _global is not None:
        _global._emit("WARNING", message, args, fields)


def error(message: str, *args: Any, **fields: Any) -> None:
    if _global is not None:
        _global._emit("ERROR", message, args, fields)


def fatal(message: str, *args: Any, **fields: Any) -> None:
    if _global is not None:
        _global._emit("CRITICAL", message, args, fields)
        _global.sync()
        raise SystemExit(1)


def panic(message: str, *args: Any, **fields: Any) -> None:
    if _global is not None:
        _global._emit("CRITICAL", message, args, fields)
        raise RuntimeError(_render(message, args))


def with_fields(fields: Mapping[str, Any]) -> Logger:
    return get_logger().with_fields(fields)


def log_http_request(
    method: str, path: str, user_id: str, status_code: int, duration_ms: float
) -> None:
    if _global is not None:
        _global._emit(*_http_record(method, path, user_id, status_code, duration_ms))


def log_db_query(query: str, duration_ms: float, err: BaseException | None = None) -> None:
    if _global is not None:
        _global._emit(*_db_query_record(query, duration_ms, err))


def error_with_stack(err: BaseException, message: str) -> None:
    if _global is not None:
        _global._emit(*_stack_record(err, message))


def sync() -> None:
    if _global is not None:
        _global.sync()
