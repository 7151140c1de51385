import os
from pathlib import Path
from typing import Callable, Iterator

import pytest

from smart_document import errors
from smart_document.infrastructure.logger import shutdown_logger


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop SD_* variables leaking from the host environment."""
    for key in list(os.environ):
        if key.startswith("SD_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    yield
    shutdown_logger()


@pytest.fixture
def stack_filter() -> Iterator[Callable[[str | None], None]]:
    """Temporarily change the stack trace filter."""
    previous = errors.get_stack_filter()
    yield errors.set_stack_filter
    errors.set_stack_filter(previous)


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Empty config directory; cwd moves so ./etc lookups stay inside tmp_path."""
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    conf = tmp_path / "conf"
    conf.mkdir()
    return conf
