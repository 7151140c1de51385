from __future__ import annotations

from pathlib import Path
from typing import Iterator

from dependency_injector import containers, providers

from smart_document.config import LoggingConfig, load_config
from smart_document.infrastructure.logger import Logger, init_logger, shutdown_logger

# ---------- resources ----------


def _logger_resource(cfg: LoggingConfig) -> Iterator[Logger]:
    logger = init_logger(cfg)
    try:
        yield logger
    finally:
        shutdown_logger()


# ---------- DI container ----------
class AppContainer(containers.DeclarativeContainer):
    """Dependency Injector container for a service process."""

    container_config = providers.Configuration()

    settings = providers.Singleton(
        load_config,
        config_dir=container_config.config_dir,
        service_name=container_config.service_name,
    )
    logger = providers.Resource(_logger_resource, cfg=settings.provided.logging)


# ---------- bootstrap helpers ----------


def build_container(config_dir: str | Path, service_name: str) -> AppContainer:
    """Create container, load settings and install the process-wide logger."""
    container = AppContainer()
    container.container_config.from_dict(
        {"config_dir": str(config_dir), "service_name": service_name}
    )
    container.init_resources()
    return container


def shutdown_container(container: AppContainer) -> None:
    """Release resources; the process-wide logger is removed."""
    container.shutdown_resources()
