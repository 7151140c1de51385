from __future__ import annotations

from smart_document import errors
from smart_document.config import Settings
from smart_document.infrastructure import logger as log
from smart_document.infrastructure.error_utils import handle_error

SERVICE_NAME = "gateway"
VERSION = "1.0.0"


def simulate_operation() -> None:
    """Stand-in for request handling; always fails validation."""
    raise (
        errors.validation("Invalid request format")
        .with_context("field", "email")
        .with_context("value", "invalid-email")
        .with_details("Email format is not valid")
    )


def run(settings: Settings) -> int:
    """Log startup, run the demo operation and return an exit code."""
    log.info("Starting Gateway Service")
    log.info("Environment: {}", settings.environment)
    log.info("Server will start on {}:{}", settings.server.host, settings.server.port)
    log.with_fields(
        {"service": SERVICE_NAME, "version": VERSION, "port": settings.server.port}
    ).info("Service configuration loaded")

    try:
        simulate_operation()
    except Exception as exc:
        status, _ = handle_error(exc, log.get_logger())
        log.warn("Request would be answered with {}", int(status))
        return 1

    log.info("Gateway service started successfully")
    log.info("Demo completed, shutting down...")
    return 0
