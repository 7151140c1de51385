from __future__ import annotations

import asyncio
import functools
import inspect
import traceback
from collections.abc import Callable, Mapping
from http import HTTPStatus
from typing import Any, NoReturn, ParamSpec, TypeVar

from smart_document import errors
from smart_document.errors import AppError, ErrorCode
from smart_document.infrastructure.logger import Logger, get_logger

P = ParamSpec("P")
R = TypeVar("R")

INTERNAL_PAYLOAD: dict[str, Any] = {
    "code": int(ErrorCode.INTERNAL),
    "message": "Internal server error",
}


def _format_tail(exc: BaseException, *, limit: int = 6) -> str:
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return "".join(tb[-limit:])


def log_and_wrap(
    exc: BaseException,
    code: ErrorCode | int,
    message: str,
    log: Logger | None = None,
    context: Mapping[str, Any] | None = None,
) -> NoReturn:
    """Log a short traceback of *exc* and raise it wrapped as ``AppError``."""
    log = log or get_logger()
    log.error("{}", _format_tail(exc), error=str(exc))
    wrapped = errors.wrap(exc, code, message)
    for key, value in (context or {}).items():
        wrapped.with_context(key, value)
    raise wrapped from exc


def wrap_exceptions(
    code: ErrorCode | int, message: str
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator wrapping unexpected errors into ``AppError(code, message)``.

    ``AppError`` passes through untouched so a failure is wrapped only once.
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[override]
                try:
                    return await func(*args, **kwargs)
                except (asyncio.CancelledError, AppError):
                    raise
                except Exception as exc:
                    log_and_wrap(exc, code, message)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[override]
            try:
                return func(*args, **kwargs)
            except AppError:
                raise
            except Exception as exc:
                log_and_wrap(exc, code, message)

        return sync_wrapper  # type: ignore[return-value]

    return decorator


def handle_error(
    exc: BaseException, log: Logger | None = None
) -> tuple[HTTPStatus, dict[str, Any]]:
    """Classify *exc* at the outermost boundary.

    Returns the transport status and a client-safe payload. The wrapped
    cause and stack trace only reach the logs.
    """
    log = log or get_logger()
    app_err = errors.as_app_error(exc)
    if app_err is None:
        log.error("Unexpected error: {}", exc, stack=_format_tail(exc))
        return HTTPStatus.INTERNAL_SERVER_ERROR, dict(INTERNAL_PAYLOAD)

    fields: dict[str, Any] = dict(app_err.context or {})
    if app_err.details:
        fields["details"] = app_err.details
    if app_err.internal is not None:
        fields["cause"] = str(app_err.internal)
    fields["stack"] = app_err.stack_trace
    log.with_fields(fields).error(
        "Application error occurred: [{}] {}", int(app_err.code), app_err.message
    )
    return app_err.http_status(), app_err.to_dict()
