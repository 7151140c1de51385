from __future__ import annotations

import os
import traceback
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from http import HTTPStatus
from typing import Any, Self


class CodeBand(Enum):
    """Numeric band reserved for one error domain."""

    GENERAL = 1
    AUTH = 2
    DOCUMENT = 3
    WORKSPACE = 4
    COLLABORATION = 5


class ErrorCode(IntEnum):
    """Stable error codes.

    Each band starts at ``base + position`` of its first member, so values
    never collide across bands.
    """

    # General
    INTERNAL = 1000
    BAD_REQUEST = 1001
    UNAUTHORIZED = 1002
    FORBIDDEN = 1003
    NOT_FOUND = 1004
    CONFLICT = 1005
    VALIDATION = 1006
    TIMEOUT = 1007
    RATE_LIMIT = 1008

    # Authentication
    INVALID_CREDENTIALS = 2009
    TOKEN_EXPIRED = 2010
    TOKEN_INVALID = 2011
    USER_NOT_FOUND = 2012
    USER_ALREADY_EXISTS = 2013

    # Document
    DOCUMENT_NOT_FOUND = 3014
    DOCUMENT_ACCESS_DENIED = 3015
    DOCUMENT_LOCKED = 3016
    INVALID_DOCUMENT_FORMAT = 3017
    DOCUMENT_SIZE_EXCEEDED = 3018

    # Workspace
    WORKSPACE_NOT_FOUND = 4019
    WORKSPACE_ACCESS_DENIED = 4020
    INVITATION_EXPIRED = 4021
    MAX_MEMBERS_EXCEEDED = 4022

    # Collaboration (reserved, no constructors yet)
    SESSION_NOT_FOUND = 5023
    OPERATION_CONFLICT = 5024
    CONCURRENT_EDIT = 5025

    @property
    def band(self) -> CodeBand:
        return CodeBand(self // 1000)


def band_of(code: int) -> CodeBand | None:
    """Return the band *code* falls into, or ``None`` outside every band."""
    try:
        return CodeBand(int(code) // 1000)
    except ValueError:
        return None


_STATUS_GROUPS: dict[HTTPStatus, tuple[ErrorCode, ...]] = {
    HTTPStatus.BAD_REQUEST: (
        ErrorCode.BAD_REQUEST,
        ErrorCode.VALIDATION,
        ErrorCode.INVALID_DOCUMENT_FORMAT,
        ErrorCode.DOCUMENT_SIZE_EXCEEDED,
    ),
    HTTPStatus.UNAUTHORIZED: (
        ErrorCode.UNAUTHORIZED,
        ErrorCode.INVALID_CREDENTIALS,
        ErrorCode.TOKEN_EXPIRED,
        ErrorCode.TOKEN_INVALID,
    ),
    HTTPStatus.FORBIDDEN: (
        ErrorCode.FORBIDDEN,
        ErrorCode.DOCUMENT_ACCESS_DENIED,
        ErrorCode.WORKSPACE_ACCESS_DENIED,
    ),
    HTTPStatus.NOT_FOUND: (
        ErrorCode.NOT_FOUND,
        ErrorCode.USER_NOT_FOUND,
        ErrorCode.DOCUMENT_NOT_FOUND,
        ErrorCode.WORKSPACE_NOT_FOUND,
        ErrorCode.SESSION_NOT_FOUND,
    ),
    HTTPStatus.CONFLICT: (
        ErrorCode.CONFLICT,
        ErrorCode.USER_ALREADY_EXISTS,
        ErrorCode.DOCUMENT_LOCKED,
        ErrorCode.OPERATION_CONFLICT,
        ErrorCode.CONCURRENT_EDIT,
    ),
    HTTPStatus.REQUEST_TIMEOUT: (ErrorCode.TIMEOUT,),
    HTTPStatus.TOO_MANY_REQUESTS: (ErrorCode.RATE_LIMIT,),
}

_STATUS_BY_CODE: dict[int, HTTPStatus] = {
    code: status for status, codes in _STATUS_GROUPS.items() for code in codes
}


def http_status_for(code: int) -> HTTPStatus:
    """Map *code* to a transport status; unknown codes are 500."""
    return _STATUS_BY_CODE.get(int(code), HTTPStatus.INTERNAL_SERVER_ERROR)


# ---------- stack capture ----------

_THIS_FILE = os.path.normcase(os.path.abspath(__file__))
_stack_filter: str | None = "smart_document"


def set_stack_filter(pattern: str | None) -> None:
    """Keep only frames whose file path contains *pattern* (``None`` keeps all)."""
    global _stack_filter
    _stack_filter = pattern


def get_stack_filter() -> str | None:
    return _stack_filter


def _is_own_frame(filename: str) -> bool:
    return os.path.normcase(os.path.abspath(filename)) == _THIS_FILE


def capture_stack() -> str:
    """Render the current call stack without this module's frames."""
    frames = [
        frame
        for frame in traceback.extract_stack()
        if not _is_own_frame(frame.filename)
        # dataclass-generated __init__
        and frame.filename != "<string>"
        and (_stack_filter is None or _stack_filter in frame.filename)
    ]
    return "".join(traceback.format_list(frames)).rstrip("\n")


# ---------- error type ----------

_READ_ONLY = frozenset({"code", "message", "internal"})


@dataclass(eq=False)
class AppError(Exception):
    """Structured application error.

    Attributes:
        code: Stable numeric code, read-only.
        message: Human-readable summary, read-only.
        details: Optional supplementary explanation.
        internal: Wrapped lower-level cause, never exposed to clients.
        context: Optional diagnostic key/value pairs.
        stack_trace: Call stack captured at construction, internal logs only.
    """

    code: ErrorCode | int
    message: str
    details: str | None = None
    internal: BaseException | None = None
    context: dict[str, Any] | None = None
    stack_trace: str = field(default="", repr=False)

    def __post_init__(self) -> None:
        try:
            code: ErrorCode | int = ErrorCode(self.code)
        except ValueError:
            code = int(self.code)
        object.__setattr__(self, "code", code)
        Exception.__init__(self, self.message)
        if self.internal is not None:
            self.__cause__ = self.internal
        if not self.stack_trace:
            self.stack_trace = capture_stack()

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _READ_ONLY and name in self.__dict__:
            raise AttributeError(f"{name} is read-only")
        object.__setattr__(self, name, value)

    def __reduce__(self) -> tuple[Any, ...]:
        # Exception pickling replays ``args``, which only holds the message.
        return (
            type(self),
            (
                self.code,
                self.message,
                self.details,
                self.internal,
                self.context,
                self.stack_trace,
            ),
        )

    def __str__(self) -> str:
        if self.internal is not None:
            return f"[{int(self.code)}] {self.message}: {self.internal}"
        return f"[{int(self.code)}] {self.message}"

    @property
    def band(self) -> CodeBand | None:
        return band_of(self.code)

    def http_status(self) -> HTTPStatus:
        return http_status_for(self.code)

    def with_context(self, key: str, value: Any) -> Self:
        if self.context is None:
            self.context = {}
        self.context[key] = value
        return self

    def with_details(self, details: str) -> Self:
        self.details = details
        return self

    def to_dict(self) -> dict[str, Any]:
        """Client-safe payload; the cause and stack trace are left out."""
        payload: dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.details:
            payload["details"] = self.details
        if self.context:
            payload["context"] = dict(self.context)
        return payload


def new(code: ErrorCode | int, message: str) -> AppError:
    return AppError(code, message)


def wrap(err: BaseException, code: ErrorCode | int, message: str) -> AppError:
    return AppError(code, message, internal=err)


# ---------- classification ----------


def as_app_error(err: BaseException | None) -> AppError | None:
    match err:
        case AppError():
            return err
        case _:
            return None


def is_app_error(err: BaseException | None) -> bool:
    return as_app_error(err) is not None


def has_code(err: BaseException | None, code: ErrorCode | int) -> bool:
    app_err = as_app_error(err)
    return app_err is not None and int(app_err.code) == int(code)


def in_band(err: BaseException | None, band: CodeBand) -> bool:
    app_err = as_app_error(err)
    return app_err is not None and app_err.band is band


# ---------- general constructors ----------


def bad_request(message: str) -> AppError:
    return new(ErrorCode.BAD_REQUEST, message)


def unauthorized(message: str) -> AppError:
    return new(ErrorCode.UNAUTHORIZED, message)


def forbidden(message: str) -> AppError:
    return new(ErrorCode.FORBIDDEN, message)


def not_found(message: str) -> AppError:
    return new(ErrorCode.NOT_FOUND, message)


def conflict(message: str) -> AppError:
    return new(ErrorCode.CONFLICT, message)


def internal(err: BaseException, message: str) -> AppError:
    return wrap(err, ErrorCode.INTERNAL, message)


def validation(message: str) -> AppError:
    return new(ErrorCode.VALIDATION, message)


def timeout(message: str) -> AppError:
    return new(ErrorCode.TIMEOUT, message)


def rate_limited(message: str) -> AppError:
    return new(ErrorCode.RATE_LIMIT, message)


# ---------- authentication ----------


def invalid_credentials() -> AppError:
    return new(ErrorCode.INVALID_CREDENTIALS, "Invalid credentials provided")


def token_expired() -> AppError:
    return new(ErrorCode.TOKEN_EXPIRED, "Token has expired")


def token_invalid() -> AppError:
    return new(ErrorCode.TOKEN_INVALID, "Invalid token provided")


def user_not_found() -> AppError:
    return new(ErrorCode.USER_NOT_FOUND, "User not found")


def user_already_exists() -> AppError:
    return new(ErrorCode.USER_ALREADY_EXISTS, "User already exists")


# ---------- documents ----------


def document_not_found() -> AppError:
    return new(ErrorCode.DOCUMENT_NOT_FOUND, "Document not found")


def document_access_denied() -> AppError:
    return new(ErrorCode.DOCUMENT_ACCESS_DENIED, "Access denied to document")


def document_locked() -> AppError:
    return new(ErrorCode.DOCUMENT_LOCKED, "Document is locked for editing")


def invalid_document_format() -> AppError:
    return new(ErrorCode.INVALID_DOCUMENT_FORMAT, "Invalid document format")


def document_size_exceeded() -> AppError:
    return new(ErrorCode.DOCUMENT_SIZE_EXCEEDED, "Document size limit exceeded")


# ---------- workspaces ----------


def workspace_not_found() -> AppError:
    return new(ErrorCode.WORKSPACE_NOT_FOUND, "Workspace not found")


def workspace_access_denied() -> AppError:
    return new(ErrorCode.WORKSPACE_ACCESS_DENIED, "Access denied to workspace")


def invitation_expired() -> AppError:
    return new(ErrorCode.INVITATION_EXPIRED, "Invitation has expired")


def max_members_exceeded() -> AppError:
    return new(ErrorCode.MAX_MEMBERS_EXCEEDED, "Workspace member limit exceeded")
