import copy
import pickle
from http import HTTPStatus
from typing import Callable

import pytest

from smart_document import errors
from smart_document.errors import AppError, CodeBand, ErrorCode


def test_codes_follow_band_layout() -> None:
    assert ErrorCode.INTERNAL == 1000
    assert ErrorCode.RATE_LIMIT == 1008
    assert ErrorCode.INVALID_CREDENTIALS == 2009
    assert ErrorCode.DOCUMENT_NOT_FOUND == 3014
    assert ErrorCode.WORKSPACE_NOT_FOUND == 4019
    assert ErrorCode.CONCURRENT_EDIT == 5025
    assert len({int(code) for code in ErrorCode}) == len(ErrorCode)


@pytest.mark.parametrize(
    "code, band",
    [
        (ErrorCode.VALIDATION, CodeBand.GENERAL),
        (ErrorCode.TOKEN_EXPIRED, CodeBand.AUTH),
        (ErrorCode.DOCUMENT_LOCKED, CodeBand.DOCUMENT),
        (ErrorCode.INVITATION_EXPIRED, CodeBand.WORKSPACE),
        (ErrorCode.SESSION_NOT_FOUND, CodeBand.COLLABORATION),
    ],
)
def test_code_band(code: ErrorCode, band: CodeBand) -> None:
    assert code.band is band
    assert errors.band_of(int(code)) is band


def test_band_of_outside_every_band() -> None:
    assert errors.band_of(42) is None
    assert errors.band_of(9001) is None


@pytest.mark.parametrize(
    "code, status",
    [
        (ErrorCode.INTERNAL, HTTPStatus.INTERNAL_SERVER_ERROR),
        (ErrorCode.BAD_REQUEST, HTTPStatus.BAD_REQUEST),
        (ErrorCode.VALIDATION, HTTPStatus.BAD_REQUEST),
        (ErrorCode.INVALID_DOCUMENT_FORMAT, HTTPStatus.BAD_REQUEST),
        (ErrorCode.DOCUMENT_SIZE_EXCEEDED, HTTPStatus.BAD_REQUEST),
        (ErrorCode.UNAUTHORIZED, HTTPStatus.UNAUTHORIZED),
        (ErrorCode.INVALID_CREDENTIALS, HTTPStatus.UNAUTHORIZED),
        (ErrorCode.TOKEN_EXPIRED, HTTPStatus.UNAUTHORIZED),
        (ErrorCode.TOKEN_INVALID, HTTPStatus.UNAUTHORIZED),
        (ErrorCode.FORBIDDEN, HTTPStatus.FORBIDDEN),
        (ErrorCode.DOCUMENT_ACCESS_DENIED, HTTPStatus.FORBIDDEN),
        (ErrorCode.WORKSPACE_ACCESS_DENIED, HTTPStatus.FORBIDDEN),
        (ErrorCode.NOT_FOUND, HTTPStatus.NOT_FOUND),
        (ErrorCode.USER_NOT_FOUND, HTTPStatus.NOT_FOUND),
        (ErrorCode.DOCUMENT_NOT_FOUND, HTTPStatus.NOT_FOUND),
        (ErrorCode.WORKSPACE_NOT_FOUND, HTTPStatus.NOT_FOUND),
        (ErrorCode.SESSION_NOT_FOUND, HTTPStatus.NOT_FOUND),
        (ErrorCode.CONFLICT, HTTPStatus.CONFLICT),
        (ErrorCode.USER_ALREADY_EXISTS, HTTPStatus.CONFLICT),
        (ErrorCode.DOCUMENT_LOCKED, HTTPStatus.CONFLICT),
        (ErrorCode.OPERATION_CONFLICT, HTTPStatus.CONFLICT),
        (ErrorCode.CONCURRENT_EDIT, HTTPStatus.CONFLICT),
        (ErrorCode.TIMEOUT, HTTPStatus.REQUEST_TIMEOUT),
        (ErrorCode.RATE_LIMIT, HTTPStatus.TOO_MANY_REQUESTS),
        (ErrorCode.INVITATION_EXPIRED, HTTPStatus.INTERNAL_SERVER_ERROR),
        (ErrorCode.MAX_MEMBERS_EXCEEDED, HTTPStatus.INTERNAL_SERVER_ERROR),
    ],
)
def test_http_status_mapping(code: ErrorCode, status: HTTPStatus) -> None:
    assert errors.new(code, "x").http_status() == status
    assert errors.http_status_for(code) == status


def test_every_code_maps_to_a_status() -> None:
    for code in ErrorCode:
        assert errors.new(code, "x").http_status() in HTTPStatus


def test_unknown_code_falls_back_to_500() -> None:
    err = errors.new(7777, "odd")
    assert err.code == 7777 and not isinstance(err.code, ErrorCode)
    assert err.band is None
    assert err.http_status() == HTTPStatus.INTERNAL_SERVER_ERROR


def test_known_int_is_normalised_to_error_code() -> None:
    err = errors.new(1006, "bad")
    assert err.code is ErrorCode.VALIDATION


def test_str_without_cause() -> None:
    assert str(errors.new(ErrorCode.NOT_FOUND, "missing")) == "[1004] missing"


def test_str_with_cause() -> None:
    cause = ValueError("boom")
    err = errors.wrap(cause, ErrorCode.INTERNAL, "query failed")
    assert str(err) == "[1000] query failed: boom"
    assert err.internal is cause
    assert err.__cause__ is cause


def test_str_ignores_details_and_context() -> None:
    err = errors.conflict("taken").with_details("more").with_context("k", "v")
    assert str(err) == "[1005] taken"


def test_validation_scenario() -> None:
    err = (
        errors.validation("Invalid request format")
        .with_context("field", "email")
        .with_context("value", "invalid-email")
        .with_details("Email format is not valid")
    )
    assert err.code is ErrorCode.VALIDATION
    assert err.band is CodeBand.GENERAL
    assert err.http_status() == 400
    assert err.details == "Email format is not valid"
    assert err.context == {"field": "email", "value": "invalid-email"}


def test_wrapped_internal_scenario() -> None:
    db_err = ConnectionError("connection reset")
    err = errors.wrap(db_err, ErrorCode.INTERNAL, "query failed")
    assert err.http_status() == 500
    assert err.internal is db_err


def test_workspace_access_denied_is_forbidden() -> None:
    assert errors.workspace_access_denied().http_status() == 403


def test_with_context_overwrites_and_accumulates() -> None:
    err = errors.bad_request("bad")
    assert err.context is None
    same = err.with_context("a", 1).with_context("a", 2).with_context("b", 3)
    assert same is err
    assert err.context == {"a": 2, "b": 3}


def test_with_details_last_write_wins() -> None:
    err = errors.forbidden("no").with_details("first").with_details("second")
    assert err.details == "second"


def test_code_message_and_cause_are_read_only() -> None:
    err = errors.internal(RuntimeError("x"), "failed")
    with pytest.raises(AttributeError):
        err.code = ErrorCode.CONFLICT
    with pytest.raises(AttributeError):
        err.message = "other"
    with pytest.raises(AttributeError):
        err.internal = None


def test_as_app_error_and_is_app_error() -> None:
    err = errors.not_found("gone")
    assert errors.as_app_error(err) is err
    assert errors.is_app_error(err)
    assert errors.as_app_error(ValueError("plain")) is None
    assert not errors.is_app_error(ValueError("plain"))
    assert errors.as_app_error(None) is None


def test_has_code() -> None:
    err = errors.validation("bad")
    assert errors.has_code(err, ErrorCode.VALIDATION)
    assert errors.has_code(err, 1006)
    assert not errors.has_code(err, ErrorCode.BAD_REQUEST)
    assert not errors.has_code(ValueError("bad"), ErrorCode.VALIDATION)


def test_in_band() -> None:
    assert errors.in_band(errors.token_expired(), CodeBand.AUTH)
    assert not errors.in_band(errors.token_expired(), CodeBand.DOCUMENT)
    assert not errors.in_band(KeyError("x"), CodeBand.GENERAL)


def test_app_error_can_be_raised_and_caught() -> None:
    with pytest.raises(AppError) as info:
        raise errors.document_locked()
    assert info.value.code is ErrorCode.DOCUMENT_LOCKED


def test_to_dict_hides_cause_and_stack() -> None:
    err = errors.internal(RuntimeError("password=hunter2"), "query failed")
    assert err.to_dict() == {"code": 1000, "message": "query failed"}

    enriched = errors.validation("bad").with_details("why").with_context("f", "x")
    assert enriched.to_dict() == {
        "code": 1006,
        "message": "bad",
        "details": "why",
        "context": {"f": "x"},
    }


@pytest.mark.parametrize(
    "factory, code, message",
    [
        (errors.invalid_credentials, ErrorCode.INVALID_CREDENTIALS, "Invalid credentials provided"),
        (errors.token_expired, ErrorCode.TOKEN_EXPIRED, "Token has expired"),
        (errors.token_invalid, ErrorCode.TOKEN_INVALID, "Invalid token provided"),
        (errors.user_not_found, ErrorCode.USER_NOT_FOUND, "User not found"),
        (errors.user_already_exists, ErrorCode.USER_ALREADY_EXISTS, "User already exists"),
        (errors.document_not_found, ErrorCode.DOCUMENT_NOT_FOUND, "Document not found"),
        (errors.document_access_denied, ErrorCode.DOCUMENT_ACCESS_DENIED, "Access denied to document"),
        (errors.document_locked, ErrorCode.DOCUMENT_LOCKED, "Document is locked for editing"),
        (errors.invalid_document_format, ErrorCode.INVALID_DOCUMENT_FORMAT, "Invalid document format"),
        (errors.document_size_exceeded, ErrorCode.DOCUMENT_SIZE_EXCEEDED, "Document size limit exceeded"),
        (errors.workspace_not_found, ErrorCode.WORKSPACE_NOT_FOUND, "Workspace not found"),
        (errors.workspace_access_denied, ErrorCode.WORKSPACE_ACCESS_DENIED, "Access denied to workspace"),
        (errors.invitation_expired, ErrorCode.INVITATION_EXPIRED, "Invitation has expired"),
        (errors.max_members_exceeded, ErrorCode.MAX_MEMBERS_EXCEEDED, "Workspace member limit exceeded"),
    ],
)
def test_domain_constructors(
    factory: Callable[[], AppError], code: ErrorCode, message: str
) -> None:
    err = factory()
    assert err.code is code
    assert err.message == message
    assert err.internal is None


@pytest.mark.parametrize(
    "factory, code",
    [
        (errors.bad_request, ErrorCode.BAD_REQUEST),
        (errors.unauthorized, ErrorCode.UNAUTHORIZED),
        (errors.forbidden, ErrorCode.FORBIDDEN),
        (errors.not_found, ErrorCode.NOT_FOUND),
        (errors.conflict, ErrorCode.CONFLICT),
        (errors.validation, ErrorCode.VALIDATION),
        (errors.timeout, ErrorCode.TIMEOUT),
        (errors.rate_limited, ErrorCode.RATE_LIMIT),
    ],
)
def test_category_constructors(factory: Callable[[str], AppError], code: ErrorCode) -> None:
    err = factory("custom message")
    assert err.code is code
    assert err.message == "custom message"


def _raise_here() -> AppError:
    return errors.not_found("where")


def test_stack_trace_starts_at_call_site(stack_filter) -> None:
    stack_filter("test_errors")
    err = _raise_here()
    lines = err.stack_trace.splitlines()
    assert "_raise_here" in lines[-2]
    assert "return errors.not_found" in lines[-1]
    assert "test_stack_trace_starts_at_call_site" in err.stack_trace
    assert errors.__file__ not in err.stack_trace


def test_wrap_records_wrap_site(stack_filter) -> None:
    stack_filter("test_errors")

    def failing() -> None:
        raise ValueError("low level")

    try:
        failing()
    except ValueError as exc:
        err = errors.wrap(exc, ErrorCode.INTERNAL, "translated")
    assert "test_wrap_records_wrap_site" in err.stack_trace
    assert "failing" not in err.stack_trace


def test_stack_trace_filtered_to_service_frames(stack_filter) -> None:
    stack_filter("no-such-path-fragment")
    assert errors.validation("x").stack_trace == ""


def test_stack_filter_disabled_keeps_foreign_frames(stack_filter) -> None:
    stack_filter(None)
    trace = errors.validation("x").stack_trace
    assert "test_stack_filter_disabled_keeps_foreign_frames" in trace
    assert errors.__file__ not in trace


def test_app_error_survives_pickle(stack_filter) -> None:
    stack_filter("test_errors")
    err = errors.wrap(ValueError("db"), ErrorCode.INTERNAL, "query failed")
    err.with_details("retry later").with_context("table", "documents")

    restored = pickle.loads(pickle.dumps(err))

    assert isinstance(restored, AppError)
    assert restored.code is ErrorCode.INTERNAL
    assert restored.message == "query failed"
    assert restored.details == "retry later"
    assert restored.context == {"table": "documents"}
    assert isinstance(restored.internal, ValueError)
    assert restored.__cause__ is restored.internal
    assert restored.stack_trace == err.stack_trace
    assert str(restored) == "[1000] query failed: db"


def test_app_error_copy_keeps_fields() -> None:
    err = errors.document_not_found().with_context("id", 7)
    clone = copy.copy(err)
    assert clone is not err
    assert clone.code is err.code
    assert clone.message == err.message
    assert clone.context == {"id": 7}
    assert clone.stack_trace == err.stack_trace
    assert copy.deepcopy(err).to_dict() == err.to_dict()


def test_band_for_every_code() -> None:
    for code in ErrorCode:
        assert code.band is errors.band_of(code)
