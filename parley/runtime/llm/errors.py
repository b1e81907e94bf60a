from __future__ import annotations

from enum import StrEnum
from typing import Any

import anthropic
import openai

from .types import ProviderKind


class LLMErrorCode(StrEnum):
    TIMEOUT = "timeout"
    AUTH = "auth"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    RESPONSE_VALIDATION = "response_validation"
    EMPTY_RESPONSE = "empty_response"
    UNKNOWN = "unknown"


RETRYABLE_CODES = frozenset(
    {
        LLMErrorCode.TIMEOUT,
        LLMErrorCode.RATE_LIMIT,
        LLMErrorCode.SERVER_ERROR,
        LLMErrorCode.NETWORK_ERROR,
        LLMErrorCode.EMPTY_RESPONSE,
    }
)


class LLMRequestError(RuntimeError):
    """
    One failed provider attempt.

    `retryable` records whether the failure looks transient; it is shown to the user but the
    orchestrator's retry policy does not consult it.
    """

    def __init__(
        self,
        message: str,
        *,
        code: LLMErrorCode,
        provider_kind: ProviderKind | None = None,
        model: str | None = None,
        status_code: int | None = None,
        request_id: str | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.provider_kind = provider_kind
        self.model = model
        self.status_code = status_code
        self.request_id = request_id
        self.retryable = retryable
        self.details = details
        self.__cause__ = cause


def is_retryable_error_code(code: LLMErrorCode) -> bool:
    return code in RETRYABLE_CODES


_STATUS_CODES: dict[int, LLMErrorCode] = {
    400: LLMErrorCode.BAD_REQUEST,
    401: LLMErrorCode.AUTH,
    403: LLMErrorCode.PERMISSION,
    404: LLMErrorCode.NOT_FOUND,
    408: LLMErrorCode.TIMEOUT,
    409: LLMErrorCode.BAD_REQUEST,
    413: LLMErrorCode.BAD_REQUEST,
    422: LLMErrorCode.BAD_REQUEST,
    429: LLMErrorCode.RATE_LIMIT,
}


def code_for_status(status_code: int) -> LLMErrorCode:
    if 500 <= status_code <= 599:
        return LLMErrorCode.SERVER_ERROR
    return _STATUS_CODES.get(status_code, LLMErrorCode.UNKNOWN)


# Checked in order. Both SDKs derive APITimeoutError from APIConnectionError, and their
# status-bearing errors are covered by `code_for_status`.
_SDK_ERROR_CODES: tuple[tuple[tuple[type[BaseException], ...], LLMErrorCode], ...] = (
    ((openai.APITimeoutError, anthropic.APITimeoutError), LLMErrorCode.TIMEOUT),
    ((openai.APIConnectionError, anthropic.APIConnectionError), LLMErrorCode.NETWORK_ERROR),
    ((openai.APIResponseValidationError, anthropic.APIResponseValidationError), LLMErrorCode.RESPONSE_VALIDATION),
)


def classify_provider_exception(exc: BaseException) -> LLMErrorCode:
    if isinstance(exc, LLMRequestError):
        return exc.code
    for types, code in _SDK_ERROR_CODES:
        if isinstance(exc, types):
            return code
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return code_for_status(status_code)
    return LLMErrorCode.UNKNOWN


def wrap_provider_exception(
    exc: BaseException,
    *,
    provider_kind: ProviderKind,
    model: str | None,
    operation: str,
) -> LLMRequestError:
    """Convert an SDK exception into an `LLMRequestError`, keeping the original as the cause."""

    code = classify_provider_exception(exc)
    status_code = getattr(exc, "status_code", None)
    request_id = getattr(exc, "request_id", None)
    return LLMRequestError(
        str(exc) or type(exc).__name__,
        code=code,
        provider_kind=provider_kind,
        model=model,
        status_code=status_code if isinstance(status_code, int) else None,
        request_id=request_id if isinstance(request_id, str) else None,
        retryable=is_retryable_error_code(code),
        details={"operation": operation},
        cause=exc,
    )
