from __future__ import annotations

import httpx

from .errors import LLMErrorCode, LLMRequestError, code_for_status, is_retryable_error_code
from .types import ProviderKind


def _wrap_httpx_like_exception(
    exc: BaseException,
    *,
    provider_kind: ProviderKind,
    model: str | None,
    operation: str,
    body: str | None = None,
) -> LLMRequestError:
    status_code: int | None = None
    if isinstance(exc, httpx.TimeoutException):
        code = LLMErrorCode.TIMEOUT
    elif isinstance(exc, httpx.NetworkError):
        code = LLMErrorCode.NETWORK_ERROR
    elif isinstance(exc, httpx.RemoteProtocolError):
        # Connection dropped mid-stream.
        code = LLMErrorCode.NETWORK_ERROR
    elif isinstance(exc, httpx.HTTPStatusError):
        status_code = int(exc.response.status_code)
        code = code_for_status(status_code)
    else:
        code = LLMErrorCode.UNKNOWN

    details: dict[str, object] = {"operation": operation}
    if body:
        details["body"] = body[:4000]
    return LLMRequestError(
        str(exc) or exc.__class__.__name__,
        code=code,
        provider_kind=provider_kind,
        model=model,
        status_code=status_code,
        request_id=None,
        retryable=is_retryable_error_code(code),
        details=details,
        cause=exc,
    )
