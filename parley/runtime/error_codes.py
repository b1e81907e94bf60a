from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    """
    Stable, cross-module error codes used in events and user-facing messages.

    The provider-facing values match `LLMErrorCode` so that a provider failure can be
    reported with the same vocabulary as a local one.
    """

    # Shared (LLM-compatible) codes
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    AUTH = "auth"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    EMPTY_RESPONSE = "empty_response"
    UNKNOWN = "unknown"

    # Dispatch / session specific codes
    INVALID_COMMAND = "invalid_command"
    SESSION_RANGE = "session_range"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_REFERENCE = "session_reference"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    RETRY_EXHAUSTED = "retry_exhausted"
    PERSISTENCE_FAILED = "persistence_failed"
