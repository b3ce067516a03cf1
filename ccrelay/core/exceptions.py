"""Custom exceptions for the application"""
from enum import Enum
from typing import Optional

from ccrelay.core.error_types import (
    ERROR_TYPE_API,
    ERROR_TYPE_AUTHENTICATION,
    ERROR_TYPE_INTERNAL,
    ERROR_TYPE_INVALID_REQUEST,
    ERROR_TYPE_STREAM,
)


def build_error_envelope(message: str, error_type: str = ERROR_TYPE_API) -> dict:
    """Build an Anthropic-style error body."""
    return {
        "type": "error",
        "error": {
            "type": error_type,
            "message": message,
        },
    }


class ProxyError(Exception):
    """Base for every failure that is reported to the caller as an error envelope"""

    status_code: int = 500
    error_type: str = ERROR_TYPE_INTERNAL

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type

    def to_envelope(self) -> dict:
        return build_error_envelope(self.message, self.error_type)


class CredentialFailure(str, Enum):
    MISSING = "missing"
    MALFORMED = "malformed"


class CredentialError(ProxyError):
    """Raised when no usable credential can be extracted from the request headers"""

    status_code = 401
    error_type = ERROR_TYPE_AUTHENTICATION

    def __init__(self, reason: CredentialFailure, message: str):
        super().__init__(message)
        self.reason = reason


class InvalidRequestError(ProxyError):
    status_code = 400
    error_type = ERROR_TYPE_INVALID_REQUEST


class UpstreamError(ProxyError):
    """Raised when the upstream call fails before any response data reached the caller"""

    status_code = 500
    error_type = ERROR_TYPE_API


class UpstreamStreamError(ProxyError):
    """Raised while reading the upstream event feed after streaming has begun

    The HTTP status is already committed by then, so this is only ever
    reported in-band as an error frame.
    """

    error_type = ERROR_TYPE_STREAM
