"""Error type strings used in client-facing error envelopes."""

ERROR_TYPE_API = "api_error"
ERROR_TYPE_TIMEOUT = "timeout_error"
ERROR_TYPE_INVALID_REQUEST = "invalid_request_error"
ERROR_TYPE_AUTHENTICATION = "authentication_error"
ERROR_TYPE_NOT_FOUND = "not_found_error"
ERROR_TYPE_STREAM = "stream_error"
ERROR_TYPE_INTERNAL = "internal_error"

# Error types the upstream Messages API reports
UPSTREAM_ERROR_TYPES = frozenset({
    "invalid_request_error",
    "authentication_error",
    "permission_error",
    "not_found_error",
    "request_too_large",
    "rate_limit_error",
    "api_error",
    "overloaded_error",
    "timeout_error",
})

KNOWN_ERROR_TYPES = UPSTREAM_ERROR_TYPES | {
    ERROR_TYPE_API,
    ERROR_TYPE_TIMEOUT,
    ERROR_TYPE_INVALID_REQUEST,
    ERROR_TYPE_AUTHENTICATION,
    ERROR_TYPE_NOT_FOUND,
    ERROR_TYPE_STREAM,
    ERROR_TYPE_INTERNAL,
}
