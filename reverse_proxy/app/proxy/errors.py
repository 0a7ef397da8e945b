"""
Errors raised while validating a proxy request.

Each error carries the HTTP status it is reported with and a message that
is shown to the caller verbatim.
"""

from fastapi import status


class ProxyError(Exception):
    """Base class for request rejections. Never raised for transport failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    reason_phrase: str = "Bad Request"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AmbiguousQueryError(ProxyError):
    """More than one query parameter was sent, so the target URL was not fully encoded."""

    def __init__(self, parameter_count: int):
        super().__init__(
            "Multiple query parameters detected. "
            "Please ensure the target URL is fully URL-encoded."
        )
        self.parameter_count = parameter_count


class InvalidTargetURLError(ProxyError):
    """The ``url`` parameter could not be percent-decoded or parsed as an absolute URL."""

    def __init__(self, detail: str):
        super().__init__(
            "Invalid target URL. Please ensure the target URL is fully URL-encoded."
        )
        self.detail = detail


class TargetDeniedError(ProxyError):
    status_code = status.HTTP_403_FORBIDDEN
    reason_phrase = "Forbidden"

    def __init__(self, hostname: str, reason: str):
        super().__init__(
            "Target URL is not allowed by administrator. "
            "If this issue persists, please contact administrator for assistance."
        )
        self.hostname = hostname
        self.reason = reason
