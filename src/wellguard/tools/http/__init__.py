"""HTTP helpers for wellguard."""

from .availability import is_server_up, wait_for_server
from .client import USER_AGENT, HTTPClient, HTTPResponse
from .headers import DISCLOSURE_HEADERS, SECURITY_HEADERS, check_security_headers

__all__ = [
    "DISCLOSURE_HEADERS",
    "HTTPClient",
    "HTTPResponse",
    "SECURITY_HEADERS",
    "USER_AGENT",
    "check_security_headers",
    "is_server_up",
    "wait_for_server",
]
