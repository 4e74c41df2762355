"""Security headers checking utilities."""

from typing import Any

from .client import HTTPResponse

SECURITY_HEADERS = [
    "X-Frame-Options",
    "X-Content-Type-Options",
    "Content-Security-Policy",
    "Strict-Transport-Security",
    "Referrer-Policy",
    "Permissions-Policy",
]

DISCLOSURE_HEADERS = ["Server", "X-Powered-By", "X-AspNet-Version"]


def check_security_headers(response: HTTPResponse) -> dict[str, Any]:
    """Report which security headers a response carries."""
    results: dict[str, Any] = {
        "url": response.url,
        "status_code": response.status_code,
        "missing_headers": [],
        "present_headers": {},
        "disclosed": {},
    }

    # Headers may be lowercase in response, so check case-insensitively
    response_headers_lower = {k.lower(): v for k, v in response.headers.items()}

    for header in SECURITY_HEADERS:
        if header.lower() in response_headers_lower:
            results["present_headers"][header] = response_headers_lower[header.lower()]
        else:
            results["missing_headers"].append(header)

    for header in DISCLOSURE_HEADERS:
        value = response_headers_lower.get(header.lower(), "")
        if not value:
            continue
        # Server is only flagged when it carries a version
        if header != "Server" or any(ch.isdigit() for ch in value):
            results["disclosed"][header] = value

    return results
