"""Async HTTP client used by the API security and performance checks."""

import time
from dataclasses import dataclass
from typing import Any

import httpx

USER_AGENT = "WellFlow-Security-Scanner/1.0"


@dataclass
class HTTPResponse:
    """Represents an HTTP response."""

    url: str
    status_code: int
    headers: dict[str, str]
    body: str
    elapsed_ms: float

    def header(self, name: str) -> str:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return ""


class HTTPClient:
    """Async HTTP client with the scanner's identity and short timeouts."""

    def __init__(
        self,
        timeout: float = 5.0,
        follow_redirects: bool = False,
        verify_ssl: bool = True,
        user_agent: str = USER_AGENT,
    ):
        self.timeout = timeout
        self.follow_redirects = follow_redirects
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent
        self.client: httpx.AsyncClient | None = None

    async def __aenter__(self):
        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=self.follow_redirects,
            verify=self.verify_ssl,
            headers={"User-Agent": self.user_agent},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> HTTPResponse:
        """Make an HTTP request."""
        if not self.client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        start = time.perf_counter()

        response = await self.client.request(
            method=method,
            url=url,
            headers=headers,
            json=json,
            params=params,
        )

        elapsed = (time.perf_counter() - start) * 1000

        return HTTPResponse(
            url=str(response.url),
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.text,
            elapsed_ms=elapsed,
        )

    async def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> HTTPResponse:
        """Make a GET request."""
        return await self.request("GET", url, headers=headers, params=params)

    async def post(
        self,
        url: str,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> HTTPResponse:
        """Make a POST request with a JSON body."""
        return await self.request("POST", url, headers=headers, json=json)
