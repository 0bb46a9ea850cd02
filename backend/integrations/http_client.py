"""Outbound HTTP client used by ``api_call`` nodes.

Thin wrapper around ``httpx.AsyncClient`` that returns a plain
``HttpResponse`` so handlers never deal with transport objects.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass
class HttpResponse:
    """Status and decoded body of an outbound call."""
    status: int
    status_text: str
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpClient:
    """Generic outbound call: (url, method, headers, body, timeout) -> status/body.

    Args:
        timeout: Default timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._timeout = timeout
        self._transport = transport

    async def call(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        body: Any = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """Perform the request and decode a JSON body when possible.

        Raises:
            httpx.HTTPError: on transport failures (connection, timeout).
        """
        method = method.upper()
        request_kwargs: dict[str, Any] = {"headers": headers or {}}
        if body is not None and method not in ("GET", "HEAD"):
            if isinstance(body, (dict, list)):
                request_kwargs["json"] = body
            else:
                request_kwargs["content"] = str(body)

        async with httpx.AsyncClient(
            timeout=timeout or self._timeout,
            transport=self._transport,
        ) as client:
            response = await client.request(method, url, **request_kwargs)

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            data = response.text

        logger.info(
            "Outbound HTTP call",
            method=method,
            url=url,
            status=response.status_code,
        )
        return HttpResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            data=data,
            headers=dict(response.headers),
        )
