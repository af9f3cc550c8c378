"""Outbound HTTP for webhook deliveries."""

from dataclasses import dataclass
from typing import Protocol

import httpx


class DeliveryTransportError(Exception):
    """The request never produced an HTTP response (DNS, connect, TLS, timeout)."""


@dataclass
class HttpResponse:
    status_code: int
    reason: str
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class HttpClient(Protocol):
    async def post(
        self, url: str, headers: dict[str, str], body: str, timeout: float
    ) -> HttpResponse: ...


class HttpxClient:
    """HttpClient over a shared httpx.AsyncClient.

    Redirects are not followed; a 3xx counts as a failed attempt like any
    other non-2xx status.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(follow_redirects=False)
        self._owns_client = client is None

    async def post(
        self, url: str, headers: dict[str, str], body: str, timeout: float
    ) -> HttpResponse:
        try:
            response = await self._client.post(
                url, content=body.encode("utf-8"), headers=headers, timeout=timeout
            )
        except httpx.TimeoutException as e:
            raise DeliveryTransportError(f"Request timed out after {timeout:g}s") from e
        except httpx.RequestError as e:
            raise DeliveryTransportError(str(e) or e.__class__.__name__) from e
        return HttpResponse(
            status_code=response.status_code,
            reason=response.reason_phrase,
            text=response.text,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
