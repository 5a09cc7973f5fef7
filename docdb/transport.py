"""
Transport and serialization collaborators.

The request executor talks to the service only through ``Transport.send``
and turns bodies into records only through a ``Serializer``.

Author: docdb Team
Date: 2025-12-11
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Dict, Mapping, Optional, Union
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

Body = Union[bytes, AsyncIterable[bytes], None]


class TransportError(Exception):
    """The request could not be delivered (connection refused, reset, ...)."""


class TransportTimeout(TransportError):
    """The transport gave up waiting for the service."""


@dataclass
class TransportResponse:
    """Raw response.

    Attributes:
        status_code: HTTP status code
        headers: Response headers with lowercase names
        body: Whole body, or an async iterator of chunks for streamed sends
    """

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Union[bytes, AsyncIterator[bytes]] = b""


class Transport(ABC):
    """Delivers one request to the service."""

    @abstractmethod
    async def send(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: Body = None,
        *,
        stream: bool = False,
    ) -> TransportResponse:
        """
        Send a request.

        Args:
            method: HTTP method
            path: Resource path relative to the endpoint, unencoded
            headers: Request headers
            body: Request body: bytes or an async iterable of chunks
            stream: Return the body as an async iterator instead of bytes

        Raises:
            TransportTimeout: If the transport itself timed out
            TransportError: If the request could not be delivered
        """

    async def close(self) -> None:
        """Release connections."""


class HttpxTransport(Transport):
    """``Transport`` over ``httpx.AsyncClient``."""

    def __init__(
        self,
        endpoint: str,
        *,
        verify: bool = True,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            endpoint: Service endpoint URL
            verify: Verify TLS certificates
            client: Pre-built client to use instead of creating one
            transport: Custom httpx transport (e.g. ``httpx.ASGITransport``)
        """
        self.endpoint = endpoint if endpoint.endswith("/") else endpoint + "/"
        self._owns_client = client is None
        # Timeouts are enforced by the request executor
        self._client = client or httpx.AsyncClient(
            base_url=self.endpoint,
            verify=verify,
            transport=transport,
            timeout=httpx.Timeout(None),
        )

    def _url(self, path: str) -> str:
        return self.endpoint + quote(path.lstrip("/"), safe="/")

    async def send(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: Body = None,
        *,
        stream: bool = False,
    ) -> TransportResponse:
        request = self._client.build_request(method, self._url(path), headers=dict(headers), content=body)
        try:
            response = await self._client.send(request, stream=stream)
        except httpx.TimeoutException as e:
            raise TransportTimeout(str(e) or type(e).__name__) from e
        except httpx.TransportError as e:
            raise TransportError(str(e) or type(e).__name__) from e

        response_headers = {k.lower(): v for k, v in response.headers.items()}
        if stream:
            return TransportResponse(response.status_code, response_headers, _iterate_and_close(response))
        return TransportResponse(response.status_code, response_headers, response.content)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


async def _iterate_and_close(response: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    finally:
        await response.aclose()


class Serializer(ABC):
    """Converts records to and from bodies."""

    @abstractmethod
    def encode(self, record: Any) -> bytes:
        """Encode a record."""

    @abstractmethod
    def decode(self, data: bytes) -> Any:
        """Decode a body; empty bodies decode to ``None``."""


class JsonSerializer(Serializer):
    """UTF-8 JSON bodies."""

    def encode(self, record: Any) -> bytes:
        return json.dumps(record, separators=(",", ":")).encode("utf-8")

    def decode(self, data: bytes) -> Any:
        if not data:
            return None
        return json.loads(data)
