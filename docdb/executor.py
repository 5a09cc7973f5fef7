"""
Request executor.

Issues one logical operation against a resolved link: signs it, bounds it by
the request timeout, retries throttled and failed attempts with backoff, and
classifies every failure exactly once.

Author: docdb Team
Date: 2025-12-11
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from .auth import AuthorizationContext
from .constants import API_VERSION, HttpHeaders, MediaTypes
from .core.config_manager import ConnectionPolicy
from .core.logging_config import new_correlation_id, request_fields
from .exceptions import (
    NetworkTimeout,
    ServiceUnavailable,
    Throttled,
    client_error_for_status,
)
from .links import ResourceLink
from .transport import JsonSerializer, Serializer, Transport, TransportError, TransportResponse, TransportTimeout

logger = logging.getLogger(__name__)

_IDEMPOTENT_VERBS = frozenset({"GET", "HEAD", "PUT", "DELETE"})


class RequestExecutor:
    """
    Executes requests with auth, timeout, retry and error classification.

    Retries:
        - 429: after ``x-ms-retry-after-ms`` (or the computed backoff), up
          to ``max_throttle_retries`` times, for every verb; then ``Throttled``.
        - 5xx and connection failures: exponential backoff, up to
          ``max_retries`` times, only for idempotent requests; then
          ``ServiceUnavailable``.
        - Timeouts and 4xx responses are never retried.

    Streamed request bodies cannot be replayed, so they are sent once.
    """

    def __init__(
        self,
        transport: Transport,
        auth: AuthorizationContext,
        policy: Optional[ConnectionPolicy] = None,
        serializer: Optional[Serializer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.auth = auth
        self.policy = policy or ConnectionPolicy()
        self.serializer = serializer or JsonSerializer()
        self._sleep = sleep

    async def execute(
        self,
        verb: str,
        link: ResourceLink,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        *,
        idempotent: Optional[bool] = None,
        timeout: Optional[float] = None,
        raw: bool = False,
        stream: bool = False,
    ) -> Tuple[Any, Dict[str, str]]:
        """
        Execute one operation.

        Args:
            verb: HTTP method
            link: Resolved request target
            body: Record to encode, raw bytes, or an async iterable of chunks
            headers: Extra request headers
            idempotent: Override whether 5xx/connection failures may be retried
            timeout: Override the policy's request timeout (seconds)
            raw: Return the body as bytes instead of decoding it
            stream: Return the body as an async iterator of chunks

        Returns:
            Tuple of (result, response headers)

        Raises:
            Unauthorized: If no credential covers ``link`` (no round trip)
            ClientError: For any 4xx response
            Throttled: When throttle retries are exhausted
            ServiceUnavailable: When failure retries are exhausted
            NetworkTimeout: When the request exceeds the timeout
        """
        verb = verb.upper()
        request_headers, payload, replayable = self._prepare(body, headers)
        if idempotent is None:
            idempotent = verb in _IDEMPOTENT_VERBS or (
                request_headers.get(HttpHeaders.IS_QUERY) == "true"
            )
        retry_failures = idempotent and replayable
        timeout = timeout if timeout is not None else self.policy.request_timeout
        retry_options = self.policy.retry_options
        operation = f"{verb} /{link.path}"

        new_correlation_id()
        throttle_attempts = 0
        failure_attempts = 0

        while True:
            # Signed per attempt: the signature covers x-ms-date
            self.auth.sign(verb, link, request_headers)
            logger.debug(f"Sending {operation}")

            try:
                response = await asyncio.wait_for(
                    self.transport.send(verb, link.path, request_headers, payload, stream=stream),
                    timeout=timeout,
                )
            except (asyncio.TimeoutError, TransportTimeout):
                logger.error(f"Operation timeout: {operation} after {timeout}s", extra=request_fields(operation))
                raise NetworkTimeout(operation, timeout) from None
            except TransportError as e:
                if not retry_failures or failure_attempts >= retry_options.max_retries:
                    logger.error(
                        f"Connection failure (non-retryable or max attempts): {operation}: {e}"
                    )
                    raise ServiceUnavailable(
                        f"Connection failure for {operation}: {e}",
                        attempts=failure_attempts + 1,
                    ) from e
                failure_attempts += 1
                delay = retry_options.backoff(failure_attempts)
                logger.warning(
                    f"Connection failure, retrying {operation} "
                    f"(attempt {failure_attempts}/{retry_options.max_retries}) in {delay:.2f}s: {e}",
                    extra=request_fields(operation, failure_attempts, retry_in=delay),
                )
                await self._sleep(delay)
                continue

            status = response.status_code
            if status < 400:
                if failure_attempts or throttle_attempts:
                    logger.info(
                        f"Operation succeeded after {failure_attempts + throttle_attempts + 1} attempts: {operation}"
                    )
                return await self._result(response, raw=raw, stream=stream), response.headers

            message = await self._error_message(response)

            if status == 429:
                retry_after_ms = _retry_after_ms(response.headers)
                if not replayable or throttle_attempts >= retry_options.max_throttle_retries:
                    logger.error(
                        f"Throttled, giving up: {operation} after {throttle_attempts + 1} attempts",
                        extra=request_fields(operation, throttle_attempts + 1, status_code=status),
                    )
                    raise Throttled(
                        message,
                        retry_after_ms=retry_after_ms,
                        attempts=throttle_attempts + 1,
                        headers=response.headers,
                    )
                throttle_attempts += 1
                delay = (
                    retry_after_ms / 1000.0
                    if retry_after_ms is not None
                    else retry_options.backoff(throttle_attempts)
                )
                logger.warning(
                    f"Throttled, retrying {operation} "
                    f"(attempt {throttle_attempts}/{retry_options.max_throttle_retries}) in {delay:.2f}s",
                    extra=request_fields(operation, throttle_attempts, status_code=status, retry_in=delay),
                )
                await self._sleep(delay)
                continue

            if status < 500:
                logger.debug(f"{operation} failed with {status}: {message}")
                raise client_error_for_status(status, message, response.headers)

            if not retry_failures or failure_attempts >= retry_options.max_retries:
                logger.error(
                    f"Server error {status} (non-retryable or max attempts): {operation}",
                    extra=request_fields(operation, failure_attempts + 1, status_code=status),
                )
                raise ServiceUnavailable(
                    message,
                    status_code=status,
                    attempts=failure_attempts + 1,
                    headers=response.headers,
                )
            failure_attempts += 1
            delay = retry_options.backoff(failure_attempts)
            logger.warning(
                f"Server error {status}, retrying {operation} "
                f"(attempt {failure_attempts}/{retry_options.max_retries}) in {delay:.2f}s",
                extra=request_fields(operation, failure_attempts, status_code=status, retry_in=delay),
            )
            await self._sleep(delay)

    def _prepare(
        self, body: Any, headers: Optional[Mapping[str, str]]
    ) -> Tuple[Dict[str, str], Any, bool]:
        request_headers: Dict[str, str] = {HttpHeaders.VERSION: API_VERSION}
        request_headers.update({k.lower(): v for k, v in (headers or {}).items()})

        if body is None:
            return request_headers, None, True
        if isinstance(body, (bytes, bytearray)):
            request_headers.setdefault(HttpHeaders.CONTENT_TYPE, MediaTypes.OCTET_STREAM)
            return request_headers, bytes(body), True
        if hasattr(body, "__aiter__"):
            request_headers.setdefault(HttpHeaders.CONTENT_TYPE, MediaTypes.OCTET_STREAM)
            return request_headers, body, False

        request_headers.setdefault(HttpHeaders.CONTENT_TYPE, MediaTypes.JSON)
        return request_headers, self.serializer.encode(body), True

    async def _result(self, response: TransportResponse, *, raw: bool, stream: bool) -> Any:
        if stream:
            return response.body
        data = response.body
        if raw:
            return data
        return self.serializer.decode(data)

    async def _error_message(self, response: TransportResponse) -> str:
        data = response.body
        if not isinstance(data, (bytes, bytearray)):
            data = b"".join([chunk async for chunk in data])
        if not data:
            return f"Request failed with status {response.status_code}"
        try:
            decoded = json.loads(data)
        except ValueError:
            return data.decode("utf-8", errors="replace")
        if isinstance(decoded, dict):
            error = decoded.get("error", decoded)
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
        return data.decode("utf-8", errors="replace")


def _retry_after_ms(headers: Mapping[str, str]) -> Optional[int]:
    value = headers.get(HttpHeaders.RETRY_AFTER_MS)
    if value is None:
        return None
    try:
        return max(0, int(float(value)))
    except ValueError:
        return None
