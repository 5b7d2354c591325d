from __future__ import annotations

import asyncio
import logging
import random

import httpx

from .constants import DEFAULT_HTTP_TIMEOUT_SECONDS, DEFAULT_MAX_RETRIES, LOGGER

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504, 520, 521, 522, 523, 524})
BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 30.0
BACKOFF_MULTIPLIER = 2.0


def backoff_delay(
    retries: int,
    *,
    base_delay: float = BASE_DELAY_SECONDS,
    max_delay: float = MAX_DELAY_SECONDS,
    multiplier: float = BACKOFF_MULTIPLIER,
    jitter: bool = True,
    rand=random.random,
) -> float:
    delay = min(base_delay * multiplier**retries, max_delay)
    if jitter:
        # +/-25%
        delay += (rand() - 0.5) * 2 * delay * 0.25
    return max(0.0, delay)


def _retry_after_seconds(header: str | None) -> float | None:
    if header is None:
        return None
    try:
        return max(0.0, float(header))
    except ValueError:
        return None


class RetryTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep=asyncio.sleep,
        jitter: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._max_retries = max(0, max_retries)
        self._sleep = sleep
        self._jitter = jitter
        self._logger = logger or LOGGER

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = request.content
        retries = 0

        while True:
            next_request = httpx.Request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=body,
                extensions=request.extensions,
            )
            try:
                response = await self._transport.handle_async_request(next_request)
            except httpx.TransportError as error:
                if retries >= self._max_retries:
                    raise
                delay = backoff_delay(retries, jitter=self._jitter)
                self._logger.warning(
                    "Retrying after transport error %r in %.2fs (%s %s)",
                    error,
                    delay,
                    request.method,
                    request.url,
                )
                await self._sleep(delay)
                retries += 1
                continue

            if response.status_code not in RETRYABLE_STATUS_CODES or retries >= self._max_retries:
                return response

            delay = None
            if response.status_code == 429:
                delay = _retry_after_seconds(response.headers.get("retry-after"))
            if delay is None:
                delay = backoff_delay(retries, jitter=self._jitter)
            self._logger.warning(
                "Retrying %s after %.2fs (%s %s)",
                response.status_code,
                delay,
                request.method,
                request.url,
            )
            await response.aclose()
            await self._sleep(delay)
            retries += 1

    async def aclose(self) -> None:
        await self._transport.aclose()


def build_http_client(
    *,
    base_url: str = "",
    timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    max_retries: int = 0,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep=asyncio.sleep,
) -> httpx.AsyncClient:
    base_transport = transport or httpx.AsyncHTTPTransport()
    if max_retries > 0:
        base_transport = RetryTransport(base_transport, max_retries=max_retries, sleep=sleep)
    return httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=base_transport)
