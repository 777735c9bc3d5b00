"""HTTP transport with bounded, classified retry."""

from __future__ import annotations

import asyncio
import logging

import httpx

from emcy_telemetry.collector.models import DEFAULT_ENDPOINT, TelemetryBatch
from emcy_telemetry.transport.interface import Transport

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 1.0  # seconds; attempt k waits base * 2**(k-1)
DEFAULT_TIMEOUT = 10.0


class HttpTransport(Transport):
    """POSTs a batch as JSON to the collector endpoint.

    Outcome per attempt:

    * 2xx: delivered, stop.
    * 4xx: bad key or bad payload; give up immediately.
    * anything else (5xx, network error, timeout): retry after an
      exponential backoff until ``max_attempts`` is used up.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        debug: bool = False,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = RETRY_BASE_DELAY,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint or DEFAULT_ENDPOINT
        self._debug = debug
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        # Injected for tests (httpx.MockTransport); None means real network.
        self._http_transport = http_transport

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def send(self, batch: TelemetryBatch) -> bool:
        body = batch.to_json()
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {batch.api_key}",
        }
        count = len(batch.invocations)
        last_error: str | None = None

        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._http_transport,
            follow_redirects=True,
        ) as client:
            for attempt in range(self._max_attempts):
                if attempt > 0:
                    await self._delay(self._base_delay * 2 ** (attempt - 1))

                try:
                    response = await client.post(self._endpoint, content=body, headers=headers)
                except httpx.HTTPError as exc:
                    last_error = str(exc) or type(exc).__name__
                    logger.warning(
                        "[emcy] attempt=%d/%d network error=%s",
                        attempt + 1, self._max_attempts, last_error,
                    )
                    continue

                if response.is_success:
                    if self._debug:
                        logger.info("[emcy] Sent %d invocations", count)
                    return True

                if response.is_client_error:
                    logger.error(
                        "[emcy] Client error: %d %s (dropping %d invocations)",
                        response.status_code, response.reason_phrase, count,
                    )
                    return False

                last_error = f"HTTP {response.status_code}: {response.reason_phrase}"
                logger.warning(
                    "[emcy] attempt=%d/%d error=%s",
                    attempt + 1, self._max_attempts, last_error,
                )

        logger.error(
            "[emcy] Failed to send telemetry after %d attempts: %s",
            self._max_attempts, last_error,
        )
        return False

    async def _delay(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
