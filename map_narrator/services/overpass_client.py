# map_narrator/services/overpass_client.py

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import httpx

from map_narrator.core.errors import (
    OverpassError,
    OverpassOverloadedError,
    OverpassTimeoutError,
    RequestCancelled,
)
from map_narrator.core.logging_config import logger

OVERLOAD_STATUSES = {429, 503, 504}

# Only back off between mirrors when the call budget leaves room for it
BACKOFF_MIN_TIMEOUT_MS = 1500


class OverpassClient:
    """
    Runs one Overpass query against an ordered list of mirrors.

    Each call gets its own timeout and may share an `asyncio.Event` with
    sibling calls; setting the event aborts the in-flight request and stops
    the mirror walk.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        user_agent: str = "map-narrator/0.1",
        backoff_s: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not endpoints:
            raise ValueError("OverpassClient needs at least one endpoint")
        self.endpoints = list(endpoints)
        self.user_agent = user_agent
        self.backoff_s = backoff_s
        self._transport = transport

    async def fetch(
        self,
        query: str,
        timeout_ms: int,
        cancel: Optional[asyncio.Event] = None,
    ) -> List[Dict[str, Any]]:
        """Return the raw `elements` array, failing over across mirrors."""
        last_error: Optional[Exception] = None
        total = len(self.endpoints)

        for attempt, endpoint in enumerate(self.endpoints, start=1):
            if cancel is not None and cancel.is_set():
                raise RequestCancelled("Overpass fetch cancelled")

            logger.info(f"Overpass attempt {attempt}/{total} -> {endpoint}")

            try:
                response = await self._post(endpoint, query, timeout_ms, cancel)
            except RequestCancelled:
                raise
            except (httpx.HTTPError, OverpassTimeoutError) as exc:
                last_error = exc if isinstance(exc, OverpassError) else OverpassError(
                    f"Overpass request to {endpoint} failed: {exc!r}"
                )
                logger.warning(f"Overpass endpoint failed ({endpoint}): {last_error}")
                await self._backoff(attempt, timeout_ms, cancel)
                continue

            if response.status_code in OVERLOAD_STATUSES:
                last_error = OverpassOverloadedError(response.status_code, endpoint)
                logger.warning(f"{last_error}, trying next endpoint")
                await self._backoff(attempt, timeout_ms, cancel)
                continue

            if response.is_error:
                raise OverpassError(f"Overpass HTTP {response.status_code} @ {endpoint}")

            try:
                data = response.json()
            except ValueError as exc:
                last_error = OverpassError(f"Overpass returned invalid JSON @ {endpoint}: {exc}")
                logger.warning(str(last_error))
                continue

            elements = data.get("elements") if isinstance(data, dict) else None
            if not isinstance(elements, list):
                last_error = OverpassError(f"Overpass response missing 'elements' @ {endpoint}")
                logger.warning(str(last_error))
                continue

            logger.info(
                f"Overpass success on attempt {attempt} ({endpoint}): {len(elements)} elements"
            )
            return elements

        raise last_error or OverpassError("Overpass failed on all endpoints")

    async def _post(
        self,
        endpoint: str,
        query: str,
        timeout_ms: int,
        cancel: Optional[asyncio.Event],
    ) -> httpx.Response:
        timeout_s = max(timeout_ms, 1) / 1000
        headers = {
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }

        async with httpx.AsyncClient(timeout=timeout_s, transport=self._transport) as client:
            request = asyncio.ensure_future(
                client.post(endpoint, data={"data": query}, headers=headers)
            )
            waiters = {request}
            cancelled = None
            if cancel is not None:
                cancelled = asyncio.ensure_future(cancel.wait())
                waiters.add(cancelled)

            try:
                done, _ = await asyncio.wait(
                    waiters, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for task in waiters:
                    if not task.done():
                        task.cancel()

            if request in done:
                return request.result()
            if cancelled is not None and cancelled in done:
                raise RequestCancelled(f"Overpass request to {endpoint} cancelled")
            raise OverpassTimeoutError(f"Overpass request to {endpoint} timed out after {timeout_ms}ms")

    async def _backoff(self, attempt: int, timeout_ms: int, cancel: Optional[asyncio.Event]) -> None:
        if attempt >= len(self.endpoints) or timeout_ms <= BACKOFF_MIN_TIMEOUT_MS:
            return
        if self.backoff_s <= 0:
            return
        if cancel is None:
            await asyncio.sleep(self.backoff_s)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.backoff_s)
        except asyncio.TimeoutError:
            pass
