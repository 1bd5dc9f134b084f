"""
HTTP client for the Supabase project that stores raw analytics events.

Reads rows from the PostgREST ``analytics_events`` table, watches it for new
inserts, and fetches the map access token from an edge function.
"""
import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ..config import AnalyticsConfig
from .models import DateWindow, RawEvent

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000  # PostgREST default max rows per response


class EventSourceError(Exception):
    """Raised when the event backend cannot be reached or answers badly."""
    pass


class MapTokenError(EventSourceError):
    """Raised when the map access token cannot be provisioned."""
    pass


class InsertWatcher:
    """Polls the events table and fires a callback when a new row lands.

    The callback never fires after ``stop()`` returns.
    """

    def __init__(
        self,
        client: "EventSourceClient",
        on_insert: Callable[[], None],
        interval: float,
    ):
        self.client = client
        self.on_insert = on_insert
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._stopped = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._stopped

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        self._stopped = True
        if self._task is not None:
            self._task.cancel()

    async def _latest(self) -> str | None:
        try:
            return await self.client.latest_event_id()
        except (EventSourceError, httpx.HTTPError) as e:
            logger.warning(f"Insert watch poll failed: {e}")
            return None

    async def _run(self) -> None:
        last_seen = await self._latest()
        while not self._stopped:
            await asyncio.sleep(self.interval)
            newest = await self._latest()
            if self._stopped:
                return
            if newest is not None and newest != last_seen:
                logger.debug(f"New event {newest} detected")
                last_seen = newest
                self.on_insert()


class EventSourceClient:
    """Client for querying raw analytics events from Supabase."""

    def __init__(
        self,
        config: AnalyticsConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.transport = transport
        self.tz = config.tzinfo

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.config.supabase_key,
            "Authorization": f"Bearer {self.config.supabase_key}",
        }

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.request_timeout_seconds,
            transport=self.transport,
        )

    async def _query(self, params: list[tuple[str, Any]]) -> list[dict]:
        """Run a PostgREST select against the events table."""
        async with self._http() as client:
            response = await client.get(
                self.config.rest_url,
                headers=self._headers(),
                params=params,
            )
            response.raise_for_status()
            try:
                data = response.json()
            except ValueError as e:
                raise EventSourceError(f"Event query failed: {e}") from e

        if not isinstance(data, list):
            raise EventSourceError(f"Event query failed: {data}")
        return data

    # =========================================================================
    # EVENTS
    # =========================================================================

    async def fetch_events(
        self,
        window: DateWindow,
        now: Optional[datetime] = None,
    ) -> list[RawEvent]:
        """Fetch every event in the window, newest first."""
        start, end = window.bounds(now or datetime.now(timezone.utc), self.tz)
        base = [
            ("select", "*"),
            ("created_at", f"gte.{start.isoformat()}"),
            ("created_at", f"lte.{end.isoformat()}"),
            ("order", "created_at.desc"),
        ]

        rows: list[dict] = []
        offset = 0
        while True:
            page = await self._query(base + [("limit", PAGE_SIZE), ("offset", offset)])
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

        events = []
        for row in rows:
            try:
                events.append(RawEvent.from_row(row))
            except (KeyError, ValidationError) as e:
                logger.warning(f"Skipping malformed event row {row.get('id')}: {e}")

        logger.info(f"Fetched {len(events)} events for last {window.days} days")
        return events

    async def latest_event_id(self) -> str | None:
        """ID of the most recently created event, if any."""
        rows = await self._query([
            ("select", "id"),
            ("order", "created_at.desc"),
            ("limit", 1),
        ])
        if not rows:
            return None
        row = rows[0]
        if not isinstance(row, dict) or row.get("id") is None:
            raise EventSourceError(f"Unexpected latest event row: {row!r}")
        return str(row["id"])

    def subscribe_to_inserts(self, on_insert: Callable[[], None]) -> Callable[[], None]:
        """Start watching for inserts. Returns the unsubscribe function."""
        watcher = InsertWatcher(self, on_insert, self.config.poll_interval_seconds)
        watcher.start()
        return watcher.stop

    # =========================================================================
    # MAP TOKEN
    # =========================================================================

    async def get_map_access_token(self) -> str:
        """Fetch the map access token from the token edge function.

        Raises:
            MapTokenError: If the function fails or returns no token
        """
        try:
            async with self._http() as client:
                response = await client.post(self.config.token_url, headers=self._headers())
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MapTokenError(f"Map token request failed: {e}") from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise MapTokenError("Map token response did not include a token")
        return token
