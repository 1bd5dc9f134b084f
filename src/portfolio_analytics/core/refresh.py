"""
Live refresh controller for the analytics dashboard.

Keeps exactly one current AggregateSnapshot for the selected window. A fetch
is started on mount, on window change, on manual refresh, and on every insert
notification while live. Results for a superseded window are discarded even
when they arrive late.
"""
import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Protocol

import httpx

from ..config import AnalyticsConfig
from .aggregation import aggregate
from .client import EventSourceError
from .models import AggregateSnapshot, DateWindow, RawEvent

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[AggregateSnapshot], None]


class WindowStatus(str, Enum):
    """Fetch status for the selected window."""
    IDLE = "idle"
    FETCHING = "fetching"
    READY = "ready"
    ERROR = "error"


class EventSource(Protocol):
    """What the controller needs from the backend adapter."""

    async def fetch_events(self, window: DateWindow) -> list[RawEvent]: ...

    def subscribe_to_inserts(self, on_insert: Callable[[], None]) -> Callable[[], None]: ...


class LiveRefreshController:
    """Schedules fetch + aggregate passes for the dashboard."""

    def __init__(
        self,
        source: EventSource,
        window: DateWindow | None = None,
        live: bool = True,
        tz: tzinfo = timezone.utc,
        offload_threshold: int = 5000,
    ):
        self.source = source
        self.window = window or DateWindow()
        self.live = live
        self.tz = tz
        self.offload_threshold = offload_threshold

        self.status = WindowStatus.IDLE
        self.snapshot = AggregateSnapshot()
        self.snapshot_window: DateWindow | None = None
        self.error: str | None = None
        self.updated_at: datetime | None = None

        self._generation = 0
        self._fetch_task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._subscription_token = 0
        self._listeners: list[SnapshotListener] = []
        self._started = False
        self._closed = False

    @classmethod
    def from_config(cls, source: EventSource, config: AnalyticsConfig) -> "LiveRefreshController":
        return cls(
            source,
            window=DateWindow(days=config.default_window_days),
            live=config.live,
            tz=config.tzinfo,
            offload_threshold=config.aggregate_offload_threshold,
        )

    @property
    def is_subscribed(self) -> bool:
        return self._unsubscribe is not None

    @property
    def is_fetching(self) -> bool:
        return self._fetch_task is not None and not self._fetch_task.done()

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns a remover."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Mount: subscribe when live and load the selected window."""
        if self._started or self._closed:
            return
        self._started = True
        if self.live:
            self._subscribe()
        self._schedule_fetch("mount")

    async def close(self) -> None:
        """Unmount: drop the subscription and any in-flight fetch."""
        if self._closed:
            return
        self._closed = True
        self._close_subscription()
        task = self._fetch_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        self._listeners.clear()

    async def __aenter__(self) -> "LiveRefreshController":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    async def set_window(self, value: "int | str | DateWindow") -> DateWindow:
        """Select a new window and start loading it.

        Raises:
            ValueError: If the value is not 7, 30 or 90 days
        """
        window = DateWindow.parse(value)
        if window == self.window:
            return window
        logger.debug(f"Window changed {self.window.key} -> {window.key}")
        self.window = window
        if self._started and not self._closed:
            self._schedule_fetch("window change")
        return window

    async def refresh(self) -> None:
        """Manual re-fetch of the current window. Live state is untouched."""
        if self._closed:
            return
        self._schedule_fetch("manual refresh")

    def set_live(self, enabled: bool) -> None:
        """Switch between live and paused."""
        self.live = enabled
        if not self._started or self._closed:
            return
        if enabled:
            self._subscribe()
        else:
            self._close_subscription()

    def toggle_live(self) -> bool:
        self.set_live(not self.live)
        return self.live

    async def wait_idle(self) -> None:
        """Wait until the most recent fetch has finished."""
        while True:
            task = self._fetch_task
            if task is None or task.done():
                return
            await asyncio.wait({task})

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def _subscribe(self) -> None:
        if self._unsubscribe is not None:
            return
        self._subscription_token += 1
        token = self._subscription_token

        def on_insert() -> None:
            self._handle_insert(token)

        self._unsubscribe = self.source.subscribe_to_inserts(on_insert)
        logger.debug(f"Subscribed to inserts (subscription {token})")

    def _close_subscription(self) -> None:
        if self._unsubscribe is None:
            return
        # Invalidate the token first so a callback racing teardown is ignored
        self._subscription_token += 1
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        unsubscribe()
        logger.debug("Unsubscribed from inserts")

    def _handle_insert(self, token: int) -> None:
        if self._closed or not self.live or token != self._subscription_token:
            logger.debug(f"Ignoring insert notification for closed subscription {token}")
            return
        self._schedule_fetch("insert")

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def _schedule_fetch(self, reason: str) -> asyncio.Task:
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._generation += 1
        self.status = WindowStatus.FETCHING
        logger.debug(f"Fetching {self.window.key} ({reason}, generation {self._generation})")
        self._fetch_task = asyncio.create_task(self._load(self.window, self._generation))
        return self._fetch_task

    def _is_current(self, window: DateWindow, generation: int) -> bool:
        return not self._closed and generation == self._generation and window == self.window

    async def _load(self, window: DateWindow, generation: int) -> None:
        try:
            events = await self.source.fetch_events(window)
        except (EventSourceError, httpx.HTTPError) as e:
            if self._is_current(window, generation):
                logger.error(f"Fetching events for {window.key} failed: {e}")
                self.status = WindowStatus.ERROR
                self.error = f"Failed to load analytics: {e}"
            return

        if not self._is_current(window, generation):
            logger.debug(f"Discarding stale result for {window.key} (generation {generation})")
            return

        if len(events) > self.offload_threshold:
            snapshot = await asyncio.to_thread(aggregate, events, self.tz)
            if not self._is_current(window, generation):
                return
        else:
            snapshot = aggregate(events, self.tz)

        self.snapshot = snapshot
        self.snapshot_window = window
        self.status = WindowStatus.READY
        self.error = None
        self.updated_at = datetime.now(timezone.utc)
        logger.info(f"Aggregated {snapshot.total_views} views for {window.key}")

        for listener in list(self._listeners):
            listener(snapshot)
