"""
Globe renderer: owns the map surface, its markers and the spin loop.

The surface is acquired in ``mount()`` and released in ``unmount()``; nothing
else writes to it. Marker changes always tear the previous set down fully
before the new set is mounted.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

import httpx

from ..config import GlobeSettings
from ..core.client import EventSourceError
from ..core.markers import DEFAULT_SIZING, MarkerSizing, resolve_markers
from ..core.models import AggregateSnapshot, CameraState, GlobeView, MarkerSpec, VisitorLocation
from .spin import SpinAutomaton, wrap_longitude

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]

MAP_CONFIG_ERROR = "Failed to load map configuration"
MAP_INIT_ERROR = "Failed to initialize map"


class RenderStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


class GlobeSurface:
    """The single map instance: camera plus mounted marker handles."""

    def __init__(self, token: str, settings: GlobeSettings):
        self.token = token
        self.style = settings.map_style
        self.camera = CameraState(
            lng=settings.initial_lng,
            lat=settings.initial_lat,
            zoom=settings.initial_zoom,
            pitch=settings.pitch,
        )
        self._markers: dict[int, MarkerSpec] = {}
        self._next_handle = 0
        self.removed = False

    def _check(self) -> None:
        if self.removed:
            raise RuntimeError("Globe surface has been removed")

    @property
    def markers(self) -> list[MarkerSpec]:
        return list(self._markers.values())

    def add_marker(self, spec: MarkerSpec) -> int:
        self._check()
        self._next_handle += 1
        self._markers[self._next_handle] = spec
        return self._next_handle

    def remove_marker(self, handle: int) -> None:
        self._check()
        self._markers.pop(handle, None)

    def jump_to(
        self,
        lng: float | None = None,
        lat: float | None = None,
        zoom: float | None = None,
    ) -> None:
        self._check()
        if lng is not None:
            self.camera.lng = wrap_longitude(lng)
        if lat is not None:
            self.camera.lat = max(-90.0, min(90.0, lat))
        if zoom is not None:
            self.camera.zoom = zoom

    def remove(self) -> None:
        self._markers.clear()
        self.removed = True


class GlobeRenderer:
    """Interactive visitor globe with auto-rotation."""

    def __init__(
        self,
        token_provider: TokenProvider,
        settings: GlobeSettings | None = None,
        sizing: MarkerSizing = DEFAULT_SIZING,
    ):
        self.token_provider = token_provider
        self.settings = settings or GlobeSettings()
        self.sizing = sizing
        self.spin = SpinAutomaton(self.settings)

        self.status = RenderStatus.LOADING
        self.error: str | None = None
        self.surface: GlobeSurface | None = None

        self._pending: list[MarkerSpec] = []
        self._handles: list[int] = []
        self._loop_task: asyncio.Task | None = None

        self._interactions: dict[str, Callable[[], None]] = {
            "mousedown": self.spin.grab,
            "touchstart": self.spin.grab,
            "dragstart": self.spin.grab,
            "mouseup": self.spin.release,
            "touchend": self.spin.release,
            "dragend": self.spin.release,
            "moveend": self.spin.move_end,
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def mount(self) -> None:
        """Provision the map and start spinning.

        A token failure leaves the renderer in the error state; it is not raised.
        """
        if self.surface is not None or self.status == RenderStatus.CLOSED:
            return
        try:
            token = await self.token_provider()
        except (EventSourceError, httpx.HTTPError, OSError) as e:
            logger.error(f"Map initialization failed: {e}")
            self.status = RenderStatus.ERROR
            self.error = MAP_CONFIG_ERROR
            return
        except Exception:
            # Injected token providers may fail in any way; the dashboard stays up
            logger.exception("Map initialization failed")
            self.status = RenderStatus.ERROR
            self.error = MAP_INIT_ERROR
            return

        if self.status == RenderStatus.CLOSED:
            # Unmounted while the token request was in flight
            return

        self.surface = GlobeSurface(token, self.settings)
        self.status = RenderStatus.READY
        self.spin.load_complete()
        self._mount_markers(self._pending)

        if self.settings.animate:
            self._loop_task = asyncio.create_task(self._animate())
        logger.debug("Globe mounted")

    async def unmount(self) -> None:
        """Release the surface. Safe to call more than once."""
        if self.status == RenderStatus.CLOSED:
            return
        self.status = RenderStatus.CLOSED
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.wait({self._loop_task})
            self._loop_task = None
        if self.surface is not None:
            self._teardown_markers()
            self.surface.remove()
            self.surface = None
        self._pending = []
        logger.debug("Globe unmounted")

    async def __aenter__(self) -> "GlobeRenderer":
        await self.mount()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.unmount()

    # -------------------------------------------------------------------------
    # Markers
    # -------------------------------------------------------------------------

    def set_markers(self, specs: list[MarkerSpec]) -> None:
        """Replace every mounted marker with ``specs``."""
        if self.status == RenderStatus.CLOSED:
            return
        self._pending = list(specs)
        if self.surface is None:
            return
        self._teardown_markers()
        self._mount_markers(self._pending)

    def update_locations(self, locations: list[VisitorLocation]) -> None:
        self.set_markers(resolve_markers(locations, self.sizing))

    def on_snapshot(self, snapshot: AggregateSnapshot) -> None:
        """Snapshot listener for the refresh controller."""
        self.update_locations(snapshot.visitor_locations)

    def _teardown_markers(self) -> None:
        for handle in self._handles:
            self.surface.remove_marker(handle)
        self._handles = []

    def _mount_markers(self, specs: list[MarkerSpec]) -> None:
        self._handles = [self.surface.add_marker(spec) for spec in specs]
        logger.debug(f"Mounted {len(self._handles)} markers")

    # -------------------------------------------------------------------------
    # Camera
    # -------------------------------------------------------------------------

    def handle_interaction(self, kind: str) -> None:
        """Route a browser map event (mousedown, dragend, ...) to the spin automaton.

        Raises:
            ValueError: If the event kind is not recognised
        """
        try:
            handler = self._interactions[kind]
        except KeyError:
            raise ValueError(f"Unknown globe interaction {kind!r}") from None
        handler()

    def set_zoom(self, zoom: float) -> None:
        self.spin.set_zoom(zoom)
        if self.surface is not None:
            self.surface.jump_to(zoom=zoom)

    def set_spin_enabled(self, enabled: bool) -> None:
        self.spin.set_spin_enabled(enabled)

    def tick(self, dt: float) -> None:
        """Advance the camera by one animation step of ``dt`` seconds."""
        if self.surface is None:
            return
        lng = self.surface.camera.lng
        new_lng = self.spin.advance(lng, dt)
        if new_lng != lng:
            self.surface.jump_to(lng=new_lng)

    async def _animate(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.settings.frame_interval_seconds
        last = loop.time()
        while True:
            await asyncio.sleep(interval)
            now = loop.time()
            self.tick(now - last)
            last = now

    # -------------------------------------------------------------------------
    # View
    # -------------------------------------------------------------------------

    @property
    def markers(self) -> list[MarkerSpec]:
        return self.surface.markers if self.surface is not None else []

    def view(self) -> GlobeView:
        return GlobeView(
            status=self.status.value,
            error=self.error,
            phase=self.spin.phase.value,
            spin=self.spin.state.model_copy(),
            camera=self.surface.camera.model_copy() if self.surface is not None else None,
            markers=self.markers,
        )
