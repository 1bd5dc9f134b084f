"""
Auto-rotation state machine for the visitor globe.

The globe spins slowly westward until the user grabs it. Pressing or
dragging stops the spin at once; releasing hands control straight back to
the automaton. Rotation slows as the camera zooms past ``slow_spin_zoom``
and stops entirely at ``max_spin_zoom`` so dense marker clusters can be read.
"""
import logging
from enum import Enum

from ..config import GlobeSettings
from ..core.models import SpinState

logger = logging.getLogger(__name__)


class SpinPhase(str, Enum):
    LOADING = "loading"
    SPINNING = "spinning"
    USER_CONTROLLED = "user_controlled"
    SETTLING = "settling"
    STOPPED = "stopped"


class SpinAutomaton:
    """Tracks who controls the camera and how fast it should turn."""

    def __init__(self, settings: GlobeSettings | None = None):
        self.settings = settings or GlobeSettings()
        self.state = SpinState(
            spin_enabled=self.settings.spin_enabled,
            zoom=self.settings.initial_zoom,
        )
        self.phase = SpinPhase.LOADING

    def _enter(self, phase: SpinPhase) -> None:
        if phase != self.phase:
            logger.debug(f"Spin {self.phase.value} -> {phase.value}")
        self.phase = phase

    def _resume(self) -> None:
        self._enter(SpinPhase.SETTLING)
        self._enter(SpinPhase.SPINNING if self.state.spin_enabled else SpinPhase.STOPPED)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def load_complete(self) -> None:
        self._enter(SpinPhase.SPINNING if self.state.spin_enabled else SpinPhase.STOPPED)

    def grab(self) -> None:
        """pointer down / touch start / drag start."""
        self.state.user_interacting = True
        if self.phase != SpinPhase.LOADING:
            self._enter(SpinPhase.USER_CONTROLLED)

    def release(self) -> None:
        """pointer up / touch end / drag end."""
        self.state.user_interacting = False
        if self.phase != SpinPhase.LOADING:
            self._resume()

    def move_end(self) -> None:
        """A camera move finished; resume unless the user is still holding on."""
        if self.phase == SpinPhase.LOADING or self.state.user_interacting:
            return
        self._resume()

    def set_spin_enabled(self, enabled: bool) -> None:
        self.state.spin_enabled = enabled
        if self.phase == SpinPhase.LOADING:
            return
        if not enabled and self.phase == SpinPhase.SPINNING:
            self._enter(SpinPhase.STOPPED)
        elif enabled and self.phase == SpinPhase.STOPPED:
            self._enter(SpinPhase.SPINNING)

    def set_zoom(self, zoom: float) -> None:
        self.state.zoom = zoom

    # -------------------------------------------------------------------------
    # Motion
    # -------------------------------------------------------------------------

    @property
    def is_spinning(self) -> bool:
        return self.phase == SpinPhase.SPINNING

    def angular_velocity(self) -> float:
        """Degrees of longitude per second the camera should advance."""
        if not self.is_spinning or self.state.user_interacting:
            return 0.0
        s = self.settings
        zoom = self.state.zoom
        if zoom >= s.max_spin_zoom:
            return 0.0
        rate = s.degrees_per_second
        if zoom > s.slow_spin_zoom:
            rate *= (s.max_spin_zoom - zoom) / (s.max_spin_zoom - s.slow_spin_zoom)
        return rate

    def advance(self, lng: float, dt: float) -> float:
        """New camera longitude after ``dt`` seconds. Spin runs westward."""
        velocity = self.angular_velocity()
        if velocity == 0.0:
            return lng
        return wrap_longitude(lng - velocity * dt)


def wrap_longitude(lng: float) -> float:
    """Normalize a longitude to [-180, 180)."""
    return (lng + 180.0) % 360.0 - 180.0
