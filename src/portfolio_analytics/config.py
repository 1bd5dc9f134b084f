"""
Configuration for Portfolio Analytics.
"""
import logging
import os
from dataclasses import dataclass, field, fields
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

# Selectable dashboard windows, in days
VALID_WINDOW_DAYS = (7, 30, 90)


class ConfigurationError(ValueError):
    """Raised when configuration values are inconsistent."""
    pass


@dataclass
class ThemeColors:
    """Theme color overrides for the globe panel.

    All colors should be valid CSS color values (hex, rgb, hsl, etc.).

    Usage:
        theme = ThemeColors(
            marker_core="hsl(200, 100%, 60%)",
            fog="rgb(10, 10, 20)",
        )
        config = AnalyticsConfig(..., theme_colors=theme)
    """

    # Markers
    marker_core: str | None = None      # Gradient center (hsl(45, 100%, 60%))
    marker_edge: str | None = None      # Gradient edge (hsl(45, 100%, 40%))
    marker_border: str | None = None    # Ring (rgba(255, 255, 255, 0.8))
    marker_glow: str | None = None      # Shadow (rgba(255, 200, 50, 0.5))

    # Atmosphere
    fog: str | None = None              # Fog color (rgb(20, 20, 30))
    fog_high: str | None = None         # High fog color (rgb(40, 40, 60))

    # Panels
    error_text: str | None = None       # Error panel text

    def to_css(self) -> str:
        """Declarations for every color that is set, one per line.

        Field names map to ``--globe-*`` variables (``fog_high`` -> ``--globe-fog-high``).
        """
        return "\n            ".join(
            f"--globe-{f.name.replace('_', '-')}: {getattr(self, f.name)};"
            for f in fields(self)
            if getattr(self, f.name) is not None
        )


@dataclass
class GlobeSettings:
    """Camera and auto-rotation settings for the visitor globe."""

    # Camera defaults
    initial_lng: float = 0.0
    initial_lat: float = 20.0
    initial_zoom: float = 1.5
    pitch: float = 20.0
    map_style: str = "mapbox://styles/mapbox/dark-v11"

    # Auto-rotation
    seconds_per_revolution: float = 180.0
    slow_spin_zoom: float = 3.0  # Rotation slows above this zoom
    max_spin_zoom: float = 5.0   # Rotation stops at or above this zoom
    spin_enabled: bool = True

    # Animation loop
    animate: bool = True
    frame_interval_seconds: float = 1 / 30

    @property
    def degrees_per_second(self) -> float:
        """Base angular rate of the auto-rotation."""
        return 360.0 / self.seconds_per_revolution

    def validate(self) -> None:
        if self.seconds_per_revolution <= 0:
            raise ConfigurationError("seconds_per_revolution must be positive")
        if self.slow_spin_zoom >= self.max_spin_zoom:
            raise ConfigurationError(
                f"slow_spin_zoom ({self.slow_spin_zoom}) must be below "
                f"max_spin_zoom ({self.max_spin_zoom})"
            )
        if self.frame_interval_seconds <= 0:
            raise ConfigurationError("frame_interval_seconds must be positive")


@dataclass
class AnalyticsConfig:
    """Configuration for a single analytics dashboard instance."""

    # Required
    supabase_url: str  # Project URL (e.g., "https://abc.supabase.co")
    supabase_key: str  # Anon/service key sent as apikey + bearer

    # Backend names
    events_table: str = "analytics_events"
    token_function: str = "get-mapbox-token"

    # Display settings
    display_name: str | None = None
    timezone: str = "UTC"  # Calendar-day bucketing for daily views

    # Refresh behaviour
    default_window_days: int = 7
    live: bool = True
    poll_interval_seconds: float = 5.0
    request_timeout_seconds: float = 30.0
    aggregate_offload_threshold: int = 5000  # Events before aggregating off-loop

    # Globe
    globe: GlobeSettings = field(default_factory=GlobeSettings)
    theme_colors: ThemeColors | None = None

    @property
    def rest_url(self) -> str:
        """PostgREST endpoint for the events table."""
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{self.events_table}"

    @property
    def token_url(self) -> str:
        """Edge function that hands out the map access token."""
        return f"{self.supabase_url.rstrip('/')}/functions/v1/{self.token_function}"

    @property
    def tzinfo(self) -> ZoneInfo:
        """Time zone used for calendar-day bucketing."""
        return ZoneInfo(self.timezone)

    @property
    def effective_display_name(self) -> str:
        """Get display name, falling back to the project host."""
        return self.display_name or self.supabase_url.split("//")[-1].rstrip("/")

    @property
    def theme_css(self) -> str | None:
        """Generate CSS variable overrides from theme_colors.

        Returns None if no theme_colors are configured.
        """
        if self.theme_colors is None:
            return None
        css = self.theme_colors.to_css()
        return css if css else None

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.default_window_days not in VALID_WINDOW_DAYS:
            raise ConfigurationError(
                f"default_window_days must be one of {VALID_WINDOW_DAYS}, "
                f"got {self.default_window_days}"
            )
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError("poll_interval_seconds must be positive")
        self.globe.validate()
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown timezone {self.timezone!r}") from None
        if not self.supabase_key:
            logger.warning(f"{self.effective_display_name}: no API key configured")

    @classmethod
    def from_env(cls, **overrides) -> "AnalyticsConfig":
        """Build a config from SUPABASE_URL / SUPABASE_ANON_KEY."""
        values = {
            "supabase_url": os.environ["SUPABASE_URL"],
            "supabase_key": os.environ.get("SUPABASE_ANON_KEY", ""),
        }
        tz = os.environ.get("ANALYTICS_TIMEZONE")
        if tz:
            values["timezone"] = tz
        values.update(overrides)
        return cls(**values)
