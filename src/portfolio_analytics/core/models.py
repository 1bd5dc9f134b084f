"""
Pydantic models for visitor analytics data.
"""
import math
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..config import VALID_WINDOW_DAYS

# =============================================================================
# Raw Data Models
# =============================================================================

class DeviceType(str, Enum):
    """Device category recorded by the tracker."""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


class EventMetadata(BaseModel):
    """Free-form attribute bag stored with each event (``event_data``).

    Known keys are typed; anything else the tracker sends is kept as extra.
    """
    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    # Technology
    device_type: str | None = Field(
        None, validation_alias=AliasChoices("device_type", "deviceType")
    )
    browser: str | None = None
    screen_width: int | None = None
    screen_height: int | None = None
    language: str | None = None

    # Geography
    country: str | None = None
    country_code: str | None = Field(
        None, validation_alias=AliasChoices("country_code", "countryCode")
    )
    region: str | None = None
    city: str | None = None
    lat: float | None = None
    lon: float | None = None

    @field_validator(
        "device_type", "browser", "language", "country", "country_code", "region", "city",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("lat", "lon", mode="before")
    @classmethod
    def _coerce_coordinate(cls, value: Any) -> float | None:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return number if math.isfinite(number) else None

    @field_validator("screen_width", "screen_height", mode="before")
    @classmethod
    def _coerce_dimension(cls, value: Any) -> int | None:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None


class RawEvent(BaseModel):
    """A single recorded visit action. Read-only once stored."""
    model_config = ConfigDict(frozen=True)

    id: str
    event_type: str = "page_view"
    page_path: str | None = None
    referrer: str | None = None
    user_agent: str | None = None
    created_at: datetime
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RawEvent":
        """Build an event from an ``analytics_events`` row."""
        event_data = row.get("event_data")
        if not isinstance(event_data, dict):
            event_data = {}
        return cls(
            id=str(row["id"]),
            event_type=row.get("event_type") or "page_view",
            page_path=row.get("page_path"),
            referrer=row.get("referrer"),
            user_agent=row.get("user_agent"),
            created_at=row["created_at"],
            metadata=EventMetadata.model_validate(event_data),
        )


# =============================================================================
# Window
# =============================================================================

class DateWindow(BaseModel):
    """Selected dashboard window: the last 7, 30 or 90 days."""
    model_config = ConfigDict(frozen=True)

    days: Literal[7, 30, 90] = 7

    @classmethod
    def parse(cls, value: "int | str | DateWindow") -> "DateWindow":
        """Accept 7 / "7" / "7d" style values.

        Raises:
            ValueError: If the value is not one of the selectable windows
        """
        if isinstance(value, DateWindow):
            return value
        raw = str(value).strip().lower().removesuffix("d")
        try:
            days = int(raw)
        except ValueError:
            raise ValueError(f"Invalid window {value!r}. Use one of 7d, 30d, 90d") from None
        if days not in VALID_WINDOW_DAYS:
            raise ValueError(f"Invalid window {value!r}. Use one of 7d, 30d, 90d")
        return cls(days=days)

    @property
    def key(self) -> str:
        return f"{self.days}d"

    def bounds(self, now: datetime, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
        """Start of day ``days`` ago through end of today, in ``tz``."""
        local_now = now.astimezone(tz)
        first_day = local_now.date() - timedelta(days=self.days)
        start = datetime.combine(first_day, time.min, tzinfo=tz)
        end = datetime.combine(local_now.date(), time.max, tzinfo=tz)
        return start, end


# =============================================================================
# Aggregated Stats Models
# =============================================================================

class BreakdownEntry(BaseModel):
    """One row of a count table (device, browser, country)."""
    key: str
    count: int
    label: str


class DailyViews(BaseModel):
    """Views for a single calendar day."""
    date: date
    label: str  # "Oct 19"
    views: int


class PageViewCount(BaseModel):
    """Views for a single page path."""
    page: str
    views: int


class RecentView(BaseModel):
    """A recent event projected for the activity table."""
    id: str
    page: str
    device: str
    browser: str
    country: str
    city: str
    referrer: str
    time: datetime


class VisitorLocation(BaseModel):
    """A (city, country) location with its accumulated visit count."""
    city: str
    country: str
    country_code: str
    lat: float
    lon: float
    count: int


class AggregateSnapshot(BaseModel):
    """All derived views for one window. Replaced wholesale on every pass."""
    total_views: int = 0
    unique_pages: int = 0
    unique_countries: int = 0

    device_breakdown: list[BreakdownEntry] = []
    browser_breakdown: list[BreakdownEntry] = []  # Top 5
    country_breakdown: list[BreakdownEntry] = []  # Top 10

    daily_views: list[DailyViews] = []
    page_views: list[PageViewCount] = []  # Top 10
    recent_views: list[RecentView] = []  # Newest 20, newest first
    visitor_locations: list[VisitorLocation] = []

    def device_views(self, device: str) -> int:
        """Views recorded for one device type (0 if absent)."""
        device = device.lower()
        for entry in self.device_breakdown:
            if entry.key == device:
                return entry.count
        return 0

    def device_share(self, device: str) -> int:
        """Whole-number percentage of traffic from one device type."""
        if self.total_views == 0:
            return 0
        return round(self.device_views(device) / self.total_views * 100)


# =============================================================================
# Globe Models
# =============================================================================

class MarkerPopup(BaseModel):
    """Popup content shown when a marker is clicked."""
    city: str
    country: str
    count: int
    visits_label: str  # "1 visit", "4 visits"


class MarkerSpec(BaseModel):
    """A render-ready globe marker."""
    model_config = ConfigDict(frozen=True)

    key: str
    lng: float
    lat: float
    size: int  # Diameter in pixels
    popup: MarkerPopup


class SpinState(BaseModel):
    """Transient rotation state owned by the globe renderer."""
    user_interacting: bool = False
    spin_enabled: bool = True
    zoom: float = 1.5


class CameraState(BaseModel):
    """Globe camera position."""
    lng: float
    lat: float
    zoom: float
    pitch: float


class GlobeView(BaseModel):
    """Serialisable view of the globe for the dashboard."""
    status: str  # loading, ready, error, closed
    error: str | None = None
    phase: str
    spin: SpinState
    camera: CameraState | None = None
    markers: list[MarkerSpec] = []
