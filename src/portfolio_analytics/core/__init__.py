"""
Core analytics module.

Contains the data models, the event source client, the aggregation engine,
the live refresh controller and the marker resolver.
"""

from .aggregation import aggregate
from .client import EventSourceClient, EventSourceError, InsertWatcher, MapTokenError
from .markers import MarkerSizing, resolve_markers, visits_label
from .models import (
    AggregateSnapshot,
    BreakdownEntry,
    CameraState,
    DailyViews,
    DateWindow,
    DeviceType,
    EventMetadata,
    GlobeView,
    MarkerPopup,
    MarkerSpec,
    PageViewCount,
    RawEvent,
    RecentView,
    SpinState,
    VisitorLocation,
)
from .refresh import LiveRefreshController, WindowStatus

__all__ = [
    "RawEvent", "EventMetadata", "DeviceType", "DateWindow",
    "AggregateSnapshot", "BreakdownEntry", "DailyViews", "PageViewCount",
    "RecentView", "VisitorLocation",
    "MarkerSpec", "MarkerPopup", "SpinState", "CameraState", "GlobeView",
    "aggregate", "resolve_markers", "visits_label", "MarkerSizing",
    "EventSourceClient", "EventSourceError", "MapTokenError", "InsertWatcher",
    "LiveRefreshController", "WindowStatus",
]
