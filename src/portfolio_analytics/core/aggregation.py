"""
In-memory aggregation of raw events into dashboard views.

Every pass starts from scratch: the snapshot is a pure function of the event
list for the selected window. Counting always completes before any table is
ranked or truncated, and ties keep first-seen order so equal counts render
the same way on every refresh.
"""
from collections.abc import Callable, Iterable
from datetime import timezone, tzinfo

from .models import (
    AggregateSnapshot,
    BreakdownEntry,
    DailyViews,
    PageViewCount,
    RawEvent,
    RecentView,
    VisitorLocation,
)

TOP_BROWSERS = 5
TOP_COUNTRIES = 10
TOP_PAGES = 10
RECENT_LIMIT = 20

UNKNOWN = "Unknown"
UNKNOWN_DEVICE = "unknown"


def _text(value: str | None, default: str) -> str:
    if value is None:
        return default
    value = value.strip()
    return value or default


def _device(event: RawEvent) -> str:
    return _text(event.metadata.device_type, UNKNOWN_DEVICE).lower()


def _browser(event: RawEvent) -> str:
    return _text(event.metadata.browser, UNKNOWN)


def _country(event: RawEvent) -> str:
    return _text(event.metadata.country, UNKNOWN)


def _city(event: RawEvent) -> str:
    return _text(event.metadata.city, UNKNOWN)


def _page(event: RawEvent) -> str:
    return _text(event.page_path, "/")


def _count_by(events: Iterable[RawEvent], key: Callable[[RawEvent], str]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for event in events:
        k = key(event)
        counts[k] = counts.get(k, 0) + 1
    return counts


def _ranked(counts: dict[str, int], limit: int | None = None) -> list[tuple[str, int]]:
    """Sort by descending count; sorted() is stable so first-seen wins ties."""
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return ranked if limit is None else ranked[:limit]


def _breakdown(
    counts: dict[str, int],
    limit: int | None = None,
    label: Callable[[str], str] = str,
) -> list[BreakdownEntry]:
    return [
        BreakdownEntry(key=k, count=c, label=label(k))
        for k, c in _ranked(counts, limit)
    ]


def _daily_views(events: list[RawEvent], tz: tzinfo) -> list[DailyViews]:
    # Days without events are not synthesized
    counts: dict = {}
    for event in events:
        day = event.created_at.astimezone(tz).date()
        counts[day] = counts.get(day, 0) + 1
    return [
        DailyViews(date=day, label=day.strftime("%b %d"), views=views)
        for day, views in sorted(counts.items())
    ]


def _recent_views(events: list[RawEvent]) -> list[RecentView]:
    newest_first = sorted(events, key=lambda e: e.created_at, reverse=True)
    return [
        RecentView(
            id=event.id,
            page=_page(event),
            device=_device(event),
            browser=_browser(event),
            country=_country(event),
            city=_city(event),
            referrer=_text(event.referrer, "Direct"),
            time=event.created_at,
        )
        for event in newest_first[:RECENT_LIMIT]
    ]


def _visitor_locations(events: list[RawEvent]) -> list[VisitorLocation]:
    locations: dict[tuple[str, str], VisitorLocation] = {}
    for event in events:
        lat, lon = event.metadata.lat, event.metadata.lon
        if lat is None or lon is None or (lat == 0 and lon == 0):
            continue
        key = (_city(event), _country(event))
        existing = locations.get(key)
        if existing is not None:
            # First-seen coordinates are kept
            existing.count += 1
            continue
        locations[key] = VisitorLocation(
            city=key[0],
            country=key[1],
            country_code=_text(event.metadata.country_code, "XX"),
            lat=lat,
            lon=lon,
            count=1,
        )
    return list(locations.values())


def aggregate(events: list[RawEvent], tz: tzinfo = timezone.utc) -> AggregateSnapshot:
    """Compute the full dashboard snapshot for a window's events.

    Args:
        events: Raw events for the selected window, in any order
        tz: Time zone used to bucket events into calendar days

    Returns:
        A new AggregateSnapshot; empty input yields zero counts and empty tables

    Raises:
        TypeError: If events is not a list or tuple
    """
    if not isinstance(events, (list, tuple)):
        raise TypeError(f"aggregate() expects a list of RawEvent, got {type(events).__name__}")
    events = list(events)

    if not events:
        return AggregateSnapshot()

    country_counts = _count_by(events, _country)
    page_counts = _count_by(events, _page)

    return AggregateSnapshot(
        total_views=len(events),
        unique_pages=len(page_counts),
        unique_countries=sum(1 for c in country_counts if c != UNKNOWN),
        device_breakdown=_breakdown(
            _count_by(events, _device), label=lambda k: k[:1].upper() + k[1:]
        ),
        browser_breakdown=_breakdown(_count_by(events, _browser), TOP_BROWSERS),
        country_breakdown=_breakdown(country_counts, TOP_COUNTRIES),
        daily_views=_daily_views(events, tz),
        page_views=[
            PageViewCount(page=page, views=views)
            for page, views in _ranked(page_counts, TOP_PAGES)
        ],
        recent_views=_recent_views(events),
        visitor_locations=_visitor_locations(events),
    )
