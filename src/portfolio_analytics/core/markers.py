"""
Resolve aggregated visitor locations into render-ready globe markers.
"""
import logging
from dataclasses import dataclass

from .models import MarkerPopup, MarkerSpec, VisitorLocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarkerSizing:
    """Marker diameter: base + per_visit * count, clamped to max_size."""
    base_size: int = 12
    per_visit: int = 2
    max_size: int = 32

    def size_for(self, count: int) -> int:
        return min(self.base_size + count * self.per_visit, self.max_size)


DEFAULT_SIZING = MarkerSizing()


def visits_label(count: int) -> str:
    """Pluralized visit count ("1 visit", "3 visits")."""
    return f"{count} visit{'s' if count != 1 else ''}"


def resolve_markers(
    locations: list[VisitorLocation],
    sizing: MarkerSizing = DEFAULT_SIZING,
) -> list[MarkerSpec]:
    """Map visitor locations to marker specs.

    Locations at 0,0 are unresolved geo lookups. The aggregation step drops
    them already; any that arrive here are skipped, never drawn at the origin.
    """
    markers: list[MarkerSpec] = []
    for loc in locations:
        if loc.lat == 0 and loc.lon == 0:
            logger.warning(f"Skipping unresolved location {loc.city}, {loc.country}")
            continue
        markers.append(
            MarkerSpec(
                key=f"{loc.city}-{loc.country}",
                lng=loc.lon,
                lat=loc.lat,
                size=sizing.size_for(loc.count),
                popup=MarkerPopup(
                    city=loc.city,
                    country=loc.country,
                    count=loc.count,
                    visits_label=visits_label(loc.count),
                ),
            )
        )
    return markers
