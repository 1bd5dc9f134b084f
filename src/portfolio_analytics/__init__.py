"""
Live visitor analytics and globe for a portfolio site's admin dashboard.

Usage:
    from fastapi import FastAPI
    from portfolio_analytics import setup_analytics

    analytics = setup_analytics(
        supabase_url="https://your-project.supabase.co",
        supabase_key="your-anon-key",
    )

    app = FastAPI(lifespan=analytics.lifespan)
    app.include_router(analytics.dashboard_router, prefix="/admin/analytics")
"""

from contextlib import asynccontextmanager

from .config import AnalyticsConfig, GlobeSettings, ThemeColors
from .core.client import EventSourceClient
from .core.models import AggregateSnapshot, DateWindow, MarkerSpec, RawEvent
from .core.refresh import EventSource, LiveRefreshController
from .globe.renderer import GlobeRenderer, TokenProvider
from .routes import create_dashboard_router

__version__ = "0.1.0"
__all__ = [
    "setup_analytics", "Analytics", "AnalyticsConfig", "GlobeSettings", "ThemeColors",
    "EventSourceClient", "LiveRefreshController", "GlobeRenderer",
    "RawEvent", "AggregateSnapshot", "DateWindow", "MarkerSpec",
]


class Analytics:
    """Wires the event source, refresh controller, globe and routes together."""

    def __init__(
        self,
        config: AnalyticsConfig,
        source: EventSource | None = None,
        token_provider: TokenProvider | None = None,
    ):
        self.config = config
        self.client = source or EventSourceClient(config)
        self.controller = LiveRefreshController.from_config(self.client, config)
        self.globe = GlobeRenderer(
            token_provider or self.client.get_map_access_token,
            settings=config.globe,
        )
        self.controller.add_listener(self.globe.on_snapshot)
        self.dashboard_router = create_dashboard_router(config, self.controller, self.globe)

    async def start(self) -> None:
        """Mount the globe and load the default window."""
        await self.globe.mount()
        await self.controller.start()

    async def stop(self) -> None:
        """Tear down the subscription, fetches and the globe."""
        await self.controller.close()
        await self.globe.unmount()

    @asynccontextmanager
    async def lifespan(self, app):
        """FastAPI lifespan hook."""
        await self.start()
        try:
            yield
        finally:
            await self.stop()


def setup_analytics(
    supabase_url: str,
    supabase_key: str,
    **options,
) -> Analytics:
    """
    Set up the analytics dashboard.

    Args:
        supabase_url: Supabase project URL
        supabase_key: Key sent as apikey/bearer for the events table and token function
        **options: Any other AnalyticsConfig field (timezone, live, globe, ...)

    Returns:
        Analytics instance with dashboard_router and lifespan
    """
    config = AnalyticsConfig(supabase_url=supabase_url, supabase_key=supabase_key, **options)
    return Analytics(config)
