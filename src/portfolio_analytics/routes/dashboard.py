"""
Dashboard routes for Portfolio Analytics.

JSON endpoints drive the live dashboard script; Jinja2 partials render the
stat cards and the globe panel for HTMX swaps.
"""

import logging
from datetime import datetime
from pathlib import Path

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from pydantic_core import to_jsonable_python

from ..config import AnalyticsConfig
from ..core.models import DateWindow, DeviceType
from ..core.refresh import LiveRefreshController
from ..globe.renderer import GlobeRenderer

logger = logging.getLogger(__name__)


def _parse_window(value: str) -> DateWindow:
    """Parse a window key (7d, 30d, 90d) into a DateWindow.

    Raises:
        HTTPException: If the window is not selectable
    """
    try:
        return DateWindow.parse(value)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail="Invalid window. Use one of 7d, 30d, 90d",
        ) from None


def _format_time(value: datetime | None) -> str:
    """Format a timestamp like "Oct 19, 14:05"."""
    if value is None:
        return "-"
    return value.strftime("%b %d, %H:%M")


def _pydantic_json(value):
    """Jinja filter: models, lists of models and datetimes to plain JSON data."""
    return to_jsonable_python(value)


def create_dashboard_router(
    config: AnalyticsConfig,
    controller: LiveRefreshController,
    globe: GlobeRenderer,
) -> APIRouter:
    """Create dashboard router bound to a controller and globe.

    Args:
        config: Analytics configuration
        controller: Live refresh controller holding the current snapshot
        globe: Globe renderer fed by the controller
    """
    router = APIRouter(tags=["analytics"])

    template_dir = Path(__file__).parent.parent / "templates"
    templates = Jinja2Templates(directory=str(template_dir))
    templates.env.filters["format_time"] = _format_time
    templates.env.filters["pydantic_json"] = _pydantic_json

    def _snapshot_payload() -> dict:
        snapshot = controller.snapshot
        return {
            "window": controller.window.key,
            "status": controller.status.value,
            "live": controller.live,
            "error": controller.error,
            "updated_at": controller.updated_at.isoformat() if controller.updated_at else None,
            "cards": {
                device.value: {
                    "views": snapshot.device_views(device.value),
                    "share": snapshot.device_share(device.value),
                }
                for device in (DeviceType.DESKTOP, DeviceType.MOBILE)
            },
            "snapshot": snapshot.model_dump(mode="json"),
        }

    def _get_common_context() -> dict:
        return {
            "site_name": config.effective_display_name,
            "window": controller.window,
            "live": controller.live,
            "status": controller.status.value,
            "error": controller.error,
        }

    # -------------------------------------------------------------------------
    # Snapshot Routes
    # -------------------------------------------------------------------------

    @router.get("/api/snapshot")
    async def get_snapshot():
        """Current aggregate snapshot with fetch status."""
        return _snapshot_payload()

    @router.post("/api/window")
    async def set_window(period: str = Query(..., alias="range", description="7d, 30d or 90d")):
        """Select the dashboard window and load it."""
        window = _parse_window(period)
        await controller.set_window(window)
        await controller.wait_idle()
        return _snapshot_payload()

    @router.post("/api/refresh")
    async def refresh():
        """Manual refresh of the current window."""
        await controller.refresh()
        await controller.wait_idle()
        return _snapshot_payload()

    @router.post("/api/live")
    async def set_live(enabled: bool | None = Query(None, description="Omit to toggle")):
        """Switch live updates on or off."""
        if enabled is None:
            controller.toggle_live()
        else:
            controller.set_live(enabled)
        return {"live": controller.live, "subscribed": controller.is_subscribed}

    # -------------------------------------------------------------------------
    # Globe Routes
    # -------------------------------------------------------------------------

    @router.get("/api/globe")
    async def get_globe():
        """Globe status, camera, spin state and mounted markers."""
        return globe.view().model_dump(mode="json")

    @router.get("/api/markers")
    async def get_markers():
        return _pydantic_json(globe.markers)

    @router.post("/api/globe/events/{kind}")
    async def globe_event(kind: str, zoom: float | None = Query(None)):
        """Forward a map interaction (mousedown, mouseup, moveend, ...)."""
        if zoom is not None:
            globe.set_zoom(zoom)
        try:
            globe.handle_interaction(kind)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from None
        return {"phase": globe.spin.phase.value, "spin": globe.spin.state.model_dump()}

    # -------------------------------------------------------------------------
    # Partials
    # -------------------------------------------------------------------------

    @router.get("/partials/overview", response_class=HTMLResponse)
    async def overview_partial(request: Request):
        """HTMX partial with stat cards and breakdown tables."""
        context = _get_common_context()
        context["snapshot"] = controller.snapshot
        return templates.TemplateResponse(request, "partials/overview.html", context)

    @router.get("/partials/globe", response_class=HTMLResponse)
    async def globe_partial(request: Request):
        """HTMX partial for the globe panel (error panel when the map failed)."""
        context = _get_common_context()
        context["globe"] = globe.view()
        context["theme_css"] = config.theme_css
        context["settings"] = config.globe
        return templates.TemplateResponse(request, "partials/globe.html", context)

    return router
