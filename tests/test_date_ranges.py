"""Tests for dashboard window selection."""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from portfolio_analytics.config import AnalyticsConfig, ConfigurationError, GlobeSettings, ThemeColors
from portfolio_analytics.core.models import DateWindow
from portfolio_analytics.routes.dashboard import _parse_window

NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)


class TestPresetWindows:
    """Test preset window parsing."""

    def test_7d_window(self):
        assert DateWindow.parse("7d").days == 7

    def test_30d_window(self):
        assert DateWindow.parse("30d").days == 30

    def test_90d_window(self):
        assert DateWindow.parse("90d").days == 90

    def test_integer_and_bare_string(self):
        assert DateWindow.parse(30) == DateWindow(days=30)
        assert DateWindow.parse(" 90 ") == DateWindow(days=90)

    def test_default_is_7_days(self):
        assert DateWindow().days == 7
        assert DateWindow().key == "7d"

    def test_window_passthrough(self):
        window = DateWindow(days=30)
        assert DateWindow.parse(window) is window


class TestInvalidWindows:
    """Only 7, 30 and 90 day windows are selectable."""

    @pytest.mark.parametrize("value", ["24h", "14d", "year", "", 0, 365])
    def test_rejected(self, value):
        with pytest.raises(ValueError):
            DateWindow.parse(value)

    def test_model_rejects_other_days(self):
        with pytest.raises(ValidationError):
            DateWindow(days=14)

    def test_route_parser_raises_400(self):
        with pytest.raises(HTTPException) as exc_info:
            _parse_window("14d")

        assert exc_info.value.status_code == 400
        assert "7d, 30d, 90d" in exc_info.value.detail

    def test_route_parser_accepts_valid(self):
        assert _parse_window("90d").days == 90


class TestWindowBounds:
    """Test window start/end computation."""

    def test_utc_bounds(self):
        start, end = DateWindow(days=7).bounds(NOW)

        assert start == datetime(2026, 10, 12, 0, 0, tzinfo=timezone.utc)
        assert end.date() == NOW.date()
        assert end.time() == time.max

    def test_bounds_follow_timezone(self):
        tz = ZoneInfo("Asia/Tokyo")
        # 15:30 UTC is already Oct 20 in Tokyo
        start, end = DateWindow(days=30).bounds(NOW, tz)

        assert end.date() == datetime(2026, 10, 20).date()
        assert start.date() == end.date() - timedelta(days=30)
        assert start.tzinfo is tz


class TestConfigValidation:
    """Test AnalyticsConfig checks."""

    def test_defaults(self):
        config = AnalyticsConfig(supabase_url="https://abc.supabase.co/", supabase_key="key")

        assert config.default_window_days == 7
        assert config.rest_url == "https://abc.supabase.co/rest/v1/analytics_events"
        assert config.token_url == "https://abc.supabase.co/functions/v1/get-mapbox-token"
        assert config.effective_display_name == "abc.supabase.co"

    def test_invalid_default_window(self):
        with pytest.raises(ConfigurationError):
            AnalyticsConfig(supabase_url="https://x", supabase_key="k", default_window_days=14)

    def test_unknown_timezone(self):
        with pytest.raises(ConfigurationError):
            AnalyticsConfig(supabase_url="https://x", supabase_key="k", timezone="Mars/Olympus")

    def test_zoom_thresholds_ordered(self):
        with pytest.raises(ConfigurationError):
            AnalyticsConfig(
                supabase_url="https://x",
                supabase_key="k",
                globe=GlobeSettings(slow_spin_zoom=6, max_spin_zoom=5),
            )

    def test_theme_css_variables(self):
        theme = ThemeColors(marker_core="#fc0", fog_high="rgb(40, 40, 60)")
        config = AnalyticsConfig(supabase_url="https://x", supabase_key="k", theme_colors=theme)

        lines = [line.strip() for line in config.theme_css.splitlines()]
        assert lines == ["--globe-marker-core: #fc0;", "--globe-fog-high: rgb(40, 40, 60);"]

    def test_empty_theme_has_no_css(self):
        config = AnalyticsConfig(supabase_url="https://x", supabase_key="k", theme_colors=ThemeColors())
        assert config.theme_css is None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
        monkeypatch.setenv("ANALYTICS_TIMEZONE", "Europe/Berlin")

        config = AnalyticsConfig.from_env(live=False)

        assert config.supabase_key == "anon"
        assert config.timezone == "Europe/Berlin"
        assert config.live is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
