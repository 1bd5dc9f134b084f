"""Tests for the Supabase event source client."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from portfolio_analytics.config import AnalyticsConfig
from portfolio_analytics.core.client import (
    PAGE_SIZE,
    EventSourceClient,
    EventSourceError,
    InsertWatcher,
    MapTokenError,
)
from portfolio_analytics.core.models import DateWindow

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _config(**overrides) -> AnalyticsConfig:
    return AnalyticsConfig(
        supabase_url="https://test.supabase.co",
        supabase_key="test-key",
        **overrides,
    )


def _row(n: int, **event_data) -> dict:
    return {
        "id": f"row-{n}",
        "event_type": "page_view",
        "page_path": "/",
        "referrer": None,
        "user_agent": "Mozilla/5.0",
        "created_at": "2026-10-19T11:00:00+00:00",
        "event_data": event_data,
    }


def _client(handler) -> EventSourceClient:
    return EventSourceClient(_config(), transport=httpx.MockTransport(handler))


class TestFetchEvents:
    """Test fetch_events against a mocked PostgREST endpoint."""

    def test_parses_rows(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[
                _row(1, device_type="mobile", browser="Chrome", country="Japan", lat=35.68, lon=139.69),
                _row(2, deviceType="desktop", countryCode="DE"),
            ])

        events = run_async(_client(handler).fetch_events(DateWindow(days=7), now=NOW))

        assert [e.id for e in events] == ["row-1", "row-2"]
        assert events[0].metadata.device_type == "mobile"
        assert events[0].metadata.lat == 35.68
        assert events[1].metadata.device_type == "desktop"
        assert events[1].metadata.country_code == "DE"

    def test_query_params_and_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, json=[])

        run_async(_client(handler).fetch_events(DateWindow(days=30), now=NOW))

        request = seen["request"]
        assert request.url.path == "/rest/v1/analytics_events"
        assert request.headers["apikey"] == "test-key"
        assert request.headers["Authorization"] == "Bearer test-key"
        created = request.url.params.get_list("created_at")
        assert created[0].startswith("gte.2026-09-19T00:00:00")
        assert created[1].startswith("lte.2026-10-19T23:59:59")
        assert request.url.params["order"] == "created_at.desc"

    def test_pages_through_results(self):
        offsets = []

        def handler(request: httpx.Request) -> httpx.Response:
            offset = int(request.url.params["offset"])
            offsets.append(offset)
            count = PAGE_SIZE if offset == 0 else 3
            return httpx.Response(200, json=[_row(offset + i) for i in range(count)])

        events = run_async(_client(handler).fetch_events(DateWindow(days=90), now=NOW))

        assert offsets == [0, PAGE_SIZE]
        assert len(events) == PAGE_SIZE + 3

    def test_malformed_rows_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            bad = {"id": "no-timestamp", "event_data": {}}
            odd = _row(2)
            odd["event_data"] = "not an object"
            return httpx.Response(200, json=[_row(1), bad, odd])

        events = run_async(_client(handler).fetch_events(DateWindow(), now=NOW))

        assert [e.id for e in events] == ["row-1", "row-2"]
        assert events[1].metadata.browser is None

    def test_garbage_coordinates_become_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[_row(1, lat="n/a", lon=None, screen_width="wide")])

        event = run_async(_client(handler).fetch_events(DateWindow(), now=NOW))[0]

        assert event.metadata.lat is None
        assert event.metadata.lon is None
        assert event.metadata.screen_width is None

    def test_http_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"message": "boom"})

        with pytest.raises(httpx.HTTPStatusError):
            run_async(_client(handler).fetch_events(DateWindow(), now=NOW))

    def test_non_list_payload_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": "PGRST000"})

        with pytest.raises(EventSourceError):
            run_async(_client(handler).fetch_events(DateWindow(), now=NOW))

    def test_non_json_body_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>502 Bad Gateway</html>")

        with pytest.raises(EventSourceError):
            run_async(_client(handler).fetch_events(DateWindow(), now=NOW))


class TestLatestEventId:
    """Test latest_event_id."""

    def test_returns_newest_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["limit"] == "1"
            return httpx.Response(200, json=[{"id": 42}])

        assert run_async(_client(handler).latest_event_id()) == "42"

    def test_empty_table(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[])

        assert run_async(_client(handler).latest_event_id()) is None

    @pytest.mark.parametrize("body", [
        [{"created_at": "2026-10-19T11:00:00+00:00"}],
        [{"id": None}],
        ["row-1"],
    ])
    def test_bad_row_shape(self, body):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=body)

        with pytest.raises(EventSourceError):
            run_async(_client(handler).latest_event_id())

    def test_non_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        with pytest.raises(EventSourceError):
            run_async(_client(handler).latest_event_id())


class TestMapToken:
    """Test get_map_access_token."""

    def test_returns_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/functions/v1/get-mapbox-token"
            return httpx.Response(200, content=json.dumps({"token": "pk.test"}))

        assert run_async(_client(handler).get_map_access_token()) == "pk.test"

    def test_missing_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        with pytest.raises(MapTokenError):
            run_async(_client(handler).get_map_access_token())

    def test_server_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="error")

        with pytest.raises(MapTokenError):
            run_async(_client(handler).get_map_access_token())

    def test_token_error_is_event_source_error(self):
        assert issubclass(MapTokenError, EventSourceError)


class TestInsertWatcher:
    """Test the polling insert subscription."""

    def _client_with_ids(self, ids: list):
        """Client whose latest_event_id walks through ids, then repeats the last."""
        client = EventSourceClient(_config(poll_interval_seconds=0.001))
        remaining = list(ids)

        async def latest():
            if len(remaining) > 1:
                return remaining.pop(0)
            return remaining[0]

        client.latest_event_id = AsyncMock(side_effect=latest)
        return client

    def test_fires_on_new_rows(self):
        async def scenario():
            client = self._client_with_ids(["a", "a", "b", "b", "c"])
            on_insert = MagicMock()
            unsubscribe = client.subscribe_to_inserts(on_insert)
            await asyncio.sleep(0.1)
            unsubscribe()
            return on_insert.call_count

        assert run_async(scenario()) == 2

    def test_no_callbacks_after_stop(self):
        async def scenario():
            client = self._client_with_ids(["a"])
            on_insert = MagicMock()
            watcher = InsertWatcher(client, on_insert, interval=0.001)
            watcher.start()
            await asyncio.sleep(0.01)
            watcher.stop()
            assert watcher.active is False
            client.latest_event_id.side_effect = None
            client.latest_event_id.return_value = "z"
            await asyncio.sleep(0.05)
            return on_insert.call_count

        assert run_async(scenario()) == 0

    def test_poll_errors_do_not_stop_watching(self):
        async def scenario():
            client = EventSourceClient(_config(poll_interval_seconds=0.001))
            results = iter([
                "a",
                httpx.ConnectError("offline"),
                "b",
            ])

            async def latest():
                value = next(results, "b")
                if isinstance(value, Exception):
                    raise value
                return value

            client.latest_event_id = AsyncMock(side_effect=latest)
            on_insert = MagicMock()
            unsubscribe = client.subscribe_to_inserts(on_insert)
            await asyncio.sleep(0.05)
            unsubscribe()
            return on_insert.call_count

        assert run_async(scenario()) == 1

    def test_non_json_responses_keep_polling(self):
        polls = []

        def handler(request: httpx.Request) -> httpx.Response:
            polls.append(request)
            return httpx.Response(200, text="<html>gateway</html>")

        async def scenario():
            client = EventSourceClient(
                _config(poll_interval_seconds=0.005),
                transport=httpx.MockTransport(handler),
            )
            on_insert = MagicMock()
            watcher = InsertWatcher(client, on_insert, interval=0.005)
            watcher.start()
            await asyncio.sleep(0.1)
            assert not watcher._task.done()
            watcher.stop()
            return on_insert.call_count

        assert run_async(scenario()) == 0
        assert len(polls) > 2

    def test_malformed_row_keeps_polling(self):
        ids = iter([[{"id": "a"}], [{"oops": 1}], [{"id": "b"}]])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=next(ids, [{"id": "b"}]))

        async def scenario():
            client = EventSourceClient(
                _config(poll_interval_seconds=0.001),
                transport=httpx.MockTransport(handler),
            )
            on_insert = MagicMock()
            unsubscribe = client.subscribe_to_inserts(on_insert)
            await asyncio.sleep(0.05)
            unsubscribe()
            return on_insert.call_count

        assert run_async(scenario()) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
