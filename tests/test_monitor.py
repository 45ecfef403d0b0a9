"""
Tests for the CDP host adapter and the interactive command handling.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from apiscope.ingestion import HeadersReceived, RequestStarted
from apiscope.monitor import ApiMonitor, TabTracker, headers_from_cdp, resource_type_name, started_from_cdp


def make_page(url: str = "https://x.com/app"):
    client = MagicMock()
    client.send = AsyncMock(return_value={})
    page = MagicMock()
    page.url = url
    page.title = AsyncMock(return_value="Example")
    page.context.new_cdp_session = AsyncMock(return_value=client)
    return page, client


def request_will_be_sent(request_id: str, url: str, method: str = "GET", cdp_type: str = "Fetch") -> dict:
    return {"requestId": request_id, "type": cdp_type, "request": {"url": url, "method": method}}


def response_received(request_id: str, status: int, headers: dict) -> dict:
    return {"requestId": request_id, "response": {"status": status, "headers": headers}}


@pytest.fixture
def monitor(settings) -> ApiMonitor:
    return ApiMonitor(cdp_port=9222, settings=settings)


class TestCdpMapping:
    """
    Tests for translating CDP network events into lifecycle events.
    """

    @pytest.mark.parametrize("cdp_type, expected", [
        ("XHR", "xmlhttprequest"),
        ("Fetch", "fetch"),
        ("Document", "main_frame"),
        ("EventSource", "eventsource"),
        (None, "other"),
    ])
    def test_resource_type_name(self, cdp_type, expected) -> None:
        assert resource_type_name(cdp_type) == expected

    def test_started_from_cdp(self) -> None:
        event = started_from_cdp(3, request_will_be_sent("r1", "https://x.com/api/a", "POST", "XHR"))
        assert event == RequestStarted("r1", 3, "https://x.com/api/a", "POST", "xmlhttprequest")

    def test_headers_from_cdp(self) -> None:
        event = headers_from_cdp(response_received("r1", 200, {"Content-Length": 12}))
        assert event == HeadersReceived("r1", [("Content-Length", "12")])


class TestTabTracker:
    """
    Tests for TabTracker event delivery.
    """

    @pytest.mark.asyncio
    async def test_attach_subscribes_network_events(self, monitor: ApiMonitor) -> None:
        page, client = make_page()
        tracker = await monitor.track_page(page)

        subscribed = {call.args[0] for call in client.on.call_args_list}
        assert subscribed == {
            "Network.requestWillBeSent",
            "Network.responseReceived",
            "Network.loadingFinished",
            "Network.loadingFailed",
        }
        client.send.assert_awaited_with("Network.enable")
        page.on.assert_called_once_with("close", tracker._handle_close)
        assert tracker.tab_id == 0
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_completed_request_is_aggregated(self, monitor: ApiMonitor) -> None:
        page, _ = make_page()
        tracker = await monitor.track_page(page)

        tracker._handle_request_will_be_sent(request_will_be_sent("r1", "https://x.com/api/users?x=1"))
        tracker._handle_response_received(response_received("r1", 200, {"content-length": "120"}))
        tracker._handle_loading_finished({"requestId": "r1"})
        await tracker._queue.join()

        record = (await monitor.ingestor.get_table(0)).items["GET https://x.com/api/users"]
        assert record.count == 1
        assert record.last_status == 200
        assert record.last_size == 120
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_failed_request_records_error(self, monitor: ApiMonitor) -> None:
        page, _ = make_page()
        tracker = await monitor.track_page(page)

        tracker._handle_request_will_be_sent(request_will_be_sent("r2", "https://x.com/api/orders", "POST"))
        tracker._handle_loading_failed({"requestId": "r2", "errorText": "net::ERR_ABORTED"})
        await tracker._queue.join()

        record = (await monitor.ingestor.get_table(0)).items["POST https://x.com/api/orders"]
        assert record.status_counts == {"ERR": 1}
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_non_api_traffic_ignored(self, monitor: ApiMonitor) -> None:
        page, _ = make_page()
        tracker = await monitor.track_page(page)

        tracker._handle_request_will_be_sent(request_will_be_sent("r3", "https://x.com/app.js", cdp_type="Script"))
        tracker._handle_loading_finished({"requestId": "r3"})
        await tracker._queue.join()

        assert len(await monitor.ingestor.get_table(0)) == 0
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_failing_event_does_not_stop_queue(self, monitor: ApiMonitor) -> None:
        page, _ = make_page()
        tracker = await monitor.track_page(page)
        monitor.ingestor.on_before_request = AsyncMock(side_effect=[RuntimeError("boom"), None])

        tracker._handle_request_will_be_sent(request_will_be_sent("a", "https://x.com/api/a"))
        tracker._handle_request_will_be_sent(request_will_be_sent("b", "https://x.com/api/b"))
        await tracker._queue.join()

        assert monitor.ingestor.on_before_request.await_count == 2
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_close_removes_tab_table(self, monitor: ApiMonitor) -> None:
        page, _ = make_page()
        tracker = await monitor.track_page(page)
        tracker._handle_request_will_be_sent(request_will_be_sent("r1", "https://x.com/api/users"))
        tracker._handle_loading_finished({"requestId": "r1"})
        tracker._handle_close(page)
        await tracker._queue.join()

        assert await monitor.ingestor.aggregator.store.get("tab:0") is None
        assert monitor.default_tab_id is None

    @pytest.mark.asyncio
    async def test_failed_session_is_not_tracked(self, monitor: ApiMonitor) -> None:
        page, _ = make_page()
        page.context.new_cdp_session = AsyncMock(side_effect=RuntimeError("target closed"))
        assert await monitor.track_page(page) is None
        assert monitor.default_tab_id is None


class TestCommands:
    """
    Tests for ApiMonitor.handle_command.
    """

    async def _populate(self, monitor: ApiMonitor):
        page, _ = make_page()
        tracker = await monitor.track_page(page)
        tracker._handle_request_will_be_sent(request_will_be_sent("r1", "https://x.com/api/users"))
        tracker._handle_response_received(response_received("r1", 200, {"Content-Length": "2048"}))
        tracker._handle_loading_finished({"requestId": "r1"})
        await tracker._queue.join()
        return tracker

    @pytest.mark.asyncio
    async def test_quit_and_blank(self, monitor: ApiMonitor) -> None:
        assert await monitor.handle_command("") is True
        assert await monitor.handle_command("quit") is False

    @pytest.mark.asyncio
    async def test_show(self, monitor: ApiMonitor, capsys) -> None:
        tracker = await self._populate(monitor)
        await monitor.handle_command("show 0 users")
        out = capsys.readouterr().out
        assert "GET (1)" in out
        assert "https://x.com/api/users" in out
        assert "size(last)=2.0 KB" in out
        assert "Tab 0 | items: 1/1" in out
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_export_writes_json(self, monitor: ApiMonitor, tmp_path) -> None:
        tracker = await self._populate(monitor)
        target = tmp_path / "out.json"
        await monitor.handle_command(f"export 0 {target}")
        exported = json.loads(target.read_text())
        assert exported[0]["key"] == "GET https://x.com/api/users"
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_changes_then_no_changes(self, monitor: ApiMonitor, capsys) -> None:
        tracker = await self._populate(monitor)
        await monitor.handle_command("changes")
        assert "+ GET https://x.com/api/users" in capsys.readouterr().out
        await monitor.handle_command("changes")
        assert "No changes." in capsys.readouterr().out
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_clear(self, monitor: ApiMonitor) -> None:
        tracker = await self._populate(monitor)
        await monitor.handle_command("clear")
        assert len(await monitor.ingestor.get_table(0)) == 0
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_qs_toggles_setting(self, monitor: ApiMonitor, settings, capsys) -> None:
        await monitor.handle_command("qs on")
        assert (await settings.get()).include_query_string is True
        await monitor.handle_command("qs maybe")
        assert "Usage: qs on|off" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_show_without_tabs(self, monitor: ApiMonitor, capsys) -> None:
        await monitor.handle_command("show")
        assert "No tab to show." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_unknown_command(self, monitor: ApiMonitor, capsys) -> None:
        assert await monitor.handle_command("dance") is True
        assert "Unknown command." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_tabs_lists_tracked_pages(self, monitor: ApiMonitor, capsys) -> None:
        tracker = await self._populate(monitor)
        tracker._handle_request_will_be_sent(request_will_be_sent("r9", "https://x.com/api/slow"))
        await tracker._queue.join()
        capsys.readouterr()

        await monitor.handle_command("tabs")
        out = capsys.readouterr().out
        assert "[0] Example" in out
        assert "Endpoints: 1  Pending: 1" in out
        await tracker.stop()
