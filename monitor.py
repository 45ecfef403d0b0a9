"""
Event-driven API traffic monitor for a running browser.
Subscribes to CDP network events per tab, feeds them to the ingestion
pipeline, and exposes an interactive command loop over the per-tab tables.
"""
import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

from .connection import CDPConnection
from .ingestion import HeadersReceived, RequestCompleted, RequestErrored, RequestStarted, TrafficIngestor
from .aggregator import TabTable
from .settings import SettingsSource
from . import views

logger = logging.getLogger("apiscope.monitor")

# CDP Network.ResourceType -> webRequest resource type names used in settings
RESOURCE_TYPES = {
    "XHR": "xmlhttprequest",
    "Fetch": "fetch",
    "Document": "main_frame",
    "Script": "script",
    "Stylesheet": "stylesheet",
    "Image": "image",
    "Font": "font",
    "Media": "media",
    "WebSocket": "websocket",
    "Ping": "ping",
    "CSPViolationReport": "csp_report",
}


def resource_type_name(cdp_type: Optional[str]) -> str:
    if not cdp_type:
        return "other"
    return RESOURCE_TYPES.get(cdp_type, cdp_type.lower())


def started_from_cdp(tab_id: int, event: dict) -> RequestStarted:
    request = event.get("request", {})
    return RequestStarted(
        request_id=event.get("requestId", ""),
        tab_id=tab_id,
        url=request.get("url", ""),
        method=request.get("method"),
        resource_type=resource_type_name(event.get("type")),
    )


def headers_from_cdp(event: dict) -> HeadersReceived:
    headers = event.get("response", {}).get("headers", {}) or {}
    return HeadersReceived(
        request_id=event.get("requestId", ""),
        response_headers=[(str(name), str(value)) for name, value in headers.items()],
    )


class TabTracker:
    """Tracks a single tab: its CDP session, listeners and ordered event queue."""

    def __init__(self, page, client, tab_id: int, monitor: "ApiMonitor"):
        self.page = page
        self.client = client
        self.tab_id = tab_id
        self.monitor = monitor
        self.listeners_attached = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer_task: Optional[asyncio.Task] = None
        # Response status arrives with the headers but is reported on completion
        self._statuses: Dict[str, int] = {}

    async def attach_listeners(self):
        """Subscribe to network events for this tab."""
        if self.listeners_attached:
            return

        self.client.on("Network.requestWillBeSent", self._handle_request_will_be_sent)
        self.client.on("Network.responseReceived", self._handle_response_received)
        self.client.on("Network.loadingFinished", self._handle_loading_finished)
        self.client.on("Network.loadingFailed", self._handle_loading_failed)
        self.page.on("close", self._handle_close)
        await self.client.send("Network.enable")

        self._consumer_task = asyncio.create_task(self._consume())
        self.listeners_attached = True
        logger.info(f"[Tab {self.tab_id}] Network listeners attached")

    async def stop(self):
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

    def _handle_request_will_be_sent(self, event: dict):
        self._queue.put_nowait(started_from_cdp(self.tab_id, event))

    def _handle_response_received(self, event: dict):
        status = event.get("response", {}).get("status")
        if status is not None:
            self._statuses[event.get("requestId", "")] = int(status)
        self._queue.put_nowait(headers_from_cdp(event))

    def _handle_loading_finished(self, event: dict):
        request_id = event.get("requestId", "")
        self._queue.put_nowait(RequestCompleted(request_id, self._statuses.pop(request_id, None)))

    def _handle_loading_failed(self, event: dict):
        request_id = event.get("requestId", "")
        self._statuses.pop(request_id, None)
        self._queue.put_nowait(RequestErrored(request_id, event.get("errorText")))

    def _handle_close(self, page=None):
        self._queue.put_nowait(None)

    async def dispatch(self, event) -> None:
        ingestor = self.monitor.ingestor
        if isinstance(event, RequestStarted):
            await ingestor.on_before_request(event)
        elif isinstance(event, HeadersReceived):
            await ingestor.on_headers_received(event)
        elif isinstance(event, RequestCompleted):
            await ingestor.on_completed(event)
        elif isinstance(event, RequestErrored):
            await ingestor.on_error(event)

    async def _consume(self):
        """Deliver this tab's events one at a time, in arrival order."""
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    await self.monitor.handle_tab_closed(self.tab_id)
                    return
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"[Tab {self.tab_id}] Failed to process {type(event).__name__}: {e}")
            finally:
                self._queue.task_done()


class ApiMonitor:
    """Manages an interactive API traffic monitoring session with multi-tab support."""

    def __init__(self, cdp_port: int, track_all_tabs: bool = False,
                 settings: Optional[SettingsSource] = None, tab_store=None):
        self.conn = CDPConnection(cdp_port=cdp_port)
        self.track_all_tabs = track_all_tabs
        self.settings = settings if settings is not None else SettingsSource()
        self.ingestor = TrafficIngestor(self.settings, tab_store)

        self._trackers: Dict[int, TabTracker] = {}
        self._next_tab_id = 0
        self._page_listener_active = False
        self._snapshots: Dict[int, TabTable] = {}

    async def start(self):
        print(f"Connecting to browser on CDP port {self.conn.cdp_port}...")
        if self.track_all_tabs:
            print("Multi-tab tracking enabled: will monitor all tabs and pop-ups")

        if not await self.conn.connect():
            return

        try:
            await self._ensure_listeners()
            await self._interactive_loop()
        finally:
            print("Disconnecting from browser...")
            await self._stop_trackers()
            await self.conn.disconnect()

    async def _interactive_loop(self):
        print(
            "\nCommands:\n"
            "  tabs                  - List tracked tabs.\n"
            "  show [tab] [filter]   - Show endpoints grouped by method.\n"
            "  text [tab]            - Print a plain-text endpoint summary.\n"
            "  export [tab] [path]   - Write the tab's endpoints to a JSON file.\n"
            "  changes [tab]         - Show what changed since the last 'changes'.\n"
            "  clear [tab]           - Clear the tab's endpoints.\n"
            "  qs on|off             - Include the query string in endpoints.\n"
            "  connect <port>        - Connect to a different CDP port.\n"
            "  quit                  - Exit."
        )
        while True:
            command_str = await asyncio.to_thread(input, "\n> ")
            if not await self.handle_command(command_str):
                break

    async def handle_command(self, command_str: str) -> bool:
        """Run one interactive command. Returns False when the session should end."""
        parts = command_str.strip().split()
        if not parts:
            return True
        command, args = parts[0].lower(), parts[1:]

        if command == "quit":
            return False
        if command == "tabs":
            await self._list_tabs()
        elif command == "show":
            tab_id, rest = self._split_tab_arg(args)
            await self._show(tab_id, " ".join(rest))
        elif command == "text":
            tab_id, _ = self._split_tab_arg(args)
            await self._text(tab_id)
        elif command == "export":
            tab_id, rest = self._split_tab_arg(args)
            await self._export(tab_id, rest[0] if rest else None)
        elif command == "changes":
            tab_id, _ = self._split_tab_arg(args)
            await self._changes(tab_id)
        elif command == "clear":
            tab_id, _ = self._split_tab_arg(args)
            await self._clear(tab_id)
        elif command == "qs":
            if not args or args[0].lower() not in ("on", "off"):
                print("Usage: qs on|off")
            else:
                enabled = args[0].lower() == "on"
                await self.settings.update(include_query_string=enabled)
                print(f"Query strings {'included in' if enabled else 'stripped from'} endpoints.")
        elif command == "connect":
            if not args or not args[0].isdigit():
                print("Usage: connect <port>")
            else:
                await self._reconnect(int(args[0]))
        else:
            print("Unknown command.")
        return True

    def _split_tab_arg(self, args: List[str]):
        if args and args[0].isdigit():
            return int(args[0]), args[1:]
        return self.default_tab_id, args

    @property
    def default_tab_id(self) -> Optional[int]:
        return min(self._trackers) if self._trackers else None

    async def _list_tabs(self):
        if not self._trackers:
            print("No tabs are currently being tracked.")
            return

        print(f"\nCurrently tracking {len(self._trackers)} tab(s):")
        for tab_id, tracker in self._trackers.items():
            table = await self.ingestor.get_table(tab_id)
            try:
                title = await tracker.page.title()
            except Exception as e:
                title = f"<unavailable: {e}>"
            print(f"  [{tab_id}] {title}")
            print(f"           URL: {tracker.page.url}")
            print(f"           Endpoints: {len(table)}  Pending: {self._pending_for(tab_id)}")

    def _pending_for(self, tab_id: int) -> int:
        return sum(1 for p in self.ingestor.correlator.pending() if p.tab_id == tab_id)

    async def _show(self, tab_id: Optional[int], filter_text: str = ""):
        if tab_id is None:
            print("No tab to show.")
            return
        table = await self.ingestor.get_table(tab_id)
        result = views.build_groups(views.ordered_records(table), filter_text)
        for method in result["methods"]:
            records = result["groups"][method]
            print(f"\n{method} ({len(records)})")
            for record in records:
                print(f"  {record.endpoint}")
                print(f"      {views.describe_record(record)}")
        print(f"\nTab {tab_id} | items: {result['shown']}/{result['total']}")

    async def _text(self, tab_id: Optional[int]):
        if tab_id is None:
            print("No tab selected.")
            return
        table = await self.ingestor.get_table(tab_id)
        print(views.summary_text(views.ordered_records(table)))

    async def _export(self, tab_id: Optional[int], path: Optional[str] = None):
        if tab_id is None:
            print("No tab to export.")
            return
        table = await self.ingestor.get_table(tab_id)
        target = Path(path) if path else Path.cwd() / views.export_filename(tab_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(views.export_json(views.ordered_records(table)))
        print(f"[Tab {tab_id}] Exported {len(table)} endpoint(s) to {target}")

    async def _changes(self, tab_id: Optional[int]):
        if tab_id is None:
            print("No tab selected.")
            return
        current = await self.ingestor.get_table(tab_id)
        previous = self._snapshots.get(tab_id, TabTable())
        self._snapshots[tab_id] = current
        diff = views.diff_tables(previous, current)
        if not any(diff.values()):
            print(f"[Tab {tab_id}] No changes.")
            return
        for key in diff["added"]:
            print(f"  + {key}")
        for key in diff["removed"]:
            print(f"  - {key}")
        for key, fields in diff["changed"].items():
            summary = ", ".join(f"{name}: {old} -> {new}" for name, (old, new) in fields.items())
            print(f"  ~ {key} ({summary})")

    async def _clear(self, tab_id: Optional[int]):
        if tab_id is None:
            print("No tab to clear.")
            return
        await self.ingestor.clear(tab_id)
        self._snapshots.pop(tab_id, None)
        print(f"[Tab {tab_id}] Cleared.")

    async def _reconnect(self, new_port: int):
        print(f"\nDisconnecting from port {self.conn.cdp_port}...")
        await self._stop_trackers()
        await self.conn.disconnect()

        self.conn = CDPConnection(cdp_port=new_port)
        print(f"Connecting to port {new_port}...")
        if await self.conn.connect():
            await self._ensure_listeners()
        else:
            print(f"Failed to connect to port {new_port}")

    async def _stop_trackers(self):
        for tracker in list(self._trackers.values()):
            await tracker.stop()
        self._trackers.clear()
        self._page_listener_active = False

    async def _ensure_listeners(self):
        context = self.conn.context
        pages = context.pages if self.track_all_tabs else context.pages[:1]
        for page in pages:
            await self.track_page(page)

        if self.track_all_tabs and not self._page_listener_active:
            context.on("page", self._handle_new_page)
            self._page_listener_active = True
            print("Listening for new tabs and pop-ups...")

    async def track_page(self, page) -> Optional[TabTracker]:
        """Start tracking a page under the next tab id."""
        tab_id = self._next_tab_id
        self._next_tab_id += 1
        try:
            client = await page.context.new_cdp_session(page)
            tracker = TabTracker(page, client, tab_id, self)
            self._trackers[tab_id] = tracker
            await tracker.attach_listeners()
            print(f"[Tab {tab_id}] Now tracking: {page.url}")
            return tracker
        except Exception as e:
            self._trackers.pop(tab_id, None)
            print(f"[Tab {tab_id}] Failed to set up tracking: {e}")
            return None

    async def _handle_new_page(self, page):
        # Wait a moment for the page to initialize
        await asyncio.sleep(0.3)
        await self.track_page(page)

    async def handle_tab_closed(self, tab_id: int):
        self._trackers.pop(tab_id, None)
        self._snapshots.pop(tab_id, None)
        await self.ingestor.on_tab_removed(tab_id)
        print(f"\n[Tab {tab_id}] Closed.")
