"""
Entry points the host calls for each request lifecycle notification.

Events may arrive for requests that were never tracked, or out of order;
those are dropped silently by the correlator.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .aggregator import STATUS_ERROR, AggregationStore, EndpointRecord, TabTable
from .correlator import RequestCorrelator
from .settings import SettingsSource
from .storage import MemoryStore

logger = logging.getLogger("apiscope.ingestion")

Header = Tuple[str, str]


def _headers_from_details(raw) -> List[Header]:
    """Accept [{'name': .., 'value': ..}], [(name, value)] or a {name: value} mapping."""
    if not raw:
        return []
    if isinstance(raw, dict):
        return [(str(k), str(v)) for k, v in raw.items()]
    headers = []
    for item in raw:
        if isinstance(item, dict):
            headers.append((item.get("name") or "", item.get("value")))
        else:
            name, value = item
            headers.append((name, value))
    return headers


@dataclass
class RequestStarted:
    request_id: str
    tab_id: int
    url: str
    method: Optional[str] = "GET"
    resource_type: str = "other"

    @classmethod
    def from_details(cls, details: dict) -> "RequestStarted":
        return cls(
            request_id=str(details["requestId"]),
            tab_id=int(details.get("tabId", -1)),
            url=details.get("url", ""),
            method=details.get("method"),
            resource_type=details.get("type", "other"),
        )


@dataclass
class HeadersReceived:
    request_id: str
    response_headers: List[Header] = field(default_factory=list)

    @classmethod
    def from_details(cls, details: dict) -> "HeadersReceived":
        return cls(
            request_id=str(details["requestId"]),
            response_headers=_headers_from_details(details.get("responseHeaders")),
        )


@dataclass
class RequestCompleted:
    request_id: str
    status_code: Optional[int] = None

    @classmethod
    def from_details(cls, details: dict) -> "RequestCompleted":
        return cls(request_id=str(details["requestId"]), status_code=details.get("statusCode"))


@dataclass
class RequestErrored:
    request_id: str
    error: Optional[str] = None

    @classmethod
    def from_details(cls, details: dict) -> "RequestErrored":
        return cls(request_id=str(details["requestId"]), error=details.get("error"))


class TrafficIngestor:
    """
    Wires settings, correlator and aggregation store together behind the four
    lifecycle callbacks, plus the read/clear operations used for display.
    """

    def __init__(self, settings: Optional[SettingsSource] = None, tab_store=None, clock=None):
        self.settings = settings if settings is not None else SettingsSource()
        kwargs = {"clock": clock} if clock is not None else {}
        self.aggregator = AggregationStore(
            tab_store if tab_store is not None else MemoryStore(), self.settings, **kwargs
        )
        self.correlator = RequestCorrelator(self.aggregator)

    async def on_before_request(self, event: RequestStarted) -> None:
        settings = await self.settings.get()
        self.correlator.on_start(
            event.request_id, event.tab_id, event.method, event.url, event.resource_type, settings
        )

    async def on_headers_received(self, event: HeadersReceived) -> None:
        self.correlator.on_headers(event.request_id, event.response_headers)

    async def on_completed(self, event: RequestCompleted) -> Optional[EndpointRecord]:
        return await self.correlator.on_terminal(event.request_id, event.status_code)

    async def on_error(self, event: RequestErrored) -> Optional[EndpointRecord]:
        if event.request_id in self.correlator and event.error:
            logger.debug(f"Request {event.request_id} failed: {event.error}")
        return await self.correlator.on_terminal(event.request_id, STATUS_ERROR)

    async def on_tab_removed(self, tab_id: int) -> None:
        await self.aggregator.remove(tab_id)

    async def get_table(self, tab_id: int) -> TabTable:
        return await self.aggregator.get(tab_id)

    async def clear(self, tab_id: int) -> None:
        await self.aggregator.clear(tab_id)
