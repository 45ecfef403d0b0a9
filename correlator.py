"""
Matches each request's start event with its headers and terminal events.

Pending entries live in memory for the life of the process. An entry whose
terminal event never arrives (e.g. a cancelled navigation) stays until
restart.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .aggregator import AggregationStore, EndpointRecord, Status
from .classifier import classifier_for
from .settings import Settings
from .urls import normalize_url

logger = logging.getLogger("apiscope.correlator")

LENGTH_HEADER = "content-length"


@dataclass
class PendingRequest:
    request_id: str
    tab_id: int
    method: str
    endpoint: str
    size_bytes: Optional[int] = None


def header_value(headers: Optional[Iterable[Tuple[str, str]]], name: str) -> Optional[str]:
    """First value of a header in a name/value list, matching the name case-insensitively."""
    if not headers:
        return None
    wanted = name.lower()
    for header_name, value in headers:
        if (header_name or "").lower() == wanted:
            return value
    return None


def parse_size(value) -> Optional[int]:
    """Parse a length header value as a non-negative base-10 integer."""
    if value is None:
        return None
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text, 10)


class RequestCorrelator:
    """Tracks in-flight API requests by request id."""

    def __init__(self, aggregator: AggregationStore):
        self.aggregator = aggregator
        self._pending: Dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._pending

    def get(self, request_id: str) -> Optional[PendingRequest]:
        return self._pending.get(request_id)

    def pending(self) -> List[PendingRequest]:
        return list(self._pending.values())

    def on_start(self, request_id: str, tab_id: int, method: Optional[str], url: str,
                 resource_type: str, settings: Settings) -> Optional[PendingRequest]:
        if resource_type not in settings.captured_request_types:
            return None
        if tab_id is None or tab_id < 0:
            logger.debug(f"Ignoring request {request_id} outside any tab")
            return None

        endpoint = normalize_url(url, settings.include_query_string)
        if not classifier_for(settings).is_api(endpoint):
            logger.debug(f"Not an API endpoint: {endpoint}")
            return None

        if request_id in self._pending:
            logger.debug(f"Request {request_id} restarted, replacing pending entry")
        pending = PendingRequest(
            request_id=request_id,
            tab_id=tab_id,
            method=method or "GET",
            endpoint=endpoint,
        )
        self._pending[request_id] = pending
        return pending

    def on_headers(self, request_id: str, headers) -> None:
        pending = self._pending.get(request_id)
        if pending is None:
            return
        size = parse_size(header_value(headers, LENGTH_HEADER))
        if size is not None:
            pending.size_bytes = size

    async def on_terminal(self, request_id: str, status: Status) -> Optional[EndpointRecord]:
        """
        Aggregate the outcome of a tracked request.

        The pending entry is removed before the upsert so it is consumed
        exactly once, even if persisting the record fails.
        """
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return None
        return await self.aggregator.upsert(
            pending.tab_id, pending.method, pending.endpoint, status, pending.size_bytes
        )
