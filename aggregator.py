"""
Per-tab endpoint statistics.

Each tab owns a TabTable stored under "tab:<tabId>". Every terminal request
event upserts one EndpointRecord keyed by "METHOD endpoint"; once a table
holds more than max_records_per_tab keys the oldest-inserted ones are
evicted, no matter how often they were hit since.
"""
import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Union

from .settings import SettingsSource
from .storage import MemoryStore, tab_key

logger = logging.getLogger("apiscope.aggregator")

STATUS_ERROR = "ERR"

Status = Union[int, str, None]


def now_ms() -> int:
    return int(time.time() * 1000)


def make_key(method: str, endpoint: str) -> str:
    return f"{method} {endpoint}"


@dataclass
class EndpointRecord:
    key: str
    method: str
    endpoint: str
    count: int = 0
    first_seen: int = 0
    last_seen: int = 0
    last_status: Status = None
    status_counts: Dict[str, int] = field(default_factory=dict)
    size_known_count: int = 0
    size_sum: int = 0
    last_size: Optional[int] = None

    @property
    def average_size(self) -> Optional[float]:
        if self.size_known_count > 0:
            return self.size_sum / self.size_known_count
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "EndpointRecord":
        return cls(
            key=data["key"],
            method=data["method"],
            endpoint=data["endpoint"],
            count=data.get("count", 0),
            first_seen=data.get("first_seen", 0),
            last_seen=data.get("last_seen", 0),
            last_status=data.get("last_status"),
            status_counts=dict(data.get("status_counts") or {}),
            size_known_count=data.get("size_known_count", 0),
            size_sum=data.get("size_sum", 0),
            last_size=data.get("last_size"),
        )


@dataclass
class TabTable:
    items: Dict[str, EndpointRecord] = field(default_factory=dict)
    # Keys, most recently inserted first
    order: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.order)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "TabTable":
        if not data:
            return cls()
        items = {k: EndpointRecord.from_dict(v) for k, v in (data.get("items") or {}).items()}
        return cls(items=items, order=list(data.get("order") or []))

    def to_dict(self) -> dict:
        return {
            "items": {k: asdict(v) for k, v in self.items.items()},
            "order": list(self.order),
        }


class AggregationStore:
    """Upserts endpoint records into per-tab tables held in an async key-value store."""

    def __init__(self, store=None, settings: Optional[SettingsSource] = None,
                 clock: Callable[[], int] = now_ms):
        self.store = store if store is not None else MemoryStore()
        self.settings = settings if settings is not None else SettingsSource()
        self.clock = clock
        # One lock per tab; tabs never contend with each other
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, tab_id: int) -> TabTable:
        return TabTable.from_dict(await self.store.get(tab_key(tab_id)))

    async def upsert(self, tab_id: int, method: str, endpoint: str,
                     status: Status = None, size_bytes: Optional[int] = None) -> EndpointRecord:
        if tab_id < 0:
            raise ValueError(f"Cannot aggregate requests without a tab (tab_id={tab_id})")

        settings = await self.settings.get()
        async with self._locks[tab_id]:
            table = await self.get(tab_id)
            key = make_key(method, endpoint)
            now = self.clock()

            record = table.items.get(key)
            if record is None:
                record = EndpointRecord(key=key, method=method, endpoint=endpoint,
                                        first_seen=now, last_seen=now)
                table.items[key] = record
                table.order.insert(0, key)

            record.count += 1
            record.last_seen = now

            if status is not None:
                record.last_status = status
                label = str(status)
                record.status_counts[label] = record.status_counts.get(label, 0) + 1

            if size_bytes is not None:
                record.last_size = size_bytes
                record.size_known_count += 1
                record.size_sum += size_bytes

            limit = settings.max_records_per_tab
            if len(table.order) > limit:
                evicted = table.order[limit:]
                del table.order[limit:]
                for old_key in evicted:
                    table.items.pop(old_key, None)
                logger.debug(f"[Tab {tab_id}] Evicted {len(evicted)} oldest endpoint(s)")

            await self.store.set(tab_key(tab_id), table.to_dict())
            return record

    async def clear(self, tab_id: int) -> None:
        async with self._locks[tab_id]:
            await self.store.set(tab_key(tab_id), TabTable().to_dict())
        logger.info(f"[Tab {tab_id}] Cleared endpoint table")

    async def remove(self, tab_id: int) -> None:
        async with self._locks[tab_id]:
            await self.store.remove(tab_key(tab_id))
        logger.info(f"[Tab {tab_id}] Removed endpoint table")
