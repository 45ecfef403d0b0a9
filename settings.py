"""
Capture settings: defaults, merging of stored overrides, and the async
settings source read on every network event.
"""
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .storage import MemoryStore

logger = logging.getLogger("apiscope.settings")

SETTINGS_KEY = "settings"

DEFAULT_CAPTURED_TYPES = ("xmlhttprequest", "fetch")

DEFAULT_INCLUDE_PATTERNS = (
    r"/api(?:/|$)",
    r"/apis(?:/|$)",
    r"/graphql(?:/|$)",
    r"/gql(?:/|$)",
    r"/rest(?:/|$)",
    r"/v\d+(?:/|$)",
    r"/rpc(?:/|$)",
    r"/services?(?:/|$)",
)

# Static assets that sometimes travel over fetch/xhr
DEFAULT_EXCLUDE_PATTERNS = tuple(
    rf"\.{ext}(?:\?|$)"
    for ext in ("js", "css", "png", "jpg", "jpeg", "gif", "svg", "webp", "ico", "woff2?", "ttf", "map")
)

DEFAULT_MAX_RECORDS_PER_TAB = 2000


@dataclass(frozen=True)
class Settings:
    captured_request_types: FrozenSet[str] = field(default_factory=lambda: frozenset(DEFAULT_CAPTURED_TYPES))
    include_query_string: bool = False
    include_patterns: Tuple[str, ...] = DEFAULT_INCLUDE_PATTERNS
    exclude_patterns: Tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS
    max_records_per_tab: int = DEFAULT_MAX_RECORDS_PER_TAB

    @classmethod
    def from_dict(cls, stored: Optional[Dict[str, Any]]) -> "Settings":
        """Merge a stored mapping over the defaults. Unknown keys are ignored."""
        settings = cls()
        if not stored:
            return settings

        changes: Dict[str, Any] = {}
        if "captured_request_types" in stored:
            changes["captured_request_types"] = frozenset(_strings(stored["captured_request_types"]))
        if "include_query_string" in stored:
            changes["include_query_string"] = bool(stored["include_query_string"])
        if "include_patterns" in stored:
            changes["include_patterns"] = tuple(_strings(stored["include_patterns"]))
        if "exclude_patterns" in stored:
            changes["exclude_patterns"] = tuple(_strings(stored["exclude_patterns"]))
        if "max_records_per_tab" in stored:
            value = stored["max_records_per_tab"]
            if isinstance(value, int) and not isinstance(value, bool) and value > 0:
                changes["max_records_per_tab"] = value
            else:
                logger.warning(
                    f"Invalid max_records_per_tab {value!r}, using {DEFAULT_MAX_RECORDS_PER_TAB}"
                )
        return replace(settings, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["captured_request_types"] = sorted(self.captured_request_types)
        data["include_patterns"] = list(self.include_patterns)
        data["exclude_patterns"] = list(self.exclude_patterns)
        return data


def _strings(values) -> list:
    if values is None:
        return []
    if isinstance(values, str):
        return [values]
    return [v for v in values if isinstance(v, str)]


class SettingsSource:
    """Reads settings from a key-value store, merged over defaults on every call."""

    def __init__(self, store=None):
        self.store = store if store is not None else MemoryStore()

    async def get(self) -> Settings:
        return Settings.from_dict(await self.store.get(SETTINGS_KEY))

    async def update(self, **changes) -> Settings:
        current = await self.store.get(SETTINGS_KEY) or {}
        merged = Settings.from_dict({**current, **changes})
        await self.store.set(SETTINGS_KEY, merged.to_dict())
        logger.info(f"Settings updated: {', '.join(sorted(changes))}")
        return merged
