"""
Read-side helpers for displaying and exporting a tab's endpoint table.
"""
import json
from dataclasses import asdict
from typing import Dict, List, Optional

from deepdiff import DeepDiff

from .aggregator import EndpointRecord, TabTable

METHOD_ORDER = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

# Compared between snapshots; timestamps are left out since they move on every hit
TRACKED_FIELDS = ("count", "last_status", "last_size", "status_counts")


def ordered_records(table: TabTable) -> List[EndpointRecord]:
    return [table.items[k] for k in table.order if k in table.items]


def average_size(record: EndpointRecord) -> Optional[int]:
    avg = record.average_size
    return round(avg) if avg is not None else None


def format_bytes(n: Optional[float]) -> str:
    if n is None:
        return "—"
    units = ["B", "KB", "MB", "GB"]
    x = float(n)
    i = 0
    while x >= 1024 and i < len(units) - 1:
        x /= 1024
        i += 1
    return f"{x:.0f} {units[i]}" if i == 0 else f"{x:.1f} {units[i]}"


def status_distribution(record: EndpointRecord, limit: int = 4) -> List[tuple]:
    ranked = sorted(record.status_counts.items(), key=lambda kv: kv[1], reverse=True)
    return ranked[:limit]


def _matches(record: EndpointRecord, needle: str) -> bool:
    return (
        needle in (record.endpoint or "").lower()
        or needle in (record.method or "").lower()
        or needle in (record.key or "").lower()
    )


def filter_records(records: List[EndpointRecord], filter_text: str = "") -> List[EndpointRecord]:
    needle = (filter_text or "").strip().lower()
    if not needle:
        return list(records)
    return [r for r in records if _matches(r, needle)]


def _method_sort_key(method: str):
    if method in METHOD_ORDER:
        return (0, METHOD_ORDER.index(method), "")
    return (1, 0, method)


def build_groups(records: List[EndpointRecord], filter_text: str = "") -> dict:
    """
    Group records by HTTP method for display.

    Returns a dict with "groups" (method -> records, newest first),
    "methods" (display order), "total" and "shown" counts.
    """
    filtered = filter_records(records, filter_text)
    groups: Dict[str, List[EndpointRecord]] = {}
    for record in filtered:
        groups.setdefault(record.method or "GET", []).append(record)

    methods = sorted(groups, key=_method_sort_key)
    for method in methods:
        groups[method].sort(key=lambda r: r.last_seen or 0, reverse=True)

    return {"groups": groups, "methods": methods, "total": len(records), "shown": len(filtered)}


def describe_record(record: EndpointRecord) -> str:
    last_status = record.last_status if record.last_status is not None else "—"
    parts = [f"count={record.count}", f"status(last)={last_status}"]
    dist = " ".join(f"{label}:{n}" for label, n in status_distribution(record))
    if dist:
        parts.append(f"status={{{dist}}}")
    parts.append(f"size(last)={format_bytes(record.last_size)}")
    parts.append(f"size(avg)={format_bytes(average_size(record))}")
    return "  ".join(parts)


def summary_text(records: List[EndpointRecord], filter_text: str = "") -> str:
    """Plain-text listing grouped under "## METHOD" headings."""
    by_method: Dict[str, List[EndpointRecord]] = {}
    for record in filter_records(records, filter_text):
        by_method.setdefault(record.method or "GET", []).append(record)

    lines = []
    for method in sorted(by_method):
        lines.append(f"## {method}")
        for r in by_method[method]:
            last_status = r.last_status if r.last_status is not None else "—"
            last_size = r.last_size if r.last_size is not None else "—"
            lines.append(
                f"{method} {r.endpoint}  (lastStatus={last_status}, lastSize={last_size}, count={r.count})"
            )
        lines.append("")
    return "\n".join(lines)


def export_filename(tab_id: int) -> str:
    return f"api-endpoints-tab-{tab_id}.json"


def export_json(records: List[EndpointRecord]) -> str:
    return json.dumps([asdict(r) for r in records], indent=2)


def _snapshot(table: TabTable) -> dict:
    return {
        key: {name: getattr(record, name) for name in TRACKED_FIELDS}
        for key, record in table.items.items()
    }


def diff_tables(old: TabTable, new: TabTable) -> dict:
    """
    Summarize what changed between two reads of the same tab table.

    Returns {"added": [...keys], "removed": [...keys], "changed": {key: {field: (old, new)}}}.
    """
    before, after = _snapshot(old), _snapshot(new)
    diff = DeepDiff(before, after, view="tree")

    added, removed = set(), set()
    changed: Dict[str, Dict[str, tuple]] = {}
    for report_type, items in diff.items():
        for item in items:
            path = item.path(output_format="list")
            key = path[0]
            if len(path) == 1:
                if report_type == "dictionary_item_added":
                    added.add(key)
                elif report_type == "dictionary_item_removed":
                    removed.add(key)
                continue
            name = path[1]
            changed.setdefault(key, {})[name] = (before[key][name], after[key][name])

    return {"added": sorted(added), "removed": sorted(removed), "changed": changed}
