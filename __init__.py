"""
apiscope - Per-tab API endpoint statistics for a running browser.

Watches a tab's network traffic over the Chrome DevTools Protocol (CDP),
keeps the requests that look like API calls, and aggregates call counts,
status codes and response sizes per endpoint.
"""

from .aggregator import AggregationStore, EndpointRecord, TabTable
from .correlator import RequestCorrelator
from .ingestion import TrafficIngestor
from .monitor import ApiMonitor
from .settings import Settings, SettingsSource

__version__ = "0.1.0"
__all__ = [
    "AggregationStore",
    "ApiMonitor",
    "EndpointRecord",
    "RequestCorrelator",
    "Settings",
    "SettingsSource",
    "TabTable",
    "TrafficIngestor",
]
