"""Sync pipeline: fetch-and-cache, progress events and the parallel runner."""

from .events import PackageSyncState, ProgressChannel, ProgressEvent, SyncStatus, can_transition
from .fetch import (
    FetchResult,
    classify_cached_doc,
    describe_failure,
    detect_docs_type,
    fetch_and_cache,
    force_clear,
    index_resources,
    link_all_references,
)
from .sync import SyncFailure, SyncOptions, SyncRunner, SyncSummary, sync_many

__all__ = [
    # Events
    "ProgressChannel",
    "ProgressEvent",
    "PackageSyncState",
    "SyncStatus",
    "can_transition",
    # Fetch
    "FetchResult",
    "fetch_and_cache",
    "index_resources",
    "describe_failure",
    "detect_docs_type",
    "classify_cached_doc",
    "force_clear",
    "link_all_references",
    # Sync
    "SyncOptions",
    "SyncRunner",
    "SyncSummary",
    "SyncFailure",
    "sync_many",
]
