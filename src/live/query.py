from __future__ import annotations

from typing import Optional

from src.live.cache import SnapshotCache
from src.live.poller import Poller, PollerStatus
from src.live.records import ProgressRecord, Snapshot


class ProgressQuery:
    """Read path for request handlers. Never waits on telemetry."""

    def __init__(self, cache: SnapshotCache, poller: Poller, minimum_ferries: int):
        self.cache = cache
        self.poller = poller
        self.minimum_ferries = minimum_ferries

    def current(self) -> Snapshot:
        # Activity first, so an idle poller starts fetching while we answer from the cache.
        self.poller.touch()
        return self.cache.read_snapshot().padded(self.minimum_ferries)

    def raw(self) -> Snapshot:
        return self.cache.read_snapshot()

    def vessel(self, vessel_id: str) -> Optional[ProgressRecord]:
        return self.cache.read_snapshot().get(vessel_id)

    def status(self) -> PollerStatus:
        return self.poller.status()
