from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

STATUS_OK = "ok"
STATUS_NO_MATCH = "no_match"
STATUS_DEFAULTED = "defaulted"

OUTBOUND = "outbound"
INBOUND = "inbound"

PLACEHOLDER_PREFIX = "placeholder-"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class VesselFix:
    """
    One vessel position as reported by the telemetry source.
    Only vessel_id/lat/lon/timestamp are needed for projection; the rest is
    passed through so the API can tell which way a ferry is heading.
    """

    vessel_id: str
    lat: float
    lon: float
    timestamp: Optional[datetime] = None
    vessel_name: str = ""
    departing_terminal: Optional[int] = None
    arriving_terminal: Optional[int] = None
    at_dock: bool = False
    heading: Optional[float] = None
    speed: Optional[float] = None


@dataclass(frozen=True)
class ProgressRecord:
    vessel_id: str
    progress: Optional[float]
    status: str
    computed_at: datetime
    vessel_name: str = ""
    direction: Optional[str] = None
    at_dock: bool = False
    source_time: Optional[datetime] = None
    offset_m: Optional[float] = None

    @property
    def defaulted(self) -> bool:
        return self.status == STATUS_DEFAULTED

    @property
    def directed_progress(self) -> Optional[float]:
        # Progress measured in the vessel's own direction of travel.
        if self.progress is None:
            return None
        if self.direction == INBOUND:
            return 1.0 - self.progress
        return self.progress

    def to_payload(self) -> Dict[str, Any]:
        return {
            "progress": self.progress,
            "status": self.status,
            "defaulted": self.defaulted,
            "direction": self.direction,
            "at_dock": self.at_dock,
            "vessel_name": self.vessel_name,
            "last_updated": _iso(self.computed_at),
        }

    def to_debug_payload(self) -> Dict[str, Any]:
        payload = self.to_payload()
        payload["vessel_id"] = self.vessel_id
        payload["directed_progress"] = self.directed_progress
        payload["source_time"] = _iso(self.source_time)
        payload["offset_m"] = None if self.offset_m is None else round(self.offset_m, 2)
        return payload


def placeholder_record(vessel_id: str, computed_at: datetime) -> ProgressRecord:
    return ProgressRecord(
        vessel_id=vessel_id,
        progress=None,
        status=STATUS_DEFAULTED,
        computed_at=computed_at,
    )


@dataclass(frozen=True)
class Snapshot:
    records: Mapping[str, ProgressRecord] = field(default_factory=lambda: MappingProxyType({}))
    last_updated: Optional[datetime] = None

    @classmethod
    def build(cls, records: Iterable[ProgressRecord], last_updated: Optional[datetime]) -> "Snapshot":
        table = {r.vessel_id: r for r in records}
        return cls(records=MappingProxyType(table), last_updated=last_updated)

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls()

    def __len__(self) -> int:
        return len(self.records)

    def get(self, vessel_id: str) -> Optional[ProgressRecord]:
        return self.records.get(vessel_id)

    def age_seconds(self, now: Optional[datetime] = None) -> Optional[float]:
        if self.last_updated is None:
            return None
        now = now or _utcnow()
        return max((now - self.last_updated).total_seconds(), 0.0)

    def padded(self, minimum: int, now: Optional[datetime] = None) -> "Snapshot":
        """Return a snapshot with at least `minimum` records, filling with placeholders."""
        if len(self.records) >= minimum:
            return self
        stamp = self.last_updated or now or _utcnow()
        table = dict(self.records)
        n = 0
        while len(table) < minimum:
            n += 1
            key = f"{PLACEHOLDER_PREFIX}{n}"
            if key not in table:
                table[key] = placeholder_record(key, stamp)
        return Snapshot(records=MappingProxyType(table), last_updated=self.last_updated)

    def to_payload(self) -> Dict[str, Dict[str, Any]]:
        return {vessel_id: rec.to_payload() for vessel_id, rec in self.records.items()}
