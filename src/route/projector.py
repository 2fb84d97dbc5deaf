from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

import numpy as np

from src.live.records import (
    INBOUND,
    OUTBOUND,
    STATUS_NO_MATCH,
    STATUS_OK,
    ProgressRecord,
    VesselFix,
)
from src.route.model import RouteModel

# Fixes farther than this from every segment are reported as "no data".
SANITY_THRESHOLD_M = 750.0
# Segments whose distance is within this of the minimum count as a tie.
TIE_TOLERANCE_M = 1e-6


@dataclass(frozen=True)
class Projection:
    along_m: float
    offset_m: float
    segment_index: int


def project_point(model: RouteModel, lat: float, lon: float) -> Projection:
    x, y = model.frame.to_xy(lat, lon)
    p = np.array([float(x), float(y)])

    d = model.ends - model.starts
    rel = p - model.starts
    t = (rel * d).sum(axis=1) / (model.lengths ** 2)
    # Clamped projection: past either end, the nearest endpoint is the target.
    t = np.clip(t, 0.0, 1.0)
    nearest = model.starts + d * t[:, None]
    dist = np.hypot(nearest[:, 0] - p[0], nearest[:, 1] - p[1])

    best = float(dist.min())
    idx = int(np.flatnonzero(dist <= best + TIE_TOLERANCE_M)[0])
    along = float(model.cumulative[idx] + t[idx] * model.lengths[idx])
    return Projection(along_m=along, offset_m=float(dist[idx]), segment_index=idx)


def direction_of(fix: VesselFix, terminals: Optional[Tuple[int, int]]) -> Optional[str]:
    if terminals is None or fix.departing_terminal is None:
        return None
    start, end = terminals
    if fix.departing_terminal == start:
        return OUTBOUND
    if fix.departing_terminal == end:
        return INBOUND
    return None


def project_fix(
    fix: VesselFix,
    model: RouteModel,
    *,
    terminals: Optional[Tuple[int, int]] = None,
    max_distance: float = SANITY_THRESHOLD_M,
    computed_at: Optional[datetime] = None,
) -> ProgressRecord:
    """
    Map one fix onto the route.

    `terminals` is the (start, end) terminal id pair of the route and is only
    used to label the direction of travel. A fix farther than `max_distance`
    metres from the route yields a record with status "no_match" and no
    progress value.
    """
    computed_at = computed_at or datetime.now(timezone.utc)
    proj = project_point(model, fix.lat, fix.lon)

    progress: Optional[float] = None
    status = STATUS_NO_MATCH
    if proj.offset_m <= max_distance:
        progress = min(max(proj.along_m / model.total_length, 0.0), 1.0)
        status = STATUS_OK

    return ProgressRecord(
        vessel_id=fix.vessel_id,
        progress=progress,
        status=status,
        computed_at=computed_at,
        vessel_name=fix.vessel_name,
        direction=direction_of(fix, terminals),
        at_dock=fix.at_dock,
        source_time=fix.timestamp,
        offset_m=proj.offset_m,
    )
