from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from src.live.cache import SnapshotCache
from src.live.config import ServerConfig
from src.live.records import OUTBOUND, ProgressRecord, Snapshot, VesselFix
from src.live.telemetry import TelemetryFetchError, TelemetrySource
from src.route.model import RouteModel
from src.route.projector import project_fix

log = logging.getLogger(__name__)

STATE_IDLE = "idle"
STATE_POLLING = "polling"

# Directed progress at or below this counts as the start of a new voyage.
ENDPOINT_MARGIN = 0.02
# Backward steps up to this much directed progress are GPS jitter and get held;
# a larger drop is a new voyage.
JITTER_MAX_BACKSTEP = 0.05


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PollerState:
    last_activity: float
    interval: float
    idle: bool = False
    last_activity_at: Optional[datetime] = None
    last_success: Optional[float] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    fetches: int = 0
    failures: int = 0
    skipped_ticks: int = 0


class PollerStatus(BaseModel):
    state: str
    interval_sec: float
    last_activity: Optional[str] = None
    last_success: Optional[str] = None
    last_error: Optional[str] = None
    fetches: int = 0
    failures: int = 0
    skipped_ticks: int = 0


class Poller:
    """
    Background loop that keeps the SnapshotCache fresh while someone is asking.

    Polls every `update_frequency` seconds (shortened by staleness
    compensation when `max_staleness` >= 0), goes idle after `idle_after`
    seconds without `touch()`, and wakes up on the next `touch()`.
    """

    def __init__(
        self,
        config: ServerConfig,
        model: RouteModel,
        source: TelemetrySource,
        cache: SnapshotCache,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.config = config
        self.model = model
        self.source = source
        self.cache = cache
        self._clock = clock
        self._now = now
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        # vessel_id -> (direction, directed progress); poller thread only.
        self._voyages: Dict[str, Tuple[str, float]] = {}
        self.state = PollerState(
            last_activity=clock(),
            last_activity_at=now(),
            interval=config.update_frequency,
        )

    # --- lifecycle -------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ferry-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # --- activity --------------------------------------------------------

    def touch(self) -> None:
        with self._lock:
            self.state.last_activity = self._clock()
            self.state.last_activity_at = self._now()
            was_idle = self.state.idle
        if was_idle:
            self._wake.set()

    def is_idle(self, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        with self._lock:
            return now - self.state.last_activity >= self.config.idle_after

    def status(self) -> PollerStatus:
        with self._lock:
            s = dataclasses.replace(self.state)
        return PollerStatus(
            state=STATE_IDLE if s.idle else STATE_POLLING,
            interval_sec=round(s.interval, 3),
            last_activity=s.last_activity_at.isoformat() if s.last_activity_at else None,
            last_success=s.last_success_at.isoformat() if s.last_success_at else None,
            last_error=s.last_error,
            fetches=s.fetches,
            failures=s.failures,
            skipped_ticks=s.skipped_ticks,
        )

    # --- scheduling ------------------------------------------------------

    def next_interval(self, now: Optional[float] = None) -> float:
        now = self._clock() if now is None else now
        interval = self.config.update_frequency
        with self._lock:
            last_success = self.state.last_success
        if self.config.staleness_compensation and last_success is not None:
            remaining = self.config.max_staleness - (now - last_success)
            floor = min(interval, self.config.min_update_interval)
            interval = max(floor, min(interval, remaining))
        return interval

    def schedule_after(self, tick: float, now: Optional[float] = None) -> float:
        """Return the next tick after `tick`, skipping every tick that `now` has already passed."""
        now = self._clock() if now is None else now
        interval = self.next_interval(now)
        nxt = tick + interval
        skipped = 0
        if now >= nxt:
            skipped = int((now - tick) // interval)
            nxt = tick + (skipped + 1) * interval
            log.debug("telemetry fetch overran %d tick(s); skipping", skipped)
        with self._lock:
            self.state.interval = interval
            self.state.skipped_ticks += skipped
        return nxt

    def _enter_idle(self, now: float) -> bool:
        with self._lock:
            idle = now - self.state.last_activity >= self.config.idle_after
            if idle and not self.state.idle:
                self.state.idle = True
                self._wake.clear()
                self._voyages.clear()
                log.info("no requests for %.0fs; poller going idle", self.config.idle_after)
        return idle

    def _resume(self) -> None:
        with self._lock:
            self.state.idle = False
        log.info("activity seen; poller resuming")

    def _run(self) -> None:
        log.info(
            "poller started (update=%.1fs idle=%.1fs max_staleness=%.1fs)",
            self.config.update_frequency,
            self.config.idle_after,
            self.config.max_staleness,
        )
        tick = self._clock()
        while not self._stop.is_set():
            now = self._clock()
            if self._enter_idle(now):
                if self._stop.is_set():
                    break
                self._wake.wait()
                self._wake.clear()
                if self._stop.is_set():
                    break
                self._resume()
                tick = self._clock()
                continue
            if now < tick:
                self._stop.wait(tick - now)
                continue
            self.poll_once()
            tick = self.schedule_after(tick)
        log.info("poller stopped")

    # --- polling ---------------------------------------------------------

    def poll_once(self) -> bool:
        """Fetch, project and commit one snapshot. Returns False when the previous snapshot was kept."""
        started = self._now()
        with self._lock:
            self.state.fetches += 1
        try:
            fixes = self.source.fetch()
            snapshot = self.build_snapshot(fixes, started)
        except TelemetryFetchError as exc:
            log.warning("telemetry fetch failed, keeping previous snapshot: %s", exc)
            self._record_failure(exc)
            return False
        except Exception as exc:
            log.exception("could not build snapshot, keeping previous one")
            self._record_failure(exc)
            return False

        self.cache.replace_snapshot(snapshot)
        with self._lock:
            self.state.last_success = self._clock()
            self.state.last_success_at = started
            self.state.last_error = None
        log.debug("committed snapshot with %d vessel(s)", len(snapshot))
        return True

    def _record_failure(self, exc: Exception) -> None:
        with self._lock:
            self.state.failures += 1
            self.state.last_error = f"{type(exc).__name__}: {exc}"

    def build_snapshot(self, fixes: List[VesselFix], computed_at: datetime) -> Snapshot:
        records = []
        for fix in fixes:
            rec = project_fix(
                fix,
                self.model,
                terminals=self.config.route_terminals,
                computed_at=computed_at,
            )
            records.append(self._hold_monotonic(rec))
        seen = {fix.vessel_id for fix in fixes}
        for vessel_id in list(self._voyages):
            if vessel_id not in seen:
                del self._voyages[vessel_id]
        return Snapshot.build(records, last_updated=computed_at).padded(self.config.minimum_ferries)

    def _hold_monotonic(self, rec: ProgressRecord) -> ProgressRecord:
        directed = rec.directed_progress
        if rec.direction is None or rec.at_dock:
            self._voyages.pop(rec.vessel_id, None)
            return rec
        if directed is None:
            return rec

        prev = self._voyages.get(rec.vessel_id)
        if (
            prev is not None
            and prev[0] == rec.direction
            and directed > ENDPOINT_MARGIN
            and prev[1] - JITTER_MAX_BACKSTEP <= directed < prev[1]
        ):
            directed = prev[1]
            progress = directed if rec.direction == OUTBOUND else 1.0 - directed
            rec = dataclasses.replace(rec, progress=progress)
        self._voyages[rec.vessel_id] = (rec.direction, directed)
        return rec
