from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol

import pandas as pd
import requests

from src.live.records import VesselFix

VESSEL_LOCATIONS_URL = "https://www.wsdot.wa.gov/ferries/api/vessels/rest/vessellocations"
USER_AGENT = "ferrycaster/0.1.0"

_WSF_DATE = re.compile(r"/Date\((-?\d+)([+-]\d{4})?\)/")
_OPTIONAL_FIELDS = (
    "VesselName",
    "DepartingTerminalID",
    "ArrivingTerminalID",
    "AtDock",
    "InService",
    "Heading",
    "Speed",
    "TimeStamp",
)


class TelemetryFetchError(RuntimeError):
    pass


class TelemetrySource(Protocol):
    def fetch(self) -> List[VesselFix]:
        ...


def parse_wsf_date(value: Any) -> Optional[datetime]:
    """Parse the WCF-style `/Date(1565385600000-0700)/` stamps the WSF API returns."""
    if not isinstance(value, str):
        return None
    m = _WSF_DATE.search(value)
    if not m:
        return None
    # The millisecond count is already UTC; the offset only says where the server lives.
    ts = datetime.fromtimestamp(int(m.group(1)) / 1000.0, timezone.utc)
    offset = m.group(2)
    if offset:
        sign = 1 if offset[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(offset[1:3]), minutes=int(offset[3:5])))
        ts = ts.astimezone(tz)
    return ts


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _vessel_key(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _opt_int(value: Any) -> Optional[int]:
    if _is_missing(value):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _opt_float(value: Any) -> Optional[float]:
    if _is_missing(value):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def fixes_from_rows(rows: List[Dict[str, Any]], terminal: Optional[int] = None) -> List[VesselFix]:
    """
    Turn raw vessellocations rows into fixes.

    Rows without usable coordinates and vessels out of service are dropped.
    With `terminal` set, only vessels departing from or arriving at that
    terminal are kept. A vessel reported twice keeps its latest row.
    """
    if not rows:
        return []
    df = pd.DataFrame(rows)
    for col in ("VesselID", "Latitude", "Longitude"):
        if col not in df.columns:
            raise TelemetryFetchError(f"{col} field missing in vessel locations payload")
    for col in _OPTIONAL_FIELDS:
        if col not in df.columns:
            df[col] = None

    df = df.dropna(subset=["VesselID"]).copy()
    df["lat"] = pd.to_numeric(df["Latitude"], errors="coerce")
    df["lon"] = pd.to_numeric(df["Longitude"], errors="coerce")
    keep = df["lat"].between(-90.0, 90.0) & df["lon"].between(-180.0, 180.0)

    in_service = df["InService"].astype("boolean").fillna(True)
    keep &= in_service.to_numpy(dtype=bool)

    if terminal is not None:
        dep = pd.to_numeric(df["DepartingTerminalID"], errors="coerce")
        arr = pd.to_numeric(df["ArrivingTerminalID"], errors="coerce")
        keep &= dep.eq(terminal) | arr.eq(terminal)

    df = df.loc[keep].copy()
    if df.empty:
        return []

    parsed = {idx: parse_wsf_date(v) for idx, v in df["TimeStamp"].items()}
    df["sort_time"] = pd.to_datetime(pd.Series(parsed, dtype=object), utc=True, errors="coerce")
    df["vessel_key"] = [_vessel_key(v) for v in df["VesselID"]]
    df = df.sort_values("sort_time", na_position="first", kind="stable")
    df = df.drop_duplicates(subset=["vessel_key"], keep="last")

    fixes: List[VesselFix] = []
    for idx, row in zip(df.index, df.to_dict(orient="records")):
        name = row.get("VesselName")
        at_dock = row.get("AtDock")
        fixes.append(
            VesselFix(
                vessel_id=row["vessel_key"],
                lat=float(row["lat"]),
                lon=float(row["lon"]),
                timestamp=parsed[idx],
                vessel_name="" if _is_missing(name) else str(name),
                departing_terminal=_opt_int(row.get("DepartingTerminalID")),
                arriving_terminal=_opt_int(row.get("ArrivingTerminalID")),
                at_dock=False if _is_missing(at_dock) else bool(at_dock),
                heading=_opt_float(row.get("Heading")),
                speed=_opt_float(row.get("Speed")),
            )
        )
    return fixes


class WsfVesselClient:
    """Fetches current vessel locations from the WSDOT Ferries vessels API."""

    def __init__(
        self,
        access_code: str,
        terminal: Optional[int] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        url: str = VESSEL_LOCATIONS_URL,
    ):
        if not access_code:
            raise ValueError("access_code is required (env WSDOT_ACCESS_CODE or --accesscode).")
        self.access_code = access_code
        self.terminal = terminal
        self.timeout = timeout
        self.url = url
        self.session = session or requests.Session()

    def fetch(self) -> List[VesselFix]:
        try:
            resp = self.session.get(
                self.url,
                params={"apiaccesscode": self.access_code},
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as exc:
            raise TelemetryFetchError(f"vessel locations request failed: {exc}") from exc
        except ValueError as exc:
            raise TelemetryFetchError(f"vessel locations response is not JSON: {exc}") from exc
        if not isinstance(body, list):
            raise TelemetryFetchError(f"unexpected vessel locations payload type: {type(body).__name__}")
        return fixes_from_rows(body, terminal=self.terminal)
