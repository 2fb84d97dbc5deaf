from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

EARTH_RADIUS_M = 6_371_008.8
# Guards ceil() against distances like 1000.0000000001 m splitting into an extra piece.
_SPLIT_EPS = 1e-9


class InvalidRouteError(ValueError):
    pass


@dataclass(frozen=True)
class Waypoint:
    lat: float
    lon: float


@dataclass(frozen=True)
class LocalFrame:
    """
    Equirectangular projection around the route's origin.
    x grows east and y grows north, both in metres. Good enough for a route a
    few tens of kilometres long; linear in lat/lon, so interpolating waypoints
    in degrees yields straight segments in the frame.
    """

    lat0: float
    lon0: float

    @classmethod
    def around(cls, waypoints: Sequence[Waypoint]) -> "LocalFrame":
        lat0 = float(np.mean([w.lat for w in waypoints]))
        return cls(lat0=lat0, lon0=waypoints[0].lon)

    def to_xy(self, lat, lon) -> Tuple[np.ndarray, np.ndarray]:
        k = math.cos(math.radians(self.lat0))
        x = np.radians(np.asarray(lon, dtype=float) - self.lon0) * EARTH_RADIUS_M * k
        y = np.radians(np.asarray(lat, dtype=float) - self.lat0) * EARTH_RADIUS_M
        return x, y

    def distance(self, a: Waypoint, b: Waypoint) -> float:
        ax, ay = self.to_xy(a.lat, a.lon)
        bx, by = self.to_xy(b.lat, b.lon)
        return float(np.hypot(bx - ax, by - ay))


@dataclass(frozen=True, eq=False)
class RouteModel:
    frame: LocalFrame
    vertices_latlon: np.ndarray  # (n + 1, 2) lat, lon
    starts: np.ndarray  # (n, 2) x, y
    ends: np.ndarray  # (n, 2) x, y
    lengths: np.ndarray  # (n,)
    cumulative: np.ndarray  # (n,) distance from route start to segment start
    total_length: float
    segment_max_size: float

    @property
    def segment_count(self) -> int:
        return int(self.lengths.shape[0])

    def coordinates(self) -> List[Tuple[float, float]]:
        return [(float(lat), float(lon)) for lat, lon in self.vertices_latlon]

    def to_frame(self) -> pd.DataFrame:
        along = np.concatenate([self.cumulative, [self.total_length]])
        return pd.DataFrame(
            {
                "lat": self.vertices_latlon[:, 0],
                "lon": self.vertices_latlon[:, 1],
                "cumulative_m": along,
            }
        )


def load_waypoints(path: Path) -> List[Waypoint]:
    path = Path(path)
    try:
        df = pd.read_csv(path)
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as exc:
        raise InvalidRouteError(f"cannot read route file {path.name}: {exc}") from exc
    for col in ("lat", "lon"):
        if col not in df.columns:
            raise InvalidRouteError(f"{col} column missing in {path.name}")
    lat = pd.to_numeric(df["lat"], errors="coerce")
    lon = pd.to_numeric(df["lon"], errors="coerce")
    ok = lat.between(-90.0, 90.0) & lon.between(-180.0, 180.0)
    return [Waypoint(lat=float(a), lon=float(b)) for a, b in zip(lat[ok], lon[ok])]


def _densify(waypoints: Sequence[Waypoint], frame: LocalFrame, segment_max_size: float) -> np.ndarray:
    lats = [waypoints[0].lat]
    lons = [waypoints[0].lon]
    for a, b in zip(waypoints[:-1], waypoints[1:]):
        d = frame.distance(a, b)
        if d <= 0.0:
            continue
        pieces = max(1, math.ceil(d / segment_max_size - _SPLIT_EPS))
        for i in range(1, pieces + 1):
            t = i / pieces
            lats.append(a.lat + (b.lat - a.lat) * t)
            lons.append(a.lon + (b.lon - a.lon) * t)
    return np.column_stack([lats, lons])


def _read_only(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


def build_route_model(waypoints: Sequence[Waypoint], segment_max_size: float) -> RouteModel:
    if len(waypoints) < 2:
        raise InvalidRouteError(f"a route needs at least two waypoints, got {len(waypoints)}")
    if not segment_max_size > 0:
        raise InvalidRouteError(f"segment_max_size must be positive, got {segment_max_size}")

    frame = LocalFrame.around(waypoints)
    vertices = _densify(waypoints, frame, float(segment_max_size))
    if len(vertices) < 2:
        raise InvalidRouteError("route has zero length (all waypoints coincide)")

    x, y = frame.to_xy(vertices[:, 0], vertices[:, 1])
    xy = np.column_stack([x, y])
    starts = xy[:-1].copy()
    ends = xy[1:].copy()
    lengths = np.hypot(ends[:, 0] - starts[:, 0], ends[:, 1] - starts[:, 1])
    cumulative = np.concatenate([[0.0], np.cumsum(lengths)[:-1]])

    return RouteModel(
        frame=frame,
        vertices_latlon=_read_only(vertices),
        starts=_read_only(starts),
        ends=_read_only(ends),
        lengths=_read_only(lengths),
        cumulative=_read_only(cumulative),
        total_length=float(lengths.sum()),
        segment_max_size=float(segment_max_size),
    )
