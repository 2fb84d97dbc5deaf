from __future__ import annotations

import math
from pathlib import Path

import numpy as np
import pytest

from src.route.model import EARTH_RADIUS_M, InvalidRouteError, Waypoint, build_route_model, load_waypoints

ROOT = Path(__file__).resolve().parents[1]
LAT0 = 47.60
LON0 = -122.40


def _north(meters: float) -> Waypoint:
    return Waypoint(lat=LAT0 + math.degrees(meters / EARTH_RADIUS_M), lon=LON0)


def test_two_waypoints_1km_apart_split_into_ten_100m_segments() -> None:
    model = build_route_model([_north(0), _north(1000)], 100.0)

    assert model.segment_count == 10
    assert model.total_length == pytest.approx(1000.0, abs=1e-6)
    assert np.all(model.lengths <= 100.0 + 1e-6)
    assert model.lengths.tolist() == pytest.approx([100.0] * 10, abs=1e-6)


def test_pair_closer_than_max_length_is_not_subdivided() -> None:
    model = build_route_model([_north(0), _north(40)], 100.0)
    assert model.segment_count == 1
    assert model.total_length == pytest.approx(40.0, abs=1e-6)


def test_segments_are_contiguous_and_ordered_by_cumulative_distance() -> None:
    waypoints = [_north(0), _north(250), Waypoint(lat=_north(250).lat, lon=LON0 + 0.005), _north(900)]
    model = build_route_model(waypoints, 60.0)

    assert np.allclose(model.starts[1:], model.ends[:-1])
    assert model.cumulative[0] == 0.0
    assert np.all(np.diff(model.cumulative) > 0)
    assert np.allclose(model.cumulative[1:], model.cumulative[:-1] + model.lengths[:-1])
    assert model.total_length == pytest.approx(float(model.cumulative[-1] + model.lengths[-1]))


def test_reference_route_respects_max_segment_length() -> None:
    waypoints = load_waypoints(ROOT / "data" / "routes" / "seattle_bainbridge.csv")
    model = build_route_model(waypoints, 25.0)

    assert len(waypoints) >= 2
    assert np.all(model.lengths <= 25.0 + 1e-6)
    assert 10_000 < model.total_length < 20_000
    assert len(model.coordinates()) == model.segment_count + 1
    assert model.coordinates()[0] == pytest.approx((waypoints[0].lat, waypoints[0].lon))
    assert model.coordinates()[-1] == pytest.approx((waypoints[-1].lat, waypoints[-1].lon))


def test_duplicate_waypoints_are_skipped() -> None:
    model = build_route_model([_north(0), _north(0), _north(300)], 100.0)
    assert model.segment_count == 3
    assert np.all(model.lengths > 0)


def test_invalid_routes_are_rejected() -> None:
    with pytest.raises(InvalidRouteError):
        build_route_model([], 10.0)
    with pytest.raises(InvalidRouteError):
        build_route_model([_north(0)], 10.0)
    with pytest.raises(InvalidRouteError):
        build_route_model([_north(0), _north(0)], 10.0)
    with pytest.raises(InvalidRouteError):
        build_route_model([_north(0), _north(100)], 0.0)


def test_model_arrays_are_read_only() -> None:
    model = build_route_model([_north(0), _north(500)], 100.0)
    with pytest.raises(ValueError):
        model.lengths[0] = 1.0


def test_load_waypoints_drops_bad_rows(tmp_path: Path) -> None:
    src = tmp_path / "route.csv"
    src.write_text(
        "\n".join(
            [
                "lat,lon,note",
                "47.60,-122.34,start",
                "abc,-122.35,broken",
                "95.0,-122.36,out of range",
                "47.62,-122.50,end",
            ]
        ),
        encoding="utf-8",
    )

    waypoints = load_waypoints(src)
    assert waypoints == [Waypoint(47.60, -122.34), Waypoint(47.62, -122.50)]


def test_load_waypoints_requires_lat_lon(tmp_path: Path) -> None:
    src = tmp_path / "route.csv"
    src.write_text("latitude,longitude\n47.6,-122.3\n", encoding="utf-8")
    with pytest.raises(InvalidRouteError):
        load_waypoints(src)


def test_to_frame_lists_vertices_with_cumulative_distance() -> None:
    model = build_route_model([_north(0), _north(300)], 100.0)
    df = model.to_frame()

    assert list(df.columns) == ["lat", "lon", "cumulative_m"]
    assert len(df) == 4
    assert df["cumulative_m"].tolist() == pytest.approx([0.0, 100.0, 200.0, 300.0], abs=1e-6)


def test_load_waypoints_rejects_unreadable_csv(tmp_path: Path) -> None:
    empty = tmp_path / "empty.csv"
    empty.write_text("", encoding="utf-8")
    with pytest.raises(InvalidRouteError):
        load_waypoints(empty)

    ragged = tmp_path / "ragged.csv"
    ragged.write_text("lat,lon\n47.6,-122.3\n47.6,-122.4,x,y\n", encoding="utf-8")
    with pytest.raises(InvalidRouteError):
        load_waypoints(ragged)
