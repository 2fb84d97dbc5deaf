from __future__ import annotations

import math

import pytest

from src.live.records import INBOUND, OUTBOUND, STATUS_NO_MATCH, STATUS_OK, VesselFix
from src.route.model import EARTH_RADIUS_M, Waypoint, build_route_model
from src.route.projector import SANITY_THRESHOLD_M, project_fix

LAT0 = 47.60
LON0 = -122.40


def _at(north_m: float, east_m: float = 0.0) -> Waypoint:
    lat = LAT0 + math.degrees(north_m / EARTH_RADIUS_M)
    lon = LON0 + math.degrees(east_m / (EARTH_RADIUS_M * math.cos(math.radians(LAT0))))
    return Waypoint(lat=lat, lon=lon)


def _fix(wp: Waypoint, **kwargs) -> VesselFix:
    return VesselFix(vessel_id=kwargs.pop("vessel_id", "1"), lat=wp.lat, lon=wp.lon, **kwargs)


def _line_model():
    # 1 km due north, 100 m segments.
    return build_route_model([_at(0), _at(1000)], 100.0)


def test_start_end_and_midpoint_of_straight_route() -> None:
    model = _line_model()

    start = project_fix(_fix(_at(0)), model)
    end = project_fix(_fix(_at(1000)), model)
    mid = project_fix(_fix(_at(500)), model)

    assert start.status == STATUS_OK
    assert start.progress == pytest.approx(0.0, abs=1e-6)
    assert end.progress == pytest.approx(1.0, abs=1e-6)
    assert mid.progress == pytest.approx(0.5, abs=1e-6)


def test_segment_midpoint_maps_to_start_plus_half_length() -> None:
    model = build_route_model([_at(0), _at(300), _at(300, 400)], 120.0)
    for k in (0, 2, 4, model.segment_count - 1):
        lat, lon = (model.vertices_latlon[k] + model.vertices_latlon[k + 1]) / 2.0
        rec = project_fix(VesselFix(vessel_id="1", lat=float(lat), lon=float(lon)), model)

        expected = (model.cumulative[k] + model.lengths[k] / 2.0) / model.total_length
        assert rec.progress == pytest.approx(expected, abs=1e-9)
        assert rec.offset_m == pytest.approx(0.0, abs=1e-6)


def test_fix_off_to_the_side_projects_perpendicularly() -> None:
    model = _line_model()
    rec = project_fix(_fix(_at(250, east_m=80)), model)

    assert rec.status == STATUS_OK
    assert rec.progress == pytest.approx(0.25, abs=1e-4)
    assert rec.offset_m == pytest.approx(80.0, abs=0.5)


def test_fix_past_the_end_is_clamped_to_endpoint() -> None:
    model = _line_model()
    rec = project_fix(_fix(_at(1200)), model)

    assert rec.progress == pytest.approx(1.0)
    assert rec.offset_m == pytest.approx(200.0, abs=0.5)

    before = project_fix(_fix(_at(-150)), model)
    assert before.progress == pytest.approx(0.0)


def test_fix_beyond_sanity_threshold_yields_no_data() -> None:
    model = _line_model()
    rec = project_fix(_fix(_at(500, east_m=SANITY_THRESHOLD_M + 250)), model)

    assert rec.status == STATUS_NO_MATCH
    assert rec.progress is None
    assert rec.to_payload()["progress"] is None
    assert rec.offset_m > SANITY_THRESHOLD_M


def test_custom_max_distance() -> None:
    model = _line_model()
    rec = project_fix(_fix(_at(500, east_m=60)), model, max_distance=50.0)
    assert rec.status == STATUS_NO_MATCH


def test_tie_prefers_earlier_segment() -> None:
    # Out and back over the same line: every fix matches both legs equally.
    model = build_route_model([_at(0), _at(1000), _at(0)], 100.0)
    rec = project_fix(_fix(_at(500)), model)

    assert model.total_length == pytest.approx(2000.0, abs=1e-3)
    assert rec.progress == pytest.approx(0.25, abs=1e-6)


def test_direction_comes_from_departing_terminal() -> None:
    model = _line_model()
    terminals = (7, 3)

    out = project_fix(_fix(_at(100), departing_terminal=7, arriving_terminal=3), model, terminals=terminals)
    back = project_fix(_fix(_at(100), departing_terminal=3, arriving_terminal=7), model, terminals=terminals)
    other = project_fix(_fix(_at(100), departing_terminal=99), model, terminals=terminals)
    unknown = project_fix(_fix(_at(100)), model)

    assert out.direction == OUTBOUND
    assert back.direction == INBOUND
    assert other.direction is None
    assert unknown.direction is None
    assert back.directed_progress == pytest.approx(0.9, abs=1e-6)


def test_record_carries_fix_details() -> None:
    model = _line_model()
    rec = project_fix(_fix(_at(100), vessel_id="42", vessel_name="Wenatchee", at_dock=True), model)

    assert rec.vessel_id == "42"
    assert rec.vessel_name == "Wenatchee"
    assert rec.at_dock is True
    assert rec.defaulted is False
