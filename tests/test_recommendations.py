from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from pathlib import Path
import sys

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

import pytest

from movility_ai.config import DEFAULT_CONFIG
from movility_ai.data_models import Alert, Location, PipelineState, RouteOption, TripRequest, ZoneAlert
from movility_ai.geo_zones import DEFAULT_REGISTRY
from movility_ai.recommendations import RecommendationSynthesizer

ORIGIN = Location("Poblado", 6.2088, -75.5673)
DESTINATION = Location("Caribe", 6.2770, -75.5690)
OFF_PEAK = datetime(2024, 3, 5, 11, 0)


def route(route_id: str, duration: int, modes: tuple[str, ...], distance: float = 8.0, **kwargs) -> RouteOption:
    return RouteOption(
        id=route_id,
        origin=ORIGIN,
        destination=DESTINATION,
        transport_modes=modes,
        duration_minutes=duration,
        distance_km=distance,
        **kwargs,
    )


def zone_alert(alert_id: str, severity: str, zone_id: str = "autopista-norte", on_route: bool = False) -> ZoneAlert:
    alert = Alert(
        id=alert_id,
        description="Choque en el carril derecho.",
        severity=severity,
        source="test",
        timestamp=datetime(2024, 3, 5, 10, 0),
        zone_id=zone_id,
    )
    return ZoneAlert(alert=alert, zone=DEFAULT_REGISTRY.get(zone_id), affects_route=on_route)


def make_state(selected: RouteOption | None, alternatives=(), alerts=(), departure: datetime = OFF_PEAK) -> PipelineState:
    state = PipelineState(request=TripRequest(origin=ORIGIN, destination=DESTINATION))
    state.departure_time = departure
    state.selected_route = selected
    state.route_options = [selected, *alternatives] if selected else []
    state.alternative_routes = list(alternatives)
    state.alerts = list(alerts)
    return state


def synthesizer() -> RecommendationSynthesizer:
    return RecommendationSynthesizer(DEFAULT_CONFIG.recommendations)


def test_faster_alternative_is_suggested_only_beyond_threshold() -> None:
    selected = route("selected", 40, ("metro", "walk"))

    recs, _ = synthesizer().synthesize(make_state(selected, [route("alt", 34, ("bus",))]))
    none, _ = synthesizer().synthesize(make_state(selected, [route("alt", 35, ("bus",))]))

    route_recs = [rec for rec in recs if rec.category == "route"]
    assert len(route_recs) == 1
    assert route_recs[0].priority == "high"
    assert route_recs[0].potential_time_saved_min == 6
    assert not [rec for rec in none if rec.category == "route"]


@pytest.mark.parametrize(
    "hour, expected",
    [(6, False), (7, True), (9, True), (10, False), (17, True), (19, True), (20, False)],
)
def test_rush_hour_departure(hour: int, expected: bool) -> None:
    selected = route("selected", 30, ("metro", "walk"))

    recs, _ = synthesizer().synthesize(make_state(selected, departure=datetime(2024, 3, 5, hour, 59)))

    time_recs = [rec for rec in recs if rec.category == "time"]
    assert bool(time_recs) is expected
    if expected:
        assert time_recs[0].potential_time_saved_min == 15
        assert time_recs[0].priority == "medium"


def test_mode_recommendations() -> None:
    short_bus = route("short", 8, ("bus",), distance=1.2, co2_kg=0.06)

    recs, _ = synthesizer().synthesize(make_state(short_bus))

    ids = [rec.id for rec in recs]
    assert "rec-mode-1" in ids
    walk = next(rec for rec in recs if rec.id == "rec-mode-2")
    assert walk.priority == "low"
    assert walk.potential_co2_saved_kg == pytest.approx(0.06)


def test_alert_recommendations_only_for_serious_alerts() -> None:
    selected = route("selected", 30, ("metro", "walk"))
    alerts = [zone_alert("a1", "critical"), zone_alert("a2", "high"), zone_alert("a3", "medium")]

    recs, _ = synthesizer().synthesize(make_state(selected, alerts=alerts))

    alert_recs = [rec for rec in recs if rec.category == "alert"]
    assert [rec.id for rec in alert_recs] == ["rec-alert-a1", "rec-alert-a2"]
    assert all(rec.priority == "high" for rec in alert_recs)
    assert "accident" in alert_recs[0].title


def test_priority_ordering_is_stable_and_capped() -> None:
    selected = route("selected", 50, ("bus",), distance=1.0)
    alternatives = [route("alt", 30, ("metro",))]
    alerts = [zone_alert(f"a{idx}", "high") for idx in range(12)]
    state = make_state(selected, alternatives, alerts, departure=datetime(2024, 3, 5, 8, 0))

    recs, _ = synthesizer().synthesize(state)

    assert len(recs) == DEFAULT_CONFIG.recommendations.max_recommendations
    assert recs[0].id == "rec-route-1"
    assert [rec.id for rec in recs[1:4]] == ["rec-alert-a0", "rec-alert-a1", "rec-alert-a2"]
    assert all(rec.priority == "high" for rec in recs)

    small = replace(DEFAULT_CONFIG.recommendations, max_recommendations=50)
    full, _ = RecommendationSynthesizer(small).synthesize(state)
    priorities = [rec.priority for rec in full]
    assert priorities == ["high"] * 13 + ["medium", "medium", "low"]
    assert [rec.id for rec in full[13:15]] == ["rec-time-1", "rec-mode-1"]


def test_optimization_suggestions() -> None:
    driving = route("car", 30, ("car",), distance=20.0, estimated_cost=40.0, co2_kg=2.4)
    alerts = [zone_alert(f"a{idx}", "low") for idx in range(3)]

    _, suggestions = synthesizer().synthesize(make_state(driving, alerts=alerts))
    _, nothing = synthesizer().synthesize(make_state(None, alerts=alerts))

    assert len(suggestions) == 3
    assert nothing == []


def test_no_route_yields_only_time_and_alert_recommendations() -> None:
    recs, _ = synthesizer().synthesize(make_state(None, alerts=[zone_alert("a1", "critical")], departure=datetime(2024, 3, 5, 18)))

    assert {rec.category for rec in recs} == {"time", "alert"}


def test_only_route_alerts_are_actionable() -> None:
    selected = route("selected", 30, ("metro", "walk"))
    alerts = [zone_alert("near", "critical", on_route=True), zone_alert("far", "high", zone_id="las-palmas")]

    recs, _ = synthesizer().synthesize(make_state(selected, alerts=alerts))

    by_id = {rec.id: rec for rec in recs}
    assert by_id["rec-alert-near"].actionable
    assert "Consider an alternative route" in by_id["rec-alert-near"].description
    assert not by_id["rec-alert-far"].actionable
