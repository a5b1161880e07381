from __future__ import annotations

from datetime import datetime
from pathlib import Path
import sys

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from movility_ai.alerts import AlertFilters, InMemoryAlertSource, ZoneAlertCorrelator, infer_alert_type
from movility_ai.config import DEFAULT_CONFIG
from movility_ai.data_models import Alert, Location
from movility_ai.geo_zones import DEFAULT_REGISTRY

MORNING_PEAK = datetime(2024, 3, 5, 8, 15)
MIDDAY = datetime(2024, 3, 5, 11, 0)


def make_alert(alert_id: str, severity: str = "high", minute: int = 0, **kwargs) -> Alert:
    return Alert(
        id=alert_id,
        description=kwargs.pop("description", "Accidente en la vía"),
        severity=severity,
        source="test",
        timestamp=datetime(2024, 3, 5, 7, minute),
        **kwargs,
    )


def correlator() -> ZoneAlertCorrelator:
    return ZoneAlertCorrelator(DEFAULT_REGISTRY, DEFAULT_CONFIG.correlator)


def test_alert_inside_bounds_is_attached_to_zone() -> None:
    alert = make_alert("a1", location=Location("Autopista Sur", 6.18, -75.60))

    [zone_alert] = correlator().correlate([alert], now=MIDDAY)

    assert zone_alert.zone.id == "autopista-sur"
    assert zone_alert.alert is alert
    assert not zone_alert.is_peak_hour


def test_unresolvable_and_inactive_alerts_are_dropped() -> None:
    alerts = [
        make_alert("outside", location=Location("Rionegro", 6.0, -75.0)),
        make_alert("no-geo"),
        make_alert("unknown-zone", zone_id="atlantis"),
        make_alert("inactive", zone_id="regional", is_active=False),
        make_alert("kept", zone_id="regional"),
    ]

    result = correlator().correlate(alerts, now=MIDDAY)

    assert [zone_alert.id for zone_alert in result] == ["kept"]


def test_unknown_zone_tag_falls_back_to_coordinates() -> None:
    alert = make_alert("a1", zone_id="atlantis", location=Location("", 6.30, -75.565))

    [zone_alert] = correlator().correlate([alert], now=MIDDAY)

    assert zone_alert.zone.id == "autopista-norte"


def test_sort_by_zone_priority_then_severity_then_recency() -> None:
    alerts = [
        make_alert("high-zone-critical", "critical", zone_id="carrera-70"),
        make_alert("critical-zone-low", "low", zone_id="avenida-33"),
        make_alert("critical-zone-high-old", "high", minute=5, zone_id="autopista-norte"),
        make_alert("critical-zone-high-new", "high", minute=30, zone_id="autopista-norte"),
    ]

    result = correlator().correlate(alerts, now=MIDDAY)

    assert [zone_alert.id for zone_alert in result] == [
        "critical-zone-high-new",
        "critical-zone-high-old",
        "critical-zone-low",
        "high-zone-critical",
    ]


def test_peak_flag_and_filters_intersect() -> None:
    alerts = [
        make_alert("norte", "critical", zone_id="autopista-norte"),
        make_alert("poblado", "medium", zone_id="avenida-poblado"),
        make_alert("palmas", "high", zone_id="las-palmas"),
    ]
    engine = correlator()

    peak = engine.correlate(alerts, AlertFilters(only_peak_hours=True), now=MORNING_PEAK)
    severe = engine.correlate(alerts, AlertFilters(severity_min="high"), now=MORNING_PEAK)
    scoped = engine.correlate(
        alerts, AlertFilters(severity_min="high", zone_ids=frozenset({"las-palmas"})), now=MORNING_PEAK
    )

    assert {zone_alert.id for zone_alert in peak} == {"norte", "poblado"}
    assert {zone_alert.id for zone_alert in severe} == {"norte", "palmas"}
    assert [zone_alert.id for zone_alert in scoped] == ["palmas"]


def test_affects_route_by_containment_or_center_proximity() -> None:
    zone = DEFAULT_REGISTRY.get("las-palmas")
    engine = correlator()

    near_center = [(zone.center.lat + 0.005, zone.center.lng)]
    far_away = [(6.35, -75.70)]

    assert engine.affects_route(zone, near_center)
    assert engine.affects_route(zone, [(6.11, -75.50)])
    assert not engine.affects_route(zone, far_away)

    alert = make_alert("palmas", zone_id="las-palmas")
    on_route = engine.correlate([alert], AlertFilters(route_points=tuple(near_center), only_affecting_route=True), now=MIDDAY)
    off_route = engine.correlate([alert], AlertFilters(route_points=tuple(far_away), only_affecting_route=True), now=MIDDAY)
    assert on_route[0].affects_route
    assert off_route == []


def test_summarize_by_zone_orders_by_serious_then_total() -> None:
    alerts = [
        make_alert("p1", "low", zone_id="avenida-poblado"),
        make_alert("p2", "low", zone_id="avenida-poblado"),
        make_alert("p3", "medium", zone_id="avenida-poblado"),
        make_alert("s1", "critical", zone_id="autopista-sur"),
        make_alert("r1", "high", zone_id="regional"),
        make_alert("r2", "medium", zone_id="regional"),
    ]

    summaries = correlator().summarize_by_zone(alerts, now=MORNING_PEAK)

    assert [(summary.zone.id, summary.critical_count, summary.alert_count) for summary in summaries] == [
        ("regional", 1, 2),
        ("autopista-sur", 1, 1),
        ("avenida-poblado", 0, 3),
    ]
    assert all(summary.is_peak_hour for summary in summaries)


def test_high_priority_alerts_keep_critical_zones_or_route_hits() -> None:
    palmas = DEFAULT_REGISTRY.get("las-palmas")
    alerts = [
        make_alert("critical-zone", "high", zone_id="avenida-oriental"),
        make_alert("medium-zone-on-route", "critical", zone_id="las-palmas"),
        make_alert("medium-zone-older", "critical", zone_id="las-palmas", minute=1),
        make_alert("low-severity", "medium", zone_id="autopista-norte"),
    ]
    engine = correlator()

    without_route = engine.high_priority_alerts(alerts, now=MIDDAY)
    with_route = engine.high_priority_alerts(alerts, route_points=[(palmas.center.lat, palmas.center.lng)], now=MIDDAY)

    assert [zone_alert.id for zone_alert in without_route] == ["critical-zone"]
    assert {zone_alert.id for zone_alert in with_route} == {
        "critical-zone",
        "medium-zone-on-route",
        "medium-zone-older",
    }


def test_in_memory_source_returns_only_active() -> None:
    source = InMemoryAlertSource([make_alert("a"), make_alert("b", is_active=False)])

    assert [alert.id for alert in source.fetch_active()] == ["a"]


def test_infer_alert_type() -> None:
    assert infer_alert_type("Choque entre moto y carro") == "accident"
    assert infer_alert_type("Cierre vial por obras") == "construction"
    assert infer_alert_type("Concierto en el estadio") == "event"
    assert infer_alert_type("Marcha de estudiantes") == "protest"
    assert infer_alert_type("Semáforo apagado") == "other"
