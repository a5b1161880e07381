from __future__ import annotations

import math
from datetime import datetime
from pathlib import Path
import sys

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

import pytest

from movility_ai.alerts import InMemoryAlertSource
from movility_ai.config import DEFAULT_CONFIG, DataPaths
from movility_ai.data_models import Alert, Location, TripRequest
from movility_ai.directions import SimulatedDirectionsProvider
from movility_ai.errors import AlertSourceError
from movility_ai.pipeline import MovilityPipeline, Stage
from movility_ai.reporting import APOLOGY, ReportGenerator

POBLADO = Location("Parque El Poblado", 6.2088, -75.5673)
CARIBE = Location("Terminal del Norte", 6.2770, -75.5690)
DEPARTURE = datetime(2024, 3, 5, 8, 15)
INDUSTRIALES = Location("Estación Industriales", 6.25, -75.58)
ENVIGADO = Location("Envigado", 6.17, -75.59)


class CountingProvider:
    """Returns nothing for the first `failures` calls, then defers to the simulator."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = 0
        self.inner = SimulatedDirectionsProvider(DEFAULT_CONFIG.provider)

    def get_route(self, origin, destination, mode, departure_time=None):
        self.calls += 1
        if self.calls <= self.failures:
            return None
        return self.inner.get_route(origin, destination, mode, departure_time)


class BrokenAlertSource:
    def fetch_active(self):
        raise AlertSourceError("feed down", source="test")


def oriental_alert() -> Alert:
    return Alert(
        id="oriental-1",
        description="Choque en la Avenida Oriental",
        severity="critical",
        source="test",
        timestamp=datetime(2024, 3, 5, 8, 0),
        zone_id="avenida-oriental",
    )


def test_pipeline_end_to_end() -> None:
    pipeline = MovilityPipeline(alert_source=InMemoryAlertSource([oriental_alert()]))

    state = pipeline.run(TripRequest(origin=POBLADO, destination=CARIBE, departure_time=DEPARTURE))

    assert state.errors == []
    assert state.route_options
    assert state.selected_route == state.route_options[0]
    assert "metro" in state.selected_route.transport_modes
    assert state.recommendations
    assert state.preferred_modes == ("metro", "bus", "walk")
    assert not state.features.is_holiday
    assert state.congestion_zones
    zones_forecast = min(len(state.congestion_zones), DEFAULT_CONFIG.forecast.max_zones)
    assert len(state.forecasts) == 2 * zones_forecast
    assert [alert.id for alert in state.alerts] == ["oriental-1"]
    assert state.alerts[0].is_peak_hour
    assert state.plan_attempts == 1
    assert state.current_stage == "end"
    assert state.final_response.startswith("Recommended route")
    assert 0.0 <= state.confidence <= 1.0
    assert [message.stage for message in state.messages] == ["context", "forecast", "correlate", "plan", "recommend"]
    correlate_message = state.messages[2]
    assert "serious alerts in Avenida Oriental" in correlate_message.content
    assert correlate_message.metadata["serious_zones"] == ["Avenida Oriental"]


def test_circuit_breaker_stops_after_four_errors() -> None:
    calls: list[str] = []

    def failing(name: str):
        def handler(state):
            calls.append(name)
            raise RuntimeError(f"{name} exploded")

        return handler

    overrides = {stage: failing(stage.value) for stage in Stage if stage is not Stage.END}
    pipeline = MovilityPipeline(stage_overrides=overrides)

    state = pipeline.run(TripRequest(origin=POBLADO, destination=CARIBE, departure_time=DEPARTURE))

    assert calls == ["context", "forecast", "correlate", "plan"]
    assert len(state.errors) == 4
    assert state.errors[0] == "context stage failed: context exploded"
    assert state.confidence == 0.0
    assert state.final_response.startswith(APOLOGY)


def test_missing_destination_never_calls_provider() -> None:
    provider = CountingProvider()
    pipeline = MovilityPipeline(provider=provider)

    state = pipeline.run(TripRequest(origin=POBLADO, destination=None, departure_time=DEPARTURE))

    assert provider.calls == 0
    assert state.errors == ["Missing origin or destination"]
    assert state.selected_route is None
    assert state.plan_attempts == 1
    assert state.final_response.startswith(APOLOGY)
    assert state.confidence == pytest.approx(0.3)


def test_plan_is_retried_once_when_no_routes() -> None:
    provider = CountingProvider(failures=1)
    pipeline = MovilityPipeline(provider=provider)

    state = pipeline.run(
        TripRequest(origin=POBLADO, destination=CARIBE, preferred_modes=("metro",), departure_time=DEPARTURE)
    )

    assert provider.calls == 2
    assert state.plan_attempts == 2
    assert state.errors[0].startswith("plan stage failed:")
    assert state.selected_route is not None
    assert state.has_complete_result


def test_plan_retry_is_bounded() -> None:
    provider = CountingProvider(failures=10)
    pipeline = MovilityPipeline(provider=provider)

    state = pipeline.run(
        TripRequest(origin=POBLADO, destination=CARIBE, preferred_modes=("metro",), departure_time=DEPARTURE)
    )

    assert provider.calls == 2
    assert state.plan_attempts == 2
    assert len(state.errors) == 2
    assert state.route_options == []


def test_failing_stage_keeps_previous_products() -> None:
    def broken_forecast(state):
        state.forecasts.append("partial")
        raise ValueError("model server unreachable")

    pipeline = MovilityPipeline(stage_overrides={Stage.FORECAST: broken_forecast})

    state = pipeline.run(TripRequest(origin=POBLADO, destination=CARIBE, departure_time=DEPARTURE))

    assert state.errors == ["forecast stage failed: model server unreachable"]
    assert state.forecasts == []
    assert state.congestion_zones
    assert state.selected_route is not None


def test_alert_feed_failure_degrades_to_warning() -> None:
    pipeline = MovilityPipeline(alert_source=BrokenAlertSource())

    state = pipeline.run(TripRequest(origin=POBLADO, destination=CARIBE, departure_time=DEPARTURE))

    assert state.errors == []
    assert any("Alert feed unavailable" in warning for warning in state.warnings)
    assert state.alerts == []
    assert state.selected_route is not None


def test_weekend_departure_counts_as_holiday() -> None:
    state = MovilityPipeline().run(
        TripRequest(origin=POBLADO, destination=CARIBE, departure_time=datetime(2024, 3, 9, 10, 0))
    )

    assert state.features.is_holiday
    assert state.features.day_of_week == 5


def test_report_is_written(tmp_path: Path) -> None:
    state = MovilityPipeline(alert_source=InMemoryAlertSource([oriental_alert()])).run(
        TripRequest(origin=POBLADO, destination=CARIBE, departure_time=DEPARTURE)
    )

    report_path = ReportGenerator(DataPaths(report_dir=tmp_path / "reports")).create_report(state)

    content = report_path.read_text(encoding="utf-8")
    assert report_path.name == "latest_trip.md"
    assert "## Route options" in content
    assert "Avenida Oriental" in content


def test_alert_away_from_route_still_inflates_duration() -> None:
    palmas_alert = Alert(
        id="lp",
        description="Deslizamiento en Las Palmas",
        severity="critical",
        source="test",
        timestamp=datetime(2024, 3, 5, 8, 0),
        zone_id="las-palmas",
    )
    request = TripRequest(
        origin=INDUSTRIALES, destination=ENVIGADO, preferred_modes=("transit", "walking"), departure_time=DEPARTURE
    )

    calm = MovilityPipeline().run(request)
    alerted = MovilityPipeline(alert_source=InMemoryAlertSource([palmas_alert])).run(request)

    assert [(alert.id, alert.affects_route) for alert in alerted.alerts] == [("lp", False)]
    assert alerted.selected_route.duration_minutes == math.ceil(calm.selected_route.duration_minutes * 1.5)
    assert alerted.selected_route.traffic_level == "high"
    [alert_rec] = [rec for rec in alerted.recommendations if rec.category == "alert"]
    assert not alert_rec.actionable
    assert "Consider an alternative route" not in alerted.final_response


def test_user_id_is_recorded_on_context_message() -> None:
    state = MovilityPipeline().run(
        TripRequest(origin=POBLADO, destination=CARIBE, departure_time=DEPARTURE, user_id="rider-42")
    )

    assert state.messages[0].stage == "context"
    assert state.messages[0].metadata["user_id"] == "rider-42"
