"""Top-level orchestration of the MovilityAI trip planning stages."""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from enum import Enum
from typing import Callable, Mapping

from .alerts import AlertFilters, AlertSource, InMemoryAlertSource, ZoneAlertCorrelator
from .config import DEFAULT_CONFIG, PipelineConfig
from .data_models import Alert, CongestionZone, GeoZone, Location, PipelineState, TrafficFeatures, TripRequest
from .directions import DirectionsProvider, build_provider
from .forecasting import CongestionForecaster
from .geo_zones import DEFAULT_REGISTRY, ZoneRegistry, haversine_km, interpolate_points, load_registry
from .recommendations import RecommendationSynthesizer
from .reporting import build_final_response, compute_confidence
from .routing import RoutePlanner

logger = logging.getLogger(__name__)

MISSING_ENDPOINTS = "Missing origin or destination"
PEAK_LEVELS = {"critical": "severe", "high": "high", "medium": "medium"}


class Stage(str, Enum):
    CONTEXT = "context"
    FORECAST = "forecast"
    CORRELATE = "correlate"
    PLAN = "plan"
    RECOMMEND = "recommend"
    END = "end"


STAGE_ORDER = (Stage.CONTEXT, Stage.FORECAST, Stage.CORRELATE, Stage.PLAN, Stage.RECOMMEND, Stage.END)

StageHandler = Callable[[PipelineState], PipelineState]


class MovilityPipeline:
    """Runs context, forecast, correlate, plan and recommend over one shared state.

    A stage that raises is recorded as an error and its input state is kept.
    The run ends early once more than `max_errors` errors accumulate, and the
    plan stage is retried once when the first pass produced no routes.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        registry: ZoneRegistry | None = None,
        provider: DirectionsProvider | None = None,
        alert_source: AlertSource | None = None,
        forecaster: CongestionForecaster | None = None,
        stage_overrides: Mapping[Stage, StageHandler] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        if registry is None:
            catalog = self.config.paths.zone_catalog
            registry = load_registry(catalog) if catalog is not None else DEFAULT_REGISTRY
        self.registry = registry
        self.alert_source = alert_source or InMemoryAlertSource()
        self.forecaster = forecaster or CongestionForecaster(self.config.forecast)
        self.correlator = ZoneAlertCorrelator(self.registry, self.config.correlator)
        self.planner = RoutePlanner(self.config.routing, provider or build_provider(self.config.provider))
        self.synthesizer = RecommendationSynthesizer(self.config.recommendations)
        self.clock = clock
        self.stages: dict[Stage, StageHandler] = {
            Stage.CONTEXT: self.collect_context,
            Stage.FORECAST: self.forecast_congestion,
            Stage.CORRELATE: self.correlate_alerts,
            Stage.PLAN: self.plan_routes,
            Stage.RECOMMEND: self.recommend,
        }
        if stage_overrides:
            self.stages.update(stage_overrides)

    def run(self, request: TripRequest) -> PipelineState:
        started = time.perf_counter()
        state = PipelineState(request=request)
        stage = Stage.CONTEXT
        while stage is not Stage.END:
            state = self._execute(stage, state)
            stage = self._next_stage(stage, state)

        state.current_stage = Stage.END.value
        state.final_response = build_final_response(state)
        state.confidence = compute_confidence(state, self.config.orchestrator)
        state.processing_time_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Run finished: %d routes, %d errors, %d warnings, confidence %.2f",
            len(state.route_options),
            len(state.errors),
            len(state.warnings),
            state.confidence,
        )
        return state

    def _execute(self, stage: Stage, state: PipelineState) -> PipelineState:
        state.current_stage = stage.value
        if stage is Stage.PLAN:
            state.plan_attempts += 1
        logger.debug("Entering %s stage", stage.value)
        try:
            return self.stages[stage](state.fork())
        except Exception as exc:
            logger.error("%s stage failed: %s", stage.value, exc, exc_info=True)
            state.add_error(f"{stage.value} stage failed: {exc}")
            return state

    def _next_stage(self, stage: Stage, state: PipelineState) -> Stage:
        if len(state.errors) > self.config.orchestrator.max_errors:
            logger.warning("Stopping after %d errors", len(state.errors))
            return Stage.END
        if stage is Stage.RECOMMEND:
            if state.has_complete_result:
                return Stage.END
            retries_left = state.plan_attempts <= self.config.orchestrator.max_plan_retries
            if not state.route_options and retries_left and self._has_endpoints(state):
                logger.info("No routes after recommend, retrying plan")
                return Stage.PLAN
            return Stage.END
        return STAGE_ORDER[STAGE_ORDER.index(stage) + 1]

    @staticmethod
    def _has_endpoints(state: PipelineState) -> bool:
        return state.origin is not None and state.destination is not None

    def collect_context(self, state: PipelineState) -> PipelineState:
        request = state.request
        settings = self.config.orchestrator
        departure = request.departure_time or self.clock()
        state.preferred_modes = tuple(request.preferred_modes) or settings.default_modes
        state.departure_time = departure
        state.features = TrafficFeatures(
            day_of_week=departure.weekday(),
            hour_of_day=departure.hour,
            is_holiday=departure.weekday() >= 5 or departure.date() in settings.holidays,
            weather=request.weather or settings.default_weather,
        )

        if not self._has_endpoints(state):
            state.add_error(MISSING_ENDPOINTS)
            state.add_message(Stage.CONTEXT.value, "Trip endpoints are incomplete", user_id=request.user_id)
            return state

        origin, destination = state.origin, state.destination
        state.straight_line_km = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
        state.congestion_zones = self.nearby_congestion_zones(origin, destination, departure)
        state.add_message(
            Stage.CONTEXT.value,
            f"{state.straight_line_km:.1f} km trip, {len(state.congestion_zones)} congestion zones nearby",
            modes=list(state.preferred_modes),
            user_id=request.user_id,
        )
        return state

    def nearby_congestion_zones(
        self, origin: Location, destination: Location, moment: datetime
    ) -> list[CongestionZone]:
        radius_km = self.config.correlator.relevant_zone_radius_km
        zones = []
        for zone in self.registry:
            distance = min(
                self.registry.distance_to_zone_center_km(origin.lat, origin.lng, zone),
                self.registry.distance_to_zone_center_km(destination.lat, destination.lng, zone),
            )
            if distance > radius_km:
                continue
            zones.append(
                CongestionZone(
                    name=zone.name,
                    location=zone.center,
                    radius_km=round(self._zone_radius_km(zone), 2),
                    current_level=self._current_level(zone, moment),
                    peak_hours=tuple(str(window) for window in zone.peak_hours),
                )
            )
        return zones

    def _zone_radius_km(self, zone: GeoZone) -> float:
        return max(zone.north - zone.south, zone.east - zone.west) * self.config.correlator.km_per_degree

    @staticmethod
    def _current_level(zone: GeoZone, moment: datetime) -> str:
        if zone.in_peak(moment.time()):
            return PEAK_LEVELS[zone.priority]
        return "medium" if zone.priority == "critical" else "low"

    def forecast_congestion(self, state: PipelineState) -> PipelineState:
        settings = self.config.forecast
        departure = state.departure_time or self.clock()
        features = state.features or TrafficFeatures(day_of_week=departure.weekday(), hour_of_day=departure.hour)
        zones = [zone.name for zone in state.congestion_zones[: settings.max_zones]] or [settings.default_zone]

        forecasts, failures = self.forecaster.forecast_many(
            zones,
            features,
            horizons=settings.horizons,
            interval_minutes=settings.interval_minutes,
            base_time=departure.replace(second=0, microsecond=0),
        )
        state.forecasts.extend(forecasts)
        for zone in failures:
            state.add_warning(f"Forecast unavailable for {zone}")
        state.add_message(Stage.FORECAST.value, f"{len(forecasts)} forecasts for {len(zones)} zones")
        return state

    def correlate_alerts(self, state: PipelineState) -> PipelineState:
        active = self._fetch_alerts(state)
        now = state.departure_time or self.clock()
        route_points = None
        if self._has_endpoints(state):
            route_points = interpolate_points(
                state.origin, state.destination, self.config.correlator.route_sample_points
            )
        filters = AlertFilters(route_points=tuple(route_points) if route_points else None)
        state.alerts.extend(self.correlator.correlate(active, filters, now))

        high_priority = self.correlator.high_priority_alerts(active, route_points, now)
        if high_priority:
            state.add_warning(f"{len(high_priority)} high-priority alerts on critical zones or along the route")
        serious_zones = [
            summary.zone.name for summary in self.correlator.summarize_by_zone(active, now) if summary.critical_count
        ]
        content = f"{len(state.alerts)} of {len(active)} alerts correlated"
        if serious_zones:
            content += f"; serious alerts in {', '.join(serious_zones)}"
        state.add_message(Stage.CORRELATE.value, content, serious_zones=serious_zones)
        return state

    def _fetch_alerts(self, state: PipelineState) -> list[Alert]:
        timeout = self.config.correlator.alert_fetch_timeout_seconds
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="alerts")
        try:
            return list(pool.submit(self.alert_source.fetch_active).result(timeout=timeout))
        except FutureTimeout:
            logger.warning("Alert source timed out after %.1fs", timeout)
            state.add_warning("Alert feed timed out, continuing without alerts")
        except Exception as exc:
            logger.warning("Alert source failed: %s", exc)
            state.add_warning(f"Alert feed unavailable: {exc}")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return []

    def plan_routes(self, state: PipelineState) -> PipelineState:
        if not self._has_endpoints(state):
            state.add_message(Stage.PLAN.value, "Skipped, trip endpoints are unknown")
            return state
        result = self.planner.plan(
            state.origin,
            state.destination,
            state.preferred_modes or self.config.orchestrator.default_modes,
            state.alerts,
            state.departure_time,
        )
        state.route_options = list(result.options)
        state.selected_route = result.selected
        state.alternative_routes = list(result.alternatives)
        state.add_message(
            Stage.PLAN.value,
            f"{len(result.options)} route options, selected {result.selected.id}",
            attempt=state.plan_attempts,
        )
        return state

    def recommend(self, state: PipelineState) -> PipelineState:
        recommendations, suggestions = self.synthesizer.synthesize(state)
        state.recommendations = recommendations
        state.optimization_suggestions = suggestions
        state.add_message(Stage.RECOMMEND.value, f"Generated {len(recommendations)} recommendations")
        return state
