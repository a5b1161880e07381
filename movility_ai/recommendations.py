"""Human-facing trip recommendations derived from a planned route."""
from __future__ import annotations

from datetime import datetime

from .alerts import infer_alert_type
from .config import RecommendationConfig
from .data_models import PRIORITY_ORDER, SEVERITY_ORDER, PipelineState, Recommendation, RouteOption, ZoneAlert


class RecommendationSynthesizer:
    """Builds prioritized recommendations and advisory hints from a pipeline state.

    Each generator is independent; their outputs are concatenated, ordered by
    priority (stable within a tier) and capped.
    """

    def __init__(self, config: RecommendationConfig) -> None:
        self.config = config

    def synthesize(self, state: PipelineState) -> tuple[list[Recommendation], list[str]]:
        departure = state.departure_time or state.request.departure_time or datetime.now()
        recommendations = [
            *self.route_recommendations(state.selected_route, state.alternative_routes),
            *self.time_recommendations(departure),
            *self.mode_recommendations(state.selected_route),
            *self.alert_recommendations(state.alerts),
        ]
        recommendations.sort(key=lambda rec: PRIORITY_ORDER[rec.priority], reverse=True)
        return recommendations[: self.config.max_recommendations], self.optimization_suggestions(state)

    def route_recommendations(
        self, selected: RouteOption | None, alternatives: list[RouteOption]
    ) -> list[Recommendation]:
        if selected is None or not alternatives:
            return []
        alternative = alternatives[0]
        saving = selected.duration_minutes - alternative.duration_minutes
        if saving <= self.config.min_time_saving_minutes:
            return []
        return [
            Recommendation(
                id="rec-route-1",
                category="route",
                title="Faster alternative route",
                description=f"Consider {' + '.join(alternative.transport_modes)} to save {saving} minutes",
                priority="high",
                potential_time_saved_min=saving,
            )
        ]

    def time_recommendations(self, departure: datetime) -> list[Recommendation]:
        if not any(start <= departure.hour <= end for start, end in self.config.rush_windows):
            return []
        return [
            Recommendation(
                id="rec-time-1",
                category="time",
                title="Avoid rush hour",
                description="You are travelling at rush hour. Leaving 30 minutes earlier or later usually saves time.",
                priority="medium",
                potential_time_saved_min=self.config.departure_shift_saving_minutes,
            )
        ]

    def mode_recommendations(self, selected: RouteOption | None) -> list[Recommendation]:
        if selected is None:
            return []
        recommendations = []
        if "metro" not in selected.transport_modes:
            recommendations.append(
                Recommendation(
                    id="rec-mode-1",
                    category="mode",
                    title="Take the Metro",
                    description="The Metro is faster and more reliable at peak times. Consider adding it to your trip.",
                    priority="medium",
                    potential_time_saved_min=self.config.metro_saving_minutes,
                    potential_co2_saved_kg=self.config.metro_co2_saving_kg,
                )
            )
        if selected.distance_km < self.config.walking_max_km and "walk" not in selected.transport_modes:
            recommendations.append(
                Recommendation(
                    id="rec-mode-2",
                    category="mode",
                    title="Walk",
                    description="The distance is short. Walking is healthy and cuts your carbon footprint.",
                    priority="low",
                    potential_co2_saved_kg=selected.co2_kg,
                )
            )
        return recommendations

    @staticmethod
    def alert_recommendations(alerts: list[ZoneAlert]) -> list[Recommendation]:
        return [
            Recommendation(
                id=f"rec-alert-{zone_alert.id}",
                category="alert",
                title=f"Alert: {infer_alert_type(zone_alert.description)} on {zone_alert.zone.name}",
                description=(
                    f"{zone_alert.description} Consider an alternative route."
                    if zone_alert.affects_route
                    else f"{zone_alert.description} It is away from your route, expect knock-on delays."
                ),
                priority="high",
                actionable=zone_alert.affects_route,
            )
            for zone_alert in alerts
            if SEVERITY_ORDER[zone_alert.severity] >= SEVERITY_ORDER["high"]
        ]

    def optimization_suggestions(self, state: PipelineState) -> list[str]:
        route = state.selected_route
        if route is None:
            return []
        suggestions = []
        if route.co2_kg > self.config.co2_hint_threshold_kg:
            suggestions.append("Consider public transport to reduce your carbon footprint")
        if route.estimated_cost and route.estimated_cost > self.config.cost_hint_threshold:
            suggestions.append("Look for cheaper options such as walking or cycling")
        if len(state.alerts) > self.config.alert_hint_threshold:
            suggestions.append("Several alerts are active. Consider delaying your trip if possible")
        return suggestions
