"""Final response text and markdown trip reports."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from .alerts import infer_alert_type
from .config import DataPaths, OrchestratorConfig
from .data_models import SEVERITY_ORDER, PipelineState

APOLOGY = "Sorry, no suitable route could be found. Please check the trip details and try again."


def compute_confidence(state: PipelineState, config: OrchestratorConfig) -> float:
    confidence = 1.0 - 0.2 * len(state.errors) - 0.1 * len(state.warnings)
    if state.selected_route is None:
        confidence -= 0.5
    if len(state.alerts) > config.alert_count_penalty_threshold:
        confidence -= 0.1
    return max(0.0, min(1.0, confidence))


def build_final_response(state: PipelineState) -> str:
    """Summarize the route, its top alerts and recommendations, or apologize when there is no route."""
    route = state.selected_route
    if route is None:
        if state.errors:
            return f"{APOLOGY} Problems found: {'; '.join(state.errors)}"
        return APOLOGY

    lines = [
        "Recommended route",
        f"From: {route.origin.address}",
        f"To: {route.destination.address}",
        f"Duration: {route.duration_minutes} min",
        f"Distance: {route.distance_km:.1f} km",
        f"Modes: {' -> '.join(route.transport_modes)}",
        f"Estimated cost: ${route.estimated_cost or 0.0:.2f}",
        f"CO2: {route.co2_kg} kg",
        f"Traffic: {route.traffic_level}",
    ]

    serious = [alert for alert in state.alerts if SEVERITY_ORDER[alert.severity] >= SEVERITY_ORDER["high"]]
    if serious:
        lines.append("")
        lines.append(f"Active alerts ({len(serious)})")
        lines.extend(f"- {alert.zone.name}: {alert.description}" for alert in serious[:3])

    actionable = [rec for rec in state.recommendations if rec.actionable]
    if actionable:
        lines.append("")
        lines.append("Recommendations")
        lines.extend(f"- {rec.title}: {rec.description}" for rec in actionable[:3])

    if state.errors:
        lines.append("")
        lines.append(f"Partial result, {len(state.errors)} stage(s) failed")
    return "\n".join(lines)


class ReportGenerator:
    """Writes a markdown report of one pipeline run."""

    def __init__(self, paths: DataPaths) -> None:
        self.paths = paths
        self.paths.report_dir.mkdir(parents=True, exist_ok=True)

    def create_report(self, state: PipelineState) -> Path:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        report_path = self.paths.report_dir / "latest_trip.md"
        origin = state.origin.address if state.origin else "?"
        destination = state.destination.address if state.destination else "?"

        lines = [
            f"# MovilityAI trip report ({timestamp})",
            f"{origin} -> {destination}",
            "",
            f"- Confidence: {state.confidence:.2f}",
            f"- Processing time: {state.processing_time_ms:.0f} ms",
            f"- Plan attempts: {state.plan_attempts}",
            "",
            "## Route options",
        ]
        if not state.route_options:
            lines.append("- No route found.")
        else:
            lines.append("| Rank | Modes | Duration (min) | Distance (km) | Cost | CO2 (kg) | Traffic | Confidence |")
            lines.append("| --- | --- | --- | --- | --- | --- | --- | --- |")
            for idx, option in enumerate(state.route_options, start=1):
                lines.append(
                    f"| {idx} | {' + '.join(option.transport_modes)} | {option.duration_minutes} | "
                    f"{option.distance_km:.2f} | {option.estimated_cost or 0.0:.2f} | {option.co2_kg:.2f} | "
                    f"{option.traffic_level} | {option.confidence:.2f} |"
                )

        lines.extend(["", "## Congestion forecast"])
        if not state.forecasts:
            lines.append("- No forecasts available.")
        for forecast in state.forecasts:
            lines.append(
                f"- {forecast.zone} +{forecast.horizon_minutes} min: {forecast.predicted_level} "
                f"({forecast.raw_intensity:.2f}, confidence {forecast.confidence:.2f}; "
                f"{', '.join(forecast.contributing_factors)})"
            )

        lines.extend(["", "## Alerts"])
        if not state.alerts:
            lines.append("- No correlated alerts.")
        for alert in state.alerts:
            flags = [flag for flag, on in (("peak hour", alert.is_peak_hour), ("on route", alert.affects_route)) if on]
            suffix = f" [{', '.join(flags)}]" if flags else ""
            lines.append(
                f"- {alert.severity} {infer_alert_type(alert.description)} at {alert.zone.name}: "
                f"{alert.description}{suffix}"
            )

        lines.extend(["", "## Recommendations"])
        lines.extend(
            f"- ({rec.priority}) {rec.title}: {rec.description}{'' if rec.actionable else ' [info]'}"
            for rec in state.recommendations
        )
        lines.extend(f"- {suggestion}" for suggestion in state.optimization_suggestions)

        if state.errors or state.warnings:
            lines.extend(["", "## Issues"])
            lines.extend(f"- error: {error}" for error in state.errors)
            lines.extend(f"- warning: {warning}" for warning in state.warnings)

        report_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return report_path
