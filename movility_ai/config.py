"""Configuration objects for the MovilityAI trip planning pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Mapping


@dataclass(frozen=True)
class DataPaths:
    """Centralized storage for important project paths."""

    alert_snapshot: Path = Path("data/alerts/active_alerts.csv")
    zone_catalog: Path | None = None
    report_dir: Path = Path("reports")
    log_dir: Path = Path("logs")


@dataclass(frozen=True)
class ForecastConfig:
    """Settings for the congestion forecaster and its synthetic history."""

    horizons: tuple[int, ...] = (30, 60)
    interval_minutes: int = 15
    history_days: int = 14
    max_zones: int = 4
    ar_lags: tuple[int, ...] = (1, 2)
    fallback_error_ratio: float = 0.3
    fallback_confidence_ratio: float = 0.2
    trend_window: int = 24
    trend_nudge: float = 0.05
    holiday_dampening: float = 0.7
    level_thresholds: tuple[tuple[str, float], ...] = (("severe", 0.85), ("high", 0.65), ("medium", 0.4))
    rush_hours: tuple[tuple[int, int], ...] = ((6, 10), (16, 20))
    midday_hours: tuple[int, int] = (11, 14)
    n_jobs: int = 4
    default_zone: str = "Medellín Centro"


@dataclass(frozen=True)
class CorrelatorConfig:
    """Parameters that control how alerts are attached to zones."""

    route_proximity_km: float = 1.0
    route_sample_points: int = 5
    alert_fetch_timeout_seconds: float = 5.0
    relevant_zone_radius_km: float = 5.0
    km_per_degree: float = 111.0


@dataclass(frozen=True)
class RoutingConfig:
    """Cost, emission and ranking parameters for route candidates."""

    walking_max_km: float = 3.0
    provider_timeout_seconds: float = 10.0
    max_route_options: int = 5
    max_alternatives: int = 5
    metro_fare: float = 2.5
    bus_fare: float = 2.5
    driving_cost_per_km: float = 2.0
    emission_factors: Mapping[str, float] = field(
        default_factory=lambda: {"car": 0.12, "bus": 0.05, "metro": 0.02, "bike": 0.0, "walk": 0.0}
    )
    default_emission_factor: float = 0.05
    base_confidence: Mapping[str, float] = field(
        default_factory=lambda: {"transit": 0.95, "walking": 0.98, "bicycling": 0.9, "driving": 0.92}
    )
    high_alert_penalty: float = 0.3
    critical_alert_penalty: float = 0.5
    duration_weight: float = 0.4
    cost_weight: float = 0.2
    co2_weight: float = 0.2
    confidence_weight: float = 0.2


@dataclass(frozen=True)
class RecommendationConfig:
    """Thresholds used by the recommendation synthesizer."""

    min_time_saving_minutes: int = 5
    rush_windows: tuple[tuple[int, int], ...] = ((7, 9), (17, 19))
    departure_shift_saving_minutes: int = 15
    metro_saving_minutes: int = 10
    metro_co2_saving_kg: float = 0.5
    walking_max_km: float = 1.5
    co2_hint_threshold_kg: float = 2.0
    cost_hint_threshold: float = 5.0
    alert_hint_threshold: int = 2
    max_recommendations: int = 10


@dataclass(frozen=True)
class OrchestratorConfig:
    """State machine limits for a single pipeline run."""

    max_errors: int = 3
    max_plan_retries: int = 1
    default_modes: tuple[str, ...] = ("metro", "bus", "walk")
    holidays: tuple[date, ...] = ()
    default_weather: str = "sunny"
    alert_count_penalty_threshold: int = 3


@dataclass(frozen=True)
class ProviderConfig:
    """Directions provider selection and connection settings."""

    simulate_directions: bool = True
    api_key_env: str = "GOOGLE_MAPS_API_KEY"
    base_url: str = "https://maps.googleapis.com/maps/api"
    timeout_seconds: float = 10.0
    language: str = "es"
    region: str = "CO"
    simulated_speeds_kmh: Mapping[str, float] = field(
        default_factory=lambda: {"transit": 22.0, "walking": 4.8, "bicycling": 14.0, "driving": 26.0}
    )
    simulated_detour_factor: float = 1.3


@dataclass(frozen=True)
class PipelineConfig:
    """Root configuration object that bundles all other configs."""

    paths: DataPaths = field(default_factory=DataPaths)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    correlator: CorrelatorConfig = field(default_factory=CorrelatorConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    recommendations: RecommendationConfig = field(default_factory=RecommendationConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)


DEFAULT_CONFIG = PipelineConfig()
