"""Dataclasses used across the MovilityAI trip planning pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, time
from typing import Any, Literal

from shapely.geometry import Point, box
from shapely.geometry.base import BaseGeometry

Severity = Literal["low", "medium", "high", "critical"]
TrafficLevel = Literal["low", "medium", "high", "severe"]
ZonePriority = Literal["critical", "high", "medium"]
Priority = Literal["low", "medium", "high"]
RecommendationCategory = Literal["route", "time", "mode", "alert"]

SEVERITY_ORDER: dict[str, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}
ZONE_PRIORITY_ORDER: dict[str, int] = {"medium": 1, "high": 2, "critical": 3}
PRIORITY_ORDER: dict[str, int] = {"low": 1, "medium": 2, "high": 3}


@dataclass(frozen=True)
class Location:
    """A geocoded point with its display address."""

    address: str
    lat: float
    lng: float


@dataclass(frozen=True)
class PeakWindow:
    """Inclusive time-of-day interval during which a zone is congested."""

    start: time
    end: time

    @classmethod
    def parse(cls, text: str) -> PeakWindow:
        start_text, end_text = text.split("-")
        return cls(start=time.fromisoformat(start_text.strip()), end=time.fromisoformat(end_text.strip()))

    def contains(self, moment: time) -> bool:
        moment = moment.replace(second=0, microsecond=0, tzinfo=None)
        return self.start <= moment <= self.end

    def __str__(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True)
class GeoZone:
    """Known high-congestion area described by an axis-aligned bounding box."""

    id: str
    name: str
    type: str
    center: Location
    north: float
    south: float
    east: float
    west: float
    keywords: tuple[str, ...] = ()
    peak_hours: tuple[PeakWindow, ...] = ()
    average_delay_minutes: int = 0
    priority: ZonePriority = "medium"
    description: str = ""

    @property
    def bounds(self) -> BaseGeometry:
        return box(self.west, self.south, self.east, self.north)

    def contains(self, lat: float, lng: float) -> bool:
        # covers() keeps the rectangle edges inside the zone
        return self.bounds.covers(Point(lng, lat))

    def in_peak(self, moment: time) -> bool:
        return any(window.contains(moment) for window in self.peak_hours)


@dataclass(frozen=True)
class Alert:
    """Incident or congestion signal reported by an external feed."""

    id: str
    description: str
    severity: Severity
    source: str
    timestamp: datetime
    is_active: bool = True
    location: Location | None = None
    zone_id: str | None = None
    title: str = ""


@dataclass(frozen=True)
class ZoneAlert:
    """An alert enriched with the zone it was correlated to."""

    alert: Alert
    zone: GeoZone
    is_peak_hour: bool = False
    affects_route: bool = False

    @property
    def id(self) -> str:
        return self.alert.id

    @property
    def severity(self) -> Severity:
        return self.alert.severity

    @property
    def description(self) -> str:
        return self.alert.description

    @property
    def timestamp(self) -> datetime:
        return self.alert.timestamp


@dataclass(frozen=True)
class ZoneSummary:
    """Per-zone alert counts used for situational awareness."""

    zone: GeoZone
    alert_count: int
    critical_count: int
    is_peak_hour: bool


@dataclass(frozen=True)
class SnapshotValidation:
    """Row accounting for one alert snapshot load."""

    row_count: int
    dropped_missing_fields: int
    unknown_severity: int
    keyword_tagged: int
    unparsed_timestamps: int


@dataclass(frozen=True)
class RouteStep:
    """One leg of an itinerary."""

    instruction: str
    transport_mode: str
    duration_minutes: int
    distance_km: float
    start_location: Location
    end_location: Location


@dataclass(frozen=True)
class RouteOption:
    """A normalized route candidate for one transport-mode strategy."""

    id: str
    origin: Location
    destination: Location
    transport_modes: tuple[str, ...]
    duration_minutes: int
    distance_km: float
    steps: tuple[RouteStep, ...] = ()
    traffic_level: TrafficLevel = "low"
    estimated_cost: float | None = None
    co2_kg: float = 0.0
    confidence: float = 1.0


@dataclass(frozen=True)
class PlanResult:
    """Ranked output of the route planner."""

    selected: RouteOption
    alternatives: tuple[RouteOption, ...]
    options: tuple[RouteOption, ...]


@dataclass(frozen=True)
class TrafficFeatures:
    """Temporal and weather features that condition a congestion forecast."""

    day_of_week: int
    hour_of_day: int
    is_holiday: bool = False
    weather: str = "sunny"
    historical_average: float | None = None
    recent_trend: float | None = None


@dataclass(frozen=True)
class CongestionForecast:
    """Predicted congestion for one zone at one horizon."""

    zone: str
    horizon_minutes: int
    predicted_level: TrafficLevel
    confidence: float
    contributing_factors: tuple[str, ...]
    for_at: datetime
    raw_intensity: float


@dataclass(frozen=True)
class CongestionZone:
    """Current congestion snapshot of a registry zone near the trip."""

    name: str
    location: Location
    radius_km: float
    current_level: TrafficLevel
    peak_hours: tuple[str, ...] = ()


@dataclass(frozen=True)
class Recommendation:
    """A human-facing suggestion derived from the planned trip."""

    id: str
    category: RecommendationCategory
    title: str
    description: str
    priority: Priority
    potential_time_saved_min: int | None = None
    potential_co2_saved_kg: float | None = None
    actionable: bool = True


@dataclass(frozen=True)
class PipelineMessage:
    """Progress note emitted by a pipeline stage."""

    stage: str
    content: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TripRequest:
    """Caller-resolved input for one planning run."""

    origin: Location | None
    destination: Location | None
    preferred_modes: tuple[str, ...] = ()
    departure_time: datetime | None = None
    weather: str | None = None
    user_id: str | None = None


@dataclass
class PipelineState:
    """Mutable record threaded through the orchestrator for a single run."""

    request: TripRequest
    current_stage: str = "start"
    messages: list[PipelineMessage] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    preferred_modes: tuple[str, ...] = ()
    departure_time: datetime | None = None
    features: TrafficFeatures | None = None
    straight_line_km: float | None = None
    route_options: list[RouteOption] = field(default_factory=list)
    selected_route: RouteOption | None = None
    alternative_routes: list[RouteOption] = field(default_factory=list)
    alerts: list[ZoneAlert] = field(default_factory=list)
    forecasts: list[CongestionForecast] = field(default_factory=list)
    congestion_zones: list[CongestionZone] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    optimization_suggestions: list[str] = field(default_factory=list)
    plan_attempts: int = 0
    final_response: str = ""
    confidence: float = 0.0
    processing_time_ms: float = 0.0

    @property
    def origin(self) -> Location | None:
        return self.request.origin

    @property
    def destination(self) -> Location | None:
        return self.request.destination

    def fork(self) -> PipelineState:
        """Copy the state with fresh list containers so a stage cannot corrupt its input."""
        return replace(
            self,
            messages=list(self.messages),
            errors=list(self.errors),
            warnings=list(self.warnings),
            route_options=list(self.route_options),
            alternative_routes=list(self.alternative_routes),
            alerts=list(self.alerts),
            forecasts=list(self.forecasts),
            congestion_zones=list(self.congestion_zones),
            recommendations=list(self.recommendations),
            optimization_suggestions=list(self.optimization_suggestions),
        )

    def add_message(self, stage: str, content: str, **metadata: Any) -> None:
        self.messages.append(PipelineMessage(stage=stage, content=content, timestamp=datetime.now(), metadata=metadata))

    def add_error(self, error: str) -> None:
        self.errors.append(error)

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    @property
    def has_complete_result(self) -> bool:
        return bool(self.route_options) and bool(self.recommendations)
