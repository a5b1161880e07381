"""Route candidate generation and multi-criteria ranking."""
from __future__ import annotations

import logging
import math
import re
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Sequence

import pandas as pd

from .config import RoutingConfig
from .data_models import Alert, Location, PlanResult, RouteOption, RouteStep, ZoneAlert
from .directions import DirectionsProvider, Payload
from .errors import PlanningError
from .geo_zones import haversine_km

logger = logging.getLogger(__name__)

MODE_FAMILIES: dict[str, tuple[str, ...]] = {
    "transit": ("transit", "metro", "bus"),
    "walking": ("walking", "walk"),
    "bicycling": ("bicycling", "bike"),
    "driving": ("driving", "car"),
}
FAMILY_DEFAULT_MODE = {"transit": "transit", "walking": "walk", "bicycling": "bike", "driving": "car"}
STEP_MODES = {"WALKING": "walk", "BICYCLING": "bike", "DRIVING": "car"}
HTML_TAG = re.compile(r"<[^>]*>")


def requested_families(preferred_modes: Iterable[str]) -> list[str]:
    """Mode families matching any preferred mode alias, in planning order."""
    wanted = {mode.lower() for mode in preferred_modes}
    return [family for family, aliases in MODE_FAMILIES.items() if wanted.intersection(aliases)]


def traffic_ratio_level(ratio: float) -> str:
    if ratio >= 2.0:
        return "severe"
    if ratio >= 1.5:
        return "high"
    if ratio >= 1.2:
        return "medium"
    return "low"


def step_mode(step: dict[str, Any]) -> str:
    travel_mode = str(step.get("mode", "")).upper()
    if travel_mode == "TRANSIT":
        vehicle = str((step.get("transit_details") or {}).get("vehicle_type", "")).lower()
        if "metro" in vehicle or "subway" in vehicle:
            return "metro"
        if "bus" in vehicle:
            return "bus"
        return "transit"
    return STEP_MODES.get(travel_mode, travel_mode.lower())


def _location(point: dict[str, float]) -> Location:
    return Location(address="", lat=float(point["lat"]), lng=float(point["lng"]))


class RoutePlanner:
    """Requests one itinerary per mode family and ranks the normalized candidates."""

    def __init__(self, config: RoutingConfig, provider: DirectionsProvider) -> None:
        self.config = config
        self.provider = provider

    def plan(
        self,
        origin: Location,
        destination: Location,
        preferred_modes: Sequence[str],
        active_alerts: Sequence[ZoneAlert | Alert] = (),
        departure_time: datetime | None = None,
    ) -> PlanResult:
        candidates = self.generate_candidates(origin, destination, preferred_modes, active_alerts, departure_time)
        if not candidates:
            raise PlanningError("No route found for the requested modes", modes=tuple(preferred_modes))
        ranked = self.rank(candidates)
        options = ranked[: self.config.max_route_options]
        return PlanResult(
            selected=options[0],
            alternatives=tuple(ranked[1 : 1 + self.config.max_alternatives]),
            options=tuple(options),
        )

    def generate_candidates(
        self,
        origin: Location,
        destination: Location,
        preferred_modes: Sequence[str],
        active_alerts: Sequence[ZoneAlert | Alert] = (),
        departure_time: datetime | None = None,
    ) -> list[RouteOption]:
        straight_km = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
        families = requested_families(preferred_modes)
        if "walking" in families and straight_km >= self.config.walking_max_km:
            logger.info("Skipping walking: %.1f km is beyond the walking limit", straight_km)
            families.remove("walking")
        if not families:
            return []

        pool = ThreadPoolExecutor(max_workers=len(families), thread_name_prefix="directions")
        futures = {
            family: pool.submit(self.provider.get_route, origin, destination, family, departure_time)
            for family in families
        }
        deadline = time.monotonic() + self.config.provider_timeout_seconds
        candidates: list[RouteOption] = []
        try:
            for family, future in futures.items():
                try:
                    payload = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeout:
                    logger.warning("Directions for %s timed out", family)
                    continue
                except Exception as exc:
                    logger.warning("Directions for %s failed: %s", family, exc)
                    continue
                try:
                    option = self.build_option(family, payload, origin, destination)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("Malformed %s directions payload: %s", family, exc)
                    continue
                if option is None:
                    logger.info("No %s candidate", family)
                    continue
                candidates.append(self.adjust_for_traffic(option, active_alerts, keep_level=family == "driving"))
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return candidates

    def build_option(
        self, family: str, payload: Payload | None, origin: Location, destination: Location
    ) -> RouteOption | None:
        if not payload or not payload.get("legs"):
            return None
        leg = payload["legs"][0]
        raw_steps = leg.get("steps", [])
        steps = tuple(
            RouteStep(
                instruction=HTML_TAG.sub("", str(step.get("instruction", ""))).strip(),
                transport_mode=step_mode(step),
                duration_minutes=math.ceil(step["duration"] / 60),
                distance_km=step["distance"] / 1000,
                start_location=_location(step["start"]),
                end_location=_location(step["end"]),
            )
            for step in raw_steps
        )
        modes = tuple(dict.fromkeys(step.transport_mode for step in steps)) or (FAMILY_DEFAULT_MODE[family],)

        distance_km = leg["distance"] / 1000
        duration = math.ceil(leg["duration"] / 60)
        traffic_level = "low"
        if family == "driving" and leg.get("duration_in_traffic") and leg["duration"] > 0:
            traffic_level = traffic_ratio_level(leg["duration_in_traffic"] / leg["duration"])
            duration = math.ceil(leg["duration_in_traffic"] / 60)
        if duration <= 0:
            return None

        return RouteOption(
            id=f"route-{family}",
            origin=origin,
            destination=destination,
            transport_modes=modes,
            duration_minutes=duration,
            distance_km=distance_km,
            steps=steps,
            traffic_level=traffic_level,
            estimated_cost=self.estimate_cost(family, modes, distance_km),
            co2_kg=self.estimate_co2(distance_km, modes),
            confidence=self.config.base_confidence.get(family, 0.9),
        )

    def adjust_for_traffic(
        self, option: RouteOption, alerts: Sequence[ZoneAlert | Alert], keep_level: bool = False
    ) -> RouteOption:
        high = sum(1 for alert in alerts if alert.severity == "high")
        critical = sum(1 for alert in alerts if alert.severity == "critical")
        multiplier = 1 + self.config.high_alert_penalty * high + self.config.critical_alert_penalty * critical
        if multiplier == 1:
            return option

        level = option.traffic_level
        if not keep_level:
            if multiplier > 1.3:
                level = "high"
            elif multiplier > 1.1:
                level = "medium"
        return replace(option, duration_minutes=math.ceil(option.duration_minutes * multiplier), traffic_level=level)

    def estimate_cost(self, family: str, modes: Sequence[str], distance_km: float) -> float:
        if family == "driving":
            return round(distance_km * self.config.driving_cost_per_km, 2)
        if family in ("walking", "bicycling"):
            return 0.0
        # metro and bus together are charged as one integrated metro fare
        if "metro" in modes:
            return self.config.metro_fare
        if "bus" in modes:
            return self.config.bus_fare
        return 0.0

    def estimate_co2(self, distance_km: float, modes: Sequence[str]) -> float:
        factors = [self.config.emission_factors.get(mode, self.config.default_emission_factor) for mode in modes]
        if not factors:
            factors = [self.config.default_emission_factor]
        return round(distance_km * sum(factors) / len(factors), 2)

    def score(self, option: RouteOption) -> float:
        return (
            self.config.duration_weight * option.duration_minutes
            + self.config.cost_weight * (option.estimated_cost or 0.0)
            + self.config.co2_weight * option.co2_kg
            + self.config.confidence_weight * (1 - option.confidence) * 100
        )

    def rank(self, options: Sequence[RouteOption]) -> list[RouteOption]:
        """Ascending score; ties keep input order."""
        frame = pd.DataFrame(
            {
                "position": range(len(options)),
                "duration": [option.duration_minutes for option in options],
                "cost": [option.estimated_cost or 0.0 for option in options],
                "co2": [option.co2_kg for option in options],
                "confidence": [option.confidence for option in options],
            }
        )
        frame["score"] = (
            self.config.duration_weight * frame["duration"]
            + self.config.cost_weight * frame["cost"]
            + self.config.co2_weight * frame["co2"]
            + self.config.confidence_weight * (1 - frame["confidence"]) * 100
        )
        frame = frame.sort_values("score", kind="mergesort")
        return [options[position] for position in frame["position"]]
