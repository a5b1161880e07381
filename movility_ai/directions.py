"""Directions providers: the live Google client and an offline simulator.

Both return the same payload shape so the route planner never sees
provider-specific JSON::

    {"legs": [{"distance": metres, "duration": seconds,
               "duration_in_traffic": seconds (optional),
               "steps": [{"instruction", "mode", "distance", "duration",
                          "start": {"lat", "lng"}, "end": {"lat", "lng"},
                          "transit_details": {"line", "vehicle_type"} (optional)}]}]}
"""
from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Protocol

import httpx

from .config import ProviderConfig
from .data_models import Location
from .errors import DirectionsError
from .geo_zones import haversine_km

logger = logging.getLogger(__name__)

Payload = dict[str, Any]

RUSH_HOURS = ((6, 10), (16, 20))
RUSH_TRAFFIC_FACTOR = 1.6
OFFPEAK_TRAFFIC_FACTOR = 1.15
STATION_ACCESS_FRACTION = 0.05
METRO_MIN_KM = 4.0


class DirectionsProvider(Protocol):
    def get_route(
        self,
        origin: Location,
        destination: Location,
        mode: str,
        departure_time: datetime | None = None,
    ) -> Payload | None:
        ...

    def close(self) -> None:
        ...


def _point(lat: float, lng: float) -> dict[str, float]:
    return {"lat": lat, "lng": lng}


class GoogleDirectionsProvider:
    """Synchronous client for the Google Directions API."""

    def __init__(self, config: ProviderConfig, api_key: str | None = None, client: httpx.Client | None = None) -> None:
        self.config = config
        self.api_key = api_key if api_key is not None else os.environ.get(config.api_key_env, "")
        if not self.api_key:
            logger.warning("%s is not set; live directions will return no routes", config.api_key_env)
        # one client shared by the planner's worker threads
        self._client = client or httpx.Client(base_url=config.base_url, timeout=config.timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GoogleDirectionsProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_route(
        self,
        origin: Location,
        destination: Location,
        mode: str,
        departure_time: datetime | None = None,
    ) -> Payload | None:
        if not self.api_key:
            return None

        params = {
            "origin": f"{origin.lat},{origin.lng}",
            "destination": f"{destination.lat},{destination.lng}",
            "mode": mode,
            "key": self.api_key,
            "language": self.config.language,
            "region": self.config.region,
        }
        if departure_time is not None:
            params["departure_time"] = str(int(departure_time.timestamp()))
        elif mode in ("transit", "driving"):
            params["departure_time"] = "now"
        if mode == "driving":
            params["traffic_model"] = "best_guess"

        try:
            resp = self._client.get("/directions/json", params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise DirectionsError("Directions request failed", cause=exc, mode=mode) from exc

        status = data.get("status")
        if status == "ZERO_RESULTS":
            logger.info("No %s route found", mode)
            return None
        if status != "OK" or not data.get("routes"):
            raise DirectionsError(data.get("error_message") or "Directions API error", mode=mode, status=status)
        return self._to_payload(data["routes"][0])

    @staticmethod
    def _to_payload(route: dict[str, Any]) -> Payload:
        legs = []
        for leg in route.get("legs", []):
            steps = []
            for step in leg.get("steps", []):
                entry = {
                    "instruction": step.get("html_instructions", ""),
                    "mode": step.get("travel_mode", ""),
                    "distance": step["distance"]["value"],
                    "duration": step["duration"]["value"],
                    "start": step["start_location"],
                    "end": step["end_location"],
                }
                transit = step.get("transit_details")
                if transit:
                    line = transit.get("line", {})
                    entry["transit_details"] = {
                        "line": line.get("short_name") or line.get("name", ""),
                        "vehicle_type": line.get("vehicle", {}).get("type", ""),
                    }
                steps.append(entry)
            payload_leg = {
                "distance": leg["distance"]["value"],
                "duration": leg["duration"]["value"],
                "steps": steps,
            }
            if "duration_in_traffic" in leg:
                payload_leg["duration_in_traffic"] = leg["duration_in_traffic"]["value"]
            legs.append(payload_leg)
        return {"legs": legs}


class SimulatedDirectionsProvider:
    """Deterministic offline itineraries built from straight-line distance and mode speeds."""

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    def close(self) -> None:
        pass

    def get_route(
        self,
        origin: Location,
        destination: Location,
        mode: str,
        departure_time: datetime | None = None,
    ) -> Payload | None:
        speed = self.config.simulated_speeds_kmh.get(mode)
        if speed is None:
            return None
        km = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng) * self.config.simulated_detour_factor
        start, end = _point(origin.lat, origin.lng), _point(destination.lat, destination.lng)

        if mode == "transit":
            return {"legs": [self._transit_leg(origin, destination, km)]}

        duration = self._seconds(km, speed)
        label = {"walking": "Walk", "bicycling": "Ride", "driving": "Drive"}[mode]
        leg: Payload = {
            "distance": round(km * 1000),
            "duration": duration,
            "steps": [
                {
                    "instruction": f"<b>{label}</b> to {destination.address or 'destination'}",
                    "mode": mode.upper(),
                    "distance": round(km * 1000),
                    "duration": duration,
                    "start": start,
                    "end": end,
                }
            ],
        }
        if mode == "driving":
            leg["duration_in_traffic"] = round(duration * self._traffic_factor(departure_time))
        return {"legs": [leg]}

    def _transit_leg(self, origin: Location, destination: Location, km: float) -> Payload:
        walk_speed = self.config.simulated_speeds_kmh.get("walking", 4.8)
        ride_speed = self.config.simulated_speeds_kmh["transit"]
        access_km = km * STATION_ACCESS_FRACTION
        ride_km = km - 2 * access_km
        vehicle = "SUBWAY" if km >= METRO_MIN_KM else "BUS"

        def along(fraction: float) -> dict[str, float]:
            return _point(
                origin.lat + (destination.lat - origin.lat) * fraction,
                origin.lng + (destination.lng - origin.lng) * fraction,
            )

        board, alight = along(STATION_ACCESS_FRACTION), along(1 - STATION_ACCESS_FRACTION)
        steps = [
            {
                "instruction": "Walk to the station",
                "mode": "WALKING",
                "distance": round(access_km * 1000),
                "duration": self._seconds(access_km, walk_speed),
                "start": _point(origin.lat, origin.lng),
                "end": board,
            },
            {
                "instruction": f"<b>{'Metro' if vehicle == 'SUBWAY' else 'Bus'}</b> towards {destination.address or 'destination'}",
                "mode": "TRANSIT",
                "distance": round(ride_km * 1000),
                "duration": self._seconds(ride_km, ride_speed),
                "start": board,
                "end": alight,
                "transit_details": {"line": "Línea A" if vehicle == "SUBWAY" else "Circular", "vehicle_type": vehicle},
            },
            {
                "instruction": f"Walk to {destination.address or 'destination'}",
                "mode": "WALKING",
                "distance": round(access_km * 1000),
                "duration": self._seconds(access_km, walk_speed),
                "start": alight,
                "end": _point(destination.lat, destination.lng),
            },
        ]
        return {
            "distance": sum(step["distance"] for step in steps),
            "duration": sum(step["duration"] for step in steps),
            "steps": steps,
        }

    @staticmethod
    def _seconds(km: float, speed_kmh: float) -> int:
        return max(1, round(km / speed_kmh * 3600))

    @staticmethod
    def _traffic_factor(departure_time: datetime | None) -> float:
        hour = (departure_time or datetime.now()).hour
        if any(start <= hour < end for start, end in RUSH_HOURS):
            return RUSH_TRAFFIC_FACTOR
        return OFFPEAK_TRAFFIC_FACTOR


def build_provider(config: ProviderConfig) -> DirectionsProvider:
    if config.simulate_directions:
        return SimulatedDirectionsProvider(config)
    return GoogleDirectionsProvider(config)
