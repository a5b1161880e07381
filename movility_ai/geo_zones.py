"""Static catalogue of congestion-prone zones and shared geo utilities."""
from __future__ import annotations

import json
import logging
import math
from datetime import datetime, time
from pathlib import Path
from typing import Any, Iterable, Mapping

from .data_models import ZONE_PRIORITY_ORDER, GeoZone, Location, PeakWindow

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    lat1_rad, lon1_rad = map(math.radians, (lat1, lon1))
    lat2_rad, lon2_rad = map(math.radians, (lat2, lon2))
    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def interpolate_points(origin: Location, destination: Location, samples: int) -> list[tuple[float, float]]:
    """Origin, `samples` evenly spaced interior points and destination as (lat, lng) pairs."""
    points = [(origin.lat, origin.lng)]
    for idx in range(1, samples + 1):
        fraction = idx / (samples + 1)
        points.append(
            (
                origin.lat + (destination.lat - origin.lat) * fraction,
                origin.lng + (destination.lng - origin.lng) * fraction,
            )
        )
    points.append((destination.lat, destination.lng))
    return points


MEDELLIN_ZONES: tuple[dict[str, Any], ...] = (
    {
        "id": "autopista-norte",
        "name": "Autopista Norte",
        "type": "highway",
        "description": "Main northbound corridor of the city",
        "center": (6.2704, -75.5664),
        "bounds": {"north": 6.35, "south": 6.25, "east": -75.55, "west": -75.58},
        "keywords": ["autopista norte", "autop norte", "au norte", "bello", "caribe", "terminal norte"],
        "peak_hours": ["06:30-09:00", "17:00-20:00"],
        "average_delay": 40,
        "priority": "critical",
    },
    {
        "id": "autopista-sur",
        "name": "Autopista Sur",
        "type": "highway",
        "description": "Southbound corridor towards Envigado, Sabaneta and Itagüí",
        "center": (6.1701, -75.5906),
        "bounds": {"north": 6.24, "south": 6.12, "east": -75.56, "west": -75.62},
        "keywords": ["autopista sur", "autop sur", "au sur", "envigado", "sabaneta", "itagüí", "las vegas", "mayorca"],
        "peak_hours": ["06:30-09:00", "17:00-20:00"],
        "average_delay": 40,
        "priority": "critical",
    },
    {
        "id": "avenida-33",
        "name": "Avenida 33 (Calle 33)",
        "type": "avenue",
        "description": "East-west avenue crossing the city",
        "center": (6.2442, -75.5812),
        "bounds": {"north": 6.25, "south": 6.24, "east": -75.55, "west": -75.61},
        "keywords": ["calle 33", "avenida 33", "av 33", "33", "san juan"],
        "peak_hours": ["07:00-09:00", "17:30-19:30"],
        "average_delay": 35,
        "priority": "critical",
    },
    {
        "id": "avenida-oriental",
        "name": "Avenida Oriental",
        "type": "avenue",
        "description": "Central corridor with heavy vehicle flow",
        "center": (6.2442, -75.5636),
        "bounds": {"north": 6.28, "south": 6.21, "east": -75.56, "west": -75.57},
        "keywords": ["avenida oriental", "av oriental", "oriental", "carrera 43"],
        "peak_hours": ["07:00-09:00", "17:00-19:00"],
        "average_delay": 30,
        "priority": "critical",
    },
    {
        "id": "carrera-70",
        "name": "Carrera 70 (Avenida 80)",
        "type": "avenue",
        "description": "Corridor towards the west of the city",
        "center": (6.2456, -75.5908),
        "bounds": {"north": 6.29, "south": 6.20, "east": -75.58, "west": -75.60},
        "keywords": ["carrera 70", "cr 70", "avenida 80", "av 80", "robledo", "conquistadores"],
        "peak_hours": ["07:00-09:00", "17:00-19:00"],
        "average_delay": 25,
        "priority": "high",
    },
    {
        "id": "avenida-poblado",
        "name": "Avenida El Poblado",
        "type": "avenue",
        "description": "Commercial and residential area with heavy congestion",
        "center": (6.2088, -75.5673),
        "bounds": {"north": 6.25, "south": 6.17, "east": -75.56, "west": -75.58},
        "keywords": ["avenida poblado", "av poblado", "el poblado", "poblado", "milla de oro", "parque lleras"],
        "peak_hours": ["07:30-09:30", "17:30-19:30"],
        "average_delay": 20,
        "priority": "high",
    },
    {
        "id": "regional",
        "name": "Avenida Regional",
        "type": "highway",
        "description": "North-south link along the Medellín river",
        "center": (6.2442, -75.5945),
        "bounds": {"north": 6.32, "south": 6.17, "east": -75.58, "west": -75.61},
        "keywords": ["regional", "avenida regional", "av regional", "paralela al rio"],
        "peak_hours": ["06:30-09:00", "17:00-20:00"],
        "average_delay": 30,
        "priority": "high",
    },
    {
        "id": "las-palmas",
        "name": "Vía Las Palmas",
        "type": "highway",
        "description": "Connection to eastern Antioquia",
        "center": (6.1536, -75.5234),
        "bounds": {"north": 6.20, "south": 6.10, "east": -75.48, "west": -75.56},
        "keywords": ["las palmas", "vía las palmas", "via palmas", "variante"],
        "peak_hours": ["17:00-20:00", "06:00-08:00"],
        "average_delay": 25,
        "priority": "medium",
    },
)


def zone_from_record(record: Mapping[str, Any]) -> GeoZone:
    """Build a GeoZone from a catalogue entry (built-in or JSON)."""
    center = record["center"]
    if isinstance(center, Mapping):
        center_lat, center_lng = float(center["lat"]), float(center["lng"])
    else:
        center_lat, center_lng = float(center[0]), float(center[1])
    bounds = record["bounds"]
    priority = record.get("priority", "medium")
    if priority not in ZONE_PRIORITY_ORDER:
        raise ValueError(f"Unknown priority {priority!r} for zone {record.get('id')!r}")
    return GeoZone(
        id=str(record["id"]),
        name=str(record["name"]),
        type=str(record.get("type", "street")),
        center=Location(address=str(record.get("description") or record["name"]), lat=center_lat, lng=center_lng),
        north=float(bounds["north"]),
        south=float(bounds["south"]),
        east=float(bounds["east"]),
        west=float(bounds["west"]),
        keywords=tuple(str(keyword).lower() for keyword in record.get("keywords", ())),
        peak_hours=tuple(PeakWindow.parse(window) for window in record.get("peak_hours", ())),
        average_delay_minutes=int(record.get("average_delay", 0)),
        priority=priority,
        description=str(record.get("description", "")),
    )


class ZoneRegistry:
    """Immutable, ordered lookup over the congestion zone catalogue.

    Catalogue order is the tie-break for every lookup: when two zones match a
    point or a keyword, the one listed first wins.
    """

    def __init__(self, zones: Iterable[GeoZone]) -> None:
        self._zones: tuple[GeoZone, ...] = tuple(zones)
        self._by_id = {zone.id: zone for zone in self._zones}

    def __iter__(self):
        return iter(self._zones)

    def __len__(self) -> int:
        return len(self._zones)

    @property
    def zones(self) -> tuple[GeoZone, ...]:
        return self._zones

    def get(self, zone_id: str) -> GeoZone | None:
        return self._by_id.get(zone_id)

    def find_zone_by_point(self, lat: float, lng: float) -> GeoZone | None:
        for zone in self._zones:
            if zone.contains(lat, lng):
                return zone
        return None

    def find_zone_by_text(self, text: str) -> GeoZone | None:
        lowered = text.lower()
        for zone in self._zones:
            if any(keyword in lowered for keyword in zone.keywords):
                return zone
        return None

    def zones_in_peak_window(self, now: datetime | time) -> list[GeoZone]:
        moment = now.time() if isinstance(now, datetime) else now
        return [zone for zone in self._zones if zone.in_peak(moment)]

    def by_priority(self) -> list[GeoZone]:
        return sorted(self._zones, key=lambda zone: ZONE_PRIORITY_ORDER[zone.priority], reverse=True)

    @staticmethod
    def distance_to_zone_center_km(lat: float, lng: float, zone: GeoZone) -> float:
        return haversine_km(lat, lng, zone.center.lat, zone.center.lng)


def load_registry(path: Path | None = None) -> ZoneRegistry:
    """Load zones from a JSON catalogue, or the built-in Medellín catalogue when no path is given."""
    if path is None:
        return ZoneRegistry(zone_from_record(record) for record in MEDELLIN_ZONES)
    records = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(records, Mapping):
        records = records.get("zones", [])
    registry = ZoneRegistry(zone_from_record(record) for record in records)
    logger.info("Loaded %d zones from %s", len(registry), path)
    return registry


DEFAULT_REGISTRY = load_registry()
