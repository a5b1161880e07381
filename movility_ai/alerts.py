"""Correlation of live incident alerts with the congestion zone catalogue."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol, Sequence

from .config import CorrelatorConfig
from .data_models import SEVERITY_ORDER, ZONE_PRIORITY_ORDER, Alert, GeoZone, Severity, ZoneAlert, ZoneSummary
from .geo_zones import ZoneRegistry, haversine_km

logger = logging.getLogger(__name__)

RoutePoints = Sequence[tuple[float, float]]

ALERT_TYPE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("accident", ("accidente", "choque", "colisión", "colision", "volcamiento", "accident", "crash", "collision")),
    ("construction", ("obra", "construcción", "construccion", "mantenimiento", "cierre vial", "roadwork", "construction")),
    ("event", ("evento", "concierto", "partido", "festival", "event", "concert", "match")),
    ("protest", ("protesta", "manifestación", "manifestacion", "marcha", "bloqueo", "paro", "protest", "demonstration")),
)


def infer_alert_type(description: str) -> str:
    """Classify an alert by the first keyword family found in its text."""
    lowered = description.lower()
    for alert_type, keywords in ALERT_TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return alert_type
    return "other"


class AlertSource(Protocol):
    """Read-only feed of currently active alerts."""

    def fetch_active(self) -> list[Alert]:
        ...


class InMemoryAlertSource:
    def __init__(self, alerts: Iterable[Alert] = ()) -> None:
        self.alerts = list(alerts)

    def fetch_active(self) -> list[Alert]:
        return [alert for alert in self.alerts if alert.is_active]


@dataclass(frozen=True)
class AlertFilters:
    """Optional, intersecting restrictions applied after correlation."""

    zone_ids: frozenset[str] | None = None
    severity_min: Severity | None = None
    only_peak_hours: bool = False
    only_affecting_route: bool = False
    route_points: tuple[tuple[float, float], ...] | None = None


class ZoneAlertCorrelator:
    """Attaches alerts to zones and orders them by zone priority, severity and recency."""

    def __init__(self, registry: ZoneRegistry, config: CorrelatorConfig) -> None:
        self.registry = registry
        self.config = config

    def resolve_zone(self, alert: Alert) -> GeoZone | None:
        if alert.zone_id:
            zone = self.registry.get(alert.zone_id)
            if zone is not None:
                return zone
            logger.debug("Alert %s tagged with unknown zone %s", alert.id, alert.zone_id)
        if alert.location is not None:
            return self.registry.find_zone_by_point(alert.location.lat, alert.location.lng)
        return None

    def correlate(
        self,
        alerts: Iterable[Alert],
        filters: AlertFilters | None = None,
        now: datetime | None = None,
    ) -> list[ZoneAlert]:
        filters = filters or AlertFilters()
        now = now or datetime.now()
        peak_ids = {zone.id for zone in self.registry.zones_in_peak_window(now)}

        correlated: list[ZoneAlert] = []
        dropped = 0
        for alert in alerts:
            if not alert.is_active:
                continue
            zone = self.resolve_zone(alert)
            if zone is None:
                dropped += 1
                continue
            affects_route = bool(filters.route_points) and self.affects_route(zone, filters.route_points)
            zone_alert = ZoneAlert(alert=alert, zone=zone, is_peak_hour=zone.id in peak_ids, affects_route=affects_route)
            if self._passes(zone_alert, filters):
                correlated.append(zone_alert)

        if dropped:
            logger.debug("Dropped %d alerts without a resolvable zone", dropped)
        correlated.sort(
            key=lambda item: (
                ZONE_PRIORITY_ORDER[item.zone.priority],
                SEVERITY_ORDER[item.severity],
                item.timestamp.timestamp(),
            ),
            reverse=True,
        )
        return correlated

    def affects_route(self, zone: GeoZone, route_points: RoutePoints) -> bool:
        for lat, lng in route_points:
            if zone.contains(lat, lng):
                return True
            if haversine_km(lat, lng, zone.center.lat, zone.center.lng) <= self.config.route_proximity_km:
                return True
        return False

    def summarize_by_zone(self, alerts: Iterable[Alert], now: datetime | None = None) -> list[ZoneSummary]:
        grouped: dict[str, list[ZoneAlert]] = {}
        for zone_alert in self.correlate(alerts, now=now):
            grouped.setdefault(zone_alert.zone.id, []).append(zone_alert)

        summaries = [
            ZoneSummary(
                zone=items[0].zone,
                alert_count=len(items),
                critical_count=sum(1 for item in items if SEVERITY_ORDER[item.severity] >= SEVERITY_ORDER["high"]),
                is_peak_hour=items[0].is_peak_hour,
            )
            for items in grouped.values()
        ]
        summaries.sort(key=lambda summary: (summary.critical_count, summary.alert_count), reverse=True)
        return summaries

    def high_priority_alerts(
        self,
        alerts: Iterable[Alert],
        route_points: RoutePoints | None = None,
        now: datetime | None = None,
    ) -> list[ZoneAlert]:
        filters = AlertFilters(
            severity_min="high",
            route_points=tuple(route_points) if route_points else None,
        )
        return [
            zone_alert
            for zone_alert in self.correlate(alerts, filters, now)
            if zone_alert.zone.priority == "critical" or zone_alert.affects_route
        ]

    @staticmethod
    def _passes(zone_alert: ZoneAlert, filters: AlertFilters) -> bool:
        if filters.zone_ids is not None and zone_alert.zone.id not in filters.zone_ids:
            return False
        if filters.severity_min is not None and SEVERITY_ORDER[zone_alert.severity] < SEVERITY_ORDER[filters.severity_min]:
            return False
        if filters.only_peak_hours and not zone_alert.is_peak_hour:
            return False
        if filters.only_affecting_route and not zone_alert.affects_route:
            return False
        return True
