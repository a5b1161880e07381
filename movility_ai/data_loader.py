"""Loading of alert snapshots exported by the incident feeds."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import pandas as pd

from .config import DataPaths
from .data_models import Alert, Location, SnapshotValidation
from .errors import AlertSourceError, SnapshotValidationError
from .geo_zones import ZoneRegistry

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("id", "description")
SEVERITY_ALIASES = {
    "low": "low",
    "baja": "low",
    "medium": "medium",
    "media": "medium",
    "moderate": "medium",
    "high": "high",
    "alta": "high",
    "critical": "critical",
    "crítica": "critical",
    "critica": "critical",
}
TRUE_VALUES = {"1", "1.0", "true", "yes", "si", "sí", "t", "y"}


class AlertSnapshotLoader:
    """Reads CSV or JSON alert snapshots into `Alert` records."""

    def __init__(self, paths: DataPaths, registry: ZoneRegistry) -> None:
        self.paths = paths
        self.registry = registry

    def load(self, path: Path | None = None) -> tuple[list[Alert], SnapshotValidation]:
        path = Path(path or self.paths.alert_snapshot)
        if not path.exists():
            raise FileNotFoundError(f"No alert snapshot found at {path.resolve()}")
        df = self._read(path)
        missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
        if missing:
            raise SnapshotValidationError(f"Snapshot {path.name} lacks columns {missing}", path=str(path))
        return self.clean(df)

    def clean(self, df: pd.DataFrame) -> tuple[list[Alert], SnapshotValidation]:
        total = len(df)
        df = df.dropna(subset=list(REQUIRED_COLUMNS)).copy()
        df = df.loc[df["description"].astype(str).str.strip() != ""]
        dropped = total - len(df)

        raw_severity = df.get("severity", pd.Series("medium", index=df.index)).fillna("medium")
        df["severity"] = raw_severity.astype(str).str.strip().str.lower().map(SEVERITY_ALIASES)
        unknown_severity = int(df["severity"].isna().sum())
        df["severity"] = df["severity"].fillna("medium")

        timestamps = pd.to_datetime(df.get("timestamp", pd.Series(pd.NaT, index=df.index)), errors="coerce")
        unparsed = int(timestamps.isna().sum())
        df["timestamp"] = timestamps

        alerts: list[Alert] = []
        keyword_tagged = 0
        loaded_at = datetime.now()
        for row in df.to_dict(orient="records"):
            location = self._location(row)
            zone_id = self._text(row.get("zone_id"))
            if zone_id is None and location is None:
                zone = self.registry.find_zone_by_text(f"{self._text(row.get('title')) or ''} {row['description']}")
                if zone is not None:
                    zone_id = zone.id
                    keyword_tagged += 1
            timestamp = row["timestamp"]
            alerts.append(
                Alert(
                    id=str(row["id"]),
                    description=str(row["description"]).strip(),
                    severity=row["severity"],
                    source=self._text(row.get("source")) or "snapshot",
                    timestamp=loaded_at if pd.isna(timestamp) else timestamp.to_pydatetime(),
                    is_active=self._flag(row.get("is_active", True)),
                    location=location,
                    zone_id=zone_id,
                    title=self._text(row.get("title")) or "",
                )
            )

        validation = SnapshotValidation(
            row_count=len(alerts),
            dropped_missing_fields=dropped,
            unknown_severity=unknown_severity,
            keyword_tagged=keyword_tagged,
            unparsed_timestamps=unparsed,
        )
        logger.info("Loaded %d alerts (%d dropped, %d tagged by keyword)", len(alerts), dropped, keyword_tagged)
        return alerts, validation

    @staticmethod
    def _read(path: Path) -> pd.DataFrame:
        if path.suffix.lower() == ".json":
            return pd.read_json(path, orient="records", dtype=False)
        return pd.read_csv(path, dtype={"id": str, "zone_id": str})

    @staticmethod
    def _text(value: object) -> str | None:
        if value is None or (isinstance(value, float) and pd.isna(value)):
            return None
        text = str(value).strip()
        return text or None

    @staticmethod
    def _flag(value: object) -> bool:
        if isinstance(value, bool):
            return value
        if value is None or (isinstance(value, float) and pd.isna(value)):
            return True
        return str(value).strip().lower() in TRUE_VALUES

    def _location(self, row: dict) -> Location | None:
        lat, lng = row.get("lat"), row.get("lng")
        if lat is None or lng is None or pd.isna(lat) or pd.isna(lng):
            return None
        return Location(address=self._text(row.get("address")) or "", lat=float(lat), lng=float(lng))


class CsvAlertSource:
    """Alert source that re-reads a snapshot file on every fetch."""

    def __init__(self, loader: AlertSnapshotLoader, path: Path | None = None) -> None:
        self.loader = loader
        self.path = path

    def fetch_active(self) -> list[Alert]:
        try:
            alerts, _ = self.loader.load(self.path)
        except (FileNotFoundError, SnapshotValidationError, ValueError) as exc:
            raise AlertSourceError("Could not read alert snapshot", cause=exc, source=str(self.path or "")) from exc
        return [alert for alert in alerts if alert.is_active]
