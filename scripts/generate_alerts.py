"""Generate a synthetic alert snapshot for MovilityAI."""
from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from movility_ai.geo_zones import MEDELLIN_ZONES

SEVERITIES = ["low", "medium", "high", "critical"]
SEVERITY_WEIGHTS = [0.3, 0.35, 0.25, 0.1]
INCIDENTS = [
    "Accidente entre dos vehículos",
    "Obras de mantenimiento en la vía",
    "Congestión por evento en el estadio",
    "Manifestación bloquea un carril",
    "Vehículo varado",
]
SOURCES = ["twitter", "waze", "secretaria_movilidad", "metro_status"]


@dataclass
class AlertDatasetConfig:
    samples: int = 40
    seed: int = 7
    outfile: Path = Path("data/alerts/active_alerts.csv")


def simulate_alert(rng: np.random.Generator, idx: int, now: datetime) -> dict:
    zone = MEDELLIN_ZONES[rng.integers(len(MEDELLIN_ZONES))]
    bounds = zone["bounds"]
    incident = INCIDENTS[rng.integers(len(INCIDENTS))]
    row = {
        "id": f"A{idx:04d}",
        "title": incident,
        "description": incident,
        "severity": rng.choice(SEVERITIES, p=SEVERITY_WEIGHTS),
        "source": SOURCES[rng.integers(len(SOURCES))],
        "timestamp": (now - timedelta(minutes=int(rng.integers(0, 180)))).isoformat(timespec="seconds"),
        "is_active": bool(rng.random() > 0.1),
        "zone_id": None,
        "lat": None,
        "lng": None,
        "address": None,
    }

    # resolution mix: explicit tag, coordinates, keyword-only text, unresolvable
    style = rng.choice(["tag", "coords", "text", "none"], p=[0.3, 0.4, 0.2, 0.1])
    if style == "tag":
        row["zone_id"] = zone["id"]
    elif style == "coords":
        row["lat"] = round(rng.uniform(bounds["south"], bounds["north"]), 5)
        row["lng"] = round(rng.uniform(bounds["west"], bounds["east"]), 5)
        row["address"] = zone["name"]
    elif style == "text":
        row["description"] = f"{incident} en {zone['keywords'][0]}"
    return row


def main(config: AlertDatasetConfig) -> None:
    rng = np.random.default_rng(config.seed)
    now = datetime.now().replace(microsecond=0)
    rows = [simulate_alert(rng, idx + 1, now) for idx in range(config.samples)]
    df = pd.DataFrame(rows)
    config.outfile.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(config.outfile, index=False)
    print(f"Alert snapshot written to {config.outfile} with {len(df)} rows")


if __name__ == "__main__":
    main(AlertDatasetConfig())
