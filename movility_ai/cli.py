"""Console entry point for MovilityAI trip planning."""
from __future__ import annotations

import argparse
import json
from contextlib import closing
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path
from typing import Sequence

from .alerts import AlertSource
from .config import DEFAULT_CONFIG, PipelineConfig
from .data_loader import AlertSnapshotLoader, CsvAlertSource
from .data_models import Location, TripRequest
from .directions import build_provider
from .geo_zones import DEFAULT_REGISTRY, load_registry
from .logging_setup import setup_logging
from .pipeline import MovilityPipeline
from .reporting import ReportGenerator


def parse_location(text: str) -> Location:
    """Parse ``lat,lng`` or ``lat,lng,address``."""
    parts = [part.strip() for part in text.split(",", 2)]
    if len(parts) < 2:
        raise argparse.ArgumentTypeError(f"Expected lat,lng[,address], got {text!r}")
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid coordinates in {text!r}") from exc
    address = parts[2] if len(parts) == 3 and parts[2] else f"{lat:.5f},{lng:.5f}"
    return Location(address=address, lat=lat, lng=lng)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MovilityAI - traffic-aware multi-modal trip planning for Medellín")
    parser.add_argument("origin", type=parse_location, help="Origin as lat,lng[,address]")
    parser.add_argument("destination", type=parse_location, help="Destination as lat,lng[,address]")
    parser.add_argument("--modes", nargs="+", default=None, help="Preferred modes, e.g. metro bus walk car")
    parser.add_argument("--departure", type=datetime.fromisoformat, default=None, help="ISO departure time")
    parser.add_argument("--weather", choices=("sunny", "cloudy", "rainy"), default=None)
    parser.add_argument("--alerts", type=Path, default=None, help="CSV or JSON alert snapshot")
    parser.add_argument("--zones", type=Path, default=None, help="JSON zone catalogue")
    parser.add_argument("--live-directions", action="store_true", help="Query the Google Directions API")
    parser.add_argument("--report", action="store_true", help="Write a markdown trip report")
    parser.add_argument("--json", action="store_true", help="Print the full run state as JSON")
    parser.add_argument("--user-id", default=None, help="Caller identifier recorded on the run")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    config: PipelineConfig = DEFAULT_CONFIG
    if args.zones is not None:
        config = replace(config, paths=replace(config.paths, zone_catalog=args.zones))
    if args.alerts is not None:
        config = replace(config, paths=replace(config.paths, alert_snapshot=args.alerts))
    if args.live_directions:
        config = replace(config, provider=replace(config.provider, simulate_directions=False))

    setup_logging(args.log_level, config.paths.log_dir)
    registry = load_registry(args.zones) if args.zones is not None else DEFAULT_REGISTRY

    alert_source: AlertSource | None = None
    if args.alerts is not None:
        alert_source = CsvAlertSource(AlertSnapshotLoader(config.paths, registry), args.alerts)

    request = TripRequest(
        origin=args.origin,
        destination=args.destination,
        preferred_modes=tuple(args.modes or ()),
        departure_time=args.departure,
        weather=args.weather,
        user_id=args.user_id,
    )
    with closing(build_provider(config.provider)) as provider:
        pipeline = MovilityPipeline(config, registry=registry, provider=provider, alert_source=alert_source)
        state = pipeline.run(request)

    if args.json:
        print(json.dumps(asdict(state), default=str, ensure_ascii=False, indent=2))
    else:
        print(state.final_response)
        print(f"\nConfidence: {state.confidence:.2f} | processing time: {state.processing_time_ms:.0f} ms")
        for warning in state.warnings:
            print(f"warning: {warning}")
        for error in state.errors:
            print(f"error: {error}")

    if args.report:
        report_path = ReportGenerator(config.paths).create_report(state)
        print(f"Markdown report stored at: {report_path}")


if __name__ == "__main__":
    main()
