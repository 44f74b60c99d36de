import argparse
import logging
import time
from datetime import datetime
from pathlib import Path

from .data import default_spot_ids, load_histories
from .logging_utils import setup_logging
from .metrics import format_duration
from .options import Options
from .report import build_report, render_json

logger = logging.getLogger(__name__)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--file", type=Path, help="Local JSON file with spot histories")
    parser.add_argument("--base-url", help="Sensor backend base URL")
    parser.add_argument(
        "--spots",
        nargs="+",
        help="Spot identifiers to fetch (default: A01..A40)",
    )
    parser.add_argument("--output", type=Path, default=Path("site/metrics.json"))
    parser.add_argument("--window-hours", type=int, default=Options.window_hours)
    parser.add_argument("--ranking-size", type=int, default=Options.ranking_size)
    parser.add_argument("--peak-hours", type=int, default=Options.peak_hour_count)
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )


def options_from_args(args: argparse.Namespace) -> Options:
    return Options(
        window_hours=args.window_hours,
        ranking_size=args.ranking_size,
        peak_hour_count=args.peak_hours,
    )


def write_report(output: Path, report: dict) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(render_json(report), encoding="utf-8")


def main() -> None:
    parser = argparse.ArgumentParser(description="Compute parking occupancy metrics")
    add_common_arguments(parser)
    args = parser.parse_args()

    setup_logging(args.debug)

    if not args.file and not args.base_url:
        parser.error("--file or --base-url must be provided")

    start = time.monotonic()
    logger.info("Reading data")
    histories = load_histories(args.file, args.base_url, args.spots or default_spot_ids())
    report = build_report(
        histories,
        now=datetime.now().astimezone(),
        options=options_from_args(args),
    )
    write_report(args.output, report)

    metrics = report["metrics"]
    logger.info(
        "Spots: %d, occupancy events: %d, average stay: %s, average utilization: %.1f%%",
        report["stats"]["total_spots"],
        metrics["total_occupancy_events"],
        format_duration(metrics["average_occupancy_minutes"]),
        metrics["average_utilization"],
    )
    logger.info("Wrote report to %s in %.2f s", args.output, time.monotonic() - start)


if __name__ == "__main__":
    main()
