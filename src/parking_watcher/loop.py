import argparse
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Sequence

from .cache import MetricsCache
from .data import default_spot_ids, load_histories
from .logging_utils import setup_logging
from .main import add_common_arguments, options_from_args, write_report
from .options import Options
from .periods import Observation
from .report import build_report

logger = logging.getLogger(__name__)


def fetch_once(
    cache: MetricsCache,
    file: Path | None = None,
    base_url: str | None = None,
    spot_ids: Sequence[str] | None = None,
) -> Dict[str, List[Observation]]:
    """Load the latest histories and register them with the cache."""
    logger.debug("Fetching data with file=%s base_url=%s", file, base_url)
    histories = load_histories(file, base_url, spot_ids)
    if cache.update(histories):
        logger.info("Histories changed (version %d)", cache.version)
    else:
        logger.debug("No new samples")
    return histories


def update_once(
    output: Path,
    histories: Dict[str, List[Observation]],
    cache: MetricsCache,
    options: Options | None = None,
) -> None:
    """Write the JSON report, reusing the cached result while data is unchanged."""
    logger.debug("Updating report at %s", output)
    report = cache.get(
        "report",
        lambda: build_report(
            histories, now=datetime.now().astimezone(), options=options
        ),
    )
    write_report(output, report)
    logger.debug("Wrote output to %s", output)


def main() -> None:
    parser = argparse.ArgumentParser(description="Periodically refresh occupancy metrics")
    add_common_arguments(parser)
    parser.add_argument(
        "--fetch-interval",
        type=int,
        default=60,
        help="Seconds between data fetches",
    )
    parser.add_argument(
        "--update-interval",
        type=int,
        default=300,
        help="Seconds between report updates",
    )
    args = parser.parse_args()

    setup_logging(args.debug)

    if not args.file and not args.base_url:
        parser.error("--file or --base-url must be provided")

    options = options_from_args(args)
    spot_ids = args.spots or default_spot_ids()
    cache = MetricsCache(ttl=args.update_interval)
    histories: Dict[str, List[Observation]] = {}

    # Track the next scheduled time for each task. The intervals should
    # remain consistent regardless of how long each action takes to run.
    next_fetch = time.monotonic()
    next_update = time.monotonic()

    while True:
        now = time.monotonic()
        if now >= next_fetch:
            logger.info("Fetching data")
            try:
                histories = fetch_once(cache, args.file, args.base_url, spot_ids)
            except (OSError, ValueError) as exc:
                logger.error("Fetch failed: %s", exc)
            next_fetch += args.fetch_interval
            if next_fetch <= now:
                # Catch up if the fetch took longer than the interval
                next_fetch = now + args.fetch_interval

        if now >= next_update:
            logger.info("Updating report")
            update_once(args.output, histories, cache, options)
            next_update += args.update_interval
            if next_update <= now:
                next_update = now + args.update_interval

        sleep_for = min(next_fetch, next_update) - time.monotonic()
        if sleep_for > 0:
            time.sleep(sleep_for)


if __name__ == "__main__":
    main()
