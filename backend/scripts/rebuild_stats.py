"""Recompute the statistics snapshot from the profile store and print a summary."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pulse_hub.config import get_settings
from pulse_hub.stats import StatisticsAggregator
from pulse_hub.store import ProfileStore

LOGGER = logging.getLogger("pulse_hub.rebuild_stats")


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Rebuild the webhook statistics snapshot.")
    parser.add_argument("--store", type=Path, default=settings.store_path)
    parser.add_argument("--backup", type=Path, default=settings.backup_path)
    parser.add_argument("--output", type=Path, default=settings.stats_path)
    parser.add_argument("--top", type=int, default=settings.top_profiles)
    return parser.parse_args()


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args()
    try:
        aggregator = StatisticsAggregator(ProfileStore(args.store, args.backup), args.output, top_n=args.top)
        stats = aggregator.generate_and_save()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Failed to rebuild statistics: %s", exc)
        return 1
    LOGGER.info("Wrote statistics for %d profiles to %s", stats.summary.total_profiles, args.output)
    print(json.dumps(stats.summary.model_dump(mode="json", by_alias=True)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
