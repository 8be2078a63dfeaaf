from __future__ import annotations

import argparse
import logging
from pathlib import Path

from pulse_hub.config import get_settings
from pulse_hub.history import HistoryLog
from pulse_hub.ingestion import replay_entries
from pulse_hub.store import ProfileStore


logger = logging.getLogger("replay")


def replay(history_path: Path, store_path: Path, backup_path: Path, capacity: int, clear_first: bool) -> int:
    history = HistoryLog(history_path, capacity=capacity)
    entries = history.chronological()
    if not entries:
        logger.info("No history entries found at %s", history_path)
        return 0
    store = ProfileStore(store_path, backup_path)
    if clear_first:
        store.clear()
    summary = replay_entries(store, entries)
    if summary.warnings:
        logger.warning("Replay skipped %d fields", len(summary.warnings))
    logger.info("Replayed %d entries into %s (%d skipped)", summary.applied, store_path, summary.skipped)
    return summary.applied


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Replay the webhook history log into a profile store.")
    parser.add_argument("--history", type=Path, default=settings.history_path)
    parser.add_argument("--store", type=Path, default=settings.store_path)
    parser.add_argument("--backup", type=Path, default=settings.backup_path)
    parser.add_argument("--capacity", type=int, default=settings.history_capacity)
    parser.add_argument("--clear", action="store_true", help="Empty the target store before replaying.")
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args()
    replay(args.history, args.store, args.backup, args.capacity, args.clear)


if __name__ == "__main__":
    main()
