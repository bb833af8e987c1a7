# tools/recalc_predictions.py
from __future__ import annotations
import argparse, json, logging, sys
from typing import List, Optional

from taste_core.config import RECALC_BATCH_DELAY, RECALC_BATCH_SIZE, STALE_DAYS
from taste_core.recalc import recalculate_stale, recalculate_target
from taste_core.tracker import SignalTracker


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Recompute stale superfan predictions.")
    ap.add_argument("--dry-run", action="store_true", help="only count stale predictions")
    ap.add_argument("--batch-size", type=int, default=RECALC_BATCH_SIZE)
    ap.add_argument("--stale-days", type=int, default=STALE_DAYS)
    ap.add_argument("--delay", type=float, default=RECALC_BATCH_DELAY, help="seconds between batches")
    ap.add_argument("--target", default=None, help="force every cached prediction for one target")
    ap.add_argument("-v", "--verbose", action="store_true")
    return ap


def main(argv: Optional[List[str]] = None, tracker: Optional[SignalTracker] = None) -> int:
    a = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if a.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    if tracker is None:
        from api.storage import JsonFileRepository
        tracker = SignalTracker(JsonFileRepository(), stale_days=a.stale_days)

    if a.target:
        stats = recalculate_target(tracker, a.target, batch_size=a.batch_size, batch_delay=a.delay)
    else:
        stats = recalculate_stale(
            tracker,
            batch_size=a.batch_size,
            stale_days=a.stale_days,
            dry_run=a.dry_run,
            batch_delay=a.delay,
        )
    print(json.dumps(stats.to_dict(), indent=2, sort_keys=True))
    return 1 if stats.errors else 0


if __name__ == "__main__":
    sys.exit(main())
