from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Dict, List, Set

from .config import RECALC_BATCH_DELAY, RECALC_BATCH_SIZE, RECALC_MAX_WORKERS, STALE_DAYS
from .tracker import SignalTracker
from .types import CachedPrediction

log = logging.getLogger(__name__)


@dataclass
class RecalculationStats:
    total: int = 0
    stale: int = 0
    recalculated: int = 0
    errors: int = 0
    targets_updated: List[str] = field(default_factory=list)
    duration_s: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def _refresh_one(tracker: SignalTracker, entry: CachedPrediction) -> bool:
    try:
        tracker.refresh(entry.subject_id, entry.target_id)
        return True
    except Exception:
        log.exception("recalc failed subject=%s target=%s", entry.subject_id, entry.target_id)
        return False


def _run_batches(
    tracker: SignalTracker,
    entries: List[CachedPrediction],
    stats: RecalculationStats,
    *,
    batch_size: int,
    batch_delay: float,
    max_workers: int,
) -> None:
    size = max(1, int(batch_size))
    targets: Set[str] = set()
    batches = [entries[i:i + size] for i in range(0, len(entries), size)]
    for idx, batch in enumerate(batches):
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(batch)))) as pool:
            results = list(pool.map(lambda e: _refresh_one(tracker, e), batch))
        for entry, ok in zip(batch, results):
            if ok:
                stats.recalculated += 1
                targets.add(entry.target_id)
            else:
                stats.errors += 1
        log.debug("recalc batch %d/%d done (%d entries)", idx + 1, len(batches), len(batch))
        if batch_delay > 0 and idx < len(batches) - 1:
            time.sleep(batch_delay)
    stats.targets_updated = sorted(targets)


def recalculate_stale(
    tracker: SignalTracker,
    *,
    batch_size: int = RECALC_BATCH_SIZE,
    stale_days: int = STALE_DAYS,
    dry_run: bool = False,
    batch_delay: float = RECALC_BATCH_DELAY,
    max_workers: int = RECALC_MAX_WORKERS,
) -> RecalculationStats:
    """Recompute every cached prediction that is invalidated or older than ``stale_days``.

    Entries are processed oldest first.  One entry failing is logged and
    counted without aborting its batch; rerunning is always safe.
    """
    started = time.monotonic()
    cutoff = tracker.now() - timedelta(days=stale_days)
    entries = tracker.repo.stale_predictions(cutoff)
    stats = RecalculationStats(total=len(entries), stale=len(entries))
    if dry_run:
        log.info("recalc dry run: %d stale predictions", stats.stale)
    else:
        _run_batches(tracker, entries, stats, batch_size=batch_size, batch_delay=batch_delay, max_workers=max_workers)
    stats.duration_s = round(time.monotonic() - started, 3)
    log.info(
        "recalc finished stale=%d recalculated=%d errors=%d targets=%d in %.2fs",
        stats.stale, stats.recalculated, stats.errors, len(stats.targets_updated), stats.duration_s,
    )
    return stats


def recalculate_target(
    tracker: SignalTracker,
    target_id: str,
    *,
    batch_size: int = RECALC_BATCH_SIZE,
    batch_delay: float = RECALC_BATCH_DELAY,
    max_workers: int = RECALC_MAX_WORKERS,
) -> RecalculationStats:
    """Force recomputation of every cached prediction for one target."""
    started = time.monotonic()
    entries = sorted(tracker.repo.predictions_for_target(target_id), key=lambda e: e.calculated_at)
    stats = RecalculationStats(total=len(entries))
    _run_batches(tracker, entries, stats, batch_size=batch_size, batch_delay=batch_delay, max_workers=max_workers)
    stats.duration_s = round(time.monotonic() - started, 3)
    log.info("recalc target=%s recalculated=%d errors=%d", target_id, stats.recalculated, stats.errors)
    return stats
