"""Superfan-likelihood prediction for a (subject, target) pair.

The combined score is the geometric mean of three normalized components:

* taste coherence: cosine similarity of the two archetype blends,
* signal depth: decayed, type-weighted engagement signals,
* return pattern: how often and how organically the subject comes back.

A geometric mean is used so that one empty component pulls the whole
prediction down instead of being averaged away.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .archetypes import ARCHETYPE_IDS
from .config import (
    COHERENCE_MATCH_THRESHOLD,
    MIN_SESSIONS,
    MIN_SIGNALS,
    RECENT_SIGNAL_DAYS,
    RETURN_CONSISTENCY_WEIGHT,
    RETURN_FREQUENCY_SATURATION,
    RETURN_FREQUENCY_WEIGHT,
    RETURN_GAP_SCALE_DAYS,
    RETURN_ORGANIC_WEIGHT,
    SIGNAL_DECAY_FLOOR,
    SIGNAL_EXPECTED_MAX,
    SIGNAL_HALF_LIFE_DAYS,
    STALE_DAYS,
    STRONG_SIGNAL_WEIGHT,
)
from .tiers import engagement_tier
from .types import EngagementPrediction, EngagementSignal, SignalKind, VisitOrigin, VisitSession

log = logging.getLogger(__name__)

SIGNAL_WEIGHTS: Dict[SignalKind, float] = {
    SignalKind.UNPROMPTED_RETURN: 4.0,
    SignalKind.CONCERT_INTEREST: 4.0,
    SignalKind.MERCH_CLICK: 3.5,
    SignalKind.SAVE: 3.0,
    SignalKind.SHARE: 3.0,
    SignalKind.PLAYLIST_ADD: 2.5,
    SignalKind.CATALOG_DEEP_DIVE: 2.0,
    SignalKind.PROFILE_VISIT: 1.5,
    SignalKind.REPLAY: 1.0,
}

_DAY = 86400.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def _clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def _age_days(ts: datetime, now: datetime) -> float:
    return max(0.0, (as_utc(now) - as_utc(ts)).total_seconds() / _DAY)


def base_weight(kind: SignalKind) -> float:
    return SIGNAL_WEIGHTS.get(SignalKind(kind), 1.0)


# ---- taste coherence ----
def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


def taste_coherence(
    subject_weights: Optional[Mapping[str, float]],
    target_weights: Optional[Mapping[str, float]],
    archetype_ids: Sequence[str] = ARCHETYPE_IDS,
) -> Dict[str, object]:
    if not subject_weights or not target_weights:
        return {"normalized": 0.5, "matching": [], "overlap": 0.0}
    u = [float(subject_weights.get(k, 0.0)) for k in archetype_ids]
    c = [float(target_weights.get(k, 0.0)) for k in archetype_ids]
    normalized = _clamp((cosine_similarity(u, c) + 1.0) / 2.0)

    thr = COHERENCE_MATCH_THRESHOLD
    matching = [k for k, x, y in zip(archetype_ids, u, c) if x >= thr and y >= thr]
    active = {k for k, x in zip(archetype_ids, u) if x >= thr} | {k for k, y in zip(archetype_ids, c) if y >= thr}
    overlap = len(matching) / len(active) if active else 0.0
    return {"normalized": normalized, "matching": matching, "overlap": overlap}


# ---- signal depth ----
def decay_factor(age_days: float, half_life: float = SIGNAL_HALF_LIFE_DAYS, floor: float = SIGNAL_DECAY_FLOOR) -> float:
    hl = half_life if half_life > 0 else SIGNAL_HALF_LIFE_DAYS
    return max(math.exp(-math.log(2) * max(0.0, age_days) / hl), floor)


def signal_contribution(signal: EngagementSignal, now: datetime) -> float:
    return float(signal.weight) * decay_factor(_age_days(signal.created_at, now))


def signal_depth(signals: Sequence[EngagementSignal], now: datetime) -> Dict[str, object]:
    if not signals:
        return {"normalized": 0.0, "strong": 0, "recent": 0, "by_kind": {}}
    total = 0.0
    strong = 0
    recent = 0
    by_kind: Counter = Counter()
    for s in signals:
        total += signal_contribution(s, now)
        kind = SignalKind(s.kind)
        by_kind[kind.value] += 1
        if base_weight(kind) >= STRONG_SIGNAL_WEIGHT:
            strong += 1
        if _age_days(s.created_at, now) <= RECENT_SIGNAL_DAYS:
            recent += 1
    normalized = _clamp(math.log1p(total) / math.log1p(SIGNAL_EXPECTED_MAX))
    return {"normalized": normalized, "strong": strong, "recent": recent, "by_kind": dict(by_kind)}


# ---- return pattern ----
def return_pattern(sessions: Sequence[VisitSession]) -> Dict[str, object]:
    if not sessions:
        return {"normalized": 0.5, "organic": 0, "algorithmic": 0, "organic_ratio": 0.0, "avg_gap_days": None}
    organic = sum(1 for s in sessions if VisitOrigin(s.origin) is VisitOrigin.ORGANIC)
    algorithmic = sum(1 for s in sessions if VisitOrigin(s.origin) is VisitOrigin.ALGORITHMIC)
    n = len(sessions)
    ratio = organic / n

    ordered = sorted(as_utc(s.started_at) for s in sessions)
    avg_gap: Optional[float] = None
    if n >= 2:
        gaps = [(b - a).total_seconds() / _DAY for a, b in zip(ordered, ordered[1:])]
        avg_gap = round(sum(gaps) / len(gaps), 1)

    frequency = _clamp(math.log1p(n) / math.log1p(RETURN_FREQUENCY_SATURATION))
    consistency = 0.5 if avg_gap is None else _clamp(math.exp(-avg_gap / RETURN_GAP_SCALE_DAYS))
    normalized = (
        ratio * RETURN_ORGANIC_WEIGHT
        + frequency * RETURN_FREQUENCY_WEIGHT
        + consistency * RETURN_CONSISTENCY_WEIGHT
    )
    return {
        "normalized": _clamp(normalized),
        "organic": organic,
        "algorithmic": algorithmic,
        "organic_ratio": round(ratio, 2),
        "avg_gap_days": avg_gap,
    }


def combine_scores(coherence: float, depth: float, returns: float) -> int:
    """100 x geometric mean of the three [0, 1] components."""
    product = max(0.0, coherence) * max(0.0, depth) * max(0.0, returns)
    return int(round(_clamp(product ** (1.0 / 3.0) * 100.0, 0.0, 100.0)))


def predict(
    subject_weights: Optional[Mapping[str, float]],
    target_weights: Optional[Mapping[str, float]],
    signals: Iterable[EngagementSignal],
    sessions: Iterable[VisitSession],
    *,
    now: Optional[datetime] = None,
    archetype_ids: Sequence[str] = ARCHETYPE_IDS,
) -> EngagementPrediction:
    ts = as_utc(now) if now is not None else utcnow()
    sig: List[EngagementSignal] = list(signals)
    ses: List[VisitSession] = list(sessions)

    tc = taste_coherence(subject_weights, target_weights, archetype_ids)
    sd = signal_depth(sig, ts)
    rp = return_pattern(ses)
    combined = combine_scores(tc["normalized"], sd["normalized"], rp["normalized"])  # type: ignore[arg-type]
    last = max((as_utc(s.created_at) for s in sig), default=None)

    out = EngagementPrediction(
        taste_coherence=int(round(tc["normalized"] * 100)),  # type: ignore[operator]
        signal_score=int(round(sd["normalized"] * 100)),  # type: ignore[operator]
        return_score=int(round(rp["normalized"] * 100)),  # type: ignore[operator]
        combined=combined,
        tier=engagement_tier(combined),
        signal_count=len(sig),
        last_signal_at=last,
        sufficient_data=len(sig) >= MIN_SIGNALS and len(ses) >= MIN_SESSIONS,
        breakdown={
            "taste_coherence": {
                "matching_archetypes": tc["matching"],
                "overlap_percentage": int(round(tc["overlap"] * 100)),  # type: ignore[operator]
            },
            "signals": {
                "total": len(sig),
                "strong": sd["strong"],
                "recent": sd["recent"],
                "by_kind": sd["by_kind"],
            },
            "returns": {
                "organic": rp["organic"],
                "algorithmic": rp["algorithmic"],
                "organic_ratio": rp["organic_ratio"],
                "avg_days_between": rp["avg_gap_days"],
            },
        },
    )
    log.debug(
        "predicted tc=%d ss=%d rs=%d combined=%d tier=%s signals=%d sessions=%d",
        out.taste_coherence, out.signal_score, out.return_score, out.combined, out.tier, len(sig), len(ses),
    )
    return out


def is_stale(calculated_at: Optional[datetime], now: Optional[datetime] = None, stale_days: int = STALE_DAYS) -> bool:
    if calculated_at is None:
        return True
    ts = as_utc(now) if now is not None else utcnow()
    return as_utc(ts) - as_utc(calculated_at) >= timedelta(days=stale_days)
