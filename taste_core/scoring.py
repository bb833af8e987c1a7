from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .config import (
    CONFIDENCE_CAP,
    DELTA_WEIGHT,
    MAX_QUESTIONS_SUGGESTED,
    NEUTRAL_DISPERSION,
    TARGET_ACCURACY,
)
from .item_bank import ItemCatalog, default_catalog
from .types import ResponseEvent, ScoringResult, Trait, TraitEstimate, TRAITS

log = logging.getLogger(__name__)


def _clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def normalize_value(item_type: str, value: float) -> float:
    """Bring an option value onto [0, 1]; binary items are authored on [-1, 1]."""
    if item_type == "binary":
        return _clamp((float(value) + 1.0) / 2.0)
    return _clamp(float(value))


@dataclass
class _Acc:
    values: List[float] = field(default_factory=list)
    weights: List[float] = field(default_factory=list)
    delta_values: List[float] = field(default_factory=list)


def _estimate(acc: _Acc) -> TraitEstimate:
    n = len(acc.values)
    if n == 0:
        return TraitEstimate(score=0.5, confidence=0.0, dispersion=NEUTRAL_DISPERSION)

    raw_sum = sum(w * v for w, v in zip(acc.weights, acc.values))
    num = raw_sum + sum(DELTA_WEIGHT * v for v in acc.delta_values)
    den = sum(acc.weights) + DELTA_WEIGHT * len(acc.delta_values)
    score = _clamp(num / den) if den > 0 else 0.5

    mean = sum(acc.values) / n
    std = math.sqrt(sum((v - mean) ** 2 for v in acc.values) / n)
    avg_disc = sum(acc.weights) / n

    sample = 1.0 - 1.0 / (1.0 + 0.5 * n)
    consistency = max(0.0, 0.3 - 0.5 * std)
    disc_bonus = (avg_disc - 1.0) * 0.1
    confidence = _clamp(sample + consistency + disc_bonus, 0.0, CONFIDENCE_CAP)

    return TraitEstimate(
        score=score,
        confidence=confidence,
        dispersion=std,
        item_count=n,
        raw_sum=raw_sum,
        responses=list(acc.values),
    )


def reliability(accs: Dict[Trait, _Acc]) -> float:
    """Cronbach-style alpha from item counts and per-trait squared deviations."""
    total_items = 0
    total_ss = 0.0
    item_var = 0.0
    for acc in accs.values():
        n = len(acc.values)
        if n == 0:
            continue
        total_items += n
        mean = sum(acc.values) / n
        total_ss += sum((v - mean) ** 2 for v in acc.values)
        item_var += n * 0.25
    if total_items < 3:
        return 0.5
    alpha = (total_items / (total_items - 1)) * (1.0 - item_var / (total_ss + 0.01))
    return _clamp(alpha)


def estimated_accuracy(confidence: float, rel: float, item_count: int) -> float:
    base = 0.5 + confidence * 0.3 + rel * 0.15
    return _clamp(base + min(item_count / 40.0, 0.1), 0.5, 0.95)


def questions_for_target(confidence: float, target: float = TARGET_ACCURACY) -> int:
    if confidence >= target:
        return 0
    gap = target - confidence
    per_point = 3.0 / (1.0 - confidence + 0.1)
    return min(int(math.ceil(gap * per_point * 10)), MAX_QUESTIONS_SUGGESTED)


def score_responses(
    responses: Iterable[ResponseEvent],
    *,
    catalog: Optional[ItemCatalog] = None,
) -> ScoringResult:
    cat = catalog if catalog is not None else default_catalog()
    accs: Dict[Trait, _Acc] = {t: _Acc() for t in TRAITS}
    answered = 0
    skipped = 0

    for resp in responses:
        item = cat.get(resp.item_id)
        option = cat.option(resp.item_id, resp.option_id) if item is not None else None
        if item is None or option is None:
            log.warning("skipping response item=%s option=%s: unknown reference", resp.item_id, resp.option_id)
            skipped += 1
            continue
        answered += 1
        v = normalize_value(item.type, option.value)
        disc = float(item.discrimination)

        prim = accs[item.primary_trait]
        prim.values.append(v)
        prim.weights.append(disc)

        for trait, loading in item.secondary_loadings:
            if not loading:
                continue
            sec = accs[trait]
            sec.values.append(v if loading > 0 else 1.0 - v)
            sec.weights.append(disc * abs(loading))

        for trait, delta in option.trait_deltas:
            accs[trait].delta_values.append(_clamp(0.5 + delta))

    traits = {t: _estimate(accs[t]) for t in TRAITS}
    overall = sum(est.confidence for est in traits.values()) / len(TRAITS)
    rel = reliability(accs)
    acc = estimated_accuracy(overall, rel, answered)
    needed = questions_for_target(overall)
    log.debug(
        "scored answered=%d skipped=%d overall_conf=%.3f reliability=%.3f accuracy=%.3f",
        answered, skipped, overall, rel, acc,
    )
    return ScoringResult(
        traits=traits,
        overall_confidence=overall,
        reliability=rel,
        estimated_accuracy=acc,
        items_answered=answered,
        items_skipped=skipped,
        questions_needed_for_target=needed,
    )


def _progress_message(accuracy: float, remaining: int, needed: int) -> str:
    pct = int(round(accuracy * 100))
    if remaining == 0:
        return f"{pct}% accurate, your profile is ready"
    if accuracy >= 0.85:
        return f"{pct}% accurate, excellent precision. {remaining} more for final touches"
    if accuracy >= 0.75:
        return f"{pct}% accurate, {remaining} more questions for clarity"
    if accuracy >= 0.65:
        return f"{pct}% accurate so far, {needed} more for precision"
    return f"Building your profile, {remaining} questions remaining"


def progress_update(
    responses: List[ResponseEvent],
    total_planned: int,
    *,
    catalog: Optional[ItemCatalog] = None,
) -> Dict[str, object]:
    """Mid-session snapshot for a progress bar."""
    if not responses:
        return {
            "current_confidence": 0.0,
            "estimated_accuracy": 0.0,
            "questions_remaining": max(0, int(total_planned)),
            "trait_progress": {t.value: {"confidence": 0.0, "item_count": 0} for t in TRAITS},
            "message": "Ready to start building your taste profile",
        }
    res = score_responses(responses, catalog=catalog)
    remaining = max(0, int(total_planned) - len(responses))
    return {
        "current_confidence": res.overall_confidence,
        "estimated_accuracy": res.estimated_accuracy,
        "questions_remaining": remaining,
        "trait_progress": {
            t.value: {"confidence": est.confidence, "item_count": est.item_count}
            for t, est in res.traits.items()
        },
        "message": _progress_message(res.estimated_accuracy, remaining, res.questions_needed_for_target),
    }
