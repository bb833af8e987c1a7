# taste_core/selection.py
from __future__ import annotations

import logging
import math
import random
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .config import SELECT_JITTER, SELECTION_SEED, selection_defaults
from .irt import difficulty_match
from .item_bank import ItemCatalog, default_catalog
from .types import PriorState, SelectionConfig, SelectionResult, Trait, TraitItem, TRAITS

log = logging.getLogger(__name__)

_MIN_SAMPLE_WEIGHT = 1e-6


def _make_rng(rng: Optional[random.Random], seed: Optional[int] = None) -> random.Random:
    if rng is not None:
        return rng
    if seed is None:
        seed = SELECTION_SEED
    if seed is None:
        seed = random.randint(0, 2**31 - 1)
    return random.Random(int(seed))


def default_config() -> SelectionConfig:
    return SelectionConfig(**selection_defaults())


class QuestionSelector:
    """Trait-balanced item picker with a seeded random source.

    Half of every trait quota goes to the top-ranked candidates, the rest is
    drawn by score-weighted sampling so consecutive sessions do not repeat.
    """

    def __init__(self, catalog: ItemCatalog, rng: random.Random):
        self.catalog = catalog
        self.rng = rng
        self._order = {t: idx for idx, t in enumerate(TRAITS)}

    # ---- priorities / quotas ----
    @staticmethod
    def trait_priority(trait: Trait, prior: Optional[PriorState], cfg: SelectionConfig) -> float:
        priority = 1.0
        if prior is None:
            return priority
        var = prior.variances.get(trait)
        if var is not None:
            priority += float(var) * cfg.variance_weight * 2.0
        est = prior.estimates.get(trait)
        if est is not None:
            priority += (1.0 - abs(float(est) - 0.5) * 2.0) * cfg.information_gain_weight
        return priority

    def allocate(
        self,
        priorities: Dict[Trait, float],
        coverage: Dict[Trait, int],
        available: Dict[Trait, int],
        remaining: int,
        cfg: SelectionConfig,
    ) -> Dict[Trait, int]:
        quotas = {t: 0 for t in TRAITS}
        if remaining <= 0:
            return quotas
        total_p = sum(priorities.values()) or 1.0
        room: Dict[Trait, int] = {}
        for t in TRAITS:
            lo = max(0, cfg.min_per_trait - coverage[t])
            hi = max(0, cfg.max_per_trait - coverage[t])
            hi = min(hi, available[t])
            room[t] = hi
            share = int(math.floor(remaining * priorities[t] / total_p))
            quotas[t] = min(max(share, lo), hi)

        left = remaining - sum(quotas.values())
        ranked = sorted(TRAITS, key=lambda t: (-priorities[t], self._order[t]))
        while left > 0:
            progressed = False
            for t in ranked:
                if left <= 0:
                    break
                if quotas[t] < room[t]:
                    quotas[t] += 1
                    left -= 1
                    progressed = True
            if not progressed:
                break
        return quotas

    # ---- ranking ----
    def item_score(self, item: TraitItem, estimate: Optional[float], cfg: SelectionConfig) -> float:
        score = float(item.discrimination) * 0.4
        if estimate is not None:
            score += difficulty_match(item.difficulty, estimate) * cfg.information_gain_weight
        else:
            score += difficulty_match(item.difficulty, None) * 0.2
        score += 0.1 * len(item.secondary_loadings)
        score += self.rng.random() * SELECT_JITTER
        return score

    def _weighted_sample(self, scored: List[Tuple[float, TraitItem]], k: int) -> List[TraitItem]:
        pool = list(scored)
        out: List[TraitItem] = []
        while pool and len(out) < k:
            weights = [max(s, _MIN_SAMPLE_WEIGHT) for s, _ in pool]
            r = self.rng.random() * sum(weights)
            acc = 0.0
            pick = len(pool) - 1
            for idx, w in enumerate(weights):
                acc += w
                if r < acc:
                    pick = idx
                    break
            out.append(pool.pop(pick)[1])
        return out

    def pick_for_trait(
        self,
        trait: Trait,
        quota: int,
        exclude: Set[str],
        prior: Optional[PriorState],
        cfg: SelectionConfig,
    ) -> List[TraitItem]:
        if quota <= 0:
            return []
        estimate = prior.estimates.get(trait) if prior is not None else None
        candidates = [it for it in self.catalog.by_trait(trait) if it.id not in exclude]
        scored = [(self.item_score(it, estimate, cfg), it) for it in candidates]
        scored.sort(key=lambda pair: (-pair[0], pair[1].id))
        take = min(quota, len(scored))
        n_top = int(math.ceil(take / 2.0))
        picked = [it for _, it in scored[:n_top]]
        picked.extend(self._weighted_sample(scored[n_top:], take - n_top))
        return picked

    # ---- main entry ----
    def select(self, prior: Optional[PriorState], cfg: SelectionConfig, subject_id: Optional[str] = None) -> SelectionResult:
        selected: List[TraitItem] = []
        selected_ids: Set[str] = set()
        coverage: Dict[Trait, int] = {t: 0 for t in TRAITS}

        def _add(it: TraitItem) -> None:
            selected.append(it)
            selected_ids.add(it.id)
            coverage[it.primary_trait] += 1

        returning = prior is not None and prior.session_count > 0
        if returning and cfg.include_anchors_for_returning:
            for it in self.catalog.anchors():
                if it.id not in selected_ids:
                    _add(it)

        answered: Set[str] = set(prior.answered_item_ids) if prior is not None else set()
        exclude = selected_ids | answered
        available = {
            t: sum(1 for it in self.catalog.by_trait(t) if it.id not in exclude) for t in TRAITS
        }
        priorities = {t: self.trait_priority(t, prior, cfg) for t in TRAITS}
        remaining = max(0, cfg.target_total - len(selected))
        quotas = self.allocate(priorities, coverage, available, remaining, cfg)

        for t in TRAITS:
            for it in self.pick_for_trait(t, quotas[t], selected_ids | answered, prior, cfg):
                _add(it)

        for t in TRAITS:
            while coverage[t] < cfg.min_per_trait:
                pool = [it for it in self.catalog.by_trait(t) if it.id not in selected_ids]
                if not pool:
                    log.debug("trait %s short of minimum coverage (%d < %d)", t.value, coverage[t], cfg.min_per_trait)
                    break
                _add(self.rng.choice(pool))

        self.rng.shuffle(selected)
        confidence = estimated_confidence(coverage, len(selected))
        log.debug(
            "selected subject=%s returning=%s items=%d coverage=%s est_conf=%.3f",
            subject_id, returning, len(selected), {t.value: n for t, n in coverage.items()}, confidence,
        )
        return SelectionResult(
            items=selected,
            trait_coverage=coverage,
            estimated_confidence=confidence,
            estimated_duration=len(selected) * cfg.seconds_per_item,
        )


def estimated_confidence(coverage: Dict[Trait, int], total: int) -> float:
    counts = [coverage.get(t, 0) for t in TRAITS]
    mean = sum(counts) / len(counts)
    var = sum((c - mean) ** 2 for c in counts) / len(counts)
    conf = min(total / 30.0, 0.9) - min(var / 4.0, 0.2)
    lowest = min(counts)
    if lowest >= 2:
        conf += 0.05
    if lowest >= 3:
        conf += 0.05
    return max(0.3, min(0.95, conf))


def select_items(
    subject_id: Optional[str] = None,
    prior: Optional[PriorState] = None,
    config: Optional[SelectionConfig] = None,
    *,
    catalog: Optional[ItemCatalog] = None,
    rng: Optional[random.Random] = None,
    seed: Optional[int] = None,
) -> SelectionResult:
    cfg = (config or default_config()).normalized()
    selector = QuestionSelector(catalog if catalog is not None else default_catalog(), _make_rng(rng, seed))
    return selector.select(prior, cfg, subject_id)


def next_best_item(
    answered_ids: Iterable[str],
    estimates: Optional[Dict[Trait, float]] = None,
    variances: Optional[Dict[Trait, float]] = None,
    *,
    catalog: Optional[ItemCatalog] = None,
    rng: Optional[random.Random] = None,
) -> Optional[TraitItem]:
    """Single most informative unanswered item for real-time adaptive flows."""
    cat = catalog if catalog is not None else default_catalog()
    gen = _make_rng(rng)
    answered = set(answered_ids)
    estimates = estimates or {}
    variances = variances or {}

    best_trait: Optional[Trait] = None
    best_uncertainty = -1.0
    for t in TRAITS:
        if not any(it.id not in answered for it in cat.by_trait(t)):
            continue
        est = float(estimates.get(t, 0.5))
        uncertainty = float(variances.get(t, 0.25)) + (1.0 - abs(est - 0.5) * 2.0) * 0.5
        if uncertainty > best_uncertainty:
            best_trait, best_uncertainty = t, uncertainty

    if best_trait is None:
        return None

    est = float(estimates.get(best_trait, 0.5))
    best_item: Optional[TraitItem] = None
    best_score = -1.0
    for it in cat.by_trait(best_trait):
        if it.id in answered:
            continue
        score = float(it.discrimination) * difficulty_match(it.difficulty, est) * (1.0 + gen.random() * 0.1)
        if score > best_score:
            best_item, best_score = it, score
    return best_item
