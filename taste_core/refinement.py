"""Behavioural recalibration of a subject's trait estimates.

A quiz gives a snapshot; engagement keeps arriving afterwards.  Every signal
that carries an archetype blend (in its own ``archetype_weights`` metadata, or
the blend of the target it was recorded against) implies a trait vector: the
blend-weighted mean of the archetype centroids.  Those vectors are folded
into the prior estimates one signal at a time with a conjugate normal update,
weighted by the signal's time-decayed contribution, so old or weak signals
move the estimate less than fresh strong ones.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .archetypes import ARCHETYPES
from .config import PRIOR_MEAN, PRIOR_VARIANCE, PROFILING_STAGES, SIGNAL_EVIDENCE_WEIGHT
from .engagement import SIGNAL_WEIGHTS, as_utc, signal_contribution
from .irt import BayesianState, confidence_interval, update_bayesian
from .types import ArchetypeDefinition, EngagementSignal, Trait, TRAITS

log = logging.getLogger(__name__)

COMPLETE_STAGE = "complete"

BlendLookup = Callable[[str], Mapping[str, float]]


@dataclass
class Refinement:
    states: Dict[Trait, BayesianState]
    signals_used: int = 0
    signals_skipped: int = 0
    intervals: Dict[Trait, tuple] = field(default_factory=dict)

    def scores(self) -> Dict[Trait, float]:
        return {t: st.mean for t, st in self.states.items()}

    def variances(self) -> Dict[Trait, float]:
        return {t: st.variance for t, st in self.states.items()}

    def to_dict(self) -> Dict[str, object]:
        return {
            "traits": {
                t.value: {
                    "score": st.mean,
                    "variance": st.variance,
                    "observations": st.observations,
                    "interval": list(self.intervals.get(t, confidence_interval(st))),
                }
                for t, st in self.states.items()
            },
            "signals_used": self.signals_used,
            "signals_skipped": self.signals_skipped,
        }


def implied_traits(
    blend: Optional[Mapping[str, object]],
    archetypes: Sequence[ArchetypeDefinition] = ARCHETYPES,
) -> Optional[Dict[Trait, float]]:
    """Blend-weighted centroid, or None when the blend names no known archetype."""
    if not blend:
        return None
    by_id = {a.id: a for a in archetypes}
    pairs = []
    for arch_id, raw in blend.items():
        arch = by_id.get(str(arch_id))
        try:
            w = float(raw)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
        if arch is None or w <= 0:
            continue
        pairs.append((arch, w))
    total = sum(w for _, w in pairs)
    if total <= 0:
        return None
    return {
        t: sum(arch.centroid[i] * w for arch, w in pairs) / total
        for i, t in enumerate(TRAITS)
    }


def evidence_weight(signal: EngagementSignal, now: datetime) -> float:
    return signal_contribution(signal, now) / max(SIGNAL_WEIGHTS.values()) * SIGNAL_EVIDENCE_WEIGHT


def refine_traits(
    signals: Sequence[EngagementSignal],
    blend_for_target: BlendLookup,
    *,
    now: datetime,
    prior: Optional[Mapping[Trait, float]] = None,
    prior_variances: Optional[Mapping[Trait, float]] = None,
    archetypes: Sequence[ArchetypeDefinition] = ARCHETYPES,
) -> Refinement:
    prior = prior or {}
    prior_variances = prior_variances or {}
    states = {
        t: BayesianState(
            mean=float(prior.get(t, PRIOR_MEAN)),
            variance=float(prior_variances.get(t, PRIOR_VARIANCE)),
        )
        for t in TRAITS
    }
    now = as_utc(now)
    used = skipped = 0
    for s in sorted(signals, key=lambda s: as_utc(s.created_at)):
        blend = (s.metadata or {}).get("archetype_weights") or blend_for_target(s.target_id)
        vector = implied_traits(blend if isinstance(blend, Mapping) else None, archetypes)
        if vector is None:
            skipped += 1
            continue
        weight = evidence_weight(s, now)
        for t in TRAITS:
            states[t] = update_bayesian(states[t], vector[t], weight)
        used += 1
    log.debug("refined traits from %d signals (%d without a blend)", used, skipped)
    return Refinement(
        states=states,
        signals_used=used,
        signals_skipped=skipped,
        intervals={t: confidence_interval(st) for t, st in states.items()},
    )


def profiling_stage(signal_count: int) -> Dict[str, object]:
    names = [name for name, _ in PROFILING_STAGES]
    current = names[0]
    completed: List[str] = []
    for idx, (name, threshold) in enumerate(PROFILING_STAGES):
        if signal_count < threshold:
            break
        completed.append(name)
        current = names[idx + 1] if idx + 1 < len(names) else COMPLETE_STAGE
    return {"current_stage": current, "stages_completed": completed, "signal_count": signal_count}
