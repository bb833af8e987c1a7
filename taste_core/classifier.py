from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .archetypes import ARCHETYPES
from .config import (
    AESTHETIC_MULTIPLIER,
    AUX_BONUS,
    NEUTRAL_TRAIT_VALUE,
    SECONDARY_MIN_WEIGHT,
    SOFTMAX_TEMPERATURE,
)
from .types import (
    AESTHETIC_TRAITS,
    ArchetypeAssignment,
    ArchetypeDefinition,
    AuxiliaryTyping,
    Trait,
    TRAITS,
)

log = logging.getLogger(__name__)

TraitInput = Union[Mapping[Union[Trait, str], float], Sequence[float]]

EXPLORER_WEIGHTS: Dict[Trait, float] = {
    Trait.OPENNESS: 0.3,
    Trait.NOVELTY_SEEKING: 0.35,
    Trait.RISK_TOLERANCE: 0.2,
    Trait.EXTRAVERSION: 0.15,
}
EARLY_ADOPTER_WEIGHTS: Dict[Trait, float] = {
    Trait.NOVELTY_SEEKING: 0.4,
    Trait.RISK_TOLERANCE: 0.3,
    Trait.OPENNESS: 0.2,
    Trait.NEUROTICISM: -0.1,
}

_TRAIT_WEIGHTS: Tuple[float, ...] = tuple(
    AESTHETIC_MULTIPLIER if t in AESTHETIC_TRAITS else 1.0 for t in TRAITS
)


def _clean(x: object) -> float:
    try:
        v = float(x)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return NEUTRAL_TRAIT_VALUE
    if math.isnan(v):
        return NEUTRAL_TRAIT_VALUE
    return max(0.0, min(1.0, v))


def sanitize(traits: Optional[TraitInput]) -> Tuple[float, ...]:
    """Dense, clamped trait vector; anything missing or unreadable is neutral."""
    if traits is None:
        return tuple(NEUTRAL_TRAIT_VALUE for _ in TRAITS)
    if isinstance(traits, Mapping):
        by_name = {(k.value if isinstance(k, Trait) else str(k)): v for k, v in traits.items()}
        return tuple(_clean(by_name.get(t.value, NEUTRAL_TRAIT_VALUE)) for t in TRAITS)
    vals = list(traits)
    return tuple(_clean(vals[i]) if i < len(vals) else NEUTRAL_TRAIT_VALUE for i in range(len(TRAITS)))


def archetype_fit(vector: Sequence[float], arch: ArchetypeDefinition) -> float:
    total = 0.0
    weight_sum = 0.0
    for i, x in enumerate(vector):
        lo, hi = arch.ranges[i]
        gap = max(0.0, lo - x, x - hi)
        dist = 0.5 * abs(x - arch.centroid[i]) + 0.5 * gap
        w = _TRAIT_WEIGHTS[i]
        total += w * dist
        weight_sum += w
    return 1.0 - total / weight_sum


def _auxiliary_bonus(arch: ArchetypeDefinition, aux: Optional[AuxiliaryTyping]) -> float:
    if aux is None:
        return 0.0
    affinity = dict(arch.auxiliary_affinity).get(str(aux.label), 0.0)
    return AUX_BONUS * affinity * max(0.0, min(1.0, float(aux.confidence)))


def softmax(scores: Sequence[float], temperature: float = SOFTMAX_TEMPERATURE) -> List[float]:
    t = temperature if temperature > 0 else SOFTMAX_TEMPERATURE
    top = max(scores)
    exps = [math.exp((s - top) / t) for s in scores]
    total = sum(exps)
    return [e / total for e in exps]


def concentration_index(weights: Sequence[float]) -> float:
    k = len(weights)
    if k <= 1:
        return 100.0
    entropy = -sum(p * math.log(p) for p in weights if p > 0)
    return max(0.0, min(100.0, 100.0 * (1.0 - entropy / math.log(k))))


def composite_index(vector: Sequence[float], weights: Dict[Trait, float]) -> float:
    """Weighted trait combination rescaled so its attainable range maps to [0, 100]."""
    raw = sum(w * vector[TRAITS.index(t)] for t, w in weights.items())
    lo = sum(min(w, 0.0) for w in weights.values())
    hi = sum(max(w, 0.0) for w in weights.values())
    if hi - lo <= 0:
        return 50.0
    return max(0.0, min(100.0, 100.0 * (raw - lo) / (hi - lo)))


def classify(
    traits: Optional[TraitInput],
    auxiliary: Optional[AuxiliaryTyping] = None,
    *,
    archetypes: Optional[Sequence[ArchetypeDefinition]] = None,
    temperature: Optional[float] = None,
) -> ArchetypeAssignment:
    catalog = tuple(archetypes) if archetypes else ARCHETYPES
    vector = sanitize(traits)
    fits = [archetype_fit(vector, a) + _auxiliary_bonus(a, auxiliary) for a in catalog]
    weights = softmax(fits, SOFTMAX_TEMPERATURE if temperature is None else temperature)

    ranked = sorted(range(len(catalog)), key=lambda i: (-weights[i], i))
    p = ranked[0]
    secondary = None
    secondary_conf = None
    if len(ranked) > 1 and weights[ranked[1]] >= SECONDARY_MIN_WEIGHT:
        secondary = catalog[ranked[1]].id
        secondary_conf = weights[ranked[1]]

    out = ArchetypeAssignment(
        primary=catalog[p].id,
        primary_confidence=weights[p],
        blend_weights={a.id: w for a, w in zip(catalog, weights)},
        fit_scores={a.id: f for a, f in zip(catalog, fits)},
        concentration_index=concentration_index(weights),
        explorer_index=composite_index(vector, EXPLORER_WEIGHTS),
        early_adopter_index=composite_index(vector, EARLY_ADOPTER_WEIGHTS),
        secondary=secondary,
        secondary_confidence=secondary_conf,
    )
    log.debug(
        "classified primary=%s conf=%.3f secondary=%s concentration=%.1f aux=%s",
        out.primary, out.primary_confidence, out.secondary, out.concentration_index,
        auxiliary.label if auxiliary else None,
    )
    return out
