from __future__ import annotations
from typing import Dict, Optional, Tuple

from .types import ArchetypeDefinition, Trait, TRAITS

# Enneagram types 1-9 are the auxiliary typing scheme the affinities refer to.
AUXILIARY_LABELS: Tuple[str, ...] = tuple(str(n) for n in range(1, 10))


def _define(
    id: str,
    name: str,
    centroid: Dict[Trait, float],
    affinity: Dict[str, float],
    spread: float = 0.2,
    description: str = "",
) -> ArchetypeDefinition:
    c = tuple(float(centroid.get(t, 0.5)) for t in TRAITS)
    ranges = tuple((max(0.0, v - spread), min(1.0, v + spread)) for v in c)
    return ArchetypeDefinition(
        id=id,
        name=name,
        centroid=c,
        ranges=ranges,
        auxiliary_affinity=tuple(sorted(affinity.items())),
        description=description,
    )


O, C, E, A, N = (Trait.OPENNESS, Trait.CONSCIENTIOUSNESS, Trait.EXTRAVERSION,
                 Trait.AGREEABLENESS, Trait.NEUROTICISM)
NS, AS, R = Trait.NOVELTY_SEEKING, Trait.AESTHETIC_SENSITIVITY, Trait.RISK_TOLERANCE

ARCHETYPES: Tuple[ArchetypeDefinition, ...] = (
    _define("S-0", "KETH", {O: 0.8, C: 0.6, E: 0.35, A: 0.45, N: 0.45, NS: 0.6, AS: 0.9, R: 0.45},
            {"4": 1.0, "1": 0.5}, description="Sovereign curator with an exacting eye"),
    _define("T-1", "STRATA", {O: 0.75, C: 0.8, E: 0.3, A: 0.4, N: 0.35, NS: 0.5, AS: 0.6, R: 0.4},
            {"5": 1.0, "1": 0.6}, description="Hears the structure under the surface"),
    _define("V-2", "OMEN", {O: 0.85, C: 0.4, E: 0.5, A: 0.5, N: 0.5, NS: 0.9, AS: 0.7, R: 0.7},
            {"7": 0.8, "4": 0.6}, description="Finds things before they arrive"),
    _define("L-3", "SILT", {O: 0.6, C: 0.7, E: 0.25, A: 0.6, N: 0.4, NS: 0.3, AS: 0.65, R: 0.25},
            {"9": 0.8, "6": 0.6}, description="Slow, deep accumulation of favourites"),
    _define("C-4", "CULL", {O: 0.6, C: 0.75, E: 0.45, A: 0.25, N: 0.45, NS: 0.5, AS: 0.8, R: 0.5},
            {"1": 1.0, "8": 0.5}, description="The editor who keeps only the best"),
    _define("N-5", "LIMN", {t: 0.5 for t in TRAITS},
            {"9": 1.0, "2": 0.4}, spread=0.15, description="Balanced across every dimension"),
    _define("H-6", "TOLL", {O: 0.55, C: 0.45, E: 0.85, A: 0.75, N: 0.4, NS: 0.55, AS: 0.5, R: 0.5},
            {"2": 0.8, "7": 0.6}, description="Rings the bell so everyone hears it"),
    _define("P-7", "VAULT", {O: 0.45, C: 0.85, E: 0.35, A: 0.5, N: 0.5, NS: 0.25, AS: 0.6, R: 0.2},
            {"6": 0.8, "1": 0.5}, description="Completist and keeper of the archive"),
    _define("D-8", "WICK", {O: 0.65, C: 0.3, E: 0.6, A: 0.55, N: 0.8, NS: 0.6, AS: 0.75, R: 0.55},
            {"4": 0.8, "2": 0.5}, description="Burns bright on feeling"),
    _define("F-9", "ANVIL", {O: 0.6, C: 0.65, E: 0.55, A: 0.35, N: 0.35, NS: 0.55, AS: 0.55, R: 0.8},
            {"8": 1.0, "3": 0.6}, description="Shapes taste through force and making"),
    _define("R-10", "SCHISM", {O: 0.8, C: 0.35, E: 0.5, A: 0.2, N: 0.55, NS: 0.8, AS: 0.6, R: 0.85},
            {"8": 0.6, "7": 0.6}, description="Splits from the consensus on purpose"),
    _define("Ø", "VOID", {O: 0.3, C: 0.3, E: 0.2, A: 0.35, N: 0.55, NS: 0.2, AS: 0.3, R: 0.3},
            {"5": 0.6, "9": 0.5}, description="Absence of a strong pull"),
)

ARCHETYPE_IDS: Tuple[str, ...] = tuple(a.id for a in ARCHETYPES)
BALANCED_ID = "N-5"


def get_archetype(archetype_id: str, archetypes: Optional[Tuple[ArchetypeDefinition, ...]] = None) -> Optional[ArchetypeDefinition]:
    for a in archetypes or ARCHETYPES:
        if a.id == archetype_id:
            return a
    return None
