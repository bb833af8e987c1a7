from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple, Literal


class Trait(str, Enum):
    OPENNESS = "openness"
    CONSCIENTIOUSNESS = "conscientiousness"
    EXTRAVERSION = "extraversion"
    AGREEABLENESS = "agreeableness"
    NEUROTICISM = "neuroticism"
    NOVELTY_SEEKING = "novelty_seeking"
    AESTHETIC_SENSITIVITY = "aesthetic_sensitivity"
    RISK_TOLERANCE = "risk_tolerance"


TRAITS: Tuple[Trait, ...] = tuple(Trait)
TRAIT_INDEX: Dict[Trait, int] = {t: i for i, t in enumerate(TRAITS)}
# scored with a heavier hand by the classifier
AESTHETIC_TRAITS: Tuple[Trait, ...] = (Trait.AESTHETIC_SENSITIVITY, Trait.NOVELTY_SEEKING)

ItemType = Literal["binary", "multiple"]
ItemCategory = Literal["personality", "aesthetic", "identity"]


class SignalKind(str, Enum):
    UNPROMPTED_RETURN = "unprompted_return"
    CONCERT_INTEREST = "concert_interest"
    MERCH_CLICK = "merch_click"
    SAVE = "save"
    SHARE = "share"
    PLAYLIST_ADD = "playlist_add"
    CATALOG_DEEP_DIVE = "catalog_deep_dive"
    PROFILE_VISIT = "profile_visit"
    REPLAY = "replay"


class VisitOrigin(str, Enum):
    ORGANIC = "organic"
    ALGORITHMIC = "algorithmic"
    SOCIAL = "social"
    EXTERNAL = "external"


@dataclass(frozen=True)
class AnswerOption:
    id: str; text: str; value: float
    trait_deltas: Tuple[Tuple[Trait, float], ...] = ()


@dataclass(frozen=True)
class TraitItem:
    id: str; prompt: str; type: ItemType; primary_trait: Trait
    options: Tuple[AnswerOption, ...] = ()
    secondary_loadings: Tuple[Tuple[Trait, float], ...] = ()
    difficulty: float = 0.0
    discrimination: float = 1.0
    is_anchor: bool = False
    category: ItemCategory = "personality"


@dataclass(frozen=True)
class ResponseEvent:
    item_id: str; option_id: str; latency_ms: Optional[int] = None


@dataclass
class TraitEstimate:
    score: float = 0.5
    confidence: float = 0.0
    dispersion: float = 0.25
    item_count: int = 0
    raw_sum: float = 0.0
    responses: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class ScoringResult:
    traits: Dict[Trait, TraitEstimate]
    overall_confidence: float
    reliability: float
    estimated_accuracy: float
    items_answered: int
    items_skipped: int = 0
    questions_needed_for_target: int = 0

    def scores(self) -> Dict[Trait, float]:
        return {t: est.score for t, est in self.traits.items()}

    def to_dict(self) -> Dict[str, object]:
        return {
            "traits": {t.value: est.to_dict() for t, est in self.traits.items()},
            "overall_confidence": self.overall_confidence,
            "reliability": self.reliability,
            "estimated_accuracy": self.estimated_accuracy,
            "items_answered": self.items_answered,
            "items_skipped": self.items_skipped,
            "questions_needed_for_target": self.questions_needed_for_target,
        }


@dataclass
class PriorState:
    """What is already known about a subject before a session starts."""
    session_count: int = 0
    estimates: Dict[Trait, float] = field(default_factory=dict)
    variances: Dict[Trait, float] = field(default_factory=dict)
    answered_item_ids: List[str] = field(default_factory=list)


@dataclass
class SelectionConfig:
    min_per_trait: int = 2
    max_per_trait: int = 4
    target_total: int = 24
    variance_weight: float = 0.4
    information_gain_weight: float = 0.3
    include_anchors_for_returning: bool = True
    seconds_per_item: int = 8

    def normalized(self, trait_count: int = len(TRAITS)) -> "SelectionConfig":
        lo = max(0, int(self.min_per_trait))
        hi = max(0, int(self.max_per_trait))
        if lo > hi:
            lo = hi
        target = max(lo * trait_count, min(hi * trait_count, int(self.target_total)))
        return SelectionConfig(
            min_per_trait=lo,
            max_per_trait=hi,
            target_total=target,
            variance_weight=min(1.0, max(0.0, float(self.variance_weight))),
            information_gain_weight=min(1.0, max(0.0, float(self.information_gain_weight))),
            include_anchors_for_returning=bool(self.include_anchors_for_returning),
            seconds_per_item=max(0, int(self.seconds_per_item)),
        )


@dataclass
class SelectionResult:
    items: List[TraitItem]
    trait_coverage: Dict[Trait, int]
    estimated_confidence: float
    estimated_duration: int

    def item_ids(self) -> List[str]:
        return [it.id for it in self.items]


@dataclass(frozen=True)
class ArchetypeDefinition:
    id: str; name: str
    centroid: Tuple[float, ...]
    ranges: Tuple[Tuple[float, float], ...]
    auxiliary_affinity: Tuple[Tuple[str, float], ...] = ()
    description: str = ""


@dataclass(frozen=True)
class AuxiliaryTyping:
    label: str
    confidence: float = 1.0
    system: str = "enneagram"


@dataclass
class ArchetypeAssignment:
    primary: str
    primary_confidence: float
    blend_weights: Dict[str, float]
    fit_scores: Dict[str, float]
    concentration_index: float
    explorer_index: float
    early_adopter_index: float
    secondary: Optional[str] = None
    secondary_confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class EngagementSignal:
    subject_id: str; target_id: str; kind: SignalKind; weight: float
    created_at: datetime
    content_id: Optional[str] = None
    metadata: Dict[str, object] = field(default_factory=dict)
    signal_id: Optional[str] = None


@dataclass
class VisitSession:
    session_id: str; subject_id: str; origin: VisitOrigin
    started_at: datetime
    target_id: Optional[str] = None
    ended_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


@dataclass
class EngagementPrediction:
    taste_coherence: int
    signal_score: int
    return_score: int
    combined: int
    tier: str
    signal_count: int
    last_signal_at: Optional[datetime] = None
    sufficient_data: bool = False
    breakdown: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        out = asdict(self)
        out["last_signal_at"] = self.last_signal_at.isoformat() if self.last_signal_at else None
        return out


@dataclass
class CachedPrediction:
    subject_id: str; target_id: str
    prediction: EngagementPrediction
    calculated_at: datetime
    invalidated: bool = False
