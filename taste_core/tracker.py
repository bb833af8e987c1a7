from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .classifier import classify
from .config import DEEP_DIVE_MIN_ITEMS, DEEP_DIVE_WINDOW_HOURS, STALE_DAYS
from .engagement import as_utc, base_weight, is_stale, predict, utcnow
from .refinement import Refinement, profiling_stage, refine_traits
from .repository import PredictionRepository, new_id
from .tiers import SUPERFAN, TIERS, tier_label
from .types import (
    ArchetypeAssignment,
    AuxiliaryTyping,
    CachedPrediction,
    EngagementPrediction,
    EngagementSignal,
    SignalKind,
    Trait,
    VisitOrigin,
    VisitSession,
)

log = logging.getLogger(__name__)


@dataclass
class PredictionLookup:
    prediction: EngagementPrediction
    cached: bool
    calculated_at: datetime

    def to_dict(self) -> Dict[str, object]:
        out = self.prediction.to_dict()
        out["tier_label"] = tier_label(self.prediction.combined)
        out["cached"] = self.cached
        out["calculated_at"] = self.calculated_at.isoformat()
        return out


class SignalTracker:
    """Records engagement events and serves cached superfan predictions.

    Every write for a (subject, target) pair invalidates that pair's cached
    prediction before returning, so the next read recomputes.
    """

    def __init__(
        self,
        repository: PredictionRepository,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        stale_days: int = STALE_DAYS,
    ):
        self.repo = repository
        self._clock = clock or utcnow
        self.stale_days = stale_days

    def now(self) -> datetime:
        return as_utc(self._clock())

    # ---- writes ----
    def record_signal(
        self,
        subject_id: str,
        target_id: str,
        kind: SignalKind,
        content_id: Optional[str] = None,
        metadata: Optional[Mapping[str, object]] = None,
        at: Optional[datetime] = None,
    ) -> EngagementSignal:
        kind = SignalKind(kind)
        signal = EngagementSignal(
            subject_id=subject_id,
            target_id=target_id,
            kind=kind,
            weight=base_weight(kind),
            created_at=as_utc(at) if at is not None else self.now(),
            content_id=content_id,
            metadata=dict(metadata or {}),
        )
        stored = self.repo.append_signal(signal)
        self.repo.invalidate_prediction(subject_id, target_id)
        log.debug("signal subject=%s target=%s kind=%s weight=%.1f", subject_id, target_id, kind.value, stored.weight)
        return stored

    def record_signals(self, payloads: Iterable[Mapping[str, object]]) -> int:
        pairs = set()
        count = 0
        for p in payloads:
            kind = SignalKind(p["kind"])
            subject_id, target_id = str(p["subject_id"]), str(p["target_id"])
            at = p.get("at")
            self.repo.append_signal(
                EngagementSignal(
                    subject_id=subject_id,
                    target_id=target_id,
                    kind=kind,
                    weight=base_weight(kind),
                    created_at=as_utc(at) if isinstance(at, datetime) else self.now(),
                    content_id=p.get("content_id"),  # type: ignore[arg-type]
                    metadata=dict(p.get("metadata") or {}),  # type: ignore[call-overload]
                )
            )
            pairs.add((subject_id, target_id))
            count += 1
        for subject_id, target_id in pairs:
            self.repo.invalidate_prediction(subject_id, target_id)
        return count

    def start_session(
        self,
        subject_id: str,
        origin: VisitOrigin,
        target_id: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> VisitSession:
        origin = VisitOrigin(origin)
        session = self.repo.append_session(
            VisitSession(
                session_id=new_id(),
                subject_id=subject_id,
                origin=origin,
                started_at=as_utc(started_at) if started_at is not None else self.now(),
                target_id=target_id,
            )
        )
        if target_id and origin is VisitOrigin.ORGANIC:
            self.record_signal(
                subject_id, target_id, SignalKind.UNPROMPTED_RETURN,
                metadata={"session_id": session.session_id}, at=session.started_at,
            )
        elif target_id:
            self.repo.invalidate_prediction(subject_id, target_id)
        return session

    def end_session(self, session_id: str, ended_at: Optional[datetime] = None) -> Optional[VisitSession]:
        session = self.repo.get_session(session_id)
        if session is None:
            return None
        end = as_utc(ended_at) if ended_at is not None else self.now()
        duration = max(0, int((end - as_utc(session.started_at)).total_seconds() * 1000))
        updated = replace(session, ended_at=end, duration_ms=duration)
        self.repo.update_session(updated)
        return updated

    def check_catalog_deep_dive(self, subject_id: str, target_id: str, at: Optional[datetime] = None) -> bool:
        """Record a deep-dive signal once enough distinct content was touched in the window."""
        ts = as_utc(at) if at is not None else self.now()
        since = ts - timedelta(hours=DEEP_DIVE_WINDOW_HOURS)
        window = [s for s in self.repo.signals_for(subject_id, target_id, since=since) if as_utc(s.created_at) <= ts]
        if any(SignalKind(s.kind) is SignalKind.CATALOG_DEEP_DIVE for s in window):
            return False
        distinct = {s.content_id for s in window if s.content_id}
        if len(distinct) < DEEP_DIVE_MIN_ITEMS:
            return False
        self.record_signal(
            subject_id, target_id, SignalKind.CATALOG_DEEP_DIVE,
            metadata={"distinct_items": len(distinct)}, at=ts,
        )
        return True

    def set_subject_blend(self, subject_id: str, weights: Mapping[str, float]) -> int:
        """Store a subject's archetype blend and invalidate every cached pair for that subject."""
        self.repo.set_subject_weights(subject_id, dict(weights))
        n = self.repo.invalidate_subject(subject_id)
        log.debug("subject blend updated subject=%s invalidated=%d", subject_id, n)
        return n

    def set_target_blend(self, target_id: str, weights: Mapping[str, float]) -> int:
        self.repo.set_target_weights(target_id, dict(weights))
        return self.repo.invalidate_target(target_id)

    def recalibrate_subject(
        self,
        subject_id: str,
        prior: Optional[Mapping[Trait, float]] = None,
        prior_variances: Optional[Mapping[Trait, float]] = None,
        auxiliary: Optional[AuxiliaryTyping] = None,
    ) -> Tuple[Refinement, ArchetypeAssignment]:
        """Re-derive a subject's traits and archetype blend from their decayed signal history."""
        target_blends: Dict[str, Dict[str, float]] = {}

        def blend_for(target_id: str) -> Dict[str, float]:
            if target_id not in target_blends:
                target_blends[target_id] = self.repo.target_weights(target_id)
            return target_blends[target_id]

        refinement = refine_traits(
            self.repo.signals_for(subject_id), blend_for,
            now=self.now(), prior=prior, prior_variances=prior_variances,
        )
        assignment = classify(refinement.scores(), auxiliary)
        self.set_subject_blend(subject_id, assignment.blend_weights)
        log.info("recalibrated subject=%s signals=%d primary=%s",
                 subject_id, refinement.signals_used, assignment.primary)
        return refinement, assignment

    # ---- reads ----
    def compute(self, subject_id: str, target_id: str) -> EngagementPrediction:
        return predict(
            self.repo.subject_weights(subject_id),
            self.repo.target_weights(target_id),
            self.repo.signals_for(subject_id, target_id),
            self.repo.sessions_for(subject_id, target_id),
            now=self.now(),
        )

    def refresh(self, subject_id: str, target_id: str) -> CachedPrediction:
        token = self.repo.cache_token(subject_id, target_id)
        entry = CachedPrediction(
            subject_id=subject_id,
            target_id=target_id,
            prediction=self.compute(subject_id, target_id),
            calculated_at=self.now(),
        )
        if not self.repo.put_prediction(entry, token):
            log.info("prediction subject=%s target=%s changed during compute; stored as invalidated",
                     subject_id, target_id)
        return entry

    def get_prediction(self, subject_id: str, target_id: str, force_refresh: bool = False) -> PredictionLookup:
        if not force_refresh:
            entry = self.repo.get_prediction(subject_id, target_id)
            if entry is not None and not entry.invalidated and not is_stale(entry.calculated_at, self.now(), self.stale_days):
                return PredictionLookup(entry.prediction, True, entry.calculated_at)
        entry = self.refresh(subject_id, target_id)
        return PredictionLookup(entry.prediction, False, entry.calculated_at)

    def dashboard(self, target_id: str) -> Dict[str, object]:
        entries = self.repo.predictions_for_target(target_id)
        distribution = {t: 0 for t in TIERS}
        for e in entries:
            distribution[e.prediction.tier] = distribution.get(e.prediction.tier, 0) + 1
        average = round(sum(e.prediction.combined for e in entries) / len(entries)) if entries else 0

        kinds = Counter(SignalKind(s.kind).value for s in self.repo.signals_for_target(target_id))
        total_signals = sum(kinds.values())
        top = [
            {"kind": k, "count": n, "percentage": int(round(n / total_signals * 100))}
            for k, n in kinds.most_common(5)
        ]
        return {
            "target_id": target_id,
            "total_subjects": len(entries),
            "superfan_count": distribution.get(SUPERFAN, 0),
            "average_score": average,
            "distribution": distribution,
            "top_signals": top,
        }

    def emerging_superfans(
        self, target_id: str, min_score: int = 50, max_score: int = 74, limit: int = 100
    ) -> List[Dict[str, object]]:
        hits = [
            e for e in self.repo.predictions_for_target(target_id)
            if min_score <= e.prediction.combined <= max_score
        ]
        hits.sort(key=lambda e: (-e.prediction.combined, e.subject_id))
        return [
            {"subject_id": e.subject_id, "score": e.prediction.combined, "tier": e.prediction.tier,
             "label": tier_label(e.prediction.combined), "signal_count": e.prediction.signal_count}
            for e in hits[:limit]
        ]

    def profiling_progress(self, subject_id: str, has_profile: bool = False) -> Optional[Dict[str, object]]:
        """Profiling stage reached by the subject's signal count; None for an unknown subject."""
        count = len(self.repo.signals_for(subject_id))
        if count == 0 and not has_profile:
            return None
        return profiling_stage(count)
