"""Storage seam between the tracker and whatever persists its data.

Signal and session logs are append-only and keep insertion order per
subject.  The prediction cache is a keyed upsert table with explicit
invalidation.  Every invalidation also bumps a generation counter (per pair,
per subject, per target).  A recompute captures the counters with
``cache_token`` before reading and hands them back to ``put_prediction``,
which stores the result already invalidated if anything moved meanwhile.

``InMemoryRepository`` is the reference implementation used by tests and by
the batch job; ``api.storage.JsonFileRepository`` keeps the
same contract on disk.
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

from .types import CachedPrediction, EngagementSignal, VisitSession

Key = Tuple[str, str]
CacheToken = Tuple[int, int, int]


class PredictionRepository(Protocol):
    def append_signal(self, signal: EngagementSignal) -> EngagementSignal: ...
    def signals_for(self, subject_id: str, target_id: Optional[str] = None,
                    since: Optional[datetime] = None) -> List[EngagementSignal]: ...
    def signals_for_target(self, target_id: str) -> List[EngagementSignal]: ...
    def append_session(self, session: VisitSession) -> VisitSession: ...
    def get_session(self, session_id: str) -> Optional[VisitSession]: ...
    def update_session(self, session: VisitSession) -> None: ...
    def sessions_for(self, subject_id: str, target_id: Optional[str] = None) -> List[VisitSession]: ...
    def get_prediction(self, subject_id: str, target_id: str) -> Optional[CachedPrediction]: ...
    def cache_token(self, subject_id: str, target_id: str) -> CacheToken: ...
    def put_prediction(self, entry: CachedPrediction, token: Optional[CacheToken] = None) -> bool: ...
    def invalidate_prediction(self, subject_id: str, target_id: str) -> bool: ...
    def invalidate_subject(self, subject_id: str) -> int: ...
    def invalidate_target(self, target_id: str) -> int: ...
    def predictions_for_target(self, target_id: str) -> List[CachedPrediction]: ...
    def stale_predictions(self, cutoff: datetime) -> List[CachedPrediction]: ...
    def subject_weights(self, subject_id: str) -> Dict[str, float]: ...
    def set_subject_weights(self, subject_id: str, weights: Dict[str, float]) -> None: ...
    def target_weights(self, target_id: str) -> Dict[str, float]: ...
    def set_target_weights(self, target_id: str, weights: Dict[str, float]) -> None: ...


def new_id() -> str:
    return str(uuid.uuid4())


class InMemoryRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._signals: Dict[str, List[EngagementSignal]] = {}
        self._sessions: Dict[str, List[VisitSession]] = {}
        self._session_index: Dict[str, VisitSession] = {}
        self._predictions: Dict[Key, CachedPrediction] = {}
        self._pair_gen: Dict[Key, int] = {}
        self._subject_gen: Dict[str, int] = {}
        self._target_gen: Dict[str, int] = {}
        self._subject_weights: Dict[str, Dict[str, float]] = {}
        self._target_weights: Dict[str, Dict[str, float]] = {}

    # ---- signals ----
    def append_signal(self, signal: EngagementSignal) -> EngagementSignal:
        if signal.signal_id is None:
            signal = replace(signal, signal_id=new_id())
        with self._lock:
            self._signals.setdefault(signal.subject_id, []).append(signal)
        return signal

    def signals_for(self, subject_id, target_id=None, since=None):
        with self._lock:
            log = list(self._signals.get(subject_id, ()))
        return [
            s for s in log
            if (target_id is None or s.target_id == target_id)
            and (since is None or s.created_at >= since)
        ]

    def signals_for_target(self, target_id):
        with self._lock:
            logs = [list(v) for v in self._signals.values()]
        return [s for log in logs for s in log if s.target_id == target_id]

    # ---- sessions ----
    def append_session(self, session: VisitSession) -> VisitSession:
        with self._lock:
            self._sessions.setdefault(session.subject_id, []).append(session)
            self._session_index[session.session_id] = session
        return session

    def get_session(self, session_id):
        with self._lock:
            return self._session_index.get(session_id)

    def update_session(self, session):
        with self._lock:
            log = self._sessions.get(session.subject_id, [])
            for idx, existing in enumerate(log):
                if existing.session_id == session.session_id:
                    log[idx] = session
                    break
            self._session_index[session.session_id] = session

    def sessions_for(self, subject_id, target_id=None):
        with self._lock:
            log = list(self._sessions.get(subject_id, ()))
        return [s for s in log if target_id is None or s.target_id == target_id]

    # ---- prediction cache ----
    def get_prediction(self, subject_id, target_id):
        with self._lock:
            return self._predictions.get((subject_id, target_id))

    def _token(self, subject_id: str, target_id: str) -> CacheToken:
        return (
            self._pair_gen.get((subject_id, target_id), 0),
            self._subject_gen.get(subject_id, 0),
            self._target_gen.get(target_id, 0),
        )

    def cache_token(self, subject_id, target_id):
        with self._lock:
            return self._token(subject_id, target_id)

    def put_prediction(self, entry, token=None):
        key = (entry.subject_id, entry.target_id)
        with self._lock:
            fresh = token is None or token == self._token(*key)
            self._predictions[key] = entry if fresh else replace(entry, invalidated=True)
        return fresh

    def _mark(self, key: Key) -> bool:
        entry = self._predictions.get(key)
        if entry is None:
            return False
        self._predictions[key] = replace(entry, invalidated=True)
        return True

    def invalidate_prediction(self, subject_id, target_id):
        key = (subject_id, target_id)
        with self._lock:
            self._pair_gen[key] = self._pair_gen.get(key, 0) + 1
            return self._mark(key)

    def invalidate_subject(self, subject_id):
        with self._lock:
            self._subject_gen[subject_id] = self._subject_gen.get(subject_id, 0) + 1
            return sum(1 for key in list(self._predictions) if key[0] == subject_id and self._mark(key))

    def invalidate_target(self, target_id):
        with self._lock:
            self._target_gen[target_id] = self._target_gen.get(target_id, 0) + 1
            return sum(1 for key in list(self._predictions) if key[1] == target_id and self._mark(key))

    def predictions_for_target(self, target_id):
        with self._lock:
            return [p for (_, t), p in self._predictions.items() if t == target_id]

    def stale_predictions(self, cutoff):
        with self._lock:
            out = [p for p in self._predictions.values() if p.invalidated or p.calculated_at < cutoff]
        out.sort(key=lambda p: p.calculated_at)
        return out

    # ---- archetype blends ----
    def subject_weights(self, subject_id):
        with self._lock:
            return dict(self._subject_weights.get(subject_id, {}))

    def set_subject_weights(self, subject_id, weights):
        with self._lock:
            self._subject_weights[subject_id] = dict(weights)

    def target_weights(self, target_id):
        with self._lock:
            return dict(self._target_weights.get(target_id, {}))

    def set_target_weights(self, target_id, weights):
        with self._lock:
            self._target_weights[target_id] = dict(weights)
