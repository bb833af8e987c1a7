"""JSON-file persistence for profiles, signal logs and the prediction cache.

The production deployment should ideally swap this module for a proper
database-backed implementation.  For now we keep simple JSON files on disk so
the API survives restarts without extra infrastructure.
"""

from __future__ import annotations

import json
import os
import re
import threading
from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from taste_core.types import (
    CachedPrediction,
    EngagementPrediction,
    EngagementSignal,
    SignalKind,
    VisitOrigin,
    VisitSession,
)
from taste_core.repository import CacheToken, new_id


DATA_ROOT = Path(os.getenv("DATA_DIR", "data")).resolve()
PROFILES_DIR = DATA_ROOT / "profiles"
SIGNALS_PATH = DATA_ROOT / "signals.json"
SESSIONS_PATH = DATA_ROOT / "visit_sessions.json"
PREDICTIONS_PATH = DATA_ROOT / "predictions.json"
WEIGHTS_PATH = DATA_ROOT / "blend_weights.json"
GENERATIONS_PATH = DATA_ROOT / "cache_generations.json"

_LOCK = threading.Lock()
_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


def _ensure_dirs() -> None:
    PROFILES_DIR.mkdir(parents=True, exist_ok=True)
    DATA_ROOT.mkdir(parents=True, exist_ok=True)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return default


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ts(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    ts = datetime.fromisoformat(raw)
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


# ---- (de)serialization ----
def signal_to_dict(s: EngagementSignal) -> Dict[str, Any]:
    out = asdict(s)
    out["kind"] = SignalKind(s.kind).value
    out["created_at"] = _iso(s.created_at)
    return out


def signal_from_dict(d: Dict[str, Any]) -> EngagementSignal:
    return EngagementSignal(
        subject_id=d["subject_id"],
        target_id=d["target_id"],
        kind=SignalKind(d["kind"]),
        weight=float(d.get("weight", 1.0)),
        created_at=_ts(d["created_at"]),  # type: ignore[arg-type]
        content_id=d.get("content_id"),
        metadata=dict(d.get("metadata") or {}),
        signal_id=d.get("signal_id"),
    )


def session_to_dict(s: VisitSession) -> Dict[str, Any]:
    out = asdict(s)
    out["origin"] = VisitOrigin(s.origin).value
    out["started_at"] = _iso(s.started_at)
    out["ended_at"] = _iso(s.ended_at)
    return out


def session_from_dict(d: Dict[str, Any]) -> VisitSession:
    return VisitSession(
        session_id=d["session_id"],
        subject_id=d["subject_id"],
        origin=VisitOrigin(d["origin"]),
        started_at=_ts(d["started_at"]),  # type: ignore[arg-type]
        target_id=d.get("target_id"),
        ended_at=_ts(d.get("ended_at")),
        duration_ms=d.get("duration_ms"),
    )


def prediction_to_dict(p: CachedPrediction) -> Dict[str, Any]:
    return {
        "subject_id": p.subject_id,
        "target_id": p.target_id,
        "prediction": p.prediction.to_dict(),
        "calculated_at": _iso(p.calculated_at),
        "invalidated": p.invalidated,
    }


def prediction_from_dict(d: Dict[str, Any]) -> CachedPrediction:
    raw = dict(d["prediction"])
    raw["last_signal_at"] = _ts(raw.get("last_signal_at"))
    return CachedPrediction(
        subject_id=d["subject_id"],
        target_id=d["target_id"],
        prediction=EngagementPrediction(**raw),
        calculated_at=_ts(d["calculated_at"]),  # type: ignore[arg-type]
        invalidated=bool(d.get("invalidated", False)),
    )


def _key(subject_id: str, target_id: str) -> str:
    return f"{subject_id}|{target_id}"


class JsonFileRepository:
    """Prediction repository backed by the JSON files under ``DATA_DIR``."""

    # ---- signals ----
    def append_signal(self, signal: EngagementSignal) -> EngagementSignal:
        if signal.signal_id is None:
            signal = replace(signal, signal_id=new_id())
        with _LOCK:
            logs: Dict[str, List[Dict[str, Any]]] = _read_json(SIGNALS_PATH, {})
            logs.setdefault(signal.subject_id, []).append(signal_to_dict(signal))
            _write_json(SIGNALS_PATH, logs)
        return signal

    def signals_for(self, subject_id, target_id=None, since=None):
        logs = _read_json(SIGNALS_PATH, {})
        out = [signal_from_dict(d) for d in logs.get(subject_id, [])]
        return [
            s for s in out
            if (target_id is None or s.target_id == target_id)
            and (since is None or s.created_at >= since)
        ]

    def signals_for_target(self, target_id):
        logs = _read_json(SIGNALS_PATH, {})
        return [signal_from_dict(d) for log in logs.values() for d in log if d.get("target_id") == target_id]

    # ---- sessions ----
    def append_session(self, session: VisitSession) -> VisitSession:
        with _LOCK:
            logs: Dict[str, List[Dict[str, Any]]] = _read_json(SESSIONS_PATH, {})
            logs.setdefault(session.subject_id, []).append(session_to_dict(session))
            _write_json(SESSIONS_PATH, logs)
        return session

    def get_session(self, session_id):
        logs = _read_json(SESSIONS_PATH, {})
        for log in logs.values():
            for d in log:
                if d.get("session_id") == session_id:
                    return session_from_dict(d)
        return None

    def update_session(self, session):
        with _LOCK:
            logs = _read_json(SESSIONS_PATH, {})
            log = logs.get(session.subject_id, [])
            for idx, d in enumerate(log):
                if d.get("session_id") == session.session_id:
                    log[idx] = session_to_dict(session)
                    _write_json(SESSIONS_PATH, logs)
                    return

    def sessions_for(self, subject_id, target_id=None):
        logs = _read_json(SESSIONS_PATH, {})
        out = [session_from_dict(d) for d in logs.get(subject_id, [])]
        return [s for s in out if target_id is None or s.target_id == target_id]

    # ---- prediction cache ----
    def get_prediction(self, subject_id, target_id):
        raw = _read_json(PREDICTIONS_PATH, {}).get(_key(subject_id, target_id))
        return prediction_from_dict(raw) if raw else None

    def _token(self, gens: Dict[str, Dict[str, int]], subject_id: str, target_id: str) -> CacheToken:
        return (
            int(gens.get("pairs", {}).get(_key(subject_id, target_id), 0)),
            int(gens.get("subjects", {}).get(subject_id, 0)),
            int(gens.get("targets", {}).get(target_id, 0)),
        )

    def _bump(self, section: str, key: str) -> None:
        gens = _read_json(GENERATIONS_PATH, {})
        bucket = gens.setdefault(section, {})
        bucket[key] = int(bucket.get(key, 0)) + 1
        _write_json(GENERATIONS_PATH, gens)

    def cache_token(self, subject_id, target_id):
        with _LOCK:
            return self._token(_read_json(GENERATIONS_PATH, {}), subject_id, target_id)

    def put_prediction(self, entry, token=None):
        with _LOCK:
            current = self._token(_read_json(GENERATIONS_PATH, {}), entry.subject_id, entry.target_id)
            fresh = token is None or tuple(token) == current
            raw = prediction_to_dict(entry)
            if not fresh:
                raw["invalidated"] = True
            cache = _read_json(PREDICTIONS_PATH, {})
            cache[_key(entry.subject_id, entry.target_id)] = raw
            _write_json(PREDICTIONS_PATH, cache)
        return fresh

    def _mark_where(self, match) -> int:
        cache = _read_json(PREDICTIONS_PATH, {})
        hits = [raw for raw in cache.values() if match(raw)]
        for raw in hits:
            raw["invalidated"] = True
        if hits:
            _write_json(PREDICTIONS_PATH, cache)
        return len(hits)

    def invalidate_prediction(self, subject_id, target_id):
        with _LOCK:
            self._bump("pairs", _key(subject_id, target_id))
            return self._mark_where(
                lambda raw: raw.get("subject_id") == subject_id and raw.get("target_id") == target_id
            ) > 0

    def invalidate_subject(self, subject_id):
        with _LOCK:
            self._bump("subjects", subject_id)
            return self._mark_where(lambda raw: raw.get("subject_id") == subject_id)

    def invalidate_target(self, target_id):
        with _LOCK:
            self._bump("targets", target_id)
            return self._mark_where(lambda raw: raw.get("target_id") == target_id)

    def predictions_for_target(self, target_id):
        cache = _read_json(PREDICTIONS_PATH, {})
        return [prediction_from_dict(d) for d in cache.values() if d.get("target_id") == target_id]

    def stale_predictions(self, cutoff):
        cache = _read_json(PREDICTIONS_PATH, {})
        out = [prediction_from_dict(d) for d in cache.values()]
        out = [p for p in out if p.invalidated or p.calculated_at < cutoff]
        out.sort(key=lambda p: p.calculated_at)
        return out

    # ---- archetype blends ----
    def subject_weights(self, subject_id):
        return dict(_read_json(WEIGHTS_PATH, {}).get("subjects", {}).get(subject_id, {}))

    def set_subject_weights(self, subject_id, weights):
        with _LOCK:
            data = _read_json(WEIGHTS_PATH, {})
            data.setdefault("subjects", {})[subject_id] = dict(weights)
            _write_json(WEIGHTS_PATH, data)

    def target_weights(self, target_id):
        return dict(_read_json(WEIGHTS_PATH, {}).get("targets", {}).get(target_id, {}))

    def set_target_weights(self, target_id, weights):
        with _LOCK:
            data = _read_json(WEIGHTS_PATH, {})
            data.setdefault("targets", {})[target_id] = dict(weights)
            _write_json(WEIGHTS_PATH, data)


# ---- per-subject profile records ----
def is_safe_id(value: str) -> bool:
    """Ids become file names under ``PROFILES_DIR``; reject anything that could leave it."""
    return bool(_SAFE_ID.match(value or "")) and ".." not in value


def _profile_path(subject_id: str) -> Path:
    if not is_safe_id(subject_id):
        raise ValueError(f"unsafe subject id: {subject_id!r}")
    return PROFILES_DIR / f"{subject_id}.json"


def save_profile(subject_id: str, profile: Dict[str, Any]) -> None:
    """Persist the latest trait estimate and archetype assignment for a subject."""

    path = _profile_path(subject_id)
    _ensure_dirs()
    _write_json(path, profile)


def load_profile(subject_id: str) -> Optional[Dict[str, Any]]:
    path = _profile_path(subject_id)
    if not path.exists():
        return None
    return _read_json(path, None)
