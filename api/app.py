from __future__ import annotations
from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import logging, os, random, typing as t

# ---- Engine imports ----
from taste_core.archetypes import AUXILIARY_LABELS, get_archetype
from taste_core.classifier import classify
from taste_core.config import SIGNAL_EXPORT_ENABLED, load_config
from taste_core.item_bank import default_catalog
from taste_core.scoring import progress_update, score_responses
from taste_core.selection import default_config, next_best_item, select_items
from taste_core.tracker import SignalTracker
from taste_core.audit_export import to_json as signals_to_json, to_csv as signals_to_csv
from taste_core.types import (
    ArchetypeAssignment,
    AuxiliaryTyping,
    PriorState,
    ResponseEvent,
    SignalKind,
    Trait,
    TraitItem,
    VisitOrigin,
)
from .storage import JsonFileRepository, is_safe_id, load_profile, save_profile, utcnow_iso

log = logging.getLogger(__name__)

CONFIG = load_config()
TRACKER = SignalTracker(JsonFileRepository())

app = FastAPI(title="Taste Genome API")


@app.get("/")
def root():
    return {"status": "ok", "service": "taste-genome-api"}


ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

# ---- Schemas ----
class SelectReq(BaseModel):
    subject_id: str | None = None
    seed: int | None = None
    target_total: int | None = None
    min_per_trait: int | None = None
    max_per_trait: int | None = None

class ResponseIn(BaseModel):
    item_id: str
    option_id: str
    latency_ms: int | None = None

class AuxIn(BaseModel):
    label: str
    confidence: float = 1.0
    system: str = "enneagram"

class SubmitReq(BaseModel):
    subject_id: str | None = None
    responses: list[ResponseIn]
    auxiliary: AuxIn | None = None

class ProgressReq(BaseModel):
    responses: list[ResponseIn]
    total_planned: int

class NextReq(BaseModel):
    answered_ids: list[str] = []
    estimates: dict[str, float] = {}
    variances: dict[str, float] = {}
    seed: int | None = None

class ClassifyReq(BaseModel):
    traits: dict[str, float]
    auxiliary: AuxIn | None = None

class SignalReq(BaseModel):
    subject_id: str
    target_id: str
    kind: str
    content_id: str | None = None
    metadata: dict[str, t.Any] | None = None

class SignalBatchReq(BaseModel):
    signals: list[SignalReq]

class SessionReq(BaseModel):
    subject_id: str
    origin: str
    target_id: str | None = None

class WeightsReq(BaseModel):
    weights: dict[str, float]

class RecalibrateReq(BaseModel):
    auxiliary: AuxIn | None = None

# ---- Helpers ----
def _kind(raw: str) -> SignalKind:
    try:
        return SignalKind(raw.lower())
    except ValueError:
        raise HTTPException(400, f"unknown signal kind {raw!r}")


def _origin(raw: str) -> VisitOrigin:
    try:
        return VisitOrigin(raw.lower())
    except ValueError:
        raise HTTPException(400, f"unknown visit origin {raw!r}")


def _subject(raw: str | None) -> str | None:
    if raw is not None and not is_safe_id(raw):
        raise HTTPException(400, f"invalid subject id {raw!r}")
    return raw


def _aux(raw: AuxIn | None) -> AuxiliaryTyping | None:
    if raw is None:
        return None
    if raw.label not in AUXILIARY_LABELS:
        raise HTTPException(400, f"unknown auxiliary label {raw.label!r}")
    return AuxiliaryTyping(raw.label, raw.confidence, raw.system)


def _assignment_body(assignment: ArchetypeAssignment) -> dict[str, t.Any]:
    body = assignment.to_dict()
    arch = get_archetype(assignment.primary)
    body["name"] = arch.name if arch else None
    body["description"] = arch.description if arch else None
    return body


def _trait_map(raw: dict[str, float]) -> dict[Trait, float]:
    out: dict[Trait, float] = {}
    for k, v in raw.items():
        try:
            out[Trait(k)] = float(v)
        except ValueError:
            continue
    return out


def _serialize_item(it: TraitItem) -> dict[str, t.Any]:
    return {
        "id": it.id,
        "prompt": it.prompt,
        "type": it.type,
        "trait": it.primary_trait.value,
        "category": it.category,
        "is_anchor": it.is_anchor,
        "options": [{"id": o.id, "text": o.text} for o in it.options],
    }


def _prior_for(subject_id: str | None) -> PriorState | None:
    if not subject_id:
        return None
    profile = load_profile(subject_id)
    if not profile:
        return None
    traits = (profile.get("scores") or {}).get("traits") or {}
    return PriorState(
        session_count=int(profile.get("session_count", 0)),
        estimates=_trait_map({k: v.get("score", 0.5) for k, v in traits.items()}),
        variances=_trait_map({k: float(v.get("dispersion", 0.25)) ** 2 for k, v in traits.items()}),
        answered_item_ids=list(profile.get("answered_item_ids") or []),
    )

# ---- Health ----
@app.get("/health")
def health():
    return {
        "items": len(default_catalog()),
        "data_dir": os.getenv("DATA_DIR", "data"),
        "signal_export_enabled": SIGNAL_EXPORT_ENABLED,
    }

# ---- Assessment ----
@app.post("/quiz/select")
def quiz_select(req: SelectReq):
    cfg = default_config()
    if req.target_total is not None: cfg.target_total = req.target_total
    if req.min_per_trait is not None: cfg.min_per_trait = req.min_per_trait
    if req.max_per_trait is not None: cfg.max_per_trait = req.max_per_trait
    subject_id = _subject(req.subject_id)
    seed = req.seed if req.seed is not None else CONFIG.get("SELECTION_SEED")
    res = select_items(subject_id, _prior_for(subject_id), cfg, seed=seed)
    return {
        "items": [_serialize_item(it) for it in res.items],
        "trait_coverage": {k.value: v for k, v in res.trait_coverage.items()},
        "estimated_confidence": res.estimated_confidence,
        "estimated_duration": res.estimated_duration,
    }


@app.post("/quiz/next")
def quiz_next(req: NextReq):
    rng = random.Random(req.seed) if req.seed is not None else None
    it = next_best_item(req.answered_ids, _trait_map(req.estimates), _trait_map(req.variances), rng=rng)
    return {"item": _serialize_item(it) if it else None}


@app.post("/quiz/progress")
def quiz_progress(req: ProgressReq):
    events = [ResponseEvent(r.item_id, r.option_id, r.latency_ms) for r in req.responses]
    return progress_update(events, req.total_planned)


@app.post("/quiz/submit")
def quiz_submit(req: SubmitReq):
    subject_id = _subject(req.subject_id)
    events = [ResponseEvent(r.item_id, r.option_id, r.latency_ms) for r in req.responses]
    scores = score_responses(events)
    assignment = classify(scores.scores(), _aux(req.auxiliary))
    body = {"scores": scores.to_dict(), "archetype": _assignment_body(assignment)}
    if subject_id:
        prev = load_profile(subject_id) or {}
        answered = list(prev.get("answered_item_ids") or [])
        for e in events:
            if e.item_id not in answered:
                answered.append(e.item_id)
        save_profile(subject_id, {
            **body,
            "subject_id": subject_id,
            "session_count": int(prev.get("session_count", 0)) + 1,
            "answered_item_ids": answered,
            "updated_at": utcnow_iso(),
        })
        TRACKER.set_subject_blend(subject_id, assignment.blend_weights)
    return body


@app.post("/classify")
def classify_endpoint(req: ClassifyReq):
    return _assignment_body(classify(req.traits, _aux(req.auxiliary)))


@app.get("/profiles/{subject_id}")
def get_profile(subject_id: str):
    profile = load_profile(_subject(subject_id))
    if not profile:
        raise HTTPException(404, "profile not found")
    return profile


@app.post("/profiles/{subject_id}/recalibrate")
def recalibrate_profile(subject_id: str, req: RecalibrateReq | None = None):
    subject_id = _subject(subject_id)
    profile = load_profile(subject_id)
    prior = _prior_for(subject_id)
    if not profile and not TRACKER.repo.signals_for(subject_id):
        raise HTTPException(404, "no profile or signals for subject")
    refinement, assignment = TRACKER.recalibrate_subject(
        subject_id,
        prior=prior.estimates if prior else None,
        prior_variances=prior.variances if prior else None,
        auxiliary=_aux(req.auxiliary if req else None),
    )
    body = {
        "subject_id": subject_id,
        "refinement": refinement.to_dict(),
        "archetype": _assignment_body(assignment),
    }
    if profile:
        save_profile(subject_id, {
            **profile,
            "archetype": body["archetype"],
            "refinement": body["refinement"],
            "recalibrated_at": utcnow_iso(),
        })
    return body


@app.get("/profiles/{subject_id}/progress")
def profiling_progress(subject_id: str):
    profile = load_profile(_subject(subject_id))
    progress = TRACKER.profiling_progress(subject_id, has_profile=bool(profile))
    if progress is None:
        raise HTTPException(404, "no profile or signals for subject")
    scores = (profile or {}).get("scores") or {}
    return {
        **progress,
        "subject_id": subject_id,
        "session_count": int((profile or {}).get("session_count", 0)),
        "items_answered": len((profile or {}).get("answered_item_ids") or []),
        "overall_confidence": scores.get("overall_confidence"),
    }

# ---- Engagement tracking ----
@app.post("/signals")
def record_signal(req: SignalReq):
    sig = TRACKER.record_signal(req.subject_id, req.target_id, _kind(req.kind), req.content_id, req.metadata)
    deep_dive = False
    if req.content_id:
        deep_dive = TRACKER.check_catalog_deep_dive(req.subject_id, req.target_id)
    return {"signal_id": sig.signal_id, "weight": sig.weight, "deep_dive_recorded": deep_dive}


@app.post("/signals/batch")
def record_signals(req: SignalBatchReq):
    payloads = [
        {"subject_id": s.subject_id, "target_id": s.target_id, "kind": _kind(s.kind),
         "content_id": s.content_id, "metadata": s.metadata}
        for s in req.signals
    ]
    return {"recorded": TRACKER.record_signals(payloads)}


@app.post("/sessions")
def start_session(req: SessionReq):
    sess = TRACKER.start_session(req.subject_id, _origin(req.origin), req.target_id)
    return {"session_id": sess.session_id, "started_at": sess.started_at.isoformat()}


@app.post("/sessions/{sid}/end")
def end_session(sid: str):
    sess = TRACKER.end_session(sid)
    if not sess:
        raise HTTPException(404, "session not found")
    return {"session_id": sid, "duration_ms": sess.duration_ms}


@app.put("/targets/{target_id}/weights")
def set_target_weights(target_id: str, req: WeightsReq):
    return {"ok": True, "invalidated": TRACKER.set_target_blend(target_id, req.weights)}


@app.get("/predictions/{subject_id}/{target_id}")
def get_prediction(subject_id: str, target_id: str, force: bool = Query(False)):
    return TRACKER.get_prediction(subject_id, target_id, force_refresh=force).to_dict()


@app.get("/targets/{target_id}/dashboard")
def dashboard(target_id: str):
    return TRACKER.dashboard(target_id)


@app.get("/targets/{target_id}/emerging")
def emerging(target_id: str, limit: int = Query(100, ge=1, le=500)):
    return {"subjects": TRACKER.emerging_superfans(target_id, limit=limit)}


@app.get("/signals/{subject_id}/{target_id}/export.json")
def export_signals_json(subject_id: str, target_id: str):
    if not SIGNAL_EXPORT_ENABLED:
        raise HTTPException(404, "signal export disabled")
    return signals_to_json(TRACKER.repo.signals_for(subject_id, target_id))


@app.get("/signals/{subject_id}/{target_id}/export.csv")
def export_signals_csv(subject_id: str, target_id: str):
    if not SIGNAL_EXPORT_ENABLED:
        raise HTTPException(404, "signal export disabled")
    body = signals_to_csv(TRACKER.repo.signals_for(subject_id, target_id))
    filename = f"{subject_id}_{target_id}_signals.csv"
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=\"{filename}\""},
    )
