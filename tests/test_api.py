from __future__ import annotations

import importlib
import os
import sys

import pytest
from fastapi.testclient import TestClient

from taste_core.item_bank import default_catalog
from taste_core.tiers import tier_label
from taste_core.types import CachedPrediction, EngagementPrediction, EngagementSignal, SignalKind, Trait
from tests.conftest import T0


_DEF_MODULES = [
    "taste_core.config",
    "api.storage",
    "api.app",
]


@pytest.fixture
def api(tmp_path):
    os.environ["DATA_DIR"] = str(tmp_path)
    for name in _DEF_MODULES:
        if name in sys.modules:
            importlib.reload(sys.modules[name])
        else:
            __import__(name)
    return sys.modules["api.app"], sys.modules["api.storage"]


@pytest.fixture
def client(api):
    return TestClient(api[0].app)


def _answers(trait: Trait, pick=max) -> list[dict]:
    return [
        {"item_id": it.id, "option_id": pick(it.options, key=lambda o: o.value).id}
        for it in default_catalog().by_trait(trait)
    ]


def test_health(client, tmp_path):
    body = client.get("/health").json()
    assert body["items"] == len(default_catalog())
    assert body["data_dir"] == str(tmp_path)


def test_select_is_seeded(client):
    a = client.post("/quiz/select", json={"seed": 5}).json()
    b = client.post("/quiz/select", json={"seed": 5}).json()
    assert [it["id"] for it in a["items"]] == [it["id"] for it in b["items"]]
    assert set(a["trait_coverage"]) == {t.value for t in Trait}
    assert all("value" not in opt for it in a["items"] for opt in it["options"])


def test_submit_persists_profile_and_blend(client, api):
    _app, storage = api
    responses = _answers(Trait.OPENNESS) + _answers(Trait.CONSCIENTIOUSNESS, pick=min)
    resp = client.post("/quiz/submit", json={"subject_id": "u1", "responses": responses})
    assert resp.status_code == 200
    body = resp.json()
    assert body["scores"]["traits"]["openness"]["score"] > 0.7
    assert body["archetype"]["primary"] in body["archetype"]["blend_weights"]

    profile = client.get("/profiles/u1").json()
    assert profile["session_count"] == 1
    assert len(profile["answered_item_ids"]) == len(responses)
    assert storage.JsonFileRepository().subject_weights("u1") == body["archetype"]["blend_weights"]

    client.post("/quiz/submit", json={"subject_id": "u1", "responses": responses[:2]})
    assert client.get("/profiles/u1").json()["session_count"] == 2

    returning = client.post("/quiz/select", json={"subject_id": "u1", "seed": 1}).json()
    picked = {it["id"] for it in returning["items"]}
    assert {it.id for it in default_catalog().anchors()} <= picked


def test_unknown_profile_is_404(client):
    assert client.get("/profiles/nobody").status_code == 404


def test_progress_and_next(client):
    progress = client.post("/quiz/progress", json={"responses": _answers(Trait.EXTRAVERSION), "total_planned": 24}).json()
    assert progress["questions_remaining"] == 19
    nxt = client.post("/quiz/next", json={"answered_ids": [], "seed": 3}).json()
    assert nxt["item"]["id"] in default_catalog()


def test_classify_endpoint(client):
    body = client.post("/classify", json={"traits": {t.value: 0.5 for t in Trait}}).json()
    assert body["primary"] == "N-5"
    assert abs(sum(body["blend_weights"].values()) - 1.0) <= 0.05


def test_bad_signal_kind_and_origin(client):
    assert client.post("/signals", json={"subject_id": "s", "target_id": "t", "kind": "like"}).status_code == 400
    assert client.post("/sessions", json={"subject_id": "s", "origin": "tv"}).status_code == 400
    assert client.post("/sessions/missing/end").status_code == 404


def test_prediction_cache_round_trip(client):
    weights = {"S-0": 0.7, "Ø": 0.3}
    client.put("/targets/t1/weights", json={"weights": weights})

    sess = client.post("/sessions", json={"subject_id": "s1", "origin": "organic", "target_id": "t1"}).json()
    assert client.post(f"/sessions/{sess['session_id']}/end").json()["duration_ms"] >= 0

    first = client.get("/predictions/s1/t1").json()
    assert first["cached"] is False
    assert first["signal_count"] == 1
    assert client.get("/predictions/s1/t1").json()["cached"] is True

    resp = client.post("/signals", json={"subject_id": "s1", "target_id": "t1", "kind": "SAVE", "content_id": "c1"})
    assert resp.json()["weight"] == 3.0
    assert resp.json()["deep_dive_recorded"] is False
    after = client.get("/predictions/s1/t1").json()
    assert after["cached"] is False
    assert after["signal_count"] == 2

    client.put("/targets/t1/weights", json={"weights": weights})
    assert client.get("/predictions/s1/t1").json()["cached"] is False
    assert client.get("/predictions/s1/t1", params={"force": True}).json()["cached"] is False


def test_batch_signals_and_dashboard(client):
    batch = {"signals": [
        {"subject_id": "a", "target_id": "t9", "kind": "save"},
        {"subject_id": "a", "target_id": "t9", "kind": "share"},
        {"subject_id": "b", "target_id": "t9", "kind": "save"},
    ]}
    assert client.post("/signals/batch", json=batch).json()["recorded"] == 3
    client.get("/predictions/a/t9")
    client.get("/predictions/b/t9")

    dash = client.get("/targets/t9/dashboard").json()
    assert dash["total_subjects"] == 2
    assert dash["top_signals"][0]["kind"] == "save"
    assert sum(dash["distribution"].values()) == 2
    assert "subjects" in client.get("/targets/t9/emerging").json()


def test_unsafe_subject_id_is_rejected(client, tmp_path):
    responses = _answers(Trait.OPENNESS)
    for bad in ("../../escaped", "..", "a/b", "x" * 200):
        resp = client.post("/quiz/submit", json={"subject_id": bad, "responses": responses})
        assert resp.status_code == 400
    assert client.post("/quiz/select", json={"subject_id": "../x"}).status_code == 400
    assert client.get("/profiles/bad$id").status_code == 400
    assert client.get("/profiles/bad$id/progress").status_code == 400
    assert not list(tmp_path.parent.glob("**/escaped.json"))


def test_profile_helpers_refuse_unsafe_ids(api):
    _app, storage = api
    with pytest.raises(ValueError):
        storage.save_profile("../escaped", {})
    with pytest.raises(ValueError):
        storage.load_profile("..")
    assert storage.is_safe_id("user-1.v2_a")


def test_resubmit_invalidates_cached_predictions(client):
    client.put("/targets/t1/weights", json={"weights": {"S-0": 1.0}})
    client.post("/quiz/submit", json={"subject_id": "u2", "responses": _answers(Trait.OPENNESS)})
    client.post("/signals", json={"subject_id": "u2", "target_id": "t1", "kind": "save"})
    before = client.get("/predictions/u2/t1").json()
    assert client.get("/predictions/u2/t1").json()["cached"] is True

    responses = _answers(Trait.OPENNESS, pick=min) + _answers(Trait.AESTHETIC_SENSITIVITY, pick=min)
    client.post("/quiz/submit", json={"subject_id": "u2", "responses": responses})
    after = client.get("/predictions/u2/t1").json()
    assert after["cached"] is False
    assert after["tier_label"] == tier_label(after["combined"])
    assert before["calculated_at"] <= after["calculated_at"]


def test_unknown_auxiliary_label_is_400(client):
    traits = {t.value: 0.5 for t in Trait}
    bad = client.post("/classify", json={"traits": traits, "auxiliary": {"label": "12"}})
    assert bad.status_code == 400
    ok = client.post("/classify", json={"traits": traits, "auxiliary": {"label": "9"}}).json()
    assert ok["primary"] == "N-5"
    assert ok["name"] == "LIMN"
    assert ok["description"]


def test_progress_endpoint(client):
    assert client.get("/profiles/ghost/progress").status_code == 404

    client.post("/quiz/submit", json={"subject_id": "u3", "responses": _answers(Trait.OPENNESS)})
    body = client.get("/profiles/u3/progress").json()
    assert body["current_stage"] == "initial"
    assert body["signal_count"] == 0
    assert body["items_answered"] == len(_answers(Trait.OPENNESS))
    assert body["session_count"] == 1

    for _ in range(3):
        client.post("/signals", json={"subject_id": "u3", "target_id": "t1", "kind": "replay"})
    body = client.get("/profiles/u3/progress").json()
    assert body["current_stage"] == "calibration"
    assert body["stages_completed"] == ["initial"]

    client.post("/signals", json={"subject_id": "anon", "target_id": "t1", "kind": "save"})
    assert client.get("/profiles/anon/progress").json()["session_count"] == 0


def test_recalibrate_endpoint(client, api):
    _app, storage = api
    assert client.post("/profiles/ghost/recalibrate").status_code == 404

    client.post("/quiz/submit", json={"subject_id": "u4", "responses": _answers(Trait.NOVELTY_SEEKING)})
    for _ in range(4):
        client.post("/signals", json={
            "subject_id": "u4", "target_id": "t1", "kind": "save",
            "metadata": {"archetype_weights": {"Ø": 1.0}},
        })
    resp = client.post("/profiles/u4/recalibrate")
    assert resp.status_code == 200
    body = resp.json()
    assert body["refinement"]["signals_used"] == 4
    assert body["archetype"]["name"]
    assert storage.JsonFileRepository().subject_weights("u4") == body["archetype"]["blend_weights"]

    profile = client.get("/profiles/u4").json()
    assert profile["archetype"]["primary"] == body["archetype"]["primary"]
    assert profile["refinement"]["signals_used"] == 4
    assert "recalibrated_at" in profile


def test_json_repository_cache_token(api):
    _app, storage = api
    repo = storage.JsonFileRepository()
    pred = EngagementPrediction(10, 10, 10, 10, "low", 1)
    entry = CachedPrediction("s1", "t1", pred, T0)

    token = repo.cache_token("s1", "t1")
    assert repo.put_prediction(entry, token) is True
    assert repo.get_prediction("s1", "t1").invalidated is False

    repo.invalidate_subject("s1")
    assert repo.get_prediction("s1", "t1").invalidated is True
    assert repo.put_prediction(entry, token) is False
    assert repo.get_prediction("s1", "t1").invalidated is True
    assert repo.put_prediction(entry, repo.cache_token("s1", "t1")) is True
    assert repo.invalidate_target("t1") == 1


def test_json_repository_does_not_mutate_signal(api):
    _app, storage = api
    sig = EngagementSignal("s1", "t1", SignalKind.SAVE, 3.0, T0)
    stored = storage.JsonFileRepository().append_signal(sig)
    assert sig.signal_id is None
    assert stored.signal_id
    assert stored.subject_id == sig.subject_id
