from __future__ import annotations

import math
from datetime import timedelta

import pytest

from taste_core.archetypes import ARCHETYPE_IDS
from taste_core.engagement import (
    SIGNAL_WEIGHTS,
    combine_scores,
    decay_factor,
    is_stale,
    predict,
    return_pattern,
    signal_contribution,
    signal_depth,
    taste_coherence,
)
from taste_core.tiers import engagement_tier, tier_label
from taste_core.types import EngagementSignal, SignalKind, VisitOrigin, VisitSession
from tests.conftest import T0


def _signal(kind=SignalKind.SAVE, days_ago=0.0, content_id=None):
    return EngagementSignal(
        subject_id="s1",
        target_id="t1",
        kind=kind,
        weight=SIGNAL_WEIGHTS[kind],
        created_at=T0 - timedelta(days=days_ago),
        content_id=content_id,
    )


def _session(origin=VisitOrigin.ORGANIC, days_ago=0.0, sid="x"):
    return VisitSession(session_id=sid, subject_id="s1", origin=origin, started_at=T0 - timedelta(days=days_ago), target_id="t1")


def test_coherence_is_symmetric():
    a = {"S-0": 0.6, "V-2": 0.3, "Ø": 0.1}
    b = {"S-0": 0.1, "T-1": 0.7, "V-2": 0.2}
    assert taste_coherence(a, b)["normalized"] == taste_coherence(b, a)["normalized"]


def test_coherence_neutral_when_missing():
    assert taste_coherence({}, {"S-0": 1.0})["normalized"] == 0.5
    assert taste_coherence({"S-0": 1.0}, None)["normalized"] == 0.5


def test_coherence_identical_blends_match():
    blend = {"S-0": 0.5, "C-4": 0.5}
    tc = taste_coherence(blend, dict(blend))
    assert tc["normalized"] == pytest.approx(1.0)
    assert tc["matching"] == ["S-0", "C-4"]
    assert tc["overlap"] == 1.0


def test_unknown_archetype_ids_are_ignored():
    tc = taste_coherence({"not-real": 1.0}, {"S-0": 1.0})
    assert tc["normalized"] == pytest.approx(0.5)


def test_decay_is_monotonic_with_floor():
    assert decay_factor(0) == 1.0
    assert decay_factor(30) == pytest.approx(0.5)
    assert decay_factor(10) > decay_factor(40)
    assert decay_factor(500) == decay_factor(900) == 0.1
    newer = signal_contribution(_signal(days_ago=2), T0)
    older = signal_contribution(_signal(days_ago=20), T0)
    assert older <= newer


def test_future_signals_do_not_exceed_full_weight():
    future = _signal(days_ago=-3)
    assert signal_contribution(future, T0) == SIGNAL_WEIGHTS[SignalKind.SAVE]


def test_signal_depth_saturates():
    many = [_signal(SignalKind.UNPROMPTED_RETURN) for _ in range(50)]
    depth = signal_depth(many, T0)
    assert depth["normalized"] == 1.0
    assert depth["strong"] == 50
    assert depth["recent"] == 50
    assert signal_depth([], T0)["normalized"] == 0.0

    one = signal_depth([_signal(SignalKind.REPLAY)], T0)
    assert one["normalized"] == pytest.approx(math.log1p(1.0) / math.log1p(20))
    assert one["strong"] == 0


def test_return_pattern_components():
    assert return_pattern([])["normalized"] == 0.5

    single = return_pattern([_session()])
    expected = 0.5 * 1.0 + 0.3 * (math.log1p(1) / math.log1p(10)) + 0.2 * 0.5
    assert single["normalized"] == pytest.approx(expected)

    regular = return_pattern([_session(days_ago=d, sid=str(d)) for d in (0, 1, 2, 3)])
    sparse = return_pattern([_session(days_ago=d, sid=str(d)) for d in (0, 30, 60, 90)])
    assert regular["normalized"] > sparse["normalized"]
    assert regular["avg_gap_days"] == 1.0

    algo = return_pattern([_session(VisitOrigin.ALGORITHMIC, d, str(d)) for d in (0, 1)])
    assert algo["organic_ratio"] == 0.0
    assert algo["algorithmic"] == 2


def test_geometric_mean_suppression():
    assert combine_scores(0.0, 1.0, 1.0) == 0
    assert combine_scores(1.0, 0.0, 1.0) == 0
    assert combine_scores(1.0, 1.0, 0.0) == 0
    assert combine_scores(1.0, 1.0, 1.0) == 100
    assert combine_scores(0.5, 0.5, 0.5) == 50


def test_predict_without_signals_is_zero():
    res = predict({"S-0": 1.0}, {"S-0": 1.0}, [], [_session()], now=T0)
    assert res.signal_score == 0
    assert res.combined == 0
    assert res.tier == "low"
    assert res.sufficient_data is False


def test_predict_full_picture():
    blend = {aid: 1.0 / len(ARCHETYPE_IDS) for aid in ARCHETYPE_IDS}
    signals = [_signal(SignalKind.CONCERT_INTEREST, d) for d in (0, 1, 2)] + [_signal(SignalKind.MERCH_CLICK, 3)] * 6
    sessions = [_session(days_ago=d, sid=str(d)) for d in range(0, 10, 2)]
    res = predict(blend, blend, signals, sessions, now=T0)
    assert res.taste_coherence == 100
    assert res.sufficient_data is True
    assert res.signal_count == 9
    assert res.last_signal_at == T0
    assert 0 <= res.combined <= 100
    assert res.tier == engagement_tier(res.combined)
    assert res.breakdown["signals"]["by_kind"] == {"concert_interest": 3, "merch_click": 6}
    assert res.breakdown["returns"]["organic"] == 5


@pytest.mark.parametrize("origin", [VisitOrigin.ORGANIC, VisitOrigin.SOCIAL])
def test_boundary_blends_never_raise(origin):
    for value in (0.0, 1.0, 0.5):
        blend = {aid: value for aid in ARCHETYPE_IDS}
        res = predict(blend, blend, [_signal()], [_session(origin)], now=T0)
        assert 0 <= res.combined <= 100


def test_tiers():
    assert engagement_tier(75) == "superfan"
    assert engagement_tier(74.9) == "high_potential"
    assert engagement_tier(50) == "high_potential"
    assert engagement_tier(25) == "moderate"
    assert engagement_tier(24) == "low"
    assert tier_label(80) == "Superfan"


def test_is_stale():
    assert is_stale(None, T0)
    assert not is_stale(T0 - timedelta(days=6), T0)
    assert is_stale(T0 - timedelta(days=7), T0)
    assert is_stale(T0 - timedelta(days=3), T0, stale_days=2)
