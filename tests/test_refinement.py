from __future__ import annotations

from datetime import timedelta

import pytest

from taste_core.archetypes import get_archetype
from taste_core.refinement import implied_traits, profiling_stage, refine_traits
from taste_core.types import EngagementSignal, SignalKind, Trait, TRAITS
from tests.conftest import T0


def _signal(kind=SignalKind.SAVE, at=T0, blend=None, target="t1"):
    meta = {"archetype_weights": blend} if blend is not None else {}
    return EngagementSignal("s1", target, kind, 3.0 if kind is SignalKind.SAVE else 1.0, at, metadata=meta)


def test_implied_traits_is_blend_weighted_centroid():
    keth = get_archetype("S-0")
    void = get_archetype("Ø")
    vec = implied_traits({"S-0": 3.0, "Ø": 1.0, "nope": 5.0, "V-2": -1.0})
    for i, t in enumerate(TRAITS):
        assert vec[t] == pytest.approx(0.75 * keth.centroid[i] + 0.25 * void.centroid[i])


def test_implied_traits_without_known_archetype():
    assert implied_traits(None) is None
    assert implied_traits({}) is None
    assert implied_traits({"nope": 1.0, "S-0": 0.0}) is None


def test_no_signals_keeps_prior():
    result = refine_traits([], lambda _t: {}, now=T0, prior={Trait.OPENNESS: 0.8})
    assert result.signals_used == 0
    assert result.scores()[Trait.OPENNESS] == 0.8
    assert result.scores()[Trait.NEUROTICISM] == 0.5
    assert result.variances()[Trait.OPENNESS] == 0.25


def test_fresh_signal_moves_estimate_more_than_old_one():
    blend = {"V-2": 1.0}
    fresh = refine_traits([_signal(blend=blend)], lambda _t: {}, now=T0)
    old = refine_traits([_signal(blend=blend, at=T0 - timedelta(days=90))], lambda _t: {}, now=T0)
    assert fresh.scores()[Trait.NOVELTY_SEEKING] > old.scores()[Trait.NOVELTY_SEEKING] > 0.5


def test_stronger_signal_moves_estimate_more():
    blend = {"V-2": 1.0}
    save = refine_traits([_signal(blend=blend)], lambda _t: {}, now=T0)
    replay = refine_traits([_signal(SignalKind.REPLAY, blend=blend)], lambda _t: {}, now=T0)
    assert save.scores()[Trait.NOVELTY_SEEKING] > replay.scores()[Trait.NOVELTY_SEEKING]


def test_signal_blend_wins_over_target_blend():
    result = refine_traits(
        [_signal(blend={"V-2": 1.0})], lambda _t: {"Ø": 1.0}, now=T0,
    )
    assert result.scores()[Trait.NOVELTY_SEEKING] > 0.5


def test_refinement_dict_has_intervals():
    body = refine_traits([_signal(blend={"S-0": 1.0})], lambda _t: {}, now=T0).to_dict()
    trait = body["traits"]["aesthetic_sensitivity"]
    lo, hi = trait["interval"]
    assert lo <= trait["score"] <= hi
    assert trait["observations"] == 1
    assert body["signals_used"] == 1


@pytest.mark.parametrize(
    "count,stage,completed",
    [
        (0, "initial", []),
        (2, "initial", []),
        (3, "calibration", ["initial"]),
        (14, "calibration", ["initial"]),
        (15, "deep", ["initial", "calibration"]),
        (50, "complete", ["initial", "calibration", "deep"]),
    ],
)
def test_profiling_stage_thresholds(count, stage, completed):
    assert profiling_stage(count) == {"current_stage": stage, "stages_completed": completed, "signal_count": count}
