from __future__ import annotations

from taste_core.item_bank import ItemCatalog, default_catalog
from taste_core.scoring import (
    normalize_value,
    progress_update,
    questions_for_target,
    score_responses,
)
from taste_core.types import AnswerOption, ResponseEvent, Trait, TraitItem, TRAITS
from tests.conftest import build_synthetic_catalog


def _all(catalog: ItemCatalog, trait: Trait, option_id: str) -> list[ResponseEvent]:
    return [ResponseEvent(it.id, option_id) for it in catalog.by_trait(trait)]


def test_scoring_is_deterministic(synthetic_catalog):
    responses = _all(synthetic_catalog, Trait.OPENNESS, "hi") + _all(synthetic_catalog, Trait.NEUROTICISM, "lo")
    first = score_responses(responses, catalog=synthetic_catalog)
    second = score_responses(list(responses), catalog=synthetic_catalog)
    assert first.to_dict() == second.to_dict()


def test_empty_responses_are_neutral(synthetic_catalog):
    res = score_responses([], catalog=synthetic_catalog)
    for trait in TRAITS:
        est = res.traits[trait]
        assert est.score == 0.5
        assert est.confidence == 0.0
        assert est.dispersion == 0.25
        assert est.item_count == 0
    assert res.reliability == 0.5
    assert res.items_answered == 0
    assert 0.5 <= res.estimated_accuracy <= 0.95


def test_monotonic_extremes(synthetic_catalog):
    high = score_responses(_all(synthetic_catalog, Trait.EXTRAVERSION, "hi"), catalog=synthetic_catalog)
    low = score_responses(_all(synthetic_catalog, Trait.EXTRAVERSION, "lo"), catalog=synthetic_catalog)
    assert high.traits[Trait.EXTRAVERSION].score > 0.65
    assert low.traits[Trait.EXTRAVERSION].score < 0.35
    # untouched traits stay neutral
    assert high.traits[Trait.OPENNESS].score == 0.5


def test_confidence_grows_with_items():
    catalog = build_synthetic_catalog(traits=[Trait.AGREEABLENESS], per_trait=5)
    items = catalog.by_trait(Trait.AGREEABLENESS)
    one = score_responses([ResponseEvent(items[0].id, "hi")], catalog=catalog)
    five = score_responses([ResponseEvent(it.id, "hi") for it in items], catalog=catalog)
    assert five.traits[Trait.AGREEABLENESS].confidence >= one.traits[Trait.AGREEABLENESS].confidence
    assert five.traits[Trait.AGREEABLENESS].confidence <= 0.95


def test_end_to_end_openness_high_conscientiousness_low():
    catalog = default_catalog()
    responses: list[ResponseEvent] = []
    for it in catalog.by_trait(Trait.OPENNESS):
        best = max(it.options, key=lambda o: o.value)
        responses.append(ResponseEvent(it.id, best.id))
    for it in catalog.by_trait(Trait.CONSCIENTIOUSNESS):
        worst = min(it.options, key=lambda o: o.value)
        responses.append(ResponseEvent(it.id, worst.id))

    res = score_responses(responses)
    assert res.traits[Trait.OPENNESS].score > 0.7
    assert res.traits[Trait.CONSCIENTIOUSNESS].score < 0.4
    assert res.items_answered == len(responses)


def test_unknown_references_are_skipped(synthetic_catalog, caplog):
    good = ResponseEvent("openness_0", "hi")
    responses = [good, ResponseEvent("nope", "hi"), ResponseEvent("openness_1", "missing")]
    with caplog.at_level("WARNING"):
        res = score_responses(responses, catalog=synthetic_catalog)
    assert res.items_skipped == 2
    assert res.items_answered == 1
    assert res.traits[Trait.OPENNESS].item_count == 1
    assert "unknown reference" in caplog.text
    assert res.to_dict() == score_responses([good], catalog=synthetic_catalog).to_dict() | {"items_skipped": 2}


def test_negative_secondary_loading_reverses_contribution():
    item = TraitItem(
        id="x1",
        prompt="x",
        type="binary",
        primary_trait=Trait.RISK_TOLERANCE,
        options=(AnswerOption("hi", "Agree", 1.0), AnswerOption("lo", "Disagree", -1.0)),
        secondary_loadings=((Trait.NEUROTICISM, -0.5),),
        discrimination=1.2,
    )
    catalog = ItemCatalog([item])
    res = score_responses([ResponseEvent("x1", "hi")], catalog=catalog)
    assert res.traits[Trait.RISK_TOLERANCE].score == 1.0
    assert res.traits[Trait.NEUROTICISM].score == 0.0
    assert res.traits[Trait.NEUROTICISM].item_count == 1


def test_option_deltas_shift_score_without_counting_items():
    item = TraitItem(
        id="d1",
        prompt="d",
        type="multiple",
        primary_trait=Trait.OPENNESS,
        options=(AnswerOption("mid", "Mid", 0.5, ((Trait.AESTHETIC_SENSITIVITY, 0.3),)),),
    )
    res = score_responses([ResponseEvent("d1", "mid")], catalog=ItemCatalog([item]))
    # deltas alone do not make a trait estimate
    assert res.traits[Trait.AESTHETIC_SENSITIVITY].item_count == 0
    assert res.traits[Trait.AESTHETIC_SENSITIVITY].score == 0.5
    assert res.traits[Trait.OPENNESS].score == 0.5


def test_normalize_value_by_type():
    assert normalize_value("binary", -1) == 0.0
    assert normalize_value("binary", 1) == 1.0
    assert normalize_value("binary", 0) == 0.5
    assert normalize_value("multiple", 0.67) == 0.67
    assert normalize_value("multiple", 1.7) == 1.0


def test_questions_for_target_caps():
    assert questions_for_target(0.9) == 0
    assert questions_for_target(0.0) == 20
    assert 0 < questions_for_target(0.7) < 20


def test_reliability_needs_three_items(synthetic_catalog):
    two = [ResponseEvent("openness_0", "hi"), ResponseEvent("openness_1", "hi")]
    assert score_responses(two, catalog=synthetic_catalog).reliability == 0.5


def test_progress_update(synthetic_catalog):
    empty = progress_update([], 10, catalog=synthetic_catalog)
    assert empty["questions_remaining"] == 10
    assert empty["current_confidence"] == 0.0

    some = progress_update(_all(synthetic_catalog, Trait.OPENNESS, "hi"), 10, catalog=synthetic_catalog)
    assert some["questions_remaining"] == 6
    assert some["trait_progress"]["openness"]["item_count"] == 4
    assert isinstance(some["message"], str) and some["message"]
