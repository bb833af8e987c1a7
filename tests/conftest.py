from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taste_core.item_bank import ItemCatalog
from taste_core.repository import InMemoryRepository
from taste_core.tracker import SignalTracker
from taste_core.types import AnswerOption, Trait, TraitItem, TRAITS

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def build_synthetic_catalog(
    *,
    traits: list[Trait] | None = None,
    per_trait: int = 4,
    anchors: bool = True,
) -> ItemCatalog:
    """Create a deterministic synthetic catalog for tests and smoke runs."""

    items: list[TraitItem] = []
    for trait in traits or list(TRAITS):
        for idx in range(per_trait):
            if idx % 2 == 0:
                options = (
                    AnswerOption("hi", "Agree", 1.0, ((trait, 0.1),)),
                    AnswerOption("lo", "Disagree", -1.0, ((trait, -0.1),)),
                )
                typ = "binary"
            else:
                options = (
                    AnswerOption("lo", "Never", 0.0, ((trait, -0.1),)),
                    AnswerOption("mid", "Sometimes", 0.5),
                    AnswerOption("hi", "Always", 1.0, ((trait, 0.1),)),
                )
                typ = "multiple"
            items.append(
                TraitItem(
                    id=f"{trait.value}_{idx}",
                    prompt=f"{trait.value} item #{idx}",
                    type=typ,
                    primary_trait=trait,
                    options=options,
                    difficulty=float(idx % 3 - 1),
                    discrimination=1.0,
                    is_anchor=anchors and idx == 0,
                )
            )
    return ItemCatalog(items)


class Clock:
    """Settable clock for tracker tests."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def synthetic_catalog() -> ItemCatalog:
    return build_synthetic_catalog()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def tracker(repo, clock) -> SignalTracker:
    return SignalTracker(repo, clock=clock)
