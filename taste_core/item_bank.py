from __future__ import annotations
import json, importlib.resources as ir
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Tuple

from .types import AnswerOption, Trait, TraitItem, TRAITS


def _pairs(raw: Optional[Dict[str, float]]) -> Tuple[Tuple[Trait, float], ...]:
    if not raw:
        return ()
    return tuple((Trait(k), float(v)) for k, v in raw.items() if v)


def item_from_dict(r: dict) -> TraitItem:
    options = tuple(
        AnswerOption(
            id=str(o["id"]),
            text=str(o.get("text", "")),
            value=float(o.get("value", 0.0)),
            trait_deltas=_pairs(o.get("trait_deltas")),
        )
        for o in r.get("options", [])
    )
    return TraitItem(
        id=str(r["id"]),
        prompt=str(r.get("prompt", "")),
        type=r.get("type", "binary"),
        primary_trait=Trait(r["primary_trait"]),
        options=options,
        secondary_loadings=_pairs(r.get("secondary_loadings")),
        difficulty=float(r.get("difficulty", 0.0)),
        discrimination=float(r.get("discrimination", 1.0)),
        is_anchor=bool(r.get("is_anchor", False)),
        category=r.get("category", "personality"),
    )


def load_bank() -> List[TraitItem]:
    data = ir.files(__package__).joinpath("data/items.json").read_text(encoding="utf-8")
    raw = json.loads(data)
    return [item_from_dict(r) for r in raw]


class ItemCatalog:
    """Read-only lookup table over a fixed set of trait items."""

    def __init__(self, items: Iterable[TraitItem]):
        self.items: Tuple[TraitItem, ...] = tuple(items)
        self._by_id: Dict[str, TraitItem] = {it.id: it for it in self.items}
        self._by_trait: Dict[Trait, List[TraitItem]] = {t: [] for t in TRAITS}
        self._options: Dict[Tuple[str, str], AnswerOption] = {}
        for it in self.items:
            self._by_trait[it.primary_trait].append(it)
            for opt in it.options:
                self._options[(it.id, opt.id)] = opt

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._by_id

    def get(self, item_id: str) -> Optional[TraitItem]:
        return self._by_id.get(item_id)

    def option(self, item_id: str, option_id: str) -> Optional[AnswerOption]:
        return self._options.get((item_id, option_id))

    def by_trait(self, trait: Trait) -> List[TraitItem]:
        return list(self._by_trait.get(trait, ()))

    def anchors(self) -> List[TraitItem]:
        return [it for it in self.items if it.is_anchor]


@lru_cache(maxsize=1)
def default_catalog() -> ItemCatalog:
    return ItemCatalog(load_bank())
