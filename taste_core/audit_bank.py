from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Iterable

from . import config
from .item_bank import load_bank
from .types import TraitItem, TRAITS

DIFFICULTY_RANGE: tuple[float, float] = (-3.0, 3.0)
DISCRIMINATION_RANGE: tuple[float, float] = (0.3, 3.0)
VALUE_RANGES: dict[str, tuple[float, float]] = {"binary": (-1.0, 1.0), "multiple": (0.0, 1.0)}


def _blank_trait() -> dict[str, object]:
    return {"binary": 0, "multiple": 0, "anchors": 0, "categories": {}}


def _item_warnings(item: TraitItem) -> list[str]:
    out: list[str] = []
    lo, hi = DIFFICULTY_RANGE
    if not lo <= item.difficulty <= hi:
        out.append(f"{item.id} difficulty {item.difficulty:+.2f} outside [{lo:+.0f}, {hi:+.0f}]")
    lo, hi = DISCRIMINATION_RANGE
    if not lo <= item.discrimination <= hi:
        out.append(f"{item.id} discrimination {item.discrimination:.2f} outside [{lo}, {hi}]")
    for trait, w in item.secondary_loadings:
        if abs(w) > 1.0:
            out.append(f"{item.id} secondary loading on {trait.value} is {w:+.2f} (|w| > 1)")
        if trait == item.primary_trait:
            out.append(f"{item.id} loads on its own primary trait {trait.value}")
    if item.type not in VALUE_RANGES:
        out.append(f"{item.id} has unknown type {item.type!r}")
        return out
    if len(item.options) < 2:
        out.append(f"{item.id} has {len(item.options)} options (<2)")
    vlo, vhi = VALUE_RANGES[item.type]
    seen: set[str] = set()
    for opt in item.options:
        if opt.id in seen:
            out.append(f"{item.id} repeats option id {opt.id}")
        seen.add(opt.id)
        if not vlo <= opt.value <= vhi:
            out.append(f"{item.id}/{opt.id} value {opt.value} outside [{vlo}, {vhi}] for {item.type}")
    return out


def audit_items(items: Iterable[TraitItem]) -> dict[str, object]:
    coverage: dict[str, dict[str, object]] = {t.value: _blank_trait() for t in TRAITS}
    totals = {"items": 0, "binary": 0, "multiple": 0, "anchors": 0}
    warnings: list[str] = []
    ids: set[str] = set()

    for item in items:
        data = coverage.setdefault(item.primary_trait.value, _blank_trait())
        totals["items"] += 1
        if item.id in ids:
            warnings.append(f"duplicate item id {item.id}")
        ids.add(item.id)
        if item.type in ("binary", "multiple"):
            data[item.type] += 1  # type: ignore[operator]
            totals[item.type] += 1
        if item.is_anchor:
            data["anchors"] += 1  # type: ignore[operator]
            totals["anchors"] += 1
        cats: dict[str, int] = data["categories"]  # type: ignore[assignment]
        cats[item.category] = cats.get(item.category, 0) + 1
        warnings.extend(_item_warnings(item))

    for trait, data in coverage.items():
        count = int(data["binary"]) + int(data["multiple"])  # type: ignore[call-overload]
        if count < config.SELECT_MIN_PER_TRAIT:
            warnings.append(f"{trait} has {count} items (<{config.SELECT_MIN_PER_TRAIT})")
        if not data["anchors"]:
            warnings.append(f"{trait} has no anchor item")

    return {"coverage": coverage, "warnings": warnings, "totals": totals}


def print_report(summary: dict[str, object]) -> None:
    coverage: dict[str, dict[str, object]] = summary["coverage"]  # type: ignore[assignment]
    print("=== Catalog Coverage ===")
    for trait in sorted(coverage):
        data = coverage[trait]
        cats = ", ".join(f"{k}:{v}" for k, v in sorted(data["categories"].items()))  # type: ignore[union-attr]
        print(f"  {trait:<22} binary {data['binary']:2d}  multiple {data['multiple']:2d}  anchors {data['anchors']}  [{cats}]")

    warnings: list[str] = summary["warnings"]  # type: ignore[assignment]
    if warnings:
        print("\nWarnings:")
        for msg in warnings:
            print(f" - {msg}")
    else:
        print("\nNo warnings.")
    print("\nTotals:", summary["totals"])


def write_summary(summary: dict[str, object], path: Path = Path("/tmp/catalog_audit.json")) -> str:
    text = json.dumps(summary, indent=2, sort_keys=True)
    path.write_text(text + "\n", encoding="utf-8")
    print(text)
    return text


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    summary = audit_items(load_bank())
    print_report(summary)
    if args:
        write_summary(summary, Path(args[0]))
    return 2 if summary["warnings"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
