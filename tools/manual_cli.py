# tools/manual_cli.py
from __future__ import annotations
import argparse, json, time
from typing import List

from taste_core.classifier import classify
from taste_core.scoring import progress_update, score_responses
from taste_core.selection import default_config, select_items
from taste_core.types import ResponseEvent, TraitItem


def _ask_int(prompt: str, default: int = 0) -> int:
    try:
        s = input(prompt).strip()
        if s == "": return default
        return int(s)
    except ValueError:
        return default


def ask(it: TraitItem) -> ResponseEvent:
    print(f"\n[{it.type}] {it.prompt}")
    for i, opt in enumerate(it.options): print(f"  {i}: {opt.text}")
    t0 = time.time()
    idx = _ask_int("Choose index: ", 0)
    idx = max(0, min(len(it.options) - 1, idx))
    rt = int((time.time() - t0) * 1000)
    return ResponseEvent(item_id=it.id, option_id=it.options[idx].id, latency_ms=rt)


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--items", type=int, default=None, help="target number of questions")
    ap.add_argument("--seed", type=int, default=None)
    a = ap.parse_args()

    cfg = default_config()
    if a.items: cfg.target_total = a.items
    sel = select_items(config=cfg, seed=a.seed)
    print(f"Manual taste profile: {len(sel.items)} questions, about {sel.estimated_duration}s. Ctrl+C to exit.")
    responses: List[ResponseEvent] = []
    try:
        for it in sel.items:
            print(f"\n--- {it.primary_trait.value} | id={it.id} ---")
            responses.append(ask(it))
            print(progress_update(responses, len(sel.items))["message"])
    except KeyboardInterrupt:
        print("\nStopped early.")

    scores = score_responses(responses)
    assignment = classify(scores.scores())
    print(json.dumps({"scores": scores.to_dict(), "archetype": assignment.to_dict()}, indent=2))


if __name__ == "__main__":
    main()
