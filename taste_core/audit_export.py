"""Helpers to export engagement signal logs in JSON/CSV formats."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List
import csv
import io
import json

from .types import EngagementSignal

_FIELDS: tuple[str, ...] = (
    "created_at",
    "subject_id",
    "target_id",
    "kind",
    "weight",
    "content_id",
    "signal_id",
    "metadata",
)


def _normalize_signal(signal: EngagementSignal) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key in _FIELDS:
        val = getattr(signal, key, None)
        if key == "created_at":
            out[key] = val.isoformat() if val is not None else ""
        elif key == "kind":
            out[key] = getattr(val, "value", "" if val is None else str(val))
        elif key == "weight":
            try:
                out[key] = float(val)
            except (TypeError, ValueError):
                out[key] = 0.0
        elif key == "metadata":
            out[key] = dict(val or {})
        else:
            out[key] = "" if val is None else str(val)
    return out


def to_json(signals: Iterable[EngagementSignal]) -> Dict[str, Any]:
    """Return a JSON-safe payload for signal export."""

    normalized: List[Dict[str, Any]] = [_normalize_signal(s) for s in signals]
    return {"signals": normalized}


def to_csv(signals: Iterable[EngagementSignal]) -> str:
    """Render signals as CSV with a fixed header; metadata is JSON-encoded."""

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=_FIELDS)
    writer.writeheader()
    for s in signals:
        row = _normalize_signal(s)
        row["metadata"] = json.dumps(row["metadata"], sort_keys=True, default=str)
        writer.writerow(row)
    return buf.getvalue()


__all__ = ["to_json", "to_csv"]
