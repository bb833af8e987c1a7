from __future__ import annotations
import os, json, pathlib


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


# ---- item selection ----
SELECT_MIN_PER_TRAIT: int = 2
SELECT_MAX_PER_TRAIT: int = 4
SELECT_TARGET_TOTAL: int = 24
SELECT_VARIANCE_WEIGHT: float = 0.4
SELECT_INFO_GAIN_WEIGHT: float = 0.3
SELECT_ANCHORS_FOR_RETURNING: bool = True
SECONDS_PER_ITEM: int = 8
SELECT_JITTER: float = 0.2
SELECTION_SEED: int | None = None

# ---- scoring ----
DELTA_WEIGHT: float = 0.5
CONFIDENCE_CAP: float = 0.95
NEUTRAL_DISPERSION: float = 0.25
TARGET_ACCURACY: float = 0.85
MAX_QUESTIONS_SUGGESTED: int = 20

# ---- archetype classification ----
SOFTMAX_TEMPERATURE: float = 0.1
AESTHETIC_MULTIPLIER: float = 1.5
SECONDARY_MIN_WEIGHT: float = 0.15
AUX_BONUS: float = 0.1
NEUTRAL_TRAIT_VALUE: float = 0.5

# ---- engagement prediction ----
SIGNAL_HALF_LIFE_DAYS: float = 30.0
SIGNAL_DECAY_FLOOR: float = 0.1
SIGNAL_EXPECTED_MAX: float = 20.0
STRONG_SIGNAL_WEIGHT: float = 3.0
RECENT_SIGNAL_DAYS: int = 7
RETURN_ORGANIC_WEIGHT: float = 0.5
RETURN_FREQUENCY_WEIGHT: float = 0.3
RETURN_CONSISTENCY_WEIGHT: float = 0.2
RETURN_FREQUENCY_SATURATION: int = 10
RETURN_GAP_SCALE_DAYS: float = 10.0
COHERENCE_MATCH_THRESHOLD: float = 0.1
MIN_SIGNALS: int = 3
MIN_SESSIONS: int = 2

# ---- behavioural recalibration ----
PRIOR_MEAN: float = 0.5
PRIOR_VARIANCE: float = 0.25
OBSERVATION_VARIANCE: float = 0.25
SIGNAL_EVIDENCE_WEIGHT: float = 0.25
PROFILING_STAGES: tuple = (("initial", 3), ("calibration", 15), ("deep", 50))

# ---- prediction cache / batch ----
STALE_DAYS: int = 7
RECALC_BATCH_SIZE: int = 50
RECALC_BATCH_DELAY: float = 0.1
RECALC_MAX_WORKERS: int = 8
DEEP_DIVE_MIN_ITEMS: int = 5
DEEP_DIVE_WINDOW_HOURS: int = 24

SIGNAL_EXPORT_ENABLED: bool = True

# // env overrides for staging/ops; defaults remain the hand-tuned values.
SELECT_MIN_PER_TRAIT = _env_int("SELECT_MIN_PER_TRAIT", SELECT_MIN_PER_TRAIT)
SELECT_MAX_PER_TRAIT = _env_int("SELECT_MAX_PER_TRAIT", SELECT_MAX_PER_TRAIT)
SELECT_TARGET_TOTAL = _env_int("SELECT_TARGET_TOTAL", SELECT_TARGET_TOTAL)
SOFTMAX_TEMPERATURE = _env_float("SOFTMAX_TEMPERATURE", SOFTMAX_TEMPERATURE)
SIGNAL_HALF_LIFE_DAYS = _env_float("SIGNAL_HALF_LIFE_DAYS", SIGNAL_HALF_LIFE_DAYS)
SIGNAL_DECAY_FLOOR = _env_float("SIGNAL_DECAY_FLOOR", SIGNAL_DECAY_FLOOR)
STALE_DAYS = _env_int("STALE_DAYS", STALE_DAYS)
RECALC_BATCH_SIZE = _env_int("RECALC_BATCH_SIZE", RECALC_BATCH_SIZE)
SELECT_ANCHORS_FOR_RETURNING = _env_bool("SELECT_ANCHORS_FOR_RETURNING", SELECT_ANCHORS_FOR_RETURNING)
SIGNAL_EXPORT_ENABLED = _env_bool("SIGNAL_EXPORT_ENABLED", SIGNAL_EXPORT_ENABLED)
SELECTION_SEED = _env_optional_int("SELECTION_SEED")


def load_config() -> dict:
    """Merge an optional ``config.json`` in the working directory with env overrides."""
    cfg: dict = {}
    p = pathlib.Path(os.getenv("TASTE_CONFIG", "config.json"))
    if p.exists():
        try:
            cfg = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            cfg = {}
    e = os.environ
    for key in ("SELECT_MIN_PER_TRAIT", "SELECT_MAX_PER_TRAIT", "SELECT_TARGET_TOTAL", "STALE_DAYS",
                "RECALC_BATCH_SIZE", "SELECTION_SEED"):
        if e.get(key):
            cfg[key] = _env_int(key, cfg.get(key, 0))
    for key in ("SOFTMAX_TEMPERATURE", "SIGNAL_HALF_LIFE_DAYS", "SIGNAL_DECAY_FLOOR"):
        if e.get(key):
            cfg[key] = _env_float(key, cfg.get(key, 0.0))
    if e.get("DATA_DIR"):
        cfg["DATA_DIR"] = e.get("DATA_DIR")
    return cfg


def selection_defaults() -> dict:
    return {
        "min_per_trait": SELECT_MIN_PER_TRAIT,
        "max_per_trait": SELECT_MAX_PER_TRAIT,
        "target_total": SELECT_TARGET_TOTAL,
        "variance_weight": SELECT_VARIANCE_WEIGHT,
        "information_gain_weight": SELECT_INFO_GAIN_WEIGHT,
        "include_anchors_for_returning": SELECT_ANCHORS_FOR_RETURNING,
        "seconds_per_item": SECONDS_PER_ITEM,
    }
