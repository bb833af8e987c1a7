from __future__ import annotations

from taste_core import config


def test_optional_int_from_env(monkeypatch):
    monkeypatch.delenv("SELECTION_SEED", raising=False)
    assert config._env_optional_int("SELECTION_SEED") is None
    monkeypatch.setenv("SELECTION_SEED", " 42 ")
    assert config._env_optional_int("SELECTION_SEED") == 42
    monkeypatch.setenv("SELECTION_SEED", "")
    assert config._env_optional_int("SELECTION_SEED") is None
    monkeypatch.setenv("SELECTION_SEED", "forty-two")
    assert config._env_optional_int("SELECTION_SEED") is None


def test_profiling_stages_ascend():
    thresholds = [n for _, n in config.PROFILING_STAGES]
    assert thresholds == sorted(thresholds)
    assert [name for name, _ in config.PROFILING_STAGES] == ["initial", "calibration", "deep"]
