"""Item-response helpers shared by the selector and the recalibration step.

Trait estimates live on a [0, 1] scale while item difficulties are authored on
the usual [-3, 3] logit scale.  The helpers below compare the two, and
provide a conjugate normal update so a trait estimate can be refined one
behavioural observation at a time without re-scoring a whole response set.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Tuple

from .config import OBSERVATION_VARIANCE, PRIOR_MEAN, PRIOR_VARIANCE

__all__ = [
    "ability_from_estimate",
    "difficulty_match",
    "BayesianState",
    "update_bayesian",
    "confidence_interval",
]

_EPS = 1e-6
ABILITY_SPAN = 6.0


def ability_from_estimate(estimate: float) -> float:
    """Map a [0, 1] trait estimate onto the [-3, 3] difficulty scale."""

    return (float(estimate) - 0.5) * ABILITY_SPAN


def difficulty_match(difficulty: float, estimate: float | None) -> float:
    """Closeness of an item difficulty to the ability implied by ``estimate``.

    Returns a value in [0, 1]; with no estimate the item is compared to the
    neutral ability of zero on a half-width scale.
    """

    if estimate is None:
        return max(0.0, 1.0 - abs(difficulty) / (ABILITY_SPAN / 2.0))
    ability = ability_from_estimate(estimate)
    return max(0.0, 1.0 - abs(difficulty - ability) / ABILITY_SPAN)


@dataclass
class BayesianState:
    mean: float = PRIOR_MEAN
    variance: float = PRIOR_VARIANCE
    observations: int = 0


def update_bayesian(state: BayesianState, observation: float, weight: float = 1.0) -> BayesianState:
    """Normal-normal conjugate update of a single trait estimate.

    Heavier ``weight`` (a stronger or fresher signal) shrinks the
    observation variance, so the posterior moves further towards it.
    """

    obs_var = OBSERVATION_VARIANCE / max(weight, _EPS)
    prior_prec = 1.0 / max(state.variance, _EPS)
    obs_prec = 1.0 / obs_var
    post_var = 1.0 / (prior_prec + obs_prec)
    post_mean = post_var * (state.mean * prior_prec + float(observation) * obs_prec)
    return BayesianState(
        mean=max(0.0, min(1.0, post_mean)),
        variance=post_var,
        observations=state.observations + 1,
    )


def confidence_interval(state: BayesianState, z: float = 1.96) -> Tuple[float, float]:
    half = z * math.sqrt(max(state.variance, 0.0))
    return max(0.0, state.mean - half), min(1.0, state.mean + half)


def _demo_sequence() -> List[BayesianState]:
    """Feed a run of high observations through the update and return the trail."""

    states: List[BayesianState] = []
    st = BayesianState()
    print("step | obs  | mean   | var    | ci")
    for idx, obs in enumerate([1.0, 0.9, 1.0, 0.8, 1.0], start=1):
        st = update_bayesian(st, obs, weight=1.2)
        states.append(st)
        lo, hi = confidence_interval(st)
        print(f" {idx:2d}  | {obs:.2f} | {st.mean:.4f} | {st.variance:.4f} | [{lo:.3f}, {hi:.3f}]")
    for prev, cur in zip(states, states[1:]):
        assert cur.variance <= prev.variance + 1e-9, "posterior variance should shrink"
    return states


if __name__ == "__main__":  # pragma: no cover - developer utility
    assert ability_from_estimate(0.5) == 0.0
    trail = _demo_sequence()
    print(f"Final mean: {trail[-1].mean:.4f}")
