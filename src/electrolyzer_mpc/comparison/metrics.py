"""Performance metrics, scoring and ranking of control decisions.

The score of a decision is the weighted sum

    w_eff * efficiency / 100 + w_cost / (1 + max(cost, 0)) + w_time / (1 + seconds)
        + w_stab * stability + w_viol / (1 + violations)

so every term lies in [0, 1] and a higher score is better.
"""

from typing import Dict, Iterable, Tuple

import numpy as np

from electrolyzer_mpc.config import EconomicConfig
from electrolyzer_mpc.records import ControlDecision, PerformanceMetrics, RankingEntry


def compute_metrics(
    decision: ControlDecision,
    economic: EconomicConfig,
    stability_scale: float = 10.0,
) -> PerformanceMetrics:
    """Derives the comparable figures of one decision.

    Args:
        decision: The decision to assess.
        economic: Economic parameters (production per ampere-hour).
        stability_scale: Temperature standard deviation, in degC, at which
            stability reaches zero.

    Returns:
        The `PerformanceMetrics` of the decision.
    """
    efficiency = 0.0
    if "efficiency" in decision.state_names:
        efficiency = float(np.mean(decision.state_series("efficiency")[1:]))

    stability = 1.0
    if "temperature" in decision.state_names:
        spread = float(np.std(decision.state_series("temperature")))
        stability = max(0.0, 1.0 - spread / stability_scale)

    production = 0.0
    if "current" in decision.input_names:
        production = decision.current * economic.production_per_amp_hour

    return PerformanceMetrics(
        strategy_id=decision.strategy_id,
        efficiency=efficiency,
        total_cost=decision.cost.total,
        stability=stability,
        constraint_violations=len(decision.violations),
        computation_time=decision.computation_time,
        production=production,
        feasible=decision.feasible,
    )


def score(metrics: PerformanceMetrics, weights: Dict[str, float]) -> float:
    """Weighted performance score of a decision; missing weights count as zero."""
    terms = {
        "efficiency": metrics.efficiency / 100.0,
        "cost": 1.0 / (1.0 + max(metrics.total_cost, 0.0)),
        "computation_time": 1.0 / (1.0 + max(metrics.computation_time, 0.0)),
        "stability": metrics.stability,
        "constraint_violations": 1.0 / (1.0 + metrics.constraint_violations),
    }
    return float(sum(weights.get(name, 0.0) * value for name, value in terms.items()))


def rank(entries: Iterable[RankingEntry]) -> Tuple[RankingEntry, ...]:
    """Orders entries by descending score, ties broken by ascending strategy id."""
    return tuple(sorted(entries, key=lambda entry: (-entry.score, entry.strategy_id)))
