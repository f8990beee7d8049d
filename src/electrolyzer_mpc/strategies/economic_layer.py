"""Economic scheduling stage of the HierarchicalEconomic strategy.

Over an economic horizon longer than the control horizon, the scheduler picks
for every economic step the stack current that minimizes the net economic
rate (energy cost plus degradation minus production value) at that step's
electricity price. The rate is convex in the current, so a golden-section
search over the feasible current range finds the optimum.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict

import numpy as np

from electrolyzer_mpc.config import HierarchicalConfig
from electrolyzer_mpc.cost.evaluator import CostEvaluator
from electrolyzer_mpc.records import Bound, SystemState
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)

INVERSE_GOLDEN_RATIO = (math.sqrt(5.0) - 1.0) / 2.0


def golden_section_search(function: Callable[[float], float], lower: float, upper: float, tolerance: float) -> float:
    """Minimizer of a unimodal function on `[lower, upper]`, within `tolerance`."""
    a, b = lower, upper
    c = b - INVERSE_GOLDEN_RATIO * (b - a)
    d = a + INVERSE_GOLDEN_RATIO * (b - a)
    fc, fd = function(c), function(d)
    while b - a > tolerance:
        if fc <= fd:
            b, d, fd = d, c, fc
            c = b - INVERSE_GOLDEN_RATIO * (b - a)
            fc = function(c)
        else:
            a, c, fc = c, d, fd
            d = a + INVERSE_GOLDEN_RATIO * (b - a)
            fd = function(d)
    candidate = (a + b) / 2.0
    # The optimum of a convex rate often sits on a bound
    return min((lower, candidate, upper), key=function)


@dataclass(frozen=True, eq=False)
class EconomicPlan:
    """Coarse production schedule over the economic horizon.

    Attributes:
        hours: Hour of the day at the start of each economic step.
        step_hours: Duration of a full economic step in hours.
        durations: Duration of each step in hours; the first and last steps
            are cut at the ends of the economic horizon.
        currents: Planned stack current per step in A.
        prices: Electricity price per step in $/kWh.
        production: Hydrogen produced per step in kg.
        costs: Energy plus degradation cost per step in $.
        revenue: Value of the planned production in $.
        total_cost: Sum of `costs` in $.
        net_value: `revenue - total_cost` in $.
    """

    hours: np.ndarray
    step_hours: float
    durations: np.ndarray
    currents: np.ndarray
    prices: np.ndarray
    production: np.ndarray
    costs: np.ndarray
    revenue: float
    total_cost: float
    net_value: float

    def current_at(self, seconds: float) -> float:
        """Planned current at a time offset from the start of the plan (held past its end)."""
        # The first step may be shorter than the others when the plan starts between clock steps
        elapsed = seconds / 3600.0 - float(self.durations[0])
        index = 0 if elapsed < 0.0 else 1 + int(elapsed // self.step_hours)
        return float(self.currents[min(index, len(self.currents) - 1)])

    def summary(self) -> Dict[str, Any]:
        return {
            "plan_currents": self.currents.tolist(),
            "plan_prices": self.prices.tolist(),
            "plan_production": float(np.sum(self.production)),
            "plan_revenue": self.revenue,
            "plan_total_cost": self.total_cost,
            "plan_net_value": self.net_value,
        }


class EconomicScheduler:
    def __init__(self, evaluator: CostEvaluator, config: HierarchicalConfig | None = None) -> None:
        self.evaluator = evaluator
        self.config = config or HierarchicalConfig()

    def plan(self, state: SystemState, current_bound: Bound, horizon: int) -> EconomicPlan:
        """Builds the economic plan for a control horizon.

        Args:
            state: Process snapshot; its timestamp sets the first price hour.
            current_bound: Feasible current range.
            horizon: Control horizon in steps; the economic horizon covers
                `horizon_factor` times its duration.

        Returns:
            The `EconomicPlan`.
        """
        economic = self.evaluator.economic
        sample_time = self.evaluator.model.sample_time
        step_hours = self.config.economic_step_hours
        duration_hours = horizon * self.config.horizon_factor * sample_time / 3600.0
        start = state.timestamp
        start_hour = start.hour + start.minute / 60.0 + start.second / 3600.0
        end_hour = start_hour + duration_hours

        # Steps follow the clock so a price change inside the horizon starts a new step
        first_boundary = math.floor(start_hour / step_hours + 1e-9)
        steps = max(1, math.ceil(end_hour / step_hours - 1e-9) - first_boundary)
        edges = [start_hour] + [(first_boundary + k) * step_hours for k in range(1, steps)] + [end_hour]
        hours = np.array([edge % 24.0 for edge in edges[:-1]])
        durations = np.maximum(np.diff(edges), 0.0)
        prices = np.array([economic.price_at(int(hour)) for hour in hours])

        currents = np.array(
            [
                golden_section_search(
                    lambda current, price=price: self.evaluator.economic_rate(current, price),
                    current_bound.min,
                    current_bound.max,
                    self.config.golden_tolerance,
                )
                for price in prices
            ]
        )

        production = economic.production_per_amp_hour * currents * durations
        costs = self.evaluator.operating_cost_rate(currents, prices) * durations
        revenue = float(np.sum(self.evaluator.production_value_rate(currents) * durations))
        total_cost = float(np.sum(costs))
        logger.debug("Economic plan over %s steps: currents %s A at prices %s", steps, currents, prices)
        return EconomicPlan(
            hours=hours,
            step_hours=step_hours,
            durations=durations,
            currents=currents,
            prices=prices,
            production=production,
            costs=costs,
            revenue=revenue,
            total_cost=total_cost,
            net_value=revenue - total_cost,
        )
