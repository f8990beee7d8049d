from typing import List, Tuple

import numpy as np

from electrolyzer_mpc.config import CostWeights, MixedIntegerConfig
from electrolyzer_mpc.cost.evaluator import CostEvaluator
from electrolyzer_mpc.errors import DivergenceError
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.records import Bound, Constraints, Setpoints, SystemState
from electrolyzer_mpc.strategies.helper import StrategyKind
from electrolyzer_mpc.strategies.strategy_mpc import SolveOutcome, StrategyMPC
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)

# (cooling pump on, cooling boost on)
EQUIPMENT_MODES: List[Tuple[bool, bool]] = [(False, False), (True, False), (True, True)]


def current_levels(bound: Bound, step: float) -> np.ndarray:
    """Ordered discrete current levels from the lower bound in `step` increments, upper bound included."""
    levels = np.arange(bound.min, bound.max, step)
    if levels.size == 0 or bound.max - levels[-1] > 1e-9:
        levels = np.append(levels, bound.max)
    return levels


class MixedIntegerMPC(StrategyMPC):
    """Exhaustive search over discrete current levels and cooling equipment modes.

    Each candidate holds one current level and one equipment mode over the
    whole horizon. Equipment modes are: pump off (minimum cooling), pump on
    (nominal cooling) and pump on with boost (maximum cooling). The cheapest
    candidate without constraint violations wins; when every candidate
    violates a bound, the one with the fewest violations is returned as
    infeasible.
    """

    kind = StrategyKind.MIXED_INTEGER

    def __init__(
        self,
        model: PlantModel,
        evaluator: CostEvaluator | None = None,
        weights: CostWeights | None = None,
        config: MixedIntegerConfig | None = None,
    ) -> None:
        super().__init__(model, evaluator, weights)
        self.config = config or MixedIntegerConfig()

    def _cooling_for_mode(self, bound: Bound, pump: bool, boost: bool) -> float:
        if not pump:
            return bound.min
        if boost:
            return bound.max
        return bound.clamp(self.config.nominal_cooling)

    def _solve(
        self,
        state: SystemState,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
    ) -> SolveOutcome:
        x0 = state.vector(self.model.state_names)
        price = self.reported_price(state)
        current_index = self.model.input_index("current")
        cooling_index = self.model.input_index("cooling")
        base = constraints.clamp_inputs(self.nominal_inputs(state), self.model.input_names)

        best = None
        best_key = None
        evaluated = 0
        feasible_count = 0
        last_divergence = None
        for level in current_levels(constraints.inputs["current"], self.config.level_step):
            for pump, boost in EQUIPMENT_MODES:
                control = base.copy()
                control[current_index] = level
                control[cooling_index] = self._cooling_for_mode(constraints.inputs["cooling"], pump, boost)
                sequence = np.tile(control, (horizon, 1))
                try:
                    trajectory = self.predictor.predict(x0, sequence, horizon)
                except DivergenceError as ex:
                    last_divergence = ex
                    continue
                cost = self.evaluator.evaluate(trajectory, sequence, setpoints, self.weights, price)
                if not cost.is_finite:
                    continue
                evaluated += 1
                violations = self.evaluator.check_constraints(trajectory, sequence, constraints)
                if violations.is_feasible:
                    feasible_count += 1
                # Feasible first, then fewest and smallest violations, then cost
                key = (len(violations), violations.max_amount, cost.total)
                if best_key is None or key < best_key:
                    best_key = key
                    best = (sequence, pump, boost, float(level), violations.is_feasible)

        if best is None:
            if last_divergence is not None:
                raise last_divergence
            raise DivergenceError("Every discrete candidate produced a non-finite cost")

        sequence, pump, boost, level, feasible = best
        logger.debug(
            "Mixed-integer search kept level %.1f A with pump=%s boost=%s out of %s candidates",
            level,
            pump,
            boost,
            evaluated,
        )
        return SolveOutcome(
            control_sequence=sequence,
            feasible=feasible,
            diagnostics={
                "current_level": level,
                "cooling_pump": pump,
                "cooling_boost": boost,
                "candidates_evaluated": evaluated,
                "feasible_candidates": feasible_count,
            },
        )
