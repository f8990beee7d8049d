import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import numpy as np

from electrolyzer_mpc.config import CostWeights
from electrolyzer_mpc.cost.evaluator import CostEvaluator
from electrolyzer_mpc.errors import DivergenceError, InfeasibleSolutionError
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.model.predictor import HorizonPredictor, hold_sequence
from electrolyzer_mpc.records import (
    Constraints,
    ControlDecision,
    CostBreakdown,
    Setpoints,
    SolveStatus,
    SystemState,
)
from electrolyzer_mpc.strategies.helper import StrategyKind
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)


@dataclass(frozen=True, eq=False)
class SolveOutcome:
    """What a strategy's optimization returns before it is turned into a decision.

    Attributes:
        control_sequence: Optimized controls, one row per step (held past its end).
        feasible: Strategy-specific feasibility verdict.
        diagnostics: Strategy-specific figures reported with the decision.
    """

    control_sequence: np.ndarray
    feasible: bool = True
    diagnostics: Dict[str, Any] = field(default_factory=dict)


class StrategyMPC(ABC):
    """Abstract base class of the control strategies compared by the engine.

    A strategy maps one process snapshot to a `ControlDecision`. The template
    method `optimize` handles everything the strategies share: input
    validation, timing, clamping to the input bounds, nominal prediction, cost
    reporting and the conversion of numerical failures into an infeasible
    decision with a fallback control. Subclasses only implement `_solve`.

    Every decision goes through `INIT -> COMPUTING -> FEASIBLE | INFEASIBLE | ERROR`.
    """

    kind: StrategyKind

    def __init__(
        self,
        model: PlantModel,
        evaluator: CostEvaluator | None = None,
        weights: CostWeights | None = None,
    ) -> None:
        self.model = model
        self.evaluator = evaluator or CostEvaluator(model)
        self.weights = weights or CostWeights()
        self.predictor = HorizonPredictor(model)

    @property
    def strategy_id(self) -> str:
        return self.kind.value

    @abstractmethod
    def _solve(
        self,
        state: SystemState,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
    ) -> SolveOutcome:
        """Computes the control sequence of the strategy.

        Args:
            state: Process snapshot; `state.vector(model.state_names)` is x_0.
            setpoints: Tracking targets.
            constraints: Input and state bounds.
            horizon: Number of prediction steps (at least 1).

        Returns:
            The `SolveOutcome` of the optimization.

        Raises:
            DivergenceError: If a prediction blows up.
            InfeasibleSolutionError: If no admissible control can be found.
        """

    def reported_price(self, state: SystemState) -> float:
        """Electricity price used for the reported economic cost: the profile price at the state's hour."""
        return self.evaluator.economic.price_at(state.timestamp.hour)

    def nominal_inputs(self, state: SystemState) -> np.ndarray:
        """Measured operating input: the stack current of the snapshot, the operating point elsewhere."""
        nominal = self.model.input_operating_point.copy()
        if "current" in self.model.input_names:
            nominal[self.model.input_index("current")] = state.current
        return nominal

    def optimize(
        self,
        state: SystemState,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
    ) -> ControlDecision:
        """Runs the strategy on one snapshot.

        Args:
            state: Process snapshot.
            setpoints: Tracking targets.
            constraints: Input and state bounds.
            horizon: Number of prediction steps.

        Returns:
            A `ControlDecision` whose controls lie within the input bounds and
            whose trajectory has `horizon + 1` rows.

        Raises:
            ValueError: If the horizon is smaller than 1.
        """
        if horizon < 1:
            raise ValueError(f"Horizon must be at least 1, got {horizon}")

        start_time = time.perf_counter()
        status = SolveStatus.INIT
        logger.debug("Strategy %s is %s", self.strategy_id, status.value)
        x0 = state.vector(self.model.state_names)
        price = self.reported_price(state)

        status = SolveStatus.COMPUTING
        logger.info("Strategy %s is %s over %s steps", self.strategy_id, status.value, horizon)
        error = None
        try:
            outcome = self._solve(state, setpoints, constraints, horizon)
            sequence = hold_sequence(outcome.control_sequence, horizon, self.model.n_inputs)
            sequence = constraints.clamp_inputs(sequence, self.model.input_names)
            trajectory = self.predictor.predict(x0, sequence, horizon)
            cost = self.evaluator.evaluate(trajectory, sequence, setpoints, self.weights, price)
            if not cost.is_finite:
                raise InfeasibleSolutionError(f"Strategy {self.strategy_id} produced a non-finite cost")
            feasible = outcome.feasible
            status = SolveStatus.FEASIBLE if feasible else SolveStatus.INFEASIBLE
            diagnostics = dict(outcome.diagnostics)
        except DivergenceError as ex:
            logger.warning("Strategy %s diverged at step %s: %s", self.strategy_id, ex.step, ex)
            status, feasible, error = SolveStatus.ERROR, False, str(ex)
            sequence, trajectory, cost = self._fallback(state, x0, setpoints, constraints, horizon, price)
            diagnostics = {"fallback": True, "divergence_step": ex.step}
        except InfeasibleSolutionError as ex:
            logger.warning("Strategy %s found no admissible solution: %s", self.strategy_id, ex)
            status, feasible = SolveStatus.INFEASIBLE, False
            sequence, trajectory, cost = self._fallback(state, x0, setpoints, constraints, horizon, price)
            diagnostics = {"fallback": True, "reason": str(ex)}

        violations = self.evaluator.check_constraints(trajectory, sequence, constraints)
        computation_time = time.perf_counter() - start_time
        logger.info(
            "Strategy %s finished with status %s in %.3f seconds (total cost %.4f)",
            self.strategy_id,
            status.value,
            computation_time,
            cost.total,
        )
        return ControlDecision(
            strategy_id=self.strategy_id,
            control=sequence[0],
            control_sequence=sequence,
            trajectory=trajectory,
            cost=cost,
            feasible=feasible,
            status=status,
            computation_time=computation_time,
            input_names=self.model.input_names,
            state_names=self.model.state_names,
            violations=violations,
            diagnostics=diagnostics,
            error=error,
        )

    def _fallback(
        self,
        state: SystemState,
        x0: np.ndarray,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
        price: float,
    ) -> Tuple[np.ndarray, np.ndarray, CostBreakdown]:
        """Deterministic fallback: the nominal inputs snapped to their nearest input bound, held over the horizon."""
        nominal = self.nominal_inputs(state)
        control = np.array(
            [constraints.inputs[name].nearest(value) for name, value in zip(self.model.input_names, nominal)]
        )
        sequence = np.tile(control, (horizon, 1))
        try:
            trajectory = self.predictor.predict(x0, sequence, horizon)
            cost = self.evaluator.evaluate(trajectory, sequence, setpoints, self.weights, price)
            if cost.is_finite:
                return sequence, trajectory, cost
        except DivergenceError:
            logger.debug("Fallback prediction of %s diverged, holding the measured state", self.strategy_id)
        # The measured state is finite, so holding it keeps the cost finite
        trajectory = np.tile(x0, (horizon + 1, 1))
        cost = self.evaluator.evaluate(trajectory, sequence, setpoints, self.weights, price)
        return sequence, trajectory, cost
