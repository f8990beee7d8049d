import numpy as np

from electrolyzer_mpc.config import CostWeights, DeterministicConfig
from electrolyzer_mpc.cost.evaluator import CostEvaluator
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.records import Constraints, Setpoints, SystemState
from electrolyzer_mpc.strategies.helper import StrategyKind
from electrolyzer_mpc.strategies.qp import TrackingQP
from electrolyzer_mpc.strategies.strategy_mpc import SolveOutcome, StrategyMPC
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)


class DeterministicMPC(StrategyMPC):
    """Nominal tracking MPC: one constrained quadratic program over the horizon.

    The controls are box-constrained to the input bounds, so the decision is
    always feasible by construction. The same sub-problem is re-solved by the
    Stochastic, Robust and HierarchicalEconomic strategies through `build_qp`.
    """

    kind = StrategyKind.DETERMINISTIC

    def __init__(
        self,
        model: PlantModel,
        evaluator: CostEvaluator | None = None,
        weights: CostWeights | None = None,
        config: DeterministicConfig | None = None,
    ) -> None:
        super().__init__(model, evaluator, weights)
        self.config = config or DeterministicConfig()

    def build_qp(
        self,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
        weights: CostWeights | None = None,
        state_bounds: bool = False,
        plan_weights: np.ndarray | None = None,
    ) -> TrackingQP:
        """Builds the tracking problem for a set of targets, bounds and weights.

        Args:
            setpoints: Tracking targets; states without a target are not weighted.
            constraints: Input bounds, and state bounds if `state_bounds` is set.
            horizon: Number of prediction steps.
            weights: Cost weights, the strategy's own when omitted.
            state_bounds: Whether to enforce the state bounds as hard constraints.
            plan_weights: Diagonal of the penalty pulling the controls toward a plan.

        Returns:
            The `TrackingQP`, ready to be solved from any initial state.
        """
        weights = weights or self.weights
        targets, q = self.evaluator.state_weights(setpoints, weights)
        r = self.evaluator.input_weights(weights)
        input_lower, input_upper = constraints.input_arrays(self.model.input_names)
        state_lower, state_upper = (None, None)
        if state_bounds:
            state_lower, state_upper = constraints.state_arrays(self.model.state_names)
        return TrackingQP(
            self.model,
            horizon,
            targets,
            q,
            r,
            input_lower,
            input_upper,
            state_lower=state_lower,
            state_upper=state_upper,
            plan_weights=plan_weights,
            solver=self.config.solver,
            max_iterations=self.config.max_iterations,
            tolerance=self.config.tolerance,
        )

    def _solve(
        self,
        state: SystemState,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
    ) -> SolveOutcome:
        qp = self.build_qp(setpoints, constraints, horizon)
        warm_start = np.tile(self.nominal_inputs(state), (horizon, 1))
        result = qp.solve(state.vector(self.model.state_names), warm_start=warm_start)
        logger.debug("Deterministic QP solved by %s with status %s", result.solver, result.status)
        return SolveOutcome(
            control_sequence=result.control_sequence,
            feasible=True,
            diagnostics={"solver": result.solver, "solver_status": result.status, "solve_time": result.solve_time},
        )
