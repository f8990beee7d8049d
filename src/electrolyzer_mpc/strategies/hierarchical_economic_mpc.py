from typing import Any, Dict, Tuple

import numpy as np

from electrolyzer_mpc.config import CostWeights, DeterministicConfig, HierarchicalConfig
from electrolyzer_mpc.cost.evaluator import CostEvaluator
from electrolyzer_mpc.errors import InfeasibleSolutionError
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.records import Constraints, Setpoints, SystemState
from electrolyzer_mpc.strategies.deterministic_mpc import DeterministicMPC
from electrolyzer_mpc.strategies.economic_layer import EconomicPlan, EconomicScheduler
from electrolyzer_mpc.strategies.helper import StrategyKind
from electrolyzer_mpc.strategies.learned_corrector import CorrectorLike, LearnedCorrector
from electrolyzer_mpc.strategies.strategy_mpc import SolveOutcome, StrategyMPC
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)


class HierarchicalEconomicMPC(StrategyMPC):
    """Economic schedule, learned correction and safety-constrained refinement.

    1.  The `EconomicScheduler` plans the production-optimal current over a
        longer horizon under the time-varying electricity price.
    2.  An optional `LearnedCorrector` adjusts the plan; a missing, failing
        or low-confidence corrector contributes no correction.
    3.  The deterministic sub-problem is re-solved under tightened input and
        state bounds, with a penalty pulling the controls toward the corrected
        plan, warm-started from it. If the tightened problem is infeasible it
        is re-solved without state bounds and the decision is infeasible.
    """

    kind = StrategyKind.HIERARCHICAL_ECONOMIC

    def __init__(
        self,
        model: PlantModel,
        evaluator: CostEvaluator | None = None,
        weights: CostWeights | None = None,
        config: HierarchicalConfig | None = None,
        corrector: CorrectorLike | None = None,
        solver_config: DeterministicConfig | None = None,
    ) -> None:
        super().__init__(model, evaluator, weights)
        self.config = config or HierarchicalConfig()
        self.corrector = corrector
        self.scheduler = EconomicScheduler(self.evaluator, self.config)
        self.sub_problem = DeterministicMPC(model, self.evaluator, self.weights, solver_config)

    def plan_reference(self, plan: EconomicPlan, horizon: int) -> np.ndarray:
        """Plan expressed per control step: planned current, operating point for the other inputs."""
        reference = np.tile(self.model.input_operating_point, (horizon, 1))
        current_index = self.model.input_index("current")
        for k in range(horizon):
            reference[k, current_index] = plan.current_at(k * self.model.sample_time)
        return reference

    def correction(self, state: SystemState, plan: EconomicPlan) -> Tuple[np.ndarray, float, bool]:
        """Returns `(correction, confidence, applied)`; a zero correction unless the corrector is confident."""
        zero = np.zeros(self.model.n_inputs)
        if self.corrector is None:
            return zero, 0.0, False

        predict = self.corrector.predict if isinstance(self.corrector, LearnedCorrector) else self.corrector
        try:
            raw_correction, confidence = predict(state, plan)
            confidence = float(confidence)
            values = np.atleast_1d(np.asarray(raw_correction, dtype=float))
        except Exception as ex:
            logger.warning("Learned corrector failed, using no correction: %s", ex)
            return zero, 0.0, False

        if values.size == 1:
            correction = zero.copy()
            correction[self.model.input_index("current")] = values[0]
        elif values.size == self.model.n_inputs:
            correction = values
        else:
            logger.warning(
                "Learned corrector returned %s values for %s inputs, ignored", values.size, self.model.n_inputs
            )
            return zero, confidence, False

        if not np.all(np.isfinite(correction)) or not np.isfinite(confidence):
            logger.warning("Learned corrector returned non-finite values, ignored")
            return zero, 0.0, False
        if confidence < self.config.confidence_threshold:
            logger.warning(
                "Learned correction rejected: confidence %.2f below %.2f", confidence, self.config.confidence_threshold
            )
            return zero, confidence, False
        return correction, confidence, True

    @staticmethod
    def safety_margin(control: np.ndarray, constraints: Constraints, input_names: Tuple[str, ...]) -> float:
        """Smallest distance of a control to its bounds, in percent of the bound width."""
        margins = []
        for name, value in zip(input_names, control):
            bound = constraints.inputs[name]
            if bound.width > 0:
                margins.append(100.0 * min(value - bound.min, bound.max - value) / bound.width)
        return float(max(min(margins), 0.0)) if margins else 0.0

    def _solve(
        self,
        state: SystemState,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
    ) -> SolveOutcome:
        # (a) economic schedule
        plan = self.scheduler.plan(state, constraints.inputs["current"], horizon)

        # (b) learned correction
        correction, confidence, applied = self.correction(state, plan)

        # (c) safety-constrained refinement
        tightened = constraints.tightened(self.config.bound_margin, self.config.state_margin)
        reference = self.plan_reference(plan, horizon) + correction
        reference = tightened.clamp_inputs(reference, self.model.input_names)
        plan_weights = np.array([self.config.plan_weights.get(name, 0.0) for name in self.model.input_names])
        x0 = state.vector(self.model.state_names)

        state_bounds_enforced = True
        feasible = True
        qp = self.sub_problem.build_qp(setpoints, tightened, horizon, state_bounds=True, plan_weights=plan_weights)
        try:
            result = qp.solve(x0, reference=reference, warm_start=reference)
        except InfeasibleSolutionError as ex:
            logger.warning("Safety-constrained refinement infeasible, relaxing state bounds: %s", ex)
            state_bounds_enforced = False
            feasible = False
            qp = self.sub_problem.build_qp(setpoints, tightened, horizon, plan_weights=plan_weights)
            result = qp.solve(x0, reference=reference, warm_start=reference)

        diagnostics: Dict[str, Any] = {
            **plan.summary(),
            "correction": correction.tolist(),
            "confidence": confidence,
            "correction_applied": applied,
            "state_bounds_enforced": state_bounds_enforced,
            "safety_margin": self.safety_margin(result.control_sequence[0], tightened, self.model.input_names),
        }
        return SolveOutcome(control_sequence=result.control_sequence, feasible=feasible, diagnostics=diagnostics)
