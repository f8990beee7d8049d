from typing import Tuple

import numpy as np

from electrolyzer_mpc.config import CostWeights, DeterministicConfig, RobustConfig, UncertaintyConfig
from electrolyzer_mpc.cost.evaluator import CostEvaluator
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.model.predictor import hold_sequence
from electrolyzer_mpc.records import Constraints, Setpoints, SystemState
from electrolyzer_mpc.scenarios.generator import Scenario, ScenarioGenerator
from electrolyzer_mpc.strategies.deterministic_mpc import DeterministicMPC
from electrolyzer_mpc.strategies.helper import StrategyKind
from electrolyzer_mpc.strategies.strategy_mpc import SolveOutcome, StrategyMPC
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)


class RobustMPC(StrategyMPC):
    """Worst-case MPC.

    Solves the deterministic sub-problem from the worst-case perturbed state
    under the worst-case disturbances, with inflated cost weights and input
    bounds shrunk by a safety margin. The reported robustness margin is the
    tracking-cost gap between the worst-case and the nominal evaluation of the
    chosen controls.
    """

    kind = StrategyKind.ROBUST

    def __init__(
        self,
        model: PlantModel,
        evaluator: CostEvaluator | None = None,
        weights: CostWeights | None = None,
        config: RobustConfig | None = None,
        uncertainty: UncertaintyConfig | None = None,
        generator: ScenarioGenerator | None = None,
        solver_config: DeterministicConfig | None = None,
    ) -> None:
        super().__init__(model, evaluator, weights)
        self.config = config or RobustConfig()
        self.uncertainty = uncertainty or UncertaintyConfig()
        self.generator = generator or ScenarioGenerator(model.state_names)
        self.sub_problem = DeterministicMPC(model, self.evaluator, self.weights, solver_config)

    def worst_case(self, horizon: int) -> Scenario:
        return self.generator.generate_worst_case(horizon, self.uncertainty)

    def robust_weights(self) -> CostWeights:
        return self.weights.scaled(self.config.state_weight_factor, self.config.input_weight_factor)

    def evaluate_robustness_margin(
        self,
        state: SystemState,
        control_sequence: np.ndarray,
        setpoints: Setpoints,
        horizon: int,
        scenario: Scenario | None = None,
    ) -> float:
        """Performance gap between the worst-case and the nominal evaluation of a control sequence.

        Both evaluations use the tracking cost with the nominal weights, so the
        controls of any strategy can be assessed under the same scenario.

        Args:
            state: Process snapshot the controls were computed for.
            control_sequence: Controls to assess (held past their end).
            setpoints: Tracking targets.
            horizon: Number of prediction steps.
            scenario: Worst-case scenario; generated from the uncertainty
                configuration when omitted.

        Returns:
            `max(0, J_worst_case - J_nominal)`.
        """
        scenario = scenario or self.worst_case(horizon)
        sequence = hold_sequence(control_sequence, horizon, self.model.n_inputs)
        nominal_cost, worst_cost = self._tracking_costs(state, sequence, setpoints, horizon, scenario)
        return max(0.0, worst_cost - nominal_cost)

    def _tracking_costs(
        self,
        state: SystemState,
        sequence: np.ndarray,
        setpoints: Setpoints,
        horizon: int,
        scenario: Scenario,
    ) -> Tuple[float, float]:
        """Nominal and worst-case tracking costs of a control sequence, with the nominal weights."""
        x0 = state.vector(self.model.state_names)
        nominal = self.predictor.predict(x0, sequence, horizon)
        worst = self.predictor.predict(
            x0 + scenario.initial_offset, sequence, horizon, disturbances=scenario.step_disturbances
        )
        nominal_cost = sum(self.evaluator.tracking_terms(nominal, sequence, setpoints, self.weights))
        worst_cost = sum(self.evaluator.tracking_terms(worst, sequence, setpoints, self.weights))
        return nominal_cost, worst_cost

    def _solve(
        self,
        state: SystemState,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
    ) -> SolveOutcome:
        scenario = self.worst_case(horizon)
        tightened = constraints.tightened(input_margin=self.config.bound_margin)
        qp = self.sub_problem.build_qp(setpoints, tightened, horizon, weights=self.robust_weights())

        x0 = state.vector(self.model.state_names)
        nominal_inputs = tightened.clamp_inputs(self.nominal_inputs(state), self.model.input_names)
        warm_start = np.tile(nominal_inputs, (horizon, 1))
        result = qp.solve(
            x0 + scenario.initial_offset, disturbances=scenario.step_disturbances, warm_start=warm_start
        )

        sequence = result.control_sequence
        nominal_cost, worst_cost = self._tracking_costs(state, sequence, setpoints, horizon, scenario)
        margin = max(0.0, worst_cost - nominal_cost)
        logger.debug("Robust strategy margin %.4f (worst case %.4f, nominal %.4f)", margin, worst_cost, nominal_cost)
        return SolveOutcome(
            control_sequence=sequence,
            feasible=True,
            diagnostics={
                "robustness_margin": margin,
                "worst_case_cost": worst_cost,
                "nominal_cost": nominal_cost,
                "tightened_bounds": {name: (b.min, b.max) for name, b in tightened.inputs.items()},
            },
        )
