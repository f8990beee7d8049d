import threading
from typing import Dict

import numpy as np

from electrolyzer_mpc.config import CostWeights, DeterministicConfig, StochasticConfig, UncertaintyConfig
from electrolyzer_mpc.cost.evaluator import CostEvaluator
from electrolyzer_mpc.errors import DivergenceError, InfeasibleSolutionError
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.records import Constraints, Setpoints, SystemState
from electrolyzer_mpc.scenarios.generator import ScenarioGenerator
from electrolyzer_mpc.strategies.deterministic_mpc import DeterministicMPC
from electrolyzer_mpc.strategies.helper import StrategyKind
from electrolyzer_mpc.strategies.strategy_mpc import SolveOutcome, StrategyMPC
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)


class StochasticMPC(StrategyMPC):
    """Scenario-based MPC.

    For every sampled scenario the deterministic sub-problem is re-solved from
    the perturbed initial state under the scenario's disturbances. The
    decision is the probability-weighted average of the per-scenario optimal
    control sequences. A scenario is feasible when its rollout violates no
    state bound; the decision is feasible when the share of feasible
    scenarios reaches `min_reliability`.
    """

    kind = StrategyKind.STOCHASTIC

    def __init__(
        self,
        model: PlantModel,
        evaluator: CostEvaluator | None = None,
        weights: CostWeights | None = None,
        config: StochasticConfig | None = None,
        uncertainty: UncertaintyConfig | None = None,
        generator: ScenarioGenerator | None = None,
        solver_config: DeterministicConfig | None = None,
        seed: int | None = None,
    ) -> None:
        super().__init__(model, evaluator, weights)
        self.config = config or StochasticConfig()
        self.uncertainty = uncertainty or UncertaintyConfig()
        self.generator = generator or ScenarioGenerator(model.state_names, seed=seed)
        self.sub_problem = DeterministicMPC(model, self.evaluator, self.weights, solver_config)
        # numpy generators are not thread-safe
        self._generator_lock = threading.Lock()

    def _solve(
        self,
        state: SystemState,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
    ) -> SolveOutcome:
        with self._generator_lock:
            scenarios = self.generator.generate_stochastic(self.config.n_scenarios, horizon, self.uncertainty)

        x0 = state.vector(self.model.state_names)
        price = self.reported_price(state)
        qp = self.sub_problem.build_qp(setpoints, constraints, horizon)
        nominal_inputs = constraints.clamp_inputs(self.nominal_inputs(state), self.model.input_names)
        warm_start = np.tile(nominal_inputs, (horizon, 1))

        sequences = []
        weights = []
        costs = []
        feasible_scenarios = 0
        for index, scenario in enumerate(scenarios):
            start = x0 + scenario.initial_offset
            try:
                result = qp.solve(start, disturbances=scenario.step_disturbances, warm_start=warm_start)
                trajectory = self.predictor.predict(
                    start, result.control_sequence, horizon, disturbances=scenario.step_disturbances
                )
            except (InfeasibleSolutionError, DivergenceError) as ex:
                logger.warning("Scenario %s of strategy %s failed: %s", index, self.strategy_id, ex)
                continue
            cost = self.evaluator.evaluate(
                trajectory, result.control_sequence, setpoints, self.weights, price * scenario.price_factors
            )
            if not cost.is_finite:
                logger.warning("Scenario %s of strategy %s has a non-finite cost", index, self.strategy_id)
                continue
            violations = self.evaluator.check_constraints(trajectory, result.control_sequence, constraints)
            if not any(check.kind == "state" for check in violations):
                feasible_scenarios += 1
            sequences.append(result.control_sequence)
            weights.append(scenario.weight)
            costs.append(cost.total)

        if not sequences:
            raise InfeasibleSolutionError(f"None of the {len(scenarios)} scenarios could be solved")

        probabilities = np.array(weights) / np.sum(weights)
        control_sequence = np.tensordot(probabilities, np.stack(sequences), axes=1)
        reliability = feasible_scenarios / len(scenarios)
        risk = self.risk_metrics(np.array(costs), probabilities)
        logger.debug(
            "Stochastic strategy solved %s of %s scenarios, reliability %.2f",
            len(sequences),
            len(scenarios),
            reliability,
        )
        return SolveOutcome(
            control_sequence=control_sequence,
            feasible=reliability >= self.config.min_reliability,
            diagnostics={
                "reliability": reliability,
                "scenarios_evaluated": len(scenarios),
                "scenarios_solved": len(sequences),
                "scenarios_feasible": feasible_scenarios,
                **risk,
            },
        )

    def risk_metrics(self, costs: np.ndarray, probabilities: np.ndarray) -> Dict[str, float]:
        """Expected cost, standard deviation, value-at-risk and conditional value-at-risk of scenario costs.

        Value-at-risk is the `risk_quantile` quantile of the scenario costs;
        conditional value-at-risk is the mean of the costs at or above it
        (the worst decile with the default quantile).
        """
        expected = float(probabilities @ costs)
        std = float(np.sqrt(probabilities @ (costs - expected) ** 2))
        value_at_risk = float(np.quantile(costs, self.config.risk_quantile))
        tail = costs[costs >= value_at_risk]
        conditional = float(np.mean(tail)) if tail.size else value_at_risk
        return {
            "expected_cost": expected,
            "cost_std": std,
            "value_at_risk": value_at_risk,
            "conditional_value_at_risk": conditional,
        }
