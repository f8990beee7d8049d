import math

import numpy as np
import pytest

from electrolyzer_mpc.config import CostWeights, DeterministicConfig
from electrolyzer_mpc.errors import InfeasibleSolutionError
from electrolyzer_mpc.records import Constraints, SolveStatus
from electrolyzer_mpc.strategies.deterministic_mpc import DeterministicMPC
from electrolyzer_mpc.strategies.qp import condensed_dynamics


@pytest.fixture
def strategy(model, evaluator, config):
    return DeterministicMPC(model, evaluator, config.weights, config.deterministic)


def test_example_decision(strategy, example_state, example_setpoints, example_constraints):
    decision = strategy.optimize(example_state, example_setpoints, example_constraints, 10)

    assert decision.strategy_id == "deterministic"
    assert decision.status is SolveStatus.FEASIBLE
    assert decision.feasible
    assert decision.control.shape == (2,)
    assert decision.control_sequence.shape == (10, 2)
    assert decision.trajectory.shape == (11, 4)
    np.testing.assert_allclose(decision.trajectory[0], example_state.vector())
    assert 100.0 <= decision.current <= 200.0
    assert decision.cost.is_finite
    assert decision.diagnostics["solver"] == "CLARABEL"


def test_controls_stay_within_bounds(strategy, example_state, example_setpoints):
    constraints = Constraints.from_mapping({"current": (120.0, 140.0), "cooling": (20.0, 30.0)})

    decision = strategy.optimize(example_state, example_setpoints, constraints, 8)

    assert np.all(decision.control_sequence[:, 0] >= 120.0)
    assert np.all(decision.control_sequence[:, 0] <= 140.0)
    assert np.all(decision.control_sequence[:, 1] >= 20.0)
    assert np.all(decision.control_sequence[:, 1] <= 30.0)
    assert len(decision.violations) == 0


def test_cold_stack_is_heated(strategy, example_state, example_setpoints, example_constraints):
    decision = strategy.optimize(example_state, example_setpoints, example_constraints, 10)

    assert decision.state_series("temperature")[-1] > example_state.temperature


def test_same_inputs_give_same_decision(strategy, example_state, example_setpoints, example_constraints):
    first = strategy.optimize(example_state, example_setpoints, example_constraints, 10)
    second = strategy.optimize(example_state, example_setpoints, example_constraints, 10)

    np.testing.assert_allclose(first.control_sequence, second.control_sequence, atol=1e-6)
    assert first.cost.total == pytest.approx(second.cost.total)


def test_heavier_input_weights_do_not_increase_control_effort(
    model, evaluator, config, example_state, example_setpoints, example_constraints
):
    def effort(r):
        weights = CostWeights(
            state_weights=config.weights.state_weights, input_weights={"current": r, "cooling": r}
        )
        decision = DeterministicMPC(model, evaluator, weights).optimize(
            example_state, example_setpoints, example_constraints, 10
        )
        return float(np.sum(decision.control_sequence**2)), decision.cost.control

    (light, light_term), (heavy, heavy_term) = effort(1.0), effort(10.0)

    assert heavy <= light + 1e-3 * (1.0 + light)
    assert heavy_term >= light_term


def test_projected_gradient_matches_qp_solver(
    model, evaluator, config, example_state, example_setpoints, example_constraints
):
    exact = DeterministicMPC(model, evaluator, config.weights)
    approximate = DeterministicMPC(
        model, evaluator, config.weights, DeterministicConfig(solver="projected_gradient", max_iterations=2000)
    )

    exact_decision = exact.optimize(example_state, example_setpoints, example_constraints, 6)
    approximate_decision = approximate.optimize(example_state, example_setpoints, example_constraints, 6)

    def objective(decision):
        return sum(
            evaluator.tracking_terms(
                decision.trajectory, decision.control_sequence, example_setpoints, config.weights
            )
        )

    assert approximate_decision.diagnostics["solver"] == "projected_gradient"
    assert approximate_decision.feasible
    assert np.all(approximate_decision.control_sequence >= [100.0, 0.0])
    assert np.all(approximate_decision.control_sequence <= [200.0, 100.0])
    assert objective(approximate_decision) >= objective(exact_decision) - 1e-4 * (1.0 + objective(exact_decision))


def test_projected_gradient_cannot_enforce_state_bounds(model, config, example_state, example_setpoints):
    strategy = DeterministicMPC(model, config=DeterministicConfig(solver="projected_gradient"))
    constraints = Constraints.from_mapping({"temperature": (60.0, 80.0)})
    qp = strategy.build_qp(example_setpoints, constraints, 5, state_bounds=True)

    assert qp.has_state_bounds
    with pytest.raises(InfeasibleSolutionError, match="state bounds"):
        qp.solve(example_state.vector())


def test_condensed_dynamics_match_prediction(model, strategy, example_state):
    controls = np.tile([160.0, 40.0], (4, 1))
    free, gamma = condensed_dynamics(model, example_state.vector(), 4)

    stacked = free + gamma @ controls.reshape(-1)
    trajectory = strategy.predictor.predict(example_state.vector(), controls, 4)

    np.testing.assert_allclose(stacked.reshape(4, 4), trajectory[1:], atol=1e-9)


@pytest.mark.parametrize(
    "readings",
    [
        {"temperature": 200.0, "efficiency": 0.0, "pressure": 1000.0, "current": 10000.0},
        {"temperature": -50.0, "efficiency": 100.0, "pressure": 0.0, "current": 0.0},
    ],
)
def test_cost_is_finite_at_the_edges_of_the_sensor_ranges(
    strategy, make_state, example_setpoints, example_constraints, readings
):
    decision = strategy.optimize(make_state(**readings), example_setpoints, example_constraints, 10)

    assert math.isfinite(decision.cost.total)
    assert 100.0 <= decision.current <= 200.0
