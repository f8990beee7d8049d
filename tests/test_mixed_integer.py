import numpy as np
import pytest

from electrolyzer_mpc.records import Bound, Constraints, SolveStatus
from electrolyzer_mpc.strategies.mixed_integer_mpc import MixedIntegerMPC, current_levels


@pytest.fixture
def strategy(model, evaluator, config):
    return MixedIntegerMPC(model, evaluator, config.weights, config.mixed_integer)


@pytest.mark.parametrize(
    "bound, step, expected",
    [
        (Bound(min=100.0, max=200.0), 20.0, [100.0, 120.0, 140.0, 160.0, 180.0, 200.0]),
        (Bound(min=100.0, max=200.0), 30.0, [100.0, 130.0, 160.0, 190.0, 200.0]),
        (Bound(min=150.0, max=150.0), 20.0, [150.0]),
    ],
)
def test_current_levels(bound, step, expected):
    np.testing.assert_allclose(current_levels(bound, step), expected)


def test_example_decision_is_a_discrete_candidate(strategy, example_state, example_setpoints, example_constraints):
    decision = strategy.optimize(example_state, example_setpoints, example_constraints, 10)

    assert decision.strategy_id == "mixed_integer"
    assert decision.feasible
    assert decision.status is SolveStatus.FEASIBLE
    assert decision.current in [100.0, 120.0, 140.0, 160.0, 180.0, 200.0]
    assert decision.control_value("cooling") in [0.0, 50.0, 100.0]
    # One level and one mode held over the whole horizon
    np.testing.assert_array_equal(decision.control_sequence, np.tile(decision.control, (10, 1)))
    assert decision.diagnostics["candidates_evaluated"] == 18
    assert decision.diagnostics["current_level"] == decision.current


def test_selected_candidate_is_the_cheapest(strategy, evaluator, config, example_state, example_setpoints):
    constraints = Constraints()
    decision = strategy.optimize(example_state, example_setpoints, constraints, 6)

    x0 = example_state.vector()
    for current in current_levels(constraints.inputs["current"], 20.0):
        for cooling in (0.0, 50.0, 100.0):
            sequence = np.tile([current, cooling], (6, 1))
            trajectory = strategy.predictor.predict(x0, sequence, 6)
            cost = evaluator.evaluate(trajectory, sequence, example_setpoints, config.weights, 0.12)
            assert decision.cost.total <= cost.total + 1e-9


def test_unreachable_state_bound_gives_infeasible_decision(strategy, example_state, example_setpoints):
    constraints = Constraints.from_mapping({"temperature": (0.0, 60.0)})

    decision = strategy.optimize(example_state, example_setpoints, constraints, 10)

    assert not decision.feasible
    assert decision.status is SolveStatus.INFEASIBLE
    assert len(decision.violations) > 0
    assert decision.diagnostics["feasible_candidates"] == 0
    assert 100.0 <= decision.current <= 200.0


def test_reachable_state_bound_is_respected(strategy, example_state, example_setpoints):
    constraints = Constraints.from_mapping({"temperature": (60.0, 66.0)})

    decision = strategy.optimize(example_state, example_setpoints, constraints, 10)

    assert decision.feasible
    assert np.all(decision.state_series("temperature")[1:] <= 66.0 + 1e-6)
