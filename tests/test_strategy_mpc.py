"""Tests for the shared decision pipeline of the strategies."""

import numpy as np
import pytest

from electrolyzer_mpc.errors import DivergenceError, InfeasibleSolutionError
from electrolyzer_mpc.records import SolveStatus
from electrolyzer_mpc.strategies.helper import StrategyKind
from electrolyzer_mpc.strategies.strategy_mpc import SolveOutcome, StrategyMPC


class FixedStrategy(StrategyMPC):
    kind = StrategyKind.DETERMINISTIC

    def __init__(self, model, evaluator, weights, control=None, error=None):
        super().__init__(model, evaluator, weights)
        self.control = control
        self.error = error

    def _solve(self, state, setpoints, constraints, horizon):
        if self.error is not None:
            raise self.error
        return SolveOutcome(control_sequence=np.array(self.control), diagnostics={"marker": 1})


@pytest.fixture
def strategy_for(model, evaluator, config):
    def _make(**kwargs):
        return FixedStrategy(model, evaluator, config.weights, **kwargs)

    return _make


def test_short_sequence_is_held_and_clamped(strategy_for, example_state, example_setpoints, example_constraints):
    strategy = strategy_for(control=[[250.0, 50.0], [120.0, -10.0]])

    decision = strategy.optimize(example_state, example_setpoints, example_constraints, 4)

    np.testing.assert_allclose(
        decision.control_sequence, [[200.0, 50.0], [120.0, 0.0], [120.0, 0.0], [120.0, 0.0]]
    )
    np.testing.assert_allclose(decision.control, [200.0, 50.0])
    assert decision.trajectory.shape == (5, 4)
    np.testing.assert_allclose(decision.trajectory[0], example_state.vector())
    assert decision.status is SolveStatus.FEASIBLE
    assert decision.diagnostics["marker"] == 1


def test_reported_cost_uses_hourly_price(strategy_for, make_state, example_setpoints, example_constraints):
    strategy = strategy_for(control=[150.0, 50.0])

    night = strategy.optimize(make_state(hour=3), example_setpoints, example_constraints, 3)
    day = strategy.optimize(make_state(hour=12), example_setpoints, example_constraints, 3)

    assert night.cost.tracking == pytest.approx(day.cost.tracking)
    assert night.cost.economic < day.cost.economic


def test_infeasible_solution_falls_back_to_nearest_bounds(
    strategy_for, example_state, example_setpoints, example_constraints
):
    strategy = strategy_for(error=InfeasibleSolutionError("no admissible control"))

    decision = strategy.optimize(example_state, example_setpoints, example_constraints, 5)

    assert decision.status is SolveStatus.INFEASIBLE
    assert not decision.feasible
    # 177 A is closer to 200 A, 50 % cooling is as close to 0 as to 100
    np.testing.assert_allclose(decision.control, [200.0, 0.0])
    assert decision.diagnostics["fallback"] is True
    assert decision.cost.is_finite


def test_divergence_is_reported_as_error(strategy_for, example_state, example_setpoints, example_constraints):
    strategy = strategy_for(error=DivergenceError("blew up", step=3))

    decision = strategy.optimize(example_state, example_setpoints, example_constraints, 5)

    assert decision.status is SolveStatus.ERROR
    assert decision.error == "blew up"
    assert decision.diagnostics["divergence_step"] == 3
    assert decision.trajectory.shape == (6, 4)


def test_zero_horizon_is_rejected(strategy_for, example_state, example_setpoints, example_constraints):
    with pytest.raises(ValueError):
        strategy_for(control=[150.0, 50.0]).optimize(example_state, example_setpoints, example_constraints, 0)


def test_decision_arrays_are_read_only(strategy_for, example_state, example_setpoints, example_constraints):
    decision = strategy_for(control=[150.0, 50.0]).optimize(
        example_state, example_setpoints, example_constraints, 2
    )

    with pytest.raises(ValueError):
        decision.control[0] = 0.0
    with pytest.raises(TypeError):
        decision.diagnostics["marker"] = 2


def test_nominal_inputs_use_measured_current(strategy_for, example_state):
    np.testing.assert_allclose(strategy_for().nominal_inputs(example_state), [177.0, 50.0])
