import numpy as np
import pytest

from electrolyzer_mpc.config import StochasticConfig
from electrolyzer_mpc.records import Constraints, SolveStatus
from electrolyzer_mpc.scenarios.generator import ScenarioGenerator
from electrolyzer_mpc.strategies.stochastic_mpc import StochasticMPC


@pytest.fixture
def make_strategy(model, evaluator, config):
    def _make(seed=5, **overrides):
        stochastic = StochasticConfig(**{"n_scenarios": 6, **overrides})
        return StochasticMPC(model, evaluator, config.weights, stochastic, config.uncertainty, seed=seed)

    return _make


def test_example_decision(make_strategy, example_state, example_setpoints, example_constraints):
    decision = make_strategy().optimize(example_state, example_setpoints, example_constraints, 8)

    assert decision.strategy_id == "stochastic"
    assert decision.feasible
    assert decision.status is SolveStatus.FEASIBLE
    assert decision.trajectory.shape == (9, 4)
    assert np.all(decision.control_sequence[:, 0] >= 100.0)
    assert np.all(decision.control_sequence[:, 0] <= 200.0)
    diagnostics = decision.diagnostics
    assert diagnostics["scenarios_evaluated"] == 6
    assert diagnostics["scenarios_solved"] == 6
    assert diagnostics["reliability"] == pytest.approx(1.0)
    assert diagnostics["value_at_risk"] <= diagnostics["conditional_value_at_risk"] + 1e-12


def test_seeded_strategies_agree(make_strategy, example_state, example_setpoints, example_constraints):
    first = make_strategy(seed=9).optimize(example_state, example_setpoints, example_constraints, 6)
    second = make_strategy(seed=9).optimize(example_state, example_setpoints, example_constraints, 6)

    np.testing.assert_allclose(first.control_sequence, second.control_sequence, atol=1e-6)
    assert first.diagnostics["expected_cost"] == pytest.approx(second.diagnostics["expected_cost"])


def test_injected_generator_is_used(model, evaluator, config, example_state, example_setpoints):
    generator = ScenarioGenerator(model.state_names, rng=np.random.default_rng(1))
    strategy = StochasticMPC(model, evaluator, config.weights, StochasticConfig(n_scenarios=3), generator=generator)

    decision = strategy.optimize(example_state, example_setpoints, Constraints(), 4)

    assert strategy.generator is generator
    assert decision.diagnostics["scenarios_evaluated"] == 3


def test_low_reliability_is_infeasible(make_strategy, example_state, example_setpoints):
    constraints = Constraints.from_mapping({"temperature": (0.0, 60.0)})

    decision = make_strategy().optimize(example_state, example_setpoints, constraints, 5)

    assert decision.diagnostics["reliability"] == pytest.approx(0.0)
    assert not decision.feasible
    assert decision.status is SolveStatus.INFEASIBLE


def test_reliability_threshold_is_configurable(make_strategy, example_state, example_setpoints):
    constraints = Constraints.from_mapping({"temperature": (0.0, 60.0)})

    decision = make_strategy(min_reliability=0.0).optimize(example_state, example_setpoints, constraints, 5)

    assert decision.feasible


def test_risk_metrics(make_strategy):
    costs = np.arange(1.0, 11.0)
    probabilities = np.full(10, 0.1)

    risk = make_strategy().risk_metrics(costs, probabilities)

    assert risk["expected_cost"] == pytest.approx(5.5)
    assert risk["cost_std"] == pytest.approx(np.sqrt(8.25))
    assert risk["value_at_risk"] == pytest.approx(9.1)
    assert risk["conditional_value_at_risk"] == pytest.approx(10.0)
