import math

import numpy as np
import pytest

from electrolyzer_mpc.config import HierarchicalConfig
from electrolyzer_mpc.records import Bound, Constraints, SolveStatus
from electrolyzer_mpc.strategies.economic_layer import EconomicScheduler, golden_section_search
from electrolyzer_mpc.strategies.hierarchical_economic_mpc import HierarchicalEconomicMPC

CURRENT_RANGE = Bound(min=100.0, max=200.0)


class ConstantCorrector:
    def __init__(self, correction, confidence):
        self.correction = correction
        self.confidence = confidence

    def predict(self, state, plan):
        return self.correction, self.confidence


class FailingCorrector:
    def predict(self, state, plan):
        raise RuntimeError("model not loaded")


@pytest.fixture
def make_strategy(model, evaluator, config):
    def _make(corrector=None):
        return HierarchicalEconomicMPC(
            model, evaluator, config.weights, config.hierarchical, corrector, config.deterministic
        )

    return _make


@pytest.fixture
def scheduler(evaluator, config):
    return EconomicScheduler(evaluator, config.hierarchical)


def test_golden_section_search_finds_interior_minimum():
    assert golden_section_search(lambda x: (x - 3.2) ** 2, 0.0, 10.0, 1e-6) == pytest.approx(3.2, abs=1e-5)


def test_golden_section_search_returns_bound_minimum():
    assert golden_section_search(lambda x: x, 2.0, 5.0, 1e-6) == 2.0
    assert golden_section_search(lambda x: -x, 2.0, 5.0, 1e-6) == 5.0


@pytest.mark.parametrize(
    "hour, expected_current",
    [
        (3, 200.0),  # Off-peak: produce at full current
        (12, 100.0),  # Day peak: lowest current
        (22, 158.33),  # Flat price: interior optimum
    ],
)
def test_plan_current_follows_price(scheduler, make_state, hour, expected_current):
    plan = scheduler.plan(make_state(hour=hour), CURRENT_RANGE, 10)

    assert plan.currents[0] == pytest.approx(expected_current, abs=0.01)


def test_plan_covers_economic_horizon(model, evaluator, make_state):
    config = HierarchicalConfig(horizon_factor=2.0, economic_step_hours=1.0)
    scheduler = EconomicScheduler(evaluator, config)

    # 5400 one-second steps over twice their duration is 3 hours
    plan = scheduler.plan(make_state(hour=5), CURRENT_RANGE, 5400)

    np.testing.assert_allclose(plan.hours, [5.0, 6.0, 7.0])
    np.testing.assert_allclose(plan.prices, [0.09, 0.09, 0.16])
    assert plan.current_at(0.0) == pytest.approx(200.0)
    assert plan.current_at(3 * 3600.0) == plan.currents[-1]
    assert plan.net_value == pytest.approx(plan.revenue - plan.total_cost)
    assert plan.summary()["plan_production"] == pytest.approx(float(np.sum(plan.production)))


def test_plan_wraps_around_midnight(scheduler, make_state):
    config = HierarchicalConfig(horizon_factor=1.0)
    plan = EconomicScheduler(scheduler.evaluator, config).plan(make_state(hour=23), CURRENT_RANGE, 7200)

    np.testing.assert_allclose(plan.hours, [23.0, 0.0])


def test_plan_splits_at_the_price_change_inside_the_horizon(scheduler, make_state):
    # Ten seconds before 22:00, the 25 s economic horizon crosses the end of the evening peak
    snapshot = make_state(hour=21)
    state = snapshot.model_copy(update={"timestamp": snapshot.timestamp.replace(minute=59, second=50)})
    plan = scheduler.plan(state, CURRENT_RANGE, 10)

    np.testing.assert_allclose(plan.hours, [21.0 + 3590.0 / 3600.0, 22.0])
    np.testing.assert_allclose(plan.prices, [0.14, 0.12])
    np.testing.assert_allclose(plan.durations, [10.0 / 3600.0, 15.0 / 3600.0])
    assert plan.current_at(5.0) == pytest.approx(100.0, abs=0.01)
    assert plan.current_at(15.0) == pytest.approx(158.33, abs=0.01)
    assert plan.total_cost == pytest.approx(float(np.sum(plan.costs)))


def test_example_decision(make_strategy, example_state, example_setpoints, example_constraints):
    decision = make_strategy().optimize(example_state, example_setpoints, example_constraints, 10)

    assert decision.strategy_id == "hierarchical_economic"
    assert decision.feasible
    assert decision.status is SolveStatus.FEASIBLE
    diagnostics = decision.diagnostics
    assert diagnostics["plan_currents"] == pytest.approx([158.33], abs=0.01)
    assert diagnostics["correction_applied"] is False
    assert diagnostics["state_bounds_enforced"] is True
    assert 0.0 <= diagnostics["safety_margin"] <= 50.0
    assert np.all(decision.control_sequence[:, 0] >= 110.0 - 1e-6)
    assert np.all(decision.control_sequence[:, 0] <= 190.0 + 1e-6)


def test_unreachable_state_bound_relaxes_refinement(make_strategy, example_state, example_setpoints):
    constraints = Constraints.from_mapping({"temperature": (0.0, 1.0)})

    decision = make_strategy().optimize(example_state, example_setpoints, constraints, 5)

    assert not decision.feasible
    assert decision.status is SolveStatus.INFEASIBLE
    assert decision.diagnostics["state_bounds_enforced"] is False
    assert len(decision.violations) > 0


def test_confident_scalar_correction_applies_to_current(make_strategy, scheduler, example_state):
    strategy = make_strategy(ConstantCorrector(5.0, 0.9))
    plan = scheduler.plan(example_state, CURRENT_RANGE, 10)

    correction, confidence, applied = strategy.correction(example_state, plan)

    np.testing.assert_allclose(correction, [5.0, 0.0])
    assert confidence == pytest.approx(0.9)
    assert applied


def test_callable_corrector_with_full_vector(make_strategy, scheduler, example_state):
    strategy = make_strategy(lambda state, plan: ([-3.0, 2.0], 1.0))
    plan = scheduler.plan(example_state, CURRENT_RANGE, 10)

    correction, _, applied = strategy.correction(example_state, plan)

    np.testing.assert_allclose(correction, [-3.0, 2.0])
    assert applied


@pytest.mark.parametrize(
    "corrector",
    [
        None,
        ConstantCorrector(5.0, 0.2),
        ConstantCorrector([1.0, 2.0, 3.0], 0.9),
        ConstantCorrector(math.nan, 0.9),
        FailingCorrector(),
    ],
    ids=["missing", "low_confidence", "wrong_size", "non_finite", "raises"],
)
def test_rejected_corrections_are_zero(make_strategy, scheduler, example_state, corrector):
    strategy = make_strategy(corrector)
    plan = scheduler.plan(example_state, CURRENT_RANGE, 10)

    correction, _, applied = strategy.correction(example_state, plan)

    np.testing.assert_array_equal(correction, [0.0, 0.0])
    assert not applied


def test_failing_corrector_does_not_fail_decision(make_strategy, example_state, example_setpoints):
    decision = make_strategy(FailingCorrector()).optimize(example_state, example_setpoints, Constraints(), 5)

    assert decision.feasible
    assert decision.diagnostics["correction_applied"] is False


def test_safety_margin_in_percent():
    constraints = Constraints()

    margin = HierarchicalEconomicMPC.safety_margin(np.array([120.0, 50.0]), constraints, ("current", "cooling"))

    assert margin == pytest.approx(20.0)
