import math

import numpy as np
import pytest
from pydantic import ValidationError

from electrolyzer_mpc.records import (
    Bound,
    BoundCheck,
    Constraints,
    Ranking,
    RankingEntry,
    Setpoints,
    StrategyFailure,
    SystemState,
    ViolationSet,
)


def test_state_vector_follows_requested_order(example_state):
    np.testing.assert_allclose(example_state.vector(), [65.9, 72.5, 32.5, 99.5])
    np.testing.assert_allclose(example_state.vector(["current", "temperature"]), [177.0, 65.9])


def test_state_rejects_unknown_variable(example_state):
    with pytest.raises(KeyError):
        example_state.value("timestamp")
    with pytest.raises(KeyError):
        example_state.value("humidity")


@pytest.mark.parametrize("value", [math.nan, math.inf])
def test_state_rejects_non_finite_values(value):
    with pytest.raises(ValidationError):
        SystemState(temperature=value, efficiency=72.5, pressure=32.5, current=177.0)


@pytest.mark.parametrize(
    "readings",
    [
        {"temperature": 1e160},
        {"temperature": -300.0},
        {"efficiency": 120.0},
        {"pressure": -1.0},
        {"current": 1e200},
        {"purity": 101.0},
    ],
)
def test_state_rejects_impossible_readings(readings):
    values = {"temperature": 65.9, "efficiency": 72.5, "pressure": 32.5, "current": 177.0, **readings}

    with pytest.raises(ValidationError):
        SystemState(**values)


def test_state_is_frozen(example_state):
    with pytest.raises(ValidationError):
        example_state.temperature = 70.0


def test_setpoints_vector_marks_missing_targets():
    setpoints = Setpoints(temperature=70.0, purity=99.5)

    assert setpoints.as_dict() == {"temperature": 70.0, "purity": 99.5}
    vector = setpoints.vector()
    assert vector[0] == 70.0
    assert math.isnan(vector[1]) and math.isnan(vector[2])


def test_bound_validation_and_helpers():
    bound = Bound(min=0.0, max=100.0)

    assert bound.clamp(120.0) == 100.0
    assert bound.nearest(30.0) == 0.0
    assert bound.nearest(70.0) == 100.0
    assert bound.tightened(0.1) == Bound(min=10.0, max=90.0)
    with pytest.raises(ValidationError):
        Bound(min=2.0, max=1.0)


def test_constraints_fill_default_input_bounds():
    constraints = Constraints.from_mapping({"current": (120.0, 180.0), "temperature": (60.0, 80.0)})

    assert constraints.inputs["current"] == Bound(min=120.0, max=180.0)
    assert constraints.inputs["cooling"] == Bound(min=0.0, max=100.0)
    assert constraints.states == {"temperature": Bound(min=60.0, max=80.0)}


def test_constraints_accept_mappings_of_bounds():
    constraints = Constraints(states={"pressure": {"min": 25.0, "max": 35.0}})

    lower, upper = constraints.state_arrays()
    np.testing.assert_array_equal(lower, [-np.inf, -np.inf, 25.0, -np.inf])
    np.testing.assert_array_equal(upper, [np.inf, np.inf, 35.0, np.inf])


def test_constraints_reject_unknown_names():
    with pytest.raises(ValidationError):
        Constraints.from_mapping({"humidity": (0.0, 1.0)})


def test_clamp_and_tighten_constraints():
    constraints = Constraints.from_mapping({"temperature": (60.0, 80.0)})

    np.testing.assert_allclose(constraints.clamp_inputs([[250.0, -5.0]]), [[200.0, 0.0]])
    tightened = constraints.tightened(0.1, 0.05)
    assert tightened.inputs["current"] == Bound(min=110.0, max=190.0)
    assert tightened.states["temperature"] == Bound(min=61.0, max=79.0)


def test_violation_set_only_counts_violations():
    checks = (
        BoundCheck("temperature", "state", "max", 80.0, True, 2.0, 3),
        BoundCheck("temperature", "state", "min", 60.0, False, 0.0),
        BoundCheck("current", "input", "min", 100.0, True, 5.0, 0),
    )
    violations = ViolationSet(checks)

    assert len(violations) == 2
    assert not violations.is_feasible
    assert violations.max_amount == 5.0
    assert ViolationSet().is_feasible


def test_ranking_lookups():
    failure = StrategyFailure("robust", "RuntimeError", "boom")
    ranking = Ranking(1, (RankingEntry("deterministic", 0.9), RankingEntry("stochastic", 0.8)), (failure,))

    assert ranking.strategy_ids == ["deterministic", "stochastic"]
    assert ranking.best().strategy_id == "deterministic"
    assert ranking.failure_for("robust") is failure
    assert ranking.failure_for("deterministic") is None
    assert Ranking(2, ()).best() is None
