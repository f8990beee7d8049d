"""Tests for the horizon predictor."""

import numpy as np
import pytest

from electrolyzer_mpc.errors import DivergenceError
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.model.predictor import HorizonPredictor, hold_sequence


@pytest.fixture
def predictor(model):
    return HorizonPredictor(model)


@pytest.fixture
def x0(example_state, model):
    return example_state.vector(model.state_names)


@pytest.mark.parametrize("horizon", [1, 5, 10, 30])
def test_trajectory_length(predictor, x0, horizon):
    trajectory = predictor.predict(x0, np.array([[150.0, 50.0]]), horizon)

    assert trajectory.shape == (horizon + 1, 4)
    np.testing.assert_array_equal(trajectory[0], x0)


def test_trajectory_follows_the_plant(predictor, model, x0):
    controls = np.array([[120.0, 10.0], [180.0, 90.0], [150.0, 50.0]])
    trajectory = predictor.predict(x0, controls, 3)

    state = x0
    for k in range(3):
        state = model.step(state, controls[k])
        np.testing.assert_allclose(trajectory[k + 1], state)


def test_short_sequence_holds_last_control(predictor, x0):
    """A sequence shorter than the horizon holds its last control (zero-order hold)."""
    short = np.array([[120.0, 20.0], [160.0, 40.0]])
    padded = np.array([[120.0, 20.0]] + [[160.0, 40.0]] * 5)

    np.testing.assert_allclose(predictor.predict(x0, short, 6), predictor.predict(x0, padded, 6))


def test_single_control_vector_is_held(predictor, x0):
    single = np.array([170.0, 30.0])
    repeated = np.tile(single, (4, 1))

    np.testing.assert_allclose(predictor.predict(x0, single, 4), predictor.predict(x0, repeated, 4))


def test_long_sequence_is_truncated(predictor, x0):
    controls = np.tile([150.0, 50.0], (20, 1))

    assert predictor.predict(x0, controls, 5).shape == (6, 4)


def test_disturbances_are_added_to_next_state(predictor, model, x0):
    controls = np.array([[150.0, 50.0]])
    disturbances = np.array([[1.0, 0.0, 0.0, 0.0], [0.0, -1.0, 0.0, 0.0]])
    trajectory = predictor.predict(x0, controls, 2, disturbances=disturbances)

    first = model.step(x0, controls[0]) + disturbances[0]
    second = model.step(first, controls[0]) + disturbances[1]
    np.testing.assert_allclose(trajectory[1], first)
    np.testing.assert_allclose(trajectory[2], second)


def test_prediction_is_deterministic(predictor, x0):
    controls = np.array([[130.0, 25.0], [190.0, 75.0]])

    np.testing.assert_array_equal(predictor.predict(x0, controls, 8), predictor.predict(x0, controls, 8))


def test_divergence_is_reported_with_step():
    model = PlantModel([[1e300]], [[0.0]], discrete=True)
    predictor = HorizonPredictor(model)

    with pytest.raises(DivergenceError) as excinfo:
        predictor.predict(np.array([1e10]), np.array([[0.0]]), 5)

    assert excinfo.value.step == 1


def test_hold_sequence_rejects_empty_horizon():
    with pytest.raises(ValueError):
        hold_sequence(np.array([[1.0, 2.0]]), 0, 2)


def test_hold_sequence_rejects_wrong_width():
    with pytest.raises(ValueError):
        hold_sequence(np.array([[1.0, 2.0, 3.0]]), 3, 2)
