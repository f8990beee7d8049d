"""Forward simulation of a control sequence over the prediction horizon."""

import numpy as np

from electrolyzer_mpc.errors import DivergenceError
from electrolyzer_mpc.model.plant_model import PlantModel


def hold_sequence(control_sequence: np.ndarray, horizon: int, n_inputs: int) -> np.ndarray:
    """Returns a `(horizon, n_inputs)` control sequence.

    A single control vector is held for the whole horizon; a sequence shorter
    than the horizon holds its last row (zero-order hold); a longer one is
    truncated.
    """
    if horizon < 1:
        raise ValueError(f"Horizon must be at least 1, got {horizon}")
    sequence = np.atleast_2d(np.asarray(control_sequence, dtype=float))
    if sequence.size == 0:
        raise ValueError("Control sequence is empty")
    if sequence.shape[1] != n_inputs:
        if sequence.shape[0] == n_inputs and sequence.shape[1] == 1:
            sequence = sequence.T
        else:
            raise ValueError(f"Control sequence must have {n_inputs} columns, got shape {sequence.shape}")
    if sequence.shape[0] >= horizon:
        return sequence[:horizon].copy()
    padding = np.repeat(sequence[-1:], horizon - sequence.shape[0], axis=0)
    return np.vstack([sequence, padding])


class HorizonPredictor:
    """Rolls control sequences forward through a `PlantModel`."""

    def __init__(self, model: PlantModel) -> None:
        self.model = model

    def predict(
        self,
        initial_state: np.ndarray,
        control_sequence: np.ndarray,
        horizon: int,
        disturbances: np.ndarray | None = None,
    ) -> np.ndarray:
        """Predicts the state trajectory produced by a control sequence.

        Args:
            initial_state: State vector at step 0.
            control_sequence: Controls, one row per step (zero-order hold past its end).
            horizon: Number of steps to predict.
            disturbances: Optional additive disturbances, row k added to the
                state at step k+1. Missing rows count as zero.

        Returns:
            A `(horizon + 1, n_states)` array whose first row is `initial_state`.

        Raises:
            DivergenceError: If any predicted component is not finite.
        """
        controls = hold_sequence(control_sequence, horizon, self.model.n_inputs)
        offsets = self._disturbance_rows(disturbances, horizon)

        trajectory = np.empty((horizon + 1, self.model.n_states))
        trajectory[0] = np.asarray(initial_state, dtype=float)
        if not np.all(np.isfinite(trajectory[0])):
            raise DivergenceError("Initial state is not finite", step=0)

        with np.errstate(over="ignore", invalid="ignore"):
            for k in range(horizon):
                trajectory[k + 1] = self.model.step(trajectory[k], controls[k]) + offsets[k]
                if not np.all(np.isfinite(trajectory[k + 1])):
                    raise DivergenceError(f"Predicted trajectory diverged at step {k + 1}", step=k + 1)
        return trajectory

    def _disturbance_rows(self, disturbances: np.ndarray | None, horizon: int) -> np.ndarray:
        rows = np.zeros((horizon, self.model.n_states))
        if disturbances is None:
            return rows
        values = np.atleast_2d(np.asarray(disturbances, dtype=float))
        if values.shape[1] != self.model.n_states:
            raise ValueError(f"Disturbances must have {self.model.n_states} columns, got shape {values.shape}")
        count = min(horizon, values.shape[0])
        rows[:count] = values[:count]
        return rows
