import time
from typing import Sequence

import cvxpy as cp
import numpy as np
import pandas as pd
from cvxpy import settings as cp_settings

from electrolyzer_mpc.config import INPUT_NAMES, STATE_NAMES
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)


class PlantIdentifier:
    """Learns a discrete-time plant model from logged telemetry.

    The identification problem is a regularized least-squares fit of the
    deviations around the data mean, solved with CVXPY.
    """

    def __init__(
        self,
        state_names: Sequence[str] = STATE_NAMES,
        input_names: Sequence[str] = INPUT_NAMES,
        regularization: Sequence[float] = (1e-3, 1e-3),
        stability_bound: float = 0.9995,
        verbose: bool = False,
    ) -> None:
        self.state_names = list(state_names)
        self.input_names = list(input_names)
        self.regularization = regularization
        self.stability_bound = stability_bound
        self.verbose = verbose

    def identify(self, frame: pd.DataFrame, sample_time: float = 1.0) -> PlantModel | None:
        """Identifies the discrete matrices of the electrolyzer dynamics.

        1.  Objective:
            ..  math::
                J = ||A_d dX + B_d dU + c - dY||_2^2 + la ||A_d||_2 + lb ||B_d||_2

            Where dX, dU are the state and input samples minus their mean, dY
            are the state samples one step later minus the state mean and c is
            a constant offset, folded into the state operating point.

        2.  Constraints:
            ..  math::
                diag(A_d) <= 0.9995

        Args:
            frame: Telemetry sampled every `sample_time` seconds, one column per
                state and input name, one row per sample (in time order).
            sample_time: Sampling period of the telemetry in seconds.

        Returns:
            A discrete `PlantModel` linearized about the identified
            equilibrium, or None if the optimization problem fails to solve or
            the identified dynamics have no equilibrium.

        Raises:
            ValueError: If columns are missing or there are not enough samples.
        """
        missing = [name for name in self.state_names + self.input_names if name not in frame.columns]
        if missing:
            raise ValueError(f"Telemetry is missing columns: {missing}")

        data = frame[self.state_names + self.input_names].dropna().astype(float)
        if len(data) < 3:
            raise ValueError(f"At least 3 complete samples are needed, got {len(data)}")

        states = data[self.state_names]
        inputs = data[self.input_names]
        state_mean = states.mean().to_numpy()
        input_mean = inputs.mean().to_numpy()

        # Samples as columns
        X = (states.iloc[:-1].to_numpy() - state_mean).T  # All values except the last one
        Y = (states.iloc[1:].to_numpy() - state_mean).T  # All values except the first one
        U = (inputs.iloc[:-1].to_numpy() - input_mean).T

        n = X.shape[0]
        m = U.shape[0]
        A_d = cp.Variable((n, n), name="learning_state_matrix")
        B_d = cp.Variable((n, m), name="learning_input_matrix")
        offset = cp.Variable((n, 1), name="learning_offset")
        ones = np.ones((1, X.shape[1]))

        constraints = [cp.diag(A_d) <= self.stability_bound]
        la, lb = self.regularization
        objective = cp.Minimize(
            cp.sum_squares(A_d @ X + B_d @ U + offset @ ones - Y) + la * cp.pnorm(A_d, p=2) + lb * cp.pnorm(B_d, p=2)
        )
        problem = cp.Problem(objective, constraints)

        start_time = time.time()
        problem.solve(solver=cp.SCS, verbose=self.verbose)
        logger.info("Identifying the plant model took %.2f seconds", time.time() - start_time)

        if problem.status not in cp_settings.SOLUTION_PRESENT or A_d.value is None:
            logger.warning("Plant identification failed with status %s! Returning none!", problem.status)
            return None

        # Equilibrium state at the mean input: (I - A_d)(x_op - mean) = c
        try:
            shift = np.linalg.solve(np.eye(n) - A_d.value, offset.value.ravel())
        except np.linalg.LinAlgError:
            logger.warning("Identified dynamics have no equilibrium! Returning none!")
            return None

        logger.debug("Identified plant from %s samples", X.shape[1])
        return PlantModel(
            A_d.value,
            B_d.value,
            sample_time=sample_time,
            discrete=True,
            state_names=self.state_names,
            input_names=self.input_names,
            state_operating_point=state_mean + shift,
            input_operating_point=input_mean,
        )
