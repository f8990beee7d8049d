"""Discrete-time state-space model of the electrolyzer stack.

The model is linear about an operating point `(x_op, u_op)`:

    x[k+1] = x_op + A_d (x[k] - x_op) + B_d (u[k] - u_op)

With the default zero operating point this is the plain `A_d x + B_d u`
propagation. Matrices are validated and discretized once at construction;
afterwards the model is never mutated.
"""

from typing import Sequence, Tuple

import numpy as np
from scipy.linalg import expm

from electrolyzer_mpc.config import PlantConfig
from electrolyzer_mpc.errors import ModelShapeError
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)


def _as_matrix(name: str, values: object) -> np.ndarray:
    try:
        matrix = np.array(values, dtype=float)
    except (TypeError, ValueError) as ex:
        raise ModelShapeError(f"Matrix {name} is not numeric: {ex}") from ex
    if matrix.ndim != 2 or 0 in matrix.shape:
        raise ModelShapeError(f"Matrix {name} must be a non-empty 2-D array, got shape {matrix.shape}")
    if not np.all(np.isfinite(matrix)):
        raise ModelShapeError(f"Matrix {name} contains non-finite entries")
    return matrix


class PlantModel:
    """State-space plant with state matrix A, input matrix B, output matrix C and sample time Ts."""

    def __init__(
        self,
        A: Sequence[Sequence[float]],
        B: Sequence[Sequence[float]],
        C: Sequence[Sequence[float]] | None = None,
        sample_time: float = 1.0,
        discrete: bool = False,
        method: str = "euler",
        state_names: Sequence[str] | None = None,
        input_names: Sequence[str] | None = None,
        state_operating_point: Sequence[float] | None = None,
        input_operating_point: Sequence[float] | None = None,
    ) -> None:
        """Validates the matrices and computes the discrete form.

        Args:
            A: State matrix (n x n), continuous-time unless `discrete` is set.
            B: Input matrix (n x m).
            C: Output matrix (p x n); identity when omitted.
            sample_time: Sample time Ts in seconds.
            discrete: True when A and B are already in discrete form.
            method: Discretization method, "euler" or "zoh".
            state_names: Names of the n states.
            input_names: Names of the m inputs.
            state_operating_point: Linearization point of the states.
            input_operating_point: Linearization point of the inputs.

        Raises:
            ModelShapeError: If any matrix, name list or operating point has
                an inconsistent shape.
        """
        self.A = _as_matrix("A", A)
        self.B = _as_matrix("B", B)
        n = self.A.shape[0]
        if self.A.shape != (n, n):
            raise ModelShapeError(f"A must be square, got shape {self.A.shape}")
        if self.B.shape[0] != n:
            raise ModelShapeError(f"B must have {n} rows to match A, got shape {self.B.shape}")
        m = self.B.shape[1]
        self.C = np.eye(n) if C is None else _as_matrix("C", C)
        if self.C.shape[1] != n:
            raise ModelShapeError(f"C must have {n} columns to match A, got shape {self.C.shape}")
        if not sample_time > 0:
            raise ModelShapeError(f"Sample time must be positive, got {sample_time}")
        if method not in ("euler", "zoh"):
            raise ModelShapeError(f"Unknown discretization method: {method}")

        self.sample_time = float(sample_time)
        self.discrete = discrete
        self.method = method
        self.state_names = tuple(state_names) if state_names is not None else tuple(f"x{i}" for i in range(n))
        self.input_names = tuple(input_names) if input_names is not None else tuple(f"u{i}" for i in range(m))
        if len(self.state_names) != n or len(self.input_names) != m:
            raise ModelShapeError(
                f"Expected {n} state names and {m} input names, got "
                f"{len(self.state_names)} and {len(self.input_names)}"
            )
        self.state_operating_point = self._operating_point("state", state_operating_point, n)
        self.input_operating_point = self._operating_point("input", input_operating_point, m)

        self._A_d, self._B_d = self._discretize()
        self._A_d.setflags(write=False)
        self._B_d.setflags(write=False)
        logger.debug("Plant model ready with %s states and %s inputs (Ts=%s s)", n, m, self.sample_time)

    @classmethod
    def from_config(cls, config: PlantConfig) -> "PlantModel":
        """Builds the plant described by a `PlantConfig`."""
        return cls(
            config.A,
            config.B,
            config.C,
            sample_time=config.sample_time,
            discrete=config.discrete,
            method=config.discretization,
            state_names=config.state_names,
            input_names=config.input_names,
            state_operating_point=config.state_operating_point,
            input_operating_point=config.input_operating_point,
        )

    @staticmethod
    def _operating_point(kind: str, values: Sequence[float] | None, size: int) -> np.ndarray:
        if values is None:
            return np.zeros(size)
        point = np.array(values, dtype=float)
        if point.shape != (size,) or not np.all(np.isfinite(point)):
            raise ModelShapeError(f"The {kind} operating point must hold {size} finite values, got {values}")
        return point

    @property
    def n_states(self) -> int:
        return self.A.shape[0]

    @property
    def n_inputs(self) -> int:
        return self.B.shape[1]

    def _discretize(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.discrete:
            return self.A.copy(), self.B.copy()
        n, m = self.n_states, self.n_inputs
        if self.method == "euler":
            return np.eye(n) + self.A * self.sample_time, self.B * self.sample_time
        # Exact zero-order hold through the augmented matrix exponential
        augmented = np.zeros((n + m, n + m))
        augmented[:n, :n] = self.A
        augmented[:n, n:] = self.B
        phi = expm(augmented * self.sample_time)
        return phi[:n, :n], phi[:n, n:]

    def discretize(self) -> Tuple[np.ndarray, np.ndarray]:
        """Returns the discrete pair `(A_d, B_d)`; A and B unchanged if the model is already discrete."""
        return self._A_d, self._B_d

    def affine_offset(self) -> np.ndarray:
        """Constant term `c` of `x[k+1] = A_d x[k] + B_d u[k] + c`."""
        x_op, u_op = self.state_operating_point, self.input_operating_point
        return x_op - self._A_d @ x_op - self._B_d @ u_op

    def step(self, state: np.ndarray, control: np.ndarray) -> np.ndarray:
        """One-step propagation of the state under a control vector."""
        state = np.asarray(state, dtype=float)
        control = np.asarray(control, dtype=float)
        if state.shape != (self.n_states,) or control.shape != (self.n_inputs,):
            raise ModelShapeError(
                f"Expected state of shape ({self.n_states},) and control of shape ({self.n_inputs},), "
                f"got {state.shape} and {control.shape}"
            )
        return (
            self.state_operating_point
            + self._A_d @ (state - self.state_operating_point)
            + self._B_d @ (control - self.input_operating_point)
        )

    def output(self, state: np.ndarray) -> np.ndarray:
        """Measured outputs `C x` of a state vector."""
        return self.C @ np.asarray(state, dtype=float)

    def state_index(self, name: str) -> int:
        return self.state_names.index(name)

    def input_index(self, name: str) -> int:
        return self.input_names.index(name)
