"""Constrained quadratic tracking problem shared by the continuous strategies.

The problem minimizes, over the control sequence u_0..u_{H-1},

    sum_k ||sqrt(Q) (x_{k+1} - r)||^2 + ||sqrt(R) u_k||^2 + ||sqrt(P) (u_k - u_ref_k)||^2

subject to the plant dynamics, the input box and optional hard state bounds.
The P term pulls the controls toward a reference plan (HierarchicalEconomic)
and is zero for the other strategies.

It is solved with CVXPY. When the solver returns no solution, or when the
`projected_gradient` solver is selected, projected gradient descent on the
condensed problem is used instead; it clamps every iterate to the input box
and cannot enforce state bounds.
"""

import os
import time
from dataclasses import dataclass
from typing import Tuple

import cvxpy as cp
import numpy as np
from cvxpy import settings as cp_settings

from electrolyzer_mpc.errors import InfeasibleSolutionError
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)

PROJECTED_GRADIENT = "projected_gradient"
INFEASIBLE_STATUSES = (cp.INFEASIBLE, cp.INFEASIBLE_INACCURATE)


@dataclass(frozen=True, eq=False)
class QPResult:
    control_sequence: np.ndarray
    status: str
    solver: str
    solve_time: float
    iterations: int | None = None


def condensed_dynamics(
    model: PlantModel,
    initial_state: np.ndarray,
    horizon: int,
    disturbances: np.ndarray | None = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Returns `(free, gamma)` such that the stacked states x_1..x_H equal `free + gamma @ vec(u)`.

    `free` is the zero-input response (including the affine offset and the
    disturbances) flattened row by row; `vec(u)` flattens the `(H, m)`
    control sequence row by row.
    """
    A_d, B_d = model.discretize()
    n, m = model.n_states, model.n_inputs
    offset = model.affine_offset()
    disturbances = np.zeros((horizon, n)) if disturbances is None else np.asarray(disturbances, dtype=float)

    free = np.zeros((horizon, n))
    gamma = np.zeros((horizon * n, horizon * m))
    state = np.asarray(initial_state, dtype=float)
    power = np.eye(n)  # A_d^(k - j)
    powers = []
    for k in range(horizon):
        state = A_d @ state + offset + disturbances[k]
        free[k] = state
        powers.append(power)
        power = A_d @ power
    for k in range(horizon):
        for j in range(k + 1):
            gamma[k * n : (k + 1) * n, j * m : (j + 1) * m] = powers[k - j] @ B_d
    return free.reshape(-1), gamma


class TrackingQP:
    """Tracking problem over a fixed horizon with fixed weights and bounds.

    The initial state, the disturbances and the reference plan are passed at
    solve time, so the same instance can be solved for many scenarios.
    """

    def __init__(
        self,
        model: PlantModel,
        horizon: int,
        targets: np.ndarray,
        state_weights: np.ndarray,
        input_weights: np.ndarray,
        input_lower: np.ndarray,
        input_upper: np.ndarray,
        state_lower: np.ndarray | None = None,
        state_upper: np.ndarray | None = None,
        plan_weights: np.ndarray | None = None,
        solver: str = "CLARABEL",
        max_iterations: int = 500,
        tolerance: float = 1e-6,
    ) -> None:
        if horizon < 1:
            raise ValueError(f"Horizon must be at least 1, got {horizon}")
        self.model = model
        self.horizon = horizon
        self.targets = np.asarray(targets, dtype=float)
        self.q = np.asarray(state_weights, dtype=float)
        self.r = np.asarray(input_weights, dtype=float)
        self.p = np.zeros(model.n_inputs) if plan_weights is None else np.asarray(plan_weights, dtype=float)
        self.input_lower = np.asarray(input_lower, dtype=float)
        self.input_upper = np.asarray(input_upper, dtype=float)
        self.state_lower = state_lower
        self.state_upper = state_upper
        self.solver = solver
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self._problem: cp.Problem | None = None

    @property
    def has_state_bounds(self) -> bool:
        bounds = [b for b in (self.state_lower, self.state_upper) if b is not None]
        return any(np.any(np.isfinite(b)) for b in bounds)

    def _build_problem(self) -> cp.Problem:
        """Create the CVXPY formulation, parameterized by initial state, disturbances and plan."""
        H, n, m = self.horizon, self.model.n_states, self.model.n_inputs
        A_d, B_d = self.model.discretize()

        self._x = cp.Variable((H + 1, n), name="states")
        self._u = cp.Variable((H, m), name="controls")
        self._x0 = cp.Parameter(n, name="initial_state")
        self._d = cp.Parameter((H, n), name="disturbances")
        self._u_ref = cp.Parameter((H, m), name="plan")

        offset = np.tile(self.model.affine_offset(), (H, 1))
        constraints = [
            self._x[0] == self._x0,
            self._x[1:] == self._x[:-1] @ A_d.T + self._u @ B_d.T + offset + self._d,
            self._u >= np.tile(self.input_lower, (H, 1)),
            self._u <= np.tile(self.input_upper, (H, 1)),
        ]
        for bounds, is_lower in ((self.state_lower, True), (self.state_upper, False)):
            if bounds is None:
                continue
            for j in np.flatnonzero(np.isfinite(bounds)):
                if is_lower:
                    constraints.append(self._x[1:, j] >= bounds[j])
                else:
                    constraints.append(self._x[1:, j] <= bounds[j])

        tracking = cp.multiply(np.tile(np.sqrt(self.q), (H, 1)), self._x[1:] - np.tile(self.targets, (H, 1)))
        control = cp.multiply(np.tile(np.sqrt(self.r), (H, 1)), self._u)
        plan = cp.multiply(np.tile(np.sqrt(self.p), (H, 1)), self._u - self._u_ref)
        objective = cp.Minimize(cp.sum_squares(tracking) + cp.sum_squares(control) + cp.sum_squares(plan))

        problem = cp.Problem(objective, constraints)
        logger.debug("Tracking QP over %s steps is DCP: %s", H, problem.is_dcp())
        return problem

    def solve(
        self,
        initial_state: np.ndarray,
        disturbances: np.ndarray | None = None,
        reference: np.ndarray | None = None,
        warm_start: np.ndarray | None = None,
    ) -> QPResult:
        """Solves the problem from an initial state.

        Args:
            initial_state: State x_0.
            disturbances: Additive disturbances of x_1..x_H, `(H, n_states)`.
            reference: Plan the P term pulls toward, `(H, n_inputs)`.
            warm_start: Initial guess of the control sequence, `(H, n_inputs)`.

        Returns:
            The optimal control sequence, clamped to the input box.

        Raises:
            InfeasibleSolutionError: If the solver proves infeasibility, or if
                no solution was found and hard state bounds are required.
        """
        H, n, m = self.horizon, self.model.n_states, self.model.n_inputs
        x0 = np.asarray(initial_state, dtype=float)
        d = np.zeros((H, n)) if disturbances is None else np.asarray(disturbances, dtype=float)
        u_ref = np.zeros((H, m)) if reference is None else np.asarray(reference, dtype=float)
        guess = None if warm_start is None else np.clip(warm_start, self.input_lower, self.input_upper)

        if self.solver.lower() == PROJECTED_GRADIENT:
            if self.has_state_bounds:
                raise InfeasibleSolutionError("Projected gradient descent cannot enforce state bounds")
            return self._projected_gradient(x0, d, u_ref, guess)

        if self._problem is None:
            self._problem = self._build_problem()
        self._x0.value = x0
        self._d.value = d
        self._u_ref.value = u_ref
        if guess is not None:
            self._u.value = guess

        start_time = time.time()
        verbose = os.getenv("VERBOSE_SOLVER_LOGS", "false").lower() == "true"
        status = None
        try:
            self._problem.solve(solver=self.solver, verbose=verbose, warm_start=guess is not None)
            status = self._problem.status
        except cp.SolverError as ex:
            logger.warning("Solver %s failed: %s", self.solver, ex)
        solve_time = time.time() - start_time
        logger.debug("The solver took %.4f seconds, status: %s", solve_time, status)

        if status in INFEASIBLE_STATUSES:
            raise InfeasibleSolutionError(f"Tracking QP is {status}")
        if status in cp_settings.SOLUTION_PRESENT and self._u.value is not None:
            controls = np.clip(self._u.value, self.input_lower, self.input_upper)
            return QPResult(control_sequence=controls, status=status, solver=self.solver, solve_time=solve_time)

        if self.has_state_bounds:
            raise InfeasibleSolutionError(f"No solution found with state bounds (status {status})")
        logger.warning("No solution from %s (status %s), falling back to projected gradient", self.solver, status)
        return self._projected_gradient(x0, d, u_ref, guess)

    def _projected_gradient(
        self,
        x0: np.ndarray,
        d: np.ndarray,
        u_ref: np.ndarray,
        guess: np.ndarray | None,
    ) -> QPResult:
        """Projected gradient descent with step 1/L on the condensed problem."""
        H, m = self.horizon, self.model.n_inputs
        start_time = time.time()

        free, gamma = condensed_dynamics(self.model, x0, H, d)
        q = np.tile(self.q, H)
        r = np.tile(self.r, H)
        p = np.tile(self.p, H)
        targets = np.tile(self.targets, H)
        lower = np.tile(self.input_lower, H)
        upper = np.tile(self.input_upper, H)
        ref = u_ref.reshape(-1)

        hessian = 2.0 * (gamma.T @ (q[:, None] * gamma) + np.diag(r + p))
        lipschitz = float(np.max(np.linalg.eigvalsh(hessian)))
        step = 1.0 / lipschitz if lipschitz > 0 else 1.0

        u = (lower + upper) / 2 if guess is None else np.clip(guess.reshape(-1), lower, upper)
        iterations = 0
        converged = False
        for iterations in range(1, self.max_iterations + 1):
            error = free + gamma @ u - targets
            gradient = 2.0 * (gamma.T @ (q * error) + r * u + p * (u - ref))
            projected = np.clip(u - step * gradient, lower, upper)
            mapping_norm = np.linalg.norm(projected - u) / step
            u = projected
            if mapping_norm <= self.tolerance:
                converged = True
                break

        solve_time = time.time() - start_time
        logger.debug("Projected gradient stopped after %s iterations in %.4f seconds", iterations, solve_time)
        return QPResult(
            control_sequence=u.reshape(H, m),
            status="optimal" if converged else "max_iterations",
            solver=PROJECTED_GRADIENT,
            solve_time=solve_time,
            iterations=iterations,
        )
