from typing import Tuple

import numpy as np

from electrolyzer_mpc.config import CostWeights, EconomicConfig
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.records import BoundCheck, Constraints, CostBreakdown, Setpoints, ViolationSet
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)

# Violations smaller than this are solver noise
VIOLATION_TOLERANCE = 1e-6


class CostEvaluator:
    """Computes costs and constraint checks over a predicted trajectory.

    All costs are quantities to minimize. The economic cost is expressed in $
    over the horizon; the tracking cost is dimensionless.
    """

    def __init__(self, model: PlantModel, economic: EconomicConfig | None = None) -> None:
        self.model = model
        self.economic = economic or EconomicConfig()

    def state_weights(self, setpoints: Setpoints, weights: CostWeights) -> Tuple[np.ndarray, np.ndarray]:
        """Returns the tracking targets and the diagonal of Q in state order.

        States without a setpoint get a zero weight (and a zero target).
        """
        targets = setpoints.vector(self.model.state_names)
        q = np.array([weights.state_weights.get(name, 0.0) for name in self.model.state_names], dtype=float)
        missing = np.isnan(targets)
        q[missing] = 0.0
        targets[missing] = 0.0
        return targets, q

    def input_weights(self, weights: CostWeights) -> np.ndarray:
        """Returns the diagonal of R in input order."""
        return np.array([weights.input_weights.get(name, 0.0) for name in self.model.input_names], dtype=float)

    def tracking_terms(
        self,
        trajectory: np.ndarray,
        control_sequence: np.ndarray,
        setpoints: Setpoints,
        weights: CostWeights,
    ) -> Tuple[float, float]:
        """Returns the `(state error, control)` parts of the quadratic tracking cost.

        The state error is summed over x_1..x_H and the control term over
        u_0..u_{H-1}, with absolute control values.
        """
        targets, q = self.state_weights(setpoints, weights)
        r = self.input_weights(weights)
        errors = np.asarray(trajectory, dtype=float)[1:] - targets
        controls = np.asarray(control_sequence, dtype=float)
        with np.errstate(over="ignore", invalid="ignore"):
            state_term = float(np.sum(errors**2 * q))
            control_term = float(np.sum(controls**2 * r))
        return state_term, control_term

    def operating_cost_rate(self, current: float | np.ndarray, price: float | np.ndarray) -> float | np.ndarray:
        """Energy plus degradation cost in $/h at a stack current and an electricity price.

        Energy cost uses the stack voltage model V(I) = V0 + r*I; degradation
        is proportional to |I|.
        """
        eco = self.economic
        current = np.asarray(current, dtype=float)
        power_kw = current * (eco.open_circuit_voltage + eco.ohmic_resistance * current) / 1000.0
        rate = power_kw * price + eco.degradation_cost * np.abs(current)
        return float(rate) if rate.ndim == 0 else rate

    def production_value_rate(self, current: float | np.ndarray) -> float | np.ndarray:
        """Market value in $/h of the hydrogen produced at a stack current."""
        rate = self.economic.production_per_amp_hour * self.economic.product_value * np.asarray(current, dtype=float)
        return float(rate) if rate.ndim == 0 else rate

    def economic_rate(self, current: float | np.ndarray, price: float | np.ndarray) -> float | np.ndarray:
        """Net economic rate in $/h: operating cost minus production value."""
        return self.operating_cost_rate(current, price) - self.production_value_rate(current)

    def economic_cost(self, control_sequence: np.ndarray, prices: float | np.ndarray | None = None) -> float:
        """Economic cost in $ of a control sequence, one sample time per step."""
        controls = np.atleast_2d(np.asarray(control_sequence, dtype=float))
        currents = controls[:, self.model.input_index("current")]
        step_prices = self._step_prices(prices, len(currents))
        with np.errstate(over="ignore", invalid="ignore"):
            rates = self.economic_rate(currents, step_prices)
            return float(np.sum(rates) * self.model.sample_time / 3600.0)

    def _step_prices(self, prices: float | np.ndarray | None, steps: int) -> np.ndarray:
        if prices is None:
            return np.full(steps, self.economic.electricity_price)
        values = np.atleast_1d(np.asarray(prices, dtype=float))
        if values.size == 1:
            return np.full(steps, values[0])
        if values.size < steps:
            # Hold the last known price
            values = np.concatenate([values, np.full(steps - values.size, values[-1])])
        return values[:steps]

    def evaluate(
        self,
        trajectory: np.ndarray,
        control_sequence: np.ndarray,
        setpoints: Setpoints,
        weights: CostWeights,
        prices: float | np.ndarray | None = None,
    ) -> CostBreakdown:
        """Computes the cost breakdown of a trajectory/control pair.

        Args:
            trajectory: Predicted states, `(horizon + 1, n_states)`.
            control_sequence: Controls, `(horizon, n_inputs)`.
            setpoints: Tracking targets.
            weights: Diagonal Q, R and the economic weight.
            prices: Electricity price per step in $/kWh (scalar or one value
                per step); the flat configured price when omitted.

        Returns:
            The `CostBreakdown`. `tracking` includes the control term and
            `total = tracking + economic_weight * economic`.
        """
        state_term, control_term = self.tracking_terms(trajectory, control_sequence, setpoints, weights)
        tracking = state_term + control_term
        economic = self.economic_cost(control_sequence, prices)
        total = tracking + weights.economic_weight * economic
        breakdown = CostBreakdown(tracking=tracking, control=control_term, economic=economic, total=total)
        if not breakdown.is_finite:
            logger.debug("Non-finite cost breakdown: %s", breakdown)
        return breakdown

    def check_constraints(
        self,
        trajectory: np.ndarray,
        control_sequence: np.ndarray,
        constraints: Constraints,
    ) -> ViolationSet:
        """Checks every input bound over the controls and every state bound over x_1..x_H.

        The initial state is a measurement and is not checked.
        """
        checks = []
        controls = np.atleast_2d(np.asarray(control_sequence, dtype=float))
        for name, bound in constraints.inputs.items():
            if name in self.model.input_names:
                series = controls[:, self.model.input_index(name)]
                checks.extend(self._check_series(name, "input", series, bound.min, bound.max))

        states = np.asarray(trajectory, dtype=float)[1:]
        for name, bound in constraints.states.items():
            if name in self.model.state_names:
                series = states[:, self.model.state_index(name)]
                checks.extend(self._check_series(name, "state", series, bound.min, bound.max, offset=1))
        return ViolationSet(checks=tuple(checks))

    @staticmethod
    def _check_series(
        name: str, kind: str, series: np.ndarray, lower: float, upper: float, offset: int = 0
    ) -> Tuple[BoundCheck, ...]:
        results = []
        for side, limit, sign in (("min", lower, -1.0), ("max", upper, 1.0)):
            if not np.isfinite(limit):
                continue
            excess = sign * (series - limit)
            # Non-finite samples count as violations
            excess = np.where(np.isfinite(excess), excess, np.inf)
            violating = np.flatnonzero(excess > VIOLATION_TOLERANCE)
            amount = float(max(np.max(excess), 0.0)) if series.size else 0.0
            results.append(
                BoundCheck(
                    name=name,
                    kind=kind,
                    side=side,
                    limit=float(limit),
                    violated=violating.size > 0,
                    amount=amount if violating.size else 0.0,
                    first_step=int(violating[0]) + offset if violating.size else None,
                )
            )
        return tuple(results)
