"""Disturbance scenarios for the Stochastic and Robust strategies.

A scenario holds one additive disturbance row per predicted state, row 0
perturbing the measured initial state, and one multiplicative electricity
price factor per step. All randomness comes from an injected
`numpy.random.Generator`, so a seeded generator reproduces the same scenarios.
"""

import math
from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple

import numpy as np

from electrolyzer_mpc.config import STATE_NAMES, ChannelUncertainty, UncertaintyConfig
from electrolyzer_mpc.errors import ScenarioGenerationFailure
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)

PRICE_CHANNEL = "price"
WEIGHT_TOLERANCE = 1e-6


@dataclass(frozen=True, eq=False)
class Scenario:
    """One weighted disturbance realization.

    Attributes:
        disturbances: Additive disturbances, `(horizon + 1, n_states)`; row k
            is added to the predicted state x_k.
        price_factors: Multiplicative electricity price factors, `(horizon,)`.
        weight: Probability weight of the scenario.
    """

    disturbances: np.ndarray
    price_factors: np.ndarray
    weight: float

    def __post_init__(self) -> None:
        for name in ("disturbances", "price_factors"):
            values = np.array(getattr(self, name), dtype=float)
            values.setflags(write=False)
            object.__setattr__(self, name, values)

    @property
    def horizon(self) -> int:
        return self.price_factors.shape[0]

    @property
    def initial_offset(self) -> np.ndarray:
        return self.disturbances[0]

    @property
    def step_disturbances(self) -> np.ndarray:
        """Disturbances of x_1..x_H, in the layout expected by `HorizonPredictor.predict`."""
        return self.disturbances[1:]


@dataclass(frozen=True, eq=False)
class ScenarioSet:
    """Ordered scenarios whose weights sum to 1."""

    scenarios: Tuple[Scenario, ...]

    def __post_init__(self) -> None:
        if not self.scenarios:
            raise ScenarioGenerationFailure("A scenario set needs at least one scenario")
        total = sum(scenario.weight for scenario in self.scenarios)
        if not math.isclose(total, 1.0, abs_tol=WEIGHT_TOLERANCE):
            raise ScenarioGenerationFailure(f"Scenario weights sum to {total}, expected 1")

    def __len__(self) -> int:
        return len(self.scenarios)

    def __iter__(self) -> Iterator[Scenario]:
        return iter(self.scenarios)

    def __getitem__(self, index: int) -> Scenario:
        return self.scenarios[index]

    @property
    def weights(self) -> np.ndarray:
        return np.array([scenario.weight for scenario in self.scenarios], dtype=float)


class ScenarioGenerator:
    """Builds stochastic and worst-case scenarios from an `UncertaintyConfig`."""

    def __init__(
        self,
        state_names: Sequence[str] = STATE_NAMES,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
    ) -> None:
        """Initializes the generator.

        Args:
            state_names: Names of the model states, in model order.
            rng: Random generator to draw from. Takes precedence over `seed`.
            seed: Seed of a fresh `numpy.random.default_rng` when no `rng` is given.
        """
        self.state_names = list(state_names)
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def generate_stochastic(self, n: int, horizon: int, uncertainty: UncertaintyConfig) -> ScenarioSet:
        """Draws `n` independent scenarios with equal weights normalized to 1.

        Channels are sampled in model state order, then the price channel, so
        a seeded generator always produces the same set.

        Raises:
            ValueError: If `n` or `horizon` is smaller than 1.
            ScenarioGenerationFailure: If the uncertainty configuration is invalid.
        """
        self._check_dimensions(horizon, n)
        self._validate(uncertainty)

        weights = np.full(n, 1.0 / n)
        weights = weights / weights.sum()

        scenarios = []
        for i in range(n):
            disturbances = np.zeros((horizon + 1, len(self.state_names)))
            for column, name in enumerate(self.state_names):
                channel = uncertainty.channels.get(name)
                if channel is not None:
                    disturbances[:, column] = self._draw(channel, horizon + 1)
            price_channel = uncertainty.channels.get(PRICE_CHANNEL)
            price_factors = self._draw(price_channel, horizon) if price_channel is not None else np.ones(horizon)
            self._check_finite(disturbances, price_factors)
            scenarios.append(Scenario(disturbances=disturbances, price_factors=price_factors, weight=float(weights[i])))

        logger.debug("Generated %s stochastic scenarios over %s steps", n, horizon)
        return ScenarioSet(scenarios=tuple(scenarios))

    def generate_worst_case(self, horizon: int, uncertainty: UncertaintyConfig) -> Scenario:
        """Builds the single scenario with the adverse extreme of every channel.

        Uniform channels sit on their adverse bound; normal channels sit
        `worst_case_sigma` standard deviations from the mean on the adverse side.
        No randomness is involved.

        Raises:
            ValueError: If `horizon` is smaller than 1.
            ScenarioGenerationFailure: If the uncertainty configuration is invalid.
        """
        self._check_dimensions(horizon)
        self._validate(uncertainty)

        disturbances = np.zeros((horizon + 1, len(self.state_names)))
        for column, name in enumerate(self.state_names):
            channel = uncertainty.channels.get(name)
            if channel is not None:
                disturbances[:, column] = self._extreme(channel, uncertainty.worst_case_sigma)
        price_channel = uncertainty.channels.get(PRICE_CHANNEL)
        factor = self._extreme(price_channel, uncertainty.worst_case_sigma) if price_channel is not None else 1.0
        price_factors = np.full(horizon, factor)
        self._check_finite(disturbances, price_factors)
        return Scenario(disturbances=disturbances, price_factors=price_factors, weight=1.0)

    @staticmethod
    def _check_dimensions(horizon: int, n: int = 1) -> None:
        if horizon < 1:
            raise ValueError(f"Horizon must be at least 1, got {horizon}")
        if n < 1:
            raise ValueError(f"At least one scenario is needed, got {n}")

    def _validate(self, uncertainty: UncertaintyConfig) -> None:
        known = set(self.state_names) | {PRICE_CHANNEL}
        unknown = set(uncertainty.channels) - known
        if unknown:
            raise ScenarioGenerationFailure(f"Uncertainty channels not in the model: {sorted(unknown)}")
        if not math.isfinite(uncertainty.worst_case_sigma) or uncertainty.worst_case_sigma < 0:
            raise ScenarioGenerationFailure(f"Invalid worst-case sigma: {uncertainty.worst_case_sigma}")
        for name, channel in uncertainty.channels.items():
            values = (channel.low, channel.high, channel.mean, channel.std)
            if not all(math.isfinite(value) for value in values):
                raise ScenarioGenerationFailure(f"Channel {name} has non-finite parameters")
            if channel.distribution == "uniform" and channel.low > channel.high:
                raise ScenarioGenerationFailure(f"Channel {name} has low {channel.low} above high {channel.high}")
            if channel.distribution == "normal" and channel.std < 0:
                raise ScenarioGenerationFailure(f"Channel {name} has negative std {channel.std}")

    def _draw(self, channel: ChannelUncertainty, size: int) -> np.ndarray:
        if channel.distribution == "uniform":
            return self.rng.uniform(channel.low, channel.high, size)
        return self.rng.normal(channel.mean, channel.std, size)

    @staticmethod
    def _extreme(channel: ChannelUncertainty, sigma: float) -> float:
        if channel.distribution == "uniform":
            return channel.high if channel.adverse == "upper" else channel.low
        offset = sigma * channel.std
        return channel.mean + offset if channel.adverse == "upper" else channel.mean - offset

    @staticmethod
    def _check_finite(disturbances: np.ndarray, price_factors: np.ndarray) -> None:
        if not (np.all(np.isfinite(disturbances)) and np.all(np.isfinite(price_factors))):
            raise ScenarioGenerationFailure("Generated scenario contains non-finite values")
