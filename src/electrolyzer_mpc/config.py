"""Configuration of the MPC engine.

All tunables live in pydantic models with working defaults, so
`default_config()` is enough to run every strategy. Configuration files are
YAML documents mirroring the nesting of `MPCConfig`; a handful of settings can
be overridden from the environment:

- `MPC_SOLVER`: name of the cvxpy solver used by the quadratic programs, or
  `projected_gradient` to bypass cvxpy.
- `MPC_STRATEGY_DEADLINE`: default per-strategy deadline in seconds.
"""

import os
from pathlib import Path
from typing import Dict, List, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

STATE_NAMES = ["temperature", "efficiency", "pressure", "purity"]
INPUT_NAMES = ["current", "cooling"]

# Continuous-time dynamics about the operating point, one row per state.
DEFAULT_A = [
    [-0.05, 0.0, 0.0, 0.0],
    [0.02, -0.08, 0.0, 0.0],
    [0.01, 0.0, -0.1, 0.0],
    [-0.001, 0.0, -0.0005, -0.05],
]
DEFAULT_B = [
    [0.02, -0.03],
    [-0.005, 0.0],
    [0.02, 0.0],
    [-0.0002, 0.0],
]
DEFAULT_C = [
    [1.0, 0.0, 0.0, 0.0],
    [0.0, 1.0, 0.0, 0.0],
    [0.0, 0.0, 1.0, 0.0],
]


def default_price_profile() -> List[float]:
    """24-hour electricity price profile in $/kWh, one value per hour of the day."""
    prices = []
    for hour in range(24):
        price = 0.12
        if 7 <= hour <= 19:
            price += 0.04  # Day peak
        if 17 <= hour <= 21:
            price += 0.02  # Evening peak
        if hour <= 6:
            price -= 0.03  # Off-peak
        prices.append(round(price, 4))
    return prices


class PlantConfig(BaseModel):
    """State-space description of the electrolyzer stack."""

    state_names: List[str] = Field(default_factory=lambda: list(STATE_NAMES))
    input_names: List[str] = Field(default_factory=lambda: list(INPUT_NAMES))
    A: List[List[float]] = Field(default_factory=lambda: [row[:] for row in DEFAULT_A])
    B: List[List[float]] = Field(default_factory=lambda: [row[:] for row in DEFAULT_B])
    C: List[List[float]] = Field(default_factory=lambda: [row[:] for row in DEFAULT_C])
    sample_time: float = Field(default=1.0, gt=0)
    discrete: bool = False
    discretization: Literal["euler", "zoh"] = "euler"
    state_operating_point: List[float] = Field(default_factory=lambda: [70.0, 75.0, 30.0, 99.5])
    input_operating_point: List[float] = Field(default_factory=lambda: [150.0, 50.0])


class CostWeights(BaseModel):
    """Diagonal weights of the quadratic tracking cost."""

    state_weights: Dict[str, float] = Field(
        default_factory=lambda: {"temperature": 10.0, "efficiency": 5.0, "pressure": 1.0, "purity": 100.0}
    )
    input_weights: Dict[str, float] = Field(default_factory=lambda: {"current": 1e-4, "cooling": 1e-4})
    economic_weight: float = Field(default=1.0, ge=0)

    @field_validator("state_weights", "input_weights")
    @classmethod
    def _non_negative(cls, weights: Dict[str, float]) -> Dict[str, float]:
        negative = [name for name, value in weights.items() if value < 0]
        if negative:
            raise ValueError(f"Weights must be positive semidefinite, got negative entries for {negative}")
        return weights

    def scaled(self, state_factor: float = 1.0, input_factor: float = 1.0) -> "CostWeights":
        """Returns a copy with every state weight and input weight multiplied by a factor."""
        return CostWeights(
            state_weights={name: value * state_factor for name, value in self.state_weights.items()},
            input_weights={name: value * input_factor for name, value in self.input_weights.items()},
            economic_weight=self.economic_weight,
        )


class EconomicConfig(BaseModel):
    """Market and stack parameters of the economic cost."""

    electricity_price: float = Field(default=0.12, ge=0)  # $/kWh
    price_profile: List[float] = Field(default_factory=default_price_profile)
    open_circuit_voltage: float = Field(default=30.0, gt=0)  # V
    ohmic_resistance: float = Field(default=0.05, ge=0)  # Ohm
    degradation_cost: float = Field(default=5e-4, ge=0)  # $/(A*h)
    production_per_amp_hour: float = Field(default=6e-3, ge=0)  # kg/(A*h)
    product_value: float = Field(default=1.0, ge=0)  # $/kg

    def price_at(self, hour: int) -> float:
        """Electricity price for an hour of the day, falling back to the flat price."""
        if not self.price_profile:
            return self.electricity_price
        return self.price_profile[hour % len(self.price_profile)]


class ChannelUncertainty(BaseModel):
    """Distribution of one disturbance channel.

    `adverse` names the side of the distribution that hurts the process; the
    worst-case scenario sits on that side.
    """

    distribution: Literal["uniform", "normal"] = "uniform"
    low: float = 0.0
    high: float = 0.0
    mean: float = 0.0
    std: float = 0.0
    adverse: Literal["upper", "lower"] = "upper"


def _default_channels() -> Dict[str, ChannelUncertainty]:
    return {
        "temperature": ChannelUncertainty(low=-0.2, high=0.2, adverse="upper"),
        "efficiency": ChannelUncertainty(low=-0.1, high=0.1, adverse="lower"),
        "pressure": ChannelUncertainty(low=-0.1, high=0.1, adverse="upper"),
        "purity": ChannelUncertainty(low=-0.005, high=0.005, adverse="lower"),
        "price": ChannelUncertainty(low=0.9, high=1.1, adverse="upper"),
    }


class UncertaintyConfig(BaseModel):
    """Per-channel disturbance model shared by the Stochastic and Robust strategies.

    State channels are additive per step; the `price` channel is a
    multiplicative factor on the electricity price.
    """

    channels: Dict[str, ChannelUncertainty] = Field(default_factory=_default_channels)
    worst_case_sigma: float = 3.0


class DeterministicConfig(BaseModel):
    solver: str = "CLARABEL"
    max_iterations: int = Field(default=500, ge=1)
    tolerance: float = Field(default=1e-6, gt=0)


class MixedIntegerConfig(BaseModel):
    level_step: float = Field(default=20.0, gt=0)  # A between discrete current levels
    nominal_cooling: float = 50.0


class StochasticConfig(BaseModel):
    n_scenarios: int = Field(default=20, ge=1)
    min_reliability: float = Field(default=0.8, ge=0, le=1)
    risk_quantile: float = Field(default=0.9, gt=0, lt=1)


class RobustConfig(BaseModel):
    state_weight_factor: float = Field(default=1.2, ge=1)
    input_weight_factor: float = Field(default=1.5, ge=1)
    bound_margin: float = Field(default=0.1, ge=0, lt=0.5)


class HierarchicalConfig(BaseModel):
    """Settings of the HierarchicalEconomic strategy.

    The economic horizon lasts `horizon_factor` times the control horizon. Its
    steps are `economic_step_hours` long and aligned on the clock, so the price
    profile is resolved hour by hour whatever the control sample time; the
    first and last steps are cut at the ends of the horizon. With a short
    control horizon the plan is usually a single step, and it only splits when
    the horizon crosses a step boundary.
    """

    horizon_factor: float = Field(default=2.5, ge=1)
    economic_step_hours: float = Field(default=1.0, gt=0)
    golden_tolerance: float = Field(default=1e-3, gt=0)
    confidence_threshold: float = Field(default=0.5, ge=0, le=1)
    plan_weights: Dict[str, float] = Field(default_factory=lambda: {"current": 0.01, "cooling": 0.0})
    bound_margin: float = Field(default=0.1, ge=0, lt=0.5)
    state_margin: float = Field(default=0.05, ge=0, lt=0.5)


class ComparatorConfig(BaseModel):
    score_weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "efficiency": 0.25,
            "cost": 0.25,
            "computation_time": 0.15,
            "stability": 0.20,
            "constraint_violations": 0.15,
        }
    )
    history_size: int = Field(default=100, ge=1)
    deadline: float = Field(default=10.0, gt=0)  # seconds
    deadlines: Dict[str, float] = Field(default_factory=dict)
    max_workers: int | None = None
    stability_scale: float = Field(default=10.0, gt=0)

    @field_validator("score_weights")
    @classmethod
    def _known_metrics(cls, weights: Dict[str, float]) -> Dict[str, float]:
        known = {"efficiency", "cost", "computation_time", "stability", "constraint_violations"}
        unknown = set(weights) - known
        if unknown:
            raise ValueError(f"Unknown score weights: {sorted(unknown)}")
        return weights


class MPCConfig(BaseModel):
    """Root configuration object."""

    horizon: int = Field(default=10, ge=1)
    seed: int | None = None
    plant: PlantConfig = Field(default_factory=PlantConfig)
    weights: CostWeights = Field(default_factory=CostWeights)
    economic: EconomicConfig = Field(default_factory=EconomicConfig)
    uncertainty: UncertaintyConfig = Field(default_factory=UncertaintyConfig)
    deterministic: DeterministicConfig = Field(default_factory=DeterministicConfig)
    mixed_integer: MixedIntegerConfig = Field(default_factory=MixedIntegerConfig)
    stochastic: StochasticConfig = Field(default_factory=StochasticConfig)
    robust: RobustConfig = Field(default_factory=RobustConfig)
    hierarchical: HierarchicalConfig = Field(default_factory=HierarchicalConfig)
    comparator: ComparatorConfig = Field(default_factory=ComparatorConfig)

    @model_validator(mode="after")
    def _weights_match_plant(self) -> "MPCConfig":
        unknown_states = set(self.weights.state_weights) - set(self.plant.state_names)
        unknown_inputs = set(self.weights.input_weights) - set(self.plant.input_names)
        if unknown_states or unknown_inputs:
            raise ValueError(
                f"Cost weights reference unknown variables: {sorted(unknown_states | unknown_inputs)}"
            )
        return self


def apply_env_overrides(config: MPCConfig) -> MPCConfig:
    """Applies the `MPC_SOLVER` and `MPC_STRATEGY_DEADLINE` environment overrides."""
    solver = os.getenv("MPC_SOLVER")
    if solver:
        config = config.model_copy(
            update={"deterministic": config.deterministic.model_copy(update={"solver": solver})}
        )
    deadline = os.getenv("MPC_STRATEGY_DEADLINE")
    if deadline:
        config = config.model_copy(
            update={"comparator": config.comparator.model_copy(update={"deadline": float(deadline)})}
        )
    return config


def load_config(path: str | Path) -> MPCConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        The parsed `MPCConfig`, with environment overrides applied.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f)

    return apply_env_overrides(MPCConfig.model_validate(data or {}))


def default_config() -> MPCConfig:
    """Return the default configuration, with environment overrides applied."""
    return apply_env_overrides(MPCConfig())
