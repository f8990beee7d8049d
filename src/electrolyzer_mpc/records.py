"""Data records exchanged between the MPC engine and its collaborators.

Inbound records (`SystemState`, `Setpoints`, `Bound`, `Constraints`) are frozen
pydantic models validated at construction: a malformed snapshot never reaches
a strategy. Outbound records (`CostBreakdown`, `ControlDecision`,
`PerformanceMetrics`, `Ranking`, ...) are frozen dataclasses holding read-only
numpy arrays.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from electrolyzer_mpc.config import INPUT_NAMES, STATE_NAMES

DEFAULT_INPUT_BOUNDS: Dict[str, Tuple[float, float]] = {
    "current": (100.0, 200.0),  # A
    "cooling": (0.0, 100.0),  # %
}


def _read_only(array: Any) -> np.ndarray:
    values = np.array(array, dtype=float)
    values.setflags(write=False)
    return values


class SystemState(BaseModel):
    """Snapshot of the electrolyzer process captured by the telemetry layer.

    Attributes:
        temperature: Stack temperature in degC.
        efficiency: Stack efficiency in %.
        pressure: Hydrogen outlet pressure in bar.
        current: Measured stack current in A.
        voltage: Measured stack voltage in V.
        purity: Oxygen purity in %.
        timestamp: Capture time (timezone-aware).
    """

    model_config = ConfigDict(frozen=True)

    # Physical ranges of the sensors; anything outside is a faulty reading
    temperature: float = Field(ge=-50.0, le=200.0)
    efficiency: float = Field(ge=0.0, le=100.0)
    pressure: float = Field(ge=0.0, le=1000.0)
    current: float = Field(ge=0.0, le=10000.0)
    voltage: float = Field(default=38.0, ge=0.0, le=1000.0)
    purity: float = Field(default=99.5, ge=0.0, le=100.0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now().astimezone())

    @field_validator("temperature", "efficiency", "pressure", "current", "voltage", "purity")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("process variables must be finite")
        return value

    def value(self, name: str) -> float:
        """Returns a process variable by name."""
        if name not in type(self).model_fields or name == "timestamp":
            raise KeyError(f"Unknown process variable: {name}")
        return float(getattr(self, name))

    def vector(self, names: Sequence[str] = STATE_NAMES) -> np.ndarray:
        """Projects the snapshot onto an ordered list of variable names."""
        return np.array([self.value(name) for name in names], dtype=float)


class Setpoints(BaseModel):
    """Target values for a subset of the state variables."""

    model_config = ConfigDict(frozen=True)

    temperature: float | None = None
    efficiency: float | None = None
    pressure: float | None = None
    purity: float | None = None

    @field_validator("temperature", "efficiency", "pressure", "purity")
    @classmethod
    def _finite(cls, value: float | None) -> float | None:
        if value is not None and not math.isfinite(value):
            raise ValueError("setpoints must be finite")
        return value

    def as_dict(self) -> Dict[str, float]:
        """Returns only the targets that are set."""
        return {name: value for name, value in self.model_dump().items() if value is not None}

    def vector(self, names: Sequence[str] = STATE_NAMES) -> np.ndarray:
        """Targets in state order, NaN where no target is set."""
        targets = self.as_dict()
        return np.array([targets.get(name, np.nan) for name in names], dtype=float)


class Bound(BaseModel):
    """Closed interval `[min, max]` on one variable."""

    model_config = ConfigDict(frozen=True)

    min: float
    max: float

    @model_validator(mode="after")
    def _ordered(self) -> "Bound":
        if math.isnan(self.min) or math.isnan(self.max) or self.min > self.max:
            raise ValueError(f"Invalid bound [{self.min}, {self.max}]")
        return self

    @property
    def width(self) -> float:
        return self.max - self.min

    def clamp(self, value: float) -> float:
        return float(min(max(value, self.min), self.max))

    def nearest(self, value: float) -> float:
        """Returns whichever end of the interval is closest to `value`."""
        return self.min if abs(value - self.min) <= abs(self.max - value) else self.max

    def tightened(self, fraction: float) -> "Bound":
        """Shrinks the interval by `fraction` of its width on each side."""
        if not math.isfinite(self.width):
            return self
        margin = fraction * self.width
        return Bound(min=self.min + margin, max=self.max - margin)


def _as_bound(value: Any) -> Bound:
    if isinstance(value, Bound):
        return value
    if isinstance(value, Mapping):
        return Bound(min=value["min"], max=value["max"])
    lower, upper = value
    return Bound(min=lower, max=upper)


class Constraints(BaseModel):
    """Operating constraints, split into input bounds and state safety bounds.

    Input bounds that are not provided fall back to `DEFAULT_INPUT_BOUNDS`, so
    every input of the plant is always bounded.
    """

    model_config = ConfigDict(frozen=True)

    inputs: Dict[str, Bound] = Field(default_factory=dict)
    states: Dict[str, Bound] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_input_defaults(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            data = dict(data)
            inputs = {name: _as_bound(bound) for name, bound in (data.get("inputs") or {}).items()}
            for name, default in DEFAULT_INPUT_BOUNDS.items():
                inputs.setdefault(name, _as_bound(default))
            data["inputs"] = inputs
            data["states"] = {name: _as_bound(bound) for name, bound in (data.get("states") or {}).items()}
        return data

    @model_validator(mode="after")
    def _known_names(self) -> "Constraints":
        unknown = (set(self.inputs) - set(INPUT_NAMES)) | (set(self.states) - set(STATE_NAMES))
        if unknown:
            raise ValueError(f"Constraints reference unknown variables: {sorted(unknown)}")
        return self

    @classmethod
    def from_mapping(cls, bounds: Mapping[str, Any]) -> "Constraints":
        """Builds constraints from a flat `name -> (min, max)` mapping.

        Names of plant inputs become input constraints, every other name a
        state constraint.
        """
        inputs = {name: value for name, value in bounds.items() if name in INPUT_NAMES}
        states = {name: value for name, value in bounds.items() if name not in INPUT_NAMES}
        return cls(inputs=inputs, states=states)

    def input_arrays(self, names: Sequence[str] = INPUT_NAMES) -> Tuple[np.ndarray, np.ndarray]:
        """Lower and upper input bounds in input order."""
        lower = np.array([self.inputs[name].min for name in names], dtype=float)
        upper = np.array([self.inputs[name].max for name in names], dtype=float)
        return lower, upper

    def state_arrays(self, names: Sequence[str] = STATE_NAMES) -> Tuple[np.ndarray, np.ndarray]:
        """Lower and upper state bounds in state order, infinite where unbounded."""
        lower = np.array([self.states[n].min if n in self.states else -np.inf for n in names], dtype=float)
        upper = np.array([self.states[n].max if n in self.states else np.inf for n in names], dtype=float)
        return lower, upper

    def clamp_inputs(self, controls: np.ndarray, names: Sequence[str] = INPUT_NAMES) -> np.ndarray:
        """Clamps a control vector or sequence (last axis in input order) to the input bounds."""
        lower, upper = self.input_arrays(names)
        return np.clip(np.asarray(controls, dtype=float), lower, upper)

    def tightened(self, input_margin: float = 0.0, state_margin: float = 0.0) -> "Constraints":
        """Returns safety-tightened constraints, every bound shrunk by a fraction of its width."""
        return Constraints(
            inputs={name: bound.tightened(input_margin) for name, bound in self.inputs.items()},
            states={name: bound.tightened(state_margin) for name, bound in self.states.items()},
        )


class SolveStatus(Enum):
    """Life cycle of one strategy invocation."""

    INIT = "init"
    COMPUTING = "computing"
    FEASIBLE = "feasible"
    INFEASIBLE = "infeasible"
    ERROR = "error"


@dataclass(frozen=True)
class CostBreakdown:
    """Cost of one control sequence over the horizon.

    `tracking` already contains the `control` term; `total` adds the weighted
    economic cost. All values are to be minimized.
    """

    tracking: float
    control: float
    economic: float
    total: float

    @property
    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.tracking, self.control, self.economic, self.total))


@dataclass(frozen=True)
class BoundCheck:
    """Outcome of checking one bound over a whole trajectory."""

    name: str
    kind: str  # "input" or "state"
    side: str  # "min" or "max"
    limit: float
    violated: bool
    amount: float
    first_step: int | None = None


@dataclass(frozen=True)
class ViolationSet:
    """Every checked bound; iterating or taking `len()` only sees the violated ones."""

    checks: Tuple[BoundCheck, ...] = ()

    @property
    def violations(self) -> Tuple[BoundCheck, ...]:
        return tuple(check for check in self.checks if check.violated)

    @property
    def is_feasible(self) -> bool:
        return not self.violations

    @property
    def max_amount(self) -> float:
        return max((check.amount for check in self.violations), default=0.0)

    def __len__(self) -> int:
        return len(self.violations)

    def __iter__(self) -> Iterator[BoundCheck]:
        return iter(self.violations)


@dataclass(frozen=True, eq=False)
class ControlDecision:
    """Result of one strategy invocation.

    `control` is the first move of `control_sequence` (one value per plant
    input); `trajectory` has `horizon + 1` rows with `trajectory[0]` equal to
    the input state.
    """

    strategy_id: str
    control: np.ndarray
    control_sequence: np.ndarray
    trajectory: np.ndarray
    cost: CostBreakdown
    feasible: bool
    status: SolveStatus
    computation_time: float
    input_names: Tuple[str, ...] = tuple(INPUT_NAMES)
    state_names: Tuple[str, ...] = tuple(STATE_NAMES)
    violations: ViolationSet = field(default_factory=ViolationSet)
    diagnostics: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "control", _read_only(self.control))
        object.__setattr__(self, "control_sequence", _read_only(self.control_sequence))
        object.__setattr__(self, "trajectory", _read_only(self.trajectory))
        object.__setattr__(self, "diagnostics", MappingProxyType(dict(self.diagnostics)))

    @property
    def horizon(self) -> int:
        return self.trajectory.shape[0] - 1

    @property
    def current(self) -> float:
        return float(self.control[self.input_names.index("current")])

    def control_value(self, name: str) -> float:
        return float(self.control[self.input_names.index(name)])

    def state_series(self, name: str) -> np.ndarray:
        return self.trajectory[:, self.state_names.index(name)]


@dataclass(frozen=True)
class PerformanceMetrics:
    """Comparable figures derived from one `ControlDecision`."""

    strategy_id: str
    efficiency: float  # %
    total_cost: float
    stability: float  # 0..1
    constraint_violations: int
    computation_time: float  # s
    production: float  # kg/h
    feasible: bool = True


@dataclass(frozen=True)
class RankingEntry:
    strategy_id: str
    score: float
    metrics: PerformanceMetrics | None = None


@dataclass(frozen=True)
class StrategyFailure:
    """A strategy that produced no decision, and why."""

    strategy_id: str
    error_type: str
    message: str
    error: BaseException | None = None


@dataclass(frozen=True, eq=False)
class Ranking:
    """Strategies ordered by descending score, ties broken by ascending id."""

    generation: int
    entries: Tuple[RankingEntry, ...]
    failures: Tuple[StrategyFailure, ...] = ()
    decisions: Mapping[str, ControlDecision] = field(default_factory=dict)
    stale: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "decisions", MappingProxyType(dict(self.decisions)))

    @property
    def strategy_ids(self) -> List[str]:
        return [entry.strategy_id for entry in self.entries]

    def best(self) -> RankingEntry | None:
        return self.entries[0] if self.entries else None

    def failure_for(self, strategy_id: str) -> StrategyFailure | None:
        return next((f for f in self.failures if f.strategy_id == strategy_id), None)
