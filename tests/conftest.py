"""Shared fixtures for the electrolyzer MPC tests.

Every fixture builds its objects from the default configuration without the
environment overrides, so an `MPC_SOLVER` or `MPC_STRATEGY_DEADLINE` set in
the developer's shell does not leak into the tests. Snapshots carry a fixed
timestamp (22:00, flat 0.12 $/kWh price) so that economic figures are
reproducible.
"""

from datetime import datetime, timezone

import pytest

from electrolyzer_mpc.config import MPCConfig
from electrolyzer_mpc.cost.evaluator import CostEvaluator
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.records import Constraints, Setpoints, SystemState

EVENING = datetime(2026, 3, 14, 22, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("MPC_SOLVER", "MPC_STRATEGY_DEADLINE", "VERBOSE_SOLVER_LOGS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config() -> MPCConfig:
    return MPCConfig()


@pytest.fixture
def model(config: MPCConfig) -> PlantModel:
    return PlantModel.from_config(config.plant)


@pytest.fixture
def evaluator(model: PlantModel, config: MPCConfig) -> CostEvaluator:
    return CostEvaluator(model, config.economic)


@pytest.fixture
def example_state() -> SystemState:
    return SystemState(temperature=65.9, efficiency=72.5, pressure=32.5, current=177.0, timestamp=EVENING)


@pytest.fixture
def example_setpoints() -> Setpoints:
    return Setpoints(temperature=70.0, efficiency=75.0, pressure=30.0)


@pytest.fixture
def example_constraints() -> Constraints:
    return Constraints.from_mapping({"current": (100.0, 200.0)})


@pytest.fixture
def make_state():
    """Factory of example snapshots taken at a given hour of the day."""

    def _make(hour: int = 22, **values: float) -> SystemState:
        readings = {"temperature": 65.9, "efficiency": 72.5, "pressure": 32.5, "current": 177.0}
        readings.update(values)
        return SystemState(timestamp=EVENING.replace(hour=hour), **readings)

    return _make
