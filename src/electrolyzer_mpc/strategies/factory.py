from typing import Dict, Iterable

from electrolyzer_mpc.config import MPCConfig
from electrolyzer_mpc.cost.evaluator import CostEvaluator
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.scenarios.generator import ScenarioGenerator
from electrolyzer_mpc.strategies.deterministic_mpc import DeterministicMPC
from electrolyzer_mpc.strategies.helper import StrategyKind
from electrolyzer_mpc.strategies.hierarchical_economic_mpc import HierarchicalEconomicMPC
from electrolyzer_mpc.strategies.learned_corrector import CorrectorLike
from electrolyzer_mpc.strategies.mixed_integer_mpc import MixedIntegerMPC
from electrolyzer_mpc.strategies.robust_mpc import RobustMPC
from electrolyzer_mpc.strategies.stochastic_mpc import StochasticMPC
from electrolyzer_mpc.strategies.strategy_mpc import StrategyMPC


def create_strategy(
    kind: StrategyKind | str,
    model: PlantModel,
    config: MPCConfig,
    evaluator: CostEvaluator | None = None,
    corrector: CorrectorLike | None = None,
    seed: int | None = None,
) -> StrategyMPC:
    """Instantiates one strategy from the configuration.

    Args:
        kind: Strategy to build.
        model: Plant model shared by all strategies.
        config: Root configuration.
        evaluator: Cost evaluator; built from `config.economic` when omitted.
        corrector: Learned corrector of the HierarchicalEconomic strategy.
        seed: Seed of the Stochastic strategy's scenario generator; `config.seed` when omitted.

    Returns:
        The strategy.

    Raises:
        ValueError: If `kind` does not name a strategy.
    """
    kind = StrategyKind(kind)
    evaluator = evaluator or CostEvaluator(model, config.economic)

    if kind is StrategyKind.DETERMINISTIC:
        return DeterministicMPC(model, evaluator, config.weights, config.deterministic)
    elif kind is StrategyKind.STOCHASTIC:
        generator = ScenarioGenerator(model.state_names, seed=config.seed if seed is None else seed)
        return StochasticMPC(
            model,
            evaluator,
            config.weights,
            config.stochastic,
            config.uncertainty,
            generator,
            config.deterministic,
        )
    elif kind is StrategyKind.MIXED_INTEGER:
        return MixedIntegerMPC(model, evaluator, config.weights, config.mixed_integer)
    elif kind is StrategyKind.ROBUST:
        return RobustMPC(
            model,
            evaluator,
            config.weights,
            config.robust,
            config.uncertainty,
            ScenarioGenerator(model.state_names),
            config.deterministic,
        )
    elif kind is StrategyKind.HIERARCHICAL_ECONOMIC:
        return HierarchicalEconomicMPC(
            model, evaluator, config.weights, config.hierarchical, corrector, config.deterministic
        )
    raise ValueError(f"Unsupported strategy: {kind}")


def create_strategies(
    kinds: Iterable[StrategyKind | str] | None,
    model: PlantModel,
    config: MPCConfig,
    corrector: CorrectorLike | None = None,
    seed: int | None = None,
) -> Dict[StrategyKind, StrategyMPC]:
    """Instantiates several strategies sharing one cost evaluator; every strategy when `kinds` is None."""
    evaluator = CostEvaluator(model, config.economic)
    return {
        kind: create_strategy(kind, model, config, evaluator, corrector, seed)
        for kind in StrategyKind.parse_all(kinds)
    }
