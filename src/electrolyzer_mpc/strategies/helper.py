from enum import Enum
from typing import Iterable, List


class StrategyKind(Enum):
    """Identifiers of the control strategies the engine can run.

    The value of each member is the strategy id used in decisions, rankings
    and configuration files.
    """

    DETERMINISTIC = "deterministic"
    STOCHASTIC = "stochastic"
    MIXED_INTEGER = "mixed_integer"
    ROBUST = "robust"
    HIERARCHICAL_ECONOMIC = "hierarchical_economic"

    @staticmethod
    def parse_all(strategy_ids: Iterable["str | StrategyKind"] | None) -> List["StrategyKind"]:
        """Converts strategy ids to members, preserving order and dropping duplicates.

        Args:
            strategy_ids: Ids or members; every strategy when None.

        Returns:
            The selected members.

        Raises:
            ValueError: If an id does not name a strategy.
        """
        if strategy_ids is None:
            return list(StrategyKind)
        kinds: List[StrategyKind] = []
        for strategy_id in strategy_ids:
            kind = strategy_id if isinstance(strategy_id, StrategyKind) else StrategyKind(strategy_id)
            if kind not in kinds:
                kinds.append(kind)
        return kinds
