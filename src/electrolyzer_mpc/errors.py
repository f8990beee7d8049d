"""Exception taxonomy of the MPC engine.

Errors raised inside a strategy are either converted into an infeasible
`ControlDecision` by the strategy itself (`DivergenceError`,
`InfeasibleSolutionError`) or captured per strategy by the `Comparator`.
None of them is allowed to abort a whole comparison.
"""

from typing import Any, Sequence


class MPCError(Exception):
    """Base class for every error raised by the MPC engine."""


class ModelShapeError(MPCError, ValueError):
    """The plant matrices have inconsistent or malformed shapes."""


class DivergenceError(MPCError):
    """A predicted trajectory became numerically non-finite.

    Attributes:
        step: Index of the first trajectory row that is not finite.
    """

    def __init__(self, message: str, step: int | None = None) -> None:
        super().__init__(message)
        self.step = step


class InfeasibleSolutionError(MPCError):
    """No control satisfies the constraints within the solver tolerance."""


class ScenarioGenerationFailure(MPCError):
    """The uncertainty configuration cannot produce valid scenarios."""


class StrategyTimeoutError(MPCError, TimeoutError):
    """A strategy did not return a decision before its deadline."""

    def __init__(self, strategy_id: str, deadline: float) -> None:
        super().__init__(f"Strategy {strategy_id} exceeded its deadline of {deadline:.3f} s")
        self.strategy_id = strategy_id
        self.deadline = deadline


class NoFeasibleStrategyError(MPCError):
    """A comparison finished without a single strategy producing a decision.

    Attributes:
        failures: The `StrategyFailure` records captured during the comparison.
    """

    def __init__(self, failures: Sequence[Any]) -> None:
        summary = ", ".join(f"{f.strategy_id} ({f.error_type})" for f in failures) or "none selected"
        super().__init__(f"No strategy produced a control decision: {summary}")
        self.failures = tuple(failures)
