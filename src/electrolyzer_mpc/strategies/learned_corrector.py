from typing import Callable, Protocol, Sequence, Tuple, Union, runtime_checkable

from electrolyzer_mpc.records import SystemState
from electrolyzer_mpc.strategies.economic_layer import EconomicPlan

# A scalar correction applies to the stack current only
Correction = Union[float, Sequence[float]]


@runtime_checkable
class LearnedCorrector(Protocol):
    """Externally trained model refining the economic plan.

    `predict` returns a correction of the planned inputs (one value per plant
    input, or a scalar for the stack current) and a confidence in [0, 1].
    Training is outside the scope of the engine.
    """

    def predict(self, state: SystemState, plan: EconomicPlan) -> Tuple[Correction, float]: ...


CorrectorLike = Union[LearnedCorrector, Callable[[SystemState, EconomicPlan], Tuple[Correction, float]]]
