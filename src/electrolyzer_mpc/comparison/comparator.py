"""Concurrent comparison of the control strategies.

One comparison fans out one task per selected strategy on a thread pool and
joins them against per-strategy deadlines measured from the start of the
comparison. A strategy that misses its deadline or raises is excluded from
the ranking and reported as a `StrategyFailure`; it never aborts the
comparison.

Every comparison is tagged with a monotonically increasing generation id. If
a newer comparison starts before an older one finishes, the older one is
stale: its ranking is returned with `stale=True` and is not recorded in the
history.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, Iterable, List, Mapping, Tuple

import pandas as pd

from electrolyzer_mpc.comparison.history import HistoryRecord, PerformanceHistory
from electrolyzer_mpc.comparison.metrics import compute_metrics, rank, score
from electrolyzer_mpc.config import MPCConfig, default_config
from electrolyzer_mpc.errors import NoFeasibleStrategyError, StrategyTimeoutError
from electrolyzer_mpc.model.plant_model import PlantModel
from electrolyzer_mpc.records import (
    Constraints,
    ControlDecision,
    Ranking,
    RankingEntry,
    Setpoints,
    StrategyFailure,
    SystemState,
)
from electrolyzer_mpc.strategies.factory import create_strategies
from electrolyzer_mpc.strategies.helper import StrategyKind
from electrolyzer_mpc.strategies.learned_corrector import CorrectorLike
from electrolyzer_mpc.strategies.strategy_mpc import StrategyMPC
from electrolyzer_mpc.util.logging import LoggingUtil

logger = LoggingUtil.get_logger(__name__)


class Comparator:
    """Runs strategies side by side and ranks their decisions.

    The comparator owns its strategies and its bounded performance history.
    """

    def __init__(
        self,
        model: PlantModel | None = None,
        config: MPCConfig | None = None,
        strategies: Mapping[StrategyKind | str, StrategyMPC] | None = None,
        corrector: CorrectorLike | None = None,
        seed: int | None = None,
    ) -> None:
        """Initializes the comparator.

        Args:
            model: Plant model; built from `config.plant` when omitted.
            config: Root configuration; the defaults when omitted.
            strategies: Strategies to compare, by kind; all five, built from
                the configuration, when omitted.
            corrector: Learned corrector of the HierarchicalEconomic strategy.
            seed: Seed of the Stochastic strategy's scenario generator.
        """
        self.config = config or default_config()
        self.model = model or PlantModel.from_config(self.config.plant)
        if strategies is None:
            self.strategies = create_strategies(None, self.model, self.config, corrector, seed)
        else:
            self.strategies = {StrategyKind(kind): strategy for kind, strategy in strategies.items()}
        self._history = PerformanceHistory(self.config.comparator.history_size)
        self._generation = 0
        self._lock = threading.Lock()
        self._late: List[Future] = []

    @property
    def latest_generation(self) -> int:
        with self._lock:
            return self._generation

    def deadline_for(self, kind: StrategyKind) -> float:
        """Deadline of a strategy in seconds: its own if configured, the default otherwise."""
        return self.config.comparator.deadlines.get(kind.value, self.config.comparator.deadline)

    def compare(
        self,
        state: SystemState,
        setpoints: Setpoints,
        constraints: Constraints | None = None,
        selected_strategies: Iterable[StrategyKind | str] | None = None,
        horizon: int | None = None,
    ) -> Ranking:
        """Runs the selected strategies concurrently and ranks their decisions.

        Args:
            state: Process snapshot.
            setpoints: Tracking targets.
            constraints: Input and state bounds; default input bounds when omitted.
            selected_strategies: Strategies to run; every configured strategy when None.
            horizon: Number of prediction steps; `config.horizon` when omitted.

        Returns:
            The `Ranking` of the strategies that produced a decision, with the
            failures of the others.

        Raises:
            ValueError: If a selected strategy is unknown or not configured, or
                the horizon is smaller than 1.
            NoFeasibleStrategyError: If no strategy produced a decision.
        """
        if selected_strategies is None:
            kinds = list(self.strategies)
        else:
            kinds = StrategyKind.parse_all(selected_strategies)
        missing = [kind.value for kind in kinds if kind not in self.strategies]
        if missing:
            raise ValueError(f"Strategies not configured: {missing}")
        horizon = self.config.horizon if horizon is None else horizon
        if horizon < 1:
            raise ValueError(f"Horizon must be at least 1, got {horizon}")
        constraints = constraints or Constraints()

        with self._lock:
            self._generation += 1
            generation = self._generation
        logger.info("Comparison %s started with strategies %s", generation, [kind.value for kind in kinds])

        decisions, failures = self._run_strategies(kinds, state, setpoints, constraints, horizon)

        comparator_config = self.config.comparator
        entries = []
        metrics = []
        for strategy_id, decision in decisions.items():
            decision_metrics = compute_metrics(decision, self.config.economic, comparator_config.stability_scale)
            metrics.append(decision_metrics)
            entries.append(
                RankingEntry(strategy_id, score(decision_metrics, comparator_config.score_weights), decision_metrics)
            )
        ranked = rank(entries)

        with self._lock:
            stale = generation != self._generation
            if not stale:
                self._history.append(
                    HistoryRecord(
                        generation=generation,
                        metrics=tuple(metrics),
                        failures=tuple(failures),
                        best_strategy=ranked[0].strategy_id if ranked else None,
                    )
                )
        if stale:
            logger.warning(
                "Comparison %s is stale (latest is %s), results discarded", generation, self.latest_generation
            )

        if not decisions:
            logger.error("Comparison %s produced no decision", generation)
            raise NoFeasibleStrategyError(failures)

        logger.info(
            "Comparison %s ranked %s, %s failure(s)", generation, [e.strategy_id for e in ranked], len(failures)
        )
        return Ranking(
            generation=generation, entries=ranked, failures=tuple(failures), decisions=decisions, stale=stale
        )

    def _run_strategies(
        self,
        kinds: List[StrategyKind],
        state: SystemState,
        setpoints: Setpoints,
        constraints: Constraints,
        horizon: int,
    ) -> Tuple[Dict[str, ControlDecision], List[StrategyFailure]]:
        """Fans out one task per strategy and joins them against their deadlines."""
        decisions: Dict[str, ControlDecision] = {}
        failures: List[StrategyFailure] = []
        late: List[Future] = []
        max_workers = self.config.comparator.max_workers or max(len(kinds), 1)
        executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mpc-strategy")
        start_time = time.monotonic()
        try:
            futures: Dict[StrategyKind, Future] = {
                kind: executor.submit(self.strategies[kind].optimize, state, setpoints, constraints, horizon)
                for kind in kinds
            }
            for kind, future in futures.items():
                deadline = self.deadline_for(kind)
                remaining = max(0.0, start_time + deadline - time.monotonic())
                try:
                    decisions[kind.value] = future.result(timeout=remaining)
                except FutureTimeoutError:
                    if not future.cancel():
                        late.append(future)
                    error = StrategyTimeoutError(kind.value, deadline)
                    logger.warning("%s", error)
                    failures.append(self._failure(kind.value, error))
                except Exception as ex:
                    logger.error("Strategy %s failed: %s: %s", kind.value, type(ex).__name__, ex)
                    failures.append(self._failure(kind.value, ex))
        finally:
            # Late strategies keep running in the background, their results are dropped
            executor.shutdown(wait=False, cancel_futures=True)
        running = self._track_late(late) if late else 0
        if running:
            logger.warning("%s strategy run(s) still running after their deadline", running)
        return decisions, failures

    def _track_late(self, futures: List[Future]) -> int:
        with self._lock:
            self._late = [future for future in self._late + futures if not future.done()]
            return len(self._late)

    def running_strategies(self) -> int:
        """Number of strategy runs that missed their deadline and are still running."""
        with self._lock:
            self._late = [future for future in self._late if not future.done()]
            return len(self._late)

    def drain(self, timeout: float | None = None) -> int:
        """Waits for the strategy runs that missed their deadline to finish.

        Args:
            timeout: Maximum wait in seconds; no limit when None.

        Returns:
            The number of runs still running when the wait ends.
        """
        with self._lock:
            late = list(self._late)
        if late:
            logger.info("Draining %s late strategy run(s)", len(late))
            wait(late, timeout=timeout)
        return self.running_strategies()

    @staticmethod
    def _failure(strategy_id: str, error: BaseException) -> StrategyFailure:
        return StrategyFailure(
            strategy_id=strategy_id, error_type=type(error).__name__, message=str(error), error=error
        )

    def history(self) -> List[HistoryRecord]:
        """Retained comparison runs, oldest first."""
        return self._history.records()

    def history_frame(self) -> pd.DataFrame:
        """Retained runs as a pandas DataFrame, one row per strategy decision."""
        return self._history.to_frame()

    def statistical_summary(self) -> Dict[str, Dict[str, Any]]:
        """Per-strategy trend statistics over the retained runs (see `PerformanceHistory.summary`)."""
        return self._history.summary()
