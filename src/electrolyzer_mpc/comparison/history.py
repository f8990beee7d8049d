"""Bounded rolling history of comparison runs.

The history belongs to one `Comparator`; it is never shared between
instances. Trend statistics are computed with pandas from a flat frame with
one row per strategy decision.
"""

import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Tuple

import pandas as pd

from electrolyzer_mpc.records import PerformanceMetrics, StrategyFailure

METRIC_COLUMNS = [
    "efficiency",
    "total_cost",
    "stability",
    "constraint_violations",
    "computation_time",
    "production",
]

# Stability above which a run counts as reliable
RELIABLE_STABILITY = 0.8


@dataclass(frozen=True)
class HistoryRecord:
    generation: int
    metrics: Tuple[PerformanceMetrics, ...]
    failures: Tuple[StrategyFailure, ...] = ()
    best_strategy: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now().astimezone())


class PerformanceHistory:
    """Keeps the last `maxlen` comparison runs."""

    def __init__(self, maxlen: int = 100) -> None:
        if maxlen < 1:
            raise ValueError(f"History size must be at least 1, got {maxlen}")
        self._records: Deque[HistoryRecord] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    @property
    def maxlen(self) -> int:
        return self._records.maxlen

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: HistoryRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self) -> List[HistoryRecord]:
        """Snapshot of the retained runs, oldest first."""
        with self._lock:
            return list(self._records)

    def to_frame(self) -> pd.DataFrame:
        """One row per strategy decision, with the generation and timestamp of its run."""
        rows = []
        for record in self.records():
            for metrics in record.metrics:
                rows.append({"generation": record.generation, "timestamp": record.timestamp, **asdict(metrics)})
        columns = ["generation", "timestamp", "strategy_id", *METRIC_COLUMNS, "feasible"]
        return pd.DataFrame(rows, columns=columns)

    def failure_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.records():
            for failure in record.failures:
                counts[failure.strategy_id] = counts.get(failure.strategy_id, 0) + 1
        return counts

    def summary(self) -> Dict[str, Dict[str, Any]]:
        """Trend statistics per strategy.

        Returns:
            For each strategy id seen in the history: `runs`, `<metric>_mean`
            and `<metric>_var` (population variance) for every metric,
            `best_efficiency`, `worst_efficiency`, `reliability` (share of
            runs with stability above 0.8), `feasibility_rate` and `failures`.
            Strategies that only ever failed report `runs` 0 and their
            failure count.
        """
        frame = self.to_frame()
        failures = self.failure_counts()
        summary: Dict[str, Dict[str, Any]] = {}

        if not frame.empty:
            frame["reliable"] = frame["stability"] > RELIABLE_STABILITY
            frame["feasible"] = frame["feasible"].astype(bool)
            grouped = frame.groupby("strategy_id")
            means = grouped[METRIC_COLUMNS].mean()
            variances = grouped[METRIC_COLUMNS].var(ddof=0)
            for strategy_id, group in grouped:
                stats: Dict[str, Any] = {"runs": int(len(group))}
                for column in METRIC_COLUMNS:
                    stats[f"{column}_mean"] = float(means.loc[strategy_id, column])
                    stats[f"{column}_var"] = float(variances.loc[strategy_id, column])
                stats["best_efficiency"] = float(group["efficiency"].max())
                stats["worst_efficiency"] = float(group["efficiency"].min())
                stats["reliability"] = float(group["reliable"].mean())
                stats["feasibility_rate"] = float(group["feasible"].mean())
                stats["failures"] = failures.get(strategy_id, 0)
                summary[strategy_id] = stats

        for strategy_id, count in failures.items():
            if strategy_id not in summary:
                summary[strategy_id] = {"runs": 0, "failures": count}
        return summary
