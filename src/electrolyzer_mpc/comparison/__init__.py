"""This package compares the control strategies on a common footing.

The key modules within this package include:
- `metrics.py`: Derives `PerformanceMetrics` from a `ControlDecision`, scores
  them with configurable weights and ranks strategies deterministically.
- `history.py`: Defines the `PerformanceHistory` class, a bounded rolling
  buffer of comparison runs with per-strategy trend statistics.
- `comparator.py`: Defines the `Comparator` class, which runs the selected
  strategies concurrently with per-strategy deadlines, captures failures,
  discards stale generations and produces the `Ranking`.
"""
