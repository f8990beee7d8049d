"""This package evaluates candidate control sequences.

The key module within this package is:
- `evaluator.py`: Defines the `CostEvaluator` class, which computes the
  quadratic tracking cost, the control cost and the economic cost (energy plus
  degradation minus production value) of a trajectory/control pair, and checks
  every configured bound for violations.
"""
