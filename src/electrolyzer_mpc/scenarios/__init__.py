"""This package generates the disturbance scenarios of the uncertainty-aware strategies.

The key module within this package is:
- `generator.py`: Defines the `Scenario` and `ScenarioSet` records and the
  `ScenarioGenerator` class, which draws weighted stochastic scenarios from a
  seedable random generator and builds the deterministic worst-case scenario
  used by the Robust strategy.
"""
