"""
The `electrolyzer_mpc` package provides a multi-strategy Model Predictive Control
(MPC) engine for a PEM electrolyzer stack.

Given a snapshot of the process state (temperature, efficiency, pressure,
purity, stack current), it computes a recommended drive current and cooling
command under operating constraints. Several competing optimization strategies
are run side by side on the same snapshot and ranked by a common performance
score, so the operator can see which formulation performs best on the current
operating point.

The strategies are:
1.  **Deterministic:** a constrained quadratic tracking problem over a fixed horizon.
2.  **Stochastic:** the deterministic problem re-solved for sampled disturbance
    scenarios and aggregated into a probability-weighted control.
3.  **MixedInteger:** an exhaustive search over discrete current levels and
    cooling equipment modes.
4.  **Robust:** the deterministic problem solved against a worst-case scenario
    with inflated weights and tightened bounds.
5.  **HierarchicalEconomic:** a price-driven economic schedule, an optional
    learned correction and a safety-constrained refinement.

Sub-packages:
-------------
- `model`:
  The plant model, the horizon predictor and plant identification from telemetry.

- `cost`:
  Tracking, control and economic cost of a trajectory, and constraint checks.

- `scenarios`:
  Seedable generation of stochastic and worst-case disturbance scenarios.

- `strategies`:
  The `StrategyMPC` interface, its five implementations, the shared quadratic
  program and the economic scheduling layer.

- `comparison`:
  The `Comparator`, which runs strategies concurrently with deadlines, scores
  and ranks their decisions and keeps a bounded performance history.

- `util`:
  Centralized logging.

Top-level modules `records.py` (data model), `errors.py` (exception taxonomy)
and `config.py` (settings) are shared by all sub-packages.
"""
