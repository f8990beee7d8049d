"""This package contains the control strategies compared by the engine.

The key modules within this package include:
- `strategy_mpc.py`: Defines the abstract base class `StrategyMPC`, whose
  `optimize` template turns a strategy's optimization into a `ControlDecision`
  (clamping, prediction, cost reporting and fallback on numerical failure).
- `helper.py`: Provides the `StrategyKind` enumeration identifying the strategies.
- `qp.py`: Defines the `TrackingQP` class, the constrained quadratic tracking
  problem solved with CVXPY, with a projected gradient descent fallback.
- `deterministic_mpc.py`: Implements the nominal tracking MPC.
- `stochastic_mpc.py`: Implements the scenario-based MPC with reliability and
  risk metrics.
- `mixed_integer_mpc.py`: Implements the search over discrete current levels
  and cooling equipment modes.
- `robust_mpc.py`: Implements the worst-case MPC and the robustness margin.
- `economic_layer.py`: Defines the `EconomicScheduler` and the `EconomicPlan`
  it produces from the electricity price profile.
- `learned_corrector.py`: Defines the `LearnedCorrector` capability consumed
  by the hierarchical strategy.
- `hierarchical_economic_mpc.py`: Implements the economic schedule, learned
  correction and safety-constrained refinement.
- `factory.py`: Builds strategies from the configuration.
"""
