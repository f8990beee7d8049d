"""This package holds the process model shared by every control strategy.

The key modules within this package include:
- `plant_model.py`: Defines the `PlantModel` class, the state-space description
  of the electrolyzer stack (A, B, C, Ts) linearized about an operating point,
  with Euler or exact zero-order-hold discretization.
- `predictor.py`: Defines the `HorizonPredictor` class, which rolls a control
  sequence forward through the plant with zero-order hold and reports
  numerical blow-up as a `DivergenceError`.
- `identification.py`: Defines the `PlantIdentifier` class, which learns the
  discrete plant matrices from logged telemetry by regularized least squares.
"""
