"""
The `util` package gathers general-purpose helpers shared by the MPC engine.

- [`logging.py`](src/electrolyzer_mpc/util/logging.py): centralized logger
  configuration. `LoggingUtil.get_logger` hands out console loggers with a
  common format whose level follows the `LOGLEVEL` environment variable, so
  the strategies, the solvers and the comparator all log the same way.
"""
