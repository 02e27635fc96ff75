"""
Strategy Lab

Backtest execution and optimization for signal-based trading strategies:
an executor with a full metrics set, exhaustive grid search, Monte Carlo
and bootstrap robustness simulation, walk-forward validation, and
portfolio weight optimization across backtested assets.
"""

VERSION = "1.0.0"
