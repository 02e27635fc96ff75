#!/usr/bin/env python3
"""
Strategy Lab - Demo Runner

Runs the complete backtest and optimization pipeline on one bar series:
    Phase 1: Bar series (CSV file or seeded synthetic random walk)
    Phase 2: Single backtest of the chosen strategy with default parameters
    Phase 3: Grid search over the strategy's declared parameter ranges
    Phase 4: Monte Carlo shuffle and bootstrap robustness simulation
    Phase 5: Walk-forward validation (rolling or anchored)
    Phase 6: Portfolio of the reference strategies

EXECUTION
    python run_demo.py
    python run_demo.py --strategy MR001 --objective sharpe_ratio
    python run_demo.py --csv prices.csv --windows 4 --anchored
    python run_demo.py --method max_sharpe --output outputs/summary.json

CSV FORMAT
    A date/timestamp column (first column or named 'date'/'timestamp')
    plus open, high, low, close and optionally volume. Column names are
    matched case-insensitively.

Version: 1.0.0
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
import time
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from strategy_lab import VERSION
from strategy_lab.backtest_engine import BacktestRun, format_backtest_report, run_backtest, validate_bars
from strategy_lab.config import get_all_settings
from strategy_lab.errors import StrategyLabError
from strategy_lab.grid_search import (
    GridSearchConfig,
    GridSearchResult,
    OptimizationObjective,
    default_parameter_ranges,
    format_grid_search_report,
    run_grid_search,
)
from strategy_lab.monte_carlo import (
    MonteCarloConfig,
    MonteCarloResult,
    format_monte_carlo_report,
    run_bootstrap_simulation,
    run_monte_carlo_simulation,
)
from strategy_lab.portfolio import (
    AllocationMethod,
    PortfolioAsset,
    PortfolioConfig,
    PortfolioResult,
    format_portfolio_report,
    run_portfolio_optimization,
)
from strategy_lab.strategies import get_strategy, list_strategies
from strategy_lab.walk_forward import WalkForwardConfig, WalkForwardResult, format_walk_forward_report, run_walk_forward


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_STRATEGY: str = "TF001"
DEFAULT_BARS: int = 1000
DEFAULT_SEED: int = 42
DEFAULT_SIMULATIONS: int = 1000
DEFAULT_START: str = "2018-01-01"

# Synthetic random walk: annualized drift and volatility
SYNTHETIC_DRIFT: float = 0.08
SYNTHETIC_VOLATILITY: float = 0.25


# =============================================================================
# DISPLAY COMPONENTS
# =============================================================================

BANNER = r'''
╔═══════════════════════════════════════════════════════════════════════════════╗
║                                                                               ║
║                    STRATEGY LAB: BACKTEST & OPTIMIZATION                      ║
║                                                                               ║
║          Executor · Grid Search · Monte Carlo · Walk-Forward · Portfolio      ║
║                                                                               ║
╚═══════════════════════════════════════════════════════════════════════════════╝
'''


def print_section_header(title: str, char: str = "═") -> None:
    """Print a formatted section header."""
    width = 79
    print()
    print(char * width)
    print(f"  {title}")
    print(char * width)
    print()


def print_subsection(title: str) -> None:
    """Print a subsection divider."""
    print()
    print(f"  {'─' * 75}")
    print(f"  {title}")
    print(f"  {'─' * 75}")


def indent(report: str) -> str:
    return "\n".join(f"  {line}" for line in report.splitlines())


def _json_number(value: float) -> Optional[float]:
    """JSON has no infinity; infinite ratios are written as null."""
    return None if value is None or math.isinf(value) or math.isnan(value) else round(float(value), 6)


# =============================================================================
# PHASE 1: BAR SERIES
# =============================================================================

def generate_synthetic_bars(n_bars: int, seed: int, start: str = DEFAULT_START) -> pd.DataFrame:
    """
    Seeded geometric random walk on business days.

    Opens gap from the previous close; highs and lows extend the open/close
    range by a random fraction of the daily volatility.
    """
    rng = np.random.default_rng(seed)
    dt = 1 / 252
    log_returns = rng.normal(
        (SYNTHETIC_DRIFT - 0.5 * SYNTHETIC_VOLATILITY ** 2) * dt,
        SYNTHETIC_VOLATILITY * math.sqrt(dt),
        n_bars
    )
    close = 100 * np.exp(np.cumsum(log_returns))
    prev_close = np.concatenate(([100.0], close[:-1]))
    daily_vol = SYNTHETIC_VOLATILITY * math.sqrt(dt)
    open_ = prev_close * (1 + rng.normal(0, daily_vol / 4, n_bars))
    high = np.maximum(open_, close) * (1 + np.abs(rng.normal(0, daily_vol / 2, n_bars)))
    low = np.minimum(open_, close) * (1 - np.abs(rng.normal(0, daily_vol / 2, n_bars)))
    volume = rng.integers(500_000, 5_000_000, n_bars).astype(float)

    index = pd.bdate_range(start=start, periods=n_bars, name='timestamp')
    return pd.DataFrame(
        {'open': open_, 'high': high, 'low': low, 'close': close, 'volume': volume},
        index=index
    )


def load_csv_bars(path: Path) -> pd.DataFrame:
    """Read OHLCV bars from a CSV file into the engine layout."""
    frame = pd.read_csv(path)
    frame.columns = [str(c).strip().lower() for c in frame.columns]
    time_col = next((c for c in ('timestamp', 'date', 'datetime') if c in frame.columns), frame.columns[0])
    frame[time_col] = pd.to_datetime(frame[time_col])
    frame = frame.set_index(time_col).sort_index()
    frame = frame[~frame.index.duplicated(keep='last')]
    frame.index = pd.DatetimeIndex(frame.index, name='timestamp')
    columns = [c for c in ('open', 'high', 'low', 'close', 'volume') if c in frame.columns]
    return validate_bars(frame[columns].astype(float))


def run_phase1(args: argparse.Namespace, logger: logging.Logger) -> Optional[pd.DataFrame]:
    """Execute Phase 1: load or generate the bar series."""
    print_section_header("PHASE 1: BAR SERIES")

    try:
        if args.csv:
            logger.info(f"Loading bars from {args.csv}")
            bars = load_csv_bars(Path(args.csv))
            source = str(args.csv)
        else:
            logger.info(f"Generating {args.bars} synthetic bars (seed={args.seed})")
            bars = generate_synthetic_bars(args.bars, args.seed)
            source = f"synthetic random walk (seed {args.seed})"

    except (OSError, ValueError, StrategyLabError) as e:
        logger.error(f"Phase 1 execution failed: {e}")
        return None

    print(f"  Source:     {source}")
    print(f"  Bars:       {len(bars):,}")
    print(f"  Period:     {bars.index[0]:%Y-%m-%d} to {bars.index[-1]:%Y-%m-%d}")
    print(f"  Last Close: {bars['close'].iloc[-1]:,.2f}")
    return bars


# =============================================================================
# PHASE 2: BACKTEST
# =============================================================================

def run_phase2(bars: pd.DataFrame, args: argparse.Namespace, logger: logging.Logger) -> Optional[BacktestRun]:
    """Execute Phase 2: backtest the chosen strategy with its defaults."""
    print_section_header("PHASE 2: BACKTEST")

    try:
        strategy = get_strategy(args.strategy)
        logger.info(f"Backtesting {strategy.identifier} ({strategy.name}) with default parameters")
        run = run_backtest(strategy, bars)

    except StrategyLabError as e:
        logger.error(f"Phase 2 execution failed: {e}")
        return None

    print(indent(format_backtest_report(run, strategy.name)))
    return run


# =============================================================================
# PHASE 3: GRID SEARCH
# =============================================================================

def run_phase3(bars: pd.DataFrame, args: argparse.Namespace, logger: logging.Logger) -> Optional[GridSearchResult]:
    """Execute Phase 3: grid search over the declared parameter ranges."""
    print_section_header("PHASE 3: GRID SEARCH")

    try:
        ranges = default_parameter_ranges(args.strategy)
        result = run_grid_search(GridSearchConfig(
            strategy=args.strategy,
            bars=bars,
            parameter_ranges=ranges,
            objective=args.objective
        ))

    except StrategyLabError as e:
        logger.error(f"Phase 3 execution failed: {e}")
        return None

    print(indent(format_grid_search_report(result)))
    return result


# =============================================================================
# PHASE 4: MONTE CARLO
# =============================================================================

def run_phase4(
    run: BacktestRun,
    args: argparse.Namespace,
    logger: logging.Logger
) -> Dict[str, MonteCarloResult]:
    """Execute Phase 4: shuffle and bootstrap simulations of the phase 2 trades."""
    print_section_header("PHASE 4: MONTE CARLO SIMULATION")

    outputs: Dict[str, MonteCarloResult] = {}
    config = MonteCarloConfig(
        trades=run.trades,
        initial_capital=run.initial_capital,
        simulations=args.simulations,
        seed=args.seed
    )
    for label, runner in (("shuffle", run_monte_carlo_simulation), ("bootstrap", run_bootstrap_simulation)):
        try:
            outputs[label] = runner(config)
        except StrategyLabError as e:
            logger.error(f"Phase 4 {label} simulation failed: {e}")
            continue
        print_subsection(f"{label.upper()} ({args.simulations:,} runs)")
        print(indent(format_monte_carlo_report(outputs[label])))
    return outputs


# =============================================================================
# PHASE 5: WALK-FORWARD
# =============================================================================

def run_phase5(bars: pd.DataFrame, args: argparse.Namespace, logger: logging.Logger) -> Optional[WalkForwardResult]:
    """Execute Phase 5: walk-forward validation."""
    print_section_header("PHASE 5: WALK-FORWARD VALIDATION")

    try:
        result = run_walk_forward(WalkForwardConfig(
            strategy=args.strategy,
            bars=bars,
            parameter_ranges=default_parameter_ranges(args.strategy),
            objective=args.objective,
            window_count=args.windows,
            train_ratio=args.train_ratio,
            anchored_start=args.anchored
        ))

    except StrategyLabError as e:
        logger.error(f"Phase 5 execution failed: {e}")
        return None

    print(indent(format_walk_forward_report(result)))
    return result


# =============================================================================
# PHASE 6: PORTFOLIO
# =============================================================================

def run_phase6(bars: pd.DataFrame, args: argparse.Namespace, logger: logging.Logger) -> Optional[PortfolioResult]:
    """Execute Phase 6: allocate across every reference strategy."""
    print_section_header("PHASE 6: PORTFOLIO OPTIMIZATION")

    try:
        assets: List[PortfolioAsset] = []
        for strategy in list_strategies():
            run = run_backtest(strategy, bars)
            logger.info(
                f"{strategy.identifier}: {run.metrics.total_trades} trades, "
                f"return {run.metrics.total_return:+.2f}%"
            )
            assets.append(PortfolioAsset.from_backtest(strategy.identifier, run))

        result = run_portfolio_optimization(PortfolioConfig(
            assets=assets,
            method=args.method,
            seed=args.seed
        ))

    except StrategyLabError as e:
        logger.error(f"Phase 6 execution failed: {e}")
        return None

    print(indent(format_portfolio_report(result)))
    return result


# =============================================================================
# JSON SUMMARY
# =============================================================================

def build_summary(
    args: argparse.Namespace,
    bars: pd.DataFrame,
    backtest: Optional[BacktestRun],
    grid: Optional[GridSearchResult],
    monte_carlo: Dict[str, MonteCarloResult],
    walk_forward: Optional[WalkForwardResult],
    portfolio: Optional[PortfolioResult]
) -> Dict[str, Any]:
    """Collect the headline numbers of every phase into a JSON-ready dict."""
    summary: Dict[str, Any] = {
        "metadata": {
            "generated_at": datetime.now().isoformat(),
            "version": VERSION,
            "strategy": args.strategy,
            "objective": args.objective,
            "source": args.csv or f"synthetic:{args.seed}",
            "bars": len(bars),
            "period": [f"{bars.index[0]:%Y-%m-%d}", f"{bars.index[-1]:%Y-%m-%d}"],
        },
        "settings": {name: asdict(s) for name, s in get_all_settings().items()},
    }
    if backtest is not None:
        summary["backtest"] = {
            "parameters": backtest.parameters,
            "metrics": {k: _json_number(v) for k, v in backtest.metrics.to_dict().items()},
        }
    if grid is not None:
        summary["grid_search"] = {
            "best_params": grid.best_params,
            "best_score": _json_number(grid.best_score),
            "total_combinations": grid.total_combinations,
            "executed_combinations": grid.executed_combinations,
            "failed_combinations": grid.failed_combinations,
        }
    for label, result in monte_carlo.items():
        summary[f"monte_carlo_{label}"] = {
            "mean_return": _json_number(result.returns.mean),
            "percentile_5": _json_number(result.returns.percentile_5),
            "percentile_95": _json_number(result.returns.percentile_95),
            "value_at_risk": _json_number(result.risk.value_at_risk),
            "expected_shortfall": _json_number(result.risk.expected_shortfall),
            "probability_of_loss": _json_number(result.risk.probability_of_loss),
            "probability_of_ruin": _json_number(result.risk.probability_of_ruin),
        }
    if walk_forward is not None:
        summary["walk_forward"] = {
            "windows": walk_forward.window_count,
            "overfit_ratio": _json_number(walk_forward.overfit_ratio),
            "consistency": _json_number(walk_forward.consistency),
            "robustness_score": walk_forward.robustness_score,
            "overfit_risk": walk_forward.overfit_risk.value,
            "recommendation": walk_forward.recommendation,
        }
    if portfolio is not None:
        m = portfolio.combined_metrics
        summary["portfolio"] = {
            "method": portfolio.method.value,
            "weights": portfolio.weights_by_asset,
            "expected_return": _json_number(m.expected_return),
            "volatility": _json_number(m.volatility),
            "sharpe_ratio": _json_number(m.sharpe_ratio),
            "max_drawdown": _json_number(m.max_drawdown),
            "diversification_ratio": _json_number(m.diversification_ratio),
        }
    return summary


# =============================================================================
# MAIN
# =============================================================================

def main() -> int:
    """
    Main entry point for the demo runner.

    Returns
    -------
    int
        Exit code (0 for success, 1 for failure)
    """
    start_time = time.time()

    parser = argparse.ArgumentParser(
        description="Strategy Lab - Demo Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_demo.py                                  # TF001 on synthetic bars
  python run_demo.py --strategy MO002 --objective total_return
  python run_demo.py --csv prices.csv --windows 4 --anchored
  python run_demo.py --method risk_parity --output outputs/summary.json
        """
    )

    parser.add_argument(
        "--csv",
        type=str,
        default=None,
        help="OHLCV CSV file (default: synthetic random walk)"
    )

    parser.add_argument(
        "--strategy", "-s",
        type=str,
        default=DEFAULT_STRATEGY,
        choices=[s.identifier for s in list_strategies()],
        help=f"Strategy identifier (default: {DEFAULT_STRATEGY})"
    )

    parser.add_argument(
        "--objective", "-o",
        type=str,
        default=OptimizationObjective.WIN_RATE.value,
        choices=[o.value for o in OptimizationObjective],
        help="Grid search / walk-forward objective (default: win_rate)"
    )

    parser.add_argument(
        "--bars",
        type=int,
        default=DEFAULT_BARS,
        help=f"Synthetic bar count (default: {DEFAULT_BARS})"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=DEFAULT_SEED,
        help=f"Random seed for data and simulations (default: {DEFAULT_SEED})"
    )

    parser.add_argument(
        "--simulations",
        type=int,
        default=DEFAULT_SIMULATIONS,
        help=f"Monte Carlo runs (default: {DEFAULT_SIMULATIONS})"
    )

    parser.add_argument(
        "--windows",
        type=int,
        default=5,
        help="Walk-forward window count, 2-10 (default: 5)"
    )

    parser.add_argument(
        "--train-ratio",
        type=float,
        default=0.7,
        help="Walk-forward train share, 0.5-0.9 (default: 0.7)"
    )

    parser.add_argument(
        "--anchored",
        action="store_true",
        help="Anchor every walk-forward train segment at the first bar"
    )

    parser.add_argument(
        "--method", "-m",
        type=str,
        default=AllocationMethod.EQUAL.value,
        choices=[m.value for m in AllocationMethod],
        help="Portfolio allocation method (default: equal)"
    )

    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write a JSON summary to this path"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}"
    )

    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="  %(asctime)s │ %(levelname)s │ %(message)s",
        datefmt="%H:%M:%S"
    )
    logger = logging.getLogger(__name__)

    print(BANNER)
    print(f"  Execution Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Strategy:          {args.strategy}")
    print(f"  Objective:         {args.objective}")
    print(f"  Version:           {VERSION}")
    print()

    bars = run_phase1(args, logger)
    if bars is None:
        logger.error("No bar series available; aborting")
        return 1

    backtest = run_phase2(bars, args, logger)
    grid = run_phase3(bars, args, logger)
    monte_carlo = run_phase4(backtest, args, logger) if backtest is not None else {}
    walk_forward = run_phase5(bars, args, logger)
    portfolio = run_phase6(bars, args, logger)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        summary = build_summary(args, bars, backtest, grid, monte_carlo, walk_forward, portfolio)
        with open(output_path, 'w') as f:
            json.dump(summary, f, indent=2, default=str)
        logger.info(f"Summary written to {output_path}")

    total_time = time.time() - start_time
    print("\n" + "=" * 79)
    print(f"  Completed in {total_time:.1f}s")
    print("=" * 79)

    return 0 if backtest is not None else 1


if __name__ == "__main__":
    sys.exit(main())
