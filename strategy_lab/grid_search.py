"""
Grid Search Optimizer
=====================

Exhaustive search over a strategy's parameter space. Every combination of
the configured parameter ranges is backtested and scored by a single
objective; results are ranked best-first.

SEARCH SPACE
------------
Each ParameterRange is one axis stepped from ``min`` to ``max`` inclusive,
with every value rounded to 3 decimals. The grid is the Cartesian product
of the axes, generated lazily: the first range is the outermost loop, the
last range varies fastest.

BOUNDING
--------
    - ``max_combinations`` caps how many combinations are evaluated; only the
      first N in generation order run, and the result reports both
      ``total_combinations`` and ``executed_combinations``
    - Only the top ``top_results`` entries are kept in the ranked list

FAILURE SEMANTICS
-----------------
A combination whose backtest raises, or that produces fewer than
``min_trades`` trades, is skipped. If nothing survives the search raises
NoValidCombinationError.
"""

from __future__ import annotations

import itertools
import logging
import math
import numbers
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Union

import pandas as pd

from strategy_lab.backtest_engine import BacktestMetrics, ensure_bars, run_backtest
from strategy_lab.config import BACKTEST, GRID_SEARCH, BacktestSettings, GridSearchSettings
from strategy_lab.errors import NoValidCombinationError, ValidationError, require
from strategy_lab.strategies import Strategy, resolve_strategy

logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: OBJECTIVES
# =============================================================================

class OptimizationObjective(Enum):
    """Scalar objective a search maximizes."""
    WIN_RATE = "win_rate"
    TOTAL_RETURN = "total_return"
    PROFIT_FACTOR = "profit_factor"
    SHARPE_RATIO = "sharpe_ratio"

    @classmethod
    def parse(cls, value: Union[str, OptimizationObjective]) -> OptimizationObjective:
        """Accept an enum member or its value ('sharpe_ratio')."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"Unknown objective '{value}'. Expected one of {[o.value for o in cls]}"
            ) from None


def score_metrics(
    metrics: BacktestMetrics,
    objective: Union[str, OptimizationObjective],
    infinite_score: float = BACKTEST.infinite_score
) -> float:
    """
    Extract the objective value from a metrics object.

    An infinite profit factor is scored as ``infinite_score`` so rankings
    stay numeric.
    """
    objective = OptimizationObjective.parse(objective)
    if objective is OptimizationObjective.WIN_RATE:
        return metrics.win_rate
    if objective is OptimizationObjective.TOTAL_RETURN:
        return metrics.total_return
    if objective is OptimizationObjective.PROFIT_FACTOR:
        return infinite_score if math.isinf(metrics.profit_factor) else metrics.profit_factor
    return metrics.sharpe_ratio


# =============================================================================
# SECTION 2: PARAMETER SPACE
# =============================================================================

@dataclass(frozen=True)
class ParameterRange:
    """Single tunable axis, inclusive of both ends."""
    name: str
    min: float
    max: float
    step: float

    def validate(self) -> None:
        require(bool(self.name), "parameter range name must be non-empty")
        for attr in ('min', 'max', 'step'):
            value = getattr(self, attr)
            require(
                isinstance(value, numbers.Real) and math.isfinite(value),
                f"range '{self.name}': {attr} must be a finite number, got {value!r}"
            )
        require(self.step > 0, f"range '{self.name}': step must be positive, got {self.step}")
        require(
            self.max >= self.min,
            f"range '{self.name}': max ({self.max}) is below min ({self.min})"
        )

    @property
    def count(self) -> int:
        """Number of values on this axis."""
        # Tolerance keeps e.g. 1.0..3.0 step 0.5 at 5 values despite float error
        return int(math.floor((self.max - self.min) / self.step + 1e-9)) + 1

    def values(self, decimals: int = GRID_SEARCH.value_decimals) -> List[float]:
        return [round(self.min + i * self.step, decimals) for i in range(self.count)]


class ParameterGrid:
    """
    Lazy, restartable Cartesian product of parameter ranges.

    Iterating yields one parameter dict per combination, with
    ``base_params`` underneath every combination. ``len()`` is the true
    combination count, computed without materializing the grid.

    Example:
        >>> grid = ParameterGrid([ParameterRange('period', 5, 15, 5)])
        >>> list(grid)
        [{'period': 5}, {'period': 10}, {'period': 15}]
    """

    def __init__(
        self,
        ranges: Sequence[ParameterRange],
        base_params: Optional[Dict[str, float]] = None,
        decimals: int = GRID_SEARCH.value_decimals
    ):
        names = [r.name for r in ranges]
        require(len(names) == len(set(names)), f"duplicate parameter range names: {names}")
        for r in ranges:
            r.validate()

        self.ranges = list(ranges)
        self.base_params = dict(base_params or {})
        self._axes = [r.values(decimals) for r in self.ranges]

    def __len__(self) -> int:
        return math.prod(len(axis) for axis in self._axes)

    def __iter__(self) -> Iterator[Dict[str, float]]:
        names = [r.name for r in self.ranges]
        for combo in itertools.product(*self._axes):
            params = dict(self.base_params)
            params.update(zip(names, combo))
            yield params

    def head(self, n: int) -> Iterator[Dict[str, float]]:
        """First ``n`` combinations in generation order."""
        return itertools.islice(iter(self), max(0, n))


def estimate_combinations(ranges: Sequence[ParameterRange]) -> int:
    """Product of per-axis value counts."""
    return math.prod(r.count for r in ranges)


def default_parameter_ranges(
    strategy: Union[str, Strategy],
    max_steps: int = GRID_SEARCH.default_range_steps
) -> List[ParameterRange]:
    """
    Ranges derived from a strategy's declared parameters.

    The declared step is widened so no axis has more than ``max_steps``
    intervals; it is never narrowed below the declared step.
    """
    strat = resolve_strategy(strategy)
    ranges = []
    for p in strat.parameters:
        span = p.max - p.min
        step = span / max_steps if span / p.step > max_steps else p.step
        ranges.append(ParameterRange(p.name, p.min, p.max, max(step, p.step)))
    return ranges


def create_parameter_ranges(
    strategy: Union[str, Strategy],
    overrides: Optional[Dict[str, Dict[str, float]]] = None
) -> List[ParameterRange]:
    """
    Ranges from a strategy's declared parameters with per-name overrides.

    Args:
        strategy: Strategy or registry identifier
        overrides: e.g. {'period': {'min': 10, 'step': 2}}

    Returns:
        One ParameterRange per declared parameter
    """
    strat = resolve_strategy(strategy)
    overrides = overrides or {}
    ranges = []
    for p in strat.parameters:
        custom = overrides.get(p.name, {})
        ranges.append(ParameterRange(
            name=p.name,
            min=custom.get('min', p.min),
            max=custom.get('max', p.max),
            step=custom.get('step', p.step),
        ))
    return ranges


# =============================================================================
# SECTION 3: DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class OptimizationResult:
    """One evaluated parameter combination."""
    parameters: Dict[str, float]
    metrics: BacktestMetrics
    score: float


@dataclass
class GridSearchConfig:
    """Inputs for ``run_grid_search``."""
    strategy: Union[str, Strategy]
    bars: pd.DataFrame
    parameter_ranges: List[ParameterRange]
    objective: Union[str, OptimizationObjective] = OptimizationObjective.WIN_RATE
    max_combinations: int = GRID_SEARCH.max_combinations
    min_trades: int = GRID_SEARCH.min_trades
    top_results: int = GRID_SEARCH.top_results
    base_params: Dict[str, float] = field(default_factory=dict)
    settings: BacktestSettings = BACKTEST


@dataclass
class GridSearchResult:
    """Ranked outcome of a grid search."""
    best_params: Dict[str, float]
    best_metrics: BacktestMetrics
    best_score: float
    results: List[OptimizationResult]
    objective: OptimizationObjective
    total_combinations: int
    executed_combinations: int
    failed_combinations: int = 0
    filtered_combinations: int = 0
    execution_time_ms: float = 0.0

    @property
    def is_partial(self) -> bool:
        """True when the cap stopped the search before the full grid."""
        return self.executed_combinations < self.total_combinations

    @property
    def best(self) -> OptimizationResult:
        return OptimizationResult(self.best_params, self.best_metrics, self.best_score)


# =============================================================================
# SECTION 4: OPTIMIZER
# =============================================================================

class GridSearchOptimizer:
    """
    Exhaustive parameter search over a bar series.

    Evaluation is sequential and deterministic: the same inputs always
    produce the same ranking. Ties keep generation order.
    """

    def __init__(
        self,
        settings: GridSearchSettings = GRID_SEARCH,
        backtest_settings: BacktestSettings = BACKTEST
    ):
        self.settings = settings
        self.backtest_settings = backtest_settings

    def search(
        self,
        strategy: Union[str, Strategy],
        bars: pd.DataFrame,
        ranges: Sequence[ParameterRange],
        objective: Union[str, OptimizationObjective] = OptimizationObjective.WIN_RATE,
        max_combinations: Optional[int] = None,
        min_trades: Optional[int] = None,
        top_results: Optional[int] = None,
        base_params: Optional[Dict[str, float]] = None
    ) -> GridSearchResult:
        """
        Evaluate the grid and rank it by ``objective``.

        Args:
            strategy: Strategy or registry identifier
            bars: Price bars to backtest on
            ranges: Parameter axes
            objective: Scalar to maximize
            max_combinations: Evaluation cap (settings default)
            min_trades: Combinations with fewer trades are dropped
            top_results: Size of the retained ranked list
            base_params: Fixed parameters under every combination

        Returns:
            GridSearchResult, best first

        Raises:
            ValidationError: Malformed ranges or settings
            NoValidCombinationError: Every combination failed or was filtered
        """
        start_time = time.time()

        strat = resolve_strategy(strategy)
        frame = ensure_bars(bars)
        objective = OptimizationObjective.parse(objective)
        cap = self.settings.max_combinations if max_combinations is None else max_combinations
        min_trades = self.settings.min_trades if min_trades is None else min_trades
        top_k = self.settings.top_results if top_results is None else top_results
        require(cap >= 1, f"max_combinations must be at least 1, got {cap}")
        require(top_k >= 1, f"top_results must be at least 1, got {top_k}")

        grid = ParameterGrid(ranges, base_params, self.settings.value_decimals)
        total = len(grid)
        executed = min(total, cap)
        if executed < total:
            logger.warning(
                f"Grid for {strat.identifier} has {total:,} combinations; "
                f"evaluating the first {executed:,}"
            )
        logger.info(
            f"Grid search {strat.identifier}: {executed:,} combinations, "
            f"objective={objective.value}, bars={len(frame)}"
        )

        results: List[OptimizationResult] = []
        failed = 0
        filtered = 0

        for params in grid.head(executed):
            try:
                run = run_backtest(strat, frame, params, settings=self.backtest_settings)
            except Exception as exc:
                failed += 1
                logger.debug(f"Combination {params} failed: {exc}")
                continue

            if run.metrics.total_trades < min_trades:
                filtered += 1
                continue

            score = score_metrics(run.metrics, objective, self.backtest_settings.infinite_score)
            results.append(OptimizationResult(params, run.metrics, score))

        if not results:
            raise NoValidCombinationError(
                f"No valid parameter combinations found for {strat.identifier} "
                f"({executed} evaluated, {failed} failed, {filtered} below {min_trades} trades)"
            )

        results.sort(key=lambda r: r.score, reverse=True)
        best = results[0]

        execution_time = (time.time() - start_time) * 1000
        logger.info(
            f"Grid search {strat.identifier} done in {execution_time:.0f}ms: "
            f"best {objective.value}={best.score:.4f} at {best.parameters}"
        )

        return GridSearchResult(
            best_params=best.parameters,
            best_metrics=best.metrics,
            best_score=best.score,
            results=results[:top_k],
            objective=objective,
            total_combinations=total,
            executed_combinations=executed,
            failed_combinations=failed,
            filtered_combinations=filtered,
            execution_time_ms=execution_time
        )


# =============================================================================
# SECTION 5: OUTPUT FORMATTING
# =============================================================================

def format_grid_search_report(result: GridSearchResult, top: int = 10) -> str:
    """Format the ranked grid as a text table."""
    lines = [
        "=" * 70,
        "GRID SEARCH RESULTS",
        "=" * 70,
        f"Objective: {result.objective.value}",
        f"Combinations: {result.executed_combinations:,} evaluated of {result.total_combinations:,}"
        + (" (partial)" if result.is_partial else ""),
        f"Failed / filtered: {result.failed_combinations} / {result.filtered_combinations}",
        f"Elapsed: {result.execution_time_ms:,.0f} ms",
        "",
        f"Best score: {result.best_score:.4f}",
        f"Best parameters: {result.best_params}",
        "",
        "-" * 70,
        f"{'Rank':<6}{'Score':>12}{'Trades':>8}{'Win %':>8}{'Return %':>10}  Parameters",
        "-" * 70,
    ]
    for rank, r in enumerate(result.results[:top], start=1):
        lines.append(
            f"{rank:<6}{r.score:>12.4f}{r.metrics.total_trades:>8}"
            f"{r.metrics.win_rate:>8.1f}{r.metrics.total_return:>10.2f}  {r.parameters}"
        )
    lines.append("=" * 70)
    return "\n".join(lines)


# =============================================================================
# SECTION 6: CONVENIENCE FUNCTIONS
# =============================================================================

def run_grid_search(config: GridSearchConfig) -> GridSearchResult:
    """
    Run a grid search described by a config object.

    Example:
        >>> config = GridSearchConfig('TF001', bars, default_parameter_ranges('TF001'),
        ...                           objective='sharpe_ratio')
        >>> result = run_grid_search(config)
        >>> print(result.best_params)
    """
    optimizer = GridSearchOptimizer(backtest_settings=config.settings)
    return optimizer.search(
        config.strategy,
        config.bars,
        config.parameter_ranges,
        objective=config.objective,
        max_combinations=config.max_combinations,
        min_trades=config.min_trades,
        top_results=config.top_results,
        base_params=config.base_params
    )


__all__ = [
    'OptimizationObjective',
    'score_metrics',
    'ParameterRange',
    'ParameterGrid',
    'estimate_combinations',
    'default_parameter_ranges',
    'create_parameter_ranges',
    'OptimizationResult',
    'GridSearchConfig',
    'GridSearchResult',
    'GridSearchOptimizer',
    'format_grid_search_report',
    'run_grid_search',
]
