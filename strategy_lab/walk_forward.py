"""
Walk-Forward Validator
======================

Time-series cross-validation for strategy parameters. The bar series is
split into chronological windows; in each window the parameters are
optimized on the train segment only, then evaluated once on the following
test segment. Comparing in-sample and out-of-sample scores across windows
measures how much of the optimized performance is overfit.

    Pardo, R. (2008). "The Evaluation and Optimization of Trading Strategies."

SEGMENTATION
------------
    N bars, W windows, window length L = floor(N / W)
    train length = floor(L * train_ratio), test length = L - train length

    Rolling:   train [i*L, i*L + train)           test [train end, + test)
    Anchored:  train [0, min((i+1)*L, N - test))   test [train end, + test)

Test bars are never seen by the optimizer of the same window.

SCORING
-------
    overfit ratio = mean(train score) / mean(test score)      (999 if test mean is 0)
    consistency   = % of windows with a positive test return
    robustness    = mean of: consistency,
                             clamp(avg test return + 50, 0, 100),
                             overfit credit (100 at ratio <= 1, 0 above 2)
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from strategy_lab.backtest_engine import BacktestMetrics, ensure_bars, run_backtest
from strategy_lab.config import (
    BACKTEST,
    WALK_FORWARD,
    BacktestSettings,
    GridSearchSettings,
    OverfitRisk,
    WalkForwardSettings,
)
from strategy_lab.errors import NoValidWindowError, require
from strategy_lab.grid_search import (
    GridSearchOptimizer,
    OptimizationObjective,
    ParameterRange,
    score_metrics,
)
from strategy_lab.strategies import Strategy, resolve_strategy

logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class WindowSpan:
    """Half-open bar index range [start, end) with its first and last timestamps."""
    start: int
    end: int
    start_timestamp: pd.Timestamp
    end_timestamp: pd.Timestamp

    @property
    def length(self) -> int:
        return self.end - self.start

    def indices(self) -> range:
        return range(self.start, self.end)


@dataclass(frozen=True)
class WalkForwardWindow:
    """Optimization and out-of-sample evaluation of one window."""
    index: int
    train_span: WindowSpan
    test_span: WindowSpan
    best_parameters: Dict[str, float]
    train_metrics: BacktestMetrics
    test_metrics: BacktestMetrics
    train_score: float
    test_score: float


@dataclass(frozen=True)
class AggregateMetrics:
    """Window-averaged metrics for one side (train or test)."""
    avg_win_rate: float
    avg_return: float
    avg_profit_factor: float  # Each window capped before averaging
    avg_sharpe: float


@dataclass
class WalkForwardConfig:
    """Inputs for ``run_walk_forward``."""
    strategy: Union[str, Strategy]
    bars: pd.DataFrame
    parameter_ranges: List[ParameterRange]
    objective: Union[str, OptimizationObjective] = OptimizationObjective.WIN_RATE
    window_count: int = WALK_FORWARD.default_windows
    train_ratio: float = WALK_FORWARD.default_train_ratio
    anchored_start: bool = False
    base_params: Dict[str, float] = field(default_factory=dict)
    settings: BacktestSettings = BACKTEST


@dataclass
class WalkForwardResult:
    """Complete walk-forward analysis."""
    strategy_id: str
    objective: OptimizationObjective
    requested_windows: int
    train_ratio: float
    anchored_start: bool
    windows: List[WalkForwardWindow]
    train_aggregate: AggregateMetrics
    test_aggregate: AggregateMetrics
    avg_train_score: float
    avg_test_score: float
    overfit_ratio: float
    consistency: float
    robustness_score: int
    overfit_risk: OverfitRisk = OverfitRisk.HIGH
    recommendation: str = ""
    execution_time_ms: float = 0.0

    @property
    def window_count(self) -> int:
        return len(self.windows)


@dataclass
class SplitValidationResult:
    """Single train/test split validation."""
    best_parameters: Dict[str, float]
    train_score: float
    test_score: float
    train_metrics: BacktestMetrics
    test_metrics: BacktestMetrics
    degradation_pct: float
    overfit_risk: OverfitRisk
    objective: OptimizationObjective


# =============================================================================
# SECTION 2: SCORING HELPERS
# =============================================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def overfit_credit(overfit_ratio: float) -> float:
    """
    Robustness contribution of the overfit ratio, 0-100.

    Full credit at or below 1 (test matches or beats train), none above 2
    or for a negative ratio (train and test scores of opposite sign).
    """
    if overfit_ratio < 0 or overfit_ratio > 2:
        return 0.0
    return float(np.clip((2 - overfit_ratio) * 100, 0, 100))


def aggregate_metrics(
    metrics: Sequence[BacktestMetrics],
    profit_factor_cap: float = WALK_FORWARD.profit_factor_cap
) -> AggregateMetrics:
    """Average win rate, return, capped profit factor and Sharpe."""
    return AggregateMetrics(
        avg_win_rate=float(np.mean([m.win_rate for m in metrics])),
        avg_return=float(np.mean([m.total_return for m in metrics])),
        avg_profit_factor=float(np.mean([min(m.profit_factor, profit_factor_cap) for m in metrics])),
        avg_sharpe=float(np.mean([m.sharpe_ratio for m in metrics]))
    )


def classify_overfit_risk(
    overfit_ratio: float,
    consistency: float,
    robustness_score: float,
    settings: WalkForwardSettings = WALK_FORWARD
) -> OverfitRisk:
    """Map the three walk-forward scores to a risk level."""
    max_ratio, min_consistency, min_robustness = settings.low_risk
    if overfit_ratio <= max_ratio and consistency >= min_consistency and robustness_score >= min_robustness:
        return OverfitRisk.LOW
    max_ratio, min_consistency, min_robustness = settings.medium_risk
    if overfit_ratio <= max_ratio and consistency >= min_consistency and robustness_score >= min_robustness:
        return OverfitRisk.MEDIUM
    return OverfitRisk.HIGH


def evaluate_overfit_risk(result: WalkForwardResult, settings: WalkForwardSettings = WALK_FORWARD) -> OverfitRisk:
    """Risk level of a completed walk-forward run."""
    return classify_overfit_risk(
        result.overfit_ratio, result.consistency, result.robustness_score, settings
    )


def walk_forward_recommendation(result: WalkForwardResult, settings: WalkForwardSettings = WALK_FORWARD) -> str:
    """
    Human-readable verdict derived from which thresholds were missed.

    First line is the risk headline; each further line names one weakness.
    """
    risk = evaluate_overfit_risk(result, settings)
    headline = {
        OverfitRisk.LOW: "[OK] Low overfit risk: parameters generalize out of sample",
        OverfitRisk.MEDIUM: "[CAUTION] Moderate overfit risk",
        OverfitRisk.HIGH: "[WARNING] High overfit risk: optimized results may not hold",
    }[risk]

    lines = [headline]
    if result.overfit_ratio > settings.medium_risk[0]:
        lines.append("- Large gap between train and test performance")
    if result.consistency < settings.medium_risk[1]:
        lines.append("- Test windows are inconsistent (fewer than half profitable)")
    if result.test_aggregate.avg_return < 0:
        lines.append("- Average test-window return is negative")
    if result.test_aggregate.avg_profit_factor < 1:
        lines.append("- Average test-window profit factor is below 1")
    return "\n".join(lines)


# =============================================================================
# SECTION 3: WALK-FORWARD VALIDATOR
# =============================================================================

class WalkForwardValidator:
    """
    Walk-forward validator with rolling or anchored windows.

    Each window runs a capped grid search on its train segment and a single
    backtest on its test segment with the winning parameters.
    """

    def __init__(
        self,
        window_count: int = WALK_FORWARD.default_windows,
        train_ratio: float = WALK_FORWARD.default_train_ratio,
        anchored_start: bool = False,
        settings: WalkForwardSettings = WALK_FORWARD,
        backtest_settings: BacktestSettings = BACKTEST
    ):
        """
        Initialize walk-forward validator.

        Args:
            window_count: Number of windows (settings bounds, default 2-10)
            train_ratio: Train share of each window (default bounds 0.5-0.9)
            anchored_start: Grow every train segment from bar 0
            settings: Bounds, caps and risk thresholds
            backtest_settings: Settings passed to every backtest
        """
        require(
            settings.min_windows <= window_count <= settings.max_windows,
            f"Window count must be between {settings.min_windows} and {settings.max_windows}, got {window_count}"
        )
        require(
            settings.min_train_ratio <= train_ratio <= settings.max_train_ratio,
            f"Train ratio must be between {settings.min_train_ratio} and {settings.max_train_ratio}, got {train_ratio}"
        )
        self.window_count = int(window_count)
        self.train_ratio = float(train_ratio)
        self.anchored_start = anchored_start
        self.settings = settings
        self.backtest_settings = backtest_settings

    def segment_lengths(self, total_bars: int) -> Tuple[int, int, int]:
        """
        (window, train, test) lengths for a series of ``total_bars``.

        Raises:
            ValidationError: Too few bars, or segments below the minimum length
        """
        require(
            total_bars >= self.settings.min_bars,
            f"Insufficient data for walk-forward analysis: {total_bars} bars "
            f"(minimum {self.settings.min_bars})"
        )
        window_length = total_bars // self.window_count
        train_length = int(math.floor(window_length * self.train_ratio))
        test_length = window_length - train_length
        require(
            train_length >= self.settings.min_train_bars and test_length >= self.settings.min_test_bars,
            f"Data too short for {self.window_count} windows: train={train_length} bars "
            f"(min {self.settings.min_train_bars}), test={test_length} bars (min {self.settings.min_test_bars})"
        )
        return window_length, train_length, test_length

    def window_bounds(self, total_bars: int) -> List[Tuple[int, int, int, int, int]]:
        """
        (window index, train_start, train_end, test_start, test_end) per window.

        Ends are exclusive. Windows that would run past the data or fall
        under the minimum segment lengths are left out.
        """
        window_length, train_length, test_length = self.segment_lengths(total_bars)
        bounds = []
        for i in range(self.window_count):
            if self.anchored_start:
                train_start = 0
                train_end = min((i + 1) * window_length, total_bars - test_length)
            else:
                train_start = i * window_length
                train_end = train_start + train_length
            test_start = train_end
            test_end = min(test_start + test_length, total_bars)

            if train_end >= total_bars:
                logger.warning(f"Window {i} skipped: train segment reaches the end of the data")
                continue
            if (train_end - train_start) < self.settings.min_train_bars or \
                    (test_end - test_start) < self.settings.min_test_bars:
                logger.warning(f"Window {i} skipped: segment below minimum length")
                continue
            bounds.append((i, train_start, train_end, test_start, test_end))
        return bounds

    def validate(
        self,
        strategy: Union[str, Strategy],
        bars: pd.DataFrame,
        ranges: Sequence[ParameterRange],
        objective: Union[str, OptimizationObjective] = OptimizationObjective.WIN_RATE,
        base_params: Optional[Dict[str, float]] = None
    ) -> WalkForwardResult:
        """
        Run walk-forward analysis.

        Args:
            strategy: Strategy or registry identifier
            bars: Full price series
            ranges: Parameter axes searched in every train segment
            objective: Score used for selection and comparison
            base_params: Fixed parameters under every combination

        Returns:
            WalkForwardResult with per-window detail and aggregate scores

        Raises:
            ValidationError: Bad bounds or too little data
            NoValidWindowError: Segmentation produced no usable window
            NoValidCombinationError: A train segment had no valid combination
        """
        start_time = time.time()

        strat = resolve_strategy(strategy)
        frame = ensure_bars(bars)
        objective = OptimizationObjective.parse(objective)

        bounds = self.window_bounds(len(frame))
        if not bounds:
            raise NoValidWindowError("No valid windows generated")

        logger.info(
            f"Walk-forward {strat.identifier}: {len(bounds)} windows "
            f"({'anchored' if self.anchored_start else 'rolling'}), train ratio {self.train_ratio}"
        )

        optimizer = GridSearchOptimizer(
            GridSearchSettings(max_combinations=self.settings.max_combinations, min_trades=0),
            self.backtest_settings
        )

        windows: List[WalkForwardWindow] = []
        for i, train_start, train_end, test_start, test_end in bounds:
            train_bars = frame.iloc[train_start:train_end]
            test_bars = frame.iloc[test_start:test_end]

            search = optimizer.search(
                strat, train_bars, ranges, objective, base_params=base_params
            )
            test_run = run_backtest(
                strat, test_bars, search.best_params, settings=self.backtest_settings
            )
            test_score = score_metrics(
                test_run.metrics, objective, self.backtest_settings.infinite_score
            )

            windows.append(WalkForwardWindow(
                index=i,
                train_span=self._span(frame, train_start, train_end),
                test_span=self._span(frame, test_start, test_end),
                best_parameters=search.best_params,
                train_metrics=search.best_metrics,
                test_metrics=test_run.metrics,
                train_score=search.best_score,
                test_score=test_score
            ))
            logger.debug(
                f"Window {i}: train {search.best_score:.4f} / test {test_score:.4f} "
                f"with {search.best_params}"
            )

        result = self._summarize(strat, objective, windows)
        result.execution_time_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Walk-forward done: overfit ratio {result.overfit_ratio:.2f}, "
            f"consistency {result.consistency:.0f}%, robustness {result.robustness_score}, "
            f"risk {result.overfit_risk.value}"
        )
        return result

    def _summarize(
        self,
        strategy: Strategy,
        objective: OptimizationObjective,
        windows: List[WalkForwardWindow]
    ) -> WalkForwardResult:
        train_aggregate = aggregate_metrics([w.train_metrics for w in windows], self.settings.profit_factor_cap)
        test_aggregate = aggregate_metrics([w.test_metrics for w in windows], self.settings.profit_factor_cap)

        avg_train_score = float(np.mean([w.train_score for w in windows]))
        avg_test_score = float(np.mean([w.test_score for w in windows]))
        if avg_test_score != 0:
            overfit_ratio = avg_train_score / avg_test_score
        else:
            overfit_ratio = self.settings.overfit_sentinel

        consistency = sum(1 for w in windows if w.test_metrics.total_return > 0) / len(windows) * 100
        test_performance = float(np.clip(test_aggregate.avg_return + 50, 0, 100))
        robustness = _round_half_up((consistency + test_performance + overfit_credit(overfit_ratio)) / 3)

        result = WalkForwardResult(
            strategy_id=strategy.identifier,
            objective=objective,
            requested_windows=self.window_count,
            train_ratio=self.train_ratio,
            anchored_start=self.anchored_start,
            windows=windows,
            train_aggregate=train_aggregate,
            test_aggregate=test_aggregate,
            avg_train_score=avg_train_score,
            avg_test_score=avg_test_score,
            overfit_ratio=overfit_ratio,
            consistency=consistency,
            robustness_score=robustness
        )
        result.overfit_risk = evaluate_overfit_risk(result, self.settings)
        result.recommendation = walk_forward_recommendation(result, self.settings)
        return result

    @staticmethod
    def _span(frame: pd.DataFrame, start: int, end: int) -> WindowSpan:
        return WindowSpan(
            start=start,
            end=end,
            start_timestamp=frame.index[start],
            end_timestamp=frame.index[end - 1]
        )


# =============================================================================
# SECTION 4: SINGLE-SPLIT VALIDATION
# =============================================================================

def split_train_test(bars: pd.DataFrame, train_ratio: float) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Split at floor(len * train_ratio); the test part starts right after."""
    require(0 < train_ratio < 1, f"train_ratio must be in (0, 1), got {train_ratio}")
    split = int(math.floor(len(bars) * train_ratio))
    return bars.iloc[:split], bars.iloc[split:]


def classify_degradation(
    train_score: float,
    test_score: float,
    settings: WalkForwardSettings = WALK_FORWARD
) -> Tuple[float, OverfitRisk]:
    """
    Degradation % from train to test and its risk level.

    A zero train score gives no reference point and is treated as high risk.
    """
    if train_score == 0:
        return 0.0, OverfitRisk.HIGH
    degradation = (train_score - test_score) / train_score * 100
    if degradation < settings.split_low_degradation:
        return degradation, OverfitRisk.LOW
    if degradation < settings.split_medium_degradation:
        return degradation, OverfitRisk.MEDIUM
    return degradation, OverfitRisk.HIGH


def validate_single_split(
    strategy: Union[str, Strategy],
    bars: pd.DataFrame,
    ranges: Sequence[ParameterRange],
    objective: Union[str, OptimizationObjective] = OptimizationObjective.WIN_RATE,
    train_ratio: float = WALK_FORWARD.default_train_ratio,
    min_trades: int = 0,
    base_params: Optional[Dict[str, float]] = None,
    backtest_settings: BacktestSettings = BACKTEST
) -> SplitValidationResult:
    """
    Optimize on the first part of the series and score on the remainder.

    A lighter check than the full walk-forward: one split, risk judged by
    how much the objective degrades out of sample.
    """
    strat = resolve_strategy(strategy)
    frame = ensure_bars(bars)
    objective = OptimizationObjective.parse(objective)
    train_bars, test_bars = split_train_test(frame, train_ratio)

    optimizer = GridSearchOptimizer(backtest_settings=backtest_settings)
    search = optimizer.search(
        strat, train_bars, ranges, objective, min_trades=min_trades, base_params=base_params
    )
    test_run = run_backtest(strat, test_bars, search.best_params, settings=backtest_settings)
    test_score = score_metrics(test_run.metrics, objective, backtest_settings.infinite_score)
    degradation, risk = classify_degradation(search.best_score, test_score)

    return SplitValidationResult(
        best_parameters=search.best_params,
        train_score=search.best_score,
        test_score=test_score,
        train_metrics=search.best_metrics,
        test_metrics=test_run.metrics,
        degradation_pct=degradation,
        overfit_risk=risk,
        objective=objective
    )


# =============================================================================
# SECTION 5: OUTPUT FORMATTING
# =============================================================================

def format_walk_forward_report(result: WalkForwardResult) -> str:
    """Format walk-forward results as a text report."""
    tr, te = result.train_aggregate, result.test_aggregate
    lines = [
        "=" * 70,
        "WALK-FORWARD ANALYSIS",
        "=" * 70,
        f"Strategy: {result.strategy_id}   Objective: {result.objective.value}",
        f"Windows: {result.window_count} of {result.requested_windows} "
        f"({'anchored' if result.anchored_start else 'rolling'}), train ratio {result.train_ratio:.2f}",
        "",
        "-" * 70,
        f"{'#':<4}{'Train':>25}{'Test':>25}{'IS':>8}{'OOS':>8}",
        "-" * 70,
    ]
    for w in result.windows:
        train = f"{w.train_span.start_timestamp:%Y-%m-%d}..{w.train_span.end_timestamp:%Y-%m-%d}"
        test = f"{w.test_span.start_timestamp:%Y-%m-%d}..{w.test_span.end_timestamp:%Y-%m-%d}"
        lines.append(f"{w.index:<4}{train:>25}{test:>25}{w.train_score:>8.2f}{w.test_score:>8.2f}")

    lines.extend([
        "",
        "-" * 70,
        f"{'':<20}{'Train':>12}{'Test':>12}",
        f"{'Avg Win Rate %':<20}{tr.avg_win_rate:>12.2f}{te.avg_win_rate:>12.2f}",
        f"{'Avg Return %':<20}{tr.avg_return:>12.2f}{te.avg_return:>12.2f}",
        f"{'Avg Profit Factor':<20}{tr.avg_profit_factor:>12.2f}{te.avg_profit_factor:>12.2f}",
        f"{'Avg Sharpe':<20}{tr.avg_sharpe:>12.3f}{te.avg_sharpe:>12.3f}",
        "",
        f"Overfit Ratio:    {result.overfit_ratio:.2f}",
        f"Consistency:      {result.consistency:.0f}%",
        f"Robustness Score: {result.robustness_score}/100",
        f"Overfit Risk:     {result.overfit_risk.value.upper()}",
        "",
        result.recommendation,
        "=" * 70,
    ])
    return "\n".join(lines)


# =============================================================================
# SECTION 6: CONVENIENCE FUNCTIONS
# =============================================================================

def run_walk_forward(config: WalkForwardConfig) -> WalkForwardResult:
    """
    Run walk-forward analysis described by a config object.

    Example:
        >>> config = WalkForwardConfig('MO002', bars, default_parameter_ranges('MO002'),
        ...                            objective='total_return', window_count=4)
        >>> result = run_walk_forward(config)
        >>> print(result.overfit_risk, result.robustness_score)
    """
    validator = WalkForwardValidator(
        window_count=config.window_count,
        train_ratio=config.train_ratio,
        anchored_start=config.anchored_start,
        backtest_settings=config.settings
    )
    return validator.validate(
        config.strategy,
        config.bars,
        config.parameter_ranges,
        objective=config.objective,
        base_params=config.base_params
    )


__all__ = [
    'WindowSpan',
    'WalkForwardWindow',
    'AggregateMetrics',
    'WalkForwardConfig',
    'WalkForwardResult',
    'SplitValidationResult',
    'overfit_credit',
    'aggregate_metrics',
    'classify_overfit_risk',
    'evaluate_overfit_risk',
    'walk_forward_recommendation',
    'WalkForwardValidator',
    'split_train_test',
    'classify_degradation',
    'validate_single_split',
    'format_walk_forward_report',
    'run_walk_forward',
]
