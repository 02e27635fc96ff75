"""
Tests for the Grid Search Optimizer.

============================================================
PURPOSE
============================================================
Covers:
1. Parameter range validation and value generation
2. Lazy grid enumeration order and size
3. Combination caps and partial results
4. Deterministic ranking and objective scoring
5. Failure accounting
============================================================
"""

import math

import pytest

from conftest import HoldingPeriodStrategy
from strategy_lab.backtest_engine import BacktestMetrics
from strategy_lab.config import GridSearchSettings
from strategy_lab.errors import NoValidCombinationError, ValidationError
from strategy_lab.grid_search import (
    GridSearchConfig,
    GridSearchOptimizer,
    OptimizationObjective,
    ParameterGrid,
    ParameterRange,
    create_parameter_ranges,
    default_parameter_ranges,
    estimate_combinations,
    format_grid_search_report,
    run_grid_search,
    score_metrics,
)


# ============================================================
# PARAMETER SPACE
# ============================================================

class TestParameterRange:
    """Single-axis validation and values."""

    def test_inclusive_values(self):
        assert ParameterRange("period", 5, 15, 5).values() == [5, 10, 15]

    def test_fractional_step_keeps_endpoint(self):
        r = ParameterRange("stdDev", 1.0, 3.0, 0.5)
        assert r.count == 5
        assert r.values() == [1.0, 1.5, 2.0, 2.5, 3.0]

    def test_values_are_rounded(self):
        assert ParameterRange("x", 0.1, 0.3, 0.1).values() == [0.1, 0.2, 0.3]

    @pytest.mark.parametrize("bad", [
        ParameterRange("x", 1, 5, 0),
        ParameterRange("x", 1, 5, -1),
        ParameterRange("x", 5, 1, 1),
        ParameterRange("", 1, 5, 1),
        ParameterRange("x", 1, math.inf, 1),
        ParameterRange("x", float("nan"), 5, 1),
    ])
    def test_malformed_ranges_rejected(self, bad):
        with pytest.raises(ValidationError):
            bad.validate()


class TestParameterGrid:
    """Cartesian enumeration."""

    def test_first_range_is_outermost(self):
        grid = ParameterGrid([ParameterRange("a", 1, 2, 1), ParameterRange("b", 10, 30, 10)])
        assert list(grid) == [
            {"a": 1, "b": 10}, {"a": 1, "b": 20}, {"a": 1, "b": 30},
            {"a": 2, "b": 10}, {"a": 2, "b": 20}, {"a": 2, "b": 30},
        ]

    def test_len_without_materializing(self):
        grid = ParameterGrid([ParameterRange("a", 0, 999, 1), ParameterRange("b", 0, 999, 1)])
        assert len(grid) == 1_000_000
        assert len(list(grid.head(3))) == 3

    def test_base_params_underneath(self):
        grid = ParameterGrid([ParameterRange("a", 1, 2, 1)], base_params={"a": 99, "c": 7})
        assert list(grid) == [{"a": 1, "c": 7}, {"a": 2, "c": 7}]

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValidationError):
            ParameterGrid([ParameterRange("a", 1, 2, 1), ParameterRange("a", 1, 3, 1)])

    def test_estimate_combinations(self):
        ranges = [ParameterRange("a", 1, 10, 1), ParameterRange("b", 1, 3, 1)]
        assert estimate_combinations(ranges) == 30


class TestRangeBuilders:
    """Ranges derived from a strategy's declared parameters."""

    def test_default_ranges_limit_steps(self):
        ranges = {r.name: r for r in default_parameter_ranges("TF001", max_steps=10)}
        assert ranges["longPeriod"].step == pytest.approx(18.0)
        assert ranges["shortPeriod"].step == pytest.approx(5.0)
        assert all(r.count <= 11 for r in ranges.values())

    def test_overrides(self):
        ranges = {r.name: r for r in create_parameter_ranges("BO002", {"period": {"min": 30, "step": 10}})}
        assert ranges["period"] == ParameterRange("period", 30, 60, 10)


# ============================================================
# OBJECTIVES
# ============================================================

class TestObjectives:
    """Scoring of metrics objects."""

    def test_parse(self):
        assert OptimizationObjective.parse("sharpe_ratio") is OptimizationObjective.SHARPE_RATIO
        with pytest.raises(ValidationError):
            OptimizationObjective.parse("calmar")

    def test_infinite_profit_factor_scored_as_sentinel(self):
        metrics = BacktestMetrics.empty()
        from dataclasses import replace
        metrics = replace(metrics, profit_factor=float("inf"))
        assert score_metrics(metrics, "profit_factor") == 1000.0
        assert score_metrics(metrics, "profit_factor", infinite_score=50) == 50


# ============================================================
# OPTIMIZER
# ============================================================

class TestGridSearchOptimizer:
    """End-to-end search behaviour."""

    def test_three_combination_scenario(self, walk_bars, hold_strategy):
        result = GridSearchOptimizer().search(
            hold_strategy, walk_bars, [ParameterRange("hold", 5, 15, 5)], "total_return"
        )
        assert result.total_combinations == 3
        assert result.executed_combinations == 3
        assert not result.is_partial
        assert len(result.results) == 3
        assert [r.score for r in result.results] == sorted((r.score for r in result.results), reverse=True)
        assert result.best_params == result.results[0].parameters
        assert result.best_score == result.results[0].score

    def test_cap_gives_partial_result(self, walk_bars, hold_strategy):
        result = GridSearchOptimizer().search(
            hold_strategy, walk_bars, [ParameterRange("hold", 5, 15, 5)], max_combinations=2
        )
        assert result.total_combinations == 3
        assert result.executed_combinations == 2
        assert result.is_partial
        assert {r.parameters["hold"] for r in result.results} == {5, 10}

    def test_deterministic(self, walk_bars):
        ranges = [ParameterRange("shortPeriod", 5, 15, 5), ParameterRange("longPeriod", 20, 40, 10)]
        first = GridSearchOptimizer().search("TF001", walk_bars, ranges, "sharpe_ratio")
        second = GridSearchOptimizer().search("TF001", walk_bars, ranges, "sharpe_ratio")
        assert [r.parameters for r in first.results] == [r.parameters for r in second.results]
        assert [r.score for r in first.results] == [r.score for r in second.results]

    def test_best_matches_standalone_backtest(self, walk_bars, hold_strategy):
        from strategy_lab.backtest_engine import run_backtest
        result = GridSearchOptimizer().search(
            hold_strategy, walk_bars, [ParameterRange("hold", 2, 10, 2)], "total_return"
        )
        rerun = run_backtest(hold_strategy, walk_bars, result.best_params)
        assert rerun.metrics.total_return == pytest.approx(result.best_score)

    def test_top_results_truncates(self, walk_bars, hold_strategy):
        result = GridSearchOptimizer().search(
            hold_strategy, walk_bars, [ParameterRange("hold", 1, 10, 1)], top_results=4
        )
        assert len(result.results) == 4
        assert result.executed_combinations == 10

    def test_failed_combinations_counted(self, walk_bars, hold_strategy):
        result = GridSearchOptimizer().search(
            hold_strategy, walk_bars, [ParameterRange("hold", 0, 2, 1)]
        )
        assert result.failed_combinations == 1
        assert len(result.results) == 2

    def test_all_failures_raise(self, walk_bars, hold_strategy):
        with pytest.raises(NoValidCombinationError):
            GridSearchOptimizer().search(hold_strategy, walk_bars, [ParameterRange("hold", -2, 0, 1)])

    def test_min_trades_filter(self, walk_bars, hold_strategy):
        with pytest.raises(NoValidCombinationError):
            GridSearchOptimizer().search(
                hold_strategy, walk_bars, [ParameterRange("hold", 5, 10, 5)], min_trades=10_000
            )

    def test_settings_cap(self, walk_bars, hold_strategy):
        optimizer = GridSearchOptimizer(GridSearchSettings(max_combinations=1))
        result = optimizer.search(hold_strategy, walk_bars, [ParameterRange("hold", 5, 15, 5)])
        assert result.executed_combinations == 1

    def test_invalid_cap_rejected(self, walk_bars, hold_strategy):
        with pytest.raises(ValidationError):
            GridSearchOptimizer().search(
                hold_strategy, walk_bars, [ParameterRange("hold", 5, 15, 5)], max_combinations=0
            )


class TestRunGridSearch:
    """Config-driven entry point."""

    def test_config_entry_point_and_report(self, walk_bars):
        config = GridSearchConfig(
            strategy="BO002",
            bars=walk_bars,
            parameter_ranges=[ParameterRange("period", 10, 30, 10)],
            objective=OptimizationObjective.TOTAL_RETURN,
        )
        result = run_grid_search(config)
        assert result.objective is OptimizationObjective.TOTAL_RETURN
        assert result.total_combinations == 3
        report = format_grid_search_report(result)
        assert "GRID SEARCH" in report
