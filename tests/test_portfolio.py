"""
Tests for the Portfolio Optimizer.

============================================================
PURPOSE
============================================================
Covers:
1. Return statistics (covariance, correlation, derived returns)
2. Bounded-simplex weight projection
3. Every allocation method on both search branches
4. Combined metrics and efficient frontier
5. Input validation
============================================================
"""

import numpy as np
import pandas as pd
import pytest

from conftest import ScriptedStrategy, make_bars
from strategy_lab.backtest_engine import SignalType, run_backtest
from strategy_lab.errors import ValidationError
from strategy_lab.portfolio import (
    AllocationMethod,
    PortfolioAsset,
    PortfolioConfig,
    PortfolioOptimizer,
    calculate_returns,
    correlation_matrix,
    covariance_matrix,
    describe_method,
    format_portfolio_report,
    project_to_bounds,
    returns_frame,
    run_portfolio_optimization,
)


# ============================================================
# FIXTURES
# ============================================================

def _assets(n_assets: int, seed: int = 0, length: int = 300):
    rng = np.random.default_rng(seed)
    assets = []
    for i in range(n_assets):
        returns = rng.normal(0.0002 * (i + 1), 0.005 * (i + 1), length - 10 * i)
        assets.append(PortfolioAsset(identifier=f"A{i}", daily_returns=returns))
    return assets


@pytest.fixture
def three_assets():
    return _assets(3)


@pytest.fixture
def six_assets():
    return _assets(6, seed=1)


# ============================================================
# RETURN STATISTICS
# ============================================================

class TestStatistics:
    """Covariance and correlation over unequal-length series."""

    def test_calculate_returns(self):
        assert calculate_returns([100, 110, 99]) == pytest.approx([0.1, -0.1])
        assert len(calculate_returns([100])) == 0

    def test_covariance_pairs_up_to_shorter_series(self):
        a = np.array([0.01, -0.02, 0.03, 0.00, 0.01])
        b = np.array([0.02, -0.01, 0.01])
        cov = covariance_matrix(returns_frame([a, b], ["a", "b"]))

        expected = np.cov(a[:3], b, ddof=1)[0, 1]
        assert cov.loc["a", "b"] == pytest.approx(expected)
        assert cov.loc["a", "a"] == pytest.approx(np.var(a, ddof=1))

    def test_correlation_uses_overlap_statistics(self):
        # The long series is calm after the overlap, so scaling by its
        # full-length std would push the coefficient past 1.
        a = np.array([0.05, -0.04, 0.06, -0.05, 0.001, -0.001, 0.001, -0.001])
        b = np.array([0.05, -0.04, 0.06, -0.05])
        corr = correlation_matrix(returns_frame([a, b], ["a", "b"]))

        expected = np.corrcoef(a[:4], b)[0, 1]
        assert corr.loc["a", "b"] == pytest.approx(expected)
        assert corr.loc["a", "b"] == pytest.approx(1.0)
        assert (corr.abs().to_numpy() <= 1 + 1e-12).all()

    def test_correlation_diagonal_and_zero_variance(self):
        a = np.array([0.01, -0.02, 0.03, 0.00])
        flat = np.zeros(4)
        corr = correlation_matrix(returns_frame([a, 2 * a, flat], ["a", "b", "flat"]))

        assert corr.loc["a", "a"] == pytest.approx(1.0)
        assert corr.loc["a", "b"] == pytest.approx(1.0)
        assert corr.loc["a", "flat"] == 0.0
        assert corr.loc["flat", "flat"] == 0.0


# ============================================================
# WEIGHT PROJECTION
# ============================================================

class TestProjection:
    """Bounded-simplex projection."""

    def test_caps_and_redistributes(self):
        assert project_to_bounds(np.array([0.9, 0.1]), 0.0, 0.6) == pytest.approx([0.6, 0.4])

    def test_floor(self):
        w = project_to_bounds(np.array([1.0, 0.0, 0.0]), 0.1, 1.0)
        assert w == pytest.approx([0.8, 0.1, 0.1])

    def test_feasible_point_unchanged(self):
        w = np.array([0.2, 0.3, 0.5])
        assert project_to_bounds(w, 0.0, 1.0) == pytest.approx(w)

    def test_matrix_rows(self):
        rows = np.random.default_rng(3).random((50, 4))
        projected = project_to_bounds(rows, 0.1, 0.4)
        assert projected.sum(axis=1) == pytest.approx(np.ones(50))
        assert (projected >= 0.1 - 1e-9).all()
        assert (projected <= 0.4 + 1e-9).all()


# ============================================================
# ALLOCATION METHODS
# ============================================================

class TestAllocationMethods:
    """Weights for every method and both search branches."""

    @pytest.mark.parametrize("method", list(AllocationMethod))
    @pytest.mark.parametrize("fixture, bounds", [
        ("three_assets", (0.05, 0.6)),
        ("six_assets", (0.05, 0.4)),
        ("three_assets", (0.0, 1.0)),
    ])
    def test_weights_sum_to_one_within_bounds(self, request, method, fixture, bounds):
        assets = request.getfixturevalue(fixture)
        optimizer = PortfolioOptimizer(min_weight=bounds[0], max_weight=bounds[1], seed=11)
        result = optimizer.optimize(assets, method, include_frontier=False)

        weights = np.array(result.weights)
        assert len(weights) == len(assets)
        assert weights.sum() == pytest.approx(1.0, abs=1e-9)
        assert (weights >= bounds[0] - 1e-9).all()
        assert (weights <= bounds[1] + 1e-9).all()

    def test_search_branch_by_asset_count(self, three_assets, six_assets):
        optimizer = PortfolioOptimizer(seed=0)
        assert optimizer.optimize(three_assets, "max_sharpe", include_frontier=False).search == "grid"
        assert optimizer.optimize(six_assets, "max_sharpe", include_frontier=False).search == "random"
        assert optimizer.optimize(six_assets, "equal", include_frontier=False).search == "closed_form"

    def test_equal(self, six_assets):
        result = PortfolioOptimizer().optimize(six_assets, "equal", include_frontier=False)
        assert result.weights == pytest.approx([1 / 6] * 6)

    def test_risk_parity_inverse_volatility(self, three_assets):
        result = PortfolioOptimizer().optimize(three_assets, "risk_parity", include_frontier=False)
        inverse = np.array([1 / np.std(a.daily_returns, ddof=1) for a in three_assets])
        assert result.weights == pytest.approx(inverse / inverse.sum())
        assert result.weights[0] > result.weights[1] > result.weights[2]

    def test_risk_parity_zero_volatility(self):
        assets = [
            PortfolioAsset("flat", daily_returns=np.zeros(50)),
            PortfolioAsset("noisy", daily_returns=np.random.default_rng(0).normal(0, 0.01, 50)),
        ]
        result = PortfolioOptimizer().optimize(assets, "risk_parity", include_frontier=False)
        assert result.weights[0] > 0.9

    def test_max_return_concentrates_on_best_asset(self, three_assets):
        result = PortfolioOptimizer().optimize(three_assets, "max_return", include_frontier=False)
        best = int(np.argmax([np.mean(a.daily_returns) for a in three_assets]))
        assert result.weights[best] == pytest.approx(1.0)

    def test_min_variance_prefers_low_volatility(self):
        rng = np.random.default_rng(4)
        assets = [
            PortfolioAsset("calm", daily_returns=rng.normal(0, 0.01, 500)),
            PortfolioAsset("wild", daily_returns=rng.normal(0, 0.03, 500)),
        ]
        result = PortfolioOptimizer().optimize(assets, "min_variance", include_frontier=False)
        assert result.weights[0] == pytest.approx(0.9, abs=0.1)

    def test_random_branch_reproducible_with_seed(self, six_assets):
        first = PortfolioOptimizer(seed=5).optimize(six_assets, "max_sharpe")
        second = PortfolioOptimizer(seed=5).optimize(six_assets, "max_sharpe")
        assert first.weights == second.weights
        assert [p.weights for p in first.efficient_frontier] == [p.weights for p in second.efficient_frontier]


# ============================================================
# COMBINED METRICS AND FRONTIER
# ============================================================

class TestCombinedMetrics:
    """Portfolio-level statistics."""

    def test_diversification_ratio_at_least_one(self, three_assets):
        result = PortfolioOptimizer().optimize(three_assets, "equal", include_frontier=False)
        m = result.combined_metrics
        assert m.diversification_ratio >= 1 - 1e-9
        assert m.volatility > 0
        assert m.max_drawdown >= 0

    def test_blended_drawdown(self):
        curves = [np.array([100.0, 120.0, 90.0]), np.array([100.0, 100.0, 100.0, 100.0])]
        dd = PortfolioOptimizer.blended_max_drawdown(curves, np.array([0.5, 0.5]))
        assert dd == pytest.approx((110 - 95) / 110 * 100)

    def test_frontier(self, three_assets):
        result = PortfolioOptimizer(seed=2).optimize(three_assets, "equal")
        frontier = result.efficient_frontier
        assert len(frontier) == 15
        for point in frontier:
            assert sum(point.weights) == pytest.approx(1.0, abs=1e-9)
            assert point.volatility >= 0
        assert frontier[0].target_return <= frontier[-1].target_return

    def test_frontier_optional(self, three_assets):
        result = PortfolioOptimizer().optimize(three_assets, "equal", include_frontier=False)
        assert result.efficient_frontier is None


# ============================================================
# VALIDATION AND ENTRY POINTS
# ============================================================

class TestValidation:
    """Rejected inputs."""

    def test_fewer_than_two_assets(self):
        with pytest.raises(ValidationError):
            PortfolioOptimizer().optimize(_assets(1), "equal")

    @pytest.mark.parametrize("bounds", [(0.5, 1.0), (0.0, 0.2), (0.6, 0.4), (-0.1, 1.0)])
    def test_infeasible_bounds(self, three_assets, bounds):
        with pytest.raises(ValidationError):
            PortfolioOptimizer(min_weight=bounds[0], max_weight=bounds[1]).optimize(three_assets, "equal")

    def test_duplicate_identifiers(self):
        assets = _assets(2)
        assets[1].identifier = assets[0].identifier
        with pytest.raises(ValidationError):
            PortfolioOptimizer().optimize(assets, "equal")

    def test_unknown_method(self, three_assets):
        with pytest.raises(ValidationError):
            PortfolioOptimizer().optimize(three_assets, "kelly")


class TestEntryPoints:
    """Config-driven runs from backtests."""

    def test_assets_from_backtests(self):
        bars = make_bars(100 + np.cumsum(np.random.default_rng(8).normal(0, 1, 60)))
        runs = [
            run_backtest(ScriptedStrategy({0: SignalType.BUY}), bars),
            run_backtest(ScriptedStrategy({10: SignalType.BUY, 40: SignalType.SELL}), bars),
        ]
        assets = [PortfolioAsset.from_backtest(f"S{i}", run) for i, run in enumerate(runs)]
        result = run_portfolio_optimization(PortfolioConfig(assets=assets, method="min_variance", seed=1))

        assert result.asset_ids == ["S0", "S1"]
        assert sum(result.weights) == pytest.approx(1.0)
        assert isinstance(result.correlation_matrix, pd.DataFrame)
        assert "PORTFOLIO OPTIMIZATION" in format_portfolio_report(result)

    def test_describe_method(self):
        assert describe_method("risk_parity").startswith("Risk parity")
