"""
Tests for the Backtest Executor and Metrics Calculator.

============================================================
PURPOSE
============================================================
Covers:
1. Bar frame validation
2. Signal execution and position handling
3. Equity curve and drawdown invariants
4. Trade metrics on a hand-computed scenario
5. Zero-denominator conventions
============================================================
"""

import math

import pandas as pd
import pytest

from conftest import ScriptedStrategy, make_bars
from strategy_lab.backtest_engine import (
    Bar,
    BacktestEngine,
    BacktestMetrics,
    MetricsCalculator,
    Signal,
    SignalType,
    bars_to_frame,
    format_backtest_report,
    run_backtest,
    validate_bars,
)
from strategy_lab.errors import UnknownStrategyError, ValidationError


# ============================================================
# BAR VALIDATION
# ============================================================

class TestBarValidation:
    """Bar frame layout checks."""

    def test_missing_volume_is_filled(self):
        bars = make_bars([1, 2, 3]).drop(columns=["volume"])
        checked = validate_bars(bars)
        assert (checked["volume"] == 0).all()

    def test_missing_price_column_rejected(self):
        bars = make_bars([1, 2, 3]).drop(columns=["high"])
        with pytest.raises(ValidationError):
            validate_bars(bars)

    def test_unsorted_index_rejected(self):
        bars = make_bars([1, 2, 3]).iloc[::-1]
        with pytest.raises(ValidationError):
            validate_bars(bars)

    def test_duplicate_timestamps_rejected(self):
        bars = make_bars([1, 2, 3])
        bars.index = pd.DatetimeIndex([bars.index[0]] * 3)
        with pytest.raises(ValidationError):
            validate_bars(bars)

    def test_bar_records_convert_to_frame(self):
        records = [
            Bar(pd.Timestamp("2024-01-01"), 1, 2, 0.5, 1.5, 10),
            Bar(pd.Timestamp("2024-01-02"), 1.5, 2.5, 1, 2, 20),
        ]
        frame = bars_to_frame(records)
        assert list(frame["close"]) == [1.5, 2.0]
        assert isinstance(frame.index, pd.DatetimeIndex)


# ============================================================
# EXECUTION
# ============================================================

class TestExecution:
    """Signal handling by the executor."""

    def test_empty_signals_give_flat_curve(self):
        bars = make_bars([100, 101, 99, 102])
        run = BacktestEngine().execute(bars, [])

        assert run.trades == []
        assert len(run.equity_curve) == len(bars)
        assert all(p.equity == run.initial_capital for p in run.equity_curve)
        assert run.final_capital == run.initial_capital
        assert run.metrics == BacktestMetrics.empty()

    def test_open_position_closed_at_last_bar(self):
        bars = make_bars([100, 105, 120])
        run = BacktestEngine().execute(bars, [Signal(bars.index[0], SignalType.BUY, 100.0)])

        assert len(run.trades) == 1
        trade = run.trades[0]
        assert trade.exit_timestamp == bars.index[-1]
        assert trade.profit_pct == pytest.approx(20.0)
        assert run.final_capital == pytest.approx(120_000)

    def test_buy_while_long_and_sell_while_flat_ignored(self):
        bars = make_bars([100, 110, 120, 130, 140])
        signals = [
            Signal(bars.index[0], SignalType.SELL, 100.0),
            Signal(bars.index[1], SignalType.BUY, 110.0),
            Signal(bars.index[2], SignalType.BUY, 120.0),
            Signal(bars.index[3], SignalType.SELL, 130.0),
            Signal(bars.index[4], SignalType.SELL, 140.0),
        ]
        run = BacktestEngine().execute(bars, signals)

        assert len(run.trades) == 1
        assert run.trades[0].entry_price == 110.0
        assert run.trades[0].exit_price == 130.0

    def test_signals_match_by_calendar_date(self):
        bars = make_bars([100, 110, 121])
        signals = [
            Signal(bars.index[0] + pd.Timedelta(hours=15), SignalType.BUY, 100.0),
            Signal(bars.index[1] + pd.Timedelta(hours=9), SignalType.SELL, 110.0),
        ]
        run = BacktestEngine().execute(bars, signals)

        assert len(run.trades) == 1
        assert run.trades[0].profit_pct == pytest.approx(10.0)

    def test_last_signal_on_a_date_wins(self):
        bars = make_bars([100, 110, 121])
        signals = [
            Signal(bars.index[0], SignalType.BUY, 100.0),
            Signal(bars.index[0] + pd.Timedelta(hours=1), SignalType.HOLD, 100.0),
        ]
        run = BacktestEngine().execute(bars, signals)
        assert run.trades == []

    def test_fill_at_bar_close_not_signal_price(self):
        bars = make_bars([100, 110])
        signals = [
            Signal(bars.index[0], SignalType.BUY, 1.0),
            Signal(bars.index[1], SignalType.SELL, 1.0),
        ]
        run = BacktestEngine().execute(bars, signals)
        assert run.trades[0].entry_price == 100.0
        assert run.trades[0].exit_price == 110.0

    def test_custom_initial_capital(self):
        bars = make_bars([100, 110])
        run = BacktestEngine(initial_capital=1_000).execute(
            bars, [Signal(bars.index[0], SignalType.BUY, 100.0)]
        )
        assert run.final_capital == pytest.approx(1_100)

    def test_non_positive_capital_rejected(self):
        with pytest.raises(ValidationError):
            BacktestEngine(initial_capital=0)

    def test_holding_days_use_calendar_time(self):
        bars = make_bars([100, 100, 100, 110], freq="2D")
        run = BacktestEngine().execute(bars, [
            Signal(bars.index[0], SignalType.BUY, 100.0),
            Signal(bars.index[3], SignalType.SELL, 110.0),
        ])
        assert run.trades[0].holding_days == 6


# ============================================================
# EQUITY CURVE INVARIANTS
# ============================================================

class TestEquityCurve:
    """Equity and drawdown bookkeeping."""

    def test_one_point_per_bar_and_positive_drawdowns(self, walk_bars):
        run = run_backtest("TF001", walk_bars, {"shortPeriod": 5, "longPeriod": 20})

        assert len(run.equity_curve) == len(walk_bars)
        assert all(p.drawdown_pct >= 0 for p in run.equity_curve)
        assert run.max_drawdown == pytest.approx(max(p.drawdown_pct for p in run.equity_curve))
        assert run.metrics.max_drawdown == run.max_drawdown

    @pytest.mark.parametrize("identifier", ["TF001", "MO002", "BO002", "MR001"])
    def test_trades_never_overlap(self, walk_bars, identifier):
        run = run_backtest(identifier, walk_bars)
        for trade in run.trades:
            assert trade.exit_timestamp >= trade.entry_timestamp
        for prev, nxt in zip(run.trades, run.trades[1:]):
            assert nxt.entry_timestamp >= prev.exit_timestamp
        assert 0 <= run.metrics.win_rate <= 100

    def test_final_capital_matches_last_equity(self, walk_bars):
        run = run_backtest("MR001", walk_bars)
        assert run.final_capital == pytest.approx(run.equity_curve[-1].equity)

    def test_mark_to_market_drawdown(self):
        bars = make_bars([100, 120, 90, 130])
        run = BacktestEngine().execute(bars, [Signal(bars.index[0], SignalType.BUY, 100.0)])

        equities = [p.equity for p in run.equity_curve]
        assert equities == pytest.approx([100_000, 120_000, 90_000, 130_000])
        assert run.max_drawdown == pytest.approx(25.0)

    def test_helper_views(self, three_trade_bars, three_trade_strategy):
        run = run_backtest(three_trade_strategy, three_trade_bars)
        assert len(run.equity_series()) == 6
        assert len(run.daily_returns()) == 5
        assert list(run.trades_frame()["profit_pct"].round(6)) == [10.0, -5.0, 8.0]


# ============================================================
# METRICS
# ============================================================

class TestMetrics:
    """Metrics on the +10% / -5% / +8% scenario."""

    def test_three_trade_scenario(self, three_trade_bars, three_trade_strategy):
        run = run_backtest(three_trade_strategy, three_trade_bars)
        m = run.metrics

        assert m.total_trades == 3
        assert m.winning_trades == 2
        assert m.losing_trades == 1
        assert m.win_rate == pytest.approx(200 / 3)
        assert m.total_return == pytest.approx(12.86, abs=1e-9)
        assert m.max_consecutive_wins == 1
        assert m.max_consecutive_losses == 1
        assert m.avg_win == pytest.approx(9.0)
        assert m.avg_loss == pytest.approx(-5.0)
        assert m.gross_profit == pytest.approx(10_000 + 8_360)
        assert m.gross_loss == pytest.approx(5_500)
        assert m.profit_factor == pytest.approx(18_360 / 5_500)
        assert m.max_drawdown == pytest.approx(5.0)
        assert m.avg_holding_days == pytest.approx(1.0)
        assert run.final_capital == pytest.approx(112_860)

    def test_expectancy_and_payoff(self, three_trade_bars, three_trade_strategy):
        m = run_backtest(three_trade_strategy, three_trade_bars).metrics
        assert m.expectancy == pytest.approx((2 / 3) * 9.0 + (1 / 3) * -5.0)
        assert m.payoff_ratio == pytest.approx(9.0 / 5.0)
        assert m.kelly_percent == pytest.approx(((2 / 3) - (1 / 3) / 1.8) * 100)

    def test_all_winners_give_infinite_profit_factor(self):
        bars = make_bars([100, 110, 120, 130])
        strategy = ScriptedStrategy({0: SignalType.BUY, 1: SignalType.SELL, 2: SignalType.BUY, 3: SignalType.SELL})
        m = run_backtest(strategy, bars).metrics

        assert math.isinf(m.profit_factor)
        assert math.isinf(m.payoff_ratio)
        assert m.kelly_percent == 0.0
        assert m.losing_trades == 0

    def test_breakeven_trade_counts_as_loser(self):
        bars = make_bars([100, 100])
        strategy = ScriptedStrategy({0: SignalType.BUY, 1: SignalType.SELL})
        m = run_backtest(strategy, bars).metrics

        assert m.winning_trades + m.losing_trades == m.total_trades == 1
        assert m.losing_trades == 1
        assert m.profit_factor == 0.0

    def test_win_loss_partition(self, walk_bars):
        m = run_backtest("MO002", walk_bars).metrics
        assert m.winning_trades + m.losing_trades == m.total_trades

    def test_streaks(self):
        assert MetricsCalculator.consecutive_streaks([1, 2, -1, -2, -3, 4]) == (2, 3)
        assert MetricsCalculator.consecutive_streaks([]) == (0, 0)

    def test_sharpe_zero_for_flat_returns(self):
        import numpy as np
        assert MetricsCalculator.sharpe_ratio(np.zeros(10)) == 0.0
        assert MetricsCalculator.sharpe_ratio(np.array([])) == 0.0

    def test_risk_of_ruin_bounds(self):
        assert MetricsCalculator.risk_of_ruin(0.0, -1.0) == 0.0
        assert MetricsCalculator.risk_of_ruin(2.0, -1.0) == 0.0
        assert MetricsCalculator.risk_of_ruin(-2.0, -1.0) == 100.0
        assert 0.0 < MetricsCalculator.risk_of_ruin(0.1, -1.0) < 100.0


# ============================================================
# CONVENIENCE AND REPORTING
# ============================================================

class TestRunBacktest:
    """Registry-driven runs and report output."""

    def test_tags_strategy_and_effective_params(self, walk_bars):
        run = run_backtest("TF001", walk_bars, {"shortPeriod": 5})
        assert run.strategy_id == "TF001"
        assert run.parameters == {"shortPeriod": 5, "longPeriod": 50}

    def test_unknown_strategy(self, walk_bars):
        with pytest.raises(UnknownStrategyError):
            run_backtest("NOPE", walk_bars)

    def test_report_mentions_key_figures(self, three_trade_bars, three_trade_strategy):
        report = format_backtest_report(run_backtest(three_trade_strategy, three_trade_bars))
        assert "BACKTEST PERFORMANCE REPORT" in report
        assert "+12.86%" in report
        assert "SCRIPTED" in report
