#!/usr/bin/env python3
"""
Backtest Executor and Metrics Calculator
========================================

This module turns a strategy's buy/sell signals into realized trades, a
bar-by-bar equity curve, and a full set of performance metrics. Every
optimizer in the package (grid search, Monte Carlo, walk-forward,
portfolio) is built on top of it.

EXECUTION MODEL
---------------
    - Long-only, one open position at a time, no pyramiding
    - Entries and exits fill at the close of the signal bar
    - Full capital is committed to each position and compounds trade by trade
    - No commissions or slippage
    - An open position after the last bar is closed at the final close

Signals are matched to bars by calendar date. When a strategy emits several
signals on the same date the last one wins.

METRICS
-------
Trade statistics:
    win rate, average win/loss, profit factor, consecutive streaks,
    expectancy, payoff ratio, average holding days

Capital management:
    Kelly, J.L. (1956). "A New Interpretation of Information Rate."
        Kelly % = W - (1 - W) / R
    Risk of ruin (fixed-unit approximation):
        RoR = ((1 - edge) / (1 + edge)) ^ units

Risk-adjusted:
    Sharpe, W.F. (1994). "The Sharpe Ratio."
        SR = (annualized mean step return - Rf) / annualized std-dev
    Young, T.W. (1991). "Calmar Ratio: A Smoother Tool."
        Calmar = CAGR / Max Drawdown

Every ratio whose denominator can be zero uses the same convention:
``float('inf')`` when the numerator is positive, otherwise 0.

ARCHITECTURE
------------
    Section 1: Enumerations
    Section 2: Data Structures (Bar, Signal, Trade, EquityPoint, metrics)
    Section 3: Bar Series Helpers
    Section 4: Metrics Calculator
    Section 5: Backtest Engine
    Section 6: Output Formatting
    Section 7: Convenience Functions
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from strategy_lab.config import BACKTEST, BacktestSettings
from strategy_lab.errors import require
from strategy_lab.indicators import IndicatorCalculator

# Suppress numerical warnings for clean output
warnings.filterwarnings('ignore', category=RuntimeWarning)

logger = logging.getLogger(__name__)

PRICE_COLUMNS = ('open', 'high', 'low', 'close', 'volume')


# =============================================================================
# SECTION 1: ENUMERATIONS
# =============================================================================

class SignalType(Enum):
    """Trading signal emitted by a strategy."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class TradeDirection(Enum):
    """Trade direction. The executor only opens long positions."""
    LONG = "LONG"


# =============================================================================
# SECTION 2: DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class Bar:
    """Single OHLCV observation."""
    timestamp: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class Signal:
    """
    Strategy output for one bar.

    ``indicator_values`` carries whatever auxiliary readings the strategy
    wants to expose (e.g. the band levels at the time of the signal).
    """
    timestamp: pd.Timestamp
    kind: SignalType
    price: float
    indicator_values: Dict[str, float] = field(default_factory=dict)


@dataclass
class Position:
    """Open long position held during execution."""
    entry_timestamp: pd.Timestamp
    entry_price: float


@dataclass(frozen=True)
class Trade:
    """
    Closed round-trip trade.

    ``profit_pct`` is the price move in percent; ``profit_amount`` is that
    move applied to the capital committed at entry.
    """
    entry_timestamp: pd.Timestamp
    entry_price: float
    exit_timestamp: pd.Timestamp
    exit_price: float
    profit_pct: float
    profit_amount: float
    holding_days: int
    direction: TradeDirection = TradeDirection.LONG

    @property
    def is_winner(self) -> bool:
        return self.profit_pct > 0


@dataclass(frozen=True)
class EquityPoint:
    """Account value at one bar; drawdown is a positive percentage."""
    timestamp: pd.Timestamp
    equity: float
    drawdown_pct: float


@dataclass(frozen=True)
class BacktestMetrics:
    """
    Performance summary of a completed backtest.

    All percentages are expressed in percent (12.5 means 12.5%).
    ``profit_factor``, ``payoff_ratio``, ``recovery_factor`` and
    ``calmar_ratio`` may be ``float('inf')``.
    """
    win_rate: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    avg_win: float
    avg_loss: float
    total_return: float
    profit_factor: float
    max_drawdown: float
    sharpe_ratio: float
    max_consecutive_wins: int
    max_consecutive_losses: int
    avg_holding_days: float
    gross_profit: float
    gross_loss: float

    # Capital management
    expectancy: float
    payoff_ratio: float
    recovery_factor: float
    kelly_percent: float
    daily_volatility: float
    avg_atr_percent: float
    cagr: float
    calmar_ratio: float
    risk_of_ruin: float

    @classmethod
    def empty(cls) -> BacktestMetrics:
        """Explicit zero object used when there is nothing to measure."""
        return cls(
            win_rate=0.0, total_trades=0, winning_trades=0, losing_trades=0,
            avg_win=0.0, avg_loss=0.0, total_return=0.0, profit_factor=0.0,
            max_drawdown=0.0, sharpe_ratio=0.0, max_consecutive_wins=0,
            max_consecutive_losses=0, avg_holding_days=0.0, gross_profit=0.0,
            gross_loss=0.0, expectancy=0.0, payoff_ratio=0.0,
            recovery_factor=0.0, kelly_percent=0.0, daily_volatility=0.0,
            avg_atr_percent=0.0, cagr=0.0, calmar_ratio=0.0, risk_of_ruin=0.0
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class BacktestRun:
    """Complete output of one executor run."""
    trades: List[Trade]
    equity_curve: List[EquityPoint]
    metrics: BacktestMetrics
    initial_capital: float
    final_capital: float
    max_drawdown: float
    signals: List[Signal] = field(default_factory=list)
    parameters: Dict[str, float] = field(default_factory=dict)
    strategy_id: Optional[str] = None

    def equity_series(self) -> pd.Series:
        """Equity curve as a Series indexed by bar timestamp."""
        return pd.Series(
            [p.equity for p in self.equity_curve],
            index=pd.DatetimeIndex([p.timestamp for p in self.equity_curve]),
            name='equity',
            dtype=float
        )

    def daily_returns(self) -> pd.Series:
        """Per-bar fractional returns of the equity curve."""
        return self.equity_series().pct_change().dropna()

    def trades_frame(self) -> pd.DataFrame:
        """Trade log as a DataFrame, one row per closed trade."""
        return pd.DataFrame([
            {
                'entry_timestamp': t.entry_timestamp,
                'entry_price': t.entry_price,
                'exit_timestamp': t.exit_timestamp,
                'exit_price': t.exit_price,
                'profit_pct': t.profit_pct,
                'profit_amount': t.profit_amount,
                'holding_days': t.holding_days,
            }
            for t in self.trades
        ])


# =============================================================================
# SECTION 3: BAR SERIES HELPERS
# =============================================================================

def bars_to_frame(bars: Iterable[Bar]) -> pd.DataFrame:
    """Convert Bar records into the DataFrame layout used by the engine."""
    records = list(bars)
    frame = pd.DataFrame(
        {col: [float(getattr(b, col)) for b in records] for col in PRICE_COLUMNS},
        index=pd.DatetimeIndex([pd.Timestamp(b.timestamp) for b in records], name='timestamp')
    )
    return validate_bars(frame)


def validate_bars(bars: pd.DataFrame) -> pd.DataFrame:
    """
    Check that a bar frame is usable by the engine.

    Requires a DatetimeIndex that is strictly increasing (unique, ascending)
    and the open/high/low/close columns. A missing volume column is filled
    with zeros.

    Raises:
        ValidationError: If the frame does not satisfy the layout
    """
    require(isinstance(bars, pd.DataFrame), "bars must be a pandas DataFrame")
    require(isinstance(bars.index, pd.DatetimeIndex), "bars must be indexed by a DatetimeIndex")
    missing = [c for c in PRICE_COLUMNS[:4] if c not in bars.columns]
    require(not missing, f"bars are missing columns: {missing}")
    require(bars.index.is_unique, "bar timestamps must be unique")
    require(bars.index.is_monotonic_increasing, "bar timestamps must be ascending")
    if 'volume' not in bars.columns:
        bars = bars.assign(volume=0.0)
    return bars


def ensure_bars(bars: Union[pd.DataFrame, Sequence[Bar]]) -> pd.DataFrame:
    """Accept a bar frame or a sequence of Bar records."""
    if isinstance(bars, pd.DataFrame):
        return validate_bars(bars)
    return bars_to_frame(bars)


def _calendar_date(timestamp: Any) -> date:
    return pd.Timestamp(timestamp).date()


# =============================================================================
# SECTION 4: METRICS CALCULATOR
# =============================================================================

def _safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator with the infinite-sentinel fallback."""
    if denominator > 0:
        return numerator / denominator
    return float('inf') if numerator > 0 else 0.0


class MetricsCalculator:
    """
    Derive BacktestMetrics from a trade list and an equity curve.

    Pure and deterministic: the same trades and curve always give the same
    metrics. Winners are trades with profit% > 0; everything else
    (including breakeven) counts as a loser, so the two groups always add
    up to the total trade count.
    """

    @staticmethod
    def step_returns(equity: np.ndarray) -> np.ndarray:
        """Fractional return between consecutive equity points."""
        if len(equity) < 2:
            return np.array([], dtype=float)
        prev = equity[:-1]
        with np.errstate(divide='ignore', invalid='ignore'):
            returns = np.where(prev != 0, (equity[1:] - prev) / prev, 0.0)
        return returns

    @staticmethod
    def sharpe_ratio(
        returns: np.ndarray,
        risk_free_rate: float = BACKTEST.risk_free_rate,
        periods_per_year: int = BACKTEST.periods_per_year
    ) -> float:
        """
        Annualized Sharpe ratio of per-step returns.

        Mean and population standard deviation are annualized separately
        (x periods, x sqrt(periods)); 0 when the deviation is 0.
        """
        if len(returns) == 0:
            return 0.0
        annual_return = float(np.mean(returns)) * periods_per_year
        annual_std = float(np.std(returns)) * math.sqrt(periods_per_year)
        if annual_std > 0:
            return (annual_return - risk_free_rate) / annual_std
        return 0.0

    @staticmethod
    def consecutive_streaks(profit_pcts: Sequence[float]) -> Tuple[int, int]:
        """Longest winning and losing streaks in one forward scan."""
        max_wins = max_losses = 0
        wins = losses = 0
        for pct in profit_pcts:
            if pct > 0:
                wins += 1
                losses = 0
                max_wins = max(max_wins, wins)
            else:
                losses += 1
                wins = 0
                max_losses = max(max_losses, losses)
        return max_wins, max_losses

    @staticmethod
    def average_atr_percent(bars: Optional[pd.DataFrame], period: int = BACKTEST.atr_period) -> float:
        """Mean simple ATR over the mean close of the same bars, in percent."""
        if bars is None or len(bars) <= period:
            return 0.0
        atr = IndicatorCalculator.calculate_atr(
            bars['high'], bars['low'], bars['close'], period
        ).dropna()
        if atr.empty:
            return 0.0
        avg_close = float(bars['close'].loc[atr.index].mean())
        return float(atr.mean()) / avg_close * 100 if avg_close > 0 else 0.0

    @staticmethod
    def cagr(equity_curve: Sequence[EquityPoint], initial_capital: float, final_equity: float) -> float:
        """Compound annual growth over calendar days / 365, in percent."""
        if len(equity_curve) < 2:
            return 0.0
        span = pd.Timestamp(equity_curve[-1].timestamp) - pd.Timestamp(equity_curve[0].timestamp)
        years = span.total_seconds() / 86400 / 365
        if years > 0 and final_equity > 0 and initial_capital > 0:
            return ((final_equity / initial_capital) ** (1 / years) - 1) * 100
        return 0.0

    @staticmethod
    def risk_of_ruin(expectancy: float, avg_loss: float, units: int = BACKTEST.ruin_units) -> float:
        """
        Fixed-unit risk of ruin estimate in percent.

        edge = expectancy / |avg loss|; an edge at or above 1 never ruins,
        at or below -1 always ruins.
        """
        if avg_loss == 0 or expectancy == 0:
            return 0.0
        edge = expectancy / abs(avg_loss)
        if -1 < edge < 1:
            ror = ((1 - edge) / (1 + edge)) ** units * 100
            return min(100.0, max(0.0, ror))
        return 0.0 if edge >= 1 else 100.0

    @staticmethod
    def compute(
        trades: Sequence[Trade],
        equity_curve: Sequence[EquityPoint],
        initial_capital: float,
        max_drawdown: float,
        bars: Optional[pd.DataFrame] = None,
        settings: BacktestSettings = BACKTEST
    ) -> BacktestMetrics:
        """
        Calculate every metric for a completed run.

        Args:
            trades: Closed trades in chronological order
            equity_curve: One EquityPoint per bar
            initial_capital: Starting capital of the run
            max_drawdown: Maximum drawdown % observed by the executor
            bars: Optional price bars, used for the average ATR%
            settings: Risk-free rate, annualization and ATR window

        Returns:
            BacktestMetrics; the explicit zero object when there are no trades
        """
        if not trades:
            return BacktestMetrics.empty()

        profit_pcts = np.array([t.profit_pct for t in trades], dtype=float)
        profit_amounts = np.array([t.profit_amount for t in trades], dtype=float)
        win_mask = profit_pcts > 0

        total = len(trades)
        n_winners = int(win_mask.sum())
        n_losers = total - n_winners

        win_rate = n_winners / total * 100
        avg_win = float(profit_pcts[win_mask].mean()) if n_winners else 0.0
        avg_loss = float(profit_pcts[~win_mask].mean()) if n_losers else 0.0

        gross_profit = float(profit_amounts[win_mask].sum())
        gross_loss = abs(float(profit_amounts[~win_mask].sum()))
        profit_factor = _safe_ratio(gross_profit, gross_loss)

        final_equity = equity_curve[-1].equity if equity_curve else initial_capital
        total_return = (final_equity - initial_capital) / initial_capital * 100

        equity = np.array([p.equity for p in equity_curve], dtype=float)
        returns = MetricsCalculator.step_returns(equity)
        sharpe = MetricsCalculator.sharpe_ratio(
            returns, settings.risk_free_rate, settings.periods_per_year
        )
        step_std = float(np.std(returns)) if len(returns) else 0.0

        max_wins, max_losses = MetricsCalculator.consecutive_streaks(profit_pcts)
        avg_holding = float(np.mean([t.holding_days for t in trades]))

        # Expectancy per trade, in percent
        w = win_rate / 100
        expectancy = w * avg_win + (1 - w) * avg_loss

        if avg_loss != 0:
            payoff_ratio = abs(avg_win / avg_loss)
        else:
            payoff_ratio = float('inf') if avg_win > 0 else 0.0

        recovery_factor = _safe_ratio(total_return, max_drawdown)

        kelly = 0.0
        if payoff_ratio > 0 and not math.isinf(payoff_ratio):
            kelly = max(0.0, (w - (1 - w) / payoff_ratio) * 100)

        cagr = MetricsCalculator.cagr(equity_curve, initial_capital, final_equity)
        calmar = _safe_ratio(cagr, max_drawdown)

        return BacktestMetrics(
            win_rate=win_rate,
            total_trades=total,
            winning_trades=n_winners,
            losing_trades=n_losers,
            avg_win=avg_win,
            avg_loss=avg_loss,
            total_return=total_return,
            profit_factor=profit_factor,
            max_drawdown=max_drawdown,
            sharpe_ratio=sharpe,
            max_consecutive_wins=max_wins,
            max_consecutive_losses=max_losses,
            avg_holding_days=avg_holding,
            gross_profit=gross_profit,
            gross_loss=gross_loss,
            expectancy=expectancy,
            payoff_ratio=payoff_ratio,
            recovery_factor=recovery_factor,
            kelly_percent=kelly,
            daily_volatility=step_std * 100,
            avg_atr_percent=MetricsCalculator.average_atr_percent(bars, settings.atr_period),
            cagr=cagr,
            calmar_ratio=calmar,
            risk_of_ruin=MetricsCalculator.risk_of_ruin(expectancy, avg_loss, settings.ruin_units)
        )


# =============================================================================
# SECTION 5: BACKTEST ENGINE
# =============================================================================

class BacktestEngine:
    """
    Signal-driven, long-only backtest executor.

    Features:
        - Calendar-date signal matching
        - Mark-to-market equity curve with running drawdown
        - Forced close-out of any position still open after the last bar
    """

    def __init__(
        self,
        settings: BacktestSettings = BACKTEST,
        initial_capital: Optional[float] = None
    ):
        """
        Initialize backtest engine.

        Args:
            settings: Account and annualization settings
            initial_capital: Overrides ``settings.initial_capital`` when given
        """
        self.settings = settings
        self.initial_capital = float(
            initial_capital if initial_capital is not None else settings.initial_capital
        )
        require(self.initial_capital > 0, "initial_capital must be positive")

    def execute(
        self,
        bars: Union[pd.DataFrame, Sequence[Bar]],
        signals: Sequence[Signal]
    ) -> BacktestRun:
        """
        Run the signals over the bars.

        Args:
            bars: Price bars (DataFrame or Bar records)
            signals: Strategy signals, matched to bars by calendar date

        Returns:
            BacktestRun with trades, one EquityPoint per bar, and metrics
        """
        frame = ensure_bars(bars)

        # Last signal on a date wins
        signal_map: Dict[date, Signal] = {}
        for signal in signals:
            signal_map[_calendar_date(signal.timestamp)] = signal

        trades: List[Trade] = []
        equity_curve: List[EquityPoint] = []
        position: Optional[Position] = None
        capital = self.initial_capital
        peak = capital
        max_drawdown = 0.0

        timestamps = frame.index
        closes = frame['close'].to_numpy(dtype=float)

        for timestamp, close in zip(timestamps, closes):
            signal = signal_map.get(timestamp.date()) if signal_map else None

            if signal is not None:
                if signal.kind is SignalType.BUY and position is None:
                    position = Position(entry_timestamp=timestamp, entry_price=close)
                elif signal.kind is SignalType.SELL and position is not None:
                    trade = self._close_position(position, timestamp, close, capital)
                    trades.append(trade)
                    capital += trade.profit_amount
                    position = None

            current = capital
            if position is not None:
                current = capital * (1 + (close - position.entry_price) / position.entry_price)

            if current > peak:
                peak = current
            drawdown = (peak - current) / peak * 100 if peak > 0 else 0.0
            max_drawdown = max(max_drawdown, drawdown)

            equity_curve.append(EquityPoint(timestamp=timestamp, equity=current, drawdown_pct=drawdown))

        if position is not None and len(frame) > 0:
            trade = self._close_position(position, timestamps[-1], closes[-1], capital)
            trades.append(trade)
            capital += trade.profit_amount

        metrics = MetricsCalculator.compute(
            trades, equity_curve, self.initial_capital, max_drawdown,
            bars=frame, settings=self.settings
        )

        return BacktestRun(
            trades=trades,
            equity_curve=equity_curve,
            metrics=metrics,
            initial_capital=self.initial_capital,
            final_capital=capital,
            max_drawdown=max_drawdown,
            signals=list(signals)
        )

    @staticmethod
    def _close_position(
        position: Position,
        timestamp: pd.Timestamp,
        exit_price: float,
        capital: float
    ) -> Trade:
        """Realize a position at ``exit_price`` against the current capital."""
        profit_pct = (exit_price - position.entry_price) / position.entry_price * 100
        holding = pd.Timestamp(timestamp) - pd.Timestamp(position.entry_timestamp)
        return Trade(
            entry_timestamp=position.entry_timestamp,
            entry_price=float(position.entry_price),
            exit_timestamp=timestamp,
            exit_price=float(exit_price),
            profit_pct=float(profit_pct),
            profit_amount=float(capital * profit_pct / 100),
            holding_days=int(math.floor(holding.total_seconds() / 86400))
        )


# =============================================================================
# SECTION 6: OUTPUT FORMATTING
# =============================================================================

def _fmt_ratio(value: float) -> str:
    return "inf" if math.isinf(value) else f"{value:.2f}"


def format_backtest_report(run: BacktestRun, strategy_name: Optional[str] = None) -> str:
    """
    Format a backtest run as a human-readable text report.

    Args:
        run: BacktestRun from the executor
        strategy_name: Label for the header (defaults to the strategy id)

    Returns:
        Formatted string report
    """
    m = run.metrics
    period = "n/a"
    if run.equity_curve:
        start = pd.Timestamp(run.equity_curve[0].timestamp).strftime('%Y-%m-%d')
        end = pd.Timestamp(run.equity_curve[-1].timestamp).strftime('%Y-%m-%d')
        period = f"{start} to {end}"

    lines = [
        "=" * 70,
        "BACKTEST PERFORMANCE REPORT",
        "=" * 70,
        f"Strategy: {strategy_name or run.strategy_id or 'custom signals'}",
        f"Parameters: {run.parameters or '-'}",
        f"Period: {period}",
        f"Bars: {len(run.equity_curve):,}",
        "",
        "-" * 70,
        "CAPITAL",
        "-" * 70,
        f"Initial Capital: ${run.initial_capital:,.2f}",
        f"Final Capital:   ${run.final_capital:,.2f}",
        f"Total Return:    {m.total_return:+.2f}%",
        f"CAGR:            {m.cagr:+.2f}%",
        "",
        "-" * 70,
        "TRADE STATISTICS",
        "-" * 70,
        f"Total Trades:        {m.total_trades}",
        f"Win Rate:            {m.win_rate:.1f}% ({m.winning_trades}W / {m.losing_trades}L)",
        f"Average Win:         {m.avg_win:+.2f}%",
        f"Average Loss:        {m.avg_loss:+.2f}%",
        f"Profit Factor:       {_fmt_ratio(m.profit_factor)}",
        f"Payoff Ratio:        {_fmt_ratio(m.payoff_ratio)}",
        f"Expectancy:          {m.expectancy:+.2f}% per trade",
        f"Streaks:             {m.max_consecutive_wins} wins / {m.max_consecutive_losses} losses",
        f"Avg Holding Period:  {m.avg_holding_days:.1f} days",
        "",
        "-" * 70,
        "RISK",
        "-" * 70,
        f"Maximum Drawdown:    {m.max_drawdown:.2f}%",
        f"Sharpe Ratio:        {m.sharpe_ratio:.3f}",
        f"Calmar Ratio:        {_fmt_ratio(m.calmar_ratio)}",
        f"Recovery Factor:     {_fmt_ratio(m.recovery_factor)}",
        f"Daily Volatility:    {m.daily_volatility:.2f}%",
        f"Average ATR:         {m.avg_atr_percent:.2f}% of price",
        f"Kelly Fraction:      {m.kelly_percent:.1f}%",
        f"Risk of Ruin:        {m.risk_of_ruin:.1f}%",
        "=" * 70,
    ]
    return "\n".join(lines)


# =============================================================================
# SECTION 7: CONVENIENCE FUNCTIONS
# =============================================================================

def run_backtest(
    strategy: Any,
    bars: Union[pd.DataFrame, Sequence[Bar]],
    params: Optional[Dict[str, float]] = None,
    settings: BacktestSettings = BACKTEST,
    initial_capital: Optional[float] = None
) -> BacktestRun:
    """
    Generate a strategy's signals and execute them.

    Args:
        strategy: Strategy instance or registry identifier (e.g. 'TF001')
        bars: Price bars
        params: Parameter overrides merged over the strategy defaults
        settings: Account and annualization settings
        initial_capital: Optional capital override

    Returns:
        BacktestRun tagged with the strategy id and effective parameters

    Example:
        >>> run = run_backtest('TF001', bars, {'shortPeriod': 10, 'longPeriod': 50})
        >>> print(f"Return: {run.metrics.total_return:.2f}%")
    """
    from strategy_lab.strategies import resolve_strategy

    strat = resolve_strategy(strategy)
    frame = ensure_bars(bars)
    effective = strat.merge_params(params)

    signals = strat.generate_signals(frame, effective)
    run = BacktestEngine(settings, initial_capital).execute(frame, signals)
    run.parameters = effective
    run.strategy_id = strat.identifier

    logger.debug(
        f"{strat.identifier} {effective}: {run.metrics.total_trades} trades, "
        f"return {run.metrics.total_return:.2f}%"
    )
    return run


__all__ = [
    # Enumerations
    'SignalType',
    'TradeDirection',

    # Data structures
    'Bar',
    'Signal',
    'Position',
    'Trade',
    'EquityPoint',
    'BacktestMetrics',
    'BacktestRun',

    # Helpers
    'bars_to_frame',
    'validate_bars',
    'ensure_bars',

    # Calculators
    'MetricsCalculator',

    # Engine
    'BacktestEngine',

    # Convenience
    'run_backtest',
    'format_backtest_report',
]
