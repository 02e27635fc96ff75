"""
Strategy Contract and Reference Strategies

A strategy is a stateless signal generator: given a bar frame and a
parameter mapping it returns BUY/SELL signals. It also carries static
metadata (identifier, category, declared parameter ranges) that the grid
search and walk-forward validator use to build default search spaces.

REFERENCE STRATEGIES
    TF001  SMA Crossover        trend-following   golden / death cross
    MO002  RSI Contrarian       momentum          oversold entry, overbought exit
    BO002  Donchian Breakout    breakout          channel high entry, channel low exit
    MR001  Bollinger Reversion  mean-reversion    lower band entry, upper band exit

Each reference strategy tracks its own position so it never emits two
entries (or two exits) in a row.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from strategy_lab.backtest_engine import Signal, SignalType
from strategy_lab.errors import UnknownStrategyError, require
from strategy_lab.indicators import IndicatorCalculator

logger = logging.getLogger(__name__)


# =============================================================================
# STRATEGY CONTRACT
# =============================================================================

@dataclass(frozen=True)
class ParameterDefinition:
    """Tunable strategy parameter with its default and search bounds."""
    name: str
    default: float
    min: float
    max: float
    step: float
    description: str = ""


class Strategy(ABC):
    """Base class for signal generators."""

    identifier: str = ""
    name: str = ""
    category: str = ""
    description: str = ""
    parameters: Tuple[ParameterDefinition, ...] = ()

    @abstractmethod
    def generate_signals(self, bars: pd.DataFrame, params: Dict[str, float]) -> List[Signal]:
        """Map a bar frame and parameters to an ordered list of signals."""

    def default_params(self) -> Dict[str, float]:
        return {p.name: p.default for p in self.parameters}

    def merge_params(self, params: Optional[Dict[str, float]] = None) -> Dict[str, float]:
        """Defaults overlaid with ``params``; unknown keys are kept."""
        merged = self.default_params()
        if params:
            merged.update(params)
        return merged

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identifier!r})"


def _signal(bars: pd.DataFrame, i: int, kind: SignalType, **values: float) -> Signal:
    return Signal(
        timestamp=bars.index[i],
        kind=kind,
        price=float(bars['close'].iat[i]),
        indicator_values={k: float(v) for k, v in values.items()}
    )


# =============================================================================
# TREND-FOLLOWING
# =============================================================================

class SmaCrossover(Strategy):
    """Buy on a golden cross of two SMAs, sell on the death cross."""

    identifier = "TF001"
    name = "SMA Crossover"
    category = "trend-following"
    description = "Buy when the short SMA crosses above the long SMA"
    parameters = (
        ParameterDefinition("shortPeriod", 10, 5, 50, 5, "Short SMA period"),
        ParameterDefinition("longPeriod", 50, 20, 200, 10, "Long SMA period"),
    )

    def generate_signals(self, bars: pd.DataFrame, params: Dict[str, float]) -> List[Signal]:
        short_period = int(params.get("shortPeriod", 10))
        long_period = int(params.get("longPeriod", 50))

        close = bars['close']
        short_sma = IndicatorCalculator.calculate_sma(close, short_period).to_numpy()
        long_sma = IndicatorCalculator.calculate_sma(close, long_period).to_numpy()

        signals: List[Signal] = []
        in_position = False
        for i in range(1, len(bars)):
            prev_s, prev_l = short_sma[i - 1], long_sma[i - 1]
            curr_s, curr_l = short_sma[i], long_sma[i]
            if np.isnan([prev_s, prev_l, curr_s, curr_l]).any():
                continue

            if prev_s <= prev_l and curr_s > curr_l and not in_position:
                signals.append(_signal(bars, i, SignalType.BUY, shortSMA=curr_s, longSMA=curr_l))
                in_position = True
            elif prev_s >= prev_l and curr_s < curr_l and in_position:
                signals.append(_signal(bars, i, SignalType.SELL, shortSMA=curr_s, longSMA=curr_l))
                in_position = False
        return signals


# =============================================================================
# MOMENTUM
# =============================================================================

class RsiContrarian(Strategy):
    """Buy when RSI drops through the oversold line, sell above overbought."""

    identifier = "MO002"
    name = "RSI Contrarian"
    category = "momentum"
    description = "Buy when RSI crosses below oversold, sell when it crosses above overbought"
    parameters = (
        ParameterDefinition("period", 14, 5, 30, 1, "RSI period"),
        ParameterDefinition("oversold", 30, 10, 40, 5, "Oversold level"),
        ParameterDefinition("overbought", 70, 60, 90, 5, "Overbought level"),
    )

    def generate_signals(self, bars: pd.DataFrame, params: Dict[str, float]) -> List[Signal]:
        period = int(params.get("period", 14))
        oversold = float(params.get("oversold", 30))
        overbought = float(params.get("overbought", 70))

        rsi = IndicatorCalculator.calculate_rsi(bars['close'], period).to_numpy()

        signals: List[Signal] = []
        in_position = False
        for i in range(1, len(bars)):
            prev_rsi, curr_rsi = rsi[i - 1], rsi[i]
            if np.isnan(prev_rsi) or np.isnan(curr_rsi):
                continue

            if prev_rsi >= oversold and curr_rsi < oversold and not in_position:
                signals.append(_signal(bars, i, SignalType.BUY, rsi=curr_rsi))
                in_position = True
            elif prev_rsi <= overbought and curr_rsi > overbought and in_position:
                signals.append(_signal(bars, i, SignalType.SELL, rsi=curr_rsi))
                in_position = False
        return signals


# =============================================================================
# BREAKOUT
# =============================================================================

class DonchianBreakout(Strategy):
    """
    Buy when the high breaks the prior channel high, sell when the low
    breaks the prior channel low.

    Both breakouts are measured against the previous bar's channel; the
    current bar is always inside its own channel.
    """

    identifier = "BO002"
    name = "Donchian Breakout"
    category = "breakout"
    description = "Buy on a new period high, sell on a new period low"
    parameters = (
        ParameterDefinition("period", 20, 10, 60, 5, "Channel lookback"),
    )

    def generate_signals(self, bars: pd.DataFrame, params: Dict[str, float]) -> List[Signal]:
        period = int(params.get("period", 20))

        upper, _, lower = IndicatorCalculator.calculate_donchian_channels(
            bars['high'], bars['low'], period
        )
        upper = upper.to_numpy()
        lower = lower.to_numpy()
        highs = bars['high'].to_numpy(dtype=float)
        lows = bars['low'].to_numpy(dtype=float)

        signals: List[Signal] = []
        in_position = False
        for i in range(1, len(bars)):
            prev_upper, prev_lower = upper[i - 1], lower[i - 1]
            if np.isnan(prev_upper) or np.isnan(prev_lower):
                continue

            if highs[i] > prev_upper and not in_position:
                signals.append(_signal(bars, i, SignalType.BUY, channelHigh=prev_upper, channelLow=prev_lower))
                in_position = True
            elif lows[i] < prev_lower and in_position:
                signals.append(_signal(bars, i, SignalType.SELL, channelHigh=prev_upper, channelLow=prev_lower))
                in_position = False
        return signals


# =============================================================================
# MEAN-REVERSION
# =============================================================================

class BollingerReversion(Strategy):
    """Buy when the close falls through the lower band, sell at the upper band."""

    identifier = "MR001"
    name = "Bollinger Reversion"
    category = "mean-reversion"
    description = "Buy at the lower Bollinger band, sell at the upper band"
    parameters = (
        ParameterDefinition("period", 20, 10, 50, 5, "Band period"),
        ParameterDefinition("stdDev", 2, 1, 3, 0.5, "Band width in standard deviations"),
    )

    def generate_signals(self, bars: pd.DataFrame, params: Dict[str, float]) -> List[Signal]:
        period = int(params.get("period", 20))
        std_dev = float(params.get("stdDev", 2))

        upper, middle, lower = IndicatorCalculator.calculate_bollinger_bands(
            bars['close'], period, std_dev
        )
        upper = upper.to_numpy()
        middle = middle.to_numpy()
        lower = lower.to_numpy()
        closes = bars['close'].to_numpy(dtype=float)

        signals: List[Signal] = []
        in_position = False
        for i in range(1, len(bars)):
            if np.isnan(lower[i - 1]) or np.isnan(upper[i]) or np.isnan(lower[i]):
                continue

            bands = dict(upperBand=upper[i], middleBand=middle[i], lowerBand=lower[i])
            if closes[i - 1] >= lower[i - 1] and closes[i] <= lower[i] and not in_position:
                signals.append(_signal(bars, i, SignalType.BUY, **bands))
                in_position = True
            elif closes[i] >= upper[i] and in_position:
                signals.append(_signal(bars, i, SignalType.SELL, **bands))
                in_position = False
        return signals


# =============================================================================
# REGISTRY
# =============================================================================

_REGISTRY: Dict[str, Strategy] = {}


def register_strategy(strategy: Strategy) -> Strategy:
    """Add a strategy to the registry, replacing any with the same identifier."""
    require(bool(strategy.identifier), "strategy identifier must be non-empty")
    _REGISTRY[strategy.identifier] = strategy
    return strategy


def get_strategy(identifier: str) -> Strategy:
    """
    Look up a registered strategy.

    Raises:
        UnknownStrategyError: If no strategy has that identifier
    """
    try:
        return _REGISTRY[identifier]
    except KeyError:
        raise UnknownStrategyError(
            f"Unknown strategy '{identifier}'. Available: {sorted(_REGISTRY)}"
        ) from None


def list_strategies(category: Optional[str] = None) -> List[Strategy]:
    """Registered strategies, optionally filtered by category."""
    strategies = sorted(_REGISTRY.values(), key=lambda s: s.identifier)
    if category is not None:
        strategies = [s for s in strategies if s.category == category]
    return strategies


def resolve_strategy(strategy: Union[str, Strategy]) -> Strategy:
    """Accept either a Strategy instance or a registry identifier."""
    if isinstance(strategy, str):
        return get_strategy(strategy)
    require(isinstance(strategy, Strategy), f"not a strategy: {strategy!r}")
    return strategy


for _strategy in (SmaCrossover(), RsiContrarian(), DonchianBreakout(), BollingerReversion()):
    register_strategy(_strategy)


__all__ = [
    'ParameterDefinition',
    'Strategy',
    'SmaCrossover',
    'RsiContrarian',
    'DonchianBreakout',
    'BollingerReversion',
    'register_strategy',
    'get_strategy',
    'list_strategies',
    'resolve_strategy',
]
