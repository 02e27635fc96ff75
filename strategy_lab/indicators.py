"""
Technical Indicator Calculations for the Reference Strategies

Rolling-window indicators computed on pandas Series. Each indicator is
undefined (NaN) until its lookback window is full, so strategies can skip
the warm-up period with a simple ``isna()`` check.

INDICATORS
    - SMA: simple moving average
    - RSI: relative strength index with simple-average gains and losses
    - Bollinger Bands: SMA +/- k population standard deviations
    - Donchian Channels: highest high / lowest low over the lookback
    - ATR: simple average of the true range
"""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

RSI_PERIOD: int = 14
BB_PERIOD: int = 20
BB_STD_DEV: float = 2.0
DONCHIAN_PERIOD: int = 20
ATR_PERIOD: int = 14


# =============================================================================
# INDICATOR CALCULATOR
# =============================================================================

class IndicatorCalculator:
    """Stateless indicator formulas over price series."""

    @staticmethod
    def calculate_sma(close: pd.Series, period: int) -> pd.Series:
        """Simple moving average, NaN until ``period`` observations exist."""
        return close.rolling(window=int(period), min_periods=int(period)).mean()

    @staticmethod
    def calculate_rsi(close: pd.Series, period: int = RSI_PERIOD) -> pd.Series:
        """
        Calculate the Relative Strength Index.

        RSI = 100 - 100 / (1 + RS), RS = mean gain / mean loss over the last
        ``period`` price changes. Gains and losses are averaged with a plain
        rolling mean rather than Wilder smoothing. A window with no losses
        reads 100.

        Parameters
        ----------
        close : pd.Series
            Closing prices
        period : int
            Number of price changes in the averaging window

        Returns
        -------
        pd.Series
            RSI values in [0, 100], NaN during warm-up
        """
        period = int(period)
        delta = close.diff()
        gain = delta.clip(lower=0)
        loss = (-delta).clip(lower=0)

        avg_gain = gain.rolling(window=period, min_periods=period).mean()
        avg_loss = loss.rolling(window=period, min_periods=period).mean()

        rs = avg_gain / avg_loss.replace(0, np.nan)
        rsi = 100 - (100 / (1 + rs))
        rsi = rsi.where(avg_loss != 0, 100.0)
        return rsi.where(avg_gain.notna())

    @staticmethod
    def calculate_bollinger_bands(
        close: pd.Series,
        period: int = BB_PERIOD,
        std_dev: float = BB_STD_DEV
    ) -> Tuple[pd.Series, pd.Series, pd.Series]:
        """
        Calculate Bollinger Bands.

        Middle = SMA(close, period)
        Upper = Middle + std_dev * StdDev(close, period)
        Lower = Middle - std_dev * StdDev(close, period)

        The standard deviation is the population one (ddof=0).

        Returns
        -------
        Tuple[pd.Series, pd.Series, pd.Series]
            (Upper, Middle, Lower)
        """
        period = int(period)
        middle = close.rolling(window=period, min_periods=period).mean()
        std = close.rolling(window=period, min_periods=period).std(ddof=0)

        upper = middle + std_dev * std
        lower = middle - std_dev * std

        return upper, middle, lower

    @staticmethod
    def calculate_donchian_channels(
        high: pd.Series,
        low: pd.Series,
        period: int = DONCHIAN_PERIOD
    ) -> Tuple[pd.Series, pd.Series, pd.Series]:
        """
        Calculate Donchian Channels.

        Upper = Highest High over period
        Lower = Lowest Low over period
        Middle = (Upper + Lower) / 2

        Returns
        -------
        Tuple[pd.Series, pd.Series, pd.Series]
            (Upper, Middle, Lower)
        """
        period = int(period)
        upper = high.rolling(window=period, min_periods=period).max()
        lower = low.rolling(window=period, min_periods=period).min()
        middle = (upper + lower) / 2

        return upper, middle, lower

    @staticmethod
    def calculate_true_range(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series
    ) -> pd.Series:
        """True range; the first bar uses high - low alone."""
        prev_close = close.shift(1)
        tr1 = high - low
        tr2 = (high - prev_close).abs()
        tr3 = (low - prev_close).abs()
        return pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)

    @staticmethod
    def calculate_atr(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        period: int = ATR_PERIOD
    ) -> pd.Series:
        """Average True Range as a simple rolling mean of the true range."""
        tr = IndicatorCalculator.calculate_true_range(high, low, close)
        return tr.rolling(window=int(period), min_periods=int(period)).mean()


__all__ = [
    'IndicatorCalculator',
    'RSI_PERIOD',
    'BB_PERIOD',
    'BB_STD_DEV',
    'DONCHIAN_PERIOD',
    'ATR_PERIOD',
]
