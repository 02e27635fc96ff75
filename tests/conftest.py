"""
Shared fixtures for the strategy_lab test suite.

============================================================
PURPOSE
============================================================
Builders for small hand-crafted bar frames, a seeded random
walk, and scripted strategies whose signals are fixed in
advance so executor outcomes can be computed by hand.
============================================================
"""

from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd
import pytest

from strategy_lab.backtest_engine import Signal, SignalType
from strategy_lab.strategies import ParameterDefinition, Strategy


# ============================================================
# BAR BUILDERS
# ============================================================

def make_bars(closes: Sequence[float], start: str = "2024-01-01", freq: str = "D") -> pd.DataFrame:
    """Bars with open == close and a 1% high/low band."""
    closes = np.asarray(closes, dtype=float)
    index = pd.date_range(start=start, periods=len(closes), freq=freq, name="timestamp")
    return pd.DataFrame(
        {
            "open": closes,
            "high": closes * 1.01,
            "low": closes * 0.99,
            "close": closes,
            "volume": np.full(len(closes), 1000.0),
        },
        index=index,
    )


def random_walk_bars(n_bars: int, seed: int = 7, start: str = "2020-01-01") -> pd.DataFrame:
    """Seeded geometric random walk on business days."""
    rng = np.random.default_rng(seed)
    returns = rng.normal(0.0003, 0.015, n_bars)
    closes = 100 * np.exp(np.cumsum(returns))
    opens = np.concatenate(([100.0], closes[:-1]))
    highs = np.maximum(opens, closes) * (1 + np.abs(rng.normal(0, 0.005, n_bars)))
    lows = np.minimum(opens, closes) * (1 - np.abs(rng.normal(0, 0.005, n_bars)))
    index = pd.bdate_range(start=start, periods=n_bars, name="timestamp")
    return pd.DataFrame(
        {"open": opens, "high": highs, "low": lows, "close": closes, "volume": 1e6},
        index=index,
    )


# ============================================================
# SCRIPTED STRATEGIES
# ============================================================

class ScriptedStrategy(Strategy):
    """Emits a fixed {bar position: signal type} script, ignoring params."""

    identifier = "SCRIPTED"
    name = "Scripted"
    category = "test"

    def __init__(self, script: Dict[int, SignalType]):
        self.script = dict(script)

    def generate_signals(self, bars: pd.DataFrame, params: Dict[str, float]) -> List[Signal]:
        return [
            Signal(timestamp=bars.index[i], kind=kind, price=float(bars["close"].iat[i]))
            for i, kind in sorted(self.script.items())
            if i < len(bars)
        ]


class HoldingPeriodStrategy(Strategy):
    """
    Buys on the first bar and sells ``hold`` bars later, then repeats.

    Different ``hold`` values produce different trade sets, which makes
    the strategy useful for checking grid search ranking.
    """

    identifier = "HOLDTEST"
    name = "Holding Period"
    category = "test"
    parameters = (
        ParameterDefinition("hold", 5, 1, 20, 1, "Bars between entry and exit"),
    )

    def generate_signals(self, bars: pd.DataFrame, params: Dict[str, float]) -> List[Signal]:
        hold = int(params.get("hold", 5))
        if hold < 1:
            raise ValueError("hold must be positive")
        signals = []
        i = 0
        while i + hold < len(bars):
            signals.append(Signal(bars.index[i], SignalType.BUY, float(bars["close"].iat[i])))
            signals.append(Signal(bars.index[i + hold], SignalType.SELL, float(bars["close"].iat[i + hold])))
            i += hold + 1
        return signals


class RecordingStrategy(HoldingPeriodStrategy):
    """
    Holding-period strategy that logs the bars it is shown.

    Each ``generate_signals`` call appends ``(phase, bars.index)`` to
    ``calls``; callers switch ``phase`` to label which stage of a run
    the bars were requested for.
    """

    identifier = "RECORDER"

    def __init__(self):
        self.phase = "selection"
        self.calls: List[Tuple[str, pd.DatetimeIndex]] = []

    def generate_signals(self, bars: pd.DataFrame, params: Dict[str, float]) -> List[Signal]:
        self.calls.append((self.phase, bars.index))
        return super().generate_signals(bars, params)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def three_trade_bars():
    """Six daily bars: +10%, -5%, +8% round trips."""
    return make_bars([100, 110, 100, 95, 100, 108])


@pytest.fixture
def three_trade_strategy():
    return ScriptedStrategy({
        0: SignalType.BUY, 1: SignalType.SELL,
        2: SignalType.BUY, 3: SignalType.SELL,
        4: SignalType.BUY, 5: SignalType.SELL,
    })


@pytest.fixture
def walk_bars():
    """400 business-day bars of a seeded random walk."""
    return random_walk_bars(400)


@pytest.fixture
def hold_strategy():
    return HoldingPeriodStrategy()
