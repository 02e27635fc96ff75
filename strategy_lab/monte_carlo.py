"""
Monte Carlo / Bootstrap Trade Simulator
=======================================

Robustness testing by resampling a completed trade sequence.

METHODS
-------
Shuffle (permutation):
    Each run replays a uniformly random permutation of the same trades.
    Compounded final capital is identical for every permutation; only the
    path, and therefore the drawdown, changes. The spread of drawdowns
    shows how much of the historical drawdown was luck of ordering.

Bootstrap (with replacement):
    Each run draws ``len(trades)`` trades independently with replacement,
    so both the final return and the drawdown vary.

    Efron, B. (1979). "Bootstrap Methods: Another Look at the Jackknife."

REPLAY
------
    equity[0] = initial capital
    equity[k] = equity[k-1] * (1 + profit%_k / 100)

RISK MEASURES
-------------
    Probability of loss:  % of runs with total return < 0
    Probability of ruin:  % of runs with max drawdown > 50%
    VaR:                  sorted returns at index floor((1 - c) * n)
    Expected Shortfall:   mean of all returns at or below VaR
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Union

import numpy as np
from scipy import stats

from strategy_lab.backtest_engine import Trade
from strategy_lab.config import BACKTEST, MONTE_CARLO, MonteCarloSettings
from strategy_lab.errors import NoTradesError, ValidationError, require

logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: ENUMERATIONS AND DATA STRUCTURES
# =============================================================================

class SimulationMethod(Enum):
    """Resampling scheme."""
    SHUFFLE = "shuffle"
    BOOTSTRAP = "bootstrap"

    @classmethod
    def parse(cls, value: Union[str, SimulationMethod]) -> SimulationMethod:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"Unknown simulation method '{value}'. Expected 'shuffle' or 'bootstrap'"
            ) from None


@dataclass
class MonteCarloConfig:
    """Inputs for a simulation run."""
    trades: Sequence[Union[Trade, float]]
    initial_capital: float = BACKTEST.initial_capital
    simulations: int = MONTE_CARLO.simulations
    confidence_level: float = MONTE_CARLO.confidence_level
    seed: Optional[int] = None


@dataclass(frozen=True)
class OriginalPerformance:
    """Metrics of the trade sequence in its historical order."""
    total_return: float
    max_drawdown: float
    win_rate: float
    sharpe_ratio: float  # Per-trade mean / std, scaled by sqrt(periods)


@dataclass(frozen=True)
class ReturnDistribution:
    """Distribution of simulated total returns, in percent."""
    mean: float
    median: float
    std_dev: float
    min: float
    max: float
    percentile_5: float
    percentile_25: float
    percentile_75: float
    percentile_95: float
    skewness: float = 0.0
    kurtosis: float = 0.0  # Excess (Fisher)


@dataclass(frozen=True)
class DrawdownDistribution:
    """Distribution of simulated max drawdowns, in percent."""
    mean: float
    median: float
    max: float
    percentile_95: float


@dataclass(frozen=True)
class TailRisk:
    """Loss probabilities and tail measures over all runs."""
    probability_of_loss: float
    probability_of_ruin: float
    value_at_risk: float
    expected_shortfall: float
    confidence_level: float


@dataclass
class MonteCarloResult:
    """Complete simulation output."""
    method: SimulationMethod
    simulations: int
    trade_count: int
    original: OriginalPerformance
    returns: ReturnDistribution
    drawdowns: DrawdownDistribution
    risk: TailRisk
    sample_equity_curves: List[List[float]] = field(default_factory=list)
    execution_time_ms: float = 0.0


# =============================================================================
# SECTION 2: PATH HELPERS
# =============================================================================

def equity_path(profit_pcts: np.ndarray, initial_capital: float) -> np.ndarray:
    """Compounded equity, starting with the initial capital."""
    growth = np.cumprod(1 + np.asarray(profit_pcts, dtype=float) / 100)
    return np.concatenate(([initial_capital], initial_capital * growth))


def max_drawdown_pct(equity: np.ndarray) -> float:
    """Largest peak-to-trough decline of an equity path, in percent."""
    running_max = np.maximum.accumulate(equity)
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdown = np.where(running_max > 0, (running_max - equity) / running_max * 100, 0.0)
    return float(drawdown.max()) if len(drawdown) else 0.0


def _profit_pcts(trades: Sequence[Union[Trade, float]]) -> np.ndarray:
    return np.array(
        [t.profit_pct if isinstance(t, Trade) else float(t) for t in trades],
        dtype=float
    )


# =============================================================================
# SECTION 3: SIMULATOR
# =============================================================================

class MonteCarloSimulator:
    """
    Trade-sequence resampler.

    A seeded simulator is fully reproducible: the same seed, trades and
    method always give the same distributions.
    """

    def __init__(
        self,
        simulations: int = MONTE_CARLO.simulations,
        confidence_level: float = MONTE_CARLO.confidence_level,
        seed: Optional[int] = None,
        settings: MonteCarloSettings = MONTE_CARLO,
        periods_per_year: int = BACKTEST.periods_per_year
    ):
        """
        Initialize Monte Carlo simulator.

        Args:
            simulations: Number of resampled runs
            confidence_level: VaR confidence, strictly between 0 and 1
            seed: Seed for numpy's Generator; None draws fresh entropy
            settings: Ruin threshold and sample-curve count
            periods_per_year: Scaling for the original-sequence Sharpe
        """
        require(int(simulations) >= 1, f"simulations must be at least 1, got {simulations}")
        require(
            0 < confidence_level < 1,
            f"confidence_level must be in (0, 1), got {confidence_level}"
        )
        self.simulations = int(simulations)
        self.confidence_level = float(confidence_level)
        self.settings = settings
        self.periods_per_year = periods_per_year
        self.rng = np.random.default_rng(seed)

    def simulate(
        self,
        trades: Sequence[Union[Trade, float]],
        initial_capital: float = BACKTEST.initial_capital,
        method: Union[str, SimulationMethod] = SimulationMethod.SHUFFLE
    ) -> MonteCarloResult:
        """
        Run the simulation.

        Args:
            trades: Closed trades (or bare profit percentages)
            initial_capital: Starting capital of every replay
            method: 'shuffle' or 'bootstrap'

        Returns:
            MonteCarloResult with return/drawdown distributions and tail risk

        Raises:
            NoTradesError: If ``trades`` is empty
        """
        start_time = time.time()
        method = SimulationMethod.parse(method)
        require(initial_capital > 0, "initial_capital must be positive")

        pcts = _profit_pcts(trades)
        n_trades = len(pcts)
        if n_trades == 0:
            raise NoTradesError("No trades to simulate")

        logger.info(
            f"Monte Carlo ({method.value}): {self.simulations:,} runs over {n_trades} trades"
        )

        sim_returns = np.empty(self.simulations)
        sim_drawdowns = np.empty(self.simulations)
        sample_curves: List[List[float]] = []
        sample_every = math.ceil(self.simulations / self.settings.sample_curves)

        for i in range(self.simulations):
            if method is SimulationMethod.SHUFFLE:
                path = self.rng.permutation(pcts)
            else:
                path = pcts[self.rng.integers(0, n_trades, size=n_trades)]

            equity = equity_path(path, initial_capital)
            sim_returns[i] = (equity[-1] - initial_capital) / initial_capital * 100
            sim_drawdowns[i] = max_drawdown_pct(equity)

            if i % sample_every == 0 and len(sample_curves) < self.settings.sample_curves:
                sample_curves.append(equity.tolist())

        result = MonteCarloResult(
            method=method,
            simulations=self.simulations,
            trade_count=n_trades,
            original=self._original_performance(pcts, initial_capital),
            returns=self._return_distribution(sim_returns),
            drawdowns=self._drawdown_distribution(sim_drawdowns),
            risk=self._tail_risk(sim_returns, sim_drawdowns),
            sample_equity_curves=sample_curves,
            execution_time_ms=(time.time() - start_time) * 1000
        )

        logger.info(
            f"Monte Carlo done: mean return {result.returns.mean:.2f}%, "
            f"VaR {result.risk.value_at_risk:.2f}%, P(loss) {result.risk.probability_of_loss:.1f}%"
        )
        return result

    def _original_performance(self, pcts: np.ndarray, initial_capital: float) -> OriginalPerformance:
        equity = equity_path(pcts, initial_capital)
        std = float(np.std(pcts))
        sharpe = float(np.mean(pcts)) / std * math.sqrt(self.periods_per_year) if std > 0 else 0.0
        return OriginalPerformance(
            total_return=(equity[-1] - initial_capital) / initial_capital * 100,
            max_drawdown=max_drawdown_pct(equity),
            win_rate=float((pcts > 0).mean() * 100),
            sharpe_ratio=sharpe
        )

    @staticmethod
    def _return_distribution(returns: np.ndarray) -> ReturnDistribution:
        # np.percentile defaults to linear interpolation between order statistics
        p5, p25, p75, p95 = np.percentile(returns, [5, 25, 75, 95])
        std = float(np.std(returns))
        return ReturnDistribution(
            mean=float(np.mean(returns)),
            median=float(np.median(returns)),
            std_dev=std,
            min=float(np.min(returns)),
            max=float(np.max(returns)),
            percentile_5=float(p5),
            percentile_25=float(p25),
            percentile_75=float(p75),
            percentile_95=float(p95),
            skewness=float(stats.skew(returns)) if std > 0 else 0.0,
            kurtosis=float(stats.kurtosis(returns)) if std > 0 else 0.0
        )

    @staticmethod
    def _drawdown_distribution(drawdowns: np.ndarray) -> DrawdownDistribution:
        return DrawdownDistribution(
            mean=float(np.mean(drawdowns)),
            median=float(np.median(drawdowns)),
            max=float(np.max(drawdowns)),
            percentile_95=float(np.percentile(drawdowns, 95))
        )

    def _tail_risk(self, returns: np.ndarray, drawdowns: np.ndarray) -> TailRisk:
        n = len(returns)
        sorted_returns = np.sort(returns)
        var_index = min(int(math.floor((1 - self.confidence_level) * n)), n - 1)
        value_at_risk = float(sorted_returns[var_index])
        tail = sorted_returns[sorted_returns <= value_at_risk]

        return TailRisk(
            probability_of_loss=float((returns < 0).mean() * 100),
            probability_of_ruin=float((drawdowns > self.settings.ruin_drawdown_pct).mean() * 100),
            value_at_risk=value_at_risk,
            expected_shortfall=float(tail.mean()) if len(tail) else value_at_risk,
            confidence_level=self.confidence_level
        )


# =============================================================================
# SECTION 4: OUTPUT FORMATTING
# =============================================================================

def format_monte_carlo_report(result: MonteCarloResult) -> str:
    """Format a simulation result as a text report."""
    r, d, k, o = result.returns, result.drawdowns, result.risk, result.original
    lines = [
        "=" * 70,
        f"MONTE CARLO SIMULATION ({result.method.value.upper()})",
        "=" * 70,
        f"Runs: {result.simulations:,}   Trades per run: {result.trade_count}",
        f"Elapsed: {result.execution_time_ms:,.0f} ms",
        "",
        "-" * 70,
        "ORIGINAL SEQUENCE",
        "-" * 70,
        f"Total Return:   {o.total_return:+.2f}%",
        f"Max Drawdown:   {o.max_drawdown:.2f}%",
        f"Win Rate:       {o.win_rate:.1f}%",
        f"Sharpe (trade): {o.sharpe_ratio:.3f}",
        "",
        "-" * 70,
        "RETURN DISTRIBUTION",
        "-" * 70,
        f"Mean / Median:  {r.mean:+.2f}% / {r.median:+.2f}%",
        f"Std Dev:        {r.std_dev:.2f}%",
        f"Min / Max:      {r.min:+.2f}% / {r.max:+.2f}%",
        f"P5 / P25:       {r.percentile_5:+.2f}% / {r.percentile_25:+.2f}%",
        f"P75 / P95:      {r.percentile_75:+.2f}% / {r.percentile_95:+.2f}%",
        f"Skew / Kurtosis: {r.skewness:+.3f} / {r.kurtosis:+.3f}",
        "",
        "-" * 70,
        "DRAWDOWN DISTRIBUTION",
        "-" * 70,
        f"Mean / Median:  {d.mean:.2f}% / {d.median:.2f}%",
        f"P95 / Max:      {d.percentile_95:.2f}% / {d.max:.2f}%",
        "",
        "-" * 70,
        "TAIL RISK",
        "-" * 70,
        f"P(loss):        {k.probability_of_loss:.1f}%",
        f"P(ruin):        {k.probability_of_ruin:.1f}%",
        f"VaR ({k.confidence_level:.0%}):     {k.value_at_risk:+.2f}%",
        f"Exp. Shortfall: {k.expected_shortfall:+.2f}%",
        "=" * 70,
    ]
    return "\n".join(lines)


# =============================================================================
# SECTION 5: CONVENIENCE FUNCTIONS
# =============================================================================

def _run(config: MonteCarloConfig, method: SimulationMethod) -> MonteCarloResult:
    simulator = MonteCarloSimulator(
        simulations=config.simulations,
        confidence_level=config.confidence_level,
        seed=config.seed
    )
    return simulator.simulate(config.trades, config.initial_capital, method)


def run_monte_carlo_simulation(config: MonteCarloConfig) -> MonteCarloResult:
    """Shuffle-mode simulation: random permutations of the same trades."""
    return _run(config, SimulationMethod.SHUFFLE)


def run_bootstrap_simulation(config: MonteCarloConfig) -> MonteCarloResult:
    """Bootstrap-mode simulation: trades drawn with replacement."""
    return _run(config, SimulationMethod.BOOTSTRAP)


__all__ = [
    'SimulationMethod',
    'MonteCarloConfig',
    'OriginalPerformance',
    'ReturnDistribution',
    'DrawdownDistribution',
    'TailRisk',
    'MonteCarloResult',
    'MonteCarloSimulator',
    'equity_path',
    'max_drawdown_pct',
    'format_monte_carlo_report',
    'run_monte_carlo_simulation',
    'run_bootstrap_simulation',
]
