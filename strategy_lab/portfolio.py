"""
Portfolio Optimizer
===================

Weight allocation across several already-backtested strategy/instrument
pairs, using the covariance of their daily returns.

METHODS
-------
    equal         1/N per asset
    risk_parity   weight proportional to 1 / volatility
    max_sharpe    maximize (annual return - Rf) / annual volatility
    min_variance  minimize w' S w
    max_return    maximize w' mu

    Markowitz, H. (1952). "Portfolio Selection." Journal of Finance.
    Maillard, S., Roncalli, T. & Teiletche, J. (2010). "The Properties of
        Equally Weighted Risk Contribution Portfolios."

SEARCH POLICY
-------------
The three objective-driven methods are solved numerically over the weight
simplex. Up to ``grid_search_max_assets`` assets (default 4) every simplex
point on a 1/20 grid is evaluated; above that, thousands of random
normalized weight draws are evaluated instead. The two branches are
separate callables (``grid_search_weights`` / ``random_search_weights``).

CONSTRAINTS
-----------
Every method's weights are mapped into ``[min_weight, max_weight]`` and
renormalized to sum to 1 by Euclidean projection onto the bounded
simplex: w_i = clip(v_i + lambda, lo, hi) with lambda chosen so the weights
sum to 1.

KNOWN SIMPLIFICATION
--------------------
Return series of unequal length are paired by position up to the shorter
length, and the blended equity curve used for max drawdown is aligned by
position, not by calendar date.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from strategy_lab.backtest_engine import BacktestMetrics, BacktestRun, EquityPoint
from strategy_lab.config import PORTFOLIO, PortfolioSettings
from strategy_lab.errors import ValidationError, require

logger = logging.getLogger(__name__)

# Maps an (m x n) weight matrix to m scores; higher is better
Objective = Callable[[np.ndarray], np.ndarray]


# =============================================================================
# SECTION 1: ENUMERATIONS AND DATA STRUCTURES
# =============================================================================

class AllocationMethod(Enum):
    """Portfolio weighting scheme."""
    EQUAL = "equal"
    RISK_PARITY = "risk_parity"
    MAX_SHARPE = "max_sharpe"
    MIN_VARIANCE = "min_variance"
    MAX_RETURN = "max_return"

    @classmethod
    def parse(cls, value: Union[str, AllocationMethod]) -> AllocationMethod:
        """Accept an enum member or its value ('risk_parity')."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"Unknown allocation method '{value}'. Expected one of {[m.value for m in cls]}"
            ) from None


METHOD_DESCRIPTIONS: Dict[AllocationMethod, str] = {
    AllocationMethod.EQUAL: "Equal weight: the same allocation to every asset",
    AllocationMethod.RISK_PARITY: "Risk parity: weights inversely proportional to volatility",
    AllocationMethod.MAX_SHARPE: "Maximum Sharpe: best risk-adjusted return",
    AllocationMethod.MIN_VARIANCE: "Minimum variance: lowest overall portfolio volatility",
    AllocationMethod.MAX_RETURN: "Maximum return: highest expected return (high risk)",
}


@dataclass
class PortfolioAsset:
    """
    One strategy/instrument pair entering the portfolio.

    Supply ``daily_returns``, ``equity_curve``, or both. Missing returns are
    derived from the equity curve; a missing equity curve is compounded
    from the returns.
    """
    identifier: str
    daily_returns: Optional[Sequence[float]] = None
    metrics: Optional[BacktestMetrics] = None
    equity_curve: Optional[Sequence[float]] = None
    strategy_id: Optional[str] = None

    @classmethod
    def from_backtest(cls, identifier: str, run: BacktestRun) -> PortfolioAsset:
        """Build an asset from an executor run."""
        return cls(
            identifier=identifier,
            metrics=run.metrics,
            equity_curve=[p.equity for p in run.equity_curve],
            strategy_id=run.strategy_id
        )


@dataclass
class PortfolioConfig:
    """Inputs for ``run_portfolio_optimization``."""
    assets: List[PortfolioAsset]
    method: Union[str, AllocationMethod] = AllocationMethod.EQUAL
    risk_free_rate: float = PORTFOLIO.risk_free_rate
    min_weight: float = 0.0
    max_weight: float = 1.0
    include_frontier: bool = True
    seed: Optional[int] = None
    settings: PortfolioSettings = PORTFOLIO


@dataclass(frozen=True)
class CombinedMetrics:
    """Portfolio-level statistics, returns and volatility in percent."""
    expected_return: float
    volatility: float
    sharpe_ratio: float
    max_drawdown: float
    diversification_ratio: float


@dataclass(frozen=True)
class FrontierPoint:
    """One efficient-frontier portfolio; return and volatility in percent."""
    target_return: float
    expected_return: float
    volatility: float
    sharpe_ratio: float
    weights: Tuple[float, ...]


@dataclass
class PortfolioResult:
    """Optimized allocation and its diagnostics."""
    method: AllocationMethod
    asset_ids: List[str]
    weights: List[float]
    combined_metrics: CombinedMetrics
    correlation_matrix: pd.DataFrame
    covariance_matrix: pd.DataFrame
    search: str
    efficient_frontier: Optional[List[FrontierPoint]] = None
    asset_metrics: Dict[str, Optional[BacktestMetrics]] = field(default_factory=dict)
    execution_time_ms: float = 0.0

    @property
    def weights_by_asset(self) -> Dict[str, float]:
        return dict(zip(self.asset_ids, self.weights))


# =============================================================================
# SECTION 2: RETURN STATISTICS
# =============================================================================

def calculate_returns(equity_curve: Sequence[Union[float, EquityPoint]]) -> np.ndarray:
    """Step returns of an equity curve (values or EquityPoints)."""
    values = np.array(
        [p.equity if isinstance(p, EquityPoint) else float(p) for p in equity_curve],
        dtype=float
    )
    if len(values) < 2:
        return np.array([], dtype=float)
    prev = values[:-1]
    with np.errstate(divide='ignore', invalid='ignore'):
        return np.where(prev != 0, (values[1:] - prev) / prev, 0.0)


def returns_frame(returns: Sequence[np.ndarray], labels: Sequence[str]) -> pd.DataFrame:
    """Columns of unequal length, padded with NaN at the end."""
    return pd.DataFrame({label: pd.Series(r, dtype=float) for label, r in zip(labels, returns)})


def covariance_matrix(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Sample covariance (n - 1), each pair over its common leading positions.

    Pairs with fewer than 2 common observations get 0.
    """
    return frame.cov(min_periods=2).fillna(0.0)


def correlation_matrix(frame: pd.DataFrame) -> pd.DataFrame:
    """Pearson correlation over the same pairing; 0 where a series has no variance."""
    return frame.corr(min_periods=2).fillna(0.0)


# =============================================================================
# SECTION 3: WEIGHT CONSTRAINTS
# =============================================================================

def normalize_weights(weights: np.ndarray) -> np.ndarray:
    """Scale rows to sum to 1; an all-zero row becomes equal weights."""
    w = np.atleast_2d(np.asarray(weights, dtype=float))
    sums = w.sum(axis=1, keepdims=True)
    n = w.shape[1]
    out = np.where(sums != 0, w / np.where(sums == 0, 1, sums), 1.0 / n)
    return out if np.ndim(weights) > 1 else out[0]


def validate_bounds(n_assets: int, min_weight: float, max_weight: float) -> None:
    """
    Raises:
        ValidationError: If no weight vector can satisfy the bounds
    """
    require(0 <= min_weight <= max_weight <= 1,
            f"weight bounds must satisfy 0 <= min <= max <= 1, got [{min_weight}, {max_weight}]")
    require(n_assets * min_weight <= 1 + 1e-12,
            f"min_weight {min_weight} x {n_assets} assets exceeds 100%")
    require(n_assets * max_weight >= 1 - 1e-12,
            f"max_weight {max_weight} x {n_assets} assets cannot reach 100%")


def project_to_bounds(
    weights: np.ndarray,
    min_weight: float,
    max_weight: float,
    iterations: int = 100
) -> np.ndarray:
    """
    Euclidean projection of weight rows onto {lo <= w <= hi, sum(w) = 1}.

    The shift lambda is found by bisection; sum(clip(v + lambda)) is
    monotone in lambda. Accepts a single vector or an (m x n) matrix.
    """
    v = np.atleast_2d(np.asarray(weights, dtype=float))
    lo_shift = min_weight - v.max(axis=1)
    hi_shift = max_weight - v.min(axis=1)

    for _ in range(iterations):
        mid = (lo_shift + hi_shift) / 2
        total = np.clip(v + mid[:, None], min_weight, max_weight).sum(axis=1)
        too_low = total < 1
        lo_shift = np.where(too_low, mid, lo_shift)
        hi_shift = np.where(too_low, hi_shift, mid)

    projected = np.clip(v + ((lo_shift + hi_shift) / 2)[:, None], min_weight, max_weight)
    return projected if np.ndim(weights) > 1 else projected[0]


# =============================================================================
# SECTION 4: SEARCH BRANCHES
# =============================================================================

def _simplex_points(n: int, total: int) -> Iterator[Tuple[int, ...]]:
    """Integer compositions of ``total`` into ``n`` parts; last part is the remainder."""
    if n == 1:
        yield (total,)
        return
    for k in range(total + 1):
        for rest in _simplex_points(n - 1, total - k):
            yield (k,) + rest


def grid_search_weights(
    n_assets: int,
    objective: Objective,
    min_weight: float = 0.0,
    max_weight: float = 1.0,
    grid_size: int = PORTFOLIO.grid_size
) -> np.ndarray:
    """
    Exhaustive search over simplex points spaced 1 / ``grid_size`` apart.

    Starts from equal weights and only moves on a strictly better score.
    Grid points outside the bounds are skipped.
    """
    best = project_to_bounds(np.full(n_assets, 1.0 / n_assets), min_weight, max_weight)
    best_score = float(objective(best[None, :])[0])

    grid = np.array(list(_simplex_points(n_assets, grid_size)), dtype=float) / grid_size
    tol = 1e-9
    feasible = grid[((grid >= min_weight - tol) & (grid <= max_weight + tol)).all(axis=1)]
    if len(feasible):
        scores = objective(feasible)
        i = int(np.argmax(scores))
        if scores[i] > best_score:
            best = feasible[i]

    return project_to_bounds(best, min_weight, max_weight)


def random_search_weights(
    n_assets: int,
    objective: Objective,
    rng: np.random.Generator,
    min_weight: float = 0.0,
    max_weight: float = 1.0,
    iterations: int = PORTFOLIO.random_iterations
) -> np.ndarray:
    """
    Random search over uniform draws normalized onto the simplex.

    Each draw is projected into the bounds before scoring.
    """
    best = project_to_bounds(np.full(n_assets, 1.0 / n_assets), min_weight, max_weight)
    best_score = float(objective(best[None, :])[0])

    draws = project_to_bounds(
        normalize_weights(rng.random((iterations, n_assets))), min_weight, max_weight
    )
    scores = objective(draws)
    i = int(np.argmax(scores))
    if scores[i] > best_score:
        best = draws[i]
    return best


# =============================================================================
# SECTION 5: PORTFOLIO OPTIMIZER
# =============================================================================

class PortfolioOptimizer:
    """
    Allocation across backtested assets.

    The random source is a seeded numpy Generator so random-search results
    are reproducible.
    """

    def __init__(
        self,
        risk_free_rate: float = PORTFOLIO.risk_free_rate,
        min_weight: float = 0.0,
        max_weight: float = 1.0,
        seed: Optional[int] = None,
        settings: PortfolioSettings = PORTFOLIO
    ):
        self.risk_free_rate = risk_free_rate
        self.min_weight = float(min_weight)
        self.max_weight = float(max_weight)
        self.settings = settings
        self.rng = np.random.default_rng(seed)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def _prepare(self, assets: Sequence[PortfolioAsset]) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        """Returns and equity curves per asset, deriving whichever is missing."""
        returns, curves = [], []
        for asset in assets:
            if asset.daily_returns is not None and len(asset.daily_returns) > 0:
                r = np.asarray(asset.daily_returns, dtype=float)
            elif asset.equity_curve is not None:
                r = calculate_returns(asset.equity_curve)
            else:
                r = np.array([], dtype=float)

            if asset.equity_curve is not None and len(asset.equity_curve) > 0:
                eq = np.array(
                    [p.equity if isinstance(p, EquityPoint) else float(p) for p in asset.equity_curve],
                    dtype=float
                )
            else:
                eq = self.settings.initial_equity * np.concatenate(([1.0], np.cumprod(1 + r)))
            returns.append(r)
            curves.append(eq)
        return returns, curves

    def _objective(
        self,
        method: AllocationMethod,
        mu: np.ndarray,
        cov: np.ndarray
    ) -> Objective:
        periods = self.settings.periods_per_year
        rf = self.risk_free_rate

        def variance(w: np.ndarray) -> np.ndarray:
            return np.maximum(np.einsum('ij,jk,ik->i', w, cov, w), 0.0)

        if method is AllocationMethod.MAX_SHARPE:
            def sharpe(w: np.ndarray) -> np.ndarray:
                ret = w @ mu * periods
                vol = np.sqrt(variance(w)) * math.sqrt(periods)
                with np.errstate(divide='ignore', invalid='ignore'):
                    return np.where(vol > 0, (ret - rf) / vol, 0.0)
            return sharpe
        if method is AllocationMethod.MIN_VARIANCE:
            return lambda w: -variance(w)
        return lambda w: w @ mu

    def _search(self, n: int, objective: Objective) -> Tuple[np.ndarray, str]:
        if n <= self.settings.grid_search_max_assets:
            return grid_search_weights(
                n, objective, self.min_weight, self.max_weight, self.settings.grid_size
            ), "grid"
        return random_search_weights(
            n, objective, self.rng, self.min_weight, self.max_weight, self.settings.random_iterations
        ), "random"

    # -------------------------------------------------------------------------
    # Combined metrics
    # -------------------------------------------------------------------------

    @staticmethod
    def blended_max_drawdown(curves: Sequence[np.ndarray], weights: np.ndarray) -> float:
        """Max drawdown % of the weight-blended equity curve, aligned by position."""
        length = min(len(c) for c in curves)
        if length == 0:
            return 0.0
        blended = np.sum([w * c[:length] for w, c in zip(weights, curves)], axis=0)
        peak = np.maximum.accumulate(blended)
        with np.errstate(divide='ignore', invalid='ignore'):
            drawdown = np.where(peak > 0, (peak - blended) / peak, 0.0)
        return float(drawdown.max() * 100)

    def combined_metrics(
        self,
        weights: np.ndarray,
        mu: np.ndarray,
        cov: np.ndarray,
        vols: np.ndarray,
        curves: Sequence[np.ndarray]
    ) -> CombinedMetrics:
        periods = self.settings.periods_per_year
        port_return = float(weights @ mu) * periods
        daily_vol = math.sqrt(max(float(weights @ cov @ weights), 0.0))
        port_vol = daily_vol * math.sqrt(periods)
        sharpe = (port_return - self.risk_free_rate) / port_vol if port_vol > 0 else 0.0
        diversification = float(weights @ vols) / daily_vol if daily_vol > 0 else 1.0

        return CombinedMetrics(
            expected_return=port_return * 100,
            volatility=port_vol * 100,
            sharpe_ratio=sharpe,
            max_drawdown=self.blended_max_drawdown(curves, weights),
            diversification_ratio=diversification
        )

    def efficient_frontier(self, mu: np.ndarray, cov: np.ndarray) -> List[FrontierPoint]:
        """
        Minimum-variance portfolios for evenly spaced target returns.

        Each point minimizes variance + penalty * (return - target)^2 by
        random search.
        """
        periods = self.settings.periods_per_year
        n = len(mu)
        points = []
        targets = np.linspace(mu.min(), mu.max(), self.settings.frontier_points)
        for target in targets:
            def objective(w: np.ndarray, target: float = float(target)) -> np.ndarray:
                var = np.einsum('ij,jk,ik->i', w, cov, w)
                return -(var + (w @ mu - target) ** 2 * self.settings.frontier_penalty)

            w = random_search_weights(
                n, objective, self.rng, self.min_weight, self.max_weight,
                self.settings.frontier_iterations
            )
            ret = float(w @ mu) * periods
            vol = math.sqrt(max(float(w @ cov @ w), 0.0)) * math.sqrt(periods)
            points.append(FrontierPoint(
                target_return=float(target) * periods * 100,
                expected_return=ret * 100,
                volatility=vol * 100,
                sharpe_ratio=(ret - self.risk_free_rate) / vol if vol > 0 else 0.0,
                weights=tuple(float(x) for x in w)
            ))
        return points

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def optimize(
        self,
        assets: Sequence[PortfolioAsset],
        method: Union[str, AllocationMethod] = AllocationMethod.EQUAL,
        include_frontier: bool = True
    ) -> PortfolioResult:
        """
        Compute weights for ``assets`` under ``method``.

        Args:
            assets: At least ``settings.min_assets`` assets
            method: Allocation method
            include_frontier: Also compute the efficient frontier

        Returns:
            PortfolioResult with weights in asset order

        Raises:
            ValidationError: Too few assets, duplicate ids, or infeasible bounds
        """
        start_time = time.time()
        method = AllocationMethod.parse(method)
        n = len(assets)
        require(
            n >= self.settings.min_assets,
            f"At least {self.settings.min_assets} assets required for portfolio optimization, got {n}"
        )
        ids = [a.identifier for a in assets]
        require(len(set(ids)) == n, f"asset identifiers must be unique: {ids}")
        validate_bounds(n, self.min_weight, self.max_weight)

        returns, curves = self._prepare(assets)
        frame = returns_frame(returns, ids)
        cov_df = covariance_matrix(frame)
        corr_df = correlation_matrix(frame)
        cov = cov_df.to_numpy()

        mu = np.array([r.mean() if len(r) else 0.0 for r in returns])
        vols = np.array([r.std(ddof=1) if len(r) > 1 else 0.0 for r in returns])

        if method is AllocationMethod.EQUAL:
            raw, search = np.full(n, 1.0 / n), "closed_form"
        elif method is AllocationMethod.RISK_PARITY:
            inverse = 1.0 / np.where(vols == 0, self.settings.min_volatility, vols)
            raw, search = normalize_weights(inverse), "closed_form"
        else:
            raw, search = self._search(n, self._objective(method, mu, cov))

        weights = project_to_bounds(raw, self.min_weight, self.max_weight)

        result = PortfolioResult(
            method=method,
            asset_ids=ids,
            weights=[float(w) for w in weights],
            combined_metrics=self.combined_metrics(weights, mu, cov, vols, curves),
            correlation_matrix=corr_df,
            covariance_matrix=cov_df,
            search=search,
            efficient_frontier=self.efficient_frontier(mu, cov) if include_frontier else None,
            asset_metrics={a.identifier: a.metrics for a in assets},
            execution_time_ms=(time.time() - start_time) * 1000
        )
        logger.info(
            f"Portfolio {method.value} ({search}) over {n} assets: "
            + ", ".join(f"{k}={v:.1%}" for k, v in result.weights_by_asset.items())
        )
        return result


# =============================================================================
# SECTION 6: OUTPUT FORMATTING
# =============================================================================

def describe_method(method: Union[str, AllocationMethod]) -> str:
    """One-line description of an allocation method."""
    return METHOD_DESCRIPTIONS[AllocationMethod.parse(method)]


def format_portfolio_report(result: PortfolioResult) -> str:
    """Format an allocation as a text report."""
    m = result.combined_metrics
    lines = [
        "=" * 70,
        "PORTFOLIO OPTIMIZATION",
        "=" * 70,
        f"Method: {result.method.value} ({result.search} search)",
        describe_method(result.method),
        "",
        "-" * 70,
        "WEIGHTS",
        "-" * 70,
    ]
    for asset_id, weight in result.weights_by_asset.items():
        lines.append(f"  {asset_id:<20} {weight:>8.2%}  {'#' * int(round(weight * 40))}")

    lines.extend([
        "",
        "-" * 70,
        "COMBINED METRICS",
        "-" * 70,
        f"Expected Return:       {m.expected_return:+.2f}%",
        f"Volatility:            {m.volatility:.2f}%",
        f"Sharpe Ratio:          {m.sharpe_ratio:.3f}",
        f"Max Drawdown:          {m.max_drawdown:.2f}%",
        f"Diversification Ratio: {m.diversification_ratio:.3f}",
        "",
        "-" * 70,
        "CORRELATION MATRIX",
        "-" * 70,
        result.correlation_matrix.round(3).to_string(),
    ])
    if result.efficient_frontier:
        lines.extend(["", "-" * 70, "EFFICIENT FRONTIER", "-" * 70,
                      f"{'Return %':>10}{'Vol %':>10}{'Sharpe':>10}"])
        for p in result.efficient_frontier:
            lines.append(f"{p.expected_return:>10.2f}{p.volatility:>10.2f}{p.sharpe_ratio:>10.3f}")
    lines.append("=" * 70)
    return "\n".join(lines)


# =============================================================================
# SECTION 7: CONVENIENCE FUNCTIONS
# =============================================================================

def run_portfolio_optimization(config: PortfolioConfig) -> PortfolioResult:
    """
    Run a portfolio optimization described by a config object.

    Example:
        >>> assets = [PortfolioAsset.from_backtest(sid, run_backtest(sid, bars))
        ...           for sid in ('TF001', 'MO002', 'MR001')]
        >>> result = run_portfolio_optimization(PortfolioConfig(assets, 'max_sharpe', seed=7))
        >>> print(result.weights_by_asset)
    """
    optimizer = PortfolioOptimizer(
        risk_free_rate=config.risk_free_rate,
        min_weight=config.min_weight,
        max_weight=config.max_weight,
        seed=config.seed,
        settings=config.settings
    )
    return optimizer.optimize(config.assets, config.method, config.include_frontier)


__all__ = [
    'AllocationMethod',
    'METHOD_DESCRIPTIONS',
    'PortfolioAsset',
    'PortfolioConfig',
    'CombinedMetrics',
    'FrontierPoint',
    'PortfolioResult',
    'calculate_returns',
    'returns_frame',
    'covariance_matrix',
    'correlation_matrix',
    'normalize_weights',
    'validate_bounds',
    'project_to_bounds',
    'grid_search_weights',
    'random_search_weights',
    'PortfolioOptimizer',
    'describe_method',
    'format_portfolio_report',
    'run_portfolio_optimization',
]
