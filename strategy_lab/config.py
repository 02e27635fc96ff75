"""
Configuration Module for the Strategy Lab Backtest Engine

This module centralizes the defaults, caps and sentinel values used by the
executor and the four optimizers (grid search, Monte Carlo, walk-forward,
portfolio).

All "magic numbers" live here so that:
1. There is one source of truth for every constant
2. Callers can override a setting without touching the algorithms
3. Caps that bound total work are visible in one place

Every call-level config dataclass in the package defaults to the singleton
instances defined at the bottom of this file.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


# =============================================================================
# ENUMERATIONS
# =============================================================================

class OverfitRisk(Enum):
    """Overfit risk classification for walk-forward and split validation."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# BACKTEST SETTINGS
# =============================================================================

@dataclass(frozen=True)
class BacktestSettings:
    """Account and annualization settings shared by executor and metrics."""

    initial_capital: float = 100_000.0
    risk_free_rate: float = 0.02  # Annual, as a fraction
    periods_per_year: int = 252  # Trading days per year

    # Average-true-range window used for the avg ATR% metric
    atr_period: int = 14

    # Risk of ruin exponent (number of consecutive losing units)
    ruin_units: int = 20

    # Sentinel used when an infinite profit factor feeds a numeric objective
    infinite_score: float = 1000.0


# =============================================================================
# GRID SEARCH SETTINGS
# =============================================================================

@dataclass(frozen=True)
class GridSearchSettings:
    """Bounds on exhaustive parameter search."""

    max_combinations: int = 10_000
    top_results: int = 100
    min_trades: int = 0
    value_decimals: int = 3  # Rounding applied to every generated value

    # Default ranges derived from strategy metadata never exceed this many steps
    default_range_steps: int = 10


# =============================================================================
# MONTE CARLO SETTINGS
# =============================================================================

@dataclass(frozen=True)
class MonteCarloSettings:
    """Defaults for trade resampling simulations."""

    simulations: int = 1000
    confidence_level: float = 0.95
    ruin_drawdown_pct: float = 50.0  # Drawdown beyond this counts as ruin
    sample_curves: int = 10


# =============================================================================
# WALK-FORWARD SETTINGS
# =============================================================================

@dataclass(frozen=True)
class WalkForwardSettings:
    """Segmentation bounds and scoring thresholds for walk-forward validation."""

    min_bars: int = 100
    min_windows: int = 2
    max_windows: int = 10
    default_windows: int = 5
    min_train_ratio: float = 0.5
    max_train_ratio: float = 0.9
    default_train_ratio: float = 0.7
    min_train_bars: int = 30
    min_test_bars: int = 10
    max_combinations: int = 1000

    profit_factor_cap: float = 100.0
    overfit_sentinel: float = 999.0

    # (max overfit ratio, min consistency %, min robustness) per risk level
    low_risk: Tuple[float, float, float] = (1.3, 70.0, 60.0)
    medium_risk: Tuple[float, float, float] = (2.0, 50.0, 40.0)

    # Single train/test split: degradation % thresholds
    split_low_degradation: float = 20.0
    split_medium_degradation: float = 40.0


# =============================================================================
# PORTFOLIO SETTINGS
# =============================================================================

@dataclass(frozen=True)
class PortfolioSettings:
    """Search policy and frontier resolution for weight optimization."""

    min_assets: int = 2
    risk_free_rate: float = 0.02
    periods_per_year: int = 252

    # Simplex grid search is used up to this many assets, random search above
    grid_search_max_assets: int = 4
    grid_size: int = 20  # Simplex step = 1 / grid_size
    random_iterations: int = 5000

    frontier_points: int = 15
    frontier_iterations: int = 1000
    frontier_penalty: float = 1000.0

    min_volatility: float = 0.0001  # Replaces zero volatility in risk parity
    initial_equity: float = 100_000.0


# =============================================================================
# SINGLETON INSTANCES
# =============================================================================

BACKTEST = BacktestSettings()
GRID_SEARCH = GridSearchSettings()
MONTE_CARLO = MonteCarloSettings()
WALK_FORWARD = WalkForwardSettings()
PORTFOLIO = PortfolioSettings()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_all_settings() -> Dict[str, object]:
    """
    Get every settings singleton keyed by component name.

    Returns:
        Dictionary mapping component name to its settings instance
    """
    return {
        'backtest': BACKTEST,
        'grid_search': GRID_SEARCH,
        'monte_carlo': MONTE_CARLO,
        'walk_forward': WALK_FORWARD,
        'portfolio': PORTFOLIO,
    }
