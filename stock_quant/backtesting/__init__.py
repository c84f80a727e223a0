from .engine import (
    BacktestEngine,
    BacktestError,
    BacktestMetrics,
    BacktestResult,
    EquityPoint,
    OptimizationResult,
    ParameterRange,
    Trade,
)
from .strategies import Strategy, STRATEGY_BUILDERS, get_strategy, predefined_strategies
