"""Bar-by-bar strategy simulator and parameter grid optimizer.

The engine replays a :class:`~stock_quant.backtesting.strategies.Strategy`
over an oldest-first list of indicator-augmented bars, holding at most one
position at a time:

1. mark the open position to the bar's close and record equity / drawdown,
2. if a position is open and the exit rule fires, close it at the
   slippage-adjusted close,
3. otherwise, if flat and the entry rule fires, open a position at the
   slippage-adjusted close,
4. after the last bar, close anything still open at that bar's close.

Every run produces fully realized metrics from the closed-trade ledger.
"""

from __future__ import annotations

import itertools
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from stock_quant.backtesting.strategies import Strategy
from stock_quant.config import section
from stock_quant.data.models import DateLike, IndicatorBar, is_oldest_first
from stock_quant.utils.logger import setup_logger

logger = setup_logger("backtesting")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DAYS_PER_YEAR = 365
SECONDS_PER_DAY = 86400.0
DEFAULT_INITIAL_CAPITAL = 100_000.0
DEFAULT_COMMISSION = 0.001
DEFAULT_SLIPPAGE = 0.0005


class BacktestError(RuntimeError):
    """A strategy callable failed; the run it belonged to was aborted."""


# ===================================================================
# Data classes
# ===================================================================

@dataclass
class Trade:
    entry_date: DateLike
    entry_price: float
    direction: str              # long / short
    size: float
    exit_date: Optional[DateLike] = None
    exit_price: Optional[float] = None
    pnl: Optional[float] = None
    pnl_percent: Optional[float] = None
    status: str = "open"        # open / closed

    @property
    def duration_days(self) -> Optional[float]:
        if self.exit_date is None:
            return None
        delta = pd.Timestamp(self.exit_date) - pd.Timestamp(self.entry_date)
        return delta.total_seconds() / SECONDS_PER_DAY


@dataclass
class EquityPoint:
    date: DateLike
    equity: float
    drawdown: float


@dataclass
class BacktestMetrics:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    average_trade_duration: float = 0.0
    total_return: float = 0.0
    annualized_return: float = 0.0
    sharpe_ratio: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    initial_capital: float = DEFAULT_INITIAL_CAPITAL
    final_capital: float = DEFAULT_INITIAL_CAPITAL


@dataclass
class BacktestResult:
    """Ledger, metrics and equity curve of one strategy run."""

    strategy: Dict[str, Any]
    trades: List[Trade] = field(default_factory=list)
    metrics: BacktestMetrics = field(default_factory=BacktestMetrics)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    monthly_returns: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Return a fully JSON-serializable dictionary."""
        return _jsonify(asdict(self))


@dataclass(frozen=True)
class ParameterRange:
    """Inclusive grid ``min, min + step, ... <= max``."""

    min: float
    max: float
    step: float

    def __post_init__(self) -> None:
        if not self.step > 0:
            raise ValueError(f"step must be positive, got {self.step}")

    def values(self) -> List[float]:
        if self.max < self.min:
            return []
        count = int(math.floor((self.max - self.min) / self.step + 1e-9))
        return [self.min + i * self.step for i in range(count + 1)]

    @classmethod
    def coerce(cls, rng: Union["ParameterRange", Mapping[str, float], Sequence[float]]) -> "ParameterRange":
        if isinstance(rng, ParameterRange):
            return rng
        if isinstance(rng, Mapping):
            return cls(float(rng["min"]), float(rng["max"]), float(rng["step"]))
        lo, hi, step = rng
        return cls(float(lo), float(hi), float(step))


@dataclass
class OptimizationResult:
    best_params: Dict[str, float]
    best_result: BacktestResult
    evaluated: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best_params": _jsonify(self.best_params),
            "best_result": self.best_result.to_dict(),
            "evaluated": self.evaluated,
            "failed": self.failed,
        }


# ===================================================================
# Helpers
# ===================================================================

def _jsonify(obj: Any) -> Any:
    """Recursively convert numpy / pandas / date types to native Python types."""
    if isinstance(obj, dict):
        return {str(k): _jsonify(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonify(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return _jsonify(float(obj))
    if isinstance(obj, np.ndarray):
        return [_jsonify(v) for v in obj.tolist()]
    if isinstance(obj, (pd.Timestamp, datetime, date)):
        return obj.isoformat()
    if isinstance(obj, float) and (np.isnan(obj) or np.isinf(obj)):
        return 0.0
    return obj


def _safe_div(a: float, b: float, default: float = 0.0) -> float:
    """Division that returns *default* when denominator is zero/nan."""
    if b == 0 or np.isnan(b):
        return default
    return float(a / b)


def _month_key(value: DateLike) -> str:
    return pd.Timestamp(value).strftime("%Y-%m")


# ===================================================================
# Engine
# ===================================================================

class BacktestEngine:
    """Single-position backtest simulator with commission and slippage."""

    def __init__(
        self,
        initial_capital: float = DEFAULT_INITIAL_CAPITAL,
        commission: float = DEFAULT_COMMISSION,
        slippage: float = DEFAULT_SLIPPAGE,
    ) -> None:
        if not initial_capital > 0:
            raise ValueError(f"initial_capital must be positive, got {initial_capital}")
        if commission < 0:
            raise ValueError(f"commission must be non-negative, got {commission}")
        if not 0 <= slippage < 1:
            raise ValueError(f"slippage must be within [0, 1), got {slippage}")
        self.initial_capital = float(initial_capital)
        self.commission = float(commission)
        self.slippage = float(slippage)

    @classmethod
    def from_settings(cls, settings: Optional[dict] = None) -> "BacktestEngine":
        conf = settings if settings is not None else section("backtest")
        return cls(
            initial_capital=float(conf.get("initial_capital", DEFAULT_INITIAL_CAPITAL)),
            commission=float(conf.get("commission", DEFAULT_COMMISSION)),
            slippage=float(conf.get("slippage", DEFAULT_SLIPPAGE)),
        )

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def _fill_price(self, close: float, is_short: bool) -> float:
        adj = close * self.slippage
        return close + adj if is_short else close - adj

    def _pnl(self, trade: Trade, price: float) -> float:
        if trade.direction == "long":
            delta = price - trade.entry_price
        else:
            delta = trade.entry_price - price
        fees = (trade.entry_price + price) * trade.size * self.commission
        return delta * trade.size - fees

    def _close(self, trade: Trade, bar: IndicatorBar) -> float:
        exit_price = self._fill_price(bar.close, trade.direction == "short")
        pnl = self._pnl(trade, exit_price)
        trade.exit_date = bar.date
        trade.exit_price = exit_price
        trade.pnl = pnl
        trade.pnl_percent = _safe_div(pnl, trade.entry_price * trade.size) * 100.0
        trade.status = "closed"
        return pnl

    @staticmethod
    def _invoke(fn: Callable[[IndicatorBar], Any], bar: IndicatorBar, strategy: Strategy, role: str) -> Any:
        try:
            return fn(bar)
        except Exception as exc:
            raise BacktestError(
                f"{strategy.name}: {role} failed on bar {bar.date}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def run_backtest(self, strategy: Strategy, bars: Sequence[IndicatorBar]) -> BacktestResult:
        """Replay *strategy* over oldest-first *bars*.

        Raises:
            ValueError: bars are not in chronological order.
            BacktestError: a strategy callable raised.
        """
        bars = list(bars)
        if not is_oldest_first(bars):
            raise ValueError("bars must be oldest-first; reverse newest-first data before use")

        capital = self.initial_capital
        peak = capital
        position: Optional[Trade] = None
        trades: List[Trade] = []
        equity: List[EquityPoint] = []

        for bar in bars:
            current = capital + (self._pnl(position, bar.close) if position is not None else 0.0)
            peak = max(peak, current)
            equity.append(EquityPoint(bar.date, current, _safe_div(peak - current, peak)))

            if position is not None:
                if self._invoke(strategy.exit_rule, bar, strategy, "exit rule"):
                    capital += self._close(position, bar)
                    trades.append(position)
                    position = None
            elif self._invoke(strategy.entry_rule, bar, strategy, "entry rule"):
                raw = self._invoke(strategy.position_size, bar, strategy, "position size")
                try:
                    size = float(raw)
                except (TypeError, ValueError) as exc:
                    raise BacktestError(
                        f"{strategy.name}: position size {raw!r} on bar {bar.date} is not a number"
                    ) from exc
                if not math.isfinite(size) or size < 0:
                    raise BacktestError(f"{strategy.name}: position size {size} on bar {bar.date}")
                entry_price = self._fill_price(bar.close, False)
                direction = "short" if entry_price * size > capital else "long"
                position = Trade(entry_date=bar.date, entry_price=entry_price,
                                 direction=direction, size=size)

        if position is not None:
            capital += self._close(position, bars[-1])
            trades.append(position)

        metrics = self._metrics(trades, equity, capital)
        logger.debug(
            "%s: %d bars, %d trades, return %.4f",
            strategy.name, len(bars), metrics.total_trades, metrics.total_return,
        )
        return BacktestResult(
            strategy=strategy.descriptor(),
            trades=trades,
            metrics=metrics,
            equity_curve=equity,
            monthly_returns=self._monthly_returns(trades),
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _metrics(self, trades: List[Trade], equity: List[EquityPoint], final_capital: float) -> BacktestMetrics:
        closed = [t for t in trades if t.status == "closed"]
        pnls = np.array([t.pnl for t in closed], dtype=float)
        wins = pnls[pnls > 0]
        losses = pnls[pnls < 0]

        total_return = (final_capital - self.initial_capital) / self.initial_capital

        if closed:
            span = pd.Timestamp(closed[-1].exit_date) - pd.Timestamp(closed[0].entry_date)
            days = span.total_seconds() / SECONDS_PER_DAY
        else:
            days = float(DAYS_PER_YEAR)
        if days <= 0:
            annualized = 0.0
        elif 1 + total_return <= 0:
            annualized = -1.0
        else:
            annualized = (1 + total_return) ** (DAYS_PER_YEAR / days) - 1

        returns = np.array([t.pnl_percent / 100.0 for t in closed], dtype=float)
        sharpe = 0.0
        if len(returns):
            variance = float(np.mean((returns - returns.mean()) ** 2))
            if variance > 0:
                sharpe = float(returns.mean()) / math.sqrt(variance)

        gross_loss = float(abs(losses.sum()))
        durations = [t.duration_days for t in closed]

        return BacktestMetrics(
            total_trades=len(closed),
            winning_trades=int(len(wins)),
            losing_trades=int(len(losses)),
            win_rate=_safe_div(len(wins), len(closed)),
            total_pnl=float(pnls.sum()),
            average_win=float(wins.mean()) if len(wins) else 0.0,
            average_loss=float(losses.mean()) if len(losses) else 0.0,
            largest_win=float(wins.max()) if len(wins) else 0.0,
            largest_loss=float(losses.min()) if len(losses) else 0.0,
            average_trade_duration=float(np.mean(durations)) if durations else 0.0,
            total_return=total_return,
            annualized_return=float(annualized),
            sharpe_ratio=sharpe,
            profit_factor=_safe_div(float(wins.sum()), gross_loss),
            max_drawdown=max((p.drawdown for p in equity), default=0.0),
            initial_capital=self.initial_capital,
            final_capital=final_capital,
        )

    def _monthly_returns(self, trades: List[Trade]) -> Dict[str, float]:
        by_month: Dict[str, float] = {}
        for t in trades:
            if t.exit_date is None:
                continue
            key = _month_key(t.exit_date)
            by_month[key] = by_month.get(key, 0.0) + t.pnl
        return {k: by_month[k] / self.initial_capital for k in sorted(by_month)}

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    @staticmethod
    def parameter_grid(parameter_ranges: Mapping[str, Any]) -> List[Dict[str, float]]:
        """Cartesian product of the ranges, first parameter varying slowest."""
        names = list(parameter_ranges)
        axes = [ParameterRange.coerce(parameter_ranges[n]).values() for n in names]
        return [dict(zip(names, combo)) for combo in itertools.product(*axes)]

    def _try_run(
        self,
        strategy: Strategy,
        bars: Sequence[IndicatorBar],
        params: Dict[str, float],
    ) -> Optional[BacktestResult]:
        try:
            candidate = strategy.with_parameters(params)
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping parameters %s: %s", params, exc)
            return None
        try:
            return self.run_backtest(candidate, bars)
        except BacktestError as exc:
            logger.warning("Skipping parameters %s: %s", params, exc)
            return None

    def optimize_strategy(
        self,
        strategy: Strategy,
        bars: Sequence[IndicatorBar],
        parameter_ranges: Mapping[str, Any],
        max_workers: int = 1,
    ) -> OptimizationResult:
        """Exhaustive grid search maximising the Sharpe ratio.

        Ties keep the earliest combination in grid order.  With
        ``max_workers > 1`` combinations run in a thread pool; the outcome is
        identical to the sequential search.
        """
        grid = self.parameter_grid(parameter_ranges)
        if not grid:
            raise ValueError("parameter ranges produce no combinations")
        bars = list(bars)

        if max_workers > 1 and len(grid) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                results = list(pool.map(lambda p: self._try_run(strategy, bars, p), grid))
        else:
            results = [self._try_run(strategy, bars, p) for p in grid]

        best: Optional[Tuple[Dict[str, float], BacktestResult]] = None
        best_sharpe = -math.inf
        for params, result in zip(grid, results):
            if result is not None and result.metrics.sharpe_ratio > best_sharpe:
                best_sharpe = result.metrics.sharpe_ratio
                best = (params, result)

        failed = sum(1 for r in results if r is None)
        if best is None:
            raise BacktestError(f"{strategy.name}: all {len(grid)} parameter combinations failed")

        logger.info(
            "Optimized %s over %d combinations (%d failed): best %s, Sharpe %.4f",
            strategy.name, len(grid), failed, best[0], best_sharpe,
        )
        return OptimizationResult(
            best_params=best[0],
            best_result=best[1],
            evaluated=len(grid),
            failed=failed,
        )
