"""Technical indicator library.

Every indicator is a pure transform from price / volume arrays to a float
``numpy.ndarray`` holding only the computable values: the output starts at the
first bar with a full warm-up window, so its length is
``len(input) - warmup + 1``.  Too little history yields an empty array, never
an exception and never zero padding.

Windowed statistics use ``numpy.lib.stride_tricks.sliding_window_view``; the
stateful recurrences (EMA, Wilder smoothing) are explicit loops so the order of
floating-point operations is fixed and results are reproducible bit for bit.

The helpers at the bottom align the arrays back onto a price series (pandas
frame or ``IndicatorBar`` list) and extract the latest snapshot.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from numpy.lib.stride_tricks import sliding_window_view

from stock_quant.config import section
from stock_quant.data.models import IndicatorBar, PriceBar, is_oldest_first
from stock_quant.utils.logger import setup_logger

logger = setup_logger("indicators")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
CCI_CONSTANT = 0.015
_STOCH_FLAT_K = 50.0        # %K when the high/low range is zero
_WILLIAMS_FLAT_R = -50.0    # %R when the high/low range is zero

IndicatorSnapshot = Dict[str, float]


# ---------------------------------------------------------------------------
# Multi-line results
# ---------------------------------------------------------------------------
@dataclass
class MACDResult:
    macd: np.ndarray
    signal: np.ndarray
    histogram: np.ndarray


@dataclass
class BollingerResult:
    upper: np.ndarray
    middle: np.ndarray
    lower: np.ndarray


@dataclass
class StochasticResult:
    k: np.ndarray
    d: np.ndarray


@dataclass
class DirectionalIndex:
    plus_di: np.ndarray
    minus_di: np.ndarray


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------
def _empty() -> np.ndarray:
    return np.array([], dtype=float)


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _check_period(period: int, name: str = "period") -> None:
    if int(period) != period or period < 1:
        raise ValueError(f"{name} must be a positive integer, got {period!r}")


def _same_length(*arrays: np.ndarray) -> None:
    lengths = {len(a) for a in arrays}
    if len(lengths) > 1:
        raise ValueError(f"input arrays differ in length: {sorted(lengths)}")


def _hlc(high, low, close) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    h, l, c = _as_array(high), _as_array(low), _as_array(close)
    _same_length(h, l, c)
    return h, l, c


def _wilder(values: np.ndarray, period: int) -> np.ndarray:
    """Wilder smoothing: seed with the mean of the first *period* values, then
    ``avg = (avg * (period - 1) + value) / period``."""
    if len(values) < period:
        return _empty()
    out = np.empty(len(values) - period + 1)
    avg = float(values[:period].mean())
    out[0] = avg
    for i in range(period, len(values)):
        avg = (avg * (period - 1) + values[i]) / period
        out[i - period + 1] = avg
    return out


# =====================================================================
# Trend
# =====================================================================
def sma(prices: Sequence[float], period: int) -> np.ndarray:
    """Simple moving average; ``out[j]`` is the mean of ``prices[j:j+period]``."""
    _check_period(period)
    arr = _as_array(prices)
    if len(arr) < period:
        return _empty()
    return sliding_window_view(arr, period).mean(axis=1)


def ema(prices: Sequence[float], period: int) -> np.ndarray:
    """Exponential moving average seeded with the SMA of the first window."""
    _check_period(period)
    arr = _as_array(prices)
    if len(arr) < period:
        return _empty()
    m = 2.0 / (period + 1)
    out = np.empty(len(arr) - period + 1)
    out[0] = float(arr[:period].mean())
    for i in range(period, len(arr)):
        j = i - period + 1
        out[j] = arr[i] * m + out[j - 1] * (1 - m)
    return out


def macd(
    prices: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MACDResult:
    """MACD line, signal line and histogram.

    The MACD line starts at bar ``slow - 1`` (fast EMA shifted by
    ``slow - fast``); the signal line and histogram start ``signal - 1`` bars
    later.
    """
    _check_period(fast, "fast")
    _check_period(slow, "slow")
    _check_period(signal, "signal")
    if fast >= slow:
        raise ValueError(f"fast period ({fast}) must be shorter than slow ({slow})")
    arr = _as_array(prices)
    if len(arr) < slow:
        return MACDResult(_empty(), _empty(), _empty())

    fast_ema = ema(arr, fast)
    slow_ema = ema(arr, slow)
    macd_line = fast_ema[slow - fast:] - slow_ema
    signal_line = ema(macd_line, signal)
    if len(signal_line) == 0:
        return MACDResult(macd_line, _empty(), _empty())
    histogram = macd_line[signal - 1:] - signal_line
    return MACDResult(macd_line, signal_line, histogram)


# =====================================================================
# Momentum
# =====================================================================
def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi(prices: Sequence[float], period: int = 14) -> np.ndarray:
    """Relative strength index with Wilder smoothing.

    Needs ``period + 1`` prices.  100 whenever the smoothed average loss is 0.
    """
    _check_period(period)
    arr = _as_array(prices)
    if len(arr) < period + 1:
        return _empty()

    deltas = np.diff(arr)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    out = np.empty(len(deltas) - period + 1)
    out[0] = _rsi_value(avg_gain, avg_loss)
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out[i - period + 1] = _rsi_value(avg_gain, avg_loss)
    return out


def stochastic(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
    k_period: int = 14,
    d_period: int = 3,
) -> StochasticResult:
    """Stochastic oscillator: %K over *k_period*, %D = SMA(%K, *d_period*)."""
    _check_period(k_period, "k_period")
    _check_period(d_period, "d_period")
    h, l, c = _hlc(high, low, close)
    if len(h) < k_period:
        return StochasticResult(_empty(), _empty())

    highest = sliding_window_view(h, k_period).max(axis=1)
    lowest = sliding_window_view(l, k_period).min(axis=1)
    span = highest - lowest
    k = np.full(len(span), _STOCH_FLAT_K)
    np.divide(100.0 * (c[k_period - 1:] - lowest), span, out=k, where=span > 0)
    return StochasticResult(k, sma(k, d_period))


def williams_r(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
    period: int = 14,
) -> np.ndarray:
    """Williams %R in [-100, 0]: -100 * (HH - C) / (HH - LL)."""
    _check_period(period)
    h, l, c = _hlc(high, low, close)
    if len(h) < period:
        return _empty()

    highest = sliding_window_view(h, period).max(axis=1)
    lowest = sliding_window_view(l, period).min(axis=1)
    span = highest - lowest
    out = np.full(len(span), _WILLIAMS_FLAT_R)
    np.divide(-100.0 * (highest - c[period - 1:]), span, out=out, where=span > 0)
    return out


def cci(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
    period: int = 20,
) -> np.ndarray:
    """Commodity channel index on the typical price (H+L+C)/3."""
    _check_period(period)
    h, l, c = _hlc(high, low, close)
    if len(h) < period:
        return _empty()

    typical = (h + l + c) / 3.0
    windows = sliding_window_view(typical, period)
    mean = windows.mean(axis=1)
    mean_dev = np.abs(windows - mean[:, None]).mean(axis=1)
    out = np.zeros(len(mean))
    np.divide(typical[period - 1:] - mean, CCI_CONSTANT * mean_dev, out=out, where=mean_dev > 0)
    return out


def mfi(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
    volume: Sequence[float],
    period: int = 14,
) -> np.ndarray:
    """Money flow index: volume-weighted RSI analogue on the typical price.

    Raw money flow (TP x volume) of each bar is counted as positive when TP
    rose versus the previous bar, negative when it fell, and ignored when
    unchanged.  100 when the window holds no negative flow.
    """
    _check_period(period)
    h, l, c = _hlc(high, low, close)
    v = _as_array(volume)
    _same_length(h, v)
    if len(h) < period + 1:
        return _empty()

    typical = (h + l + c) / 3.0
    raw_flow = typical[1:] * v[1:]
    direction = np.diff(typical)
    positive = np.where(direction > 0, raw_flow, 0.0)
    negative = np.where(direction < 0, raw_flow, 0.0)

    pos_sum = sliding_window_view(positive, period).sum(axis=1)
    neg_sum = sliding_window_view(negative, period).sum(axis=1)
    out = np.full(len(pos_sum), 100.0)
    ratio = np.zeros(len(pos_sum))
    np.divide(pos_sum, neg_sum, out=ratio, where=neg_sum > 0)
    has_neg = neg_sum > 0
    out[has_neg] = 100.0 - 100.0 / (1.0 + ratio[has_neg])
    return out


# =====================================================================
# Volatility
# =====================================================================
def bollinger_bands(
    prices: Sequence[float],
    period: int = 20,
    num_std: float = 2.0,
) -> BollingerResult:
    """SMA middle band +/- *num_std* population standard deviations."""
    _check_period(period)
    arr = _as_array(prices)
    if len(arr) < period:
        return BollingerResult(_empty(), _empty(), _empty())

    windows = sliding_window_view(arr, period)
    middle = windows.mean(axis=1)
    width = num_std * windows.std(axis=1)
    return BollingerResult(middle + width, middle, middle - width)


def true_range(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
) -> np.ndarray:
    """True range from the second bar on: max(H-L, |H-prevC|, |L-prevC|)."""
    h, l, c = _hlc(high, low, close)
    if len(h) < 2:
        return _empty()
    prev_close = c[:-1]
    return np.maximum.reduce([
        h[1:] - l[1:],
        np.abs(h[1:] - prev_close),
        np.abs(l[1:] - prev_close),
    ])


def atr(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
    period: int = 14,
) -> np.ndarray:
    """Average true range, Wilder-smoothed.  Needs ``period + 1`` bars."""
    _check_period(period)
    tr = true_range(high, low, close)
    if len(tr) < period:
        return _empty()
    return _wilder(tr, period)


def _directional_movement(h: np.ndarray, l: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    up = h[1:] - h[:-1]
    down = l[:-1] - l[1:]
    plus_dm = np.where((up > down) & (up > 0), up, 0.0)
    minus_dm = np.where((down > up) & (down > 0), down, 0.0)
    return plus_dm, minus_dm


def directional_index(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
    period: int = 14,
) -> DirectionalIndex:
    """+DI / -DI from Wilder-smoothed directional movement and true range."""
    _check_period(period)
    h, l, c = _hlc(high, low, close)
    if len(h) < period + 1:
        return DirectionalIndex(_empty(), _empty())

    plus_dm, minus_dm = _directional_movement(h, l)
    smooth_tr = _wilder(true_range(h, l, c), period)
    smooth_plus = _wilder(plus_dm, period)
    smooth_minus = _wilder(minus_dm, period)

    plus_di = np.zeros(len(smooth_tr))
    minus_di = np.zeros(len(smooth_tr))
    np.divide(100.0 * smooth_plus, smooth_tr, out=plus_di, where=smooth_tr > 0)
    np.divide(100.0 * smooth_minus, smooth_tr, out=minus_di, where=smooth_tr > 0)
    return DirectionalIndex(plus_di, minus_di)


def adx(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
    period: int = 14,
) -> np.ndarray:
    """Average directional index.  Needs ``2 * period`` bars.

    DX is 0 when both directional indices are 0 (no movement at all).
    """
    _check_period(period)
    h, l, c = _hlc(high, low, close)
    if len(h) < 2 * period:
        return _empty()

    di = directional_index(h, l, c, period)
    di_sum = di.plus_di + di.minus_di
    dx = np.zeros(len(di_sum))
    np.divide(100.0 * np.abs(di.plus_di - di.minus_di), di_sum, out=dx, where=di_sum > 0)
    return _wilder(dx, period)


# =====================================================================
# Volume
# =====================================================================
def obv(close: Sequence[float], volume: Sequence[float]) -> np.ndarray:
    """On-balance volume.  ``obv[0] = volume[0]``; no warm-up."""
    c = _as_array(close)
    v = _as_array(volume)
    _same_length(c, v)
    if len(c) == 0:
        return _empty()
    direction = np.sign(np.diff(c))
    out = np.empty(len(c))
    out[0] = v[0]
    out[1:] = v[0] + np.cumsum(direction * v[1:])
    return out


# =====================================================================
# Alignment & snapshot helpers
# =====================================================================
def align(values: np.ndarray, length: int) -> np.ndarray:
    """Left-pad an indicator array with NaN so it lines up with its input."""
    out = np.full(length, np.nan)
    if len(values):
        out[length - len(values):] = values
    return out


@dataclass
class IndicatorConfig:
    """Windows used when computing a full indicator set for a price series."""

    sma_periods: Tuple[int, ...] = (50, 200)
    ema_periods: Tuple[int, ...] = (12, 26)
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bb_period: int = 20
    bb_num_std: float = 2.0
    stoch_k_period: int = 14
    stoch_d_period: int = 3
    williams_period: int = 14
    atr_period: int = 14
    adx_period: int = 14
    cci_period: int = 20
    mfi_period: int = 14
    # additional windows computed under their own keys (see rsi_key, macd_keys,
    # bollinger_keys), e.g. for strategies tuned away from the defaults
    rsi_variants: Tuple[int, ...] = ()
    macd_variants: Tuple[Tuple[int, int, int], ...] = ()
    bb_variants: Tuple[Tuple[int, float], ...] = ()

    @classmethod
    def from_settings(cls, settings: Optional[dict] = None) -> "IndicatorConfig":
        conf = settings if settings is not None else section("indicators")
        macd_conf = conf.get("macd", {})
        bb_conf = conf.get("bollinger", {})
        stoch_conf = conf.get("stochastic", {})
        return cls(
            sma_periods=tuple(conf.get("sma_periods", (50, 200))),
            ema_periods=tuple(conf.get("ema_periods", (12, 26))),
            rsi_period=int(conf.get("rsi_period", 14)),
            macd_fast=int(macd_conf.get("fast", 12)),
            macd_slow=int(macd_conf.get("slow", 26)),
            macd_signal=int(macd_conf.get("signal", 9)),
            bb_period=int(bb_conf.get("period", 20)),
            bb_num_std=float(bb_conf.get("num_std", 2.0)),
            stoch_k_period=int(stoch_conf.get("k_period", 14)),
            stoch_d_period=int(stoch_conf.get("d_period", 3)),
            williams_period=int(conf.get("williams_period", 14)),
            atr_period=int(conf.get("atr_period", 14)),
            adx_period=int(conf.get("adx_period", 14)),
            cci_period=int(conf.get("cci_period", 20)),
            mfi_period=int(conf.get("mfi_period", 14)),
        )

    # ------------------------------------------------------------------
    # Widening (returns a new config; the receiver is left untouched)
    # ------------------------------------------------------------------
    def with_sma(self, *periods: int) -> "IndicatorConfig":
        merged = set(int(p) for p in self.sma_periods) | set(int(p) for p in periods)
        return replace(self, sma_periods=tuple(sorted(merged)))

    def with_rsi(self, period: int) -> "IndicatorConfig":
        if int(period) == self.rsi_period or int(period) in self.rsi_variants:
            return self
        return replace(self, rsi_variants=self.rsi_variants + (int(period),))

    def with_macd(self, fast: int, slow: int, signal: int) -> "IndicatorConfig":
        window = (int(fast), int(slow), int(signal))
        if window in self.macd_variants:
            return self
        return replace(self, macd_variants=self.macd_variants + (window,))

    def with_bollinger(self, period: int, num_std: float) -> "IndicatorConfig":
        window = (int(period), float(num_std))
        if window in self.bb_variants:
            return self
        return replace(self, bb_variants=self.bb_variants + (window,))


# ---------------------------------------------------------------------------
# Snapshot key naming
# ---------------------------------------------------------------------------
def default_rsi_period() -> int:
    return IndicatorConfig.from_settings().rsi_period


def rsi_key(period: Optional[int] = None) -> str:
    """``rsi{period}``; the configured ``indicators.rsi_period`` by default."""
    return f"rsi{int(period if period is not None else default_rsi_period())}"


def macd_keys(fast: int, slow: int, signal: int) -> Tuple[str, str, str]:
    """(line, signal, histogram) keys of a MACD variant window."""
    base = f"macd_{int(fast)}_{int(slow)}_{int(signal)}"
    return base, f"{base}_signal", f"{base}_hist"


def bollinger_keys(period: int, num_std: float) -> Tuple[str, str, str]:
    """(upper, middle, lower) keys of a Bollinger variant window."""
    base = f"bb_{int(period)}_{float(num_std):g}"
    return f"{base}_upper", f"{base}_middle", f"{base}_lower"


def compute_indicator_series(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
    volume: Sequence[float],
    config: Optional[IndicatorConfig] = None,
) -> Dict[str, np.ndarray]:
    """Compute the configured indicator set, each aligned to ``len(close)``.

    Keys follow the snapshot naming used across the package (``sma50``,
    ``rsi14``, ``macd_signal``, ``bb_lower`` ...).  Warm-up positions are NaN.
    Without *config* the windows come from the ``indicators`` settings.
    """
    cfg = config or IndicatorConfig.from_settings()
    h, l, c = _hlc(high, low, close)
    v = _as_array(volume)
    _same_length(c, v)
    n = len(c)

    series: Dict[str, np.ndarray] = {}
    for p in cfg.sma_periods:
        series[f"sma{p}"] = align(sma(c, p), n)
    for p in cfg.ema_periods:
        series[f"ema{p}"] = align(ema(c, p), n)
    series[rsi_key(cfg.rsi_period)] = align(rsi(c, cfg.rsi_period), n)

    m = macd(c, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
    series["macd"] = align(m.macd, n)
    series["macd_signal"] = align(m.signal, n)
    series["macd_hist"] = align(m.histogram, n)

    bb = bollinger_bands(c, cfg.bb_period, cfg.bb_num_std)
    series["bb_upper"] = align(bb.upper, n)
    series["bb_middle"] = align(bb.middle, n)
    series["bb_lower"] = align(bb.lower, n)

    st = stochastic(h, l, c, cfg.stoch_k_period, cfg.stoch_d_period)
    series["stoch_k"] = align(st.k, n)
    series["stoch_d"] = align(st.d, n)

    series["williams_r"] = align(williams_r(h, l, c, cfg.williams_period), n)
    series["atr"] = align(atr(h, l, c, cfg.atr_period), n)
    series["adx"] = align(adx(h, l, c, cfg.adx_period), n)
    di = directional_index(h, l, c, cfg.adx_period)
    series["plus_di"] = align(di.plus_di, n)
    series["minus_di"] = align(di.minus_di, n)
    series["cci"] = align(cci(h, l, c, cfg.cci_period), n)
    series["mfi"] = align(mfi(h, l, c, v, cfg.mfi_period), n)
    series["obv"] = align(obv(c, v), n)

    for p in cfg.rsi_variants:
        key = rsi_key(p)
        if key not in series:
            series[key] = align(rsi(c, p), n)
    for fast, slow, signal in cfg.macd_variants:
        mv = macd(c, fast, slow, signal)
        for key, values in zip(macd_keys(fast, slow, signal), (mv.macd, mv.signal, mv.histogram)):
            series[key] = align(values, n)
    for period, num_std in cfg.bb_variants:
        bv = bollinger_bands(c, period, num_std)
        for key, values in zip(bollinger_keys(period, num_std), (bv.upper, bv.middle, bv.lower)):
            series[key] = align(values, n)
    return series


def _snapshot_at(series: Dict[str, np.ndarray], i: int) -> IndicatorSnapshot:
    snap: IndicatorSnapshot = {}
    for key, values in series.items():
        val = float(values[i])
        if not math.isnan(val):
            snap[key] = val
    return snap


def _series_from_bars(bars: Sequence[PriceBar], config: Optional[IndicatorConfig]):
    if not is_oldest_first(bars):
        raise ValueError("bars must be oldest-first; reverse newest-first data before use")
    return compute_indicator_series(
        [b.high for b in bars],
        [b.low for b in bars],
        [b.close for b in bars],
        [b.volume for b in bars],
        config,
    )


def augment_bars(
    bars: Sequence[PriceBar],
    config: Optional[IndicatorConfig] = None,
) -> List[IndicatorBar]:
    """Attach the indicator snapshot of each bar (for strategy rules)."""
    if not bars:
        return []
    series = _series_from_bars(bars, config)
    out = [
        IndicatorBar(
            date=b.date, open=b.open, high=b.high, low=b.low,
            close=b.close, volume=b.volume,
            indicators=_snapshot_at(series, i),
        )
        for i, b in enumerate(bars)
    ]
    logger.debug("Augmented %d bars with %d indicator series", len(out), len(series))
    return out


def latest_snapshot(
    bars: Sequence[PriceBar],
    config: Optional[IndicatorConfig] = None,
) -> IndicatorSnapshot:
    """Indicator values at the most recent bar (absent keys = not computable)."""
    if not bars:
        return {}
    series = _series_from_bars(bars, config)
    return _snapshot_at(series, len(bars) - 1)


def compute_indicator_frame(
    df: pd.DataFrame,
    config: Optional[IndicatorConfig] = None,
) -> pd.DataFrame:
    """Return a copy of an OHLCV DataFrame with one column per indicator."""
    r = df.copy()
    if r.empty:
        return r
    series = compute_indicator_series(
        r["High"].values, r["Low"].values, r["Close"].values, r["Volume"].values, config,
    )
    for key, values in series.items():
        r[key] = values
    return r
