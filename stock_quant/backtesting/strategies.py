"""Built-in trading strategies expressed against indicator-augmented bars.

A strategy is a plain record of three callables over a single
:class:`~stock_quant.data.models.IndicatorBar` (entry rule, exit rule,
position size) plus the parameters it was built with.  Rules look only at the
bar they are given; any history they need is already folded into the bar's
indicator snapshot.  A rule asked about an indicator the bar does not carry
answers ``False``.

Every declared parameter is honoured by the rules: the built-ins read
window-specific snapshot keys (``sma20``, ``rsi10``, ``macd_8_21_5`` ...) and
publish the windows they need through ``Strategy.indicator_config``.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from stock_quant.analysis.indicators import (
    IndicatorConfig,
    bollinger_keys,
    default_rsi_period,
    macd_keys,
    rsi_key,
)
from stock_quant.data.models import IndicatorBar
from stock_quant.utils.logger import setup_logger

logger = setup_logger("strategies")

Rule = Callable[[IndicatorBar], bool]
Sizer = Callable[[IndicatorBar], float]
Requirements = Callable[[IndicatorConfig], IndicatorConfig]

# windows used by multi_signal for its confirmations
_MULTI_MACD = (12, 26, 9)
_MULTI_BB = (20, 2.0)


def unit_size(bar: IndicatorBar) -> float:
    return 1.0


@dataclass(frozen=True)
class Strategy:
    name: str
    description: str
    parameters: Dict[str, float]
    entry_rule: Rule
    exit_rule: Rule
    position_size: Sizer = unit_size
    builder: Optional[Callable[..., "Strategy"]] = field(default=None, compare=False, repr=False)
    # widens an IndicatorConfig with the windows the rules read
    requirements: Optional[Requirements] = field(default=None, compare=False, repr=False)

    def with_parameters(self, overrides: Mapping[str, float]) -> "Strategy":
        """Copy of this strategy with *overrides* applied.

        Built-in strategies are rebuilt through their factory so the rules see
        the new values; custom strategies get a copy with merged parameters
        and unchanged rules.  Invalid values raise ``ValueError``.
        """
        merged = {**self.parameters, **dict(overrides)}
        if self.builder is not None:
            return self.builder(**merged)
        return replace(self, parameters=merged)

    def descriptor(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters),
        }

    def indicator_config(
        self,
        base: Optional[IndicatorConfig] = None,
        extra_values: Optional[Mapping[str, Iterable[float]]] = None,
    ) -> IndicatorConfig:
        """Indicator config covering every window the rules can read.

        *extra_values* maps parameter names to further values (an optimizer
        grid); every combination of them must be computable as well.
        Combinations the factory rejects are left out.
        """
        cfg = base or IndicatorConfig.from_settings()
        variants = [self]
        names = [n for n in (extra_values or {}) if n in self.parameters]
        if names:
            axes = [list(extra_values[n]) for n in names]
            for combo in itertools.product(*axes):
                try:
                    variants.append(self.with_parameters(dict(zip(names, combo))))
                except (TypeError, ValueError) as exc:
                    logger.debug("No indicators for %s %s: %s", self.name, combo, exc)
        for variant in variants:
            if variant.requirements is not None:
                cfg = variant.requirements(cfg)
        return cfg


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------
def _window(value: float, name: str) -> int:
    if int(value) != value or value < 1:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _rsi_window(value: Optional[float]) -> int:
    return _window(value if value is not None else default_rsi_period(), "rsi_period")


# ---------------------------------------------------------------------------
# Predicate helpers
# ---------------------------------------------------------------------------
def _above(bar: IndicatorBar, left: str, right: str) -> bool:
    a, b = bar.indicator(left), bar.indicator(right)
    return a is not None and b is not None and a > b


def _below(bar: IndicatorBar, left: str, right: str) -> bool:
    a, b = bar.indicator(left), bar.indicator(right)
    return a is not None and b is not None and a < b


def _under(bar: IndicatorBar, key: str, threshold: float) -> bool:
    value = bar.indicator(key)
    return value is not None and value < threshold


def _over(bar: IndicatorBar, key: str, threshold: float) -> bool:
    value = bar.indicator(key)
    return value is not None and value > threshold


def _at_or_below(bar: IndicatorBar, key: str) -> bool:
    band = bar.indicator(key)
    return band is not None and bar.close <= band


def _at_or_above(bar: IndicatorBar, key: str) -> bool:
    band = bar.indicator(key)
    return band is not None and bar.close >= band


# ---------------------------------------------------------------------------
# Built-in strategies
# ---------------------------------------------------------------------------
def ma_cross(short_period: float = 50, long_period: float = 200) -> Strategy:
    short, long_ = _window(short_period, "short_period"), _window(long_period, "long_period")
    short_key, long_key = f"sma{short}", f"sma{long_}"
    return Strategy(
        name="Moving Average Crossover",
        description=f"Buy when SMA{short} is above SMA{long_}, sell when below",
        parameters={"short_period": short, "long_period": long_},
        entry_rule=lambda bar: _above(bar, short_key, long_key),
        exit_rule=lambda bar: _below(bar, short_key, long_key),
        builder=ma_cross,
        requirements=lambda cfg: cfg.with_sma(short, long_),
    )


def rsi_reversion(
    oversold: float = 30,
    overbought: float = 70,
    rsi_period: Optional[float] = None,
) -> Strategy:
    period = _rsi_window(rsi_period)
    key = rsi_key(period)
    return Strategy(
        name="RSI Overbought/Oversold",
        description=f"Buy when RSI{period} drops below {oversold:g}, sell when it rises above {overbought:g}",
        parameters={"oversold": oversold, "overbought": overbought, "rsi_period": period},
        entry_rule=lambda bar: _under(bar, key, oversold),
        exit_rule=lambda bar: _over(bar, key, overbought),
        builder=rsi_reversion,
        requirements=lambda cfg: cfg.with_rsi(period),
    )


def macd_cross(
    fast_period: float = 12,
    slow_period: float = 26,
    signal_period: float = 9,
) -> Strategy:
    fast = _window(fast_period, "fast_period")
    slow = _window(slow_period, "slow_period")
    signal = _window(signal_period, "signal_period")
    if fast >= slow:
        raise ValueError(f"fast_period ({fast}) must be shorter than slow_period ({slow})")
    line_key, signal_key, _ = macd_keys(fast, slow, signal)
    return Strategy(
        name="MACD Crossover",
        description=f"Buy when MACD({fast},{slow},{signal}) is above its signal line, sell when below",
        parameters={"fast_period": fast, "slow_period": slow, "signal_period": signal},
        entry_rule=lambda bar: _above(bar, line_key, signal_key),
        exit_rule=lambda bar: _below(bar, line_key, signal_key),
        builder=macd_cross,
        requirements=lambda cfg: cfg.with_macd(fast, slow, signal),
    )


def bollinger_reversion(period: float = 20, std_dev: float = 2) -> Strategy:
    window = _window(period, "period")
    if std_dev < 0:
        raise ValueError(f"std_dev must be non-negative, got {std_dev}")
    num_std = float(std_dev)
    upper_key, _, lower_key = bollinger_keys(window, num_std)
    return Strategy(
        name="Bollinger Band Reversion",
        description=f"Buy at the lower band, sell at the upper band (BB {window}, {num_std:g} std)",
        parameters={"period": window, "std_dev": num_std},
        entry_rule=lambda bar: _at_or_below(bar, lower_key),
        exit_rule=lambda bar: _at_or_above(bar, upper_key),
        builder=bollinger_reversion,
        requirements=lambda cfg: cfg.with_bollinger(window, num_std),
    )


def multi_signal(
    rsi_oversold: float = 30,
    rsi_overbought: float = 70,
    rsi_period: Optional[float] = None,
) -> Strategy:
    period = _rsi_window(rsi_period)
    key = rsi_key(period)
    line_key, signal_key, _ = macd_keys(*_MULTI_MACD)
    upper_key, _, lower_key = bollinger_keys(*_MULTI_BB)

    def entry(bar: IndicatorBar) -> bool:
        return _under(bar, key, rsi_oversold) and (
            _above(bar, line_key, signal_key) or _at_or_below(bar, lower_key)
        )

    def exit_(bar: IndicatorBar) -> bool:
        return _over(bar, key, rsi_overbought) and (
            _below(bar, line_key, signal_key) or _at_or_above(bar, upper_key)
        )

    return Strategy(
        name="Multi-Signal",
        description="RSI extreme confirmed by MACD or a Bollinger band touch",
        parameters={"rsi_oversold": rsi_oversold, "rsi_overbought": rsi_overbought, "rsi_period": period},
        entry_rule=entry,
        exit_rule=exit_,
        builder=multi_signal,
        requirements=lambda cfg: cfg.with_rsi(period).with_macd(*_MULTI_MACD).with_bollinger(*_MULTI_BB),
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
STRATEGY_BUILDERS: Dict[str, Callable[..., Strategy]] = {
    "ma_cross": ma_cross,
    "rsi_reversion": rsi_reversion,
    "macd_cross": macd_cross,
    "bollinger_reversion": bollinger_reversion,
    "multi_signal": multi_signal,
}


def predefined_strategies() -> List[Strategy]:
    return [build() for build in STRATEGY_BUILDERS.values()]


def get_strategy(key: str, **params: float) -> Strategy:
    """Build a catalog strategy by key; unknown keys raise ``KeyError``."""
    try:
        build = STRATEGY_BUILDERS[key]
    except KeyError:
        raise KeyError(
            f"unknown strategy {key!r}; available: {', '.join(sorted(STRATEGY_BUILDERS))}"
        ) from None
    logger.debug("Building strategy %s with %s", key, params or "defaults")
    try:
        return build(**params)
    except TypeError as exc:
        raise ValueError(f"{key}: unsupported parameters {sorted(params)}") from exc


def list_strategies() -> Sequence[Dict[str, Any]]:
    return [{"key": key, **build().descriptor()} for key, build in STRATEGY_BUILDERS.items()]
