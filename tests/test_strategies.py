"""Tests for stock_quant.backtesting.strategies -- catalog, rules, re-parameterisation."""

import pytest

from stock_quant.analysis.indicators import IndicatorConfig, augment_bars, bollinger_keys, macd_keys
from stock_quant.backtesting.engine import BacktestEngine
from stock_quant.backtesting.strategies import (
    STRATEGY_BUILDERS,
    Strategy,
    bollinger_reversion,
    get_strategy,
    list_strategies,
    ma_cross,
    macd_cross,
    multi_signal,
    predefined_strategies,
    rsi_reversion,
)
from stock_quant.config import SETTINGS


MACD_12_26_9 = macd_keys(12, 26, 9)
BB_20_2 = bollinger_keys(20, 2)


def _macd(line, signal, window=MACD_12_26_9):
    return {window[0]: line, window[1]: signal}


def _bands(lower=None, upper=None, window=BB_20_2):
    out = {}
    if lower is not None:
        out[window[2]] = lower
    if upper is not None:
        out[window[0]] = upper
    return out


def _bar(make_bars, close=100.0, **indicators):
    return make_bars([close], [indicators])[0]


class TestCatalog:

    def test_five_builtins(self):
        strategies = predefined_strategies()
        assert len(strategies) == 5
        assert len({s.name for s in strategies}) == 5

    def test_get_strategy_unknown_key(self):
        with pytest.raises(KeyError):
            get_strategy("does_not_exist")

    def test_get_strategy_with_params(self):
        s = get_strategy("rsi_reversion", oversold=25, overbought=75)
        assert s.parameters == {"oversold": 25, "overbought": 75, "rsi_period": 14}

    def test_list_strategies_descriptors(self):
        listed = list_strategies()
        assert [d["key"] for d in listed] == list(STRATEGY_BUILDERS)
        assert all({"name", "description", "parameters"} <= set(d) for d in listed)

    def test_descriptor_is_plain_data(self):
        d = ma_cross().descriptor()
        assert d["parameters"] == {"short_period": 50, "long_period": 200}
        assert not any(callable(v) for v in d.values())


class TestRules:

    def test_missing_indicators_never_fire(self, make_bars):
        bar = _bar(make_bars)
        for strategy in predefined_strategies():
            assert strategy.entry_rule(bar) is False
            assert strategy.exit_rule(bar) is False

    def test_ma_cross(self, make_bars):
        s = ma_cross()
        assert s.entry_rule(_bar(make_bars, sma50=105.0, sma200=100.0))
        assert s.exit_rule(_bar(make_bars, sma50=95.0, sma200=100.0))
        assert not s.entry_rule(_bar(make_bars, sma50=105.0))

    def test_ma_cross_custom_periods(self, make_bars):
        s = ma_cross(short_period=10, long_period=30)
        assert s.entry_rule(_bar(make_bars, sma10=2.0, sma30=1.0))
        assert not s.entry_rule(_bar(make_bars, sma50=2.0, sma200=1.0))

    def test_rsi_thresholds(self, make_bars):
        bar = _bar(make_bars, rsi14=28.0)
        assert rsi_reversion().entry_rule(bar)
        assert not rsi_reversion(oversold=25).entry_rule(bar)
        assert rsi_reversion(overbought=60).exit_rule(_bar(make_bars, rsi14=65.0))

    def test_macd_cross(self, make_bars):
        s = macd_cross()
        assert s.entry_rule(_bar(make_bars, **_macd(0.5, 0.1)))
        assert s.exit_rule(_bar(make_bars, **_macd(0.1, 0.5)))

    def test_macd_cross_reads_its_own_window(self, make_bars):
        s = macd_cross(fast_period=8, slow_period=21, signal_period=5)
        assert s.parameters == {"fast_period": 8, "slow_period": 21, "signal_period": 5}
        assert s.entry_rule(_bar(make_bars, **_macd(0.5, 0.1, macd_keys(8, 21, 5))))
        assert not s.entry_rule(_bar(make_bars, **_macd(0.5, 0.1)))
        assert not s.entry_rule(_bar(make_bars, macd=0.5, macd_signal=0.1))

    def test_macd_cross_rejects_inverted_windows(self):
        with pytest.raises(ValueError):
            macd_cross(fast_period=26, slow_period=12)
        with pytest.raises(ValueError):
            macd_cross(signal_period=0)

    def test_bollinger_touches(self, make_bars):
        s = bollinger_reversion()
        assert s.entry_rule(_bar(make_bars, close=95.0, **_bands(lower=95.0)))
        assert s.exit_rule(_bar(make_bars, close=111.0, **_bands(upper=110.0)))
        assert not s.entry_rule(_bar(make_bars, close=96.0, **_bands(lower=95.0)))

    def test_bollinger_reads_its_own_window(self, make_bars):
        s = bollinger_reversion(period=30, std_dev=2.5)
        assert s.parameters == {"period": 30, "std_dev": 2.5}
        own = bollinger_keys(30, 2.5)
        assert s.entry_rule(_bar(make_bars, close=95.0, **_bands(lower=95.0, window=own)))
        assert not s.entry_rule(_bar(make_bars, close=95.0, **_bands(lower=95.0)))
        with pytest.raises(ValueError):
            bollinger_reversion(period=0)

    def test_multi_signal_needs_confirmation(self, make_bars):
        s = multi_signal()
        assert not s.entry_rule(_bar(make_bars, rsi14=20.0, **_macd(0.1, 0.5)))
        assert s.entry_rule(_bar(make_bars, rsi14=20.0, **_macd(0.5, 0.1)))
        assert s.entry_rule(_bar(make_bars, close=90.0, rsi14=20.0, **_bands(lower=95.0)))
        assert s.exit_rule(_bar(make_bars, close=120.0, rsi14=80.0, **_bands(upper=110.0)))

    def test_rsi_period_selects_key(self, make_bars):
        s = rsi_reversion(oversold=30, overbought=70, rsi_period=10)
        assert s.entry_rule(_bar(make_bars, rsi10=25.0))
        assert not s.entry_rule(_bar(make_bars, rsi14=25.0))
        assert multi_signal(rsi_period=10).entry_rule(_bar(make_bars, rsi10=20.0, **_macd(0.5, 0.1)))

    def test_rsi_period_defaults_to_settings(self, make_bars, monkeypatch):
        monkeypatch.setitem(SETTINGS, "indicators", {"rsi_period": 10})
        s = rsi_reversion()
        assert s.parameters["rsi_period"] == 10
        assert s.entry_rule(_bar(make_bars, rsi10=25.0))
        assert not s.entry_rule(_bar(make_bars, rsi14=25.0))

    def test_non_default_rsi_period_trades(self, sample_bars, monkeypatch):
        monkeypatch.setitem(SETTINGS, "indicators", {"rsi_period": 10})
        s = rsi_reversion(oversold=45, overbought=55)
        bars = augment_bars(sample_bars, s.indicator_config())
        assert "rsi10" in bars[-1].indicators
        assert BacktestEngine().run_backtest(s, bars).trades

    def test_unit_position_size(self, make_bars):
        for strategy in predefined_strategies():
            assert strategy.position_size(_bar(make_bars)) == 1.0


class TestWithParameters:

    def test_builtin_rebuilt_through_factory(self, make_bars):
        base = rsi_reversion()
        tuned = base.with_parameters({"oversold": 20})
        assert tuned.parameters == {"oversold": 20, "overbought": 70, "rsi_period": 14}
        assert not tuned.entry_rule(_bar(make_bars, rsi14=25.0))
        assert base.entry_rule(_bar(make_bars, rsi14=25.0))

    def test_ma_cross_float_grid_values(self, make_bars):
        tuned = ma_cross().with_parameters({"short_period": 20.0, "long_period": 100.0})
        assert tuned.parameters == {"short_period": 20, "long_period": 100}
        assert tuned.entry_rule(_bar(make_bars, sma20=2.0, sma100=1.0))

    def test_macd_and_bollinger_rebuilt(self, make_bars):
        tuned = macd_cross().with_parameters({"fast_period": 8.0, "slow_period": 21.0, "signal_period": 5.0})
        assert tuned.parameters == {"fast_period": 8, "slow_period": 21, "signal_period": 5}
        assert tuned.entry_rule(_bar(make_bars, **_macd(0.5, 0.1, macd_keys(8, 21, 5))))
        bands = bollinger_reversion().with_parameters({"period": 10.0})
        assert bands.parameters == {"period": 10, "std_dev": 2.0}
        assert bands.entry_rule(_bar(make_bars, close=90.0, **_bands(lower=95.0, window=bollinger_keys(10, 2))))

    def test_rejected_values_raise(self):
        with pytest.raises(ValueError):
            macd_cross().with_parameters({"fast_period": 30.0})
        with pytest.raises(ValueError):
            ma_cross().with_parameters({"short_period": 2.5})

    def test_custom_strategy_merges_parameters(self):
        custom = Strategy(
            name="custom", description="", parameters={"a": 1},
            entry_rule=lambda bar: True, exit_rule=lambda bar: False,
        )
        tuned = custom.with_parameters({"b": 2})
        assert tuned.parameters == {"a": 1, "b": 2}
        assert tuned.entry_rule is custom.entry_rule
        assert custom.parameters == {"a": 1}


class TestIndicatorConfig:

    def test_covers_strategy_and_grid_windows(self):
        base = IndicatorConfig(sma_periods=(50, 200))
        cfg = ma_cross(short_period=20, long_period=100).indicator_config(
            base, extra_values={"short_period": [10.0, 30.0]},
        )
        assert cfg.sma_periods == (10, 20, 30, 50, 100, 200)

    def test_non_ma_strategy_keeps_base(self):
        base = IndicatorConfig(sma_periods=(50,))
        assert rsi_reversion().indicator_config(base).sma_periods == (50,)

    def test_rsi_strategy_adds_its_period(self):
        cfg = rsi_reversion(rsi_period=10).indicator_config(IndicatorConfig(rsi_period=14))
        assert cfg.rsi_period == 14
        assert cfg.rsi_variants == (10,)

    def test_macd_grid_windows(self):
        cfg = macd_cross().indicator_config(
            IndicatorConfig(), extra_values={"fast_period": [8.0, 30.0], "slow_period": [26.0]},
        )
        # fast 30 >= slow 26 cannot be built and adds nothing
        assert cfg.macd_variants == ((12, 26, 9), (8, 26, 9))

    def test_bollinger_grid_windows(self):
        cfg = bollinger_reversion().indicator_config(
            IndicatorConfig(), extra_values={"period": [10.0, 20.0, 30.0], "unrelated": [1.0]},
        )
        assert cfg.bb_variants == ((20, 2.0), (10, 2.0), (30, 2.0))

    def test_multi_signal_windows(self):
        cfg = multi_signal().indicator_config(IndicatorConfig())
        assert cfg.macd_variants == ((12, 26, 9),)
        assert cfg.bb_variants == ((20, 2.0),)
