"""Tests for stock_quant.analysis.technical -- composite score and signal votes."""

import pytest

from stock_quant.analysis.indicators import IndicatorConfig
from stock_quant.analysis.technical import SCORE_WEIGHTS, TechnicalScorer
from stock_quant.config import SETTINGS


BULLISH_SNAPSHOT = {
    "rsi14": 25.0,
    "macd": 1.2, "macd_signal": 0.8,
    "bb_upper": 110.0, "bb_middle": 100.0, "bb_lower": 95.0,
    "sma50": 105.0, "sma200": 100.0,
    "stoch_k": 10.0, "stoch_d": 15.0,
    "williams_r": -90.0,
}

BEARISH_SNAPSHOT = {
    "rsi14": 80.0,
    "macd": 0.5, "macd_signal": 0.9,
    "bb_upper": 110.0, "bb_middle": 100.0, "bb_lower": 95.0,
    "sma50": 95.0, "sma200": 100.0,
    "stoch_k": 90.0, "stoch_d": 85.0,
    "williams_r": -5.0,
}


class TestCalculateScore:

    def setup_method(self):
        self.scorer = TechnicalScorer(fast_ma="sma50", slow_ma="sma200")

    def test_weights_sum_to_one(self):
        assert sum(SCORE_WEIGHTS.values()) == pytest.approx(1.0)

    def test_all_bullish(self):
        assert self.scorer.calculate_score(BULLISH_SNAPSHOT, 90.0) == pytest.approx(1.0)

    def test_all_bearish(self):
        assert self.scorer.calculate_score(BEARISH_SNAPSHOT, 120.0) == pytest.approx(0.0)

    def test_empty_snapshot_is_neutral(self):
        assert self.scorer.calculate_score({}, 100.0) == 0.5

    def test_missing_indicators_are_excluded_not_neutral(self):
        # Only RSI is present: its vote alone decides the score.
        assert self.scorer.calculate_score({"rsi14": 20.0}, 100.0) == pytest.approx(1.0)

    def test_renormalized_weighted_mean(self):
        snap = {"rsi14": 20.0, "macd": 0.1, "macd_signal": 0.5}
        # rsi -> 1 (w .20), macd -> 0 (w .25)
        expected = 0.20 / 0.45
        assert self.scorer.calculate_score(snap, 100.0) == pytest.approx(expected)

    def test_price_inside_bands_is_neutral(self):
        snap = {"bb_upper": 110.0, "bb_middle": 100.0, "bb_lower": 90.0}
        assert self.scorer.calculate_score(snap, 100.0) == pytest.approx(0.5)

    def test_stochastic_needs_both_lines(self):
        assert self.scorer.calculate_score({"stoch_k": 5.0}, 100.0) == 0.5

    def test_score_bounded(self, sample_bars):
        result = self.scorer.analyze(sample_bars)
        assert 0.0 <= result["score"] <= 1.0


class TestGenerateSignals:

    def setup_method(self):
        self.scorer = TechnicalScorer(fast_ma="sma50", slow_ma="sma200")

    def test_bullish_strong(self):
        sig = self.scorer.generate_signals(BULLISH_SNAPSHOT, 90.0)
        assert sig.bullish_count == 4
        assert sig.bearish_count == 0
        assert sig.strength == "strong"
        assert sig.direction == "bullish"
        assert len(sig.signals) == 4

    def test_bearish(self):
        sig = self.scorer.generate_signals(BEARISH_SNAPSHOT, 120.0)
        assert sig.direction == "bearish"
        assert sig.bearish_count == 4

    def test_moderate_tie_is_neutral(self):
        snap = {"rsi14": 20.0, "macd": 0.1, "macd_signal": 0.5}
        sig = self.scorer.generate_signals(snap, 100.0)
        assert sig.strength == "moderate"
        assert sig.direction == "neutral"

    def test_no_votes_is_weak_neutral(self):
        sig = self.scorer.generate_signals({"rsi14": 50.0}, 100.0)
        assert sig.strength == "weak"
        assert sig.direction == "neutral"
        assert sig.signals == []


class TestAnalyze:

    def test_analyze_uses_latest_close(self, sample_bars):
        result = TechnicalScorer().analyze(sample_bars)
        assert result["current_price"] == sample_bars[-1].close
        assert "rsi14" in result["indicators"]
        assert set(result["signals"]) >= {"strength", "direction", "signals"}

    def test_analyze_empty(self):
        result = TechnicalScorer().analyze([])
        assert result["score"] == 0.5
        assert result["indicators"] == {}


class TestRsiPeriod:

    def test_explicit_period_reads_matching_key(self):
        scorer = TechnicalScorer(rsi_period=10)
        assert scorer.calculate_score({"rsi10": 20.0}, 100.0) == pytest.approx(1.0)
        assert scorer.calculate_score({"rsi14": 20.0}, 100.0) == 0.5
        sig = scorer.generate_signals({"rsi10": 20.0}, 100.0)
        assert sig.bullish_count == 1

    def test_configured_period_is_the_default(self, monkeypatch):
        monkeypatch.setitem(SETTINGS, "indicators", {"rsi_period": 10})
        scorer = TechnicalScorer()
        assert scorer.rsi_key == "rsi10"
        assert scorer.calculate_score({"rsi10": 80.0}, 100.0) == pytest.approx(0.0)

    def test_analyze_with_non_default_period(self, sample_bars, monkeypatch):
        monkeypatch.setitem(SETTINGS, "indicators", {"rsi_period": 10})
        result = TechnicalScorer().analyze(sample_bars)
        assert "rsi10" in result["indicators"]
        assert "rsi14" not in result["indicators"]
        assert 0.0 <= result["indicators"]["rsi10"] <= 100.0

    def test_analyze_adds_scorer_period_to_given_config(self, sample_bars):
        result = TechnicalScorer(rsi_period=10).analyze(sample_bars, IndicatorConfig(rsi_period=14))
        assert {"rsi10", "rsi14"} <= set(result["indicators"])
