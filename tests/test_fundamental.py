"""Tests for stock_quant.analysis.fundamental -- ratios, industry standing, score."""

import pytest

from stock_quant.analysis.fundamental import (
    DEFAULT_INDUSTRY_AVERAGES,
    FinancialRatios,
    FundamentalScorer,
    IndustryComparison,
)
from stock_quant.data.models import FundamentalReport


class TestCalculateRatios:

    def setup_method(self):
        self.scorer = FundamentalScorer(industry_averages=DEFAULT_INDUSTRY_AVERAGES)

    def test_uses_latest_report(self, sample_reports):
        ratios = self.scorer.calculate_ratios(sample_reports)
        assert ratios.pb_ratio == 0.8
        assert ratios.roe == 18.0
        assert ratios.debt_to_equity == 0.2
        assert ratios.profit_margin == pytest.approx(15.0)

    def test_input_order_untouched(self, sample_reports):
        before = list(sample_reports)
        self.scorer.calculate_ratios(sample_reports)
        assert sample_reports == before

    def test_pe_from_price_and_eps(self, sample_reports):
        ratios = self.scorer.calculate_ratios(sample_reports, current_price=60.0)
        assert ratios.pe_ratio == pytest.approx(15.0)

    def test_pe_falls_back_to_reported(self, sample_reports):
        ratios = self.scorer.calculate_ratios(sample_reports)
        assert ratios.pe_ratio == 12.0

    def test_year_over_year_growth_same_quarter(self, sample_reports):
        ratios = self.scorer.calculate_ratios(sample_reports)
        assert ratios.revenue_growth == pytest.approx(20.0)
        assert ratios.earnings_growth == pytest.approx(80.0)

    def test_growth_undefined_without_prior_year(self):
        reports = [FundamentalReport(report_date="2024-03-31", year=2024, quarter="Q1", revenue=10.0)]
        ratios = self.scorer.calculate_ratios(reports)
        assert ratios.revenue_growth is None
        assert ratios.earnings_growth is None

    def test_non_positive_denominators_leave_ratio_undefined(self):
        reports = [
            FundamentalReport(report_date="2023-12-31", year=2023, quarter="Q4",
                              revenue=0.0, net_income=-5.0),
            FundamentalReport(report_date="2024-12-31", year=2024, quarter="Q4",
                              revenue=0.0, net_income=3.0, eps=-1.0),
        ]
        ratios = self.scorer.calculate_ratios(reports, current_price=50.0)
        assert ratios.profit_margin is None
        assert ratios.revenue_growth is None
        assert ratios.earnings_growth is None
        assert ratios.pe_ratio is None

    def test_empty_reports(self):
        assert self.scorer.calculate_ratios([]).present() == {}


class TestIndustryComparison:

    def setup_method(self):
        self.scorer = FundamentalScorer(industry_averages=DEFAULT_INDUSTRY_AVERAGES)

    def test_percentile_formula(self):
        comp = self.scorer.compare_with_industry(FinancialRatios(pe_ratio=31.0, roe=6.25))
        assert comp.pe_ratio_percentile == pytest.approx(75.0)
        assert comp.roe_percentile == pytest.approx(37.5)
        assert comp.pb_ratio_percentile is None

    def test_zero_average_skipped(self):
        comp = self.scorer.compare_with_industry(FinancialRatios(pe_ratio=10.0), {"pe_ratio": 0.0})
        assert comp.pe_ratio_percentile is None


class TestCalculateScore:

    def setup_method(self):
        self.scorer = FundamentalScorer(industry_averages=DEFAULT_INDUSTRY_AVERAGES)

    def test_no_ratios_is_neutral(self):
        assert self.scorer.calculate_score(FinancialRatios()) == 0.5

    def test_single_ratio_bucket(self):
        # roe > 15 -> full weight
        assert self.scorer.calculate_score(FinancialRatios(roe=20.0)) == pytest.approx(1.0)
        # pe between 10 and 20 -> 0.7
        assert self.scorer.calculate_score(FinancialRatios(pe_ratio=15.0)) == pytest.approx(0.7)

    def test_weighted_mean_of_present_ratios(self):
        ratios = FinancialRatios(pe_ratio=35.0, roe=20.0)
        expected = (0.15 * 0.1 + 0.20 * 1.0) / 0.35
        assert self.scorer.calculate_score(ratios) == pytest.approx(expected)

    def test_industry_adjustment_bounded(self):
        ratios = FinancialRatios(pe_ratio=15.0)
        comp = IndustryComparison(pe_ratio_percentile=10.0, roe_percentile=90.0)
        # both nudges point up but the total is capped at +0.05
        assert self.scorer.calculate_score(ratios, comp) == pytest.approx(0.75)

    def test_adjustment_clamped_to_unit_interval(self):
        ratios = FinancialRatios(roe=20.0)
        comp = IndustryComparison(pe_ratio_percentile=10.0)
        assert self.scorer.calculate_score(ratios, comp) == 1.0

    def test_negative_adjustment(self):
        ratios = FinancialRatios(pe_ratio=15.0)
        comp = IndustryComparison(pe_ratio_percentile=90.0, roe_percentile=10.0)
        assert self.scorer.calculate_score(ratios, comp) == pytest.approx(0.65)

    def test_analyze_bounds(self, sample_reports):
        result = self.scorer.analyze(sample_reports, current_price=40.0)
        assert 0.0 <= result["score"] <= 1.0
        assert result["ratios"]["pe_ratio"] == pytest.approx(10.0)


class TestSummarize:

    def test_fallback_sentence(self):
        text = FundamentalScorer().summarize(FinancialRatios())
        assert "Not enough" in text

    def test_mentions_leverage(self):
        text = FundamentalScorer().summarize(FinancialRatios(debt_to_equity=1.5, roe=20.0))
        assert "leverage is high" in text
        assert "ROE is excellent" in text
