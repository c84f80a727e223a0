"""Fundamental scoring from periodic financial reports.

Ratios come from the most recent report; growth ratios compare it with the
same quarter of the previous year.  A ratio whose inputs are missing or whose
denominator is not positive stays ``None``; it is never zero-filled.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from stock_quant.config import section
from stock_quant.data.models import FundamentalReport
from stock_quant.utils.logger import setup_logger

logger = setup_logger("fundamental")

NEUTRAL_SCORE = 0.5
MAX_INDUSTRY_ADJUSTMENT = 0.05

DEFAULT_INDUSTRY_AVERAGES: Dict[str, float] = {
    "pe_ratio": 15.5,
    "pb_ratio": 2.1,
    "roe": 12.5,
    "debt_to_equity": 0.6,
    "profit_margin": 8.2,
    "revenue_growth": 5.8,
    "earnings_growth": 6.2,
}


@dataclass
class FinancialRatios:
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    roe: Optional[float] = None
    debt_to_equity: Optional[float] = None
    profit_margin: Optional[float] = None
    revenue_growth: Optional[float] = None
    earnings_growth: Optional[float] = None

    def to_dict(self) -> dict:
        return {k: (round(v, 4) if v is not None else None) for k, v in asdict(self).items()}

    def present(self) -> Dict[str, float]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class IndustryComparison:
    pe_ratio_percentile: Optional[float] = None
    pb_ratio_percentile: Optional[float] = None
    roe_percentile: Optional[float] = None
    industry_average: Optional[Dict[str, float]] = None

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Bucket tables: (upper/lower bound, fraction of weight); first match wins
# ---------------------------------------------------------------------------
def _below(bounds: Sequence[Tuple[float, float]], floor: float) -> Callable[[float], float]:
    def rate(v: float) -> float:
        for bound, frac in bounds:
            if v < bound:
                return frac
        return floor
    return rate


def _above(bounds: Sequence[Tuple[float, float]], floor: float) -> Callable[[float], float]:
    def rate(v: float) -> float:
        for bound, frac in bounds:
            if v > bound:
                return frac
        return floor
    return rate


# metric -> (weight, bucket function); lower-is-better metrics use _below
_SCORECARD: Dict[str, Tuple[float, Callable[[float], float]]] = {
    "pe_ratio": (0.15, _below([(10, 1.0), (20, 0.7), (30, 0.4)], 0.1)),
    "pb_ratio": (0.10, _below([(1, 1.0), (3, 0.7)], 0.3)),
    "roe": (0.20, _above([(15, 1.0), (10, 0.8), (5, 0.5)], 0.2)),
    "debt_to_equity": (0.10, _below([(0.3, 1.0), (0.7, 0.7)], 0.3)),
    "profit_margin": (0.15, _above([(15, 1.0), (8, 0.8), (0, 0.5)], 0.1)),
    "revenue_growth": (0.15, _above([(20, 1.0), (10, 0.9), (0, 0.6)], 0.2)),
    "earnings_growth": (0.15, _above([(25, 1.0), (15, 0.9), (0, 0.6)], 0.2)),
}


def _growth(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None or previous <= 0:
        return None
    return (current - previous) / previous * 100.0


def _percentile(value: float, average: float) -> float:
    """Rough percentile standing: 50 +/- 25 per 100% deviation from the average."""
    return 50.0 + (value - average) / average * 25.0


class FundamentalScorer:
    """Ratio derivation, industry comparison and composite fundamental score."""

    def __init__(self, industry_averages: Optional[Dict[str, float]] = None) -> None:
        configured = section("fundamental").get("industry_averages") or {}
        self.industry_averages = dict(industry_averages or configured or DEFAULT_INDUSTRY_AVERAGES)

    # ------------------------------------------------------------------
    # Ratios
    # ------------------------------------------------------------------
    def calculate_ratios(
        self,
        reports: Sequence[FundamentalReport],
        current_price: Optional[float] = None,
    ) -> FinancialRatios:
        if not reports:
            return FinancialRatios()

        ordered = sorted(reports, key=lambda r: r.timestamp, reverse=True)
        latest = ordered[0]
        previous = next(
            (r for r in ordered if r.year == latest.year - 1 and r.quarter == latest.quarter),
            None,
        )

        ratios = FinancialRatios()
        if current_price is not None and latest.eps is not None and latest.eps > 0:
            ratios.pe_ratio = current_price / latest.eps
        elif latest.pe is not None and latest.pe > 0:
            ratios.pe_ratio = latest.pe

        ratios.pb_ratio = latest.pb
        ratios.roe = latest.roe
        ratios.debt_to_equity = latest.debt_to_equity

        if latest.net_income is not None and latest.revenue is not None and latest.revenue > 0:
            ratios.profit_margin = latest.net_income / latest.revenue * 100.0

        if previous is not None:
            ratios.revenue_growth = _growth(latest.revenue, previous.revenue)
            ratios.earnings_growth = _growth(latest.net_income, previous.net_income)
        else:
            logger.debug("No prior-year report for %s %s; growth undefined",
                         latest.year, latest.quarter or "annual")
        return ratios

    # ------------------------------------------------------------------
    # Industry comparison
    # ------------------------------------------------------------------
    def compare_with_industry(
        self,
        ratios: FinancialRatios,
        industry_average: Optional[Dict[str, float]] = None,
    ) -> IndustryComparison:
        avg = dict(industry_average or self.industry_averages)
        result = IndustryComparison(industry_average=avg)

        def standing(value: Optional[float], key: str) -> Optional[float]:
            base = avg.get(key)
            if value is None or not base:
                return None
            return _percentile(value, base)

        result.pe_ratio_percentile = standing(ratios.pe_ratio, "pe_ratio")
        result.pb_ratio_percentile = standing(ratios.pb_ratio, "pb_ratio")
        result.roe_percentile = standing(ratios.roe, "roe")
        return result

    @staticmethod
    def _industry_adjustment(comparison: IndustryComparison) -> float:
        adj = 0.0
        pe = comparison.pe_ratio_percentile
        if pe is not None:
            if pe < 25:
                adj += 0.05
            elif pe > 75:
                adj -= 0.05
        roe = comparison.roe_percentile
        if roe is not None:
            if roe > 75:
                adj += 0.05
            elif roe < 25:
                adj -= 0.05
        return max(-MAX_INDUSTRY_ADJUSTMENT, min(MAX_INDUSTRY_ADJUSTMENT, adj))

    # ------------------------------------------------------------------
    # Score
    # ------------------------------------------------------------------
    def calculate_score(
        self,
        ratios: FinancialRatios,
        comparison: Optional[IndustryComparison] = None,
    ) -> float:
        """Weighted bucket score over present ratios, nudged by industry standing."""
        present = ratios.present()
        total_weight = 0.0
        weighted = 0.0
        for name, value in present.items():
            weight, rate = _SCORECARD[name]
            total_weight += weight
            weighted += weight * rate(value)

        if total_weight <= 0:
            return NEUTRAL_SCORE

        score = weighted / total_weight
        if comparison is not None:
            score += self._industry_adjustment(comparison)
        return float(max(0.0, min(1.0, score)))

    def summarize(self, ratios: FinancialRatios) -> str:
        parts: List[str] = []
        if ratios.pe_ratio is not None:
            if ratios.pe_ratio < 15:
                parts.append("P/E is low, valuation looks reasonable")
            elif ratios.pe_ratio > 25:
                parts.append("P/E is high, valuation looks stretched")
            else:
                parts.append("P/E is within a normal range")
        if ratios.roe is not None:
            if ratios.roe > 15:
                parts.append("ROE is excellent")
            elif ratios.roe < 8:
                parts.append("ROE is weak")
            else:
                parts.append("ROE is healthy")
        if ratios.revenue_growth is not None:
            if ratios.revenue_growth > 15:
                parts.append("revenue growth is strong")
            elif ratios.revenue_growth < 0:
                parts.append("revenue is declining")
            else:
                parts.append("revenue is growing steadily")
        if ratios.debt_to_equity is not None:
            if ratios.debt_to_equity > 1:
                parts.append("leverage is high, watch financial risk")
            elif ratios.debt_to_equity < 0.3:
                parts.append("leverage is low, balance sheet is solid")
            else:
                parts.append("leverage is moderate")
        if not parts:
            return "Not enough fundamental data for a detailed view."
        text = "; ".join(parts)
        return text[0].upper() + text[1:] + "."

    def analyze(
        self,
        reports: Sequence[FundamentalReport],
        current_price: Optional[float] = None,
    ) -> dict:
        ratios = self.calculate_ratios(reports, current_price)
        comparison = self.compare_with_industry(ratios)
        score = self.calculate_score(ratios, comparison)
        logger.info("Fundamental score %.3f from %d ratios", score, len(ratios.present()))
        return {
            "score": round(score, 4),
            "ratios": ratios.to_dict(),
            "industry_comparison": comparison.to_dict(),
            "summary": self.summarize(ratios),
        }
