"""Heuristic one-week price projection.

Starts from a drift implied by the recommendation class, adds indicator,
valuation and market-trend nudges, and scales the total by the recommendation
confidence.  It is a rule-of-thumb projection, not a forecasting model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from stock_quant.analysis.fundamental import FinancialRatios
from stock_quant.analysis.indicators import IndicatorSnapshot, rsi_key
from stock_quant.utils.logger import setup_logger

logger = setup_logger("prediction")

MAX_CONFIDENCE = 0.95
MARKET_TRENDS = ("bullish", "bearish", "neutral")

_BASE_DRIFT = {
    "strong_buy": 0.05,
    "buy": 0.05,
    "hold": 0.01,
    "sell": -0.05,
    "strong_sell": -0.05,
}


@dataclass
class PricePrediction:
    predicted_price: float
    confidence: float
    time_frame: str = "1w"
    reasoning: str = ""
    risk_factors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "predicted_price": self.predicted_price,
            "confidence": round(self.confidence, 4),
            "time_frame": self.time_frame,
            "reasoning": self.reasoning,
            "risk_factors": list(self.risk_factors),
        }


def _pct(x: float) -> str:
    return f"{x * 100:+.1f}%"


class PricePredictor:

    def __init__(self, rsi_period: Optional[int] = None) -> None:
        self.rsi_key = rsi_key(rsi_period)

    def _technical_adjustment(self, snap: IndicatorSnapshot, price: float) -> float:
        adj = 0.0
        rsi_val = snap.get(self.rsi_key)
        if rsi_val is not None:
            if rsi_val < 30:
                adj += 0.03
            elif rsi_val > 70:
                adj -= 0.03
        macd_val, macd_sig = snap.get("macd"), snap.get("macd_signal")
        if macd_val is not None and macd_sig is not None:
            adj += 0.02 if macd_val > macd_sig else -0.02
        lower, upper = snap.get("bb_lower"), snap.get("bb_upper")
        if lower is not None and upper is not None:
            if price < lower:
                adj += 0.04
            elif price > upper:
                adj -= 0.04
        return adj

    @staticmethod
    def _fundamental_adjustment(ratios: FinancialRatios) -> float:
        adj = 0.0
        if ratios.pe_ratio is not None:
            if ratios.pe_ratio < 15:
                adj += 0.02
            elif ratios.pe_ratio > 25:
                adj -= 0.02
        if ratios.earnings_growth is not None:
            if ratios.earnings_growth > 10:
                adj += 0.03
            elif ratios.earnings_growth < -5:
                adj -= 0.03
        return adj

    def _risk_factors(
        self,
        snap: IndicatorSnapshot,
        ratios: FinancialRatios,
        confidence: float,
        market_trend: str,
    ) -> List[str]:
        risks = []
        if confidence < 0.6:
            risks.append("Low projection confidence; use as a rough guide only")
        rsi_val = snap.get(self.rsi_key)
        if rsi_val is not None and rsi_val > 80:
            risks.append("RSI severely overbought; pullback risk")
        if rsi_val is not None and rsi_val < 20:
            risks.append("RSI severely oversold; further decline still possible")
        if ratios.pe_ratio is not None and ratios.pe_ratio > 30:
            risks.append("P/E is very high; valuation risk")
        if ratios.debt_to_equity is not None and ratios.debt_to_equity > 1:
            risks.append("High leverage; financial risk")
        if market_trend == "bearish":
            risks.append("Broad market trend is bearish")
        return risks

    def predict(
        self,
        current_price: float,
        snapshot: Optional[IndicatorSnapshot] = None,
        ratios: Optional[FinancialRatios] = None,
        recommendation: str = "hold",
        confidence: float = 0.5,
        market_trend: str = "neutral",
    ) -> PricePrediction:
        if current_price <= 0:
            raise ValueError(f"current_price must be positive, got {current_price}")
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")
        if market_trend not in MARKET_TRENDS:
            raise ValueError(f"market_trend must be one of {MARKET_TRENDS}, got {market_trend!r}")

        snap = snapshot or {}
        ratios = ratios or FinancialRatios()
        rec = recommendation.lower()

        base = _BASE_DRIFT.get(rec, 0.0)
        technical = self._technical_adjustment(snap, current_price)
        fundamental = self._fundamental_adjustment(ratios)
        market = {"bullish": 0.02, "bearish": -0.02}.get(market_trend, 0.0)

        change = (base + technical + fundamental + market) * confidence
        predicted = round(current_price * (1 + change), 2)

        reasons = [f"{rec.upper()} recommendation implies {_pct(base)}"]
        if technical:
            reasons.append(f"indicators {'supportive' if technical > 0 else 'negative'} ({_pct(technical)})")
        if fundamental:
            reasons.append(f"valuation {'supportive' if fundamental > 0 else 'negative'} ({_pct(fundamental)})")
        if market:
            reasons.append(f"market trend {'favourable' if market > 0 else 'unfavourable'} ({_pct(market)})")

        logger.debug("Projected %.2f -> %.2f (change %.4f)", current_price, predicted, change)
        return PricePrediction(
            predicted_price=predicted,
            confidence=min(confidence, MAX_CONFIDENCE),
            reasoning="; ".join(reasons) + ".",
            risk_factors=self._risk_factors(snap, ratios, confidence, market_trend),
        )

    @staticmethod
    def accuracy(predicted_price: float, actual_price: float) -> float:
        """1 minus the relative error, floored at 0."""
        if actual_price <= 0:
            raise ValueError(f"actual_price must be positive, got {actual_price}")
        error = abs(predicted_price - actual_price) / actual_price
        return max(0.0, 1.0 - error)
