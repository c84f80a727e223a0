"""AnalysisContext: shared state bag passed through every analysis step."""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from stock_quant.analysis.fundamental import FinancialRatios
from stock_quant.analysis.prediction import PricePrediction
from stock_quant.analysis.recommendation import RecommendationResult
from stock_quant.data.models import FundamentalReport, PriceBar


@dataclass
class AnalysisContext:
    """Accumulates inputs and results as an analysis run executes."""

    # Input
    symbol: str
    bars: list[PriceBar] = field(default_factory=list)
    fundamentals: list[FundamentalReport] = field(default_factory=list)
    sentiment_score: float = 0.5
    macro_score: float = 0.5
    market_trend: str = "neutral"
    current_price: float | None = None

    # Results
    indicators: dict[str, float] = field(default_factory=dict)
    technical: dict[str, Any] = field(default_factory=dict)
    ratios: FinancialRatios | None = None
    fundamental: dict[str, Any] = field(default_factory=dict)
    recommendation: RecommendationResult | None = None
    risk_warnings: list[str] = field(default_factory=list)
    prediction: PricePrediction | None = None

    # Pipeline metadata
    steps_completed: list[str] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def price(self) -> float | None:
        """Explicit current price, else the latest close."""
        if self.current_price is not None:
            return self.current_price
        if not self.bars:
            return None
        return max(self.bars, key=lambda b: b.timestamp).close

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "current_price": self.price,
            "indicators": {k: round(v, 4) for k, v in self.indicators.items()},
            "technical": self.technical,
            "fundamental": self.fundamental,
            "recommendation": self.recommendation.to_dict() if self.recommendation else None,
            "risk_warnings": list(self.risk_warnings),
            "prediction": self.prediction.to_dict() if self.prediction else None,
            "steps_completed": list(self.steps_completed),
            "errors": list(self.errors),
        }
