"""Multi-factor recommendation engine.

Combines the technical, fundamental, sentiment and macro scores (each in
[0, 1]) into an overall score, a five-level recommendation class, a risk level,
a time horizon and generated reasoning text.

Classification thresholds on the overall score:
    >= 0.8  strong_buy
    >= 0.6  buy
    >= 0.4  hold
    >= 0.2  sell
    else    strong_sell
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from stock_quant.config import section
from stock_quant.utils.logger import setup_logger

logger = setup_logger("recommendation")

DIMENSIONS = ("technical", "fundamental", "sentiment", "macro")

DEFAULT_WEIGHTS: Dict[str, float] = {
    "technical": 0.25,
    "fundamental": 0.35,
    "sentiment": 0.20,
    "macro": 0.20,
}

_CLASS_THRESHOLDS = (
    (0.8, "strong_buy"),
    (0.6, "buy"),
    (0.4, "hold"),
    (0.2, "sell"),
)

_REASONS = {
    "technical": (
        "technical indicators show a strong uptrend",
        "technical indicators are neutral to positive",
        "technical indicators show a downtrend",
        "technical signals are unclear",
    ),
    "fundamental": (
        "fundamentals are excellent and financially healthy",
        "fundamentals are solid with investment value",
        "fundamentals carry risk and call for caution",
        "fundamental data is limited, further analysis advised",
    ),
    "sentiment": (
        "market sentiment is positive with strong investor confidence",
        "market sentiment is moderately optimistic",
        "market sentiment is weak with low investor confidence",
        "market sentiment is neutral",
    ),
    "macro": (
        "the macro environment is favourable",
        "the macro environment is relatively stable",
        "the macro environment is uncertain",
        "macro influence is neutral",
    ),
}

_CONCLUSIONS = {
    "strong_buy": "Overall, a strong buy",
    "buy": "Overall, a buy",
    "hold": "Overall, hold and watch",
    "sell": "Overall, a sell",
    "strong_sell": "Overall, a strong sell",
}

_LABELS = {
    "strong_buy": "Strong buy",
    "buy": "Buy",
    "hold": "Hold",
    "sell": "Sell",
    "strong_sell": "Strong sell",
}

DISCLAIMER = "Investing carries risk; make decisions with care."


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class AnalysisScores:
    technical: float
    fundamental: float
    sentiment: float
    macro: float

    def __post_init__(self) -> None:
        for name in DIMENSIONS:
            value = getattr(self, name)
            if value is None or math.isnan(value) or not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} score must be within [0, 1], got {value!r}")

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class OverallScore:
    score: float
    confidence: float
    breakdown: AnalysisScores

    def to_dict(self) -> dict:
        return {
            "score": round(self.score, 4),
            "confidence": round(self.confidence, 4),
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass
class RecommendationResult:
    recommendation: str
    confidence: float
    reasoning: str
    scores: AnalysisScores
    risk_level: str
    time_horizon: str

    def to_dict(self) -> dict:
        return {
            "recommendation": self.recommendation,
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "scores": self.scores.to_dict(),
            "risk_level": self.risk_level,
            "time_horizon": self.time_horizon,
        }


def classify(score: float) -> str:
    for threshold, label in _CLASS_THRESHOLDS:
        if score >= threshold:
            return label
    return "strong_sell"


def _population_variance(values: List[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
class RecommendationEngine:
    """Weighted combination of the four analysis dimensions."""

    def __init__(self, weights: Optional[Dict[str, float]] = None) -> None:
        configured = section("recommendation").get("weights") or {}
        chosen = dict(weights or configured or DEFAULT_WEIGHTS)
        missing = [d for d in DIMENSIONS if d not in chosen]
        if missing:
            raise ValueError(f"weights missing dimensions: {', '.join(missing)}")
        total = sum(float(chosen[d]) for d in DIMENSIONS)
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"recommendation weights must sum to 1, got {total:.6f}")
        self.weights = {d: float(chosen[d]) for d in DIMENSIONS}

    @staticmethod
    def _confidence(scores: AnalysisScores) -> float:
        """0.6 x data completeness + 0.4 x agreement of the non-zero scores.

        A score of exactly 0 counts as missing data.
        """
        valid = [getattr(scores, d) for d in DIMENSIONS if getattr(scores, d) > 0]
        if not valid:
            return 0.0
        completeness = len(valid) / len(DIMENSIONS)
        consistency = 1.0 - _population_variance(valid)
        return completeness * 0.6 + consistency * 0.4

    def calculate_overall_score(self, scores: AnalysisScores) -> OverallScore:
        score = sum(self.weights[d] * getattr(scores, d) for d in DIMENSIONS)
        return OverallScore(score=score, confidence=self._confidence(scores), breakdown=scores)

    def generate_recommendation(self, overall: OverallScore) -> RecommendationResult:
        b = overall.breakdown
        label = classify(overall.score)

        if overall.confidence >= 0.8 and abs(b.technical - b.fundamental) < 0.2:
            risk = "low"
        elif overall.confidence >= 0.6:
            risk = "medium"
        else:
            risk = "high"

        if b.technical > 0.7 and b.sentiment > 0.6:
            horizon = "short"
        elif b.fundamental > 0.7:
            horizon = "long"
        else:
            horizon = "medium"

        return RecommendationResult(
            recommendation=label,
            confidence=overall.confidence,
            reasoning=self.generate_reasoning(b, label),
            scores=b,
            risk_level=risk,
            time_horizon=horizon,
        )

    @staticmethod
    def generate_reasoning(scores: AnalysisScores, recommendation: str) -> str:
        reasons = []
        for dim in DIMENSIONS:
            value = getattr(scores, dim)
            strong, good, weak, unclear = _REASONS[dim]
            if value > 0.7:
                reasons.append(strong)
            elif value > 0.5:
                reasons.append(good)
            elif value < 0.3:
                reasons.append(weak)
            else:
                reasons.append(unclear)
        body = "; ".join(reasons)
        return f"{body[0].upper()}{body[1:]}. {_CONCLUSIONS[recommendation]}."

    @staticmethod
    def get_risk_warnings(result: RecommendationResult) -> List[str]:
        warnings = []
        if result.confidence < 0.6:
            warnings.append("Low data confidence; decide with caution.")
        if result.risk_level == "high":
            warnings.append("High investment risk; assess your own risk tolerance.")
        if abs(result.scores.technical - result.scores.fundamental) > 0.3:
            warnings.append("Technical and fundamental views diverge; research further.")
        if result.scores.sentiment < 0.3:
            warnings.append("Weak market sentiment; systemic risk is possible.")
        return warnings or [DISCLAIMER]

    @staticmethod
    def get_summary(result: RecommendationResult) -> str:
        return (
            f"{_LABELS[result.recommendation]} with {result.confidence * 100:.0f}% confidence, "
            f"{result.risk_level} risk, {result.time_horizon}-term horizon."
        )

    def recommend(self, scores: AnalysisScores) -> RecommendationResult:
        """Overall score and recommendation in one call."""
        overall = self.calculate_overall_score(scores)
        result = self.generate_recommendation(overall)
        logger.info(
            "Recommendation %s (score %.3f, confidence %.2f, risk %s)",
            result.recommendation, overall.score, result.confidence, result.risk_level,
        )
        return result
