"""Built-in analysis steps: indicators, scoring, recommendation, projection.

Each step is a function: (AnalysisContext) -> None
"""

from __future__ import annotations

from stock_quant.analysis.fundamental import FundamentalScorer
from stock_quant.analysis.indicators import IndicatorConfig, latest_snapshot
from stock_quant.analysis.prediction import PricePredictor
from stock_quant.analysis.recommendation import AnalysisScores, RecommendationEngine
from stock_quant.analysis.technical import TechnicalScorer
from stock_quant.data.models import ensure_oldest_first
from stock_quant.pipeline.context import AnalysisContext
from stock_quant.utils.logger import setup_logger

logger = setup_logger("steps")


# ============================================================
# INDICATOR STEPS
# ============================================================

def compute_indicators(ctx: AnalysisContext) -> None:
    """Latest indicator snapshot of the price history."""
    bars = ensure_oldest_first(ctx.bars)
    ctx.indicators = latest_snapshot(bars, IndicatorConfig.from_settings())
    logger.info("%s: %d indicators from %d bars", ctx.symbol, len(ctx.indicators), len(bars))


# ============================================================
# SCORE STEPS
# ============================================================

def score_technical(ctx: AnalysisContext) -> None:
    price = ctx.price
    if price is None:
        raise ValueError(f"{ctx.symbol}: no price available for technical scoring")
    scorer = TechnicalScorer()
    score = scorer.calculate_score(ctx.indicators, price)
    ctx.technical = {
        "score": score,
        "signals": scorer.generate_signals(ctx.indicators, price).to_dict(),
    }


def score_fundamental(ctx: AnalysisContext) -> None:
    scorer = FundamentalScorer()
    ratios = scorer.calculate_ratios(ctx.fundamentals, ctx.price)
    comparison = scorer.compare_with_industry(ratios)
    ctx.ratios = ratios
    ctx.fundamental = {
        "score": scorer.calculate_score(ratios, comparison),
        "ratios": ratios.to_dict(),
        "industry_comparison": comparison.to_dict(),
        "summary": scorer.summarize(ratios),
    }


def build_recommendation(ctx: AnalysisContext) -> None:
    """Combine the dimension scores; needs both scoring steps to have run."""
    if "score" not in ctx.technical or "score" not in ctx.fundamental:
        raise RuntimeError(f"{ctx.symbol}: technical and fundamental scores are required")
    scores = AnalysisScores(
        technical=ctx.technical["score"],
        fundamental=ctx.fundamental["score"],
        sentiment=ctx.sentiment_score,
        macro=ctx.macro_score,
    )
    engine = RecommendationEngine()
    ctx.recommendation = engine.recommend(scores)
    ctx.risk_warnings = engine.get_risk_warnings(ctx.recommendation)


def project_price(ctx: AnalysisContext) -> None:
    if ctx.recommendation is None:
        raise RuntimeError(f"{ctx.symbol}: recommendation is required for a price projection")
    price = ctx.price
    if price is None:
        raise ValueError(f"{ctx.symbol}: no price available for projection")
    ctx.prediction = PricePredictor().predict(
        current_price=price,
        snapshot=ctx.indicators,
        ratios=ctx.ratios,
        recommendation=ctx.recommendation.recommendation,
        confidence=ctx.recommendation.confidence,
        market_trend=ctx.market_trend,
    )


DEFAULT_STEPS = [
    compute_indicators,
    score_technical,
    score_fundamental,
    build_recommendation,
    project_price,
]
