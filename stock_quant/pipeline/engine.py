"""PipelineEngine: runs analysis steps in order against one context."""

from __future__ import annotations

import time
from typing import Callable, Sequence

from stock_quant.data.models import FundamentalReport, PriceBar
from stock_quant.pipeline.context import AnalysisContext
from stock_quant.pipeline.steps import DEFAULT_STEPS
from stock_quant.utils.logger import setup_logger

logger = setup_logger("pipeline")

PipelineStep = Callable[[AnalysisContext], None]


class PipelineEngine:
    """Executes an ordered list of steps; a failing step does not stop the run."""

    @staticmethod
    def _step_name(step: PipelineStep) -> str:
        return getattr(step, "__name__", step.__class__.__name__)

    def run(
        self,
        ctx: AnalysisContext,
        steps: Sequence[PipelineStep] | None = None,
    ) -> AnalysisContext:
        steps = list(steps if steps is not None else DEFAULT_STEPS)
        logger.info("Pipeline started: symbol=%s steps=%d", ctx.symbol, len(steps))

        for i, step in enumerate(steps, 1):
            step_name = self._step_name(step)
            logger.info("[%d/%d] Running: %s", i, len(steps), step_name)
            start = time.monotonic()
            try:
                step(ctx)
                ctx.steps_completed.append(step_name)
            except Exception as e:
                logger.error("Step %s failed: %s", step_name, e)
                ctx.errors.append({"step": step_name, "error": str(e)})
            else:
                logger.debug("Step %s completed in %.3fs", step_name, time.monotonic() - start)

        logger.info(
            "Pipeline finished: %d completed, %d failed",
            len(ctx.steps_completed), len(ctx.errors),
        )
        return ctx


def analyze_stock(
    symbol: str,
    bars: Sequence[PriceBar],
    fundamentals: Sequence[FundamentalReport] = (),
    sentiment_score: float = 0.5,
    macro_score: float = 0.5,
    market_trend: str = "neutral",
    current_price: float | None = None,
) -> AnalysisContext:
    """Run the default analysis pipeline and return the populated context."""
    ctx = AnalysisContext(
        symbol=symbol,
        bars=list(bars),
        fundamentals=list(fundamentals),
        sentiment_score=sentiment_score,
        macro_score=macro_score,
        market_trend=market_trend,
        current_price=current_price,
    )
    return PipelineEngine().run(ctx)
