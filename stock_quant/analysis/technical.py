"""Technical scoring: collapse an indicator snapshot into a [0, 1] score.

Each indicator that is present votes bullish (1), bearish (0) or neutral (0.5)
through fixed thresholds.  The composite is the weighted mean over the
indicators that are actually present; missing indicators are dropped from both
numerator and denominator instead of being treated as neutral.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from stock_quant.analysis.indicators import (
    IndicatorConfig,
    IndicatorSnapshot,
    default_rsi_period,
    latest_snapshot,
    rsi_key,
)
from stock_quant.config import section
from stock_quant.data.models import PriceBar
from stock_quant.utils.logger import setup_logger

logger = setup_logger("technical")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
NEUTRAL_SCORE = 0.5

SCORE_WEIGHTS: Dict[str, float] = {
    "rsi": 0.20,
    "macd": 0.25,
    "bollinger": 0.15,
    "moving_average": 0.20,
    "stochastic": 0.10,
    "williams_r": 0.10,
}

_RSI_OVERSOLD, _RSI_OVERBOUGHT = 30.0, 70.0
_STOCH_OVERSOLD, _STOCH_OVERBOUGHT = 20.0, 80.0
_WR_OVERSOLD, _WR_OVERBOUGHT = -80.0, -20.0

_STRONG_VOTES = 3
_MODERATE_VOTES = 2


@dataclass
class TechnicalSignals:
    signals: List[str] = field(default_factory=list)
    strength: str = "weak"          # weak / moderate / strong
    direction: str = "neutral"      # bullish / bearish / neutral
    bullish_count: int = 0
    bearish_count: int = 0

    def to_dict(self) -> dict:
        return {
            "signals": list(self.signals),
            "strength": self.strength,
            "direction": self.direction,
            "bullish_count": self.bullish_count,
            "bearish_count": self.bearish_count,
        }


def _threshold_vote(value: float, bullish_below: float, bearish_above: float) -> float:
    if value < bullish_below:
        return 1.0
    if value > bearish_above:
        return 0.0
    return NEUTRAL_SCORE


def _cross_vote(fast: float, slow: float) -> float:
    if fast > slow:
        return 1.0
    if fast < slow:
        return 0.0
    return NEUTRAL_SCORE


class TechnicalScorer:
    """Scores the latest indicator snapshot of a price series."""

    def __init__(
        self,
        fast_ma: Optional[str] = None,
        slow_ma: Optional[str] = None,
        rsi_period: Optional[int] = None,
    ) -> None:
        conf = section("technical")
        self.fast_ma = fast_ma or conf.get("fast_ma", "sma50")
        self.slow_ma = slow_ma or conf.get("slow_ma", "sma200")
        self.rsi_period = int(rsi_period) if rsi_period is not None else default_rsi_period()
        self.rsi_key = rsi_key(self.rsi_period)

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------
    def _sub_scores(self, snap: IndicatorSnapshot, price: float) -> List[Tuple[str, float]]:
        """(component, vote) for every component whose inputs are present."""
        votes: List[Tuple[str, float]] = []

        rsi_val = snap.get(self.rsi_key)
        if rsi_val is not None:
            votes.append(("rsi", _threshold_vote(rsi_val, _RSI_OVERSOLD, _RSI_OVERBOUGHT)))

        if snap.get("macd") is not None and snap.get("macd_signal") is not None:
            votes.append(("macd", _cross_vote(snap["macd"], snap["macd_signal"])))

        if all(snap.get(k) is not None for k in ("bb_upper", "bb_middle", "bb_lower")):
            if price < snap["bb_lower"]:
                bb_vote = 1.0
            elif price > snap["bb_upper"]:
                bb_vote = 0.0
            else:
                bb_vote = NEUTRAL_SCORE
            votes.append(("bollinger", bb_vote))

        if snap.get(self.fast_ma) is not None and snap.get(self.slow_ma) is not None:
            votes.append(("moving_average", _cross_vote(snap[self.fast_ma], snap[self.slow_ma])))

        k, d = snap.get("stoch_k"), snap.get("stoch_d")
        if k is not None and d is not None:
            if k < _STOCH_OVERSOLD and d < _STOCH_OVERSOLD:
                st_vote = 1.0
            elif k > _STOCH_OVERBOUGHT and d > _STOCH_OVERBOUGHT:
                st_vote = 0.0
            else:
                st_vote = NEUTRAL_SCORE
            votes.append(("stochastic", st_vote))

        wr = snap.get("williams_r")
        if wr is not None:
            votes.append(("williams_r", _threshold_vote(wr, _WR_OVERSOLD, _WR_OVERBOUGHT)))

        return votes

    def calculate_score(self, snapshot: IndicatorSnapshot, current_price: float) -> float:
        """Weighted mean of the present sub-scores; 0.5 when nothing is present."""
        votes = self._sub_scores(snapshot, current_price)
        total_weight = sum(SCORE_WEIGHTS[name] for name, _ in votes)
        if total_weight <= 0:
            return NEUTRAL_SCORE
        score = sum(SCORE_WEIGHTS[name] * vote for name, vote in votes) / total_weight
        return float(min(max(score, 0.0), 1.0))

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------
    def generate_signals(self, snapshot: IndicatorSnapshot, current_price: float) -> TechnicalSignals:
        """Readable reasons plus a direction / strength verdict from vote counts."""
        out = TechnicalSignals()

        def bull(reason: str) -> None:
            out.signals.append(reason)
            out.bullish_count += 1

        def bear(reason: str) -> None:
            out.signals.append(reason)
            out.bearish_count += 1

        rsi_val = snapshot.get(self.rsi_key)
        if rsi_val is not None:
            if rsi_val < _RSI_OVERSOLD:
                bull(f"RSI oversold ({rsi_val:.1f}), rebound possible")
            elif rsi_val > _RSI_OVERBOUGHT:
                bear(f"RSI overbought ({rsi_val:.1f}), pullback possible")

        macd_val, macd_sig = snapshot.get("macd"), snapshot.get("macd_signal")
        if macd_val is not None and macd_sig is not None:
            if macd_val > macd_sig:
                bull("MACD above signal line, uptrend")
            elif macd_val < macd_sig:
                bear("MACD below signal line, downtrend")

        upper, lower = snapshot.get("bb_upper"), snapshot.get("bb_lower")
        if upper is not None and lower is not None:
            if current_price < lower:
                bull("Price below lower Bollinger band, rebound possible")
            elif current_price > upper:
                bear("Price above upper Bollinger band, pullback possible")

        fast, slow = snapshot.get(self.fast_ma), snapshot.get(self.slow_ma)
        if fast is not None and slow is not None:
            if fast > slow:
                bull(f"{self.fast_ma.upper()} above {self.slow_ma.upper()}, uptrend")
            elif fast < slow:
                bear(f"{self.fast_ma.upper()} below {self.slow_ma.upper()}, downtrend")

        votes = out.bullish_count + out.bearish_count
        if votes >= _STRONG_VOTES:
            out.strength = "strong"
        elif votes >= _MODERATE_VOTES:
            out.strength = "moderate"

        if out.bullish_count > out.bearish_count:
            out.direction = "bullish"
        elif out.bearish_count > out.bullish_count:
            out.direction = "bearish"
        return out

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------
    def analyze(self, bars: Sequence[PriceBar], config: Optional[IndicatorConfig] = None) -> dict:
        """Snapshot, score and signals for the latest bar of *bars*."""
        if not bars:
            logger.warning("No price bars supplied; returning neutral technical score")
            return {
                "score": NEUTRAL_SCORE,
                "current_price": None,
                "indicators": {},
                "signals": TechnicalSignals().to_dict(),
            }
        cfg = (config or IndicatorConfig.from_settings()).with_rsi(self.rsi_period)
        snapshot = latest_snapshot(bars, cfg)
        price = bars[-1].close
        score = self.calculate_score(snapshot, price)
        signals = self.generate_signals(snapshot, price)
        logger.info(
            "Technical score %.3f (%s, %s) from %d indicators",
            score, signals.direction, signals.strength, len(snapshot),
        )
        return {
            "score": round(score, 4),
            "current_price": price,
            "indicators": {k: round(v, 4) for k, v in snapshot.items()},
            "signals": signals.to_dict(),
        }
