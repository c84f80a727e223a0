"""Input records for the analysis core: OHLCV bars and periodic fundamentals.

Also hosts the adapters between these records and pandas DataFrames / CSV
files, which is how price history usually arrives from the outside world.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd

from stock_quant.utils.logger import setup_logger

logger = setup_logger("data")

DateLike = Union[date, datetime, str, pd.Timestamp]

_OHLCV_COLUMNS = ("Open", "High", "Low", "Close", "Volume")


@dataclass(frozen=True)
class PriceBar:
    """One OHLCV sample for a fixed time interval."""

    date: DateLike
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def timestamp(self) -> pd.Timestamp:
        return pd.Timestamp(self.date)


@dataclass(frozen=True)
class IndicatorBar(PriceBar):
    """A price bar augmented with its indicator snapshot.

    ``indicators`` is sparse: a key is missing while the indicator is still
    warming up, it is never filled with zero.
    """

    indicators: Dict[str, float] = field(default_factory=dict)

    def indicator(self, name: str) -> Optional[float]:
        return self.indicators.get(name)


@dataclass(frozen=True)
class FundamentalReport:
    """A single periodic (quarterly or annual) fundamentals report."""

    report_date: DateLike
    year: int
    quarter: Optional[str] = None
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    eps: Optional[float] = None
    pe: Optional[float] = None
    pb: Optional[float] = None
    roe: Optional[float] = None
    debt_to_equity: Optional[float] = None

    @property
    def timestamp(self) -> pd.Timestamp:
        return pd.Timestamp(self.report_date)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "FundamentalReport":
        """Build a report from a loosely-typed mapping (YAML / JSON input)."""
        report_date = raw.get("report_date") or raw.get("reportDate")
        if report_date is None:
            raise ValueError("fundamental report requires a report_date")
        year = raw.get("year")
        if year is None:
            year = pd.Timestamp(report_date).year

        def _num(*keys: str) -> Optional[float]:
            for key in keys:
                val = raw.get(key)
                if val is not None and val != "":
                    return float(val)
            return None

        quarter = raw.get("quarter")
        return cls(
            report_date=report_date,
            year=int(year),
            quarter=str(quarter) if quarter is not None else None,
            revenue=_num("revenue"),
            net_income=_num("net_income", "netIncome"),
            eps=_num("eps"),
            pe=_num("pe"),
            pb=_num("pb"),
            roe=_num("roe"),
            debt_to_equity=_num("debt_to_equity", "debtToEquity"),
        )


# ---------------------------------------------------------------------------
# Ordering helpers
# ---------------------------------------------------------------------------

def is_oldest_first(bars: Sequence[PriceBar]) -> bool:
    """True when bar dates are non-decreasing."""
    return all(
        bars[i - 1].timestamp <= bars[i].timestamp for i in range(1, len(bars))
    )


def ensure_oldest_first(bars: Sequence[PriceBar]) -> List[PriceBar]:
    """Return the bars oldest-first without touching the caller's sequence.

    Newest-first input (as delivered by most quote databases) is reversed;
    anything else that is not already ordered is sorted by date.
    """
    out = list(bars)
    if is_oldest_first(out):
        return out
    reversed_bars = out[::-1]
    if is_oldest_first(reversed_bars):
        return reversed_bars
    logger.warning("Price bars were unordered; sorting %d bars by date", len(out))
    return sorted(out, key=lambda b: b.timestamp)


# ---------------------------------------------------------------------------
# DataFrame / CSV adapters
# ---------------------------------------------------------------------------

def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    rename = {}
    for col in df.columns:
        title = str(col).strip().lower()
        for target in ("Date",) + _OHLCV_COLUMNS:
            if title == target.lower():
                rename[col] = target
    return df.rename(columns=rename)


def bars_from_frame(df: pd.DataFrame) -> List[PriceBar]:
    """Convert an OHLCV DataFrame into oldest-first ``PriceBar`` records.

    Dates come from a ``Date`` column when present, else from the index.
    Column names are matched case-insensitively.
    """
    if df is None or df.empty:
        return []
    frame = _normalize_columns(df)
    missing = [c for c in _OHLCV_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"OHLCV frame is missing columns: {', '.join(missing)}")

    dates: Iterable[Any] = frame["Date"] if "Date" in frame.columns else frame.index
    bars = [
        PriceBar(
            date=pd.Timestamp(d).date(),
            open=float(row.Open),
            high=float(row.High),
            low=float(row.Low),
            close=float(row.Close),
            volume=float(row.Volume),
        )
        for d, row in zip(dates, frame[list(_OHLCV_COLUMNS)].itertuples(index=False))
    ]
    return ensure_oldest_first(bars)


def bars_to_frame(bars: Sequence[PriceBar]) -> pd.DataFrame:
    """Inverse of :func:`bars_from_frame`: a DatetimeIndex-ed OHLCV frame."""
    if not bars:
        return pd.DataFrame(columns=list(_OHLCV_COLUMNS))
    index = pd.DatetimeIndex([b.timestamp for b in bars], name="Date")
    return pd.DataFrame(
        {
            "Open": [b.open for b in bars],
            "High": [b.high for b in bars],
            "Low": [b.low for b in bars],
            "Close": [b.close for b in bars],
            "Volume": [b.volume for b in bars],
        },
        index=index,
    )


def load_price_csv(path: Union[str, Path]) -> List[PriceBar]:
    """Read a Date/Open/High/Low/Close/Volume CSV into oldest-first bars."""
    df = pd.read_csv(path)
    frame = _normalize_columns(df)
    if "Date" not in frame.columns:
        raise ValueError(f"{path}: CSV needs a Date column")
    missing = [c for c in _OHLCV_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"{path}: CSV is missing columns: {', '.join(missing)}")
    frame = frame.dropna(subset=list(_OHLCV_COLUMNS))
    bars = bars_from_frame(frame)
    logger.info("Loaded %d bars from %s", len(bars), path)
    return bars
