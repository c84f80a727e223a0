"""Shared pytest fixtures for the Stock Quant test suite.

Provides synthetic price and fundamentals data with fixed random seeds for
reproducibility.  No fixture touches the network or the filesystem.
"""

import numpy as np
import pandas as pd
import pytest

from stock_quant.data.models import FundamentalReport, IndicatorBar, bars_from_frame


# ---------------------------------------------------------------------------
# 1. OHLCV fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_ohlcv():
    """Generate a synthetic OHLCV DataFrame with 252 rows and realistic prices.

    Uses a geometric Brownian motion model seeded at 42 for reproducibility.
    Starting price ~150, daily drift ~0.04%, daily vol ~1.5%.
    """
    np.random.seed(42)
    n = 252
    dates = pd.bdate_range(start="2023-01-02", periods=n)
    log_returns = np.random.normal(0.0004, 0.015, n)
    close = 150.0 * np.exp(np.cumsum(log_returns))

    high = close * (1 + np.abs(np.random.normal(0.002, 0.005, n)))
    low = close * (1 - np.abs(np.random.normal(0.002, 0.005, n)))
    open_ = close * (1 + np.random.normal(0, 0.003, n))
    volume = np.random.randint(1_000_000, 10_000_000, n).astype(float)

    return pd.DataFrame(
        {"Open": open_, "High": high, "Low": low, "Close": close, "Volume": volume},
        index=dates,
    )


@pytest.fixture
def sample_bars(sample_ohlcv):
    """The 252-bar OHLCV fixture as oldest-first PriceBar records."""
    return bars_from_frame(sample_ohlcv)


# ---------------------------------------------------------------------------
# 2. Hand-built indicator bars for backtest scenarios
# ---------------------------------------------------------------------------

def make_indicator_bars(closes, indicators=None, start="2024-01-01"):
    """IndicatorBars on consecutive calendar days with the given closes.

    *indicators* is an optional list (same length) of snapshot dicts.
    """
    dates = pd.date_range(start=start, periods=len(closes), freq="D")
    snaps = indicators or [{} for _ in closes]
    return [
        IndicatorBar(
            date=d.date(), open=c, high=c, low=c, close=c, volume=1000.0,
            indicators=dict(s),
        )
        for d, c, s in zip(dates, closes, snaps)
    ]


@pytest.fixture
def make_bars():
    """Factory fixture exposing :func:`make_indicator_bars`."""
    return make_indicator_bars


@pytest.fixture
def flat_bars():
    """Ten bars at a constant close of 100."""
    return make_indicator_bars([100.0] * 10)


# ---------------------------------------------------------------------------
# 3. Fundamentals fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_reports():
    """Two years of Q4 reports plus one Q3, deliberately not in date order."""
    return [
        FundamentalReport(
            report_date="2023-12-31", year=2023, quarter="Q4",
            revenue=110_000_000, net_income=11_000_000, eps=2.0,
            pe=18.0, pb=2.5, roe=14.0, debt_to_equity=0.5,
        ),
        FundamentalReport(
            report_date="2024-12-31", year=2024, quarter="Q4",
            revenue=132_000_000, net_income=19_800_000, eps=4.0,
            pe=12.0, pb=0.8, roe=18.0, debt_to_equity=0.2,
        ),
        FundamentalReport(
            report_date="2024-09-30", year=2024, quarter="Q3",
            revenue=120_000_000, net_income=12_000_000, eps=2.5,
        ),
    ]
