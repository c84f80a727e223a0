"""Stock Quant: technical indicators, multi-factor scoring and strategy backtests."""

__version__ = "0.1.0"
