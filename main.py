#!/usr/bin/env python3
"""Stock Quant: indicators, scoring and strategy backtests from OHLCV files.

Usage:
    python main.py strategies                               # list the catalog
    python main.py indicators prices.csv                    # latest snapshot
    python main.py analyze prices.csv --fundamentals f.yaml --sentiment 0.6
    python main.py backtest prices.csv --strategy rsi_reversion --param oversold=25
    python main.py optimize prices.csv --strategy ma_cross \\
        --range short_period=20:60:10 --range long_period=100:200:50
"""

import argparse
import json
import sys

import yaml

from stock_quant.analysis.indicators import IndicatorConfig, augment_bars, latest_snapshot
from stock_quant.backtesting.engine import BacktestEngine, BacktestError, ParameterRange
from stock_quant.backtesting.strategies import get_strategy, list_strategies
from stock_quant.config import section
from stock_quant.data.models import FundamentalReport, load_price_csv
from stock_quant.pipeline.engine import analyze_stock
from stock_quant.utils.logger import setup_logger

logger = setup_logger("main")


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _parse_param(text: str) -> tuple:
    name, sep, value = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected name=value, got {text!r}")
    return name.strip(), float(value)


def _parse_range(text: str) -> tuple:
    name, sep, bounds = text.partition("=")
    parts = bounds.split(":")
    if not sep or not name or len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected name=min:max:step, got {text!r}")
    try:
        return name.strip(), ParameterRange(*(float(p) for p in parts))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _load_fundamentals(path: str) -> list:
    """Reports from a YAML/JSON file: a list, or a mapping with a ``reports`` key."""
    with open(path) as f:
        raw = yaml.safe_load(f) or []
    if isinstance(raw, dict):
        raw = raw.get("reports", [])
    return [FundamentalReport.from_dict(r) for r in raw]


# ============================================================
# COMMANDS
# ============================================================

def cmd_strategies(args):
    """List the built-in strategy catalog."""
    _print_json(list(list_strategies()))


def cmd_indicators(args):
    """Print the latest indicator snapshot of a price file."""
    bars = load_price_csv(args.csv)
    snapshot = latest_snapshot(bars, IndicatorConfig.from_settings())
    _print_json({
        "bars": len(bars),
        "date": bars[-1].date if bars else None,
        "close": bars[-1].close if bars else None,
        "indicators": {k: round(v, 4) for k, v in snapshot.items()},
    })


def cmd_analyze(args):
    """Run the full analysis pipeline on a price file."""
    bars = load_price_csv(args.csv)
    reports = _load_fundamentals(args.fundamentals) if args.fundamentals else []
    ctx = analyze_stock(
        symbol=args.symbol or args.csv,
        bars=bars,
        fundamentals=reports,
        sentiment_score=args.sentiment,
        macro_score=args.macro,
        market_trend=args.trend,
    )
    _print_json(ctx.to_dict())
    if ctx.errors:
        sys.exit(1)


def _engine_from_args(args) -> BacktestEngine:
    conf = dict(section("backtest"))
    for key in ("initial_capital", "commission", "slippage"):
        value = getattr(args, key)
        if value is not None:
            conf[key] = value
    return BacktestEngine.from_settings(conf)


def cmd_backtest(args):
    """Backtest one catalog strategy over a price file."""
    strategy = get_strategy(args.strategy, **dict(args.param))
    bars = augment_bars(load_price_csv(args.csv), strategy.indicator_config())
    result = _engine_from_args(args).run_backtest(strategy, bars)
    payload = result.to_dict()
    if not args.equity:
        payload.pop("equity_curve", None)
    _print_json(payload)


def cmd_optimize(args):
    """Grid-search a catalog strategy's parameters by Sharpe ratio."""
    ranges = dict(args.range)
    strategy = get_strategy(args.strategy)
    config = strategy.indicator_config(extra_values={n: r.values() for n, r in ranges.items()})
    bars = augment_bars(load_price_csv(args.csv), config)
    workers = args.workers or int(section("backtest").get("optimizer_workers", 1))
    outcome = _engine_from_args(args).optimize_strategy(strategy, bars, ranges, max_workers=workers)
    payload = outcome.to_dict()
    payload["best_result"].pop("equity_curve", None)
    _print_json(payload)


def main():
    parser = argparse.ArgumentParser(
        description="Stock Quant: indicators, scoring and backtests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", help="Commands")

    # strategies
    p = sub.add_parser("strategies", help="List built-in strategies")
    p.set_defaults(func=cmd_strategies)

    # indicators
    p = sub.add_parser("indicators", help="Latest indicator snapshot")
    p.add_argument("csv", help="Date/Open/High/Low/Close/Volume CSV")
    p.set_defaults(func=cmd_indicators)

    # analyze
    p = sub.add_parser("analyze", help="Scores, recommendation and price projection")
    p.add_argument("csv")
    p.add_argument("--symbol", default="", help="Label for the output")
    p.add_argument("--fundamentals", default="", help="YAML/JSON list of reports")
    p.add_argument("--sentiment", type=float, default=0.5, help="Sentiment score in [0, 1]")
    p.add_argument("--macro", type=float, default=0.5, help="Macro score in [0, 1]")
    p.add_argument("--trend", default="neutral", choices=["bullish", "bearish", "neutral"])
    p.set_defaults(func=cmd_analyze)

    # backtest / optimize share engine options
    for name, helptext, func in (
        ("backtest", "Backtest a strategy", cmd_backtest),
        ("optimize", "Grid-search strategy parameters", cmd_optimize),
    ):
        p = sub.add_parser(name, help=helptext)
        p.add_argument("csv")
        p.add_argument("--strategy", required=True, help="Catalog key (see `strategies`)")
        p.add_argument("--capital", dest="initial_capital", type=float, default=None)
        p.add_argument("--commission", type=float, default=None)
        p.add_argument("--slippage", type=float, default=None)
        p.set_defaults(func=func)
        if name == "backtest":
            p.add_argument("--param", type=_parse_param, action="append", default=[],
                           help="Strategy parameter override name=value (repeatable)")
            p.add_argument("--equity", action="store_true", help="Include the equity curve")
        else:
            p.add_argument("--range", type=_parse_range, action="append", required=True,
                           help="Parameter grid name=min:max:step (repeatable)")
            p.add_argument("--workers", type=int, default=0, help="Thread pool size")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(0)
    try:
        args.func(args)
    except (KeyError, ValueError, BacktestError) as e:
        logger.error("%s failed: %s", args.command, e)
        sys.exit(2)


if __name__ == "__main__":
    main()
