"""Command-line interface for the politrade runtime."""

from __future__ import annotations

import argparse
import sys

from politrade.config import (
    Settings,
    parse_merge_strategy,
    parse_strategy_params,
    parse_weights,
)
from politrade.errors import PolitradeError
from politrade.runtime import cleanup_blocked, run
from politrade.strategies.registry import STRATEGIES, normalize_strategy_name


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(
        description="Blend alternative-data strategies and rebalance an Alpaca account"
    )
    parser.add_argument("--mode", choices=["paper", "live"], help="Trading mode")
    parser.add_argument(
        "--confirm-live",
        action="store_true",
        help="Explicitly confirm live trading (same as CONFIRM_LIVE_TRADING=yes)",
    )
    parser.add_argument(
        "--plan-only",
        action="store_true",
        help="Build the blended portfolio and rebalance plan without submitting orders",
    )
    parser.add_argument(
        "--weights",
        type=str,
        help="Strategy weights, e.g. congressional=0.5,lobbying=0.3,insider=0.2",
    )
    parser.add_argument(
        "--merge-strategy",
        choices=["additive", "max", "average"],
        help="How same-symbol positions from several strategies combine",
    )
    parser.add_argument(
        "--param",
        action="append",
        metavar="STRATEGY.NAME=VALUE",
        help="Strategy parameter override, e.g. congressional.min_quality_score=7 (repeatable)",
    )
    parser.add_argument("--signals-dir", type=str, help="Directory holding <strategy>.csv files")
    parser.add_argument("--events-dir", type=str, help="Run outputs directory")
    parser.add_argument("--state-db", type=str, help="SQLite blocked-asset database path")
    parser.add_argument(
        "--sizing",
        choices=["weighted", "volatility"],
        help="Position sizing method used by signal strategies",
    )
    parser.add_argument(
        "--list-strategies",
        action="store_true",
        help="List registered strategies with default weights, then exit",
    )
    parser.add_argument(
        "--cleanup-blocked",
        action="store_true",
        help="Delete expired asset blocks and list the remaining ones, then exit",
    )
    return parser


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply CLI values onto environment-derived settings."""
    overrides: dict[str, object] = {}
    if args.mode:
        overrides["trading_mode"] = args.mode
    if args.confirm_live:
        overrides["confirm_live_trading"] = True
    if args.plan_only:
        overrides["plan_only"] = True
    if args.weights:
        weights = parse_weights(args.weights, settings.strategy_weights)
        for name in weights:
            normalize_strategy_name(name)
        overrides["strategy_weights"] = weights
    if args.param:
        params = parse_strategy_params(",".join(args.param), settings.strategy_params)
        for name in params:
            normalize_strategy_name(name)
        overrides["strategy_params"] = params
    if args.merge_strategy:
        overrides["merge_strategy"] = parse_merge_strategy(args.merge_strategy)
    if args.signals_dir:
        overrides["signals_dir"] = args.signals_dir
    if args.events_dir:
        overrides["events_dir"] = args.events_dir
    if args.state_db:
        overrides["state_db_path"] = args.state_db
    if args.sizing:
        overrides["sizing_method"] = args.sizing
    return settings.with_overrides(**overrides)


def list_strategies() -> int:
    for allocation in STRATEGIES.values():
        print(
            f"{allocation.name.value:<14} weight={allocation.default_weight:.2f} "
            f"rebalance={allocation.rebalance_frequency.value:<9} {allocation.description}"
        )
        print(f"{'':<14} params: {', '.join(allocation.params)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.list_strategies:
        return list_strategies()
    try:
        settings = apply_cli_overrides(Settings.from_env(), args)
    except PolitradeError as exc:
        print(f"Configuration error: {exc}")
        return 2
    if args.cleanup_blocked:
        return cleanup_blocked(settings)
    try:
        return run(settings)
    except PolitradeError as exc:
        print(f"Configuration error: {exc}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
