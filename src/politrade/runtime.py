"""Runtime wiring for the daily blend-and-rebalance cycle."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from politrade.brokers.alpaca import build_gateway
from politrade.brokers.base import BrokerageGateway
from politrade.config import Settings
from politrade.domain.events import CycleEvent, EventType
from politrade.domain.models import (
    OrderAccepted,
    OrderIntent,
    OrderResult,
    TargetPosition,
    TradingMode,
)
from politrade.errors import PolitradeError
from politrade.execution.rebalancer import Rebalancer, RebalanceReport
from politrade.execution.sizing import PriceHistoryProvider
from politrade.logging.event_sink import JsonlEventSink
from politrade.logging.logger import HumanLogger
from politrade.portfolio.blender import BlendResult, PortfolioBlender
from politrade.signals.csv_source import CsvSignalSource
from politrade.state.sqlite_store import SqliteBlockedAssetStore
from politrade.state.store import BlockedAssetStore
from politrade.strategies.base import SignalSource, StrategyContext
from politrade.strategies.registry import StrategyRegistry

TOP_POSITIONS_LOGGED = 10


@dataclass(frozen=True)
class CycleResult:
    blend: BlendResult
    report: RebalanceReport | None
    skipped_reason: str | None = None


def run(settings: Settings) -> int:
    """Run one daily cycle and return a process exit code."""
    human_logger = HumanLogger(level=settings.log_level)
    gateway = build_gateway(settings)
    blocked_store = build_blocked_store(settings)
    source = CsvSignalSource(settings.signals_dir)

    run_id = uuid4().hex
    event_sink = JsonlEventSink.for_run(settings.events_dir, run_id)

    exit_code = 0
    try:
        execute_cycle(
            settings=settings,
            gateway=gateway,
            source=source,
            blocked_store=blocked_store,
            run_id=run_id,
            event_sink=event_sink,
            human_logger=human_logger,
        )
    except PolitradeError as exc:
        human_logger.error(str(exc))
        event_sink.emit(
            CycleEvent(
                run_id=run_id,
                mode=settings.trading_mode,
                event_type=EventType.ERROR,
                payload={"message": str(exc), "error_type": type(exc).__name__},
            )
        )
        exit_code = 1
    finally:
        blocked_store.close()
    return exit_code


def execute_cycle(
    settings: Settings,
    gateway: BrokerageGateway,
    source: SignalSource,
    blocked_store: BlockedAssetStore,
    run_id: str,
    event_sink: JsonlEventSink,
    human_logger: HumanLogger,
) -> CycleResult:
    """Load the account, blend strategies, then converge the account."""
    mode = settings.trading_mode
    human_logger.run_started(run_id, mode.value, settings.strategy_weights)
    event_sink.emit(
        CycleEvent(
            run_id=run_id,
            mode=mode,
            event_type=EventType.RUN_STARTED,
            payload={
                "strategy_weights": dict(settings.strategy_weights),
                "merge_strategy": settings.merge_strategy.value,
                "plan_only": settings.plan_only,
            },
        )
    )

    expired = blocked_store.cleanup_expired()
    if expired:
        human_logger.blocked_cleanup(expired)

    account = gateway.get_account()
    human_logger.portfolio(account.cash, account.equity, account.buying_power)
    for position in account.positions.values():
        human_logger.position_exposure(position.symbol, position.qty, position.market_value)

    registry = build_registry(settings, gateway, source)
    blender = PortfolioBlender(registry, blocked_assets=blocked_store)
    blend = blender.blend(settings.blend_config(account.equity))
    metadata = blend.metadata.to_record()
    human_logger.blend_summary(metadata)
    for position in top_positions(blend.target_positions):
        human_logger.target(position.symbol, position.target_value, position.details.to_record())
    event_sink.emit(
        CycleEvent(
            run_id=run_id,
            mode=mode,
            event_type=EventType.BLEND_SUMMARY,
            payload={
                "metadata": metadata,
                "targets": [position.to_record() for position in blend.target_positions],
                "newly_blocked": {s: r.value for s, r in blend.newly_blocked.items()},
            },
        )
    )

    if not blend.target_positions and mode is TradingMode.LIVE:
        # An empty target in live mode would liquidate the account.
        human_logger.error("blended target is empty in live mode; skipping rebalance")
        event_sink.emit(
            CycleEvent(
                run_id=run_id,
                mode=mode,
                event_type=EventType.REBALANCE_SUMMARY,
                payload={"skipped_reason": "empty_target"},
            )
        )
        return CycleResult(blend=blend, report=None, skipped_reason="empty_target")

    def on_result(intent: OrderIntent, result: OrderResult) -> None:
        emit_order_update(event_sink, human_logger, run_id, mode, intent, result)

    rebalancer = Rebalancer(gateway, blocked_assets=blocked_store, on_result=on_result)
    report = rebalancer.rebalance(
        blend.target_positions,
        snapshot=account,
        plan_only=settings.plan_only,
        blocked=blend.blocked_symbols,
    )
    if report.plan_only:
        for intent in report.plan.intents:
            human_logger.order_submit(
                intent.symbol,
                intent.side.value,
                intent.reason.value,
                notional=intent.notional,
                qty=intent.qty,
            )
    human_logger.rebalance_summary(
        executed=len(report.executed),
        failed=len(report.failed),
        skipped=len(report.skipped),
        blocked=len(report.blocked),
        plan_only=report.plan_only,
    )
    event_sink.emit(
        CycleEvent(
            run_id=run_id,
            mode=mode,
            event_type=EventType.REBALANCE_SUMMARY,
            payload=report.to_record(),
        )
    )
    return CycleResult(blend=blend, report=report)


def emit_order_update(
    event_sink: JsonlEventSink,
    human_logger: HumanLogger,
    run_id: str,
    mode: TradingMode,
    intent: OrderIntent,
    result: OrderResult,
) -> None:
    payload: dict[str, Any] = intent.to_record()
    if isinstance(result, OrderAccepted):
        payload.update(
            {
                "order_id": result.order_id,
                "status": result.status,
                "filled_qty": result.filled_qty,
                "filled_avg_price": result.filled_avg_price,
                "submitted_at": result.submitted_at,
                "order_qty": result.qty,
            }
        )
        human_logger.order_update(
            intent.symbol,
            result.status,
            order_id=result.order_id,
            details={"filled_avg_price": result.filled_avg_price},
        )
    else:
        payload.update(
            {
                "status": "rejected",
                "rejection_kind": result.kind.value,
                "message": result.message,
            }
        )
        human_logger.order_update(
            intent.symbol,
            f"rejected ({result.kind.value})",
            details={"message": result.message},
        )
    event_sink.emit(
        CycleEvent(run_id=run_id, mode=mode, event_type=EventType.ORDER_UPDATE, payload=payload)
    )


def top_positions(
    positions: list[TargetPosition],
    limit: int = TOP_POSITIONS_LOGGED,
) -> list[TargetPosition]:
    return sorted(positions, key=lambda position: abs(position.target_value), reverse=True)[:limit]


def build_registry(
    settings: Settings,
    gateway: BrokerageGateway,
    source: SignalSource,
) -> StrategyRegistry:
    prices = PriceHistoryProvider(gateway) if settings.sizing_method == "volatility" else None
    context = StrategyContext(
        source=source,
        prices=prices,
        sizing_method=settings.sizing_method,
        risk_target_pct=settings.risk_target_pct,
    )
    return StrategyRegistry(context)


def build_blocked_store(settings: Settings) -> SqliteBlockedAssetStore:
    return SqliteBlockedAssetStore(
        settings.state_db_path,
        cooldown_days=settings.block_cooldown_days,
    )


def cleanup_blocked(settings: Settings) -> int:
    """Remove expired asset blocks and report what remains."""
    human_logger = HumanLogger(level=settings.log_level)
    store = build_blocked_store(settings)
    try:
        removed = store.cleanup_expired()
        remaining = store.list_active()
    finally:
        store.close()
    human_logger.blocked_cleanup(removed, [(entry.symbol, entry.reason.value) for entry in remaining])
    return 0
