"""Diff target positions against the live account and submit converging orders."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Any

from politrade.brokers.base import BrokerageGateway
from politrade.domain.models import (
    AccountSnapshot,
    AssetType,
    BlockReason,
    BrokerPosition,
    OrderAccepted,
    OrderIntent,
    OrderReason,
    OrderRejected,
    OrderRequest,
    OrderResult,
    OrderSide,
    RebalancePlan,
    RejectionKind,
    TargetPosition,
)
from politrade.errors import BrokerError, DataUnavailableError, PolitradeError, ValidationError
from politrade.state.store import BlockedAssetStore

DUST_QTY_THRESHOLD = 1e-8
NEGLIGIBLE_DELTA = 1.00

# Rejections that say nothing about the asset itself.
TRANSIENT_REJECTIONS = frozenset(
    {
        RejectionKind.TIMEOUT,
        RejectionKind.MARKET_CLOSED,
        RejectionKind.RATE_LIMITED,
        RejectionKind.INSUFFICIENT_BUYING_POWER,
    }
)

OrderCallback = Callable[[OrderIntent, OrderResult], None]


def round_down_cents(value: float) -> float:
    """Round toward zero at cent precision so orders never exceed the delta."""
    quantized = Decimal(str(max(value, 0.0))).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    return float(quantized)


def whole_shares(notional: float, price: float) -> int:
    """Whole-share quantity that never spends more than ``notional``."""
    if price <= 0:
        return 0
    return int(math.floor(notional / price))


def is_dust(position: BrokerPosition) -> bool:
    return abs(position.qty) < DUST_QTY_THRESHOLD


@dataclass(frozen=True)
class ExecutedOrder:
    """Accepted order plus the share quantity when it was sized in whole shares."""

    intent: OrderIntent
    result: OrderAccepted
    fallback_qty: int | None = None

    def to_record(self) -> dict[str, Any]:
        record = self.intent.to_record()
        record["order_id"] = self.result.order_id
        record["status"] = self.result.status
        if self.fallback_qty is not None:
            record["fallback_qty"] = self.fallback_qty
        return record


@dataclass
class RebalanceReport:
    """What succeeded, what was skipped and why, and what is newly blocked."""

    plan: RebalancePlan
    plan_only: bool = False
    executed: list[ExecutedOrder] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    blocked: dict[str, BlockReason] = field(default_factory=dict)
    cancelled_orders: int = 0

    @property
    def executed_symbols(self) -> list[str]:
        return [order.intent.symbol for order in self.executed]

    def to_record(self) -> dict[str, Any]:
        return {
            "plan_only": self.plan_only,
            "planned": [intent.to_record() for intent in self.plan.intents],
            "executed": [order.to_record() for order in self.executed],
            "failed": dict(self.failed),
            "skipped": dict(self.skipped),
            "blocked": {symbol: reason.value for symbol, reason in self.blocked.items()},
            "cancelled_orders": self.cancelled_orders,
        }


class Rebalancer:
    """Converges the account toward a target portfolio, one order per symbol."""

    def __init__(
        self,
        gateway: BrokerageGateway,
        blocked_assets: BlockedAssetStore | None = None,
        negligible_delta: float = NEGLIGIBLE_DELTA,
        on_result: OrderCallback | None = None,
    ) -> None:
        self.gateway = gateway
        self.blocked_assets = blocked_assets
        self.negligible_delta = negligible_delta
        self.on_result = on_result
        self.logger = logging.getLogger("politrade.execution.rebalancer")

    def rebalance(
        self,
        targets: Sequence[TargetPosition],
        snapshot: AccountSnapshot | None = None,
        plan_only: bool = False,
        blocked: Iterable[str] = (),
    ) -> RebalanceReport:
        """Plan against a fresh snapshot, cancel stale orders, then execute.

        ``blocked`` adds to the symbols already in the blocked-asset store.
        """
        account = snapshot if snapshot is not None else self.gateway.get_account()
        blocked = set(blocked)
        if self.blocked_assets is not None:
            blocked |= self.blocked_assets.blocked_symbols()
        plan = self.plan(targets, account, blocked=blocked)
        if plan_only:
            self.logger.info("Plan-only mode: %s orders planned, none submitted", len(plan.intents))
            return RebalanceReport(plan=plan, plan_only=True, skipped=dict(plan.skipped))

        report = RebalanceReport(plan=plan, skipped=dict(plan.skipped))
        self._cancel_open_orders(plan.symbols, report)
        self.execute(plan, report)
        self.logger.info(
            "Rebalance complete: %s executed, %s failed, %s skipped, %s blocked",
            len(report.executed),
            len(report.failed),
            len(report.skipped),
            len(report.blocked),
        )
        return report

    def plan(
        self,
        targets: Sequence[TargetPosition],
        snapshot: AccountSnapshot,
        blocked: Iterable[str] = (),
    ) -> RebalancePlan:
        targets_by_symbol = self._index_targets(targets)
        blocked_symbols = set(blocked)
        closes: list[OrderIntent] = []
        sells: list[OrderIntent] = []
        buys: list[OrderIntent] = []
        skipped: dict[str, str] = {}
        dust_closed: set[str] = set()

        for symbol, position in snapshot.positions.items():
            if symbol in targets_by_symbol:
                if is_dust(position) and symbol not in blocked_symbols:
                    closes.append(self._close_intent(position))
                    dust_closed.add(symbol)
                continue
            if symbol in blocked_symbols:
                # Held but untradeable this cycle: leave the position alone.
                skipped[symbol] = "blocked"
                continue
            closes.append(self._close_intent(position))

        for symbol, target in targets_by_symbol.items():
            current = snapshot.positions.get(symbol)
            if symbol in blocked_symbols:
                skipped[symbol] = "blocked"
                continue
            intent = self._intent_for(target, current)
            if isinstance(intent, str):
                if symbol not in dust_closed:
                    skipped[symbol] = intent
                continue
            if intent.side is OrderSide.SELL:
                sells.append(intent)
            else:
                buys.append(intent)

        return RebalancePlan(intents=closes + sells + buys, skipped=skipped)

    def execute(
        self,
        plan: RebalancePlan,
        report: RebalanceReport | None = None,
    ) -> RebalanceReport:
        """Submit each intent in order. A failure never stops later symbols."""
        report = report if report is not None else RebalanceReport(plan=plan)
        for intent in plan.intents:
            if intent.symbol in report.failed:
                continue
            try:
                self._execute_intent(intent, report)
            except (PolitradeError, ValueError) as exc:
                self.logger.error("%s: %s", intent.symbol, exc)
                report.failed[intent.symbol] = str(exc)
            except Exception as exc:  # pragma: no cover - safety net
                self.logger.exception("%s: unexpected error: %s", intent.symbol, exc)
                report.failed[intent.symbol] = f"unexpected error: {exc}"
        return report

    def _execute_intent(self, intent: OrderIntent, report: RebalanceReport) -> None:
        if intent.is_dust_cleanup:
            # Dust has no positive quantity, so it must never become an OrderRequest.
            self.logger.info("%s: closing dust position via close_position", intent.symbol)
            result = self.gateway.close_position(intent.symbol)
            self._record(intent, result, report)
            return

        if intent.reason is OrderReason.FULL_CLOSE:
            self.logger.info("%s: closing full position", intent.symbol)
            result = self.gateway.close_position(intent.symbol)
            self._record(intent, result, report)
            return

        if intent.shares_only:
            self.logger.info("%s: short-side order, sizing in whole shares", intent.symbol)
            self._place_whole_shares(intent, report, fallback=False)
            return

        request = intent.to_request()
        self.logger.info(
            "%s: placing %s $%.2f (%s)",
            intent.symbol,
            intent.side.value,
            request.notional or 0.0,
            intent.reason.value,
        )
        result = self.gateway.place_order(request)
        if isinstance(result, OrderRejected) and result.kind is RejectionKind.NOT_FRACTIONABLE:
            self.logger.warning(
                "%s: not fractionable, falling back to whole shares", intent.symbol
            )
            self._place_whole_shares(intent, report, fallback=True)
            return
        self._record(intent, result, report)

    def _place_whole_shares(
        self,
        intent: OrderIntent,
        report: RebalanceReport,
        fallback: bool,
    ) -> None:
        """Submit ``floor(notional / price)`` shares or block the symbol.

        ``fallback`` marks a retry after a not-fractionable rejection; only then
        does a further asset-level rejection block the symbol as not fractionable.
        """
        notional = float(intent.notional or 0.0)
        price = self.discover_price(intent.symbol)
        if price is None:
            self.logger.warning(
                "%s: no price data available for a whole-share order", intent.symbol
            )
            self._fail_and_block(intent.symbol, BlockReason.NO_PRICE_DATA, report)
            return

        qty = whole_shares(notional, price)
        if qty <= 0:
            self.logger.warning(
                "%s: notional $%.2f too small to trade one share at $%.2f",
                intent.symbol,
                notional,
                price,
            )
            self._fail_and_block(intent.symbol, BlockReason.NOTIONAL_TOO_SMALL, report)
            return

        self.logger.info(
            "%s: %s whole shares at $%.2f (notional $%.2f)",
            intent.symbol,
            qty,
            price,
            notional,
        )
        request = OrderRequest(symbol=intent.symbol, side=intent.side, qty=float(qty))
        result = self.gateway.place_order(request)
        if isinstance(result, OrderRejected):
            if not fallback or result.kind in TRANSIENT_REJECTIONS:
                self._record(intent, result, report)
                return
            self._notify(intent, result)
            self.logger.error(
                "%s: whole-share order rejected (%s): %s",
                intent.symbol,
                result.kind.value,
                result.message,
            )
            self._fail_and_block(intent.symbol, BlockReason.NOT_FRACTIONABLE, report)
            return
        self._notify(intent, result)
        report.executed.append(ExecutedOrder(intent=intent, result=result, fallback_qty=qty))

    def discover_price(self, symbol: str) -> float | None:
        """Latest trade price, then quote midpoint."""
        try:
            price = self.gateway.get_latest_trade_price(symbol)
        except DataUnavailableError as exc:
            self.logger.warning("%s: latest trade lookup failed: %s", symbol, exc)
            price = None
        if price is not None and price > 0:
            return price

        try:
            quote = self.gateway.get_latest_quote(symbol)
        except DataUnavailableError as exc:
            self.logger.warning("%s: latest quote lookup failed: %s", symbol, exc)
            quote = None
        if quote is not None and quote.bid > 0 and quote.ask > 0:
            return quote.midpoint
        return None

    def _record(self, intent: OrderIntent, result: OrderResult, report: RebalanceReport) -> None:
        self._notify(intent, result)
        if isinstance(result, OrderAccepted):
            report.executed.append(ExecutedOrder(intent=intent, result=result))
            return
        self.logger.error(
            "%s: order rejected (%s): %s",
            intent.symbol,
            result.kind.value,
            result.message,
        )
        report.failed[intent.symbol] = f"{result.kind.value}: {result.message}"

    def _notify(self, intent: OrderIntent, result: OrderResult) -> None:
        if self.on_result is not None:
            self.on_result(intent, result)

    def _fail_and_block(
        self,
        symbol: str,
        reason: BlockReason,
        report: RebalanceReport,
    ) -> None:
        report.failed[symbol] = reason.value
        report.blocked[symbol] = reason
        if self.blocked_assets is not None:
            self.blocked_assets.block(symbol, reason)
        self.logger.warning("%s: blocked for cooldown (%s)", symbol, reason.value)

    def _cancel_open_orders(self, symbols: Sequence[str], report: RebalanceReport) -> None:
        wanted = list(dict.fromkeys(symbols))
        if not wanted:
            return
        try:
            open_orders = self.gateway.get_open_orders(symbols=wanted)
        except BrokerError as exc:
            self.logger.error("Could not list open orders: %s", exc)
            for symbol in wanted:
                report.failed[symbol] = f"open order check failed: {exc}"
            return

        for order in open_orders:
            if order.symbol not in wanted or not order.order_id:
                continue
            try:
                self.gateway.cancel_order(order.order_id)
            except BrokerError as exc:
                self.logger.error(
                    "%s: could not cancel open order id=%s: %s",
                    order.symbol,
                    order.order_id,
                    exc,
                )
                report.failed[order.symbol] = f"cancel failed: {exc}"
                continue
            report.cancelled_orders += 1
            self.logger.info(
                "%s: canceled open order id=%s side=%s",
                order.symbol,
                order.order_id,
                order.side.value,
            )

    def _intent_for(
        self,
        target: TargetPosition,
        current: BrokerPosition | None,
    ) -> OrderIntent | str:
        """Return the order intent for one target, or the reason none is needed."""
        symbol = target.symbol
        if current is not None and is_dust(current):
            # The dust itself is closed separately; size as if flat.
            current = None

        current_value = current.market_value if current is not None else 0.0
        if abs(target.target_value) < self.negligible_delta:
            if current is None:
                return "zero_target"
            return OrderIntent(
                symbol=symbol,
                side=OrderSide.SELL if current.qty > 0 else OrderSide.BUY,
                reason=OrderReason.FULL_CLOSE,
                current_value=current_value,
                target_value=target.target_value,
            )

        delta = target.target_value - current_value
        if abs(delta) < self.negligible_delta:
            return "within_threshold"
        notional = round_down_cents(abs(delta))

        if current is None:
            reason = OrderReason.NEW_POSITION
        elif abs(target.target_value) > abs(current_value) and (
            target.target_value * current_value > 0
        ):
            reason = OrderReason.INCREASE
        else:
            reason = OrderReason.DECREASE
        return OrderIntent(
            symbol=symbol,
            side=OrderSide.BUY if delta > 0 else OrderSide.SELL,
            reason=reason,
            notional=notional,
            current_value=current_value,
            target_value=target.target_value,
            # Short sales and short covers cannot be fractional.
            shares_only=target.target_value < 0 or current_value < 0,
        )

    @staticmethod
    def _close_intent(position: BrokerPosition) -> OrderIntent:
        return OrderIntent(
            symbol=position.symbol,
            side=OrderSide.SELL if position.qty >= 0 else OrderSide.BUY,
            reason=OrderReason.DUST_CLEANUP if is_dust(position) else OrderReason.FULL_CLOSE,
            current_value=position.market_value,
        )

    @staticmethod
    def _index_targets(targets: Sequence[TargetPosition]) -> dict[str, TargetPosition]:
        indexed: dict[str, TargetPosition] = {}
        for target in targets:
            if target.asset_type is not AssetType.STOCK:
                raise ValidationError(
                    f"{target.symbol}: asset type {target.asset_type} is not supported"
                )
            if target.symbol in indexed:
                raise ValidationError(f"{target.symbol}: duplicate target position")
            indexed[target.symbol] = target
        return indexed
