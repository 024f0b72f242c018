"""Tests for target-vs-account diffing and order submission."""

from __future__ import annotations

import pytest

from politrade.domain.models import (
    AccountSnapshot,
    BlockReason,
    BrokerPosition,
    OpenOrder,
    OrderAccepted,
    OrderReason,
    OrderRejected,
    OrderRequest,
    OrderResult,
    OrderSide,
    Quote,
    RejectionKind,
    TargetPosition,
)
from politrade.errors import BrokerError, ValidationError
from politrade.execution.rebalancer import Rebalancer, round_down_cents, whole_shares
from politrade.state.store import InMemoryBlockedAssetStore


class StubGateway:
    def __init__(
        self,
        positions: dict[str, BrokerPosition] | None = None,
        trade_prices: dict[str, float] | None = None,
        quotes: dict[str, Quote] | None = None,
        non_fractionable: set[str] | None = None,
        rejections: dict[str, RejectionKind] | None = None,
        open_orders: list[OpenOrder] | None = None,
        fail_cancel: bool = False,
    ) -> None:
        self.positions = positions or {}
        self.trade_prices = trade_prices or {}
        self.quotes = quotes or {}
        self.non_fractionable = non_fractionable or set()
        self.rejections = rejections or {}
        self.open_orders = open_orders or []
        self.fail_cancel = fail_cancel
        self.calls: list[tuple] = []

    def get_account(self) -> AccountSnapshot:
        return AccountSnapshot(equity=100_000, cash=100_000, positions=dict(self.positions))

    def get_open_orders(self, symbols: list[str] | None = None) -> list[OpenOrder]:
        self.calls.append(("open_orders", tuple(symbols or ())))
        return list(self.open_orders)

    def cancel_order(self, order_id: str) -> None:
        self.calls.append(("cancel", order_id))
        if self.fail_cancel:
            raise BrokerError("cancel refused")

    def place_order(self, request: OrderRequest) -> OrderResult:
        self.calls.append(("place", request.symbol, request.notional, request.qty))
        if request.symbol in self.rejections:
            return OrderRejected(request.symbol, self.rejections[request.symbol], "rejected")
        if request.notional is not None and request.symbol in self.non_fractionable:
            return OrderRejected(
                request.symbol, RejectionKind.NOT_FRACTIONABLE, "asset is not fractionable"
            )
        return OrderAccepted(
            order_id=f"oid-{request.symbol}",
            symbol=request.symbol,
            status="accepted",
            qty=request.qty,
            notional=request.notional,
        )

    def close_position(self, symbol: str) -> OrderResult:
        self.calls.append(("close", symbol))
        return OrderAccepted(order_id=f"close-{symbol}", symbol=symbol, status="accepted")

    def get_latest_trade_price(self, symbol: str) -> float | None:
        return self.trade_prices.get(symbol)

    def get_latest_quote(self, symbol: str) -> Quote | None:
        return self.quotes.get(symbol)

    def placed(self) -> list[tuple]:
        return [call for call in self.calls if call[0] == "place"]


def _target(symbol: str, value: float) -> TargetPosition:
    return TargetPosition(symbol=symbol, target_value=value)


def test_round_down_and_whole_shares_never_overspend() -> None:
    assert round_down_cents(10.019) == 10.01
    assert round_down_cents(42857.142857) == 42857.14
    assert whole_shares(96.10, 32.0) == 3
    assert whole_shares(50.0, 60.0) == 0


def test_plan_orders_closes_then_sells_then_buys() -> None:
    snapshot = AccountSnapshot(
        equity=100_000,
        cash=50_000,
        positions={
            "OLD": BrokerPosition("OLD", qty=10, market_value=1_000),
            "MSFT": BrokerPosition("MSFT", qty=10, market_value=5_000),
        },
    )
    rebalancer = Rebalancer(StubGateway())

    plan = rebalancer.plan([_target("AAPL", 3_000), _target("MSFT", 2_000)], snapshot)

    assert plan.symbols == ["OLD", "MSFT", "AAPL"]
    assert [intent.reason for intent in plan.intents] == [
        OrderReason.FULL_CLOSE,
        OrderReason.DECREASE,
        OrderReason.NEW_POSITION,
    ]
    assert plan.intents[1].side is OrderSide.SELL
    assert plan.intents[1].notional == 3_000.0


def test_plan_skips_negligible_deltas_and_blocked_symbols() -> None:
    snapshot = AccountSnapshot(
        equity=100_000,
        cash=50_000,
        positions={"AAPL": BrokerPosition("AAPL", qty=5, market_value=1_000.50)},
    )
    rebalancer = Rebalancer(StubGateway())

    plan = rebalancer.plan(
        [_target("AAPL", 1_000), _target("NVDA", 4_000), _target("NONE", 0.0)],
        snapshot,
        blocked={"NVDA"},
    )

    assert plan.intents == []
    assert plan.skipped == {"AAPL": "within_threshold", "NVDA": "blocked", "NONE": "zero_target"}


def test_plan_rejects_duplicate_and_unsupported_targets() -> None:
    rebalancer = Rebalancer(StubGateway())
    snapshot = AccountSnapshot(equity=1, cash=1)

    with pytest.raises(ValidationError, match="duplicate"):
        rebalancer.plan([_target("AAPL", 1_000), _target("AAPL", 2_000)], snapshot)
    with pytest.raises(ValidationError, match="not supported"):
        rebalancer.plan(
            [TargetPosition("AAPL", 1_000, asset_type="crypto")],  # type: ignore[arg-type]
            snapshot,
        )


def test_non_fractionable_falls_back_to_whole_shares() -> None:
    gateway = StubGateway(trade_prices={"ABC": 32.0}, non_fractionable={"ABC"})
    rebalancer = Rebalancer(gateway)

    report = rebalancer.rebalance([_target("ABC", 96.10)])

    assert gateway.placed() == [("place", "ABC", 96.1, None), ("place", "ABC", None, 3.0)]
    assert report.executed[0].fallback_qty == 3
    assert report.failed == {}


def test_notional_below_one_share_is_blocked_without_retry() -> None:
    gateway = StubGateway(trade_prices={"ABC": 60.0}, non_fractionable={"ABC"})
    store = InMemoryBlockedAssetStore()
    rebalancer = Rebalancer(gateway, blocked_assets=store)

    report = rebalancer.rebalance([_target("ABC", 50.0)])

    assert len(gateway.placed()) == 1
    assert report.blocked == {"ABC": BlockReason.NOTIONAL_TOO_SMALL}
    assert "ABC" in report.failed
    assert store.is_blocked("ABC")


def test_missing_price_blocks_symbol() -> None:
    gateway = StubGateway(non_fractionable={"ABC"})
    store = InMemoryBlockedAssetStore()

    report = Rebalancer(gateway, blocked_assets=store).rebalance([_target("ABC", 500.0)])

    assert report.blocked == {"ABC": BlockReason.NO_PRICE_DATA}
    assert store.get("ABC").reason is BlockReason.NO_PRICE_DATA


def test_rejected_whole_share_retry_blocks_as_not_fractionable() -> None:
    gateway = StubGateway(trade_prices={"ABC": 10.0}, non_fractionable={"ABC"})
    original_place = gateway.place_order

    def place_order(request: OrderRequest) -> OrderResult:
        if request.qty is not None:
            gateway.calls.append(("place", request.symbol, None, request.qty))
            return OrderRejected(request.symbol, RejectionKind.UNKNOWN, "still rejected")
        return original_place(request)

    gateway.place_order = place_order  # type: ignore[method-assign]

    report = Rebalancer(gateway).rebalance([_target("ABC", 500.0)])

    assert report.blocked == {"ABC": BlockReason.NOT_FRACTIONABLE}
    assert report.executed == []


def test_transient_rejection_of_whole_share_retry_does_not_block() -> None:
    gateway = StubGateway(trade_prices={"ABC": 10.0}, non_fractionable={"ABC"})
    store = InMemoryBlockedAssetStore()
    original_place = gateway.place_order

    def place_order(request: OrderRequest) -> OrderResult:
        if request.qty is not None:
            gateway.calls.append(("place", request.symbol, None, request.qty))
            return OrderRejected(request.symbol, RejectionKind.MARKET_CLOSED, "market is closed")
        return original_place(request)

    gateway.place_order = place_order  # type: ignore[method-assign]

    report = Rebalancer(gateway, blocked_assets=store).rebalance([_target("ABC", 500.0)])

    assert report.blocked == {}
    assert report.failed == {"ABC": "market_closed: market is closed"}
    assert not store.is_blocked("ABC")


def test_opening_a_short_uses_whole_shares() -> None:
    gateway = StubGateway(trade_prices={"XOM": 50.0})

    report = Rebalancer(gateway).rebalance([_target("XOM", -15_000)])

    intent = report.plan.intents[0]
    assert intent.side is OrderSide.SELL
    assert intent.shares_only
    assert gateway.placed() == [("place", "XOM", None, 300.0)]
    assert report.executed[0].fallback_qty == 300


def test_covering_a_short_uses_whole_shares() -> None:
    gateway = StubGateway(
        positions={"XOM": BrokerPosition("XOM", qty=-300, market_value=-15_000)},
        trade_prices={"XOM": 40.0},
    )

    report = Rebalancer(gateway).rebalance([_target("XOM", -5_000)])

    intent = report.plan.intents[0]
    assert intent.side is OrderSide.BUY
    assert intent.reason is OrderReason.DECREASE
    assert intent.shares_only
    assert gateway.placed() == [("place", "XOM", None, 250.0)]


def test_short_without_price_is_blocked_not_submitted() -> None:
    gateway = StubGateway()
    store = InMemoryBlockedAssetStore()

    report = Rebalancer(gateway, blocked_assets=store).rebalance([_target("XOM", -15_000)])

    assert gateway.placed() == []
    assert report.blocked == {"XOM": BlockReason.NO_PRICE_DATA}
    assert store.is_blocked("XOM")


def test_long_orders_stay_notional() -> None:
    gateway = StubGateway(trade_prices={"AAPL": 50.0})

    report = Rebalancer(gateway).rebalance([_target("AAPL", 15_000)])

    assert not report.plan.intents[0].shares_only
    assert gateway.placed() == [("place", "AAPL", 15_000.0, None)]


def test_held_blocked_symbol_without_target_is_left_alone() -> None:
    gateway = StubGateway(
        positions={
            "AAPL": BrokerPosition("AAPL", qty=100, market_value=20_000),
            "OLD": BrokerPosition("OLD", qty=10, market_value=1_000),
        },
    )
    store = InMemoryBlockedAssetStore()
    store.block("AAPL", BlockReason.NOT_FRACTIONABLE)

    report = Rebalancer(gateway, blocked_assets=store).rebalance([_target("MSFT", 5_000)])

    assert ("close", "AAPL") not in gateway.calls
    assert ("close", "OLD") in gateway.calls
    assert report.skipped == {"AAPL": "blocked"}


def test_price_discovery_falls_back_to_quote_midpoint() -> None:
    gateway = StubGateway(quotes={"ABC": Quote(bid=21.0, ask=22.0)})

    assert Rebalancer(gateway).discover_price("ABC") == pytest.approx(21.5)


def test_dust_position_is_closed_without_order_request() -> None:
    gateway = StubGateway(
        positions={"XYZ": BrokerPosition("XYZ", qty=3e-9, market_value=0.0)},
    )

    report = Rebalancer(gateway).rebalance([])

    assert gateway.calls[-1] == ("close", "XYZ")
    assert gateway.placed() == []
    assert report.executed[0].intent.reason is OrderReason.DUST_CLEANUP
    assert report.failed == {}


def test_dust_position_with_target_is_closed_before_buying() -> None:
    gateway = StubGateway(
        positions={"XYZ": BrokerPosition("XYZ", qty=3e-9, market_value=0.0)},
    )

    report = Rebalancer(gateway).rebalance([_target("XYZ", 5_000)])

    assert [intent.reason for intent in report.plan.intents] == [
        OrderReason.DUST_CLEANUP,
        OrderReason.NEW_POSITION,
    ]
    assert report.plan.intents[1].notional == 5_000.0
    assert gateway.calls[1:] == [("close", "XYZ"), ("place", "XYZ", 5_000.0, None)]
    assert report.skipped == {}
    assert report.failed == {}


def test_open_orders_are_cancelled_before_submission() -> None:
    gateway = StubGateway(open_orders=[OpenOrder("o-1", "AAPL", OrderSide.BUY, "new")])

    report = Rebalancer(gateway).rebalance([_target("AAPL", 5_000)])

    kinds = [call[0] for call in gateway.calls]
    assert kinds == ["open_orders", "cancel", "place"]
    assert report.cancelled_orders == 1


def test_failed_cancel_skips_symbol_but_not_others() -> None:
    gateway = StubGateway(
        open_orders=[OpenOrder("o-1", "AAPL", OrderSide.BUY, "new")],
        fail_cancel=True,
    )

    report = Rebalancer(gateway).rebalance([_target("AAPL", 5_000), _target("MSFT", 3_000)])

    assert [call[1] for call in gateway.placed()] == ["MSFT"]
    assert report.failed["AAPL"].startswith("cancel failed")


def test_rejection_does_not_stop_remaining_symbols() -> None:
    results: list[tuple[str, OrderResult]] = []
    gateway = StubGateway(rejections={"AAPL": RejectionKind.INSUFFICIENT_BUYING_POWER})
    rebalancer = Rebalancer(
        gateway,
        on_result=lambda intent, result: results.append((intent.symbol, result)),
    )

    report = rebalancer.rebalance([_target("AAPL", 5_000), _target("MSFT", 3_000)])

    assert report.executed_symbols == ["MSFT"]
    assert report.failed["AAPL"].startswith("insufficient_buying_power")
    assert [symbol for symbol, _ in results] == ["AAPL", "MSFT"]


def test_plan_only_submits_nothing() -> None:
    gateway = StubGateway(positions={"OLD": BrokerPosition("OLD", qty=1, market_value=100)})

    report = Rebalancer(gateway).rebalance([_target("AAPL", 5_000)], plan_only=True)

    assert report.plan_only
    assert report.plan.symbols == ["OLD", "AAPL"]
    assert gateway.calls == []
