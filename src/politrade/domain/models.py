"""Core trading domain models."""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from politrade.errors import InvalidSignalError, ValidationError

TICKER_PATTERN = re.compile(r"^[A-Z]{1,5}$")


class TradingMode(StrEnum):
    """Brokerage environment selector."""

    PAPER = "paper"
    LIVE = "live"


class OrderSide(StrEnum):
    """Supported order directions."""

    BUY = "buy"
    SELL = "sell"


class SignalDirection(StrEnum):
    """Direction implied by an observed trade signal."""

    BUY = "buy"
    SELL = "sell"


class AssetType(StrEnum):
    """Tradable asset classes."""

    STOCK = "stock"


class MergeStrategy(StrEnum):
    """Rules for combining same-symbol positions from several strategies."""

    ADDITIVE = "additive"
    MAX = "max"
    AVERAGE = "average"


class RebalanceFrequency(StrEnum):
    """Advisory rebalance cadence for a strategy."""

    DAILY = "daily"
    QUARTERLY = "quarterly"


class OrderReason(StrEnum):
    """Why the rebalancer generated an order."""

    NEW_POSITION = "new_position"
    INCREASE = "increase"
    DECREASE = "decrease"
    FULL_CLOSE = "full_close"
    DUST_CLEANUP = "dust_cleanup"


class RejectionKind(StrEnum):
    """Normalized brokerage rejection categories."""

    NOT_FRACTIONABLE = "not_fractionable"
    INSUFFICIENT_BUYING_POWER = "insufficient_buying_power"
    MARKET_CLOSED = "market_closed"
    INVALID_SYMBOL = "invalid_symbol"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class BlockReason(StrEnum):
    """Why a symbol was flagged untradeable for a cooldown period."""

    NO_PRICE_DATA = "no_price_data"
    NOTIONAL_TOO_SMALL = "notional_too_small"
    NOT_FRACTIONABLE = "not_fractionable"


def is_valid_ticker(symbol: str) -> bool:
    """Return true when the symbol matches the strict ticker pattern."""
    return isinstance(symbol, str) and TICKER_PATTERN.fullmatch(symbol) is not None


@dataclass(frozen=True)
class TradeSignal:
    """One observed event from a data source that might justify a trade.

    The symbol is stored exactly as received. Callers check
    ``has_valid_symbol`` and drop failing signals instead of normalizing them.
    """

    symbol: str
    direction: SignalDirection
    strength: float
    source_strategy: str
    observed_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    provenance: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.direction, SignalDirection):
            raise InvalidSignalError(f"direction must be a SignalDirection, got {self.direction!r}")
        if not math.isfinite(float(self.strength)):
            raise InvalidSignalError(f"{self.symbol}: strength must be finite")

    @property
    def has_valid_symbol(self) -> bool:
        return is_valid_ticker(self.symbol)

    @property
    def signed_strength(self) -> float:
        """Strength magnitude carrying the direction's sign."""
        magnitude = abs(float(self.strength))
        return magnitude if self.direction is SignalDirection.BUY else -magnitude


@dataclass(frozen=True)
class PositionDetails:
    """Provenance and risk metadata attached to a target position."""

    source: str | None = None
    sources: tuple[str, ...] = ()
    consensus_count: int = 1
    original_values: tuple[float, ...] = ()
    pre_cap_value: float | None = None
    was_capped: bool = False
    merge_strategy: MergeStrategy | None = None
    net_score: float | None = None
    atr: float | None = None
    atr_fallback: bool = False
    shares: int | None = None
    risk_target_pct: float | None = None
    implied_stop: float | None = None
    allocation_pct: float | None = None

    def to_record(self) -> dict[str, Any]:
        """Convert details to a JSON-friendly dict without empty fields."""
        record = asdict(self)
        record["sources"] = list(self.sources)
        record["original_values"] = list(self.original_values)
        if self.merge_strategy is not None:
            record["merge_strategy"] = self.merge_strategy.value
        return {key: value for key, value in record.items() if value not in (None, [], ())}


@dataclass(frozen=True)
class TargetPosition:
    """Desired dollar exposure in one symbol. Positive is long, negative short."""

    symbol: str
    target_value: float
    asset_type: AssetType = AssetType.STOCK
    details: PositionDetails = field(default_factory=PositionDetails)

    @property
    def is_long(self) -> bool:
        return self.target_value > 0

    @property
    def is_short(self) -> bool:
        return self.target_value < 0

    def with_details(self, **changes: Any) -> TargetPosition:
        """Return a copy with updated details; positions are never mutated."""
        return replace(self, details=replace(self.details, **changes))

    def to_record(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "asset_type": self.asset_type.value,
            "target_value": round(self.target_value, 2),
            "details": self.details.to_record(),
        }


@dataclass(frozen=True)
class BrokerPosition:
    """Live brokerage holding. ``qty`` and ``market_value`` are signed."""

    symbol: str
    qty: float
    side: str = "long"
    market_value: float = 0.0


@dataclass(frozen=True)
class AccountSnapshot:
    """Point-in-time account view read once per rebalancing cycle."""

    equity: float
    cash: float
    buying_power: float = 0.0
    positions: dict[str, BrokerPosition] = field(default_factory=dict)


@dataclass(frozen=True)
class OpenOrder:
    """Unfilled order still working at the broker."""

    order_id: str
    symbol: str
    side: OrderSide
    status: str
    qty: float | None = None
    notional: float | None = None


@dataclass(frozen=True)
class Quote:
    """Latest bid/ask pair."""

    bid: float
    ask: float

    @property
    def midpoint(self) -> float:
        return (self.bid + self.ask) / 2.0


@dataclass(frozen=True)
class OrderRequest:
    """Validated market order request sent to the broker."""

    symbol: str
    side: OrderSide
    notional: float | None = None
    qty: float | None = None
    order_type: str = "market"
    time_in_force: str = "day"
    client_order_id: str | None = None

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ValidationError("symbol is required")
        if self.notional is None and self.qty is None:
            raise ValidationError(f"{self.symbol}: either notional or qty must be provided")
        if self.notional is not None and self.qty is not None:
            raise ValidationError(f"{self.symbol}: cannot specify both notional and qty")
        if self.qty is not None and self.qty <= 0:
            raise ValidationError(f"{self.symbol}: quantity must be positive")
        if self.notional is not None and self.notional <= 0:
            raise ValidationError(f"{self.symbol}: notional must be positive")


@dataclass(frozen=True)
class OrderIntent:
    """One entry of a rebalance plan."""

    symbol: str
    side: OrderSide
    reason: OrderReason
    notional: float | None = None
    qty: float | None = None
    current_value: float = 0.0
    target_value: float = 0.0
    shares_only: bool = False

    @property
    def is_dust_cleanup(self) -> bool:
        return self.reason is OrderReason.DUST_CLEANUP

    def to_request(self, client_order_id: str | None = None) -> OrderRequest:
        return OrderRequest(
            symbol=self.symbol,
            side=self.side,
            notional=self.notional,
            qty=self.qty,
            client_order_id=client_order_id,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "reason": self.reason.value,
            "notional": self.notional,
            "qty": self.qty,
            "shares_only": self.shares_only,
            "current_value": round(self.current_value, 2),
            "target_value": round(self.target_value, 2),
        }


@dataclass(frozen=True)
class RebalancePlan:
    """Ordered order intents plus symbols deliberately left alone."""

    intents: list[OrderIntent] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)

    @property
    def symbols(self) -> list[str]:
        return [intent.symbol for intent in self.intents]


@dataclass(frozen=True)
class OrderAccepted:
    """Order accepted by the broker."""

    order_id: str
    symbol: str
    status: str
    side: OrderSide | None = None
    qty: float | None = None
    notional: float | None = None
    filled_qty: float = 0.0
    filled_avg_price: float | None = None
    submitted_at: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrderRejected:
    """Order refused by the broker, tagged with a normalized kind."""

    symbol: str
    kind: RejectionKind
    message: str = ""
    status_code: int | None = None


OrderResult = OrderAccepted | OrderRejected
