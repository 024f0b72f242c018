"""Domain models and event types."""

from .events import CycleEvent, EventType
from .models import (
    AccountSnapshot,
    AssetType,
    BlockReason,
    BrokerPosition,
    MergeStrategy,
    OpenOrder,
    OrderAccepted,
    OrderIntent,
    OrderReason,
    OrderRejected,
    OrderRequest,
    OrderResult,
    OrderSide,
    PositionDetails,
    Quote,
    RebalanceFrequency,
    RebalancePlan,
    RejectionKind,
    SignalDirection,
    TargetPosition,
    TradeSignal,
    TradingMode,
)

__all__ = [
    "AccountSnapshot",
    "AssetType",
    "BlockReason",
    "BrokerPosition",
    "MergeStrategy",
    "OpenOrder",
    "OrderAccepted",
    "OrderIntent",
    "OrderReason",
    "OrderRejected",
    "OrderRequest",
    "OrderResult",
    "OrderSide",
    "PositionDetails",
    "Quote",
    "RebalanceFrequency",
    "RebalancePlan",
    "RejectionKind",
    "SignalDirection",
    "TargetPosition",
    "CycleEvent",
    "EventType",
    "TradeSignal",
    "TradingMode",
]
