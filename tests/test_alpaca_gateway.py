"""Tests for the Alpaca gateway using an in-process fake session."""

from __future__ import annotations

import json
from typing import Any

import pytest
import requests

from politrade.brokers.alpaca import AlpacaGateway, build_gateway, classify_rejection
from politrade.config import LIVE_BASE_URL, PAPER_BASE_URL, GatewayConfig, Settings
from politrade.domain.models import (
    OrderAccepted,
    OrderRejected,
    OrderRequest,
    OrderSide,
    RejectionKind,
    TradingMode,
)
from politrade.errors import BrokerError, ConfigError, SafetyError


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = "" if payload is None else json.dumps(payload)
        self.headers: dict[str, str] = {}

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class FakeSession:
    def __init__(self, responses: list[FakeResponse | Exception]) -> None:
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _gateway(responses: list[FakeResponse | Exception]) -> tuple[AlpacaGateway, FakeSession]:
    gateway = AlpacaGateway(GatewayConfig(api_key="key", secret_key="secret"))
    session = FakeSession(responses)
    gateway.session = session  # type: ignore[assignment]
    return gateway, session


def test_live_mode_requires_confirmation_before_credentials() -> None:
    with pytest.raises(SafetyError):
        GatewayConfig(mode=TradingMode.LIVE)
    with pytest.raises(SafetyError):
        build_gateway(
            Settings(
                trading_mode=TradingMode.LIVE,
                live_api_key="live-key",
                live_secret_key="live-secret",
            )
        )


def test_gateway_targets_endpoint_and_credentials_for_mode() -> None:
    paper = build_gateway(Settings(paper_api_key="paper-key", paper_secret_key="paper-secret"))
    assert paper.base_url == PAPER_BASE_URL
    assert paper.session.headers["APCA-API-KEY-ID"] == "paper-key"

    live = build_gateway(
        Settings(
            trading_mode=TradingMode.LIVE,
            confirm_live_trading=True,
            paper_api_key="paper-key",
            paper_secret_key="paper-secret",
            live_api_key="live-key",
            live_secret_key="live-secret",
        )
    )
    assert live.base_url == LIVE_BASE_URL
    assert live.session.headers["APCA-API-KEY-ID"] == "live-key"


def test_missing_credentials_name_the_expected_variable() -> None:
    with pytest.raises(ConfigError, match="ALPACA_PAPER_API_KEY_ID"):
        build_gateway(Settings())


@pytest.mark.parametrize(
    ("status", "message", "expected"),
    [
        (422, "asset ABC is not fractionable", RejectionKind.NOT_FRACTIONABLE),
        (403, "fractional orders cannot be sold short", RejectionKind.NOT_FRACTIONABLE),
        (403, "insufficient buying power", RejectionKind.INSUFFICIENT_BUYING_POWER),
        (403, "market is closed", RejectionKind.MARKET_CLOSED),
        (422, "asset not found", RejectionKind.INVALID_SYMBOL),
        (429, "too many requests", RejectionKind.RATE_LIMITED),
        (504, "gateway timeout", RejectionKind.TIMEOUT),
        (500, "boom", RejectionKind.UNKNOWN),
    ],
)
def test_classify_rejection(status: int, message: str, expected: RejectionKind) -> None:
    assert classify_rejection(status, message) is expected


def test_place_order_sends_notional_at_cent_precision() -> None:
    gateway, session = _gateway(
        [FakeResponse(200, {"id": "oid-1", "symbol": "AAPL", "status": "accepted", "side": "buy"})]
    )

    result = gateway.place_order(OrderRequest(symbol="AAPL", side=OrderSide.BUY, notional=96.1))

    assert isinstance(result, OrderAccepted)
    assert result.order_id == "oid-1"
    body = session.requests[0]["json"]
    assert body["notional"] == "96.1"
    assert "qty" not in body
    assert body["type"] == "market"
    assert body["time_in_force"] == "day"


def test_place_order_rejection_is_returned_not_raised_or_retried() -> None:
    gateway, session = _gateway([FakeResponse(403, {"message": "insufficient buying power"})])

    result = gateway.place_order(OrderRequest(symbol="AAPL", side=OrderSide.BUY, qty=3.0))

    assert isinstance(result, OrderRejected)
    assert result.kind is RejectionKind.INSUFFICIENT_BUYING_POWER
    assert result.status_code == 403
    assert len(session.requests) == 1
    assert session.requests[0]["json"]["qty"] == "3"


def test_order_timeout_is_reported_once() -> None:
    gateway, session = _gateway([requests.Timeout("read timed out")])

    result = gateway.place_order(OrderRequest(symbol="AAPL", side=OrderSide.SELL, notional=10))

    assert isinstance(result, OrderRejected)
    assert result.kind is RejectionKind.TIMEOUT
    assert len(session.requests) == 1


def test_close_position_uses_delete() -> None:
    gateway, session = _gateway([FakeResponse(200, {"id": "oid-2", "status": "accepted"})])

    result = gateway.close_position("xyz")

    assert isinstance(result, OrderAccepted)
    assert session.requests[0]["method"] == "DELETE"
    assert session.requests[0]["url"].endswith("/v2/positions/XYZ")


def test_reads_retry_server_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("politrade.brokers.alpaca.sleep", lambda seconds: None)
    gateway, session = _gateway(
        [
            FakeResponse(503, {"message": "unavailable"}),
            FakeResponse(
                200,
                [
                    {"symbol": "AAPL", "qty": "10", "side": "long", "market_value": "1500"},
                    {"symbol": "XOM", "qty": "5", "side": "short", "market_value": "550"},
                ],
            ),
        ]
    )

    positions = gateway.get_positions()

    assert len(session.requests) == 2
    assert positions["AAPL"].qty == 10
    assert positions["XOM"].qty == -5
    assert positions["XOM"].market_value == -550


def test_cancel_failure_raises_broker_error() -> None:
    gateway, _ = _gateway([FakeResponse(422, {"message": "order is not cancelable"})])

    with pytest.raises(BrokerError, match="422"):
        gateway.cancel_order("oid-9")
