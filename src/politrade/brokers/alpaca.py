"""Alpaca brokerage gateway for the paper or live endpoint."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal
from email.utils import parsedate_to_datetime
from time import sleep
from typing import Any

import pandas as pd
import requests

from politrade.config import GatewayConfig, Settings
from politrade.data.alpaca_market_data import AlpacaMarketData
from politrade.data.base import MarketDataProvider
from politrade.domain.models import (
    AccountSnapshot,
    BrokerPosition,
    OpenOrder,
    OrderAccepted,
    OrderRejected,
    OrderRequest,
    OrderResult,
    OrderSide,
    Quote,
    RejectionKind,
    TradingMode,
)
from politrade.errors import BrokerError

logger = logging.getLogger("politrade.brokers.alpaca")

_REJECTION_PATTERNS: tuple[tuple[RejectionKind, tuple[str, ...]], ...] = (
    (
        RejectionKind.NOT_FRACTIONABLE,
        ("not fractionable", "fractional orders cannot be sold short"),
    ),
    (RejectionKind.INSUFFICIENT_BUYING_POWER, ("insufficient buying power", "insufficient qty")),
    (RejectionKind.MARKET_CLOSED, ("market is closed", "market closed", "market hours")),
    (
        RejectionKind.INVALID_SYMBOL,
        ("asset not found", "invalid symbol", "not tradable", "is not active", "could not find asset"),
    ),
)


def classify_rejection(status_code: int | None, message: str) -> RejectionKind:
    """Map an HTTP rejection onto a normalized kind."""
    text = message.lower()
    for kind, needles in _REJECTION_PATTERNS:
        if any(needle in text for needle in needles):
            return kind
    if status_code == 429:
        return RejectionKind.RATE_LIMITED
    if status_code in {408, 504}:
        return RejectionKind.TIMEOUT
    if status_code == 404:
        return RejectionKind.INVALID_SYMBOL
    return RejectionKind.UNKNOWN


class AlpacaGateway:
    """REST gateway with retrying reads and single-shot order writes."""

    def __init__(
        self,
        config: GatewayConfig,
        market_data: MarketDataProvider | None = None,
        max_retries: int = 4,
    ) -> None:
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.timeout = config.timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update(
            {
                "APCA-API-KEY-ID": config.api_key,
                "APCA-API-SECRET-KEY": config.secret_key,
                "Content-Type": "application/json",
            }
        )
        self.market_data = market_data or AlpacaMarketData(
            api_key=config.api_key,
            secret_key=config.secret_key,
            data_base_url=config.data_url,
            timeout=config.timeout,
        )

    @property
    def mode(self) -> TradingMode:
        return self.config.mode

    def get_account(self) -> AccountSnapshot:
        payload = self._request("GET", "/v2/account")
        equity = float(
            payload.get("equity", payload.get("portfolio_value", payload.get("cash", 0)))
        )
        cash = float(payload.get("cash", 0))
        buying_power = float(payload.get("buying_power", cash))
        return AccountSnapshot(
            equity=equity,
            cash=cash,
            buying_power=buying_power,
            positions=self.get_positions(),
        )

    def get_positions(self) -> dict[str, BrokerPosition]:
        payload = self._request("GET", "/v2/positions")
        positions: dict[str, BrokerPosition] = {}
        for item in payload if isinstance(payload, list) else []:
            symbol = str(item.get("symbol", "")).upper()
            side = str(item.get("side", "long")).lower()
            raw_qty = abs(self._parse_optional_float(item.get("qty")) or 0.0)
            signed_qty = -raw_qty if side == "short" else raw_qty
            market_value = self._parse_optional_float(item.get("market_value")) or 0.0
            if side == "short":
                market_value = -abs(market_value)
            positions[symbol] = BrokerPosition(
                symbol=symbol,
                qty=signed_qty,
                side=side,
                market_value=market_value,
            )
        return positions

    def get_open_orders(self, symbols: Sequence[str] | None = None) -> list[OpenOrder]:
        params: dict[str, str] = {"status": "open", "direction": "desc", "limit": "500"}
        if symbols:
            params["symbols"] = ",".join(symbols)
        payload = self._request("GET", "/v2/orders", params=params)
        orders: list[OpenOrder] = []
        for item in payload if isinstance(payload, list) else []:
            orders.append(
                OpenOrder(
                    order_id=str(item.get("id", "")),
                    symbol=str(item.get("symbol", "")).upper(),
                    side=self._to_order_side(str(item.get("side", "buy"))),
                    status=str(item.get("status", "")),
                    qty=self._parse_optional_float(item.get("qty")),
                    notional=self._parse_optional_float(item.get("notional")),
                )
            )
        return orders

    def cancel_order(self, order_id: str) -> None:
        path = f"/v2/orders/{order_id}"
        try:
            response = self.session.request(
                method="DELETE",
                url=f"{self.base_url}{path}",
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise BrokerError(f"Alpaca cancel request failed: {exc}") from exc
        if response.status_code >= 400:
            detail = response.text.strip() or "No response body."
            raise BrokerError(f"Alpaca API error {response.status_code} for {path}: {detail}")

    def place_order(self, request: OrderRequest) -> OrderResult:
        body: dict[str, Any] = {
            "symbol": request.symbol.upper(),
            "side": request.side.value,
            "type": request.order_type,
            "time_in_force": request.time_in_force,
        }
        if request.notional is not None:
            body["notional"] = self._format_decimal(request.notional, places=2)
        else:
            body["qty"] = self._format_decimal(float(request.qty or 0), places=9)
        if request.client_order_id:
            body["client_order_id"] = request.client_order_id
        logger.info("Placing order: %s", body)
        return self._submit("POST", "/v2/orders", request.symbol, json_body=body)

    def close_position(self, symbol: str) -> OrderResult:
        logger.info("Closing position: %s", symbol)
        return self._submit("DELETE", f"/v2/positions/{symbol.upper()}", symbol)

    def get_latest_trade_price(self, symbol: str) -> float | None:
        return self.market_data.get_latest_trade_price(symbol)

    def get_latest_quote(self, symbol: str) -> Quote | None:
        return self.market_data.get_latest_quote(symbol)

    def get_price_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> pd.DataFrame:
        return self.market_data.get_bars(symbol, start, end, timeframe)

    def get_price_histories(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> dict[str, pd.DataFrame]:
        return self.market_data.get_multi_bars(symbols, start, end, timeframe)

    def _submit(
        self,
        method: str,
        path: str,
        symbol: str,
        json_body: dict[str, Any] | None = None,
    ) -> OrderResult:
        # Order writes are never retried; a timeout is reported as a rejection.
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                json=json_body,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            return OrderRejected(symbol=symbol, kind=RejectionKind.TIMEOUT, message=str(exc))
        except requests.RequestException as exc:
            return OrderRejected(symbol=symbol, kind=RejectionKind.UNKNOWN, message=str(exc))

        if response.status_code >= 400:
            message = self._error_message(response)
            kind = classify_rejection(response.status_code, message)
            logger.warning(
                "%s: order rejected (%s, HTTP %s): %s",
                symbol,
                kind.value,
                response.status_code,
                message,
            )
            return OrderRejected(
                symbol=symbol,
                kind=kind,
                message=message,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        side_text = payload.get("side")
        return OrderAccepted(
            order_id=str(payload.get("id", "")),
            symbol=str(payload.get("symbol", symbol)).upper(),
            status=str(payload.get("status", "accepted")),
            side=self._to_order_side(str(side_text)) if side_text else None,
            qty=self._parse_optional_float(payload.get("qty")),
            notional=self._parse_optional_float(payload.get("notional")),
            filled_qty=self._parse_optional_float(payload.get("filled_qty")) or 0.0,
            filled_avg_price=self._parse_optional_float(payload.get("filled_avg_price")),
            submitted_at=payload.get("submitted_at"),
            raw=payload,
        )

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    json=json,
                    params=params,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self.max_retries:
                    break
                sleep(float(attempt))
                continue

            if response.status_code == 429:
                if attempt == self.max_retries:
                    detail = response.text.strip() or "Rate limit"
                    raise BrokerError(f"Alpaca API error 429 for {path}: {detail}")
                sleep(self._retry_after_seconds(response.headers, attempt))
                continue

            if response.status_code >= 500:
                if attempt == self.max_retries:
                    detail = response.text.strip() or "Server error"
                    raise BrokerError(
                        f"Alpaca API error {response.status_code} for {path}: {detail}"
                    )
                sleep(float(attempt))
                continue

            if response.status_code >= 400:
                detail = response.text.strip() or "Request rejected"
                raise BrokerError(f"Alpaca API error {response.status_code} for {path}: {detail}")

            try:
                return response.json()
            except ValueError as exc:
                raise BrokerError(f"Alpaca response for {path} was not valid JSON") from exc

        if last_error is not None:
            raise BrokerError(f"Alpaca request failed for {path}: {last_error}") from last_error
        raise BrokerError(f"Alpaca request failed for {path}")

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        text = response.text.strip()
        try:
            payload = json.loads(text) if text else {}
        except ValueError:
            return text or "Request rejected"
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return text or "Request rejected"

    @staticmethod
    def _format_decimal(value: float, places: int) -> str:
        quantum = Decimal(1).scaleb(-places)
        rounded = Decimal(str(value)).quantize(quantum)
        text = format(rounded, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text

    @staticmethod
    def _to_order_side(value: str) -> OrderSide:
        normalized = value.strip().lower()
        if normalized == "sell":
            return OrderSide.SELL
        return OrderSide.BUY

    @staticmethod
    def _retry_after_seconds(
        headers: requests.structures.CaseInsensitiveDict,
        attempt: int,
    ) -> float:
        retry_after = headers.get("Retry-After")
        if retry_after:
            try:
                return max(float(retry_after), 1.0)
            except ValueError:
                try:
                    dt = parsedate_to_datetime(retry_after)
                except (TypeError, ValueError):
                    dt = None
                if dt is not None:
                    if dt.tzinfo is None:
                        dt = dt.replace(tzinfo=UTC)
                    delta = (dt - datetime.now(tz=UTC)).total_seconds()
                    return max(delta, 1.0)
        return max(float(attempt), 1.0)

    @staticmethod
    def _parse_optional_float(value: Any) -> float | None:
        if value is None:
            return None
        if isinstance(value, (int, float)):
            return float(value)
        text = str(value).strip()
        if not text or text.lower() in {"none", "null"}:
            return None
        try:
            return float(text)
        except ValueError:
            return None


def build_gateway(settings: Settings) -> AlpacaGateway:
    """Build the gateway for the configured mode.

    ``GatewayConfig`` validation runs first, so a live request without
    confirmation or credentials never constructs a client.
    """
    config = GatewayConfig.from_settings(settings)
    if config.mode is TradingMode.LIVE:
        logger.warning("LIVE TRADING MODE ACTIVE")
    logger.info("Trading mode: %s | Endpoint: %s", config.mode.value.upper(), config.base_url)
    return AlpacaGateway(config)
