"""Alpaca market data provider."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from time import sleep
from typing import Any

import pandas as pd
import requests

from politrade.domain.models import Quote
from politrade.errors import DataUnavailableError

BAR_COLUMNS = ["open", "high", "low", "close", "volume"]
MULTI_BARS_CHUNK = 100

logger = logging.getLogger("politrade.data.alpaca")


class AlpacaMarketData:
    """Fetch latest trades, quotes and OHLCV bars from Alpaca's data API."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        data_base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        feed: str = "iex",
        limit: int = 10000,
    ) -> None:
        self.data_base_url = data_base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.feed = feed
        self.limit = limit
        self.session = requests.Session()
        self.session.headers.update(
            {
                "APCA-API-KEY-ID": api_key,
                "APCA-API-SECRET-KEY": secret_key,
            }
        )

    def get_latest_trade_price(self, symbol: str) -> float | None:
        payload = self._request_with_retry(
            path=f"/v2/stocks/{symbol}/trades/latest",
            params={"feed": self.feed},
            allow_missing=True,
        )
        if not payload:
            return None
        trade = payload.get("trade") or {}
        price = _parse_positive_float(trade.get("p"))
        if price is None:
            logger.debug("%s: latest trade carried no price", symbol)
        return price

    def get_latest_quote(self, symbol: str) -> Quote | None:
        payload = self._request_with_retry(
            path=f"/v2/stocks/{symbol}/quotes/latest",
            params={"feed": self.feed},
            allow_missing=True,
        )
        if not payload:
            return None
        quote = payload.get("quote") or {}
        bid = _parse_positive_float(quote.get("bp"))
        ask = _parse_positive_float(quote.get("ap"))
        if bid is None or ask is None:
            return None
        return Quote(bid=bid, ask=ask)

    def get_bars(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> pd.DataFrame:
        payload = self._request_with_retry(
            path=f"/v2/stocks/{symbol}/bars",
            params={
                "timeframe": timeframe,
                "start": start.isoformat(),
                "end": end.isoformat(),
                "limit": str(self.limit),
                "adjustment": "raw",
                "feed": self.feed,
                "sort": "asc",
            },
            allow_missing=True,
        )
        bars = (payload or {}).get("bars") or []
        return self._bars_to_frame(symbol, bars if isinstance(bars, list) else [])

    def get_multi_bars(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: str = "1Day",
    ) -> dict[str, pd.DataFrame]:
        collected: dict[str, list[dict]] = {symbol: [] for symbol in symbols}
        unique = list(dict.fromkeys(symbols))
        for offset in range(0, len(unique), MULTI_BARS_CHUNK):
            chunk = unique[offset : offset + MULTI_BARS_CHUNK]
            page_token: str | None = None
            while True:
                params = {
                    "symbols": ",".join(chunk),
                    "timeframe": timeframe,
                    "start": start.isoformat(),
                    "end": end.isoformat(),
                    "limit": str(self.limit),
                    "adjustment": "raw",
                    "feed": self.feed,
                    "sort": "asc",
                }
                if page_token:
                    params["page_token"] = page_token
                payload = self._request_with_retry(path="/v2/stocks/bars", params=params) or {}
                raw = payload.get("bars") or {}
                if isinstance(raw, dict):
                    for symbol, bars in raw.items():
                        if isinstance(bars, list):
                            collected.setdefault(symbol, []).extend(bars)
                page_token = payload.get("next_page_token")
                if not page_token:
                    break
        return {symbol: self._bars_to_frame(symbol, bars) for symbol, bars in collected.items()}

    def _request_with_retry(
        self,
        path: str,
        params: dict[str, str],
        allow_missing: bool = False,
    ) -> dict[str, Any] | None:
        url = f"{self.data_base_url}{path}"
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as exc:
                if attempt == self.max_retries:
                    raise DataUnavailableError(f"Alpaca data request failed: {exc}") from exc
                sleep(float(attempt))
                continue
            if response.status_code == 429:
                if attempt == self.max_retries:
                    raise DataUnavailableError("Alpaca data rate limit exceeded")
                sleep(float(attempt))
                continue
            if response.status_code >= 500:
                if attempt == self.max_retries:
                    raise DataUnavailableError(
                        f"Alpaca data server error: {response.status_code}"
                    )
                sleep(float(attempt))
                continue
            if allow_missing and response.status_code in {404, 422}:
                return None
            if response.status_code >= 400:
                detail = response.text.strip() or "No response body"
                raise DataUnavailableError(
                    f"Alpaca data error {response.status_code} for {path}: {detail}"
                )
            try:
                return response.json()
            except ValueError as exc:
                raise DataUnavailableError(
                    f"Alpaca data response for {path} was not valid JSON"
                ) from exc
        raise DataUnavailableError("Alpaca data request exhausted retries")

    @staticmethod
    def _bars_to_frame(symbol: str, bars: list[dict]) -> pd.DataFrame:
        if not bars:
            return pd.DataFrame(columns=BAR_COLUMNS)
        frame = pd.DataFrame(bars)
        required = {"o", "h", "l", "c", "v", "t"}
        if not required.issubset(frame.columns):
            raise DataUnavailableError(f"{symbol}: bar payload missing OHLCV fields")
        frame = frame.rename(
            columns={
                "o": "open",
                "h": "high",
                "l": "low",
                "c": "close",
                "v": "volume",
                "t": "time",
            }
        )
        frame.index = pd.to_datetime(frame["time"], utc=True)
        frame = frame.sort_index()
        frame = frame[BAR_COLUMNS]
        return frame.apply(pd.to_numeric, errors="coerce").dropna()


def _parse_positive_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None
