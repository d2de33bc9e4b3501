"""Client for the CoinGecko market data APIs."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import requests

from bdjuno.chain_types import TokenPrice

API_BASE_URL = "https://api.coingecko.com/api/v3"
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _parse_time(value: Any) -> datetime:
    if not value:
        return _ZERO_TIME
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class CoinInfo:
    """A single token supported by the APIs."""

    id: str
    symbol: str
    name: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CoinInfo":
        return cls(data.get("id") or "", data.get("symbol") or "", data.get("name") or "")


@dataclass(frozen=True)
class MarketTicker:
    """The current market data of a single token."""

    symbol: str
    current_price: float
    market_cap: float
    last_updated: datetime

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketTicker":
        return cls(
            symbol=data.get("symbol") or "",
            current_price=float(data.get("current_price") or 0),
            market_cap=float(data.get("market_cap") or 0),
            last_updated=_parse_time(data.get("last_updated")),
        )


def convert_coingecko_prices(prices: Iterable[MarketTicker]) -> list[TokenPrice]:
    """Turn market tickers into token prices, truncating the market cap."""
    return [
        TokenPrice(p.symbol, p.current_price, int(math.trunc(p.market_cap)), p.last_updated)
        for p in prices
    ]


def _query(endpoint: str) -> Any:
    response = requests.get(API_BASE_URL + endpoint, timeout=30)
    try:
        return json.loads(response.content)
    except ValueError as err:
        raise ValueError(f"error while unmarshaling response body: {err}") from err


def get_coins_list() -> list[CoinInfo]:
    """Fetch the list of all the supported tokens."""
    return [CoinInfo.from_dict(item) for item in _query("/coins/list")]


def get_tokens_prices(ids: Iterable[str]) -> list[TokenPrice]:
    """Fetch the prices of the tokens having the given ids."""
    data = _query(f"/coins/markets?vs_currency=usd&ids={','.join(ids)}")
    return convert_coingecko_prices(MarketTicker.from_dict(item) for item in data)