"""Module storing configured tokens and keeping their prices up to date."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence, Union

import yaml

from bdjuno.chain_types import Token, TokenPrice, TokenUnit
from bdjuno.coingecko import get_tokens_prices
from bdjuno.utils import Scheduler, watch_method

log = logging.getLogger(__name__)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class PricefeedConfig:
    """The configuration of the pricefeed module."""

    tokens: tuple[Token, ...] = ()


def _parse_unit(data: Any) -> TokenUnit:
    return TokenUnit(
        denom=str(data.get("denom") or ""),
        exponent=int(data.get("exponent") or 0),
        aliases=tuple(data.get("aliases") or ()),
        price_id=str(data.get("price_id") or ""),
    )


def parse_config(data: Union[bytes, str]) -> Optional[PricefeedConfig]:
    """Read the "pricefeed" section of a YAML document, or None if absent."""
    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as err:
        raise ValueError(f"error while parsing pricefeed config: {err}") from err
    if not isinstance(document, dict):
        return None
    section = document.get("pricefeed")
    if not isinstance(section, dict):
        return None
    try:
        tokens = tuple(
            Token(str(token.get("name") or ""), tuple(_parse_unit(u) for u in token.get("units") or ()))
            for token in section.get("tokens") or ()
        )
    except (AttributeError, TypeError, ValueError) as err:
        raise ValueError(f"error while parsing pricefeed config: {err}") from err
    return PricefeedConfig(tokens)


class PricefeedModule:
    """Stores the configured tokens and periodically refreshes their prices."""

    def __init__(
        self,
        config: Optional[PricefeedConfig],
        db: Any,
        fetch_prices: Callable[[Sequence[str]], Sequence[TokenPrice]] = get_tokens_prices,
    ) -> None:
        self.config = config
        self.db = db
        self._fetch_prices = fetch_prices

    @classmethod
    def from_config_bytes(
        cls,
        data: Union[bytes, str],
        db: Any,
        fetch_prices: Optional[Callable[[Sequence[str]], Sequence[TokenPrice]]] = None,
    ) -> "PricefeedModule":
        """Build the module from the whole configuration document."""
        return cls(parse_config(data), db, fetch_prices or get_tokens_prices)

    def name(self) -> str:
        return "pricefeed"

    def run_additional_operations(self) -> None:
        """Check the configuration and store the configured tokens."""
        if self.config is None:
            raise ValueError("pricefeed config is not set but module is enabled")
        self._store_tokens(self.config)

    def _store_tokens(self, config: PricefeedConfig) -> None:
        log.debug("storing tokens")
        prices = []
        for token in config.tokens:
            try:
                self.db.save_token(token)
            except Exception as err:
                raise RuntimeError(f"error while saving token: {err}") from err
            prices.extend(
                TokenPrice(unit.denom, 0.0, 0, _ZERO_TIME) for unit in token.units if unit.price_id
            )
        try:
            self.db.save_tokens_prices(prices)
        except Exception as err:
            raise RuntimeError(f"error while storing token prices: {err}") from err

    def register_periodic_operations(self, scheduler: Scheduler) -> None:
        """Refresh prices every 2 minutes and the history every hour."""
        log.debug("setting up periodic tasks")
        scheduler.every(timedelta(minutes=2), lambda: watch_method(self.update_price))
        scheduler.every(timedelta(hours=1), lambda: watch_method(self.update_prices_history))

    def _get_token_prices(self) -> list[TokenPrice]:
        try:
            ids = list(self.db.get_tokens_price_id())
        except Exception as err:
            raise RuntimeError(f"error while getting tokens price id: {err}") from err
        if not ids:
            log.debug("no traded tokens price id found")
            return []
        try:
            return list(self._fetch_prices(ids))
        except Exception as err:
            raise RuntimeError(f"error while getting tokens prices: {err}") from err

    def update_price(self) -> None:
        """Fetch the latest prices and store them."""
        prices = self._get_token_prices()
        try:
            self.db.save_tokens_prices(prices)
        except Exception as err:
            raise RuntimeError(f"error while saving token prices: {err}") from err

    def update_prices_history(self) -> None:
        """Fetch the latest prices and store them in the history under one timestamp."""
        timestamp = datetime.now(timezone.utc)
        prices = [replace(price, timestamp=timestamp) for price in self._get_token_prices()]
        try:
            self.db.save_token_prices_history(prices)
        except Exception as err:
            raise RuntimeError(f"error while saving token prices history: {err}") from err