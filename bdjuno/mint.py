"""The mint module: minting parameters and the inflation value."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from bdjuno.chain_types import MintParams
from bdjuno.sources import MintSource
from bdjuno.utils import Scheduler, watch_method

log = logging.getLogger(__name__)

MODULE_NAME = "mint"
INFLATION_UPDATE_TIME = "00:00"


def _load_section(app_state: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    raw = app_state.get(name)
    if raw is None:
        raise ValueError(f"missing {name} genesis state")
    if isinstance(raw, (str, bytes, bytearray)):
        raw = json.loads(raw)
    if not isinstance(raw, Mapping):
        raise ValueError(f"invalid {name} genesis state")
    return raw


class MintModule:
    """Indexes the mint parameters and keeps the inflation up to date."""

    def __init__(self, source: MintSource, db: Any) -> None:
        self.source = source
        self.db = db

    def name(self) -> str:
        return MODULE_NAME

    def handle_genesis(self, doc: Any, app_state: Mapping[str, Any]) -> None:
        """Store the mint parameters found inside the genesis state."""
        log.debug("parsing genesis")
        try:
            state = _load_section(app_state, MODULE_NAME)
            params = dict(state.get("params") or {})
        except (ValueError, TypeError, AttributeError) as err:
            raise ValueError(f"error while reading mint genesis data: {err}") from err

        try:
            self.db.save_mint_params(MintParams(params, doc.initial_height))
        except Exception as err:
            raise RuntimeError(f"error while storing genesis mint params: {err}") from err

    def register_periodic_operations(self, scheduler: Scheduler) -> None:
        """Schedule the inflation update to run every day at midnight."""
        log.debug("setting up periodic tasks")
        scheduler.daily_at(INFLATION_UPDATE_TIME, lambda: watch_method(self.update_inflation))

    def update_params(self, height: int) -> None:
        """Read the mint parameters at height and store them."""
        log.debug("updating params at height %d", height)
        try:
            params = self.source.params(height)
        except Exception as err:
            raise RuntimeError(f"error while getting params: {err}") from err
        self.db.save_mint_params(MintParams(params, height))

    def update_inflation(self) -> None:
        """Read the latest inflation value and store it."""
        log.debug("getting inflation data")
        height = self.db.get_last_block_height()
        inflation = self.source.get_inflation(height)
        self.db.save_inflation(inflation, height)