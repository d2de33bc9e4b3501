"""The slashing module: slashing parameters and validators signing infos."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Mapping

from bdjuno.chain_types import SlashingParams, ValidatorSigningInfo
from bdjuno.sources import SlashingSource

log = logging.getLogger(__name__)

MODULE_NAME = "slashing"

_TIME = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    match = _TIME.match(str(value))
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    date, clock, fraction, zone = match.groups()
    micros = (fraction or "").ljust(6, "0")[:6]
    offset = "+00:00" if zone in ("Z", "z") else zone
    return datetime.fromisoformat(f"{date}T{clock}.{micros}{offset}")


def _get(value: Any, name: str, default: Any = None) -> Any:
    if isinstance(value, Mapping):
        return value.get(name, default)
    return getattr(value, name, default)


def _signing_info(info: Any, height: int) -> ValidatorSigningInfo:
    return ValidatorSigningInfo(
        str(_get(info, "address", "") or ""),
        int(_get(info, "start_height", 0) or 0),
        int(_get(info, "index_offset", 0) or 0),
        _parse_time(_get(info, "jailed_until", "1970-01-01T00:00:00Z") or "1970-01-01T00:00:00Z"),
        bool(_get(info, "tombstoned", False)),
        int(_get(info, "missed_blocks_counter", 0) or 0),
        height,
    )


def _load_section(app_state: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    raw = app_state.get(name)
    if raw is None:
        raise ValueError(f"missing {name} genesis state")
    if isinstance(raw, (str, bytes, bytearray)):
        raw = json.loads(raw)
    if not isinstance(raw, Mapping):
        raise ValueError(f"invalid {name} genesis state")
    return raw


class SlashingModule:
    """Indexes the slashing parameters and the validators signing infos."""

    def __init__(self, source: SlashingSource, db: Any) -> None:
        self.source = source
        self.db = db

    def name(self) -> str:
        return MODULE_NAME

    def handle_block(self, height: int) -> None:
        """Store the signing infos of every validator at height."""
        try:
            self._update_signing_info(height)
        except Exception as err:
            raise RuntimeError(f"error while updating signing info: {err}") from err

    def _update_signing_info(self, height: int) -> None:
        log.debug("updating signing info at height %d", height)
        infos = [_signing_info(info, height) for info in self.source.get_signing_infos(height) or ()]
        self.db.save_validators_signing_infos(infos)

    def handle_genesis(self, doc: Any, app_state: Mapping[str, Any]) -> None:
        """Store the slashing parameters found inside the genesis state."""
        log.debug("parsing genesis")
        try:
            state = _load_section(app_state, MODULE_NAME)
            params = dict(state.get("params") or {})
        except (ValueError, TypeError, AttributeError) as err:
            raise ValueError(f"error while reading mint genesis data: {err}") from err

        try:
            self.db.save_slashing_params(SlashingParams(params, doc.initial_height))
        except Exception as err:
            raise RuntimeError(f"error while storing genesis slashing params: {err}") from err

    def update_params(self, height: int) -> None:
        """Read the slashing parameters at height and store them."""
        log.debug("updating params at height %d", height)
        try:
            params = self.source.get_params(height)
        except Exception as err:
            raise RuntimeError(f"error while getting params: {err}") from err
        self.db.save_slashing_params(SlashingParams(params, height))

    def get_signing_info(self, height: int, consensus_address: str) -> ValidatorSigningInfo:
        """Return the signing info of the validator with the given consensus address."""
        info = self.source.get_signing_info(height, consensus_address)
        return _signing_info(info, height)