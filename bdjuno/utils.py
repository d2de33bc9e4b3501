"""General helpers: deduplication, tx paging, genesis reading, job scheduling."""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

GRPC_BLOCK_HEIGHT_HEADER = "x-cosmos-block-height"
TX_SEARCH_PER_PAGE = 100

log = logging.getLogger(__name__)

_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def _parse_time(text: str) -> datetime:
    match = _RFC3339.match(text)
    if match is None:
        raise ValueError(f"invalid timestamp: {text!r}")
    date, clock, fraction, zone = match.groups()
    micros = (fraction or "").ljust(6, "0")[:6]
    offset = "+00:00" if zone in ("Z", "z") else zone
    return datetime.fromisoformat(f"{date}T{clock}.{micros}{offset}")


@dataclass(frozen=True)
class GenesisDoc:
    """The parts of a genesis document the indexer relies on."""

    chain_id: str
    genesis_time: datetime
    initial_height: int = 0
    app_state: Mapping[str, Any] = field(default_factory=dict)


def _genesis_from_json(data: Union[str, bytes]) -> GenesisDoc:
    try:
        obj = json.loads(data)
        return GenesisDoc(
            chain_id=obj["chain_id"],
            genesis_time=_parse_time(obj["genesis_time"]),
            initial_height=int(obj.get("initial_height") or 0),
            app_state=obj.get("app_state") or {},
        )
    except (ValueError, KeyError, TypeError, AttributeError) as err:
        raise ValueError(f"failed to unmarshal genesis doc: {err}") from err


def remove_duplicate_values(values: Iterable[str]) -> list[str]:
    """Return the values without duplicates, keeping first-seen order."""
    return list(dict.fromkeys(values))


def unique_addresses_parser(parser: Callable[[Any, Any], Sequence[str]]) -> Callable[[Any, Any], list[str]]:
    """Wrap an addresses parser so that it never returns duplicated addresses."""

    def parse(codec: Any, msg: Any) -> list[str]:
        return remove_duplicate_values(parser(codec, msg))

    return parse


def get_height_request_metadata(metadata: Iterable[tuple[str, str]], height: int) -> list[tuple[str, str]]:
    """Return the gRPC metadata with the block height header appended."""
    return [*metadata, (GRPC_BLOCK_HEIGHT_HEADER, str(height))]


def query_txs(node: Any, query: str) -> list[Any]:
    """Collect every transaction matching query, page by page."""
    txs: list[Any] = []
    page = 1
    while True:
        try:
            result = node.tx_search(query, page, TX_SEARCH_PER_PAGE, "")
        except Exception as err:
            raise RuntimeError(f"error while running tx search: {err}") from err
        page += 1
        txs.extend(result.txs)
        if len(txs) == result.total_count or not result.txs:
            return txs


def read_genesis(genesis_file_path: Optional[str], node: Any) -> GenesisDoc:
    """Read the genesis from the given file if set, otherwise from the node."""
    if genesis_file_path:
        try:
            data = Path(genesis_file_path).read_bytes()
        except OSError as err:
            raise RuntimeError(f"failed to read genesis file: {err}") from err
        return _genesis_from_json(data)
    try:
        return node.genesis()
    except Exception as err:
        raise RuntimeError(f"failed to get genesis: {err}") from err


def watch_method(method: Callable[[], Any]) -> threading.Thread:
    """Run method in a background thread, logging any error it raises."""

    def run() -> None:
        try:
            method()
        except Exception as err:  # noqa: BLE001 - errors are only reported
            name = getattr(method, "__qualname__", repr(method))
            log.error("watch method: %s error: %s", name, err)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


@dataclass
class _Job:
    run: Callable[[], Any]
    interval: Optional[timedelta] = None
    at: Optional[time] = None
    next_run: Optional[datetime] = None

    def _next_daily(self, now: datetime, inclusive: bool) -> datetime:
        assert self.at is not None
        candidate = now.replace(
            hour=self.at.hour, minute=self.at.minute, second=self.at.second, microsecond=0
        )
        if candidate < now or (candidate == now and not inclusive):
            candidate += timedelta(days=1)
        return candidate

    def is_due(self, now: datetime) -> bool:
        if self.next_run is None:
            self.next_run = now if self.interval is not None else self._next_daily(now, True)
        return now >= self.next_run

    def advance(self, now: datetime) -> None:
        if self.interval is not None:
            self.next_run = now + self.interval
        else:
            self.next_run = self._next_daily(now, False)


class Scheduler:
    """A minimal scheduler of recurring jobs driven by run_pending."""

    def __init__(self) -> None:
        self._jobs: list[_Job] = []

    def every(self, interval: timedelta, job: Callable[[], Any]) -> None:
        """Run job immediately and then once every interval."""
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self._jobs.append(_Job(run=job, interval=interval))

    def daily_at(self, at: Union[str, time], job: Callable[[], Any]) -> None:
        """Run job every day at the given "HH:MM" time."""
        moment = time.fromisoformat(at) if isinstance(at, str) else at
        self._jobs.append(_Job(run=job, at=moment))

    def run_pending(self, now: Optional[datetime] = None) -> int:
        """Run every job that is due at now and return how many ran."""
        current = now if now is not None else datetime.now()
        ran = 0
        for job in self._jobs:
            if job.is_due(current):
                job.run()
                job.advance(current)
                ran += 1
        return ran


__all__ = [
    "GenesisDoc",
    "Scheduler",
    "remove_duplicate_values",
    "unique_addresses_parser",
    "get_height_request_metadata",
    "query_txs",
    "read_genesis",
    "watch_method",
    "timezone",
]