"""Plain data records describing chain state at a given height."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence


@dataclass(frozen=True)
class Coin:
    """An amount of a single denomination."""

    denom: str
    amount: int

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"


@dataclass(frozen=True)
class Account:
    """A chain account."""

    address: str


@dataclass(frozen=True)
class AccountBalance:
    """The balance of an account at a given height."""

    address: str
    balance: tuple[Coin, ...]
    height: int


@dataclass(frozen=True)
class Genesis:
    """The useful information about the genesis."""

    chain_id: str
    time: datetime
    initial_height: int


@dataclass(frozen=True)
class ConsensusEvent:
    """A single consensus event."""

    height: int
    round: int
    step: str


@dataclass(frozen=True)
class DistributionParams:
    """The parameters of the distribution module at a given height."""

    params: Mapping[str, Any]
    height: int


@dataclass(frozen=True)
class FeeGrant:
    """A fee allowance granted by one account to another."""

    granter: str
    grantee: str
    allowance: Mapping[str, Any]
    height: int


@dataclass(frozen=True)
class GrantRemoval:
    """The removal of a fee grant."""

    grantee: str
    granter: str
    height: int


@dataclass(frozen=True)
class MintParams:
    """The parameters of the mint module at a given height."""

    params: Mapping[str, Any]
    height: int


@dataclass(frozen=True)
class TokenUnit:
    """A unit of a token."""

    denom: str
    exponent: int
    aliases: tuple[str, ...] = ()
    price_id: str = ""


@dataclass(frozen=True)
class Token:
    """A token known to the chain, with its units."""

    name: str
    units: tuple[TokenUnit, ...] = ()


@dataclass
class TokenPrice:
    """The price of a token unit at a moment in time."""

    unit_name: str
    price: float
    market_cap: int
    timestamp: datetime


@dataclass(frozen=True)
class ValidatorSigningInfo:
    """The signing info of a validator at a given height."""

    validator_address: str
    start_height: int
    index_offset: int
    jailed_until: datetime
    tombstoned: bool
    missed_blocks_counter: int
    height: int


@dataclass(frozen=True)
class SlashingParams:
    """The parameters of the slashing module at a given height."""

    params: Mapping[str, Any]
    height: int


@dataclass(frozen=True)
class DoubleSignVote:
    """One of the two conflicting votes of a double sign evidence."""

    vote_type: int
    height: int
    round: int
    block_id: str
    validator_address: str
    validator_index: int
    signature: str


@dataclass(frozen=True)
class DoubleSignEvidence:
    """Evidence of a validator signing two different blocks."""

    height: int
    vote_a: DoubleSignVote
    vote_b: DoubleSignVote


@dataclass(frozen=True)
class Pool:
    """The staking pool at a given height."""

    bonded_tokens: int
    not_bonded_tokens: int
    height: int


@dataclass(frozen=True)
class StakingParams:
    """The parameters of the staking module at a given height."""

    params: Mapping[str, Any]
    height: int


@dataclass(frozen=True)
class Validator:
    """The static data of a single validator."""

    consensus_address: str
    operator_address: str
    consensus_pubkey: str
    self_delegate_address: str
    max_change_rate: Optional[Decimal]
    max_rate: Optional[Decimal]
    height: int


@dataclass(frozen=True)
class ValidatorDescription:
    """A validator description; avatar_url is "[do-not-modify]" when it must be left as is."""

    operator_address: str
    description: Any
    avatar_url: str
    height: int


@dataclass(frozen=True)
class ValidatorCommission:
    """The commission of a validator at a given height."""

    validator_address: str
    commission: Optional[Decimal]
    min_self_delegation: Optional[int]
    height: int


@dataclass(frozen=True)
class ValidatorVotingPower:
    """The voting power of a validator at a given height."""

    consensus_address: str
    voting_power: int
    height: int


@dataclass(frozen=True)
class ValidatorStatus:
    """The state of a validator at a given height."""

    consensus_address: str
    consensus_pubkey: str
    status: int
    jailed: bool
    tombstoned: bool
    height: int


@dataclass(frozen=True)
class Tx:
    """A transaction with its per-message event logs.

    Each log is a mapping with "msg_index" and "events"; each event has a
    "type" and a list of "attributes" mappings with "key" and "value".
    """

    height: int
    hash: str = ""
    logs: Sequence[Mapping[str, Any]] = field(default_factory=tuple)
    messages: Sequence[Any] = field(default_factory=tuple)

    def find_event_by_type(self, index: int, event_type: str) -> Mapping[str, Any]:
        """Return the first event of the given type emitted by the message at index."""
        for log in self.logs:
            if int(log.get("msg_index", 0)) != index:
                continue
            for event in log.get("events", ()):
                if event.get("type") == event_type:
                    return event
        raise LookupError(f"no {event_type} event found inside tx with hash {self.hash}")

    def find_attribute_by_key(self, event: Mapping[str, Any], key: str) -> str:
        """Return the value of the first attribute of event having the given key."""
        for attribute in event.get("attributes", ()):
            if attribute.get("key") == key:
                return attribute.get("value", "")
        raise LookupError(f"no event with attribute {key} found inside tx with hash {self.hash}")


__all__ = [
    "Coin",
    "Account",
    "AccountBalance",
    "Genesis",
    "ConsensusEvent",
    "DistributionParams",
    "FeeGrant",
    "GrantRemoval",
    "MintParams",
    "Token",
    "TokenUnit",
    "TokenPrice",
    "ValidatorSigningInfo",
    "SlashingParams",
    "DoubleSignVote",
    "DoubleSignEvidence",
    "Pool",
    "StakingParams",
    "Validator",
    "ValidatorDescription",
    "ValidatorCommission",
    "ValidatorVotingPower",
    "ValidatorStatus",
    "Tx",
    "timedelta",
]