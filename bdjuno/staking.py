"""The staking module: validators, their statuses, voting powers and the staking pool."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, Sequence

from bdjuno.addresses import consensus_address_from_bytes, convert_address_prefix
from bdjuno.chain_types import (
    DoubleSignEvidence,
    DoubleSignVote,
    Pool,
    StakingParams,
    Tx,
    Validator,
    ValidatorCommission,
    ValidatorDescription,
    ValidatorSigningInfo,
    ValidatorStatus,
    ValidatorVotingPower,
)
from bdjuno.keybase import get_avatar_url
from bdjuno.sources import StakingSource, is_not_found

log = logging.getLogger(__name__)

MODULE_NAME = "staking"
GENUTIL_MODULE_NAME = "genutil"
DO_NOT_MODIFY_DESC = "[do-not-modify]"

ED25519_TYPE_URL = "/cosmos.crypto.ed25519.PubKey"
SECP256K1_TYPE_URL = "/cosmos.crypto.secp256k1.PubKey"
MSG_CREATE_VALIDATOR_TYPE_URL = "/cosmos.staking.v1beta1.MsgCreateValidator"

_BOND_STATUSES = {
    "BOND_STATUS_UNSPECIFIED": 0,
    "BOND_STATUS_UNBONDED": 1,
    "BOND_STATUS_UNBONDING": 2,
    "BOND_STATUS_BONDED": 3,
}


class _SlashingModule(Protocol):
    def get_signing_info(self, height: int, consensus_address: str) -> ValidatorSigningInfo: ...


@dataclass(frozen=True)
class PubKey:
    """A consensus public key."""

    type_url: str
    key: bytes

    def address(self) -> bytes:
        """Return the raw 20 bytes address derived from the key."""
        digest = hashlib.sha256(self.key).digest()
        if self.type_url == ED25519_TYPE_URL:
            return digest[:20]
        if self.type_url == SECP256K1_TYPE_URL:
            try:
                ripemd = hashlib.new("ripemd160")
            except ValueError as err:
                raise ValueError(f"ripemd160 is not available: {err}") from err
            ripemd.update(digest)
            return ripemd.digest()
        raise ValueError(f"unsupported public key type: {self.type_url}")

    def __str__(self) -> str:
        if self.type_url == ED25519_TYPE_URL:
            return f"PubKeyEd25519{{{self.key.hex().upper()}}}"
        if self.type_url == SECP256K1_TYPE_URL:
            return f"PubKeySecp256k1{{{self.key.hex().upper()}}}"
        return f"PubKey{{{self.type_url}:{self.key.hex().upper()}}}"


@dataclass(frozen=True)
class Description:
    """The public description of a validator."""

    moniker: str = ""
    identity: str = ""
    website: str = ""
    security_contact: str = ""
    details: str = ""


@dataclass(frozen=True)
class ChainValidator:
    """A validator as reported by the chain."""

    operator_address: str
    consensus_pubkey: PubKey
    description: Description = field(default_factory=Description)
    jailed: bool = False
    status: int = 0
    tokens: int = 0
    delegator_shares: Decimal = Decimal(0)
    commission_rate: Decimal = Decimal(0)
    commission_max_rate: Decimal = Decimal(0)
    commission_max_change_rate: Decimal = Decimal(0)
    min_self_delegation: int = 0

    def consensus_address(self, prefix: str = "cosmosvalcons") -> str:
        """Return the bech32 consensus address of the validator."""
        return consensus_address_from_bytes(self.consensus_pubkey.address(), prefix)


@dataclass(frozen=True)
class BlockValidator:
    """A validator of a block, with its raw address and voting power."""

    address: bytes
    voting_power: int


@dataclass(frozen=True)
class VoteInfo:
    """A single consensus vote."""

    vote_type: int
    height: int
    round: int
    block_id: str
    validator_address: bytes
    validator_index: int
    signature: bytes


@dataclass(frozen=True)
class DuplicateVoteEvidence:
    """Evidence of a validator casting two conflicting votes."""

    vote_a: VoteInfo
    vote_b: VoteInfo


@dataclass(frozen=True)
class MsgCreateValidator:
    """A message creating a new validator."""

    description: Description
    commission_rate: Decimal
    commission_max_rate: Decimal
    commission_max_change_rate: Decimal
    min_self_delegation: int
    delegator_address: str
    validator_address: str
    pubkey: Any


@dataclass(frozen=True)
class MsgEditValidator:
    """A message editing an existing validator."""

    description: Description
    validator_address: str
    commission_rate: Optional[Decimal] = None
    min_self_delegation: Optional[int] = None


# ---------------------------------------------------------------------------------------------------------------------
# Decoding of the JSON forms used by the genesis state and by sources


def _get(value: Any, name: str, default: Any = None) -> Any:
    if isinstance(value, Mapping):
        return value.get(name, default)
    return getattr(value, name, default)


def _decimal(value: Any) -> Decimal:
    return Decimal(str(value if value not in (None, "") else "0"))


def _pubkey(value: Any) -> PubKey:
    if isinstance(value, PubKey):
        return value
    if not isinstance(value, Mapping):
        raise ValueError(f"invalid public key: {value!r}")
    return PubKey(str(value.get("@type") or ""), base64.b64decode(value.get("key") or ""))


def _bond_status(value: Any) -> int:
    if isinstance(value, int):
        return value
    try:
        return _BOND_STATUSES[str(value or "BOND_STATUS_UNSPECIFIED")]
    except KeyError as err:
        raise ValueError(f"invalid bond status: {value!r}") from err


def _description(value: Any) -> Description:
    if isinstance(value, Description):
        return value
    value = value or {}
    return Description(
        moniker=str(value.get("moniker") or ""),
        identity=str(value.get("identity") or ""),
        website=str(value.get("website") or ""),
        security_contact=str(value.get("security_contact") or ""),
        details=str(value.get("details") or ""),
    )


def _chain_validator(value: Any) -> ChainValidator:
    if isinstance(value, ChainValidator):
        return value
    commission = value.get("commission") or {}
    rates = commission.get("commission_rates") or {}
    return ChainValidator(
        operator_address=str(value["operator_address"]),
        consensus_pubkey=_pubkey(value.get("consensus_pubkey")),
        description=_description(value.get("description")),
        jailed=bool(value.get("jailed")),
        status=_bond_status(value.get("status")),
        tokens=int(value.get("tokens") or 0),
        delegator_shares=_decimal(value.get("delegator_shares")),
        commission_rate=_decimal(rates.get("rate")),
        commission_max_rate=_decimal(rates.get("max_rate")),
        commission_max_change_rate=_decimal(rates.get("max_change_rate")),
        min_self_delegation=int(value.get("min_self_delegation") or 0),
    )


def _msg_create_validator(value: Any) -> MsgCreateValidator:
    if isinstance(value, MsgCreateValidator):
        return value
    commission = value.get("commission") or {}
    return MsgCreateValidator(
        description=_description(value.get("description")),
        commission_rate=_decimal(commission.get("rate")),
        commission_max_rate=_decimal(commission.get("max_rate")),
        commission_max_change_rate=_decimal(commission.get("max_change_rate")),
        min_self_delegation=int(value.get("min_self_delegation") or 0),
        delegator_address=str(value.get("delegator_address") or ""),
        validator_address=str(value.get("validator_address") or ""),
        pubkey=value.get("pubkey"),
    )


def _is_msg_create_validator(value: Any) -> bool:
    if isinstance(value, MsgCreateValidator):
        return True
    return isinstance(value, Mapping) and value.get("@type") == MSG_CREATE_VALIDATOR_TYPE_URL


def _load_section(app_state: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    raw = app_state.get(name)
    if raw is None:
        raise ValueError(f"missing {name} genesis state")
    if isinstance(raw, (str, bytes, bytearray)):
        raw = json.loads(raw)
    if not isinstance(raw, Mapping):
        raise ValueError(f"invalid {name} genesis state")
    return raw


# ---------------------------------------------------------------------------------------------------------------------


class StakingModule:
    """Indexes validators, their statuses and voting powers, and the staking pool."""

    def __init__(
        self,
        source: StakingSource,
        slashing_module: _SlashingModule,
        db: Any,
        avatar_lookup: Callable[[str], str] = get_avatar_url,
        account_prefix: str = "cosmos",
        consensus_prefix: str = "cosmosvalcons",
    ) -> None:
        self.source = source
        self.slashing_module = slashing_module
        self.db = db
        self._avatar_lookup = avatar_lookup
        self.account_prefix = account_prefix
        self.consensus_prefix = consensus_prefix

    def name(self) -> str:
        return MODULE_NAME

    # -- validators conversion -----------------------------------------------------------------------------------------

    def _consensus_address(self, validator: ChainValidator) -> str:
        try:
            return validator.consensus_address(self.consensus_prefix)
        except ValueError as err:
            raise RuntimeError(f"error while getting validator consensus address: {err}") from err

    def _convert_validator(self, height: int, validator: ChainValidator) -> Validator:
        consensus_address = self._consensus_address(validator)
        return Validator(
            consensus_address=consensus_address,
            operator_address=validator.operator_address,
            consensus_pubkey=str(validator.consensus_pubkey),
            self_delegate_address=convert_address_prefix(validator.operator_address, self.account_prefix),
            max_change_rate=validator.commission_max_change_rate,
            max_rate=validator.commission_max_rate,
            height=height,
        )

    def _convert_validator_description(
        self, height: int, operator_address: str, description: Description
    ) -> ValidatorDescription:
        if description.identity == DO_NOT_MODIFY_DESC:
            avatar_url = DO_NOT_MODIFY_DESC
        else:
            try:
                avatar_url = self._avatar_lookup(description.identity)
            except Exception:  # noqa: BLE001 - a missing avatar is not an error
                avatar_url = ""
        return ValidatorDescription(operator_address, description, avatar_url, height)

    @staticmethod
    def _commission(validator: ChainValidator, height: int) -> ValidatorCommission:
        return ValidatorCommission(
            validator.operator_address,
            validator.commission_rate,
            validator.min_self_delegation,
            height,
        )

    # -- blocks --------------------------------------------------------------------------------------------------------

    def handle_block(
        self, height: int, evidence: Iterable[Any], block_validators: Iterable[BlockValidator]
    ) -> None:
        """Refresh validators, voting powers, statuses, double sign evidence and the pool."""
        try:
            validators = self._update_validators(height)
        except Exception as err:
            raise RuntimeError(f"error while updating validators: {err}") from err

        self._update_validators_voting_power(height, block_validators)
        self._update_validators_status(height, validators)
        self._update_double_sign_evidence(height, evidence)
        self._update_staking_pool(height)

    def _update_validators(self, height: int) -> list[ChainValidator]:
        log.debug("updating validators at height %d", height)
        try:
            chain_validators, validators = self.get_validators_with_status(height, "")
        except Exception as err:
            raise RuntimeError(f"error while getting validator: {err}") from err
        self.db.save_validators_data(validators)
        return chain_validators

    def _update_validators_status(self, height: int, validators: Sequence[ChainValidator]) -> None:
        log.debug("updating validators statuses at height %d", height)
        try:
            statuses = self.get_validators_statuses(height, validators)
        except Exception as err:  # noqa: BLE001
            log.error("error while getting validators statuses at height %d: %s", height, err)
            return
        try:
            self.db.save_validators_statuses(statuses)
        except Exception as err:  # noqa: BLE001
            log.error("error while saving validators statuses at height %d: %s", height, err)

    def _update_validators_voting_power(self, height: int, block_validators: Iterable[BlockValidator]) -> None:
        log.debug("updating validators voting powers at height %d", height)
        try:
            powers = self.get_validators_voting_powers(height, block_validators)
        except Exception as err:  # noqa: BLE001
            log.error("error while getting validators voting powers at height %d: %s", height, err)
            return
        try:
            self.db.save_validators_voting_powers(powers)
        except Exception as err:  # noqa: BLE001
            log.error("error while saving validators voting powers at height %d: %s", height, err)

    def _double_sign_vote(self, vote: VoteInfo) -> DoubleSignVote:
        return DoubleSignVote(
            vote_type=int(vote.vote_type),
            height=vote.height,
            round=vote.round,
            block_id=vote.block_id,
            validator_address=consensus_address_from_bytes(vote.validator_address, self.consensus_prefix),
            validator_index=vote.validator_index,
            signature=vote.signature.hex(),
        )

    def _update_double_sign_evidence(self, height: int, evidence: Iterable[Any]) -> None:
        log.debug("updating double sign evidence at height %d", height)
        for item in evidence or ():
            if not isinstance(item, DuplicateVoteEvidence):
                continue
            record = DoubleSignEvidence(
                height, self._double_sign_vote(item.vote_a), self._double_sign_vote(item.vote_b)
            )
            try:
                self.db.save_double_sign_evidence(record)
            except Exception as err:  # noqa: BLE001
                log.error("error while saving double sign evidence at height %d: %s", height, err)
                return

    def _update_staking_pool(self, height: int) -> None:
        log.debug("updating staking pool at height %d", height)
        try:
            pool = self.get_staking_pool(height)
        except Exception as err:  # noqa: BLE001
            log.error("error while getting staking pool at height %d: %s", height, err)
            return
        try:
            self.db.save_staking_pool(pool)
        except Exception as err:  # noqa: BLE001
            log.error("error while saving staking pool at height %d: %s", height, err)

    # -- genesis -------------------------------------------------------------------------------------------------------

    def handle_genesis(self, doc: Any, app_state: Mapping[str, Any]) -> None:
        """Store the parameters, genesis transactions and validators of the genesis."""
        log.debug("parsing genesis")
        try:
            state = _load_section(app_state, MODULE_NAME)
            params = dict(state.get("params") or {})
            validators = [_chain_validator(v) for v in state.get("validators") or ()]
        except (ValueError, KeyError, TypeError, AttributeError, ArithmeticError) as err:
            raise ValueError(f"error while unmarshaling staking state: {err}") from err

        height = doc.initial_height
        try:
            self.db.save_staking_params(StakingParams(params, height))
        except Exception as err:
            raise RuntimeError(f"error while storing genesis staking params: {err}") from err

        try:
            self._parse_genesis_transactions(height, app_state)
        except Exception as err:
            raise RuntimeError(f"error while storing genesis transactions: {err}") from err

        try:
            self.db.save_validators_data([self._convert_validator(height, v) for v in validators])
        except Exception as err:
            raise RuntimeError(f"error while storing staking genesis validators: {err}") from err

        try:
            for validator in validators:
                self.db.save_validator_description(
                    self._convert_validator_description(height, validator.operator_address, validator.description)
                )
        except Exception as err:
            raise RuntimeError(f"error while storing staking genesis validator descriptions: {err}") from err

        try:
            for validator in validators:
                self.db.save_validator_commission(self._commission(validator, height))
        except Exception as err:
            raise RuntimeError(f"error while storing staking genesis validators commissions: {err}") from err

    def _parse_genesis_transactions(self, height: int, app_state: Mapping[str, Any]) -> None:
        try:
            state = _load_section(app_state, GENUTIL_MODULE_NAME)
        except (ValueError, TypeError) as err:
            raise ValueError(f"error while unmarhsaling genutil state: {err}") from err

        for raw_tx in state.get("gen_txs") or ():
            try:
                gen_tx = json.loads(raw_tx) if isinstance(raw_tx, (str, bytes, bytearray)) else raw_tx
                messages = list((gen_tx.get("body") or {}).get("messages") or ())
            except (ValueError, AttributeError) as err:
                raise ValueError(f"error while unmashasling genesis tx: {err}") from err
            for message in messages:
                if not _is_msg_create_validator(message):
                    continue
                try:
                    self.store_validators_from_msg_create_validator(height, _msg_create_validator(message))
                except Exception as err:
                    raise RuntimeError(f"error while storing validators from MsgCreateValidator: {err}") from err

    # -- messages ------------------------------------------------------------------------------------------------------

    def handle_msg(self, index: int, msg: Any, tx: Tx) -> None:
        """Refresh the validator touched by a create or edit validator message."""
        if not tx.logs:
            return
        if isinstance(msg, MsgCreateValidator):
            kind = "MsgCreateValidator"
        elif isinstance(msg, MsgEditValidator):
            kind = "MsgEditValidator"
        else:
            return
        try:
            self.refresh_validator_infos(tx.height, msg.validator_address)
        except Exception as err:
            raise RuntimeError(f"error while refreshing validator from {kind}: {err}") from err

    def store_validators_from_msg_create_validator(self, height: int, msg: MsgCreateValidator) -> None:
        """Store the validator, description and commission carried by msg."""
        try:
            pubkey = _pubkey(msg.pubkey)
            consensus_address = consensus_address_from_bytes(pubkey.address(), self.consensus_prefix)
        except Exception as err:
            raise RuntimeError(f"error while unpacking pub key: {err}") from err
        try:
            avatar_url = self._avatar_lookup(msg.description.identity)
        except Exception as err:
            raise RuntimeError(f"error while getting Avatar URL: {err}") from err

        self.db.save_validator_data(
            Validator(
                consensus_address=consensus_address,
                operator_address=msg.validator_address,
                consensus_pubkey=str(pubkey),
                self_delegate_address=msg.delegator_address,
                max_change_rate=msg.commission_max_change_rate,
                max_rate=msg.commission_max_rate,
                height=height,
            )
        )
        self.db.save_validator_description(
            ValidatorDescription(msg.validator_address, msg.description, avatar_url, height)
        )
        self.db.save_validator_commission(
            ValidatorCommission(msg.validator_address, msg.commission_rate, msg.min_self_delegation, height)
        )

    # -- parameters and pool -------------------------------------------------------------------------------------------

    def update_params(self, height: int) -> None:
        """Read the staking parameters at height and store them."""
        log.debug("updating params at height %d", height)
        try:
            params = self.source.get_params(height)
        except Exception as err:
            raise RuntimeError(f"error while getting params: {err}") from err
        self.db.save_staking_params(StakingParams(params, height))

    def get_staking_pool(self, height: int) -> Pool:
        """Return the staking pool at height."""
        try:
            pool = self.source.get_pool(height)
        except Exception as err:
            raise RuntimeError(f"error while getting staking pool: {err}") from err
        return Pool(
            int(_get(pool, "bonded_tokens", 0) or 0),
            int(_get(pool, "not_bonded_tokens", 0) or 0),
            height,
        )

    # -- validators ----------------------------------------------------------------------------------------------------

    def refresh_validator_infos(self, height: int, operator_address: str) -> None:
        """Re-read and store the data of the validator with the given operator address."""
        chain_validator = _chain_validator(self.source.get_validator(height, operator_address))
        try:
            validator = self._convert_validator(height, chain_validator)
        except Exception as err:
            raise RuntimeError(f"error while converting validator: {err}") from err
        description = self._convert_validator_description(
            height, chain_validator.operator_address, chain_validator.description
        )
        self.db.save_validators_data([validator])
        self.db.save_validator_description(description)
        self.db.save_validator_commission(self._commission(chain_validator, height))

    def get_validators_with_status(
        self, height: int, status: str
    ) -> tuple[list[ChainValidator], list[Validator]]:
        """Return the chain validators with status ("" for all) and their converted form."""
        chain_validators = [
            _chain_validator(v) for v in self.source.get_validators_with_status(height, status)
        ]
        validators = []
        for chain_validator in chain_validators:
            try:
                validators.append(self._convert_validator(height, chain_validator))
            except Exception as err:
                raise RuntimeError(f"error while converting validator: {err}") from err
        return chain_validators, validators

    def get_validators_statuses(
        self, height: int, validators: Iterable[ChainValidator]
    ) -> list[ValidatorStatus]:
        """Return the status of each validator, tombstoning read from the slashing module."""
        statuses = []
        for validator in validators:
            consensus_address = self._consensus_address(validator)
            tombstoned = False
            try:
                tombstoned = self.slashing_module.get_signing_info(height, consensus_address).tombstoned
            except Exception as err:
                if not is_not_found(err):
                    raise RuntimeError(f"error while getting validator signing info: {err}") from err
            statuses.append(
                ValidatorStatus(
                    consensus_address,
                    str(validator.consensus_pubkey),
                    int(validator.status),
                    validator.jailed,
                    tombstoned,
                    height,
                )
            )
        return statuses

    def get_validators_voting_powers(
        self, height: int, block_validators: Iterable[BlockValidator]
    ) -> list[ValidatorVotingPower]:
        """Return the voting power of every stored validator, 0 when absent from the block."""
        chain_validators, _ = self.get_validators_with_status(height, "")
        powers_by_address = {
            consensus_address_from_bytes(bv.address, self.consensus_prefix): bv.voting_power
            for bv in block_validators or ()
        }
        powers = []
        for validator in chain_validators:
            consensus_address = self._consensus_address(validator)
            try:
                found = bool(self.db.has_validator(consensus_address))
            except Exception:  # noqa: BLE001 - treated as not stored
                found = False
            if not found:
                continue
            powers.append(
                ValidatorVotingPower(consensus_address, powers_by_address.get(consensus_address, 0), height)
            )
        return powers