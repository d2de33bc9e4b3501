"""The governance module: proposals, deposits, votes and parameters."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence, Union

from bdjuno.chain_types import Coin, Pool, Tx, ValidatorStatus, ValidatorVotingPower
from bdjuno.gov_types import (
    PROPOSAL_STATUS_INVALID,
    PROPOSAL_STATUS_PASSED,
    ChainProposal,
    ChainTallyResult,
    Deposit,
    DepositParams,
    GovParams,
    MsgDeposit,
    MsgSubmitProposal,
    MsgVote,
    ParamChange,
    Proposal,
    ProposalContent,
    ProposalStakingPoolSnapshot,
    ProposalUpdate,
    ProposalValidatorStatusSnapshot,
    TallyParams,
    TallyResult,
    Vote,
    VotingParams,
)
from bdjuno.sources import GovSource, is_not_found

log = logging.getLogger(__name__)

MODULE_NAME = "gov"
EVENT_TYPE_SUBMIT_PROPOSAL = "submit_proposal"
ATTRIBUTE_KEY_PROPOSAL_ID = "proposal_id"
BOND_STATUS_BONDED = "BOND_STATUS_BONDED"

PARAMETER_CHANGE_TYPE = "ParameterChange"
COMMUNITY_POOL_SPEND_TYPE = "CommunityPoolSpend"

_CONTENT_KINDS = {
    "/cosmos.gov.v1beta1.TextProposal": ("Text", "gov"),
    "/cosmos.params.v1beta1.ParameterChangeProposal": (PARAMETER_CHANGE_TYPE, "params"),
    "/cosmos.distribution.v1beta1.CommunityPoolSpendProposal": (COMMUNITY_POOL_SPEND_TYPE, "distribution"),
    "/cosmos.upgrade.v1beta1.SoftwareUpgradeProposal": ("SoftwareUpgrade", "upgrade"),
    "/cosmos.upgrade.v1beta1.CancelSoftwareUpgradeProposal": ("CancelSoftwareUpgrade", "upgrade"),
}

_TIME = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)
_DURATION = re.compile(r"^(-?\d+(?:\.\d+)?)s$")


class _AuthModule(Protocol):
    def refresh_accounts(self, height: int, addresses: Sequence[str]) -> Any: ...


class _ParamsModule(Protocol):
    def update_params(self, height: int) -> Any: ...


class _StakingModule(Protocol):
    def get_staking_pool(self, height: int) -> Pool: ...

    def get_validators_with_status(self, height: int, status: str) -> tuple[Sequence[Any], Sequence[Any]]: ...

    def get_validators_voting_powers(self, height: int, block_validators: Any) -> Sequence[ValidatorVotingPower]: ...

    def get_validators_statuses(self, height: int, validators: Sequence[Any]) -> Sequence[ValidatorStatus]: ...

    def update_params(self, height: int) -> Any: ...


# ---------------------------------------------------------------------------------------------------------------------
# Decoding of the JSON forms used by the genesis state and by sources


def _parse_time(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    match = _TIME.match(str(value))
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    date, clock, fraction, zone = match.groups()
    micros = (fraction or "").ljust(6, "0")[:6]
    offset = "+00:00" if zone in ("Z", "z") else zone
    return datetime.fromisoformat(f"{date}T{clock}.{micros}{offset}")


def _duration_ns(value: Union[str, int, timedelta]) -> int:
    if isinstance(value, timedelta):
        return DepositParams.from_period((), value).max_deposit_period
    if isinstance(value, int):
        return value
    match = _DURATION.match(str(value).strip())
    if match is None:
        raise ValueError(f"invalid duration: {value!r}")
    return int(Decimal(match.group(1)) * 1_000_000_000)


def _coins(values: Optional[Iterable[Any]]) -> tuple[Coin, ...]:
    coins = []
    for value in values or ():
        if isinstance(value, Coin):
            coins.append(value)
        else:
            coins.append(Coin(str(value["denom"]), int(value["amount"])))
    return tuple(coins)


def _deposit_params(value: Any) -> DepositParams:
    if isinstance(value, DepositParams):
        return value
    return DepositParams(
        _coins(value.get("min_deposit")),
        _duration_ns(value.get("max_deposit_period") or "0s"),
    )


def _voting_params(value: Any) -> VotingParams:
    if isinstance(value, VotingParams):
        return value
    return VotingParams(_duration_ns(value.get("voting_period") or "0s"))


def _tally_params(value: Any) -> TallyParams:
    if isinstance(value, TallyParams):
        return value
    return TallyParams(
        Decimal(str(value.get("quorum") or "0")),
        Decimal(str(value.get("threshold") or "0")),
        Decimal(str(value.get("veto_threshold") or "0")),
    )


def _content(value: Any) -> ProposalContent:
    if isinstance(value, ProposalContent):
        return value
    type_url = str(value.get("@type") or "")
    kind = _CONTENT_KINDS.get(type_url)
    if kind is None:
        name = type_url.rsplit(".", 1)[-1]
        kind = (name[: -len("Proposal")] if name.endswith("Proposal") else name, "")
    changes = tuple(
        ParamChange(str(c.get("subspace") or ""), str(c.get("key") or ""), str(c.get("value") or ""))
        for c in value.get("changes") or ()
    )
    return ProposalContent(
        title=str(value.get("title") or ""),
        description=str(value.get("description") or ""),
        proposal_type=kind[0],
        proposal_route=kind[1],
        changes=changes,
        recipient=value.get("recipient") or None,
        amount=_coins(value.get("amount")),
    )


def _tally(value: Any) -> ChainTallyResult:
    if isinstance(value, ChainTallyResult):
        return value
    value = value or {}
    return ChainTallyResult(
        yes=int(value.get("yes") or 0),
        abstain=int(value.get("abstain") or 0),
        no=int(value.get("no") or 0),
        no_with_veto=int(value.get("no_with_veto") or 0),
    )


def _chain_proposal(value: Any) -> ChainProposal:
    if isinstance(value, ChainProposal):
        return value
    return ChainProposal(
        proposal_id=int(value["proposal_id"]),
        content=_content(value.get("content") or {}),
        status=str(value.get("status") or ""),
        submit_time=_parse_time(value["submit_time"]),
        deposit_end_time=_parse_time(value["deposit_end_time"]),
        voting_start_time=_parse_time(value["voting_start_time"]),
        voting_end_time=_parse_time(value["voting_end_time"]),
        final_tally_result=_tally(value.get("final_tally_result")),
        total_deposit=_coins(value.get("total_deposit")),
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


def _consensus_address(validator: Any) -> str:
    address = getattr(validator, "consensus_address")
    return str(address() if callable(address) else address)


def _to_proposal(proposal: ChainProposal, proposer: str) -> Proposal:
    return Proposal(
        proposal_id=proposal.proposal_id,
        proposal_route=proposal.proposal_route,
        proposal_type=proposal.proposal_type,
        content=proposal.content,
        status=proposal.status,
        submit_time=proposal.submit_time,
        deposit_end_time=proposal.deposit_end_time,
        voting_start_time=proposal.voting_start_time,
        voting_end_time=proposal.voting_end_time,
        proposer=proposer,
    )


def _find_voting_power(consensus_address: str, powers: Iterable[ValidatorVotingPower]) -> ValidatorVotingPower:
    for power in powers:
        if power.consensus_address == consensus_address:
            return power
    raise LookupError(f"voting power not found for validator with consensus address {consensus_address}")


def _find_status(consensus_address: str, statuses: Iterable[ValidatorStatus]) -> ValidatorStatus:
    for status in statuses:
        if status.consensus_address == consensus_address:
            return status
    raise LookupError(f"cannot find status for validator with consensus address {consensus_address}")


# ---------------------------------------------------------------------------------------------------------------------


class GovModule:
    """Indexes governance proposals, deposits, votes and parameters."""

    def __init__(
        self,
        source: GovSource,
        auth_module: _AuthModule,
        distr_module: _ParamsModule,
        mint_module: _ParamsModule,
        slashing_module: _ParamsModule,
        staking_module: _StakingModule,
        db: Any,
    ) -> None:
        self.source = source
        self.auth_module = auth_module
        self.distr_module = distr_module
        self.mint_module = mint_module
        self.slashing_module = slashing_module
        self.staking_module = staking_module
        self.db = db

    def name(self) -> str:
        return MODULE_NAME

    # -- blocks --------------------------------------------------------------------------------------------------------

    def handle_block(self, height: int, block_validators: Any) -> None:
        """Refresh every open proposal; errors are logged, never raised."""
        try:
            self._update_proposals(height, block_validators)
        except Exception as err:  # noqa: BLE001 - block handling must go on
            log.error("error while updating proposals at height %d: %s", height, err)

    def _update_proposals(self, height: int, block_validators: Any) -> None:
        try:
            ids = list(self.db.get_open_proposals_ids())
        except Exception as err:  # noqa: BLE001
            log.error("error while getting open ids: %s", err)
            ids = []
        for proposal_id in ids:
            try:
                self.update_proposal(height, block_validators, proposal_id)
            except Exception as err:
                raise RuntimeError(f"error while updating proposal: {err}") from err

    # -- genesis -------------------------------------------------------------------------------------------------------

    def handle_genesis(self, doc: Any, app_state: Mapping[str, Any]) -> None:
        """Store the proposals and parameters found inside the genesis state."""
        log.debug("parsing genesis")
        try:
            state = _load_section(app_state, MODULE_NAME)
            proposals = [_chain_proposal(p) for p in state.get("proposals") or ()]
            params_values = (
                _voting_params(state.get("voting_params") or {}),
                _deposit_params(state.get("deposit_params") or {}),
                _tally_params(state.get("tally_params") or {}),
            )
        except (ValueError, KeyError, TypeError, AttributeError, ArithmeticError) as err:
            raise ValueError(f"error while reading gov genesis data: {err}") from err

        try:
            self._save_proposals(proposals)
        except Exception as err:
            raise RuntimeError(f"error while storing genesis governance proposals: {err}") from err

        voting, deposit, tally = params_values
        try:
            self.db.save_gov_params(GovParams(deposit, voting, tally, doc.initial_height))
        except Exception as err:
            raise RuntimeError(f"error while storing genesis governance params: {err}") from err

    def _save_proposals(self, proposals: Sequence[ChainProposal]) -> None:
        # The proposer cannot be known from the genesis, so it is left empty
        self.db.save_proposals([_to_proposal(p, "") for p in proposals])
        self.db.save_deposits([Deposit(p.proposal_id, "", p.total_deposit, 1) for p in proposals])
        self.db.save_tally_results(
            [
                TallyResult(
                    p.proposal_id,
                    str(p.final_tally_result.yes),
                    str(p.final_tally_result.abstain),
                    str(p.final_tally_result.no),
                    str(p.final_tally_result.no_with_veto),
                    1,
                )
                for p in proposals
            ]
        )

    # -- messages ------------------------------------------------------------------------------------------------------

    def handle_msg(self, index: int, msg: Any, tx: Tx) -> None:
        """Store the data carried by governance messages of successful transactions."""
        if not tx.logs:
            return
        if isinstance(msg, MsgSubmitProposal):
            self._handle_msg_submit_proposal(tx, index, msg)
        elif isinstance(msg, MsgDeposit):
            self._handle_msg_deposit(tx, msg)
        elif isinstance(msg, MsgVote):
            self.db.save_vote(Vote(msg.proposal_id, msg.voter, msg.option, tx.height))

    def _handle_msg_submit_proposal(self, tx: Tx, index: int, msg: MsgSubmitProposal) -> None:
        try:
            event = tx.find_event_by_type(index, EVENT_TYPE_SUBMIT_PROPOSAL)
        except LookupError as err:
            raise RuntimeError(f"error while searching for EventTypeSubmitProposal: {err}") from err
        try:
            raw_id = tx.find_attribute_by_key(event, ATTRIBUTE_KEY_PROPOSAL_ID)
        except LookupError as err:
            raise RuntimeError(f"error while searching for AttributeKeyProposalID: {err}") from err
        if not raw_id.isdigit():
            raise RuntimeError(f"error while parsing proposal id: invalid syntax {raw_id!r}")
        proposal_id = int(raw_id)
        if proposal_id >= 1 << 64:
            raise RuntimeError(f"error while parsing proposal id: value out of range {raw_id!r}")

        try:
            proposal = _chain_proposal(self.source.proposal(tx.height, proposal_id))
        except Exception as err:
            raise RuntimeError(f"error while getting proposal: {err}") from err

        self.db.save_proposals([_to_proposal(proposal, msg.proposer)])
        self.db.save_deposits(
            [Deposit(proposal.proposal_id, msg.proposer, tuple(msg.initial_deposit), tx.height)]
        )

    def _handle_msg_deposit(self, tx: Tx, msg: MsgDeposit) -> None:
        try:
            deposit = self.source.proposal_deposit(tx.height, msg.proposal_id, msg.depositor)
        except Exception as err:
            raise RuntimeError(f"error while getting proposal deposit: {err}") from err
        self.db.save_deposits(
            [Deposit(msg.proposal_id, msg.depositor, _coins(deposit.amount), tx.height)]
        )

    # -- parameters ----------------------------------------------------------------------------------------------------

    def update_params(self, height: int) -> None:
        """Read the governance parameters at height and store them."""
        log.debug("updating params at height %d", height)
        try:
            deposit = _deposit_params(self.source.deposit_params(height))
        except Exception as err:
            raise RuntimeError(f"error while getting gov deposit params: {err}") from err
        try:
            voting = _voting_params(self.source.voting_params(height))
        except Exception as err:
            raise RuntimeError(f"error while getting gov voting params: {err}") from err
        try:
            tally = _tally_params(self.source.tally_params(height))
        except Exception as err:
            raise RuntimeError(f"error while getting gov tally params: {err}") from err
        self.db.save_gov_params(GovParams(deposit, voting, tally, height))

    # -- proposals -----------------------------------------------------------------------------------------------------

    def update_proposal(self, height: int, block_validators: Any, proposal_id: int) -> None:
        """Refresh everything stored about the proposal having the given id."""
        try:
            proposal = _chain_proposal(self.source.proposal(height, proposal_id))
        except Exception as err:
            if is_not_found(err):
                # The proposal was removed from the chain as it did not pass the deposit period
                self._update_deleted_proposal_status(proposal_id)
                return
            raise RuntimeError(f"error while getting proposal: {err}") from err

        steps = (
            ("error while updating params from ParamChangeProposal",
             lambda: self._handle_param_change_proposal(height, proposal)),
            ("error while updating proposal status", lambda: self._update_proposal_status(proposal)),
            ("error while updating proposal tally result", lambda: self._update_proposal_tally_result(proposal)),
            ("error while updating account", lambda: self._update_accounts(proposal)),
            ("error while updating proposal staking pool snapshot",
             lambda: self._update_proposal_staking_pool_snapshot(height, proposal_id)),
            ("error while updating proposal validator statuses snapshot",
             lambda: self._update_proposal_validator_statuses_snapshot(height, proposal_id, block_validators)),
        )
        for message, step in steps:
            try:
                step()
            except Exception as err:
                raise RuntimeError(f"{message}: {err}") from err

    def _update_deleted_proposal_status(self, proposal_id: int) -> None:
        stored = self.db.get_proposal(proposal_id)
        self.db.update_proposal(
            ProposalUpdate(
                stored.proposal_id,
                PROPOSAL_STATUS_INVALID,
                stored.voting_start_time,
                stored.voting_end_time,
            )
        )

    def _handle_param_change_proposal(self, height: int, proposal: ChainProposal) -> None:
        if proposal.status != PROPOSAL_STATUS_PASSED:
            return
        if proposal.content.proposal_type != PARAMETER_CHANGE_TYPE:
            return
        updaters = {
            "distribution": self.distr_module.update_params,
            MODULE_NAME: self.update_params,
            "mint": self.mint_module.update_params,
            "slashing": self.slashing_module.update_params,
            "staking": self.staking_module.update_params,
        }
        for change in proposal.content.changes:
            update = updaters.get(change.subspace)
            if update is None:
                continue
            try:
                update(height)
            except Exception as err:
                raise RuntimeError(
                    f"error while updating ParamChangeProposal {change.subspace} params : {err}"
                ) from err

    def _update_proposal_status(self, proposal: ChainProposal) -> None:
        self.db.update_proposal(
            ProposalUpdate(
                proposal.proposal_id,
                proposal.status,
                proposal.voting_start_time,
                proposal.voting_end_time,
            )
        )

    def _update_proposal_tally_result(self, proposal: ChainProposal) -> None:
        height = self.db.get_last_block_height()
        try:
            result = _tally(self.source.tally_result(height, proposal.proposal_id))
        except Exception as err:
            raise RuntimeError(f"error while getting tally result: {err}") from err
        self.db.save_tally_results(
            [
                TallyResult(
                    proposal.proposal_id,
                    str(result.yes),
                    str(result.abstain),
                    str(result.no),
                    str(result.no_with_veto),
                    height,
                )
            ]
        )

    def _update_accounts(self, proposal: ChainProposal) -> None:
        content = proposal.content
        if content.proposal_type != COMMUNITY_POOL_SPEND_TYPE or not content.recipient:
            return
        try:
            height = self.db.get_last_block_height()
        except Exception as err:
            raise RuntimeError(f"error while getting last block height: {err}") from err
        self.auth_module.refresh_accounts(height, [content.recipient])

    def _update_proposal_staking_pool_snapshot(self, height: int, proposal_id: int) -> None:
        try:
            pool = self.staking_module.get_staking_pool(height)
        except Exception as err:
            raise RuntimeError(f"error while getting staking pool: {err}") from err
        self.db.save_proposal_staking_pool_snapshot(ProposalStakingPoolSnapshot(proposal_id, pool))

    def _update_proposal_validator_statuses_snapshot(
        self, height: int, proposal_id: int, block_validators: Any
    ) -> None:
        try:
            validators, _ = self.staking_module.get_validators_with_status(height, BOND_STATUS_BONDED)
        except Exception as err:
            raise RuntimeError(f"error while getting validators with bonded status: {err}") from err
        try:
            voting_powers = list(self.staking_module.get_validators_voting_powers(height, block_validators))
        except Exception as err:
            raise RuntimeError(f"error while getting validators voting powers: {err}") from err
        try:
            statuses = list(self.staking_module.get_validators_statuses(height, validators))
        except Exception as err:
            raise RuntimeError(f"error while getting validator statuses: {err}") from err

        snapshots = []
        for validator in validators:
            consensus_address = _consensus_address(validator)
            try:
                status = _find_status(consensus_address, statuses)
            except LookupError as err:
                raise RuntimeError(f"error while searching for status: {err}") from err
            try:
                voting_power = _find_voting_power(consensus_address, voting_powers)
            except LookupError as err:
                raise RuntimeError(f"error while searching for voting power: {err}") from err
            snapshots.append(
                ProposalValidatorStatusSnapshot(
                    proposal_id,
                    consensus_address,
                    voting_power.voting_power,
                    status.status,
                    status.jailed,
                    height,
                )
            )
        self.db.save_proposal_validators_statuses_snapshots(snapshots)