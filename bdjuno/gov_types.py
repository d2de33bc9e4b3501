"""Governance records: parameters, proposals, deposits, votes and tallies."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import IntEnum
from typing import Optional

from bdjuno.chain_types import Coin, Pool

PROPOSAL_STATUS_INVALID = "PROPOSAL_STATUS_INVALID"
PROPOSAL_STATUS_PASSED = "PROPOSAL_STATUS_PASSED"


def _nanoseconds(period: timedelta) -> int:
    return ((period.days * 86_400 + period.seconds) * 1_000_000 + period.microseconds) * 1_000


class VoteOption(IntEnum):
    """The option chosen by a voter."""

    VOTE_OPTION_UNSPECIFIED = 0
    VOTE_OPTION_YES = 1
    VOTE_OPTION_ABSTAIN = 2
    VOTE_OPTION_NO = 3
    VOTE_OPTION_NO_WITH_VETO = 4

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class DepositParams:
    """Deposit parameters; the period is expressed in nanoseconds."""

    min_deposit: tuple[Coin, ...]
    max_deposit_period: int

    @classmethod
    def from_period(cls, min_deposit, max_deposit_period: timedelta) -> "DepositParams":
        """Build the parameters from a deposit period given as a timedelta."""
        return cls(tuple(min_deposit), _nanoseconds(max_deposit_period))


@dataclass(frozen=True)
class VotingParams:
    """Voting parameters; the period is expressed in nanoseconds."""

    voting_period: int

    @classmethod
    def from_period(cls, voting_period: timedelta) -> "VotingParams":
        """Build the parameters from a voting period given as a timedelta."""
        return cls(_nanoseconds(voting_period))


@dataclass(frozen=True)
class TallyParams:
    """Tally parameters."""

    quorum: Decimal
    threshold: Decimal
    veto_threshold: Decimal


@dataclass(frozen=True)
class GovParams:
    """All governance parameters at a given height."""

    deposit_params: DepositParams
    voting_params: VotingParams
    tally_params: TallyParams
    height: int


@dataclass(frozen=True)
class ParamChange:
    """A single parameter change carried by a parameter change proposal."""

    subspace: str
    key: str
    value: str


@dataclass(frozen=True)
class ProposalContent:
    """The content of a governance proposal."""

    title: str
    description: str
    proposal_type: str = "Text"
    proposal_route: str = "gov"
    changes: tuple[ParamChange, ...] = ()
    recipient: Optional[str] = None
    amount: tuple[Coin, ...] = ()

    def __str__(self) -> str:
        lines = [
            f"{self.proposal_type} Proposal:",
            f"  Title:       {self.title}",
            f"  Description: {self.description}",
        ]
        if self.recipient:
            lines.append(f"  Recipient:   {self.recipient}")
        if self.amount:
            lines.append(f"  Amount:      {','.join(str(coin) for coin in self.amount)}")
        if self.changes:
            lines.append("  Changes:")
            lines.extend(f"    {c.subspace}/{c.key}: {c.value}" for c in self.changes)
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class ChainTallyResult:
    """A tally result as reported by the chain."""

    yes: int = 0
    abstain: int = 0
    no: int = 0
    no_with_veto: int = 0


@dataclass(frozen=True)
class ChainProposal:
    """A governance proposal as reported by the chain."""

    proposal_id: int
    content: ProposalContent
    status: str
    submit_time: datetime
    deposit_end_time: datetime
    voting_start_time: datetime
    voting_end_time: datetime
    final_tally_result: ChainTallyResult = field(default_factory=ChainTallyResult)
    total_deposit: tuple[Coin, ...] = ()

    @property
    def proposal_route(self) -> str:
        return self.content.proposal_route

    @property
    def proposal_type(self) -> str:
        return self.content.proposal_type


@dataclass(frozen=True)
class ChainDeposit:
    """A deposit as reported by the chain."""

    proposal_id: int
    depositor: str
    amount: tuple[Coin, ...]


@dataclass(frozen=True)
class MsgSubmitProposal:
    """A message submitting a new proposal."""

    content: ProposalContent
    initial_deposit: tuple[Coin, ...]
    proposer: str


@dataclass(frozen=True)
class MsgDeposit:
    """A message depositing towards a proposal."""

    proposal_id: int
    depositor: str
    amount: tuple[Coin, ...]


@dataclass(frozen=True)
class MsgVote:
    """A message voting on a proposal."""

    proposal_id: int
    voter: str
    option: VoteOption


@dataclass(frozen=True, eq=False)
class Proposal:
    """A single governance proposal as stored."""

    proposal_id: int
    proposal_route: str
    proposal_type: str
    content: ProposalContent
    status: str
    submit_time: datetime
    deposit_end_time: datetime
    voting_start_time: datetime
    voting_end_time: datetime
    proposer: str

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Proposal):
            return NotImplemented
        return (
            self.proposal_route == other.proposal_route
            and self.proposal_type == other.proposal_type
            and self.proposal_id == other.proposal_id
            and str(self.content) == str(other.content)
            and self.status == other.status
            and self.submit_time == other.submit_time
            and self.deposit_end_time == other.deposit_end_time
            and self.voting_start_time == other.voting_start_time
            and self.voting_end_time == other.voting_end_time
            and self.proposer == other.proposer
        )

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True)
class ProposalUpdate:
    """The data used to update a stored proposal."""

    proposal_id: int
    status: str
    voting_start_time: datetime
    voting_end_time: datetime


@dataclass(frozen=True)
class Deposit:
    """A single deposit made towards a proposal."""

    proposal_id: int
    depositor: str
    amount: tuple[Coin, ...]
    height: int


@dataclass(frozen=True)
class Vote:
    """A single proposal vote."""

    proposal_id: int
    voter: str
    option: VoteOption
    height: int


@dataclass(frozen=True)
class TallyResult:
    """The tally of a proposal, with counts kept as decimal strings."""

    proposal_id: int
    yes: str
    abstain: str
    no: str
    no_with_veto: str
    height: int


@dataclass(frozen=True)
class ProposalStakingPoolSnapshot:
    """A staking pool snapshot associated with a proposal."""

    proposal_id: int
    pool: Pool


@dataclass(frozen=True)
class ProposalValidatorStatusSnapshot:
    """A snapshot of a validator status associated with a proposal."""

    proposal_id: int
    validator_cons_address: str
    validator_voting_power: int
    validator_status: int
    validator_jailed: bool
    height: int