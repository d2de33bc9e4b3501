import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from bdjuno.chain_types import Coin, Pool, Tx, ValidatorStatus, ValidatorVotingPower
from bdjuno.gov import GovModule
from bdjuno.gov_types import (
    ChainDeposit,
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
    VoteOption,
    VotingParams,
)
from bdjuno.sources import NotFoundError
from bdjuno.utils import GenesisDoc

UTC = timezone.utc
T0 = datetime(2021, 1, 1, tzinfo=UTC)
T1 = datetime(2021, 1, 3, tzinfo=UTC)
T2 = datetime(2021, 1, 5, tzinfo=UTC)

DEPOSIT_PARAMS = DepositParams.from_period((Coin("stake", 10),), timedelta(days=2))
VOTING_PARAMS = VotingParams.from_period(timedelta(days=2))
TALLY_PARAMS = TallyParams(Decimal("0.334"), Decimal("0.5"), Decimal("0.334"))


class FakeDb:
    def __init__(self, open_ids=(), stored=None, last_height=100):
        self.open_ids = list(open_ids)
        self.stored = stored or {}
        self.last_height = last_height
        self.proposals = []
        self.deposits = []
        self.votes = []
        self.tally_results = []
        self.gov_params = []
        self.updates = []
        self.pool_snapshots = []
        self.validator_snapshots = []

    def save_proposals(self, proposals):
        self.proposals.extend(proposals)

    def save_deposits(self, deposits):
        self.deposits.extend(deposits)

    def save_vote(self, vote):
        self.votes.append(vote)

    def save_tally_results(self, results):
        self.tally_results.extend(results)

    def save_gov_params(self, params):
        self.gov_params.append(params)

    def update_proposal(self, update):
        self.updates.append(update)

    def get_proposal(self, proposal_id):
        return self.stored[proposal_id]

    def get_last_block_height(self):
        return self.last_height

    def get_open_proposals_ids(self):
        return self.open_ids

    def save_proposal_staking_pool_snapshot(self, snapshot):
        self.pool_snapshots.append(snapshot)

    def save_proposal_validators_statuses_snapshots(self, snapshots):
        self.validator_snapshots.extend(snapshots)


class FakeSource:
    def __init__(self, proposals=None, error=None, tally=None, deposit=None, params_error=None):
        self.proposals = proposals or {}
        self.error = error
        self.tally = tally or ChainTallyResult()
        self.deposit = deposit
        self.params_error = params_error
        self.deposit_requests = []

    def proposal(self, height, proposal_id):
        if self.error is not None:
            raise self.error
        return self.proposals[proposal_id]

    def proposal_deposit(self, height, proposal_id, depositor):
        self.deposit_requests.append((height, proposal_id, depositor))
        return self.deposit

    def tally_result(self, height, proposal_id):
        return self.tally

    def deposit_params(self, height):
        if self.params_error is not None:
            raise self.params_error
        return DEPOSIT_PARAMS

    def voting_params(self, height):
        return VOTING_PARAMS

    def tally_params(self, height):
        return TALLY_PARAMS


class ParamsRecorder:
    def __init__(self):
        self.heights = []

    def update_params(self, height):
        self.heights.append(height)


class FakeAuth:
    def __init__(self):
        self.calls = []

    def refresh_accounts(self, height, addresses):
        self.calls.append((height, list(addresses)))


@dataclass
class FakeValidator:
    consensus_address: str


class FakeStaking(ParamsRecorder):
    def __init__(self, validators=(), powers=(), statuses=()):
        super().__init__()
        self.validators = list(validators)
        self.powers = list(powers)
        self.statuses = list(statuses)
        self.requested_status = None

    def get_staking_pool(self, height):
        return Pool(1000, 50, height)

    def get_validators_with_status(self, height, status):
        self.requested_status = status
        return self.validators, []

    def get_validators_voting_powers(self, height, block_validators):
        return self.powers

    def get_validators_statuses(self, height, validators):
        return self.statuses


def make_module(db=None, source=None, staking=None):
    parts = {
        "auth": FakeAuth(),
        "distr": ParamsRecorder(),
        "mint": ParamsRecorder(),
        "slashing": ParamsRecorder(),
        "staking": staking or FakeStaking(),
    }
    module = GovModule(
        source or FakeSource(),
        parts["auth"],
        parts["distr"],
        parts["mint"],
        parts["slashing"],
        parts["staking"],
        db or FakeDb(),
    )
    return module, parts


def chain_proposal(proposal_id=7, status="PROPOSAL_STATUS_VOTING_PERIOD", content=None):
    return ChainProposal(
        proposal_id=proposal_id,
        content=content or ProposalContent("title", "description"),
        status=status,
        submit_time=T0,
        deposit_end_time=T1,
        voting_start_time=T1,
        voting_end_time=T2,
    )


def submit_tx(proposal_id="7", height=42):
    logs = (
        {
            "msg_index": 0,
            "events": [
                {"type": "submit_proposal", "attributes": [{"key": "proposal_id", "value": proposal_id}]}
            ],
        },
    )
    return Tx(height=height, hash="ABC", logs=logs)


def test_name():
    module, _ = make_module()
    assert module.name() == "gov"


def test_handle_msg_without_logs_stores_nothing():
    db = FakeDb()
    module, _ = make_module(db=db)
    module.handle_msg(0, MsgVote(1, "voter", VoteOption.VOTE_OPTION_YES), Tx(height=3))
    assert db.votes == []


def test_handle_submit_proposal_stores_proposal_and_deposit():
    db = FakeDb()
    source = FakeSource(proposals={7: chain_proposal()})
    module, _ = make_module(db=db, source=source)
    msg = MsgSubmitProposal(ProposalContent("title", "description"), (Coin("stake", 5),), "proposer")
    module.handle_msg(0, msg, submit_tx())

    expected = Proposal(7, "gov", "Text", ProposalContent("title", "description"),
                        "PROPOSAL_STATUS_VOTING_PERIOD", T0, T1, T1, T2, "proposer")
    assert db.proposals == [expected]
    assert db.deposits == [Deposit(7, "proposer", (Coin("stake", 5),), 42)]


def test_handle_submit_proposal_without_event_raises():
    module, _ = make_module()
    msg = MsgSubmitProposal(ProposalContent("t", "d"), (), "proposer")
    tx = Tx(height=1, logs=({"msg_index": 0, "events": []},))
    with pytest.raises(RuntimeError, match="EventTypeSubmitProposal"):
        module.handle_msg(0, msg, tx)


def test_handle_submit_proposal_with_invalid_id_raises():
    module, _ = make_module()
    msg = MsgSubmitProposal(ProposalContent("t", "d"), (), "proposer")
    with pytest.raises(RuntimeError, match="parsing proposal id"):
        module.handle_msg(0, msg, submit_tx(proposal_id="abc"))


def test_handle_deposit_uses_source_amount():
    db = FakeDb()
    source = FakeSource(deposit=ChainDeposit(3, "depositor", (Coin("stake", 9),)))
    module, _ = make_module(db=db, source=source)
    module.handle_msg(0, MsgDeposit(3, "depositor", (Coin("stake", 1),)), submit_tx(height=11))
    assert source.deposit_requests == [(11, 3, "depositor")]
    assert db.deposits == [Deposit(3, "depositor", (Coin("stake", 9),), 11)]


def test_handle_vote():
    db = FakeDb()
    module, _ = make_module(db=db)
    module.handle_msg(0, MsgVote(2, "voter", VoteOption.VOTE_OPTION_NO), submit_tx(height=8))
    assert db.votes == [Vote(2, "voter", VoteOption.VOTE_OPTION_NO, 8)]


def test_update_params_saves_all_params():
    db = FakeDb()
    module, _ = make_module(db=db)
    module.update_params(15)
    assert db.gov_params == [GovParams(DEPOSIT_PARAMS, VOTING_PARAMS, TALLY_PARAMS, 15)]


def test_update_params_source_error():
    module, _ = make_module(source=FakeSource(params_error=ConnectionError("down")))
    with pytest.raises(RuntimeError, match="deposit params"):
        module.update_params(15)


def test_update_proposal_not_found_marks_invalid():
    stored = Proposal(4, "gov", "Text", ProposalContent("t", "d"), "PROPOSAL_STATUS_DEPOSIT_PERIOD",
                      T0, T1, T1, T2, "")
    db = FakeDb(stored={4: stored})
    module, _ = make_module(db=db, source=FakeSource(error=NotFoundError("rpc error: code = NotFound")))
    module.update_proposal(20, None, 4)
    assert db.updates == [ProposalUpdate(4, "PROPOSAL_STATUS_INVALID", T1, T2)]


def test_update_proposal_other_error_raises():
    module, _ = make_module(source=FakeSource(error=ConnectionError("unavailable")))
    with pytest.raises(RuntimeError, match="error while getting proposal"):
        module.update_proposal(20, None, 4)


def test_update_proposal_passed_param_change_refreshes_everything():
    changes = tuple(ParamChange(s, "key", "value") for s in ("distribution", "mint", "slashing", "staking", "gov"))
    content = ProposalContent("t", "d", "ParameterChange", "params", changes=changes)
    proposal = chain_proposal(proposal_id=5, status="PROPOSAL_STATUS_PASSED", content=content)
    tally = ChainTallyResult(yes=3, abstain=1, no=2, no_with_veto=0)
    staking = FakeStaking(
        validators=[FakeValidator("valcons1")],
        powers=[ValidatorVotingPower("valcons1", 77, 30)],
        statuses=[ValidatorStatus("valcons1", "pub", 3, False, False, 30)],
    )
    db = FakeDb(last_height=100)
    module, parts = make_module(db=db, source=FakeSource(proposals={5: proposal}, tally=tally), staking=staking)

    module.update_proposal(30, None, 5)

    assert parts["distr"].heights == [30]
    assert parts["mint"].heights == [30]
    assert parts["slashing"].heights == [30]
    assert staking.heights == [30]
    assert db.gov_params == [GovParams(DEPOSIT_PARAMS, VOTING_PARAMS, TALLY_PARAMS, 30)]
    assert db.updates == [ProposalUpdate(5, "PROPOSAL_STATUS_PASSED", T1, T2)]
    assert db.tally_results == [TallyResult(5, "3", "1", "2", "0", 100)]
    assert db.pool_snapshots == [ProposalStakingPoolSnapshot(5, Pool(1000, 50, 30))]
    assert staking.requested_status == "BOND_STATUS_BONDED"
    assert db.validator_snapshots == [ProposalValidatorStatusSnapshot(5, "valcons1", 77, 3, False, 30)]
    assert parts["auth"].calls == []


def test_update_proposal_not_passed_does_not_touch_params():
    changes = (ParamChange("mint", "key", "value"),)
    content = ProposalContent("t", "d", "ParameterChange", "params", changes=changes)
    proposal = chain_proposal(proposal_id=5, content=content)
    module, parts = make_module(source=FakeSource(proposals={5: proposal}))
    module.update_proposal(30, None, 5)
    assert parts["mint"].heights == []


def test_update_proposal_community_pool_spend_refreshes_recipient():
    content = ProposalContent("t", "d", "CommunityPoolSpend", "distribution", recipient="cosmos1recipient")
    proposal = chain_proposal(proposal_id=6, content=content)
    db = FakeDb(last_height=55)
    module, parts = make_module(db=db, source=FakeSource(proposals={6: proposal}))
    module.update_proposal(30, None, 6)
    assert parts["auth"].calls == [(55, ["cosmos1recipient"])]


def test_update_proposal_missing_voting_power_raises():
    staking = FakeStaking(
        validators=[FakeValidator("valcons1")],
        powers=[],
        statuses=[ValidatorStatus("valcons1", "pub", 3, False, False, 30)],
    )
    module, _ = make_module(source=FakeSource(proposals={7: chain_proposal()}), staking=staking)
    with pytest.raises(RuntimeError, match="voting power"):
        module.update_proposal(30, None, 7)


def test_handle_block_swallows_errors():
    db = FakeDb(open_ids=[7])
    module, _ = make_module(db=db, source=FakeSource(error=ConnectionError("down")))
    assert module.handle_block(10, None) is None
    assert db.updates == []


def test_handle_block_updates_open_proposals():
    db = FakeDb(open_ids=[7])
    module, _ = make_module(db=db, source=FakeSource(proposals={7: chain_proposal()}))
    module.handle_block(10, None)
    assert db.updates == [ProposalUpdate(7, "PROPOSAL_STATUS_VOTING_PERIOD", T1, T2)]


GENESIS_GOV = {
    "starting_proposal_id": "2",
    "deposits": [],
    "votes": [],
    "proposals": [
        {
            "proposal_id": "1",
            "content": {"@type": "/cosmos.gov.v1beta1.TextProposal", "title": "title", "description": "description"},
            "status": "PROPOSAL_STATUS_PASSED",
            "final_tally_result": {"yes": "5", "abstain": "0", "no": "1", "no_with_veto": "0"},
            "submit_time": "2021-01-01T00:00:00Z",
            "deposit_end_time": "2021-01-03T00:00:00Z",
            "total_deposit": [{"denom": "stake", "amount": "10"}],
            "voting_start_time": "2021-01-03T00:00:00Z",
            "voting_end_time": "2021-01-05T00:00:00Z",
        }
    ],
    "deposit_params": {"min_deposit": [{"denom": "stake", "amount": "10"}], "max_deposit_period": "172800s"},
    "voting_params": {"voting_period": "172800s"},
    "tally_params": {"quorum": "0.334", "threshold": "0.5", "veto_threshold": "0.334"},
}


@pytest.mark.parametrize("section", [GENESIS_GOV, json.dumps(GENESIS_GOV)])
def test_handle_genesis(section):
    db = FakeDb()
    module, _ = make_module(db=db)
    doc = GenesisDoc("test-chain", T0, initial_height=5)
    module.handle_genesis(doc, {"gov": section})

    assert db.proposals == [
        Proposal(1, "gov", "Text", ProposalContent("title", "description"),
                 "PROPOSAL_STATUS_PASSED", T0, T1, T1, T2, "")
    ]
    assert db.deposits == [Deposit(1, "", (Coin("stake", 10),), 1)]
    assert db.tally_results == [TallyResult(1, "5", "0", "1", "0", 1)]
    assert db.gov_params == [GovParams(DEPOSIT_PARAMS, VOTING_PARAMS, TALLY_PARAMS, 5)]


def test_handle_genesis_missing_section():
    module, _ = make_module()
    with pytest.raises(ValueError, match="gov genesis data"):
        module.handle_genesis(GenesisDoc("test-chain", T0, initial_height=1), {})


def test_handle_genesis_bad_duration():
    module, _ = make_module()
    broken = dict(GENESIS_GOV, voting_params={"voting_period": "two days"})
    with pytest.raises(ValueError, match="gov genesis data"):
        module.handle_genesis(GenesisDoc("test-chain", T0, initial_height=1), {"gov": broken})