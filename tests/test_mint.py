import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from bdjuno.chain_types import MintParams
from bdjuno.mint import MintModule
from bdjuno.utils import GenesisDoc, Scheduler


class FakeSource:
    def __init__(self, params=None, inflation=Decimal("0.13"), fail=False):
        self._params = params or {"mint_denom": "stake"}
        self._inflation = inflation
        self._fail = fail
        self.heights = []

    def params(self, height):
        if self._fail:
            raise RuntimeError("boom")
        self.heights.append(height)
        return self._params

    def get_inflation(self, height):
        self.heights.append(height)
        return self._inflation


class FakeDb:
    def __init__(self, last_height=42):
        self.mint_params = []
        self.inflations = []
        self.last_height = last_height
        self.saved = threading.Event()

    def save_mint_params(self, params):
        self.mint_params.append(params)

    def get_last_block_height(self):
        return self.last_height

    def save_inflation(self, inflation, height):
        self.inflations.append((inflation, height))
        self.saved.set()


def _doc(initial_height=1):
    return GenesisDoc("test-chain", datetime(2021, 1, 1, tzinfo=timezone.utc), initial_height)


def test_name():
    assert MintModule(FakeSource(), FakeDb()).name() == "mint"


def test_handle_genesis_stores_params_at_initial_height():
    db = FakeDb()
    params = {"mint_denom": "stake", "blocks_per_year": "6311520"}
    MintModule(FakeSource(), db).handle_genesis(_doc(7), {"mint": {"params": params}})
    assert db.mint_params == [MintParams(params, 7)]


def test_handle_genesis_accepts_raw_json_section():
    db = FakeDb()
    MintModule(FakeSource(), db).handle_genesis(_doc(3), {"mint": '{"params": {"mint_denom": "stake"}}'})
    assert db.mint_params == [MintParams({"mint_denom": "stake"}, 3)]


def test_handle_genesis_missing_section():
    with pytest.raises(ValueError, match="error while reading mint genesis data"):
        MintModule(FakeSource(), FakeDb()).handle_genesis(_doc(), {})


def test_update_params_uses_given_height():
    source = FakeSource(params={"mint_denom": "uatom"})
    db = FakeDb()
    MintModule(source, db).update_params(100)
    assert source.heights == [100]
    assert db.mint_params == [MintParams({"mint_denom": "uatom"}, 100)]


def test_update_params_error():
    db = FakeDb()
    with pytest.raises(RuntimeError, match="error while getting params"):
        MintModule(FakeSource(fail=True), db).update_params(5)
    assert db.mint_params == []


def test_update_inflation_uses_last_block_height():
    source = FakeSource(inflation=Decimal("0.07"))
    db = FakeDb(last_height=250)
    MintModule(source, db).update_inflation()
    assert source.heights == [250]
    assert db.inflations == [(Decimal("0.07"), 250)]


def test_periodic_operation_runs_at_midnight():
    db = FakeDb(last_height=9)
    scheduler = Scheduler()
    MintModule(FakeSource(), db).register_periodic_operations(scheduler)

    assert scheduler.run_pending(datetime(2022, 5, 1, 12, 0)) == 0
    assert scheduler.run_pending(datetime(2022, 5, 2, 0, 0)) == 1
    assert db.saved.wait(5)
    assert db.inflations == [(Decimal("0.13"), 9)]