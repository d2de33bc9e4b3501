import pytest

from bdjuno.sources import (
    GovSource,
    MintSource,
    NotFoundError,
    SlashingSource,
    StakingSource,
    is_not_found,
)


def test_is_not_found_for_not_found_error():
    assert is_not_found(NotFoundError("proposal 3"))


def test_is_not_found_for_grpc_message():
    assert is_not_found(RuntimeError("rpc error: code = NotFound desc = missing"))


def test_is_not_found_false_for_other_errors():
    assert not is_not_found(RuntimeError("rpc error: code = Unavailable"))


@pytest.mark.parametrize("interface", [GovSource, MintSource, SlashingSource, StakingSource])
def test_interfaces_cannot_be_instantiated(interface):
    with pytest.raises(TypeError):
        interface()