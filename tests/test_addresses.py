import pytest

from bdjuno.addresses import (
    account_address_from_bech32,
    bech32_decode,
    bech32_encode,
    consensus_address_from_bytes,
    convert_address_prefix,
    filter_non_account_addresses,
)

ACCOUNT = "cosmos1hafptm4zxy5nw8rd2pxyg83c5ls2v62tstzuv2"
VALOPER = "cosmosvaloper1hafptm4zxy5nw8rd2pxyg83c5ls2v62t4lkfqe"


def test_filter_non_account_addresses():
    assert filter_non_account_addresses([ACCOUNT, VALOPER]) == [ACCOUNT]


def test_filter_with_other_prefix():
    assert filter_non_account_addresses([ACCOUNT, VALOPER], "cosmosvaloper") == [VALOPER]


def test_convert_prefix_matches_known_valoper():
    assert convert_address_prefix(ACCOUNT, "cosmosvaloper") == VALOPER
    assert convert_address_prefix(VALOPER, "cosmos") == ACCOUNT


def test_encode_decode_round_trip():
    raw = bytes(range(20))
    hrp, decoded = bech32_decode(bech32_encode("test", raw))
    assert hrp == "test"
    assert decoded == raw


def test_consensus_address_round_trip():
    raw = bytes(range(1, 21))
    address = consensus_address_from_bytes(raw)
    assert address.startswith("cosmosvalcons1")
    assert bech32_decode(address)[1] == raw


def test_account_address_bytes_length():
    assert len(account_address_from_bech32(ACCOUNT)) == 20


def test_wrong_prefix_raises():
    with pytest.raises(ValueError, match="invalid Bech32 prefix"):
        account_address_from_bech32(VALOPER)


def test_bad_checksum_raises():
    corrupted = ACCOUNT[:-1] + ("q" if ACCOUNT[-1] != "q" else "p")
    with pytest.raises(ValueError, match="checksum"):
        bech32_decode(corrupted)


def test_mixed_case_raises():
    with pytest.raises(ValueError):
        bech32_decode("Cosmos1hafptm4zxy5nw8rd2pxyg83c5ls2v62tstzuv2")


def test_empty_address_raises():
    with pytest.raises(ValueError):
        account_address_from_bech32("  ")