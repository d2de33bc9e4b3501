"""Bech32 addresses: encoding, decoding and account address filtering."""

from __future__ import annotations

from typing import Iterable

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_MAX_ADDRESS_LENGTH = 255


def _polymod(values: Iterable[int]) -> int:
    checksum = 1
    for value in values:
        top = checksum >> 25
        checksum = (checksum & 0x1FFFFFF) << 5 ^ value
        for bit, generator in enumerate(_GENERATOR):
            if (top >> bit) & 1:
                checksum ^= generator
    return checksum


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _checksum(hrp: str, data: list[int]) -> list[int]:
    value = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ 1
    return [(value >> 5 * (5 - i)) & 31 for i in range(6)]


def _convert_bits(data: Iterable[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    result: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValueError("invalid data value")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & max_value)
    if pad:
        if bits:
            result.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or (acc << (to_bits - bits)) & max_value:
        raise ValueError("invalid padding")
    return result


def bech32_encode(hrp: str, data: bytes) -> str:
    """Encode raw bytes as a bech32 string with the given prefix."""
    if not hrp:
        raise ValueError("empty human readable part")
    hrp = hrp.lower()
    five_bit = _convert_bits(data, 8, 5, True)
    return hrp + "1" + "".join(_CHARSET[d] for d in five_bit + _checksum(hrp, five_bit))


def bech32_decode(address: str) -> tuple[str, bytes]:
    """Decode a bech32 string into its prefix and raw bytes."""
    if address.lower() != address and address.upper() != address:
        raise ValueError("mixed case bech32 string")
    text = address.lower()
    separator = text.rfind("1")
    if separator < 1 or separator + 7 > len(text):
        raise ValueError("invalid separator position")
    hrp, rest = text[:separator], text[separator + 1:]
    if any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise ValueError("invalid character in human readable part")
    if any(c not in _CHARSET for c in rest):
        raise ValueError("invalid character in data part")
    data = [_CHARSET.index(c) for c in rest]
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise ValueError("invalid checksum")
    return hrp, bytes(_convert_bits(data[:-6], 5, 8, False))


def account_address_from_bech32(address: str, prefix: str = "cosmos") -> bytes:
    """Return the raw account address, raising ValueError if it is not one."""
    if not address.strip():
        raise ValueError("empty address string is not allowed")
    hrp, raw = bech32_decode(address)
    if hrp != prefix:
        raise ValueError(f"invalid Bech32 prefix; expected {prefix}, got {hrp}")
    if not raw:
        raise ValueError("addresses cannot be empty")
    if len(raw) > _MAX_ADDRESS_LENGTH:
        raise ValueError(f"address max length is {_MAX_ADDRESS_LENGTH}, got {len(raw)}")
    return raw


def convert_address_prefix(address: str, prefix: str) -> str:
    """Re-encode a bech32 address under another prefix."""
    _, raw = bech32_decode(address)
    return bech32_encode(prefix, raw)


def consensus_address_from_bytes(raw: bytes, prefix: str = "cosmosvalcons") -> str:
    """Encode a raw validator address as a consensus address."""
    return bech32_encode(prefix, raw)


def filter_non_account_addresses(addresses: Iterable[str], prefix: str = "cosmos") -> list[str]:
    """Keep only the addresses that are valid account addresses."""
    accounts = []
    for address in addresses:
        try:
            account_address_from_bech32(address, prefix)
        except ValueError:
            continue
        accounts.append(address)
    return accounts