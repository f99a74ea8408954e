"""Address encoding — bech32 segwit v0 addresses (BIP173).

Segwit address operations:
- P2WSH / P2WPKH address generation from witness programs
- Address decoding and validation
- Address -> output locking script
"""

from __future__ import annotations

from cltv_engine.btc.script import OpCode, Script

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)

# Human-readable parts per network
HRP_MAINNET = "bc"
HRP_TESTNET = "tb"
HRP_REGTEST = "bcrt"

_KNOWN_HRPS = (HRP_MAINNET, HRP_TESTNET, HRP_REGTEST)


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i, gen in enumerate(_GENERATOR):
            if (top >> i) & 1:
                chk ^= gen
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: list[int]) -> list[int]:
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def _convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, *, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    result: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            msg = f"invalid {from_bits}-bit value: {value}"
            raise ValueError(msg)
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & max_value)
    if pad:
        if bits:
            result.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & max_value):
        msg = "invalid padding in bech32 data"
        raise ValueError(msg)
    return result


def encode_address(program: Script | bytes, hrp: str = HRP_MAINNET) -> str:
    """Encode a witness v0 locking script as a bech32 address.

    Args:
        program: ``OP_0 <20|32 bytes>`` locking script.
        hrp: Human-readable part (``bc``, ``tb``, ``bcrt``).

    Raises:
        ValueError: If *program* is not a witness v0 program.
    """
    raw = bytes(program)
    if len(raw) not in (22, 34) or raw[0] != OpCode.OP_0 or raw[1] != len(raw) - 2:
        msg = "address encoding requires a witness v0 program"
        raise ValueError(msg)
    data = [0] + _convert_bits(raw[2:], 8, 5, pad=True)
    checksum = _create_checksum(hrp, data)
    return hrp + "1" + "".join(_CHARSET[d] for d in data + checksum)


def decode_address(address: str) -> tuple[str, int, bytes]:
    """Decode a bech32 segwit v0 address.

    Returns:
        Tuple of (hrp, witness_version, program_bytes).

    Raises:
        ValueError: If the address is malformed or not witness v0.
    """
    if address.lower() != address and address.upper() != address:
        msg = "mixed-case bech32 address"
        raise ValueError(msg)
    address = address.lower()
    pos = address.rfind("1")
    if pos < 1 or pos + 7 > len(address) or len(address) > 90:
        msg = f"invalid bech32 address layout: {address!r}"
        raise ValueError(msg)
    hrp = address[:pos]
    try:
        data = [_CHARSET.index(c) for c in address[pos + 1 :]]
    except ValueError as e:
        msg = f"invalid bech32 character in {address!r}"
        raise ValueError(msg) from e
    if _polymod(_hrp_expand(hrp) + data) != 1:
        msg = "bech32 checksum mismatch"
        raise ValueError(msg)

    version = data[0]
    program = bytes(_convert_bits(data[1:-6], 5, 8, pad=False))
    if version != 0:
        msg = f"unsupported witness version: {version}"
        raise ValueError(msg)
    if len(program) not in (20, 32):
        msg = f"invalid witness v0 program length: {len(program)}"
        raise ValueError(msg)
    return hrp, version, program


def validate_address(address: str, hrp: str | None = None) -> bool:
    """Check whether *address* is a well-formed witness v0 address."""
    try:
        decoded_hrp, _, _ = decode_address(address)
    except ValueError:
        return False
    if hrp is not None:
        return decoded_hrp == hrp
    return decoded_hrp in _KNOWN_HRPS


def address_to_script(address: str) -> Script:
    """Return the output locking script paying to *address*."""
    _, _, program = decode_address(address)
    return Script.from_ops(OpCode.OP_0, program)
