"""Signing capability — secp256k1 key pairs, ECDSA signatures, WIF import.

The engine itself never touches curve arithmetic; it only needs something
satisfying :class:`Signer`. This module supplies the default implementation:
- Compressed SEC public key encoding and shape checks
- Deterministic (RFC 6979) low-S DER signatures
- Key loading from raw bytes, hex or WIF (Base58Check)
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.der import UnexpectedDER
from ecdsa.keys import MalformedPointError
from ecdsa.util import sigdecode_der, sigencode_der_canonize

from cltv_engine.errors.definitions import InvalidKeyError
from cltv_engine.utils.crypto import sha256d

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CURVE = SECP256k1
_CURVE_ORDER = _CURVE.order

_MAINNET_WIF = 0x80
_TESTNET_WIF = 0xEF


# ---------------------------------------------------------------------------
# Signer protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class Signer(Protocol):
    """Opaque signing capability injected into the engine."""

    @property
    def public_key(self) -> bytes: ...

    def sign(self, digest: bytes) -> bytes: ...


def is_compressed_public_key(pubkey: bytes) -> bool:
    """Length/prefix check for a 33-byte compressed SEC public key."""
    return len(pubkey) == 33 and pubkey[0] in (0x02, 0x03)


# ---------------------------------------------------------------------------
# Base58Check (WIF)
# ---------------------------------------------------------------------------

_B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def base58_encode(payload: bytes) -> str:
    """Encode raw bytes to Base58 (no checksum)."""
    n = int.from_bytes(payload, "big")
    result: list[int] = []
    while n > 0:
        n, remainder = divmod(n, 58)
        result.append(_B58_ALPHABET[remainder])
    # Preserve leading zero bytes
    for byte in payload:
        if byte == 0:
            result.append(_B58_ALPHABET[0])
        else:
            break
    return bytes(reversed(result)).decode("ascii")


def base58_decode(s: str) -> bytes:
    """Decode Base58 string to raw bytes (no checksum)."""
    n = 0
    for char in s:
        index = _B58_ALPHABET.find(char.encode("ascii"))
        if index < 0:
            msg = f"Invalid Base58 character: {char!r}"
            raise ValueError(msg)
        n = n * 58 + index
    result = n.to_bytes((n.bit_length() + 7) // 8, "big") if n > 0 else b""
    pad_count = len(s) - len(s.lstrip("1"))
    return b"\x00" * pad_count + result


def base58check_encode(payload: bytes) -> str:
    """Encode bytes with a 4-byte SHA256d checksum (Base58Check)."""
    return base58_encode(payload + sha256d(payload)[:4])


def base58check_decode(s: str) -> bytes:
    """Decode a Base58Check string, verifying the checksum.

    Raises:
        ValueError: If the checksum is invalid.
    """
    raw = base58_decode(s)
    if len(raw) < 4:
        msg = "Base58Check string too short"
        raise ValueError(msg)
    payload, checksum = raw[:-4], raw[-4:]
    if checksum != sha256d(payload)[:4]:
        msg = "Base58Check checksum mismatch"
        raise ValueError(msg)
    return payload


# ---------------------------------------------------------------------------
# Key pair
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeyPair:
    """A secp256k1 private key with its compressed public key.

    Attributes:
        secret: 32-byte big-endian private scalar.
        public_key: 33-byte compressed SEC public key.
    """

    secret: bytes = field(repr=False)
    public_key: bytes = field(init=False)

    def __post_init__(self) -> None:
        if len(self.secret) != 32:
            msg = f"private key must be 32 bytes, got {len(self.secret)}"
            raise InvalidKeyError(msg)
        scalar = int.from_bytes(self.secret, "big")
        if not 0 < scalar < _CURVE_ORDER:
            msg = "private key scalar out of range"
            raise InvalidKeyError(msg)
        vk = self._signing_key().get_verifying_key()
        object.__setattr__(self, "public_key", vk.to_string("compressed"))

    def _signing_key(self) -> SigningKey:
        return SigningKey.from_string(self.secret, curve=_CURVE)

    def sign(self, digest: bytes) -> bytes:
        """Sign a 32-byte digest, returning a low-S DER signature.

        Signatures are deterministic (RFC 6979), so the same key and digest
        always produce the same bytes.
        """
        if len(digest) != 32:
            msg = f"digest must be 32 bytes, got {len(digest)}"
            raise ValueError(msg)
        return self._signing_key().sign_digest_deterministic(
            digest,
            hashfunc=hashlib.sha256,
            sigencode=sigencode_der_canonize,
        )

    def to_wif(self, *, testnet: bool = False) -> str:
        """Encode as compressed WIF."""
        version = _TESTNET_WIF if testnet else _MAINNET_WIF
        return base58check_encode(bytes([version]) + self.secret + b"\x01")


def generate_keypair() -> KeyPair:
    """Create a fresh random key pair."""
    while True:
        candidate = secrets.token_bytes(32)
        if 0 < int.from_bytes(candidate, "big") < _CURVE_ORDER:
            return KeyPair(candidate)


def load_keypair(material: bytes | str) -> KeyPair:
    """Load a key pair from 32 raw bytes, a 64-char hex string or a WIF.

    Raises:
        InvalidKeyError: If *material* cannot be interpreted as a private key.
    """
    if isinstance(material, bytes | bytearray):
        return KeyPair(bytes(material))

    text = material.strip()
    if len(text) == 64:
        try:
            return KeyPair(bytes.fromhex(text))
        except ValueError:
            pass

    try:
        payload = base58check_decode(text)
    except ValueError as e:
        msg = f"unrecognised private key material: {e}"
        raise InvalidKeyError(msg) from e
    if len(payload) not in (33, 34) or payload[0] not in (_MAINNET_WIF, _TESTNET_WIF):
        msg = f"invalid WIF payload length: {len(payload)}"
        raise InvalidKeyError(msg)
    if len(payload) == 34 and payload[-1] != 0x01:
        msg = "invalid WIF compression flag"
        raise InvalidKeyError(msg)
    return KeyPair(payload[1:33])


def verify_signature(pubkey: bytes, digest: bytes, signature: bytes) -> bool:
    """Verify a DER-encoded signature against a public key and digest.

    A trailing sighash byte, if present, must be stripped by the caller.
    """
    try:
        vk = VerifyingKey.from_string(pubkey, curve=_CURVE)
    except (MalformedPointError, ValueError):
        return False
    try:
        return vk.verify_digest(signature, digest, sigdecode=sigdecode_der)
    except (BadSignatureError, UnexpectedDER, ValueError):
        return False


def is_low_s(signature: bytes) -> bool:
    """Whether a DER signature uses the low-S form required by relay policy."""
    _, s = sigdecode_der(signature, _CURVE_ORDER)
    return s <= _CURVE_ORDER // 2
