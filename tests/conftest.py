"""Shared test fixtures for py-cltv test suite."""

from __future__ import annotations

import pytest

from cltv_engine.btc.keys import KeyPair
from cltv_engine.btc.locktime import BlockHeight, UnixTime
from cltv_engine.btc.transaction import Outpoint

# Fixed secrets so signatures (RFC 6979) and scripts are reproducible
PRIMARY_SECRET = bytes([0x11] * 32)
SECONDARY_SECRET = bytes([0x22] * 32)
OTHER_SECRET = bytes([0x33] * 32)

FUNDING_TXID = "a1" * 32


@pytest.fixture
def app_config():
    """Provide a test AppConfig with safe defaults."""
    from cltv_engine.config.settings import AppConfig, Network

    return AppConfig(debug=True, network=Network.REGTEST)


@pytest.fixture
def primary_key() -> KeyPair:
    return KeyPair(PRIMARY_SECRET)


@pytest.fixture
def secondary_key() -> KeyPair:
    return KeyPair(SECONDARY_SECRET)


@pytest.fixture
def other_key() -> KeyPair:
    return KeyPair(OTHER_SECRET)


@pytest.fixture
def height_lock() -> BlockHeight:
    return BlockHeight(800_000)


@pytest.fixture
def time_lock() -> UnixTime:
    return UnixTime(1_700_000_000)


@pytest.fixture
def funding_outpoint() -> Outpoint:
    return Outpoint.from_txid_hex(FUNDING_TXID, 0)
