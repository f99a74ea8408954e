#!/usr/bin/env python3
"""CLTV Tool — keys, contract scripts, transaction decoding, outpoint lookup.

A standalone CLI utility around the CLTV contract engine:

    # Generate a fresh key (WIF + compressed public key)
    python -m cltv_engine.tools.cltv_tool generate

    # Build a contract script from two public keys and a lock
    python -m cltv_engine.tools.cltv_tool script <primary_hex> <secondary_hex> <height|timestamp>

    # Decode a raw (segwit or legacy) transaction
    python -m cltv_engine.tools.cltv_tool decode <raw_hex>

    # Look up a funding output via the configured Esplora API
    python -m cltv_engine.tools.cltv_tool lookup <txid:vout>

Settings (network, Esplora URL, log level) come from ``CLTV_*`` environment
variables or the YAML file named by ``CLTV_CONFIG_PATH``.
"""

from __future__ import annotations

import asyncio
import logging
import sys

from cltv_engine.config.settings import AppConfig
from cltv_engine.errors.engine_errors import EngineError


def _cmd_generate(config: AppConfig) -> None:
    """Generate a new key pair."""
    from cltv_engine.btc.keys import generate_keypair

    key = generate_keypair()
    print(f"Network:    {config.network}")
    print(f"WIF:        {key.to_wif(testnet=config.network.is_test)}")
    print(f"Public key: {key.public_key.hex()}")


def _cmd_script(config: AppConfig, primary_hex: str, secondary_hex: str, lock_arg: str) -> None:
    """Print the witness script, its commitment and the funding address."""
    from cltv_engine.btc.locktime import decode_locktime
    from cltv_engine.engine.timelock import TimelockEngine

    engine = TimelockEngine(config)
    lock = decode_locktime(int(lock_arg))
    contract = engine.new_contract(bytes.fromhex(primary_hex), bytes.fromhex(secondary_hex), lock)

    print(f"Lock:       {type(lock).__name__}({lock.value})")
    print(f"Script:     {contract.script.hex()}")
    print(f"ASM:        {contract.script.to_asm()}")
    print(f"Commitment: {contract.commitment.hex()}")
    print(f"Program:    {contract.program.hex()}")
    print(f"Address:    {contract.address(config.network)}")


def _cmd_decode(raw_hex: str) -> None:
    """Decode a raw transaction and print its fields."""
    from cltv_engine.btc.locktime import decode_locktime
    from cltv_engine.btc.script import Script, ScriptType, detect_script_type
    from cltv_engine.btc.transaction import SignedTransaction

    tx = SignedTransaction.from_hex(raw_hex.strip())
    lock = decode_locktime(tx.lock_time)

    print(f"txid:      {tx.txid()}")
    print(f"wtxid:     {tx.wtxid()}")
    print(f"version:   {tx.version}")
    print(f"lock_time: {tx.lock_time} ({type(lock).__name__})")
    print(f"size:      {tx.size}  weight: {tx.weight}  vsize: {tx.vsize}")
    print()
    print(f"Inputs ({len(tx.inputs)}):")
    print("-" * 80)
    for i, inp in enumerate(tx.inputs):
        print(f"  [{i}] {inp.outpoint}  sequence=0x{inp.sequence:08x}")
        stack = tx.witnesses[i]
        for j, item in enumerate(stack):
            print(f"      witness[{j}] {item.hex() or '<empty>'}")
        if stack.is_empty:
            continue
        if detect_script_type(stack.witness_script) is ScriptType.CLTV_BRANCH:
            script = Script.from_bytes(stack.witness_script)
            print(f"      script: {script.to_asm()}")
            print(f"      branch: {stack.selected_branch()}")
    print()
    print(f"Outputs ({len(tx.outputs)}):")
    print("-" * 80)
    for i, out in enumerate(tx.outputs):
        kind = detect_script_type(out.script_pubkey)
        print(f"  [{i}] {out.value:>14,} sats  {kind}  {out.script_pubkey.hex()}")


def _cmd_lookup(config: AppConfig, outpoint_text: str) -> None:
    """Fetch a funding output via Esplora."""
    from cltv_engine.btc.script import detect_script_type
    from cltv_engine.btc.transaction import Outpoint
    from cltv_engine.chain.esplora.client import EsploraClient

    outpoint = Outpoint.parse(outpoint_text)

    async def _run() -> None:
        esplora = EsploraClient(config.esplora)
        await esplora.connect()
        try:
            funded = await esplora.lookup(outpoint)
            print(f"Outpoint: {outpoint}")
            print(f"Value:    {funded.value:>14,} sats  ({funded.value / 1e8:.8f} BTC)")
            print(f"Script:   {funded.script_pubkey.hex()}")
            print(f"Type:     {detect_script_type(funded.script_pubkey)}")
        finally:
            await esplora.close()

    asyncio.run(_run())


def main() -> None:
    """CLI entry point."""
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    config = AppConfig()
    logging.basicConfig(
        level=config.effective_log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cmd = sys.argv[1].lower()

    try:
        if cmd == "generate":
            _cmd_generate(config)
        elif cmd == "script":
            if len(sys.argv) < 5:
                print("Usage: cltv_tool script <primary_hex> <secondary_hex> <height|timestamp>")
                sys.exit(1)
            _cmd_script(config, sys.argv[2], sys.argv[3], sys.argv[4])
        elif cmd == "decode":
            if len(sys.argv) < 3:
                print("Usage: cltv_tool decode <raw_hex>")
                sys.exit(1)
            _cmd_decode(sys.argv[2])
        elif cmd == "lookup":
            if len(sys.argv) < 3:
                print("Usage: cltv_tool lookup <txid:vout>")
                sys.exit(1)
            _cmd_lookup(config, sys.argv[2])
        else:
            print(f"Unknown command: {cmd}")
            print(__doc__)
            sys.exit(1)
    except EngineError as e:
        print(f"Error [{e.code}]: {e.message}")
        sys.exit(2)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
