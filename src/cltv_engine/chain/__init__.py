"""Ledger collaborators — outpoint lookup and Esplora client."""

from cltv_engine.chain.esplora.client import BroadcastResult, EsploraClient
from cltv_engine.chain.lookup import (
    AsyncOutpointLookup,
    FundedOutput,
    MemoryLookup,
    OutpointLookup,
    resolve_from,
    resolve_from_async,
    resolve_input,
)

__all__ = [
    "AsyncOutpointLookup",
    "BroadcastResult",
    "EsploraClient",
    "FundedOutput",
    "MemoryLookup",
    "OutpointLookup",
    "resolve_from",
    "resolve_from_async",
    "resolve_input",
]
