"""Esplora — REST lookup and broadcast."""

from cltv_engine.chain.esplora.client import BroadcastResult, EsploraClient

__all__ = ["BroadcastResult", "EsploraClient"]
