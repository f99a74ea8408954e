"""Esplora REST client — outpoint lookup, broadcast, chain tip.

Async HTTP client for Esplora-compatible APIs (mempool.space, blockstream):
- GET  /tx/<txid>                 (funding output lookup)
- GET  /tx/<txid>/outspend/<vout> (spent check)
- POST /tx                        (broadcast raw hex)
- GET  /blocks/tip/height
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from cltv_engine.chain.lookup import FundedOutput
from cltv_engine.errors.definitions import LookupFailureError

if TYPE_CHECKING:
    from cltv_engine.btc.transaction import Outpoint
    from cltv_engine.config.settings import EsploraConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BroadcastResult:
    """Outcome of a broadcast attempt."""

    accepted: bool
    txid: str = ""
    reason: str = ""


class EsploraClient:
    """Async HTTP client for an Esplora-compatible API.

    Usage::

        esplora = EsploraClient(config.esplora)
        await esplora.connect()
        try:
            funded = await esplora.lookup(outpoint)
            result = await esplora.broadcast(raw_hex)
        finally:
            await esplora.close()
    """

    def __init__(self, config: EsploraConfig) -> None:
        """Initialize the client.

        Args:
            config: Esplora settings (base URL and timeout).
        """
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self._config.url.rstrip("/"),
            headers={"Accept": "application/json"},
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        """Check if the HTTP client is active."""
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def lookup(self, outpoint: Outpoint, *, require_unspent: bool = False) -> FundedOutput:
        """Fetch the output referenced by *outpoint*.

        Args:
            outpoint: The coin to resolve.
            require_unspent: Also fail if the output is already spent.

        Raises:
            LookupFailureError: If the transaction or output is missing, the
                output is spent (when requested), or the API errors.
        """
        client = self._ensure_connected()
        txid = outpoint.txid_hex
        try:
            resp = await client.get(f"/tx/{txid}")
        except httpx.HTTPError as e:
            msg = f"lookup request failed for {outpoint}: {e}"
            raise LookupFailureError(msg, outpoint=str(outpoint)) from e
        if resp.status_code == 404:
            msg = f"transaction not found: {txid}"
            raise LookupFailureError(msg, outpoint=str(outpoint))
        if resp.is_error:
            msg = f"lookup for {outpoint} failed with HTTP {resp.status_code}"
            raise LookupFailureError(msg, outpoint=str(outpoint))

        try:
            data: dict[str, Any] = resp.json()
        except ValueError as e:
            msg = f"lookup for {outpoint} returned a non-JSON body"
            raise LookupFailureError(msg, outpoint=str(outpoint)) from e
        vouts: list[dict[str, Any]] = data.get("vout", []) if isinstance(data, dict) else []
        if outpoint.index >= len(vouts):
            msg = f"transaction {txid} has no output {outpoint.index}"
            raise LookupFailureError(msg, outpoint=str(outpoint))
        vout = vouts[outpoint.index]

        if require_unspent and await self._is_spent(client, outpoint):
            msg = f"output already spent: {outpoint}"
            raise LookupFailureError(msg, outpoint=str(outpoint))

        try:
            funded = FundedOutput(
                script_pubkey=bytes.fromhex(vout["scriptpubkey"]),
                value=int(vout["value"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            msg = f"malformed output {outpoint.index} in transaction {txid}: {e!r}"
            raise LookupFailureError(msg, outpoint=str(outpoint)) from e
        logger.debug("Esplora lookup %s -> %d sats", outpoint, funded.value)
        return funded

    async def broadcast(self, raw_tx_hex: str) -> BroadcastResult:
        """Submit a signed transaction.

        Rejections are reported in the result; transport failures raise.
        """
        client = self._ensure_connected()
        resp = await client.post("/tx", content=raw_tx_hex, headers={"Content-Type": "text/plain"})
        text = resp.text.strip()
        if resp.is_success:
            logger.info("Broadcast accepted: %s", text)
            return BroadcastResult(accepted=True, txid=text)
        logger.warning("Broadcast rejected (HTTP %d): %s", resp.status_code, text)
        return BroadcastResult(accepted=False, reason=text)

    async def get_tip_height(self) -> int:
        """Current best block height."""
        client = self._ensure_connected()
        resp = await client.get("/blocks/tip/height")
        resp.raise_for_status()
        return int(resp.text.strip())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _is_spent(self, client: httpx.AsyncClient, outpoint: Outpoint) -> bool:
        resp = await client.get(f"/tx/{outpoint.txid_hex}/outspend/{outpoint.index}")
        if resp.is_error:
            msg = f"outspend check for {outpoint} failed with HTTP {resp.status_code}"
            raise LookupFailureError(msg, outpoint=str(outpoint))
        try:
            return bool(resp.json().get("spent", False))
        except (AttributeError, ValueError) as e:
            msg = f"outspend check for {outpoint} returned a malformed body"
            raise LookupFailureError(msg, outpoint=str(outpoint)) from e

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "EsploraClient is not connected — call connect() first"
            raise RuntimeError(msg)
        return self._client
