"""
Mempool.space-style REST backend.

Works against any Esplora-compatible API (mempool.space, electrs/esplora,
self-hosted mempool instances).
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from tokenmint.backends.base import ChainBackend
from tokenmint.errors import (
    BackendError,
    BroadcastRejectedError,
    PlanningError,
    TransactionNotFoundError,
)
from tokenmint.models import FeeUTXO, Outpoint
from tokenmint.transaction import address_to_scriptpubkey

DEFAULT_TIMEOUT = 30.0

# Raised by lookups and conversions on a payload that lacks the expected shape
MALFORMED_PAYLOAD = (KeyError, TypeError, ValueError, AttributeError)


class MempoolBackend(ChainBackend):
    def __init__(
        self,
        api_url: str = "https://mempool.space/api",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.api_url}{path}"
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Request timed out: {method} {path} - {e}")
            raise BackendError(f"Timeout calling {path}", stage="network") from e
        except httpx.HTTPError as e:
            logger.warning(f"Request failed: {method} {path} - {e}")
            raise BackendError(f"Request to {path} failed: {e}", stage="network") from e

        if response.status_code >= 500:
            raise BackendError(
                f"Server error {response.status_code} from {path}: {response.text}",
                stage="network",
            )
        return response

    async def get_raw_transaction(self, txid: str) -> bytes:
        response = await self._request("GET", f"/tx/{txid}/hex")
        if response.status_code == 404:
            raise TransactionNotFoundError(f"Transaction {txid} not found", stage="fetch")
        if response.status_code != 200:
            raise BackendError(
                f"Unexpected status {response.status_code} fetching {txid}", stage="fetch"
            )
        try:
            return bytes.fromhex(response.text.strip())
        except ValueError as e:
            raise BackendError(f"Malformed transaction hex for {txid}", stage="fetch") from e

    async def broadcast_transaction(self, tx_hex: str) -> str:
        response = await self._request("POST", "/tx", content=tx_hex)
        if response.status_code != 200:
            reason = response.text.strip() or f"HTTP {response.status_code}"
            raise BroadcastRejectedError(reason, stage="broadcast")
        txid = response.text.strip()
        logger.debug(f"Broadcast accepted: {txid}")
        return txid

    async def estimate_fee(self, target_blocks: int) -> float:
        response = await self._request("GET", "/v1/fees/recommended")
        if response.status_code != 200:
            raise BackendError(f"Fee estimate unavailable ({response.status_code})", stage="fee")
        if target_blocks <= 1:
            key = "fastestFee"
        elif target_blocks <= 3:
            key = "halfHourFee"
        elif target_blocks <= 6:
            key = "hourFee"
        else:
            key = "economyFee"
        try:
            return float(response.json()[key])
        except MALFORMED_PAYLOAD as e:
            raise BackendError(f"Malformed fee estimate: {response.text}", stage="fee") from e

    async def get_fee_utxos(self, address: str) -> list[FeeUTXO]:
        response = await self._request("GET", f"/address/{address}/utxo")
        if response.status_code != 200:
            raise BackendError(
                f"Could not list UTXOs of {address} ({response.status_code})", stage="utxos"
            )
        try:
            script = address_to_scriptpubkey(address)
        except ValueError as e:
            raise PlanningError(f"Cannot pay fees from {address}: {e}", stage="utxos") from e
        try:
            return [
                FeeUTXO(
                    outpoint=Outpoint(item["txid"], int(item["vout"])),
                    satoshis=int(item["value"]),
                    script=script,
                )
                for item in response.json()
            ]
        except MALFORMED_PAYLOAD as e:
            raise BackendError(f"Malformed UTXO list for {address}", stage="utxos") from e

    async def close(self) -> None:
        await self.client.aclose()
