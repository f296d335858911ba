"""
Token tracker REST indexer.

Responses are wrapped as {"code": 0, "msg": "OK", "data": {...}}; a nonzero
code means the tracker could not answer.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from tokenmint.backends.base import TokenIndexer
from tokenmint.errors import BackendError, MetadataError
from tokenmint.models import (
    MinterState,
    Outpoint,
    TokenMetadata,
    TokenState,
    TokenUTXO,
)
from tokenmint.transaction import address_to_scriptpubkey

DEFAULT_TIMEOUT = 30.0

# Raised by lookups and conversions on a payload that lacks the expected shape
MALFORMED_PAYLOAD = (KeyError, TypeError, ValueError, AttributeError)


def _parse_utxo(item: dict[str, Any], state: MinterState | TokenState) -> TokenUTXO:
    utxo = item["utxo"]
    return TokenUTXO(
        outpoint=Outpoint(utxo["txId"], int(utxo["outputIndex"])),
        script=bytes.fromhex(utxo["script"]),
        satoshis=int(utxo["satoshis"]),
        state=state,
        tx_state_hashes=tuple(bytes.fromhex(h) for h in item.get("txoStateHashes", [])),
    )


class TrackerIndexer(TokenIndexer):
    def __init__(
        self,
        tracker_url: str = "http://127.0.0.1:3000",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.tracker_url = tracker_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.tracker_url}/api{path}"
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise BackendError(f"Tracker error on {path}: {e}", stage="tracker") from e
        except httpx.HTTPError as e:
            logger.warning(f"Tracker request failed: {path} - {e}")
            raise BackendError(f"Tracker request to {path} failed: {e}", stage="tracker") from e

        try:
            body = response.json()
        except ValueError as e:
            raise BackendError(f"Tracker sent invalid JSON for {path}", stage="tracker") from e
        if not isinstance(body, dict):
            raise BackendError(f"Tracker sent unexpected body for {path}", stage="tracker")
        if body.get("code", 0) != 0:
            raise BackendError(f"Tracker returned {body.get('msg')} for {path}", stage="tracker")
        return body.get("data")

    async def get_token_metadata(self, token_id: str) -> TokenMetadata | None:
        data = await self._get(f"/tokens/{token_id}")
        if data is None:
            return None
        try:
            return TokenMetadata.model_validate(data)
        except ValidationError as e:
            raise MetadataError(f"Malformed token metadata: {e}", token_id=token_id) from e

    async def get_minter_count(self, token_id: str) -> int:
        data = await self._get(f"/minters/{token_id}/utxoCount")
        if not data:
            return 0
        try:
            return int(data["count"])
        except MALFORMED_PAYLOAD as e:
            raise MetadataError(
                f"Malformed minter count: {data!r}", stage="tracker", token_id=token_id
            ) from e

    async def get_minter(self, metadata: TokenMetadata, offset: int) -> TokenUTXO | None:
        data = await self._get(
            f"/minters/{metadata.token_id}/utxos", params={"limit": 1, "offset": offset}
        )
        try:
            utxos = (data or {}).get("utxos", [])
            if not utxos:
                return None
            item = utxos[0]
            state = item.get("state") or {}
            minter_state = MinterState(
                token_script=address_to_scriptpubkey(metadata.token_address),
                is_premined=bool(state.get("isPremined", False)),
                remaining_supply=int(state.get("remainingSupply", 0)),
            )
            return _parse_utxo(item, minter_state)
        except MALFORMED_PAYLOAD as e:
            raise MetadataError(
                f"Malformed minter at offset {offset}: {e!r}",
                stage="tracker",
                token_id=metadata.token_id,
            ) from e

    async def get_token_utxos(self, metadata: TokenMetadata, owner: str) -> list[TokenUTXO]:
        data = await self._get(f"/tokens/{metadata.token_id}/addresses/{owner}/utxos")
        result = []
        try:
            for item in (data or {}).get("utxos", []):
                state = item["state"]
                token_state = TokenState(
                    owner=state.get("address", owner), amount=int(state["amount"])
                )
                result.append(_parse_utxo(item, token_state))
        except MALFORMED_PAYLOAD as e:
            raise MetadataError(
                f"Malformed token UTXO list for {owner}: {e!r}",
                stage="tracker",
                token_id=metadata.token_id,
            ) from e
        return result

    async def close(self) -> None:
        await self.client.aclose()
