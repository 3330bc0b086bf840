"""REST providers for discrete items: transactions, transfers and outer events."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import httpx

from pollwatch.errors import MalformedResponseError
from pollwatch.providers.http import HTTPProvider


class RecentTransactionsProvider(HTTPProvider):
    """List recent transactions of an address from a block explorer API.

    Expected endpoint: ``GET {api_url}/txs/{address}`` returning
    ``[{"hash": str, "block": int, "time": <unix seconds>}]``.
    """

    async def __call__(
        self, key: str, cursor: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        data = await self.request_json("GET", f"/txs/{quote(key, safe='')}")
        if not isinstance(data, list):
            raise MalformedResponseError(
                "Invalid response: expected array of transactions"
            )
        return [self.normalize(key, tx) for tx in data]

    @staticmethod
    def normalize(address: str, tx: Any) -> Any:
        # Anything without a hash is passed through for item validation to reject
        if not isinstance(tx, dict) or "hash" not in tx:
            return tx
        return {
            "id": tx["hash"],
            "timestamp": tx.get("time"),
            "payload": {
                "walletAddress": address,
                "txHash": tx["hash"],
                "blockNumber": tx.get("block"),
            },
        }


class EventsSinceProvider(HTTPProvider):
    """Poll a generic event feed, optionally filtered by a ``since`` cursor.

    Expected endpoint: ``GET {api_url}{path}[?since=<unix_ms>]`` returning
    ``[{"id": str, "type": str, "payload": object, "timestamp": number}]``.
    The tracked key is sent as ``source`` unless it is ``"default"``.
    """

    def __init__(
        self,
        api_url: str,
        path: str = "/outer/events",
        headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(api_url, headers=headers, client=client)
        self.path = path if path.startswith("/") else f"/{path}"

    async def __call__(
        self, key: str, cursor: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if cursor is not None:
            params["since"] = str(cursor)
        if key != "default":
            params["source"] = key
        data = await self.request_json("GET", self.path, params=params or None)
        if not isinstance(data, list):
            raise MalformedResponseError("Invalid response: expected array of events")
        return [self.normalize(event) for event in data]

    @staticmethod
    def normalize(event: Any) -> Any:
        if not isinstance(event, dict) or not isinstance(event.get("type"), str):
            return event
        payload = event.get("payload")
        return {
            "id": event.get("id"),
            "timestamp": event.get("timestamp"),
            "payload": {
                "type": event["type"],
                **(payload if isinstance(payload, dict) else {}),
            },
        }


class TransfersProvider(HTTPProvider):
    """Poll an asset-flow endpoint for token transfers.

    Expected endpoint: ``GET {api_url}/transfers[?address=<key>]`` returning
    ``[{"txHash", "timestamp", "from", "to", "amount", "token"}]``. The
    ``"default"`` key watches the unfiltered feed.
    """

    async def __call__(
        self, key: str, cursor: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        params = {"address": key} if key != "default" else None
        data = await self.request_json("GET", "/transfers", params=params)
        if not isinstance(data, list):
            raise MalformedResponseError(
                "Invalid response: expected array of transfers"
            )
        return [self.normalize(transfer) for transfer in data]

    @staticmethod
    def normalize(transfer: Any) -> Any:
        if not isinstance(transfer, dict) or "txHash" not in transfer:
            return transfer
        return {
            "id": transfer["txHash"],
            "timestamp": transfer.get("timestamp"),
            "payload": {
                "from": transfer.get("from"),
                "to": transfer.get("to"),
                "amount": transfer.get("amount"),
                "token": transfer.get("token"),
            },
        }
