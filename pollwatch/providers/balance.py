"""JSON-RPC balance lookups."""

from __future__ import annotations

import itertools
from typing import Any, Callable, List, Mapping, Optional

import httpx

from pollwatch.errors import MalformedResponseError, RPCError
from pollwatch.providers.http import HTTPProvider

JSONRPC_VERSION = "2.0"

ParamsBuilder = Callable[[str], List[Any]]


class JsonRpcBalanceProvider(HTTPProvider):
    """Fetch a wallet balance with a JSON-RPC 2.0 POST.

    The result may be a bare number or an object with a numeric ``value``
    (e.g. Solana's ``getBalance`` returns ``{"context": ..., "value": n}``).
    """

    def __init__(
        self,
        rpc_url: str,
        method: str = "getBalance",
        params_builder: Optional[ParamsBuilder] = None,
        headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(rpc_url, headers=headers, client=client)
        self.method = method or "getBalance"
        self.params_builder = params_builder or (lambda address: [address])
        self._ids = itertools.count(1)

    async def __call__(self, key: str, cursor: Optional[int] = None) -> float:
        payload = {
            "jsonrpc": JSONRPC_VERSION,
            "id": next(self._ids),
            "method": self.method,
            "params": self.params_builder(key),
        }
        response = await self.request_json("POST", "", json_body=payload)
        return self.parse_result(response)

    @staticmethod
    def parse_result(response: Any) -> float:
        if not isinstance(response, dict):
            raise MalformedResponseError("Unexpected RPC response format")
        error = response.get("error")
        if error:
            if isinstance(error, dict):
                raise RPCError(int(error.get("code", 0)), str(error.get("message", "")))
            raise RPCError(0, str(error))
        result = response.get("result")
        if isinstance(result, dict):
            result = result.get("value")
        if isinstance(result, bool) or not isinstance(result, (int, float)):
            raise MalformedResponseError("Unexpected RPC response format")
        return result
