"""Latest market price lookups."""

from __future__ import annotations

from typing import Any, Optional

from pollwatch.errors import MalformedResponseError
from pollwatch.providers.http import HTTPProvider


class PriceProvider(HTTPProvider):
    """Fetch the current price of a symbol via ``GET {api}/price?symbol=``."""

    async def __call__(self, key: str, cursor: Optional[int] = None) -> float:
        data = await self.request_json("GET", "/price", params={"symbol": key})
        return self.parse_price(key, data)

    @staticmethod
    def parse_price(symbol: str, data: Any) -> float:
        price = data.get("price") if isinstance(data, dict) else None
        if isinstance(price, str):
            try:
                price = float(price)
            except ValueError:
                price = None
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise MalformedResponseError(f"No numeric price returned for {symbol}")
        return price
