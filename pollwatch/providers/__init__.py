from pollwatch.providers.balance import JsonRpcBalanceProvider
from pollwatch.providers.feeds import (
    EventsSinceProvider,
    RecentTransactionsProvider,
    TransfersProvider,
)
from pollwatch.providers.http import HTTPProvider
from pollwatch.providers.price import PriceProvider

__all__ = [
    "EventsSinceProvider",
    "HTTPProvider",
    "JsonRpcBalanceProvider",
    "PriceProvider",
    "RecentTransactionsProvider",
    "TransfersProvider",
]
