import json

import httpx
import pytest

from pollwatch.errors import (
    FetchTimeoutError,
    HTTPError,
    MalformedResponseError,
    NetworkError,
    RPCError,
)
from pollwatch.providers import (
    EventsSinceProvider,
    HTTPProvider,
    JsonRpcBalanceProvider,
    PriceProvider,
    RecentTransactionsProvider,
    TransfersProvider,
)


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHTTPProvider:
    def test_requires_base_url(self):
        with pytest.raises(ValueError):
            HTTPProvider("")

    def test_strips_trailing_slash_and_merges_headers(self):
        provider = HTTPProvider("https://api.example/", headers={"x-api-key": "k"})

        assert provider.base_url == "https://api.example"
        assert provider.headers == {"accept": "application/json", "x-api-key": "k"}

    @pytest.mark.asyncio
    async def test_http_status_maps_to_http_error_with_retry_after(self):
        def handler(request):
            return httpx.Response(429, text="slow down", headers={"Retry-After": "7"})

        provider = HTTPProvider("https://api.example", client=mock_client(handler))

        with pytest.raises(HTTPError) as excinfo:
            await provider.request_json("GET", "/thing")

        assert excinfo.value.status == 429
        assert excinfo.value.retry_after == 7.0
        assert excinfo.value.retryable

    @pytest.mark.asyncio
    async def test_timeout_and_transport_errors_are_mapped(self):
        def timeout_handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        def refused_handler(request):
            raise httpx.ConnectError("refused", request=request)

        slow = HTTPProvider("https://api.example", client=mock_client(timeout_handler))
        down = HTTPProvider("https://api.example", client=mock_client(refused_handler))

        with pytest.raises(FetchTimeoutError):
            await slow.request_json("GET", "/")
        with pytest.raises(NetworkError):
            await down.request_json("GET", "/")

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        provider = HTTPProvider("https://api.example", client=mock_client(handler))

        with pytest.raises(MalformedResponseError):
            await provider.request_json("GET", "/")

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        client = mock_client(lambda request: httpx.Response(200, json={}))
        provider = HTTPProvider("https://api.example", client=client)

        await provider.aclose()

        assert not client.is_closed
        await client.aclose()


class TestJsonRpcBalanceProvider:
    @pytest.mark.asyncio
    async def test_posts_json_rpc_request(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": 1, "result": {"value": 5_000}}
            )

        provider = JsonRpcBalanceProvider(
            "https://rpc.example", client=mock_client(handler)
        )

        assert await provider("Wallet111", None) == 5_000
        assert await provider("Wallet111", None) == 5_000
        assert requests[0]["method"] == "getBalance"
        assert requests[0]["params"] == ["Wallet111"]
        assert [r["id"] for r in requests] == [1, 2]

    def test_parse_result_variants(self):
        assert JsonRpcBalanceProvider.parse_result({"result": 12}) == 12
        assert JsonRpcBalanceProvider.parse_result({"result": {"value": 3.5}}) == 3.5

        with pytest.raises(RPCError) as excinfo:
            JsonRpcBalanceProvider.parse_result(
                {"error": {"code": -32602, "message": "Invalid param"}}
            )
        assert excinfo.value.code == -32602

        with pytest.raises(MalformedResponseError):
            JsonRpcBalanceProvider.parse_result({"result": "lots"})
        with pytest.raises(MalformedResponseError):
            JsonRpcBalanceProvider.parse_result(["not", "an", "object"])


class TestFeeds:
    @pytest.mark.asyncio
    async def test_transactions_are_normalized(self):
        def handler(request):
            assert request.url.path == "/txs/Addr1"
            return httpx.Response(
                200, json=[{"hash": "0xabc", "block": 9, "time": 1_700_000_000}]
            )

        provider = RecentTransactionsProvider(
            "https://explorer.example", client=mock_client(handler)
        )

        (tx,) = await provider("Addr1")

        assert tx == {
            "id": "0xabc",
            "timestamp": 1_700_000_000,
            "payload": {"walletAddress": "Addr1", "txHash": "0xabc", "blockNumber": 9},
        }

    @pytest.mark.asyncio
    async def test_transactions_reject_non_list(self):
        provider = RecentTransactionsProvider(
            "https://explorer.example",
            client=mock_client(lambda request: httpx.Response(200, json={"txs": []})),
        )

        with pytest.raises(MalformedResponseError):
            await provider("Addr1")

    @pytest.mark.asyncio
    async def test_events_send_since_and_source(self):
        seen_params = []

        def handler(request):
            seen_params.append(dict(request.url.params))
            return httpx.Response(
                200,
                json=[
                    {
                        "id": "e1",
                        "type": "deploy",
                        "payload": {"repo": "web"},
                        "timestamp": 1_500,
                    }
                ],
            )

        provider = EventsSinceProvider(
            "https://feed.example", path="outer/events", client=mock_client(handler)
        )

        (event,) = await provider("github", 1_000)
        await provider("default", None)

        assert seen_params == [{"since": "1000", "source": "github"}, {}]
        assert event == {
            "id": "e1",
            "timestamp": 1_500,
            "payload": {"type": "deploy", "repo": "web"},
        }

    def test_events_without_type_pass_through_for_validation(self):
        assert EventsSinceProvider.normalize({"id": "x"}) == {"id": "x"}


class TestTransfersProvider:
    @pytest.mark.asyncio
    async def test_transfers_are_normalized(self):
        seen_params = []

        def handler(request):
            assert request.url.path == "/transfers"
            seen_params.append(dict(request.url.params))
            return httpx.Response(
                200,
                json=[
                    {
                        "txHash": "0xfeed",
                        "timestamp": 1_700_000_000_000,
                        "from": "0xaaa",
                        "to": "0xbbb",
                        "amount": 12.5,
                        "token": "USDC",
                    }
                ],
            )

        provider = TransfersProvider(
            "https://flows.example/", client=mock_client(handler)
        )

        (transfer,) = await provider("default", None)
        await provider("0xaaa", None)

        assert seen_params == [{}, {"address": "0xaaa"}]
        assert transfer == {
            "id": "0xfeed",
            "timestamp": 1_700_000_000_000,
            "payload": {
                "from": "0xaaa",
                "to": "0xbbb",
                "amount": 12.5,
                "token": "USDC",
            },
        }

    @pytest.mark.asyncio
    async def test_transfers_reject_non_list(self):
        provider = TransfersProvider(
            "https://flows.example",
            client=mock_client(lambda request: httpx.Response(200, json={})),
        )

        with pytest.raises(MalformedResponseError):
            await provider("default")

    def test_records_without_hash_pass_through_for_validation(self):
        assert TransfersProvider.normalize({"amount": 1}) == {"amount": 1}


class TestPriceProvider:
    @pytest.mark.asyncio
    async def test_fetches_price(self):
        def handler(request):
            assert request.url.params["symbol"] == "ETH/USD"
            return httpx.Response(200, json={"price": "2500.5"})

        provider = PriceProvider("https://prices.example", client=mock_client(handler))

        assert await provider("ETH/USD") == 2500.5

    def test_missing_price_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            PriceProvider.parse_price("ETH/USD", {"price": "n/a"})
        with pytest.raises(MalformedResponseError):
            PriceProvider.parse_price("ETH/USD", [])
