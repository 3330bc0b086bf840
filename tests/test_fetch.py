import asyncio
import time
from datetime import datetime, timezone

import pytest

from pollwatch.config import build_settings
from pollwatch.errors import (
    FetchTimeoutError,
    HTTPError,
    MalformedResponseError,
    NetworkError,
)
from pollwatch.fetch import FetchClient, parse_retry_after


class ScriptedProvider:
    """Return or raise the scripted outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def __call__(self, key, cursor=None):
        self.calls.append((key, cursor))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_client(provider, **kwargs):
    options = dict(
        timeout_ms=1_000,
        retries=2,
        backoff_ms=100,
        max_backoff_ms=10_000,
        jitter=False,
    )
    options.update(kwargs)
    return FetchClient(provider, **options)


def test_backoff_grows_quadratically_without_jitter():
    client = make_client(ScriptedProvider())

    assert client.compute_delay(1) == 100
    assert client.compute_delay(2) == 400
    assert client.compute_delay(3) == 900


def test_backoff_is_capped():
    client = make_client(ScriptedProvider(), max_backoff_ms=500)

    assert client.compute_delay(5) == 500


def test_jitter_adds_bounded_noise():
    client = make_client(
        ScriptedProvider(), jitter=True, jitter_ms=50, rng=lambda: 0.5
    )

    assert client.compute_delay(1) == 125


def test_retry_after_overrides_and_is_clamped():
    client = make_client(ScriptedProvider(), max_backoff_ms=3_000)

    assert client.compute_delay(1, retry_after=2) == 2_000
    assert client.compute_delay(1, retry_after=60) == 3_000


def test_from_settings_copies_retry_policy():
    settings = build_settings(retries=4, backoff_ms=50, timeout_ms=200, jitter=False)

    client = FetchClient.from_settings(ScriptedProvider(), settings)

    assert client.max_attempts == 5
    assert client.backoff_ms == 50
    assert client.timeout_ms == 200


@pytest.mark.asyncio
async def test_recovers_after_two_transient_failures():
    provider = ScriptedProvider(NetworkError("reset"), HTTPError(503), 42)
    sleep = RecordingSleep()
    client = make_client(provider, sleep=sleep)

    result = await client.fetch_once("wallet")

    assert result == 42
    assert len(provider.calls) == 3
    assert sleep.delays == [pytest.approx(0.1), pytest.approx(0.4)]


@pytest.mark.asyncio
async def test_real_backoff_elapses():
    provider = ScriptedProvider(NetworkError("reset"), NetworkError("reset"), "ok")
    client = make_client(provider)

    started = time.monotonic()
    assert await client.fetch_once("wallet") == "ok"

    assert time.monotonic() - started >= 0.49


@pytest.mark.asyncio
async def test_non_retryable_status_fails_immediately():
    provider = ScriptedProvider(HTTPError(404, body="not found"), 1)
    sleep = RecordingSleep()
    client = make_client(provider, sleep=sleep)

    with pytest.raises(HTTPError) as excinfo:
        await client.fetch_once("wallet")

    assert excinfo.value.status == 404
    assert len(provider.calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_malformed_response_is_not_retried():
    provider = ScriptedProvider(MalformedResponseError("bad shape"))
    client = make_client(provider, sleep=RecordingSleep())

    with pytest.raises(MalformedResponseError):
        await client.fetch_once("wallet")

    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_gives_up_with_last_error_after_all_attempts():
    provider = ScriptedProvider(
        NetworkError("first"), NetworkError("second"), NetworkError("third")
    )
    client = make_client(provider, sleep=RecordingSleep())

    with pytest.raises(NetworkError, match="third"):
        await client.fetch_once("wallet")

    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_slow_attempt_times_out():
    async def slow(key, cursor=None):
        await asyncio.sleep(1)

    client = make_client(slow, timeout_ms=20, retries=0)

    with pytest.raises(FetchTimeoutError) as excinfo:
        await client.fetch_once("wallet")

    assert str(excinfo.value) == "Timeout after 20ms"


@pytest.mark.asyncio
async def test_cursor_is_passed_to_provider():
    provider = ScriptedProvider([])
    client = make_client(provider)

    await client.fetch_once("feed", 1_234)

    assert provider.calls == [("feed", 1_234)]


def test_parse_retry_after_seconds_and_dates():
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    assert parse_retry_after("3") == 3.0
    assert parse_retry_after(" 1.5 ") == 1.5
    assert parse_retry_after("Mon, 01 Jan 2024 12:00:10 GMT", now=now) == 10.0
    assert parse_retry_after("Mon, 01 Jan 2024 11:00:00 GMT", now=now) == 0.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("") is None
    assert parse_retry_after("soon") is None


@pytest.mark.asyncio
async def test_give_up_reraises_the_provider_error_itself():
    failure = HTTPError(503)
    provider = ScriptedProvider(failure)
    client = make_client(provider, retries=0, sleep=RecordingSleep())

    with pytest.raises(HTTPError) as excinfo:
        await client.fetch_once("wallet")

    assert excinfo.value is failure
