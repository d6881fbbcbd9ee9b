"""Tests for RetryingExecutor: retry policy, request building, classification.

The HTTP round trip (_send) is mocked; no test touches the network.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from perpbot.config import ExchangeSettings
from perpbot.exceptions import ErrorKind, ExchangeError
from perpbot.exchange.executor import USER_AGENT, RetryingExecutor, _validated_proxy
from perpbot.exchange.rate_limiter import RateLimiter

SERVICE_UNAVAILABLE = (503, "")
INVALID_SYMBOL = (400, '{"code": -1121, "msg": "Invalid symbol."}')
RATE_LIMITED = (429, '{"code": -1003, "msg": "Too many requests."}')
OK = (200, '{"serverTime": 1700000000000}')


@pytest.fixture
def limiter() -> MagicMock:
    limiter = MagicMock(spec=RateLimiter)
    limiter.wait = AsyncMock()
    return limiter


@pytest.fixture
def executor(exchange_settings: ExchangeSettings, limiter: MagicMock) -> RetryingExecutor:
    return RetryingExecutor(exchange_settings, rate_limiter=limiter)


def _mock_send(executor: RetryingExecutor, *responses) -> AsyncMock:
    send = AsyncMock(side_effect=list(responses))
    executor._send = send  # type: ignore[method-assign]
    return send


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_retryable_error_exhausts_budget_with_backoff(
        self, executor: RetryingExecutor
    ) -> None:
        send = _mock_send(executor, SERVICE_UNAVAILABLE, SERVICE_UNAVAILABLE, SERVICE_UNAVAILABLE)

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ExchangeError) as exc_info:
                await executor.execute("GET", "/fapi/v1/time")

        assert exc_info.value.kind is ErrorKind.SERVICE_UNAVAILABLE
        assert send.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_single_attempt(self, executor: RetryingExecutor) -> None:
        send = _mock_send(executor, INVALID_SYMBOL)

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ExchangeError) as exc_info:
                await executor.execute("GET", "/fapi/v1/depth", {"symbol": "NOPE"})

        assert exc_info.value.kind is ErrorKind.INVALID_SYMBOL
        assert exc_info.value.code == -1121
        assert send.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_attempt_error_is_returned(self, executor: RetryingExecutor) -> None:
        _mock_send(executor, (500, ""), SERVICE_UNAVAILABLE, RATE_LIMITED)

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ExchangeError) as exc_info:
                await executor.execute("GET", "/fapi/v1/time")

        assert exc_info.value.kind is ErrorKind.TOO_MANY_REQUESTS

    @pytest.mark.asyncio
    async def test_exhausted_budget_reraises_final_error(self, executor: RetryingExecutor) -> None:
        first = ExchangeError(ErrorKind.DISCONNECTED, "request failed")
        final = ExchangeError(ErrorKind.DISCONNECTED, "request timed out")
        _mock_send(executor, first, first, final)

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ExchangeError) as exc_info:
                await executor.execute("GET", "/fapi/v1/time")

        assert exc_info.value is final

    @pytest.mark.asyncio
    async def test_success_after_transient_failure(self, executor: RetryingExecutor) -> None:
        send = _mock_send(executor, SERVICE_UNAVAILABLE, OK)

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock):
            result = await executor.execute("GET", "/fapi/v1/time")

        assert result == {"serverTime": 1700000000000}
        assert send.await_count == 2

    @pytest.mark.asyncio
    async def test_transport_failure_is_retried(self, executor: RetryingExecutor) -> None:
        disconnected = ExchangeError(ErrorKind.DISCONNECTED, "request failed")
        send = _mock_send(executor, disconnected, OK)

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock):
            await executor.execute("GET", "/fapi/v1/time")

        assert send.await_count == 2

    @pytest.mark.asyncio
    async def test_zero_retries_single_attempt(self, limiter: MagicMock) -> None:
        executor = RetryingExecutor(ExchangeSettings(max_retries=0), rate_limiter=limiter)
        send = _mock_send(executor, SERVICE_UNAVAILABLE)

        with pytest.raises(ExchangeError):
            await executor.execute("GET", "/fapi/v1/time")
        assert send.await_count == 1

    @pytest.mark.asyncio
    async def test_every_attempt_waits_on_rate_limiter(
        self, executor: RetryingExecutor, limiter: MagicMock
    ) -> None:
        _mock_send(executor, SERVICE_UNAVAILABLE, SERVICE_UNAVAILABLE, OK)

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock):
            await executor.execute("GET", "/fapi/v1/time")

        assert limiter.wait.await_count == 3

    def test_retry_delay_schedule(self, executor: RetryingExecutor) -> None:
        assert executor.retry_delay(1) == 1.0
        assert executor.retry_delay(2) == 2.0
        assert executor.retry_delay(3) == 4.0


class TestWriteRetryPolicy:
    @pytest.mark.asyncio
    async def test_ambiguous_failure_not_retried_for_writes(
        self, executor: RetryingExecutor
    ) -> None:
        send = _mock_send(executor, SERVICE_UNAVAILABLE, OK)

        with pytest.raises(ExchangeError) as exc_info:
            await executor.execute("POST", "/fapi/v1/order", {"symbol": "ETHUSDT"}, True)

        assert exc_info.value.kind is ErrorKind.SERVICE_UNAVAILABLE
        assert send.await_count == 1

    @pytest.mark.asyncio
    async def test_rejected_write_is_retried(self, executor: RetryingExecutor) -> None:
        send = _mock_send(executor, RATE_LIMITED, (200, '{"orderId": 1}'))

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock):
            result = await executor.execute("POST", "/fapi/v1/order", {"symbol": "ETHUSDT"}, True)

        assert result == {"orderId": 1}
        assert send.await_count == 2

    @pytest.mark.asyncio
    async def test_idempotent_override_allows_write_retry(
        self, executor: RetryingExecutor
    ) -> None:
        send = _mock_send(executor, SERVICE_UNAVAILABLE, OK)

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock):
            await executor.execute(
                "POST", "/fapi/v1/leverage", {"leverage": 5}, True, idempotent=True
            )

        assert send.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_reuses_signature(self, executor: RetryingExecutor) -> None:
        send = _mock_send(executor, RATE_LIMITED, OK)

        with patch("perpbot.exchange.executor.asyncio.sleep", new_callable=AsyncMock):
            await executor.execute("POST", "/fapi/v1/order", {"symbol": "ETHUSDT"}, True)

        first_url = send.await_args_list[0].args[1]
        second_url = send.await_args_list[1].args[1]
        assert first_url == second_url
        assert "signature=" in first_url


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


class TestRequestBuilding:
    @pytest.mark.asyncio
    async def test_public_get_uses_query_string(self, executor: RetryingExecutor) -> None:
        send = _mock_send(executor, OK)
        await executor.execute("GET", "/fapi/v1/depth", {"symbol": "ETHUSDT", "limit": 20})

        method, url, body, headers = send.await_args.args
        assert method == "GET"
        assert url == "https://fapi.binance.com/fapi/v1/depth?limit=20&symbol=ETHUSDT"
        assert body is None
        assert "signature" not in url

    @pytest.mark.asyncio
    async def test_signed_get_carries_signature_and_key_header(
        self, executor: RetryingExecutor
    ) -> None:
        send = _mock_send(executor, (200, "[]"))
        await executor.execute("GET", "/fapi/v2/positionRisk", {"symbol": "ETHUSDT"}, True)

        _, url, body, headers = send.await_args.args
        assert "signature=" in url
        assert "timestamp=" in url
        assert "recvWindow=5000" in url
        assert body is None
        assert headers["X-MBX-APIKEY"] == "test-api-key"

    @pytest.mark.asyncio
    async def test_unsigned_post_uses_form_body(self, executor: RetryingExecutor) -> None:
        send = _mock_send(executor, OK)
        await executor.execute("POST", "/fapi/v1/listenKey", {"b": "2", "a": "1"})

        _, url, body, headers = send.await_args.args
        assert url == "https://fapi.binance.com/fapi/v1/listenKey"
        assert body == "a=1&b=2"
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_signed_post_uses_query_string(self, executor: RetryingExecutor) -> None:
        send = _mock_send(executor, (200, '{"orderId": 1}'))
        await executor.execute("POST", "/fapi/v1/order", {"symbol": "ETHUSDT"}, True)

        _, url, body, _ = send.await_args.args
        assert url.startswith("https://fapi.binance.com/fapi/v1/order?")
        assert body is None

    @pytest.mark.asyncio
    async def test_param_values_stringified_and_none_dropped(
        self, executor: RetryingExecutor
    ) -> None:
        send = _mock_send(executor, OK)
        await executor.execute(
            "GET", "/x", {"reduceOnly": True, "limit": 5, "startTime": None}
        )

        url = send.await_args.args[1]
        assert url.endswith("/x?limit=5&reduceOnly=true")

    def test_testnet_base_url(self) -> None:
        executor = RetryingExecutor(ExchangeSettings(testnet=True))
        assert executor.base_url == "https://testnet.binancefuture.com"


# ---------------------------------------------------------------------------
# Response classification
# ---------------------------------------------------------------------------


class TestResponseClassification:
    def test_error_payload_with_ok_status(self) -> None:
        with pytest.raises(ExchangeError) as exc_info:
            RetryingExecutor._decode(200, '{"code": -2019, "msg": "Margin is insufficient."}')
        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert exc_info.value.raw == '{"code": -2019, "msg": "Margin is insufficient."}'

    def test_success_code_payload_is_not_an_error(self) -> None:
        payload = RetryingExecutor._decode(200, '{"code": 200, "msg": "success"}')
        assert payload == {"code": 200, "msg": "success"}

    def test_error_status_without_payload(self) -> None:
        with pytest.raises(ExchangeError) as exc_info:
            RetryingExecutor._decode(502, "<html>bad gateway</html>")
        assert exc_info.value.kind is ErrorKind.SERVICE_UNAVAILABLE
        assert exc_info.value.status == 502
        assert exc_info.value.raw == "<html>bad gateway</html>"

    def test_non_json_success_body(self) -> None:
        with pytest.raises(ExchangeError) as exc_info:
            RetryingExecutor._decode(200, "not json")
        assert exc_info.value.kind is ErrorKind.INVALID_JSON

    def test_empty_success_body(self) -> None:
        assert RetryingExecutor._decode(200, "") is None

    def test_list_payload(self) -> None:
        assert RetryingExecutor._decode(200, "[1, 2]") == [1, 2]


class TestTransport:
    @pytest.mark.asyncio
    async def test_client_error_maps_to_disconnected(self, executor: RetryingExecutor) -> None:
        session = MagicMock()
        session.closed = False
        session.request.side_effect = aiohttp.ClientConnectionError("connection reset")
        executor._session = session

        with pytest.raises(ExchangeError) as exc_info:
            await executor._send("GET", "https://fapi.binance.com/fapi/v1/ping", None, {})
        assert exc_info.value.kind is ErrorKind.DISCONNECTED

    @pytest.mark.asyncio
    async def test_timeout_maps_to_disconnected(self, executor: RetryingExecutor) -> None:
        session = MagicMock()
        session.closed = False
        session.request.side_effect = asyncio.TimeoutError()
        executor._session = session

        with pytest.raises(ExchangeError) as exc_info:
            await executor._send("GET", "https://fapi.binance.com/fapi/v1/ping", None, {})
        assert exc_info.value.kind is ErrorKind.DISCONNECTED

    @pytest.mark.asyncio
    async def test_send_opens_session_when_none_is_open(
        self, executor: RetryingExecutor
    ) -> None:
        session = MagicMock()
        session.closed = False
        session.request.side_effect = aiohttp.ClientConnectionError("connection refused")

        with patch(
            "perpbot.exchange.executor.aiohttp.ClientSession", return_value=session
        ) as session_cls:
            with pytest.raises(ExchangeError) as exc_info:
                await executor._send("GET", "https://fapi.binance.com/fapi/v1/ping", None, {})

        session_cls.assert_called_once()
        assert executor._session is session
        assert exc_info.value.kind is ErrorKind.DISCONNECTED

    @pytest.mark.asyncio
    async def test_closed_session_is_replaced(self, executor: RetryingExecutor) -> None:
        stale = MagicMock()
        stale.closed = True
        fresh = MagicMock()
        fresh.closed = False
        executor._session = stale

        with patch("perpbot.exchange.executor.aiohttp.ClientSession", return_value=fresh):
            await executor.connect()

        assert executor._session is fresh

    @pytest.mark.asyncio
    async def test_session_lifecycle(self, executor: RetryingExecutor) -> None:
        async with executor:
            assert executor._session is not None
            assert executor._session.headers["User-Agent"] == USER_AGENT
        assert executor._session is None


class TestProxy:
    def test_valid_proxy_kept(self) -> None:
        assert _validated_proxy("http://127.0.0.1:7890") == "http://127.0.0.1:7890"

    def test_unparsable_proxy_ignored(self) -> None:
        assert _validated_proxy("not a proxy") is None

    def test_empty_proxy(self) -> None:
        assert _validated_proxy("") is None
