"""
Unit tests for the GraphQL executor.

Tests cover:
- Proactive pacing from the reported credit bucket
- Retry with exponential backoff on HTTP 429 and THROTTLED errors
- Retry-After handling
- Non-retryable transport failures and application errors
"""
import asyncio
import json

import httpx
import pytest

from shopify_sync.clients.base import (
    RateLimitError,
    TransportError,
    is_throttled,
    pacing_delay_ms,
    parse_retry_after,
)
from shopify_sync.models import RetryState, ThrottleStatus


pytestmark = pytest.mark.unit


def _status(available, restore_rate=10.0) -> ThrottleStatus:
    return ThrottleStatus(available_credits=available, restore_rate=restore_rate)


def _sequence(*responses):
    """Handler returning the given responses in order, repeating the last one."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = responses[min(len(calls) - 1, len(responses) - 1)]
        if isinstance(item, Exception):
            raise item
        # fresh copy, a response object is bound to one request
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    handler.calls = calls
    return handler


def _too_many(retry_after=None) -> httpx.Response:
    headers = {"Retry-After": retry_after} if retry_after is not None else {}
    return httpx.Response(429, json={"errors": "Throttled"}, headers=headers)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestPacingDelay:
    """Tests for pacing_delay_ms."""

    def test_documented_example(self):
        assert pacing_delay_ms(_status(30, 10), threshold=50) == 7000

    def test_rounds_up_to_whole_milliseconds(self):
        # (100 - 1) / 7 s = 14142.857... ms
        assert pacing_delay_ms(_status(1, 7), threshold=50) == 14143

    @pytest.mark.parametrize("available", [50, 51, 1000])
    def test_no_wait_at_or_above_threshold(self, available):
        assert pacing_delay_ms(_status(available), threshold=50) == 0

    def test_no_wait_without_restore_rate(self):
        assert pacing_delay_ms(_status(10, 0), threshold=50) == 0

    def test_custom_threshold(self):
        # refill to 300 from 100 at 50/s = 4s
        assert pacing_delay_ms(_status(100, 50), threshold=150) == 4000


class TestParseRetryAfter:
    """Tests for parse_retry_after."""

    def test_seconds(self):
        assert parse_retry_after("2") == 2.0
        assert parse_retry_after("1.5") == 1.5

    @pytest.mark.parametrize("value", [None, "", "0", "-3", "soon", "nan", "inf"])
    def test_unusable_values_ignored(self, value):
        assert parse_retry_after(value) is None


class TestThrottleStatusParsing:
    """Tests for ThrottleStatus.from_response."""

    def test_full_envelope(self, body):
        status = ThrottleStatus.from_response(body(available=30, restore_rate=10))
        assert status.available_credits == 30
        assert status.restore_rate == 10
        assert status.max_credits == 1000
        assert status.requested_cost == 10
        assert status.actual_cost == 8

    def test_missing_cost_block(self, body):
        assert ThrottleStatus.from_response(body(with_cost=False)) is None

    @pytest.mark.parametrize("available,restore_rate", [("30", 10), (30, None), (True, 10)])
    def test_malformed_values(self, body, available, restore_rate):
        assert ThrottleStatus.from_response(body(available=available, restore_rate=restore_rate)) is None

    def test_not_a_dict(self):
        assert ThrottleStatus.from_response(["not", "a", "dict"]) is None


class TestRetryState:
    """Tests for RetryState.after_retries."""

    def test_backoff_doubles_with_each_retry(self):
        states = [RetryState.after_retries(n, 1.0) for n in range(5)]
        assert [s.attempt_count for s in states] == [0, 1, 2, 3, 4]
        assert [s.backoff_seconds for s in states] == [1.0, 2.0, 4.0, 8.0, 16.0]


def test_is_throttled():
    assert is_throttled({"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]})
    assert not is_throttled({"errors": [{"message": "Bad field"}]})
    assert not is_throttled({"data": {}})


# ---------------------------------------------------------------------------
# execute: success and pacing
# ---------------------------------------------------------------------------

class TestExecutePacing:
    """Tests for pacing after successful calls."""

    @pytest.mark.asyncio
    async def test_success_returns_envelope(self, make_executor, sleeper, body):
        payload = body({"shop": {"name": "Test"}})
        executor = make_executor(_sequence(httpx.Response(200, json=payload)))

        result = await executor.execute("{ shop { name } }")

        assert result["data"] == {"shop": {"name": "Test"}}
        assert sleeper.calls == []
        assert executor.last_throttle_status.available_credits == 1000

    @pytest.mark.asyncio
    async def test_low_credits_wait_before_returning(self, make_executor, sleeper, body):
        executor = make_executor(_sequence(httpx.Response(200, json=body(available=30, restore_rate=10))))

        await executor.execute("{ shop { name } }")

        assert sleeper.calls == [7.0]

    @pytest.mark.asyncio
    async def test_threshold_is_configurable(self, make_executor, sleeper, body):
        executor = make_executor(
            _sequence(httpx.Response(200, json=body(available=60, restore_rate=20))),
            low_credit_threshold=100,
        )

        await executor.execute("{ shop { name } }")

        assert sleeper.calls == [7.0]

    @pytest.mark.asyncio
    async def test_missing_cost_block_disables_pacing(self, make_executor, sleeper, body):
        executor = make_executor(_sequence(httpx.Response(200, json=body(with_cost=False))))

        await executor.execute("{ shop { name } }")

        assert sleeper.calls == []
        assert executor.last_throttle_status is None

    @pytest.mark.asyncio
    async def test_malformed_cost_block_disables_pacing(self, make_executor, sleeper, body):
        executor = make_executor(_sequence(httpx.Response(200, json=body(available="low", restore_rate=10))))

        await executor.execute("{ shop { name } }")

        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_application_errors_returned_without_retry(self, make_executor, sleeper, body):
        errors = [{"message": "Field 'nope' doesn't exist on type 'Shop'"}]
        handler = _sequence(httpx.Response(200, json=body(errors=errors, available=5, restore_rate=10)))
        executor = make_executor(handler)

        result = await executor.execute("{ shop { nope } }")

        assert result["errors"] == errors
        assert len(handler.calls) == 1
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_request_carries_query_variables_and_headers(self, make_executor, body):
        handler = _sequence(httpx.Response(200, json=body()))
        executor = make_executor(handler)

        await executor.execute("query q($h: String!) { x }", {"h": "shirt-1"})

        request = handler.calls[0]
        assert request.method == "POST"
        assert request.headers["X-Shopify-Access-Token"] == "shpat_test"
        assert json.loads(request.content) == {"query": "query q($h: String!) { x }", "variables": {"h": "shirt-1"}}


# ---------------------------------------------------------------------------
# execute: retries
# ---------------------------------------------------------------------------

class TestExecuteRetries:
    """Tests for retry behavior on rate limiting."""

    @pytest.mark.asyncio
    async def test_429_retried_with_doubling_backoff(self, make_executor, sleeper, body):
        handler = _sequence(_too_many(), _too_many(), _too_many(), httpx.Response(200, json=body()))
        executor = make_executor(handler)

        result = await executor.execute("{ shop { name } }")

        assert "data" in result
        assert len(handler.calls) == 4
        assert sleeper.calls == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, make_executor, sleeper):
        handler = _sequence(_too_many())
        executor = make_executor(handler)

        with pytest.raises(RateLimitError) as exc_info:
            await executor.execute("{ shop { name } }")

        assert len(handler.calls) == 6
        assert sleeper.calls == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert exc_info.value.status_code == 429
        assert exc_info.value.body == {"errors": "Throttled"}

    @pytest.mark.asyncio
    async def test_max_retries_is_configurable(self, make_executor, sleeper):
        handler = _sequence(_too_many())
        executor = make_executor(handler, max_retries=2, initial_backoff=0.5)

        with pytest.raises(RateLimitError):
            await executor.execute("{ shop { name } }")

        assert len(handler.calls) == 3
        assert sleeper.calls == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_retry_after_longer_than_backoff_wins(self, make_executor, sleeper, body):
        handler = _sequence(_too_many("3"), _too_many("0"), httpx.Response(200, json=body()))
        executor = make_executor(handler)

        await executor.execute("{ shop { name } }")

        assert sleeper.calls == [3.0, 2.0]

    @pytest.mark.asyncio
    async def test_retry_after_shorter_than_backoff_ignored(self, make_executor, sleeper, body):
        handler = _sequence(_too_many(), _too_many("0.5"), httpx.Response(200, json=body()))
        executor = make_executor(handler)

        await executor.execute("{ shop { name } }")

        assert sleeper.calls == [1.0, 2.0]

    @pytest.mark.parametrize("retry_after", ["-1", "abc", "0"])
    @pytest.mark.asyncio
    async def test_unusable_retry_after_uses_backoff(self, make_executor, sleeper, body, retry_after):
        handler = _sequence(_too_many(retry_after), httpx.Response(200, json=body()))
        executor = make_executor(handler)

        await executor.execute("{ shop { name } }")

        assert sleeper.calls == [1.0]

    @pytest.mark.asyncio
    async def test_throttled_graphql_error_retried(self, make_executor, sleeper, body):
        throttled = body(errors=[{"message": "Throttled", "extensions": {"code": "THROTTLED"}}])
        handler = _sequence(httpx.Response(200, json=throttled), httpx.Response(200, json=body()))
        executor = make_executor(handler)

        result = await executor.execute("{ shop { name } }")

        assert "errors" not in result
        assert len(handler.calls) == 2
        assert sleeper.calls == [1.0]

    @pytest.mark.asyncio
    async def test_pacing_applies_after_a_retry(self, make_executor, sleeper, body):
        handler = _sequence(_too_many(), httpx.Response(200, json=body(available=30, restore_rate=10)))
        executor = make_executor(handler)

        await executor.execute("{ shop { name } }")

        assert sleeper.calls == [1.0, 7.0]

    @pytest.mark.asyncio
    async def test_each_call_starts_with_fresh_retry_state(self, make_executor, sleeper, body):
        handler = _sequence(
            _too_many(), httpx.Response(200, json=body()),
            _too_many(), httpx.Response(200, json=body()),
        )
        executor = make_executor(handler)

        await executor.execute("{ shop { name } }")
        await executor.execute("{ shop { name } }")

        # backoff starts again at the initial interval
        assert sleeper.calls == [1.0, 1.0]


# ---------------------------------------------------------------------------
# execute: transport failures
# ---------------------------------------------------------------------------

class TestExecuteTransportFailures:
    """Tests for failures that are never retried."""

    @pytest.mark.parametrize("status_code", [400, 401, 404, 500, 503])
    @pytest.mark.asyncio
    async def test_http_error_raised_immediately(self, make_executor, sleeper, status_code):
        handler = _sequence(httpx.Response(status_code, text="nope"))
        executor = make_executor(handler)

        with pytest.raises(TransportError) as exc_info:
            await executor.execute("{ shop { name } }")

        assert exc_info.value.status_code == status_code
        assert len(handler.calls) == 1
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_connection_error(self, make_executor, sleeper):
        handler = _sequence(httpx.ConnectError("connection refused"))
        executor = make_executor(handler)

        with pytest.raises(TransportError, match="Request failed"):
            await executor.execute("{ shop { name } }")

        assert len(handler.calls) == 1
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_timeout_not_retried(self, make_executor, sleeper):
        handler = _sequence(httpx.ReadTimeout("timed out"))
        executor = make_executor(handler)

        with pytest.raises(TransportError, match="timed out"):
            await executor.execute("{ shop { name } }")

        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_whole_call_timeout(self, make_executor, sleeper):
        """A response that never completes is cut off after ``timeout`` seconds in total."""
        calls = []

        async def stalled(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            await asyncio.sleep(10)
            return httpx.Response(200, json={"data": {}})

        executor = make_executor(stalled, timeout=0.05)

        with pytest.raises(TransportError, match="timed out after 0.05s"):
            await executor.execute("{ shop { name } }")

        assert len(calls) == 1
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_non_json_body(self, make_executor):
        executor = make_executor(_sequence(httpx.Response(200, text="<html>maintenance</html>")))

        with pytest.raises(TransportError, match="not valid JSON"):
            await executor.execute("{ shop { name } }")
