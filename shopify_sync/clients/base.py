"""GraphQL request executor with retry on throttling and credit-based pacing."""

import asyncio
import json
import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
)

from ..models import RetryState, ThrottleStatus


logger = logging.getLogger(__name__)

MAX_RETRIES = 5
INITIAL_BACKOFF_SECONDS = 1.0
LOW_CREDITS_THRESHOLD = 50
REQUEST_TIMEOUT_SECONDS = 30.0


class APIError(Exception):
    """Base API error."""
    pass


class TransportError(APIError):
    """Network failure, timeout or an HTTP status other than 2xx/429."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitError(APIError):
    """Rate limit still exceeded after the maximum number of retries."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
        retry_after: Optional[float] = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after
        self.attempts = attempts


class GraphQLError(APIError):
    """Top-level GraphQL ``errors`` in an otherwise successful response."""

    def __init__(self, errors: List[Dict[str, Any]]):
        self.errors = errors
        messages = "; ".join(str(e.get("message", e)) for e in errors)
        super().__init__(f"GraphQL errors: {messages}")


# Outcomes of a single HTTP round trip. The executor dispatches on these
# instead of on exception types.

class Success(BaseModel):
    kind: Literal["success"] = "success"
    data: Dict[str, Any]


class RateLimited(BaseModel):
    kind: Literal["rate_limited"] = "rate_limited"
    status_code: int
    retry_after: Optional[float] = None
    body: Any = None


class TransportFailure(BaseModel):
    kind: Literal["transport_failure"] = "transport_failure"
    reason: str
    status_code: Optional[int] = None
    body: Any = None


CallOutcome = Union[Success, RateLimited, TransportFailure]


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds.

    Zero, negative, non-finite and non-numeric values are ignored.
    """
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return seconds


def is_throttled(data: Dict[str, Any]) -> bool:
    """True when every GraphQL error in the envelope is a THROTTLED error."""
    errors = data.get("errors")
    if not errors or not isinstance(errors, list):
        return False
    return all(
        isinstance(e, dict) and (e.get("extensions") or {}).get("code") == "THROTTLED"
        for e in errors
    )


def pacing_delay_ms(status: ThrottleStatus, threshold: float = LOW_CREDITS_THRESHOLD) -> int:
    """Milliseconds to wait so the bucket refills to twice the threshold.

    Zero when credits are at or above the threshold or the restore rate is unusable.
    """
    if status.available_credits >= threshold or status.restore_rate <= 0:
        return 0
    deficit = max(0.0, threshold * 2 - status.available_credits)
    return math.ceil(deficit / status.restore_rate * 1000)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class GraphQLExecutor:
    """Executes GraphQL requests against a single endpoint.

    HTTP 429 (or a response whose errors are all THROTTLED) is retried with
    exponential backoff, honouring Retry-After when it asks for longer. After
    each successful call the reported credit bucket is checked and, when it
    runs low, the executor waits for it to refill before handing control
    back. Any other failure is raised immediately.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        low_credit_threshold: float = LOW_CREDITS_THRESHOLD,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.url = url
        self.headers = headers or {}
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.low_credit_threshold = low_credit_threshold
        self.timeout = timeout
        self._sleep = sleep

        # Advisory only: recomputed from every response, never used to skip a call
        self.last_throttle_status: Optional[ThrottleStatus] = None

        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _send(self, payload: Dict[str, Any]) -> CallOutcome:
        """Issue one POST and classify the result."""
        try:
            # httpx times each phase separately; wait_for bounds the whole call
            response = await asyncio.wait_for(
                self.client.post(self.url, json=payload, headers=self.headers),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return TransportFailure(reason=f"Request timed out after {self.timeout}s")
        except httpx.TimeoutException as e:
            return TransportFailure(reason=f"Request timed out: {e!r}")
        except httpx.HTTPError as e:
            return TransportFailure(reason=f"Request failed: {e!r}")

        if response.status_code == 429:
            logger.warning("Received 429 Too Many Requests from Shopify")
            return RateLimited(
                status_code=response.status_code,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                body=_response_body(response),
            )

        if not response.is_success:
            return TransportFailure(
                reason=f"HTTP {response.status_code} from Shopify",
                status_code=response.status_code,
                body=_response_body(response),
            )

        try:
            data = response.json()
        except ValueError:
            return TransportFailure(
                reason="Shopify response is not valid JSON",
                status_code=response.status_code,
                body=response.text,
            )
        if not isinstance(data, dict):
            return TransportFailure(
                reason="Shopify response is not a JSON object",
                status_code=response.status_code,
                body=data,
            )

        if is_throttled(data):
            logger.warning("Shopify reported THROTTLED for this query")
            return RateLimited(
                status_code=response.status_code,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                body=data,
            )

        return Success(data=data)

    def retry_state(self, call_state: RetryCallState) -> RetryState:
        """Retry bookkeeping for the attempt that just finished."""
        return RetryState.after_retries(call_state.attempt_number - 1, self.initial_backoff)

    def _wait_for_retry(self, call_state: RetryCallState) -> float:
        """Seconds to wait before the next attempt: max(backoff, Retry-After)."""
        backoff = self.retry_state(call_state).backoff_seconds
        outcome = call_state.outcome.result() if call_state.outcome else None
        retry_after = outcome.retry_after if isinstance(outcome, RateLimited) else None
        if retry_after is not None and retry_after > backoff:
            return retry_after
        return backoff

    async def _pace(self, status: ThrottleStatus) -> None:
        """Wait for the credit bucket to refill when it is running low."""
        delay_ms = pacing_delay_ms(status, self.low_credit_threshold)
        if delay_ms <= 0:
            return
        logger.warning(
            "Low Shopify API credits (%s). Waiting ~%d ms to let the bucket refill.",
            status.available_credits, delay_ms,
        )
        await self._sleep(delay_ms / 1000)

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a GraphQL query and return the decoded response envelope.

        Application-level ``errors`` are returned unchanged for the caller to
        inspect; they are never retried.

        Raises:
            RateLimitError: still throttled after ``max_retries`` retries.
            TransportError: network error, timeout or unexpected HTTP status.
        """
        payload = {"query": query, "variables": variables or {}}

        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait_for_retry,
            retry=retry_if_result(lambda outcome: isinstance(outcome, RateLimited)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            retry_error_callback=lambda call_state: call_state.outcome.result(),
        )
        outcome = await retrying(self._send, payload)

        if isinstance(outcome, RateLimited):
            logger.error("Max retries (%d) reached for Shopify request after 429. Aborting.", self.max_retries)
            raise RateLimitError(
                f"Rate limit exceeded (HTTP {outcome.status_code}) after {self.max_retries} retries",
                status_code=outcome.status_code,
                body=outcome.body,
                retry_after=outcome.retry_after,
                attempts=self.max_retries + 1,
            )

        if isinstance(outcome, TransportFailure):
            logger.error("HTTP error calling Shopify: %s", outcome.reason)
            if outcome.body:
                logger.error("Response body: %s", json.dumps(outcome.body, indent=2, default=str))
            raise TransportError(outcome.reason, status_code=outcome.status_code, body=outcome.body)

        data = outcome.data
        if data.get("errors"):
            logger.error("GraphQL errors: %s", json.dumps(data["errors"], indent=2, default=str))
            return data

        throttle = ThrottleStatus.from_response(data)
        self.last_throttle_status = throttle
        if throttle:
            logger.info(
                "Shopify cost: requested=%s, actual=%s, credits=%s/%s, restoreRate=%s/s",
                throttle.requested_cost, throttle.actual_cost,
                throttle.available_credits, throttle.max_credits, throttle.restore_rate,
            )
            await self._pace(throttle)

        return data
