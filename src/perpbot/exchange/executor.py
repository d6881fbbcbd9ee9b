"""Authenticated, rate-limited, retrying REST request pipeline.

One execute() call is one logical exchange call:

1. RateLimiter.wait()
2. RequestSigner.sign() when the endpoint requires auth (idempotent across retries)
3. Build the transport request (GET/DELETE: query string; POST/PUT: query
   string when signed, else a form-encoded body)
4. Send via aiohttp and classify the outcome into an ExchangeError

Failures are retried with exponential backoff, except kinds that no retry can
fix (malformed request, bad symbol, bad JSON, auth, inactive account).

Write calls are not idempotent on the exchange side: an order whose response
was lost may still have been placed. Non-idempotent calls are therefore only
retried on kinds that prove the exchange rejected the request before
executing it (rate limited, timestamp outside recvWindow).
"""

import asyncio
import json
from typing import Any
from urllib.parse import urlparse

import aiohttp
from yarl import URL

from perpbot.config import ExchangeSettings
from perpbot.exceptions import (
    ErrorKind,
    ExchangeError,
    from_api_error,
    from_http_status,
)
from perpbot.exchange.rate_limiter import RateLimiter
from perpbot.exchange.signing import RequestSigner, SignedRequest, canonical_query_string
from perpbot.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "perpbot/binance-futures"

NON_RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.INVALID_REQUEST,
        ErrorKind.INVALID_SYMBOL,
        ErrorKind.INVALID_JSON,
        ErrorKind.UNAUTHORIZED,
        ErrorKind.ACCOUNT_INACTIVE,
    }
)

# Kinds where the exchange is known not to have executed the request.
REJECTED_BEFORE_EXECUTION_KINDS = frozenset(
    {
        ErrorKind.TOO_MANY_REQUESTS,
        ErrorKind.INVALID_TIMESTAMP,
    }
)


def _validated_proxy(proxy_url: str) -> str | None:
    """Return the proxy URL if usable; log and ignore an unparsable one."""
    if not proxy_url:
        return None
    parsed = urlparse(proxy_url)
    if not parsed.scheme or not parsed.netloc:
        logger.warning("proxy_url_ignored", proxy_url=proxy_url)
        return None
    return proxy_url


class RetryingExecutor:
    """Issues exchange REST calls with rate limiting, signing and retry.

    Owns the aiohttp session. Call connect() before use and close() on
    shutdown (or use it as an async context manager); execute() opens the
    session lazily if connect() was skipped.

    Args:
        settings: Exchange settings (credentials, base URL, retry policy).
        rate_limiter: Shared token bucket; built from settings if omitted.
        signer: Request signer; built from settings if omitted.
    """

    def __init__(
        self,
        settings: ExchangeSettings,
        rate_limiter: RateLimiter | None = None,
        signer: RequestSigner | None = None,
    ) -> None:
        self._settings = settings
        self._base_url = settings.resolved_base_url
        self._rate_limiter = rate_limiter or RateLimiter(
            settings.rate_limit_capacity, settings.rate_limit_interval_ms
        )
        self._signer = signer or RequestSigner(
            settings.api_key.get_secret_value(),
            settings.api_secret.get_secret_value(),
            settings.recv_window_ms,
        )
        self._proxy = _validated_proxy(settings.proxy_url)
        self._session: aiohttp.ClientSession | None = None

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def base_url(self) -> str:
        return self._base_url

    async def connect(self) -> None:
        """Open the HTTP session."""
        self._ensure_session()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is not None and not self._session.closed:
            return self._session
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._settings.timeout),
            headers={"User-Agent": USER_AGENT},
        )
        self._session = session
        logger.info(
            "exchange_session_opened",
            base_url=self._base_url,
            proxy=self._proxy is not None,
        )
        return session

    async def close(self) -> None:
        """Close the HTTP session. Safe to call more than once."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.info("exchange_session_closed")

    async def __aenter__(self) -> "RetryingExecutor":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def execute(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        requires_auth: bool = False,
        idempotent: bool | None = None,
    ) -> Any:
        """Execute one logical call and return the decoded JSON body.

        Args:
            method: HTTP method.
            path: Endpoint path, e.g. "/fapi/v1/depth".
            params: User parameters; values are stringified.
            requires_auth: Sign the request (SIGNED endpoints).
            idempotent: Whether a blind retry is safe. Defaults to True for
                GET and False for every other method.

        Raises:
            ExchangeError: The last attempt's error once retries are exhausted
                or a non-retryable error occurs.
        """
        method = method.upper()
        if idempotent is None:
            idempotent = method == "GET"

        request = SignedRequest(
            method=method,
            path=path,
            params={k: _stringify(v) for k, v in (params or {}).items() if v is not None},
            requires_auth=requires_auth,
        )

        max_retries = self._settings.max_retries
        attempt = 0

        while True:
            try:
                return await self._attempt(request)
            except ExchangeError as exc:
                if attempt >= max_retries or not self._should_retry(exc, idempotent):
                    logger.error(
                        "exchange_request_failed",
                        method=method,
                        path=path,
                        kind=exc.kind.value,
                        error=str(exc),
                    )
                    raise
                attempt += 1
                delay = self.retry_delay(attempt)
                logger.warning(
                    "exchange_request_retry",
                    method=method,
                    path=path,
                    attempt=attempt,
                    max_retries=max_retries,
                    delay=delay,
                    kind=exc.kind.value,
                )
            await asyncio.sleep(delay)

    def retry_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (1-based)."""
        base = self._settings.retry_delay_ms / 1000
        return base * self._settings.retry_backoff ** (attempt - 1)

    @staticmethod
    def _should_retry(error: ExchangeError, idempotent: bool) -> bool:
        if error.kind in NON_RETRYABLE_KINDS:
            return False
        if not idempotent:
            return error.kind in REJECTED_BEFORE_EXECUTION_KINDS
        return True

    async def _attempt(self, request: SignedRequest) -> Any:
        await self._rate_limiter.wait()

        if request.requires_auth:
            self._signer.sign(request)

        url = f"{self._base_url}{request.path}"
        body: str | None = None
        headers: dict[str, str] = {}

        if request.method in ("GET", "DELETE") or request.requires_auth:
            query = request.query_string()
            if query:
                url = f"{url}?{query}"
        else:
            body = canonical_query_string(request.params)
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        if self._signer.api_key:
            headers["X-MBX-APIKEY"] = self._signer.api_key

        logger.debug("exchange_request", method=request.method, path=request.path)
        status, text = await self._send(request.method, url, body, headers)
        return self._decode(status, text)

    async def _send(
        self, method: str, url: str, body: str | None, headers: dict[str, str]
    ) -> tuple[int, str]:
        """Perform one HTTP round trip. Returns (status, body text)."""
        session = self._ensure_session()

        try:
            async with session.request(
                method,
                # The query is already canonical; stop yarl from re-quoting it.
                URL(url, encoded=True),
                data=body,
                headers=headers,
                proxy=self._proxy,
            ) as response:
                return response.status, await response.text()
        except asyncio.TimeoutError as exc:
            raise ExchangeError(
                ErrorKind.DISCONNECTED, "request timed out", detail=str(exc) or "timeout"
            ) from exc
        except aiohttp.ClientError as exc:
            raise ExchangeError(
                ErrorKind.DISCONNECTED, "request failed", detail=str(exc)
            ) from exc

    @staticmethod
    def _decode(status: int, text: str) -> Any:
        """Classify an HTTP response: error payload, error status, or JSON body."""
        payload: Any = None
        parsed = False
        if text:
            try:
                payload = json.loads(text)
                parsed = True
            except ValueError:
                parsed = False

        # Error payloads are honoured whatever the HTTP status. Error codes are
        # negative; some write endpoints answer {"code": 200, "msg": "success"}.
        if parsed and isinstance(payload, dict):
            code = payload.get("code")
            if isinstance(code, int) and code < 0:
                raise from_api_error(code, str(payload.get("msg", "")), raw=text)

        if not 200 <= status < 300:
            raise from_http_status(status, raw=text)

        if text and not parsed:
            raise ExchangeError(
                ErrorKind.INVALID_JSON, "response is not valid JSON", raw=text, status=status
            )
        return payload


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
