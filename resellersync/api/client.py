"""
ResellerClub API Client
Rate-limited, retrying access to the ResellerClub HTTP API

The registrar enforces one rate limit per credential, not per endpoint, so every
call goes through a single FIFO queue drained by one worker task. The worker is
the only code that touches the pacing state.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from resellersync.utils.config import Settings, get_settings
from resellersync.utils.logger import get_logger
from resellersync.api.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    is_error_payload,
    parse_api_error,
)


logger = get_logger(__name__)

ParamValue = Any
Params = Mapping[str, ParamValue]

BODY_SNIPPET_LENGTH = 200


def encode_params(params: Optional[Params]) -> List[Tuple[str, str]]:
    """
    Flatten request parameters into ordered key/value pairs.

    Sequences become repeated keys (tlds=com&tlds=net). The API does not
    understand indexed brackets (tlds[0]=com). None values are dropped.
    """
    pairs: List[Tuple[str, str]] = []
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            for item in value:
                if item is not None:
                    pairs.append((key, _stringify(item)))
        else:
            pairs.append((key, _stringify(value)))
    return pairs


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class RemoteCall:
    """One logical request. Immutable across retry attempts."""

    endpoint: str
    method: str
    params: Tuple[Tuple[str, str], ...]
    base_url_override: Optional[str] = None
    timeout: float = 30.0


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, APIError):
        return error.retryable
    # Unclassified failures (connection resets, DNS errors) are retried by default
    return isinstance(error, Exception)


class ResellerClubClient:
    """
    ResellerClub API client.

    Provides rate-limited, retry-enabled access to the API. All calls are
    coroutines; requests are dispatched strictly in submission order.

    Example:
        client = ResellerClubClient()
        balance = await client.get_balance()
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the API client.

        Args:
            config: Optional Settings object. If None, loads from get_settings()
            transport: Optional httpx transport (tests pass httpx.MockTransport)

        Raises:
            ConfigurationError: If reseller ID or API key is missing
        """
        self.config = config or get_settings()

        if not self.config.is_configured():
            raise ConfigurationError(
                "ResellerClub API not configured. Set RESELLERCLUB_RESELLER_ID "
                "and RESELLERCLUB_API_KEY environment variables."
            )

        self.base_url = self.config.api_url
        self._transport = transport
        self._min_interval = 1.0 / self.config.max_requests_per_second

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._http: Optional[httpx.AsyncClient] = None
        self._last_dispatch: Optional[float] = None

        logger.info(
            f"ResellerClub client initialized - Environment: "
            f"{'PRODUCTION' if self.config.is_production() else 'SANDBOX'}"
        )
        logger.info(f"Base URL: {self.base_url}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(
        self,
        endpoint: str,
        params: Optional[Params] = None,
        base_url_override: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """Make a GET request. All parameters, auth included, go in the query string."""
        return await self._submit(self._build_call("GET", endpoint, params, base_url_override, timeout))

    async def post(
        self,
        endpoint: str,
        params: Optional[Params] = None,
        base_url_override: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """Make a POST request. Auth stays in the query string, the rest is form-encoded."""
        return await self._submit(self._build_call("POST", endpoint, params, base_url_override, timeout))

    async def get_balance(self) -> Dict[str, Any]:
        """
        Get the reseller account balance.

        The API requires reseller-id even when querying your own balance.
        """
        data = await self.get(
            "billing/reseller-balance.json",
            {"reseller-id": self.config.resellerclub_reseller_id}
        )
        balance = data.get("sellingcurrencybalance") or data.get("resellerbalance") or 0
        return {
            "balance": float(balance),
            "currency": str(data.get("sellingcurrency") or self.config.default_currency),
        }

    async def health_check(self) -> bool:
        """
        Check API connectivity with a lightweight availability lookup.

        Returns:
            True if the API answered, False otherwise (never raises APIError)
        """
        try:
            await self.get(
                "domains/available.json",
                {"domain-name": ["test"], "tlds": ["com"]},
                self.config.domain_check_url
            )
            return True
        except APIError as e:
            logger.error(f"Health check failed: {e}")
            return False

    async def aclose(self) -> None:
        """Stop the worker, fail anything still queued and close the HTTP session."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                if not future.done():
                    future.set_exception(NetworkError("Client closed before the request was dispatched"))

        if self._http is not None:
            await self._http.aclose()

        self._worker = None
        self._queue = None
        self._http = None
        self._loop = None

    # ------------------------------------------------------------------
    # Queue / worker
    # ------------------------------------------------------------------

    def _build_call(
        self,
        method: str,
        endpoint: str,
        params: Optional[Params],
        base_url_override: Optional[str],
        timeout: Optional[float]
    ) -> RemoteCall:
        return RemoteCall(
            endpoint=endpoint.lstrip("/"),
            method=method,
            params=tuple(encode_params(params)),
            base_url_override=base_url_override,
            timeout=timeout or self.config.request_timeout,
        )

    async def _ensure_worker(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()

        if self._loop is not loop:
            # Queues, tasks and connection pools are bound to the loop that made them
            stale = self._http
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = None
            self._http = self._build_http_client()
            if stale is not None:
                await self._discard_session(stale)

        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._process_queue())

        return self._queue

    async def _discard_session(self, session: httpx.AsyncClient) -> None:
        """Close a session left over from a previous event loop."""
        if self._transport is not None:
            # Caller-supplied transport is shared with the new session
            return
        try:
            await session.aclose()
        except RuntimeError as e:
            # Pooled connections can still reference the closed loop
            logger.warning(f"Could not close previous HTTP session cleanly: {e}")

    def _build_http_client(self) -> httpx.AsyncClient:
        options: Dict[str, Any] = {
            "headers": {"Accept": "application/json"},
            "timeout": httpx.Timeout(self.config.request_timeout),
        }
        if self._transport is not None:
            options["transport"] = self._transport
            options["trust_env"] = False
        elif self.config.resellerclub_proxy_url:
            options["proxy"] = self.config.resellerclub_proxy_url
        return httpx.AsyncClient(**options)

    async def _submit(self, call: RemoteCall) -> Any:
        queue = await self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        queue.put_nowait((call, future))
        return await future

    async def _process_queue(self) -> None:
        while True:
            call, future = await self._queue.get()
            try:
                if future.cancelled():
                    continue
                try:
                    result = await self._execute(call)
                except Exception as e:
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
            finally:
                self._queue.task_done()

    async def _pace(self) -> None:
        """Sleep until at least 1/rate seconds have passed since the previous dispatch."""
        if self._last_dispatch is not None:
            while True:
                remaining = self._min_interval - (time.monotonic() - self._last_dispatch)
                if remaining <= 0:
                    break
                await asyncio.sleep(remaining)
        self._last_dispatch = time.monotonic()

    # ------------------------------------------------------------------
    # Retry / transport
    # ------------------------------------------------------------------

    def _log_retry(self, call: RemoteCall, retry_state) -> None:
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Retrying {call.endpoint} after {delay:.2f}s "
            f"(retry {retry_state.attempt_number}/{self.config.max_retries}): {error}"
        )

    async def _execute(self, call: RemoteCall) -> Any:
        """Run one logical request: paced attempts with exponential backoff."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries + 1),
            # retry_delay * 2^n for the n-th retry (n from 0)
            wait=wait_exponential(multiplier=self.config.retry_delay, min=0, max=3600),
            retry=retry_if_exception(_is_retryable),
            before_sleep=lambda retry_state: self._log_retry(call, retry_state),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self._pace()
                    result = await self._attempt(call)
        except APIError:
            raise
        except Exception as e:
            raise NetworkError(f"Network error calling {call.endpoint}: {e}") from e

        return result

    async def _attempt(self, call: RemoteCall) -> Any:
        try:
            return await asyncio.wait_for(self._send(call), timeout=call.timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(call.endpoint, call.timeout) from e
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(call.endpoint, call.timeout) from e

    async def _send(self, call: RemoteCall) -> Any:
        base_url = (call.base_url_override or self.base_url).rstrip("/")
        url = f"{base_url}/{call.endpoint}"
        auth = encode_params(self.config.auth_params)

        logger.debug(f"{call.method} {url}")

        if call.method == "POST":
            response = await self._http.post(
                url,
                params=auth,
                content=urlencode(list(call.params)),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        else:
            response = await self._http.get(url, params=auth + list(call.params))

        return self._handle_response(call, response)

    def _handle_response(self, call: RemoteCall, response: httpx.Response) -> Any:
        """
        Turn an HTTP response into decoded data or a classified error.

        Raises:
            Various APIError subclasses based on error type
        """
        content_type = response.headers.get("content-type", "").lower()

        # Status first, before any attempt to parse the body
        if not response.is_success:
            snippet = ""
            if "application/json" in content_type or "text/plain" in content_type:
                snippet = response.text[:BODY_SNIPPET_LENGTH]

            logger.error(
                f"HTTP {response.status_code} from {call.endpoint}"
                + (f" Body: {snippet}" if snippet else "")
            )

            message = f"API returned HTTP {response.status_code} {response.reason_phrase}"
            if snippet:
                message = f"{message}: {snippet}"
            response_data = {"body": snippet} if snippet else None

            if response.status_code in (401, 403):
                raise AuthenticationError(message, response.status_code, response_data)
            if response.status_code == 429:
                raise RateLimitError(message, response.status_code, response_data)
            if response.status_code >= 500:
                raise ServerError(message, response.status_code, response_data)
            raise NetworkError(message, response.status_code, response_data)

        # Edge-proxy block pages come back as HTML, sometimes with a 200
        if "text/html" in content_type:
            logger.error(f"Received HTML response from {call.endpoint} (likely WAF block)")
            raise NetworkError(
                "API returned HTML instead of JSON (possible WAF block)",
                response.status_code,
                {"body": response.text[:BODY_SNIPPET_LENGTH]}
            )

        # Some endpoints send JSON with a text/plain content type
        text = response.text
        try:
            data = json.loads(text) if text.strip() else {}
        except ValueError:
            logger.error(f"Non-JSON response from {call.endpoint}: {text[:BODY_SNIPPET_LENGTH]}")
            raise NetworkError(
                "API returned non-JSON response",
                response.status_code,
                {"body": text[:BODY_SNIPPET_LENGTH]}
            )

        if is_error_payload(data):
            raise parse_api_error(data, response.status_code)

        return data


# ============================================================================
# Default instance for convenience call sites
# ============================================================================

_client: Optional[ResellerClubClient] = None


def get_client() -> ResellerClubClient:
    """
    Get the process-wide client, creating it from settings on first use.
    Components should prefer an explicitly injected client.
    """
    global _client
    if _client is None:
        _client = ResellerClubClient()
    return _client


def reset_client() -> None:
    """Drop the process-wide client (tests, configuration changes)."""
    global _client
    _client = None
