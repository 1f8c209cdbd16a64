# -*- coding: utf-8 -*-
"""
REST Dispatcher

Request/response pipeline shared by every adapter:

1. throttle.acquire() (if rate limiting is enabled)
2. sign hook -> RequestDescriptor (url, method, headers, body)
3. send with a bounded overall timeout (httpx.AsyncClient)
4. transport failure -> ExchangeNotAvailable, deadline -> RequestTimeout
5. read body, parse JSON if required (unparseable bodies are classified
   as DDoSProtection / ExchangeNotAvailable)
6. adapter handle_errors hook (runs first, may pre-empt the default mapping
   even on HTTP 200)
7. default HTTP status -> error mapping

No retries are performed here; retry policy belongs to the caller.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Union

import httpx

from exchange_core.exchanges.exceptions import (
    AuthenticationError,
    DDoSProtection,
    ExchangeError,
    ExchangeNotAvailable,
    RequestTimeout,
)
from exchange_core.exchanges.utils import title_case_header

logger = logging.getLogger(__name__)

MAX_ERROR_BODY_LENGTH = 512

_TITLE_PATTERN = re.compile(r"<title>([^<]+)", re.IGNORECASE)
_MAINTENANCE_PATTERN = re.compile(
    r"offline|busy|retry|wait|unavailable|maintain|maintenance|maintenancing", re.IGNORECASE
)
_DDOS_PARSE_PATTERN = re.compile(r"cloudflare|incapsula|overload|ddos", re.IGNORECASE)
_DDOS_STATUS_PATTERN = re.compile(r"cloudflare|incapsula", re.IGNORECASE)

DDOS_STATUS_CODES = frozenset({418, 429})
NOT_AVAILABLE_STATUS_CODES = frozenset({404, 409, 500, 501, 502, 520, 521, 522, 525})
AMBIGUOUS_STATUS_CODES = frozenset({400, 403, 405, 503, 530})
TIMEOUT_STATUS_CODES = frozenset({408, 504})
AUTH_STATUS_CODES = frozenset({401, 511})

POSSIBLE_REASONS = (
    "invalid API keys",
    "bad or old nonce",
    "exchange is down or offline",
    "on maintenance",
    "DDoS protection",
    "rate-limiting",
)


@dataclass
class RequestDescriptor:
    """Fully resolved, signed request"""
    url: str
    method: str = "GET"
    headers: Optional[Dict[str, str]] = None
    body: Optional[Union[str, bytes]] = None


# sign(path, category, method, params, headers, body) -> RequestDescriptor
SignHook = Callable[[str, str, str, Dict[str, Any], Optional[Dict[str, str]], Any], RequestDescriptor]
# handle_errors(status, reason, url, method, response_headers, body, parsed_json) -> None
ErrorHook = Callable[[int, str, str, str, Dict[str, str], str, Any], None]


def _title(body: str) -> Optional[str]:
    match = _TITLE_PATTERN.search(body or "")
    return match.group(1).strip() if match else None


class RestDispatcher:
    """
    Builds, signs, sends and parses REST requests for one client instance.

    Responsibilities:
    - rate limiting through the injected throttle
    - mapping transport/HTTP failures onto the normalized error taxonomy
    - caching the last response for diagnostics
    """

    def __init__(
        self,
        exchange_id: str,
        sign: SignHook,
        handle_errors: Optional[ErrorHook] = None,
        throttle=None,
        enable_rate_limit: bool = True,
        timeout_ms: float = 10000,
        parse_json_response: bool = True,
        skip_json_on_status_codes: Iterable[int] = (),
        headers: Optional[Dict[str, str]] = None,
        user_agent: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            exchange_id: venue id used in error messages
            sign: adapter hook building the RequestDescriptor
            handle_errors: adapter hook for venue error bodies (runs first)
            throttle: AsyncTokenBucket (or anything with `await acquire(cost)`)
            enable_rate_limit: gate requests through the throttle
            timeout_ms: overall deadline per request
            parse_json_response: whether replies must be JSON
            skip_json_on_status_codes: statuses that waive the JSON requirement
            headers: default headers added to every request
            user_agent: User-Agent header value
            client: httpx.AsyncClient to use (created lazily if None)
        """
        self.exchange_id = exchange_id
        self.sign = sign
        self.handle_errors = handle_errors
        self.throttle = throttle
        self.enable_rate_limit = enable_rate_limit
        self.timeout_ms = timeout_ms
        self.parse_json_response = parse_json_response
        self.skip_json_on_status_codes = frozenset(skip_json_on_status_codes)
        self.headers = dict(headers or {})
        self.user_agent = user_agent

        self._client = client
        self._owns_client = client is None

        self.last_http_response: Optional[str] = None
        self.last_json_response: Any = None
        self.last_response_headers: Optional[Dict[str, str]] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_ms / 1000.0)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        path: str,
        category: str = "public",
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        cost: Optional[float] = None,
    ) -> Any:
        """
        Run the full pipeline for one endpoint call.

        Args:
            path: endpoint path template (e.g. "getorderbook", "order/{id}")
            category: endpoint category ("public", "private", ...)
            method: HTTP method
            params: request parameters (path placeholders + query/body)
            headers: extra request headers
            body: raw request body
            cost: throttle cost (default: bucket default_cost)

        Returns:
            parsed JSON, or raw text when JSON is not required

        Raises:
            ExchangeError subclasses (see exceptions.py)
        """
        if self.enable_rate_limit and self.throttle is not None:
            await self.throttle.acquire(cost)
        descriptor = self.sign(path, category, method.upper(), dict(params or {}), headers, body)
        return await self.fetch(descriptor.url, descriptor.method, descriptor.headers, descriptor.body)

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> Any:
        request_headers = dict(self.headers)
        if self.user_agent:
            request_headers["User-Agent"] = self.user_agent
        request_headers.update(headers or {})

        logger.debug(f"[REST] {self.exchange_id} {method} {url} headers={request_headers} body={body}")

        try:
            response = await asyncio.wait_for(
                self._get_client().request(method, url, headers=request_headers, content=body),
                timeout=self.timeout_ms / 1000.0,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RequestTimeout(
                f"{self.exchange_id} {method} {url} request timed out ({self.timeout_ms} ms)"
            ) from e
        except httpx.RequestError as e:
            raise ExchangeNotAvailable(
                " ".join([self.exchange_id, method, url, type(e).__name__, str(e)])
            ) from e

        return self.handle_rest_response(response, url, method)

    def handle_rest_response(self, response: httpx.Response, url: str, method: str = "GET") -> Any:
        status = response.status_code
        reason = response.reason_phrase or ""
        body = response.text

        json_required = self.parse_json_response and status not in self.skip_json_on_status_codes
        parsed = self.parse_json(body, status, url, method) if json_required else None

        response_headers = {title_case_header(k): v for k, v in response.headers.items()}
        self.last_response_headers = response_headers
        self.last_http_response = body
        self.last_json_response = parsed

        logger.debug(
            f"[REST] {self.exchange_id} {method} {url} -> {status} {reason} "
            f"headers={response_headers} body={body[:MAX_ERROR_BODY_LENGTH]}"
        )

        if self.handle_errors is not None:
            self.handle_errors(status, reason, url, method, response_headers, body, parsed)
        self.default_error_handler(status, reason, url, method, body)

        return parsed if json_required else body

    def parse_json(self, body: str, status: int, url: str, method: str) -> Any:
        """
        Parse a JSON body ('' -> {}).

        Raises:
            DDoSProtection: body looks like an anti-bot page
            ExchangeNotAvailable: any other unparseable body
        """
        if not body:
            return {}
        try:
            return json.loads(body)
        except ValueError:
            title = _title(body)
            if _MAINTENANCE_PATTERN.search(body):
                details = "offline, on maintenance or unreachable from this location at the moment"
            else:
                details = "not accessible from this location at the moment"
            error_class = DDoSProtection if _DDOS_PARSE_PATTERN.search(body) else ExchangeNotAvailable
            message = " ".join(
                str(part) for part in (self.exchange_id, method, url, status, title, details) if part is not None
            )
            logger.warning(f"[REST] Unparseable response: {message}")
            raise error_class(message) from None

    def default_error_handler(self, status: int, reason: str, url: str, method: str, body: str) -> None:
        """
        Map a non-2xx HTTP status onto the error taxonomy.

        Raises:
            DDoSProtection / ExchangeNotAvailable / RequestTimeout /
            AuthenticationError / ExchangeError
        """
        if 200 <= status <= 299:
            return

        details = _title(body) or (body or "")[:MAX_ERROR_BODY_LENGTH]

        if status in DDOS_STATUS_CODES:
            error_class = DDoSProtection
        elif status in NOT_AVAILABLE_STATUS_CODES:
            error_class = ExchangeNotAvailable
        elif status in AMBIGUOUS_STATUS_CODES:
            if _DDOS_STATUS_PATTERN.search(body or ""):
                error_class = DDoSProtection
            else:
                error_class = ExchangeNotAvailable
                details += " (possible reasons: " + ", ".join(POSSIBLE_REASONS) + ")"
        elif status in TIMEOUT_STATUS_CODES:
            error_class = RequestTimeout
        elif status in AUTH_STATUS_CODES:
            error_class = AuthenticationError
        else:
            error_class = ExchangeError

        raise error_class(" ".join([self.exchange_id, method, url, str(status), reason, details]))
