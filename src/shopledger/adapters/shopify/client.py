"""Thin async GraphQL client for the Shopify Admin API.

Every request goes through the tenant's rate limiter and the shared retry
combinator, so both fetch strategies get the same throttling and backoff.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
import json
from typing import Any
import urllib.error
import urllib.request

from shopledger.adapters.shopify.models import ShopInfo
from shopledger.adapters.shopify.queries import SHOP_QUERY
from shopledger.core.config import DEFAULT_API_VERSION, TenantConfig
from shopledger.core.errors import (
    TransientUpstreamError,
    UpstreamRequestError,
    UpstreamThrottledError,
)
from shopledger.core.retry import (
    RateLimiter,
    RetryLogger,
    RetryPolicy,
    SleepFn,
    with_retry,
)

THROTTLE_MARKERS = ("throttled", "too many requests", "rate limit")
DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


Transport = Callable[[str, str, bytes | None, Mapping[str, str]], HttpResponse]


def urllib_transport(
    method: str,
    url: str,
    data: bytes | None,
    headers: Mapping[str, str],
) -> HttpResponse:
    """Blocking HTTP call; HTTP error statuses come back as responses."""
    req = urllib.request.Request(  # noqa: S310
        url,
        data=data,
        headers=dict(headers),
        method=method,
    )
    try:
        with urllib.request.urlopen(  # noqa: S310 - external HTTPS
            req, timeout=DEFAULT_TIMEOUT_SECONDS
        ) as resp:
            return HttpResponse(
                status=resp.status, body=resp.read(), headers=dict(resp.headers.items())
            )
    except urllib.error.HTTPError as e:  # pragma: no cover - network-dependent
        return HttpResponse(
            status=e.code,
            body=e.read(),
            headers=dict(e.headers.items()) if e.headers else {},
        )
    except urllib.error.URLError as e:  # pragma: no cover - network-dependent
        raise TransientUpstreamError(f"Network error calling {url}: {e}") from e
    except TimeoutError as e:  # pragma: no cover - network-dependent
        raise TransientUpstreamError(f"Timed out calling {url}") from e


def _retry_after(response: HttpResponse) -> float | None:
    raw = response.header("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def _is_throttle_error(error: Mapping[str, Any]) -> bool:
    extensions = error.get("extensions") or {}
    if isinstance(extensions, Mapping) and extensions.get("code") == "THROTTLED":
        return True
    message = str(error.get("message", "")).lower()
    return any(marker in message for marker in THROTTLE_MARKERS)


class ShopifyClient:
    """GraphQL access to one tenant's shop."""

    def __init__(
        self,
        tenant: TenantConfig,
        *,
        api_version: str = DEFAULT_API_VERSION,
        transport: Transport = urllib_transport,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        sleep: SleepFn = asyncio.sleep,
        retry_logger: RetryLogger | None = None,
    ) -> None:
        self._tenant = tenant
        self._api_version = api_version
        self._transport = transport
        self._retry_policy = retry_policy or RetryPolicy()
        self._rate_limiter = rate_limiter or RateLimiter(0.25, sleep=sleep)
        self._sleep = sleep
        self._retry_logger = retry_logger

    @property
    def tenant(self) -> TenantConfig:
        return self._tenant

    @property
    def endpoint(self) -> str:
        domain = self._tenant.domain.removeprefix("https://").rstrip("/")
        return f"https://{domain}/admin/api/{self._api_version}/graphql.json"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self._tenant.access_token,
        }

    # Response handling ---------------------------------------------------

    def _check_status(self, response: HttpResponse, operation: str) -> None:
        if response.status == 429:
            raise UpstreamThrottledError(
                f"{operation} throttled (HTTP 429)", retry_after=_retry_after(response)
            )
        if response.status >= 500:
            raise TransientUpstreamError(
                f"{operation} failed with HTTP {response.status}",
                retry_after=_retry_after(response),
            )
        if response.status >= 400:
            detail = response.body.decode("utf-8", "ignore")[:500]
            raise UpstreamRequestError(
                f"{operation} failed with HTTP {response.status}: {detail}"
            )

    def _parse_graphql(self, response: HttpResponse, operation: str) -> dict[str, Any]:
        self._check_status(response, operation)
        try:
            payload = json.loads(response.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise UpstreamRequestError(f"{operation} returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise UpstreamRequestError(f"{operation} returned a non-object payload")

        errors = payload.get("errors") or []
        if errors:
            if any(_is_throttle_error(err) for err in errors):
                raise UpstreamThrottledError(f"{operation} throttled by GraphQL cost")
            messages = "; ".join(str(err.get("message", err)) for err in errors)
            raise UpstreamRequestError(f"{operation} GraphQL error: {messages}")

        data = payload.get("data")
        if not isinstance(data, dict):
            raise UpstreamRequestError(f"{operation} returned no data")
        return data

    # Public API ----------------------------------------------------------

    async def execute(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        operation: str = "graphql",
    ) -> dict[str, Any]:
        """Run a GraphQL document and return its ``data`` object.

        Raises:
            UpstreamThrottledError: Still throttled after the retry budget.
            TransientUpstreamError: Still failing transiently after retries.
            UpstreamRequestError: Non-retryable HTTP or GraphQL error.
        """
        body = json.dumps({"query": query, "variables": dict(variables or {})}).encode(
            "utf-8"
        )

        async def attempt() -> dict[str, Any]:
            await self._rate_limiter.acquire()
            response = await asyncio.to_thread(
                self._transport, "POST", self.endpoint, body, self._headers()
            )
            return self._parse_graphql(response, operation)

        return await with_retry(
            attempt,
            self._retry_policy,
            sleep=self._sleep,
            operation=f"{self._tenant.tenant_id}:{operation}",
            retry_logger=self._retry_logger,
        )

    async def download_lines(self, url: str) -> list[str]:
        """Fetch a bulk result file and split it into non-empty JSONL lines."""

        async def attempt() -> list[str]:
            await self._rate_limiter.acquire()
            response = await asyncio.to_thread(self._transport, "GET", url, None, {})
            self._check_status(response, "bulk download")
            try:
                text = response.body.decode("utf-8")
            except UnicodeDecodeError as e:
                raise UpstreamRequestError("bulk download is not valid UTF-8") from e
            return [line for line in text.splitlines() if line.strip()]

        return await with_retry(
            attempt,
            self._retry_policy,
            sleep=self._sleep,
            operation=f"{self._tenant.tenant_id}:bulk_download",
            retry_logger=self._retry_logger,
        )

    async def test_connection(self) -> ShopInfo:
        data = await self.execute(SHOP_QUERY, operation="shop")
        return ShopInfo.parse(data.get("shop") or {})
