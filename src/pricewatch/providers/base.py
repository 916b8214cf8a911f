from __future__ import annotations

import abc
import asyncio
from typing import Any, Iterable, Mapping, Optional

import aiohttp

from pricewatch.utils.backoff import parse_retry_after
from pricewatch.utils.types import ProviderEndpoint, Resolved

RATE_LIMIT_STATUSES = frozenset({429, 430})


# ---------------------------
# Errors
# ---------------------------

class ProviderError(Exception):
    """Base for a single failed upstream call."""
    retryable: bool = False

    def __init__(self, provider: str, message: str, *, status: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class TransientProviderError(ProviderError):
    """Timeout, 5xx, connection reset, unparsable body. Worth retrying."""
    retryable = True


class RateLimitedError(TransientProviderError):
    def __init__(self, provider: str, message: str, *, status: Optional[int] = None,
                 retry_after: Optional[float] = None):
        super().__init__(provider, message, status=status)
        self.retry_after = retry_after


class PermanentProviderError(ProviderError):
    """4xx other than rate limiting, or an upstream-level "error" payload."""


class UnsupportedAssetError(PermanentProviderError):
    """The provider has no mapping for this asset; skip straight to the next one."""


class ResolutionError(Exception):
    """Every provider in the chain failed for this asset."""

    def __init__(self, asset_class: str, asset_id: str, causes: Mapping[str, ProviderError]):
        detail = "; ".join(f"{p}={type(e).__name__}" for p, e in causes.items()) or "no providers"
        super().__init__(f"{asset_class}/{asset_id} unresolved ({detail})")
        self.asset_class = asset_class
        self.asset_id = asset_id
        self.causes = dict(causes)

    @property
    def permanent(self) -> bool:
        """True when no cause was transient (nothing to gain by trying again soon)."""
        return bool(self.causes) and not any(e.retryable for e in self.causes.values())


def error_for_status(provider: str, status: int, *, retry_after: Optional[float] = None,
                     body: str = "") -> ProviderError:
    snippet = body[:200]
    if status in RATE_LIMIT_STATUSES:
        return RateLimitedError(provider, f"rate limited ({status}) {snippet}",
                                status=status, retry_after=retry_after)
    if 500 <= status < 600:
        return TransientProviderError(provider, f"server error ({status}) {snippet}", status=status)
    if 400 <= status < 500:
        return PermanentProviderError(provider, f"client error ({status}) {snippet}", status=status)
    return TransientProviderError(provider, f"unexpected status ({status}) {snippet}", status=status)


# ---------------------------
# Provider capability
# ---------------------------

class Provider(abc.ABC):
    """
    Uniform fetch contract for one upstream.

    - fetch(asset_id)        -> Quote | Balance, raising ProviderError on failure
    - fetch_many(asset_ids)  -> {asset_id: result}; only when supports_batch.
      Ids missing from the response are simply absent from the mapping.

    Implementations do no retrying or pacing of their own; the resolver owns
    the rate-limit gate, the retry policy and the fallback order.
    """
    supports_batch: bool = False

    def __init__(self, endpoint: ProviderEndpoint):
        self.endpoint = endpoint

    @property
    def name(self) -> str:
        return self.endpoint.name

    def serves(self, asset_class: str) -> bool:
        return asset_class in self.endpoint.rank

    def rank_for(self, asset_class: str) -> int:
        return self.endpoint.rank[asset_class]

    @abc.abstractmethod
    async def fetch(self, asset_id: str) -> Resolved:
        ...

    async def fetch_many(self, asset_ids: Iterable[str]) -> dict[str, Resolved]:
        raise NotImplementedError(f"{self.name} does not batch")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class HttpProvider(Provider):
    """
    Provider over a shared aiohttp session. Maps HTTP outcomes onto the
    ProviderError hierarchy; subclasses only build URLs and parse payloads.
    """

    def __init__(self, endpoint: ProviderEndpoint, session: aiohttp.ClientSession,
                 headers: Optional[Mapping[str, str]] = None):
        super().__init__(endpoint)
        self._session = session
        self._headers = dict(headers or {})

    async def _get_json(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self._request("GET", url, params=params)

    async def _post_json(self, url: str, payload: Mapping[str, Any]) -> Any:
        return await self._request("POST", url, json=payload)

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            async with self._session.request(method, url, headers=self._headers or None, **kwargs) as resp:
                if resp.status == 200:
                    try:
                        return await resp.json(content_type=None)
                    except (ValueError, aiohttp.ContentTypeError) as e:
                        raise TransientProviderError(self.name, f"bad json: {e}", status=200) from e
                body = await _maybe_text(resp)
                retry_after = parse_retry_after(resp.headers.get("Retry-After"))
                raise error_for_status(self.name, resp.status, retry_after=retry_after, body=body)
        except ProviderError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientProviderError(self.name, f"network error: {e!r}") from e


async def _maybe_text(resp) -> str:
    try:
        return await resp.text()
    except Exception:
        return "<no body>"
