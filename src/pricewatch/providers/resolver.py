from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

import structlog

from pricewatch.providers.base import (
    PermanentProviderError,
    Provider,
    ProviderError,
    ResolutionError,
    TransientProviderError,
    UnsupportedAssetError,
)
from pricewatch.providers.ratelimit import IntervalGate, Sleep
from pricewatch.utils.backoff import retry_delay
from pricewatch.utils.types import Resolved

log = structlog.get_logger("resolver")

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    max_attempts: int = 3          # per provider, per call
    base_delay_s: float = 1.0      # backoff = base * 2**attempt
    max_delay_s: float = 30.0      # cap for both computed and retry-after delays
    timeout_s: float = 8.0         # every upstream call is bounded

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


@dataclass(slots=True)
class BatchResult:
    results: dict[str, Resolved] = field(default_factory=dict)
    errors: dict[str, ResolutionError] = field(default_factory=dict)

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self.results


class ProviderResolver:
    """
    Fetch one quantity (price or balance) from an ordered chain of providers.

    Per call:  rate-limit gate -> bounded call -> retry transient failures
               with exponential backoff (retry-after wins) -> give up.
    Per chain: a provider that gives up hands over to the next by rank;
               the resolution fails only when every provider gave up.

    Never touches the quote cache; callers decide what to do with results.
    """

    def __init__(
        self,
        providers: Iterable[Provider],
        *,
        policy: Optional[RetryPolicy] = None,
        gate: Optional[IntervalGate] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._providers = list(providers)
        self.policy = policy or RetryPolicy()
        self._gate = gate or IntervalGate()
        self._sleep = sleep
        self.calls: Counter[str] = Counter()  # provider name -> upstream calls issued

    # ---------- chain ----------

    def chain(self, asset_class: str) -> list[Provider]:
        capable = [p for p in self._providers if p.serves(asset_class)]
        return sorted(capable, key=lambda p: p.rank_for(asset_class))

    # ---------- public API ----------

    async def resolve(self, asset_class: str, asset_id: str) -> Resolved:
        """Return the first provider's answer; raise ResolutionError if all fail."""
        causes: dict[str, ProviderError] = {}
        for provider in self.chain(asset_class):
            try:
                result = await self._call(provider, lambda: provider.fetch(asset_id))
            except ProviderError as e:
                causes[provider.name] = e
                log.info("provider_fallthrough", provider=provider.name, asset_class=asset_class,
                         asset=asset_id, err=str(e))
                continue
            return result
        err = ResolutionError(asset_class, asset_id, causes)
        self._log_unresolved(err)
        raise err

    async def resolve_many(self, asset_class: str, asset_ids: Iterable[str]) -> BatchResult:
        """
        Resolve several ids with as few upstream calls as possible: a batch
        provider gets every still-missing id in one call, others are iterated
        per id. Ids left after the last provider end up in `errors`.
        """
        pending = list(dict.fromkeys(a for a in asset_ids if a))
        out = BatchResult()
        causes: dict[str, dict[str, ProviderError]] = {a: {} for a in pending}

        for provider in self.chain(asset_class):
            if not pending:
                break
            if provider.supports_batch:
                batch = list(pending)
                try:
                    got = await self._call(provider, lambda: provider.fetch_many(batch))
                except ProviderError as e:
                    for a in batch:
                        causes[a][provider.name] = e
                    log.info("provider_fallthrough", provider=provider.name, asset_class=asset_class,
                             assets=batch, err=str(e))
                else:
                    for a in batch:
                        if a in got:
                            out.results[a] = got[a]
                        else:
                            causes[a][provider.name] = UnsupportedAssetError(provider.name, "missing from batch")
            else:
                for a in pending:
                    try:
                        out.results[a] = await self._call(provider, lambda a=a: provider.fetch(a))
                    except ProviderError as e:
                        causes[a][provider.name] = e
            pending = [a for a in pending if a not in out.results]

        for a in pending:
            err = ResolutionError(asset_class, a, causes[a])
            out.errors[a] = err
            self._log_unresolved(err)
        return out

    # ---------- one provider, with retries ----------

    async def _call(self, provider: Provider, fn: Callable[[], Awaitable[T]]) -> T:
        pol = self.policy
        for attempt in range(1, pol.max_attempts + 1):
            await self._gate.wait(provider.name, provider.endpoint.min_interval_s)
            self.calls[provider.name] += 1
            try:
                return await asyncio.wait_for(fn(), timeout=pol.timeout_s)
            except asyncio.TimeoutError:
                err: ProviderError = TransientProviderError(provider.name, f"timeout after {pol.timeout_s}s")
            except ProviderError as e:
                if not e.retryable:
                    raise
                err = e
            except Exception as e:
                # a provider bug must not take the tick down; treat as non-retryable
                log.error("provider_unexpected_error", provider=provider.name, err=repr(e))
                raise PermanentProviderError(provider.name, f"unexpected: {e!r}") from e

            if attempt >= pol.max_attempts:
                log.warning("provider_retries_exhausted", provider=provider.name,
                            attempts=attempt, err=str(err))
                raise err
            delay = retry_delay(attempt, pol.base_delay_s,
                                retry_after=getattr(err, "retry_after", None),
                                cap=pol.max_delay_s)
            log.warning("provider_retry", provider=provider.name, status=err.status,
                        attempt=attempt, delay_s=round(delay, 3))
            await self._sleep(delay)
        raise RuntimeError("retry loop fell through")

    @staticmethod
    def _log_unresolved(err: ResolutionError) -> None:
        if err.permanent:
            log.error("asset_unresolved", asset_class=err.asset_class, asset=err.asset_id,
                      causes={p: str(e) for p, e in err.causes.items()})
        else:
            log.warning("asset_unresolved", asset_class=err.asset_class, asset=err.asset_id,
                        causes={p: str(e) for p, e in err.causes.items()})
