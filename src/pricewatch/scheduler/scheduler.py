from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

import structlog

from pricewatch.alerts.evaluator import AlertEvaluator, EvaluatorConfig
from pricewatch.alerts.formatting import render_intent, render_prices
from pricewatch.alerts.state import AlertBook
from pricewatch.catalog import ASSETS, PRICE
from pricewatch.data.quote_cache import QuoteCache
from pricewatch.notify.base import Transport
from pricewatch.providers.resolver import BatchResult, ProviderResolver
from pricewatch.providers.ratelimit import Sleep
from pricewatch.utils.time import next_boundary, seconds_until, utc_now_s
from pricewatch.utils.types import (
    Cadence,
    DeliveryStatus,
    NotificationIntent,
    Quote,
    SubscriberConfig,
)
from storage.subscribers import SubscriberStore

log = structlog.get_logger("scheduler")

Job = Callable[[], Awaitable[object]]

# asset_id -> (current, previous or None)
QuotePairs = dict[str, tuple[Quote, Optional[Quote]]]


@dataclass(slots=True)
class SchedulerConfig:
    emergency_interval_s: float = 300.0
    prune_interval_s: float = 3600.0
    align_to_clock: bool = True   # 15min ticks land on :00/:15/:30/:45
    settle_s: float = 0.01        # fire just after the boundary
    tz_name: str = "UTC"          # timestamp zone in digests
    catalog: tuple[str, ...] = tuple(a.id for a in ASSETS)


@dataclass(slots=True)
class TickReport:
    name: str
    due: list[int] = field(default_factory=list)
    fetched: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    intents: int = 0
    sent: int = 0
    failed: int = 0
    removed: list[int] = field(default_factory=list)


@dataclass(slots=True)
class SchedulerContext:
    """Everything the scheduler mutates. One instance per scheduler, no sharing."""
    cache: QuoteCache
    alerts: AlertBook
    evaluator: AlertEvaluator
    active: set[int] = field(default_factory=set)
    tasks: dict[str, "ScheduledTask"] = field(default_factory=dict)

    @classmethod
    def create(cls, evaluator_cfg: Optional[EvaluatorConfig] = None,
               clock: Callable[[], float] = utc_now_s) -> "SchedulerContext":
        alerts = AlertBook()
        return cls(
            cache=QuoteCache(),
            alerts=alerts,
            evaluator=AlertEvaluator(alerts, cfg=evaluator_cfg, clock=clock),
        )


class ScheduledTask:
    """
    Cancelable handle on one periodic job.

    Sleeps until the next period boundary (or `interval_s` from now when not
    aligned), runs the job, repeats. A failing job is logged and the loop
    keeps going; only cancel() ends it.
    """

    def __init__(
        self,
        name: str,
        interval_s: float,
        job: Job,
        *,
        align: bool = True,
        settle_s: float = 0.01,
        clock: Callable[[], float] = utc_now_s,
        sleep: Sleep = asyncio.sleep,
    ):
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.name = name
        self.interval_s = float(interval_s)
        self.align = align
        self.settle_s = settle_s
        self.runs = 0
        self._job = job
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "ScheduledTask":
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name=f"sched-{self.name}")
        return self

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def join(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    def _delay(self) -> float:
        now = self._clock()
        if self.align:
            return seconds_until(next_boundary(now, self.interval_s), now) + self.settle_s
        return self.interval_s

    async def _loop(self) -> None:
        try:
            while True:
                await self._sleep(self._delay())
                try:
                    await self._job()
                except Exception as e:
                    log.error("scheduled_job_failed", job=self.name, err=repr(e))
                self.runs += 1
        except asyncio.CancelledError:
            return


class UpdateScheduler:
    """
    Orchestrates: timer tick -> resolver (one batch per tick) -> quote cache
    -> evaluator (per subscriber) -> transport.

    Timers:
      - one per Cadence value, each serving the subscribers on that cadence
      - emergency sweep over the whole catalog (crash/pump/extreme only)
      - prune sweep for the emergency dedup state

    Ticks may interleave at I/O points; the cache is last-write-wins.
    Threshold alerts are consumed before intents leave the evaluator, and a
    store snapshot read before a confirmed deletion can't re-arm one, so an
    overlapping tick never fires the same alert twice. Intents go out before
    the digest is built.

    Failures stay local: an asset that can't be resolved is left out of the
    tick, a subscriber whose config can't be loaded or whose delivery blows up
    is skipped, and an unreachable recipient is dropped without affecting the
    others.
    """

    def __init__(
        self,
        resolver: ProviderResolver,
        store: SubscriberStore,
        transport: Transport,
        *,
        cfg: Optional[SchedulerConfig] = None,
        evaluator_cfg: Optional[EvaluatorConfig] = None,
        ctx: Optional[SchedulerContext] = None,
        clock: Callable[[], float] = utc_now_s,
        sleep: Sleep = asyncio.sleep,
    ):
        self.resolver = resolver
        self.store = store
        self.transport = transport
        self.cfg = cfg or SchedulerConfig()
        self.ctx = ctx or SchedulerContext.create(evaluator_cfg, clock=clock)
        self._clock = clock
        self._sleep = sleep

    # ---------- lifecycle ----------

    async def start(self) -> None:
        await self.refresh()
        for cadence in Cadence:
            self.schedule(f"cadence-{cadence.value}", cadence.seconds,
                          lambda c=cadence: self.run_cadence_tick(c))
        self.schedule("emergency", self.cfg.emergency_interval_s, self.run_emergency_sweep)
        self.schedule("prune", self.cfg.prune_interval_s, self.prune)
        log.info("scheduler_started", subscribers=len(self.ctx.active), alerts=len(self.ctx.alerts),
                 timers=sorted(self.ctx.tasks))

    async def stop(self) -> None:
        tasks = list(self.ctx.tasks.values())
        self.ctx.tasks.clear()
        for t in tasks:
            t.cancel()
        for t in tasks:
            await t.join()
        log.info("scheduler_stopped")

    def schedule(self, name: str, interval_s: float, job: Job) -> ScheduledTask:
        old = self.ctx.tasks.pop(name, None)
        if old is not None:
            old.cancel()
        task = ScheduledTask(name, interval_s, job, align=self.cfg.align_to_clock,
                             settle_s=self.cfg.settle_s, clock=self._clock, sleep=self._sleep)
        self.ctx.tasks[name] = task.start()
        return task

    async def refresh(self) -> None:
        """Re-read subscriber ids and active alerts; keep the old view if the store fails."""
        generation = self.ctx.alerts.begin_snapshot()
        try:
            ids = await self.store.subscriber_ids()
            alerts = await self.store.load_alerts(ids)
        except Exception as e:
            log.error("store_refresh_failed", err=repr(e))
            return
        if not self.ctx.alerts.sync(alerts, generation):
            log.debug("store_snapshot_outdated", generation=generation)
            return
        self.ctx.active = set(ids)

    # ---------- ticks ----------

    async def run_cadence_tick(self, cadence: Cadence, *, now: Optional[float] = None) -> TickReport:
        cadence = Cadence(cadence)
        report = TickReport(name=f"cadence-{cadence.value}")
        await self.refresh()

        configs = await self._load_configs(self.ctx.active)
        due = {sid for sid, c in configs.items() if c.cadence is cadence}
        # threshold alerts are checked on every tick, whatever the owner's cadence
        owners = self.ctx.alerts.owners() & set(configs)
        report.due = sorted(due)

        wanted: set[str] = set(self.ctx.alerts.assets_for(owners))
        for sid in due:
            wanted.update(configs[sid].tracked)
        if not wanted:
            log.debug("tick_nothing_to_fetch", tick=report.name)
            await self._flush_deletions()
            return report

        quotes = await self._fetch(sorted(wanted), report)
        now = self._clock() if now is None else now

        for sid in sorted(due | owners):
            cfg = configs[sid]
            try:
                if sid in due:
                    intents = self._evaluate_full(cfg, quotes, now)
                else:
                    intents = self._evaluate_thresholds(cfg, quotes)
            except Exception as e:
                log.error("subscriber_tick_failed", tick=report.name, subscriber=sid, err=repr(e))
                continue
            report.intents += len(intents)
            # intents are already consumed; they go out before the digest is even built
            if not await self._send_intents(sid, intents, report):
                continue
            if sid in due and cfg.tracked:
                try:
                    digest = self._digest(cfg, quotes)
                except Exception as e:
                    log.error("digest_render_failed", tick=report.name, subscriber=sid, err=repr(e))
                    continue
                await self._dispatch(sid, [digest], report)

        await self._flush_deletions()
        log.info("cadence_tick_done", tick=report.name, due=len(report.due), fetched=len(report.fetched),
                 unresolved=report.unresolved, intents=report.intents, sent=report.sent,
                 failed=report.failed, removed=report.removed)
        return report

    async def run_emergency_sweep(self, *, now: Optional[float] = None) -> TickReport:
        report = TickReport(name="emergency")
        await self.refresh()
        configs = await self._load_configs(self.ctx.active)
        flagged = [c for c in configs.values() if c.emergency_alerts and c.tracked]
        if not flagged:
            return report

        quotes = await self._fetch(list(self.cfg.catalog), report)
        now = self._clock() if now is None else now

        for cfg in sorted(flagged, key=lambda c: c.subscriber_id):
            try:
                intents: list[NotificationIntent] = []
                for asset_id in cfg.tracked:
                    pair = quotes.get(asset_id)
                    if pair is None:
                        continue
                    current, previous = pair
                    intents.extend(self.ctx.evaluator.evaluate_emergency(cfg, current, previous, now=now))
                report.intents += len(intents)
                await self._send_intents(cfg.subscriber_id, intents, report)
            except Exception as e:
                log.error("subscriber_tick_failed", tick=report.name, subscriber=cfg.subscriber_id,
                          err=repr(e))

        if report.intents:
            log.info("emergency_sweep_done", fetched=len(report.fetched), intents=report.intents,
                     sent=report.sent, failed=report.failed, removed=report.removed)
        return report

    async def prune(self, *, now: Optional[float] = None) -> int:
        dropped = self.ctx.evaluator.prune(now)
        log.info("emergency_state_pruned", dropped=dropped, remaining=len(self.ctx.evaluator.state))
        return dropped

    # ---------- steps ----------

    async def _load_configs(self, ids: Iterable[int]) -> dict[int, SubscriberConfig]:
        out: dict[int, SubscriberConfig] = {}
        for sid in sorted(ids):
            try:
                out[sid] = await self.store.load_settings(sid)
            except Exception as e:
                log.error("subscriber_config_unavailable", subscriber=sid, err=repr(e))
        return out

    async def _fetch(self, asset_ids: list[str], report: TickReport) -> QuotePairs:
        try:
            batch = await self.resolver.resolve_many(PRICE, asset_ids)
        except Exception as e:
            log.error("tick_fetch_failed", tick=report.name, err=repr(e))
            batch = BatchResult()
        report.fetched = sorted(batch.results)
        report.unresolved = sorted(set(asset_ids) - set(batch.results))
        return self._ingest(batch)

    def _ingest(self, batch: BatchResult) -> QuotePairs:
        pairs: QuotePairs = {}
        cache = self.ctx.cache
        for asset_id, quote in batch.results.items():
            if not isinstance(quote, Quote):
                log.error("resolver_returned_non_quote", asset=asset_id, type=type(quote).__name__)
                continue
            accepted = cache.update(quote)
            current = cache.latest(asset_id)
            previous = cache.previous(asset_id) if accepted else None
            pairs[asset_id] = (current, previous)
        return pairs

    def _evaluate_full(self, cfg: SubscriberConfig, quotes: QuotePairs, now: float) -> list[NotificationIntent]:
        intents: list[NotificationIntent] = []
        alert_assets = {a.asset_id for a in self.ctx.alerts.for_subscriber(cfg.subscriber_id)}
        for asset_id in list(cfg.tracked) + sorted(alert_assets - set(cfg.tracked)):
            pair = quotes.get(asset_id)
            if pair is None:
                log.warning("asset_skipped_no_quote", subscriber=cfg.subscriber_id, asset=asset_id)
                continue
            current, previous = pair
            intents.extend(self.ctx.evaluator.evaluate(cfg, current, previous, now=now))
        return intents

    def _evaluate_thresholds(self, cfg: SubscriberConfig, quotes: QuotePairs) -> list[NotificationIntent]:
        intents: list[NotificationIntent] = []
        for asset_id in sorted({a.asset_id for a in self.ctx.alerts.for_subscriber(cfg.subscriber_id)}):
            pair = quotes.get(asset_id)
            if pair is None:
                log.warning("asset_skipped_no_quote", subscriber=cfg.subscriber_id, asset=asset_id)
                continue
            intents.extend(self.ctx.evaluator.evaluate_thresholds(cfg, pair[0]))
        return intents

    def _digest(self, cfg: SubscriberConfig, quotes: QuotePairs) -> str:
        mine = []
        for asset_id in cfg.tracked:
            pair = quotes.get(asset_id)
            if pair is None:
                continue
            if not pair[0].prices.get(cfg.fiat):
                log.warning("digest_asset_missing_fiat", subscriber=cfg.subscriber_id, asset=asset_id,
                            fiat=cfg.fiat)
                continue
            mine.append(pair)
        previous = {cur.asset_id: prev for cur, prev in mine if prev is not None}
        return render_prices([cur for cur, _ in mine], cfg.fiat, previous, tz_name=self.cfg.tz_name)

    async def _send_intents(self, sid: int, intents: list[NotificationIntent], report: TickReport) -> bool:
        messages: list[str] = []
        for intent in intents:
            try:
                messages.append(render_intent(intent))
            except Exception as e:
                log.error("intent_render_failed", subscriber=sid, asset=intent.asset_id,
                          kind=intent.kind.value, err=repr(e))
        return await self._dispatch(sid, messages, report)

    async def _flush_deletions(self) -> None:
        for alert in self.ctx.alerts.pending_deletions():
            try:
                await self.store.delete_alert(alert)
            except Exception as e:
                # stays pending; retried on the next tick
                log.error("alert_delete_failed", alert_id=alert.alert_id, subscriber=alert.subscriber_id,
                          err=repr(e))
                continue
            self.ctx.alerts.confirm_deleted(alert.alert_id)

    async def _dispatch(self, sid: int, messages: list[str], report: TickReport) -> bool:
        """Send in order. False once the recipient turned out unreachable and was dropped."""
        for text in messages:
            try:
                status = await self.transport.send(sid, text)
            except Exception as e:
                log.error("transport_error", subscriber=sid, err=repr(e))
                status = DeliveryStatus.FAILED

            if status is DeliveryStatus.SENT:
                report.sent += 1
            elif status is DeliveryStatus.UNREACHABLE:
                await self._drop_subscriber(sid)
                report.removed.append(sid)
                return False
            else:
                report.failed += 1
                log.warning("delivery_failed", subscriber=sid)
        return True

    async def _drop_subscriber(self, sid: int) -> None:
        self.ctx.active.discard(sid)
        self.ctx.alerts.drop_subscriber(sid)
        log.info("subscriber_unreachable_removed", subscriber=sid)
        try:
            await self.store.remove_subscriber(sid)
        except Exception as e:
            log.error("subscriber_remove_failed", subscriber=sid, err=repr(e))
