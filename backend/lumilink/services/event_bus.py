"""
backend/lumilink/services/event_bus.py

Purpose:
    Lightweight in-memory event bus that carries activity events to the badge
    evaluation handler and award events to notification subscribers.
    Async publish/subscribe with per-handler worker queues; a failing handler
    is counted and logged without affecting publishers or other handlers.

Dependencies:
    - asyncio
    - lumilink.config
    - lumilink.services.event_models
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from lumilink.config import settings
from lumilink.services.event_models import BaseEvent, normalize_event_time
from lumilink.utils import utcnow

logger = logging.getLogger("lumilink.event_bus")

AsyncEventHandler = Callable[[BaseEvent], Awaitable[None]]
_METRIC_KEYS = ("published", "handled", "failed", "dropped")


@dataclass
class _Subscription:
    event_type: str
    handler_name: str
    handler: AsyncEventHandler
    concurrency: int
    queue: asyncio.Queue[BaseEvent]
    workers: list[asyncio.Task]
    handled_total: int = 0
    failed_total: int = 0
    dropped_total: int = 0


class InMemoryEventBus:
    def __init__(
        self,
        *,
        ingress_maxsize: int,
        handler_maxsize: int,
        default_concurrency: int,
        error_buffer_size: int,
    ) -> None:
        self._ingress_maxsize = max(1, int(ingress_maxsize))
        self._handler_maxsize = max(1, int(handler_maxsize))
        self._default_concurrency = max(1, int(default_concurrency))

        self._ingress: asyncio.Queue[BaseEvent] = asyncio.Queue(maxsize=self._ingress_maxsize)
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._dispatcher_task: asyncio.Task | None = None
        self._running = False
        self._lock = asyncio.Lock()

        self._totals: dict[str, int] = {metric: 0 for metric in _METRIC_KEYS}
        self._per_event_type: dict[str, dict[str, int]] = defaultdict(lambda: {m: 0 for m in _METRIC_KEYS})
        self._errors: deque[dict[str, Any]] = deque(maxlen=max(1, int(error_buffer_size)))

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            for sub in self._all_subscriptions():
                if not sub.workers:
                    sub.workers.extend(self._spawn_workers(sub))
            self._dispatcher_task = asyncio.create_task(self._dispatch_loop(), name="event_bus_dispatcher")
            logger.info("Event bus started")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            tasks = [self._dispatcher_task] if self._dispatcher_task is not None else []
            self._dispatcher_task = None
            for sub in self._all_subscriptions():
                tasks.extend(sub.workers)
                sub.workers.clear()
            for task in tasks:
                task.cancel()
            # Workers exit via CancelledError; gather collects it instead of raising.
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Event bus stopped")

    def _all_subscriptions(self) -> list[_Subscription]:
        return [sub for subs in self._subscriptions.values() for sub in subs]

    async def drain(self) -> None:
        """Wait until every published event has been handled (or failed).

        Events that handlers publish while the bus drains are waited for too.
        """
        while True:
            published = self._totals["published"]
            await self._ingress.join()
            for sub in self._all_subscriptions():
                await sub.queue.join()
            # A full pass without new publishes means nothing is left in flight.
            if self._totals["published"] == published:
                return

    def subscribe(
        self,
        event_type: str,
        handler: AsyncEventHandler,
        *,
        handler_name: str,
        concurrency: int = 0,
    ) -> None:
        sub = _Subscription(
            event_type=event_type,
            handler_name=handler_name,
            handler=handler,
            concurrency=max(1, int(concurrency or self._default_concurrency)),
            queue=asyncio.Queue(maxsize=self._handler_maxsize),
            workers=[],
        )
        self._subscriptions[event_type].append(sub)
        if self._running:
            sub.workers.extend(self._spawn_workers(sub))

    async def publish(self, event: BaseEvent) -> bool:
        normalized = normalize_event_time(event)
        try:
            self._ingress.put_nowait(normalized)
        except asyncio.QueueFull:
            self._record("dropped", normalized.event_type)
            logger.warning("Event bus ingress queue full; dropping event_type=%s", normalized.event_type)
            return False
        self._record("published", normalized.event_type)
        return True

    def stats(self) -> dict[str, Any]:
        """Snapshot of bus counters and queue depths."""
        handlers = {
            f"{sub.event_type}:{sub.handler_name}": {
                "concurrency": sub.concurrency,
                "queue_depth": sub.queue.qsize(),
                "handled_total": sub.handled_total,
                "failed_total": sub.failed_total,
                "dropped_total": sub.dropped_total,
            }
            for sub in self._all_subscriptions()
        }
        return {
            "enabled": bool(settings.EVENT_BUS_ENABLED),
            "running": self._running,
            **{f"{metric}_total": count for metric, count in self._totals.items()},
            "ingress_queue_depth": self._ingress.qsize(),
            "per_handler": handlers,
            "per_event_type": {k: dict(v) for k, v in sorted(self._per_event_type.items())},
            "recent_errors": list(self._errors),
        }

    async def _dispatch_loop(self) -> None:
        while self._running:
            event = await self._ingress.get()
            try:
                for sub in self._subscriptions.get(event.event_type, []):
                    try:
                        sub.queue.put_nowait(event)
                    except asyncio.QueueFull:
                        sub.dropped_total += 1
                        self._record("dropped", event.event_type)
                        logger.warning(
                            "Event bus handler queue full; dropping event_type=%s handler=%s",
                            event.event_type,
                            sub.handler_name,
                        )
            finally:
                self._ingress.task_done()

    def _spawn_workers(self, sub: _Subscription) -> list[asyncio.Task]:
        return [
            asyncio.create_task(self._handler_loop(sub), name=f"event_bus_{sub.event_type}_{sub.handler_name}_{idx}")
            for idx in range(sub.concurrency)
        ]

    async def _handler_loop(self, sub: _Subscription) -> None:
        while self._running:
            event = await sub.queue.get()
            try:
                await sub.handler(event)
                sub.handled_total += 1
                self._record("handled", event.event_type)
            except Exception as exc:
                self._handler_failed(sub, event, exc)
            finally:
                sub.queue.task_done()

    def _handler_failed(self, sub: _Subscription, event: BaseEvent, exc: Exception) -> None:
        sub.failed_total += 1
        self._record("failed", event.event_type)
        failure = {
            "handler_name": sub.handler_name,
            "event_type": event.event_type,
            "event_id": event.event_id,
            "correlation_id": event.correlation_id,
            "source": event.source,
            "error": str(exc),
            "ts": utcnow().isoformat(),
        }
        self._errors.append(failure)
        logger.error("Badge event handler %s failed: %s", sub.handler_name, failure, exc_info=exc)

    def _record(self, metric: str, event_type: str) -> None:
        self._totals[metric] += 1
        self._per_event_type[str(event_type or "unknown")][metric] += 1


event_bus = InMemoryEventBus(
    ingress_maxsize=settings.EVENT_BUS_INGRESS_QUEUE_MAXSIZE,
    handler_maxsize=settings.EVENT_BUS_HANDLER_QUEUE_MAXSIZE,
    default_concurrency=settings.EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY,
    error_buffer_size=settings.EVENT_BUS_ERROR_BUFFER_SIZE,
)
