"""
backend/app/services/event_bus.py

Purpose:
    Lightweight in-memory event bus used as the notification seam. Publishing
    never blocks and never raises into the caller; handlers run in their own
    worker tasks with per-handler bounded queues.

Dependencies:
    - asyncio
    - app.config
    - app.services.event_models
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.services.event_models import BaseEvent, normalize_event_time
from app.utils import utcnow

logger = logging.getLogger("vipslips.event_bus")

AsyncEventHandler = Callable[[BaseEvent], Awaitable[None]]


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
        enabled: bool = True,
    ) -> None:
        self._ingress_maxsize = max(1, int(ingress_maxsize))
        self._handler_maxsize = max(1, int(handler_maxsize))
        self._default_concurrency = max(1, int(default_concurrency))
        self._enabled = enabled

        self._ingress: asyncio.Queue[BaseEvent] = asyncio.Queue(maxsize=self._ingress_maxsize)
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._dispatcher_task: asyncio.Task | None = None
        self._running = False
        self._lock = asyncio.Lock()

        self._published = 0
        self._handled = 0
        self._failed = 0
        self._dropped = 0
        self._per_event_type: dict[str, int] = defaultdict(int)
        self._errors: deque[dict[str, Any]] = deque(maxlen=max(1, int(error_buffer_size)))

    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            for subs in self._subscriptions.values():
                for sub in subs:
                    if not sub.workers:
                        sub.workers.extend(self._spawn_workers(sub, sub.concurrency))
            self._dispatcher_task = asyncio.create_task(self._dispatch_loop(), name="event_bus_dispatcher")
            logger.info("Event bus started")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            tasks = [self._dispatcher_task] if self._dispatcher_task else []
            for subs in self._subscriptions.values():
                for sub in subs:
                    tasks.extend(sub.workers)
                    sub.workers = []
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._dispatcher_task = None
            logger.info("Event bus stopped")

    def subscribe(
        self,
        event_type: str,
        handler: AsyncEventHandler,
        *,
        handler_name: str,
        concurrency: int = 0,
    ) -> None:
        worker_count = max(1, int(concurrency or self._default_concurrency))
        sub = _Subscription(
            event_type=event_type,
            handler_name=handler_name,
            handler=handler,
            concurrency=worker_count,
            queue=asyncio.Queue(maxsize=self._handler_maxsize),
            workers=[],
        )
        self._subscriptions[event_type].append(sub)
        if self._running:
            sub.workers.extend(self._spawn_workers(sub, worker_count))

    def publish(self, event: BaseEvent) -> bool:
        """Enqueue an event without waiting. Returns False when it was dropped."""
        if not self._enabled:
            return False
        normalized = normalize_event_time(event)
        try:
            self._ingress.put_nowait(normalized)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning("Event bus ingress queue full; dropping event_type=%s", normalized.event_type)
            return False
        self._published += 1
        self._per_event_type[normalized.event_type] += 1
        return True

    def stats(self) -> dict[str, Any]:
        per_handler: dict[str, dict[str, Any]] = {}
        for event_type, subs in self._subscriptions.items():
            for sub in subs:
                per_handler[f"{event_type}:{sub.handler_name}"] = {
                    "event_type": event_type,
                    "name": sub.handler_name,
                    "concurrency": sub.concurrency,
                    "queue_depth": sub.queue.qsize(),
                    "queue_limit": self._handler_maxsize,
                    "handled_total": sub.handled_total,
                    "failed_total": sub.failed_total,
                    "dropped_total": sub.dropped_total,
                }
        return {
            "enabled": self._enabled,
            "running": self._running,
            "published_total": self._published,
            "handled_total": self._handled,
            "failed_total": self._failed,
            "dropped_total": self._dropped,
            "ingress_queue_depth": self._ingress.qsize(),
            "ingress_queue_limit": self._ingress_maxsize,
            "per_event_type": dict(self._per_event_type),
            "per_handler": per_handler,
            "recent_errors": list(self._errors),
        }

    async def _dispatch_loop(self) -> None:
        while self._running:
            event = await self._ingress.get()
            for sub in self._subscriptions.get(event.event_type, []):
                try:
                    sub.queue.put_nowait(event)
                except asyncio.QueueFull:
                    self._dropped += 1
                    sub.dropped_total += 1
                    logger.warning(
                        "Event bus handler queue full; dropping event_type=%s handler=%s",
                        event.event_type,
                        sub.handler_name,
                    )

    def _spawn_workers(self, sub: _Subscription, worker_count: int) -> list[asyncio.Task]:
        return [
            asyncio.create_task(self._handler_loop(sub), name=f"event_bus_{sub.event_type}_{sub.handler_name}_{idx}")
            for idx in range(worker_count)
        ]

    async def _handler_loop(self, sub: _Subscription) -> None:
        while self._running:
            event = await sub.queue.get()
            try:
                await sub.handler(event)
                self._handled += 1
                sub.handled_total += 1
            except Exception as exc:
                self._failed += 1
                sub.failed_total += 1
                self._errors.append({
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "source": event.source,
                    "handler_name": sub.handler_name,
                    "ts": utcnow().isoformat(),
                    "error": str(exc),
                })
                logger.error(
                    "Event handler failed event_id=%s event_type=%s handler=%s error=%s",
                    event.event_id,
                    event.event_type,
                    sub.handler_name,
                    str(exc),
                    exc_info=True,
                )


event_bus = InMemoryEventBus(
    ingress_maxsize=settings.EVENT_BUS_INGRESS_QUEUE_MAXSIZE,
    handler_maxsize=settings.EVENT_BUS_HANDLER_QUEUE_MAXSIZE,
    default_concurrency=settings.EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY,
    error_buffer_size=settings.EVENT_BUS_ERROR_BUFFER_SIZE,
    enabled=settings.EVENT_BUS_ENABLED,
)
