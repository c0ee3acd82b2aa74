from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

from planboard.models import new_id, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationIntent:
  """Who should hear about an event, before deduplication.

  `user_ids` carries rule-matched recipients (assignee, new member),
  `mentioned_ids` the users matched by @mention, and `project_audience`
  asks the dispatcher to add the owner and every member at delivery time.
  """

  type: str
  title: str
  message: str = ""
  user_ids: tuple[str, ...] = ()
  mentioned_ids: tuple[str, ...] = ()
  project_audience: bool = False


@dataclass(frozen=True)
class DomainEvent:
  actor_id: str | None
  project_id: str | None
  entity_type: str
  entity_id: str
  action: str
  details: dict[str, Any] = field(default_factory=dict)
  notification: NotificationIntent | None = None
  id: str = field(default_factory=new_id)
  occurred_at: datetime = field(default_factory=utcnow)


Consumer = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
  """Post-commit fan-out of domain events to best-effort consumers.

  Events are queued in-process and handled by a single worker task. Each
  consumer call is bounded by `timeout` and retried up to `max_attempts`
  times; after that the event is dropped for that consumer with an error
  record. Consumers never see the publisher's transaction.
  """

  def __init__(
    self,
    *,
    timeout: float,
    max_attempts: int,
    retry_delay: float = 0.05,
    max_queue: int = 10_000,
  ) -> None:
    self.timeout = timeout
    self.max_attempts = max(1, int(max_attempts))
    self.retry_delay = retry_delay
    self.max_queue = max_queue
    self._consumers: list[tuple[str, Consumer]] = []
    self._queue: asyncio.Queue[DomainEvent] | None = None
    self._worker: asyncio.Task | None = None

  def subscribe(self, name: str, consumer: Consumer) -> None:
    self._consumers.append((name, consumer))

  @property
  def running(self) -> bool:
    return self._worker is not None and not self._worker.done()

  async def start(self) -> None:
    if self.running:
      return
    self._queue = asyncio.Queue(maxsize=self.max_queue)
    self._worker = asyncio.create_task(self._run(), name="planboard-event-bus")

  async def stop(self) -> None:
    if self._worker is None:
      return
    await self.drain()
    self._worker.cancel()
    try:
      await self._worker
    except asyncio.CancelledError:
      pass
    self._worker = None
    self._queue = None

  def publish(self, events: Iterable[DomainEvent]) -> None:
    for event in events:
      if self._queue is None:
        logger.warning("event bus not running; dropping %s.%s %s", event.entity_type, event.action, event.id)
        continue
      try:
        self._queue.put_nowait(event)
      except asyncio.QueueFull:
        logger.error("event queue full; dropping %s.%s %s", event.entity_type, event.action, event.id)

  async def drain(self) -> None:
    if self._queue is not None and self.running:
      await self._queue.join()

  async def _run(self) -> None:
    assert self._queue is not None
    while True:
      event = await self._queue.get()
      try:
        for name, consumer in self._consumers:
          await self._deliver(name, consumer, event)
      finally:
        self._queue.task_done()

  async def _deliver(self, name: str, consumer: Consumer, event: DomainEvent) -> None:
    for attempt in range(1, self.max_attempts + 1):
      try:
        await asyncio.wait_for(consumer(event), timeout=self.timeout)
        return
      except asyncio.CancelledError:
        raise
      except Exception:
        logger.warning(
          "%s failed on event %s (%s.%s), attempt %d/%d",
          name,
          event.id,
          event.entity_type,
          event.action,
          attempt,
          self.max_attempts,
          exc_info=True,
        )
        if attempt < self.max_attempts:
          await asyncio.sleep(self.retry_delay * attempt)
    logger.error("%s dropped event %s (%s.%s) after %d attempts", name, event.id, event.entity_type, event.action, self.max_attempts)
