from __future__ import annotations

import logging

from fastapi.encoders import jsonable_encoder

from planboard.db import Store, insert_ignoring_conflicts
from planboard.events.bus import DomainEvent
from planboard.models import ACTIVITY_ACTIONS, ActivityLog, new_id

logger = logging.getLogger(__name__)


class ActivityLogger:
  """Appends one activity row per committed domain event. Rows are never updated."""

  def __init__(self, store: Store) -> None:
    self.store = store

  async def __call__(self, event: DomainEvent) -> None:
    if event.action not in ACTIVITY_ACTIONS:
      logger.warning("skipping activity for unknown action %r on event %s", event.action, event.id)
      return
    row = {
      "id": new_id(),
      "event_id": event.id,
      "actor_id": event.actor_id,
      "project_id": event.project_id,
      "entity_type": event.entity_type,
      "entity_id": event.entity_id,
      "action": event.action,
      "details": jsonable_encoder(event.details or {}),
      "created_at": event.occurred_at,
    }
    async with self.store.session() as db:
      await db.execute(insert_ignoring_conflicts(db, ActivityLog, [row], index_elements=["event_id"]))
      await db.commit()
