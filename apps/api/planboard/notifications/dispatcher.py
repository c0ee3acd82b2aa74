from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planboard.db import Store, insert_ignoring_conflicts
from planboard.events.bus import DomainEvent
from planboard.models import Notification, Project, ProjectMember, User, new_id

logger = logging.getLogger(__name__)


class NotificationDispatcher:
  """Turns events carrying a NotificationIntent into in-app notifications.

  One row per (event, recipient). The unique constraint on that pair makes
  a redelivered event a no-op.
  """

  def __init__(self, store: Store) -> None:
    self.store = store

  async def __call__(self, event: DomainEvent) -> None:
    intent = event.notification
    if intent is None:
      return
    async with self.store.session() as db:
      recipients = await self.audience(db, event)
      if not recipients:
        return
      rows = [
        {
          "id": new_id(),
          "user_id": uid,
          "event_id": event.id,
          "type": intent.type,
          "title": intent.title,
          "message": intent.message,
          "read": False,
          "entity_type": event.entity_type,
          "entity_id": event.entity_id,
          "project_id": event.project_id,
          "created_at": event.occurred_at,
        }
        for uid in recipients
      ]
      await db.execute(insert_ignoring_conflicts(db, Notification, rows, index_elements=["event_id", "user_id"]))
      await db.commit()
    logger.debug("%s delivered to %d user(s) for event %s", intent.type, len(recipients), event.id)

  async def audience(self, db: AsyncSession, event: DomainEvent) -> list[str]:
    """Deduplicated, active recipients in rule order."""
    intent = event.notification
    if intent is None:
      return []
    candidates: list[str] = [*intent.user_ids, *intent.mentioned_ids]
    if intent.project_audience and event.project_id:
      owner_id = await db.scalar(select(Project.owner_id).where(Project.id == event.project_id))
      if owner_id:
        candidates.append(owner_id)
      members = await db.scalars(
        select(ProjectMember.user_id).where(ProjectMember.project_id == event.project_id).order_by(ProjectMember.created_at)
      )
      candidates.extend(members.all())
    unique = list(dict.fromkeys(c for c in candidates if c))
    if not unique:
      return []
    active = set((await db.scalars(select(User.id).where(User.id.in_(unique), User.status == "active"))).all())
    return [uid for uid in unique if uid in active]
