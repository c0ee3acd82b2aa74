from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import delete, func, select, update

from planboard.db import UnitOfWork
from planboard.deps import get_current_user, get_uow
from planboard.errors import NotFound
from planboard.models import Notification, User
from planboard.schemas import NotificationOut

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_out(n: Notification) -> NotificationOut:
  return NotificationOut(
    id=n.id,
    type=n.type,
    title=n.title,
    message=n.message,
    read=n.read,
    entityType=n.entity_type,
    entityId=n.entity_id,
    projectId=n.project_id,
    createdAt=n.created_at,
  )


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
  unreadOnly: bool = False,
  limit: int = 50,
  page: int = 1,
  actor: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> list[NotificationOut]:
  limit = max(1, min(int(limit), 200))
  page = max(1, int(page))
  stmt = select(Notification).where(Notification.user_id == actor.id)
  if unreadOnly:
    stmt = stmt.where(Notification.read.is_(False))
  stmt = stmt.order_by(Notification.created_at.desc()).offset((page - 1) * limit).limit(limit)
  return [_notification_out(n) for n in await uow.scalars(stmt)]


@router.get("/unread-count")
async def unread_count(actor: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> dict:
  n = await uow.scalar(select(func.count()).select_from(Notification).where(Notification.user_id == actor.id, Notification.read.is_(False)))
  return {"count": int(n or 0)}


@router.post("/read-all")
async def mark_all_read(actor: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> dict:
  res = await uow.execute(
    update(Notification)
    .where(Notification.user_id == actor.id, Notification.read.is_(False))
    .values(read=True)
    .execution_options(synchronize_session=False)
  )
  await uow.commit()
  return {"ok": True, "updated": res.rowcount}


@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(notification_id: str, actor: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> NotificationOut:
  n = await uow.scalar(select(Notification).where(Notification.id == notification_id, Notification.user_id == actor.id))
  if not n:
    raise NotFound("Notification not found")
  n.read = True
  await uow.commit()
  return _notification_out(n)


@router.delete("/read")
async def delete_read(actor: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> dict:
  res = await uow.execute(
    delete(Notification)
    .where(Notification.user_id == actor.id, Notification.read.is_(True))
    .execution_options(synchronize_session=False)
  )
  await uow.commit()
  return {"ok": True, "deleted": res.rowcount}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, actor: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> dict:
  res = await uow.execute(
    delete(Notification)
    .where(Notification.id == notification_id, Notification.user_id == actor.id)
    .execution_options(synchronize_session=False)
  )
  if res.rowcount != 1:
    raise NotFound("Notification not found")
  await uow.commit()
  return {"ok": True}
