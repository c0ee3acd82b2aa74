from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select

from planboard.access.gate import AuthorizationGate, Role
from planboard.db import UnitOfWork
from planboard.deps import get_current_user, get_uow
from planboard.models import ActivityLog, User
from planboard.schemas import ActivityOut

router = APIRouter(tags=["activity"])


@router.get("/projects/{project_id}/activity", response_model=list[ActivityOut])
async def project_activity(
  project_id: str,
  entityType: str | None = None,
  limit: int = 50,
  page: int = 1,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> list[ActivityOut]:
  await AuthorizationGate(uow).authorize(user.id, project_id, Role.MEMBER, write=False)
  limit = max(1, min(int(limit), 200))
  page = max(1, int(page))
  stmt = select(ActivityLog).where(ActivityLog.project_id == project_id)
  if entityType:
    stmt = stmt.where(ActivityLog.entity_type == entityType)
  stmt = stmt.order_by(ActivityLog.created_at.desc()).offset((page - 1) * limit).limit(limit)
  return [
    ActivityOut(
      id=a.id,
      actorId=a.actor_id,
      projectId=a.project_id,
      entityType=a.entity_type,
      entityId=a.entity_id,
      action=a.action,
      details=a.details or {},
      createdAt=a.created_at,
    )
    for a in await uow.scalars(stmt)
  ]
