from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends

from planboard.db import UnitOfWork
from planboard.deps import get_current_user, get_uow
from planboard.models import Sprint, User
from planboard.schemas import (
  BulkResultOut,
  RejectedOut,
  SprintCreatedOut,
  SprintCreateIn,
  SprintDeletedOut,
  SprintEndedOut,
  SprintOut,
  SprintStatsOut,
  SprintTasksIn,
  SprintUpdateIn,
)
from planboard.sprints.service import BulkResult, SprintManager

router = APIRouter(tags=["sprints"])


def _sprint_fields(s: Sprint) -> dict:
  return {
    "id": s.id,
    "projectId": s.project_id,
    "name": s.name,
    "goal": s.goal,
    "status": s.status,
    "startDate": s.start_date,
    "endDate": s.end_date,
    "completedAt": s.completed_at,
    "createdAt": s.created_at,
  }


def _sprint_out(s: Sprint) -> SprintOut:
  return SprintOut(**_sprint_fields(s))


def _bulk_out(r: BulkResult) -> BulkResultOut:
  return BulkResultOut(succeeded=r.succeeded, rejected=[RejectedOut(taskId=tid, reason=reason) for tid, reason in r.rejected])


@router.get("/projects/{project_id}/sprints", response_model=list[SprintOut])
async def list_sprints(
  project_id: str,
  status: Literal["planned", "active", "completed"] | None = None,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> list[SprintOut]:
  return [_sprint_out(s) for s in await SprintManager(uow).list_sprints(project_id, user.id, status=status)]


@router.post("/projects/{project_id}/sprints", response_model=SprintCreatedOut)
async def create_sprint(
  project_id: str,
  payload: SprintCreateIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> SprintCreatedOut:
  s, bulk = await SprintManager(uow).create(
    project_id,
    user.id,
    name=payload.name,
    goal=payload.goal,
    start_date=payload.startDate,
    end_date=payload.endDate,
    activate=payload.active,
    task_ids=payload.taskIds,
  )
  await uow.commit()
  return SprintCreatedOut(**_sprint_fields(s), tasks=_bulk_out(bulk) if bulk else None)


@router.get("/projects/{project_id}/sprints/current", response_model=SprintOut | None)
async def current_sprint(project_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> SprintOut | None:
  s = await SprintManager(uow).current(project_id, user.id)
  return _sprint_out(s) if s else None


@router.get("/sprints/{sprint_id}", response_model=SprintOut)
async def get_sprint(sprint_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> SprintOut:
  return _sprint_out(await SprintManager(uow).get(sprint_id, user.id))


@router.patch("/sprints/{sprint_id}", response_model=SprintOut)
async def update_sprint(
  sprint_id: str,
  payload: SprintUpdateIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> SprintOut:
  s = await SprintManager(uow).update(
    sprint_id,
    user.id,
    name=payload.name,
    goal=payload.goal,
    start_date=payload.startDate,
    end_date=payload.endDate,
  )
  await uow.commit()
  return _sprint_out(s)


@router.delete("/sprints/{sprint_id}", response_model=SprintDeletedOut)
async def delete_sprint(sprint_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> SprintDeletedOut:
  returned = await SprintManager(uow).delete(sprint_id, user.id)
  await uow.commit()
  return SprintDeletedOut(ok=True, returnedToBacklog=returned)


@router.post("/sprints/{sprint_id}/activate", response_model=SprintOut)
async def activate_sprint(sprint_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> SprintOut:
  s = await SprintManager(uow).activate(sprint_id, user.id)
  await uow.commit()
  return _sprint_out(s)


@router.post("/sprints/{sprint_id}/end", response_model=SprintEndedOut)
async def end_sprint(sprint_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> SprintEndedOut:
  s, returned = await SprintManager(uow).end(sprint_id, user.id)
  await uow.commit()
  return SprintEndedOut(**_sprint_fields(s), returnedToBacklog=returned)


@router.post("/sprints/{sprint_id}/tasks", response_model=BulkResultOut)
async def add_sprint_tasks(
  sprint_id: str,
  payload: SprintTasksIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> BulkResultOut:
  r = await SprintManager(uow).add_tasks(sprint_id, user.id, payload.taskIds)
  await uow.commit()
  return _bulk_out(r)


@router.post("/sprints/{sprint_id}/tasks/remove", response_model=BulkResultOut)
async def remove_sprint_tasks(
  sprint_id: str,
  payload: SprintTasksIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> BulkResultOut:
  r = await SprintManager(uow).remove_tasks(sprint_id, user.id, payload.taskIds)
  await uow.commit()
  return _bulk_out(r)


@router.get("/sprints/{sprint_id}/stats", response_model=SprintStatsOut)
async def sprint_stats(sprint_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> SprintStatsOut:
  return SprintStatsOut(**await SprintManager(uow).stats(sprint_id, user.id))
