from __future__ import annotations

from fastapi import APIRouter, Depends

from planboard.db import UnitOfWork
from planboard.deps import get_current_user, get_uow
from planboard.labels.service import LabelCatalog
from planboard.models import Label, User
from planboard.schemas import LabelIn, LabelOut, LabelUpdateIn, TaskLabelsIn

router = APIRouter(tags=["labels"])


def _label_out(label: Label) -> LabelOut:
  return LabelOut(id=label.id, projectId=label.project_id, name=label.name, color=label.color, createdAt=label.created_at)


@router.get("/projects/{project_id}/labels", response_model=list[LabelOut])
async def list_labels(project_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> list[LabelOut]:
  return [_label_out(label) for label in await LabelCatalog(uow).list_labels(project_id, user.id)]


@router.post("/projects/{project_id}/labels", response_model=LabelOut)
async def create_label(
  project_id: str,
  payload: LabelIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> LabelOut:
  label = await LabelCatalog(uow).create(project_id, user.id, name=payload.name, color=payload.color)
  await uow.commit()
  return _label_out(label)


@router.get("/labels/{label_id}", response_model=LabelOut)
async def get_label(label_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> LabelOut:
  return _label_out(await LabelCatalog(uow).get(label_id, user.id))


@router.patch("/labels/{label_id}", response_model=LabelOut)
async def update_label(
  label_id: str,
  payload: LabelUpdateIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> LabelOut:
  label = await LabelCatalog(uow).update(label_id, user.id, name=payload.name, color=payload.color)
  await uow.commit()
  return _label_out(label)


@router.delete("/labels/{label_id}")
async def delete_label(label_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> dict:
  await LabelCatalog(uow).delete(label_id, user.id)
  await uow.commit()
  return {"ok": True}


@router.get("/tasks/{task_id}/labels", response_model=list[LabelOut])
async def task_labels(task_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> list[LabelOut]:
  return [_label_out(label) for label in await LabelCatalog(uow).labels_of(task_id, user.id)]


@router.put("/tasks/{task_id}/labels", response_model=list[LabelOut])
async def set_task_labels(
  task_id: str,
  payload: TaskLabelsIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> list[LabelOut]:
  labels = await LabelCatalog(uow).set_task_labels(task_id, user.id, payload.labelIds)
  await uow.commit()
  return [_label_out(label) for label in labels]
