from __future__ import annotations

from fastapi import APIRouter, Depends

from planboard.db import UnitOfWork
from planboard.deps import get_current_user, get_uow
from planboard.lifecycle import TRASHED
from planboard.models import Project, User
from planboard.projects.service import ProjectLifecycle
from planboard.schemas import ProjectCreateIn, ProjectOut, ProjectUpdateIn

router = APIRouter(prefix="/projects", tags=["projects"])


def _project_out(p: Project, role: str | None = None) -> ProjectOut:
  return ProjectOut(
    id=p.id,
    name=p.name,
    description=p.description,
    ownerId=p.owner_id,
    visibility=p.visibility,
    template=p.template,
    trashed=p.lifecycle == TRASHED,
    deletedAt=p.deleted_at,
    role=role,
    createdAt=p.created_at,
    updatedAt=p.updated_at,
  )


@router.get("", response_model=list[ProjectOut])
async def list_projects(user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> list[ProjectOut]:
  projects = await ProjectLifecycle(uow).list_for_user(user.id)
  return [_project_out(p, "owner" if p.owner_id == user.id else None) for p in projects]


@router.post("", response_model=ProjectOut)
async def create_project(
  payload: ProjectCreateIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> ProjectOut:
  p = await ProjectLifecycle(uow).create(
    user.id,
    name=payload.name,
    description=payload.description,
    template=payload.template,
    visibility=payload.visibility,
  )
  await uow.commit()
  return _project_out(p, "owner")


@router.get("/trash", response_model=list[ProjectOut])
async def list_trashed_projects(user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> list[ProjectOut]:
  return [_project_out(p) for p in await ProjectLifecycle(uow).list_trash(user.id)]


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> ProjectOut:
  p, role = await ProjectLifecycle(uow).get(project_id, user.id)
  return _project_out(p, role.wire)


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
  project_id: str,
  payload: ProjectUpdateIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> ProjectOut:
  p = await ProjectLifecycle(uow).update(project_id, user.id, **payload.model_dump(exclude_unset=True))
  await uow.commit()
  return _project_out(p)


@router.delete("/{project_id}", response_model=ProjectOut)
async def trash_project(project_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> ProjectOut:
  p = await ProjectLifecycle(uow).soft_delete(project_id, user.id)
  await uow.commit()
  return _project_out(p)


@router.post("/{project_id}/restore", response_model=ProjectOut)
async def restore_project(project_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> ProjectOut:
  p = await ProjectLifecycle(uow).restore(project_id, user.id)
  await uow.commit()
  return _project_out(p, "owner")


@router.delete("/{project_id}/permanent")
async def delete_project_permanently(project_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> dict:
  await ProjectLifecycle(uow).permanently_delete(project_id, user.id)
  await uow.commit()
  return {"ok": True}
