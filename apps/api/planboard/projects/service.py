from __future__ import annotations

from typing import Any

from sqlalchemy import delete, or_, select, update

from planboard.access.gate import AuthorizationGate, Role
from planboard.db import UnitOfWork
from planboard.errors import Conflict, Validation
from planboard.events.bus import DomainEvent, NotificationIntent
from planboard.lifecycle import ACTIVE, DELETED, TRASHED, activity_action, transition
from planboard.models import (
  PROJECT_TEMPLATES,
  PROJECT_VISIBILITIES,
  Comment,
  JoinRequest,
  Label,
  Project,
  ProjectMember,
  Sprint,
  Task,
  TaskLabel,
  utcnow,
)

_EDITABLE = ("name", "description", "visibility", "template")


class ProjectLifecycle:
  def __init__(self, uow: UnitOfWork, gate: AuthorizationGate | None = None) -> None:
    self.uow = uow
    self.gate = gate or AuthorizationGate(uow)

  async def create(
    self,
    owner_id: str,
    *,
    name: str,
    description: str = "",
    template: str = "kanban",
    visibility: str = "private",
  ) -> Project:
    fields = _clean({"name": name, "description": description, "template": template, "visibility": visibility})
    project = Project(owner_id=owner_id, **fields)
    self.uow.add(project)
    await self.uow.flush()
    self.uow.emit(
      DomainEvent(
        actor_id=owner_id,
        project_id=project.id,
        entity_type="project",
        entity_id=project.id,
        action="create",
        details={"name": project.name, "template": project.template, "visibility": project.visibility},
      )
    )
    return project

  async def get(self, project_id: str, user_id: str) -> tuple[Project, Role]:
    return await self.gate.authorize(user_id, project_id, Role.MEMBER, write=False)

  async def list_for_user(self, user_id: str) -> list[Project]:
    member_of = select(ProjectMember.project_id).where(ProjectMember.user_id == user_id)
    return await self.uow.scalars(
      select(Project)
      .where(Project.lifecycle == ACTIVE, or_(Project.owner_id == user_id, Project.id.in_(member_of)))
      .order_by(Project.updated_at.desc())
    )

  async def update(self, project_id: str, user_id: str, **changes: Any) -> Project:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MANAGER)
    fields = _clean({k: v for k, v in changes.items() if k in _EDITABLE and v is not None})
    if not fields:
      return project
    res = await self.uow.execute(
      update(Project)
      .where(Project.id == project.id, Project.lifecycle == ACTIVE)
      .values(updated_at=utcnow(), **fields)
      .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise Conflict("Project is in the trash")
    await self.uow.refresh(project)
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=project.id,
        entity_type="project",
        entity_id=project.id,
        action="update",
        details={"changes": fields},
        notification=NotificationIntent(
          type="project_update",
          title="Project updated",
          message=f"{project.name} was updated",
          project_audience=True,
        ),
      )
    )
    return project

  async def soft_delete(self, project_id: str, user_id: str) -> Project:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MANAGER, include_trashed=True)
    await self._transition(project, user_id, source=ACTIVE, target=TRASHED, message=f"{project.name} was moved to the trash")
    return project

  async def restore(self, project_id: str, user_id: str) -> Project:
    project, _ = await self.gate.authorize(user_id, project_id, Role.OWNER, include_trashed=True)
    await self._transition(project, user_id, source=TRASHED, target=ACTIVE, message=f"{project.name} was restored")
    return project

  async def permanently_delete(self, project_id: str, user_id: str) -> None:
    project, _ = await self.gate.authorize(user_id, project_id, Role.OWNER, include_trashed=True)
    if project.lifecycle != TRASHED:
      raise Conflict("Project must be in the trash before it can be permanently deleted")
    name = project.name
    tasks = select(Task.id).where(Task.project_id == project.id)
    for stmt in (
      delete(Comment).where(Comment.task_id.in_(tasks)),
      delete(TaskLabel).where(TaskLabel.task_id.in_(tasks)),
      delete(Task).where(Task.project_id == project.id),
      delete(Label).where(Label.project_id == project.id),
      delete(Sprint).where(Sprint.project_id == project.id),
      delete(JoinRequest).where(JoinRequest.project_id == project.id),
      delete(ProjectMember).where(ProjectMember.project_id == project.id),
    ):
      await self.uow.execute(stmt.execution_options(synchronize_session=False))
    await transition(self.uow, Project, project.id, source=TRASHED, target=DELETED, label="Project")
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=project_id,
        entity_type="project",
        entity_id=project_id,
        action="delete",
        details={"name": name, "permanent": True},
      )
    )

  async def list_trash(self, user_id: str) -> list[Project]:
    managed = select(ProjectMember.project_id).where(ProjectMember.user_id == user_id, ProjectMember.role == "manager")
    return await self.uow.scalars(
      select(Project)
      .where(Project.lifecycle == TRASHED, or_(Project.owner_id == user_id, Project.id.in_(managed)))
      .order_by(Project.deleted_at.desc())
    )

  async def _transition(self, project: Project, user_id: str, *, source: str, target: str, message: str) -> None:
    await transition(self.uow, Project, project.id, source=source, target=target, label="Project")
    await self.uow.refresh(project)
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=project.id,
        entity_type="project",
        entity_id=project.id,
        action=activity_action(source, target),
        details={"lifecycle": target},
        notification=NotificationIntent(type="project_update", title="Project update", message=message, project_audience=True),
      )
    )


def _clean(fields: dict[str, Any]) -> dict[str, Any]:
  out = dict(fields)
  if "name" in out:
    out["name"] = (out["name"] or "").strip()
    if not out["name"]:
      raise Validation("Project name is required")
  if "visibility" in out and out["visibility"] not in PROJECT_VISIBILITIES:
    raise Validation("Visibility must be one of: " + ", ".join(PROJECT_VISIBILITIES))
  if "template" in out and out["template"] not in PROJECT_TEMPLATES:
    raise Validation("Template must be one of: " + ", ".join(PROJECT_TEMPLATES))
  if "description" in out and out["description"] is None:
    out["description"] = ""
  return out
