from __future__ import annotations

from enum import IntEnum

from sqlalchemy import select

from planboard.db import UnitOfWork
from planboard.errors import NotFound, Unauthorized, Validation
from planboard.lifecycle import TRASHED
from planboard.models import Project, ProjectMember, Task, User


class Role(IntEnum):
  """Effective role on a project, totally ordered."""

  NONE = 0
  MEMBER = 1
  MANAGER = 2
  OWNER = 3

  @property
  def wire(self) -> str:
    return self.name.lower()

  @classmethod
  def from_member_role(cls, value: str) -> Role:
    """Role stored on a ProjectMember row; the owner is never stored."""
    try:
      return {"member": cls.MEMBER, "manager": cls.MANAGER}[value]
    except KeyError:
      raise Validation(f"Unknown member role: {value}") from None


class AuthorizationGate:
  """Resolves and enforces a caller's role on a project.

  Nothing is cached: every call reads the current owner and membership.
  When `write=True` the membership row is read FOR SHARE so a concurrent
  role change or removal serializes against the caller's write.
  """

  def __init__(self, uow: UnitOfWork) -> None:
    self.uow = uow

  async def load_project(self, project_id: str, *, include_trashed: bool = False) -> Project:
    project = await self.uow.scalar(select(Project).where(Project.id == project_id))
    if project is None or (project.lifecycle == TRASHED and not include_trashed):
      raise NotFound("Project not found")
    return project

  async def resolve_role(self, user_id: str, project_id: str) -> Role:
    project = await self.load_project(project_id, include_trashed=True)
    return await self._role_on(project, user_id, lock=False)

  async def authorize(
    self,
    user_id: str,
    project_id: str,
    required: Role,
    *,
    write: bool = True,
    include_trashed: bool = False,
  ) -> tuple[Project, Role]:
    project = await self.load_project(project_id, include_trashed=include_trashed)
    role = await self._role_on(project, user_id, lock=write)
    if role >= required:
      return project, role
    # Public projects are readable by anyone signed in, never writable.
    if not write and required <= Role.MEMBER and project.visibility == "public":
      return project, role
    if role == Role.NONE:
      raise Unauthorized("You are not a member of this project")
    raise Unauthorized(f"Requires {required.wire} role")

  async def authorize_task_edit(self, user_id: str, task: Task, *, include_trashed: bool = False) -> tuple[Project, Role]:
    project, role = await self.authorize(user_id, task.project_id, Role.MEMBER, include_trashed=include_trashed)
    if not can_edit_task(role, task, user_id):
      raise Unauthorized("Only managers may change tasks assigned to someone else")
    return project, role

  async def _role_on(self, project: Project, user_id: str, *, lock: bool) -> Role:
    status = await self.uow.scalar(select(User.status).where(User.id == user_id))
    if status != "active":
      return Role.NONE
    if project.owner_id == user_id:
      return Role.OWNER
    stmt = select(ProjectMember.role).where(ProjectMember.project_id == project.id, ProjectMember.user_id == user_id)
    if lock:
      stmt = stmt.with_for_update(read=True)
    member_role = await self.uow.scalar(stmt)
    if member_role is None:
      return Role.NONE
    return Role.from_member_role(member_role)


def can_edit_task(role: Role, task: Task, user_id: str) -> bool:
  if role >= Role.MANAGER:
    return True
  if role < Role.MEMBER:
    return False
  if task.assignee_id is not None:
    return task.assignee_id == user_id
  return task.reporter_id == user_id
