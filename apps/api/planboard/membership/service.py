from __future__ import annotations

from sqlalchemy import delete, select, update

from planboard.access.gate import AuthorizationGate, Role
from planboard.db import UnitOfWork
from planboard.errors import Conflict, NotFound, Unauthorized, Validation
from planboard.events.bus import DomainEvent, NotificationIntent
from planboard.lifecycle import ACTIVE
from planboard.models import MEMBER_ROLES, JoinRequest, Project, ProjectMember, Task, User, utcnow


class MembershipManager:
  def __init__(self, uow: UnitOfWork, gate: AuthorizationGate | None = None) -> None:
    self.uow = uow
    self.gate = gate or AuthorizationGate(uow)

  async def invite(self, project_id: str, inviter_id: str, invitee_id: str, role: str = "member") -> JoinRequest:
    project, actor_role = await self.gate.authorize(inviter_id, project_id, Role.MANAGER)
    granted = _member_role(role)
    if granted > actor_role:
      raise Unauthorized("Cannot invite with a role above your own")
    await self._active_user(invitee_id)
    await self._ensure_not_joined(project, invitee_id)

    req = JoinRequest(project_id=project.id, user_id=invitee_id, invited_by=inviter_id, kind="invite", role=role)
    self.uow.add(req)
    await self.uow.flush(conflict="A pending invitation or request already exists for this user")
    self.uow.emit(
      DomainEvent(
        actor_id=inviter_id,
        project_id=project.id,
        entity_type="member",
        entity_id=req.id,
        action="create",
        details={"kind": "invite", "userId": invitee_id, "role": role},
      )
    )
    return req

  async def request_to_join(self, project_id: str, user_id: str) -> JoinRequest:
    project = await self.gate.load_project(project_id)
    await self._active_user(user_id)
    if project.visibility != "public":
      raise Unauthorized("Only public projects accept join requests")
    await self._ensure_not_joined(project, user_id)

    req = JoinRequest(project_id=project.id, user_id=user_id, invited_by=None, kind="request", role="member")
    self.uow.add(req)
    await self.uow.flush(conflict="A pending invitation or request already exists for this user")
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=project.id,
        entity_type="member",
        entity_id=req.id,
        action="create",
        details={"kind": "request", "userId": user_id},
      )
    )
    return req

  async def respond(self, request_id: str, user_id: str, accept: bool) -> JoinRequest:
    req = await self.uow.scalar(select(JoinRequest).where(JoinRequest.id == request_id))
    if req is None:
      raise NotFound("Invitation not found")
    project = await self.gate.load_project(req.project_id)
    if req.kind == "invite":
      if req.user_id != user_id:
        raise Unauthorized("Only the invited user may respond to an invitation")
    else:
      await self.gate.authorize(user_id, project.id, Role.MANAGER)

    decision = "accepted" if accept else "rejected"
    res = await self.uow.execute(
      update(JoinRequest)
      .where(JoinRequest.id == req.id, JoinRequest.status == "pending")
      .values(status=decision, responded_at=utcnow())
      .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise Conflict("This invitation has already been answered")

    notification = None
    if accept:
      self.uow.add(ProjectMember(project_id=project.id, user_id=req.user_id, role=req.role))
      await self.uow.flush(conflict="User is already a member of this project")
      notification = NotificationIntent(
        type="member_added",
        title="You were added to a project",
        message=f"You are now a {req.role} of {project.name}",
        user_ids=(req.user_id,),
      )
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=project.id,
        entity_type="member",
        entity_id=req.id,
        action="update",
        details={"kind": req.kind, "userId": req.user_id, "status": decision, "role": req.role},
        notification=notification,
      )
    )
    await self.uow.refresh(req)
    return req

  async def update_role(self, project_id: str, actor_id: str, target_id: str, new_role: str) -> ProjectMember:
    project, actor_role = await self.gate.authorize(actor_id, project_id, Role.MANAGER)
    if target_id == project.owner_id:
      raise Unauthorized("The owner's role cannot be changed")
    wanted = _member_role(new_role)
    if wanted > actor_role:
      raise Unauthorized("Cannot grant a role above your own")
    member = await self._member(project.id, target_id)
    if Role.from_member_role(member.role) > actor_role:
      raise Unauthorized("Cannot change the role of someone above you")

    previous = member.role
    res = await self.uow.execute(
      update(ProjectMember)
      .where(ProjectMember.id == member.id, ProjectMember.role == previous)
      .values(role=new_role)
      .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise Conflict("Membership changed concurrently, please retry")
    self.uow.emit(
      DomainEvent(
        actor_id=actor_id,
        project_id=project.id,
        entity_type="member",
        entity_id=member.id,
        action="update",
        details={"userId": target_id, "from": previous, "to": new_role},
      )
    )
    await self.uow.refresh(member)
    return member

  async def remove(self, project_id: str, actor_id: str, target_id: str) -> None:
    project, actor_role = await self.gate.authorize(actor_id, project_id, Role.MANAGER)
    if target_id == project.owner_id:
      raise Unauthorized("The project owner cannot be removed")
    member = await self._member(project.id, target_id)
    if Role.from_member_role(member.role) > actor_role:
      raise Unauthorized("Cannot remove someone above you")

    res = await self.uow.execute(
      delete(ProjectMember).where(ProjectMember.id == member.id).execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise Conflict("Membership changed concurrently, please retry")

    task_ids = await self.uow.scalars(select(Task.id).where(Task.project_id == project.id, Task.assignee_id == target_id))
    if task_ids:
      await self.uow.execute(
        update(Task)
        .where(Task.id.in_(task_ids), Task.assignee_id == target_id)
        .values(assignee_id=None, version=Task.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
      )
    self.uow.emit(
      DomainEvent(
        actor_id=actor_id,
        project_id=project.id,
        entity_type="member",
        entity_id=member.id,
        action="delete",
        details={"userId": target_id, "role": member.role},
      )
    )
    for task_id in task_ids:
      self.uow.emit(
        DomainEvent(
          actor_id=actor_id,
          project_id=project.id,
          entity_type="task",
          entity_id=task_id,
          action="unassign",
          details={"userId": target_id, "reason": "member_removed"},
        )
      )

  async def list_members(self, project_id: str, user_id: str) -> list[tuple[User, str]]:
    """Owner first, then members by join date."""
    project, _ = await self.gate.authorize(user_id, project_id, Role.MEMBER, write=False)
    owner = await self.uow.scalar(select(User).where(User.id == project.owner_id))
    rows = (
      await self.uow.execute(
        select(User, ProjectMember.role)
        .join(ProjectMember, ProjectMember.user_id == User.id)
        .where(ProjectMember.project_id == project.id)
        .order_by(ProjectMember.created_at.asc())
      )
    ).all()
    out: list[tuple[User, str]] = []
    if owner is not None:
      out.append((owner, "owner"))
    out.extend((u, role) for u, role in rows)
    return out

  async def list_my_invitations(self, user_id: str) -> list[tuple[JoinRequest, Project]]:
    rows = (
      await self.uow.execute(
        select(JoinRequest, Project)
        .join(Project, Project.id == JoinRequest.project_id)
        .where(
          JoinRequest.user_id == user_id,
          JoinRequest.kind == "invite",
          JoinRequest.status == "pending",
          Project.lifecycle == ACTIVE,
        )
        .order_by(JoinRequest.created_at.desc())
      )
    ).all()
    return [(r, p) for r, p in rows]

  async def list_pending(self, project_id: str, user_id: str) -> list[JoinRequest]:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MANAGER, write=False)
    return await self.uow.scalars(
      select(JoinRequest)
      .where(JoinRequest.project_id == project.id, JoinRequest.status == "pending")
      .order_by(JoinRequest.created_at.asc())
    )

  async def _active_user(self, user_id: str) -> User:
    user = await self.uow.scalar(select(User).where(User.id == user_id))
    if user is None or user.status != "active":
      raise NotFound("User not found")
    return user

  async def _member(self, project_id: str, user_id: str) -> ProjectMember:
    member = await self.uow.scalar(
      select(ProjectMember)
      .where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
      .with_for_update()
    )
    if member is None:
      raise NotFound("Member not found")
    return member

  async def _ensure_not_joined(self, project: Project, user_id: str) -> None:
    if project.owner_id == user_id:
      raise Conflict("User already owns this project")
    existing = await self.uow.scalar(
      select(ProjectMember.id).where(ProjectMember.project_id == project.id, ProjectMember.user_id == user_id)
    )
    if existing is not None:
      raise Conflict("User is already a member of this project")
    pending = await self.uow.scalar(
      select(JoinRequest.id).where(
        JoinRequest.project_id == project.id,
        JoinRequest.user_id == user_id,
        JoinRequest.status == "pending",
      )
    )
    if pending is not None:
      raise Conflict("A pending invitation or request already exists for this user")


def _member_role(value: str) -> Role:
  if value not in MEMBER_ROLES:
    raise Validation("Role must be one of: " + ", ".join(MEMBER_ROLES))
  return Role.from_member_role(value)
