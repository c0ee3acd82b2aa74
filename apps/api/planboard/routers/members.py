from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select

from planboard.db import UnitOfWork
from planboard.deps import get_current_user, get_uow
from planboard.membership.service import MembershipManager
from planboard.models import JoinRequest, User
from planboard.schemas import InviteIn, JoinRequestOut, MemberOut, MemberRoleIn, RespondIn

router = APIRouter(tags=["members"])


def _request_out(r: JoinRequest, project_name: str | None = None) -> JoinRequestOut:
  return JoinRequestOut(
    id=r.id,
    projectId=r.project_id,
    projectName=project_name,
    userId=r.user_id,
    invitedBy=r.invited_by,
    kind=r.kind,
    role=r.role,
    status=r.status,
    createdAt=r.created_at,
    respondedAt=r.responded_at,
  )


@router.get("/projects/{project_id}/members", response_model=list[MemberOut])
async def list_members(project_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> list[MemberOut]:
  rows = await MembershipManager(uow).list_members(project_id, user.id)
  return [MemberOut(userId=u.id, name=u.name, email=u.email, role=role) for u, role in rows]


@router.patch("/projects/{project_id}/members/{user_id}", response_model=MemberOut)
async def update_member_role(
  project_id: str,
  user_id: str,
  payload: MemberRoleIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> MemberOut:
  m = await MembershipManager(uow).update_role(project_id, user.id, user_id, payload.role)
  target = await uow.scalar(select(User).where(User.id == m.user_id))
  await uow.commit()
  return MemberOut(userId=m.user_id, name=target.name, email=target.email, role=m.role)


@router.delete("/projects/{project_id}/members/{user_id}")
async def remove_member(
  project_id: str,
  user_id: str,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> dict:
  await MembershipManager(uow).remove(project_id, user.id, user_id)
  await uow.commit()
  return {"ok": True}


@router.post("/projects/{project_id}/invitations", response_model=JoinRequestOut)
async def invite_member(
  project_id: str,
  payload: InviteIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> JoinRequestOut:
  r = await MembershipManager(uow).invite(project_id, user.id, payload.userId, payload.role)
  await uow.commit()
  return _request_out(r)


@router.get("/projects/{project_id}/invitations", response_model=list[JoinRequestOut])
async def list_pending_requests(
  project_id: str,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> list[JoinRequestOut]:
  return [_request_out(r) for r in await MembershipManager(uow).list_pending(project_id, user.id)]


@router.post("/projects/{project_id}/join-requests", response_model=JoinRequestOut)
async def request_to_join(project_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> JoinRequestOut:
  r = await MembershipManager(uow).request_to_join(project_id, user.id)
  await uow.commit()
  return _request_out(r)


@router.get("/invitations/me", response_model=list[JoinRequestOut])
async def my_invitations(user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> list[JoinRequestOut]:
  rows = await MembershipManager(uow).list_my_invitations(user.id)
  return [_request_out(r, p.name) for r, p in rows]


@router.post("/invitations/{request_id}/respond", response_model=JoinRequestOut)
async def respond_to_request(
  request_id: str,
  payload: RespondIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> JoinRequestOut:
  r = await MembershipManager(uow).respond(request_id, user.id, payload.accept)
  await uow.commit()
  return _request_out(r)
