from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import create_project, join, make_user, notifications_of, team_project


@pytest.mark.anyio
async def test_invitation_chain_grants_roles(client: AsyncClient, store, people) -> None:
  p = await team_project(client, people)

  members = await client.get(f"/projects/{p['id']}/members", headers=people.member.headers)
  assert members.status_code == 200
  assert [(m["userId"], m["role"]) for m in members.json()] == [
    (people.owner.id, "owner"),
    (people.manager.id, "manager"),
    (people.member.id, "member"),
  ]
  assert len(await notifications_of(store, people.member.id, "member_added")) == 1

  me = await client.get(f"/projects/{p['id']}", headers=people.manager.headers)
  assert me.json()["role"] == "manager"


@pytest.mark.anyio
async def test_my_invitations_lists_pending_invites(client: AsyncClient, people) -> None:
  p = await create_project(client, people.owner, name="Hermes")
  inv = await client.post(f"/projects/{p['id']}/invitations", json={"userId": people.member.id}, headers=people.owner.headers)
  assert inv.status_code == 200
  assert inv.json()["status"] == "pending"
  assert inv.json()["kind"] == "invite"

  mine = await client.get("/invitations/me", headers=people.member.headers)
  assert [(x["id"], x["projectName"]) for x in mine.json()] == [(inv.json()["id"], "Hermes")]

  pending = await client.get(f"/projects/{p['id']}/invitations", headers=people.owner.headers)
  assert [x["id"] for x in pending.json()] == [inv.json()["id"]]


@pytest.mark.anyio
async def test_invitation_conflicts(client: AsyncClient, people) -> None:
  p = await create_project(client, people.owner)
  pid = p["id"]

  first = await client.post(f"/projects/{pid}/invitations", json={"userId": people.member.id}, headers=people.owner.headers)
  assert first.status_code == 200
  dup = await client.post(f"/projects/{pid}/invitations", json={"userId": people.member.id}, headers=people.owner.headers)
  assert dup.status_code == 409

  owner_invite = await client.post(f"/projects/{pid}/invitations", json={"userId": people.owner.id}, headers=people.owner.headers)
  assert owner_invite.status_code == 409

  wrong_user = await client.post(f"/invitations/{first.json()['id']}/respond", json={"accept": True}, headers=people.outsider.headers)
  assert wrong_user.status_code == 403

  accepted = await client.post(f"/invitations/{first.json()['id']}/respond", json={"accept": True}, headers=people.member.headers)
  assert accepted.status_code == 200
  assert accepted.json()["status"] == "accepted"
  twice = await client.post(f"/invitations/{first.json()['id']}/respond", json={"accept": False}, headers=people.member.headers)
  assert twice.status_code == 409

  already = await client.post(f"/projects/{pid}/invitations", json={"userId": people.member.id}, headers=people.owner.headers)
  assert already.status_code == 409

  missing = await client.post("/invitations/00000000-0000-0000-0000-000000000000/respond", json={"accept": True}, headers=people.member.headers)
  assert missing.status_code == 404


@pytest.mark.anyio
async def test_declined_invitation_can_be_reissued(client: AsyncClient, people) -> None:
  p = await create_project(client, people.owner)
  inv = await client.post(f"/projects/{p['id']}/invitations", json={"userId": people.member.id}, headers=people.owner.headers)
  declined = await client.post(f"/invitations/{inv.json()['id']}/respond", json={"accept": False}, headers=people.member.headers)
  assert declined.status_code == 200
  assert declined.json()["status"] == "rejected"

  members = await client.get(f"/projects/{p['id']}/members", headers=people.owner.headers)
  assert [m["userId"] for m in members.json()] == [people.owner.id]

  again = await client.post(f"/projects/{p['id']}/invitations", json={"userId": people.member.id}, headers=people.owner.headers)
  assert again.status_code == 200


@pytest.mark.anyio
async def test_invite_permissions(client: AsyncClient, store, people) -> None:
  p = await team_project(client, people)
  pid = p["id"]

  by_member = await client.post(f"/projects/{pid}/invitations", json={"userId": people.outsider.id}, headers=people.member.headers)
  assert by_member.status_code == 403

  bad_role = await client.post(f"/projects/{pid}/invitations", json={"userId": people.outsider.id, "role": "owner"}, headers=people.owner.headers)
  assert bad_role.status_code == 422

  ghost = await make_user(store, "ghost@planboard.test", status="inactive")
  inactive = await client.post(f"/projects/{pid}/invitations", json={"userId": ghost.id}, headers=people.owner.headers)
  assert inactive.status_code == 404


@pytest.mark.anyio
async def test_join_requests_only_for_public_projects(client: AsyncClient, people) -> None:
  private = await create_project(client, people.owner, name="Secret")
  res = await client.post(f"/projects/{private['id']}/join-requests", headers=people.outsider.headers)
  assert res.status_code == 403

  public = await create_project(client, people.owner, name="Open", visibility="public")
  req = await client.post(f"/projects/{public['id']}/join-requests", headers=people.outsider.headers)
  assert req.status_code == 200, req.text
  assert req.json()["kind"] == "request"
  dup = await client.post(f"/projects/{public['id']}/join-requests", headers=people.outsider.headers)
  assert dup.status_code == 409

  self_approve = await client.post(f"/invitations/{req.json()['id']}/respond", json={"accept": True}, headers=people.outsider.headers)
  assert self_approve.status_code == 403

  approved = await client.post(f"/invitations/{req.json()['id']}/respond", json={"accept": True}, headers=people.owner.headers)
  assert approved.status_code == 200
  members = await client.get(f"/projects/{public['id']}/members", headers=people.owner.headers)
  assert (people.outsider.id, "member") in [(m["userId"], m["role"]) for m in members.json()]


@pytest.mark.anyio
async def test_role_changes(client: AsyncClient, people) -> None:
  p = await team_project(client, people)
  pid = p["id"]

  by_member = await client.patch(f"/projects/{pid}/members/{people.manager.id}", json={"role": "member"}, headers=people.member.headers)
  assert by_member.status_code == 403

  owner_target = await client.patch(f"/projects/{pid}/members/{people.owner.id}", json={"role": "member"}, headers=people.manager.headers)
  assert owner_target.status_code == 403

  promoted = await client.patch(f"/projects/{pid}/members/{people.member.id}", json={"role": "manager"}, headers=people.manager.headers)
  assert promoted.status_code == 200, promoted.text
  assert promoted.json()["role"] == "manager"

  # The promotion takes effect on the very next request.
  edit = await client.patch(f"/projects/{pid}", json={"description": "Now managed"}, headers=people.member.headers)
  assert edit.status_code == 200

  demoted = await client.patch(f"/projects/{pid}/members/{people.member.id}", json={"role": "member"}, headers=people.owner.headers)
  assert demoted.status_code == 200
  edit = await client.patch(f"/projects/{pid}", json={"description": "Demoted"}, headers=people.member.headers)
  assert edit.status_code == 403

  missing = await client.patch(f"/projects/{pid}/members/{people.outsider.id}", json={"role": "member"}, headers=people.owner.headers)
  assert missing.status_code == 404


@pytest.mark.anyio
async def test_member_removal(client: AsyncClient, people) -> None:
  p = await team_project(client, people)
  pid = p["id"]

  owner = await client.delete(f"/projects/{pid}/members/{people.owner.id}", headers=people.manager.headers)
  assert owner.status_code == 403
  by_member = await client.delete(f"/projects/{pid}/members/{people.manager.id}", headers=people.member.headers)
  assert by_member.status_code == 403

  removed = await client.delete(f"/projects/{pid}/members/{people.member.id}", headers=people.manager.headers)
  assert removed.status_code == 200
  assert (await client.get(f"/projects/{pid}", headers=people.member.headers)).status_code == 403

  again = await client.delete(f"/projects/{pid}/members/{people.member.id}", headers=people.manager.headers)
  assert again.status_code == 404

  activity = (await client.get(f"/projects/{pid}/activity", params={"entityType": "member"}, headers=people.owner.headers)).json()
  assert "delete" in [a["action"] for a in activity]
