from __future__ import annotations

import pytest
from httpx import AsyncClient

from planboard.access.gate import Role, can_edit_task
from planboard.errors import Validation
from planboard.lifecycle import ACTIVE, DELETED, TRASHED, activity_action
from planboard.models import Task
from planboard.seed import seed
from planboard.tasks.service import mention_tokens


@pytest.mark.anyio
async def test_health_version_and_headers(client: AsyncClient) -> None:
  health = await client.get("/health")
  assert health.json() == {"ok": True}
  assert health.headers["x-content-type-options"] == "nosniff"
  version = await client.get("/version")
  assert set(version.json()) == {"version", "buildSha"}


@pytest.mark.anyio
async def test_users_me(client: AsyncClient, people) -> None:
  res = await client.get("/users/me", headers=people.manager.headers)
  assert res.status_code == 200
  assert res.json()["email"] == "manager@planboard.test"
  assert res.json()["status"] == "active"


@pytest.mark.anyio
async def test_seed_is_idempotent(store) -> None:
  first = await seed(store)
  assert len(first) == 3
  assert all(" token=pb_" in line for line in first)
  assert await seed(store) == []


def test_roles_are_totally_ordered() -> None:
  assert Role.NONE < Role.MEMBER < Role.MANAGER < Role.OWNER
  assert Role.from_member_role("manager") is Role.MANAGER
  assert Role.OWNER.wire == "owner"
  with pytest.raises(Validation):
    Role.from_member_role("owner")


def test_member_edit_rule() -> None:
  assigned = Task(reporter_id="r", assignee_id="a")
  unassigned = Task(reporter_id="r", assignee_id=None)
  assert can_edit_task(Role.MANAGER, assigned, "x")
  assert can_edit_task(Role.MEMBER, assigned, "a")
  assert not can_edit_task(Role.MEMBER, assigned, "r")
  assert can_edit_task(Role.MEMBER, unassigned, "r")
  assert not can_edit_task(Role.MEMBER, unassigned, "x")
  assert not can_edit_task(Role.NONE, unassigned, "r")


def test_lifecycle_transitions() -> None:
  assert activity_action(ACTIVE, TRASHED) == "delete"
  assert activity_action(TRASHED, ACTIVE) == "restore"
  assert activity_action(TRASHED, DELETED) == "delete"
  with pytest.raises(ValueError):
    activity_action(ACTIVE, DELETED)


def test_mention_tokens() -> None:
  assert mention_tokens(name="Mia Member", email="Mia@Example.com") == {
    "@mia member",
    "@miamember",
    "@mia@example.com",
    "@mia",
  }
  assert mention_tokens(name=None, email=None) == set()
