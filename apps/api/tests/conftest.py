from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

from planboard.db import Store
from planboard.main import app, create_event_bus
from planboard.models import ApiToken, Notification, User
from planboard.security import api_token_hash, api_token_new


@dataclass
class Actor:
  id: str
  email: str
  name: str
  headers: dict[str, str]


@dataclass
class People:
  owner: Actor
  manager: Actor
  member: Actor
  outsider: Actor


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
async def store(tmp_path) -> Store:
  # Each test gets its own throwaway SQLite file.
  s = Store(f"sqlite+aiosqlite:///{tmp_path / 'planboard_test.db'}")
  await s.open()
  await s.create_all()
  yield s
  await s.close()


@pytest.fixture
async def bus(store: Store):
  b = create_event_bus(store)
  await b.start()
  yield b
  await b.stop()


@pytest.fixture
async def client(store: Store, bus) -> AsyncClient:
  app.state.store = store
  app.state.bus = bus

  async def _settle(_response) -> None:
    # Side effects run after commit; wait for them so assertions see them.
    await bus.drain()

  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost", event_hooks={"response": [_settle]}) as c:
    yield c


async def make_user(store: Store, email: str, name: str | None = None, *, status: str = "active") -> Actor:
  token = api_token_new()
  async with store.session() as db:
    u = User(email=email, name=name or email.split("@", 1)[0].title(), status=status)
    db.add(u)
    await db.flush()
    db.add(ApiToken(user_id=u.id, name="test", token_hash=api_token_hash(token)))
    await db.commit()
    return Actor(id=u.id, email=u.email, name=u.name, headers={"Authorization": f"Bearer {token}"})


@pytest.fixture
async def people(store: Store) -> People:
  return People(
    owner=await make_user(store, "owner@planboard.test", "Olivia Owner"),
    manager=await make_user(store, "manager@planboard.test", "Max Manager"),
    member=await make_user(store, "member@planboard.test", "Mia Member"),
    outsider=await make_user(store, "outsider@planboard.test", "Oscar Outsider"),
  )


async def create_project(client: AsyncClient, actor: Actor, **fields) -> dict:
  payload = {"name": "Apollo", **fields}
  res = await client.post("/projects", json=payload, headers=actor.headers)
  assert res.status_code == 200, res.text
  return res.json()


async def join(client: AsyncClient, project_id: str, inviter: Actor, invitee: Actor, role: str = "member") -> dict:
  inv = await client.post(
    f"/projects/{project_id}/invitations",
    json={"userId": invitee.id, "role": role},
    headers=inviter.headers,
  )
  assert inv.status_code == 200, inv.text
  res = await client.post(f"/invitations/{inv.json()['id']}/respond", json={"accept": True}, headers=invitee.headers)
  assert res.status_code == 200, res.text
  return res.json()


async def team_project(client: AsyncClient, people: People, **fields) -> dict:
  """Project owned by `owner` with `manager` and `member` joined."""
  p = await create_project(client, people.owner, **fields)
  await join(client, p["id"], people.owner, people.manager, "manager")
  await join(client, p["id"], people.manager, people.member, "member")
  return p


async def create_task(client: AsyncClient, actor: Actor, project_id: str, **fields) -> dict:
  payload = {"title": "Task", **fields}
  res = await client.post(f"/projects/{project_id}/tasks", json=payload, headers=actor.headers)
  assert res.status_code == 200, res.text
  return res.json()


async def notifications_of(store: Store, user_id: str, type: str | None = None) -> list[Notification]:
  async with store.session() as db:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if type:
      stmt = stmt.where(Notification.type == type)
    return list((await db.scalars(stmt)).all())
