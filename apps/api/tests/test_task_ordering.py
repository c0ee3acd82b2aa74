from __future__ import annotations

from types import SimpleNamespace

import pytest
from httpx import AsyncClient

from planboard.models import Task
from planboard.tasks import ordering
from planboard.tasks.ordering import key_between, neighbours, place
from planboard.tasks.service import TaskWorkflow

from conftest import create_project, create_task

GAP = 1024


def _col(*items: tuple[int, str]) -> list[SimpleNamespace]:
  return [SimpleNamespace(position=pos, lifecycle=life) for pos, life in items]


def test_key_between_appends_and_bisects() -> None:
  assert key_between(None, None, gap=GAP) == GAP
  assert key_between(GAP, None, gap=GAP) == 2 * GAP
  assert key_between(None, GAP, gap=GAP) == GAP // 2
  assert key_between(GAP, 2 * GAP, gap=GAP) == GAP + GAP // 2
  assert key_between(5, 7, gap=GAP) == 6


def test_key_between_reports_exhausted_gaps() -> None:
  assert key_between(1, 2, gap=GAP) is None
  assert key_between(None, 1, gap=GAP) is None


def test_neighbours_map_visible_index_over_trashed_rows() -> None:
  column = _col((1024, "active"), (2048, "trashed"), (3072, "active"))
  assert neighbours(column, 0) == (None, 1024)
  # Visible index 1 is the task at 3072; the trashed key below it is the floor.
  assert neighbours(column, 1) == (2048, 3072)
  assert neighbours(column, 2) == (3072, None)
  assert neighbours(column, None) == (3072, None)
  assert neighbours([], 0) == (None, None)
  assert place(column, 1, gap=GAP) == 2560


async def _titles(client: AsyncClient, actor, project_id: str, status: str) -> list[str]:
  res = await client.get(f"/projects/{project_id}/tasks", params={"status": status}, headers=actor.headers)
  assert res.status_code == 200, res.text
  return [t["title"] for t in res.json()]


@pytest.mark.anyio
async def test_new_tasks_append_to_their_column(client: AsyncClient, people) -> None:
  p = await create_project(client, people.owner)
  a = await create_task(client, people.owner, p["id"], title="A")
  b = await create_task(client, people.owner, p["id"], title="B")
  c = await create_task(client, people.owner, p["id"], title="C", status="todo")
  assert (a["position"], b["position"], c["position"]) == (GAP, 2 * GAP, GAP)
  assert a["version"] == 1


@pytest.mark.anyio
async def test_move_to_index_within_and_across_columns(client: AsyncClient, people) -> None:
  p = await create_project(client, people.owner)
  pid = p["id"]
  for title in ("A", "B", "C"):
    await create_task(client, people.owner, pid, title=title)
  tasks = {t["title"]: t for t in (await client.get(f"/projects/{pid}/tasks", headers=people.owner.headers)).json()}

  moved = await client.post(f"/tasks/{tasks['C']['id']}/move", json={"status": "backlog", "position": 0}, headers=people.owner.headers)
  assert moved.status_code == 200, moved.text
  assert moved.json()["position"] == GAP // 2
  assert moved.json()["version"] == 2
  assert await _titles(client, people.owner, pid, "backlog") == ["C", "A", "B"]

  across = await client.post(f"/tasks/{tasks['A']['id']}/move", json={"status": "in-progress"}, headers=people.owner.headers)
  assert across.status_code == 200
  assert across.json()["status"] == "in-progress"
  assert across.json()["position"] == GAP
  assert await _titles(client, people.owner, pid, "backlog") == ["C", "B"]

  past_end = await client.post(f"/tasks/{tasks['C']['id']}/move", json={"status": "in-progress", "position": 99}, headers=people.owner.headers)
  assert past_end.status_code == 200
  assert await _titles(client, people.owner, pid, "in-progress") == ["A", "C"]


@pytest.mark.anyio
async def test_move_into_exhausted_gap_renormalizes_column(client: AsyncClient, store, people) -> None:
  p = await create_project(client, people.owner)
  pid = p["id"]
  async with store.session() as db:
    for title, pos in (("A", 1), ("B", 2), ("C", 3)):
      db.add(Task(project_id=pid, reporter_id=people.owner.id, title=title, status="todo", position=pos))
    await db.commit()
  d = await create_task(client, people.owner, pid, title="D")

  # From another column.
  res = await client.post(f"/tasks/{d['id']}/move", json={"status": "todo", "position": 1}, headers=people.owner.headers)
  assert res.status_code == 200, res.text
  listed = (await client.get(f"/projects/{pid}/tasks", params={"status": "todo"}, headers=people.owner.headers)).json()
  assert [t["title"] for t in listed] == ["A", "D", "B", "C"]
  assert [t["position"] for t in listed] == [GAP, GAP + GAP // 2, 2 * GAP, 3 * GAP]


@pytest.mark.anyio
async def test_renormalize_with_mover_in_same_column(client: AsyncClient, store, people) -> None:
  p = await create_project(client, people.owner)
  pid = p["id"]
  async with store.session() as db:
    for title, pos in (("A", 1), ("B", 2), ("C", 3)):
      db.add(Task(project_id=pid, reporter_id=people.owner.id, title=title, status="todo", position=pos))
    await db.commit()
  listed = (await client.get(f"/projects/{pid}/tasks", params={"status": "todo"}, headers=people.owner.headers)).json()
  c = listed[-1]

  res = await client.post(f"/tasks/{c['id']}/move", json={"status": "todo", "position": 1, "version": c["version"]}, headers=people.owner.headers)
  assert res.status_code == 200, res.text
  assert await _titles(client, people.owner, pid, "todo") == ["A", "C", "B"]
  positions = [t["position"] for t in (await client.get(f"/projects/{pid}/tasks", params={"status": "todo"}, headers=people.owner.headers)).json()]
  assert positions == sorted(set(positions))
  assert all(pos > 0 for pos in positions)


@pytest.mark.anyio
async def test_trashed_task_keeps_its_slot(client: AsyncClient, people) -> None:
  p = await create_project(client, people.owner)
  pid = p["id"]
  a = await create_task(client, people.owner, pid, title="A")
  b = await create_task(client, people.owner, pid, title="B")
  c = await create_task(client, people.owner, pid, title="C")
  assert (await client.delete(f"/tasks/{b['id']}", headers=people.owner.headers)).status_code == 200

  # Visible index 1 now means "before C", which is after the trashed B.
  d = await create_task(client, people.owner, pid, title="D")
  res = await client.post(f"/tasks/{d['id']}/move", json={"status": "backlog", "position": 1}, headers=people.owner.headers)
  assert res.status_code == 200
  assert b["position"] < res.json()["position"] < c["position"]

  restored = await client.post(f"/tasks/{b['id']}/restore", headers=people.owner.headers)
  assert restored.status_code == 200
  assert await _titles(client, people.owner, pid, "backlog") == ["A", "B", "D", "C"]
  assert a["position"] == GAP


@pytest.mark.anyio
async def test_stale_version_move_is_rejected(client: AsyncClient, people) -> None:
  p = await create_project(client, people.owner)
  t = await create_task(client, people.owner, p["id"], title="A")
  ok = await client.post(f"/tasks/{t['id']}/move", json={"status": "todo", "version": 1}, headers=people.owner.headers)
  assert ok.status_code == 200
  stale = await client.post(f"/tasks/{t['id']}/move", json={"status": "done", "version": 1}, headers=people.owner.headers)
  assert stale.status_code == 409
  assert stale.json()["code"] == "conflict"

  current = (await client.get(f"/tasks/{t['id']}", headers=people.owner.headers)).json()
  assert current["status"] == "todo"
  assert current["version"] == 2


@pytest.mark.anyio
async def test_move_rejects_negative_index(client: AsyncClient, people) -> None:
  p = await create_project(client, people.owner)
  t = await create_task(client, people.owner, p["id"], title="A")
  res = await client.post(f"/tasks/{t['id']}/move", json={"status": "todo", "position": -1}, headers=people.owner.headers)
  assert res.status_code == 422


async def _occupy(store, project_id: str, reporter_id: str, status: str, position: int) -> None:
  # A concurrent writer commits a task at `position` from its own session.
  async with store.session() as db:
    db.add(Task(project_id=project_id, reporter_id=reporter_id, title="Intruder", status=status, position=position))
    await db.commit()


async def _column(client: AsyncClient, owner, pid: str, status: str) -> list[dict]:
  return (await client.get(f"/projects/{pid}/tasks", params={"status": status}, headers=owner.headers)).json()


@pytest.mark.anyio
async def test_create_retries_when_its_key_is_taken(client: AsyncClient, store, people, monkeypatch) -> None:
  p = await create_project(client, people.owner)
  pid = p["id"]
  await create_task(client, people.owner, pid, title="A")
  real_append_key = ordering.append_key
  taken: list[int] = []

  async def append_key_then_lose_it(uow, project_id, status, *, gap):
    key = await real_append_key(uow, project_id, status, gap=gap)
    if not taken:
      await _occupy(store, project_id, people.owner.id, status, key)
      taken.append(key)
    return key

  monkeypatch.setattr(ordering, "append_key", append_key_then_lose_it)
  b = await create_task(client, people.owner, pid, title="B")

  assert taken == [2 * GAP]
  assert b["position"] == 3 * GAP
  column = await _column(client, people.owner, pid, "backlog")
  assert [t["title"] for t in column] == ["A", "Intruder", "B"]
  positions = [t["position"] for t in column]
  assert len(positions) == len(set(positions))


@pytest.mark.anyio
async def test_move_retries_when_its_key_is_taken(client: AsyncClient, store, people, monkeypatch) -> None:
  p = await create_project(client, people.owner)
  pid = p["id"]
  await create_task(client, people.owner, pid, title="A", status="todo")
  d = await create_task(client, people.owner, pid, title="D")
  real_cas = TaskWorkflow._cas
  taken: list[int] = []

  async def cas_after_a_rival_insert(self, task, expected_version, **values):
    if "position" in values and not taken:
      await _occupy(store, task.project_id, people.owner.id, values["status"], values["position"])
      taken.append(values["position"])
    await real_cas(self, task, expected_version, **values)

  monkeypatch.setattr(TaskWorkflow, "_cas", cas_after_a_rival_insert)
  res = await client.post(f"/tasks/{d['id']}/move", json={"status": "todo"}, headers=people.owner.headers)
  assert res.status_code == 200, res.text

  assert taken == [2 * GAP]
  assert res.json()["position"] == 3 * GAP
  assert res.json()["version"] == d["version"] + 1
  column = await _column(client, people.owner, pid, "todo")
  assert [t["title"] for t in column] == ["A", "Intruder", "D"]
  positions = [t["position"] for t in column]
  assert len(positions) == len(set(positions))


@pytest.mark.anyio
async def test_move_gives_up_after_repeated_collisions(client: AsyncClient, store, people, monkeypatch) -> None:
  p = await create_project(client, people.owner)
  pid = p["id"]
  d = await create_task(client, people.owner, pid, title="D")
  real_cas = TaskWorkflow._cas

  async def cas_always_beaten(self, task, expected_version, **values):
    if "position" in values:
      await _occupy(store, task.project_id, people.owner.id, values["status"], values["position"])
    await real_cas(self, task, expected_version, **values)

  monkeypatch.setattr(TaskWorkflow, "_cas", cas_always_beaten)
  res = await client.post(f"/tasks/{d['id']}/move", json={"status": "done"}, headers=people.owner.headers)
  assert res.status_code == 409
  assert res.json()["code"] == "conflict"

  monkeypatch.undo()
  still = (await client.get(f"/tasks/{d['id']}", headers=people.owner.headers)).json()
  assert (still["status"], still["version"]) == ("backlog", d["version"])
