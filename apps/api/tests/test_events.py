from __future__ import annotations

import asyncio
import logging

import pytest
from sqlalchemy import select

from planboard.activity.logger import ActivityLogger
from planboard.db import UnitOfWork
from planboard.errors import Conflict, Unavailable
from planboard.events.bus import DomainEvent, EventBus, NotificationIntent
from planboard.models import ActivityLog, Project, ProjectMember
from planboard.notifications.dispatcher import NotificationDispatcher

from conftest import make_user, notifications_of


def _event(**kw) -> DomainEvent:
  defaults = {"actor_id": None, "project_id": None, "entity_type": "task", "entity_id": "00000000-0000-0000-0000-000000000001", "action": "update"}
  return DomainEvent(**{**defaults, **kw})


@pytest.mark.anyio
async def test_bus_delivers_to_every_consumer_in_order() -> None:
  seen: list[tuple[str, str]] = []

  async def first(event: DomainEvent) -> None:
    seen.append(("first", event.id))

  async def second(event: DomainEvent) -> None:
    seen.append(("second", event.id))

  bus = EventBus(timeout=1, max_attempts=1)
  bus.subscribe("first", first)
  bus.subscribe("second", second)
  await bus.start()
  a, b = _event(), _event()
  bus.publish([a, b])
  await bus.drain()
  await bus.stop()
  assert seen == [("first", a.id), ("second", a.id), ("first", b.id), ("second", b.id)]


@pytest.mark.anyio
async def test_bus_retries_then_gives_up_without_blocking_others(caplog) -> None:
  calls = {"flaky": 0, "broken": 0, "slow": 0, "healthy": 0}

  async def flaky(event: DomainEvent) -> None:
    calls["flaky"] += 1
    if calls["flaky"] < 2:
      raise RuntimeError("transient")

  async def broken(event: DomainEvent) -> None:
    calls["broken"] += 1
    raise RuntimeError("always")

  async def slow(event: DomainEvent) -> None:
    calls["slow"] += 1
    await asyncio.sleep(5)

  async def healthy(event: DomainEvent) -> None:
    calls["healthy"] += 1

  bus = EventBus(timeout=0.05, max_attempts=3, retry_delay=0)
  for name, consumer in (("flaky", flaky), ("broken", broken), ("slow", slow), ("healthy", healthy)):
    bus.subscribe(name, consumer)
  await bus.start()
  with caplog.at_level(logging.WARNING, logger="planboard.events.bus"):
    bus.publish([_event()])
    await bus.drain()
  await bus.stop()

  assert calls == {"flaky": 2, "broken": 3, "slow": 3, "healthy": 1}
  dropped = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
  assert len(dropped) == 2
  assert all("dropped event" in m for m in dropped)


@pytest.mark.anyio
async def test_publish_without_running_bus_is_dropped(caplog) -> None:
  bus = EventBus(timeout=1, max_attempts=1)
  with caplog.at_level(logging.WARNING, logger="planboard.events.bus"):
    bus.publish([_event()])
  assert "not running" in caplog.records[-1].getMessage()


@pytest.mark.anyio
async def test_unit_of_work_publishes_only_after_commit(store) -> None:
  received: list[DomainEvent] = []

  async def collect(event: DomainEvent) -> None:
    received.append(event)

  bus = EventBus(timeout=1, max_attempts=1)
  bus.subscribe("collect", collect)
  await bus.start()
  async with store.session() as session:
    uow = UnitOfWork(session, bus, timeout=5)
    uow.emit(_event(action="create"))
    await uow.rollback()
    uow.emit(_event(action="move"))
    await uow.commit()
  await bus.drain()
  await bus.stop()
  assert [e.action for e in received] == ["move"]


@pytest.mark.anyio
async def test_unit_of_work_bounds_store_calls() -> None:
  uow = UnitOfWork(None, timeout=0.01)
  with pytest.raises(Unavailable):
    await uow.bounded(asyncio.sleep(1))


@pytest.mark.anyio
async def test_unit_of_work_maps_integrity_errors(store) -> None:
  owner = await make_user(store, "owner@planboard.test")
  member = await make_user(store, "member@planboard.test")
  async with store.session() as session:
    uow = UnitOfWork(session, timeout=5)
    project = Project(name="P", owner_id=owner.id)
    uow.add(project)
    await uow.flush()
    uow.add(ProjectMember(project_id=project.id, user_id=member.id))
    uow.add(ProjectMember(project_id=project.id, user_id=member.id))
    with pytest.raises(Conflict, match="already a member"):
      await uow.flush(conflict="User is already a member")


@pytest.mark.anyio
async def test_dispatcher_deduplicates_and_is_idempotent(store) -> None:
  assignee = await make_user(store, "assignee@planboard.test")
  mentioned = await make_user(store, "mentioned@planboard.test")
  gone = await make_user(store, "gone@planboard.test", status="inactive")

  event = _event(
    action="assign",
    notification=NotificationIntent(
      type="task_assigned",
      title="Task assigned to you",
      user_ids=(assignee.id,),
      mentioned_ids=(assignee.id, mentioned.id, gone.id),
    ),
  )
  dispatcher = NotificationDispatcher(store)
  await dispatcher(event)
  await dispatcher(event)

  assert len(await notifications_of(store, assignee.id)) == 1
  assert len(await notifications_of(store, mentioned.id)) == 1
  assert await notifications_of(store, gone.id) == []


@pytest.mark.anyio
async def test_dispatcher_project_audience(store) -> None:
  owner = await make_user(store, "owner@planboard.test")
  member = await make_user(store, "member@planboard.test")
  async with store.session() as db:
    project = Project(name="P", owner_id=owner.id)
    db.add(project)
    await db.flush()
    db.add(ProjectMember(project_id=project.id, user_id=member.id, role="member"))
    await db.commit()

  event = _event(
    project_id=project.id,
    entity_type="project",
    entity_id=project.id,
    notification=NotificationIntent(type="project_update", title="Project updated", user_ids=(member.id,), project_audience=True),
  )
  async with store.session() as db:
    assert await NotificationDispatcher(store).audience(db, event) == [member.id, owner.id]


@pytest.mark.anyio
async def test_activity_logger_writes_once_per_event(store) -> None:
  logger = ActivityLogger(store)
  event = _event(action="move", details={"from": "todo", "to": "done"})
  await logger(event)
  await logger(event)
  await logger(_event(action="explode"))

  async with store.session() as db:
    rows = (await db.scalars(select(ActivityLog))).all()
  assert len(rows) == 1
  assert rows[0].event_id == event.id
  assert rows[0].details == {"from": "todo", "to": "done"}
