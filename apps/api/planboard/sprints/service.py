from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from planboard.access.gate import AuthorizationGate, Role
from planboard.config import settings
from planboard.db import UnitOfWork
from planboard.errors import Conflict, NotFound, Validation
from planboard.events.bus import DomainEvent, NotificationIntent
from planboard.lifecycle import ACTIVE
from planboard.models import SPRINT_STATUSES, TASK_PRIORITIES, TASK_STATUSES, Sprint, Task, utcnow
from planboard.tasks import ordering

logger = logging.getLogger(__name__)

ACTIVE_SPRINT_CONFLICT = "Project already has an active sprint"
BACKLOG_CONFLICT = "Could not place tasks in the backlog, please retry"
INCOMPLETE_POLICIES = ("backlog", "keep")


@dataclass
class BulkResult:
  succeeded: list[str] = field(default_factory=list)
  rejected: list[tuple[str, str]] = field(default_factory=list)


class SprintManager:
  """Sprint lifecycle (planned -> active -> completed) and task association.

  At most one sprint per project is active. The service checks before
  writing, and the partial unique index on (project_id) WHERE
  status = 'active' rejects whichever racing writer loses.
  """

  def __init__(self, uow: UnitOfWork, gate: AuthorizationGate | None = None, *, incomplete_policy: str | None = None) -> None:
    self.uow = uow
    self.gate = gate or AuthorizationGate(uow)
    self.gap = settings.task_position_gap
    self.incomplete_policy = incomplete_policy or settings.sprint_incomplete_policy
    if self.incomplete_policy not in INCOMPLETE_POLICIES:
      raise ValueError(f"unknown sprint incomplete policy: {self.incomplete_policy}")

  async def get(self, sprint_id: str, user_id: str) -> Sprint:
    sprint = await self._load(sprint_id)
    await self.gate.authorize(user_id, sprint.project_id, Role.MEMBER, write=False)
    return sprint

  async def list_sprints(self, project_id: str, user_id: str, *, status: str | None = None) -> list[Sprint]:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MEMBER, write=False)
    stmt = select(Sprint).where(Sprint.project_id == project.id)
    if status:
      stmt = stmt.where(Sprint.status == status)
    return await self.uow.scalars(stmt.order_by(Sprint.created_at.desc()))

  async def current(self, project_id: str, user_id: str) -> Sprint | None:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MEMBER, write=False)
    return await self.uow.scalar(select(Sprint).where(Sprint.project_id == project.id, Sprint.status == "active"))

  async def create(
    self,
    project_id: str,
    user_id: str,
    *,
    name: str,
    goal: str = "",
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    activate: bool = False,
    task_ids: Iterable[str] | None = None,
  ) -> tuple[Sprint, BulkResult | None]:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MANAGER)
    fields = _clean({"name": name, "goal": goal, "start_date": start_date, "end_date": end_date})
    if activate:
      await self._ensure_no_active(project.id)
    sprint = Sprint(project_id=project.id, created_by=user_id, status="active" if activate else "planned", **fields)
    self.uow.add(sprint)
    await self.uow.flush(conflict=ACTIVE_SPRINT_CONFLICT)
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=project.id,
        entity_type="sprint",
        entity_id=sprint.id,
        action="create",
        details={"name": sprint.name, "status": sprint.status},
        notification=self._started(sprint) if activate else None,
      )
    )
    bulk = None
    if task_ids:
      bulk = await self._attach(sprint, user_id, task_ids)
    return sprint, bulk

  async def update(self, sprint_id: str, user_id: str, **changes: Any) -> Sprint:
    sprint = await self._load(sprint_id)
    await self.gate.authorize(user_id, sprint.project_id, Role.MANAGER)
    if sprint.status == "completed":
      raise Conflict("Completed sprints cannot be edited")
    fields = {k: v for k, v in changes.items() if k in ("name", "goal", "start_date", "end_date") and v is not None}
    if not fields:
      return sprint
    fields = _clean(fields)
    _check_dates(fields.get("start_date") or sprint.start_date, fields.get("end_date") or sprint.end_date)
    res = await self.uow.execute(
      update(Sprint)
      .where(Sprint.id == sprint.id, Sprint.status != "completed")
      .values(updated_at=utcnow(), **fields)
      .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise Conflict("Completed sprints cannot be edited")
    await self.uow.refresh(sprint)
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=sprint.project_id,
        entity_type="sprint",
        entity_id=sprint.id,
        action="update",
        details={"changes": {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in fields.items()}},
      )
    )
    return sprint

  async def activate(self, sprint_id: str, user_id: str) -> Sprint:
    sprint = await self._load(sprint_id)
    await self.gate.authorize(user_id, sprint.project_id, Role.MANAGER)
    await self._ensure_no_active(sprint.project_id, exclude_id=sprint.id)
    res = await self.uow.execute(
      update(Sprint)
      .where(Sprint.id == sprint.id, Sprint.status == "planned")
      .values(status="active", updated_at=utcnow())
      .execution_options(synchronize_session=False),
      conflict=ACTIVE_SPRINT_CONFLICT,
    )
    if res.rowcount != 1:
      raise Conflict("Only planned sprints can be started")
    await self.uow.refresh(sprint)
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=sprint.project_id,
        entity_type="sprint",
        entity_id=sprint.id,
        action="update",
        details={"status": "active"},
        notification=self._started(sprint),
      )
    )
    return sprint

  async def end(self, sprint_id: str, user_id: str) -> tuple[Sprint, list[str]]:
    """Complete an active sprint.

    With the "backlog" policy every task that is not done leaves the
    sprint and is appended to the backlog column; done tasks stay attached
    as history. With "keep" nothing moves. Returns the ids sent back.
    """
    sprint = await self._load(sprint_id)
    await self.gate.authorize(user_id, sprint.project_id, Role.MANAGER)
    now = utcnow()
    res = await self.uow.execute(
      update(Sprint)
      .where(Sprint.id == sprint.id, Sprint.status == "active")
      .values(status="completed", completed_at=now, updated_at=now)
      .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise Conflict("Only an active sprint can be ended")

    returned: list[str] = []
    if self.incomplete_policy == "backlog":
      returned = await self._return_incomplete(sprint)
      logger.info("sprint %s completed, %d task(s) returned to backlog", sprint.id, len(returned))
    await self.uow.refresh(sprint)
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=sprint.project_id,
        entity_type="sprint",
        entity_id=sprint.id,
        action="update",
        details={"status": "completed", "policy": self.incomplete_policy, "returnedToBacklog": returned},
        notification=NotificationIntent(
          type="project_update",
          title="Sprint completed",
          message=f"{sprint.name} was completed",
          project_audience=True,
        ),
      )
    )
    return sprint, returned

  async def add_tasks(self, sprint_id: str, user_id: str, task_ids: Iterable[str]) -> BulkResult:
    sprint = await self._load(sprint_id)
    await self.gate.authorize(user_id, sprint.project_id, Role.MANAGER)
    return await self._attach(sprint, user_id, task_ids)

  async def remove_tasks(self, sprint_id: str, user_id: str, task_ids: Iterable[str]) -> BulkResult:
    sprint = await self._load(sprint_id)
    await self.gate.authorize(user_id, sprint.project_id, Role.MANAGER)

    def reject(task: Task | None) -> str | None:
      reason = _reject_reason(task, sprint)
      if reason is None and task.sprint_id != sprint.id:
        return "not_in_sprint"
      return reason

    async def values_for(task: Task) -> dict[str, Any]:
      values: dict[str, Any] = {"sprint_id": None}
      if task.status != "done":
        values.update(status="backlog", position=await ordering.append_key(self.uow, task.project_id, "backlog", gap=self.gap))
      return values

    result = await self._bulk(sprint, task_ids, reject, values_for)
    if result.succeeded:
      self.uow.emit(self._bulk_event(sprint, user_id, "removed", result.succeeded))
    return result

  async def delete(self, sprint_id: str, user_id: str) -> list[str]:
    """Delete a sprint in any state.

    Unfinished tasks go back to the backlog column, done tasks just lose
    the sprint link. Returns the ids sent back to the backlog.
    """
    sprint = await self._load(sprint_id)
    await self.gate.authorize(user_id, sprint.project_id, Role.MANAGER)
    returned = await self._return_incomplete(sprint)
    await self.uow.execute(
      update(Task)
      .where(Task.sprint_id == sprint.id)
      .values(sprint_id=None, version=Task.version + 1, updated_at=utcnow())
      .execution_options(synchronize_session=False)
    )
    res = await self.uow.execute(delete(Sprint).where(Sprint.id == sprint.id).execution_options(synchronize_session=False))
    if res.rowcount != 1:
      raise NotFound("Sprint not found")
    logger.info("sprint %s deleted, %d task(s) returned to backlog", sprint.id, len(returned))
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=sprint.project_id,
        entity_type="sprint",
        entity_id=sprint.id,
        action="delete",
        details={"name": sprint.name, "status": sprint.status, "returnedToBacklog": returned},
      )
    )
    return returned

  async def stats(self, sprint_id: str, user_id: str) -> dict[str, Any]:
    sprint = await self.get(sprint_id, user_id)
    by_status = {s: 0 for s in TASK_STATUSES}
    by_priority = {p: 0 for p in TASK_PRIORITIES}
    total_points = completed_points = 0
    rows = (
      await self.uow.execute(
        select(Task.status, Task.priority, func.count(), func.coalesce(func.sum(Task.story_points), 0))
        .where(Task.sprint_id == sprint.id, Task.lifecycle == ACTIVE)
        .group_by(Task.status, Task.priority)
      )
    ).all()
    for status, priority, n, points in rows:
      by_status[status] = by_status.get(status, 0) + int(n)
      by_priority[priority] = by_priority.get(priority, 0) + int(n)
      total_points += int(points)
      if status == "done":
        completed_points += int(points)
    total = sum(by_status.values())
    done = by_status.get("done", 0)
    return {
      "sprintId": sprint.id,
      "status": sprint.status,
      "total": total,
      "completed": done,
      "completionPercent": round(done * 100 / total) if total else 0,
      "totalPoints": total_points,
      "completedPoints": completed_points,
      "byStatus": by_status,
      "byPriority": by_priority,
    }

  # -- helpers -------------------------------------------------------------

  async def _load(self, sprint_id: str) -> Sprint:
    sprint = await self.uow.scalar(select(Sprint).where(Sprint.id == sprint_id))
    if sprint is None:
      raise NotFound("Sprint not found")
    return sprint

  async def _task(self, task_id: str) -> Task | None:
    return await self.uow.scalar(select(Task).where(Task.id == task_id).execution_options(populate_existing=True))

  async def _ensure_no_active(self, project_id: str, *, exclude_id: str | None = None) -> None:
    stmt = select(Sprint.id).where(Sprint.project_id == project_id, Sprint.status == "active")
    if exclude_id is not None:
      stmt = stmt.where(Sprint.id != exclude_id)
    if await self.uow.scalar(stmt) is not None:
      raise Conflict(ACTIVE_SPRINT_CONFLICT)

  async def _attach(self, sprint: Sprint, user_id: str, task_ids: Iterable[str]) -> BulkResult:
    if sprint.status == "completed":
      raise Conflict("Cannot add tasks to a completed sprint")

    def reject(task: Task | None) -> str | None:
      reason = _reject_reason(task, sprint)
      if reason is None and task.sprint_id == sprint.id:
        return "already_in_sprint"
      return reason

    async def values_for(task: Task) -> dict[str, Any]:
      values: dict[str, Any] = {"sprint_id": sprint.id}
      if task.status == "backlog":
        values.update(status="todo", position=await ordering.append_key(self.uow, task.project_id, "todo", gap=self.gap))
      return values

    result = await self._bulk(sprint, task_ids, reject, values_for)
    if result.succeeded:
      self.uow.emit(self._bulk_event(sprint, user_id, "added", result.succeeded))
    return result

  async def _bulk(
    self,
    sprint: Sprint,
    task_ids: Iterable[str],
    reject: Callable[[Task | None], str | None],
    values_for: Callable[[Task], Awaitable[dict[str, Any]]],
  ) -> BulkResult:
    """Apply each element in its own savepoint so one failure never undoes another."""
    result = BulkResult()
    for task_id in dict.fromkeys(task_ids):
      reason = await self._bulk_one(sprint, task_id, reject, values_for)
      if reason is None:
        result.succeeded.append(task_id)
      else:
        result.rejected.append((task_id, reason))
    return result

  async def _bulk_one(
    self,
    sprint: Sprint,
    task_id: str,
    reject: Callable[[Task | None], str | None],
    values_for: Callable[[Task], Awaitable[dict[str, Any]]],
  ) -> str | None:
    for attempt in range(1, settings.task_position_max_retries + 1):
      try:
        async with self.uow.savepoint():
          task = await self._task(task_id)
          reason = reject(task)
          if reason is not None:
            return reason
          values = await values_for(task)
          return None if await self._apply(task, values) else "conflict"
      except IntegrityError:
        # Someone else took the column key; recompute it from fresh reads.
        logger.info("position collision on sprint %s task %s, retry %d", sprint.id, task_id, attempt)
    return "conflict"

  async def _apply(self, task: Task, values: dict[str, Any]) -> bool:
    res = await self.uow.execute(
      update(Task)
      .where(Task.id == task.id, Task.version == task.version, Task.lifecycle == ACTIVE)
      .values(version=task.version + 1, updated_at=utcnow(), **values)
      .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1

  async def _return_incomplete(self, sprint: Sprint) -> list[str]:
    tasks = await self.uow.scalars(
      select(Task)
      .where(Task.sprint_id == sprint.id, Task.status != "done", Task.lifecycle == ACTIVE)
      .order_by(Task.status, Task.position)
      .execution_options(populate_existing=True)
    )
    returned: list[str] = []
    for task in tasks:
      values: dict[str, Any] = {"sprint_id": None}
      if task.status != "backlog":
        values.update(status="backlog", position=await ordering.append_key(self.uow, task.project_id, "backlog", gap=self.gap))
      await self.uow.execute(
        update(Task)
        .where(Task.id == task.id, Task.lifecycle == ACTIVE)
        .values(version=Task.version + 1, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False),
        conflict=BACKLOG_CONFLICT,
      )
      returned.append(task.id)
    return returned

  def _started(self, sprint: Sprint) -> NotificationIntent:
    return NotificationIntent(
      type="project_update",
      title="Sprint started",
      message=f"{sprint.name} is now active",
      project_audience=True,
    )

  def _bulk_event(self, sprint: Sprint, user_id: str, key: str, ids: list[str]) -> DomainEvent:
    return DomainEvent(
      actor_id=user_id,
      project_id=sprint.project_id,
      entity_type="sprint",
      entity_id=sprint.id,
      action="update",
      details={key: ids},
    )


def _reject_reason(task: Task | None, sprint: Sprint) -> str | None:
  if task is None:
    return "not_found"
  if task.project_id != sprint.project_id:
    return "wrong_project"
  if task.lifecycle != ACTIVE:
    return "trashed"
  return None


def _clean(fields: dict[str, Any]) -> dict[str, Any]:
  out = dict(fields)
  if "name" in out:
    out["name"] = (out["name"] or "").strip()
    if not out["name"]:
      raise Validation("Sprint name is required")
  if "goal" in out and out["goal"] is None:
    out["goal"] = ""
  if "status" in out and out["status"] not in SPRINT_STATUSES:
    raise Validation("Status must be one of: " + ", ".join(SPRINT_STATUSES))
  _check_dates(out.get("start_date"), out.get("end_date"))
  return out


def _check_dates(start: datetime | None, end: datetime | None) -> None:
  if start is None or end is None:
    return
  # SQLite hands back naive values; they are stored as UTC.
  if start.tzinfo is None:
    start = start.replace(tzinfo=timezone.utc)
  if end.tzinfo is None:
    end = end.replace(tzinfo=timezone.utc)
  if end < start:
    raise Validation("Sprint end date must not be before its start date")
