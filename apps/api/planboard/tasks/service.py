from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError

from planboard.access.gate import AuthorizationGate, Role, can_edit_task
from planboard.config import settings
from planboard.db import UnitOfWork
from planboard.errors import Conflict, NotFound, Unauthorized, Validation
from planboard.events.bus import DomainEvent, NotificationIntent
from planboard.lifecycle import ACTIVE, DELETED, TRASHED, activity_action, transition
from planboard.models import (
  TASK_PRIORITIES,
  TASK_STATUSES,
  TASK_TYPES,
  Comment,
  Project,
  ProjectMember,
  Sprint,
  Task,
  TaskLabel,
  User,
  utcnow,
)
from planboard.tasks import ordering

logger = logging.getLogger(__name__)

_EDITABLE = ("title", "description", "priority", "type", "story_points", "assignee_id")
_NULLABLE = ("assignee_id", "story_points")
_STATUS_ORDER = {s: i for i, s in enumerate(TASK_STATUSES)}
_PROJECT_TRASHED = "The project is in the trash; restore the project first"


def mention_tokens(*, name: str | None, email: str | None) -> set[str]:
  tokens: set[str] = set()
  if name:
    nm = str(name).strip().lower()
    if nm:
      tokens.add("@" + nm)
      tokens.add("@" + nm.replace(" ", ""))
  if email:
    em = str(email).strip().lower()
    if em:
      tokens.add("@" + em)
      local = em.split("@", 1)[0]
      if local:
        tokens.add("@" + local)
  return tokens


class TaskWorkflow:
  def __init__(self, uow: UnitOfWork, gate: AuthorizationGate | None = None) -> None:
    self.uow = uow
    self.gate = gate or AuthorizationGate(uow)
    self.gap = settings.task_position_gap

  # -- queries -------------------------------------------------------------

  async def get(self, task_id: str, user_id: str) -> Task:
    task = await self._load(task_id)
    await self.gate.authorize(user_id, task.project_id, Role.MEMBER, write=False)
    return task

  async def list_tasks(
    self,
    project_id: str,
    user_id: str,
    *,
    status: str | None = None,
    priority: str | None = None,
    assignee_id: str | None = None,
    sprint_id: str | None = None,
    label_id: str | None = None,
    q: str | None = None,
  ) -> list[Task]:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MEMBER, write=False)
    stmt = select(Task).where(Task.project_id == project.id, Task.lifecycle == ACTIVE)
    if status:
      stmt = stmt.where(Task.status == status)
    if priority:
      stmt = stmt.where(Task.priority == priority)
    if assignee_id:
      stmt = stmt.where(Task.assignee_id == assignee_id)
    if sprint_id:
      stmt = stmt.where(Task.sprint_id == sprint_id)
    if label_id:
      stmt = stmt.where(Task.id.in_(select(TaskLabel.task_id).where(TaskLabel.label_id == label_id)))
    if q:
      stmt = stmt.where(Task.title.ilike(f"%{q.strip()}%"))
    stmt = stmt.order_by(case(_STATUS_ORDER, value=Task.status), Task.position.asc())
    return await self.uow.scalars(stmt)

  async def list_trash(self, project_id: str, user_id: str) -> list[Task]:
    """Trashed tasks of a project that the caller may restore."""
    project, role = await self.gate.authorize(user_id, project_id, Role.MEMBER, write=False)
    tasks = await self.uow.scalars(
      select(Task).where(Task.project_id == project.id, Task.lifecycle == TRASHED).order_by(Task.deleted_at.desc())
    )
    return [t for t in tasks if can_edit_task(role, t, user_id)]

  # -- mutations -----------------------------------------------------------

  async def create(
    self,
    project_id: str,
    user_id: str,
    *,
    title: str,
    description: str = "",
    status: str = "backlog",
    priority: str = "medium",
    type: str = "task",
    story_points: int | None = None,
    assignee_id: str | None = None,
    sprint_id: str | None = None,
  ) -> Task:
    fields = _clean(
      {"title": title, "description": description, "status": status, "priority": priority, "type": type, "story_points": story_points}
    )
    for attempt in range(1, settings.task_position_max_retries + 1):
      try:
        return await self._create_once(project_id, user_id, fields, assignee_id=assignee_id, sprint_id=sprint_id)
      except IntegrityError:
        await self.uow.rollback()
        logger.info("position collision creating task in %s, retry %d", project_id, attempt)
    raise Conflict("Could not place the task, please retry")

  async def _create_once(
    self,
    project_id: str,
    user_id: str,
    fields: dict[str, Any],
    *,
    assignee_id: str | None,
    sprint_id: str | None,
  ) -> Task:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MEMBER)
    if assignee_id:
      await self._ensure_assignable(project, assignee_id)
    if sprint_id:
      sprint = await self.uow.scalar(select(Sprint).where(Sprint.id == sprint_id, Sprint.project_id == project.id))
      if sprint is None:
        raise Validation("Sprint does not belong to this project")
      if sprint.status == "completed":
        raise Conflict("Cannot add tasks to a completed sprint")

    position = await ordering.append_key(self.uow, project.id, fields["status"], gap=self.gap)
    task = Task(
      project_id=project.id,
      reporter_id=user_id,
      assignee_id=assignee_id or None,
      sprint_id=sprint_id or None,
      position=position,
      **fields,
    )
    self.uow.add(task)
    await self.uow.flush()
    self.uow.emit(self._event(task, user_id, "create", {"title": task.title, "status": task.status}))
    if task.assignee_id:
      self.uow.emit(self._assignment_event(task, user_id, None))
    return task

  async def update(self, task_id: str, user_id: str, *, version: int | None = None, **changes: Any) -> Task:
    task = await self._load(task_id)
    project, _ = await self.gate.authorize_task_edit(user_id, task)
    fields = _clean({k: v for k, v in changes.items() if k in _EDITABLE and (v is not None or k in _NULLABLE)})
    if not fields:
      return task
    previous_assignee = task.assignee_id
    if "assignee_id" in fields:
      fields["assignee_id"] = fields["assignee_id"] or None
      if fields["assignee_id"]:
        await self._ensure_assignable(project, fields["assignee_id"])

    await self._cas(task, version, **fields)
    changed = {k: v for k, v in fields.items() if k != "assignee_id"}
    if changed:
      self.uow.emit(self._event(task, user_id, "update", {"changes": changed}))
    if "assignee_id" in fields and fields["assignee_id"] != previous_assignee:
      self.uow.emit(self._assignment_event(task, user_id, previous_assignee))
    return task

  async def move(self, task_id: str, user_id: str, *, status: str, position: int | None = None, version: int | None = None) -> Task:
    if status not in TASK_STATUSES:
      raise Validation("Status must be one of: " + ", ".join(TASK_STATUSES))
    if position is not None and position < 0:
      raise Validation("Position must be zero or greater")
    for attempt in range(1, settings.task_position_max_retries + 1):
      try:
        return await self._move_once(task_id, user_id, status, position, version)
      except IntegrityError:
        # A concurrent writer took the key; start over from fresh reads.
        await self.uow.rollback()
        logger.info("position collision moving task %s, retry %d", task_id, attempt)
    raise Conflict("Could not place the task, please retry")

  async def _move_once(self, task_id: str, user_id: str, status: str, index: int | None, version: int | None) -> Task:
    task = await self._load(task_id)
    await self.gate.authorize_task_edit(user_id, task)
    if version is not None and version != task.version:
      raise Conflict("Task was changed by someone else, reload and retry")
    previous_status = task.status

    column = await ordering.load_column(self.uow, task.project_id, status, exclude_id=task.id)
    key = ordering.place(column, index, gap=self.gap)
    if key is None:
      logger.info("renormalizing column %s/%s", task.project_id, status)
      await ordering.renormalize(self.uow, column, gap=self.gap, mover=task if previous_status == status else None)
      key = ordering.place(column, index, gap=self.gap)

    await self._cas(task, task.version, status=status, position=key)
    notification = None
    if status == "done" and previous_status != "done" and task.assignee_id:
      notification = NotificationIntent(
        type="task_completed",
        title="Task completed",
        message=f"{task.title} was marked done",
        user_ids=(task.assignee_id,),
      )
    self.uow.emit(
      self._event(task, user_id, "move", {"from": previous_status, "to": status, "index": index}, notification=notification)
    )
    return task

  async def soft_delete(self, task_id: str, user_id: str) -> Task:
    task = await self._load(task_id, include_trashed=True)
    await self.gate.authorize_task_edit(user_id, task)
    return await self._lifecycle(task, user_id, source=ACTIVE, target=TRASHED)

  async def restore(self, task_id: str, user_id: str) -> Task:
    task = await self._load(task_id, include_trashed=True)
    await self._authorize_trash_op(task, user_id)
    try:
      return await self._lifecycle(task, user_id, source=TRASHED, target=ACTIVE, guard=(_in_active_project(),))
    except Conflict:
      # The project may have been trashed after the check above.
      lifecycle = await self.uow.scalar(select(Project.lifecycle).where(Project.id == task.project_id))
      if lifecycle != ACTIVE:
        raise Conflict(_PROJECT_TRASHED) from None
      raise

  async def permanently_delete(self, task_id: str, user_id: str) -> None:
    task = await self._load(task_id, include_trashed=True)
    await self._authorize_trash_op(task, user_id)
    if task.lifecycle != TRASHED:
      raise Conflict("Task must be in the trash before it can be permanently deleted")
    await self.uow.execute(delete(Comment).where(Comment.task_id == task.id).execution_options(synchronize_session=False))
    await self.uow.execute(delete(TaskLabel).where(TaskLabel.task_id == task.id).execution_options(synchronize_session=False))
    await transition(self.uow, Task, task.id, source=TRASHED, target=DELETED, label="Task", guard=(_in_active_project(),))
    self.uow.emit(self._event(task, user_id, "delete", {"title": task.title, "permanent": True}))

  # -- comments ------------------------------------------------------------

  async def list_comments(self, task_id: str, user_id: str) -> list[Comment]:
    task = await self.get(task_id, user_id)
    return await self.uow.scalars(select(Comment).where(Comment.task_id == task.id).order_by(Comment.created_at.asc()))

  async def add_comment(self, task_id: str, user_id: str, content: str) -> Comment:
    body = (content or "").strip()
    if not body:
      raise Validation("Comment cannot be empty")
    task = await self._load(task_id)
    project, _ = await self.gate.authorize(user_id, task.project_id, Role.MEMBER)
    comment = Comment(task_id=task.id, author_id=user_id, content=body)
    self.uow.add(comment)
    await self.uow.flush()

    mentioned = await self._mentioned_users(project, body, exclude=user_id)
    notification = None
    if mentioned:
      notification = NotificationIntent(
        type="task_mentioned",
        title="You were mentioned",
        message=task.title,
        mentioned_ids=tuple(mentioned),
      )
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=task.project_id,
        entity_type="comment",
        entity_id=comment.id,
        action="create",
        details={"taskId": task.id, "mentions": mentioned},
        notification=notification,
      )
    )
    return comment

  async def update_comment(self, comment_id: str, user_id: str, content: str) -> Comment:
    body = (content or "").strip()
    if not body:
      raise Validation("Comment cannot be empty")
    comment, task = await self._load_comment(comment_id)
    await self.gate.authorize(user_id, task.project_id, Role.MEMBER)
    if comment.author_id != user_id:
      raise Unauthorized("Only the author may edit a comment")
    comment.content = body
    comment.edited = True
    comment.updated_at = utcnow()
    await self.uow.flush()
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=task.project_id,
        entity_type="comment",
        entity_id=comment.id,
        action="update",
        details={"taskId": task.id},
      )
    )
    return comment

  async def delete_comment(self, comment_id: str, user_id: str) -> None:
    comment, task = await self._load_comment(comment_id)
    _, role = await self.gate.authorize(user_id, task.project_id, Role.MEMBER)
    if comment.author_id != user_id and role < Role.MANAGER:
      raise Unauthorized("Only the author or a manager may delete a comment")
    res = await self.uow.execute(delete(Comment).where(Comment.id == comment.id).execution_options(synchronize_session=False))
    if res.rowcount != 1:
      raise NotFound("Comment not found")
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=task.project_id,
        entity_type="comment",
        entity_id=comment.id,
        action="delete",
        details={"taskId": task.id},
      )
    )

  # -- helpers -------------------------------------------------------------

  async def _load(self, task_id: str, *, include_trashed: bool = False) -> Task:
    task = await self.uow.scalar(select(Task).where(Task.id == task_id).execution_options(populate_existing=True))
    if task is None or (task.lifecycle == TRASHED and not include_trashed):
      raise NotFound("Task not found")
    return task

  async def _load_comment(self, comment_id: str) -> tuple[Comment, Task]:
    comment = await self.uow.scalar(select(Comment).where(Comment.id == comment_id))
    if comment is None:
      raise NotFound("Comment not found")
    task = await self._load(comment.task_id)
    return comment, task

  async def _authorize_trash_op(self, task: Task, user_id: str) -> None:
    project, role = await self.gate.authorize(user_id, task.project_id, Role.MEMBER, include_trashed=True)
    if project.lifecycle == TRASHED:
      raise Conflict(_PROJECT_TRASHED)
    if not can_edit_task(role, task, user_id):
      raise Unauthorized("Only managers may change tasks assigned to someone else")

  async def _lifecycle(self, task: Task, user_id: str, *, source: str, target: str, guard: tuple = ()) -> Task:
    await transition(self.uow, Task, task.id, source=source, target=target, label="Task", guard=guard)
    await self.uow.refresh(task)
    self.uow.emit(self._event(task, user_id, activity_action(source, target), {"lifecycle": target}))
    return task

  async def _cas(self, task: Task, expected_version: int | None, **values: Any) -> None:
    expected = task.version if expected_version is None else expected_version
    res = await self.uow.execute(
      update(Task)
      .where(Task.id == task.id, Task.version == expected, Task.lifecycle == ACTIVE)
      .values(version=expected + 1, updated_at=utcnow(), **values)
      .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise Conflict("Task was changed by someone else, reload and retry")
    await self.uow.refresh(task)

  async def _ensure_assignable(self, project: Project, user_id: str) -> None:
    if user_id == project.owner_id:
      return
    member = await self.uow.scalar(
      select(ProjectMember.id).where(ProjectMember.project_id == project.id, ProjectMember.user_id == user_id)
    )
    if member is None:
      raise Validation("Assignee must be a member of the project")

  async def _mentioned_users(self, project: Project, body: str, *, exclude: str) -> list[str]:
    body_l = body.lower()
    members = select(ProjectMember.user_id).where(ProjectMember.project_id == project.id)
    users = await self.uow.scalars(
      select(User).where((User.id == project.owner_id) | User.id.in_(members), User.status == "active")
    )
    out: list[str] = []
    for u in users:
      if u.id == exclude:
        continue
      if any(tok in body_l for tok in mention_tokens(name=u.name, email=u.email)):
        out.append(u.id)
    return out

  def _event(
    self,
    task: Task,
    user_id: str,
    action: str,
    details: dict[str, Any],
    *,
    notification: NotificationIntent | None = None,
  ) -> DomainEvent:
    return DomainEvent(
      actor_id=user_id,
      project_id=task.project_id,
      entity_type="task",
      entity_id=task.id,
      action=action,
      details=details,
      notification=notification,
    )

  def _assignment_event(self, task: Task, user_id: str, previous: str | None) -> DomainEvent:
    if task.assignee_id is None:
      return self._event(task, user_id, "unassign", {"userId": previous})
    return self._event(
      task,
      user_id,
      "assign",
      {"userId": task.assignee_id, "previous": previous},
      notification=NotificationIntent(
        type="task_assigned",
        title="Task assigned to you",
        message=task.title,
        user_ids=(task.assignee_id,),
      ),
    )


def _in_active_project():
  return Task.project_id.in_(select(Project.id).where(Project.lifecycle == ACTIVE))


def _clean(fields: dict[str, Any]) -> dict[str, Any]:
  out = dict(fields)
  if "title" in out:
    out["title"] = (out["title"] or "").strip()
    if not out["title"]:
      raise Validation("Title is required")
  if "description" in out and out["description"] is None:
    out["description"] = ""
  if "status" in out and out["status"] not in TASK_STATUSES:
    raise Validation("Status must be one of: " + ", ".join(TASK_STATUSES))
  if "priority" in out and out["priority"] not in TASK_PRIORITIES:
    raise Validation("Priority must be one of: " + ", ".join(TASK_PRIORITIES))
  if "type" in out and out["type"] not in TASK_TYPES:
    raise Validation("Type must be one of: " + ", ".join(TASK_TYPES))
  if out.get("story_points") is not None and not 0 <= out["story_points"] <= 100:
    raise Validation("Story points must be between 0 and 100")
  return out
