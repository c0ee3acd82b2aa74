from __future__ import annotations

import re
from typing import Iterable

from sqlalchemy import delete, func, insert, select, update

from planboard.access.gate import AuthorizationGate, Role
from planboard.db import UnitOfWork
from planboard.errors import Conflict, NotFound, Validation
from planboard.events.bus import DomainEvent
from planboard.lifecycle import ACTIVE
from planboard.models import Label, Task, TaskLabel, utcnow
from planboard.tasks.service import TaskWorkflow

DUPLICATE_LABEL = "Label with this name already exists"
_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


class LabelCatalog:
  """Per-project labels and their attachment to tasks.

  Managers curate the catalog. Attaching labels to a task follows the
  task edit rule, and only labels of the task's own project are accepted.
  """

  def __init__(self, uow: UnitOfWork, gate: AuthorizationGate | None = None) -> None:
    self.uow = uow
    self.gate = gate or AuthorizationGate(uow)

  async def list_labels(self, project_id: str, user_id: str) -> list[Label]:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MEMBER, write=False)
    return await self.uow.scalars(select(Label).where(Label.project_id == project.id).order_by(func.lower(Label.name)))

  async def get(self, label_id: str, user_id: str) -> Label:
    label = await self._load(label_id)
    await self.gate.authorize(user_id, label.project_id, Role.MEMBER, write=False)
    return label

  async def create(self, project_id: str, user_id: str, *, name: str, color: str) -> Label:
    project, _ = await self.gate.authorize(user_id, project_id, Role.MANAGER)
    name, color = _clean_name(name), _clean_color(color)
    await self._ensure_unique(project.id, name)
    label = Label(project_id=project.id, name=name, color=color)
    self.uow.add(label)
    await self.uow.flush(conflict=DUPLICATE_LABEL)
    self.uow.emit(self._event(label, user_id, "create"))
    return label

  async def update(self, label_id: str, user_id: str, *, name: str | None = None, color: str | None = None) -> Label:
    label = await self._load(label_id)
    await self.gate.authorize(user_id, label.project_id, Role.MANAGER)
    values: dict[str, str] = {}
    if name is not None:
      values["name"] = _clean_name(name)
      await self._ensure_unique(label.project_id, values["name"], exclude_id=label.id)
    if color is not None:
      values["color"] = _clean_color(color)
    if not values:
      return label
    await self.uow.execute(
      update(Label).where(Label.id == label.id).values(updated_at=utcnow(), **values).execution_options(synchronize_session=False),
      conflict=DUPLICATE_LABEL,
    )
    await self.uow.refresh(label)
    self.uow.emit(self._event(label, user_id, "update"))
    return label

  async def delete(self, label_id: str, user_id: str) -> None:
    label = await self._load(label_id)
    await self.gate.authorize(user_id, label.project_id, Role.MANAGER)
    await self.uow.execute(delete(TaskLabel).where(TaskLabel.label_id == label.id).execution_options(synchronize_session=False))
    res = await self.uow.execute(delete(Label).where(Label.id == label.id).execution_options(synchronize_session=False))
    if res.rowcount != 1:
      raise NotFound("Label not found")
    self.uow.emit(self._event(label, user_id, "delete"))

  async def tasks_with_label(self, label_id: str, user_id: str) -> list[Task]:
    label = await self.get(label_id, user_id)
    return await self.uow.scalars(
      select(Task)
      .join(TaskLabel, TaskLabel.task_id == Task.id)
      .where(TaskLabel.label_id == label.id, Task.lifecycle == ACTIVE)
      .order_by(Task.created_at.asc())
    )

  async def labels_of(self, task_id: str, user_id: str) -> list[Label]:
    task = await TaskWorkflow(self.uow, self.gate).get(task_id, user_id)
    return await self._labels_of(task.id)

  async def set_task_labels(self, task_id: str, user_id: str, label_ids: Iterable[str]) -> list[Label]:
    """Replace the task's labels with `label_ids`."""
    task = await self.uow.scalar(select(Task).where(Task.id == task_id, Task.lifecycle == ACTIVE))
    if task is None:
      raise NotFound("Task not found")
    await self.gate.authorize_task_edit(user_id, task)
    wanted = list(dict.fromkeys(label_ids))
    if wanted:
      found = await self.uow.scalars(select(Label.id).where(Label.id.in_(wanted), Label.project_id == task.project_id))
      missing = set(wanted) - set(found)
      if missing:
        raise Validation("Labels must belong to the task's project: " + ", ".join(sorted(missing)))

    await self.uow.execute(delete(TaskLabel).where(TaskLabel.task_id == task.id).execution_options(synchronize_session=False))
    if wanted:
      await self.uow.execute(insert(TaskLabel).values([{"task_id": task.id, "label_id": lid} for lid in wanted]))
    labels = await self._labels_of(task.id)
    self.uow.emit(
      DomainEvent(
        actor_id=user_id,
        project_id=task.project_id,
        entity_type="task",
        entity_id=task.id,
        action="update",
        details={"labels": [label.name for label in labels]},
      )
    )
    return labels

  async def _labels_of(self, task_id: str) -> list[Label]:
    return await self.uow.scalars(
      select(Label).join(TaskLabel, TaskLabel.label_id == Label.id).where(TaskLabel.task_id == task_id).order_by(func.lower(Label.name))
    )

  async def _load(self, label_id: str) -> Label:
    label = await self.uow.scalar(select(Label).where(Label.id == label_id))
    if label is None:
      raise NotFound("Label not found")
    return label

  async def _ensure_unique(self, project_id: str, name: str, *, exclude_id: str | None = None) -> None:
    stmt = select(Label.id).where(Label.project_id == project_id, func.lower(Label.name) == name.lower())
    if exclude_id is not None:
      stmt = stmt.where(Label.id != exclude_id)
    if await self.uow.scalar(stmt) is not None:
      raise Conflict(DUPLICATE_LABEL)

  def _event(self, label: Label, user_id: str, change: str) -> DomainEvent:
    # Label changes are recorded as project updates.
    return DomainEvent(
      actor_id=user_id,
      project_id=label.project_id,
      entity_type="project",
      entity_id=label.project_id,
      action="update",
      details={"label": {"id": label.id, "name": label.name, "color": label.color, "change": change}},
    )


def _clean_name(name: str) -> str:
  out = (name or "").strip()
  if not out:
    raise Validation("Label name is required")
  if len(out) > 50:
    raise Validation("Label name must be at most 50 characters")
  return out


def _clean_color(color: str) -> str:
  if not _COLOR.match(color or ""):
    raise Validation("Invalid color format (use #RRGGBB)")
  return color.lower()
