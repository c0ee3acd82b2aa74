from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import field_validator


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

Visibility = Literal["private", "public"]
Template = Literal["kanban", "scrum"]
MemberRole = Literal["manager", "member"]
TaskStatus = Literal["backlog", "todo", "in-progress", "done"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
TaskType = Literal["user-story", "task"]


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


class UserOut(BaseModel):
  id: str
  email: str
  name: str
  role: Literal["user", "admin"]
  status: Literal["active", "inactive"]


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  description: str = Field(default="", max_length=10_000)
  template: Template = "kanban"
  visibility: Visibility = "private"


class ProjectUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=10_000)
  template: Template | None = None
  visibility: Visibility | None = None


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str
  ownerId: str
  visibility: Visibility
  template: Template
  trashed: bool
  deletedAt: datetime | None
  role: Literal["owner", "manager", "member", "none"] | None = None
  createdAt: datetime
  updatedAt: datetime


class MemberOut(BaseModel):
  userId: str
  name: str
  email: str
  role: Literal["owner", "manager", "member"]


class MemberRoleIn(BaseModel):
  role: MemberRole


class InviteIn(BaseModel):
  userId: str
  role: MemberRole = "member"


class RespondIn(BaseModel):
  accept: bool


class JoinRequestOut(BaseModel):
  id: str
  projectId: str
  projectName: str | None = None
  userId: str
  invitedBy: str | None
  kind: Literal["invite", "request"]
  role: MemberRole
  status: Literal["pending", "accepted", "rejected"]
  createdAt: datetime
  respondedAt: datetime | None


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1, max_length=500)
  description: str = Field(default="", max_length=50_000)
  status: TaskStatus = "backlog"
  priority: TaskPriority = "medium"
  type: TaskType = "task"
  storyPoints: int | None = Field(default=None, ge=0, le=100)
  assigneeId: str | None = None
  sprintId: str | None = None


class TaskUpdateIn(BaseModel):
  version: int | None = None
  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = Field(default=None, max_length=50_000)
  priority: TaskPriority | None = None
  type: TaskType | None = None
  storyPoints: int | None = Field(default=None, ge=0, le=100)
  assigneeId: str | None = None


class TaskMoveIn(BaseModel):
  status: TaskStatus
  position: int | None = Field(default=None, ge=0)
  version: int | None = None


class TaskOut(BaseModel):
  id: str
  projectId: str
  sprintId: str | None
  reporterId: str
  assigneeId: str | None
  title: str
  description: str
  status: TaskStatus
  priority: TaskPriority
  type: TaskType
  storyPoints: int | None
  position: int
  version: int
  trashed: bool
  deletedAt: datetime | None
  createdAt: datetime
  updatedAt: datetime


class LabelIn(BaseModel):
  name: str = Field(min_length=1, max_length=50)
  color: str = Field(pattern=r"^#[0-9A-Fa-f]{6}$")


class LabelUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=50)
  color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class LabelOut(BaseModel):
  id: str
  projectId: str
  name: str
  color: str
  createdAt: datetime


class TaskLabelsIn(BaseModel):
  labelIds: list[str] = Field(default_factory=list, max_length=100)


class CommentIn(BaseModel):
  content: str = Field(min_length=1, max_length=20_000)


class CommentOut(BaseModel):
  id: str
  taskId: str
  authorId: str
  content: str
  edited: bool
  createdAt: datetime
  updatedAt: datetime


class SprintCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  goal: str = Field(default="", max_length=5_000)
  startDate: datetime | None = None
  endDate: datetime | None = None
  active: bool = False
  taskIds: list[str] = []

  @field_validator("startDate", "endDate", mode="before")
  @classmethod
  def _dates_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class SprintUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  goal: str | None = Field(default=None, max_length=5_000)
  startDate: datetime | None = None
  endDate: datetime | None = None

  @field_validator("startDate", "endDate", mode="before")
  @classmethod
  def _dates_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class SprintTasksIn(BaseModel):
  taskIds: list[str] = Field(min_length=1, max_length=500)


class SprintOut(BaseModel):
  id: str
  projectId: str
  name: str
  goal: str
  status: Literal["planned", "active", "completed"]
  startDate: datetime | None
  endDate: datetime | None
  completedAt: datetime | None
  createdAt: datetime


class RejectedOut(BaseModel):
  taskId: str
  reason: str


class BulkResultOut(BaseModel):
  succeeded: list[str]
  rejected: list[RejectedOut]


class SprintCreatedOut(SprintOut):
  tasks: BulkResultOut | None = None


class SprintEndedOut(SprintOut):
  returnedToBacklog: list[str]


class SprintDeletedOut(BaseModel):
  ok: bool
  returnedToBacklog: list[str]


class SprintStatsOut(BaseModel):
  sprintId: str
  status: str
  total: int
  completed: int
  completionPercent: int
  totalPoints: int
  completedPoints: int
  byStatus: dict[str, int]
  byPriority: dict[str, int]


class NotificationOut(BaseModel):
  id: str
  type: str
  title: str
  message: str
  read: bool
  entityType: str | None
  entityId: str | None
  projectId: str | None
  createdAt: datetime


class ActivityOut(BaseModel):
  id: str
  actorId: str | None
  projectId: str | None
  entityType: str
  entityId: str
  action: str
  details: dict[str, Any]
  createdAt: datetime


class AIEnhanceIn(BaseModel):
  title: str = Field(min_length=1, max_length=500)
  description: str = Field(default="", max_length=50_000)
  type: TaskType = "task"


class AIEstimateIn(BaseModel):
  title: str = Field(min_length=1, max_length=500)
  description: str = Field(default="", max_length=50_000)
  priority: TaskPriority = "medium"


class AIChatIn(BaseModel):
  message: str = Field(min_length=1, max_length=10_000)
  projectId: str | None = None


class AITextOut(BaseModel):
  text: str
