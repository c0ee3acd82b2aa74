from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, func, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Wire-stable enumerations.
USER_ROLES = ("user", "admin")
USER_STATUSES = ("active", "inactive")
PROJECT_VISIBILITIES = ("private", "public")
PROJECT_TEMPLATES = ("kanban", "scrum")
MEMBER_ROLES = ("manager", "member")
JOIN_KINDS = ("invite", "request")
JOIN_STATUSES = ("pending", "accepted", "rejected")
TASK_STATUSES = ("backlog", "todo", "in-progress", "done")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
TASK_TYPES = ("user-story", "task")
# A sprint stays "planned" until it is started.
SPRINT_STATUSES = ("planned", "active", "completed")
NOTIFICATION_TYPES = ("task_assigned", "task_completed", "member_added", "project_update", "task_mentioned")
ENTITY_TYPES = ("project", "task", "sprint", "comment", "member")
ACTIVITY_ACTIONS = ("create", "update", "delete", "restore", "assign", "unassign", "move")


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def new_id() -> str:
  return str(uuid.uuid4())


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  role: Mapped[str] = mapped_column(String, nullable=False, default="user")
  status: Mapped[str] = mapped_column(String, nullable=False, default="active")
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ApiToken(Base):
  __tablename__ = "api_tokens"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False, default="default")
  token_hash: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Project(Base):
  __tablename__ = "projects"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  owner_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=False, index=True)
  visibility: Mapped[str] = mapped_column(String, nullable=False, default="private")
  template: Mapped[str] = mapped_column(String, nullable=False, default="kanban")
  lifecycle: Mapped[str] = mapped_column(String, nullable=False, default="active", index=True)
  deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ProjectMember(Base):
  __tablename__ = "project_members"
  __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),)

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=False, index=True)
  role: Mapped[str] = mapped_column(String, nullable=False, default="member")
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class JoinRequest(Base):
  __tablename__ = "join_requests"
  __table_args__ = (
    Index(
      "uq_join_requests_pending",
      "project_id",
      "user_id",
      unique=True,
      postgresql_where=text("status = 'pending'"),
      sqlite_where=text("status = 'pending'"),
    ),
  )

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=False, index=True)
  invited_by: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=True)
  kind: Mapped[str] = mapped_column(String, nullable=False)
  role: Mapped[str] = mapped_column(String, nullable=False, default="member")
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Sprint(Base):
  __tablename__ = "sprints"
  __table_args__ = (
    Index(
      "uq_sprints_one_active",
      "project_id",
      unique=True,
      postgresql_where=text("status = 'active'"),
      sqlite_where=text("status = 'active'"),
    ),
  )

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  goal: Mapped[str] = mapped_column(Text, nullable=False, default="")
  status: Mapped[str] = mapped_column(String, nullable=False, default="planned")
  start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_by: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"
  __table_args__ = (
    UniqueConstraint("project_id", "status", "position", name="uq_tasks_column_position"),
    Index("ix_tasks_project_status", "project_id", "status"),
  )

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  sprint_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("sprints.id", ondelete="SET NULL"), nullable=True, index=True)
  reporter_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=False)
  assignee_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=True, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  status: Mapped[str] = mapped_column(String, nullable=False, default="backlog")
  priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
  type: Mapped[str] = mapped_column(String, nullable=False, default="task")
  story_points: Mapped[int | None] = mapped_column(Integer, nullable=True)
  position: Mapped[int] = mapped_column(Integer, nullable=False)
  version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  lifecycle: Mapped[str] = mapped_column(String, nullable=False, default="active")
  deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Label(Base):
  __tablename__ = "labels"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  color: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


# Label names are unique per project, ignoring case.
Index("uq_labels_project_name", Label.project_id, func.lower(Label.name), unique=True)


class TaskLabel(Base):
  __tablename__ = "task_labels"

  task_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
  label_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True, index=True)

class Comment(Base):
  __tablename__ = "comments"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  task_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
  author_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=False)
  content: Mapped[str] = mapped_column(Text, nullable=False)
  edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Notification(Base):
  __tablename__ = "notifications"
  __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_notifications_event_user"),)

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
  event_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False)
  type: Mapped[str] = mapped_column(String, nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False, default="")
  read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  entity_type: Mapped[str | None] = mapped_column(String, nullable=True)
  entity_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
  # No FK: notifications outlive a permanently deleted project.
  project_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


class ActivityLog(Base):
  __tablename__ = "activity_logs"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  event_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, unique=True)
  actor_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
  # No FK: the trail survives a permanent project delete.
  project_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True, index=True)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False)
  action: Mapped[str] = mapped_column(String, nullable=False)
  details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
