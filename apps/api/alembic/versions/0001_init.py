"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Uuid:
  return sa.Uuid(as_uuid=False)


def upgrade() -> None:
  op.create_table(
    "users",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("role", sa.String(), nullable=False, server_default="user"),
    sa.Column("status", sa.String(), nullable=False, server_default="active"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "api_tokens",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("user_id", _id(), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("token_hash", sa.String(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_api_tokens_user_id", "api_tokens", ["user_id"], unique=False)
  op.create_index("ix_api_tokens_token_hash", "api_tokens", ["token_hash"], unique=True)

  op.create_table(
    "projects",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=False, server_default=""),
    sa.Column("owner_id", _id(), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("visibility", sa.String(), nullable=False, server_default="private"),
    sa.Column("template", sa.String(), nullable=False, server_default="kanban"),
    sa.Column("lifecycle", sa.String(), nullable=False, server_default="active"),
    sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_projects_owner_id", "projects", ["owner_id"], unique=False)
  op.create_index("ix_projects_lifecycle", "projects", ["lifecycle"], unique=False)

  op.create_table(
    "project_members",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("project_id", _id(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    sa.Column("user_id", _id(), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("role", sa.String(), nullable=False, server_default="member"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
  )
  op.create_index("ix_project_members_project_id", "project_members", ["project_id"], unique=False)
  op.create_index("ix_project_members_user_id", "project_members", ["user_id"], unique=False)

  op.create_table(
    "join_requests",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("project_id", _id(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    sa.Column("user_id", _id(), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("invited_by", _id(), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("kind", sa.String(), nullable=False),
    sa.Column("role", sa.String(), nullable=False, server_default="member"),
    sa.Column("status", sa.String(), nullable=False, server_default="pending"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_join_requests_project_id", "join_requests", ["project_id"], unique=False)
  op.create_index("ix_join_requests_user_id", "join_requests", ["user_id"], unique=False)
  op.create_index(
    "uq_join_requests_pending",
    "join_requests",
    ["project_id", "user_id"],
    unique=True,
    postgresql_where=sa.text("status = 'pending'"),
    sqlite_where=sa.text("status = 'pending'"),
  )

  op.create_table(
    "sprints",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("project_id", _id(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("goal", sa.Text(), nullable=False, server_default=""),
    sa.Column("status", sa.String(), nullable=False, server_default="planned"),
    sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
    sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_by", _id(), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_sprints_project_id", "sprints", ["project_id"], unique=False)
  op.create_index(
    "uq_sprints_one_active",
    "sprints",
    ["project_id"],
    unique=True,
    postgresql_where=sa.text("status = 'active'"),
    sqlite_where=sa.text("status = 'active'"),
  )

  op.create_table(
    "tasks",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("project_id", _id(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    sa.Column("sprint_id", _id(), sa.ForeignKey("sprints.id", ondelete="SET NULL"), nullable=True),
    sa.Column("reporter_id", _id(), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("assignee_id", _id(), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=False, server_default=""),
    sa.Column("status", sa.String(), nullable=False, server_default="backlog"),
    sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
    sa.Column("type", sa.String(), nullable=False, server_default="task"),
    sa.Column("position", sa.Integer(), nullable=False),
    sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    sa.Column("lifecycle", sa.String(), nullable=False, server_default="active"),
    sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("project_id", "status", "position", name="uq_tasks_column_position"),
  )
  op.create_index("ix_tasks_project_id", "tasks", ["project_id"], unique=False)
  op.create_index("ix_tasks_sprint_id", "tasks", ["sprint_id"], unique=False)
  op.create_index("ix_tasks_assignee_id", "tasks", ["assignee_id"], unique=False)
  op.create_index("ix_tasks_project_status", "tasks", ["project_id", "status"], unique=False)

  op.create_table(
    "comments",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("task_id", _id(), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    sa.Column("author_id", _id(), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("content", sa.Text(), nullable=False),
    sa.Column("edited", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_comments_task_id", "comments", ["task_id"], unique=False)

  op.create_table(
    "notifications",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("user_id", _id(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("event_id", _id(), nullable=False),
    sa.Column("type", sa.String(), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("message", sa.Text(), nullable=False, server_default=""),
    sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("entity_type", sa.String(), nullable=True),
    sa.Column("entity_id", _id(), nullable=True),
    sa.Column("project_id", _id(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("event_id", "user_id", name="uq_notifications_event_user"),
  )
  op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
  op.create_index("ix_notifications_created_at", "notifications", ["created_at"], unique=False)

  op.create_table(
    "activity_logs",
    sa.Column("id", _id(), primary_key=True),
    sa.Column("event_id", _id(), nullable=False, unique=True),
    sa.Column("actor_id", _id(), nullable=True),
    sa.Column("project_id", _id(), nullable=True),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", _id(), nullable=False),
    sa.Column("action", sa.String(), nullable=False),
    sa.Column("details", sa.JSON(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_activity_logs_project_id", "activity_logs", ["project_id"], unique=False)
  op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"], unique=False)


def downgrade() -> None:
  op.drop_table("activity_logs")
  op.drop_table("notifications")
  op.drop_table("comments")
  op.drop_table("tasks")
  op.drop_table("sprints")
  op.drop_table("join_requests")
  op.drop_table("project_members")
  op.drop_table("projects")
  op.drop_table("api_tokens")
  op.drop_table("users")
