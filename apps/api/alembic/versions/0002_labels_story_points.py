"""labels and story points

Revision ID: 0002_labels_story_points
Revises: 0001_init
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "0002_labels_story_points"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.add_column("tasks", sa.Column("story_points", sa.Integer(), nullable=True))

  op.create_table(
    "labels",
    sa.Column("id", sa.Uuid(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("project_id", sa.Uuid(as_uuid=False), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("color", sa.String(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_labels_project_id", "labels", ["project_id"])
  op.create_index("uq_labels_project_name", "labels", ["project_id", sa.text("lower(name)")], unique=True)

  op.create_table(
    "task_labels",
    sa.Column("task_id", sa.Uuid(as_uuid=False), sa.ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True, nullable=False),
    sa.Column("label_id", sa.Uuid(as_uuid=False), sa.ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True, nullable=False),
  )
  op.create_index("ix_task_labels_label_id", "task_labels", ["label_id"])


def downgrade() -> None:
  op.drop_index("ix_task_labels_label_id", table_name="task_labels")
  op.drop_table("task_labels")
  op.drop_index("uq_labels_project_name", table_name="labels")
  op.drop_index("ix_labels_project_id", table_name="labels")
  op.drop_table("labels")
  op.drop_column("tasks", "story_points")
