"""Integer gap keys for task positions within a (project, status) column.

Keys start at `gap` and are spaced `gap` apart on append. Inserting
between two neighbours takes the midpoint; when the neighbours are
adjacent integers the column is renormalized in place. Trashed tasks keep
their key, so visible indexes are mapped onto the full column.
"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import func, select

from planboard.db import UnitOfWork
from planboard.lifecycle import ACTIVE
from planboard.models import Task


def key_between(lo: int | None, hi: int | None, *, gap: int) -> int | None:
  """A key strictly between `lo` and `hi`, or None if there is no room."""
  if hi is None:
    return gap if lo is None else lo + gap
  floor = 0 if lo is None else lo
  if hi - floor > 1:
    return floor + (hi - floor) // 2
  return None


def neighbours(column: Sequence[Task], index: int | None) -> tuple[int | None, int | None]:
  """Keys around visible slot `index` of `column` (ordered by key, mover excluded)."""
  visible = [t for t in column if t.lifecycle == ACTIVE]
  if index is None or index >= len(visible):
    return (column[-1].position if column else None), None
  anchor = visible[max(index, 0)]
  at = next(i for i, t in enumerate(column) if t is anchor)
  lo = column[at - 1].position if at > 0 else None
  return lo, anchor.position


def place(column: Sequence[Task], index: int | None, *, gap: int) -> int | None:
  lo, hi = neighbours(column, index)
  return key_between(lo, hi, gap=gap)


async def load_column(uow: UnitOfWork, project_id: str, status: str, *, exclude_id: str | None = None) -> list[Task]:
  stmt = select(Task).where(Task.project_id == project_id, Task.status == status)
  if exclude_id is not None:
    stmt = stmt.where(Task.id != exclude_id)
  return await uow.scalars(stmt.order_by(Task.position.asc()).execution_options(populate_existing=True))


async def append_key(uow: UnitOfWork, project_id: str, status: str, *, gap: int) -> int:
  tail = await uow.scalar(select(func.max(Task.position)).where(Task.project_id == project_id, Task.status == status))
  return key_between(tail, None, gap=gap)


async def renormalize(uow: UnitOfWork, column: Sequence[Task], *, gap: int, mover: Task | None = None) -> None:
  """Respace `column` to gap multiples without ever holding two equal keys.

  Phase one parks every row (and the mover, if it sits in this column) on
  a distinct negative key; phase two writes the final keys. The mover keeps
  its parked key until the caller writes its new position.
  """
  parked = list(column) + ([mover] if mover is not None else [])
  for i, task in enumerate(parked):
    task.position = -(i + 1)
  await uow.flush()
  for i, task in enumerate(column):
    task.position = (i + 1) * gap
  await uow.flush()
