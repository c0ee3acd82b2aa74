"""Soft-delete lifecycle shared by projects and tasks.

    active -> trashed -> active      (restore)
                      -> deleted     (permanent, row removed)

Every transition is a conditional write against the expected current
state, so two racing callers cannot both succeed.
"""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import delete, update

from planboard.db import UnitOfWork
from planboard.errors import Conflict
from planboard.models import utcnow

ACTIVE = "active"
TRASHED = "trashed"
DELETED = "deleted"

TRANSITIONS: dict[tuple[str, str], str] = {
  (ACTIVE, TRASHED): "delete",
  (TRASHED, ACTIVE): "restore",
  (TRASHED, DELETED): "delete",
}

_CONFLICTS = {
  (ACTIVE, TRASHED): "{label} is already in the trash",
  (TRASHED, ACTIVE): "{label} is not in the trash",
  (TRASHED, DELETED): "{label} must be in the trash before it can be permanently deleted",
}


def activity_action(source: str, target: str) -> str:
  try:
    return TRANSITIONS[(source, target)]
  except KeyError:
    raise ValueError(f"invalid lifecycle transition {source} -> {target}") from None


async def transition(
  uow: UnitOfWork,
  model: type,
  entity_id: str,
  *,
  source: str,
  target: str,
  label: str,
  guard: Sequence[Any] = (),
) -> None:
  """Move one row from `source` to `target`.

  `guard` adds conditions that must still hold at write time, such as the
  parent project being active; if any fails the write matches nothing.
  """
  activity_action(source, target)
  if target == DELETED:
    stmt = delete(model).where(model.id == entity_id, model.lifecycle == source, *guard).execution_options(synchronize_session=False)
  else:
    now = utcnow()
    values = {"lifecycle": target, "deleted_at": now if target == TRASHED else None, "updated_at": now}
    if hasattr(model, "version"):
      values["version"] = model.version + 1
    stmt = (
      update(model)
      .where(model.id == entity_id, model.lifecycle == source, *guard)
      .values(**values)
      .execution_options(synchronize_session=False)
    )
  res = await uow.execute(stmt)
  if res.rowcount != 1:
    raise Conflict(_CONFLICTS[(source, target)].format(label=label))
