from __future__ import annotations

from fastapi import APIRouter, Depends

from planboard.db import UnitOfWork
from planboard.deps import get_current_user, get_uow
from planboard.labels.service import LabelCatalog
from planboard.lifecycle import TRASHED
from planboard.models import Comment, Task, User
from planboard.schemas import CommentIn, CommentOut, TaskCreateIn, TaskMoveIn, TaskOut, TaskPriority, TaskStatus, TaskUpdateIn
from planboard.tasks.service import TaskWorkflow

router = APIRouter(tags=["tasks"])


def _task_out(t: Task) -> TaskOut:
  return TaskOut(
    id=t.id,
    projectId=t.project_id,
    sprintId=t.sprint_id,
    reporterId=t.reporter_id,
    assigneeId=t.assignee_id,
    title=t.title,
    description=t.description,
    status=t.status,
    priority=t.priority,
    type=t.type,
    storyPoints=t.story_points,
    position=t.position,
    version=t.version,
    trashed=t.lifecycle == TRASHED,
    deletedAt=t.deleted_at,
    createdAt=t.created_at,
    updatedAt=t.updated_at,
  )


def _comment_out(c: Comment) -> CommentOut:
  return CommentOut(
    id=c.id,
    taskId=c.task_id,
    authorId=c.author_id,
    content=c.content,
    edited=c.edited,
    createdAt=c.created_at,
    updatedAt=c.updated_at,
  )


@router.get("/projects/{project_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
  project_id: str,
  status: TaskStatus | None = None,
  priority: TaskPriority | None = None,
  assigneeId: str | None = None,
  sprintId: str | None = None,
  labelId: str | None = None,
  q: str | None = None,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> list[TaskOut]:
  tasks = await TaskWorkflow(uow).list_tasks(
    project_id,
    user.id,
    status=status,
    priority=priority,
    assignee_id=assigneeId,
    sprint_id=sprintId,
    label_id=labelId,
    q=q,
  )
  return [_task_out(t) for t in tasks]


@router.post("/projects/{project_id}/tasks", response_model=TaskOut)
async def create_task(
  project_id: str,
  payload: TaskCreateIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> TaskOut:
  t = await TaskWorkflow(uow).create(
    project_id,
    user.id,
    title=payload.title,
    description=payload.description,
    status=payload.status,
    priority=payload.priority,
    type=payload.type,
    story_points=payload.storyPoints,
    assignee_id=payload.assigneeId,
    sprint_id=payload.sprintId,
  )
  await uow.commit()
  return _task_out(t)


@router.get("/projects/{project_id}/tasks/trash", response_model=list[TaskOut])
async def list_trashed_tasks(project_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> list[TaskOut]:
  return [_task_out(t) for t in await TaskWorkflow(uow).list_trash(project_id, user.id)]


@router.get("/labels/{label_id}/tasks", response_model=list[TaskOut])
async def list_label_tasks(label_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> list[TaskOut]:
  return [_task_out(t) for t in await LabelCatalog(uow).tasks_with_label(label_id, user.id)]


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> TaskOut:
  return _task_out(await TaskWorkflow(uow).get(task_id, user.id))


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> TaskOut:
  changes = payload.model_dump(exclude_unset=True, exclude={"version", "assigneeId", "storyPoints"})
  if "assigneeId" in payload.model_fields_set:
    changes["assignee_id"] = payload.assigneeId
  if "storyPoints" in payload.model_fields_set:
    changes["story_points"] = payload.storyPoints
  t = await TaskWorkflow(uow).update(task_id, user.id, version=payload.version, **changes)
  await uow.commit()
  return _task_out(t)


@router.delete("/tasks/{task_id}", response_model=TaskOut)
async def trash_task(task_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> TaskOut:
  t = await TaskWorkflow(uow).soft_delete(task_id, user.id)
  await uow.commit()
  return _task_out(t)


@router.post("/tasks/{task_id}/move", response_model=TaskOut)
async def move_task(
  task_id: str,
  payload: TaskMoveIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> TaskOut:
  t = await TaskWorkflow(uow).move(task_id, user.id, status=payload.status, position=payload.position, version=payload.version)
  await uow.commit()
  return _task_out(t)


@router.post("/tasks/{task_id}/restore", response_model=TaskOut)
async def restore_task(task_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> TaskOut:
  t = await TaskWorkflow(uow).restore(task_id, user.id)
  await uow.commit()
  return _task_out(t)


@router.delete("/tasks/{task_id}/permanent")
async def delete_task_permanently(task_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> dict:
  await TaskWorkflow(uow).permanently_delete(task_id, user.id)
  await uow.commit()
  return {"ok": True}


@router.get("/tasks/{task_id}/comments", response_model=list[CommentOut])
async def list_comments(task_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> list[CommentOut]:
  return [_comment_out(c) for c in await TaskWorkflow(uow).list_comments(task_id, user.id)]


@router.post("/tasks/{task_id}/comments", response_model=CommentOut)
async def add_comment(
  task_id: str,
  payload: CommentIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> CommentOut:
  c = await TaskWorkflow(uow).add_comment(task_id, user.id, payload.content)
  await uow.commit()
  return _comment_out(c)


@router.patch("/comments/{comment_id}", response_model=CommentOut)
async def update_comment(
  comment_id: str,
  payload: CommentIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
) -> CommentOut:
  c = await TaskWorkflow(uow).update_comment(comment_id, user.id, payload.content)
  await uow.commit()
  return _comment_out(c)


@router.delete("/comments/{comment_id}")
async def delete_comment(comment_id: str, user: User = Depends(get_current_user), uow: UnitOfWork = Depends(get_uow)) -> dict:
  await TaskWorkflow(uow).delete_comment(comment_id, user.id)
  await uow.commit()
  return {"ok": True}
