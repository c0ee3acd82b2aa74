from __future__ import annotations

from typing import AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select

from planboard.config import settings
from planboard.db import Store, UnitOfWork
from planboard.events.bus import EventBus
from planboard.models import ApiToken, User
from planboard.security import api_token_hash


def get_store(request: Request) -> Store:
  return request.app.state.store


def get_bus(request: Request) -> EventBus:
  return request.app.state.bus


async def get_uow(store: Store = Depends(get_store), bus: EventBus = Depends(get_bus)) -> AsyncIterator[UnitOfWork]:
  async with store.session() as session:
    yield UnitOfWork(session, bus, timeout=settings.store_timeout_seconds)


async def get_current_user(request: Request, uow: UnitOfWork = Depends(get_uow)) -> User:
  auth = request.headers.get("authorization")
  if not auth or not auth.lower().startswith("bearer "):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  token = auth.split(" ", 1)[1].strip()
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  t = await uow.scalar(select(ApiToken).where(ApiToken.token_hash == api_token_hash(token), ApiToken.revoked_at.is_(None)))
  if not t:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  u = await uow.scalar(select(User).where(User.id == t.user_id))
  if not u:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
  if u.status != "active":
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User disabled")
  return u
