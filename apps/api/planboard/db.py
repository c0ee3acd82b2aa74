from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from sqlalchemy import make_url
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from planboard.errors import Conflict, Unavailable
from planboard.events.bus import DomainEvent, EventBus
from planboard.models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Store:
  """Handle on the relational store.

  Constructed explicitly and opened/closed by the application lifespan;
  components get sessions from it instead of a module-level engine.
  """

  def __init__(
    self,
    url: str,
    *,
    pool_size: int = 10,
    pool_timeout: float = 5.0,
    command_timeout: float = 10.0,
    echo: bool = False,
  ) -> None:
    self.url = url
    self.pool_size = pool_size
    self.pool_timeout = pool_timeout
    self.command_timeout = command_timeout
    self.echo = echo
    self._engine: AsyncEngine | None = None
    self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

  @property
  def engine(self) -> AsyncEngine:
    if self._engine is None:
      raise RuntimeError("Store is not open")
    return self._engine

  @property
  def dialect(self) -> str:
    return make_url(self.url).get_backend_name()

  async def open(self) -> None:
    if self._engine is not None:
      return
    kwargs: dict[str, Any] = {"echo": self.echo, "pool_pre_ping": True}
    if self.dialect == "postgresql":
      kwargs.update(
        pool_size=self.pool_size,
        pool_timeout=self.pool_timeout,
        connect_args={"command_timeout": self.command_timeout, "timeout": self.pool_timeout},
      )
    self._engine = create_async_engine(self.url, **kwargs)
    self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)
    logger.info("store opened (%s)", self.dialect)

  async def close(self) -> None:
    if self._engine is None:
      return
    await self._engine.dispose()
    self._engine = None
    self._sessionmaker = None
    logger.info("store closed")

  def session(self) -> AsyncSession:
    if self._sessionmaker is None:
      raise RuntimeError("Store is not open")
    return self._sessionmaker()

  async def create_all(self) -> None:
    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def drop_all(self) -> None:
    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.drop_all)


def insert_ignoring_conflicts(session: AsyncSession, model: type, values: list[dict[str, Any]], *, index_elements: list[str]):
  """INSERT ... ON CONFLICT DO NOTHING for the bound dialect."""
  insert = sqlite_insert if session.bind.dialect.name == "sqlite" else pg_insert
  return insert(model).values(values).on_conflict_do_nothing(index_elements=index_elements)


class UnitOfWork:
  """One request's transaction plus the domain events it produced.

  Events are handed to the bus only after a successful commit, so a
  rolled-back mutation never notifies anyone.
  """

  def __init__(self, session: AsyncSession, bus: EventBus | None = None, *, timeout: float | None = None) -> None:
    self.session = session
    self.bus = bus
    self.timeout = timeout
    self.events: list[DomainEvent] = []

  async def bounded(self, aw: Awaitable[T]) -> T:
    try:
      return await asyncio.wait_for(aw, timeout=self.timeout)
    except asyncio.TimeoutError as exc:
      logger.warning("store call exceeded %ss", self.timeout)
      raise Unavailable("The data store did not respond in time, please retry") from exc

  async def execute(self, stmt, *, conflict: str | None = None):
    try:
      return await self.bounded(self.session.execute(stmt))
    except IntegrityError as exc:
      if conflict is None:
        raise
      raise Conflict(conflict) from exc

  async def scalar(self, stmt):
    return await self.bounded(self.session.scalar(stmt))

  async def scalars(self, stmt) -> list:
    res = await self.bounded(self.session.scalars(stmt))
    return list(res.all())

  def add(self, obj: Any) -> None:
    self.session.add(obj)

  async def flush(self, *, conflict: str | None = None) -> None:
    try:
      await self.bounded(self.session.flush())
    except IntegrityError as exc:
      if conflict is None:
        raise
      raise Conflict(conflict) from exc

  async def refresh(self, obj: Any) -> None:
    await self.bounded(self.session.refresh(obj))

  def savepoint(self):
    """Nested transaction; an error inside rolls back this block only."""
    return self.session.begin_nested()

  def emit(self, event: DomainEvent) -> None:
    self.events.append(event)

  async def commit(self) -> None:
    await self.bounded(self.session.commit())
    events, self.events = self.events, []
    if events and self.bus is not None:
      self.bus.publish(events)

  async def rollback(self) -> None:
    self.events.clear()
    await self.bounded(self.session.rollback())
