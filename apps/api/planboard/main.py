from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from planboard.activity.logger import ActivityLogger
from planboard.config import settings
from planboard.db import Store
from planboard.errors import DomainError
from planboard.events.bus import EventBus
from planboard.notifications.dispatcher import NotificationDispatcher
from planboard.routers.activity import router as activity_router
from planboard.routers.ai import router as ai_router
from planboard.routers.labels import router as labels_router
from planboard.routers.members import router as members_router
from planboard.routers.notifications import router as notifications_router
from planboard.routers.projects import router as projects_router
from planboard.routers.sprints import router as sprints_router
from planboard.routers.tasks import router as tasks_router
from planboard.routers.users import router as users_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
  logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
  )


def create_store() -> Store:
  return Store(
    settings.database_url,
    pool_size=settings.store_pool_size,
    pool_timeout=settings.store_pool_timeout_seconds,
    command_timeout=settings.store_timeout_seconds,
  )


def create_event_bus(store: Store) -> EventBus:
  bus = EventBus(
    timeout=settings.side_effect_timeout_seconds,
    max_attempts=settings.side_effect_max_attempts,
    retry_delay=settings.side_effect_retry_delay_seconds,
    max_queue=settings.event_queue_max_size,
  )
  bus.subscribe("activity", ActivityLogger(store))
  bus.subscribe("notifications", NotificationDispatcher(store))
  return bus


@asynccontextmanager
async def lifespan(app: FastAPI):
  configure_logging()
  store = create_store()
  await store.open()
  bus = create_event_bus(store)
  await bus.start()
  app.state.store = store
  app.state.bus = bus
  logger.info("planboard %s (%s) started", settings.app_version, settings.build_sha)
  try:
    yield
  finally:
    await bus.stop()
    await store.close()


app = FastAPI(
  title="Planboard API",
  version="0.1.0",
  lifespan=lifespan,
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)


@app.exception_handler(DomainError)
async def _domain_error_handler(_, exc: DomainError) -> JSONResponse:
  return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_origin_regex=settings.cors_origin_regex,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

app.include_router(users_router)
app.include_router(projects_router)
app.include_router(members_router)
app.include_router(tasks_router)
app.include_router(labels_router)
app.include_router(sprints_router)
app.include_router(notifications_router)
app.include_router(activity_router)
app.include_router(ai_router)


@app.middleware("http")
async def _security_headers_middleware(request, call_next):
  response = await call_next(request)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}
