from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://planboard:planboard@db:5432/planboard"
  app_secret: str = "dev-secret-change-me"
  app_version: str = "v2026-10-19"
  build_sha: str = "dev"
  api_docs_enabled: bool = True
  log_level: str = "INFO"

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  cors_origin_regex: str = r"^http://(localhost|127\.0\.0\.1):3000$"
  trusted_hosts: str = "localhost,127.0.0.1,api,web,testserver"

  # Every store round-trip made on behalf of a request is bounded by this.
  store_timeout_seconds: float = 10.0
  store_pool_timeout_seconds: float = 5.0
  store_pool_size: int = 10

  side_effect_timeout_seconds: float = 5.0
  side_effect_max_attempts: int = 3
  side_effect_retry_delay_seconds: float = 0.05
  event_queue_max_size: int = 10_000

  task_position_gap: int = 1024
  task_position_max_retries: int = 5

  sprint_incomplete_policy: str = "backlog"  # backlog | keep

  ai_provider: str = "local"  # local | openai
  openai_api_key: str | None = None
  openai_base_url: str = "https://api.openai.com/v1"
  openai_model: str = "gpt-4o-mini"
  ai_timeout_seconds: float = 30.0

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]


settings = Settings()
