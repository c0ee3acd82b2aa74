from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from planboard.config import settings
from planboard.errors import Unavailable

logger = logging.getLogger(__name__)


class AIProvider(Protocol):
  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str: ...


@dataclass
class LocalDeterministicProvider:
  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str:
    # Deterministic, offline-friendly behavior suitable for acceptance tests.
    kind = context.get("kind", "chat")
    title = (context.get("title") or "Untitled").strip()
    description = str(context.get("description") or "").strip()
    priority = context.get("priority") or "medium"
    task_type = context.get("type") or "task"
    if kind == "enhance":
      preview = description[:260] + ("..." if len(description) > 260 else "")
      story = f"As a user, I want {title.lower()} so that the work is done." if task_type == "user-story" else title
      return (
        f"{story}\n\n"
        f"Context: {preview or 'No description provided.'}\n\n"
        "Acceptance criteria:\n"
        "- Expected outcome is explicit and testable\n"
        "- Edge cases and permission paths are listed\n"
        "- Definition of done is agreed with the reviewer"
      )
    if kind == "estimate":
      words = len(f"{title} {description}".split())
      base = {"low": 1, "medium": 2, "high": 4, "urgent": 4}.get(priority, 2)
      hours = base + words // 40
      return json.dumps({"hours": hours, "confidence": "low" if words < 10 else "medium"})
    return f"Noted: {prompt.strip()[:500]}"


@dataclass
class OpenAICompatibleProvider:
  api_key: str
  base_url: str
  model: str = "gpt-4o-mini"
  timeout: float = 30.0
  transport: httpx.AsyncBaseTransport | None = None

  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str:
    headers = {"Authorization": f"Bearer {self.api_key}"}
    try:
      async with httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=self.timeout, transport=self.transport) as client:
        # OpenAI-compatible chat completions API.
        r = await client.post(
          "/chat/completions",
          json={
            "model": self.model,
            "messages": [
              {"role": "system", "content": "You are an assistant embedded in a project management tool."},
              {"role": "user", "content": f"Context:\n{json.dumps(context)}\n\nPrompt:\n{prompt}"},
            ],
            "temperature": 0.3,
          },
        )
        r.raise_for_status()
        data = r.json()
        return data["choices"][0]["message"]["content"]
    except (httpx.HTTPError, KeyError, IndexError, ValueError) as exc:
      logger.warning("AI upstream failed: %s", exc)
      raise Unavailable("The assistant is unavailable right now, please retry later") from exc


def get_ai_provider() -> AIProvider:
  if settings.ai_provider.lower() == "openai":
    if not settings.openai_api_key:
      raise RuntimeError("AI_PROVIDER=openai requires OPENAI_API_KEY")
    return OpenAICompatibleProvider(
      api_key=settings.openai_api_key,
      base_url=settings.openai_base_url,
      model=settings.openai_model,
      timeout=settings.ai_timeout_seconds,
    )
  return LocalDeterministicProvider()
