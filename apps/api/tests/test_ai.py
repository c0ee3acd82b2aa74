from __future__ import annotations

import json

import httpx
import pytest
from httpx import AsyncClient

from planboard.ai.providers import LocalDeterministicProvider, OpenAICompatibleProvider
from planboard.errors import Unavailable

from conftest import create_project


@pytest.mark.anyio
async def test_local_provider_is_deterministic() -> None:
  provider = LocalDeterministicProvider()
  ctx = {"kind": "enhance", "title": "Export reports", "description": "CSV please", "type": "user-story"}
  first = await provider.generate(prompt="x", context=ctx)
  assert first == await provider.generate(prompt="x", context=ctx)
  assert first.startswith("As a user, I want export reports")
  assert "Acceptance criteria:" in first

  estimate = json.loads(await provider.generate(prompt="x", context={"kind": "estimate", "title": "Set up CI", "priority": "high"}))
  assert estimate == {"hours": 4, "confidence": "low"}


@pytest.mark.anyio
async def test_ai_endpoints(client: AsyncClient, people) -> None:
  enhanced = await client.post("/ai/enhance-description", json={"title": "Fix login"}, headers=people.member.headers)
  assert enhanced.status_code == 200
  assert enhanced.json()["text"].startswith("Fix login")

  estimate = await client.post("/ai/estimate-time", json={"title": "Fix login", "priority": "low"}, headers=people.member.headers)
  assert json.loads(estimate.json()["text"])["hours"] == 1

  chat = await client.post("/ai/chat", json={"message": "hello"}, headers=people.member.headers)
  assert chat.json() == {"text": "Noted: hello"}

  assert (await client.post("/ai/chat", json={"message": "hello"})).status_code == 401


@pytest.mark.anyio
async def test_ai_chat_checks_project_access(client: AsyncClient, people) -> None:
  p = await create_project(client, people.owner)
  denied = await client.post("/ai/chat", json={"message": "status?", "projectId": p["id"]}, headers=people.outsider.headers)
  assert denied.status_code == 403
  ok = await client.post("/ai/chat", json={"message": "status?", "projectId": p["id"]}, headers=people.owner.headers)
  assert ok.status_code == 200


@pytest.mark.anyio
async def test_openai_compatible_provider_parses_completion() -> None:
  seen: dict = {}

  def handler(request: httpx.Request) -> httpx.Response:
    seen["auth"] = request.headers["authorization"]
    seen["body"] = json.loads(request.content)
    return httpx.Response(200, json={"choices": [{"message": {"content": "Sharper description"}}]})

  provider = OpenAICompatibleProvider(
    api_key="sk-test",
    base_url="https://llm.example.test/v1",
    model="tiny",
    transport=httpx.MockTransport(handler),
  )
  out = await provider.generate(prompt="Improve", context={"kind": "enhance"})
  assert out == "Sharper description"
  assert seen["auth"] == "Bearer sk-test"
  assert seen["body"]["model"] == "tiny"


@pytest.mark.anyio
@pytest.mark.parametrize(
  "response",
  [
    httpx.Response(500, json={"error": "boom"}),
    httpx.Response(200, json={"choices": []}),
  ],
)
async def test_openai_compatible_provider_failures_are_unavailable(response: httpx.Response) -> None:
  provider = OpenAICompatibleProvider(
    api_key="sk-test",
    base_url="https://llm.example.test/v1",
    transport=httpx.MockTransport(lambda request: response),
  )
  with pytest.raises(Unavailable):
    await provider.generate(prompt="Improve", context={})
