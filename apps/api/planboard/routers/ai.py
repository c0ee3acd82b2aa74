from __future__ import annotations

from fastapi import APIRouter, Depends

from planboard.access.gate import AuthorizationGate, Role
from planboard.ai.providers import AIProvider, get_ai_provider
from planboard.db import UnitOfWork
from planboard.deps import get_current_user, get_uow
from planboard.models import User
from planboard.schemas import AIChatIn, AIEnhanceIn, AIEstimateIn, AITextOut

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/enhance-description", response_model=AITextOut)
async def enhance_description(
  payload: AIEnhanceIn,
  user: User = Depends(get_current_user),
  provider: AIProvider = Depends(get_ai_provider),
) -> AITextOut:
  text = await provider.generate(
    prompt="Rewrite this task description so it is clear, scoped and testable.",
    context={"kind": "enhance", "title": payload.title, "description": payload.description, "type": payload.type},
  )
  return AITextOut(text=text)


@router.post("/estimate-time", response_model=AITextOut)
async def estimate_time(
  payload: AIEstimateIn,
  user: User = Depends(get_current_user),
  provider: AIProvider = Depends(get_ai_provider),
) -> AITextOut:
  text = await provider.generate(
    prompt='Estimate the effort for this task in hours. Answer as JSON: {"hours": <int>, "confidence": "<low|medium|high>"}.',
    context={"kind": "estimate", "title": payload.title, "description": payload.description, "priority": payload.priority},
  )
  return AITextOut(text=text)


@router.post("/chat", response_model=AITextOut)
async def chat(
  payload: AIChatIn,
  user: User = Depends(get_current_user),
  uow: UnitOfWork = Depends(get_uow),
  provider: AIProvider = Depends(get_ai_provider),
) -> AITextOut:
  context: dict = {"kind": "chat"}
  if payload.projectId:
    project, _ = await AuthorizationGate(uow).authorize(user.id, payload.projectId, Role.MEMBER, write=False)
    context.update(projectName=project.name, template=project.template)
  return AITextOut(text=await provider.generate(prompt=payload.message, context=context))
