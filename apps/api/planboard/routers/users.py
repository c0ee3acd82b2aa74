from __future__ import annotations

from fastapi import APIRouter, Depends

from planboard.deps import get_current_user
from planboard.models import User
from planboard.schemas import UserOut

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)) -> UserOut:
  return UserOut(id=user.id, email=user.email, name=user.name, role=user.role, status=user.status)
