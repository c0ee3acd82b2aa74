from __future__ import annotations

import asyncio
import os

from sqlalchemy import select

from planboard.config import settings
from planboard.db import Store
from planboard.models import ApiToken, Project, ProjectMember, Task, User
from planboard.security import api_token_hash, api_token_new
from planboard.tasks.ordering import key_between


async def seed(store: Store) -> list[str]:
  """Create the demo users (and optionally a demo project); return new token lines."""
  boot_lines: list[str] = []
  async with store.session() as db:
    users: dict[str, User] = {}
    for email, name, role in (
      ("owner@planboard.local", "Olivia Owner", "admin"),
      ("manager@planboard.local", "Max Manager", "user"),
      ("member@planboard.local", "Mia Member", "user"),
    ):
      u = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
      if not u:
        u = User(email=email, name=name, role=role)
        db.add(u)
        await db.flush()
        token = api_token_new()
        db.add(ApiToken(user_id=u.id, name="seed", token_hash=api_token_hash(token)))
        boot_lines.append(f"{email} token={token}")
      users[email] = u

    if os.getenv("SEED_DEMO_PROJECT", "").strip().lower() in ("1", "true", "yes", "y"):
      owner = users["owner@planboard.local"]
      name = "Planboard Demo"
      p = (await db.execute(select(Project).where(Project.name == name, Project.owner_id == owner.id))).scalar_one_or_none()
      if not p:
        p = Project(name=name, description="Sample project", owner_id=owner.id, template="scrum", visibility="private")
        db.add(p)
        await db.flush()
        db.add(ProjectMember(project_id=p.id, user_id=users["manager@planboard.local"].id, role="manager"))
        db.add(ProjectMember(project_id=p.id, user_id=users["member@planboard.local"].id, role="member"))
        position = None
        for title in ("Write onboarding guide", "Set up CI", "Plan first sprint"):
          position = key_between(position, None, gap=settings.task_position_gap)
          db.add(Task(project_id=p.id, reporter_id=owner.id, title=title, status="backlog", position=position))
    await db.commit()
  return boot_lines


async def main() -> None:
  store = Store(settings.database_url)
  await store.open()
  try:
    for line in await seed(store):
      print(line)
  finally:
    await store.close()


if __name__ == "__main__":
  asyncio.run(main())
