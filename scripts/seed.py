# scripts/seed.py

import argparse
import asyncio
import os
import sys
from datetime import timedelta

from dotenv import load_dotenv

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# ✅ Load environment variables
load_dotenv()

from core.database import async_session_maker, create_db_and_tables, engine  # noqa: E402
from core.security import hash_password  # noqa: E402
from models.models import (  # noqa: E402
    Project, ProjectMember, ProjectRole, Subscription, SubscriptionPlan,
    SubscriptionStatus, Task, TaskPriority, TaskStatus, User, utcnow,
)
from services.store import SQLStore  # noqa: E402

DEMO_PASSWORD = "Demo@1234"


async def _get_or_create_user(store: SQLStore, email: str, name: str, password: str) -> User:
    user = await store.get_user_by_email(email)
    if user:
        return user
    user = await store.create_user(User(email=email, name=name, password_hash=hash_password(password)))
    print(f"✅ Added user {email}")
    return user


async def seed_dev_data() -> None:
    """Seed development database with a demo project, members and tasks."""
    print("🌱 Seeding development data...")
    await create_db_and_tables()
    store = SQLStore(async_session_maker)

    # -----------------------------
    # 👑 Project owner + members
    # -----------------------------
    owner = await _get_or_create_user(store, "owner@demo.com", "Olivia Owner", DEMO_PASSWORD)
    editor = await _get_or_create_user(store, "editor@demo.com", "Eddie Editor", DEMO_PASSWORD)
    member = await _get_or_create_user(store, "member@demo.com", "Mia Member", DEMO_PASSWORD)

    if not await store.get_subscription(owner.id):
        await store.save_subscription(
            Subscription(user_id=owner.id, plan=SubscriptionPlan.STARTER, status=SubscriptionStatus.TRIAL)
        )

    if await store.list_projects_for_user(owner.id):
        print("ℹ️ Demo project already present, skipping.")
        return

    # -----------------------------
    # 📁 Demo project
    # -----------------------------
    project = await store.create_project(
        Project(
            name="Website Relaunch",
            description="Demo project seeded for local development.",
            due_date=utcnow() + timedelta(days=30),
            creator_id=owner.id,
        )
    )
    async with async_session_maker() as session:
        async with session.begin():
            session.add(ProjectMember(project_id=project.id, user_id=editor.id, role=ProjectRole.EDITOR))
            session.add(ProjectMember(project_id=project.id, user_id=member.id, role=ProjectRole.MEMBER))
    print("✅ Created demo project with members")

    # -----------------------------
    # ✅ Tasks
    # -----------------------------
    samples = [
        ("Draft sitemap", TaskStatus.DONE, TaskPriority.HIGH, editor.id),
        ("Write landing copy", TaskStatus.IN_PROGRESS, TaskPriority.MEDIUM, member.id),
        ("Pick hosting provider", TaskStatus.TODO, TaskPriority.LOW, None),
    ]
    for title, task_status, priority, assignee_id in samples:
        await store.create_task(
            Task(
                project_id=project.id,
                creator_id=owner.id,
                assignee_id=assignee_id,
                title=title,
                status=task_status,
                priority=priority,
                due_date=utcnow() + timedelta(days=7),
                completion_note="Approved by the team." if task_status == TaskStatus.DONE else None,
            )
        )
    print("✅ Added sample tasks")
    print("🌱 Development data seeding complete.")


async def seed_staging_data() -> None:
    """Seed staging database with minimal safe data."""
    print("🌱 Seeding staging data...")
    await create_db_and_tables()
    store = SQLStore(async_session_maker)
    await _get_or_create_user(store, "staging-admin@nudge.app", "Staging Admin", "Staging@1234")
    print("🌱 Staging data seeding complete.")


async def main(env: str) -> None:
    try:
        if env == "dev":
            await seed_dev_data()
        elif env == "staging":
            await seed_staging_data()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the Nudge database.")
    parser.add_argument(
        "--env",
        choices=["dev", "staging"],
        default="dev",
        help="Select environment to seed (dev or staging)",
    )
    args = parser.parse_args()
    asyncio.run(main(args.env))
