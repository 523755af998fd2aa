"""Create the tables and an initial admin account (plus optional demo posts)."""
import argparse
import asyncio
import getpass
import time
from datetime import datetime, timezone

from sqlalchemy import select

from app.database import Base, async_session, engine
from app.models import Post, User
from app.security import hash_password
from app.services.post_service import make_slug


async def seed(username: str, email: str, password: str, fullname: str, demo_posts: int, reset: bool):
    start = time.perf_counter()

    async with engine.begin() as conn:
        if reset:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        existing = await session.execute(select(User).where(User.username == username))
        user = existing.scalar_one_or_none()
        if user is None:
            user = User(
                username=username,
                email=email,
                password=hash_password(password),
                fullname=fullname,
                roles=["Coach"],
            )
            session.add(user)
            await session.flush()
            print(f"  Created admin user {username!r} (id={user.id})")
        else:
            print(f"  Admin user {username!r} already exists (id={user.id})")

        now = datetime.now(timezone.utc)
        for i in range(demo_posts):
            title = f"Demo post {i + 1}"
            session.add(Post(
                title=title,
                description=f"Short description of demo post {i + 1}.",
                content=f"<p>This is the body of demo post {i + 1}.</p>",
                category="news",
                slug=make_slug(title, "news", now.date()),
                user_id=user.id,
                published=i % 2 == 0,
                featured=False,
                created_at=now,
            ))
        if demo_posts:
            print(f"  Created {demo_posts} demo post(s) (no images)")

        await session.commit()

    await engine.dispose()
    print(f"\nSeeding complete in {time.perf_counter() - start:.1f}s")


def main():
    parser = argparse.ArgumentParser(description="Seed the CMS database")
    parser.add_argument("--username", default="admin")
    parser.add_argument("--email", default="admin@example.com")
    parser.add_argument("--fullname", default="Site Admin")
    parser.add_argument("--password", help="Prompted for when omitted")
    parser.add_argument("--demo-posts", type=int, default=0, help="Number of demo posts to add")
    parser.add_argument("--reset", action="store_true", help="Drop all tables first")
    args = parser.parse_args()

    password = args.password or getpass.getpass("Admin password: ")
    asyncio.run(seed(args.username, args.email, password, args.fullname, args.demo_posts, args.reset))


if __name__ == "__main__":
    main()
