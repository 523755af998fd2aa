from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def avatar_path(user_id: int, version: int) -> str:
    """Object key of a user's avatar; the version busts client caches."""
    return f"users/{user_id}/pfp_?v{version}.webp"


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # bcrypt hash, never the plain password
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    fullname: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    roles: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    pfp_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    posts: Mapped[List["Post"]] = relationship(
        "Post", back_populates="author", lazy="noload", passive_deletes=True
    )

    @property
    def avatar_path(self) -> str:
        return avatar_path(self.id, self.pfp_version)


# ---------------------------------------------------------------------------
# Post
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    __table_args__ = (
        # Public feed
        Index("ix_posts_published", "published"),
        # Featured lookup during make-featured swaps
        Index("ix_posts_featured", "featured"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # Not unique: same day + category + title collide
    slug: Mapped[str] = mapped_column(String(400), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # lazy="noload"; services load the author explicitly with joinedload
    author: Mapped[Optional["User"]] = relationship(
        "User", back_populates="posts", lazy="noload"
    )
