"""Database models for the Universe chat engine."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean
from sqlalchemy import DateTime
from sqlalchemy import ForeignKey
from sqlalchemy import Index, UniqueConstraint
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column

from universe.shared.database import Base

MAIN_GROUP = "main"
CONFESSION_GROUP = "confession"
RESERVED_GROUPS = frozenset({MAIN_GROUP, CONFESSION_GROUP})

KIND_NORMAL = "normal"
KIND_CONFESSION = "confession"


class Message(Base):
    """A chat message filed under exactly one group of a community.

    ``group_name`` alone decides which view shows the message. Reactions and
    reports are stored as JSON mappings and rewritten as whole values so the
    change is picked up on update.
    """

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        doc="Server-assigned identifier, increasing with insertion order"
    )
    community: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="College the message was posted in"
    )
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Message text"
    )
    author_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Account id of the poster"
    )
    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Anonymous display name at time of posting"
    )
    display_color: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        doc="Display colour at time of posting"
    )
    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=KIND_NORMAL,
        doc="normal or confession"
    )
    group_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=MAIN_GROUP,
        doc="main, confession or a hashtag group tag"
    )
    reply_to_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("messages.id", ondelete="SET NULL"),
        nullable=True,
        doc="Message this one replies to"
    )
    reactions: Mapped[Dict[str, List[str]]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        doc="Reaction kind -> author ids"
    )
    reports: Mapped[Dict[str, str]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        doc="Reporter id -> reason"
    )
    flag_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Number of outstanding reports"
    )
    score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Aura score of the message"
    )
    hashtags: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Hashtags parsed from the content"
    )

    __table_args__ = (
        Index("ix_messages_community_group_created", "community", "group_name", "created_at"),
        Index("ix_messages_community_created", "community", "created_at"),
        Index("ix_messages_author_kind_created", "author_id", "kind", "created_at"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('kind', KIND_NORMAL)
        kwargs.setdefault('group_name', MAIN_GROUP)
        kwargs.setdefault('reactions', {})
        kwargs.setdefault('reports', {})
        kwargs.setdefault('flag_count', 0)
        kwargs.setdefault('score', 0)
        kwargs.setdefault('hashtags', [])
        super().__init__(**kwargs)

    @property
    def is_confession(self) -> bool:
        return self.kind == KIND_CONFESSION

    @property
    def total_reactions(self) -> int:
        return sum(len(authors) for authors in (self.reactions or {}).values())

    def to_record(self) -> Dict[str, Any]:
        """Plain mapping used for change-feed payloads."""
        return {
            "id": self.id,
            "community": self.community,
            "content": self.content,
            "author_id": self.author_id,
            "display_name": self.display_name,
            "display_color": self.display_color,
            "kind": self.kind,
            "group_name": self.group_name,
            "reply_to_id": self.reply_to_id,
            "reactions": dict(self.reactions or {}),
            "flag_count": self.flag_count,
            "score": self.score,
            "hashtags": list(self.hashtags or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class HashtagGroup(Base):
    """A hashtag room inside a community.

    ``tag`` is unique per community. ``message_count`` and
    ``last_activity_at`` are bumped in the same transaction that inserts a
    message into the group.
    """

    __tablename__ = "hashtag_groups"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        doc="Identifier, increasing with insertion order"
    )
    community: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="College the group belongs to"
    )
    tag: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Lowercase alphanumeric tag"
    )
    message_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Messages posted into the group"
    )
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        doc="Time of the most recent post"
    )
    owner_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="Account that explicitly created the group"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="Whether the group counts against its owner's limit"
    )

    __table_args__ = (
        UniqueConstraint("community", "tag", name="uq_hashtag_groups_community_tag"),
        Index("ix_hashtag_groups_owner_active", "owner_id", "is_active"),
        Index("ix_hashtag_groups_last_activity", "last_activity_at"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('message_count', 0)
        kwargs.setdefault('is_active', True)
        super().__init__(**kwargs)


class Profile(Base):
    """Account copy of a user's anonymous identity plus karma."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="Account id"
    )
    community: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        doc="Home college"
    )
    display_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        doc="Mirrored anonymous display name"
    )
    display_color: Mapped[Optional[str]] = mapped_column(
        String(16),
        nullable=True,
        doc="Mirrored display colour"
    )
    karma: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Reputation earned from posts and reactions"
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('karma', 0)
        super().__init__(**kwargs)
