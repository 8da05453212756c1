"""Service layer models for the chat engine.

Immutable dataclasses passed between services and their callers. ORM rows
never leave the service layer; callers only see these value objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from typing import Any

from universe.services.exceptions import ValidationError
from universe.web.models import CONFESSION_GROUP
from universe.web.models import KIND_CONFESSION
from universe.web.models import HashtagGroup
from universe.web.models import Message
from universe.web.models import Profile


class ReactionKind(str, Enum):
    """The closed set of reactions a message can receive."""

    FIRE = "fire"
    LAUGH = "laugh"
    CRY = "cry"
    SKULL = "skull"


class ChangeType(str, Enum):
    """Row events published on the change feed."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class RouteDecision:
    """Where a post is filed."""

    group_name: str
    kind: str

    def __post_init__(self):
        if self.kind == KIND_CONFESSION and self.group_name != CONFESSION_GROUP:
            raise ValidationError("group_name", "Confessions can only go to the confession group")


@dataclass(frozen=True)
class PostRequest:
    """Everything the router needs to file one message."""

    community: str
    author_id: str
    content: str
    display_name: str
    display_color: str
    confession_mode: bool = False
    active_filter: str = "all"
    reply_to_id: int | None = None


@dataclass(frozen=True)
class GroupRef:
    """Snapshot of a hashtag group."""

    id: int
    community: str
    tag: str
    message_count: int
    last_activity_at: datetime
    owner_id: str | None = None
    is_active: bool = True

    @classmethod
    def from_row(cls, group: HashtagGroup) -> GroupRef:
        return cls(
            id=group.id,
            community=group.community,
            tag=group.tag,
            message_count=group.message_count,
            last_activity_at=group.last_activity_at,
            owner_id=group.owner_id,
            is_active=group.is_active,
        )

    @property
    def filter_key(self) -> str:
        """View filter that opens this group."""
        return f"#{self.tag}"


@dataclass(frozen=True)
class MessageRef:
    """Snapshot of a stored message."""

    id: int
    community: str
    content: str
    author_id: str
    display_name: str
    display_color: str
    kind: str
    group_name: str
    created_at: datetime
    reply_to_id: int | None = None
    reactions: dict[str, list[str]] = field(default_factory=dict)
    flag_count: int = 0
    score: int = 0
    hashtags: list[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, message: Message) -> MessageRef:
        return cls(
            id=message.id,
            community=message.community,
            content=message.content,
            author_id=message.author_id,
            display_name=message.display_name,
            display_color=message.display_color,
            kind=message.kind,
            group_name=message.group_name,
            created_at=message.created_at,
            reply_to_id=message.reply_to_id,
            reactions={kind: list(authors) for kind, authors in (message.reactions or {}).items()},
            flag_count=message.flag_count,
            score=message.score,
            hashtags=list(message.hashtags or []),
        )

    @property
    def total_reactions(self) -> int:
        return sum(len(authors) for authors in self.reactions.values())


@dataclass(frozen=True)
class ReportOutcome:
    """Result of submitting a report."""

    message_id: int
    flag_count: int
    deleted: bool


@dataclass
class SweepReport:
    """What one sweep removed and which steps failed."""

    community: str
    groups_inactive_deleted: int = 0
    messages_purged: int = 0
    groups_purged: int = 0
    boundary: datetime | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class Identity:
    """Anonymous display identity for one purge cycle."""

    display_name: str
    display_color: str
    boundary: datetime | None = None

    def __post_init__(self):
        if not self.display_name.strip():
            raise ValidationError("display_name", "Display name is required")
        if not self.display_color.strip():
            raise ValidationError("display_color", "Display colour is required")

    def same_look(self, other: Identity | None) -> bool:
        """Whether two identities render identically."""
        return (
            other is not None
            and self.display_name == other.display_name
            and self.display_color == other.display_color
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "display_name": self.display_name,
            "display_color": self.display_color,
            "boundary": self.boundary.isoformat() if self.boundary else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Identity:
        boundary = data.get("boundary")
        return cls(
            display_name=data["display_name"],
            display_color=data["display_color"],
            boundary=datetime.fromisoformat(boundary) if boundary else None,
        )


@dataclass(frozen=True)
class ProfileRef:
    """Snapshot of an account profile."""

    id: str
    community: str | None
    display_name: str | None
    display_color: str | None
    karma: int

    @classmethod
    def from_row(cls, profile: Profile) -> ProfileRef:
        return cls(
            id=profile.id,
            community=profile.community,
            display_name=profile.display_name,
            display_color=profile.display_color,
            karma=profile.karma,
        )


@dataclass(frozen=True)
class CommunityStats:
    """Moderator dashboard counts for one community."""

    community: str
    users: int = 0
    messages: int = 0
    confessions: int = 0
    flagged: int = 0
    active_groups: int = 0
    messages_this_cycle: int = 0


@dataclass(frozen=True)
class BanOutcome:
    """What banning a user removed."""

    user_id: str
    message_ids: tuple[int, ...] = ()
    profile_deleted: bool = False


@dataclass(frozen=True)
class ChangeEvent:
    """One row change delivered by the change feed."""

    table: str
    type: ChangeType
    record: dict[str, Any]
