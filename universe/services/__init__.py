"""Universe chat services package.

Business rules of the chat engine: routing posts into groups, the hashtag
group registry, the confession quota, reactions and reports, moderator
tools, purge sweeps, realtime change feed, presence and anonymous identities.
"""

from .confession_quota import ConfessionQuotaTracker
from .feed import MessageFeed
from .group_registry import GroupRegistry
from .identity_store import AsyncioBoundaryScheduler, IdentityStore
from .message_router import MessageRouter, resolve_route
from .moderation import ModerationService
from .presence import PresenceTracker
from .purge_sweeper import PurgeScheduler, PurgeSweeper
from .reactions import ReactionFlagAggregator, apply_reaction_toggle
from .realtime import ChangeFeed

__all__ = [
    "AsyncioBoundaryScheduler",
    "ChangeFeed",
    "ConfessionQuotaTracker",
    "GroupRegistry",
    "IdentityStore",
    "MessageFeed",
    "MessageRouter",
    "ModerationService",
    "PresenceTracker",
    "PurgeScheduler",
    "PurgeSweeper",
    "ReactionFlagAggregator",
    "apply_reaction_toggle",
    "resolve_route",
]
