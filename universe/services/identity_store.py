"""Anonymous display identities and their daily rotation.

Every user posts under a generated name and colour that rotate at each purge
boundary. The identity exists in two places: a local copy kept in the cache
(what the client renders) and an account copy mirrored on the profile row.
When the two disagree the local copy wins and is written back to the
account.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import replace
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Set

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.services.base import BaseService
from universe.services.exceptions import ServiceError
from universe.services.exceptions import StoreUnavailableError
from universe.services.models import Identity
from universe.shared.date_provider import PURGE_CYCLE
from universe.shared.date_provider import current_boundary
from universe.shared.date_provider import get_date_provider
from universe.shared.date_provider import next_boundary
from universe.shared.redis_client import CacheManager
from universe.web.crud import ProfileOperations

logger = logging.getLogger(__name__)

ADJECTIVES = [
    "Sus", "Based", "Cringe", "Goated", "Mid", "Salty", "Woke", "Dank", "Ghosted", "Simp",
    "Glitchy", "Neon", "Cyber", "Toxic", "Savage", "Moody", "Hype", "Chill", "Vibing",
]

NOUNS = [
    "NPC", "MainCharacter", "Backbencher", "Topper", "Dropout", "Intern", "Fresher", "Senior",
    "Influencer", "Gamer", "Hacker", "Bot", "Stan", "Chad", "Karen", "Zoomer", "Doomer",
]

COLORS = [
    "#39FF14",  # green
    "#FF00FF",  # pink
    "#00FFFF",  # cyan
    "#FFFF00",  # yellow
    "#FF3131",  # red
    "#1F51FF",  # blue
]

IdentityListener = Callable[[Identity], None]


def generate_identity(rng: Optional[random.Random] = None, boundary: Optional[datetime] = None) -> Identity:
    """Draw a random ``"<Adjective> <Noun>"`` name and a neon colour."""
    rng = rng or random.Random()
    return Identity(
        display_name=f"{rng.choice(ADJECTIVES)} {rng.choice(NOUNS)}",
        display_color=rng.choice(COLORS),
        boundary=boundary,
    )


class BoundaryScheduler(Protocol):
    """Runs a coroutine function at a wall-clock instant."""

    def schedule_at(self, when: datetime, callback: Callable[[], Awaitable[None]]) -> Any:
        ...

    def cancel(self, handle: Any) -> None:
        ...


class AsyncioBoundaryScheduler:
    """BoundaryScheduler on the running event loop."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def schedule_at(self, when: datetime, callback: Callable[[], Awaitable[None]]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        delay = max(0.0, (when - get_date_provider().utcnow()).total_seconds())
        return loop.call_later(delay, self._spawn, callback)

    def _spawn(self, callback: Callable[[], Awaitable[None]]) -> None:
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


class IdentityStore(BaseService):
    """Holds one user's identity and rotates it at every purge boundary."""

    def __init__(
        self,
        user_id: str,
        cache: CacheManager,
        session_maker: async_sessionmaker[AsyncSession],
        rng: Optional[random.Random] = None,
        profile_ops: Optional[ProfileOperations] = None
    ):
        super().__init__(session_maker, service_name="IdentityStore")
        self.user_id = user_id
        self._cache = cache
        self._rng = rng or random.Random()
        self._profiles = profile_ops or ProfileOperations()
        self._listeners: List[IdentityListener] = []
        self._scheduler: Optional[BoundaryScheduler] = None
        self._rotation_handle: Any = None

    def add_listener(self, listener: IdentityListener) -> None:
        """Call ``listener`` with every newly rotated identity."""
        self._listeners.append(listener)

    def remove_listener(self, listener: IdentityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def rotating(self) -> bool:
        return self._rotation_handle is not None

    async def _read_local(self) -> Optional[Identity]:
        try:
            data = await self._cache.get(self.user_id)
        except RedisError as e:
            self._log_error("read_identity", e, user_id=self.user_id)
            raise StoreUnavailableError("read_identity") from e
        return Identity.from_dict(data) if data else None

    async def _write_local(self, identity: Identity) -> None:
        try:
            await self._cache.set(self.user_id, identity.to_dict())
        except RedisError as e:
            self._log_error("write_identity", e, user_id=self.user_id)
            raise StoreUnavailableError("write_identity") from e

    async def _write_account(self, identity: Identity) -> None:
        async with self._transaction("save_identity", user_id=self.user_id) as session:
            await self._profiles.save_identity(
                session, self.user_id, identity.display_name, identity.display_color
            )

    def _generate(self, boundary: Optional[datetime] = None) -> Identity:
        current = current_boundary(self._now())
        return generate_identity(self._rng, max(boundary, current) if boundary else current)

    def _is_stale(self, identity: Identity) -> bool:
        """Whether ``identity`` was issued before the current purge cycle."""
        return identity.boundary is None or identity.boundary < current_boundary(self._now())

    async def get(self) -> Identity:
        """Return the local identity for the current purge cycle.

        One is generated and stored on first use. An identity left over from
        an earlier cycle, because nothing was rotating when the boundary
        passed, is regenerated before it is returned.
        """
        identity = await self._read_local()
        if identity is None:
            identity = self._generate()
            await self._write_local(identity)
            self._log_operation("identity_created", user_id=self.user_id)
        elif self._is_stale(identity):
            identity = await self.regenerate()
        return identity

    async def regenerate(self, boundary: Optional[datetime] = None) -> Identity:
        """Replace the identity everywhere and notify listeners.

        Args:
            boundary: Purge boundary the new identity belongs to. The later of
                this and the current boundary is used.

        Raises:
            StoreUnavailableError: If the cache or the profile write fails
        """
        identity = self._generate(boundary)
        await self._write_local(identity)
        await self._write_account(identity)
        self._log_operation("identity_rotated", user_id=self.user_id)

        for listener in list(self._listeners):
            listener(identity)
        return identity

    async def reconcile(self, account_copy: Optional[Identity]) -> Identity:
        """Bring the local and account copies into agreement.

        The local copy wins unless it belongs to an earlier purge cycle, in
        which case both copies are regenerated. Without a local copy the
        account copy is adopted for the current cycle; with neither, a new
        identity is generated for both.
        """
        local = await self._read_local()

        if local is None:
            if account_copy is not None:
                adopted = replace(account_copy, boundary=current_boundary(self._now()))
                await self._write_local(adopted)
                return adopted
            local = await self.get()
            await self._write_account(local)
            return local

        if self._is_stale(local):
            return await self.regenerate()

        if not local.same_look(account_copy):
            self._logger.info(f"Account identity of {self.user_id} out of date, overwriting")
            await self._write_account(local)
        return local

    def start_rotation(self, scheduler: Optional[BoundaryScheduler] = None) -> None:
        """Regenerate at the next purge boundary and at every one after it."""
        if self.rotating:
            logger.warning(f"Identity rotation for {self.user_id} is already running")
            return

        self._scheduler = scheduler or AsyncioBoundaryScheduler()
        self._arm()

    def stop_rotation(self) -> None:
        if self._rotation_handle is not None and self._scheduler is not None:
            self._scheduler.cancel(self._rotation_handle)
        self._rotation_handle = None

    def _arm(self, when: Optional[datetime] = None) -> None:
        when = when or next_boundary(self._now())
        self._rotation_handle = self._scheduler.schedule_at(when, partial(self._rotate, when))
        logger.debug(f"Identity rotation for {self.user_id} armed for {when.isoformat()}")

    async def _rotate(self, boundary: datetime) -> None:
        # The timer may fire just before ``boundary``; the new identity still belongs to it
        if not self.rotating:
            return

        try:
            await self.regenerate(boundary)
        except ServiceError as e:
            logger.error(f"Identity rotation for {self.user_id} failed: {e}")

        if self.rotating:
            self._arm(max(boundary + PURGE_CYCLE, next_boundary(self._now())))
