"""
Shared guild member cache.

One instance per guild, shared by every channel export of that guild, so
a user mentioned in fifty channels costs one API round trip instead of
fifty.
"""

import logging
from typing import Dict, Optional

from .backends.base import DiscordBackend
from .concurrency import SharedFetches
from .models import Member, User
from .stats import ApiCallStatistics

logger = logging.getLogger(__name__)


class MemberCache:
    """
    Concurrency-safe cache of guild members.

    Lookups are tri-state: an id missing from the table has not been
    fetched yet, an id mapped to None is confirmed absent (left the guild
    and deleted), anything else is a resolved member. Absent results are
    never fetched again for the lifetime of the cache.
    """

    def __init__(
        self,
        backend: DiscordBackend,
        guild_id: int,
        stats: Optional[ApiCallStatistics] = None
    ):
        self.backend = backend
        self.guild_id = guild_id
        self.stats = stats

        self._members: Dict[int, Optional[Member]] = {}
        self._fetches = SharedFetches()

    async def resolve(self, member_id: int, fallback_user: Optional[User] = None) -> Optional[Member]:
        """
        Get a member, fetching it from the API on first use.

        Args:
            member_id: User id to resolve
            fallback_user: User data already at hand (e.g. from a message
                payload), used instead of a second API call when the user
                is no longer a member

        Returns:
            The member, a synthesized fallback member, or None
        """
        if member_id in self._members:
            return self._members[member_id]

        return await self._fetches.run(
            member_id,
            lambda: self._fetch(member_id, fallback_user)
        )

    async def _fetch(self, member_id: int, fallback_user: Optional[User]) -> Optional[Member]:
        # Another resolver may have finished while this task was being scheduled
        if member_id in self._members:
            return self._members[member_id]

        member = await self._call("get_guild_member", self.backend.get_guild_member(self.guild_id, member_id))

        # User may have left the guild since they were mentioned
        if member is None:
            user = fallback_user
            if user is None:
                user = await self._call("get_user", self.backend.get_user(member_id))

            # User may have been deleted as well
            if user is not None:
                member = Member.create_fallback(user)
            else:
                logger.debug(f"User {member_id} no longer exists")

        self._members[member_id] = member
        return member

    async def _call(self, endpoint: str, coro):
        if self.stats is None:
            return await coro
        with self.stats.track(endpoint):
            return await coro

    def peek(self, member_id: int) -> Optional[Member]:
        """Cache-only lookup; never triggers a fetch."""
        return self._members.get(member_id)

    def is_resolved(self, member_id: int) -> bool:
        """True once the id has a cached result, including a negative one."""
        return member_id in self._members

    @property
    def cached_member_count(self) -> int:
        return len(self._members)

    def get_stats(self) -> Dict[str, int]:
        """Get cache statistics."""
        return {
            "cached": len(self._members),
            "absent": sum(1 for m in self._members.values() if m is None),
            "pending": len(self._fetches)
        }
