"""
Base Backend Abstract Class

Defines the remote API surface the export core consumes. Pagination,
authentication and HTTP-level rate-limit backoff are the backend's job;
the core only relies on the calls below being cancellable.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from ..models import Channel, Guild, Member, Role, User


class DiscordBackend(ABC):
    """
    Abstract remote API client.

    Usage:
        async with SomeBackend(token) as backend:
            guild = await backend.get_guild(guild_id)
            async for role in backend.get_guild_roles(guild_id):
                ...
    """

    @abstractmethod
    async def get_guild(self, guild_id: int) -> Guild:
        """Fetch a guild. Raises if it does not exist or is inaccessible."""
        pass

    @abstractmethod
    def get_guild_channels(self, guild_id: int) -> AsyncIterator[Channel]:
        """Stream all channels of a guild."""
        pass

    @abstractmethod
    def get_guild_roles(self, guild_id: int) -> AsyncIterator[Role]:
        """Stream all roles of a guild."""
        pass

    @abstractmethod
    async def get_guild_member(self, guild_id: int, member_id: int) -> Optional[Member]:
        """Fetch a guild member, or None if the user is not (or no longer) a member."""
        pass

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[User]:
        """Fetch a user, or None if the account does not exist."""
        pass

    async def connect(self) -> None:
        """Open any underlying connections."""
        pass

    async def disconnect(self) -> None:
        """Release any underlying connections."""
        pass

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
