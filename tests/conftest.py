"""Shared fakes for the DCExport test suite."""

import asyncio
from collections import Counter
from typing import Dict, List, Optional

import pytest

from dcexport.backends.base import DiscordBackend
from dcexport.backends.http import FetchedResource, Transport
from dcexport.errors import TransferError
from dcexport.models import Channel, ChannelKind, Guild, Member, Role, User

PNG_BODY = b"\x89PNG\r\n\x1a\n" + b"\x00" * 256


def make_user(user_id: int, name: str = None, is_bot: bool = False) -> User:
    name = name or f"user{user_id}"
    return User(
        id=user_id,
        is_bot=is_bot,
        discriminator=None,
        name=name,
        display_name=name.title(),
        avatar_url=f"https://cdn.discordapp.com/avatars/{user_id}/abc.png"
    )


def make_channel(channel_id: int, guild_id: int = 1, name: str = None,
                 last_message_id: Optional[int] = 2 ** 62,
                 kind: ChannelKind = ChannelKind.GUILD_TEXT_CHAT) -> Channel:
    return Channel(
        id=channel_id,
        kind=kind,
        guild_id=guild_id,
        name=name or f"channel-{channel_id}",
        last_message_id=last_message_id
    )


class FakeBackend(DiscordBackend):
    """In-memory backend that counts calls and can add latency."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.guilds: Dict[int, Guild] = {}
        self.channels: Dict[int, List[Channel]] = {}
        self.roles: Dict[int, List[Role]] = {}
        self.members: Dict[int, Member] = {}
        self.users: Dict[int, User] = {}
        self.calls = Counter()

    async def _pause(self):
        if self.latency:
            await asyncio.sleep(self.latency)

    async def get_guild(self, guild_id: int) -> Guild:
        self.calls["get_guild"] += 1
        await self._pause()
        return self.guilds.get(guild_id) or Guild(id=guild_id, name=f"Guild {guild_id}")

    async def get_guild_channels(self, guild_id: int):
        self.calls["get_guild_channels"] += 1
        await self._pause()
        for channel in self.channels.get(guild_id, []):
            yield channel

    async def get_guild_roles(self, guild_id: int):
        self.calls["get_guild_roles"] += 1
        await self._pause()
        for role in self.roles.get(guild_id, []):
            yield role

    async def get_guild_member(self, guild_id: int, member_id: int) -> Optional[Member]:
        self.calls["get_guild_member"] += 1
        await self._pause()
        return self.members.get(member_id)

    async def get_user(self, user_id: int) -> Optional[User]:
        self.calls["get_user"] += 1
        await self._pause()
        return self.users.get(user_id)


class FakeTransport(Transport):
    """Serves canned responses and records every fetched URL."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.responses: Dict[str, FetchedResource] = {}
        self.failures: Dict[str, str] = {}
        self.default: Optional[FetchedResource] = None
        self.fetched: List[str] = []

    def serve(self, url: str, body: bytes = PNG_BODY, content_type: str = "image/png") -> None:
        self.responses[url] = FetchedResource(url=url, body=body, content_type=content_type)

    async def fetch(self, url: str) -> FetchedResource:
        self.fetched.append(url)
        if self.latency:
            await asyncio.sleep(self.latency)
        if url in self.failures:
            raise TransferError(url, self.failures[url], status=500)
        resource = self.responses.get(url) or self.default
        if resource is None:
            raise TransferError(url, "HTTP 404", status=404)
        return FetchedResource(url=url, body=resource.body, content_type=resource.content_type)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def slow_backend():
    return FakeBackend(latency=0.05)


@pytest.fixture
def transport():
    return FakeTransport()
