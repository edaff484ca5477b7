"""
Per-channel export context.

The facade that format writers talk to: member, channel and role
lookups, date formatting and asset URL resolution for one channel
export. Guild-wide state (the member cache, pre-fetched channels and
roles) is injected by the batch exporter so parallel exports of the
same guild share it.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union
from urllib.parse import quote

import aiohttp

from .backends.base import DiscordBackend
from .backends.http import ResilientTransport, Transport
from .errors import TransferError
from .media import AssetDownloader
from .member_cache import MemberCache
from .models import AssetStatus, Channel, ExportRequest, Member, Role, User
from .stats import NULL_STATUS, ApiCallStatistics, StatusLogger
from .storage import ReferenceEntityWriter

logger = logging.getLogger(__name__)


DEFAULT_LOCALE = "en-US"

# Short date, long date, short time, long time
LOCALE_PATTERNS: Dict[str, Dict[str, str]] = {
    "en-US": {"d": "%m/%d/%Y", "D": "%A, %B %d, %Y", "t": "%I:%M %p", "T": "%I:%M:%S %p"},
    "en-GB": {"d": "%d/%m/%Y", "D": "%d %B %Y", "t": "%H:%M", "T": "%H:%M:%S"},
    "de-DE": {"d": "%d.%m.%Y", "D": "%A, %d. %B %Y", "t": "%H:%M", "T": "%H:%M:%S"},
    "fr-FR": {"d": "%d/%m/%Y", "D": "%A %d %B %Y", "t": "%H:%M", "T": "%H:%M:%S"},
    "ru-RU": {"d": "%d.%m.%Y", "D": "%d %B %Y", "t": "%H:%M", "T": "%H:%M:%S"},
    "ja-JP": {"d": "%Y/%m/%d", "D": "%Y年%m月%d日", "t": "%H:%M", "T": "%H:%M:%S"},
}
ISO_PATTERNS = {"d": "%Y-%m-%d", "D": "%Y-%m-%d", "t": "%H:%M", "T": "%H:%M:%S"}

# Composite patterns: general (g/G) and full (f/F)
COMPOSITE_PATTERNS = {"g": ("d", "t"), "G": ("d", "T"), "f": ("D", "t"), "F": ("D", "T")}


def locale_patterns(locale: Optional[str]) -> Dict[str, str]:
    """Resolve date patterns for a locale tag, by exact tag then by language."""
    locale = (locale or DEFAULT_LOCALE).replace("_", "-")
    for tag, patterns in LOCALE_PATTERNS.items():
        if tag.lower() == locale.lower():
            return patterns
    language = locale.split("-")[0].lower()
    for tag, patterns in LOCALE_PATTERNS.items():
        if tag.split("-")[0].lower() == language:
            return patterns
    return ISO_PATTERNS


def resolve_date_pattern(fmt: str, locale: Optional[str]) -> str:
    """Expand a named pattern (g, G, d, D, t, T, f, F) or pass a strftime pattern through."""
    patterns = locale_patterns(locale)
    if fmt in patterns:
        return patterns[fmt]
    if fmt in COMPOSITE_PATTERNS:
        date_key, time_key = COMPOSITE_PATTERNS[fmt]
        return f"{patterns[date_key]} {patterns[time_key]}"
    return fmt


@dataclass(frozen=True)
class ResolvedAsset:
    """An asset reference ready to embed, plus how it was obtained."""
    url: str
    status: AssetStatus = AssetStatus.SUCCESS

    @property
    def was_skipped(self) -> bool:
        return self.status is AssetStatus.SKIPPED

    @property
    def was_failed(self) -> bool:
        return self.status is AssetStatus.FAILED


class ExportContext:
    """
    State and helpers for exporting one channel.

    Usage:
        context = ExportContext(backend, request, member_cache=cache)
        context.populate_channels_and_roles(channels, roles)
        await context.populate_member(message.author)
        color = context.try_get_user_color(message.author.id)
        src = await context.resolve_asset_url(attachment.url)
        await context.close()
    """

    def __init__(
        self,
        backend: DiscordBackend,
        request: ExportRequest,
        member_cache: Optional[MemberCache] = None,
        transport: Optional[Transport] = None,
        stats: Optional[ApiCallStatistics] = None,
        status: Optional[StatusLogger] = None
    ):
        self.backend = backend
        self.request = request
        self.member_cache = member_cache
        self.stats = stats
        self.status = status or NULL_STATUS

        # Local view for synchronous lookups by format writers
        self._members: Dict[int, Optional[Member]] = {}
        self._channels: Dict[int, Channel] = {}
        self._roles: Dict[int, Role] = {}

        self._owns_transport = transport is None
        self._transport = transport
        self._assets: Optional[AssetDownloader] = None

        self.reference_writer: Optional[ReferenceEntityWriter] = None
        if request.normalize_json:
            self.reference_writer = ReferenceEntityWriter(self)

    # ========== Dates ==========

    def normalize_date(self, instant: datetime) -> datetime:
        """Convert to UTC or to local time, per the request."""
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        if self.request.utc_normalization:
            return instant.astimezone(timezone.utc)
        return instant.astimezone()

    def format_date(self, instant: datetime, fmt: str = "g") -> str:
        pattern = resolve_date_pattern(fmt, self.request.locale)
        return self.normalize_date(instant).strftime(pattern)

    # ========== Channels and roles ==========

    def populate_channels_and_roles(self, channels: Iterable[Channel], roles: Iterable[Role]) -> None:
        """Install channel and role tables fetched once for the whole guild."""
        for channel in channels:
            self._channels[channel.id] = channel
        for role in roles:
            self._roles[role.id] = role

    async def fetch_channels_and_roles(self) -> None:
        """Fetch channel and role tables, unless they were already populated."""
        if self._channels or self._roles:
            return

        guild_id = self.request.guild.id
        self.status.log("Fetching channels and roles...")
        async for channel in self.backend.get_guild_channels(guild_id):
            self._channels[channel.id] = channel
        async for role in self.backend.get_guild_roles(guild_id):
            self._roles[role.id] = role

    # ========== Members ==========

    async def populate_member(self, user_or_id: Union[User, int]) -> None:
        """
        Make a member available to ``try_get_member``.

        Members cannot be listed in bulk, so they are resolved on first
        mention. Passing a User lets a departed member fall back to the
        user data already at hand instead of a second API call.
        """
        if isinstance(user_or_id, User):
            member_id, fallback_user = user_or_id.id, user_or_id
        else:
            member_id, fallback_user = user_or_id, None

        if member_id in self._members:
            return

        if self.member_cache is not None:
            member = await self.member_cache.resolve(member_id, fallback_user)
        else:
            member = await self._fetch_member(member_id, fallback_user)

        self._members[member_id] = member

    async def _fetch_member(self, member_id: int, fallback_user: Optional[User]) -> Optional[Member]:
        guild_id = self.request.guild.id

        member = await self._call("get_guild_member", self.backend.get_guild_member(guild_id, member_id))
        if member is not None:
            return member

        user = fallback_user
        if user is None:
            user = await self._call("get_user", self.backend.get_user(member_id))
        return Member.create_fallback(user) if user is not None else None

    async def _call(self, endpoint: str, coro):
        if self.stats is None:
            return await coro
        with self.stats.track(endpoint):
            return await coro

    def try_get_member(self, member_id: int) -> Optional[Member]:
        return self._members.get(member_id)

    def try_get_channel(self, channel_id: int) -> Optional[Channel]:
        return self._channels.get(channel_id)

    def try_get_role(self, role_id: int) -> Optional[Role]:
        return self._roles.get(role_id)

    def get_user_roles(self, user_id: int) -> List[Role]:
        """Roles of a user, most senior first."""
        member = self.try_get_member(user_id)
        if member is None:
            return []
        roles = [r for r in (self.try_get_role(rid) for rid in member.role_ids) if r is not None]
        return sorted(roles, key=lambda r: r.position, reverse=True)

    def try_get_user_color(self, user_id: int) -> Optional[int]:
        """Color of the user's most senior colored role."""
        for role in self.get_user_roles(user_id):
            if role.color is not None:
                return role.color
        return None

    def should_download_attachments(self, author: User) -> bool:
        return not (self.request.skip_bot_attachments and author.is_bot)

    # ========== Assets ==========

    @property
    def assets(self) -> AssetDownloader:
        if self._assets is None:
            if self._transport is None:
                self._transport = ResilientTransport(stats=self.stats)
            self._assets = AssetDownloader(
                self.request.assets_path,
                self._transport,
                reuse=self.request.reuse_assets,
                nested_paths=self.request.nested_media_paths,
                status=self.status
            )
        return self._assets

    async def resolve_asset(self, url: str) -> ResolvedAsset:
        """
        Resolve an asset URL to the reference a writer should embed.

        Skipped and failed assets resolve to the original URL.
        """
        if not self.request.download_assets:
            return ResolvedAsset(url)

        try:
            outcome = await self.assets.materialize(url)
        except (TransferError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            # A broken asset must not take the export down with it
            logger.warning(f"Asset resolution failed for {url}: {e}")
            return ResolvedAsset(url, AssetStatus.FAILED)

        if not outcome.ok:
            return ResolvedAsset(url, outcome.status)

        return ResolvedAsset(self._embeddable_path(outcome.path))

    async def resolve_asset_url(self, url: str) -> str:
        return (await self.resolve_asset(url)).url

    def _embeddable_path(self, path: Path) -> str:
        absolute = os.path.abspath(path)
        try:
            relative = os.path.relpath(absolute, os.path.abspath(self.request.output_dir))
        except ValueError:
            # Different drives
            relative = None

        # Relative keeps the export portable, unless the asset lies outside it
        if relative is None or relative == ".." or relative.startswith((".." + os.sep, "../")):
            chosen = absolute
        else:
            chosen = relative

        if self.request.export_format.is_html:
            return quote(chosen.replace(os.sep, "/"), safe="/:")
        return chosen

    # ========== Lifecycle ==========

    async def close(self) -> None:
        """Flush reference tables and release owned resources."""
        try:
            if self.reference_writer is not None:
                await self.reference_writer.close()
        finally:
            if self._owns_transport and isinstance(self._transport, ResilientTransport):
                await self._transport.disconnect()

    def get_stats(self) -> Dict[str, int]:
        """Get context statistics."""
        stats = {
            "members": len(self._members),
            "channels": len(self._channels),
            "roles": len(self._roles)
        }
        if self._assets is not None:
            stats.update(self._assets.get_stats())
        return stats
