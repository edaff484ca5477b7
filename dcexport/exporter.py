"""
Batch exporter for DCExport.

Runs many channel exports under one bounded pool while sharing the
expensive per-guild state:

- One MemberCache per guild, shared by every channel of that guild
- Guild, channel and role tables fetched once per guild
- One HTTP transport for all asset downloads

A recoverable failure is recorded against its item and does not affect
the others. The batch only fails when nothing could be exported.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .backends.base import DiscordBackend
from .backends.http import ResilientTransport, Transport
from .context import ExportContext
from .errors import ChannelEmptyError, ExportError
from .filters import ExportItem, build_export_items, first_day_of_month_ranges
from .member_cache import MemberCache
from .models import (
    DIRECT_MESSAGES, DIRECT_MESSAGES_GUILD_ID, Channel, ExportFormat, ExportRequest, Guild, Role
)
from .stats import NULL_STATUS, ApiCallStatistics, StatusLogger

logger = logging.getLogger(__name__)

# Receives export progress as a fraction in [0, 1]
ProgressCallback = Callable[[float], None]


class ChannelExporter(ABC):
    """Writes one channel's messages through an export context."""

    @abstractmethod
    async def export_channel(self, context: ExportContext, progress: ProgressCallback) -> int:
        """
        Export the channel described by ``context.request``.

        Returns:
            Number of messages exported

        Raises:
            ChannelEmptyError: nothing to export in the requested range
            ExportError: recoverable (or, if ``fatal``, unrecoverable) failure
        """
        pass


@dataclass
class ExportOptions:
    """Batch-wide export settings."""
    output_path: str
    export_format: ExportFormat = ExportFormat.HTML_DARK
    assets_dir: Optional[str] = None
    after: Optional[int] = None
    before: Optional[int] = None
    download_assets: bool = False
    skip_bot_attachments: bool = False
    reuse_assets: bool = False
    nested_media_paths: bool = False
    locale: Optional[str] = None
    utc_normalization: bool = False
    normalize_json: bool = False
    first_day_of_month: bool = False

    def build_request(self, guild: Guild, item: ExportItem) -> ExportRequest:
        return ExportRequest(
            guild=guild,
            channel=item.channel,
            output_path=self.output_path,
            export_format=self.export_format,
            assets_dir=Path(self.assets_dir) if self.assets_dir else None,
            after=item.after,
            before=item.before,
            download_assets=self.download_assets,
            skip_bot_attachments=self.skip_bot_attachments,
            reuse_assets=self.reuse_assets,
            nested_media_paths=self.nested_media_paths,
            locale=self.locale,
            utc_normalization=self.utc_normalization,
            normalize_json=self.normalize_json,
        )


@dataclass
class BatchResult:
    """
    Outcome of a batch export.

    One entry per item, so channels sharing a name in different guilds or
    periods are all counted.
    """
    exported: List[Tuple[str, int]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[Tuple[str, str]] = field(default_factory=list)
    duration: float = 0.0

    @property
    def exported_count(self) -> int:
        return len(self.exported)

    @property
    def message_count(self) -> int:
        return sum(count for _, count in self.exported)

    @property
    def is_success(self) -> bool:
        """False only when items failed and none succeeded."""
        return self.exported_count > 0 or not self.errors


class BatchReporter:
    """
    Hooks for presenting batch progress. The base class ignores everything.
    """

    def batch_started(self, item_count: int) -> None:
        pass

    def item_started(self, item: ExportItem) -> Tuple[StatusLogger, ProgressCallback]:
        return NULL_STATUS, lambda fraction: None

    def item_finished(self, item: ExportItem, message_count: Optional[int] = None, error: Optional[str] = None) -> None:
        pass

    def item_skipped(self, label: str) -> None:
        pass


@dataclass
class _GuildData:
    guild: Guild
    channels: List[Channel]
    roles: List[Role]
    member_cache: MemberCache


def is_valid_output_path(output_path: str) -> bool:
    """True if the path can receive several exports: a directory or a template."""
    return (
        "%" in output_path
        or os.path.isdir(output_path)
        or output_path.endswith(("/", "\\"))
    )


class BatchExporter:
    """
    Exports a list of channels.

    Usage:
        exporter = BatchExporter(backend, JsonChannelExporter(), parallel=4)
        result = await exporter.export(channels, ExportOptions(output_path="out/"))
        for label, message in result.errors:
            print(label, message)
    """

    def __init__(
        self,
        backend: DiscordBackend,
        exporter: ChannelExporter,
        transport: Optional[Transport] = None,
        parallel: int = 1,
        stats: Optional[ApiCallStatistics] = None,
        reporter: Optional[BatchReporter] = None
    ):
        self.backend = backend
        self.exporter = exporter
        self.transport = transport
        self.parallel = max(1, parallel)
        self.stats = stats
        self.reporter = reporter or BatchReporter()

    async def export(self, channels: Sequence[Channel], options: ExportOptions) -> BatchResult:
        """Export every channel that may hold messages in the requested range."""
        started = time.perf_counter()
        result = BatchResult()

        periods = None
        if options.first_day_of_month:
            if options.after is None or options.before is None:
                raise ExportError(
                    "First-day-of-month mode requires both 'after' and 'before' to be specified.",
                    fatal=True
                )
            periods = first_day_of_month_ranges(options.after, options.before)
            if not periods:
                raise ExportError(
                    "No valid first-day-of-month periods found within the specified date range.",
                    fatal=True
                )
            logger.info(f"First-day-of-month mode: exporting {len(periods)} period(s)")

        # Several items written to one file would overwrite each other
        multiple_items = len(channels) > 1 or (periods is not None and len(periods) > 1)
        if multiple_items and not is_valid_output_path(options.output_path):
            raise ExportError(
                "Attempted to export multiple items, but the output path is neither a directory nor a template. "
                "If the provided output path is meant to be treated as a directory, make sure it ends with a slash. "
                f"Provided output path: '{options.output_path}'.",
                fatal=True
            )

        guilds = await self._prefetch_guilds(channels)

        items, skipped = build_export_items(channels, options.after, options.before, periods)
        for label in skipped:
            self.reporter.item_skipped(label)
        result.skipped.extend(skipped)

        logger.info(f"Exporting {len(items)} item(s)...")
        self.reporter.batch_started(len(items))

        owns_transport = self.transport is None and options.download_assets
        transport = ResilientTransport(stats=self.stats) if owns_transport else self.transport

        semaphore = asyncio.Semaphore(self.parallel)
        tasks = [
            asyncio.ensure_future(
                self._export_item(item, guilds[item.channel.guild_id], options, transport, semaphore, result)
            )
            for item in items
        ]

        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # Fatal error or cancellation: stop the siblings too
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            if owns_transport:
                await transport.disconnect()
            result.duration = time.perf_counter() - started

        logger.info(
            f"Successfully exported {result.exported_count} item(s) in {result.duration:.1f}s"
        )
        return result

    async def _prefetch_guilds(self, channels: Sequence[Channel]) -> Dict[int, _GuildData]:
        guilds: Dict[int, _GuildData] = {}

        for guild_id in dict.fromkeys(c.guild_id for c in channels):
            member_cache = MemberCache(self.backend, guild_id, stats=self.stats)

            if guild_id == DIRECT_MESSAGES_GUILD_ID:
                guilds[guild_id] = _GuildData(DIRECT_MESSAGES, [], [], member_cache)
                continue

            logger.info(f"Fetching data for guild {guild_id}...")
            guild = await self._call("get_guild", self.backend.get_guild(guild_id))
            guild_channels = await self._collect("get_guild_channels", self.backend.get_guild_channels(guild_id))
            guild_roles = await self._collect("get_guild_roles", self.backend.get_guild_roles(guild_id))

            guilds[guild_id] = _GuildData(guild, guild_channels, guild_roles, member_cache)

        return guilds

    async def _call(self, endpoint: str, coro):
        if self.stats is None:
            return await coro
        with self.stats.track(endpoint):
            return await coro

    async def _collect(self, endpoint: str, stream) -> list:
        async def drain():
            return [entity async for entity in stream]
        return await self._call(endpoint, drain())

    async def _export_item(
        self,
        item: ExportItem,
        guild_data: _GuildData,
        options: ExportOptions,
        transport: Optional[Transport],
        semaphore: asyncio.Semaphore,
        result: BatchResult
    ) -> None:
        async with semaphore:
            status, progress = self.reporter.item_started(item)

            request = options.build_request(guild_data.guild, item)
            context = ExportContext(
                self.backend,
                request,
                member_cache=guild_data.member_cache,
                transport=transport,
                stats=self.stats,
                status=status
            )
            context.populate_channels_and_roles(guild_data.channels, guild_data.roles)

            try:
                try:
                    count = await self.exporter.export_channel(context, progress)
                finally:
                    await context.close()

            except ChannelEmptyError:
                logger.debug(f"Nothing to export for {item.label}")
                result.skipped.append(item.label)
                self.reporter.item_finished(item)
                return

            except ExportError as e:
                if e.fatal:
                    raise
                logger.error(f"Failed to export {item.label}: {e.message}")
                result.errors.append((item.label, e.message))
                self.reporter.item_finished(item, error=e.message)
                return

            status.log(f"Exported {count} message(s) from #{item.channel.name}")
            result.exported.append((item.label, count))
            self.reporter.item_finished(item, message_count=count)
