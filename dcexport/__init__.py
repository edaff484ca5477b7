"""
DCExport - Discord channel export core

The concurrency-safe middle layer of a Discord chat exporter:
- Shared per-guild member cache with request coalescing and negative caching
- Asset downloads with per-path de-duplication, reuse and error-page rejection
- Deterministic nested or legacy media paths
- Incremental users/members/roles reference tables for normalized JSON
- Batch exports with bounded parallelism and per-item error isolation
- API call statistics and per-task progress reporting
"""

__version__ = "1.0.0"
__author__ = "DCExport"

from .models import (
    User,
    Member,
    Role,
    Guild,
    Channel,
    ChannelKind,
    ExportFormat,
    ExportRequest,
    AssetStatus,
    AssetOutcome
)
from .errors import DCExportError, ConfigError, ExportError, ChannelEmptyError, TransferError
from .config import Config
from .member_cache import MemberCache
from .media import AssetDownloader
from .storage import ReferenceEntityWriter
from .context import ExportContext, ResolvedAsset
from .exporter import BatchExporter, BatchResult, BatchReporter, ChannelExporter, ExportOptions
from .stats import ApiCallStatistics, StatusLogger, NullStatusLogger, LoggingStatusLogger
from .progress import RichBatchReporter, ProgressTaskStatusLogger, create_progress
from .backends import DiscordBackend, Transport, ResilientTransport, FetchedResource

__all__ = [
    "User",
    "Member",
    "Role",
    "Guild",
    "Channel",
    "ChannelKind",
    "ExportFormat",
    "ExportRequest",
    "AssetStatus",
    "AssetOutcome",
    "DCExportError",
    "ConfigError",
    "ExportError",
    "ChannelEmptyError",
    "TransferError",
    "Config",
    "MemberCache",
    "AssetDownloader",
    "ReferenceEntityWriter",
    "ExportContext",
    "ResolvedAsset",
    "BatchExporter",
    "BatchResult",
    "BatchReporter",
    "ChannelExporter",
    "ExportOptions",
    "RichBatchReporter",
    "ProgressTaskStatusLogger",
    "create_progress",
    "ApiCallStatistics",
    "StatusLogger",
    "NullStatusLogger",
    "LoggingStatusLogger",
    "DiscordBackend",
    "Transport",
    "ResilientTransport",
    "FetchedResource"
]
