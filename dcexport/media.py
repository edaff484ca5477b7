"""
Asset Downloader for DCExport.

Features:
- Skips embed-only and proxy-thumbnail URLs without touching the network
- Deterministic, collision-resistant destination paths (nested or legacy)
- Per-destination-path locking, so URLs that collapse to the same file
  never transfer twice
- Reuse of files from previous runs
- Rejection of error pages served in place of media
- Extension inference from the response content type
- Atomic writes
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional

from .backends.http import FetchedResource, Transport
from .concurrency import KeyedLock
from .errors import TransferError
from .files import short_asset_name, write_bytes_atomic
from .models import AssetOutcome
from .paths import asset_relative_path, has_real_extension, skip_reason
from .stats import NULL_STATUS, StatusLogger

logger = logging.getLogger(__name__)


# Media type to extension, used when the URL carries no usable extension
MEDIA_TYPE_EXTENSIONS = {
    # Images
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/avif": ".avif",
    "image/bmp": ".bmp",
    "image/svg+xml": ".svg",
    "image/x-icon": ".ico",
    "image/vnd.microsoft.icon": ".ico",
    "image/apng": ".apng",
    # Videos
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    # Audio
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/flac": ".flac",
    "audio/mp4": ".m4a",
    # Other
    "application/pdf": ".pdf",
    "application/zip": ".zip",
    "font/woff2": ".woff2",
}

# Small textual bodies are almost always error pages
TEXTUAL_MEDIA_TYPES = frozenset({"text/plain", "text/html", "text/xml", "application/xml"})
TEXTUAL_BODY_LIMIT = 1000

TINY_BODY_LIMIT = 100
ERROR_MARKERS = ("<!doctype", "<html", "<?xml", "{", "error", "not found", "access denied", "forbidden")

# Shared by every downloader in the process: two channel exports writing
# into one assets directory must not race on the same file
_PATH_LOCKS = KeyedLock()


def validate_resource(resource: FetchedResource) -> Optional[str]:
    """
    Check that a response really is media.

    Returns:
        None if the body looks like media, otherwise the rejection reason
    """
    body = resource.body
    media_type = resource.media_type

    if not body:
        return "empty body"

    if media_type == "application/json" or media_type.endswith("+json"):
        return "JSON response"

    if media_type in TEXTUAL_MEDIA_TYPES and len(body) < TEXTUAL_BODY_LIMIT:
        return f"{media_type} response of {len(body)} bytes"

    if len(body) < TINY_BODY_LIMIT:
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            return None
        if text.lstrip().lower().startswith(ERROR_MARKERS):
            return "error page"

    return None


def extension_for(media_type: str) -> Optional[str]:
    return MEDIA_TYPE_EXTENSIONS.get(media_type)


def find_existing(target: Path) -> Optional[Path]:
    """Locate a previously downloaded file for ``target``, if any."""
    if target.exists():
        return target
    # The extension may have been inferred from the content type last time
    if not has_real_extension(target.name):
        for ext in sorted(set(MEDIA_TYPE_EXTENSIONS.values())):
            candidate = target.with_name(target.name + ext)
            if candidate.exists():
                return candidate
    return None


class AssetDownloader:
    """
    Materializes remote assets as local files for one export session.

    Every call resolves to one of three outcomes: SUCCESS with a local
    path, SKIPPED or FAILED. Only cancellation propagates.
    """

    def __init__(
        self,
        assets_dir: Path,
        transport: Transport,
        reuse: bool = False,
        nested_paths: bool = False,
        status: Optional[StatusLogger] = None,
        locks: Optional[KeyedLock] = None
    ):
        self.assets_dir = Path(assets_dir)
        self.transport = transport
        self.reuse = reuse
        self.nested_paths = nested_paths
        self.status = status or NULL_STATUS
        self._locks = locks if locks is not None else _PATH_LOCKS

        # Keyed by the original URL
        self._outcomes: Dict[str, AssetOutcome] = {}
        # Destination path -> file actually written (may carry an inferred extension)
        self._resolved_paths: Dict[Path, Path] = {}

        self._downloaded_count = 0
        self._reused_count = 0
        self._skipped_count = 0
        self._failed_count = 0

    def target_path(self, url: str) -> Path:
        """Destination path for a URL, before any extension inference."""
        return self.assets_dir / asset_relative_path(url, self.nested_paths)

    async def materialize(self, url: str) -> AssetOutcome:
        """Resolve a URL to a local file, downloading it on a cache miss."""
        reason = skip_reason(url)
        if reason:
            logger.debug(f"Skipping {reason} URL: {url}")
            self._skipped_count += 1
            return AssetOutcome.skipped(url)

        target = self.target_path(url)

        async with self._locks.acquire(os.path.abspath(target)):
            cached = self._outcomes.get(url)
            if cached is not None:
                return cached

            # A different URL already produced this file in this session
            resolved = self._resolved_paths.get(target)
            if resolved is not None:
                return self._remember(url, AssetOutcome.success(url, resolved))

            if self.reuse:
                existing = find_existing(target)
                if existing is not None:
                    logger.debug(f"Reusing existing file: {existing}")
                    self._reused_count += 1
                    self._resolved_paths[target] = existing
                    return self._remember(url, AssetOutcome.success(url, existing))

            return self._remember(url, await self._transfer(url, target))

    async def _transfer(self, url: str, target: Path) -> AssetOutcome:
        self.status.log(f"Downloading asset: {short_asset_name(url)}")

        try:
            resource = await self.transport.fetch(url)
        except TransferError as e:
            logger.warning(f"Download failed: {e}")
            self._failed_count += 1
            return AssetOutcome.failed(url)

        rejection = validate_resource(resource)
        if rejection:
            logger.warning(f"Rejected {url}: {rejection}")
            self._failed_count += 1
            return AssetOutcome.failed(url)

        final_path = target
        if not has_real_extension(target.name):
            ext = extension_for(resource.media_type)
            if ext:
                final_path = target.with_name(target.name + ext)

        try:
            await write_bytes_atomic(final_path, resource.body)
        except OSError as e:
            logger.error(f"Failed to write {final_path}: {e}")
            self._failed_count += 1
            return AssetOutcome.failed(url)

        self._resolved_paths[target] = final_path
        self._downloaded_count += 1
        logger.debug(f"Downloaded: {final_path.name} ({len(resource.body)} bytes)")
        return AssetOutcome.success(url, final_path)

    def _remember(self, url: str, outcome: AssetOutcome) -> AssetOutcome:
        self._outcomes[url] = outcome
        return outcome

    def get_stats(self) -> Dict[str, int]:
        """Get download statistics."""
        return {
            "downloaded": self._downloaded_count,
            "reused": self._reused_count,
            "skipped": self._skipped_count,
            "failed": self._failed_count
        }
