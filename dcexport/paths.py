"""
URL classification and asset path derivation.

Two independent, pure strategies map an asset URL to a path relative to
the assets directory:

- nested: one sub-directory per resource type, ids as file names, and
  SHA-256 content addressing for third-party URLs
- legacy: flat layout, ``{original-name}-{hash5}{ext}``

Both normalize the URL first so re-signed CDN links collapse to the same
file, which makes the result stable across runs.
"""

import hashlib
import os
import posixpath
import re
from typing import Optional, Tuple
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit

CDN_HOST = "cdn.discordapp.com"
TWEMOJI_HOST = "cdn.jsdelivr.net"

# Expiry/signature params appended to CDN attachment links
SIGNATURE_PARAMS = frozenset({"ex", "is", "hm"})

# Hosts whose URLs are player pages, not downloadable media
EMBED_ONLY_DOMAINS = (
    "youtube.com",
    "youtu.be",
    "youtube-nocookie.com",
    "vimeo.com",
    "twitch.tv",
    "spotify.com",
    "soundcloud.com",
    "tiktok.com",
)

# images-ext-1.discordapp.net, images-ext-2.discordapp.net, ...
PROXY_THUMBNAIL_HOST = re.compile(r"^images-ext-\d+\.discordapp\.net$", re.IGNORECASE)

MAX_EXTENSION_LENGTH = 10
LEGACY_MAX_EXTENSION_LENGTH = 41
LEGACY_MAX_STEM_LENGTH = 42
LEGACY_HASH_LENGTH = 5

_INVALID_FILE_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def escape_file_name(name: str) -> str:
    """Replace characters that are invalid in file names on common filesystems."""
    return _INVALID_FILE_NAME_CHARS.sub("_", name)


def skip_reason(url: str) -> Optional[str]:
    """
    Return why a URL must not be downloaded, or None if it should be.

    Embed-only platforms serve HTML players; proxy thumbnails are
    short-lived resized copies of content that is exported elsewhere.
    """
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()

    for domain in EMBED_ONLY_DOMAINS:
        if host == domain or host.endswith("." + domain):
            return "embed"

    if PROXY_THUMBNAIL_HOST.match(host):
        return "proxy"
    if host.endswith(".discordapp.net") and parts.path.startswith("/external/"):
        return "proxy"

    return None


def normalize_url(url: str) -> str:
    """Strip signature query params from canonical CDN URLs."""
    parts = urlsplit(url)
    if (parts.hostname or "").lower() != CDN_HOST:
        return url

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in SIGNATURE_PARAMS
    ]
    base = f"{parts.scheme}://{parts.netloc}{parts.path}"
    if not query:
        return base
    return f"{base}?{urlencode(query)}"


def split_extension(file_name: str, max_length: int = MAX_EXTENSION_LENGTH) -> Tuple[str, str]:
    """Split ``name.ext`` into (stem, ".ext"), discarding implausibly long extensions."""
    stem, ext = os.path.splitext(file_name)
    if len(ext) - 1 > max_length:
        return file_name, ""
    return stem, ext.lower()


def has_real_extension(path: str) -> bool:
    ext = os.path.splitext(path)[1]
    return 1 < len(ext) <= MAX_EXTENSION_LENGTH + 1 and ext[1:].isalnum()


def url_hash(url: str) -> str:
    """Full SHA-256 of the normalized URL, hex lower-case."""
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()


def legacy_url_hash(url: str) -> str:
    """SHA-256 used by flat file names.

    The remaining CDN query is appended to the path without a "?" separator,
    so files downloaded by earlier legacy exports keep their names.
    """
    parts = urlsplit(url)
    if (parts.hostname or "").lower() == CDN_HOST:
        query = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if key not in SIGNATURE_PARAMS
        ]
        url = f"{parts.scheme}://{parts.netloc}{parts.path}{urlencode(query)}"
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


# ========== Nested strategy ==========

def nested_asset_path(url: str) -> str:
    """Derive a nested, type-categorized relative path for an asset URL."""
    normalized = normalize_url(url)
    parts = urlsplit(normalized)
    host = (parts.hostname or "").lower()
    path = unquote(parts.path)

    if host == CDN_HOST:
        cdn_path = _cdn_asset_path(path, parts.query)
        if cdn_path:
            return cdn_path

    elif host == TWEMOJI_HOST and "/twemoji" in path.lower():
        # Pre-hashed upstream and immutable, keep the name as-is
        file_name = posixpath.basename(path)
        if file_name:
            return f"twemoji/{escape_file_name(file_name)}"

    return _external_asset_path(normalized, host, path)


def _cdn_asset_path(path: str, query: str) -> Optional[str]:
    segments = [s for s in path.split("/") if s]
    if not segments:
        return None

    kind = segments[0]

    # /emojis/{id}.{ext}, /stickers/{id}.{ext}
    if kind in ("emojis", "stickers") and len(segments) == 2:
        stem, ext = split_extension(segments[1])
        return f"{kind}/{escape_file_name(stem)}{ext}"

    # /attachments/{channelId}/{attachmentId}/{fileName}
    if kind == "attachments" and len(segments) == 4:
        _, ext = split_extension(segments[3])
        return f"attachments/{escape_file_name(segments[2])}{ext}"

    # /icons/{guildId}/{hash}.{ext}
    if kind == "icons" and len(segments) == 3:
        stem, ext = split_extension(segments[2])
        return f"icons/{escape_file_name(segments[1])}_{escape_file_name(stem)}{ext}"

    # /guilds/{guildId}/users/{userId}/avatars/{hash}.{ext}
    if kind == "guilds" and len(segments) == 6 and segments[2] == "users" and segments[4] == "avatars":
        stem, ext = split_extension(segments[5])
        return f"avatars/{escape_file_name(segments[3])}_{escape_file_name(stem)}{ext}"

    # /avatars/{userId}/{hash}.{ext}
    if kind == "avatars" and len(segments) == 3:
        stem, ext = split_extension(segments[2])
        return f"avatars/{escape_file_name(segments[1])}_{escape_file_name(stem)}{ext}"

    # Unrecognized shape: keep the path, fold the query into the file name
    if len(segments) < 2:
        return None
    stem, ext = split_extension(segments[-1])
    query_suffix = _query_suffix(query)
    if query_suffix:
        stem = f"{stem}_{query_suffix}"
    directory = "/".join(escape_file_name(s) for s in segments[:-1])
    return f"{directory}/{escape_file_name(stem + ext)}"


def _query_suffix(query: str) -> str:
    # e.g. "size-256_quality-lossless"
    return "_".join(
        f"{key}-{value}" if value else key
        for key, value in parse_qsl(query, keep_blank_values=True)
        if key
    )


def _external_asset_path(normalized: str, host: str, path: str) -> str:
    # Hash the whole URL: arbitrary external URLs can exceed path limits
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    _, ext = split_extension(posixpath.basename(path))
    return f"external/{escape_file_name(host) or 'unknown'}/{digest}{ext}"


# ========== Legacy strategy ==========

def legacy_asset_path(url: str) -> str:
    """Derive a flat ``{name}-{hash5}{ext}`` file name for an asset URL."""
    short_hash = legacy_url_hash(url)[:LEGACY_HASH_LENGTH]

    file_name = posixpath.basename(urlsplit(url).path)
    if not file_name.strip():
        return short_hash

    stem, ext = os.path.splitext(file_name)

    # Probably not an extension, just a dot in a long file name
    if len(ext) > LEGACY_MAX_EXTENSION_LENGTH:
        stem, ext = file_name, ""

    return escape_file_name(f"{stem[:LEGACY_MAX_STEM_LENGTH]}-{short_hash}{ext}")


def asset_relative_path(url: str, nested: bool) -> str:
    """Select the path strategy by configuration."""
    return nested_asset_path(url) if nested else legacy_asset_path(url)
