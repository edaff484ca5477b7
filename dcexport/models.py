"""
Data models for DCExport.

Using dataclasses for clean, typed data structures. All entities are
immutable value objects; ids are Discord snowflakes stored as ``int``.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Dict, Any

from .paths import escape_file_name


# Discord epoch (2015-01-01T00:00:00Z) in milliseconds
DISCORD_EPOCH_MS = 1420070400000


# Output path template token, e.g. %c for the channel id
_PATH_TOKEN = re.compile(r"%(.)")


def snowflake_to_datetime(snowflake: int) -> datetime:
    """Extract the creation timestamp encoded in a snowflake."""
    ms = (snowflake >> 22) + DISCORD_EPOCH_MS
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def snowflake_from_datetime(instant: datetime) -> int:
    """Build the smallest snowflake for the given instant."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    ms = int(instant.timestamp() * 1000) - DISCORD_EPOCH_MS
    return max(ms, 0) << 22


def parse_snowflake(value: str) -> int:
    """Parse a snowflake from its string form or from an ISO date."""
    value = value.strip()
    if value.isdigit():
        return int(value)
    return snowflake_from_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))


def _format_date(snowflake: int) -> str:
    return snowflake_to_datetime(snowflake).strftime("%Y-%m-%d")


@dataclass(frozen=True)
class User:
    """A Discord user account."""

    id: int
    is_bot: bool
    discriminator: Optional[int]
    name: str
    display_name: str
    avatar_url: str

    @property
    def discriminator_formatted(self) -> str:
        return f"{self.discriminator:04d}" if self.discriminator else "0000"

    @property
    def full_name(self) -> str:
        if self.discriminator:
            return f"{self.name}#{self.discriminator_formatted}"
        return self.name


@dataclass(frozen=True)
class Member:
    """A user's membership in a guild."""

    user: User
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    role_ids: Tuple[int, ...] = ()

    @property
    def id(self) -> int:
        return self.user.id

    @classmethod
    def create_fallback(cls, user: User) -> "Member":
        """Synthesize a role-less member for a user with no membership record."""
        return cls(user=user)


@dataclass(frozen=True)
class Role:
    """A guild role. Higher ``position`` means more senior."""

    id: int
    name: str
    position: int
    color: Optional[int] = None  # 0xRRGGBB

    @property
    def color_hex(self) -> Optional[str]:
        if self.color is None:
            return None
        return f"#{self.color & 0xFFFFFF:06x}"

    @staticmethod
    def parse_color(value: Optional[str]) -> Optional[int]:
        """Parse a ``#rrggbb`` string, returning None for anything else."""
        if not value or not value.startswith("#"):
            return None
        try:
            return int(value[1:], 16) & 0xFFFFFF
        except ValueError:
            return None


@dataclass(frozen=True)
class Guild:
    """A guild (server). Direct messages live in a pseudo guild with id 0."""

    id: int
    name: str
    icon_url: Optional[str] = None

    @property
    def is_direct(self) -> bool:
        return self.id == DIRECT_MESSAGES_GUILD_ID


DIRECT_MESSAGES_GUILD_ID = 0
DIRECT_MESSAGES = Guild(id=DIRECT_MESSAGES_GUILD_ID, name="Direct Messages")


class ChannelKind(Enum):
    """Channel types as reported by the API."""
    GUILD_TEXT_CHAT = 0
    DIRECT_TEXT_CHAT = 1
    GUILD_VOICE_CHAT = 2
    DIRECT_GROUP_TEXT_CHAT = 3
    GUILD_CATEGORY = 4
    GUILD_NEWS = 5
    GUILD_NEWS_THREAD = 10
    GUILD_PUBLIC_THREAD = 11
    GUILD_PRIVATE_THREAD = 12
    GUILD_STAGE_VOICE = 13
    GUILD_DIRECTORY = 14
    GUILD_FORUM = 15

    @property
    def is_direct(self) -> bool:
        return self in (ChannelKind.DIRECT_TEXT_CHAT, ChannelKind.DIRECT_GROUP_TEXT_CHAT)

    @property
    def is_thread(self) -> bool:
        return self in (
            ChannelKind.GUILD_NEWS_THREAD,
            ChannelKind.GUILD_PUBLIC_THREAD,
            ChannelKind.GUILD_PRIVATE_THREAD,
        )


@dataclass(frozen=True)
class Channel:
    """A channel or thread."""

    id: int
    kind: ChannelKind
    guild_id: int
    name: str
    parent_name: Optional[str] = None
    position: Optional[int] = None
    topic: Optional[str] = None
    last_message_id: Optional[int] = None
    parent_id: Optional[int] = None
    parent_position: Optional[int] = None

    @property
    def is_direct(self) -> bool:
        return self.kind.is_direct

    @property
    def is_empty(self) -> bool:
        return self.last_message_id is None

    @property
    def hierarchical_name(self) -> str:
        if self.parent_name:
            return f"{self.parent_name} / {self.name}"
        return self.name

    def may_have_messages_after(self, message_id: int) -> bool:
        """Cheap check against the last message id, no message scan."""
        return not self.is_empty and message_id < self.last_message_id

    def may_have_messages_before(self, message_id: int) -> bool:
        """A channel cannot hold messages older than itself."""
        return not self.is_empty and message_id > self.id


class ExportFormat(Enum):
    """Output formats understood by message writers."""
    PLAIN_TEXT = "txt"
    HTML_DARK = "htmldark"
    HTML_LIGHT = "htmllight"
    CSV = "csv"
    JSON = "json"

    @property
    def is_html(self) -> bool:
        return self in (ExportFormat.HTML_DARK, ExportFormat.HTML_LIGHT)

    @property
    def file_extension(self) -> str:
        return "html" if self.is_html else self.value


@dataclass
class ExportRequest:
    """Everything a single channel export needs to know."""

    guild: Guild
    channel: Channel
    output_path: Path
    export_format: ExportFormat = ExportFormat.HTML_DARK
    assets_dir: Optional[Path] = None
    after: Optional[int] = None
    before: Optional[int] = None
    download_assets: bool = False
    skip_bot_attachments: bool = False
    reuse_assets: bool = False
    nested_media_paths: bool = False
    locale: Optional[str] = None
    utc_normalization: bool = False
    normalize_json: bool = False

    def __post_init__(self):
        # Path() drops a trailing separator, which is what marks a directory
        self._output_is_dir = str(self.output_path).endswith(("/", "\\"))
        self.output_path = Path(self.output_path)
        if self.assets_dir is not None:
            self.assets_dir = Path(self.assets_dir)

    @property
    def output_dir(self) -> Path:
        return self.output_file.parent

    @property
    def output_file(self) -> Path:
        """
        Resolve the file this export writes to.

        ``%`` tokens in the output path are expanded first; a directory
        output then gets the default file name appended.
        """
        path = Path(self.format_path(str(self.output_path)))
        if self._output_is_dir or path.is_dir():
            return path / self.default_file_name
        return path

    @property
    def default_file_name(self) -> str:
        guild = escape_file_name(self.guild.name)
        channel = escape_file_name(self.channel.hierarchical_name.replace(" / ", " - "))
        name = f"{guild} - {channel} [{self.channel.id}]"

        if self.after is not None and self.before is not None:
            name += f" ({_format_date(self.after)} to {_format_date(self.before)})"
        elif self.after is not None:
            name += f" (after {_format_date(self.after)})"
        elif self.before is not None:
            name += f" (before {_format_date(self.before)})"

        return f"{name}.{self.export_format.file_extension}"

    def format_path(self, path: str) -> str:
        """Expand ``%`` template tokens; unknown tokens are left as-is."""
        channel = self.channel

        def replace(match: "re.Match[str]") -> str:
            token = match.group(1)
            if token == "%":
                return "%"
            values = {
                "g": str(self.guild.id),
                "G": self.guild.name,
                "t": str(channel.parent_id) if channel.parent_id is not None else "",
                "T": channel.parent_name or "",
                "c": str(channel.id),
                "C": channel.name,
                "p": str(channel.position) if channel.position is not None else "0",
                "P": str(channel.parent_position) if channel.parent_position is not None else "0",
                "a": _format_date(self.after) if self.after is not None else "",
                "b": _format_date(self.before) if self.before is not None else "",
                "d": datetime.now().strftime("%Y-%m-%d"),
            }
            if token not in values:
                return match.group(0)
            return escape_file_name(values[token])

        return _PATH_TOKEN.sub(replace, path)

    @property
    def assets_path(self) -> Path:
        """Directory that downloaded assets are written to."""
        if self.assets_dir is not None:
            return self.assets_dir
        return Path(f"{self.output_file}_Files")


class AssetStatus(Enum):
    """How an asset URL was resolved."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class AssetOutcome:
    """
    Result of materializing one asset URL.

    ``path`` is set only on success; ``url`` is always the original,
    un-normalized URL so callers can fall back to it.
    """

    status: AssetStatus
    url: str
    path: Optional[Path] = None

    @classmethod
    def success(cls, url: str, path: Path) -> "AssetOutcome":
        return cls(AssetStatus.SUCCESS, url, Path(path))

    @classmethod
    def skipped(cls, url: str) -> "AssetOutcome":
        return cls(AssetStatus.SKIPPED, url)

    @classmethod
    def failed(cls, url: str) -> "AssetOutcome":
        return cls(AssetStatus.FAILED, url)

    @property
    def ok(self) -> bool:
        return self.status is AssetStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "url": self.url,
            "path": str(self.path) if self.path else None,
        }
