"""
Reference entity tables for DCExport.

Users, members and roles seen while writing messages are collected in
memory and merged into flat JSON tables next to the export:

- users.json: direct-message exports
- members.json + roles.json: guild exports

Flushing happens at every partition boundary, so a crash loses at most
one partition's worth of reference data. Each flush is a read-merge-write
under a per-file lock; existing entries are only ever overwritten by
newer data for the same id, never dropped.
"""

import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Tuple

from .concurrency import KeyedLock
from .files import read_text, write_text_atomic
from .models import Member, Role, User

if TYPE_CHECKING:
    from .context import ExportContext

logger = logging.getLogger(__name__)

USERS_FILE = "users.json"
MEMBERS_FILE = "members.json"
ROLES_FILE = "roles.json"

# One lock per table file, shared by every export in the process
_TABLE_LOCKS = KeyedLock()

Table = Dict[str, Dict[str, Any]]


# ========== Serialization ==========

def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": str(user.id),
        "name": user.name,
        "discriminator": user.discriminator_formatted,
        "displayName": user.display_name,
        "isBot": user.is_bot,
        "avatarUrl": user.avatar_url,
    }


def member_to_dict(member: Member) -> Dict[str, Any]:
    data = user_to_dict(member.user)
    data["displayName"] = member.display_name or member.user.display_name
    data["avatarUrl"] = member.avatar_url or member.user.avatar_url
    data["roleIds"] = [str(role_id) for role_id in member.role_ids]
    return data


def role_to_dict(role: Role) -> Dict[str, Any]:
    return {
        "id": str(role.id),
        "name": role.name,
        "color": role.color_hex,
        "position": role.position,
    }


def user_from_dict(key: str, data: Dict[str, Any]) -> User:
    name = data.get("name") or ""
    try:
        discriminator = int(data.get("discriminator") or 0) or None
    except (TypeError, ValueError):
        discriminator = None
    return User(
        id=int(key),
        is_bot=bool(data.get("isBot", False)),
        discriminator=discriminator,
        name=name,
        display_name=data.get("displayName") or name,
        avatar_url=data.get("avatarUrl") or "",
    )


def member_from_dict(key: str, data: Dict[str, Any]) -> Member:
    return Member(
        user=user_from_dict(key, data),
        display_name=data.get("displayName"),
        avatar_url=data.get("avatarUrl"),
        role_ids=tuple(int(role_id) for role_id in data.get("roleIds") or ()),
    )


def role_from_dict(key: str, data: Dict[str, Any]) -> Role:
    return Role(
        id=int(key),
        name=data.get("name") or "",
        position=int(data.get("position") or 0),
        color=Role.parse_color(data.get("color")),
    )


# ========== Table I/O ==========

async def load_table(path: Path) -> Table:
    """
    Load a reference table.

    A missing, unreadable or malformed file counts as empty: losing the
    history of one table is better than failing the export.
    """
    try:
        text = await read_text(path)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read {path}, starting from empty table: {e}")
        return {}

    if text is None:
        return {}

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Corrupt table {path}, starting from empty table: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Unexpected content in {path}, starting from empty table")
        return {}

    return {str(k): v for k, v in data.items() if isinstance(v, dict)}


async def save_table(path: Path, table: Table) -> None:
    await write_text_atomic(path, json.dumps(table, indent=2, ensure_ascii=False))


async def load_users(path: Path) -> Dict[int, User]:
    return {int(k): user_from_dict(k, v) for k, v in (await load_table(path)).items()}


async def load_members(path: Path) -> Tuple[Dict[int, Member], Dict[int, User]]:
    """Load a members table as (members with roles, fallback users)."""
    members: Dict[int, Member] = {}
    users: Dict[int, User] = {}
    for key, data in (await load_table(path)).items():
        if "roleIds" in data:
            members[int(key)] = member_from_dict(key, data)
        else:
            users[int(key)] = user_from_dict(key, data)
    return members, users


async def load_roles(path: Path) -> Dict[int, Role]:
    return {int(k): role_from_dict(k, v) for k, v in (await load_table(path)).items()}


# ========== Writer ==========

class ReferenceEntityWriter:
    """
    Incremental merge-writer for reference entities.

    Usage:
        writer = ReferenceEntityWriter(context)
        for message in partition:
            writer.track(message.author)
        await writer.flush()    # at each partition boundary
        ...
        await writer.close()    # final flush
    """

    def __init__(self, context: "ExportContext"):
        self.context = context

        self._users: Dict[int, User] = {}
        self._members: Dict[int, Member] = {}
        self._roles: Dict[int, Role] = {}

    def track(self, user: User) -> None:
        """Record a user, preferring member data when the context has it."""
        member = self.context.try_get_member(user.id)
        if member is not None:
            self._members[user.id] = member
            for role in self.context.get_user_roles(user.id):
                self._roles[role.id] = role
        else:
            self._users[user.id] = user

    @property
    def pending_count(self) -> int:
        return len(self._users) + len(self._members) + len(self._roles)

    @property
    def output_dir(self) -> Path:
        return self.context.request.output_dir

    async def flush(self) -> None:
        """Merge everything tracked since the last flush into the tables on disk."""
        if not self.pending_count:
            return

        if self.context.request.channel.is_direct:
            await self._write_users(self.output_dir / USERS_FILE)
        else:
            await self._write_members(self.output_dir / MEMBERS_FILE)
            await self._write_roles(self.output_dir / ROLES_FILE)

        logger.debug(
            f"Flushed {len(self._members)} members, {len(self._users)} users, "
            f"{len(self._roles)} roles to {self.output_dir}"
        )

        self._users.clear()
        self._members.clear()
        self._roles.clear()

    async def close(self) -> None:
        await self.flush()

    async def _write_users(self, path: Path) -> None:
        async with _TABLE_LOCKS.acquire(os.path.abspath(path)):
            table = await load_table(path)
            for user_id, user in self._users.items():
                table[str(user_id)] = user_to_dict(user)
            # Member data may still be cached for DM participants
            for user_id, member in self._members.items():
                table[str(user_id)] = user_to_dict(member.user)
            await save_table(path, table)

    async def _write_members(self, path: Path) -> None:
        async with _TABLE_LOCKS.acquire(os.path.abspath(path)):
            table = await load_table(path)

            for member_id, member in self._members.items():
                # Replaces any fallback-user entry for the same id
                table[str(member_id)] = member_to_dict(member)

            for user_id, user in self._users.items():
                existing = table.get(str(user_id))
                if existing is None or "roleIds" not in existing:
                    table[str(user_id)] = user_to_dict(user)

            # Members first, then the fallback bucket
            ordered = {k: v for k, v in table.items() if "roleIds" in v}
            ordered.update((k, v) for k, v in table.items() if "roleIds" not in v)
            await save_table(path, ordered)

    async def _write_roles(self, path: Path) -> None:
        async with _TABLE_LOCKS.acquire(os.path.abspath(path)):
            table = await load_table(path)
            for role_id, role in self._roles.items():
                table[str(role_id)] = role_to_dict(role)
            await save_table(path, table)

    def get_stats(self) -> Dict[str, int]:
        """Get pending entity counts."""
        return {
            "users": len(self._users),
            "members": len(self._members),
            "roles": len(self._roles)
        }
