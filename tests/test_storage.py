"""Tests for the reference entity tables."""

import asyncio
import json

import pytest

from dcexport.context import ExportContext
from dcexport.models import (
    DIRECT_MESSAGES, ChannelKind, ExportFormat, ExportRequest, Guild, Member, Role
)
from dcexport.storage import (
    MEMBERS_FILE, ROLES_FILE, USERS_FILE, ReferenceEntityWriter, load_members, load_roles
)

from .conftest import make_channel, make_user

GUILD = Guild(id=1, name="Test Guild")


def guild_context(backend, tmp_path) -> ExportContext:
    request = ExportRequest(
        guild=GUILD,
        channel=make_channel(50, guild_id=1),
        output_path=f"{tmp_path}/",
        export_format=ExportFormat.JSON,
        normalize_json=True
    )
    return ExportContext(backend, request)


def direct_context(backend, tmp_path) -> ExportContext:
    request = ExportRequest(
        guild=DIRECT_MESSAGES,
        channel=make_channel(60, guild_id=0, kind=ChannelKind.DIRECT_TEXT_CHAT),
        output_path=f"{tmp_path}/",
        export_format=ExportFormat.JSON,
        normalize_json=True
    )
    return ExportContext(backend, request)


def read_json(path):
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.mark.asyncio
async def test_direct_session_writes_users_table(backend, tmp_path):
    context = direct_context(backend, tmp_path)
    writer = context.reference_writer
    user = make_user(100, name="u1")

    writer.track(user)
    await writer.flush()

    table = read_json(tmp_path / USERS_FILE)
    assert table == {
        "100": {
            "id": "100",
            "name": "u1",
            "discriminator": "0000",
            "displayName": "U1",
            "isBot": False,
            "avatarUrl": "https://cdn.discordapp.com/avatars/100/abc.png",
        }
    }
    assert not (tmp_path / MEMBERS_FILE).exists()
    assert not (tmp_path / ROLES_FILE).exists()


@pytest.mark.asyncio
async def test_guild_session_writes_members_and_roles(backend, tmp_path):
    context = guild_context(backend, tmp_path)
    context.populate_channels_and_roles([], [
        Role(id=10, name="Admin", position=2, color=0xFF0000),
        Role(id=20, name="Member", position=1),
    ])
    backend.members[200] = Member(user=make_user(200), role_ids=(10, 20))
    await context.populate_member(200)

    context.reference_writer.track(make_user(200))
    await context.reference_writer.flush()

    members = read_json(tmp_path / MEMBERS_FILE)
    assert members["200"]["roleIds"] == ["10", "20"]
    assert not (tmp_path / USERS_FILE).exists()

    roles = read_json(tmp_path / ROLES_FILE)
    assert roles["10"] == {"id": "10", "name": "Admin", "color": "#ff0000", "position": 2}
    assert roles["20"]["color"] is None


@pytest.mark.asyncio
async def test_member_data_supersedes_fallback_user(backend, tmp_path):
    context = guild_context(backend, tmp_path)

    # First seen without member data
    context.reference_writer.track(make_user(300))
    await context.reference_writer.flush()
    members, fallback = await load_members(tmp_path / MEMBERS_FILE)
    assert 300 in fallback and 300 not in members

    backend.members[300] = Member(user=make_user(300), role_ids=(10,))
    await context.populate_member(300)
    context.reference_writer.track(make_user(300))
    await context.reference_writer.flush()

    members, fallback = await load_members(tmp_path / MEMBERS_FILE)
    assert members[300].role_ids == (10,)
    assert 300 not in fallback


@pytest.mark.asyncio
async def test_fallback_user_never_overwrites_member(backend, tmp_path):
    backend.members[400] = Member(user=make_user(400), role_ids=(1,))
    first = guild_context(backend, tmp_path)
    await first.populate_member(400)
    first.reference_writer.track(make_user(400))
    await first.reference_writer.flush()

    # Another export that never resolved the member
    second = guild_context(backend, tmp_path)
    second.reference_writer.track(make_user(400))
    await second.reference_writer.flush()

    assert "roleIds" in read_json(tmp_path / MEMBERS_FILE)["400"]


@pytest.mark.asyncio
async def test_flush_is_idempotent(backend, tmp_path):
    context = direct_context(backend, tmp_path)
    context.reference_writer.track(make_user(1))
    await context.reference_writer.flush()
    before = (tmp_path / USERS_FILE).read_bytes()

    await context.reference_writer.flush()
    await context.reference_writer.flush()

    assert (tmp_path / USERS_FILE).read_bytes() == before


@pytest.mark.asyncio
async def test_flush_with_nothing_tracked_writes_nothing(backend, tmp_path):
    writer = ReferenceEntityWriter(direct_context(backend, tmp_path))
    await writer.flush()
    assert not (tmp_path / USERS_FILE).exists()


@pytest.mark.asyncio
async def test_merges_with_existing_entries(backend, tmp_path):
    context = direct_context(backend, tmp_path)
    context.reference_writer.track(make_user(1))
    await context.reference_writer.flush()
    context.reference_writer.track(make_user(2))
    await context.reference_writer.close()

    assert set(read_json(tmp_path / USERS_FILE)) == {"1", "2"}


@pytest.mark.asyncio
async def test_corrupt_table_is_treated_as_empty(backend, tmp_path):
    (tmp_path / USERS_FILE).write_text("{ not json", encoding="utf-8")
    context = direct_context(backend, tmp_path)

    context.reference_writer.track(make_user(5))
    await context.reference_writer.flush()

    assert set(read_json(tmp_path / USERS_FILE)) == {"5"}


@pytest.mark.asyncio
async def test_non_ascii_is_kept_verbatim(backend, tmp_path):
    context = direct_context(backend, tmp_path)
    context.reference_writer.track(make_user(7, name="日本語"))
    await context.reference_writer.flush()

    assert "日本語" in (tmp_path / USERS_FILE).read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_roles_round_trip(backend, tmp_path):
    context = guild_context(backend, tmp_path)
    context.populate_channels_and_roles([], [Role(id=10, name="Mod", position=3, color=0x00FF7F)])
    backend.members[1] = Member(user=make_user(1), role_ids=(10,))
    await context.populate_member(1)
    context.reference_writer.track(make_user(1))
    await context.reference_writer.flush()

    roles = await load_roles(tmp_path / ROLES_FILE)
    assert roles[10] == Role(id=10, name="Mod", position=3, color=0x00FF7F)


@pytest.mark.asyncio
async def test_concurrent_writers_do_not_lose_entries(backend, tmp_path):
    contexts = [direct_context(backend, tmp_path) for _ in range(20)]
    for user_id, context in enumerate(contexts, start=1):
        context.reference_writer.track(make_user(user_id))

    await asyncio.gather(*(context.reference_writer.flush() for context in contexts))

    assert set(read_json(tmp_path / USERS_FILE)) == {str(i) for i in range(1, 21)}


@pytest.mark.asyncio
async def test_concurrent_guild_writers_merge_members_and_roles(backend, tmp_path):
    for member_id in range(1, 11):
        backend.members[member_id] = Member(user=make_user(member_id), role_ids=(member_id * 100,))
    backend.roles[1] = [Role(id=i * 100, name=f"role{i}", color=None, position=i) for i in range(1, 11)]

    contexts = []
    for member_id in range(1, 11):
        context = guild_context(backend, tmp_path)
        await context.fetch_channels_and_roles()
        await context.populate_member(member_id)
        context.reference_writer.track(make_user(member_id))
        contexts.append(context)

    await asyncio.gather(*(context.reference_writer.close() for context in contexts))

    members = read_json(tmp_path / MEMBERS_FILE)
    assert set(members) == {str(i) for i in range(1, 11)}
    assert all("roleIds" in entry for entry in members.values())
    assert len(read_json(tmp_path / ROLES_FILE)) == 10
