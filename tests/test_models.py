"""Tests for export request file naming."""

from datetime import datetime, timezone

from dcexport.models import (
    ChannelKind, Channel, ExportFormat, ExportRequest, Guild, snowflake_from_datetime
)

GUILD = Guild(id=5, name="My: Guild")
CHANNEL = Channel(
    id=42,
    kind=ChannelKind.GUILD_TEXT_CHAT,
    guild_id=5,
    name="general",
    parent_name="Text",
    position=3,
    parent_id=7,
    parent_position=1,
)

FEB_1 = snowflake_from_datetime(datetime(2024, 2, 1, tzinfo=timezone.utc))
MAR_1 = snowflake_from_datetime(datetime(2024, 3, 1, tzinfo=timezone.utc))


def make_request(output_path, **kwargs) -> ExportRequest:
    return ExportRequest(guild=GUILD, channel=CHANNEL, output_path=output_path, **kwargs)


def test_default_file_name_without_range():
    request = make_request("out/", export_format=ExportFormat.JSON)
    assert request.default_file_name == "My_ Guild - Text - general [42].json"


def test_default_file_name_includes_range():
    assert make_request("out/", after=FEB_1, before=MAR_1).default_file_name.endswith(
        "[42] (2024-02-01 to 2024-03-01).html"
    )
    assert make_request("out/", after=FEB_1).default_file_name.endswith("[42] (after 2024-02-01).html")
    assert make_request("out/", before=MAR_1).default_file_name.endswith("[42] (before 2024-03-01).html")


def test_template_tokens_are_expanded(tmp_path):
    request = make_request(str(tmp_path / "%g-%G" / "%t-%T" / "%p-%P-%C-%c-%a.html"), after=FEB_1)
    assert request.output_file == tmp_path / "5-My_ Guild" / "7-Text" / "3-1-general-42-2024-02-01.html"
    assert request.output_dir == tmp_path / "5-My_ Guild" / "7-Text"


def test_escaped_and_unknown_tokens_are_kept(tmp_path):
    request = make_request(str(tmp_path / "100%% %z %b.txt"))
    assert request.output_file == tmp_path / "100% %z .txt"


def test_template_directory_gets_default_name(tmp_path):
    request = make_request(f"{tmp_path}/%c/")
    assert request.output_file == tmp_path / "42" / "My_ Guild - Text - general [42].html"
    assert request.assets_path == tmp_path / "42" / "My_ Guild - Text - general [42].html_Files"
