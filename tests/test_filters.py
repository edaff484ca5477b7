"""Tests for time-range filtering."""

from datetime import datetime, timezone

from dcexport.filters import build_export_items, channel_in_range, first_day_of_month_ranges
from dcexport.models import snowflake_from_datetime, snowflake_to_datetime

from .conftest import make_channel


def sf(*args) -> int:
    return snowflake_from_datetime(datetime(*args, tzinfo=timezone.utc))


def test_first_day_of_month_ranges():
    ranges = first_day_of_month_ranges(sf(2023, 11, 20), sf(2024, 2, 15))

    starts = [snowflake_to_datetime(a).date().isoformat() for a, _ in ranges]
    assert starts == ["2023-12-01", "2024-01-01", "2024-02-01"]
    for after, before in ranges:
        assert (snowflake_to_datetime(before) - snowflake_to_datetime(after)).days == 1


def test_first_day_of_month_skips_the_after_month_even_on_the_first():
    ranges = first_day_of_month_ranges(sf(2024, 3, 1), sf(2024, 4, 2))
    assert [snowflake_to_datetime(a).month for a, _ in ranges] == [4]


def test_first_day_of_month_empty_when_range_too_short():
    assert first_day_of_month_ranges(sf(2024, 3, 2), sf(2024, 3, 30)) == []


def test_channel_in_range():
    channel = make_channel(sf(2020, 1, 1), last_message_id=sf(2022, 1, 1))

    assert channel_in_range(channel)
    assert channel_in_range(channel, after=sf(2021, 1, 1), before=sf(2023, 1, 1))
    assert not channel_in_range(channel, after=sf(2022, 6, 1))
    assert not channel_in_range(channel, before=sf(2019, 1, 1))
    assert not channel_in_range(make_channel(1, last_message_id=None))


def test_build_export_items_with_periods():
    channels = [make_channel(1, name="a"), make_channel(2, name="b", last_message_id=None)]
    periods = [(sf(2024, 1, 1), sf(2024, 1, 2)), (sf(2024, 2, 1), sf(2024, 2, 2))]

    items, skipped = build_export_items(channels, periods=periods)

    assert [i.label for i in items] == ["a (2024-01-01)", "a (2024-02-01)"]
    assert skipped == ["b (2024-01-01)", "b (2024-02-01)"]
    assert items[1].after == periods[1][0]
