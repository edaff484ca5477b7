"""
Channel and time-range filtering for DCExport.

Features:
- Cheap exclusion of channels that cannot hold messages in a range,
  using only the channel's own id and last message id
- First-day-of-month mode: one single-day range per month
- Expansion of a channel list into labelled export items
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from .models import Channel, snowflake_from_datetime, snowflake_to_datetime

logger = logging.getLogger(__name__)

DateRange = Tuple[int, int]


@dataclass(frozen=True)
class ExportItem:
    """One (channel, time range) unit of work."""
    channel: Channel
    after: Optional[int]
    before: Optional[int]
    label: str


def _add_month(instant: datetime) -> datetime:
    if instant.month == 12:
        return instant.replace(year=instant.year + 1, month=1)
    return instant.replace(month=instant.month + 1)


def first_day_of_month_ranges(after: int, before: int) -> List[DateRange]:
    """
    Single-day (after, before) snowflake ranges for the first day of each
    month strictly following ``after`` and starting before ``before``.

    Days are in UTC. A range starting on the 1st of the ``after`` month is
    never included, even when ``after`` is exactly that midnight.
    """
    after_date = snowflake_to_datetime(after)
    before_date = snowflake_to_datetime(before)

    current = _add_month(datetime(after_date.year, after_date.month, 1, tzinfo=timezone.utc))

    ranges: List[DateRange] = []
    while current < before_date:
        day_end = current + timedelta(days=1)
        ranges.append((snowflake_from_datetime(current), snowflake_from_datetime(day_end)))
        current = _add_month(current)

    return ranges


def channel_in_range(channel: Channel, after: Optional[int] = None, before: Optional[int] = None) -> bool:
    """True if the channel may hold messages in (after, before)."""
    if channel.is_empty:
        return False
    if before is not None and not channel.may_have_messages_before(before):
        return False
    if after is not None and not channel.may_have_messages_after(after):
        return False
    return True


def period_label(after: int) -> str:
    return snowflake_to_datetime(after).strftime("%Y-%m-%d")


def build_export_items(
    channels: Sequence[Channel],
    after: Optional[int] = None,
    before: Optional[int] = None,
    periods: Optional[Sequence[DateRange]] = None
) -> Tuple[List[ExportItem], List[str]]:
    """
    Expand channels into export items.

    Returns:
        (items to export, labels of channel/period pairs that were skipped)
    """
    items: List[ExportItem] = []
    skipped: List[str] = []

    if periods is not None:
        for period_after, period_before in periods:
            label_suffix = period_label(period_after)
            for channel in channels:
                label = f"{channel.hierarchical_name} ({label_suffix})"
                if channel_in_range(channel, period_after, period_before):
                    items.append(ExportItem(channel, period_after, period_before, label))
                else:
                    logger.debug(f"Skipping {label}")
                    skipped.append(label)
        return items, skipped

    for channel in channels:
        label = channel.hierarchical_name
        if channel_in_range(channel, after, before):
            items.append(ExportItem(channel, after, before, label))
        else:
            logger.debug(f"Skipping {label}")
            skipped.append(label)

    return items, skipped
