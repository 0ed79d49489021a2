"""
Journal analytics by tradition

Counts over a user's saved journal entries, used by the profile and
calendar views. Entries only need `tradition` and `created_at`
attributes, so JournalEntry or any lookalike works.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from backend.contracts import Tradition

ALL_TRADITIONS = [tradition.value for tradition in Tradition]

TRADITION_NAMES = {
    'stoicism': 'Stoicism',
    'christianity': 'Christianity',
    'buddhism': 'Buddhism',
    'sufism': 'Sufism',
    'taoism': 'Taoism',
    'judaism': 'Judaism',
}

# Calendar dots per day
MAX_TRADITIONS_PER_DAY = 3


def _parse_created_at(value: str) -> datetime:
    """ISO timestamp to aware datetime (naive values are taken as UTC)"""
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_tradition_counts(entries: Iterable) -> Dict[str, int]:
    """
    Count entries per tradition.

    Every tradition is present in the result, with 0 where unused.
    Entries without a tradition, or with an unknown one, are ignored.
    """
    counts = {tradition: 0 for tradition in ALL_TRADITIONS}
    for entry in entries:
        tradition = getattr(entry, 'tradition', None)
        if tradition in counts:
            counts[tradition] += 1
    return counts


def get_tradition_counts_by_time_range(entries: Iterable, start: datetime,
                                       end: datetime) -> Dict[str, int]:
    """Tradition counts for entries created within [start, end]"""
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)

    in_range = [
        entry for entry in entries
        if start <= _parse_created_at(entry.created_at) <= end
    ]
    return get_tradition_counts(in_range)


def get_most_engaged_tradition(entries: Iterable) -> Optional[str]:
    """
    Tradition with the highest count, or None if no entry has one.

    Ties go to the tradition listed first in ALL_TRADITIONS.
    """
    counts = get_tradition_counts(entries)

    most_engaged = None
    max_count = 0
    for tradition in ALL_TRADITIONS:
        if counts[tradition] > max_count:
            max_count = counts[tradition]
            most_engaged = tradition
    return most_engaged


def get_total_voices_count(entries: Iterable) -> int:
    """Number of entries with a chosen voice"""
    return sum(1 for entry in entries if getattr(entry, 'tradition', None))


def get_traditions_sorted_by_count(entries: Iterable) -> List[Dict[str, object]]:
    """[{'tradition': ..., 'count': ...}] for all traditions, highest count first (stable)"""
    counts = get_tradition_counts(entries)
    ranked = [{'tradition': tradition, 'count': counts[tradition]} for tradition in ALL_TRADITIONS]
    return sorted(ranked, key=lambda item: item['count'], reverse=True)


def get_traditions_per_day(entries: Iterable) -> Dict[str, List[str]]:
    """
    Distinct traditions per UTC day, at most MAX_TRADITIONS_PER_DAY each.

    Returns:
        {'YYYY-MM-DD': ['stoicism', ...]} in first-seen order
    """
    per_day: Dict[str, List[str]] = {}
    for entry in entries:
        day = _parse_created_at(entry.created_at).astimezone(timezone.utc).date().isoformat()
        traditions = per_day.setdefault(day, [])
        tradition = getattr(entry, 'tradition', None)
        if tradition and tradition not in traditions and len(traditions) < MAX_TRADITIONS_PER_DAY:
            traditions.append(tradition)
    return per_day
