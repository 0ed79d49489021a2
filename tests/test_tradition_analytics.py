"""
Test journal analytics by tradition
"""

from datetime import datetime, timezone

import pytest

from backend.persistence import JournalEntry
from backend.utils.tradition_analytics import (
    ALL_TRADITIONS,
    get_most_engaged_tradition,
    get_total_voices_count,
    get_tradition_counts,
    get_tradition_counts_by_time_range,
    get_traditions_per_day,
    get_traditions_sorted_by_count,
)


def entry(entry_id, tradition, created_at):
    return JournalEntry(
        id=entry_id,
        user_id='u1',
        user_input="I feel stuck",
        created_at=created_at,
        updated_at=created_at,
        tradition=tradition,
    )


@pytest.fixture
def entries():
    return [
        entry('1', 'stoicism', "2026-03-01T08:00:00Z"),
        entry('2', 'sufism', "2026-03-01T09:00:00Z"),
        entry('3', 'stoicism', "2026-03-01T10:00:00Z"),
        entry('4', 'taoism', "2026-03-01T11:00:00Z"),
        entry('5', 'judaism', "2026-03-01T12:00:00Z"),
        entry('6', None, "2026-03-02T08:00:00Z"),
        entry('7', 'sufism', "2026-03-05T08:00:00+00:00"),
    ]


class TestCounts:

    def test_counts_include_every_tradition(self, entries):
        counts = get_tradition_counts(entries)

        assert set(counts) == set(ALL_TRADITIONS)
        assert counts['stoicism'] == 2
        assert counts['sufism'] == 2
        assert counts['buddhism'] == 0

    def test_total_voices_skips_unsaved_voice(self, entries):
        assert get_total_voices_count(entries) == 6

    def test_time_range_is_inclusive(self, entries):
        counts = get_tradition_counts_by_time_range(
            entries,
            datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 1, 12, 0),
        )
        assert counts['sufism'] == 1
        assert counts['stoicism'] == 1
        assert counts['judaism'] == 1


class TestRanking:

    def test_most_engaged_tie_goes_to_first_listed(self, entries):
        assert get_most_engaged_tradition(entries) == 'stoicism'

    def test_most_engaged_empty(self):
        assert get_most_engaged_tradition([entry('1', None, "2026-03-01T08:00:00Z")]) is None

    def test_sorted_by_count(self, entries):
        ranked = get_traditions_sorted_by_count(entries)

        assert len(ranked) == len(ALL_TRADITIONS)
        assert ranked[0] == {'tradition': 'stoicism', 'count': 2}
        assert ranked[1] == {'tradition': 'sufism', 'count': 2}
        assert ranked[-1]['count'] == 0


class TestPerDay:

    def test_capped_at_three(self, entries):
        per_day = get_traditions_per_day(entries)
        assert per_day['2026-03-01'] == ['stoicism', 'sufism', 'taoism']

    def test_days_without_voice(self, entries):
        per_day = get_traditions_per_day(entries)
        assert per_day['2026-03-02'] == []
        assert per_day['2026-03-05'] == ['sufism']
