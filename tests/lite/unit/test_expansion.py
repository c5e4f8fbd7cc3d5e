"""Unit tests for multi-day expansion and the date window."""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from calendarsync_lite.calendar.expansion import (
    CONTINUATION_SUFFIX,
    DateWindow,
    SourceEvent,
    covered_days,
    expand_event,
    occurrence_id,
)
from calendarsync_lite.sync_models import OriginKind

pytestmark = [pytest.mark.unit, pytest.mark.fast]

UTC = timezone.utc


def _source(start: datetime, end: datetime, **kwargs) -> SourceEvent:
    return SourceEvent(uid=kwargs.pop("uid", "evt"), title=kwargs.pop("title", "Stay"), start=start, end=end, **kwargs)


def test_expand_event_when_spanning_three_days_then_three_occurrences() -> None:
    """2025-06-10T22:00 -> 2025-06-12T02:00 yields three day-bounded occurrences."""
    source = _source(datetime(2025, 6, 10, 22, tzinfo=UTC), datetime(2025, 6, 12, 2, tzinfo=UTC))

    occurrences = expand_event(source, "feed1", "user1", OriginKind.ICAL, UTC)

    assert len(occurrences) == 3
    first, middle, last = occurrences
    assert first.start_time == datetime(2025, 6, 10, 22, tzinfo=UTC)
    assert first.end_time == datetime(2025, 6, 10, 23, 59, 59, tzinfo=UTC)
    assert middle.start_time == datetime(2025, 6, 11, 0, 0, tzinfo=UTC)
    assert middle.end_time == datetime(2025, 6, 11, 23, 59, 59, tzinfo=UTC)
    assert last.start_time == datetime(2025, 6, 12, 0, 0, tzinfo=UTC)
    assert last.end_time == datetime(2025, 6, 12, 2, 0, tzinfo=UTC)


def test_expand_event_when_multi_day_then_ids_carry_dates_and_titles_continue() -> None:
    """Each occurrence id ends with its date; days after the first are marked as continued."""
    source = _source(datetime(2025, 6, 10, 22, tzinfo=UTC), datetime(2025, 6, 12, 2, tzinfo=UTC))

    occurrences = expand_event(source, "feed1", "user1", OriginKind.ICAL, UTC)

    assert [o.id for o in occurrences] == [
        "feed1-evt-2025-06-10",
        "feed1-evt-2025-06-11",
        "feed1-evt-2025-06-12",
    ]
    assert occurrences[0].title == "Stay"
    assert all(o.title == "Stay" + CONTINUATION_SUFFIX for o in occurrences[1:])
    assert [o.origin.occurrence_date for o in occurrences] == [
        date(2025, 6, 10),
        date(2025, 6, 11),
        date(2025, 6, 12),
    ]


def test_expand_event_when_single_day_then_id_without_date() -> None:
    """A single-day event keeps the plain feed-uid id."""
    source = _source(datetime(2025, 6, 10, 9, tzinfo=UTC), datetime(2025, 6, 10, 10, tzinfo=UTC))

    (occurrence,) = expand_event(source, "feed1", "user1", OriginKind.ICAL, UTC, default_color="#123456")

    assert occurrence.id == "feed1-evt"
    assert occurrence.color == "#123456"
    assert occurrence.end_time == datetime(2025, 6, 10, 10, tzinfo=UTC)


def test_expand_event_when_recurrence_instance_then_id_has_date() -> None:
    """Recurrence instances are always date-suffixed so siblings do not collide."""
    source = _source(
        datetime(2025, 6, 9, 10, tzinfo=UTC), datetime(2025, 6, 9, 12, tzinfo=UTC), is_instance=True
    )

    (occurrence,) = expand_event(source, "feed1", "user1", OriginKind.ICAL, UTC)

    assert occurrence.id == "feed1-evt-2025-06-09"


def test_expand_event_when_all_day_then_each_day_ends_before_midnight() -> None:
    """All-day spans end at 23:59:59 on every covered day, including the last."""
    source = _source(
        datetime(2025, 7, 1, tzinfo=UTC), datetime(2025, 7, 3, tzinfo=UTC), all_day=True
    )

    occurrences = expand_event(source, "feed1", "user1", OriginKind.ICAL, UTC)

    assert len(occurrences) == 2
    assert all(o.all_day for o in occurrences)
    assert occurrences[-1].end_time.time() == time(23, 59, 59)


def test_covered_days_when_end_exactly_midnight_then_next_day_excluded() -> None:
    """An interval ending at 00:00 does not touch the following day."""
    days = covered_days(datetime(2025, 6, 10, 20, tzinfo=UTC), datetime(2025, 6, 11, 0, 0, tzinfo=UTC))
    assert days == [date(2025, 6, 10)]


def test_date_window_when_event_more_than_year_away_then_excluded() -> None:
    """Events entirely outside +/- one year are rejected; overlapping ones kept."""
    now = datetime(2025, 6, 1, 12, tzinfo=UTC)
    window = DateWindow.around(now, 365, 365)
    past = _source(now - timedelta(days=400), now - timedelta(days=399))
    future = _source(now + timedelta(days=366), now + timedelta(days=367))
    straddling = _source(now - timedelta(days=366), now - timedelta(days=360))

    assert not window.contains(past)
    assert not window.contains(future)
    assert window.contains(straddling)


def test_occurrence_id_when_day_given_then_iso_suffix() -> None:
    """Occurrence ids use the ISO date as suffix."""
    assert occurrence_id("f", "u", date(2025, 1, 2)) == "f-u-2025-01-02"
    assert occurrence_id("f", "u") == "f-u"
