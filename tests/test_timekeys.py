"""
Tests for record id formatting, parsing and user time entry.
"""

import datetime

import pytest

from stream_explorer.exceptions import InvalidRangeError, InvalidRecordIdError
from stream_explorer.models import VisibleWindow
from stream_explorer.timekeys import (
    Granularity,
    approximately_equal,
    default_lookback,
    lookback_span,
    normalize_user_time,
    now_id,
    resolve_window,
    shift,
    to_instant,
    to_record_id,
)

NOW = datetime.datetime(2024, 5, 1, 12, 0, 0)
INSTANT = datetime.datetime(2024, 3, 7, 9, 5, 4, 123456)


class TestGranularity:
    def test_only_fine_granularities_are_cacheable(self):
        assert [g.value for g in Granularity if g.cacheable] == ["s", "ss"]

    def test_autofresh_support(self):
        assert not Granularity.DAY.supports_autofresh
        assert not Granularity.HOUR.supports_autofresh
        assert Granularity.MINUTE.supports_autofresh
        assert Granularity.SUBSECOND.supports_autofresh

    def test_dataset(self):
        assert Granularity.SUBSECOND.dataset == "all"
        assert Granularity.SECOND.dataset == "samp"
        assert Granularity.DAY.dataset == "samp"

    def test_default_lookback(self):
        assert default_lookback(Granularity.DAY) == 30
        assert default_lookback(Granularity.HOUR) == 30
        assert default_lookback(Granularity.MINUTE) == 300
        assert default_lookback(Granularity.SECOND) == 1800
        assert lookback_span(Granularity.MINUTE) == datetime.timedelta(hours=5)


class TestRecordIds:
    @pytest.mark.parametrize(
        "granularity,expected",
        [
            (Granularity.DAY, "2024-03-07"),
            (Granularity.HOUR, "2024-03-07T09"),
            (Granularity.MINUTE, "2024-03-07T09:05"),
            (Granularity.SECOND, "2024-03-07T09:05:04"),
            (Granularity.SUBSECOND, "2024-03-07T09:05:04"),
        ],
    )
    def test_to_record_id_truncates(self, granularity, expected):
        assert to_record_id(INSTANT, granularity) == expected

    def test_ids_sort_chronologically(self):
        instants = [INSTANT + datetime.timedelta(seconds=s) for s in (0, 9, 10, 59, 60, 3600)]
        ids = [to_record_id(i, Granularity.SECOND) for i in instants]
        assert ids == sorted(ids)

    def test_to_instant_fills_missing_components(self):
        assert to_instant("2024-03-07") == datetime.datetime(2024, 3, 7)
        assert to_instant("2024-03-07T09") == datetime.datetime(2024, 3, 7, 9)
        assert to_instant("2024-03-07T09:05:04") == datetime.datetime(2024, 3, 7, 9, 5, 4)

    @pytest.mark.parametrize("bad", ["", "2024/03/07", "2024-3-7", "2024-02-30", "2024-03-07T9"])
    def test_to_instant_rejects_malformed(self, bad):
        with pytest.raises(InvalidRecordIdError):
            to_instant(bad)

    def test_shift_in_units(self):
        assert shift(NOW, -30, Granularity.HOUR) == NOW - datetime.timedelta(hours=30)
        assert shift(NOW, 5, Granularity.SECOND) == NOW + datetime.timedelta(seconds=5)

    def test_approximately_equal_within_seven_seconds(self):
        assert approximately_equal("2024-05-01T12:00:00", "2024-05-01T12:00:06")
        assert approximately_equal("2024-05-01T12:00:06", "2024-05-01T12:00:00")
        assert not approximately_equal("2024-05-01T12:00:00", "2024-05-01T12:00:07")

    def test_now_id(self):
        assert now_id(Granularity.MINUTE, NOW) == "2024-05-01T12:00"


class TestNormalizeUserTime:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("21", "2024-05-21T12:00:00"),
            ("04-21", "2024-04-21T12:00:00"),
            ("2023-04-21", "2023-04-21T12:00:00"),
            ("21T16", "2024-05-21T16:00:00"),
            ("04-21T16:30", "2024-04-21T16:30:00"),
            ("2023-04-21T16:30:15", "2023-04-21T16:30:15"),
            ("  2023-04-21T16:30  ", "2023-04-21T16:30:00"),
        ],
    )
    def test_partial_forms(self, text, expected):
        assert normalize_user_time(text, NOW) == expected

    @pytest.mark.parametrize(
        "text",
        ["", "x", "2014-01-01", "2116-01-01", "13-01", "02-32", "21T24", "21T10:60", "2024-02-30"],
    )
    def test_rejects_out_of_range(self, text):
        with pytest.raises(InvalidRangeError, match="invalid date time"):
            normalize_user_time(text, NOW)


class TestResolveWindow:
    def test_empty_fields_give_default_window_ending_now(self):
        window = resolve_window("", "", Granularity.SECOND, now=NOW)
        assert window == VisibleWindow("2024-05-01T11:30:00", "2024-05-01T12:00:00")

    def test_empty_fields_keep_overlapping_current_start(self):
        current = VisibleWindow("2024-05-01T11:10:00", "2024-05-01T11:45:00")
        window = resolve_window("", "", Granularity.SECOND, current=current, now=NOW)
        assert window == VisibleWindow("2024-05-01T11:10:00", "2024-05-01T12:00:00")

    def test_empty_fields_ignore_disjoint_current(self):
        current = VisibleWindow("2024-05-01T08:00:00", "2024-05-01T09:00:00")
        window = resolve_window("", "", Granularity.SECOND, current=current, now=NOW)
        assert window.start == "2024-05-01T11:30:00"

    def test_missing_end_is_derived_from_start(self):
        window = resolve_window("2024-05-01T10:00", "", Granularity.MINUTE, now=NOW)
        assert window == VisibleWindow("2024-05-01T10:00", "2024-05-01T15:00")

    def test_missing_start_is_derived_from_end(self):
        window = resolve_window("", "2024-05-01T10:00", Granularity.SECOND, now=NOW)
        assert window == VisibleWindow("2024-05-01T09:30:00", "2024-05-01T10:00:00")

    def test_day_granularity_ids(self):
        window = resolve_window("2024-04-01", "2024-04-20", Granularity.DAY, now=NOW)
        assert window == VisibleWindow("2024-04-01", "2024-04-20")

    def test_end_before_start(self):
        with pytest.raises(InvalidRangeError, match="end before start"):
            resolve_window("2024-05-01T11:00", "2024-05-01T10:00", Granularity.SECOND, now=NOW)

    def test_span_too_large(self):
        with pytest.raises(InvalidRangeError, match="need too many data"):
            resolve_window("2024-05-01T10:00", "2024-05-01T11:00", Granularity.SECOND, now=NOW)

    def test_invalid_time_propagates(self):
        with pytest.raises(InvalidRangeError):
            resolve_window("yesterday", "", Granularity.SECOND, now=NOW)
