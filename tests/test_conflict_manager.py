from conftest import at
from copilot.agent.conflict_manager import find_conflicts, free_intervals, has_conflict, merge_busy
from copilot.models import BusyPeriod, TimeInterval


def _make_interval(start_hour, start_minute, end_hour, end_minute):
    return TimeInterval(start=at(0, start_hour, start_minute), end=at(0, end_hour, end_minute))


def _make_busy(start_hour, start_minute, end_hour, end_minute, event_id=None):
    return BusyPeriod(start=at(0, start_hour, start_minute), end=at(0, end_hour, end_minute),
                      event_id=event_id)


class TestOverlap:

    def test_touching_boundary_is_not_a_conflict(self):
        assert has_conflict(_make_interval(10, 0, 11, 0), [_make_busy(11, 0, 12, 0)]) is False
        assert has_conflict(_make_interval(11, 0, 12, 0), [_make_busy(10, 0, 11, 0)]) is False

    def test_contained_period_conflicts(self):
        assert has_conflict(_make_interval(10, 0, 11, 0), [_make_busy(10, 30, 10, 45)]) is True

    def test_overlap_is_symmetric(self):
        pairs = [((9, 0, 10, 0), (9, 30, 11, 0)),
                 ((9, 0, 10, 0), (10, 0, 11, 0)),
                 ((9, 0, 12, 0), (10, 0, 11, 0)),
                 ((13, 0, 14, 0), (9, 0, 10, 0))]
        for a, b in pairs:
            forward = has_conflict(_make_interval(*a), [_make_busy(*b)])
            backward = has_conflict(_make_interval(*b), [_make_busy(*a)])
            assert forward == backward

    def test_empty_busy_list(self):
        assert find_conflicts(_make_interval(10, 0, 11, 0), []) == []

    def test_returns_every_overlapping_period_in_order(self):
        busy = [_make_busy(9, 0, 9, 30), _make_busy(10, 15, 10, 30), _make_busy(10, 45, 12, 0)]
        conflicts = find_conflicts(_make_interval(10, 0, 11, 0), busy)
        assert conflicts == busy[1:]

    def test_ignores_the_event_being_moved(self):
        busy = [_make_busy(10, 0, 11, 0, event_id="evt_self")]
        assert find_conflicts(_make_interval(10, 30, 11, 30), busy, ignore_event_id="evt_self") == []


class TestFreeIntervals:

    def test_merges_overlapping_and_touching(self):
        merged = merge_busy([_make_busy(10, 0, 11, 0), _make_busy(9, 0, 10, 0),
                             _make_busy(10, 30, 11, 30)])
        assert [(m.start, m.end) for m in merged] == [(at(0, 9), at(0, 11, 30))]

    def test_gaps_inside_window(self):
        window = _make_interval(9, 0, 17, 0)
        gaps = free_intervals(window, [_make_busy(8, 0, 9, 30), _make_busy(12, 0, 13, 0)])
        assert [(g.start, g.end) for g in gaps] == [(at(0, 9, 30), at(0, 12)),
                                                    (at(0, 13), at(0, 17))]

    def test_fully_busy_window_has_no_gaps(self):
        assert free_intervals(_make_interval(9, 0, 10, 0), [_make_busy(8, 0, 11, 0)]) == []
