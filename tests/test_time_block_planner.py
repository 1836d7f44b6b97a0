from datetime import timedelta

import pytest

from conftest import UTC, at
from copilot.agent.time_block_planner import SlotPreferences, TimeBlockPlanner, find_slots
from copilot.errors import InvalidInputError
from copilot.models import BusyPeriod, TimeInterval, WorkingHours


def _make_window(days=1):
    start = at(1, 0)
    return TimeInterval(start=start, end=start + timedelta(days=days))


@pytest.fixture
def planner():
    return TimeBlockPlanner(working_hours=WorkingHours())


class TestScoring:

    def test_preferred_bands_and_penalties(self, planner):
        assert planner.score(at(1, 10))[0] == pytest.approx(1.0)
        assert planner.score(at(1, 14, 30))[0] == pytest.approx(0.95)
        assert planner.score(at(1, 12))[0] == pytest.approx(0.8)
        assert planner.score(at(1, 16, 30))[0] == pytest.approx(0.8)
        assert planner.score(at(1, 8))[0] == pytest.approx(0.7)
        assert planner.score(at(1, 12)) == (pytest.approx(0.8), "Available slot")

    def test_proximity_bonus_and_rationale(self, planner):
        later_score, later = planner.score(at(1, 13), anchor=at(1, 12))
        earlier_score, earlier = planner.score(at(1, 9), anchor=at(1, 12))
        assert later == "Later alternative"
        assert earlier == "Earlier alternative"
        assert later_score == pytest.approx(0.8 + 0.5 / 2)
        assert earlier_score == pytest.approx(0.8 + 0.5 / 4)

    def test_custom_preferences(self):
        prefs = SlotPreferences(base_score=0.9, preferred_bands=[])
        assert TimeBlockPlanner(preferences=prefs).score(at(1, 10))[0] == pytest.approx(0.9)


class TestFindSlots:

    def test_slots_stay_inside_working_hours(self, planner):
        slots = planner.find_slots(60, _make_window(), [], UTC, max_results=50)
        assert slots
        for slot in slots:
            assert slot.start >= at(1, 9)
            assert slot.end <= at(1, 17)
        # 09:00 .. 16:00 in half-hour steps.
        assert len(slots) == 15

    def test_slot_may_end_exactly_at_closing(self, planner):
        slots = planner.find_slots(60, _make_window(), [], UTC, max_results=50)
        assert at(1, 16) in [slot.start for slot in slots]

    def test_no_slot_overlaps_busy_time(self, planner):
        busy = [BusyPeriod(start=at(1, 9), end=at(1, 12)),
                BusyPeriod(start=at(1, 13), end=at(1, 17))]
        slots = planner.find_slots(30, _make_window(), busy, UTC, max_results=50)
        assert [(s.start, s.end) for s in slots] == [(at(1, 12), at(1, 12, 30)),
                                                    (at(1, 12, 30), at(1, 13))]

    def test_ranked_best_first_ties_to_earlier(self, planner):
        slots = planner.find_slots(30, _make_window(), [], UTC, max_results=3)
        assert [s.start for s in slots] == [at(1, 10), at(1, 10, 30), at(1, 11)]

    def test_candidates_past_window_end_are_dropped(self, planner):
        window = TimeInterval(start=at(1, 15), end=at(1, 16, 30))
        slots = planner.find_slots(60, window, [], UTC, max_results=10)
        assert [s.start for s in slots] == [at(1, 15), at(1, 15, 30)]

    def test_nothing_fits_is_empty_not_error(self, planner):
        busy = [BusyPeriod(start=at(1, 0), end=at(2, 0))]
        assert planner.find_slots(30, _make_window(), busy, UTC) == []

    def test_rejects_non_positive_duration(self, planner):
        with pytest.raises(InvalidInputError) as info:
            planner.find_slots(0, _make_window(), [], UTC)
        assert info.value.field == "duration"

    def test_anchor_pulls_nearby_slots_up(self, planner):
        busy = [BusyPeriod(start=at(1, 14), end=at(1, 15))]
        slots = find_slots(60, _make_window(), WorkingHours(), busy, UTC, max_results=2,
                           anchor=at(1, 14))
        assert slots[0].start == at(1, 15)
        assert slots[0].rationale == "Later alternative"

    def test_tied_anchor_ranking_is_repeatable(self, planner):
        busy = [BusyPeriod(start=at(1, 9), end=at(1, 12)),
                BusyPeriod(start=at(1, 13), end=at(1, 17))]
        first = planner.find_slots(30, _make_window(), busy, UTC, max_results=5,
                                   anchor=at(1, 12, 15))
        second = planner.find_slots(30, _make_window(), busy, UTC, max_results=5,
                                    anchor=at(1, 12, 15))

        assert first == second
        assert first[0].score == first[1].score
        assert [(s.start, s.rationale) for s in first] == [(at(1, 12), "Earlier alternative"),
                                                           (at(1, 12, 30), "Later alternative")]
