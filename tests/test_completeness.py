from conftest import UTC, at
from copilot.agent.completeness import check_completeness, merge_entities, missing_fields
from copilot.agent.question_agent import (build_alternatives_question, build_disambiguation_question,
                                          build_follow_up_message)
from copilot.agent.schemas import ConversationState, Entities, Intent


def _make_pending(**entities):
    return ConversationState(id="conv_pending",
                             original_query="Schedule a meeting",
                             operation="schedule",
                             pending_entities=Entities(**entities))


class TestMergeEntities:

    def test_new_turn_wins(self):
        pending = Entities(title="Old", duration=30)
        merged = merge_entities(pending, Entities(title="New"))

        assert merged.title == "New"
        assert merged.duration == 30

    def test_absent_values_do_not_erase(self):
        pending = Entities(title="Budget review", attendees=["ana@example.com"])
        merged = merge_entities(pending, Entities(duration=45))

        assert merged.title == "Budget review"
        assert merged.attendees == ["ana@example.com"]

    def test_time_answer_completes_pending_date(self):
        pending = Entities(date_time=at(1, 0), has_date=True, has_time=False)
        incoming = Entities(date_time=at(0, 14), has_date=False, has_time=True)
        merged = merge_entities(pending, incoming, UTC)

        assert merged.date_time == at(1, 14)
        assert merged.has_date and merged.has_time

    def test_date_answer_keeps_pending_time(self):
        pending = Entities(date_time=at(0, 15), has_date=False, has_time=True)
        incoming = Entities(date_time=at(3, 0), has_date=True, has_time=False)
        merged = merge_entities(pending, incoming, UTC)

        assert merged.date_time == at(3, 15)

    def test_explicit_time_clears_part_of_day(self):
        pending = Entities(date_time=at(1, 0), has_date=True, part_of_day="morning")
        incoming = Entities(date_time=at(0, 10), has_time=True)

        assert merge_entities(pending, incoming, UTC).part_of_day is None


class TestMissingFields:

    def test_schedule_order(self):
        assert missing_fields("schedule", Entities()) == ["title", "date_time", "duration"]

    def test_date_without_time_is_missing(self):
        entities = Entities(title="Sync", date_time=at(1, 0), has_date=True, duration=30)
        assert missing_fields("schedule", entities) == ["date_time"]

    def test_update_accepts_current_title(self):
        assert missing_fields("update", Entities(current_title="Weekly Sync")) == []

    def test_read_only_operations_need_nothing(self):
        assert missing_fields("query", Entities()) == []
        assert missing_fields("check_availability", Entities()) == []


class TestCheckCompleteness:

    def test_first_gap_is_asked(self):
        intent = Intent(operation="schedule", entities=Entities(title="Budget review"))
        result = check_completeness(intent, tz=UTC)

        assert result.complete is False
        assert result.missing_fields == ["date_time", "duration"]
        assert result.question == "What date and time would you prefer?"

    def test_date_only_asks_for_time_on_that_day(self):
        intent = Intent(operation="schedule",
                        entities=Entities(title="Budget review", date_time=at(1, 0), has_date=True))
        result = check_completeness(intent, tz=UTC)

        assert result.question == "What time on Tue, Oct 20 works for you?"

    def test_pending_entities_are_merged(self):
        pending = _make_pending(title="Budget review", date_time=at(1, 14), has_date=True,
                                has_time=True)
        intent = Intent(operation="schedule", entities=Entities(duration=30))
        result = check_completeness(intent, pending, UTC)

        assert result.complete is True
        assert result.entities.title == "Budget review"
        assert result.entities.duration == 30

    def test_repeating_the_same_answer_changes_nothing(self):
        incoming = Entities(date_time=at(0, 14), has_date=False, has_time=True)
        intent = Intent(operation="schedule", entities=incoming)
        pending = _make_pending(title="Budget review", date_time=at(1, 0), has_date=True)

        once = check_completeness(intent, pending, UTC)
        pending.pending_entities = once.entities
        twice = check_completeness(intent, pending, UTC)

        assert once.missing_fields == ["duration"]
        assert twice.missing_fields == once.missing_fields
        assert twice.question == once.question
        assert twice.entities == once.entities
        assert merge_entities(once.entities, incoming, UTC) == once.entities

    def test_cancel_question(self):
        result = check_completeness(Intent(operation="cancel"))
        assert result.question == ("Which event would you like to cancel? "
                                   "Please provide the event title.")


class TestQuestionWording:

    def test_follow_up_message_mentions_title(self):
        message = build_follow_up_message("schedule", Entities(title="Budget review"),
                                          "How long should this meeting be?")
        assert message == ('I can schedule "Budget review" for you. '
                           "How long should this meeting be?")

    def test_alternatives_question(self):
        assert build_alternatives_question(0) == "Would you like to try a different day or time?"
        assert build_alternatives_question(3) == ("Reply 1, 2 or 3 to pick an alternative, "
                                                  "or suggest another time.")

    def test_disambiguation_question(self):
        assert build_disambiguation_question(2) == (
            "Reply with a number from 1 to 2, or give a more specific title.")
