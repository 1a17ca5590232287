"""Consistency checks between constants and the schema enums."""

from app.core.constants import (
    ACTIVE_QUEUE_STATUSES,
    ALLOWED_QUEUE_TRANSITIONS,
    CALL_OUTCOMES,
    CALL_STATUSES,
    PRIORITY_RANK,
    QUEUE_STATUSES,
    RETRYABLE_CALL_OUTCOMES,
    TERMINAL_CALL_STATUSES,
    TERMINAL_QUEUE_STATUSES,
    WAITING_STATUSES,
    WEEKDAY_ABBREVIATIONS,
)
from app.schemas.common import CallOutcome, CallStatus, QueuePriority, QueueStatus


class TestQueueConstants:
    """Queue status and priority constants match the enums."""

    def test_queue_statuses_match_enum(self):
        assert QUEUE_STATUSES == {s.value for s in QueueStatus}

    def test_every_status_has_transitions(self):
        assert set(ALLOWED_QUEUE_TRANSITIONS) == QUEUE_STATUSES
        for targets in ALLOWED_QUEUE_TRANSITIONS.values():
            assert set(targets) <= QUEUE_STATUSES

    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL_QUEUE_STATUSES:
            assert ALLOWED_QUEUE_TRANSITIONS[status] == []

    def test_status_groups_partition_the_statuses(self):
        assert ACTIVE_QUEUE_STATUSES | TERMINAL_QUEUE_STATUSES == QUEUE_STATUSES
        assert not ACTIVE_QUEUE_STATUSES & TERMINAL_QUEUE_STATUSES
        assert WAITING_STATUSES < ACTIVE_QUEUE_STATUSES

    def test_priority_rank_covers_every_priority(self):
        assert set(PRIORITY_RANK) == {p.value for p in QueuePriority}
        ranks = [PRIORITY_RANK[p] for p in ("urgent", "high", "normal", "low")]
        assert ranks == sorted(ranks)


class TestCallConstants:
    def test_call_statuses_match_enum(self):
        assert CALL_STATUSES == {s.value for s in CallStatus}
        assert TERMINAL_CALL_STATUSES <= CALL_STATUSES

    def test_call_outcomes_match_enum(self):
        assert CALL_OUTCOMES == {o.value for o in CallOutcome}
        assert RETRYABLE_CALL_OUTCOMES <= CALL_OUTCOMES

    def test_weekdays_start_on_monday(self):
        assert WEEKDAY_ABBREVIATIONS[0] == "Mon"
        assert len(WEEKDAY_ABBREVIATIONS) == 7


class TestErrorMapping:
    def test_every_domain_error_has_a_response(self):
        from app.core import exceptions
        from app.main import _DOMAIN_ERRORS

        declared = {
            cls
            for cls in vars(exceptions).values()
            if isinstance(cls, type)
            and issubclass(cls, exceptions.CallQueueError)
            and cls is not exceptions.CallQueueError
        }
        assert declared == set(_DOMAIN_ERRORS)
