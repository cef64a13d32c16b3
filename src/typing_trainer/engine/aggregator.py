"""Session totals, attempt log, sentence history and daily activity."""

from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta

import structlog

from typing_trainer.errors import InvalidInput
from typing_trainer.models.session import (
    AttemptEvent,
    AttemptLogEntry,
    DailyActivity,
    SentenceHistoryEntry,
    SentenceResult,
    SessionRecord,
)

logger = structlog.get_logger()


class SessionAggregator:
    """Folds attempt and session events into running totals.

    Every method returns new records; persisting them is the caller's job.
    """

    def start_session(self, now: datetime, session_id: str | None = None) -> SessionRecord:
        if session_id is None:
            return SessionRecord(started_at=now)
        return SessionRecord(session_id=session_id, started_at=now)

    def record_attempt(
        self,
        session: SessionRecord,
        event: AttemptEvent,
    ) -> tuple[SessionRecord, AttemptLogEntry]:
        """Count one attempt into the session and build its log entry."""
        if not session.active:
            raise InvalidInput(f"Session {session.session_id} has already ended")
        if event.session_id != session.session_id:
            raise InvalidInput(
                f"Attempt belongs to session {event.session_id}, not {session.session_id}"
            )

        current_streak = session.current_streak + 1 if event.correct else 0
        updated = session.model_copy(
            update={
                "total_chars": session.total_chars + 1,
                "correct_chars": session.correct_chars + (1 if event.correct else 0),
                "current_streak": current_streak,
                "max_streak": max(session.max_streak, current_streak),
            }
        )
        entry = AttemptLogEntry(
            event_id=event.event_id,
            session_id=event.session_id,
            sentence_id=event.sentence_id,
            history_id=event.history_id,
            character=event.character,
            correct=event.correct,
            time_ms=event.latency_ms,
            hint_used=event.hint_used,
            typed_wrong=None if event.correct else event.typed_wrong,
            created_at=event.timestamp,
        )
        return updated, entry

    def end_session(self, session: SessionRecord, now: datetime) -> SessionRecord:
        if not session.active:
            raise InvalidInput(f"Session {session.session_id} has already ended")
        if now < session.started_at:
            raise InvalidInput(f"Session {session.session_id} cannot end before it started")
        logger.info(
            "session_ended",
            session_id=session.session_id,
            total_chars=session.total_chars,
            accuracy=round(session.accuracy, 3),
            max_streak=session.max_streak,
        )
        return session.model_copy(update={"ended_at": now})

    def sentence_shown(
        self,
        sentence_id: str,
        now: datetime,
        session_id: str | None = None,
        difficulty: float | None = None,
    ) -> SentenceHistoryEntry:
        return SentenceHistoryEntry(
            sentence_id=sentence_id,
            session_id=session_id,
            difficulty_at_time=difficulty,
            shown_at=now,
        )

    def sentence_result(
        self,
        sentence_id: str,
        attempts: Sequence[AttemptLogEntry],
    ) -> SentenceResult:
        """Summarize the attempts made on one sentence."""
        total = len(attempts)
        correct = sum(1 for a in attempts if a.correct)
        total_time = sum(a.time_ms for a in attempts)
        return SentenceResult(
            sentence_id=sentence_id,
            accuracy=correct / total if total else 0.0,
            avg_time_ms=total_time / total if total else 0.0,
            total_time_ms=total_time,
            hints_used=sum(1 for a in attempts if a.hint_used),
            total_chars=total,
            correct_chars=correct,
            had_errors=correct < total,
        )

    def complete_sentence(
        self,
        entry: SentenceHistoryEntry,
        result: SentenceResult,
        now: datetime,
    ) -> SentenceHistoryEntry:
        if entry.completed:
            raise InvalidInput(f"Sentence history {entry.history_id} is already completed")
        if result.sentence_id != entry.sentence_id:
            raise InvalidInput(
                f"Result for {result.sentence_id} does not match history entry {entry.sentence_id}"
            )
        if result.total_chars == 0:
            raise InvalidInput(f"Sentence history {entry.history_id} has no attempts to complete")
        if now < entry.shown_at:
            raise InvalidInput(f"Sentence history {entry.history_id} cannot complete before it was shown")
        return entry.model_copy(
            update={
                "accuracy": result.accuracy,
                "avg_time_ms": result.avg_time_ms,
                "hints_used": result.hints_used,
                "completed_at": now,
            }
        )

    def record_sentence_completed(
        self,
        activity: DailyActivity | None,
        now: datetime,
    ) -> tuple[DailyActivity, bool]:
        """Count a completed sentence into today's activity.

        Returns:
            The updated activity row and whether this was the first sentence today.
        """
        today = now.date()
        if activity is None or activity.day != today:
            return DailyActivity(day=today, sentences_completed=1, first_sentence_at=now), True
        return activity.model_copy(
            update={"sentences_completed": activity.sentences_completed + 1}
        ), False


def day_streak(days: Iterable[date], today: date) -> int:
    """Consecutive practice days ending today, or yesterday if today has no practice yet."""
    practiced = set(days)
    if not practiced:
        return 0

    yesterday = today - timedelta(days=1)
    if today in practiced:
        expected = today
    elif yesterday in practiced:
        expected = yesterday
    else:
        return 0

    streak = 0
    while expected in practiced:
        streak += 1
        expected -= timedelta(days=1)
    return streak
