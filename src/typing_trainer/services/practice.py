"""Practice service: loads snapshots, runs the engine, persists the results."""

import threading
from collections.abc import Callable, Sequence
from datetime import datetime

import structlog
from pydantic import BaseModel

from typing_trainer.engine.aggregator import SessionAggregator, day_streak
from typing_trainer.engine.core import AdaptiveEngine, AttemptOutcome
from typing_trainer.engine.kana import extract_characters, sentence_difficulty, to_hiragana
from typing_trainer.errors import DuplicateAttempt, InvalidInput, UnknownItem
from typing_trainer.models.content import ItemKind, Selection, Sentence
from typing_trainer.models.progress import CharacterProgress
from typing_trainer.models.session import (
    AttemptEvent,
    DailyActivity,
    SentenceHistoryEntry,
    SentenceResult,
    SessionRecord,
)
from typing_trainer.models.user_profile import UserProfile
from typing_trainer.storage.state_store import JsonStateStore

logger = structlog.get_logger()

SELECTION_HISTORY_LIMIT = 50


class SentenceCompletion(BaseModel):
    history: SentenceHistoryEntry
    result: SentenceResult
    activity: DailyActivity
    first_today: bool
    profile: UserProfile


class PracticeService:
    """Host side of the engine: one instance per user state directory.

    Attempts are applied one at a time so each is persisted atomically
    relative to the next.

    Args:
        store: Persistence for progress, profile, logs and history.
        engine: Adaptive engine.
        sentences: Sentence catalogue; their characters are seeded as new items.
        clock: Source of "now" for calls that do not pass a timestamp.
    """

    def __init__(
        self,
        store: JsonStateStore,
        engine: AdaptiveEngine,
        sentences: Sequence[Sentence] = (),
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.engine = engine
        self.aggregator = SessionAggregator()
        self.sentences = {s.sentence_id: s for s in sentences}
        self.clock = clock
        self._lock = threading.Lock()

        characters = sorted({c for s in sentences for c in extract_characters(s.reading)})
        added = self.store.ensure_characters(characters)
        if added:
            logger.info("characters_seeded", count=added)

    # -- profile ------------------------------------------------------------

    def profile(self, now: datetime | None = None) -> UserProfile:
        """Load the profile, creating and persisting it on first use (at ``now``, default the clock)."""
        profile = self.store.load_profile()
        if profile is None:
            profile = self.engine.new_profile(now or self.clock())
            self.store.save_profile(profile)
            logger.info("user_profile_created")
        return profile

    def progress(self) -> dict[str, CharacterProgress]:
        return self.store.load_progress()

    # -- sessions -----------------------------------------------------------

    def start_session(self) -> SessionRecord:
        session = self.aggregator.start_session(self.clock())
        self.store.save_session(session)
        logger.info("session_started", session_id=session.session_id)
        return session

    def end_session(self, session_id: str) -> SessionRecord:
        session = self._session(session_id)
        session = self.aggregator.end_session(session, self.clock())
        self.store.save_session(session)
        return session

    def _session(self, session_id: str) -> SessionRecord:
        session = self.store.get_session(session_id)
        if session is None:
            raise UnknownItem("session", session_id)
        return session

    # -- attempts -----------------------------------------------------------

    def record_attempt(self, event: AttemptEvent) -> AttemptOutcome:
        """Apply one attempt exactly once and persist every affected record.

        Reads, the engine update and the commit all happen under the store
        lock, so concurrent writers never interleave with an attempt.

        Raises:
            DuplicateAttempt: The event id was already recorded.
            UnknownItem: The session, sentence, history entry or character is unknown.
            InvalidInput: The event is otherwise invalid.
        """
        with self._lock, self.store.locked():
            if self.store.has_attempt(event.event_id):
                raise DuplicateAttempt(event.event_id)
            if event.sentence_id is not None and self.sentences and event.sentence_id not in self.sentences:
                raise UnknownItem("sentence", event.sentence_id)

            event = event.model_copy(update={"character": to_hiragana(event.character)})
            session = self._session(event.session_id)
            event = self._link_history(event)

            progress = self.store.get_progress(event.character)
            if progress is None:
                if self.sentences:
                    raise UnknownItem("character", event.character)
                progress = CharacterProgress.new(event.character)

            outcome = self.engine.apply_attempt(progress, self.profile(event.timestamp), event)
            session, entry = self.aggregator.record_attempt(session, event)
            self.store.commit_attempt(entry, outcome.progress, outcome.profile, session)

        logger.info(
            "attempt_recorded",
            session_id=event.session_id,
            character=event.character,
            correct=event.correct,
            mastery=round(outcome.progress.mastery_score, 3),
            level=outcome.progress.level.value,
        )
        return outcome

    def _link_history(self, event: AttemptEvent) -> AttemptEvent:
        """Check the event against the sentence history entry it names, filling in its sentence."""
        if event.history_id is None:
            return event
        entry = self.store.get_sentence_history(event.history_id)
        if entry is None:
            raise UnknownItem("sentence history", event.history_id)
        if entry.completed:
            raise InvalidInput(f"Sentence history {entry.history_id} is already completed")
        if entry.session_id is not None and entry.session_id != event.session_id:
            raise InvalidInput(f"Sentence history {entry.history_id} belongs to another session")
        if event.sentence_id is None:
            return event.model_copy(update={"sentence_id": entry.sentence_id})
        if event.sentence_id != entry.sentence_id:
            raise InvalidInput(
                f"Attempt for sentence {event.sentence_id} does not match history entry {entry.sentence_id}"
            )
        return event

    # -- sentences ----------------------------------------------------------

    def show_sentence(self, sentence_id: str, session_id: str | None = None) -> SentenceHistoryEntry:
        sentence = self.sentences.get(sentence_id)
        if sentence is None:
            raise UnknownItem("sentence", sentence_id)
        if session_id is not None:
            self._session(session_id)
        difficulty = sentence_difficulty(sentence, self.store.load_progress())
        entry = self.aggregator.sentence_shown(sentence_id, self.clock(), session_id, difficulty)
        self.store.save_sentence_history(entry)
        return entry

    def complete_sentence(self, history_id: str) -> SentenceCompletion:
        """Close a shown sentence: history outcome, daily activity, optional per-sentence difficulty."""
        now = self.clock()
        with self._lock, self.store.locked():
            entry = self.store.get_sentence_history(history_id)
            if entry is None:
                raise UnknownItem("sentence history", history_id)

            attempts = self.store.read_attempts(history_id=history_id)
            result = self.aggregator.sentence_result(entry.sentence_id, attempts)
            entry = self.aggregator.complete_sentence(entry, result, now)

            activity, first_today = self.aggregator.record_sentence_completed(
                self.store.get_daily_activity(now.date()), now
            )

            profile = self.profile()
            if self.engine.config.per_sentence_difficulty:
                profile = self.engine.adapter.apply_sentence_result(profile, result, now)
                self.store.save_profile(profile)

            self.store.save_sentence_history(entry)
            self.store.save_daily_activity(activity)

        logger.info(
            "sentence_completed",
            sentence_id=entry.sentence_id,
            accuracy=round(result.accuracy, 3),
            first_today=first_today,
        )
        return SentenceCompletion(
            history=entry,
            result=result,
            activity=activity,
            first_today=first_today,
            profile=profile,
        )

    # -- queries ------------------------------------------------------------

    def next_item(self, kind: ItemKind | None = None, now: datetime | None = None) -> Selection:
        """Next item to practice; sentences when a catalogue is loaded, unless characters are asked for."""
        now = now or self.clock()
        if kind is None:
            kind = ItemKind.SENTENCE if self.sentences else ItemKind.CHARACTER
        sentences = list(self.sentences.values()) if kind == ItemKind.SENTENCE else None
        return self.engine.next_item(
            self.store.load_progress(),
            self.profile(),
            self.store.load_sentence_history(limit=SELECTION_HISTORY_LIMIT),
            now,
            sentences=sentences,
        )

    def due_count(self, now: datetime | None = None) -> dict[str, int]:
        now = now or self.clock()
        progress = self.store.load_progress()
        return {
            "due": self.engine.due_count(progress, now),
            "new": self.engine.scheduler.new_count(progress.values()),
        }

    def day_streak(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        return day_streak(self.store.activity_days(), now.date())

    def last_session_summary(self) -> dict | None:
        last = self.store.last_completed_session()
        if last is None or last.total_chars == 0:
            return None
        return {
            "accuracy": round(last.accuracy * 100),
            "max_streak": last.max_streak,
        }
