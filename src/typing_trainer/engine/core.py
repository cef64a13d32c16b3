"""Adaptive engine facade: one attempt through estimator, adapter and scheduler."""

import random
from collections.abc import Mapping, Sequence
from datetime import datetime

import structlog
from pydantic import BaseModel

from typing_trainer.config import EngineConfig
from typing_trainer.engine.difficulty import DifficultyAdapter, MasteryChange
from typing_trainer.engine.kana import to_hiragana
from typing_trainer.engine.mastery import MasteryEstimator
from typing_trainer.engine.scheduler import ReviewScheduler
from typing_trainer.engine.selector import ItemSelector
from typing_trainer.errors import InvalidInput
from typing_trainer.models.content import Selection, Sentence
from typing_trainer.models.progress import CharacterProgress
from typing_trainer.models.session import AttemptEvent, SentenceHistoryEntry
from typing_trainer.models.user_profile import UserProfile

logger = structlog.get_logger()


class AttemptOutcome(BaseModel):
    """Snapshots to persist after one attempt."""

    progress: CharacterProgress
    profile: UserProfile

    @property
    def next_review_at(self) -> datetime | None:
        return self.progress.next_review_at


class AdaptiveEngine:
    """Pure decision core of the trainer. Performs no I/O.

    Args:
        config: Engine tuning constants shared by all components.
        rng: Random source for selection tie-breaks; seed it for reproducible picks.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.rng = rng or random.Random()
        self.estimator = MasteryEstimator(self.config)
        self.adapter = DifficultyAdapter(self.config)
        self.scheduler = ReviewScheduler(self.config)
        self.selector = ItemSelector(self.config)

    def new_profile(self, now: datetime) -> UserProfile:
        return UserProfile.create(
            now,
            current_difficulty=self.config.initial_difficulty,
            speed_baseline_ms=self.config.initial_baseline_ms,
        )

    def apply_attempt(
        self,
        progress: CharacterProgress,
        profile: UserProfile,
        event: AttemptEvent,
    ) -> AttemptOutcome:
        """Run one attempt event through the update pipeline.

        Raises:
            InvalidInput: The event does not match ``progress`` or carries a bad latency.
        """
        if to_hiragana(event.character) != to_hiragana(progress.character):
            raise InvalidInput(
                f"Attempt for {event.character!r} applied to progress of {progress.character!r}"
            )

        now = event.timestamp
        updated = self.estimator.update(
            progress,
            event.correct,
            event.latency_ms,
            event.hint_used,
            now,
            hint_shown=event.hint_shown,
            speed_baseline_ms=profile.speed_baseline_ms,
        )
        profile = self.adapter.update(
            profile,
            event.correct,
            event.latency_ms,
            now,
            hint_used=event.hint_used,
            adjust_difficulty=not self.config.per_sentence_difficulty,
            mastery_change=MasteryChange(
                before=progress.mastery_score,
                after=updated.mastery_score,
                first_attempt=progress.attempt_count == 0,
            ),
        )
        updated = self.scheduler.apply(updated, now)

        logger.debug(
            "attempt_applied",
            character=updated.character,
            correct=event.correct,
            latency_ms=event.latency_ms,
            mastery=round(updated.mastery_score, 3),
            level=updated.level.value,
            difficulty=round(profile.current_difficulty, 3),
        )
        return AttemptOutcome(progress=updated, profile=profile)

    def next_item(
        self,
        all_progress: Mapping[str, CharacterProgress],
        profile: UserProfile,
        sentence_history: Sequence[SentenceHistoryEntry],
        now: datetime,
        sentences: Sequence[Sentence] | None = None,
    ) -> Selection:
        return self.selector.select(
            all_progress,
            profile,
            sentence_history,
            now,
            self.rng,
            sentences=sentences,
        )

    def due_count(self, all_progress: Mapping[str, CharacterProgress], now: datetime) -> int:
        return self.scheduler.due_count(all_progress.values(), now)
