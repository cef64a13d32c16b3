"""Spaced-repetition review scheduling."""

from collections.abc import Iterable
from datetime import datetime, timedelta

from typing_trainer.config import EngineConfig
from typing_trainer.models.progress import CharacterProgress, MasteryLevel


def is_due(progress: CharacterProgress, now: datetime) -> bool:
    """A character is due when it was never scheduled or its review time has passed."""
    return progress.next_review_at is None or progress.next_review_at <= now


def overdue_by(progress: CharacterProgress, now: datetime) -> timedelta | None:
    """How long past its review time a due character is, None if it is not due.

    An unscheduled character counts as due right now.
    """
    if not is_due(progress, now):
        return None
    if progress.next_review_at is None:
        return timedelta(0)
    return now - progress.next_review_at


class ReviewScheduler:
    """Derives the next review time from mastery and level.

    The interval is ``base * growth ** level_rank * (0.5 + mastery)``. A
    character whose last attempt was incorrect is reviewed again after the
    minimum interval, whatever its level.

    Args:
        config: Engine tuning constants.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def interval(self, progress: CharacterProgress) -> timedelta:
        cfg = self.config
        if progress.miss_streak > 0:
            return cfg.min_interval
        scale = cfg.growth_factor ** progress.level.rank * (0.5 + progress.mastery_score)
        return max(cfg.base_interval * scale, cfg.min_interval)

    def schedule(self, progress: CharacterProgress, now: datetime) -> datetime:
        """Return the next review time, always strictly after ``now``."""
        return now + self.interval(progress)

    def apply(self, progress: CharacterProgress, now: datetime) -> CharacterProgress:
        """Return ``progress`` with ``next_review_at`` set; new characters stay unscheduled."""
        if progress.level == MasteryLevel.NEW:
            return progress.model_copy(update={"next_review_at": None})
        return progress.model_copy(update={"next_review_at": self.schedule(progress, now)})

    @staticmethod
    def due_count(progress: Iterable[CharacterProgress], now: datetime) -> int:
        """Number of introduced characters due for review."""
        return sum(1 for p in progress if p.level != MasteryLevel.NEW and is_due(p, now))

    @staticmethod
    def new_count(progress: Iterable[CharacterProgress]) -> int:
        return sum(1 for p in progress if p.level == MasteryLevel.NEW)
