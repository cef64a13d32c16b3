"""Shared fixtures for typing trainer tests."""

from datetime import datetime, timedelta

import pytest

from typing_trainer.config import EngineConfig
from typing_trainer.models.progress import CharacterProgress, MasteryLevel
from typing_trainer.models.user_profile import UserProfile


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 10, 0, 0)


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def profile(now):
    return UserProfile.create(now - timedelta(days=7))


@pytest.fixture
def make_progress(now):
    """Factory for already-practiced character rows."""

    def _make(
        character: str,
        mastery: float = 0.5,
        level: MasteryLevel = MasteryLevel.REVIEW,
        attempts: int = 5,
        miss_streak: int = 0,
        last_seen: datetime | None = None,
        next_review_at: datetime | None = None,
    ) -> CharacterProgress:
        if level == MasteryLevel.NEW:
            return CharacterProgress.new(character)
        last_seen = last_seen or now - timedelta(hours=1)
        return CharacterProgress(
            character=character,
            correct=attempts - miss_streak,
            incorrect=miss_streak,
            attempt_count=attempts,
            total_time_ms=attempts * 800.0,
            recent_times=[800.0] * min(attempts, 10),
            mastery_score=mastery,
            correct_streak=0 if miss_streak else attempts,
            miss_streak=miss_streak,
            level=level,
            last_seen=last_seen,
            next_review_at=next_review_at or last_seen + timedelta(hours=2),
        )

    return _make
