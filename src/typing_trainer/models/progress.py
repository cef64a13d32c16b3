"""Per-character progress model."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

RECENT_TIMES_CAPACITY = 10


class MasteryLevel(StrEnum):
    """Coarse learning stage of a character."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    MASTERED = "mastered"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    @classmethod
    def from_rank(cls, rank: int) -> "MasteryLevel":
        rank = max(0, min(len(_LEVEL_ORDER) - 1, rank))
        return _LEVEL_ORDER[rank]


_LEVEL_ORDER = [
    MasteryLevel.NEW,
    MasteryLevel.LEARNING,
    MasteryLevel.REVIEW,
    MasteryLevel.MASTERED,
]


class CharacterProgress(BaseModel):
    """Practice state for a single character.

    ``level`` is only produced by the mastery estimator; callers create
    fresh rows with :meth:`new` and never assign it themselves.
    """

    character: str = Field(min_length=1)
    correct: int = Field(default=0, ge=0)
    incorrect: int = Field(default=0, ge=0)
    last_seen: datetime | None = None
    hint_shown: int = Field(default=0, ge=0)
    hint_used: int = Field(default=0, ge=0)
    attempt_count: int = Field(default=0, ge=0)
    total_time_ms: float = Field(default=0.0, ge=0)
    best_time_ms: float | None = Field(default=None, ge=0)
    recent_times: list[float] = Field(default_factory=list, max_length=RECENT_TIMES_CAPACITY)
    mastery_score: float = Field(default=0.0, ge=0.0, le=1.0)
    correct_streak: int = Field(default=0, ge=0)
    miss_streak: int = Field(default=0, ge=0)
    level: MasteryLevel = MasteryLevel.NEW
    next_review_at: datetime | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "CharacterProgress":
        if self.hint_used > self.attempt_count or self.hint_shown > self.attempt_count:
            raise ValueError("hint counters cannot exceed attempt_count")
        if self.hint_used > self.hint_shown:
            raise ValueError("hint_used cannot exceed hint_shown")
        if self.correct_streak and self.miss_streak:
            raise ValueError("correct_streak and miss_streak are mutually exclusive")
        if (self.level == MasteryLevel.NEW) != (self.attempt_count == 0):
            raise ValueError("level must be 'new' exactly when attempt_count is 0")
        if self.level == MasteryLevel.NEW and self.next_review_at is not None:
            raise ValueError("new characters have no next_review_at")
        if (
            self.next_review_at is not None
            and self.last_seen is not None
            and self.next_review_at < self.last_seen
        ):
            raise ValueError("next_review_at must not precede last_seen")
        return self

    @classmethod
    def new(cls, character: str) -> "CharacterProgress":
        """Create an unseen character row."""
        return cls(character=character)

    @property
    def total_answers(self) -> int:
        return self.correct + self.incorrect

    @property
    def accuracy(self) -> float:
        if self.total_answers == 0:
            return 0.0
        return self.correct / self.total_answers

    @property
    def avg_time_ms(self) -> float:
        if self.attempt_count == 0:
            return 0.0
        return self.total_time_ms / self.attempt_count

    @property
    def hint_rate(self) -> float:
        if self.hint_shown == 0:
            return 0.0
        return self.hint_used / self.hint_shown

    @property
    def rolling_time_ms(self) -> float | None:
        """Mean of the recent latency window, None before any attempt."""
        if not self.recent_times:
            return None
        return sum(self.recent_times) / len(self.recent_times)

    def with_recent_time(self, latency_ms: float) -> list[float]:
        """Return the recent-times window with ``latency_ms`` appended, oldest evicted."""
        times = [*self.recent_times, latency_ms]
        return times[-RECENT_TIMES_CAPACITY:]
