"""Session, attempt and history data models."""

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id() -> str:
    return str(uuid.uuid4())


class AttemptEvent(BaseModel):
    """A single typed character, as reported by the input layer."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=_new_id)
    session_id: str
    character: str = Field(min_length=1, max_length=1)
    correct: bool
    latency_ms: float
    hint_used: bool = False
    hint_shown: bool = False
    timestamp: datetime
    sentence_id: str | None = None
    # Sentence history entry the attempt was typed in
    history_id: str | None = None
    typed_wrong: str | None = None

    @property
    def item_id(self) -> str:
        """Practice item this attempt belongs to (sentence if any, else character)."""
        return self.sentence_id or self.character


class AttemptLogEntry(BaseModel):
    """Append-only record of one attempt."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    session_id: str
    sentence_id: str | None = None
    history_id: str | None = None
    character: str
    correct: bool
    time_ms: float = Field(ge=0)
    hint_used: bool = False
    typed_wrong: str | None = None
    created_at: datetime


class SentenceHistoryEntry(BaseModel):
    """A sentence shown to the user and, once finished, its outcome."""

    history_id: str = Field(default_factory=_new_id)
    sentence_id: str
    session_id: str | None = None
    difficulty_at_time: float | None = None
    shown_at: datetime
    accuracy: float | None = Field(default=None, ge=0.0, le=1.0)
    avg_time_ms: float | None = Field(default=None, ge=0)
    hints_used: int = Field(default=0, ge=0)
    completed_at: datetime | None = None

    @property
    def completed(self) -> bool:
        return self.completed_at is not None


class SessionRecord(BaseModel):
    """Running totals for one practice session."""

    session_id: str = Field(default_factory=_new_id)
    started_at: datetime
    ended_at: datetime | None = None
    total_chars: int = Field(default=0, ge=0)
    correct_chars: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    max_streak: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_totals(self) -> "SessionRecord":
        if self.correct_chars > self.total_chars:
            raise ValueError("correct_chars cannot exceed total_chars")
        if self.current_streak > self.max_streak:
            raise ValueError("current_streak cannot exceed max_streak")
        return self

    @property
    def active(self) -> bool:
        return self.ended_at is None

    @property
    def accuracy(self) -> float:
        if self.total_chars == 0:
            return 0.0
        return self.correct_chars / self.total_chars


class DailyActivity(BaseModel):
    """Sentences completed on one calendar day."""

    day: date
    sentences_completed: int = Field(default=0, ge=0)
    first_sentence_at: datetime | None = None


class SentenceResult(BaseModel):
    """Outcome summary of a finished sentence."""

    sentence_id: str
    accuracy: float = Field(ge=0.0, le=1.0)
    avg_time_ms: float = Field(ge=0)
    total_time_ms: float = Field(ge=0)
    hints_used: int = Field(ge=0)
    total_chars: int = Field(ge=0)
    correct_chars: int = Field(ge=0)
    had_errors: bool
