"""User skill profile model (one per user)."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator


class UserProfile(BaseModel):
    created_at: datetime = Field(frozen=True)
    updated_at: datetime
    overall_skill: float = Field(default=0.0, ge=0.0, le=1.0)
    tracked_characters: int = Field(default=0, ge=0)
    current_difficulty: float = Field(default=1.0, gt=0)
    speed_baseline_ms: float = Field(default=1000.0, ge=1.0)
    consecutive_perfect: int = Field(default=0, ge=0)
    consecutive_struggle: int = Field(default=0, ge=0)
    total_practice_ms: float = Field(default=0.0, ge=0)
    chars_typed_total: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_streaks(self) -> "UserProfile":
        if self.consecutive_perfect and self.consecutive_struggle:
            raise ValueError("consecutive_perfect and consecutive_struggle are mutually exclusive")
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not precede created_at")
        return self

    @classmethod
    def create(
        cls,
        now: datetime,
        current_difficulty: float = 1.0,
        speed_baseline_ms: float = 1000.0,
    ) -> "UserProfile":
        """Create a fresh profile stamped at ``now``."""
        return cls(
            created_at=now,
            updated_at=now,
            current_difficulty=current_difficulty,
            speed_baseline_ms=speed_baseline_ms,
        )
