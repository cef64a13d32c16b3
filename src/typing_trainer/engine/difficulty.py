"""Online difficulty adaptation for the user profile."""

from datetime import datetime
from enum import StrEnum

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from typing_trainer.config import EngineConfig
from typing_trainer.engine.mastery import clamp, validate_latency
from typing_trainer.errors import InvalidInput
from typing_trainer.models.session import SentenceResult
from typing_trainer.models.user_profile import UserProfile

logger = structlog.get_logger()


class AttemptClass(StrEnum):
    """How an attempt counts toward the difficulty streaks."""

    PERFECT = "perfect"
    NEUTRAL = "neutral"
    STRUGGLE = "struggle"


class MasteryChange(BaseModel):
    """Mastery of the attempted character before and after the update."""

    model_config = ConfigDict(frozen=True)

    before: float = Field(ge=0.0, le=1.0)
    after: float = Field(ge=0.0, le=1.0)
    first_attempt: bool = False


class DifficultyAdapter:
    """Adapts the global difficulty and speed baseline to the user.

    Perfect attempts and struggling attempts build mutually exclusive
    streaks. When a streak reaches its threshold the difficulty moves one
    step and the streak starts over, so every adjustment needs a fresh run.

    Args:
        config: Engine tuning constants.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def normalized_latency(self, profile: UserProfile, latency_ms: float) -> float:
        return latency_ms / max(profile.speed_baseline_ms, 1.0)

    def classify(
        self,
        correct: bool,
        normalized_latency: float,
        hint_used: bool = False,
    ) -> AttemptClass:
        if not correct or normalized_latency > self.config.struggle_latency_ratio:
            return AttemptClass.STRUGGLE
        if normalized_latency <= 1.0 and not hint_used:
            return AttemptClass.PERFECT
        return AttemptClass.NEUTRAL

    def _apply_streaks(
        self,
        difficulty: float,
        perfect: int,
        struggle: int,
        attempt_class: AttemptClass,
    ) -> tuple[float, int, int]:
        cfg = self.config
        if attempt_class == AttemptClass.PERFECT:
            perfect, struggle = perfect + 1, 0
            if perfect >= cfg.perfect_streak_threshold:
                old = difficulty
                difficulty = clamp(difficulty * cfg.difficulty_increase_factor, cfg.min_difficulty, cfg.max_difficulty)
                perfect = 0
                logger.info("difficulty_increased", old=round(old, 3), new=round(difficulty, 3))
        elif attempt_class == AttemptClass.STRUGGLE:
            struggle, perfect = struggle + 1, 0
            if struggle >= cfg.struggle_streak_threshold:
                old = difficulty
                difficulty = clamp(difficulty * cfg.difficulty_decrease_factor, cfg.min_difficulty, cfg.max_difficulty)
                struggle = 0
                logger.info("difficulty_decreased", old=round(old, 3), new=round(difficulty, 3))
        else:
            perfect, struggle = 0, 0
        return difficulty, perfect, struggle

    def _update_baseline(self, baseline: float, observed_ms: float) -> float:
        cfg = self.config
        alpha = cfg.baseline_smoothing
        updated = baseline * (1 - alpha) + observed_ms * alpha
        return max(1.0, clamp(updated, cfg.baseline_min_ms, cfg.baseline_max_ms))

    @staticmethod
    def _update_skill(profile: UserProfile, change: MasteryChange | None) -> tuple[float, int]:
        skill = profile.overall_skill
        tracked = profile.tracked_characters
        if change is None:
            return skill, tracked
        if change.first_attempt or tracked == 0:
            tracked += 1
            skill = skill + (change.after - skill) / tracked
        else:
            skill = skill + (change.after - change.before) / tracked
        return clamp(skill, 0.0, 1.0), tracked

    def update(
        self,
        profile: UserProfile,
        correct: bool,
        latency_ms: float,
        now: datetime,
        *,
        hint_used: bool = False,
        mastery_change: MasteryChange | None = None,
        adjust_difficulty: bool = True,
    ) -> UserProfile:
        """Fold one attempt into the profile.

        Args:
            profile: Current profile snapshot.
            correct: Whether the attempt was correct.
            latency_ms: Response time of the attempt.
            now: Attempt timestamp.
            hint_used: Whether a hint was used (a hinted attempt is never perfect).
            mastery_change: Mastery of the attempted character before/after,
                used for the incremental overall skill.
            adjust_difficulty: When False only the baseline, skill and totals
                change; streaks are left to :meth:`apply_sentence_result`.

        Returns:
            New UserProfile; the input is not modified.

        Raises:
            InvalidInput: Negative latency, a timestamp before the profile was
                created, or an invalid profile snapshot.
        """
        latency_ms = validate_latency(latency_ms)
        profile = _ensure_valid(profile, now)

        difficulty = profile.current_difficulty
        perfect, struggle = profile.consecutive_perfect, profile.consecutive_struggle
        if adjust_difficulty:
            normalized = self.normalized_latency(profile, latency_ms)
            attempt_class = self.classify(correct, normalized, hint_used)
            difficulty, perfect, struggle = self._apply_streaks(difficulty, perfect, struggle, attempt_class)

        baseline = profile.speed_baseline_ms
        if correct:
            # Incorrect attempts carry no reliable speed signal
            baseline = self._update_baseline(baseline, latency_ms)

        skill, tracked = self._update_skill(profile, mastery_change)

        return profile.model_copy(
            update={
                "current_difficulty": difficulty,
                "consecutive_perfect": perfect,
                "consecutive_struggle": struggle,
                "speed_baseline_ms": baseline,
                "overall_skill": skill,
                "tracked_characters": tracked,
                "total_practice_ms": profile.total_practice_ms + latency_ms,
                "chars_typed_total": profile.chars_typed_total + 1,
                "updated_at": now,
            }
        )

    def apply_sentence_result(
        self,
        profile: UserProfile,
        result: SentenceResult,
        now: datetime,
    ) -> UserProfile:
        """Per-sentence adjustment for hosts that adapt once per sentence.

        A sentence is "crushed" when accuracy is at least 95%, average time
        is under 90% of the baseline, and no hints were used or errors made.
        It is a struggle when accuracy is below 70% or any error was made.
        Otherwise both streaks reset, with a +1% nudge for a good sentence.
        """
        profile = _ensure_valid(profile, now)
        baseline = max(profile.speed_baseline_ms, 1.0)

        crushing = (
            result.accuracy >= 0.95
            and result.avg_time_ms < baseline * 0.9
            and result.hints_used == 0
            and not result.had_errors
        )
        struggling = result.accuracy < 0.7 or result.had_errors

        if crushing:
            attempt_class = AttemptClass.PERFECT
        elif struggling:
            attempt_class = AttemptClass.STRUGGLE
        else:
            attempt_class = AttemptClass.NEUTRAL

        difficulty, perfect, struggle = self._apply_streaks(
            profile.current_difficulty,
            profile.consecutive_perfect,
            profile.consecutive_struggle,
            attempt_class,
        )
        if attempt_class == AttemptClass.NEUTRAL and result.accuracy >= 0.9 and result.avg_time_ms < baseline:
            difficulty = clamp(difficulty * 1.01, self.config.min_difficulty, self.config.max_difficulty)

        return profile.model_copy(
            update={
                "current_difficulty": difficulty,
                "consecutive_perfect": perfect,
                "consecutive_struggle": struggle,
                "updated_at": now,
            }
        )


def _ensure_valid(profile: UserProfile, now: datetime) -> UserProfile:
    try:
        profile = UserProfile.model_validate(profile.model_dump())
    except ValidationError as e:
        raise InvalidInput(f"Invalid user profile snapshot: {e}") from e
    if now < profile.created_at:
        raise InvalidInput(f"Timestamp {now.isoformat()} precedes profile creation")
    return profile
