"""Per-character mastery estimation."""

import math
from datetime import datetime

import structlog
from pydantic import ValidationError

from typing_trainer.config import EngineConfig
from typing_trainer.errors import InvalidInput
from typing_trainer.models.progress import CharacterProgress, MasteryLevel

logger = structlog.get_logger()


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def validate_latency(latency_ms: float) -> float:
    """Reject negative or non-finite latencies."""
    if not math.isfinite(latency_ms) or latency_ms < 0:
        raise InvalidInput(f"latency_ms must be a non-negative number, got {latency_ms!r}")
    return float(latency_ms)


def ensure_valid(progress: CharacterProgress) -> CharacterProgress:
    """Re-run model validation on a snapshot, raising InvalidInput on violation."""
    try:
        return CharacterProgress.model_validate(progress.model_dump())
    except ValidationError as e:
        raise InvalidInput(f"Invalid progress snapshot for {progress.character!r}: {e}") from e


def derive_level(
    previous: MasteryLevel,
    mastery_score: float,
    attempt_count: int,
    correct_streak: int,
    last_correct: bool,
    config: EngineConfig,
) -> MasteryLevel:
    """Map mastery state to a level.

    Every score maps to exactly one raw level. After an incorrect attempt the
    result is at most one rank below ``previous`` and never above it, so two
    consecutive failures demote by at most two ranks.
    """
    if attempt_count == 0:
        return MasteryLevel.NEW

    if mastery_score >= config.mastered_threshold and correct_streak >= config.mastered_streak:
        raw = MasteryLevel.MASTERED
    elif mastery_score < config.learning_threshold:
        raw = MasteryLevel.LEARNING
    else:
        raw = MasteryLevel.REVIEW

    if last_correct or previous == MasteryLevel.NEW:
        return raw

    floor = MasteryLevel.from_rank(max(previous.rank - 1, MasteryLevel.LEARNING.rank))
    rank = min(max(raw.rank, floor.rank), previous.rank)
    return MasteryLevel.from_rank(rank)


class MasteryEstimator:
    """Updates one character's mastery from a single attempt.

    Gains are scaled by ``(1 - mastery)`` and by how much faster than the
    speed baseline the attempt was; losses are scaled by ``mastery`` and
    grow with hint reliance.

    Args:
        config: Engine tuning constants.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def speed_factor(self, latency_ms: float, baseline_ms: float) -> float:
        """Relative speed signal: 1.0 at baseline, larger when faster."""
        normalized = latency_ms / max(baseline_ms, 1.0)
        return clamp(2.0 - normalized, self.config.min_speed_factor, self.config.max_speed_factor)

    def mastery_delta(
        self,
        mastery: float,
        correct: bool,
        latency_ms: float,
        hint_used: bool,
        baseline_ms: float,
    ) -> float:
        cfg = self.config
        if correct and not hint_used:
            return cfg.gain_rate * (1.0 - mastery) * self.speed_factor(latency_ms, baseline_ms)
        if correct:
            return -cfg.hint_penalty * mastery
        penalty = cfg.loss_rate * (1.0 + (cfg.hint_penalty if hint_used else 0.0))
        return -penalty * mastery

    def update(
        self,
        progress: CharacterProgress,
        correct: bool,
        latency_ms: float,
        hint_used: bool,
        now: datetime,
        *,
        hint_shown: bool = False,
        speed_baseline_ms: float | None = None,
    ) -> CharacterProgress:
        """Apply one attempt and return the updated snapshot.

        Args:
            progress: Current state of the character.
            correct: Whether the character was typed correctly.
            latency_ms: Response time of the attempt.
            hint_used: Whether the user relied on a hint.
            now: Attempt timestamp.
            hint_shown: Whether a hint was displayed (implied by hint_used).
            speed_baseline_ms: User's current speed baseline.

        Returns:
            New CharacterProgress; the input is not modified.

        Raises:
            InvalidInput: Negative latency or an invalid snapshot.
        """
        latency_ms = validate_latency(latency_ms)
        progress = ensure_valid(progress)
        baseline = speed_baseline_ms or self.config.initial_baseline_ms

        hint_shown = hint_shown or hint_used
        delta = self.mastery_delta(progress.mastery_score, correct, latency_ms, hint_used, baseline)
        mastery = clamp(progress.mastery_score + delta, 0.0, 1.0)

        best_time = progress.best_time_ms
        if correct and not hint_used:
            best_time = latency_ms if best_time is None else min(best_time, latency_ms)

        correct_streak = progress.correct_streak + 1 if correct else 0
        miss_streak = 0 if correct else progress.miss_streak + 1
        attempt_count = progress.attempt_count + 1

        level = derive_level(
            previous=progress.level,
            mastery_score=mastery,
            attempt_count=attempt_count,
            correct_streak=correct_streak,
            last_correct=correct,
            config=self.config,
        )

        updated = progress.model_copy(
            update={
                "correct": progress.correct + (1 if correct else 0),
                "incorrect": progress.incorrect + (0 if correct else 1),
                "attempt_count": attempt_count,
                "hint_used": progress.hint_used + (1 if hint_used else 0),
                "hint_shown": progress.hint_shown + (1 if hint_shown else 0),
                "total_time_ms": progress.total_time_ms + latency_ms,
                "best_time_ms": best_time,
                "recent_times": progress.with_recent_time(latency_ms),
                "mastery_score": mastery,
                "correct_streak": correct_streak,
                "miss_streak": miss_streak,
                "level": level,
                "last_seen": now,
                # Rescheduled by the review scheduler
                "next_review_at": None,
            }
        )
        if level != progress.level:
            logger.debug(
                "level_changed",
                character=progress.character,
                old_level=progress.level.value,
                new_level=level.value,
                mastery=round(mastery, 3),
            )
        return updated
