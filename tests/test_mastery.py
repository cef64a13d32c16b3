"""Tests for the per-character mastery estimator."""

import random
from datetime import timedelta

import pytest

from typing_trainer.config import EngineConfig
from typing_trainer.engine.mastery import MasteryEstimator, derive_level
from typing_trainer.errors import InvalidInput
from typing_trainer.models.progress import RECENT_TIMES_CAPACITY, CharacterProgress, MasteryLevel


@pytest.fixture
def estimator(config):
    return MasteryEstimator(config)


class TestSingleAttempt:
    def test_first_correct_attempt_on_new_character(self, estimator, now):
        progress = CharacterProgress.new("か")
        updated = estimator.update(progress, True, 500, False, now, speed_baseline_ms=1000)

        assert updated.mastery_score > 0
        assert updated.level in (MasteryLevel.NEW, MasteryLevel.LEARNING)
        assert updated.correct == 1
        assert updated.incorrect == 0
        assert updated.attempt_count == 1
        assert updated.best_time_ms == 500
        assert updated.recent_times == [500]
        assert updated.last_seen == now

    def test_input_is_not_modified(self, estimator, now):
        progress = CharacterProgress.new("か")
        before = progress.model_dump()
        estimator.update(progress, True, 500, False, now)
        assert progress.model_dump() == before

    def test_incorrect_attempt_counts(self, estimator, make_progress, now):
        progress = make_progress("き", mastery=0.6)
        updated = estimator.update(progress, False, 900, False, now)
        assert updated.incorrect == progress.incorrect + 1
        assert updated.correct == progress.correct
        assert updated.miss_streak == 1
        assert updated.correct_streak == 0
        assert updated.mastery_score < progress.mastery_score

    def test_best_time_ignores_hinted_and_incorrect(self, estimator, make_progress, now):
        progress = make_progress("く").model_copy(update={"best_time_ms": 700.0})
        hinted = estimator.update(progress, True, 300, True, now)
        assert hinted.best_time_ms == 700.0
        wrong = estimator.update(progress, False, 200, False, now)
        assert wrong.best_time_ms == 700.0
        clean = estimator.update(progress, True, 400, False, now)
        assert clean.best_time_ms == 400.0

    def test_hint_counters(self, estimator, now):
        progress = CharacterProgress.new("け")
        used = estimator.update(progress, True, 800, True, now)
        assert used.hint_used == 1
        assert used.hint_shown == 1
        shown = estimator.update(progress, True, 800, False, now, hint_shown=True)
        assert shown.hint_used == 0
        assert shown.hint_shown == 1

    def test_hinted_correct_lowers_mastery(self, estimator, make_progress, now):
        progress = make_progress("こ", mastery=0.7)
        updated = estimator.update(progress, True, 500, True, now)
        assert updated.mastery_score < 0.7
        assert updated.mastery_score == pytest.approx(0.7 - 0.1 * 0.7)

    def test_faster_attempts_gain_more(self, estimator, make_progress, now):
        progress = make_progress("さ", mastery=0.5)
        fast = estimator.update(progress, True, 300, False, now, speed_baseline_ms=1000)
        slow = estimator.update(progress, True, 1800, False, now, speed_baseline_ms=1000)
        assert fast.mastery_score > slow.mastery_score > progress.mastery_score

    def test_gains_shrink_near_full_mastery(self, estimator, make_progress, now):
        low = make_progress("し", mastery=0.2)
        high = make_progress("す", mastery=0.9)
        low_gain = estimator.update(low, True, 500, False, now).mastery_score - 0.2
        high_gain = estimator.update(high, True, 500, False, now).mastery_score - 0.9
        assert low_gain > high_gain > 0


class TestRecentTimes:
    def test_window_evicts_oldest(self, estimator, now):
        progress = CharacterProgress.new("た")
        for i in range(RECENT_TIMES_CAPACITY + 3):
            progress = estimator.update(progress, True, 100 + i, False, now + timedelta(seconds=i))
        assert len(progress.recent_times) == RECENT_TIMES_CAPACITY
        assert progress.recent_times[0] == 103
        assert progress.recent_times[-1] == 100 + RECENT_TIMES_CAPACITY + 2

    def test_rolling_time(self, estimator, now):
        progress = CharacterProgress.new("ち")
        assert progress.rolling_time_ms is None
        progress = estimator.update(progress, True, 400, False, now)
        progress = estimator.update(progress, True, 600, False, now)
        assert progress.rolling_time_ms == pytest.approx(500)


class TestInvalidInput:
    def test_negative_latency(self, estimator, now):
        with pytest.raises(InvalidInput):
            estimator.update(CharacterProgress.new("つ"), True, -1, False, now)

    def test_nan_latency(self, estimator, now):
        with pytest.raises(InvalidInput):
            estimator.update(CharacterProgress.new("つ"), True, float("nan"), False, now)

    def test_snapshot_violating_invariants(self, estimator, now):
        broken = CharacterProgress.model_construct(
            character="て",
            attempt_count=1,
            correct=1,
            hint_used=3,
            hint_shown=3,
            level=MasteryLevel.LEARNING,
        )
        with pytest.raises(InvalidInput):
            estimator.update(broken, True, 500, False, now)


class TestLevels:
    def test_mastered_needs_streak(self, config):
        assert derive_level(MasteryLevel.REVIEW, 0.95, 10, 2, True, config) == MasteryLevel.REVIEW
        assert derive_level(MasteryLevel.REVIEW, 0.95, 10, 3, True, config) == MasteryLevel.MASTERED

    def test_every_score_maps_to_one_level(self, config):
        for i in range(101):
            score = i / 100
            level = derive_level(MasteryLevel.LEARNING, score, 5, 5, True, config)
            assert level in (MasteryLevel.LEARNING, MasteryLevel.REVIEW, MasteryLevel.MASTERED)

    def test_no_attempts_is_new(self, config):
        assert derive_level(MasteryLevel.NEW, 0.0, 0, 0, True, config) == MasteryLevel.NEW

    def test_two_failures_demote_at_most_two_steps(self, make_progress, now):
        # Harsh loss rate so the raw score would fall straight to learning
        estimator = MasteryEstimator(EngineConfig(loss_rate=0.9))
        progress = make_progress("な", mastery=0.95, level=MasteryLevel.MASTERED)

        first = estimator.update(progress, False, 800, False, now)
        assert first.level == MasteryLevel.REVIEW

        second = estimator.update(first, False, 800, False, now + timedelta(seconds=5))
        assert second.level == MasteryLevel.LEARNING
        assert MasteryLevel.MASTERED.rank - second.level.rank <= 2

    def test_failure_never_promotes(self, config):
        level = derive_level(MasteryLevel.LEARNING, 0.8, 10, 0, False, config)
        assert level == MasteryLevel.LEARNING


class TestProperties:
    def test_mastery_stays_bounded(self, now):
        rng = random.Random(7)
        for cfg in (EngineConfig(), EngineConfig(gain_rate=1.0, loss_rate=1.0, hint_penalty=1.0)):
            estimator = MasteryEstimator(cfg)
            progress = CharacterProgress.new("は")
            for i in range(400):
                progress = estimator.update(
                    progress,
                    rng.random() < 0.7,
                    rng.uniform(0, 4000),
                    rng.random() < 0.2,
                    now + timedelta(seconds=i),
                    speed_baseline_ms=rng.uniform(1, 3000),
                )
                assert 0.0 <= progress.mastery_score <= 1.0

    def test_monotone_outcomes(self, estimator, now):
        rng = random.Random(11)
        progress = CharacterProgress.new("ひ")
        for i in range(300):
            at = now + timedelta(seconds=i)
            fast = estimator.update(progress, True, rng.uniform(0, 900), False, at, speed_baseline_ms=1000)
            wrong = estimator.update(progress, False, rng.uniform(0, 3000), rng.random() < 0.5, at)
            assert fast.mastery_score >= progress.mastery_score
            assert wrong.mastery_score <= progress.mastery_score
            progress = fast if rng.random() < 0.6 else wrong
