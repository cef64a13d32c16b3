"""Tests for next-item selection."""

import random
from datetime import timedelta

import pytest

from typing_trainer.engine.selector import Candidate, ItemSelector, fit_score, max_allowed_difficulty
from typing_trainer.errors import EmptyCandidateSet
from typing_trainer.models.content import ItemKind, Sentence
from typing_trainer.models.progress import CharacterProgress, MasteryLevel
from typing_trainer.models.session import SentenceHistoryEntry


@pytest.fixture
def selector(config):
    return ItemSelector(config)


def _rows(*progress: CharacterProgress) -> dict[str, CharacterProgress]:
    return {p.character: p for p in progress}


class TestCharacterSelection:
    def test_due_review_beats_new(self, selector, profile, make_progress, now):
        progress = _rows(
            make_progress("か", mastery=0.6, next_review_at=now - timedelta(minutes=10)),
            CharacterProgress.new("あ"),
        )
        selection = selector.select(progress, profile, [], now, random.Random(1))
        assert selection.item_id == "か"
        assert selection.kind == ItemKind.CHARACTER
        assert selection.reason == "due_review"

    def test_most_overdue_first(self, selector, profile, make_progress, now):
        progress = _rows(
            make_progress("き", mastery=0.6, next_review_at=now - timedelta(minutes=50)),
            make_progress("く", mastery=0.2, next_review_at=now - timedelta(minutes=10)),
        )
        selection = selector.select(progress, profile, [], now, random.Random(1))
        assert selection.item_id == "き"

    def test_equally_overdue_prefers_lower_mastery(self, selector, profile, make_progress, now):
        due_at = now - timedelta(minutes=10)
        progress = _rows(
            make_progress("き", mastery=0.6, next_review_at=due_at),
            make_progress("く", mastery=0.3, next_review_at=due_at),
        )
        selection = selector.select(progress, profile, [], now, random.Random(1))
        assert selection.item_id == "く"

    def test_unscheduled_review_counts_as_due(self, selector, profile, make_progress, now):
        progress = _rows(
            make_progress("か", mastery=0.6).model_copy(update={"next_review_at": None}),
            make_progress("き", mastery=0.2, next_review_at=now + timedelta(hours=1)),
        )
        candidates = {c.item_id: c for c in selector.character_candidates(progress, now)}
        assert candidates["か"].overdue == timedelta(0)
        assert candidates["き"].overdue is None

    def test_new_item_closest_to_current_difficulty(self, selector, profile, now):
        progress = _rows(
            CharacterProgress.new("あ"),
            CharacterProgress.new("か"),
            CharacterProgress.new("ゃ"),
        )
        selection = selector.select(progress, profile, [], now, random.Random(1))
        assert selection.item_id == "か"
        assert selection.reason == "new_item"

    def test_weakest_when_nothing_due_or_new(self, selector, profile, make_progress, now):
        later = now + timedelta(hours=1)
        progress = _rows(
            make_progress("か", mastery=0.9, next_review_at=later),
            make_progress("き", mastery=0.1, next_review_at=later),
        )
        selection = selector.select(progress, profile, [], now, random.Random(5))
        assert selection.reason == "weakest"
        assert selection.item_id in progress

    def test_recently_seen_item_is_skipped(self, selector, profile, make_progress, now):
        progress = _rows(
            make_progress(
                "か",
                last_seen=now - timedelta(seconds=10),
                next_review_at=now - timedelta(seconds=5),
            ),
            CharacterProgress.new("き"),
        )
        selection = selector.select(progress, profile, [], now, random.Random(1))
        assert selection.item_id == "き"

    def test_only_item_returned_even_if_recent(self, selector, profile, make_progress, now):
        progress = _rows(
            make_progress(
                "か",
                last_seen=now - timedelta(seconds=10),
                next_review_at=now - timedelta(seconds=5),
            ),
        )
        selection = selector.select(progress, profile, [], now, random.Random(1))
        assert selection.item_id == "か"

    def test_empty_progress_raises(self, selector, profile, now):
        with pytest.raises(EmptyCandidateSet):
            selector.select({}, profile, [], now, random.Random(1))

    def test_same_seed_same_choice(self, selector, profile, now):
        progress = _rows(*(CharacterProgress.new(c) for c in "かきくけこさしすせそ"))
        picks = [
            selector.select(progress, profile, [], now, random.Random(seed)).item_id
            for seed in (42, 42)
        ]
        assert picks[0] == picks[1]
        assert picks[0] in progress

    def test_inputs_not_modified(self, selector, profile, make_progress, now):
        progress = _rows(
            make_progress("か", next_review_at=now - timedelta(minutes=1)),
            CharacterProgress.new("き"),
        )
        before = {c: p.model_dump() for c, p in progress.items()}
        profile_before = profile.model_dump()
        selector.select(progress, profile, [], now, random.Random(1))
        assert {c: p.model_dump() for c, p in progress.items()} == before
        assert profile.model_dump() == profile_before


class TestSentenceSelection:
    def test_kanji_sentences_wait_for_known_characters(self, selector, profile, now):
        sentences = [
            Sentence(id="plain", text="あい", reading="あい"),
            Sentence(id="kanji", text="本", reading="ほん", kanji_count=1),
        ]
        selection = selector.select({}, profile, [], now, random.Random(1), sentences=sentences)
        assert selection.item_id == "plain"
        assert selection.kind == ItemKind.SENTENCE

    def test_sentences_above_ceiling_are_filtered(self, selector, profile, now):
        sentences = [
            Sentence(id="easy", text="あい", reading="あい", difficulty=1.0),
            Sentence(id="hard", text="あい", reading="あい", difficulty=2.0),
        ]
        selection = selector.select({}, profile, [], now, random.Random(1), sentences=sentences)
        assert selection.item_id == "easy"

    def test_recent_sentences_are_skipped(self, selector, profile, now):
        sentences = [
            Sentence(id="s1", text="あい", reading="あい"),
            Sentence(id="s2", text="うえ", reading="うえ"),
        ]
        history = [SentenceHistoryEntry(sentence_id="s1", shown_at=now - timedelta(hours=2))]
        selection = selector.select({}, profile, history, now, random.Random(1), sentences=sentences)
        assert selection.item_id == "s2"

    def test_sentence_with_due_character_first(self, selector, profile, make_progress, now):
        sentences = [
            Sentence(id="s1", text="あい", reading="あい"),
            Sentence(id="s2", text="かき", reading="かき"),
        ]
        progress = _rows(
            make_progress("あ", next_review_at=now + timedelta(hours=1)),
            make_progress("い", next_review_at=now + timedelta(hours=1)),
            make_progress("か", next_review_at=now - timedelta(minutes=5)),
            make_progress("き", next_review_at=now + timedelta(hours=1)),
        )
        selection = selector.select(progress, profile, [], now, random.Random(1), sentences=sentences)
        assert selection.item_id == "s2"
        assert selection.reason == "due_review"

    def test_sentence_counts_new_and_due_characters(self, selector, profile, make_progress, now):
        sentences = [
            Sentence(id="fresh", text="さし", reading="さし"),
            Sentence(id="mixed", text="かさ", reading="かさ"),
        ]
        progress = _rows(make_progress("か", next_review_at=now + timedelta(minutes=30)))
        candidates = {
            c.item_id: c for c in selector.sentence_candidates(sentences, progress, profile, [], now)
        }
        assert candidates["mixed"].new_characters == 1
        assert candidates["fresh"].new_characters == 2
        assert candidates["mixed"].due_characters == 0

        due = _rows(make_progress("か").model_copy(update={"next_review_at": None}))
        candidates = {
            c.item_id: c for c in selector.sentence_candidates(sentences, due, profile, [], now)
        }
        assert candidates["mixed"].due_characters == 1
        assert candidates["mixed"].overdue == timedelta(0)

    def test_empty_catalogue_raises(self, selector, profile, now):
        with pytest.raises(EmptyCandidateSet):
            selector.select({}, profile, [], now, random.Random(1), sentences=[])


class TestCeilings:
    @pytest.mark.parametrize(
        "current, ceiling",
        [(1.0, 1.2), (1.3, 1.5), (1.8, 2.0), (2.5, 2.5), (4.0, 3.5)],
    )
    def test_max_allowed_difficulty(self, current, ceiling):
        assert max_allowed_difficulty(current) == ceiling


class TestFitScore:
    def _candidate(self, difficulty=1.0, new=0, due=0) -> Candidate:
        return Candidate(
            item_id="s",
            kind=ItemKind.SENTENCE,
            difficulty=difficulty,
            mastery=0.0,
            is_new=bool(new),
            new_characters=new,
            due_characters=due,
        )

    def test_exact_difficulty_match(self):
        assert fit_score(self._candidate(), 1.0) == pytest.approx(0.5)

    def test_difficulty_gap_scaled_by_target(self):
        assert fit_score(self._candidate(difficulty=3.0), 2.0) == pytest.approx(0.25)
        assert fit_score(self._candidate(difficulty=1.5), 0.5) == pytest.approx(0.0)

    def test_review_bonus_capped(self):
        assert fit_score(self._candidate(due=2), 1.0) == pytest.approx(0.5 + 0.2 * 0.3)
        assert fit_score(self._candidate(due=7), 1.0) == pytest.approx(0.5 + 0.3 * 0.3)

    @pytest.mark.parametrize(
        "new, bonus",
        [(0, 0.0), (1, 0.2), (3, 0.2), (4, 0.0), (5, 0.0), (6, -0.3)],
    )
    def test_new_character_bonus(self, new, bonus):
        assert fit_score(self._candidate(new=new), 1.0) == pytest.approx(0.5 + bonus * 0.2)

    def test_few_new_characters_win_among_new_sentences(self, config, profile, now):
        selector = ItemSelector(config)
        sentences = [
            Sentence(id="many", text="あいうえおかき", reading="あいうえおかき"),
            Sentence(id="few", text="あい", reading="あい"),
        ]
        candidates = {c.item_id: c for c in selector.sentence_candidates(sentences, {}, profile, [], now)}
        assert fit_score(candidates["few"], 1.0) > fit_score(candidates["many"], 1.0)
