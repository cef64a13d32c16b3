"""Next-item selection: due reviews first, then new items, then weakest."""

import random
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from typing_trainer.config import EngineConfig
from typing_trainer.engine.kana import extract_characters, intrinsic_difficulty, sentence_difficulty
from typing_trainer.engine.scheduler import overdue_by
from typing_trainer.errors import EmptyCandidateSet
from typing_trainer.models.content import ItemKind, Selection, Sentence
from typing_trainer.models.progress import CharacterProgress, MasteryLevel
from typing_trainer.models.session import SentenceHistoryEntry
from typing_trainer.models.user_profile import UserProfile

logger = structlog.get_logger()

# (current_difficulty upper bound, max static sentence difficulty)
DIFFICULTY_CEILINGS: list[tuple[float, float]] = [
    (1.2, 1.2),
    (1.5, 1.5),
    (2.0, 2.0),
    (3.0, 2.5),
]
EXPERT_CEILING = 3.5

# Preferred number of unintroduced characters in a new sentence
IDEAL_NEW_CHARACTERS = (1, 3)
MAX_NEW_CHARACTERS = 5


@dataclass(frozen=True)
class Candidate:
    item_id: str
    kind: ItemKind
    difficulty: float
    mastery: float
    overdue: timedelta | None = None
    is_new: bool = False
    last_shown: datetime | None = None
    new_characters: int = 0
    due_characters: int = 0


def max_allowed_difficulty(current_difficulty: float) -> float:
    """Highest static sentence difficulty offered at the user's difficulty."""
    for bound, ceiling in DIFFICULTY_CEILINGS:
        if current_difficulty < bound:
            return ceiling
    return EXPERT_CEILING


def fit_score(candidate: Candidate, target_difficulty: float) -> float:
    """How well a new sentence suits the user; higher is better.

    Closeness to the target difficulty dominates. Sentences that also
    review due characters, or introduce one to three new ones, score a
    little higher; sentences with many new characters score lower.
    """
    match = 1 - abs(candidate.difficulty - target_difficulty) / max(1.0, target_difficulty)
    review_bonus = min(0.3, candidate.due_characters * 0.1)

    low, high = IDEAL_NEW_CHARACTERS
    if low <= candidate.new_characters <= high:
        new_bonus = 0.2
    elif candidate.new_characters > MAX_NEW_CHARACTERS:
        new_bonus = -0.3
    else:
        new_bonus = 0.0
    return match * 0.5 + review_bonus * 0.3 + new_bonus * 0.2


class ItemSelector:
    """Chooses the next practice item. Read-only over the state it is given.

    Priority: overdue reviews (most overdue first, weakest as tie-break),
    then unintroduced items closest to the user's difficulty (for sentences,
    the best :func:`fit_score`), then any item
    weighted toward low mastery. Items shown within the recency lockout are
    skipped unless nothing else is left. Remaining ties go to ``rng``.

    Args:
        config: Engine tuning constants.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def select(
        self,
        all_progress: Mapping[str, CharacterProgress],
        user_profile: UserProfile,
        sentence_history: Sequence[SentenceHistoryEntry],
        now: datetime,
        rng: random.Random,
        *,
        sentences: Sequence[Sentence] | None = None,
    ) -> Selection:
        """Pick the next character, or sentence when ``sentences`` is given.

        Raises:
            EmptyCandidateSet: There are no items at all.
        """
        if sentences is not None:
            candidates = self.sentence_candidates(sentences, all_progress, user_profile, sentence_history, now)
        else:
            candidates = self.character_candidates(all_progress, now)
        if not candidates:
            raise EmptyCandidateSet("No practice items available")

        candidates.sort(key=lambda c: c.item_id)
        pool = self._apply_recency(candidates, sentence_history, now)

        due = [c for c in pool if c.overdue is not None]
        if due:
            chosen = self._pick_best(due, lambda c: (-c.overdue.total_seconds(), c.mastery), rng)
            reason = "due_review"
        else:
            new = [c for c in pool if c.is_new]
            if new:
                target = user_profile.current_difficulty
                chosen = self._pick_best(new, lambda c: self._new_item_rank(c, target), rng)
                reason = "new_item"
            else:
                weights = [1.0 - c.mastery + self.config.weakest_weight_floor for c in pool]
                chosen = rng.choices(pool, weights=weights, k=1)[0]
                reason = "weakest"

        logger.debug(
            "item_selected",
            item_id=chosen.item_id,
            kind=chosen.kind.value,
            reason=reason,
            pool_size=len(pool),
            candidates=len(candidates),
        )
        return Selection(item_id=chosen.item_id, kind=chosen.kind, reason=reason, difficulty=chosen.difficulty)

    def character_candidates(
        self,
        all_progress: Mapping[str, CharacterProgress],
        now: datetime,
    ) -> list[Candidate]:
        candidates = []
        for character, progress in all_progress.items():
            is_new = progress.level == MasteryLevel.NEW
            overdue = None if is_new else overdue_by(progress, now)
            candidates.append(
                Candidate(
                    item_id=character,
                    kind=ItemKind.CHARACTER,
                    difficulty=intrinsic_difficulty(character),
                    mastery=progress.mastery_score,
                    overdue=overdue,
                    is_new=is_new,
                    last_shown=progress.last_seen,
                )
            )
        return candidates

    def sentence_candidates(
        self,
        sentences: Sequence[Sentence],
        all_progress: Mapping[str, CharacterProgress],
        user_profile: UserProfile,
        sentence_history: Sequence[SentenceHistoryEntry],
        now: datetime,
    ) -> list[Candidate]:
        last_shown: dict[str, datetime] = {}
        for entry in sentence_history:
            seen = last_shown.get(entry.sentence_id)
            if seen is None or entry.shown_at > seen:
                last_shown[entry.sentence_id] = entry.shown_at

        candidates = []
        for sentence in self._level_filter(sentences, all_progress, user_profile):
            characters = extract_characters(sentence.reading)
            states = [all_progress.get(c) for c in characters]
            introduced = [s for s in states if s is not None and s.level != MasteryLevel.NEW]
            overdues = [o for o in (overdue_by(s, now) for s in introduced) if o is not None]
            unique = {s.character: s for s in introduced}
            new_characters = {c for c, s in zip(characters, states) if s is None or s.level == MasteryLevel.NEW}
            masteries = [s.mastery_score if s is not None else 0.0 for s in states]
            candidates.append(
                Candidate(
                    item_id=sentence.sentence_id,
                    kind=ItemKind.SENTENCE,
                    difficulty=sentence_difficulty(sentence, all_progress),
                    mastery=sum(masteries) / len(masteries) if masteries else 0.0,
                    overdue=max(overdues) if overdues else None,
                    is_new=bool(new_characters),
                    last_shown=last_shown.get(sentence.sentence_id),
                    new_characters=len(new_characters),
                    due_characters=sum(1 for s in unique.values() if overdue_by(s, now) is not None),
                )
            )
        return candidates

    def _level_filter(
        self,
        sentences: Sequence[Sentence],
        all_progress: Mapping[str, CharacterProgress],
        user_profile: UserProfile,
    ) -> Sequence[Sentence]:
        ceiling = max_allowed_difficulty(user_profile.current_difficulty)
        known = sum(
            1 for p in all_progress.values()
            if p.level in (MasteryLevel.REVIEW, MasteryLevel.MASTERED)
        )
        kanji_ready = known >= self.config.kanji_ready_count
        filtered = [
            s for s in sentences
            if s.difficulty <= ceiling and (kanji_ready or not s.has_kanji)
        ]
        if not filtered:
            logger.info("level_filter_empty", ceiling=ceiling, kanji_ready=kanji_ready)
            return sentences
        return filtered

    def _apply_recency(
        self,
        candidates: list[Candidate],
        sentence_history: Sequence[SentenceHistoryEntry],
        now: datetime,
    ) -> list[Candidate]:
        lockout = self.config.recency_lockout
        history = sorted(sentence_history, key=lambda e: e.shown_at, reverse=True)
        limit = self.config.recent_sentence_limit
        recent_ids = {e.sentence_id for e in history[:limit]} if limit else set()

        def recent(c: Candidate) -> bool:
            if c.last_shown is not None and now - c.last_shown < lockout:
                return True
            return c.kind == ItemKind.SENTENCE and c.item_id in recent_ids

        pool = [c for c in candidates if not recent(c)]
        if pool:
            return pool

        # Everything is recent: only keep the single most recent item out
        shown = [c for c in candidates if c.last_shown is not None]
        if shown:
            latest = max(shown, key=lambda c: (c.last_shown, c.item_id))
            pool = [c for c in candidates if c.item_id != latest.item_id]
        return pool or candidates

    @staticmethod
    def _new_item_rank(candidate: Candidate, target: float) -> tuple:
        if candidate.kind == ItemKind.SENTENCE:
            return (-round(fit_score(candidate, target), 9),)
        return (abs(candidate.difficulty - target),)

    @staticmethod
    def _pick_best(
        candidates: list[Candidate],
        key: Callable[[Candidate], tuple],
        rng: random.Random,
    ) -> Candidate:
        best = min(key(c) for c in candidates)
        tied = [c for c in candidates if key(c) == best]
        if len(tied) == 1:
            return tied[0]
        return rng.choice(tied)
