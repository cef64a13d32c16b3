"""Kana normalization and intrinsic difficulty."""

from collections.abc import Mapping

from typing_trainer.models.content import Sentence
from typing_trainer.models.progress import CharacterProgress, MasteryLevel

KATAKANA_START = 0x30A0
HIRAGANA_START = 0x3040
PROLONGED_SOUND_MARK = "ー"

PUNCTUATION = frozenset("。、？！「」『』（）・ー")

HIRAGANA_VOWELS = "あいうえお"
HIRAGANA_BASIC = (
    "あいうえおかきくけこさしすせそたちつてとなにぬねのはひふへほ"
    "まみむめもやゆよらりるれろわをん"
)
HIRAGANA_VOICED = "がぎぐげござじずぜぞだぢづでどばびぶべぼぱぴぷぺぽ"
HIRAGANA_SMALL = "ぁぃぅぇぉっゃゅょ"

UNKNOWN_CHARACTER_DIFFICULTY = 2.5
KANJI_TOKEN_PENALTY = 0.8


def to_hiragana(char: str) -> str:
    """Convert a katakana character to hiragana; other characters pass through."""
    code = ord(char)
    if 0x30A1 <= code <= 0x30F6:
        return chr(code - KATAKANA_START + HIRAGANA_START)
    return char


def to_hiragana_string(text: str) -> str:
    return "".join(to_hiragana(c) for c in text)


def is_punctuation(char: str) -> bool:
    return char in PUNCTUATION


def intrinsic_difficulty(char: str) -> float:
    """Difficulty of a character before any user mastery adjustment.

    Args:
        char: A single kana (hiragana or katakana) or other character.

    Returns:
        0 for punctuation, 0.8-1.5 for kana (katakana slightly harder than
        the matching hiragana), 2.5 for anything else.
    """
    if is_punctuation(char):
        return 0.0

    normalized = to_hiragana(char)
    was_katakana = normalized != char

    if normalized in HIRAGANA_VOWELS:
        return 1.1 if was_katakana else 0.8
    if normalized in HIRAGANA_BASIC:
        return 1.2 if was_katakana else 1.0
    if normalized in HIRAGANA_VOICED:
        return 1.3 if was_katakana else 1.1
    if normalized in HIRAGANA_SMALL:
        return 1.5 if was_katakana else 1.3
    return UNKNOWN_CHARACTER_DIFFICULTY


def extract_characters(reading: str) -> list[str]:
    """Hiragana-normalized practice characters of a reading, punctuation removed."""
    return [c for c in to_hiragana_string(reading) if not is_punctuation(c) and not c.isspace()]


def sentence_difficulty(
    sentence: Sentence,
    progress: Mapping[str, CharacterProgress],
) -> float:
    """Estimate how hard a sentence is for this user right now.

    Combines the sentence's static difficulty, a penalty per kanji token,
    the mastery-adjusted difficulty of its characters, a penalty when more
    than half of them are unintroduced, and a length factor.

    Args:
        sentence: Sentence to rate.
        progress: Character progress keyed by hiragana character.

    Returns:
        Positive difficulty on the same scale as ``current_difficulty``.
    """
    base = sentence.difficulty + sentence.kanji_count * KANJI_TOKEN_PENALTY

    char_difficulty = 0.0
    counted = 0
    unknown = 0
    for char in extract_characters(sentence.reading):
        intrinsic = intrinsic_difficulty(char)
        if intrinsic == 0:
            continue
        state = progress.get(char)
        mastery = state.mastery_score if state is not None else 0.0
        if state is None or state.level == MasteryLevel.NEW:
            unknown += 1
        # Unknown characters are harder, mastered ones easier
        char_difficulty += intrinsic * (1.5 - mastery)
        counted += 1

    if counted == 0:
        return base

    avg_char_difficulty = char_difficulty / counted
    unknown_ratio = unknown / counted
    unknown_penalty = (unknown_ratio - 0.5) * 2 if unknown_ratio > 0.5 else 0.0
    length_factor = 1 + max(0, (counted - 4) * 0.05)

    return (base * 0.4 + avg_char_difficulty * 0.6 + unknown_penalty) * length_factor
