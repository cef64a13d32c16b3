"""Practice content models."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ItemKind(StrEnum):
    CHARACTER = "character"
    SENTENCE = "sentence"


class Sentence(BaseModel):
    """A practice sentence with its kana reading."""

    model_config = ConfigDict(populate_by_name=True)

    sentence_id: str = Field(alias="id")
    text: str
    reading: str = Field(min_length=1)
    difficulty: float = Field(default=1.0, gt=0)
    kanji_count: int = Field(default=0, ge=0)

    @property
    def has_kanji(self) -> bool:
        return self.kanji_count > 0


class Selection(BaseModel):
    """The selector's choice of what to practice next."""

    item_id: str
    kind: ItemKind
    reason: str
    difficulty: float
