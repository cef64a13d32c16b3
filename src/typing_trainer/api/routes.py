"""REST API routes for practice sessions, attempts and item selection."""

import functools
import random
from datetime import datetime
from typing import NoReturn

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from typing_trainer.config import get_settings, load_sentence_catalog
from typing_trainer.engine.core import AdaptiveEngine
from typing_trainer.errors import EmptyCandidateSet, EngineError, UnknownItem
from typing_trainer.models.content import ItemKind, Sentence
from typing_trainer.models.session import AttemptEvent
from typing_trainer.services.practice import PracticeService
from typing_trainer.storage.state_store import JsonStateStore

logger = structlog.get_logger()
router = APIRouter(prefix="/api")


@functools.lru_cache
def get_practice_service() -> PracticeService:
    """Build the practice service from application settings."""
    settings = get_settings()
    sentences: list[Sentence] = []
    if settings.sentences_file.exists():
        sentences = [Sentence.model_validate(s) for s in load_sentence_catalog(settings.sentences_file)]
    engine = AdaptiveEngine(settings.engine, random.Random(settings.rng_seed))
    return PracticeService(JsonStateStore(settings.state_dir), engine, sentences)


class AttemptRequest(BaseModel):
    session_id: str
    character: str = Field(min_length=1, max_length=1)
    correct: bool
    latency_ms: float
    hint_used: bool = False
    hint_shown: bool = False
    sentence_id: str | None = None
    history_id: str | None = None
    typed_wrong: str | None = None
    event_id: str | None = None
    timestamp: datetime | None = None


class ShowSentenceRequest(BaseModel):
    session_id: str | None = None


def _raise_http(error: EngineError) -> NoReturn:
    if isinstance(error, UnknownItem):
        status = 404
    elif isinstance(error, EmptyCandidateSet):
        status = 409
    else:
        status = 400
    logger.warning("request_rejected", error=str(error), status=status)
    raise HTTPException(status_code=status, detail=str(error)) from error


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.post("/sessions")
async def start_session() -> dict:
    session = get_practice_service().start_session()
    return session.model_dump(mode="json")


@router.post("/sessions/{session_id}/end")
async def end_session(session_id: str) -> dict:
    try:
        session = get_practice_service().end_session(session_id)
    except EngineError as e:
        _raise_http(e)
    return session.model_dump(mode="json")


@router.post("/attempts")
async def record_attempt(request: AttemptRequest) -> dict:
    """Apply one typed character to progress, profile and session totals."""
    service = get_practice_service()
    data = request.model_dump(exclude_none=True)
    data.setdefault("timestamp", service.clock())
    try:
        outcome = service.record_attempt(AttemptEvent(**data))
    except EngineError as e:
        _raise_http(e)
    return {
        "progress": outcome.progress.model_dump(mode="json"),
        "profile": outcome.profile.model_dump(mode="json"),
    }


@router.post("/sentences/{sentence_id}/shown")
async def sentence_shown(sentence_id: str, request: ShowSentenceRequest | None = None) -> dict:
    session_id = request.session_id if request else None
    try:
        entry = get_practice_service().show_sentence(sentence_id, session_id)
    except EngineError as e:
        _raise_http(e)
    return entry.model_dump(mode="json")


@router.post("/sentences/history/{history_id}/complete")
async def complete_sentence(history_id: str) -> dict:
    try:
        completion = get_practice_service().complete_sentence(history_id)
    except EngineError as e:
        _raise_http(e)
    return completion.model_dump(mode="json")


@router.get("/next-item")
async def next_item(kind: ItemKind | None = None) -> dict:
    """Choose what to practice next."""
    try:
        selection = get_practice_service().next_item(kind)
    except EngineError as e:
        _raise_http(e)
    return selection.model_dump(mode="json")


@router.get("/due-count")
async def due_count() -> dict:
    return get_practice_service().due_count()


@router.get("/profile")
async def get_profile() -> dict:
    return get_practice_service().profile().model_dump(mode="json")


@router.get("/progress")
async def list_progress() -> list[dict]:
    progress = get_practice_service().progress()
    return [p.model_dump(mode="json") for _, p in sorted(progress.items())]


@router.get("/streak")
async def get_streak() -> dict:
    service = get_practice_service()
    return {
        "day_streak": service.day_streak(),
        "last_session": service.last_session_summary(),
    }
