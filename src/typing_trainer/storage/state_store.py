"""Trainer state persistence (JSON + fcntl.flock + atomic write)."""

import contextlib
import fcntl
import json
import os
import tempfile
import threading
from collections.abc import Iterator
from datetime import date
from pathlib import Path
from typing import Any

import structlog

from typing_trainer.errors import DuplicateAttempt
from typing_trainer.models.progress import CharacterProgress
from typing_trainer.models.session import (
    AttemptLogEntry,
    DailyActivity,
    SentenceHistoryEntry,
    SessionRecord,
)
from typing_trainer.models.user_profile import UserProfile

logger = structlog.get_logger()

PROGRESS_FILENAME = "progress.json"
PROFILE_FILENAME = "user_profile.json"
SESSIONS_FILENAME = "sessions.json"
SENTENCE_HISTORY_FILENAME = "sentence_history.json"
DAILY_ACTIVITY_FILENAME = "daily_activity.json"
ATTEMPT_LOG_FILENAME = "attempt_log.jsonl"
LOCK_FILENAME = ".state.lock"


class JsonStateStore:
    """Row-oriented state kept as JSON documents in one directory.

    Progress rows are keyed by character, the profile is a single document,
    and the attempt log is append-only JSON lines. Writers take an exclusive
    lock for the whole read-modify-write; documents are replaced atomically.
    Event ids already in the log are indexed in memory, so duplicate checks
    only read lines appended since the last check.

    Args:
        data_dir: Directory holding the state files (created if missing).
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._thread_lock = threading.RLock()
        self._lock_depth = 0
        self._event_ids: set[str] = set()
        self._log_offset = 0

    # -- low-level helpers --------------------------------------------------

    def _path(self, filename: str) -> Path:
        return self.data_dir / filename

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the store-wide exclusive lock. Re-entrant within one thread."""
        with self._thread_lock:
            if self._lock_depth:
                self._lock_depth += 1
                try:
                    yield
                finally:
                    self._lock_depth -= 1
                return

            with open(self._path(LOCK_FILENAME), "w") as lock_file:
                fcntl.flock(lock_file, fcntl.LOCK_EX)
                self._lock_depth = 1
                try:
                    yield
                finally:
                    self._lock_depth = 0
                    fcntl.flock(lock_file, fcntl.LOCK_UN)

    def _read(self, filename: str, default: Any) -> Any:
        path = self._path(filename)
        if not path.exists():
            return default
        with open(path, encoding="utf-8") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            data = json.load(f)
            fcntl.flock(f, fcntl.LOCK_UN)
        return data

    def _write(self, filename: str, data: Any) -> None:
        with tempfile.NamedTemporaryFile(
            "w", dir=self.data_dir, delete=False, suffix=".json", encoding="utf-8"
        ) as tmp:
            json.dump(data, tmp, ensure_ascii=False, indent=2)
        os.replace(tmp.name, self._path(filename))

    # -- character progress -------------------------------------------------

    def load_progress(self) -> dict[str, CharacterProgress]:
        rows = self._read(PROGRESS_FILENAME, {})
        return {char: CharacterProgress.model_validate(row) for char, row in rows.items()}

    def get_progress(self, character: str) -> CharacterProgress | None:
        row = self._read(PROGRESS_FILENAME, {}).get(character)
        return CharacterProgress.model_validate(row) if row is not None else None

    def save_progress(self, *progress: CharacterProgress) -> None:
        with self.locked():
            rows = self._read(PROGRESS_FILENAME, {})
            for p in progress:
                rows[p.character] = p.model_dump(mode="json")
            self._write(PROGRESS_FILENAME, rows)

    def ensure_characters(self, characters: list[str]) -> int:
        """Insert unseen rows for characters without progress; returns how many were added."""
        with self.locked():
            rows = self._read(PROGRESS_FILENAME, {})
            added = 0
            for char in characters:
                if char not in rows:
                    rows[char] = CharacterProgress.new(char).model_dump(mode="json")
                    added += 1
            if added:
                self._write(PROGRESS_FILENAME, rows)
        return added

    # -- user profile -------------------------------------------------------

    def load_profile(self) -> UserProfile | None:
        data = self._read(PROFILE_FILENAME, None)
        return UserProfile.model_validate(data) if data is not None else None

    def save_profile(self, profile: UserProfile) -> None:
        with self.locked():
            self._write(PROFILE_FILENAME, profile.model_dump(mode="json"))

    # -- sessions -----------------------------------------------------------

    def get_session(self, session_id: str) -> SessionRecord | None:
        row = self._read(SESSIONS_FILENAME, {}).get(session_id)
        return SessionRecord.model_validate(row) if row is not None else None

    def save_session(self, session: SessionRecord) -> None:
        with self.locked():
            rows = self._read(SESSIONS_FILENAME, {})
            rows[session.session_id] = session.model_dump(mode="json")
            self._write(SESSIONS_FILENAME, rows)

    def last_completed_session(self) -> SessionRecord | None:
        sessions = [
            SessionRecord.model_validate(row)
            for row in self._read(SESSIONS_FILENAME, {}).values()
        ]
        ended = [s for s in sessions if s.ended_at is not None]
        return max(ended, key=lambda s: s.ended_at) if ended else None

    # -- attempt log --------------------------------------------------------

    def read_attempts(
        self,
        session_id: str | None = None,
        sentence_id: str | None = None,
        history_id: str | None = None,
    ) -> list[AttemptLogEntry]:
        path = self._path(ATTEMPT_LOG_FILENAME)
        if not path.exists():
            return []
        entries = []
        with open(path, encoding="utf-8") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            lines = f.readlines()
            fcntl.flock(f, fcntl.LOCK_UN)
        for line in lines:
            if not line.strip():
                continue
            entry = AttemptLogEntry.model_validate_json(line)
            if session_id is not None and entry.session_id != session_id:
                continue
            if sentence_id is not None and entry.sentence_id != sentence_id:
                continue
            if history_id is not None and entry.history_id != history_id:
                continue
            entries.append(entry)
        return entries

    def _index_event_ids(self, lines: list[bytes]) -> None:
        for line in lines:
            if line.strip():
                self._event_ids.add(json.loads(line)["event_id"])

    def _sync_event_ids(self) -> None:
        """Index event ids of complete log lines written since the last sync."""
        path = self._path(ATTEMPT_LOG_FILENAME)
        if not path.exists():
            self._event_ids.clear()
            self._log_offset = 0
            return
        with open(path, "rb") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            size = f.seek(0, os.SEEK_END)
            if size < self._log_offset:
                # Log was replaced underneath us; start over
                self._event_ids.clear()
                self._log_offset = 0
            f.seek(self._log_offset)
            chunk = f.read()
            fcntl.flock(f, fcntl.LOCK_UN)

        end = chunk.rfind(b"\n") + 1
        if end:
            self._index_event_ids(chunk[:end].splitlines())
            self._log_offset += end

    def has_attempt(self, event_id: str) -> bool:
        with self.locked():
            self._sync_event_ids()
            return event_id in self._event_ids

    def _append_log(self, entry: AttemptLogEntry) -> None:
        line = (entry.model_dump_json() + "\n").encode("utf-8")
        with open(self._path(ATTEMPT_LOG_FILENAME), "ab") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            start = f.seek(0, os.SEEK_END)
            try:
                f.write(line)
                f.flush()
            except OSError:
                f.truncate(start)
                raise
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
        self._event_ids.add(entry.event_id)
        self._log_offset = start + len(line)

    def append_attempt(self, entry: AttemptLogEntry) -> None:
        """Append to the attempt log; each event id is written at most once."""
        with self.locked():
            if self.has_attempt(entry.event_id):
                raise DuplicateAttempt(entry.event_id)
            self._append_log(entry)

    def commit_attempt(
        self,
        entry: AttemptLogEntry,
        progress: CharacterProgress,
        profile: UserProfile,
        session: SessionRecord,
    ) -> None:
        """Persist everything one attempt changed, exactly once per event id.

        Progress, profile and session are written first and the log row last,
        so a logged event id always means its records were saved. If any
        write fails the documents are restored and the event can be retried.

        Raises:
            DuplicateAttempt: The event id is already in the log.
        """
        with self.locked():
            if self.has_attempt(entry.event_id):
                raise DuplicateAttempt(entry.event_id)
            snapshot = {
                name: self._read(name, None)
                for name in (PROGRESS_FILENAME, PROFILE_FILENAME, SESSIONS_FILENAME)
            }
            try:
                self.save_progress(progress)
                self.save_profile(profile)
                self.save_session(session)
                self._append_log(entry)
            except Exception:
                self._restore(snapshot)
                logger.warning("attempt_commit_rolled_back", event_id=entry.event_id)
                raise

    def _restore(self, snapshot: dict[str, Any]) -> None:
        for name, data in snapshot.items():
            if data is None:
                self._path(name).unlink(missing_ok=True)
            else:
                self._write(name, data)

    # -- sentence history ---------------------------------------------------

    def load_sentence_history(self, limit: int | None = None) -> list[SentenceHistoryEntry]:
        """History entries, most recently shown first."""
        entries = [
            SentenceHistoryEntry.model_validate(row)
            for row in self._read(SENTENCE_HISTORY_FILENAME, [])
        ]
        entries.sort(key=lambda e: e.shown_at, reverse=True)
        return entries[:limit] if limit is not None else entries

    def get_sentence_history(self, history_id: str) -> SentenceHistoryEntry | None:
        for row in self._read(SENTENCE_HISTORY_FILENAME, []):
            if row["history_id"] == history_id:
                return SentenceHistoryEntry.model_validate(row)
        return None

    def save_sentence_history(self, entry: SentenceHistoryEntry) -> None:
        with self.locked():
            rows = self._read(SENTENCE_HISTORY_FILENAME, [])
            dumped = entry.model_dump(mode="json")
            for i, row in enumerate(rows):
                if row["history_id"] == entry.history_id:
                    rows[i] = dumped
                    break
            else:
                rows.append(dumped)
            self._write(SENTENCE_HISTORY_FILENAME, rows)

    # -- daily activity -----------------------------------------------------

    def get_daily_activity(self, day: date) -> DailyActivity | None:
        row = self._read(DAILY_ACTIVITY_FILENAME, {}).get(day.isoformat())
        return DailyActivity.model_validate(row) if row is not None else None

    def save_daily_activity(self, activity: DailyActivity) -> None:
        with self.locked():
            rows = self._read(DAILY_ACTIVITY_FILENAME, {})
            rows[activity.day.isoformat()] = activity.model_dump(mode="json")
            self._write(DAILY_ACTIVITY_FILENAME, rows)

    def activity_days(self) -> list[date]:
        return [date.fromisoformat(d) for d in self._read(DAILY_ACTIVITY_FILENAME, {})]
