"""
Learning Store
==============
Persists user feedback, generation attempts and business table
descriptions as JSON files, and hands out request-scoped sessions.

Each request opens its own :class:`StoreSession` via
:meth:`LearningStore.session`; sessions are never shared. Reads are
lazy, writes are buffered and committed when the ``with`` block exits
cleanly, and discarded when it raises.

Storage: JSON files under ``.cache/adaptive_sql/`` by default.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Type, TypeVar

from adaptive_sql.models import BusinessTableInfo, FeedbackEntry, GenerationAttempt

logger = logging.getLogger("adaptive_sql.store")

T = TypeVar("T")


class LearningStore:
    """File-backed store for the learning loop.

    Args:
        data_dir: Directory holding the JSON files.
        max_entries: Maximum feedback/attempt rows kept per file (oldest
            are pruned on commit).
    """

    FEEDBACK_FILE = "feedback.json"
    ATTEMPTS_FILE = "generation_attempts.json"
    TABLES_FILE = "business_tables.json"

    def __init__(
        self,
        data_dir: str = ".cache/adaptive_sql",
        max_entries: int = 5000,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.max_entries = max_entries

    @classmethod
    def from_config(cls, config=None) -> "LearningStore":
        if config is None:
            from adaptive_sql.config import get_config
            config = get_config()
        return cls(
            data_dir=config.storage.data_dir,
            max_entries=config.storage.max_entries,
        )

    def session(self) -> "StoreSession":
        """Open a new unit of work. Use as a context manager."""
        return StoreSession(self)

    async def run_in_session(self, func: Callable[["StoreSession"], T]) -> T:
        """Call *func* with a fresh session in a worker thread.

        The session commits when *func* returns and rolls back when it
        raises, exactly like a ``with store.session()`` block. File I/O
        stays off the event loop.
        """
        def _run() -> T:
            with self.session() as session:
                return func(session)

        return await asyncio.to_thread(_run)

    # ------------------------------------------------------------------
    # File access (used by sessions)
    # ------------------------------------------------------------------

    def _read(self, filename: str, record_type: Type[T]) -> List[T]:
        filepath = self.data_dir / filename
        if not filepath.exists():
            return []

        try:
            with open(filepath, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [record_type(**row) for row in data]
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            logger.warning("Failed to load %s: %s", filepath, e)
            return []

    def _write(self, filename: str, records: Iterable) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.data_dir / filename
        data = [asdict(record) for record in records]
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)


class StoreSession:
    """One request's view of the :class:`LearningStore`.

    Provides the keyword lookups used by the prompt optimizer and the
    append-only writes used by the learning engine and adaptive service.
    """

    def __init__(self, store: LearningStore) -> None:
        self._store = store
        self._cache: Dict[str, list] = {}
        self._pending: Dict[str, list] = {}
        self._replaced_tables: Optional[List[BusinessTableInfo]] = None

    def __enter__(self) -> "StoreSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def feedback_entries(self) -> List[FeedbackEntry]:
        return self._load(LearningStore.FEEDBACK_FILE, FeedbackEntry)

    def generation_attempts(self) -> List[GenerationAttempt]:
        return self._load(LearningStore.ATTEMPTS_FILE, GenerationAttempt)

    def business_tables(self) -> List[BusinessTableInfo]:
        if self._replaced_tables is not None:
            return list(self._replaced_tables)
        return self._load(LearningStore.TABLES_FILE, BusinessTableInfo)

    def find_business_tables(self, words: List[str], limit: int = 3) -> List[BusinessTableInfo]:
        """Tables whose name or purpose contains any of *words*.

        Args:
            words: Lower-case search tokens.
            limit: Maximum tables to return.

        Returns:
            Matching tables in storage order.
        """
        if not words or limit <= 0:
            return []

        matches = []
        for table in self.business_tables():
            name = table.table_name.lower()
            purpose = (table.business_purpose or "").lower()
            if any(w in name or w in purpose for w in words):
                matches.append(table)
                if len(matches) >= limit:
                    break
        return matches

    def find_pattern_comments(
        self,
        category: str,
        min_rating: int = 4,
        limit: int = 5,
    ) -> List[str]:
        """Distinct non-empty comments on well-rated feedback in *category*."""
        comments: List[str] = []
        for entry in self.feedback_entries():
            if entry.category != category or entry.rating < min_rating:
                continue
            if not entry.comments or entry.comments in comments:
                continue
            comments.append(entry.comments)
            if len(comments) >= limit:
                break
        return comments

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_feedback(self, entry: FeedbackEntry) -> str:
        if not entry.id:
            entry.id = str(uuid.uuid4())[:8]
        self._stage(LearningStore.FEEDBACK_FILE, entry)
        return entry.id

    def add_attempt(self, attempt: GenerationAttempt) -> str:
        if not attempt.id:
            attempt.id = str(uuid.uuid4())[:8]
        self._stage(LearningStore.ATTEMPTS_FILE, attempt)
        return attempt.id

    def replace_business_tables(self, tables: Iterable[BusinessTableInfo]) -> None:
        self._replaced_tables = list(tables)

    def commit(self) -> None:
        """Append staged rows to their files, pruning the oldest rows."""
        for filename, rows in self._pending.items():
            record_type = FeedbackEntry if filename == LearningStore.FEEDBACK_FILE else GenerationAttempt
            existing = self._store._read(filename, record_type)
            combined = existing + rows
            if len(combined) > self._store.max_entries:
                combined = combined[-self._store.max_entries:]
            self._store._write(filename, combined)
            logger.debug("Committed %d row(s) to %s", len(rows), filename)

        if self._replaced_tables is not None:
            self._store._write(LearningStore.TABLES_FILE, self._replaced_tables)

        self._pending.clear()
        self._cache.clear()
        self._replaced_tables = None

    def rollback(self) -> None:
        if self._pending:
            logger.debug("Discarding %d staged file write(s)", len(self._pending))
        self._pending.clear()
        self._replaced_tables = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _load(self, filename: str, record_type: Type[T]) -> List[T]:
        if filename not in self._cache:
            self._cache[filename] = self._store._read(filename, record_type)
        return list(self._cache[filename]) + list(self._pending.get(filename, []))

    def _stage(self, filename: str, record) -> None:
        self._pending.setdefault(filename, []).append(record)
