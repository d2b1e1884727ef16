"""Persistent memoization cache.

Commits are buffered and written in one ``BEGIN IMMEDIATE`` transaction
once ``flush_threshold`` entries are pending, and at ``close()``. Lookups
see pending entries first, and invalidation drops matching pending entries
as well as stored ones, so buffering is never observable.

Store faults never reach the host program: the first SQLAlchemy or OS
error disables the cache for the rest of the run and is logged once.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import and_, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from memoplane.cache.database import Database
from memoplane.cache.models import CodeDependency, FileDependency, GlobalDependency, MemoEntry
from memoplane.cache.snapshot import (
    CacheHit,
    CacheKey,
    CacheMiss,
    DependencySnapshot,
    DependencyState,
    LookupResult,
    MissReason,
)
from memoplane.config.constants import SCHEMA_VERSION
from memoplane.core.errors import SerializationError, StoreError
from memoplane.values.codec import digest

if TYPE_CHECKING:
    from memoplane.config.models import MemoplaneConfig

logger = structlog.get_logger()

# bulk deletes; dependency rows go through ON DELETE CASCADE
_NO_SYNC = {"synchronize_session": False}


@dataclass
class CacheStats:
    """Counters for one run."""

    hits: int = 0
    misses: int = 0
    commits: int = 0
    invalidated: int = 0
    flushes: int = 0
    miss_reasons: dict[str, int] = field(default_factory=dict)

    def record_miss(self, reason: MissReason) -> None:
        self.misses += 1
        self.miss_reasons[reason.value] = self.miss_reasons.get(reason.value, 0) + 1


@dataclass(frozen=True)
class EntrySummary:
    """One stored entry, for listings."""

    callable_name: str
    code_hash: str
    arg_signature: str
    payload_size: int
    created_at: float


@dataclass(frozen=True)
class _PendingEntry:
    key: CacheKey
    payload: bytes
    payload_hash: str
    snapshot: DependencySnapshot


def validate_snapshot(snapshot: DependencySnapshot, state: DependencyState) -> tuple[MissReason, str] | None:
    """Compare a recorded snapshot with the current state. None means still valid."""
    changed_unit = state.code_mismatch(snapshot.code)
    if changed_unit is not None:
        return MissReason.CODE_CHANGED, changed_unit
    for key, recorded in snapshot.globals.items():
        if state.binding_hash(key) != recorded:
            return MissReason.GLOBAL_CHANGED, key
    for path, recorded in snapshot.files.items():
        if state.file_hash(path) != recorded:
            return MissReason.FILE_CHANGED, path
    return None


def _key_filter(key: CacheKey):  # type: ignore[no-untyped-def]
    return and_(
        col(MemoEntry.callable_name) == key.callable_name,
        col(MemoEntry.code_hash) == key.code_hash,
        col(MemoEntry.arg_signature) == key.arg_signature,
    )


class MemoCache:
    """Keyed store of memoized results with eager invalidation."""

    def __init__(
        self,
        db: Database | None,
        *,
        codec_name: str = "pickle",
        flush_threshold: int = 32,
    ) -> None:
        self._db = db
        self.codec_name = codec_name
        self.flush_threshold = flush_threshold
        self.stats = CacheStats()
        self._pending: dict[CacheKey, _PendingEntry] = {}
        self._disabled_reason: str | None = None if db is not None else "no store"

    @classmethod
    def open(
        cls,
        db_path: Path,
        *,
        config: MemoplaneConfig | None = None,
        codec_name: str = "pickle",
    ) -> MemoCache:
        """Open (or create) the cache database at ``db_path``.

        Never raises for store problems: an unusable store yields a disabled cache.
        """
        flush_threshold = config.cache.flush_threshold if config is not None else 32
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            if config is not None:
                db = Database(
                    db_path,
                    max_retries=config.database.max_retries,
                    busy_timeout_ms=config.database.busy_timeout_ms,
                )
            else:
                db = Database(db_path)
            db.create_all()
            problems = db.quick_check()
            if problems:
                raise StoreError.corrupt(str(db_path), "; ".join(problems[:3]))
        except StoreError as e:
            return cls._disabled(e, codec_name, flush_threshold)
        except (SQLAlchemyError, OSError) as e:
            return cls._disabled(StoreError.unavailable(str(db_path), str(e)), codec_name, flush_threshold)
        logger.debug("cache_opened", path=str(db_path))
        return cls(db, codec_name=codec_name, flush_threshold=flush_threshold)

    @classmethod
    def disabled(cls, reason: str, *, codec_name: str = "pickle") -> MemoCache:
        """A cache that misses every lookup and drops every commit."""
        cache = cls(None, codec_name=codec_name)
        cache._disabled_reason = reason
        return cache

    @classmethod
    def _disabled(cls, error: StoreError, codec_name: str, flush_threshold: int) -> MemoCache:
        logger.error("store_disabled", error=error.error_name, message=error.message)
        cache = cls(None, codec_name=codec_name, flush_threshold=flush_threshold)
        cache._disabled_reason = error.message
        return cache

    @property
    def enabled(self) -> bool:
        return self._db is not None

    @property
    def disabled_reason(self) -> str | None:
        return self._disabled_reason

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _fail(self, operation: str, error: Exception) -> None:
        """Degrade to caching-disabled after a store fault."""
        path = str(self._db.db_path) if self._db is not None else "?"
        store_error = StoreError.write_failed(path, f"{operation}: {error}")
        logger.error(
            "store_disabled",
            error=store_error.error_name,
            message=store_error.message,
            dropped_pending=len(self._pending),
        )
        self._disabled_reason = store_error.message
        self._pending.clear()
        if self._db is not None:
            self._db.dispose()
        self._db = None

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    def _miss(self, key: CacheKey, reason: MissReason, detail: str | None = None) -> CacheMiss:
        self.stats.record_miss(reason)
        logger.debug("cache_miss", key=str(key), reason=reason.value, detail=detail)
        return CacheMiss(key=key, reason=reason, detail=detail)

    def lookup(
        self,
        key: CacheKey,
        state: DependencyState,
        decode: Callable[[bytes], Any] | None = None,
    ) -> LookupResult:
        """Return the stored payload for ``key`` if its snapshot is still valid.

        With ``decode`` the payload is also decoded into ``CacheHit.value``; a
        payload that fails to decode is discarded and counted as a miss.
        """
        if not self.enabled:
            return self._miss(key, MissReason.DISABLED, self._disabled_reason)

        pending = self._pending.get(key)
        if pending is not None:
            payload, payload_hash, snapshot = pending.payload, pending.payload_hash, pending.snapshot
        else:
            try:
                stored = self._load(key)
            except SQLAlchemyError as e:
                self._fail("lookup", e)
                return self._miss(key, MissReason.DISABLED, self._disabled_reason)
            if stored is None:
                return self._miss(key, MissReason.ABSENT)
            if isinstance(stored, CacheMiss):
                self.discard(key)
                return self._miss(key, stored.reason, stored.detail)
            payload, payload_hash, snapshot = stored

        if digest(payload) != payload_hash:
            self.discard(key)
            return self._miss(key, MissReason.DECODE_FAILED, "payload hash mismatch")

        invalid = validate_snapshot(snapshot, state)
        if invalid is not None:
            reason, detail = invalid
            self.discard(key)
            return self._miss(key, reason, detail)

        value = None
        if decode is not None:
            try:
                value = decode(payload)
            except SerializationError as e:
                logger.warning("payload_decode_failed", key=str(key), error=e.message)
                self.discard(key)
                return self._miss(key, MissReason.DECODE_FAILED, e.message)

        self.stats.hits += 1
        logger.debug("cache_hit", key=str(key))
        return CacheHit(key=key, payload=payload, snapshot=snapshot, value=value)

    def _load(self, key: CacheKey) -> tuple[bytes, str, DependencySnapshot] | CacheMiss | None:
        assert self._db is not None
        with self._db.session() as session:
            entry = session.exec(select(MemoEntry).where(_key_filter(key))).first()
            if entry is None:
                return None
            if entry.schema_version != SCHEMA_VERSION:
                return CacheMiss(key=key, reason=MissReason.STALE_SCHEMA, detail=str(entry.schema_version))
            if entry.codec != self.codec_name:
                return CacheMiss(key=key, reason=MissReason.STALE_SCHEMA, detail=entry.codec)
            snapshot = self._load_snapshot(session, entry.id)  # type: ignore[arg-type]
            return entry.payload, entry.payload_hash, snapshot

    @staticmethod
    def _load_snapshot(session: Session, entry_id: int) -> DependencySnapshot:
        globals_read = {
            row.binding_key: row.value_hash
            for row in session.exec(select(GlobalDependency).where(GlobalDependency.entry_id == entry_id))
        }
        files_read = {
            row.path: row.content_hash
            for row in session.exec(select(FileDependency).where(FileDependency.entry_id == entry_id))
        }
        code = {
            row.callable_name: row.code_hash
            for row in session.exec(select(CodeDependency).where(CodeDependency.entry_id == entry_id))
        }
        return DependencySnapshot(globals=globals_read, files=files_read, code=code)

    # ------------------------------------------------------------------
    # commit
    # ------------------------------------------------------------------

    def commit(self, key: CacheKey, payload: bytes, snapshot: DependencySnapshot) -> bool:
        """Buffer an entry for writing. Returns False when the cache is disabled."""
        if not self.enabled:
            return False
        self._pending[key] = _PendingEntry(
            key=key,
            payload=payload,
            payload_hash=digest(payload),
            snapshot=snapshot,
        )
        self.stats.commits += 1
        logger.debug("cache_commit", key=str(key), size=len(payload))
        if len(self._pending) >= self.flush_threshold:
            self.flush()
        return True

    def flush(self) -> int:
        """Write every pending entry. Returns the number written."""
        if not self._pending or self._db is None:
            return 0
        batch = list(self._pending.values())
        try:
            with self._db.immediate_transaction() as session:
                for pending in batch:
                    self._write(session, pending)
        except SQLAlchemyError as e:
            self._fail("flush", e)
            return 0
        self._pending.clear()
        self.stats.flushes += 1
        logger.debug("cache_flushed", entries=len(batch))
        return len(batch)

    def _write(self, session: Session, pending: _PendingEntry) -> None:
        session.execute(delete(MemoEntry).where(_key_filter(pending.key)), execution_options=_NO_SYNC)
        entry = MemoEntry(
            callable_name=pending.key.callable_name,
            code_hash=pending.key.code_hash,
            arg_signature=pending.key.arg_signature,
            codec=self.codec_name,
            schema_version=SCHEMA_VERSION,
            payload=pending.payload,
            payload_hash=pending.payload_hash,
        )
        session.add(entry)
        session.flush()
        assert entry.id is not None
        snapshot = pending.snapshot
        session.add_all(
            [GlobalDependency(entry_id=entry.id, binding_key=k, value_hash=v) for k, v in snapshot.globals.items()]
        )
        session.add_all(
            [FileDependency(entry_id=entry.id, path=p, content_hash=h) for p, h in snapshot.files.items()]
        )
        session.add_all(
            [CodeDependency(entry_id=entry.id, callable_name=n, code_hash=h) for n, h in snapshot.code.items()]
        )

    # ------------------------------------------------------------------
    # invalidation
    # ------------------------------------------------------------------

    def _drop_pending(self, predicate: Callable[[DependencySnapshot], bool]) -> int:
        doomed = [key for key, pending in self._pending.items() if predicate(pending.snapshot)]
        for key in doomed:
            del self._pending[key]
        return len(doomed)

    def _delete_stored(self, operation: str, statement) -> int:  # type: ignore[no-untyped-def]
        if self._db is None:
            return 0
        try:
            with self._db.immediate_transaction() as session:
                result = session.execute(statement, execution_options=_NO_SYNC)
                return int(result.rowcount or 0)  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            self._fail(operation, e)
            return 0

    def invalidate_binding(self, binding_key: str) -> int:
        """Drop every entry whose snapshot recorded ``binding_key``."""
        if not self.enabled:
            return 0
        removed = self._drop_pending(lambda snapshot: binding_key in snapshot.globals)
        dependents = select(GlobalDependency.entry_id).where(GlobalDependency.binding_key == binding_key)
        removed += self._delete_stored(
            "invalidate_binding", delete(MemoEntry).where(col(MemoEntry.id).in_(dependents))
        )
        self._note_invalidated("binding", binding_key, removed)
        return removed

    def invalidate_file(self, path: str) -> int:
        """Drop every entry whose snapshot recorded a read of ``path``."""
        if not self.enabled:
            return 0
        removed = self._drop_pending(lambda snapshot: path in snapshot.files)
        dependents = select(FileDependency.entry_id).where(FileDependency.path == path)
        removed += self._delete_stored(
            "invalidate_file", delete(MemoEntry).where(col(MemoEntry.id).in_(dependents))
        )
        self._note_invalidated("file", path, removed)
        return removed

    def invalidate_callable(self, callable_name: str) -> int:
        """Drop every entry of one callable, whatever its code hash."""
        if not self.enabled:
            return 0
        doomed = [key for key in self._pending if key.callable_name == callable_name]
        for key in doomed:
            del self._pending[key]
        removed = len(doomed) + self._delete_stored(
            "invalidate_callable",
            delete(MemoEntry).where(col(MemoEntry.callable_name) == callable_name),
        )
        self._note_invalidated("callable", callable_name, removed)
        return removed

    def discard(self, key: CacheKey) -> bool:
        """Remove one entry."""
        if not self.enabled:
            return False
        removed = self._pending.pop(key, None) is not None
        removed = bool(self._delete_stored("discard", delete(MemoEntry).where(_key_filter(key)))) or removed
        return removed

    def _note_invalidated(self, kind: str, target: str, removed: int) -> None:
        if removed:
            self.stats.invalidated += removed
            logger.debug("cache_invalidated", kind=kind, target=target, entries=removed)

    # ------------------------------------------------------------------
    # inspection and teardown
    # ------------------------------------------------------------------

    def entries(self, callable_name: str | None = None) -> list[EntrySummary]:
        """Stored entries (pending ones are flushed first)."""
        self.flush()
        if self._db is None:
            return []
        try:
            with self._db.session() as session:
                stmt = select(MemoEntry).order_by(
                    col(MemoEntry.callable_name), col(MemoEntry.created_at), col(MemoEntry.id)
                )
                if callable_name is not None:
                    stmt = stmt.where(MemoEntry.callable_name == callable_name)
                return [
                    EntrySummary(
                        callable_name=entry.callable_name,
                        code_hash=entry.code_hash,
                        arg_signature=entry.arg_signature,
                        payload_size=len(entry.payload),
                        created_at=entry.created_at,
                    )
                    for entry in session.exec(stmt)
                ]
        except SQLAlchemyError as e:
            self._fail("entries", e)
            return []

    def counts_by_callable(self) -> Mapping[str, int]:
        self.flush()
        if self._db is None:
            return {}
        try:
            with self._db.session() as session:
                stmt = select(MemoEntry.callable_name, func.count()).group_by(MemoEntry.callable_name)
                return {name: int(count) for name, count in session.exec(stmt)}
        except SQLAlchemyError as e:
            self._fail("counts_by_callable", e)
            return {}

    def clear(self) -> int:
        """Delete every stored and pending entry."""
        if not self.enabled:
            return 0
        removed = len(self._pending)
        self._pending.clear()
        removed += self._delete_stored("clear", delete(MemoEntry))
        self._note_invalidated("all", "*", removed)
        return removed

    def close(self) -> None:
        """Flush pending commits, then release the database."""
        self.flush()
        if self._db is not None:
            self._db.checkpoint()
            self._db.dispose()
            self._db = None
            self._disabled_reason = "closed"
