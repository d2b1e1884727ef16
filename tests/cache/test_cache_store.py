"""Tests for MemoCache: lookup, commit, invalidation and degradation."""

from collections.abc import Iterator, Mapping
from pathlib import Path

import pytest
from sqlmodel import select

from memoplane.cache import (
    CacheKey,
    Database,
    DependencySnapshot,
    MemoCache,
    MissReason,
    validate_snapshot,
)
from memoplane.cache.models import GlobalDependency
from memoplane.config.models import CacheConfig, MemoplaneConfig
from memoplane.values import PickleCodec


class FakeState:
    """In-memory DependencyState."""

    def __init__(self) -> None:
        self.bindings: dict[str, str] = {}
        self.files: dict[str, str] = {}
        self.code: dict[str, str] = {}

    def binding_hash(self, key: str) -> str | None:
        return self.bindings.get(key)

    def file_hash(self, path: str) -> str:
        return self.files.get(path, "<missing>")

    def code_mismatch(self, code: Mapping[str, str]) -> str | None:
        for name, code_hash in code.items():
            if self.code.get(name) != code_hash:
                return name
        return None


KEY = CacheKey(callable_name="app.load", code_hash="c1", arg_signature="sig1")
OTHER_KEY = CacheKey(callable_name="app.parse", code_hash="c2", arg_signature="sig2")


@pytest.fixture
def state() -> FakeState:
    fake = FakeState()
    fake.code = {"app.load": "c1", "app.parse": "c2"}
    fake.bindings = {"app:LIMIT": "h-limit"}
    fake.files = {"/data/in.txt": "h-file"}
    return fake


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / ".memoplane" / "cache.db"


@pytest.fixture
def cache(db_path: Path) -> Iterator[MemoCache]:
    memo = MemoCache.open(db_path)
    yield memo
    memo.close()


def _snapshot(**extra: dict[str, str]) -> DependencySnapshot:
    return DependencySnapshot(
        globals=extra.get("globals", {"app:LIMIT": "h-limit"}),
        files=extra.get("files", {"/data/in.txt": "h-file"}),
        code=extra.get("code", {"app.load": "c1"}),
    )


class TestLookup:
    """Hits and misses."""

    def test_absent_key_misses(self, cache: MemoCache, state: FakeState) -> None:
        result = cache.lookup(KEY, state)
        assert not result.hit
        assert result.reason is MissReason.ABSENT

    def test_pending_commit_is_visible(self, cache: MemoCache, state: FakeState) -> None:
        """Buffered commits are found before they are flushed."""
        # Given
        assert cache.commit(KEY, b"payload", _snapshot())

        # When
        result = cache.lookup(KEY, state)

        # Then
        assert cache.pending_count == 1
        assert result.hit
        assert result.payload == b"payload"

    def test_flushed_entry_round_trips_snapshot(self, cache: MemoCache, state: FakeState) -> None:
        # Given
        snapshot = _snapshot()
        cache.commit(KEY, b"payload", snapshot)

        # When
        assert cache.flush() == 1
        result = cache.lookup(KEY, state)

        # Then
        assert cache.pending_count == 0
        assert result.hit
        assert dict(result.snapshot.globals) == dict(snapshot.globals)
        assert dict(result.snapshot.files) == dict(snapshot.files)
        assert dict(result.snapshot.code) == dict(snapshot.code)

    def test_entry_survives_reopen(self, db_path: Path, state: FakeState) -> None:
        # Given
        first = MemoCache.open(db_path)
        first.commit(KEY, b"payload", _snapshot())
        first.close()

        # When
        second = MemoCache.open(db_path)
        result = second.lookup(KEY, state)
        second.close()

        # Then
        assert result.hit
        assert result.payload == b"payload"

    @pytest.mark.parametrize(
        ("mutate", "reason"),
        [
            (lambda s: s.code.update({"app.load": "c9"}), MissReason.CODE_CHANGED),
            (lambda s: s.bindings.update({"app:LIMIT": "other"}), MissReason.GLOBAL_CHANGED),
            (lambda s: s.bindings.pop("app:LIMIT"), MissReason.GLOBAL_CHANGED),
            (lambda s: s.files.update({"/data/in.txt": "edited"}), MissReason.FILE_CHANGED),
        ],
    )
    def test_stale_dependency_misses_and_discards(self, cache: MemoCache, state: FakeState, mutate, reason) -> None:
        # Given
        cache.commit(KEY, b"payload", _snapshot())
        cache.flush()
        mutate(state)

        # When
        result = cache.lookup(KEY, state)

        # Then
        assert result.reason is reason
        assert cache.lookup(KEY, state).reason is MissReason.ABSENT

    def test_other_codec_is_stale(self, db_path: Path, state: FakeState) -> None:
        writer = MemoCache.open(db_path)
        writer.commit(KEY, b"payload", _snapshot())
        writer.close()

        reader = MemoCache.open(db_path, codec_name="json")
        result = reader.lookup(KEY, state)
        reader.close()

        assert result.reason is MissReason.STALE_SCHEMA

    def test_stats_track_hits_and_misses(self, cache: MemoCache, state: FakeState) -> None:
        cache.lookup(KEY, state)
        cache.commit(KEY, b"payload", _snapshot())
        cache.lookup(KEY, state)

        assert cache.stats.hits == 1
        assert cache.stats.misses == 1
        assert cache.stats.commits == 1
        assert cache.stats.miss_reasons == {"absent": 1}

    def test_decoded_hit_carries_value(self, cache: MemoCache, state: FakeState) -> None:
        cache.commit(KEY, b"payload", _snapshot())

        result = cache.lookup(KEY, state, decode=bytes.upper)

        assert result.hit
        assert result.value == b"PAYLOAD"

    def test_undecodable_payload_counts_as_miss(self, cache: MemoCache, state: FakeState) -> None:
        # Given
        cache.commit(KEY, b"\x80\x05garbage", _snapshot())

        # When
        result = cache.lookup(KEY, state, decode=PickleCodec().decode)

        # Then
        assert result.reason is MissReason.DECODE_FAILED
        assert cache.stats.hits == 0
        assert cache.stats.miss_reasons == {"decode_failed": 1}
        assert cache.lookup(KEY, state).reason is MissReason.ABSENT


class TestValidateSnapshot:
    """Order of checks."""

    def test_code_is_checked_before_globals(self, state: FakeState) -> None:
        state.code["app.load"] = "changed"
        state.bindings["app:LIMIT"] = "changed"
        assert validate_snapshot(_snapshot(), state) == (MissReason.CODE_CHANGED, "app.load")

    def test_valid_snapshot(self, state: FakeState) -> None:
        assert validate_snapshot(_snapshot(), state) is None


class TestCommit:
    """Buffering."""

    def test_threshold_triggers_flush(self, db_path: Path) -> None:
        config = MemoplaneConfig(cache=CacheConfig(flush_threshold=2))
        memo = MemoCache.open(db_path, config=config)

        memo.commit(KEY, b"a", _snapshot())
        assert memo.pending_count == 1
        memo.commit(OTHER_KEY, b"b", _snapshot(code={"app.parse": "c2"}))

        assert memo.pending_count == 0
        assert memo.stats.flushes == 1
        memo.close()

    def test_recommit_replaces_entry(self, cache: MemoCache, state: FakeState) -> None:
        cache.commit(KEY, b"old", _snapshot())
        cache.flush()
        cache.commit(KEY, b"new", _snapshot())
        cache.flush()

        assert cache.lookup(KEY, state).payload == b"new"
        assert cache.counts_by_callable() == {"app.load": 1}


class TestInvalidation:
    """Eager invalidation through the dependency tables."""

    def test_invalidate_binding_drops_stored_and_pending(self, cache: MemoCache, state: FakeState) -> None:
        # Given one stored and one pending entry reading the binding
        cache.commit(KEY, b"a", _snapshot())
        cache.flush()
        cache.commit(OTHER_KEY, b"b", _snapshot(code={"app.parse": "c2"}))

        # When
        removed = cache.invalidate_binding("app:LIMIT")

        # Then
        assert removed == 2
        assert cache.lookup(KEY, state).reason is MissReason.ABSENT
        assert cache.lookup(OTHER_KEY, state).reason is MissReason.ABSENT
        assert cache.stats.invalidated == 2

    def test_invalidate_binding_keeps_unrelated(self, cache: MemoCache, state: FakeState) -> None:
        cache.commit(KEY, b"a", _snapshot(globals={}))
        cache.flush()

        assert cache.invalidate_binding("app:LIMIT") == 0
        assert cache.lookup(KEY, state).hit

    def test_invalidate_file(self, cache: MemoCache, state: FakeState) -> None:
        cache.commit(KEY, b"a", _snapshot())
        cache.flush()

        assert cache.invalidate_file("/data/in.txt") == 1
        assert cache.lookup(KEY, state).reason is MissReason.ABSENT

    def test_invalidate_callable_cascades_dependency_rows(self, cache: MemoCache, db_path: Path) -> None:
        cache.commit(KEY, b"a", _snapshot())
        cache.flush()

        assert cache.invalidate_callable("app.load") == 1

        db = Database(db_path)
        with db.session() as session:
            assert session.exec(select(GlobalDependency)).all() == []
        db.dispose()

    def test_clear_removes_everything(self, cache: MemoCache) -> None:
        cache.commit(KEY, b"a", _snapshot())
        cache.flush()
        cache.commit(OTHER_KEY, b"b", _snapshot())

        assert cache.clear() == 2
        assert cache.entries() == []


class TestInspection:
    """Listings for the CLI."""

    def test_entries_flush_pending_first(self, cache: MemoCache) -> None:
        cache.commit(KEY, b"abc", _snapshot())
        cache.commit(OTHER_KEY, b"de", _snapshot())

        entries = cache.entries()

        assert [e.callable_name for e in entries] == ["app.load", "app.parse"]
        assert entries[0].payload_size == 3

    def test_entries_filtered_by_callable(self, cache: MemoCache) -> None:
        cache.commit(KEY, b"abc", _snapshot())
        cache.commit(OTHER_KEY, b"de", _snapshot())

        assert [e.arg_signature for e in cache.entries("app.parse")] == ["sig2"]

    def test_counts_by_callable(self, cache: MemoCache) -> None:
        cache.commit(KEY, b"abc", _snapshot())
        cache.commit(CacheKey("app.load", "c1", "sig9"), b"x", _snapshot())
        cache.commit(OTHER_KEY, b"de", _snapshot())

        assert dict(cache.counts_by_callable()) == {"app.load": 2, "app.parse": 1}


class TestDegradation:
    """Store faults disable caching instead of failing the program."""

    def test_corrupt_database_disables_cache(self, db_path: Path, state: FakeState) -> None:
        # Given
        db_path.parent.mkdir(parents=True)
        db_path.write_bytes(b"this is not a sqlite database" * 200)

        # When
        memo = MemoCache.open(db_path)

        # Then
        assert not memo.enabled
        assert memo.disabled_reason
        assert memo.lookup(KEY, state).reason is MissReason.DISABLED
        assert memo.commit(KEY, b"a", _snapshot()) is False

    def test_unwritable_location_disables_cache(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")

        memo = MemoCache.open(blocker / "cache.db")

        assert not memo.enabled

    def test_disabled_cache_is_inert(self, state: FakeState) -> None:
        memo = MemoCache.disabled("testing")

        assert memo.disabled_reason == "testing"
        assert memo.invalidate_binding("app:LIMIT") == 0
        assert memo.clear() == 0
        assert memo.entries() == []
        memo.close()

    def test_close_flushes_and_disables(self, db_path: Path, state: FakeState) -> None:
        memo = MemoCache.open(db_path)
        memo.commit(KEY, b"a", _snapshot())

        memo.close()

        assert not memo.enabled
        assert memo.disabled_reason == "closed"
        reopened = MemoCache.open(db_path)
        assert reopened.lookup(KEY, state).hit
        reopened.close()
