"""Pluggable serialization codec and content hashing.

The codec contract is explicit success or SerializationError, never a
silently corrupted payload. The engine absorbs SerializationError: an encode
failure skips the commit, a decode failure is a cache miss.

All hashes are blake2b hex digests. Values are hashed through a canonical
encoding, so primitives compare by value and containers by content, and the
hash of a set or dict does not depend on ordering or on PYTHONHASHSEED.
Payloads are stored as plain codec output.
"""

from __future__ import annotations

import hashlib
import pickle
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

from memoplane.config.constants import FILE_HASH_CHUNK_SIZE, HASH_DIGEST_SIZE
from memoplane.core.errors import SerializationError
from memoplane.values.kinds import CONTAINER_TYPES, PRIMITIVE_TYPES, type_name

ABSENT_FILE_HASH = "absent"
"""Content hash recorded for a file that did not exist when it was read."""


class Codec(Protocol):
    """Serialization contract used for payloads, signatures and value hashes."""

    name: str

    def encode(self, value: Any) -> bytes: ...

    def decode(self, data: bytes) -> Any: ...


class PickleCodec:
    """Codec backed by the pickle protocol."""

    name = "pickle"

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL) -> None:
        self.protocol = protocol

    def encode(self, value: Any) -> bytes:
        try:
            return pickle.dumps(value, protocol=self.protocol)
        except Exception as e:
            # __reduce__ and __getstate__ run user code and may raise anything
            raise SerializationError.encode_failed(type_name(value), f"{type(e).__name__}: {e}") from e

    def decode(self, data: bytes) -> Any:
        try:
            return pickle.loads(data)  # noqa: S301 - payloads are written by this process family
        except Exception as e:
            raise SerializationError.decode_failed(f"{type(e).__name__}: {e}") from e


def digest(data: bytes) -> str:
    return hashlib.blake2b(data, digest_size=HASH_DIGEST_SIZE).hexdigest()


def _framed(tag: bytes, parts: Iterable[bytes]) -> bytes:
    return tag + b"".join(len(part).to_bytes(8, "big") + part for part in parts)


_DEFAULT_GETSTATE = getattr(object, "__getstate__", None)


def _has_default_state(cls: type) -> bool:
    """Whether instances pickle as their plain ``__dict__`` and nothing else."""
    return (
        all(base is object or base.__module__ != "builtins" for base in cls.__mro__)
        and cls.__reduce_ex__ is object.__reduce_ex__
        and cls.__reduce__ is object.__reduce__
        and getattr(cls, "__getstate__", _DEFAULT_GETSTATE) is _DEFAULT_GETSTATE
    )


def canonical_bytes(value: Any, codec: Codec) -> bytes:
    """Order-independent encoding of a value for hashing.

    Set members and dict items are sorted by their own canonical encoding, so
    equal values encode equally whatever their insertion order or the
    interpreter's hash seed. Plain instances are encoded as their type name
    plus canonical ``__dict__``; everything else goes through the codec.
    Cyclic containers raise SerializationError.
    """
    active: set[int] = set()

    def encode(current: Any) -> bytes:
        cls = type(current)
        if cls in PRIMITIVE_TYPES:
            return codec.encode(current)
        if cls in CONTAINER_TYPES or (hasattr(current, "__dict__") and _has_default_state(cls)):
            if id(current) in active:
                raise SerializationError.encode_failed(type_name(current), "cyclic reference")
            active.add(id(current))
            try:
                return encode_compound(current)
            finally:
                active.discard(id(current))
        return codec.encode(current)

    def encode_compound(current: Any) -> bytes:
        cls = type(current)
        if cls is list or cls is tuple:
            return _framed(b"L" if cls is list else b"T", [encode(item) for item in current])
        if cls is set or cls is frozenset:
            return _framed(b"S" if cls is set else b"F", sorted(encode(item) for item in current))
        if cls is dict:
            items = sorted(_framed(b"I", (encode(k), encode(v))) for k, v in current.items())
            return _framed(b"D", items)
        state = vars(current)
        return _framed(b"O", (type_name(current).encode(), encode(dict(state))))

    try:
        return encode(value)
    except SerializationError:
        raise
    except Exception as e:
        # RecursionError on deep nesting, or a user __getattr__ misbehaving
        raise SerializationError.encode_failed(type_name(value), f"{type(e).__name__}: {e}") from e


def value_hash(value: Any, codec: Codec) -> str:
    """Content hash of a value. Raises SerializationError if it cannot be encoded."""
    return digest(canonical_bytes(value, codec))


def argument_signature(arguments: Mapping[str, Any], codec: Codec) -> str:
    """Canonical signature of bound call arguments (name order preserved)."""
    return digest(canonical_bytes(tuple(arguments.items()), codec))


def file_hash(path: str | Path) -> str:
    """Content hash of a file, or ABSENT_FILE_HASH if it cannot be read."""
    hasher = hashlib.blake2b(digest_size=HASH_DIGEST_SIZE)
    try:
        with open(path, "rb") as f:
            while chunk := f.read(FILE_HASH_CHUNK_SIZE):
                hasher.update(chunk)
    except OSError:
        return ABSENT_FILE_HASH
    return hasher.hexdigest()
