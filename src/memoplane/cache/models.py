"""SQLModel definitions for the persistent memo cache.

One row in ``memo_entries`` per cached call, keyed by
(callable_name, code_hash, arg_signature). The dependency snapshot is
normalized into three child tables; their indexed key columns double as
the reverse index used for eager invalidation (binding -> entries,
file -> entries).
"""

import time

from sqlalchemy import Column, ForeignKey, Integer, LargeBinary, UniqueConstraint
from sqlmodel import Field, SQLModel


class MemoEntry(SQLModel, table=True):
    """A committed result."""

    __tablename__ = "memo_entries"
    __table_args__ = (
        UniqueConstraint("callable_name", "code_hash", "arg_signature", name="uq_memo_key"),
    )

    id: int | None = Field(default=None, primary_key=True)
    callable_name: str = Field(index=True)
    code_hash: str
    arg_signature: str
    codec: str
    schema_version: int
    payload: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    payload_hash: str
    created_at: float = Field(default_factory=time.time)


class GlobalDependency(SQLModel, table=True):
    """A global binding an entry read, with the value hash seen at record time."""

    __tablename__ = "global_deps"

    id: int | None = Field(default=None, primary_key=True)
    entry_id: int = Field(
        sa_column=Column(Integer, ForeignKey("memo_entries.id", ondelete="CASCADE"), index=True)
    )
    binding_key: str = Field(index=True)
    value_hash: str


class FileDependency(SQLModel, table=True):
    """A file an entry read, with its content hash at record time."""

    __tablename__ = "file_deps"

    id: int | None = Field(default=None, primary_key=True)
    entry_id: int = Field(
        sa_column=Column(Integer, ForeignKey("memo_entries.id", ondelete="CASCADE"), index=True)
    )
    path: str = Field(index=True)
    content_hash: str


class CodeDependency(SQLModel, table=True):
    """A unit an entry's call transitively invoked, with its code hash."""

    __tablename__ = "code_deps"

    id: int | None = Field(default=None, primary_key=True)
    entry_id: int = Field(
        sa_column=Column(Integer, ForeignKey("memo_entries.id", ondelete="CASCADE"), index=True)
    )
    callable_name: str = Field(index=True)
    code_hash: str
