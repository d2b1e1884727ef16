"""Value classification and serialization."""

from memoplane.values.codec import (
    ABSENT_FILE_HASH,
    Codec,
    PickleCodec,
    argument_signature,
    canonical_bytes,
    digest,
    file_hash,
    value_hash,
)
from memoplane.values.kinds import (
    DEFAULT_OPAQUE_TYPE_NAMES,
    ValueClassifier,
    ValueKind,
    type_name,
)

__all__ = [
    "ABSENT_FILE_HASH",
    "Codec",
    "DEFAULT_OPAQUE_TYPE_NAMES",
    "PickleCodec",
    "ValueClassifier",
    "ValueKind",
    "argument_signature",
    "canonical_bytes",
    "digest",
    "file_hash",
    "type_name",
    "value_hash",
]
