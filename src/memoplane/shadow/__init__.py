"""Shadow metadata store for tracked objects."""

from memoplane.shadow.store import ObjectMetadataRecord, ShadowMetadataStore

__all__ = ["ObjectMetadataRecord", "ShadowMetadataStore"]
