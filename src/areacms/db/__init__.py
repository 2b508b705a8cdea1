"""Relational metadata store."""

from areacms.db.metadata_store import BlobPaths, MetadataStore

__all__ = ["BlobPaths", "MetadataStore"]
