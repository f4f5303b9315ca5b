"""Run persistence."""

from nodeflow.storage.run_store import FileRunStore, InMemoryRunStore, RunStore

__all__ = ["RunStore", "InMemoryRunStore", "FileRunStore"]
