"""Storage layer for workflow persistence."""

from content_pipeline.storage.base import WorkflowStore
from content_pipeline.storage.memory import InMemoryWorkflowStore

__all__ = ["WorkflowStore", "InMemoryWorkflowStore"]
