"""PostgreSQL storage layer."""

from content_pipeline.storage.postgres.database import Database
from content_pipeline.storage.postgres.models import Base, WorkflowRunModel, WorkflowTaskModel
from content_pipeline.storage.postgres.repository import PostgresWorkflowStore

__all__ = [
    "Base",
    "Database",
    "PostgresWorkflowStore",
    "WorkflowRunModel",
    "WorkflowTaskModel",
]
