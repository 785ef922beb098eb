"""
SQLAlchemy models for PostgreSQL persistence.

Two tables: ``workflow_runs`` and ``workflow_tasks``. Stage progress, the
error log, and task payloads are stored as JSONB documents.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


class WorkflowRunModel(Base):
    """
    Stores one pipeline run.

    ``version`` is bumped on every write and used for optimistic concurrency.
    ``locked_by``/``locked_until`` hold the scheduler pass lease.
    """

    __tablename__ = "workflow_runs"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    proposal_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    workflow_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # State
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending", index=True)
    current_stage: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Aggregates
    stage_progress: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    error_log: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)

    # Concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    locked_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_workflow_runs_status_created", "status", "created_at"),
    )


class WorkflowTaskModel(Base):
    """
    Stores one task of a run.

    ``depends_on`` is a UUID array; dependencies are not foreign keys since a
    missing dependency is a reportable condition, not a constraint violation.
    """

    __tablename__ = "workflow_tasks"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    workflow_run_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    task_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_entity: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    depends_on: Mapped[list[UUID]] = mapped_column(
        ARRAY(PGUUID(as_uuid=True)),
        nullable=False,
        default=list
    )

    # Payloads
    input: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    output: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    agent_assigned: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # State
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="queued")
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_workflow_tasks_run_status_priority", "workflow_run_id", "status", "priority"),
        Index("ix_workflow_tasks_run_type", "workflow_run_id", "task_type"),
    )
