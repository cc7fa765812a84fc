"""
Database Models for termwarden
==============================

SQLAlchemy models for supervisors, the sessions and folders they watch,
insights, the audit trail, and tasks.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import (
    String, Integer, Float, DateTime, ForeignKey, JSON, Text, Boolean, Index, text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class FolderModel(Base):
    """A folder grouping terminal sessions; the scope of a scoped supervisor."""
    __tablename__ = "folders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    name: Mapped[str] = mapped_column(String(255))
    path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class TerminalSessionModel(Base):
    """A live terminal session owned by the surrounding platform."""
    __tablename__ = "terminal_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    name: Mapped[str] = mapped_column(String(255))
    handle: Mapped[str] = mapped_column(String(255))  # tmux session name
    folder_id: Mapped[Optional[str]] = mapped_column(ForeignKey("folders.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active")  # active, suspended, closed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SupervisorModel(Base):
    """A supervisor (master or scoped)."""
    __tablename__ = "supervisors"
    __table_args__ = (
        # At most one live scoped supervisor per (user, scope)
        Index(
            "uq_supervisors_active_scope",
            "user_id", "scope_id",
            unique=True,
            sqlite_where=text("kind = 'scoped' AND retired_at IS NULL"),
            postgresql_where=text("kind = 'scoped' AND retired_at IS NULL"),
        ),
        # At most one live master per user
        Index(
            "uq_supervisors_active_master",
            "user_id",
            unique=True,
            sqlite_where=text("kind = 'master' AND retired_at IS NULL"),
            postgresql_where=text("kind = 'master' AND retired_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20))  # master, scoped
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    session_id: Mapped[str] = mapped_column(String(36))  # Host terminal session
    scope_kind: Mapped[str] = mapped_column(String(20), default="none")  # none, folder
    scope_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="idle")  # idle, analyzing, acting, paused

    monitoring_interval: Mapped[int] = mapped_column(Integer, default=30)
    stall_threshold: Mapped[int] = mapped_column(Integer, default=300)
    auto_intervention: Mapped[bool] = mapped_column(Boolean, default=False)
    custom_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    retired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class InsightModel(Base):
    """A generated insight awaiting human review."""
    __tablename__ = "insights"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    supervisor_id: Mapped[str] = mapped_column(ForeignKey("supervisors.id"), index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(50))  # stall_detected, error, task_blocked, task_failed
    severity: Mapped[str] = mapped_column(String(20))  # info, warning, error, critical
    message: Mapped[str] = mapped_column(Text)
    context: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    suggested_actions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuditLogModel(Base):
    """Append-only audit entry."""
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    supervisor_id: Mapped[str] = mapped_column(ForeignKey("supervisors.id"), index=True)
    action_type: Mapped[str] = mapped_column(String(50), index=True)
    target_session_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TaskModel(Base):
    """A unit of work a supervisor delegates to an agent session."""
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    supervisor_id: Mapped[str] = mapped_column(ForeignKey("supervisors.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    folder_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    description: Mapped[str] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(30))
    status: Mapped[str] = mapped_column(String(20), default="queued")
    confidence: Mapped[float] = mapped_column(Float, default=1.0)
    estimated_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    assigned_agent: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    delegation_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    context_injected: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
