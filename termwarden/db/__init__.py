"""
Database Package
================

Exports key database components.
"""

from termwarden.db.models import (
    Base,
    # Platform read models
    FolderModel, TerminalSessionModel,
    # Supervision tables
    SupervisorModel, InsightModel, AuditLogModel, TaskModel,
)
from termwarden.db.connection import Database, init_db, sqlite_url
from termwarden.db.transaction import SqlTransactionCoordinator, TransactionContext
from termwarden.db.repositories import (
    SqlAuditLogRepository,
    SqlFolderRepository,
    SqlInsightRepository,
    SqlSessionRepository,
    SqlSupervisorRepository,
    SqlTaskRepository,
)
