"""
Repository Container - Centralized dependency injection container

Single source of truth for repository initialization. The HTTP transport
builds one container per application from an explicit DatabaseConnection.
"""

from repositories import (
    AuditTrail, CommentRepository, PatientRepository,
    SessionRepository, UserRepository,
)
from services.stats_service import StatsService


class RepositoryContainer:
    """
    Container for repository instances with attribute access.
    """
    def __init__(self, db):
        self.db = db
        self.audit = AuditTrail(db)
        self.patients = PatientRepository(db)
        self.sessions = SessionRepository(db)
        self.comments = CommentRepository(db, self.sessions, self.audit)
        self.users = UserRepository(db)
        self.stats = StatsService(db)
