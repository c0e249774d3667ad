"""
Backup history stored with SQLAlchemy.

HistoryRecorder is an outcome sink: hand it to the orchestrator and every
finished cycle becomes one BackupHistory row.
"""

import os
from datetime import datetime
from typing import List

from sqlalchemy import create_engine, Column, Integer, BigInteger, String, Text, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


Base = declarative_base()


class BackupHistory(Base):
    """Backup cycle history and logs"""
    __tablename__ = 'backup_history'

    id = Column(Integer, primary_key=True)
    destination = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False)  # success, skipped, failed
    started_at = Column(DateTime, default=datetime.now, nullable=False)
    completed_at = Column(DateTime)
    archive_name = Column(String(255))
    file_size_bytes = Column(BigInteger)
    pruned_count = Column(Integer, default=0, nullable=False)
    error_message = Column(Text)
    logs = Column(Text)

    def __repr__(self):
        return f'<BackupHistory archive={self.archive_name} status={self.status}>'


class HistoryRecorder:
    """Outcome sink persisting each backup cycle."""

    def __init__(self, database_url: str):
        """
        Initialize history recorder and create tables if needed.

        Args:
            database_url: SQLAlchemy database URL
        """
        if database_url in ('sqlite://', 'sqlite:///:memory:'):
            # Share one in-memory database across threads
            self.engine = create_engine(
                database_url,
                connect_args={'check_same_thread': False},
                poolclass=StaticPool
            )
        else:
            self.engine = create_engine(database_url)

        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def __call__(self, outcome):
        self.record(outcome)

    def record(self, outcome) -> BackupHistory:
        """
        Store a BackupOutcome.

        Returns:
            The stored BackupHistory row
        """
        errors = []
        if outcome.write_error is not None:
            errors.append(str(outcome.write_error))
        errors.extend(outcome.pruned_errors)

        history = BackupHistory(
            destination=outcome.destination,
            status=outcome.status,
            started_at=outcome.started_at or datetime.now(),
            completed_at=outcome.completed_at,
            archive_name=os.path.basename(outcome.created) if outcome.created else None,
            file_size_bytes=outcome.file_size_bytes,
            pruned_count=outcome.pruned,
            error_message='\n'.join(errors) or None,
            logs='\n'.join(outcome.logs)
        )

        with self.Session() as session:
            session.add(history)
            session.commit()

        return history

    def recent(self, limit: int = 20) -> List[BackupHistory]:
        """Return the newest history records first."""
        with self.Session() as session:
            return (
                session.query(BackupHistory)
                .order_by(BackupHistory.started_at.desc(), BackupHistory.id.desc())
                .limit(limit)
                .all()
            )
