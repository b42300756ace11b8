"""
Job tracking model for background imports.

Stores the lifecycle of an import job from creation through completion,
together with its row counts and progress.
"""

from enum import Enum

from sqlalchemy import (
    Column, Integer, Numeric, String, Text, TIMESTAMP,
    CheckConstraint, Index, text
)

from backend.models.schema import Base, JSONType


class JobStatus(str, Enum):
    """Job execution status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class ImportJob(Base):
    """
    Represents one import job.

    The primary key doubles as the Celery task id.
    """

    __tablename__ = 'import_jobs'
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name='import_jobs_status_check'
        ),
        CheckConstraint(
            "entity_type IN ('contacts', 'transactions')",
            name='import_jobs_entity_type_check'
        ),
        Index('idx_import_jobs_status', 'status'),
        Index('idx_import_jobs_created_at', 'created_at'),
        {'comment': 'Tracks spreadsheet import jobs'}
    )

    id = Column(
        String(255),
        primary_key=True,
        nullable=False,
        comment='Import id / Celery task UUID'
    )
    entity_type = Column(
        String(20),
        nullable=False,
        comment='contacts or transactions'
    )
    status = Column(
        String(20),
        nullable=False,
        server_default='pending',
        comment='Current job status'
    )
    filename = Column(
        String(255),
        nullable=True,
        comment='Original upload filename'
    )
    total = Column(Integer, nullable=False, server_default='0')
    created = Column(Integer, nullable=False, server_default='0')
    skipped = Column(Integer, nullable=False, server_default='0')
    failed = Column(Integer, nullable=False, server_default='0')
    progress = Column(
        Numeric(5, 2),
        nullable=False,
        server_default='0',
        comment='Progress percentage (0.00 to 100.00)'
    )
    error_message = Column(Text, nullable=True)
    params = Column(
        JSONType,
        server_default='{}',
        nullable=False,
        comment='Mapping and import options'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False,
        comment='Job creation timestamp'
    )
    started_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)
    created_by = Column(
        String(255),
        nullable=True,
        comment='User or API key that created the job'
    )

    def __repr__(self):
        return f"<ImportJob(id='{self.id}', entity='{self.entity_type}', status='{self.status}')>"

    def to_progress_dict(self) -> dict:
        """Status payload returned by the progress endpoint."""
        return {
            'importId': self.id,
            'status': self.status,
            'total': self.total or 0,
            'created': self.created or 0,
            'skipped': self.skipped or 0,
            'failed': self.failed or 0,
            'progress': float(self.progress or 0),
            'errorMessage': self.error_message,
        }

    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def is_complete(self) -> bool:
        return self.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value)
