"""Models package for the import backend."""
from backend.models.schema import Base, Contact, Transaction
from backend.models.job import ImportJob, JobStatus

__all__ = ['Base', 'Contact', 'Transaction', 'ImportJob', 'JobStatus']
