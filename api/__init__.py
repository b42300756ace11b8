"""
FastAPI application for the import backend.

This package contains the REST API used by the contacts and transactions
import wizards: field catalogs, sample templates, job creation and progress.
"""

__version__ = "1.0.0"
