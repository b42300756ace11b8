"""
Service layer for spreadsheet imports.

This package contains the framework-agnostic import wizard (decoding,
field mapping, review selection, submission and progress polling) and the
server-side processor, used by the CLI, the API and the Celery workers.
"""

__version__ = "1.0.0"
