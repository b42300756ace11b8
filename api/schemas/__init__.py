"""
Pydantic schemas for request/response validation.

This package contains all Pydantic models used for API request validation
and response serialization.
"""

from api.schemas.common import ErrorResponse, HealthCheckResponse, SuccessResponse
from api.schemas.import_schema import ImportProgressData, ImportStartData, ImportSummaryData

__all__ = [
    # Common
    'ErrorResponse',
    'HealthCheckResponse',
    'SuccessResponse',

    # Import
    'ImportProgressData',
    'ImportStartData',
    'ImportSummaryData',
]
