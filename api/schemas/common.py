"""
Common Pydantic schemas used across the API.

This module contains shared schemas for errors, the response envelope and
health checks.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = Field(False, description="Always false for errors")
    error: str = Field(..., description="Error message")
    detail: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
    path: Optional[str] = Field(None, description="Request path that caused the error")

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Import job not found",
                "detail": {"importId": "abc-123"},
                "timestamp": "2025-10-15T12:00:00Z",
                "path": "/api/contacts/import/abc-123/progress"
            }
        }


class SuccessResponse(BaseModel):
    """Standard success envelope: ``{success, message, data}``."""

    success: bool = Field(True, description="Operation success flag")
    message: str = Field(..., description="Success message")
    data: Optional[Any] = Field(None, description="Response payload")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Import started",
                "data": {"importId": "abc-123"}
            }
        }


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")
    version: str = Field(..., description="API version")
    database: str = Field(..., description="Database connection status")
    redis: str = Field(..., description="Redis connection status")
    celery: str = Field(..., description="Celery worker status")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2025-10-15T12:00:00Z",
                "version": "1.0.0",
                "database": "connected",
                "redis": "connected",
                "celery": "active (1 workers)"
            }
        }
