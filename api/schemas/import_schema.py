"""
Import-related Pydantic schemas.

This module contains the payload schemas of the contacts and transactions
import endpoints. They are returned inside the ``data`` member of
:class:`api.schemas.common.SuccessResponse`.
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ImportStartData(BaseModel):
    """Payload when an import job has been queued."""

    model_config = ConfigDict(populate_by_name=True)

    import_id: str = Field(..., alias='importId', description="Job id to poll")
    status: str = Field('pending', description="Initial job status")
    status_url: str = Field(..., alias='statusUrl', description="Progress endpoint")


class ImportProgressData(BaseModel):
    """Payload of the progress endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    import_id: str = Field(..., alias='importId')
    status: str = Field(..., description="pending, processing, completed or failed")
    total: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    progress: float = Field(0, description="Percent complete")
    stage: Optional[str] = Field(None, description="Live processing stage")
    error_message: Optional[str] = Field(None, alias='errorMessage')


class ImportSummaryData(BaseModel):
    """Payload when an import ran inline and finished within the request."""

    total: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
