"""
Contacts import router.

Endpoints backing the contacts import wizard: field catalog, sample
template, job creation and job progress.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from sqlalchemy.orm import Session

from api.dependencies import get_current_user, get_db
from api.routers.import_routes import (
    catalog_response, parse_options, progress_response, sample_response, start_import
)
from api.schemas.common import SuccessResponse
from services.field_catalog import CONTACTS
from services.record_service import ContactImportOptions

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/contacts/import', tags=['contacts-import'])


@router.get('/fields', response_model=SuccessResponse)
async def get_contact_fields():
    """
    List the contact fields a column can be mapped to.

    **Example:**
    ```bash
    curl http://localhost:8000/api/contacts/import/fields
    ```
    """
    return catalog_response(CONTACTS, None)


@router.get('/sample')
async def download_contact_sample():
    """Download the contacts .xlsx template."""
    return sample_response(CONTACTS, None)


@router.post('', response_model=SuccessResponse, status_code=202)
def start_contact_import(
    response: Response,
    file: UploadFile = File(..., description="Spreadsheet to import (.xlsx, .xls or .csv)"),
    mapping: str = Form(..., description="JSON object: column header -> field key"),
    type: str = Form('supplier', description="Default contact type"),
    dateFormat: str = Form('MM/dd/yyyy', description="Date format of date columns"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Upload a contacts file and start the import.

    **Returns:**
    - 202 Accepted with `importId` when the job is queued
    - 200 OK with the row counts when imports run inline
    """
    options = parse_options(ContactImportOptions, contact_type=type, date_format=dateFormat)
    return start_import(db, CONTACTS, file, mapping, options, current_user, response)


@router.get('/{import_id}/progress', response_model=SuccessResponse)
def get_contact_import_progress(import_id: str, db: Session = Depends(get_db)):
    """
    Get the status of a contacts import.

    **Status Values:**
    - `pending`: Job is queued, waiting for worker
    - `processing`: Job is currently running
    - `completed`: Job finished; see the row counts
    - `failed`: Job failed; see `errorMessage`
    """
    return progress_response(db, CONTACTS, import_id)
