"""
Transactions import router.

Endpoints backing the bank statement import wizard. The field catalog and
sample template depend on the column mode: ``single`` (one signed amount
column) or ``double`` (separate credit and debit columns).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from sqlalchemy.orm import Session

from api.dependencies import get_current_user, get_db
from api.routers.import_routes import (
    catalog_response, parse_options, progress_response, sample_response, start_import
)
from api.schemas.common import SuccessResponse
from services.field_catalog import TRANSACTIONS
from services.record_service import TransactionImportOptions

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/transactions/import', tags=['transactions-import'])


@router.get('/fields', response_model=SuccessResponse)
async def get_transaction_fields(
    columnMode: Optional[str] = Query(None, description="single or double")
):
    """
    List the transaction fields for a column mode, plus supported date formats.

    **Example:**
    ```bash
    curl "http://localhost:8000/api/transactions/import/fields?columnMode=double"
    ```
    """
    return catalog_response(TRANSACTIONS, columnMode)


@router.get('/sample')
async def download_transaction_sample(
    columnMode: Optional[str] = Query(None, description="single or double")
):
    return sample_response(TRANSACTIONS, columnMode)


@router.post('', response_model=SuccessResponse, status_code=202)
def start_transaction_import(
    response: Response,
    file: UploadFile = File(..., description="Bank statement (.xlsx, .xls or .csv)"),
    mapping: str = Form(..., description="JSON object: column header -> field key"),
    accountId: str = Form(..., min_length=1, description="Target bank account"),
    dateFormat: str = Form('ddmmyyyy'),
    columnMode: str = Form('single'),
    isReverse: bool = Form(False, description="Negate every amount"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Upload a bank statement and start the import.

    **Returns:**
    - 202 Accepted with `importId` when the job is queued
    - 200 OK with the row counts when imports run inline
    """
    options = parse_options(
        TransactionImportOptions,
        account_id=accountId,
        date_format=dateFormat,
        column_mode=columnMode,
        reverse=isReverse
    )
    return start_import(db, TRANSACTIONS, file, mapping, options, current_user, response)


@router.get('/{import_id}/progress', response_model=SuccessResponse)
def get_transaction_import_progress(import_id: str, db: Session = Depends(get_db)):
    """Get the status of a transactions import."""
    return progress_response(db, TRANSACTIONS, import_id)
