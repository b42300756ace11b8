"""
Shared handlers of the contacts and transactions import routers.

Both entity routers expose the same four endpoints under
``/api/{entity}/import``; only the import options differ.
"""

import json
import logging
import uuid
from typing import Dict, Optional, Type

from fastapi import HTTPException, Response, UploadFile, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import save_upload
from api.schemas.common import SuccessResponse
from api.schemas.import_schema import ImportProgressData, ImportStartData, ImportSummaryData
from backend.models.job import ImportJob, JobStatus
from services.field_catalog import build_sample_workbook, get_catalog, sample_filename
from services.workbook_service import XLSX_MIME, UploadedFile, detect_format
from tasks.import_tasks import get_cached_progress, process_import_job, remove_upload, run_import

logger = logging.getLogger(__name__)


def catalog_response(entity: str, column_mode: Optional[str]) -> SuccessResponse:
    try:
        catalog = get_catalog(entity, column_mode)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return SuccessResponse(
        message=f"{entity.capitalize()} import fields",
        data=catalog.model_dump(by_alias=True)
    )


def sample_response(entity: str, column_mode: Optional[str]) -> StreamingResponse:
    try:
        content = build_sample_workbook(entity, column_mode)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    filename = sample_filename(entity, column_mode)
    return StreamingResponse(
        iter([content]),
        media_type=XLSX_MIME,
        headers={'Content-Disposition': f'attachment; filename="{filename}"'}
    )


def parse_mapping(mapping: str) -> Dict[str, str]:
    """
    Decode the column -> field key mapping form field.

    Raises:
        HTTPException: If it is not a JSON object of strings
    """
    try:
        parsed = json.loads(mapping)
    except ValueError:
        parsed = None
    if not isinstance(parsed, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in parsed.items()
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="mapping must be a JSON object of column -> field key"
        )
    return parsed


def parse_options(model: Type[BaseModel], **values) -> BaseModel:
    try:
        return model(**values)
    except PydanticValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid import options: {e.errors()[0]['msg']}"
        )


def start_import(
    db: Session,
    entity: str,
    file: UploadFile,
    mapping: str,
    options: BaseModel,
    current_user: str,
    response: Response
) -> SuccessResponse:
    """
    Store the upload, create the job row and run or enqueue the import.

    Returns 202 with the import id when a worker takes the job, or 200 with
    the summary (and no import id) when ``IMPORT_RUN_INLINE`` is set.
    """
    column_mapping = parse_mapping(mapping)
    logger.info(f"{entity} import request from {current_user}: {file.filename}")

    temp_path = save_upload(file)
    upload = UploadedFile(filename=file.filename, path=temp_path, content_type=file.content_type)

    job = ImportJob(
        id=str(uuid.uuid4()),
        entity_type=entity,
        status=JobStatus.PENDING.value,
        filename=file.filename,
        params={
            'mapping': column_mapping,
            'options': options.model_dump(),
            'file_format': detect_format(upload),
        },
        created_by=current_user
    )
    db.add(job)
    db.commit()
    import_id = job.id

    if settings.IMPORT_RUN_INLINE:
        try:
            summary = process_import_job(db, import_id, temp_path)
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Import failed: {e}"
            )
        finally:
            remove_upload(temp_path)

        response.status_code = status.HTTP_200_OK
        return SuccessResponse(
            message=f"Imported {summary.created} of {summary.total} rows",
            data=ImportSummaryData(**summary.to_dict()).model_dump()
        )

    try:
        run_import.apply_async(args=[temp_path], task_id=import_id)
    except Exception as e:
        logger.error(f"Could not enqueue import {import_id}: {e}", exc_info=True)
        job.status = JobStatus.FAILED.value
        job.error_message = 'Import queue unavailable'
        db.commit()
        remove_upload(temp_path)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Import queue unavailable"
        )

    logger.info(f"Started {entity} import task {import_id} for file: {file.filename}")
    response.status_code = status.HTTP_202_ACCEPTED
    return SuccessResponse(
        message="Import started",
        data=ImportStartData(
            import_id=import_id,
            status_url=f"{settings.API_PREFIX}/{entity}/import/{import_id}/progress"
        ).model_dump(by_alias=True)
    )


def progress_response(db: Session, entity: str, import_id: str) -> SuccessResponse:
    """
    Current job status; live Redis progress overrides the stored percent
    while the job is still running.
    """
    job = db.query(ImportJob).filter_by(id=import_id, entity_type=entity).first()
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Import {import_id} not found"
        )

    progress = ImportProgressData(**job.to_progress_dict())
    if not job.is_complete():
        live = get_cached_progress(import_id)
        if live:
            progress.progress = live.get('percent', progress.progress)
            progress.stage = live.get('stage')

    return SuccessResponse(
        message=f"Import {progress.status}",
        data=progress.model_dump(by_alias=True)
    )
