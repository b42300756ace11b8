"""
Submission Service - Start backend import jobs and poll them to completion.

A submission resolves to one of two outcomes, decided once from the shape of
the job-creation response:

- ``Deferred``: the backend returned a job id; the job runs asynchronously
  and is observed with a :class:`ProgressPoller`.
- ``Immediate``: no job id; what that means is left to the wizard's policy.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from services.exceptions import TransportError
from services.mapping_service import invert_mapping
from services.workbook_service import UploadedFile

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.5  # seconds between the end of one poll and the next

TERMINAL_STATUSES = ('completed', 'failed')


class ImportResults(BaseModel):
    """Aggregate outcome of an import job."""

    status: Literal['completed', 'failed']
    total: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    progress: float = 100
    error_message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == 'completed' and self.failed == 0

    @property
    def has_warnings(self) -> bool:
        return self.status == 'completed' and self.failed > 0

    @classmethod
    def from_progress(cls, payload: Dict[str, Any]) -> Optional['ImportResults']:
        """
        Build results from a terminal progress payload.

        Accepts both the ``created/total/failed`` and the
        ``successfulRows/totalRows/failedRows`` shapes.

        Returns:
            None while the job is still pending or processing

        Raises:
            TransportError: If a terminal payload carries malformed counts
        """
        status = payload.get('status')
        if status not in TERMINAL_STATUSES:
            return None

        def count(*keys) -> int:
            for key in keys:
                value = payload.get(key)
                if value:
                    return int(value)
            return 0

        try:
            return cls(
                status=status,
                total=count('total', 'totalRows'),
                created=count('created', 'successful', 'successfulRows'),
                skipped=count('skipped', 'skippedRows'),
                failed=count('failed', 'failedRows'),
                progress=payload.get('progress') or 100,
                error_message=payload.get('errorMessage') or payload.get('error_message')
            )
        except (TypeError, ValueError) as e:
            logger.error(f"Malformed import progress payload {payload}: {e}")
            raise TransportError('Invalid response from import service', payload=payload) from e

    @classmethod
    def synthesized(cls, count: int) -> 'ImportResults':
        """Local 'completed' result for a backend that finished synchronously."""
        return cls(status='completed', total=count, created=count, skipped=0, failed=0)


@dataclass(frozen=True)
class Deferred:
    import_id: str


@dataclass(frozen=True)
class Immediate:
    payload: Dict[str, Any] = field(default_factory=dict)


SubmissionOutcome = Union[Deferred, Immediate]


def classify_response(payload: Optional[Dict[str, Any]]) -> SubmissionOutcome:
    """Deferred if the job-creation response carries an id, else Immediate."""
    payload = payload or {}
    import_id = payload.get('importId') or payload.get('id')
    if import_id:
        return Deferred(import_id=str(import_id))
    return Immediate(payload=payload)


class ImportSubmitter:
    """
    Sends the chosen file, the inverted mapping and the entity options to the
    job-creation collaborator.
    """

    def __init__(self, gateway):
        self.gateway = gateway

    async def submit(self, upload: UploadedFile, mapping: Dict[str, str],
                     options: Dict[str, Any]) -> SubmissionOutcome:
        """
        Args:
            upload: Original or selection-filtered file
            mapping: Field key -> column mapping; sent inverted
            options: Entity-specific form fields

        Raises:
            TransportError: If the request fails
        """
        column_mapping = invert_mapping(mapping)
        logger.info(f"Submitting {upload.filename} with mapping {column_mapping}")

        payload = await self.gateway.start_import(upload, column_mapping, options)
        outcome = classify_response(payload)

        logger.info(f"Submission outcome: {outcome}")
        return outcome


class PollHandle:
    """
    Handle to a running poll loop.

    Cancelling stops local polling only; the backend job keeps running.
    """

    def __init__(self, import_id: str, task: 'asyncio.Task'):
        self.import_id = import_id
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self):
        if not self._task.done():
            logger.info(f"Stopping progress polling for import {self.import_id}")
            self._task.cancel()

    async def wait(self) -> Optional[ImportResults]:
        """
        Wait for the loop to end.

        Returns:
            Terminal results, or None if polling was cancelled or stopped on
            a transport error
        """
        await asyncio.wait([self._task])
        if self._task.cancelled():
            return None
        return self._task.result()


class ProgressPoller:
    """
    Self-rescheduling job status poller.

    The next request is scheduled only after the previous one has resolved,
    so at most one status request is ever outstanding.

    Args:
        fetch_progress: Coroutine returning the job status payload
        interval: Delay between the end of one poll and the next
        on_complete: Called once with terminal results
        on_error: Called once if a poll fails; polling then stops
        on_update: Called with each non-terminal payload
    """

    def __init__(self, fetch_progress: Callable[[str], Awaitable[Dict[str, Any]]],
                 interval: float = DEFAULT_POLL_INTERVAL,
                 on_complete: Optional[Callable[[ImportResults], None]] = None,
                 on_error: Optional[Callable[[TransportError], None]] = None,
                 on_update: Optional[Callable[[Dict[str, Any]], None]] = None):
        self.fetch_progress = fetch_progress
        self.interval = interval
        self.on_complete = on_complete
        self.on_error = on_error
        self.on_update = on_update

    def start(self, import_id: str) -> PollHandle:
        """Start polling; the first request is sent immediately."""
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(import_id), name=f"import-poll-{import_id}")
        logger.info(f"Started progress polling for import {import_id}")
        return PollHandle(import_id, task)

    async def _run(self, import_id: str) -> Optional[ImportResults]:
        polls = 0
        while True:
            polls += 1
            try:
                payload = await self.fetch_progress(import_id) or {}
                results = ImportResults.from_progress(payload)
            except TransportError as e:
                logger.error(f"Progress poll {polls} for import {import_id} failed: {e}")
                if self.on_error:
                    self.on_error(e)
                return None

            if results is not None:
                logger.info(f"Import {import_id} finished with status {results.status} "
                            f"after {polls} poll(s)")
                if self.on_complete:
                    self.on_complete(results)
                return results

            if self.on_update:
                self.on_update(payload)
            await asyncio.sleep(self.interval)
