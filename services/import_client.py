"""
Import API client - HTTP gateway to the import backend.

Implements the collaborators the wizard consumes (field catalog, sample
download, job creation, job status) on top of ``requests``. Blocking calls
run in a worker thread so only the awaiting coroutine is suspended.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol

import pydantic
import requests

from services.exceptions import TransportError
from services.field_catalog import FieldCatalog
from services.workbook_service import UploadedFile

logger = logging.getLogger(__name__)

DEFAULT_API_URL = 'http://localhost:8000'
DEFAULT_TIMEOUT = 30  # seconds per request


class ImportGateway(Protocol):
    """Backend collaborators used by the import wizard."""

    async def fetch_fields(self, column_mode: Optional[str] = None) -> FieldCatalog: ...

    async def download_sample(self, column_mode: Optional[str] = None) -> bytes: ...

    async def start_import(self, upload: UploadedFile, mapping: Dict[str, str],
                           options: Dict[str, Any]) -> Dict[str, Any]: ...

    async def get_progress(self, import_id: str) -> Dict[str, Any]: ...


class ImportApiClient:
    """
    HTTP implementation of :class:`ImportGateway` for one entity type.

    Args:
        entity: 'contacts', 'transactions' or 'accounts'
        base_url: Backend URL (without the /api prefix)
        api_key: Optional API key sent in ``X-API-Key``
        session: Optional pre-configured ``requests.Session``
    """

    def __init__(self, entity: str, base_url: str = DEFAULT_API_URL,
                 api_key: Optional[str] = None, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self.entity = entity
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_key:
            self.session.headers['X-API-Key'] = api_key

    @property
    def import_url(self) -> str:
        return f"{self.base_url}/api/{self.entity}/import"

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def fetch_fields(self, column_mode: Optional[str] = None) -> FieldCatalog:
        params = {'columnMode': column_mode} if column_mode else None
        data = await asyncio.to_thread(self._request, 'GET', f"{self.import_url}/fields", params=params)
        try:
            return FieldCatalog.model_validate(data or {})
        except pydantic.ValidationError as e:
            logger.error(f"Malformed {self.entity} field catalog: {e}")
            raise TransportError('Invalid response from import service', payload=data) from e

    async def download_sample(self, column_mode: Optional[str] = None) -> bytes:
        params = {'columnMode': column_mode} if column_mode else None
        return await asyncio.to_thread(
            self._request, 'GET', f"{self.import_url}/sample", params=params, raw=True
        )

    async def start_import(self, upload: UploadedFile, mapping: Dict[str, str],
                           options: Dict[str, Any]) -> Dict[str, Any]:
        content = await asyncio.to_thread(upload.read)
        files = {
            'file': (upload.filename, content, upload.content_type or 'application/octet-stream')
        }
        form = {'mapping': json.dumps(mapping)}
        form.update({key: _form_value(value) for key, value in options.items() if value is not None})

        data = await asyncio.to_thread(self._request, 'POST', self.import_url, data=form, files=files)
        return data or {}

    async def get_progress(self, import_id: str) -> Dict[str, Any]:
        data = await asyncio.to_thread(self._request, 'GET', f"{self.import_url}/{import_id}/progress")
        return data or {}

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, raw: bool = False, **kwargs):
        """
        Perform one request and unwrap the ``{success, message, data}`` envelope.

        Raises:
            TransportError: On connection failure or a non-2xx response
        """
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise TransportError(f"Could not reach import service: {e}") from e

        if not response.ok:
            message = _error_message(response)
            logger.error(f"{method} {url} returned {response.status_code}: {message}")
            raise TransportError(message, status_code=response.status_code)

        if raw:
            return response.content

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError('Invalid response from import service',
                                 status_code=response.status_code) from e

        if isinstance(body, dict) and 'data' in body:
            return body['data']
        return body


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason or 'Request failed'
    if isinstance(body, dict):
        return str(body.get('message') or body.get('detail') or body.get('error') or 'Request failed')
    return 'Request failed'
