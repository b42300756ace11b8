"""
Pytest configuration and fixtures for the import tests.
"""

import csv
import io

import openpyxl
import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.models.schema import Base
from services.exceptions import TransportError
from services.field_catalog import CONTACTS, FieldCatalog, get_catalog
from services.workbook_service import XLSX_MIME, UploadedFile

# Load environment
load_dotenv()


@pytest.fixture
def engine():
    """In-memory SQLite engine with working SAVEPOINTs."""
    eng = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool
    )

    @event.listens_for(eng, 'connect')
    def do_connect(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself so nested transactions work
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, 'begin')
    def do_begin(conn):
        conn.exec_driver_sql('BEGIN')

    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def session(session_factory):
    """Create a new database session for a test."""
    sess = session_factory()
    yield sess
    sess.close()


def build_xlsx(rows):
    wb = openpyxl.Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def build_csv(rows):
    buffer = io.StringIO()
    csv.writer(buffer).writerows(rows)
    return buffer.getvalue().encode('utf-8')


@pytest.fixture
def make_xlsx():
    """Factory: rows -> .xlsx bytes."""
    return build_xlsx


@pytest.fixture
def make_csv():
    """Factory: rows -> .csv bytes."""
    return build_csv


@pytest.fixture
def make_upload():
    """Factory: rows -> in-memory UploadedFile (.xlsx by default)."""
    def factory(rows, filename='import.xlsx'):
        if filename.endswith('.csv'):
            return UploadedFile(filename=filename, content=build_csv(rows), content_type='text/csv')
        return UploadedFile(filename=filename, content=build_xlsx(rows), content_type=XLSX_MIME)
    return factory


class FakeGateway:
    """
    In-memory import backend.

    ``progress`` is a list of payloads (or exceptions) returned by successive
    status polls; the last one repeats.
    """

    def __init__(self, entity=CONTACTS, catalog=None, start_response=None, progress=None,
                 fields_error=None, start_error=None, sample=b'sample'):
        self.entity = entity
        self.catalog = catalog
        self.start_response = {'importId': 'imp-1'} if start_response is None else start_response
        self.progress = list(progress or [
            {'status': 'completed', 'total': 1, 'created': 1, 'skipped': 0, 'failed': 0}
        ])
        self.fields_error = fields_error
        self.start_error = start_error
        self.sample = sample
        self.field_requests = []
        self.submissions = []
        self.progress_requests = 0

    async def fetch_fields(self, column_mode=None):
        self.field_requests.append(column_mode)
        if self.fields_error:
            raise self.fields_error
        if self.catalog is not None:
            return self.catalog
        return get_catalog(self.entity, column_mode)

    async def download_sample(self, column_mode=None):
        return self.sample

    async def start_import(self, upload, mapping, options):
        self.submissions.append({'upload': upload, 'mapping': mapping, 'options': options})
        if self.start_error:
            raise self.start_error
        return self.start_response

    async def get_progress(self, import_id):
        self.progress_requests += 1
        payload = self.progress.pop(0) if len(self.progress) > 1 else self.progress[0]
        if isinstance(payload, Exception):
            raise payload
        return payload


class RecordingNotifier:
    def __init__(self):
        self.successes = []
        self.errors = []

    def success(self, message):
        self.successes.append(message)

    def error(self, message):
        self.errors.append(message)


@pytest.fixture
def gateway_factory():
    return FakeGateway


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def empty_catalog():
    return FieldCatalog(fields=[], date_formats=[])


@pytest.fixture
def transport_error():
    return TransportError('Service unavailable', status_code=503)
