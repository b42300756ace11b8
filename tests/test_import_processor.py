"""
Tests for server-side import processing and job bookkeeping.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from backend.models import Contact, ImportJob, Transaction
from services.exceptions import ParseError
from services.import_processor import ImportProcessor, RowError, parse_date
from tasks.import_tasks import delete_finished_jobs, process_import_job

CONTACT_OPTIONS = {'contact_type': 'supplier', 'date_format': 'MM/dd/yyyy'}
CONTACT_MAPPING = {'Name': 'displayName', 'Email': 'email', 'Type': 'type'}


def _transaction_options(**overrides):
    options = {'account_id': 'acc-1', 'date_format': 'dd/mm/yyyy', 'column_mode': 'single', 'reverse': False}
    options.update(overrides)
    return options


class TestContactImport:
    def test_creates_and_skips(self, session, make_xlsx):
        session.add(Contact(display_name='Existing', email='dup@x.com'))
        session.commit()

        content = make_xlsx([
            ['Name', 'Email', 'Type'],
            ['Ann', 'a@x.com', 'Customer'],
            ['', 'nameless@x.com', ''],
            ['Bob', 'A@X.com', ''],
            ['Cy', 'dup@x.com', ''],
            ['Di', None, 'vendor'],
        ])
        progress = []
        processor = ImportProcessor(session, progress_callback=lambda *args: progress.append(args))

        summary = processor.process('contacts', content, 'xlsx', CONTACT_MAPPING, CONTACT_OPTIONS,
                                    import_id='imp-1')

        assert (summary.total, summary.created, summary.skipped, summary.failed) == (5, 2, 3, 0)
        ann = session.query(Contact).filter_by(display_name='Ann').one()
        assert ann.contact_type == 'customer'
        assert ann.import_id == 'imp-1'
        di = session.query(Contact).filter_by(display_name='Di').one()
        assert di.contact_type == 'supplier'
        assert di.email is None
        assert progress[-1][:2] == ('complete', 100)

    def test_unmapped_columns_ignored(self, session, make_csv):
        content = make_csv([['Full Name', 'Notes'], ['Ann', 'VIP']])
        summary = ImportProcessor(session).process(
            'contacts', content, 'csv', {'Full Name': 'displayName'}, CONTACT_OPTIONS
        )
        assert summary.created == 1
        assert session.query(Contact).one().notes is None


class TestTransactionImport:
    def test_single_column(self, session, make_csv):
        content = make_csv([
            ['Date', 'Description', 'Amount'],
            ['05/01/2025', 'Coffee', '-3.50'],
            ['31/02/2025', 'Bad date', '1'],
            ['', '', ''],
            ['06/01/2025', 'Salary', '2000'],
        ])
        mapping = {'Date': 'date', 'Description': 'description', 'Amount': 'amount'}

        summary = ImportProcessor(session).process('transactions', content, 'csv', mapping,
                                                   _transaction_options())

        assert (summary.total, summary.created, summary.failed) == (3, 2, 1)
        assert summary.errors == ["Row 2: invalid date '31/02/2025'"]
        coffee = session.query(Transaction).filter_by(description='Coffee').one()
        assert coffee.date == date(2025, 1, 5)
        assert coffee.amount == Decimal('-3.50')
        assert coffee.account_id == 'acc-1'
        assert coffee.raw_data['description'] == 'Coffee'

    def test_double_column_reversed(self, session, make_xlsx):
        content = make_xlsx([
            ['Posted', 'Memo', 'In', 'Out'],
            [datetime(2025, 3, 1), 'Refund', 50, 0],
            [datetime(2025, 3, 2), 'Rent', 0, 800],
        ])
        mapping = {'Posted': 'date', 'Memo': 'description', 'In': 'credit', 'Out': 'debit'}

        ImportProcessor(session).process('transactions', content, 'xlsx', mapping,
                                         _transaction_options(column_mode='double', reverse=True))

        amounts = {t.description: t.amount for t in session.query(Transaction).all()}
        assert amounts == {'Refund': Decimal('-50.00'), 'Rent': Decimal('800.00')}

    def test_unknown_entity(self, session, make_csv):
        with pytest.raises(ValueError):
            ImportProcessor(session).process('invoices', make_csv([['A'], ['1']]), 'csv', {}, {})


class TestParseDate:
    def test_formats(self):
        assert parse_date('2025-01-05', '%Y-%m-%d') == date(2025, 1, 5)
        assert parse_date(datetime(2025, 1, 5, 9, 0), '%d%m%Y') == date(2025, 1, 5)
        assert parse_date(date(2025, 1, 5), '%d%m%Y') == date(2025, 1, 5)

    def test_compact_number_padded(self):
        assert parse_date(5012025, '%d%m%Y') == date(2025, 1, 5)

    def test_missing_or_invalid(self):
        with pytest.raises(RowError, match='missing date'):
            parse_date(None, '%d%m%Y')
        with pytest.raises(RowError):
            parse_date('yesterday', '%d/%m/%Y')


class TestImportJobs:
    def _job(self, session, tmp_path, content, entity='contacts', params=None):
        path = tmp_path / 'upload.xlsx'
        path.write_bytes(content)
        job = ImportJob(id='job-1', entity_type=entity, status='pending', params=params or {
            'mapping': CONTACT_MAPPING, 'options': CONTACT_OPTIONS, 'file_format': 'xlsx'
        })
        session.add(job)
        session.commit()
        return str(path)

    def test_completed_job_records_counts(self, session, tmp_path, make_xlsx):
        path = self._job(session, tmp_path, make_xlsx([['Name', 'Email'], ['Ann', 'a@x.com'], ['', '']]))

        summary = process_import_job(session, 'job-1', path)

        job = session.get(ImportJob, 'job-1')
        assert summary.created == 1
        assert job.status == 'completed'
        assert job.to_progress_dict()['created'] == 1
        assert float(job.progress) == 100
        assert job.started_at is not None and job.completed_at is not None

    def test_failed_job_records_message(self, session, tmp_path):
        path = self._job(session, tmp_path, b'not a workbook')

        with pytest.raises(ParseError):
            process_import_job(session, 'job-1', path)

        job = session.get(ImportJob, 'job-1')
        assert job.status == 'failed'
        assert job.error_message == 'Failed to parse file'
        assert job.to_progress_dict()['errorMessage'] == 'Failed to parse file'

    def test_missing_job(self, session, tmp_path):
        with pytest.raises(LookupError):
            process_import_job(session, 'nope', str(tmp_path / 'x.xlsx'))

    def test_cleanup_deletes_only_old_finished_jobs(self, session):
        old = datetime.utcnow() - timedelta(days=40)
        session.add_all([
            ImportJob(id='old-done', entity_type='contacts', status='completed', completed_at=old),
            ImportJob(id='old-running', entity_type='contacts', status='processing'),
            ImportJob(id='recent', entity_type='transactions', status='failed',
                      completed_at=datetime.utcnow()),
        ])
        session.commit()

        assert delete_finished_jobs(session, days_to_keep=30) == 1
        assert {j.id for j in session.query(ImportJob).all()} == {'old-running', 'recent'}
