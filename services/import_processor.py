"""
Import Processor - Framework-agnostic server-side import of a stored upload.

Decodes the uploaded file, applies the column -> field mapping sent by the
wizard and persists contacts or transactions, reporting progress through a
callback so the same code runs inline in the API or inside a Celery worker.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.schema import Contact, Transaction
from services.field_catalog import (
    CONTACT_TYPES, CONTACTS, COLUMN_MODE_DOUBLE, TRANSACTIONS, to_strptime
)
from services.record_service import (
    ContactImportOptions, TransactionImportOptions, cell_text, parse_amount
)
from services.workbook_service import RawWorkbook, WorkbookDecoder

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 25  # rows between progress callbacks
MAX_REPORTED_ERRORS = 50

# Contact field key -> model attribute
CONTACT_COLUMNS = {
    'displayName': 'display_name',
    'email': 'email',
    'phoneNumber': 'phone_number',
    'companyName': 'company_name',
    'firstName': 'first_name',
    'lastName': 'last_name',
    'website': 'website',
    'addressLine1': 'address_line1',
    'city': 'city',
    'country': 'country',
    'notes': 'notes',
}


@dataclass
class ImportSummary:
    """Row counts of one processed import."""

    total: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str):
        self.failed += 1
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'created': self.created,
            'skipped': self.skipped,
            'failed': self.failed,
            'errors': self.errors,
        }


class RowError(ValueError):
    """A row that cannot be converted into a record."""


class ImportProcessor:
    """
    Persists the rows of an uploaded workbook.

    Args:
        db_session: SQLAlchemy session; committed once at the end
        progress_callback: Optional ``(stage, percent, message)`` callback
    """

    def __init__(
        self,
        db_session: Session,
        progress_callback: Optional[Callable[[str, float, str], None]] = None
    ):
        self.session = db_session
        self.progress_callback = progress_callback or (lambda *args: None)
        self.decoder = WorkbookDecoder(drop_blank_rows=True)

    def _emit_progress(self, stage: str, percent: float, message: str):
        logger.debug(f"[{stage}] {percent:.1f}% - {message}")
        self.progress_callback(stage, percent, message)

    def process(self, entity: str, content: bytes, file_format: str,
                column_mapping: Dict[str, str], options: Dict[str, Any],
                import_id: Optional[str] = None) -> ImportSummary:
        """
        Run one import.

        Args:
            entity: 'contacts' or 'transactions'
            content: Uploaded file bytes
            file_format: 'xlsx', 'xls' or 'csv'
            column_mapping: Column header -> field key
            options: Serialized entity options
            import_id: Job id recorded on each created row

        Returns:
            ImportSummary with row counts

        Raises:
            ParseError: If the file cannot be decoded
            ValueError: On an unknown entity
        """
        self._emit_progress('parsing', 0, 'Reading file')
        workbook = self.decoder.decode_bytes(content, file_format, has_header_row=True)
        rows = self._map_rows(workbook, column_mapping)
        self._emit_progress('parsing', 10, f"Found {len(rows)} rows")

        if entity == CONTACTS:
            summary = self._import_rows(rows, self._build_contacts(ContactImportOptions(**options), import_id))
        elif entity == TRANSACTIONS:
            summary = self._import_rows(
                rows, self._build_transactions(TransactionImportOptions(**options), import_id)
            )
        else:
            raise ValueError(f"Unknown import entity: {entity}")

        self.session.commit()
        self._emit_progress('complete', 100,
                            f"Created {summary.created}, skipped {summary.skipped}, failed {summary.failed}")
        logger.info(f"{entity} import {import_id or ''} finished: {summary.to_dict()}")
        return summary

    def _map_rows(self, workbook: RawWorkbook, column_mapping: Dict[str, str]) -> List[Dict[str, Any]]:
        """Re-key each data row by field key; unmapped columns are ignored."""
        positions = {
            field_key: workbook.headers.index(column)
            for column, field_key in column_mapping.items()
            if field_key and column in workbook.headers
        }
        return [
            {field_key: row[index] for field_key, index in positions.items()}
            for row in workbook.rows
        ]

    def _import_rows(self, rows: List[Dict[str, Any]],
                     build: Callable[[Dict[str, Any]], Optional[Any]]) -> ImportSummary:
        summary = ImportSummary(total=len(rows))

        for position, values in enumerate(rows, start=1):
            try:
                record = build(values)
            except RowError as e:
                summary.add_error(f"Row {position}: {e}")
                continue

            if record is None:
                summary.skipped += 1
            else:
                try:
                    with self.session.begin_nested():
                        self.session.add(record)
                        self.session.flush()
                    summary.created += 1
                except SQLAlchemyError as e:
                    logger.warning(f"Row {position} could not be saved: {e}")
                    summary.add_error(f"Row {position}: could not be saved")

            if position % PROGRESS_EVERY == 0 or position == len(rows):
                percent = 10 + 85 * position / max(len(rows), 1)
                self._emit_progress('importing', percent, f"Processed {position}/{len(rows)} rows")

        return summary

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def _build_contacts(self, options: ContactImportOptions,
                        import_id: Optional[str]) -> Callable[[Dict[str, Any]], Optional[Contact]]:
        seen_emails: Set[str] = set()

        def build(values: Dict[str, Any]) -> Optional[Contact]:
            display_name = cell_text(values.get('displayName')).strip()
            if not display_name:
                return None

            email = cell_text(values.get('email')).strip().lower()
            if email:
                if email in seen_emails or self._email_exists(email):
                    logger.debug(f"Skipping duplicate contact email {email}")
                    return None
                seen_emails.add(email)

            contact_type = cell_text(values.get('type')).strip().lower()
            if contact_type not in CONTACT_TYPES:
                contact_type = options.contact_type

            attributes = {
                attr: cell_text(values.get(key)).strip() or None
                for key, attr in CONTACT_COLUMNS.items()
            }
            attributes.update(display_name=display_name, email=email or None)
            return Contact(contact_type=contact_type, import_id=import_id, **attributes)

        return build

    def _email_exists(self, email: str) -> bool:
        query = self.session.query(Contact.id).filter(func.lower(Contact.email) == email)
        return query.first() is not None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _build_transactions(self, options: TransactionImportOptions,
                            import_id: Optional[str]) -> Callable[[Dict[str, Any]], Optional[Transaction]]:
        pattern = to_strptime(options.date_format)

        def build(values: Dict[str, Any]) -> Optional[Transaction]:
            if all(cell_text(v) == '' for v in values.values()):
                return None

            if options.column_mode == COLUMN_MODE_DOUBLE:
                amount = parse_amount(values.get('credit')) - parse_amount(values.get('debit'))
            else:
                amount = parse_amount(values.get('amount'))
            if options.reverse:
                amount = -amount

            try:
                value = Decimal(str(amount)).quantize(Decimal('0.01'))
            except InvalidOperation as e:
                raise RowError(f"invalid amount {amount!r}") from e

            return Transaction(
                account_id=options.account_id,
                date=parse_date(values.get('date'), pattern),
                description=cell_text(values.get('description')) or None,
                amount=value,
                import_id=import_id,
                raw_data={key: cell_text(v) for key, v in values.items()}
            )

        return build


def parse_date(value: Any, pattern: str) -> date:
    """
    Parse a date cell with a ``strptime`` pattern.

    Date and datetime cells are accepted as-is. Compact numeric dates that
    lost a leading zero (5012025 for 05012025) are padded back.

    Raises:
        RowError: If the value is empty or does not match the pattern
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = cell_text(value).strip()
    if not text:
        raise RowError('missing date')

    if text.isdigit() and not any(sep in pattern for sep in '/-.'):
        text = text.zfill(len(datetime(2000, 12, 31).strftime(pattern)))

    try:
        return datetime.strptime(text, pattern).date()
    except ValueError as e:
        raise RowError(f"invalid date {text!r}") from e
