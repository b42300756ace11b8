"""
Record Service - Transform decoded rows into typed candidate records.

Transformers are pure functions of (workbook, mapping, options) so the wizard
can inject them per entity. Running one twice on the same inputs yields the
same ids and values.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from services.field_catalog import COLUMN_MODE_DOUBLE, COLUMN_MODE_SINGLE
from services.workbook_service import RawWorkbook

logger = logging.getLogger(__name__)

CONTACT_ID_PREFIX = 'contact'
TRANSACTION_ID_PREFIX = 'tx'
ACCOUNT_ID_PREFIX = 'account'

IMPORTABLE_ACCOUNT_TYPES = ('asset', 'liability')
IMPORTABLE_DETAIL_TYPES = ('credit-card', 'chequing')

_LEADING_FLOAT = re.compile(r'^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')


class CandidateRecord(BaseModel):
    """A parsed row pending user approval for import."""

    id: str = Field(..., description="Synthetic id '<prefix>-<row position>'")
    row_index: int = Field(..., description="Position within the data rows")
    raw_data: Dict[Union[str, int], Any] = Field(
        default_factory=dict,
        description="Entire original row keyed by header (or column index)"
    )


class ContactCandidate(CandidateRecord):
    fields: Dict[str, Any] = Field(default_factory=dict)


class AccountCandidate(CandidateRecord):
    fields: Dict[str, Any] = Field(default_factory=dict)


class TransactionCandidate(CandidateRecord):
    date: str = ''
    description: str = ''
    amount: float = 0.0


class ContactImportOptions(BaseModel):
    """Options sent with a contact import."""

    contact_type: Literal['supplier', 'customer', 'employee'] = 'supplier'
    date_format: str = 'MM/dd/yyyy'


class TransactionImportOptions(BaseModel):
    """Options sent with a transaction import."""

    account_id: str = ''
    date_format: str = 'ddmmyyyy'
    column_mode: Literal['single', 'double'] = COLUMN_MODE_SINGLE
    reverse: bool = False


class AccountImportOptions(BaseModel):
    """Chart of accounts imports carry no options beyond the mapping."""


class LedgerAccount(BaseModel):
    """An existing account transactions can be imported into."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    account_name: str = Field('', alias='accountName')
    account_type: str = Field('', alias='accountType')
    account_detail_type: Optional[str] = Field(None, alias='accountDetailType')


def importable_accounts(accounts: Iterable[LedgerAccount]) -> List[LedgerAccount]:
    """Bank and card accounts: asset or liability, or a chequing/credit card detail type."""
    return [
        a for a in accounts
        if a.account_type in IMPORTABLE_ACCOUNT_TYPES
        or a.account_detail_type in IMPORTABLE_DETAIL_TYPES
    ]


def column_indices(mapping: Dict[str, str], headers: Sequence[str]) -> Dict[str, int]:
    """Column index of each field's mapped header; -1 if unmapped or absent."""
    indices = {}
    for key, column in mapping.items():
        if column and column in headers:
            indices[key] = list(headers).index(column)
        else:
            indices[key] = -1
    return indices


def cell_at(row: Sequence[Any], index: int) -> Any:
    if index < 0 or index >= len(row):
        return None
    return row[index]


def raw_snapshot(row: Sequence[Any], headers: Sequence[str]) -> Dict[Union[str, int], Any]:
    """Whole row keyed by header, or by column index when there are no headers."""
    if headers:
        return {header: cell_at(row, i) for i, header in enumerate(headers)}
    return {i: value for i, value in enumerate(row)}


def cell_text(value: Any) -> str:
    """String form of a cell; empty cells become ''."""
    if value is None or value == '':
        return ''
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_amount(value: Any) -> float:
    """
    Lenient float parse.

    Numbers pass through; strings are read up to the first character that
    cannot continue a number. Anything unparseable is 0.0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    match = _LEADING_FLOAT.match(str(value))
    if not match:
        return 0.0
    return float(match.group(1))


def _copy_mapped_fields(workbook: RawWorkbook, mapping: Dict[str, str], prefix: str, candidate_cls):
    """Mapped values are copied verbatim with no coercion. No row is dropped."""
    if workbook.is_empty:
        return []

    headers = workbook.headers
    indices = column_indices(mapping, headers)

    records = []
    for index, row in enumerate(workbook.rows):
        fields = {
            key: cell_at(row, col)
            for key, col in indices.items()
            if col >= 0
        }
        records.append(candidate_cls(
            id=f"{prefix}-{index}",
            row_index=index,
            raw_data=raw_snapshot(row, headers),
            fields=fields
        ))
    return records


def transform_contacts(workbook: RawWorkbook, mapping: Dict[str, str],
                       options: ContactImportOptions) -> List[ContactCandidate]:
    """Build contact candidates."""
    contacts = _copy_mapped_fields(workbook, mapping, CONTACT_ID_PREFIX, ContactCandidate)
    logger.debug(f"Transformed {len(contacts)} contact rows")
    return contacts


def transform_accounts(workbook: RawWorkbook, mapping: Dict[str, str],
                       options: AccountImportOptions) -> List[AccountCandidate]:
    """
    Build chart of accounts candidates.

    Account types and opening balances are left as the file has them; the
    import service validates them.
    """
    accounts = _copy_mapped_fields(workbook, mapping, ACCOUNT_ID_PREFIX, AccountCandidate)
    logger.debug(f"Transformed {len(accounts)} account rows")
    return accounts


def transform_transactions(workbook: RawWorkbook, mapping: Dict[str, str],
                           options: TransactionImportOptions) -> List[TransactionCandidate]:
    """
    Build transaction candidates.

    The amount comes from the 'amount' column in single mode, or
    credit - debit in double mode, and is negated when ``options.reverse``
    is set. Records with no date, no description and a zero amount are
    dropped; ids are assigned before that filter.
    """
    if workbook.is_empty:
        return []

    headers = workbook.headers
    indices = column_indices(mapping, headers)
    date_col = indices.get('date', -1)
    desc_col = indices.get('description', -1)
    amount_col = indices.get('amount', -1)
    credit_col = indices.get('credit', -1)
    debit_col = indices.get('debit', -1)

    transactions = []
    for index, row in enumerate(workbook.rows):
        amount = 0.0
        if options.column_mode == COLUMN_MODE_SINGLE and amount_col >= 0:
            amount = parse_amount(cell_at(row, amount_col))
        elif options.column_mode == COLUMN_MODE_DOUBLE:
            credit = parse_amount(cell_at(row, credit_col))
            debit = parse_amount(cell_at(row, debit_col))
            amount = credit - debit

        if options.reverse:
            amount = -amount

        candidate = TransactionCandidate(
            id=f"{TRANSACTION_ID_PREFIX}-{index}",
            row_index=index,
            raw_data=raw_snapshot(row, headers),
            date=cell_text(cell_at(row, date_col)),
            description=cell_text(cell_at(row, desc_col)),
            amount=amount
        )
        if candidate.date or candidate.description or candidate.amount:
            transactions.append(candidate)

    logger.debug(f"Transformed {len(transactions)} transaction rows "
                 f"({len(workbook.rows) - len(transactions)} empty rows dropped)")
    return transactions
