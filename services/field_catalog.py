"""
Field catalogs for contact, transaction and chart of accounts imports.

Defines the system fields a file column can be mapped to, the supported date
formats, and the downloadable sample templates.
"""

import io
import logging
import re
from typing import Dict, List, Optional

import openpyxl
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

CONTACTS = 'contacts'
TRANSACTIONS = 'transactions'
ACCOUNTS = 'accounts'

COLUMN_MODE_SINGLE = 'single'
COLUMN_MODE_DOUBLE = 'double'
COLUMN_MODES = (COLUMN_MODE_SINGLE, COLUMN_MODE_DOUBLE)

CONTACT_TYPES = ('supplier', 'customer', 'employee')


class FieldDefinition(BaseModel):
    """A system field that a file column can be mapped to."""

    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(..., description="Stable field identifier")
    label: str = Field(..., description="Display label")
    required: bool = Field(False, description="Whether the field must be mapped")
    format_hint: Optional[str] = Field(None, alias='formatHint', description="Expected value format")


class FieldCatalog(BaseModel):
    """Field catalog response for one entity type (and column mode)."""

    model_config = ConfigDict(populate_by_name=True)

    fields: List[FieldDefinition] = Field(default_factory=list)
    date_formats: List[str] = Field(default_factory=list, alias='dateFormats')


# Used by the contacts wizard when the catalog loads but comes back empty
DEFAULT_CONTACT_FIELDS: List[FieldDefinition] = [
    FieldDefinition(key='displayName', label='Name', required=True),
    FieldDefinition(key='email', label='Email'),
    FieldDefinition(key='phoneNumber', label='Phone'),
    FieldDefinition(key='companyName', label='Company'),
]

CONTACT_FIELDS: List[FieldDefinition] = DEFAULT_CONTACT_FIELDS + [
    FieldDefinition(key='firstName', label='First Name'),
    FieldDefinition(key='lastName', label='Last Name'),
    FieldDefinition(key='type', label='Type', format_hint='supplier, customer or employee'),
    FieldDefinition(key='website', label='Website'),
    FieldDefinition(key='addressLine1', label='Address'),
    FieldDefinition(key='city', label='City'),
    FieldDefinition(key='country', label='Country'),
    FieldDefinition(key='notes', label='Notes'),
]

# Chart of accounts; the server catalog and the fallback set are the same
DEFAULT_ACCOUNT_FIELDS: List[FieldDefinition] = [
    FieldDefinition(key='accountNumber', label='Account Number'),
    FieldDefinition(key='accountName', label='Account Name', required=True),
    FieldDefinition(key='accountType', label='Account Type', required=True,
                    format_hint='asset, liability, equity, income or expense'),
    FieldDefinition(key='accountDetailType', label='Detail Type'),
    FieldDefinition(key='openingBalance', label='Opening Balance'),
    FieldDefinition(key='openingBalanceDate', label='Opening Balance Date'),
]

_TRANSACTION_COMMON = [
    FieldDefinition(key='date', label='Date', required=True, format_hint='Uses the selected date format'),
    FieldDefinition(key='description', label='Description', required=True),
]

TRANSACTION_FIELDS: Dict[str, List[FieldDefinition]] = {
    COLUMN_MODE_SINGLE: _TRANSACTION_COMMON + [
        FieldDefinition(key='amount', label='Amount', required=True,
                        format_hint='Positive for money in, negative for money out'),
    ],
    COLUMN_MODE_DOUBLE: _TRANSACTION_COMMON + [
        FieldDefinition(key='credit', label='Credit', required=True),
        FieldDefinition(key='debit', label='Debit', required=True),
    ],
}

CONTACT_DATE_FORMATS = ['MM/dd/yyyy', 'dd/MM/yyyy', 'yyyy-MM-dd', 'dd-MM-yyyy']

TRANSACTION_DATE_FORMATS = [
    'ddmmyyyy',
    'mmddyyyy',
    'yyyymmdd',
    'dd/mm/yyyy',
    'mm/dd/yyyy',
    'yyyy-mm-dd',
]

PREFERRED_TRANSACTION_DATE_FORMAT = 'ddmmyyyy'

_SAMPLE_ROWS = {
    CONTACTS: [
        {'displayName': 'Acme Supplies', 'email': 'billing@acme.example', 'phoneNumber': '+1 555 0100',
         'companyName': 'Acme Supplies Ltd', 'type': 'supplier', 'city': 'Toronto', 'country': 'Canada'},
        {'displayName': 'Jane Doe', 'email': 'jane@example.com', 'phoneNumber': '+1 555 0101',
         'firstName': 'Jane', 'lastName': 'Doe', 'type': 'customer'},
    ],
    ACCOUNTS: [
        {'accountNumber': '1000', 'accountName': 'Business Chequing', 'accountType': 'asset',
         'accountDetailType': 'chequing', 'openingBalance': 2500, 'openingBalanceDate': '2025-01-01'},
        {'accountNumber': '2100', 'accountName': 'Company Visa', 'accountType': 'liability',
         'accountDetailType': 'credit-card', 'openingBalance': 0},
    ],
    TRANSACTIONS: [
        {'date': '05012025', 'description': 'Office supplies', 'amount': -120.50,
         'credit': 0, 'debit': 120.50},
        {'date': '12012025', 'description': 'Client payment', 'amount': 2400,
         'credit': 2400, 'debit': 0},
    ],
}


def get_catalog(entity: str, column_mode: Optional[str] = None) -> FieldCatalog:
    """
    Return the server-side field catalog.

    Args:
        entity: 'contacts', 'transactions' or 'accounts'
        column_mode: Transaction column mode ('single' or 'double')
    """
    if entity == CONTACTS:
        return FieldCatalog(fields=CONTACT_FIELDS, date_formats=CONTACT_DATE_FORMATS)
    if entity == TRANSACTIONS:
        mode = column_mode or COLUMN_MODE_SINGLE
        if mode not in COLUMN_MODES:
            raise ValueError(f"Unknown column mode: {column_mode}")
        return FieldCatalog(fields=TRANSACTION_FIELDS[mode], date_formats=TRANSACTION_DATE_FORMATS)
    if entity == ACCOUNTS:
        return FieldCatalog(fields=DEFAULT_ACCOUNT_FIELDS)
    raise ValueError(f"Unknown import entity: {entity}")


def transaction_date_formats(provided: List[str]) -> List[str]:
    """Date formats offered to the user; 'ddmmyyyy' is always available."""
    if PREFERRED_TRANSACTION_DATE_FORMAT in provided:
        return list(provided)
    return [PREFERRED_TRANSACTION_DATE_FORMAT] + list(provided)


def default_date_format(formats: List[str]) -> str:
    if PREFERRED_TRANSACTION_DATE_FORMAT in formats:
        return PREFERRED_TRANSACTION_DATE_FORMAT
    return formats[0] if formats else PREFERRED_TRANSACTION_DATE_FORMAT


def to_strptime(date_format: str) -> str:
    """
    Convert a catalog date format to a ``strptime`` pattern.

    Examples:
        'dd/mm/yyyy' -> '%d/%m/%Y'
        'MM/dd/yyyy' -> '%m/%d/%Y'
        'ddmmyyyy'   -> '%d%m%Y'
    """
    pattern = date_format.lower()
    pattern = re.sub(r'yyyy', '%Y', pattern)
    pattern = re.sub(r'yy', '%y', pattern)
    pattern = re.sub(r'mm', '%m', pattern)
    pattern = re.sub(r'dd', '%d', pattern)
    return pattern


def build_sample_workbook(entity: str, column_mode: Optional[str] = None) -> bytes:
    """
    Build the downloadable .xlsx template for an import.

    The header row holds the field labels; two example rows follow.
    """
    catalog = get_catalog(entity, column_mode)

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = entity.capitalize()
    ws.append([f.label for f in catalog.fields])
    for sample in _SAMPLE_ROWS[entity]:
        ws.append([sample.get(f.key) for f in catalog.fields])

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.debug(f"Built {entity} sample workbook ({column_mode or 'default'})")
    return buffer.getvalue()


def sample_filename(entity: str, column_mode: Optional[str] = None) -> str:
    if entity == TRANSACTIONS:
        return f"transactions_sample_{column_mode or COLUMN_MODE_SINGLE}.xlsx"
    if entity == ACCOUNTS:
        return 'chart_of_accounts_sample.xlsx'
    return 'contacts_sample.xlsx'
