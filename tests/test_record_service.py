"""
Tests for row -> candidate record transformation.
"""

from datetime import datetime

from services.record_service import (
    AccountImportOptions, ContactImportOptions, LedgerAccount, TransactionImportOptions, cell_text,
    importable_accounts, parse_amount, transform_accounts, transform_contacts, transform_transactions
)
from services.workbook_service import RawWorkbook


def _workbook(rows, has_header_row=True):
    width = max(len(r) for r in rows)
    grid = [list(r) + [None] * (width - len(r)) for r in rows]
    return RawWorkbook(grid=grid, has_header_row=has_header_row, header_width=len(rows[0]))


class TestContactTransform:
    def test_two_contacts_with_raw_rows(self):
        workbook = _workbook([['Name', 'Email'], ['Ann', 'a@x.com'], ['Bob', 'b@x.com']])
        mapping = {'displayName': 'Name', 'email': 'Email'}

        records = transform_contacts(workbook, mapping, ContactImportOptions())

        assert [r.id for r in records] == ['contact-0', 'contact-1']
        assert records[0].fields == {'displayName': 'Ann', 'email': 'a@x.com'}
        assert records[1].fields['displayName'] == 'Bob'
        assert records[0].raw_data == {'Name': 'Ann', 'Email': 'a@x.com'}

    def test_unmapped_and_unknown_columns_are_ignored(self):
        workbook = _workbook([['Name'], ['Ann']])
        records = transform_contacts(workbook, {'displayName': 'Name', 'email': '', 'phone': 'Gone'},
                                     ContactImportOptions())
        assert records[0].fields == {'displayName': 'Ann'}

    def test_values_are_not_coerced(self):
        workbook = _workbook([['Name', 'Since'], ['Ann', datetime(2024, 2, 1)]])
        records = transform_contacts(workbook, {'displayName': 'Name', 'since': 'Since'},
                                     ContactImportOptions())
        assert records[0].fields['since'] == datetime(2024, 2, 1)

    def test_deterministic(self):
        workbook = _workbook([['Name'], ['Ann'], ['Bob']])
        mapping = {'displayName': 'Name'}
        first = transform_contacts(workbook, mapping, ContactImportOptions())
        second = transform_contacts(workbook, mapping, ContactImportOptions())
        assert [r.model_dump() for r in first] == [r.model_dump() for r in second]

    def test_without_header_row_raw_data_keyed_by_index(self):
        workbook = _workbook([['Ann', 'a@x.com']], has_header_row=False)
        records = transform_contacts(workbook, {}, ContactImportOptions())
        assert records[0].raw_data == {0: 'Ann', 1: 'a@x.com'}

    def test_empty_workbook(self):
        assert transform_contacts(RawWorkbook(), {}, ContactImportOptions()) == []


class TestAccountTransform:
    def test_mapped_values_copied_verbatim(self):
        workbook = _workbook([
            ['No.', 'Name', 'Type', 'Balance'],
            [1000, 'Chequing', 'asset', '2,500.00'],
            [2100, 'Visa', 'liability', None],
        ])
        mapping = {'accountNumber': 'No.', 'accountName': 'Name', 'accountType': 'Type',
                   'openingBalance': 'Balance', 'accountDetailType': ''}

        records = transform_accounts(workbook, mapping, AccountImportOptions())

        assert [r.id for r in records] == ['account-0', 'account-1']
        assert records[0].fields == {
            'accountNumber': 1000, 'accountName': 'Chequing', 'accountType': 'asset', 'openingBalance': '2,500.00'
        }
        assert records[1].fields['openingBalance'] is None
        assert records[1].raw_data['Name'] == 'Visa'

    def test_empty_workbook(self):
        assert transform_accounts(_workbook([['Name']]), {'accountName': 'Name'}, AccountImportOptions()) == []


class TestImportableAccounts:
    def test_bank_and_card_accounts_only(self):
        accounts = [
            LedgerAccount(id='1', accountType='asset'),
            LedgerAccount(id='2', accountType='liability'),
            LedgerAccount(id='3', accountType='expense', accountDetailType='credit-card'),
            LedgerAccount(id='4', accountType='equity', accountDetailType='chequing'),
            LedgerAccount(id='5', accountType='income', accountDetailType='sales'),
            LedgerAccount(id='6', accountType='expense'),
        ]

        assert [a.id for a in importable_accounts(accounts)] == ['1', '2', '3', '4']


class TestTransactionTransform:
    HEADERS = ['Date', 'Details', 'Credit', 'Debit']
    MAPPING = {'date': 'Date', 'description': 'Details', 'credit': 'Credit', 'debit': 'Debit'}

    def test_double_column_amount(self):
        workbook = _workbook([self.HEADERS, ['05012025', 'Deposit', 100, 0]])
        options = TransactionImportOptions(column_mode='double', reverse=False)

        records = transform_transactions(workbook, self.MAPPING, options)
        assert records[0].amount == 100

    def test_double_column_amount_reversed(self):
        workbook = _workbook([self.HEADERS, ['05012025', 'Deposit', 100, 0]])
        options = TransactionImportOptions(column_mode='double', reverse=True)

        records = transform_transactions(workbook, self.MAPPING, options)
        assert records[0].amount == -100

    def test_single_column_amount_parsed_leniently(self):
        workbook = _workbook([['Date', 'Amount'], ['01/02/2025', '-12.50 USD'], ['02/02/2025', 'n/a']])
        records = transform_transactions(workbook, {'date': 'Date', 'amount': 'Amount'},
                                         TransactionImportOptions())
        assert [r.amount for r in records] == [-12.5, 0.0]

    def test_empty_records_dropped_after_ids_assigned(self):
        workbook = _workbook([
            ['Date', 'Details', 'Amount'],
            ['05012025', 'Coffee', -3],
            [None, None, None],
            ['07012025', 'Refund', 3],
        ])
        mapping = {'date': 'Date', 'description': 'Details', 'amount': 'Amount'}

        records = transform_transactions(workbook, mapping, TransactionImportOptions())

        assert [r.id for r in records] == ['tx-0', 'tx-2']
        assert [r.row_index for r in records] == [0, 2]

    def test_dates_rendered_as_text(self):
        workbook = _workbook([['Date', 'Amount'], [datetime(2025, 1, 5), 10]])
        records = transform_transactions(workbook, {'date': 'Date', 'amount': 'Amount'},
                                         TransactionImportOptions())
        assert records[0].date == '2025-01-05'


class TestCellHelpers:
    def test_parse_amount(self):
        assert parse_amount(12) == 12.0
        assert parse_amount(' 1.5e2abc') == 150.0
        assert parse_amount('.5') == 0.5
        assert parse_amount(None) == 0.0
        assert parse_amount('abc') == 0.0

    def test_cell_text(self):
        assert cell_text(None) == ''
        assert cell_text(5.0) == '5'
        assert cell_text(5.25) == '5.25'
        assert cell_text(datetime(2025, 1, 5, 10, 30)) == '2025-01-05T10:30:00'
