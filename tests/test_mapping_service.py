"""
Tests for the field catalog state and field -> column mapping.
"""

import io

import openpyxl

from services.field_catalog import (
    DEFAULT_CONTACT_FIELDS, FieldCatalog, FieldDefinition, build_sample_workbook, get_catalog,
    sample_filename, to_strptime, transaction_date_formats
)
from services.mapping_service import CatalogStatus, MappingEngine, invert_mapping


def _catalog(*fields):
    return FieldCatalog(fields=list(fields))


class TestFieldFallback:
    """Default fields apply only after a successful, empty catalog load."""

    def test_no_fallback_while_loading(self):
        engine = MappingEngine(fallback_fields=DEFAULT_CONTACT_FIELDS)
        assert engine.status == CatalogStatus.LOADING
        assert engine.fields == []

    def test_no_fallback_after_error(self):
        engine = MappingEngine(fallback_fields=DEFAULT_CONTACT_FIELDS)
        engine.fail_loading('boom')
        assert engine.fields == []
        assert engine.catalog_error == 'boom'

    def test_fallback_on_empty_catalog(self):
        engine = MappingEngine(fallback_fields=DEFAULT_CONTACT_FIELDS)
        engine.load_catalog(_catalog())
        assert [f.key for f in engine.fields] == ['displayName', 'email', 'phoneNumber', 'companyName']

    def test_catalog_fields_win(self):
        engine = MappingEngine(fallback_fields=DEFAULT_CONTACT_FIELDS)
        engine.load_catalog(_catalog(FieldDefinition(key='email', label='Email')))
        assert [f.key for f in engine.fields] == ['email']


class TestValidity:
    def test_valid_iff_required_fields_mapped(self):
        engine = MappingEngine()
        engine.load_catalog(_catalog(
            FieldDefinition(key='date', label='Date', required=True),
            FieldDefinition(key='memo', label='Memo'),
        ))
        assert not engine.is_valid()

        engine.set_mapping('memo', 'Notes')
        assert not engine.is_valid()

        engine.set_mapping('date', 'Posted')
        assert engine.is_valid()

        engine.set_mapping('date', None)
        assert engine.mapping['date'] == ''
        assert not engine.is_valid()

    def test_vacuously_valid_without_required_fields(self):
        engine = MappingEngine()
        engine.load_catalog(_catalog(FieldDefinition(key='memo', label='Memo')))
        assert engine.is_valid()


class TestAutoMap:
    """Header matching by label or key."""

    def test_matches_label_or_key_case_insensitively(self):
        engine = MappingEngine()
        engine.load_catalog(get_catalog('contacts'))

        added = engine.auto_map(['NAME', 'email', 'Unrelated'])
        assert added == {'displayName': 'NAME', 'email': 'email'}

    def test_never_overwrites_manual_mapping(self):
        engine = MappingEngine()
        engine.load_catalog(get_catalog('contacts'))
        engine.set_mapping('email', 'Work Email')

        engine.auto_map(['Name', 'Email'])
        assert engine.mapping['email'] == 'Work Email'
        assert engine.mapping['displayName'] == 'Name'

    def test_idempotent_for_same_inputs(self):
        engine = MappingEngine()
        engine.load_catalog(get_catalog('contacts'))
        engine.auto_map(['Name', 'Email'])

        engine.set_mapping('email', '')
        assert engine.auto_map(['Name', 'Email']) == {}
        assert engine.mapping['email'] == ''

    def test_reruns_when_headers_change(self):
        engine = MappingEngine()
        engine.load_catalog(get_catalog('contacts'))
        engine.auto_map(['Name'])

        assert engine.auto_map(['Name', 'Phone']) == {'phoneNumber': 'Phone'}

    def test_reset_clears_mapping_and_signature(self):
        engine = MappingEngine()
        engine.load_catalog(get_catalog('contacts'))
        engine.auto_map(['Name'])
        engine.reset()

        assert engine.mapping == {}
        assert engine.auto_map(['Name']) == {'displayName': 'Name'}

    def test_reset_with_catalog_forgets_fields(self):
        engine = MappingEngine(fallback_fields=DEFAULT_CONTACT_FIELDS)
        engine.load_catalog(get_catalog('transactions', 'double'))
        engine.set_mapping('credit', 'In')
        engine.reset(catalog=True)

        assert engine.mapping == {}
        assert engine.status == CatalogStatus.LOADING
        assert engine.fields == []
        assert engine.date_formats == []


class TestCatalog:
    def test_invert_mapping_skips_unmapped(self):
        assert invert_mapping({'displayName': 'Name', 'email': ''}) == {'Name': 'displayName'}

    def test_transaction_catalog_depends_on_column_mode(self):
        single = [f.key for f in get_catalog('transactions', 'single').fields]
        double = [f.key for f in get_catalog('transactions', 'double').fields]

        assert 'amount' in single and 'credit' not in single
        assert 'credit' in double and 'debit' in double and 'amount' not in double

    def test_preferred_date_format_always_offered(self):
        assert transaction_date_formats(['yyyy-mm-dd'])[0] == 'ddmmyyyy'
        assert transaction_date_formats(['yyyy-mm-dd', 'ddmmyyyy']) == ['yyyy-mm-dd', 'ddmmyyyy']

    def test_to_strptime(self):
        assert to_strptime('dd/mm/yyyy') == '%d/%m/%Y'
        assert to_strptime('MM/dd/yyyy') == '%m/%d/%Y'
        assert to_strptime('ddmmyyyy') == '%d%m%Y'

    def test_chart_of_accounts_catalog(self):
        fields = get_catalog('accounts').fields

        assert [f.key for f in fields if f.required] == ['accountName', 'accountType']
        assert get_catalog('accounts').date_formats == []
        assert sample_filename('accounts') == 'chart_of_accounts_sample.xlsx'

    def test_chart_of_accounts_sample_workbook(self):
        sheet = openpyxl.load_workbook(io.BytesIO(build_sample_workbook('accounts'))).active

        rows = list(sheet.iter_rows(values_only=True))
        assert sheet.title == 'Accounts'
        assert rows[0][:3] == ('Account Number', 'Account Name', 'Account Type')
        assert rows[1][:3] == ('1000', 'Business Chequing', 'asset')
        assert len(rows) == 3
