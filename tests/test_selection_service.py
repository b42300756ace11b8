"""
Tests for the selection set and the filtered upload export.
"""

import io

import openpyxl

from services.record_service import ContactImportOptions, transform_contacts
from services.selection_service import SelectionSet, build_selection_export, plan_upload
from services.workbook_service import RawWorkbook


def _rows_of(upload):
    wb = openpyxl.load_workbook(io.BytesIO(upload.read()))
    return [list(row) for row in wb.active.iter_rows(values_only=True)]


class TestSelectionSet:
    def test_replace_selects_everything(self):
        selection = SelectionSet(['a', 'b'])
        selection.toggle('a')

        selection.replace(['c', 'd'])
        assert selection.ids == {'c', 'd'}
        assert 'a' not in selection

    def test_toggle_twice_restores_membership(self):
        selection = SelectionSet(['a', 'b'])
        assert selection.toggle('a') is False
        assert selection.toggle('a') is True
        assert selection.ids == {'a', 'b'}

    def test_toggle_unknown_id_is_ignored(self):
        selection = SelectionSet(['a'])
        assert selection.toggle('zzz') is False
        assert selection.ids == {'a'}

    def test_select_and_deselect_all(self):
        selection = SelectionSet(['a', 'b'])
        selection.deselect_all()
        assert len(selection) == 0
        selection.select_all()
        assert len(selection) == 2

    def test_partial(self):
        selection = SelectionSet(['a', 'b'])
        assert not selection.is_partial
        selection.toggle('a')
        assert selection.is_partial
        selection.deselect_all()
        assert not selection.is_partial

    def test_iteration_keeps_candidate_order(self):
        selection = SelectionSet(['c', 'a', 'b'])
        selection.toggle('a')
        assert list(selection) == ['c', 'b']


class TestSelectionExport:
    def _setup(self):
        workbook = RawWorkbook(grid=[['Name'], ['Ann'], ['Bob'], ['Cy']], header_width=1)
        records = transform_contacts(workbook, {'displayName': 'Name'}, ContactImportOptions())
        return workbook, records

    def test_export_keeps_header_and_selected_rows(self):
        workbook, records = self._setup()
        selection = SelectionSet(r.id for r in records)
        selection.toggle('contact-1')

        upload = build_selection_export(workbook, records, selection, 'Contacts', 'filtered.xlsx')

        assert upload.filename == 'filtered.xlsx'
        assert _rows_of(upload) == [['Name'], ['Ann'], ['Cy']]

    def test_full_selection_uploads_original(self):
        workbook, records = self._setup()
        selection = SelectionSet(r.id for r in records)
        assert plan_upload(workbook, records, selection, 'Contacts', 'f.xlsx') is None

    def test_empty_selection_uploads_original(self):
        workbook, records = self._setup()
        selection = SelectionSet(r.id for r in records)
        selection.deselect_all()
        assert plan_upload(workbook, records, selection, 'Contacts', 'f.xlsx') is None

    def test_partial_selection_uploads_export(self):
        workbook, records = self._setup()
        selection = SelectionSet(r.id for r in records)
        selection.toggle('contact-0')

        upload = plan_upload(workbook, records, selection, 'Contacts', 'f.xlsx')
        assert _rows_of(upload) == [['Name'], ['Bob'], ['Cy']]
