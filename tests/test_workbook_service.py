"""
Tests for spreadsheet decoding and upload validation.
"""

from datetime import datetime

import pytest

from services.exceptions import ParseError, ReadError, ValidationError
from services.workbook_service import (
    XLSX_MIME, RawWorkbook, UploadedFile, WorkbookDecoder, detect_format, validate_upload
)


class TestValidateUpload:
    """File type checks run before any decode."""

    def test_accepts_by_extension(self):
        validate_upload(UploadedFile(filename='people.CSV', content=b''))
        validate_upload(UploadedFile(filename='book.xls', content=b''))

    def test_accepts_by_mime_type(self):
        validate_upload(UploadedFile(filename='export', content=b'', content_type=XLSX_MIME))

    def test_rejects_other_files(self):
        with pytest.raises(ValidationError) as exc:
            validate_upload(UploadedFile(filename='notes.txt', content=b'', content_type='text/plain'))
        assert exc.value.message == 'Please upload an Excel or CSV file'

    def test_detect_format_prefers_extension(self):
        upload = UploadedFile(filename='data.csv', content=b'', content_type=XLSX_MIME)
        assert detect_format(upload) == 'csv'
        assert detect_format(UploadedFile(filename='blob', content_type=XLSX_MIME)) == 'xlsx'


class TestWorkbookDecoder:
    """Decoding into a header + row grid."""

    def test_decode_xlsx(self, make_xlsx):
        decoder = WorkbookDecoder()
        workbook = decoder.decode_bytes(make_xlsx([['Name', 'Email'], ['Ann', 'a@x.com']]), 'xlsx')

        assert workbook.headers == ['Name', 'Email']
        assert workbook.rows == [['Ann', 'a@x.com']]

    def test_decode_keeps_datetimes(self, make_xlsx):
        content = make_xlsx([['Date'], [datetime(2025, 1, 5)]])
        workbook = WorkbookDecoder().decode_bytes(content, 'xlsx')
        assert workbook.rows[0][0] == datetime(2025, 1, 5)

    def test_blank_rows_dropped_before_header_split(self, make_csv):
        content = make_csv([['', ''], ['Name', 'Email'], ['Ann', 'a@x.com'], ['', '']])
        workbook = WorkbookDecoder(drop_blank_rows=True).decode_bytes(content, 'csv')

        assert workbook.headers == ['Name', 'Email']
        assert len(workbook.headers) == 2
        assert workbook.rows == [['Ann', 'a@x.com']]

    def test_blank_rows_kept_when_filtering_disabled(self, make_csv):
        content = make_csv([['Name', 'Email'], ['', ''], ['Ann', 'a@x.com']])
        workbook = WorkbookDecoder(drop_blank_rows=False).decode_bytes(content, 'csv')

        assert len(workbook.rows) == 2
        assert workbook.rows[0] == [None, None]

    def test_ragged_rows_are_padded(self, make_csv):
        content = make_csv([['Name'], ['Ann', 'extra']])
        workbook = WorkbookDecoder().decode_bytes(content, 'csv')

        assert workbook.headers == ['Name']
        assert workbook.rows == [['Ann', 'extra']]
        assert workbook.grid[0] == ['Name', None]

    def test_empty_file_raises_parse_error(self, make_csv):
        with pytest.raises(ParseError, match='File is empty'):
            WorkbookDecoder().decode_bytes(make_csv([['', ''], ['']]), 'csv')

    def test_corrupt_file_raises_parse_error(self):
        with pytest.raises(ParseError, match='Failed to parse file'):
            WorkbookDecoder().decode_bytes(b'not a zip archive', 'xlsx')

    def test_csv_with_bom(self):
        workbook = WorkbookDecoder().decode_bytes('\ufeffName\nAnn\n'.encode('utf-8'), 'csv')
        assert workbook.headers == ['Name']

    @pytest.mark.asyncio
    async def test_async_decode_rejects_invalid_type(self):
        with pytest.raises(ValidationError):
            await WorkbookDecoder().decode(UploadedFile(filename='a.pdf', content=b'%PDF'))

    @pytest.mark.asyncio
    async def test_async_decode_missing_file(self, tmp_path):
        upload = UploadedFile.from_path(str(tmp_path / 'missing.xlsx'))
        with pytest.raises(ReadError):
            await WorkbookDecoder().decode(upload)

    @pytest.mark.asyncio
    async def test_async_decode_from_path(self, tmp_path, make_xlsx):
        path = tmp_path / 'people.xlsx'
        path.write_bytes(make_xlsx([['Name'], ['Ann'], ['Bob']]))

        workbook = await WorkbookDecoder().decode(UploadedFile.from_path(str(path)))
        assert workbook.rows == [['Ann'], ['Bob']]


class TestRawWorkbook:
    def test_toggling_header_row_needs_no_redecode(self):
        workbook = RawWorkbook(grid=[['Name'], ['Ann']], has_header_row=True, header_width=1)
        without = workbook.with_header_row(False)

        assert without.headers == []
        assert without.rows == [['Name'], ['Ann']]
        assert without.with_header_row(True).headers == ['Name']

    def test_none_header_cells_become_empty_strings(self):
        workbook = RawWorkbook(grid=[['Name', None, 'Email']], header_width=3)
        assert workbook.headers == ['Name', '', 'Email']
