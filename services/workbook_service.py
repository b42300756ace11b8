"""
Workbook Service - Decode uploaded spreadsheets into a header + row grid.

Supports .xlsx (openpyxl), .xls (xlrd) and .csv uploads. Only the first
worksheet of a workbook is read.
"""

import asyncio
import csv
import io
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, List, Optional

import openpyxl
import xlrd

from services.exceptions import ParseError, ReadError, ValidationError

logger = logging.getLogger(__name__)

XLSX_MIME = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
XLS_MIME = 'application/vnd.ms-excel'

VALID_MIME_TYPES = (XLSX_MIME, XLS_MIME)
VALID_EXTENSIONS = ('.xlsx', '.xls', '.csv')


@dataclass
class UploadedFile:
    """
    A file chosen for import.

    Either ``content`` holds the bytes in memory or ``path`` points at the
    file on disk; ``read()`` hides the difference.
    """

    filename: str
    content: Optional[bytes] = None
    path: Optional[str] = None
    content_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: str, content_type: Optional[str] = None) -> 'UploadedFile':
        return cls(filename=Path(path).name, path=str(path), content_type=content_type)

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower()

    def read(self) -> bytes:
        """
        Return the file bytes.

        Raises:
            ReadError: If the file cannot be read
        """
        if self.content is not None:
            return self.content
        if self.path is None:
            raise ReadError('Failed to read file')
        try:
            with open(self.path, 'rb') as f:
                return f.read()
        except OSError as e:
            logger.error(f"Could not read upload {self.path}: {e}")
            raise ReadError('Failed to read file') from e


@dataclass(frozen=True)
class RawWorkbook:
    """
    Decoded first sheet of an upload.

    ``grid`` keeps every surviving row, including the header row; the
    header/data split is derived from ``has_header_row`` so toggling the
    flag never requires decoding the file again.
    """

    grid: List[List[Any]] = field(default_factory=list)
    has_header_row: bool = True
    header_width: int = 0

    @property
    def headers(self) -> List[str]:
        if not self.has_header_row or not self.grid:
            return []
        first = self.grid[0][:self.header_width]
        return ['' if cell is None else str(cell) for cell in first]

    @property
    def rows(self) -> List[List[Any]]:
        return self.grid[1:] if self.has_header_row else list(self.grid)

    @property
    def header_row(self) -> Optional[List[Any]]:
        return self.grid[0] if self.has_header_row and self.grid else None

    @property
    def is_empty(self) -> bool:
        return not self.grid

    def with_header_row(self, has_header_row: bool) -> 'RawWorkbook':
        return replace(self, has_header_row=has_header_row)


def is_blank(cell: Any) -> bool:
    return cell is None or str(cell).strip() == ''


def is_blank_row(row: List[Any]) -> bool:
    return all(is_blank(cell) for cell in row)


def validate_upload(upload: UploadedFile) -> None:
    """
    Check the file type before any decode attempt.

    A file passes when either its extension or its MIME type is accepted.

    Raises:
        ValidationError: If neither the extension nor the MIME type is valid
    """
    valid_type = upload.content_type in VALID_MIME_TYPES
    valid_extension = upload.filename.lower().endswith(VALID_EXTENSIONS)

    if not valid_type and not valid_extension:
        logger.info(f"Rejected upload {upload.filename} ({upload.content_type})")
        raise ValidationError('Please upload an Excel or CSV file')


def detect_format(upload: UploadedFile) -> str:
    """Return 'xlsx', 'xls' or 'csv'; extension wins over MIME type."""
    ext = upload.extension
    if ext in VALID_EXTENSIONS:
        return ext[1:]
    if upload.content_type == XLS_MIME:
        return 'xls'
    return 'xlsx'


class WorkbookDecoder:
    """
    Turns an uploaded file into a :class:`RawWorkbook`.

    Args:
        drop_blank_rows: Remove rows whose every cell is empty before the
            header/data split
    """

    def __init__(self, drop_blank_rows: bool = True):
        self.drop_blank_rows = drop_blank_rows

    async def decode(self, upload: UploadedFile, has_header_row: bool = True) -> RawWorkbook:
        """
        Validate and decode an upload without blocking the event loop.

        Raises:
            ValidationError: Rejected file type
            ReadError: File could not be read
            ParseError: Corrupt or empty file
        """
        validate_upload(upload)
        return await asyncio.to_thread(self._decode_upload, upload, has_header_row)

    def _decode_upload(self, upload: UploadedFile, has_header_row: bool) -> RawWorkbook:
        content = upload.read()
        return self.decode_bytes(content, detect_format(upload), has_header_row)

    def decode_bytes(self, content: bytes, file_format: str,
                     has_header_row: bool = True) -> RawWorkbook:
        """Synchronous decode, used by background jobs."""
        try:
            if file_format == 'csv':
                rows = _read_csv(content)
            elif file_format == 'xls':
                rows = _read_xls(content)
            else:
                rows = _read_xlsx(content)
        except Exception as e:
            logger.error(f"Failed to decode {file_format} file: {e}")
            raise ParseError('Failed to parse file') from e

        rows = [_trim_trailing(row) for row in rows]
        if self.drop_blank_rows:
            rows = [row for row in rows if row and not is_blank_row(row)]

        if not rows:
            raise ParseError('File is empty')

        header_width = len(rows[0])
        width = max(len(row) for row in rows)
        grid = [row + [None] * (width - len(row)) for row in rows]

        logger.info(f"Decoded {file_format} file: {len(grid)} rows x {width} columns")
        return RawWorkbook(grid=grid, has_header_row=has_header_row, header_width=header_width)


def _trim_trailing(row) -> List[Any]:
    cells = list(row)
    while cells and (cells[-1] is None or cells[-1] == ''):
        cells.pop()
    return cells


def _read_xlsx(content: bytes) -> List[List[Any]]:
    wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_xls(content: bytes) -> List[List[Any]]:
    book = xlrd.open_workbook(file_contents=content)
    sheet = book.sheet_by_index(0)
    rows = []
    for r in range(sheet.nrows):
        row = []
        for cell in sheet.row(r):
            if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                row.append(None)
            elif cell.ctype == xlrd.XL_CELL_DATE:
                row.append(xlrd.xldate_as_datetime(cell.value, book.datemode))
            else:
                row.append(cell.value)
        rows.append(row)
    return rows


def _read_csv(content: bytes) -> List[List[Any]]:
    try:
        text = content.decode('utf-8-sig')
    except UnicodeDecodeError:
        text = content.decode('latin-1')
    return [row for row in csv.reader(io.StringIO(text))]
