"""
Selection Service - The subset of candidate records chosen for import.

Also decides what gets uploaded at submission time: the original file, or a
filtered workbook holding only the selected rows.
"""

import io
import logging
from typing import Iterable, List, Optional, Sequence, Set

import openpyxl

from services.record_service import CandidateRecord
from services.workbook_service import XLSX_MIME, RawWorkbook, UploadedFile

logger = logging.getLogger(__name__)


class SelectionSet:
    """
    Mutable set of selected candidate ids.

    Always a subset of the current candidate ids. ``replace`` swaps both the
    candidate universe and the selection, so ids from a previous parse cannot
    survive.
    """

    def __init__(self, candidate_ids: Iterable[str] = ()):
        self._universe: List[str] = []
        self._selected: Set[str] = set()
        self.replace(candidate_ids)

    def replace(self, candidate_ids: Iterable[str]):
        """Adopt a new candidate id set and select all of it."""
        self._universe = list(candidate_ids)
        self._selected = set(self._universe)

    def toggle(self, candidate_id: str) -> bool:
        """
        Flip membership of one id.

        Returns:
            True if the id is selected afterwards
        """
        if candidate_id not in self._universe:
            logger.debug(f"Ignoring toggle of unknown candidate {candidate_id}")
            return False
        if candidate_id in self._selected:
            self._selected.discard(candidate_id)
            return False
        self._selected.add(candidate_id)
        return True

    def select_all(self):
        self._selected = set(self._universe)

    def deselect_all(self):
        self._selected = set()

    @property
    def ids(self) -> frozenset:
        return frozenset(self._selected)

    @property
    def total(self) -> int:
        return len(self._universe)

    @property
    def is_partial(self) -> bool:
        """Strictly between nothing and everything."""
        return 0 < len(self._selected) < len(self._universe)

    def __contains__(self, candidate_id: str) -> bool:
        return candidate_id in self._selected

    def __len__(self) -> int:
        return len(self._selected)

    def __iter__(self):
        return (cid for cid in self._universe if cid in self._selected)


def build_selection_export(workbook: RawWorkbook, records: Sequence[CandidateRecord],
                           selection: SelectionSet, sheet_name: str,
                           filename: str) -> UploadedFile:
    """
    Write the header row (if any) and the selected data rows to a new .xlsx.

    Rows keep their original order; each record points back at its data row
    through ``row_index``.
    """
    data_rows = workbook.rows
    rows: List[list] = []
    if workbook.header_row is not None:
        rows.append(workbook.header_row)

    for record in records:
        if record.id in selection and 0 <= record.row_index < len(data_rows):
            rows.append(data_rows[record.row_index])

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_name
    for row in rows:
        ws.append(list(row))

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.info(f"Built filtered export {filename} with {len(rows)} rows")
    return UploadedFile(filename=filename, content=buffer.getvalue(), content_type=XLSX_MIME)


def plan_upload(workbook: RawWorkbook, records: Sequence[CandidateRecord], selection: SelectionSet,
                sheet_name: str, filename: str) -> Optional[UploadedFile]:
    """
    Decide which file to submit.

    Returns the filtered export when the selection is partial, otherwise
    ``None`` meaning "submit the original upload unmodified". An empty
    selection also returns ``None``; callers decide whether that is allowed.
    """
    if not selection.is_partial:
        return None
    return build_selection_export(workbook, records, selection, sheet_name, filename)
