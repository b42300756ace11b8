"""
Mapping Service - Field catalog state and field -> column mapping.

The mapping is keyed by system field key; the value is the file column
header. An empty string means "unmapped".
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from services.field_catalog import FieldCatalog, FieldDefinition

logger = logging.getLogger(__name__)


class CatalogStatus(str, Enum):
    """Load state of the field catalog."""
    LOADING = 'loading'
    READY = 'ready'
    ERROR = 'error'


def invert_mapping(mapping: Dict[str, str]) -> Dict[str, str]:
    """Column -> field key, skipping unmapped fields."""
    return {column: key for key, column in mapping.items() if column}


class MappingEngine:
    """
    Holds the available fields and the current field mapping.

    Args:
        fallback_fields: Fields used when the catalog loads successfully but
            returns no fields. ``None`` disables the fallback.
    """

    def __init__(self, fallback_fields: Optional[List[FieldDefinition]] = None):
        self.fallback_fields = fallback_fields
        self.status = CatalogStatus.LOADING
        self.catalog_error: Optional[str] = None
        self._catalog_fields: List[FieldDefinition] = []
        self.date_formats: List[str] = []
        self.mapping: Dict[str, str] = {}
        self._auto_mapped_signature: Optional[Tuple] = None

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def begin_loading(self):
        self.status = CatalogStatus.LOADING
        self.catalog_error = None

    def load_catalog(self, catalog: FieldCatalog):
        self._catalog_fields = list(catalog.fields)
        self.date_formats = list(catalog.date_formats)
        self.status = CatalogStatus.READY
        self.catalog_error = None
        logger.debug(f"Field catalog loaded: {[f.key for f in self._catalog_fields]}")
        if not self._catalog_fields and self.fallback_fields:
            logger.warning("Field catalog returned no fields, using defaults")

    def fail_loading(self, message: str):
        self.status = CatalogStatus.ERROR
        self.catalog_error = message

    @property
    def fields(self) -> List[FieldDefinition]:
        """
        Fields available for mapping.

        Falls back to the default set only when the catalog has loaded
        successfully with zero fields; never while loading or after an error.
        """
        if self._catalog_fields:
            return self._catalog_fields
        if self.status == CatalogStatus.READY and self.fallback_fields:
            return self.fallback_fields
        return []

    @property
    def required_fields(self) -> List[FieldDefinition]:
        return [f for f in self.fields if f.required]

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def auto_map(self, headers: Sequence[str]) -> Dict[str, str]:
        """
        Map fields to headers whose text equals the field label or key.

        Comparison is case-insensitive. Fields that already have a mapping are
        left alone. Runs once per (headers, fields) pair; later calls with the
        same inputs change nothing.

        Returns:
            The mappings that were added
        """
        fields = self.fields
        if not headers or not fields:
            return {}

        signature = (tuple(headers), tuple(f.key for f in fields))
        if signature == self._auto_mapped_signature:
            return {}
        self._auto_mapped_signature = signature

        added: Dict[str, str] = {}
        for f in fields:
            if self.mapping.get(f.key):
                continue
            match = next(
                (h for h in headers if h.lower() in (f.label.lower(), f.key.lower())),
                None
            )
            if match is not None:
                added[f.key] = match

        if added:
            self.mapping.update(added)
            logger.info(f"Auto-mapped {len(added)} field(s): {added}")
        return added

    def set_mapping(self, field_key: str, column: Optional[str]):
        """Set one field's column; ``None`` or '' leaves the field unmapped."""
        self.mapping[field_key] = column or ''

    def required_unmapped(self) -> List[FieldDefinition]:
        return [f for f in self.required_fields if not self.mapping.get(f.key)]

    def is_valid(self) -> bool:
        """True when every required field is mapped (vacuously true if none are)."""
        return not self.required_unmapped()

    def reset(self, catalog: bool = False):
        """
        Clear the mapping; with ``catalog`` also forget the loaded fields so
        they are fetched again before the next mapping step.
        """
        self.mapping = {}
        self._auto_mapped_signature = None
        if catalog:
            self._catalog_fields = []
            self.date_formats = []
            self.status = CatalogStatus.LOADING
            self.catalog_error = None
