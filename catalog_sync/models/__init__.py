"""Domain models for the SoftOne catalog sync engine.

Rows coming from the ERP feed, the resumable import state, and the local
catalog entities the engine writes.
"""

from .activity_record import ActivityRecord
from .catalog import (
    CatalogProduct,
    PendingColourSyncEntry,
    PendingVariationEntry,
    ProductAttribute,
    ProductKind,
    Term,
)
from .import_state import BatchResult, ImportRunResult, ImportState, ImportStats, ImportStatus
from .rows import NormalizedRow, RowValidationError, normalize_row

__all__ = [
    # Feed rows
    "NormalizedRow",
    "RowValidationError",
    "normalize_row",
    # Import state
    "BatchResult",
    "ImportRunResult",
    "ImportState",
    "ImportStats",
    "ImportStatus",
    # Catalog
    "CatalogProduct",
    "PendingColourSyncEntry",
    "PendingVariationEntry",
    "ProductAttribute",
    "ProductKind",
    "Term",
    # Logging
    "ActivityRecord",
]
