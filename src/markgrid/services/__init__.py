"""Service layer for multi-cell grid operations.

Services build edit batches from user actions and leave applying them to
the edit coordinator, which handles the optimistic update and reconciliation.

Services:
- BulkEditService: Selection expansion, fill down/right, toolbar state edits, paste
"""

from .bulk_edit_service import BulkEditService

__all__ = [
    "BulkEditService",
]
