from __future__ import annotations
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .binning import BinningSignature

# ==============================================================================
# EXCEPTIONS
# ==============================================================================

class MultiplicityRecordError(Exception):
    """Contract violation on an event multiplicity record."""

    def __init__(self, message: str, record_name: Optional[str] = None):
        super().__init__(message)
        self.record_name = record_name


class RecordNotInitializedError(MultiplicityRecordError, RuntimeError):
    """Histogram accessed before the record's binning was initialized."""

    def __init__(self, record_name: Optional[str] = None, operation: str = "access"):
        super().__init__(
            f"{record_name or 'record'}: cannot {operation} the histogram before initialize()",
            record_name=record_name,
        )
        self.operation = operation


class BinningMismatchError(MultiplicityRecordError, ValueError):
    """Two records with different binnings were combined."""

    def __init__(self, message: str,
                 left: Optional[BinningSignature] = None,
                 right: Optional[BinningSignature] = None,
                 record_name: Optional[str] = None):
        if left is not None and right is not None:
            message = f"{message} ({left.describe()} vs {right.describe()})"
        super().__init__(message, record_name=record_name)
        self.left = left
        self.right = right


class OriginMismatchError(MultiplicityRecordError, ValueError):
    """Simulated and real-data records were combined."""
