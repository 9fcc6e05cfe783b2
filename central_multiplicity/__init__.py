# central_multiplicity/__init__.py
from __future__ import annotations
from .binning import EtaAxisSpec, AzimuthalBinning, BinningSignature, PHI_BINNING
from .flags import CorrectionFlag
from .core_types import (
    MultiplicityRecordError, RecordNotInitializedError,
    BinningMismatchError, OriginMismatchError,
)
from .capabilities import Serializable, Inspectable
from .record import (
    EventMultiplicityRecord,
    DATA_NAME, SIMULATED_NAME, SCHEMA_VERSION,
)
from .aggregation import check_compatible, merge_records

__version__ = "2.0.0"

__all__ = [
    'EventMultiplicityRecord',
    'EtaAxisSpec',
    'AzimuthalBinning',
    'BinningSignature',
    'PHI_BINNING',
    'CorrectionFlag',
    'MultiplicityRecordError',
    'RecordNotInitializedError',
    'BinningMismatchError',
    'OriginMismatchError',
    'Serializable',
    'Inspectable',
    'DATA_NAME',
    'SIMULATED_NAME',
    'SCHEMA_VERSION',
    'check_compatible',
    'merge_records',
]
