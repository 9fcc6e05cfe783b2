"""Central multiplicity: record aggregation
=========================================
Bin-wise reduction of many event records into one. Addition is commutative
and associative, so records filled by independent workers can be combined
in any order. Normalization by the acceptance row is left to the consumer.
"""
from __future__ import annotations
from typing import Iterable

from .core_types import BinningMismatchError
from .record import EventMultiplicityRecord


def check_compatible(left: EventMultiplicityRecord, right: EventMultiplicityRecord) -> None:
    """Raise BinningMismatchError unless both records share one binning."""
    if not left.is_initialized or not right.is_initialized:
        raise BinningMismatchError(
            "Both records must be initialized before they can be combined",
            record_name=left.display_name(),
        )
    left_sig, right_sig = left.binning, right.binning
    if not left_sig.compatible_with(right_sig):
        raise BinningMismatchError(
            "Records have incompatible binning", left_sig, right_sig,
            record_name=left.display_name(),
        )


def merge_records(records: Iterable[EventMultiplicityRecord]) -> EventMultiplicityRecord:
    """
    Sum records into a fresh one; the inputs are left untouched.

    The result carries the first record's origin and eta axis, and the
    correction flags common to all inputs.
    """
    iterator = iter(records)
    try:
        first = next(iterator)
    except StopIteration:
        raise ValueError("merge_records() needs at least one record") from None
    if not first.is_initialized:
        raise BinningMismatchError(
            "Cannot merge uninitialized records", record_name=first.display_name()
        )

    total = EventMultiplicityRecord(simulated=first.simulated).initialize(first.eta_axis)
    total.set_corrected(first.correction_flags)
    total.merge(first)
    for record in iterator:
        check_compatible(total, record)
        total.merge(record)
    return total
