"""Correction-state bits carried by each event record."""
from __future__ import annotations
from enum import IntFlag
from typing import Iterable, List, Union


class CorrectionFlag(IntFlag):
    """Corrections already applied to an event histogram.

    Bit positions match the persistent layout of the event record so that
    stored integer masks keep their meaning. Bits are independent.
    """
    NONE = 0
    SECONDARY = 1 << 14    # secondary-particle contamination maps applied
    ACCEPTANCE = 1 << 16   # acceptance correction applied to the histogram
    EMPIRICAL = 1 << 19    # eta-dependent empirical correction applied

    @classmethod
    def known(cls) -> CorrectionFlag:
        return cls.SECONDARY | cls.ACCEPTANCE | cls.EMPIRICAL

    @classmethod
    def from_value(cls, value: Union[int, str, CorrectionFlag, Iterable]) -> CorrectionFlag:
        """Parse an integer mask, a flag name, or an iterable of either."""
        if isinstance(value, CorrectionFlag):
            return value
        if isinstance(value, bool):
            raise TypeError("A bool is not a correction flag")
        if isinstance(value, int):
            if value & ~int(cls.known()):
                raise ValueError(f"Unknown correction bits in mask {value:#x}")
            return cls(value)
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown correction flag: {value!r}") from None
        try:
            items = iter(value)
        except TypeError:
            raise TypeError(f"Cannot interpret {value!r} as correction flags") from None
        result = cls.NONE
        for item in items:
            result |= cls.from_value(item)
        return result

    def names(self) -> List[str]:
        return [flag.name for flag in (CorrectionFlag.SECONDARY,
                                       CorrectionFlag.ACCEPTANCE,
                                       CorrectionFlag.EMPIRICAL)
                if self & flag]
