"""Central multiplicity: per-event record
=======================================
EventMultiplicityRecord holds one event's d2N_ch/(deta dphi) histogram and
the bookkeeping of which corrections were applied to it.

ACCEPTANCE ENCODING
-------------------
The eta acceptance of the event is stored in the histogram itself, in the
phi-underflow cell of every regular eta bin (flow index ``[i_eta + 1, 0]``).
Those cells are not out-of-range fills. Summing many records bin-wise gives
the raw signal in the regular cells and, in the underflow row, the number of
events that accepted each eta bin: the two inputs of the final
normalization. Any refactoring of the accumulator must preserve this row.
"""
from __future__ import annotations
from typing import Any, Dict, Mapping, Optional, Sequence, Union
import warnings

import numpy as np
import polars as pl
import hist

from .binning import BinningSignature, EtaAxisSpec, PHI_BINNING
from .core_types import (
    BinningMismatchError, OriginMismatchError, RecordNotInitializedError,
)
from .flags import CorrectionFlag

DATA_NAME = "CentralClusters"
SIMULATED_NAME = "CentralClustersMC"
HISTOGRAM_NAME = "d2Ndetadphi"
HISTOGRAM_LABEL = "d²N_ch/dηdφ in the event"

SCHEMA_VERSION = 2
VERBOSITY_LEVELS = ("", "base", "range", "all")

# Index of the acceptance row along the phi axis in flow-inclusive views
ACCEPTANCE_PHI_INDEX = 0


class EventMultiplicityRecord:
    """
    Per-event charged-particle multiplicity density over (eta, phi).

    Lifecycle:
    ├── construct once, with the origin tag (simulated or real data)
    ├── initialize(eta_axis) fixes the binning; phi binning is fixed
    ├── per event: fill signal, mark acceptance, set correction flags
    └── clear_event() before the record is reused for the next event

    The acceptance of the event lives in the phi-underflow row of the
    histogram (see module docstring). Correction flags are independent bits
    and survive clear_event(); only the flag setters change them.

    A record has exactly one owner at a time. Parallel workers each hold
    their own record and combine them afterwards with merge().
    """

    def __init__(self, simulated: bool = False):
        self._simulated = bool(simulated)
        self._hist: Optional[hist.Hist] = None
        self._eta_spec: Optional[EtaAxisSpec] = None
        self._flags = CorrectionFlag.NONE

    @classmethod
    def create(cls, simulated: bool = False) -> EventMultiplicityRecord:
        return cls(simulated=simulated)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def simulated(self) -> bool:
        return self._simulated

    @property
    def is_initialized(self) -> bool:
        return self._hist is not None

    @property
    def eta_axis(self) -> Optional[EtaAxisSpec]:
        return self._eta_spec

    @property
    def binning(self) -> BinningSignature:
        return BinningSignature.from_histogram(self._require_histogram("read the binning of"))

    def initialize(self, eta_axis: Union[EtaAxisSpec, tuple, Any]) -> EventMultiplicityRecord:
        """
        Define the (eta, phi) binning and allocate an empty histogram.

        Args:
            eta_axis: EtaAxisSpec, ``(nbins, low, high)`` or a hist axis

        Any previous binning and content is discarded.
        """
        spec = EtaAxisSpec.coerce(eta_axis)
        self._hist = hist.Hist(
            spec.make_axis(),
            PHI_BINNING.make_axis(),
            storage=hist.storage.Weight(),
            name=HISTOGRAM_NAME,
            label=HISTOGRAM_LABEL,
        )
        self._eta_spec = spec
        return self

    def get_histogram(self) -> hist.Hist:
        """Live accumulator; fills through it are the caller's to route."""
        return self._require_histogram("access")

    @property
    def histogram(self) -> hist.Hist:
        return self.get_histogram()

    def clear_event(self) -> None:
        """Zero every cell, acceptance row included. Binning and origin stay."""
        if self._hist is None:
            return
        self._hist.reset()

    def _require_histogram(self, operation: str) -> hist.Hist:
        if self._hist is None:
            raise RecordNotInitializedError(self.display_name(), operation)
        return self._hist

    # ------------------------------------------------------------------
    # Filling
    # ------------------------------------------------------------------

    def fill_signal(self, eta, phi, weight=1.0) -> None:
        """
        Deposit density contributions in the regular (eta, phi) cells.

        Phi is folded into [0, 2pi) first so that a signal fill can never
        land in the acceptance row. Eta outside the axis goes to the eta
        flow cells, which are not read back as signal.
        """
        h = self._require_histogram("fill")
        eta, phi = np.broadcast_arrays(
            np.atleast_1d(np.asarray(eta, dtype=float)),
            np.atleast_1d(PHI_BINNING.wrap(phi)),
        )
        h.fill(eta, phi, weight=weight)

    def mark_acceptance(self, eta_low: Optional[float] = None,
                        eta_high: Optional[float] = None,
                        value: float = 1.0) -> int:
        """
        Record that eta bins with centres in [eta_low, eta_high] were accepted.

        Returns:
            Number of eta bins marked
        """
        h = self._require_histogram("mark acceptance in")
        centers = self._eta_spec.centers
        selected = np.ones(len(centers), dtype=bool)
        if eta_low is not None:
            selected &= centers >= eta_low
        if eta_high is not None:
            selected &= centers <= eta_high
        self._check_acceptance_value(value)

        cells = h.view(flow=True)
        rows = np.flatnonzero(selected) + 1
        cells.value[rows, ACCEPTANCE_PHI_INDEX] = value
        cells.variance[rows, ACCEPTANCE_PHI_INDEX] = value * value
        return int(selected.sum())

    def set_acceptance(self, values: Sequence[float]) -> None:
        """Overwrite the whole acceptance row, one entry per eta bin."""
        h = self._require_histogram("set acceptance in")
        values = np.asarray(values, dtype=float)
        n_eta = self._eta_spec.nbins
        if values.shape != (n_eta,):
            raise ValueError(f"Expected {n_eta} acceptance values, got shape {values.shape}")
        if np.any(values < 0) or not np.all(np.isfinite(values)):
            warnings.warn(f"{self.display_name()}: acceptance row contains negative or non-finite values")

        cells = h.view(flow=True)
        cells.value[1:-1, ACCEPTANCE_PHI_INDEX] = values
        cells.variance[1:-1, ACCEPTANCE_PHI_INDEX] = values * values

    def _check_acceptance_value(self, value: float) -> None:
        if not np.isfinite(value) or value < 0:
            warnings.warn(f"{self.display_name()}: unusual acceptance value {value!r}")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def signal_values(self) -> np.ndarray:
        """Regular cells only, shape (n_eta, n_phi)."""
        h = self._require_histogram("read")
        return np.array(h.values(flow=True)[1:-1, 1:-1], copy=True)

    def signal_variances(self) -> np.ndarray:
        h = self._require_histogram("read")
        return np.array(h.variances(flow=True)[1:-1, 1:-1], copy=True)

    def acceptance_values(self) -> np.ndarray:
        """Acceptance row, one entry per regular eta bin."""
        h = self._require_histogram("read")
        return np.array(h.values(flow=True)[1:-1, ACCEPTANCE_PHI_INDEX], copy=True)

    def signal_sum(self) -> float:
        return float(self.signal_values().sum())

    def acceptance_sum(self) -> float:
        return float(self.acceptance_values().sum())

    # ------------------------------------------------------------------
    # Correction flags
    # ------------------------------------------------------------------

    @property
    def correction_flags(self) -> CorrectionFlag:
        return self._flags

    def set_corrected(self, flag: Union[CorrectionFlag, int, str], applied: bool = True) -> None:
        flag = CorrectionFlag.from_value(flag)
        if applied:
            self._flags |= flag
        else:
            self._flags &= ~flag

    def clear_corrections(self) -> None:
        self._flags = CorrectionFlag.NONE

    def is_secondary_corrected(self) -> bool:
        return bool(self._flags & CorrectionFlag.SECONDARY)

    def is_acceptance_corrected(self) -> bool:
        return bool(self._flags & CorrectionFlag.ACCEPTANCE)

    def is_empirical_corrected(self) -> bool:
        return bool(self._flags & CorrectionFlag.EMPIRICAL)

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge(self, other: EventMultiplicityRecord) -> EventMultiplicityRecord:
        """
        Add another record bin-wise into this one, acceptance row included.

        Raises:
            BinningMismatchError: either record uninitialized or binnings differ
            OriginMismatchError: simulated merged with real data

        The merged flags are those set on both records.
        """
        if other._simulated != self._simulated:
            raise OriginMismatchError(
                f"Cannot merge {other.display_name()} into {self.display_name()}",
                record_name=self.display_name(),
            )
        if self._hist is None or other._hist is None:
            raise BinningMismatchError(
                "Cannot merge uninitialized records", record_name=self.display_name()
            )
        left, right = self.binning, other.binning
        if not left.compatible_with(right):
            raise BinningMismatchError(
                "Refusing to merge records with different binning", left, right,
                record_name=self.display_name(),
            )
        if other._flags != self._flags:
            warnings.warn(
                f"Merging records with different corrections "
                f"({self._flags.names()} vs {other._flags.names()}); keeping the common ones",
                RuntimeWarning,
            )

        # Regular and Variable axes with equal edges are not addable through hist
        mine = self._hist.view(flow=True)
        theirs = other._hist.view(flow=True)
        mine.value[...] += theirs.value
        mine.variance[...] += theirs.variance
        self._flags &= other._flags
        return self

    def __iadd__(self, other: EventMultiplicityRecord) -> EventMultiplicityRecord:
        return self.merge(other)

    # ------------------------------------------------------------------
    # Naming and inspection
    # ------------------------------------------------------------------

    def display_name(self) -> str:
        return SIMULATED_NAME if self._simulated else DATA_NAME

    @property
    def name(self) -> str:
        return self.display_name()

    def is_folder(self) -> bool:
        return True

    def browse(self) -> Dict[str, Any]:
        return {
            'histogram': self._hist,
            'correction_flags': self._flags,
            'simulated': self._simulated,
        }

    def describe_contents(self, verbosity: str = "") -> str:
        """
        Human-readable summary for logs and browsers.

        Verbosity:
            "" / "base": header plus the accumulator's own representation
            "range": header plus a table of non-empty cells
            "all": header plus a table of every regular and acceptance cell
        """
        level = (verbosity or "").strip().lower()
        if level not in VERBOSITY_LEVELS:
            raise ValueError(f"Unknown verbosity {verbosity!r}, expected one of {VERBOSITY_LEVELS}")

        origin = "simulated" if self._simulated else "real data"
        flags = ", ".join(self._flags.names()) or "none"
        lines = [f"{self.display_name()} ({origin})", f"  corrections: {flags}"]
        if self._hist is None:
            lines.append("  histogram: uninitialized")
            return "\n".join(lines)

        lines.append(f"  binning: {self.binning.describe()}")
        lines.append(f"  signal sum: {self.signal_sum():g}, acceptance sum: {self.acceptance_sum():g}")
        if level in ("", "base"):
            lines.append(f"  {self._hist!r}")
            return "\n".join(lines)

        frame = self.to_frame()
        if level == "range":
            frame = frame.filter((pl.col("value") != 0) | (pl.col("variance") != 0))
        with pl.Config(tbl_rows=-1, tbl_cols=-1):
            lines.append(str(frame))
        return "\n".join(lines)

    def to_frame(self) -> pl.DataFrame:
        """
        One row per regular cell plus one per acceptance cell.

        Acceptance rows have ``is_acceptance`` set and phi_bin = -1.
        """
        h = self._require_histogram("export")
        eta_edges = np.asarray(h.axes[0].edges)
        phi_edges = np.asarray(h.axes[1].edges)
        n_eta, n_phi = len(eta_edges) - 1, len(phi_edges) - 1
        values = h.values(flow=True)
        variances = h.variances(flow=True)

        eta_idx, phi_idx = np.meshgrid(np.arange(n_eta), np.arange(n_phi), indexing='ij')
        eta_idx, phi_idx = eta_idx.ravel(), phi_idx.ravel()
        acc_idx = np.arange(n_eta)

        return pl.DataFrame({
            'eta_bin': np.concatenate([eta_idx, acc_idx]),
            'phi_bin': np.concatenate([phi_idx, np.full(n_eta, -1)]),
            'eta_low': np.concatenate([eta_edges[eta_idx], eta_edges[acc_idx]]),
            'eta_high': np.concatenate([eta_edges[eta_idx + 1], eta_edges[acc_idx + 1]]),
            'phi_low': np.concatenate([phi_edges[phi_idx], np.full(n_eta, np.nan)]),
            'phi_high': np.concatenate([phi_edges[phi_idx + 1], np.full(n_eta, np.nan)]),
            'value': np.concatenate([values[1:-1, 1:-1].ravel(), values[1:-1, ACCEPTANCE_PHI_INDEX]]),
            'variance': np.concatenate([variances[1:-1, 1:-1].ravel(), variances[1:-1, ACCEPTANCE_PHI_INDEX]]),
            'is_acceptance': np.concatenate([np.zeros(n_eta * n_phi, dtype=bool), np.ones(n_eta, dtype=bool)]),
        })

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'schema_version': SCHEMA_VERSION,
            'name': self.display_name(),
            'simulated': self._simulated,
            'correction_flags': int(self._flags),
            'eta': None,
            'phi': {'nbins': PHI_BINNING.nbins, 'low': PHI_BINNING.low, 'high': PHI_BINNING.high},
            'values': None,
            'variances': None,
        }
        if self._hist is not None:
            spec = self._eta_spec
            payload['eta'] = {
                'nbins': spec.nbins,
                'low': spec.low,
                'high': spec.high,
                'edges': list(spec.variable_edges) if spec.variable_edges is not None else None,
            }
            payload['values'] = self._hist.values(flow=True).tolist()
            payload['variances'] = self._hist.variances(flow=True).tolist()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> EventMultiplicityRecord:
        version = payload.get('schema_version')
        if version != SCHEMA_VERSION:
            raise ValueError(f"Unsupported record schema version: {version!r}")

        record = cls(simulated=bool(payload.get('simulated', False)))
        record.set_corrected(CorrectionFlag.from_value(int(payload.get('correction_flags', 0))))

        phi = payload.get('phi') or {}
        if (phi.get('nbins', PHI_BINNING.nbins) != PHI_BINNING.nbins
                or not np.isclose(phi.get('low', PHI_BINNING.low), PHI_BINNING.low)
                or not np.isclose(phi.get('high', PHI_BINNING.high), PHI_BINNING.high)):
            raise BinningMismatchError(
                f"Stored azimuthal binning {phi} differs from {PHI_BINNING}",
                record_name=record.display_name(),
            )

        eta = payload.get('eta')
        if eta is None:
            return record
        if eta.get('edges') is not None:
            record.initialize(EtaAxisSpec.from_edges(eta['edges']))
        else:
            record.initialize(EtaAxisSpec(int(eta['nbins']), float(eta['low']), float(eta['high'])))

        cells = record._hist.view(flow=True)
        values = np.asarray(payload['values'], dtype=float)
        variances = np.asarray(payload['variances'], dtype=float)
        if values.shape != cells.shape or variances.shape != cells.shape:
            raise ValueError(
                f"Stored cell arrays {values.shape}/{variances.shape} do not match binning {cells.shape}"
            )
        cells.value[...] = values
        cells.variance[...] = variances
        return record

    def __repr__(self) -> str:
        if self._eta_spec is None:
            binning = "uninitialized"
        else:
            binning = f"eta={self._eta_spec.nbins}x[{self._eta_spec.low:g}, {self._eta_spec.high:g}]"
        return (f"EventMultiplicityRecord(name={self.display_name()!r}, {binning}, "
                f"flags={self._flags.names()})")
