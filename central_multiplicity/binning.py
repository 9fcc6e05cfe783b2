"""Central multiplicity: binning
===============================
Axis definitions shared by every event record:
- EtaAxisSpec: pseudorapidity axis as chosen by the analysis configuration.
- AzimuthalBinning: the fixed azimuthal axis (20 bins over [0, 2pi)).
- BinningSignature: edge-level fingerprint used to refuse merging records
  that were initialized differently.

The azimuthal axis is never circular: circular axes carry no underflow cell,
and the phi-underflow row is where each event stores its eta acceptance.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, Union
import math

import numpy as np
import hist

ETA_AXIS_NAME = "eta"
PHI_AXIS_NAME = "phi"

# ============================================================================
# PSEUDORAPIDITY AXIS
# ============================================================================

@dataclass(frozen=True)
class EtaAxisSpec:
    """Pseudorapidity binning, either regular or with explicit edges."""
    nbins: int
    low: float
    high: float
    variable_edges: Optional[Tuple[float, ...]] = None

    def __post_init__(self):
        if int(self.nbins) != self.nbins or self.nbins <= 0:
            raise ValueError(f"Eta axis needs a positive number of bins, got {self.nbins!r}")
        if not (math.isfinite(self.low) and math.isfinite(self.high)):
            raise ValueError(f"Eta axis limits must be finite: [{self.low}, {self.high}]")
        if self.high <= self.low:
            raise ValueError(f"Eta axis upper edge {self.high} must exceed lower edge {self.low}")
        if self.variable_edges is not None:
            edges = np.asarray(self.variable_edges, dtype=float)
            if len(edges) != self.nbins + 1:
                raise ValueError(
                    f"Expected {self.nbins + 1} eta edges, got {len(edges)}"
                )
            if np.any(np.diff(edges) <= 0):
                raise ValueError("Eta edges must be strictly increasing")
            tolerance = 1e-12 * max(1.0, self.high - self.low)
            if abs(edges[0] - self.low) > tolerance or abs(edges[-1] - self.high) > tolerance:
                raise ValueError(
                    f"Eta edges span [{edges[0]}, {edges[-1]}] but limits are [{self.low}, {self.high}]"
                )

    @classmethod
    def from_edges(cls, edges: Sequence[float]) -> EtaAxisSpec:
        edges = tuple(float(e) for e in edges)
        if len(edges) < 2:
            raise ValueError("At least two eta edges are required")
        return cls(nbins=len(edges) - 1, low=edges[0], high=edges[-1], variable_edges=edges)

    @classmethod
    def from_axis(cls, axis: Any) -> EtaAxisSpec:
        """Build a spec from a hist / boost-histogram axis."""
        edges = np.asarray(axis.edges, dtype=float)
        spec = cls(nbins=len(edges) - 1, low=float(edges[0]), high=float(edges[-1]))
        if np.allclose(edges, spec.edges, rtol=0.0, atol=1e-12 * max(1.0, spec.width)):
            return spec
        return cls.from_edges(edges)

    @classmethod
    def coerce(cls, value: Union[EtaAxisSpec, Tuple[int, float, float], Any]) -> EtaAxisSpec:
        """Accept a spec, an ``(nbins, low, high)`` triple or an axis object."""
        if isinstance(value, cls):
            return value
        if hasattr(value, "edges"):
            return cls.from_axis(value)
        if isinstance(value, (tuple, list)) and len(value) == 3:
            nbins, low, high = value
            return cls(nbins=int(nbins), low=float(low), high=float(high))
        raise TypeError(f"Cannot interpret {value!r} as a pseudorapidity axis")

    @property
    def is_regular(self) -> bool:
        return self.variable_edges is None

    @property
    def width(self) -> float:
        return self.high - self.low

    @property
    def edges(self) -> np.ndarray:
        if self.variable_edges is not None:
            return np.asarray(self.variable_edges, dtype=float)
        return np.linspace(self.low, self.high, self.nbins + 1)

    @property
    def centers(self) -> np.ndarray:
        edges = self.edges
        return 0.5 * (edges[:-1] + edges[1:])

    def make_axis(self):
        if self.variable_edges is not None:
            return hist.axis.Variable(
                list(self.variable_edges), name=ETA_AXIS_NAME, label="η",
                underflow=True, overflow=True,
            )
        return hist.axis.Regular(
            self.nbins, self.low, self.high, name=ETA_AXIS_NAME, label="η",
            underflow=True, overflow=True,
        )


# ============================================================================
# AZIMUTHAL AXIS
# ============================================================================

@dataclass(frozen=True)
class AzimuthalBinning:
    """Azimuthal binning used by every record of a processing chain."""
    nbins: int = 20
    low: float = 0.0
    high: float = 2 * math.pi

    def __post_init__(self):
        if self.nbins <= 0:
            raise ValueError(f"Invalid azimuthal bin count: {self.nbins}")
        if self.high <= self.low:
            raise ValueError(f"Invalid azimuthal range: [{self.low}, {self.high}]")

    @property
    def period(self) -> float:
        return self.high - self.low

    @property
    def edges(self) -> np.ndarray:
        return np.linspace(self.low, self.high, self.nbins + 1)

    def wrap(self, phi):
        """Fold angles into [low, high)."""
        wrapped = np.mod(np.asarray(phi, dtype=float) - self.low, self.period) + self.low
        # np.mod can round up to exactly `high` for tiny negative inputs
        return np.where(wrapped >= self.high, self.low, wrapped)

    def make_axis(self):
        # Never circular: the underflow cell carries the acceptance row
        return hist.axis.Regular(
            self.nbins, self.low, self.high, name=PHI_AXIS_NAME, label="φ",
            underflow=True, overflow=True, circular=False,
        )


PHI_BINNING = AzimuthalBinning()


# ============================================================================
# BINNING SIGNATURE
# ============================================================================

@dataclass(frozen=True)
class BinningSignature:
    """Edges of both axes, compared with a tolerance scaled by the axis span."""
    eta_edges: Tuple[float, ...]
    phi_edges: Tuple[float, ...]

    TOLERANCE = 1e-12

    @classmethod
    def from_histogram(cls, h) -> BinningSignature:
        return cls(
            eta_edges=tuple(float(e) for e in h.axes[0].edges),
            phi_edges=tuple(float(e) for e in h.axes[1].edges),
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return len(self.eta_edges) - 1, len(self.phi_edges) - 1

    def compatible_with(self, other: BinningSignature) -> bool:
        if self.shape != other.shape:
            return False
        return (
            self._edges_match(self.eta_edges, other.eta_edges)
            and self._edges_match(self.phi_edges, other.phi_edges)
        )

    def _edges_match(self, mine, theirs) -> bool:
        mine = np.asarray(mine, dtype=float)
        span = max(1.0, mine[-1] - mine[0])
        return bool(np.allclose(mine, theirs, rtol=0.0, atol=self.TOLERANCE * span))

    def describe(self) -> str:
        n_eta, n_phi = self.shape
        return (
            f"eta: {n_eta} bins [{self.eta_edges[0]:g}, {self.eta_edges[-1]:g}], "
            f"phi: {n_phi} bins [{self.phi_edges[0]:g}, {self.phi_edges[-1]:g}]"
        )
