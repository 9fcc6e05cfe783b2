"""Central multiplicity: capability protocols
===========================================
Persistence and inspection tooling talk to records through these two
protocols instead of a framework base class.
"""
from __future__ import annotations
from typing import Any, Dict, Mapping, Protocol, runtime_checkable


@runtime_checkable
class Serializable(Protocol):
    """Full-state round trip through plain Python containers."""

    def to_dict(self) -> Dict[str, Any]:
        ...

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Serializable:
        ...


@runtime_checkable
class Inspectable(Protocol):
    """Hooks used by browsers and loggers."""

    def display_name(self) -> str:
        ...

    def describe_contents(self, verbosity: str = "") -> str:
        ...

    def is_folder(self) -> bool:
        ...

    def browse(self) -> Mapping[str, Any]:
        ...
