"""
Dataset aggregate and version helpers for the OVAL advisory store.

Main exports:
- Root, Definition, Advisory, Cve, Bugzilla, Cpe, Package, Reference:
  the nested advisory aggregate
- FetchMeta: freshness stamp of an ingested source file
- Family: supported OS families
- major, filter_by_major: OS major-version helpers
"""
from .dataset import (
    Advisory,
    Bugzilla,
    Cpe,
    Cve,
    Definition,
    Family,
    FetchMeta,
    Package,
    Reference,
    Root,
)
from .version import filter_by_major, major

__all__ = [
    "Advisory",
    "Bugzilla",
    "Cpe",
    "Cve",
    "Definition",
    "Family",
    "FetchMeta",
    "Package",
    "Reference",
    "Root",
    "filter_by_major",
    "major",
]
