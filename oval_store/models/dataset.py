"""
In-memory shape of one ingested OVAL advisory dataset.

The aggregate is a tree:

    Root
     └── Definition
          ├── Advisory
          │    ├── Cve
          │    ├── Bugzilla
          │    └── Cpe
          ├── Package (affected packages)
          └── Reference

A fetcher builds the tree with all surrogate ids left as None. The store
assigns ids (and parent ids) when the tree is inserted, and returns fully
populated trees from lookups.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class Family(Enum):
    """OS family a dataset belongs to."""
    REDHAT = "RedHat"
    DEBIAN = "Debian"
    UBUNTU = "Ubuntu"
    ORACLE = "Oracle"
    SUSE = "SUSE"
    ALPINE = "Alpine"

    @classmethod
    def parse(cls, value: str) -> "Family":
        """
        Resolve a family from its stored value or member name, ignoring case.

        Raises:
            ValueError: If the name matches no known family
        """
        needle = value.strip().lower()
        for member in cls:
            if needle in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(f"Unknown OS family: {value}")


@dataclass
class FetchMeta:
    """Freshness stamp for one source file."""
    file_name: str
    timestamp: datetime
    id: Optional[int] = None


@dataclass
class Cve:
    cve_id: str
    cvss2: Optional[str] = None
    cvss3: Optional[str] = None
    cwe: Optional[str] = None
    impact: Optional[str] = None
    href: Optional[str] = None
    public: Optional[str] = None
    id: Optional[int] = None
    advisory_id: Optional[int] = None


@dataclass
class Bugzilla:
    url: str
    title: Optional[str] = None
    id: Optional[int] = None
    advisory_id: Optional[int] = None


@dataclass
class Cpe:
    name: str
    id: Optional[int] = None
    advisory_id: Optional[int] = None


@dataclass
class Advisory:
    """
    Advisory metadata for a definition.

    severity/issued/updated are carried through opaquely.
    """
    severity: Optional[str] = None
    issued: Optional[datetime] = None
    updated: Optional[datetime] = None
    cves: List[Cve] = field(default_factory=list)
    bugzillas: List[Bugzilla] = field(default_factory=list)
    affected_cpe_list: List[Cpe] = field(default_factory=list)
    id: Optional[int] = None
    definition_id: Optional[int] = None


@dataclass
class Package:
    """Affected package. version encodes the distro major, e.g. 1.2.3.el7."""
    name: str
    version: str = ""
    not_fixed_yet: bool = False
    id: Optional[int] = None
    definition_id: Optional[int] = None


@dataclass
class Reference:
    source: Optional[str] = None
    ref_id: Optional[str] = None
    ref_url: Optional[str] = None
    id: Optional[int] = None
    definition_id: Optional[int] = None


@dataclass
class Definition:
    """One vulnerability entry within a dataset."""
    definition_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    advisory: Advisory = field(default_factory=Advisory)
    affected_packs: List[Package] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)
    id: Optional[int] = None
    root_id: Optional[int] = None


@dataclass
class Root:
    """One dataset for a (family, os_version) pair."""
    family: Family
    os_version: str
    timestamp: Optional[datetime] = None
    definitions: List[Definition] = field(default_factory=list)
    id: Optional[int] = None
