"""
OS version helpers used to scope lookups to a distribution major version.

Both functions are pure. Major-version matching on packages follows the
Red Hat distro-tag convention (".el7", ".el8", ...).
"""
from typing import Iterable, List

from .dataset import Package


def major(os_version: str) -> str:
    """
    Reduce an OS version string to its major component.

    Examples:
        "7.2" -> "7", "7" -> "7", " 8.10 " -> "8", "" -> ""

    Surrounding whitespace is stripped; everything before the first "." is
    returned unchanged, so malformed input such as "abc" maps to itself.
    """
    return os_version.strip().split(".")[0]


def filter_by_major(packages: Iterable[Package], major_version: str) -> List[Package]:
    """
    Keep packages whose version carries the ".el<major>" distro tag.

    This is a substring match, not a version comparison. Input order is
    preserved.
    """
    tag = f".el{major_version}"
    return [p for p in packages if tag in p.version]
