"""
Table identifier normalization for dbmerge.

Application frameworks store collection names in compact form
(``userRoles``) while the physical table may use the separated form
(``user_roles``) depending on how the database was created. Every name
compared against the catalog must go through the same conversion.
"""

import re
from enum import Enum
from typing import Iterable, List, Optional, Union


_UPPER = re.compile(r"(?<!^)[A-Z]")
_SEPARATED_LETTER = re.compile(r"_([A-Za-z])")


class NamingMode(str, Enum):
    """Conversion applied to a whole working set of table names."""

    TO_SEPARATED = "to_separated"
    TO_COMPACT = "to_compact"
    NONE = "none"

    @classmethod
    def from_underscored(cls, flag: Optional[Union[bool, str]]) -> "NamingMode":
        """Map a DB_UNDERSCORED style setting to a conversion mode."""
        if flag is True:
            return cls.TO_SEPARATED
        if flag is False:
            return cls.TO_COMPACT
        if isinstance(flag, str):
            lowered = flag.strip().lower()
            if lowered in ("true", "1", "yes"):
                return cls.TO_SEPARATED
            if lowered in ("false", "0", "no"):
                return cls.TO_COMPACT
        return cls.NONE


def to_separated(name: str) -> str:
    """``userRoles`` -> ``user_roles``."""
    return _UPPER.sub(lambda m: f"_{m.group(0).lower()}", name)


def to_compact(name: str) -> str:
    """``user_roles`` -> ``userRoles``."""
    return _SEPARATED_LETTER.sub(lambda m: m.group(1).upper(), name)


def normalize(name: str, mode: NamingMode) -> str:
    """Convert a table identifier according to ``mode``."""
    if not name:
        return name
    if mode == NamingMode.TO_SEPARATED:
        return to_separated(name)
    if mode == NamingMode.TO_COMPACT:
        return to_compact(name)
    return name


def normalize_all(names: Iterable[str], mode: NamingMode) -> List[str]:
    """Convert every name, preserving order and duplicates."""
    return [normalize(name, mode) for name in names]


def invert(mode: NamingMode) -> NamingMode:
    """Return the conversion that maps normalized names back."""
    if mode == NamingMode.TO_SEPARATED:
        return NamingMode.TO_COMPACT
    if mode == NamingMode.TO_COMPACT:
        return NamingMode.TO_SEPARATED
    return NamingMode.NONE
