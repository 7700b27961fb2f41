"""IDE build number utilities.

Build numbers look like ``RM-252.23892.415``: an optional product code prefix
followed by up to three dot-separated components. A ``*`` component is an
open-ended wildcard that compares greater than any concrete number.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from functools import total_ordering

# Sentinel for "*" components; equal only to itself, greater than any int
WILDCARD = math.inf

Component = int | float

_PRODUCT_PREFIX = re.compile(r"^(?P<code>[A-Z]{2,})-")
_LEADING_DIGITS = re.compile(r"^\d+")


def _parse_component(part: str, leading: bool = False) -> Component:
    part = part.strip()
    if part == "*":
        return WILDCARD
    match = _LEADING_DIGITS.match(part)
    if match:
        return int(match.group(0))
    # Only the branch number must be numeric; "252.SNAPSHOT" is 252.0.0
    if leading:
        raise ValueError(f"Invalid build component: {part!r}")
    return 0


@total_ordering
@dataclass(frozen=True)
class BuildNumber:
    """A parsed IDE build number.

    Ordering only considers the numeric components; the product code is kept
    for display.
    """

    components: tuple[Component, Component, Component]
    product_code: str | None = None

    @classmethod
    def parse(cls, build_str: str | None) -> BuildNumber:
        """Parse a build string.

        Args:
            build_str: Build string (e.g., "RM-252.23892.415", "252.*", "242")

        Returns:
            BuildNumber instance

        Raises:
            ValueError: If the string is empty or the first component is not numeric
        """
        if build_str is None or not build_str.strip():
            raise ValueError("Empty build number")

        core = build_str.strip()
        product_code = None
        match = _PRODUCT_PREFIX.match(core)
        if match:
            product_code = match.group("code")
            core = core[match.end() :]

        raw = core.split(".")
        while len(raw) > 1 and not raw[-1].strip():
            raw.pop()
        parts = [_parse_component(p, leading=(i == 0)) for i, p in enumerate(raw[:3])]
        # "252.*" is open-ended: pad after a wildcard with wildcards
        filler = WILDCARD if parts[-1] == WILDCARD else 0
        while len(parts) < 3:
            parts.append(filler)

        return cls(components=(parts[0], parts[1], parts[2]), product_code=product_code)

    @classmethod
    def zero(cls) -> BuildNumber:
        return cls(components=(0, 0, 0))

    @classmethod
    def unbounded(cls) -> BuildNumber:
        return cls(components=(WILDCARD, WILDCARD, WILDCARD))

    def __str__(self) -> str:
        parts = ".".join("*" if c == WILDCARD else str(c) for c in self.components)
        if self.product_code:
            return f"{self.product_code}-{parts}"
        return parts

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BuildNumber):
            return NotImplemented
        return self.components == other.components

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, BuildNumber):
            return NotImplemented
        return self.components < other.components

    def __hash__(self) -> int:
        return hash(self.components)


def parse_build(build_str: str | None) -> BuildNumber | None:
    """Parse a build string, returning None if it cannot be parsed."""
    try:
        return BuildNumber.parse(build_str)
    except ValueError:
        return None


@dataclass(frozen=True)
class CompatibilityRange:
    """Inclusive ``[since, until]`` interval of builds a plugin supports.

    The raw attribute values are kept so listings can show exactly what the
    manifest declared. A bound that is present but cannot be parsed makes the
    range reject every build.
    """

    since: str | None = None
    until: str | None = None

    @classmethod
    def from_bounds(cls, since: str | None, until: str | None) -> CompatibilityRange:
        return cls(since=since or None, until=until or None)

    def _bound(self, value: str | None, default: BuildNumber) -> BuildNumber | None:
        if value is None or not value.strip():
            return default
        return parse_build(value)

    @property
    def lower(self) -> BuildNumber | None:
        return self._bound(self.since, BuildNumber.zero())

    @property
    def upper(self) -> BuildNumber | None:
        return self._bound(self.until, BuildNumber.unbounded())

    def contains(self, build: BuildNumber | str | None) -> bool:
        """Check whether a build falls inside this range.

        Args:
            build: Build to check (parsed or raw string)

        Returns:
            True if compatible; False if not, or if anything is unparseable
        """
        if not isinstance(build, BuildNumber):
            build = parse_build(build)
        lower, upper = self.lower, self.upper
        if build is None or lower is None or upper is None:
            return False
        return lower <= build <= upper

    def __str__(self) -> str:
        return f"[since={self.since or '-'} until={self.until or '-'}]"


def in_range(
    build: BuildNumber | str | None,
    since: str | None = None,
    until: str | None = None,
) -> bool:
    """Check if a build is within ``[since, until]``.

    Missing bounds default to 0.0.0 and *.*.*; an unparseable build is never
    in range.
    """
    return CompatibilityRange.from_bounds(since, until).contains(build)
