"""Ordering of Jira release names and derivation of primary/backport releases.

Release names are compared token by token (split on ``.``, ``-`` and
space). Numeric tokens compare as integers; ``GA``/``RELEASE``/``FINAL``
count as an absent token; any other token maps to a fixed ordinal far below
every number, computed from its characters so the result is the same on
every run. This places ``4.0 M1`` < ``4.0 RC1`` < ``4.0`` < ``4.0.1``.
"""

from __future__ import annotations

import enum
import functools
import re
from typing import TYPE_CHECKING, Final, NamedTuple

if TYPE_CHECKING:
    from collections.abc import Iterable

_TOKEN_SEPARATOR: Final = re.compile(r"[. -]")
_PRERELEASE_TOKEN: Final = re.compile(r"^(M|RC)\d+$", re.IGNORECASE)
_GA_TOKENS: Final = frozenset({"ga", "release", "final"})
_NON_NUMERIC_BASE: Final = -(2**31)


class PrereleasePolicy(enum.Enum):
    """How a pre-release (``M1``, ``RC2``...) at the head of an issue's releases is treated."""

    GA_PRIMARY = "ga-primary"
    """Skip a leading pre-release when the issue has other releases; the newest GA release is primary."""
    ANY_PRIMARY = "any-primary"
    """The newest release is primary even if it is a pre-release."""


class ReleaseSplit(NamedTuple):
    primary: str | None
    backports: tuple[str, ...]


def _token_value(token: str) -> int:
    if token.isdigit():
        return int(token)
    if not token or token.lower() in _GA_TOKENS:
        return 0
    return _NON_NUMERIC_BASE + sum(ord(c) for c in token)


def _tokens(name: str) -> list[int]:
    return [_token_value(t) for t in _TOKEN_SEPARATOR.split(name.strip())]


def compare_releases(lhs: str, rhs: str) -> int:
    """Compare two release names; negative if ``lhs`` is newer (sorts first)."""
    lhs_parts = _tokens(lhs)
    rhs_parts = _tokens(rhs)
    for i in range(max(len(lhs_parts), len(rhs_parts))):
        left = lhs_parts[i] if i < len(lhs_parts) else 0
        right = rhs_parts[i] if i < len(rhs_parts) else 0
        if left != right:
            return -1 if left > right else 1
    return 0


def sort_releases(names: Iterable[str]) -> list[str]:
    """Sort release names newest first. Equal names keep their input order."""
    return sorted(names, key=functools.cmp_to_key(compare_releases))


def is_prerelease(name: str) -> bool:
    """Return True for milestone and release-candidate names such as ``5.1 RC2``."""
    return any(_PRERELEASE_TOKEN.match(token) for token in _TOKEN_SEPARATOR.split(name.strip()))


def split_releases(names: Iterable[str], policy: PrereleasePolicy = PrereleasePolicy.GA_PRIMARY) -> ReleaseSplit:
    """Derive the primary release and the backport releases of an issue.

    Pre-releases never become backports under either policy.

    >>> split_releases(["5.1-RC2", "5.0.9", "4.3.19"])
    ReleaseSplit(primary='5.0.9', backports=('4.3.19',))
    >>> split_releases(["5.1-RC2", "5.0.9", "4.3.19"], PrereleasePolicy.ANY_PRIMARY)
    ReleaseSplit(primary='5.1-RC2', backports=('5.0.9', '4.3.19'))
    """
    ordered = sort_releases(dict.fromkeys(names))
    if policy is PrereleasePolicy.GA_PRIMARY and len(ordered) > 1 and is_prerelease(ordered[0]):
        ordered = ordered[1:]
    if not ordered:
        return ReleaseSplit(None, ())
    backports = tuple(name for name in ordered[1:] if not is_prerelease(name))
    return ReleaseSplit(ordered[0], backports)
