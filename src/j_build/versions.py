"""Maven version ordering and version ranges."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any

from j_build.exceptions import MalformedVersionError


SNAPSHOT_SUFFIX = "-SNAPSHOT"

_SEGMENT_RE = re.compile(r"[.\-]")


def is_snapshot(version: str | None) -> bool:
    return bool(version) and version.endswith(SNAPSHOT_SUFFIX)


def is_range(version: str | None) -> bool:
    return bool(version) and version[0] in "[("


# Appended to every key: a missing segment sorts above qualifiers and below numbers.
_END = (1, 0, "")


def _segment_key(segment: str) -> tuple[int, int, str]:
    # Alphabetic qualifiers order below numbers.
    if segment.isdigit():
        return (2, int(segment), "")
    return (0, 0, segment.lower())


def version_key(version: str | None) -> tuple[Any, ...]:
    """Return a sort key implementing the Maven-ish version order.

    Rules:
      - segments are split on `.` and `-`; numeric segments compare numerically
      - a missing segment is lower than a number (`1.0` < `1.0.1`) but higher
        than a qualifier (`2.0-beta-1` < `2.0`)
      - `X-SNAPSHOT` orders strictly below the release `X`
      - the raw string breaks remaining ties so the order stays total
    """
    if version is None:
        return ((), 0, "")
    base = version[: -len(SNAPSHOT_SUFFIX)] if is_snapshot(version) else version
    segments = tuple(_segment_key(s) for s in _SEGMENT_RE.split(base) if s) + (_END,)
    return (segments, 0 if is_snapshot(version) else 1, version)


def compare_version(a: str | None, b: str | None) -> int:
    """Compare two versions; returns a negative number, zero or a positive number."""
    ka, kb = version_key(a), version_key(b)
    return (ka > kb) - (ka < kb)


sort_key = cmp_to_key(compare_version)


@dataclass(frozen=True)
class VersionRange:
    """A single Maven version range such as `[1.0,2.0)`."""

    lower: str | None
    lower_inclusive: bool
    upper: str | None
    upper_inclusive: bool

    def contains(self, version: str) -> bool:
        if self.lower is not None:
            c = compare_version(version, self.lower)
            if c < 0 or (c == 0 and not self.lower_inclusive):
                return False
        if self.upper is not None:
            c = compare_version(version, self.upper)
            if c > 0 or (c == 0 and not self.upper_inclusive):
                return False
        return True


def parse_range(expression: str) -> list[VersionRange]:
    """Parse a Maven range expression like `[1.0,2.0),[3.0,)`.

    Raises:
        MalformedVersionError: If the expression is not a valid range.
    """
    text = expression.replace(" ", "")
    ranges: list[VersionRange] = []
    pos = 0
    while pos < len(text):
        if text[pos] == ",":
            pos += 1
            continue
        opener = text[pos]
        if opener not in "[(":
            raise MalformedVersionError(f"Invalid version range: {expression}")
        end = min(
            (i for i in (text.find("]", pos), text.find(")", pos)) if i >= 0),
            default=-1,
        )
        if end < 0:
            raise MalformedVersionError(f"Unterminated version range: {expression}")
        body = text[pos + 1 : end]
        closer = text[end]
        if "," in body:
            lower, _, upper = body.partition(",")
            if "," in upper:
                raise MalformedVersionError(f"Invalid version range: {expression}")
            ranges.append(
                VersionRange(
                    lower=lower or None,
                    lower_inclusive=opener == "[",
                    upper=upper or None,
                    upper_inclusive=closer == "]",
                )
            )
        else:
            if not body or opener != "[" or closer != "]":
                raise MalformedVersionError(f"Invalid version range: {expression}")
            ranges.append(VersionRange(body, True, body, True))
        pos = end + 1
    if not ranges:
        raise MalformedVersionError(f"Empty version range: {expression}")
    return ranges


def pick_version(expression: str, candidates: Iterable[str]) -> str | None:
    """Return the highest candidate matching the range `expression`, or None."""
    ranges = parse_range(expression)
    matching = [v for v in candidates if any(r.contains(v) for r in ranges)]
    if not matching:
        return None
    return max(matching, key=version_key)
