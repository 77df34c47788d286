# src/chronoframe/errors.py
from __future__ import annotations

"""
Recoverable chronology errors.

Every class carries a stable `kind` string plus the offending identifiers, so a
caller (UI, batch runner, test) can point at the exact section / tie point /
interval that needs fixing. None of these are auto-corrected anywhere.
"""

from typing import Any, Optional, Tuple


class ChronologyError(ValueError):
    kind: str = "ChronologyError"

    def __init__(self, message: str, *, section_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.section_id = section_id


class InsufficientTiePoints(ChronologyError):
    kind = "InsufficientTiePoints"

    def __init__(self, section_id: Optional[str], n_tie_points: int, *, required: int = 2) -> None:
        super().__init__(
            f"Section {section_id!r} has {int(n_tie_points)} tie point(s); at least {int(required)} are required.",
            section_id=section_id,
        )
        self.n_tie_points = int(n_tie_points)
        self.required = int(required)


class NonMonotonicTiePoints(ChronologyError):
    kind = "NonMonotonicTiePoints"

    def __init__(self, section_id: Optional[str], first: Any, second: Any) -> None:
        super().__init__(
            f"Section {section_id!r}: tie points {first} and {second} are not strictly increasing "
            f"in both depth and age.",
            section_id=section_id,
        )
        self.first = first
        self.second = second

    @property
    def pair(self) -> Tuple[Any, Any]:
        return (self.first, self.second)


class InvalidDepthRange(ChronologyError):
    kind = "InvalidDepthRange"

    def __init__(
        self,
        section_id: Optional[str],
        tie_point: Any,
        depth_range: Optional[Tuple[float, float]],
    ) -> None:
        where = "section has no sample depths" if depth_range is None else f"sample depths span {depth_range}"
        super().__init__(
            f"Section {section_id!r}: tie point {tie_point} lies outside the section ({where}).",
            section_id=section_id,
        )
        self.tie_point = tie_point
        self.depth_range = depth_range


class NoVariance(ChronologyError):
    kind = "NoVariance"

    def __init__(self, series_label: str) -> None:
        super().__init__(f"Series {series_label!r} has zero variance; nothing to align.")
        self.series_label = str(series_label)


class NoAgeData(ChronologyError):
    kind = "NoAgeData"

    def __init__(self, section_id: Optional[str], detail: str = "no sample carries an age") -> None:
        super().__init__(f"Section {section_id!r}: {detail}.", section_id=section_id)
        self.detail = detail


class OverlappingCoverage(ChronologyError):
    kind = "OverlappingCoverage"

    def __init__(
        self,
        first_id: str,
        second_id: str,
        first_range: Tuple[float, float],
        second_range: Tuple[float, float],
    ) -> None:
        super().__init__(
            f"Coverage for {first_id!r} {first_range} overlaps coverage for {second_id!r} {second_range}."
        )
        self.first_id = first_id
        self.second_id = second_id
        self.first_range = first_range
        self.second_range = second_range

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.first_id, self.second_id)


class UnknownSection(ChronologyError):
    kind = "UnknownSection"

    def __init__(self, section_id: str) -> None:
        super().__init__(f"Unknown section {section_id!r}.", section_id=section_id)


class StaleAgeModel(ChronologyError):
    kind = "StaleAgeModel"

    def __init__(self, section_id: str, expected: str, found: str) -> None:
        super().__init__(
            f"Age model for section {section_id!r} changed during the computation "
            f"({expected[:10]} -> {found[:10]}); restart it.",
            section_id=section_id,
        )
        self.expected = expected
        self.found = found


class WorkflowStateError(RuntimeError):
    kind = "WorkflowStateError"


class AlignmentCancelled(RuntimeError):
    kind = "AlignmentCancelled"

    def __init__(self, run_id: int) -> None:
        super().__init__(f"Alignment run {int(run_id)} was cancelled or superseded.")
        self.run_id = int(run_id)
