# Overview: Denomination ledger; turns note/coin counts into a total and a variance.

"""
Pure computation, no persistence.

Face values are whole rupees; totals and variances are returned in paise so
they line up with every other amount in the system.

Variance sign: positive = excess cash, negative = shortage.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from dsr.errors import ValidationError
from dsr.validation import coerce_int


# Indian currency, largest first (rupees)
INDIAN_DENOMINATIONS: tuple[int, ...] = (2000, 500, 200, 100, 50, 20, 10, 5, 2, 1)

PAISE_PER_RUPEE = 100


@dataclass(frozen=True)
class DenominationLine:
    face_value: int
    count: int

    @property
    def amount_paise(self) -> int:
        return self.face_value * self.count * PAISE_PER_RUPEE


@dataclass(frozen=True)
class DenominationTally:
    lines: tuple[DenominationLine, ...]
    total_paise: int
    expected_paise: Optional[int]
    variance_paise: Optional[int]

    @property
    def direction(self) -> str | None:
        return variance_direction(self.variance_paise)

    def counts(self) -> dict[int, int]:
        """Non-zero counts keyed by face value, for persistence."""
        return {line.face_value: line.count for line in self.lines if line.count}


def variance_direction(variance_paise: Optional[int]) -> str | None:
    if variance_paise is None:
        return None
    if variance_paise == 0:
        return "balanced"
    return "excess" if variance_paise > 0 else "shortage"


def tally(
    counts: Mapping[int, int],
    expected_paise: Optional[int] = None,
    denominations: Iterable[int] = INDIAN_DENOMINATIONS,
) -> DenominationTally:
    """
    total = sum(value * count); variance = total - expected when expected is given.

    Counts are assumed already validated (see parse_denominations); unset
    denominations count as zero. An all-zero count is a valid tally of 0.
    """
    lines = tuple(
        DenominationLine(face_value=value, count=int(counts.get(value, 0) or 0))
        for value in denominations
    )
    total = sum(line.amount_paise for line in lines)
    variance = total - expected_paise if expected_paise is not None else None
    return DenominationTally(
        lines=lines,
        total_paise=total,
        expected_paise=expected_paise,
        variance_paise=variance,
    )


def parse_denominations(
    raw: Mapping,
    denominations: Iterable[int] = INDIAN_DENOMINATIONS,
) -> dict[int, int]:
    """
    Validate client input: {"500": 3, "100": 2} -> {500: 3, 100: 2}.

    Rejects unknown face values, negative or non-integer counts.
    """
    if raw is None:
        raise ValidationError("denominations is required")
    if not isinstance(raw, Mapping):
        raise ValidationError("denominations must be an object of face value -> count")

    allowed = set(denominations)
    parsed: dict[int, int] = {}
    for key, value in raw.items():
        face_value = coerce_int(key, "denomination")
        if face_value not in allowed:
            raise ValidationError(f"Unknown denomination: {key}")
        if value is None:
            continue
        count = coerce_int(value, f"count for {face_value}")
        if count < 0:
            raise ValidationError(f"Count for {face_value} cannot be negative")
        parsed[face_value] = count
    return parsed
