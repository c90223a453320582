from __future__ import annotations
from decimal import Decimal
from typing import Tuple

# (inclusive upper bound on student_count, coefficient); None = no upper bound
CLASS_SIZE_TIERS: Tuple[Tuple[int | None, Decimal], ...] = (
    (30, Decimal("1.0")),
    (50, Decimal("1.1")),
    (70, Decimal("1.2")),
    (100, Decimal("1.3")),
    (None, Decimal("1.4")),
)


def class_coefficient_for(student_count: int) -> Decimal:
    """Class-size coefficient for a head count, from CLASS_SIZE_TIERS."""
    count = int(student_count or 0)
    if count < 0:
        raise ValueError("student_count must be >= 0")
    for upper, coefficient in CLASS_SIZE_TIERS:
        if upper is None or count <= upper:
            return coefficient
    return CLASS_SIZE_TIERS[-1][1]
