"""
Per-assignment valuation.

Everything here is pure: inputs are plain values, nothing touches the
session. Periods are exact fractions until the very end, and each line is
rounded exactly once (ROUND_HALF_UP) to whole minor currency units.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, localcontext
from fractions import Fraction
from typing import Optional, Tuple

from teachpay_api.common.errors import RateNotFoundError

MINUTES_PER_HOUR = 60
HOUR_KINDS = ("lecture", "practice", "lab", "other")
LINE_ORDER = ("base", "overtime", "holiday", "bonus", "allowance", "deduction")

Q2 = Decimal("0.01")
Q4 = Decimal("0.0001")
Q6 = Decimal("0.000001")


def _frac(x) -> Fraction:
    if x is None:
        return Fraction(0)
    if isinstance(x, Fraction):
        return x
    return Fraction(Decimal(str(x)))


def round_half_up(value: Fraction) -> int:
    """Round an exact amount to an integer, halves away from zero."""
    with localcontext() as ctx:
        ctx.prec = 60
        d = Decimal(value.numerator) / Decimal(value.denominator)
        return int(d.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_decimal(value: Fraction, q: Decimal = Q4) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 60
        return (Decimal(value.numerator) / Decimal(value.denominator)).quantize(q, rounding=ROUND_HALF_UP)


def frac_str(value: Fraction) -> str:
    return str(value.numerator) if value.denominator == 1 else f"{value.numerator}/{value.denominator}"


# ---------------- inputs ----------------

@dataclass(frozen=True)
class AssignmentWorkload:
    assignment_id: int
    class_id: int
    subject_id: int
    period_minutes: int
    valuation_date: date
    lecture_hours: Decimal = Decimal("0")
    practice_hours: Decimal = Decimal("0")
    lab_hours: Decimal = Decimal("0")
    other_hours: Decimal = Decimal("0")
    holiday_hours: Decimal = Decimal("0")
    student_count: int = 0
    credits: Decimal = Decimal("0")

    @classmethod
    def from_assignment(cls, a, valuation_date: date) -> "AssignmentWorkload":
        klass = a.klass
        subject = klass.subject
        return cls(
            assignment_id=a.id,
            class_id=klass.id,
            subject_id=subject.id,
            period_minutes=int(subject.period_minutes or 50),
            valuation_date=valuation_date,
            lecture_hours=Decimal(str(a.lecture_hours or 0)),
            practice_hours=Decimal(str(a.practice_hours or 0)),
            lab_hours=Decimal(str(a.lab_hours or 0)),
            other_hours=Decimal(str(a.other_hours or 0)),
            holiday_hours=Decimal(str(a.holiday_hours or 0)),
            student_count=int(klass.student_count or 0),
            credits=Decimal(str(subject.credits or 0)),
        )

    def periods(self, hours) -> Fraction:
        if self.period_minutes <= 0:
            raise ValueError("period_minutes must be > 0")
        return _frac(hours) * MINUTES_PER_HOUR / self.period_minutes

    @property
    def teaching_hours(self) -> Decimal:
        return sum((getattr(self, f"{k}_hours") for k in HOUR_KINDS), Decimal("0"))

    @property
    def total_periods(self) -> Fraction:
        return sum((self.periods(getattr(self, f"{k}_hours")) for k in HOUR_KINDS), Fraction(0))

    @property
    def holiday_periods(self) -> Fraction:
        return self.periods(self.holiday_hours)


@dataclass(frozen=True)
class RatePart:
    """A resolved amount (or coefficient) with the record it came from."""
    value: Decimal       # or an exact Fraction for derived rates
    ref: str
    formula_type: str = "per_period"


@dataclass(frozen=True)
class ResolvedRates:
    period_rate: RatePart
    degree: RatePart
    subject: RatePart
    klass: RatePart
    overtime: Optional[RatePart] = None
    holiday: Optional[RatePart] = None
    bonus: Optional[RatePart] = None
    allowance: Optional[RatePart] = None

    @property
    def coefficient(self) -> Fraction:
        return _frac(self.degree.value) * _frac(self.subject.value) * _frac(self.klass.value)

    @property
    def coefficient_refs(self) -> list:
        return [self.degree.ref, self.subject.ref, self.klass.ref]


# ---------------- outputs ----------------

@dataclass(frozen=True)
class ValuationLine:
    assignment_id: Optional[int]
    kind: str
    quantity: Fraction
    unit_rate: Decimal
    coefficient: Fraction
    rate_ref: Optional[str]
    amount: int
    trace: dict = field(default_factory=dict, compare=False)

    @property
    def sort_key(self) -> Tuple[int, int, str]:
        # teacher-level lines (deductions) go last
        aid = self.assignment_id if self.assignment_id is not None else 2 ** 62
        return (aid, LINE_ORDER.index(self.kind), self.rate_ref or "")

    def canonical(self) -> dict:
        return {
            "assignmentId": self.assignment_id,
            "kind": self.kind,
            "quantity": frac_str(self.quantity),
            "unitRate": str(self.unit_rate),
            "coefficient": frac_str(self.coefficient),
            "rateRef": self.rate_ref,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class AssignmentValuation:
    assignment_id: int
    teaching_hours: Decimal
    total_periods: Fraction
    base_periods: Fraction
    overtime_periods: Fraction
    holiday_periods: Fraction
    student_count: int
    credits: Decimal
    lines: Tuple[ValuationLine, ...]

    def amount_of(self, kind: str) -> int:
        return sum(l.amount for l in self.lines if l.kind == kind)

    @property
    def core_amount(self) -> int:
        return self.amount_of("base") + self.amount_of("overtime") + self.amount_of("holiday")

    @property
    def total_amount(self) -> int:
        return self.core_amount + self.amount_of("bonus") + self.amount_of("allowance")


# ---------------- valuation ----------------

def _line(workload: AssignmentWorkload, kind: str, quantity: Fraction, part: RatePart,
          coefficient: Fraction, **trace) -> ValuationLine:
    exact = quantity * _frac(part.value) * coefficient
    return ValuationLine(
        assignment_id=workload.assignment_id,
        kind=kind,
        quantity=quantity,
        unit_rate=to_decimal(_frac(part.value), Q2),
        coefficient=coefficient,
        rate_ref=part.ref,
        amount=round_half_up(exact),
        trace={"exact": frac_str(exact), "date": workload.valuation_date.isoformat(), **trace},
    )


def _extra_quantity(part: RatePart, total_periods: Fraction) -> Fraction:
    return total_periods if part.formula_type == "per_period" else Fraction(1)


def valuate(workload: AssignmentWorkload, rates: ResolvedRates, base_capacity) -> AssignmentValuation:
    """
    Value one assignment.

    base_capacity is what is left of the teacher's standard load; periods
    beyond it are overtime. Overtime and holiday rates are only needed when
    there is overtime or holiday work to pay.
    """
    capacity = max(_frac(base_capacity), Fraction(0))
    total = workload.total_periods
    base_periods = min(total, capacity)
    overtime_periods = total - base_periods
    holiday_periods = workload.holiday_periods
    coef = rates.coefficient
    coef_refs = rates.coefficient_refs

    lines = []
    if base_periods > 0:
        lines.append(_line(workload, "base", base_periods, rates.period_rate, coef,
                           coefficients=coef_refs, periodMinutes=workload.period_minutes))

    if overtime_periods > 0:
        if rates.overtime is None:
            raise RateNotFoundError("overtime", workload.valuation_date)
        lines.append(_line(workload, "overtime", overtime_periods, rates.overtime, coef,
                           coefficients=coef_refs, periodMinutes=workload.period_minutes))

    if holiday_periods > 0:
        if rates.holiday is None:
            raise RateNotFoundError("holiday", workload.valuation_date)
        lines.append(_line(workload, "holiday", holiday_periods, rates.holiday, Fraction(1),
                           periodMinutes=workload.period_minutes))

    for kind in ("bonus", "allowance"):
        part = getattr(rates, kind)
        if part is not None:
            lines.append(_line(workload, kind, _extra_quantity(part, total), part, Fraction(1),
                               formula=part.formula_type))

    return AssignmentValuation(
        assignment_id=workload.assignment_id,
        teaching_hours=workload.teaching_hours,
        total_periods=total,
        base_periods=base_periods,
        overtime_periods=overtime_periods,
        holiday_periods=holiday_periods,
        student_count=workload.student_count,
        credits=workload.credits,
        lines=tuple(lines),
    )
