from __future__ import annotations
import hashlib
import json
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Iterable, Mapping, Optional, Sequence, Tuple

from teachpay_api.common.errors import APIError
from teachpay_api.services.periods import CalculationPeriod
from teachpay_api.services.valuation import AssignmentValuation, ValuationLine

COMPONENTS = ("base", "overtime", "holiday", "bonus", "allowance")


@dataclass(frozen=True)
class TeacherSalary:
    teacher_id: int
    period: CalculationPeriod
    lines: Tuple[ValuationLine, ...]
    assignment_count: int
    total_hours: Decimal
    total_periods: Fraction
    base_periods: Fraction
    overtime_periods: Fraction
    total_students: int
    total_credits: Decimal
    base: int
    overtime: int
    holiday: int
    bonus: int
    allowance: int
    deductions: int
    fingerprint: str
    status: str = "calculated"

    @property
    def gross(self) -> int:
        return self.base + self.overtime + self.holiday + self.bonus + self.allowance

    @property
    def net(self) -> int:
        return self.gross - self.deductions

    def components(self) -> dict:
        return {k: getattr(self, k) for k in COMPONENTS}


def deduction_lines(deductions: Iterable[Mapping]) -> list:
    """Caller-supplied [{code, amount}] become teacher-level deduction lines."""
    out = []
    for d in deductions or ():
        code = str(d.get("code") or "").strip()
        try:
            amount = int(d.get("amount"))
        except (TypeError, ValueError):
            raise APIError("VALIDATION_ERROR", "deduction amount must be an integer", 422, {"deduction": dict(d)})
        if not code:
            raise APIError("VALIDATION_ERROR", "deduction code is required", 422, {"deduction": dict(d)})
        if amount < 0:
            raise APIError("VALIDATION_ERROR", "deduction amount must be >= 0", 422, {"code": code})
        out.append(ValuationLine(
            assignment_id=None,
            kind="deduction",
            quantity=Fraction(1),
            unit_rate=Decimal(amount),
            coefficient=Fraction(1),
            rate_ref=f"deduction:{code}",
            amount=amount,
            trace={"code": code},
        ))
    return out


def fingerprint_of(lines: Sequence[ValuationLine]) -> str:
    blob = json.dumps([l.canonical() for l in lines], sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def aggregate_teacher(teacher_id: int, period: CalculationPeriod,
                      valuations: Iterable[AssignmentValuation],
                      deductions: Optional[Iterable[Mapping]] = ()) -> TeacherSalary:
    """
    Sum assignment valuations into one teacher total.

    Lines are sorted by (assignment id, line kind) so the result and its
    fingerprint do not depend on the order valuations arrive in.
    """
    vals = sorted(valuations, key=lambda v: v.assignment_id)
    lines = [l for v in vals for l in v.lines] + deduction_lines(deductions)
    lines.sort(key=lambda l: l.sort_key)

    def _sum(kind: str) -> int:
        return sum(l.amount for l in lines if l.kind == kind)

    return TeacherSalary(
        teacher_id=teacher_id,
        period=period,
        lines=tuple(lines),
        assignment_count=len(vals),
        total_hours=sum((v.teaching_hours for v in vals), Decimal("0")),
        total_periods=sum((v.total_periods for v in vals), Fraction(0)),
        base_periods=sum((v.base_periods for v in vals), Fraction(0)),
        overtime_periods=sum((v.overtime_periods for v in vals), Fraction(0)),
        total_students=sum(v.student_count for v in vals),
        total_credits=sum((v.credits for v in vals), Decimal("0")),
        base=_sum("base"),
        overtime=_sum("overtime"),
        holiday=_sum("holiday"),
        bonus=_sum("bonus"),
        allowance=_sum("allowance"),
        deductions=_sum("deduction"),
        fingerprint=fingerprint_of(lines),
    )
