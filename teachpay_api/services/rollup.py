"""
Department and university rollups over stored teacher calculations.

Summaries are built on demand and never persisted. Internally everything is
an ordered tuple; keyed maps only appear in the *_json serializers.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Iterable, Mapping, Optional, Tuple

from teachpay_api.common.errors import IncompleteAggregationError, NotFoundError
from teachpay_api.extensions import db
from teachpay_api.models.assignment import TeachingAssignment
from teachpay_api.models.master import Department, Teacher
from teachpay_api.services.calculation_store import counts_in_totals, current_record
from teachpay_api.services.periods import CalculationPeriod
from teachpay_api.services.valuation import round_half_up

log = logging.getLogger(__name__)

PERCENT_UNITS = 10000   # 100.00 % in hundredths


@dataclass(frozen=True)
class TeacherTotal:
    teacher_id: int
    teacher_code: str
    full_name: str
    department_id: int
    calculation_id: int
    version: int
    status: str
    net_amount: int
    gross_amount: int
    total_periods: Decimal
    class_ids: Tuple[int, ...]
    components: Tuple[Tuple[str, int], ...]


@dataclass(frozen=True)
class FailedTeacher:
    teacher_id: int
    code: str
    message: str


@dataclass(frozen=True)
class DepartmentSummary:
    department_id: int
    department_code: str
    department_name: str
    period: CalculationPeriod
    teachers: Tuple[TeacherTotal, ...]
    failed_teachers: Tuple[FailedTeacher, ...]

    @property
    def teacher_count(self) -> int:
        return len(self.teachers)

    @property
    def total_amount(self) -> int:
        return sum(t.net_amount for t in self.teachers)

    @property
    def total_periods(self) -> Decimal:
        return sum((t.total_periods for t in self.teachers), Decimal("0"))

    @property
    def class_ids(self) -> frozenset:
        return frozenset(cid for t in self.teachers for cid in t.class_ids)

    @property
    def total_classes(self) -> int:
        return len(self.class_ids)

    @property
    def average_undefined(self) -> bool:
        return self.teacher_count == 0

    @property
    def average_amount_per_teacher(self) -> int:
        if self.teacher_count == 0:
            return 0
        return round_half_up(Fraction(self.total_amount, self.teacher_count))


@dataclass(frozen=True)
class DepartmentShare:
    summary: DepartmentSummary
    percentage: Decimal


@dataclass(frozen=True)
class UniversitySummary:
    period: CalculationPeriod
    departments: Tuple[DepartmentShare, ...]

    @property
    def teachers(self) -> Tuple[TeacherTotal, ...]:
        return tuple(t for d in self.departments for t in d.summary.teachers)

    @property
    def total_teachers(self) -> int:
        return sum(d.summary.teacher_count for d in self.departments)

    @property
    def total_amount(self) -> int:
        return sum(d.summary.total_amount for d in self.departments)

    @property
    def total_periods(self) -> Decimal:
        return sum((d.summary.total_periods for d in self.departments), Decimal("0"))

    @property
    def total_classes(self) -> int:
        ids = set()
        for d in self.departments:
            ids |= d.summary.class_ids
        return len(ids)

    @property
    def average_amount_per_teacher(self) -> int:
        if self.total_teachers == 0:
            return 0
        return round_half_up(Fraction(self.total_amount, self.total_teachers))


# ---------------- department ----------------

def _class_ids(calc) -> Tuple[int, ...]:
    assignment_ids = {l.assignment_id for l in calc.lines if l.assignment_id is not None}
    if not assignment_ids:
        return ()
    rows = (
        db.session.query(TeachingAssignment.class_id)
        .filter(TeachingAssignment.id.in_(assignment_ids))
        .distinct()
        .all()
    )
    return tuple(sorted(r[0] for r in rows))


def _teacher_total(teacher: Teacher, calc) -> TeacherTotal:
    return TeacherTotal(
        teacher_id=teacher.id,
        teacher_code=teacher.code,
        full_name=teacher.full_name,
        department_id=teacher.department_id,
        calculation_id=calc.id,
        version=calc.version,
        status=calc.status,
        net_amount=int(calc.net_amount),
        gross_amount=int(calc.gross_amount),
        total_periods=Decimal(str(calc.total_periods)),
        class_ids=_class_ids(calc),
        components=(
            ("base", int(calc.base_amount)),
            ("overtime", int(calc.overtime_amount)),
            ("holiday", int(calc.holiday_amount)),
            ("bonus", int(calc.bonus_amount)),
            ("allowance", int(calc.allowance_amount)),
        ),
    )


def aggregate_department(department_id: int, period: CalculationPeriod,
                         failures: Optional[Mapping[int, Mapping]] = None) -> DepartmentSummary:
    """
    Roll up the current calculation of every active teacher in a department.

    failures maps teacher_id -> {"code", "message"} for teachers whose
    calculation failed in this run; they are reported, not counted. Any other
    teacher without a usable record makes the rollup incomplete.
    """
    dept = db.session.get(Department, department_id)
    if dept is None:
        raise NotFoundError("Department", department_id)
    failures = failures or {}

    teachers = (
        Teacher.query
        .filter_by(department_id=department_id, is_active=True)
        .order_by(Teacher.id.asc())
        .all()
    )

    totals, failed, pending = [], [], []
    for t in teachers:
        if t.id in failures:
            f = failures[t.id]
            failed.append(FailedTeacher(t.id, f.get("code") or "ERROR", f.get("message") or ""))
            continue
        calc = current_record(t.id, period.key)
        if not counts_in_totals(calc):
            pending.append(t.id)
            continue
        totals.append(_teacher_total(t, calc))

    if pending:
        log.warning("department %s incomplete for %s: %s", department_id, period.key, pending)
        raise IncompleteAggregationError(period.key, pending, department_id=department_id)

    return DepartmentSummary(
        department_id=dept.id,
        department_code=dept.code,
        department_name=dept.name,
        period=period,
        teachers=tuple(totals),
        failed_teachers=tuple(failed),
    )


# ---------------- university ----------------

def largest_remainder(amounts: Iterable[int], units: int = PERCENT_UNITS) -> Tuple[int, ...]:
    """
    Split `units` proportionally to amounts so the parts add up exactly.
    Floors every quota, then hands the leftover units to the largest
    fractional remainders (earlier entries win ties).
    """
    amounts = list(amounts)
    total = sum(amounts)
    if total == 0:
        return tuple(0 for _ in amounts)
    quotas = [Fraction(a * units, total) for a in amounts]
    parts = [math.floor(q) for q in quotas]
    leftover = units - sum(parts)
    order = sorted(range(len(amounts)), key=lambda i: (-(quotas[i] - parts[i]), i))
    for i in order[:leftover]:
        parts[i] += 1
    return tuple(parts)


def aggregate_university(period: CalculationPeriod, department_ids: Optional[Iterable[int]] = None) -> UniversitySummary:
    q = Department.query.filter_by(is_active=True)
    if department_ids:
        q = q.filter(Department.id.in_(list(department_ids)))
    depts = q.order_by(Department.id.asc()).all()

    summaries = [aggregate_department(d.id, period) for d in depts]
    shares = largest_remainder(s.total_amount for s in summaries)
    return UniversitySummary(
        period=period,
        departments=tuple(
            DepartmentShare(s, Decimal(p) / 100) for s, p in zip(summaries, shares)
        ),
    )


# ---------------- serialization ----------------

def teacher_total_json(t: TeacherTotal) -> dict:
    return {
        "teacherId": t.teacher_id,
        "teacherCode": t.teacher_code,
        "fullName": t.full_name,
        "departmentId": t.department_id,
        "calculationId": t.calculation_id,
        "version": t.version,
        "status": t.status,
        "totalSalary": t.net_amount,
        "grossSalary": t.gross_amount,
        "totalPeriods": float(t.total_periods),
        "classCount": len(t.class_ids),
        "salaryComponents": dict(t.components),
    }


def department_summary_json(s: DepartmentSummary, percentage: Optional[Decimal] = None) -> dict:
    out = {
        "departmentId": s.department_id,
        "departmentCode": s.department_code,
        "departmentName": s.department_name,
        "semesterId": s.period.semester_id,
        "period": s.period.as_dict(),
        "teacherCount": s.teacher_count,
        "totalSalary": s.total_amount,
        "totalPeriods": float(s.total_periods),
        "totalClasses": s.total_classes,
        "averageAmountPerTeacher": s.average_amount_per_teacher,
        "averageUndefined": s.average_undefined,
        "salariesByTeacher": {str(t.teacher_id): teacher_total_json(t) for t in s.teachers},
        "failedTeachers": [
            {"teacherId": f.teacher_id, "code": f.code, "message": f.message} for f in s.failed_teachers
        ],
    }
    if percentage is not None:
        out["percentage"] = float(percentage)
    return out


def university_summary_json(u: UniversitySummary) -> dict:
    return {
        "period": u.period.as_dict(),
        "academicYearId": u.period.academic_year_id,
        "semesterId": u.period.semester_id,
        "totalDepartments": len(u.departments),
        "totalTeachers": u.total_teachers,
        "totalClasses": u.total_classes,
        "totalPeriods": float(u.total_periods),
        "totalAmount": u.total_amount,
        "averageAmountPerTeacher": u.average_amount_per_teacher,
        "teachers": [teacher_total_json(t) for t in u.teachers],
        "departmentSummaries": [department_summary_json(d.summary, d.percentage) for d in u.departments],
    }
