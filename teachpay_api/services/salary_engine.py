from __future__ import annotations
import logging
from datetime import date
from decimal import Decimal
from fractions import Fraction
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from flask import current_app

from teachpay_api.common.errors import (
    APIError, ImmutableCalculationError, InvalidScopeError, NotFoundError, RateNotFoundError,
)
from teachpay_api.extensions import db
from teachpay_api.models.academic import AcademicYear, Semester
from teachpay_api.models.assignment import TeachingAssignment
from teachpay_api.models.master import Department, Teacher
from teachpay_api.models.salary import SalaryCalculation
from teachpay_api.services import calculation_store as store
from teachpay_api.services.periods import CalculationPeriod
from teachpay_api.services.rate_resolver import RateCategory, RateResolver, RateScope
from teachpay_api.services.rollup import DepartmentSummary, aggregate_department
from teachpay_api.services.teacher_aggregator import aggregate_teacher
from teachpay_api.services.valuation import (
    AssignmentValuation, AssignmentWorkload, RatePart, ResolvedRates, frac_str, valuate,
)

log = logging.getLogger(__name__)


# ---------------- config helpers ----------------

def eligible_statuses() -> Tuple[str, ...]:
    raw = current_app.config.get("ELIGIBLE_ASSIGNMENT_STATUSES") or ("completed",)
    if isinstance(raw, str):
        raw = [s.strip() for s in raw.split(",")]
    return tuple(s for s in raw if s)


def standard_load(teacher: Teacher) -> Fraction:
    if teacher.standard_load_periods is not None:
        return Fraction(Decimal(str(teacher.standard_load_periods)))
    return Fraction(Decimal(str(current_app.config.get("STANDARD_LOAD_PERIODS", 270))))


def valuation_date(a: TeachingAssignment, period: CalculationPeriod) -> date:
    return a.end_date if period.contains(a.end_date) else period.end_date


# ---------------- standard load ----------------

def _share(period: CalculationPeriod, start: date, end: date) -> Fraction:
    """Fraction of [start, end] that falls inside the period, by days."""
    lo, hi = max(period.start_date, start), min(period.end_date, end)
    if hi < lo:
        return Fraction(0)
    return Fraction((hi - lo).days + 1, (end - start).days + 1)


def load_pools(teacher: Teacher, ay: AcademicYear, period: CalculationPeriod) -> Dict[Optional[int], Fraction]:
    """
    Standard load available in the period, keyed by semester id.

    The load is a per-semester figure: a semester or academic-year period gets
    the full load for every semester it covers, monthly and custom periods a
    day-weighted share. A year without semesters is treated as a single term
    keyed None.
    """
    load = standard_load(teacher)
    terms = Semester.query.filter_by(academic_year_id=ay.id).order_by(Semester.start_date.asc()).all()
    if not terms:
        return {None: load * _share(period, ay.start_date, ay.end_date)}
    return {s.id: load * _share(period, s.start_date, s.end_date) for s in terms}


def pool_of(a: TeachingAssignment, pools: Dict[Optional[int], Fraction]) -> Optional[int]:
    if None in pools:
        return None
    if a.semester_id in pools:
        return a.semester_id
    for s in Semester.query.filter(Semester.id.in_(list(pools))).all():
        if s.start_date <= a.end_date <= s.end_date:
            return s.id
    # taught between semesters: no standard load to consume
    return None


# ---------------- assignment selection ----------------

def _in_period(a: TeachingAssignment, period: CalculationPeriod) -> bool:
    if a.academic_year_id != period.academic_year_id:
        return False
    if period.period_type == "academic_year":
        return True
    if period.period_type == "semester" and a.semester_id is not None:
        return a.semester_id == period.semester_id
    # monthly/custom, or no semester on the row: paid in the period it ends in
    return period.contains(a.end_date)


def eligible_assignments(teacher: Teacher, period: CalculationPeriod,
                         assignment_ids: Optional[Sequence[int]] = None) -> List[TeachingAssignment]:
    statuses = eligible_statuses()

    if assignment_ids is not None:
        ids = sorted({int(i) for i in assignment_ids})
        rows = TeachingAssignment.query.filter(TeachingAssignment.id.in_(ids)).all() if ids else []
        found = {a.id: a for a in rows}
        missing = [i for i in ids if i not in found]
        if missing:
            raise InvalidScopeError("Unknown assignment ids", assignment_ids=missing)
        foreign = [a.id for a in rows if a.teacher_id != teacher.id]
        if foreign:
            raise InvalidScopeError("Assignments do not belong to the teacher",
                                    teacher_id=teacher.id, assignment_ids=foreign)
        outside = [a.id for a in rows if not _in_period(a, period)]
        if outside:
            raise InvalidScopeError("Assignments fall outside the period",
                                    period=period.key, assignment_ids=outside)
        picked = [a for a in rows if a.is_active and a.status in statuses]
        skipped = len(rows) - len(picked)
        if skipped:
            log.info("skipped %s ineligible assignment(s) for teacher=%s", skipped, teacher.id)
    else:
        q = (
            TeachingAssignment.query
            .filter(TeachingAssignment.teacher_id == teacher.id)
            .filter(TeachingAssignment.academic_year_id == period.academic_year_id)
            .filter(TeachingAssignment.is_active.is_(True))
            .filter(TeachingAssignment.status.in_(statuses))
        )
        picked = [a for a in q.all() if _in_period(a, period)]

    # overtime is whatever runs past the standard load, in completion order
    return sorted(picked, key=lambda a: (a.end_date, a.id))


# ---------------- rates ----------------

def _setting_part(rate, years: int) -> Optional[RatePart]:
    if rate is None:
        return None
    return RatePart(rate.effective_amount(years), rate.ref, rate.formula_type or "fixed")


def resolve_rates(resolver: RateResolver, teacher: Teacher, a: TeachingAssignment, on_date: date) -> ResolvedRates:
    klass = a.klass
    subject = klass.subject
    years = int(teacher.years_of_service or 0)
    scope = RateScope(
        department_id=teacher.department_id,
        degree_id=teacher.degree_id,
        position=teacher.position,
        subject_type=subject.subject_type,
        class_type=klass.class_type,
    )

    pr = resolver.resolve_optional(on_date, RateCategory.PERIOD_RATE)
    if pr is not None:
        period_rate = RatePart(Decimal(str(pr.rate_per_period)), pr.ref)
    else:
        # no approved period rate: fall back to an hourly rule scaled to the subject's period length
        hourly = resolver.resolve_optional(on_date, RateCategory.BASE_HOURLY, scope)
        if hourly is None:
            raise RateNotFoundError(RateCategory.PERIOD_RATE, on_date,
                                    scope=scope.as_dict(), academic_year_id=resolver.academic_year.id)
        per_period = Fraction(hourly.effective_amount(years)) * int(subject.period_minutes or 50) / 60
        period_rate = RatePart(per_period, hourly.ref)

    coefs = resolver.resolve_coefficients(on_date, teacher.degree, subject, klass)
    return ResolvedRates(
        period_rate=period_rate,
        degree=coefs.degree,
        subject=coefs.subject,
        klass=coefs.klass,
        overtime=_setting_part(resolver.resolve_optional(on_date, RateCategory.OVERTIME, scope), years),
        holiday=_setting_part(resolver.resolve_optional(on_date, RateCategory.HOLIDAY, scope), years),
        bonus=_setting_part(resolver.resolve_optional(on_date, RateCategory.BONUS, scope), years),
        allowance=_setting_part(resolver.resolve_optional(on_date, RateCategory.ALLOWANCE, scope), years),
    )


# ---------------- orchestration ----------------

def _teacher_or_404(teacher_id: int) -> Teacher:
    t = db.session.get(Teacher, teacher_id)
    if t is None:
        raise NotFoundError("Teacher", teacher_id)
    return t


def calculate_teacher(teacher_id: int, period: CalculationPeriod, supersede: bool = False,
                      deductions: Iterable[Mapping] = (), assignment_ids: Optional[Sequence[int]] = None,
                      actor: Optional[str] = None) -> SalaryCalculation:
    """
    Calculate and store one teacher's compensation for a period.

    Immutability is checked before any work is done; the (teacher, period)
    lock is held from assignment selection until the record is committed.
    """
    teacher = _teacher_or_404(teacher_id)
    ay = db.session.get(AcademicYear, period.academic_year_id)
    if ay is None:
        raise NotFoundError("AcademicYear", period.academic_year_id)

    key = period.key
    store.ensure_recalculable(teacher.id, key, supersede)
    log.info("calculating teacher=%s period=%s", teacher.id, key)

    with store.calculation_lock(teacher.id, key):
        assignments = eligible_assignments(teacher, period, assignment_ids)
        resolver = RateResolver(ay, semester_id=period.semester_id)

        pools = load_pools(teacher, ay, period)
        available = {k: frac_str(v) for k, v in pools.items()}
        valuations: List[AssignmentValuation] = []
        for a in assignments:
            on_date = valuation_date(a, period)
            rates = resolve_rates(resolver, teacher, a, on_date)
            pool = pool_of(a, pools)
            v = valuate(AssignmentWorkload.from_assignment(a, on_date), rates, pools.get(pool, Fraction(0)))
            if pool in pools:
                pools[pool] -= v.base_periods
            valuations.append(v)

        result = aggregate_teacher(teacher.id, period, valuations, deductions)
        meta = {
            "period": period.as_dict(),
            "standardLoad": str(standard_load(teacher)),
            "loadBySemester": {str(k) if k is not None else "year": v for k, v in available.items()},
            "eligibleStatuses": list(eligible_statuses()),
            "assignmentIds": [a.id for a in assignments],
            "currency": current_app.config.get("CURRENCY_CODE", "VND"),
        }
        calc = store.record(result, supersede=supersede, actor=actor, calc_meta=meta)

    log.info("calculated teacher=%s period=%s version=%s net=%s",
             teacher.id, key, calc.version, calc.net_amount)
    return calc


def calculate_department(department_id: int, period: CalculationPeriod, supersede: bool = False,
                         actor: Optional[str] = None) -> Tuple[DepartmentSummary, Dict[int, SalaryCalculation]]:
    """
    Calculate every active teacher of a department, one after another.
    A failing teacher is flagged in the summary and the rest carry on.
    """
    if db.session.get(Department, department_id) is None:
        raise NotFoundError("Department", department_id)

    teachers = (
        Teacher.query
        .filter_by(department_id=department_id, is_active=True)
        .order_by(Teacher.id.asc())
        .all()
    )
    results: Dict[int, SalaryCalculation] = {}
    failures: Dict[int, dict] = {}
    for t in teachers:
        try:
            results[t.id] = calculate_teacher(t.id, period, supersede=supersede, actor=actor)
        except ImmutableCalculationError as e:
            db.session.rollback()
            prior = store.current_record(t.id, period.key)
            if store.counts_in_totals(prior):
                # reviewed/approved/paid records stand as the teacher's total
                log.info("teacher %s kept at version %s (%s) for %s", t.id, prior.version, prior.status, period.key)
                results[t.id] = prior
            else:
                log.warning("teacher %s failed for %s: %s %s", t.id, period.key, e.code, e.message)
                failures[t.id] = {"code": e.code, "message": e.message}
        except APIError as e:
            db.session.rollback()
            log.warning("teacher %s failed for %s: %s %s", t.id, period.key, e.code, e.message)
            failures[t.id] = {"code": e.code, "message": e.message}

    summary = aggregate_department(department_id, period, failures=failures)
    log.info("department %s calculated for %s: %s ok, %s failed",
             department_id, period.key, len(results), len(failures))
    return summary, results
