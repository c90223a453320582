from __future__ import annotations
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from teachpay_api.common.errors import (
    CalculationInProgressError, ImmutableCalculationError, InvalidTransitionError, NotFoundError,
)
from teachpay_api.extensions import db
from teachpay_api.models.salary import CalculationLock, SalaryCalculation, SalaryCalculationLine
from teachpay_api.services.teacher_aggregator import TeacherSalary
from teachpay_api.services.valuation import Q6, frac_str, to_decimal

log = logging.getLogger(__name__)

STATUS_ORDER = {s: i for i, s in enumerate(
    ("draft", "calculating", "calculated", "reviewing", "approved", "paid", "archived")
)}

TRANSITIONS = {
    "calculated": ("reviewing", "approved", "archived"),
    "reviewing": ("approved", "archived"),
    "approved": ("paid", "archived"),
    "paid": ("archived",),
}

# statuses a recalculation may replace without supersede=True
REPLACEABLE = ("draft", "calculated")


def _now() -> datetime:
    return datetime.utcnow()


def _audit(calc: SalaryCalculation, action: str, actor: Optional[str] = None, notes: Optional[str] = None):
    entry = {"action": action, "actor": actor or "system", "at": _now().isoformat(timespec="seconds")}
    if notes:
        entry["notes"] = notes
    # JSON columns are not mutation-tracked; assign a new list
    calc.audit_trail = list(calc.audit_trail or []) + [entry]


# ---------------- reads ----------------

def current_record(teacher_id: int, period_key: str) -> Optional[SalaryCalculation]:
    """Highest version for (teacher, period), or None."""
    return (
        SalaryCalculation.query
        .filter_by(teacher_id=teacher_id, period_key=period_key)
        .order_by(SalaryCalculation.version.desc())
        .first()
    )


def counts_in_totals(calc: Optional[SalaryCalculation]) -> bool:
    # archived records are history, not a current total
    return calc is not None and STATUS_ORDER["calculated"] <= STATUS_ORDER[calc.status] < STATUS_ORDER["archived"]


def get_or_404(calc_id: int) -> SalaryCalculation:
    calc = db.session.get(SalaryCalculation, calc_id)
    if calc is None:
        raise NotFoundError("SalaryCalculation", calc_id)
    return calc


def ensure_recalculable(teacher_id: int, period_key: str, supersede: bool = False) -> Optional[SalaryCalculation]:
    prior = current_record(teacher_id, period_key)
    if prior is not None and prior.status not in REPLACEABLE and not supersede:
        raise ImmutableCalculationError(prior.id, prior.status, teacher_id=teacher_id, period_key=period_key)
    return prior


# ---------------- lock ----------------

def acquire_lock(teacher_id: int, period_key: str) -> str:
    """
    Insert the (teacher, period) lock row. The primary key makes this a single
    atomic check-and-set; a duplicate means someone else is calculating.
    """
    ttl = int(current_app.config.get("CALC_LOCK_TTL_SECONDS", 300))
    stale_before = _now() - timedelta(seconds=ttl)
    reclaimed = (
        CalculationLock.query
        .filter_by(teacher_id=teacher_id, period_key=period_key)
        .filter(CalculationLock.acquired_at < stale_before)
        .delete(synchronize_session=False)
    )
    if reclaimed:
        log.warning("reclaimed stale calculation lock teacher=%s period=%s", teacher_id, period_key)

    token = str(uuid.uuid4())
    # core INSERT: lock rows never enter the identity map
    try:
        db.session.execute(
            CalculationLock.__table__.insert().values(
                teacher_id=teacher_id, period_key=period_key, token=token, acquired_at=_now(),
            )
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        log.warning("calculation already in progress teacher=%s period=%s", teacher_id, period_key)
        raise CalculationInProgressError(teacher_id, period_key)
    return token


def release_lock(teacher_id: int, period_key: str, token: str) -> None:
    db.session.rollback()
    (
        CalculationLock.query
        .filter_by(teacher_id=teacher_id, period_key=period_key, token=token)
        .delete(synchronize_session=False)
    )
    db.session.commit()


@contextmanager
def calculation_lock(teacher_id: int, period_key: str):
    token = acquire_lock(teacher_id, period_key)
    try:
        yield token
    finally:
        release_lock(teacher_id, period_key, token)


# ---------------- writes ----------------

def _new_code() -> str:
    return f"SC{_now():%Y%m%d}-{uuid.uuid4().hex[:10].upper()}"


def _build(result: TeacherSalary, version: int, prior: Optional[SalaryCalculation],
           calc_meta: Optional[dict]) -> SalaryCalculation:
    p = result.period
    calc = SalaryCalculation(
        calculation_code=_new_code(),
        teacher_id=result.teacher_id,
        period_type=p.period_type,
        period_key=p.key,
        academic_year_id=p.academic_year_id,
        semester_id=p.semester_id,
        start_date=p.start_date,
        end_date=p.end_date,
        month=p.month,
        year=p.year,
        status=result.status,
        version=version,
        supersedes_id=prior.id if prior is not None else None,
        assignment_count=result.assignment_count,
        total_hours=result.total_hours,
        total_periods=to_decimal(result.total_periods),
        base_periods=to_decimal(result.base_periods),
        overtime_periods=to_decimal(result.overtime_periods),
        total_students=result.total_students,
        total_credits=result.total_credits,
        base_amount=result.base,
        overtime_amount=result.overtime,
        holiday_amount=result.holiday,
        bonus_amount=result.bonus,
        allowance_amount=result.allowance,
        deduction_amount=result.deductions,
        gross_amount=result.gross,
        net_amount=result.net,
        fingerprint=result.fingerprint,
        calc_meta=calc_meta,
        calculated_at=_now(),
    )
    for pos, line in enumerate(result.lines):
        calc.lines.append(SalaryCalculationLine(
            position=pos,
            assignment_id=line.assignment_id,
            kind=line.kind,
            quantity=to_decimal(line.quantity),
            unit_rate=line.unit_rate,
            coefficient=to_decimal(line.coefficient, Q6),
            rate_ref=line.rate_ref,
            amount=line.amount,
            calc_trace_json={**line.trace, "quantity": frac_str(line.quantity),
                             "coefficient": frac_str(line.coefficient)},
        ))
    return calc


def record(result: TeacherSalary, supersede: bool = False, actor: Optional[str] = None,
           calc_meta: Optional[dict] = None) -> SalaryCalculation:
    """
    Persist a computed teacher total as the new current version.

    Same fingerprint as a still-replaceable current record returns that record.
    A draft/calculated prior is archived; a reviewing-or-later prior needs
    supersede=True, and approved/paid priors are never modified.
    """
    key = result.period.key
    prior = ensure_recalculable(result.teacher_id, key, supersede)

    if prior is not None and prior.status in REPLACEABLE and prior.fingerprint == result.fingerprint:
        log.info("unchanged calculation teacher=%s period=%s version=%s",
                 result.teacher_id, key, prior.version)
        return prior

    version = (prior.version + 1) if prior is not None else 1
    try:
        calc = _build(result, version, prior, calc_meta)
        _audit(calc, "created" if prior is None else "recalculated", actor,
               None if prior is None else f"supersedes v{prior.version}")
        _audit(calc, "calculated", actor)

        if prior is not None and prior.status in REPLACEABLE + ("reviewing",):
            prior.status = "archived"
            _audit(prior, "archived", actor, f"replaced by v{version}")

        db.session.add(calc)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return calc


def transition(calc_id: int, target: str, actor: Optional[str] = None,
               notes: Optional[str] = None) -> SalaryCalculation:
    calc = get_or_404(calc_id)
    if target not in TRANSITIONS.get(calc.status, ()):
        raise InvalidTransitionError(calc.id, calc.status, target)

    calc.status = target
    if target == "approved":
        calc.approved_at = _now()
    elif target == "paid":
        calc.paid_at = _now()
    _audit(calc, target, actor, notes)
    db.session.commit()
    log.info("calculation %s moved to %s", calc.id, target)
    return calc
