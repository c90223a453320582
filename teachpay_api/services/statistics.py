"""Salary statistics over stored calculation records."""
from __future__ import annotations
from decimal import Decimal
from fractions import Fraction
from typing import Optional

from sqlalchemy import and_, func

from teachpay_api.common.errors import NotFoundError
from teachpay_api.extensions import db
from teachpay_api.models.master import Department, Teacher
from teachpay_api.models.salary import SalaryCalculation
from teachpay_api.services.calculation_store import STATUS_ORDER
from teachpay_api.services.valuation import round_half_up

COUNTED_STATUSES = ("calculated", "reviewing", "approved", "paid")


def _scoped(q, academic_year_id=None, semester_id=None, department_id=None):
    if academic_year_id is not None:
        q = q.filter(SalaryCalculation.academic_year_id == academic_year_id)
    if semester_id is not None:
        q = q.filter(SalaryCalculation.semester_id == semester_id)
    if department_id is not None:
        q = (
            q.join(Teacher, Teacher.id == SalaryCalculation.teacher_id)
            .filter(Teacher.department_id == department_id)
        )
    return q


def _avg(total: int, count: int) -> int:
    return round_half_up(Fraction(total, count)) if count else 0


def _int(v) -> int:
    return int(Decimal(str(v or 0)))


def _totals(**scope) -> dict:
    latest = (
        db.session.query(
            SalaryCalculation.teacher_id.label("teacher_id"),
            SalaryCalculation.period_key.label("period_key"),
            func.max(SalaryCalculation.version).label("version"),
        )
        .group_by(SalaryCalculation.teacher_id, SalaryCalculation.period_key)
        .subquery()
    )
    q = (
        db.session.query(
            func.count(SalaryCalculation.id),
            func.count(func.distinct(SalaryCalculation.teacher_id)),
            func.sum(SalaryCalculation.gross_amount),
            func.sum(SalaryCalculation.net_amount),
            func.sum(SalaryCalculation.total_hours),
            func.sum(SalaryCalculation.total_periods),
        )
        .select_from(SalaryCalculation)
        .join(latest, and_(
            SalaryCalculation.teacher_id == latest.c.teacher_id,
            SalaryCalculation.period_key == latest.c.period_key,
            SalaryCalculation.version == latest.c.version,
        ))
        .filter(SalaryCalculation.status.in_(COUNTED_STATUSES))
    )
    count, teachers, gross, net, hours, periods = _scoped(q, **scope).one()
    gross, net = _int(gross), _int(net)
    return {
        "totalCalculations": count or 0,
        "totalTeachers": teachers or 0,
        "totalGrossSalary": gross,
        "totalNetSalary": net,
        "averageGrossSalary": _avg(gross, count or 0),
        "averageNetSalary": _avg(net, count or 0),
        "totalTeachingHours": float(hours or 0),
        "totalPeriods": float(periods or 0),
    }


def _status_breakdown(**scope) -> list:
    q = (
        db.session.query(
            SalaryCalculation.status,
            func.count(SalaryCalculation.id),
            func.sum(SalaryCalculation.gross_amount),
        )
        .select_from(SalaryCalculation)
    )
    rows = _scoped(q, **scope).group_by(SalaryCalculation.status).all()
    rows = sorted(rows, key=lambda r: STATUS_ORDER[r[0]])
    return [{"status": s, "count": c, "totalGrossSalary": _int(g)} for s, c, g in rows]


def salary_statistics(academic_year_id: Optional[int] = None, semester_id: Optional[int] = None,
                      department_id: Optional[int] = None) -> dict:
    """
    Totals over the current version of every (teacher, period) that has been
    calculated and not archived, plus a per-status count over all versions.
    """
    scope = {"academic_year_id": academic_year_id, "semester_id": semester_id}
    out = {
        "overall": _totals(**scope),
        "statusBreakdown": _status_breakdown(**scope),
        "departmentSummary": None,
    }
    if department_id is not None:
        dept = db.session.get(Department, department_id)
        if dept is None:
            raise NotFoundError("Department", department_id)
        out["departmentSummary"] = {
            "departmentId": dept.id,
            "departmentCode": dept.code,
            "departmentName": dept.name,
            **_totals(department_id=department_id, **scope),
        }
    return out
