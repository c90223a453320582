from __future__ import annotations
from flask import Blueprint, current_app, request

from teachpay_api.common.errors import APIError
from teachpay_api.common.http import ok, page_limit
from teachpay_api.models.salary import CALC_STATUSES, SalaryCalculation
from teachpay_api.services import calculation_store as store
from teachpay_api.services.periods import period_from_request
from teachpay_api.services.rollup import department_summary_json
from teachpay_api.services.salary_engine import calculate_department, calculate_teacher
from teachpay_api.services.statistics import salary_statistics

bp = Blueprint("salaries", __name__, url_prefix="/api/salaries")

# -------- helpers ----------
def _iso(v):
    return v.isoformat() if v else None

def _num(v):
    return float(v) if v is not None else 0.0

def _actor(j: dict):
    return j.get("actor") or request.headers.get("X-Actor")

def _int_field(j: dict, name: str, required: bool = True):
    v = j.get(name)
    if v in (None, ""):
        if required:
            raise APIError("VALIDATION_ERROR", f"{name} is required", 422)
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        raise APIError("VALIDATION_ERROR", f"{name} must be an integer", 422, {name: v})

def _line_row(l):
    return {
        "id": l.id,
        "position": l.position,
        "assignmentId": l.assignment_id,
        "kind": l.kind,
        "quantity": _num(l.quantity),
        "unitRate": _num(l.unit_rate),
        "coefficient": _num(l.coefficient),
        "rateRef": l.rate_ref,
        "amount": int(l.amount),
        "trace": l.calc_trace_json,
    }

def _row(x: SalaryCalculation, with_lines: bool = False):
    out = {
        "id": x.id,
        "calculationCode": x.calculation_code,
        "teacherId": x.teacher_id,
        "teacherCode": x.teacher.code if x.teacher else None,
        "teacherName": x.teacher.full_name if x.teacher else None,
        "periodType": x.period_type,
        "periodKey": x.period_key,
        "academicYearId": x.academic_year_id,
        "semesterId": x.semester_id,
        "startDate": _iso(x.start_date),
        "endDate": _iso(x.end_date),
        "month": x.month,
        "year": x.year,
        "status": x.status,
        "version": x.version,
        "supersedesId": x.supersedes_id,
        "assignmentCount": x.assignment_count,
        "totalHours": _num(x.total_hours),
        "totalPeriods": _num(x.total_periods),
        "basePeriods": _num(x.base_periods),
        "overtimePeriods": _num(x.overtime_periods),
        "totalStudents": x.total_students,
        "totalCredits": _num(x.total_credits),
        "salaryComponents": {
            "base": int(x.base_amount),
            "overtime": int(x.overtime_amount),
            "holiday": int(x.holiday_amount),
            "bonus": int(x.bonus_amount),
            "allowance": int(x.allowance_amount),
        },
        "deductions": int(x.deduction_amount),
        "grossSalary": int(x.gross_amount),
        "totalSalary": int(x.net_amount),
        "currency": current_app.config.get("CURRENCY_CODE", "VND"),
        "fingerprint": x.fingerprint,
        "calculatedAt": _iso(x.calculated_at),
        "approvedAt": _iso(x.approved_at),
        "paidAt": _iso(x.paid_at),
        "auditTrail": x.audit_trail or [],
    }
    if with_lines:
        out["lines"] = [_line_row(l) for l in x.lines]
    return out

# -------- routes ----------
@bp.post("/calculate")
def calculate():
    j = request.get_json(silent=True) or {}
    teacher_id = _int_field(j, "teacherId")
    period = period_from_request(j)
    deductions = j.get("deductions") or []
    if not isinstance(deductions, list):
        raise APIError("VALIDATION_ERROR", "deductions must be an array of {code, amount}", 422)
    assignment_ids = j.get("assignmentIds")
    if assignment_ids is not None and not isinstance(assignment_ids, list):
        raise APIError("VALIDATION_ERROR", "assignmentIds must be an array", 422)

    calc = calculate_teacher(
        teacher_id,
        period,
        supersede=bool(j.get("supersede", False)),
        deductions=deductions,
        assignment_ids=assignment_ids,
        actor=_actor(j),
    )
    return ok(_row(calc, with_lines=True))

@bp.post("/calculate/department")
def calculate_for_department():
    j = request.get_json(silent=True) or {}
    department_id = _int_field(j, "departmentId")
    period = period_from_request(j)
    summary, results = calculate_department(
        department_id, period, supersede=bool(j.get("supersede", False)), actor=_actor(j),
    )
    current_app.logger.info("department %s: %s calculated, %s failed",
                            department_id, len(results), len(summary.failed_teachers))
    return ok(department_summary_json(summary))

@bp.get("")
def list_calculations():
    q = SalaryCalculation.query
    for arg, col in (("teacherId", SalaryCalculation.teacher_id),
                     ("semesterId", SalaryCalculation.semester_id),
                     ("academicYearId", SalaryCalculation.academic_year_id)):
        if request.args.get(arg):
            q = q.filter(col == _int_field(request.args, arg))
    status = request.args.get("status")
    if status:
        if status not in CALC_STATUSES:
            raise APIError("VALIDATION_ERROR", f"status must be one of {', '.join(CALC_STATUSES)}", 422)
        q = q.filter(SalaryCalculation.status == status)
    if request.args.get("periodKey"):
        q = q.filter(SalaryCalculation.period_key == request.args["periodKey"])

    q = q.order_by(SalaryCalculation.id.desc())
    page, size = page_limit()
    total = q.count()
    rows = q.offset((page - 1) * size).limit(size).all()
    return ok([_row(x) for x in rows], page=page, size=size, total=total)

@bp.get("/statistics")
def statistics():
    args = request.args
    return ok(salary_statistics(
        academic_year_id=_int_field(args, "academicYearId", required=False),
        semester_id=_int_field(args, "semesterId", required=False),
        department_id=_int_field(args, "departmentId", required=False),
    ))

@bp.get("/<int:calc_id>")
def get_calculation(calc_id: int):
    return ok(_row(store.get_or_404(calc_id), with_lines=True))

def _move(calc_id: int, target: str):
    j = request.get_json(silent=True) or {}
    calc = store.transition(calc_id, target, actor=_actor(j), notes=j.get("notes"))
    return ok(_row(calc))

@bp.post("/<int:calc_id>/review")
def review(calc_id: int):
    return _move(calc_id, "reviewing")

@bp.post("/<int:calc_id>/approve")
def approve(calc_id: int):
    return _move(calc_id, "approved")

@bp.post("/<int:calc_id>/pay")
def pay(calc_id: int):
    return _move(calc_id, "paid")

@bp.post("/<int:calc_id>/archive")
def archive(calc_id: int):
    return _move(calc_id, "archived")
