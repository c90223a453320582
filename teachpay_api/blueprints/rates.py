from __future__ import annotations
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation

from flask import Blueprint, current_app, request

from teachpay_api.common.errors import APIError, NotFoundError
from teachpay_api.common.http import ok, page_limit
from teachpay_api.extensions import db
from teachpay_api.models.academic import AcademicYear
from teachpay_api.models.rates import (
    EFFECTIVE_STATUSES, FORMULA_TYPES, ID_SCOPES, RATE_SCOPES, RATE_STATUSES, RATE_TYPES,
    PeriodRate, RateSetting,
)

bp = Blueprint("rates", __name__, url_prefix="/api/rates")

# Rate rows are append-only once active: changes go through /supersede.

# -------- helpers ----------
def _invalid(message: str, **detail):
    return APIError("VALIDATION_ERROR", message, 422, detail or None)

def _d(j: dict, name: str, required: bool = False):
    v = j.get(name)
    if not v:
        if required:
            raise _invalid(f"{name} is required")
        return None
    try:
        return date.fromisoformat(str(v))
    except ValueError:
        raise _invalid(f"{name} must be YYYY-MM-DD", **{name: v})

def _dec(j: dict, name: str, default=None):
    v = j.get(name)
    if v is None or v == "":
        return default
    try:
        out = Decimal(str(v))
    except InvalidOperation:
        raise _invalid(f"{name} must be a number", **{name: v})
    if out < 0:
        raise _invalid(f"{name} must be >= 0", **{name: v})
    return out

def _i(j: dict, name: str, default=None):
    v = j.get(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        raise _invalid(f"{name} must be an integer", **{name: v})

def _one_of(value, allowed, name):
    if value not in allowed:
        raise _invalid(f"{name} must be one of {', '.join(allowed)}", **{name: value})
    return value

def _money(v):
    return float(v) if v is not None else None

def _setting_row(x: RateSetting):
    return {
        "id": x.id,
        "ref": x.ref,
        "code": x.code,
        "name": x.name,
        "rateType": x.rate_type,
        "applicableScope": x.applicable_scope,
        "targetId": x.target_id,
        "targetValue": x.target_value,
        "baseAmount": _money(x.base_amount),
        "minimumRate": _money(x.minimum_rate),
        "maximumRate": _money(x.maximum_rate),
        "coefficient": _money(x.coefficient),
        "stepIncrement": _money(x.step_increment),
        "formulaType": x.formula_type,
        "startDate": x.start_date.isoformat() if x.start_date else None,
        "endDate": x.end_date.isoformat() if x.end_date else None,
        "academicYearId": x.academic_year_id,
        "semesterId": x.semester_id,
        "priority": x.priority,
        "status": x.status,
        "version": x.version,
        "supersedesId": x.supersedes_id,
        "approvedAt": x.approved_at.isoformat() if x.approved_at else None,
        "description": x.description,
    }

def _period_rate_row(x: PeriodRate):
    return {
        "id": x.id,
        "ref": x.ref,
        "academicYearId": x.academic_year_id,
        "name": x.name,
        "ratePerPeriod": _money(x.rate_per_period),
        "effectiveDate": x.effective_date.isoformat() if x.effective_date else None,
        "endDate": x.end_date.isoformat() if x.end_date else None,
        "approvalStatus": x.approval_status,
        "isActive": x.is_active,
        "approvedAt": x.approved_at.isoformat() if x.approved_at else None,
        "description": x.description,
    }

def _setting_or_404(rate_id: int) -> RateSetting:
    x = db.session.get(RateSetting, rate_id)
    if x is None:
        raise NotFoundError("RateSetting", rate_id)
    return x

def _setting_fields(j: dict, base: RateSetting | None = None) -> dict:
    """Validated column values from a request body, defaulting to `base` when given."""
    def pick(name, attr, conv, default=None):
        if name in j:
            return conv(j, name)
        return getattr(base, attr) if base is not None else default

    f = {
        "code": (j.get("code") or (base.code if base else "")).strip(),
        "name": (j.get("name") or (base.name if base else "")).strip(),
        "rate_type": _one_of(j.get("rateType", base.rate_type if base else None), RATE_TYPES, "rateType"),
        "applicable_scope": _one_of(
            j.get("applicableScope", base.applicable_scope if base else "university"), RATE_SCOPES, "applicableScope"
        ),
        "target_id": pick("targetId", "target_id", _i),
        "target_value": j.get("targetValue", base.target_value if base else None),
        "base_amount": pick("baseAmount", "base_amount", _dec, Decimal("0")),
        "minimum_rate": pick("minimumRate", "minimum_rate", _dec, Decimal("0")),
        "maximum_rate": pick("maximumRate", "maximum_rate", _dec),
        "coefficient": pick("coefficient", "coefficient", _dec, Decimal("1")),
        "step_increment": pick("stepIncrement", "step_increment", _dec, Decimal("0")),
        "formula_type": _one_of(
            j.get("formulaType", base.formula_type if base else "fixed"), FORMULA_TYPES, "formulaType"
        ),
        "start_date": _d(j, "startDate", required=True),
        "end_date": _d(j, "endDate"),
        "academic_year_id": pick("academicYearId", "academic_year_id", _i),
        "semester_id": pick("semesterId", "semester_id", _i),
        "priority": pick("priority", "priority", _i, 0),
        "description": j.get("description", base.description if base else None),
    }
    if not f["code"] or not f["name"]:
        raise _invalid("code and name are required")
    if f["end_date"] and f["end_date"] < f["start_date"]:
        raise _invalid("endDate must be >= startDate")
    if f["maximum_rate"] is not None and f["maximum_rate"] < f["minimum_rate"]:
        raise _invalid("maximumRate must be >= minimumRate")

    scope = f["applicable_scope"]
    if f["rate_type"] == "coefficient" and scope == "class_type":
        raise _invalid("class-size coefficients follow studentCount and cannot be overridden",
                       applicableScope=scope)
    if scope == "university":
        f["target_id"], f["target_value"] = None, None
    elif scope in ID_SCOPES:
        if f["target_id"] is None:
            raise _invalid(f"targetId is required for scope '{scope}'")
        f["target_value"] = None
    else:
        if not f["target_value"]:
            raise _invalid(f"targetValue is required for scope '{scope}'")
        f["target_id"] = None
    return f

def _conflicts(x: RateSetting):
    """Effective rows of the same (type, scope, target) whose period overlaps x."""
    q = (
        RateSetting.query
        .filter(RateSetting.id != x.id)
        .filter(RateSetting.rate_type == x.rate_type)
        .filter(RateSetting.applicable_scope == x.applicable_scope)
        .filter(RateSetting.status.in_(EFFECTIVE_STATUSES))
    )
    return [r for r in q.all() if r.target == x.target and r.overlaps(x)]

def _now():
    return datetime.utcnow()

# -------- rate settings ----------
@bp.get("/settings")
def list_settings():
    q = RateSetting.query
    if request.args.get("rateType"):
        q = q.filter(RateSetting.rate_type == _one_of(request.args["rateType"], RATE_TYPES, "rateType"))
    if request.args.get("status"):
        q = q.filter(RateSetting.status == _one_of(request.args["status"], RATE_STATUSES, "status"))
    if request.args.get("academicYearId"):
        q = q.filter(RateSetting.academic_year_id == _i(request.args, "academicYearId"))
    q = q.order_by(RateSetting.rate_type.asc(), RateSetting.start_date.desc(), RateSetting.id.desc())
    page, size = page_limit()
    total = q.count()
    rows = q.offset((page - 1) * size).limit(size).all()
    return ok([_setting_row(x) for x in rows], page=page, size=size, total=total)

@bp.get("/settings/<int:rate_id>")
def get_setting(rate_id: int):
    return ok(_setting_row(_setting_or_404(rate_id)))

@bp.post("/settings")
def create_setting():
    j = request.get_json(silent=True) or {}
    x = RateSetting(status="draft", version=1, **_setting_fields(j))
    db.session.add(x)
    db.session.commit()
    return ok(_setting_row(x), 201)

@bp.post("/settings/<int:rate_id>/approve")
def approve_setting(rate_id: int):
    x = _setting_or_404(rate_id)
    if x.status not in ("draft", "pending_approval"):
        raise APIError("INVALID_TRANSITION", f"Rate setting is '{x.status}'", 409, {"id": x.id})
    x.status = "approved"
    x.approved_at = _now()
    db.session.commit()
    return ok(_setting_row(x))

@bp.post("/settings/<int:rate_id>/activate")
def activate_setting(rate_id: int):
    x = _setting_or_404(rate_id)
    if x.status != "approved":
        raise APIError("INVALID_TRANSITION", "Only approved rate settings can be activated", 409,
                       {"id": x.id, "status": x.status})
    clash = _conflicts(x)
    if clash:
        raise APIError("RATE_OVERLAP", "An effective rate already covers part of this period", 409,
                       {"id": x.id, "conflicts": [r.ref for r in clash]})
    x.status = "active"
    db.session.commit()
    current_app.logger.info("rate setting %s activated", x.id)
    return ok(_setting_row(x))

@bp.post("/settings/<int:rate_id>/supersede")
def supersede_setting(rate_id: int):
    """Append a new active version; the prior one ends the day before it starts."""
    old = _setting_or_404(rate_id)
    if old.status != "active":
        raise APIError("INVALID_TRANSITION", "Only active rate settings can be superseded", 409,
                       {"id": old.id, "status": old.status})
    j = request.get_json(silent=True) or {}
    fields = _setting_fields(j, base=old)
    if fields["start_date"] <= old.start_date:
        raise _invalid("startDate must be after the superseded version's startDate",
                       startDate=fields["start_date"].isoformat())
    # the target of a rate cannot move between versions
    for k in ("rate_type", "applicable_scope", "target_id", "target_value"):
        fields[k] = getattr(old, k)

    old.status = "superseded"
    closing = fields["start_date"] - timedelta(days=1)
    # an already closed version keeps its own end; supersede never extends coverage
    if old.end_date is None or old.end_date > closing:
        old.end_date = closing
    new = RateSetting(status="active", version=old.version + 1, supersedes_id=old.id,
                      approved_at=_now(), **fields)
    db.session.add(new)
    db.session.flush()
    clash = _conflicts(new)
    if clash:
        db.session.rollback()
        raise APIError("RATE_OVERLAP", "An effective rate already covers part of this period", 409,
                       {"conflicts": [r.ref for r in clash]})
    db.session.commit()
    current_app.logger.info("rate setting %s superseded by %s", old.id, new.id)
    return ok({"previous": _setting_row(old), "current": _setting_row(new)}, 201)

# -------- period rates ----------
@bp.get("/period-rates")
def list_period_rates():
    q = PeriodRate.query
    if request.args.get("academicYearId"):
        q = q.filter(PeriodRate.academic_year_id == _i(request.args, "academicYearId"))
    if request.args.get("approvalStatus"):
        q = q.filter(PeriodRate.approval_status == request.args["approvalStatus"])
    q = q.order_by(PeriodRate.effective_date.desc(), PeriodRate.id.desc())
    page, size = page_limit()
    total = q.count()
    rows = q.offset((page - 1) * size).limit(size).all()
    return ok([_period_rate_row(x) for x in rows], page=page, size=size, total=total)

@bp.post("/period-rates")
def create_period_rate():
    j = request.get_json(silent=True) or {}
    ay_id = _i(j, "academicYearId")
    if ay_id is None:
        raise _invalid("academicYearId is required")
    ay = db.session.get(AcademicYear, ay_id)
    if ay is None:
        raise NotFoundError("AcademicYear", ay_id)
    name = (j.get("name") or "").strip()
    rate = _dec(j, "ratePerPeriod")
    if not name or rate is None:
        raise _invalid("name and ratePerPeriod are required")
    eff = _d(j, "effectiveDate", required=True)
    end = _d(j, "endDate")
    if not ay.contains(eff) or (end and not ay.contains(end)):
        raise _invalid("period rate dates must lie inside the academic year", academicYearId=ay.id)
    if end and end < eff:
        raise _invalid("endDate must be >= effectiveDate")

    x = PeriodRate(academic_year_id=ay.id, name=name, rate_per_period=rate, effective_date=eff,
                   end_date=end, approval_status="draft", is_active=True,
                   description=j.get("description"))
    db.session.add(x)
    db.session.commit()
    return ok(_period_rate_row(x), 201)

@bp.post("/period-rates/<int:rate_id>/approve")
def approve_period_rate(rate_id: int):
    x = db.session.get(PeriodRate, rate_id)
    if x is None:
        raise NotFoundError("PeriodRate", rate_id)
    if x.approval_status not in ("draft", "pending"):
        raise APIError("INVALID_TRANSITION", f"Period rate is '{x.approval_status}'", 409, {"id": x.id})
    others = (
        PeriodRate.query
        .filter(PeriodRate.id != x.id)
        .filter(PeriodRate.academic_year_id == x.academic_year_id)
        .filter(PeriodRate.approval_status == "approved")
        .filter(PeriodRate.is_active.is_(True))
        .all()
    )
    clash = [o for o in others if o.overlaps(x)]
    if clash:
        raise APIError("RATE_OVERLAP", "Another approved period rate covers part of this period", 409,
                       {"id": x.id, "conflicts": [o.ref for o in clash]})
    x.approval_status = "approved"
    x.approved_at = _now()
    db.session.commit()
    return ok(_period_rate_row(x))
