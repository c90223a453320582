from __future__ import annotations
from flask import Blueprint, request

from teachpay_api.common.errors import APIError
from teachpay_api.common.http import ok
from teachpay_api.services.periods import period_from_request
from teachpay_api.services.rollup import aggregate_university, university_summary_json

bp = Blueprint("university", __name__, url_prefix="/api/university")


def _ids(raw: str | None):
    if not raw:
        return None
    try:
        return [int(x) for x in raw.split(",") if x.strip()]
    except ValueError:
        raise APIError("VALIDATION_ERROR", "departmentIds must be comma-separated integers", 422,
                       {"departmentIds": raw})


@bp.get("/teaching-report")
def teaching_report():
    """University-wide rollup of current teacher calculations for one period."""
    period = period_from_request(request.args)
    summary = aggregate_university(period, _ids(request.args.get("departmentIds")))
    return ok(university_summary_json(summary))
