# teachpay_api/common/errors.py
from flask import Blueprint, current_app
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError
from teachpay_api.common.http import fail

bp_errors = Blueprint("errors", __name__)


class APIError(Exception):
    """Custom API Error class."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


class NotFoundError(APIError):
    def __init__(self, entity: str, entity_id):
        super().__init__("NOT_FOUND", f"{entity} {entity_id} not found", 404,
                         {"entity": entity, "id": entity_id})


# ---------- calculation engine taxonomy ----------
# All of these are terminal for the calculation they affect; nothing retries them.

class RateNotFoundError(APIError):
    def __init__(self, category: str, on_date=None, scope=None, academic_year_id=None):
        super().__init__(
            "RATE_NOT_FOUND",
            f"No effective '{category}' rate on {on_date}",
            422,
            {
                "category": category,
                "date": on_date.isoformat() if on_date else None,
                "academic_year_id": academic_year_id,
                "scope": scope,
            },
        )


class AmbiguousRateError(APIError):
    def __init__(self, category: str, on_date, candidate_refs, reason: str = "tie"):
        super().__init__(
            "AMBIGUOUS_RATE",
            f"Ambiguous '{category}' rate on {on_date} ({reason}): {', '.join(candidate_refs)}",
            409,
            {
                "category": category,
                "date": on_date.isoformat() if on_date else None,
                "candidates": list(candidate_refs),
                "reason": reason,
            },
        )


class ImmutableCalculationError(APIError):
    def __init__(self, calculation_id: int, status: str, teacher_id=None, period_key=None):
        super().__init__(
            "IMMUTABLE_CALCULATION",
            f"Calculation {calculation_id} is '{status}' and cannot be recomputed in place",
            409,
            {"calculation_id": calculation_id, "status": status,
             "teacher_id": teacher_id, "period": period_key},
        )


class CalculationInProgressError(APIError):
    def __init__(self, teacher_id: int, period_key: str):
        super().__init__(
            "CALCULATION_IN_PROGRESS",
            f"Teacher {teacher_id} is already being calculated for {period_key}",
            409,
            {"teacher_id": teacher_id, "period": period_key},
        )


class IncompleteAggregationError(APIError):
    def __init__(self, period_key: str, pending, department_id=None):
        super().__init__(
            "INCOMPLETE_AGGREGATION",
            f"{len(pending)} teacher calculation(s) not ready for {period_key}",
            409,
            {"period": period_key, "department_id": department_id, "pending": list(pending)},
        )


class InvalidScopeError(APIError):
    def __init__(self, message: str, **context):
        super().__init__("INVALID_SCOPE", message, 422, context or None)


class InvalidTransitionError(APIError):
    def __init__(self, calculation_id: int, current: str, target: str):
        super().__init__(
            "INVALID_TRANSITION",
            f"Calculation {calculation_id} cannot move from '{current}' to '{target}'",
            409,
            {"calculation_id": calculation_id, "from": current, "to": target},
        )


# ---------- handlers ----------

@bp_errors.app_errorhandler(APIError)
def _api_error(e: APIError):
    if e.status_code >= 500:
        current_app.logger.error("%s: %s", e.code, e.message)
    return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)

@bp_errors.app_errorhandler(HTTPException)
def _http(e: HTTPException):
    return fail(message=e.description or "HTTP error", status=e.code or 400)

@bp_errors.app_errorhandler(IntegrityError)
def _integrity(e: IntegrityError):
    # 409 for unique/FK violations
    return fail(message="Conflict / integrity error", status=409, code="CONSTRAINT_ERROR",
                detail=str(e.orig) if getattr(e, "orig", None) else str(e))

@bp_errors.app_errorhandler(Exception)
def _unhandled(e: Exception):
    current_app.logger.exception(e)
    return fail(message="Internal Server Error", status=500)
