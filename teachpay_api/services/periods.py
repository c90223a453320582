from __future__ import annotations
import calendar as pycal
from dataclasses import dataclass
from datetime import date
from typing import Optional

from teachpay_api.common.errors import InvalidScopeError, NotFoundError
from teachpay_api.extensions import db
from teachpay_api.models.academic import AcademicYear, Semester


@dataclass(frozen=True)
class CalculationPeriod:
    period_type: str               # monthly | semester | academic_year | custom
    academic_year_id: int
    start_date: date
    end_date: date
    semester_id: Optional[int] = None
    month: Optional[int] = None

    @property
    def year(self) -> int:
        return self.start_date.year

    @property
    def key(self) -> str:
        """Stable identity of the period; used for locks and versioning."""
        if self.period_type == "semester":
            return f"semester:{self.academic_year_id}:{self.semester_id}"
        if self.period_type == "academic_year":
            return f"academic_year:{self.academic_year_id}"
        if self.period_type == "monthly":
            return f"monthly:{self.academic_year_id}:{self.start_date:%Y-%m}"
        return f"custom:{self.academic_year_id}:{self.start_date.isoformat()}:{self.end_date.isoformat()}"

    def contains(self, on_date: date) -> bool:
        return self.start_date <= on_date <= self.end_date

    def as_dict(self) -> dict:
        return {
            "periodType": self.period_type,
            "periodKey": self.key,
            "academicYearId": self.academic_year_id,
            "semesterId": self.semester_id,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "month": self.month,
            "year": self.year,
        }


def _year_or_404(academic_year_id: int) -> AcademicYear:
    ay = db.session.get(AcademicYear, academic_year_id)
    if ay is None:
        raise NotFoundError("AcademicYear", academic_year_id)
    return ay


def semester_period(semester_id: int, academic_year_id: int | None = None) -> CalculationPeriod:
    sem = db.session.get(Semester, semester_id)
    if sem is None:
        raise NotFoundError("Semester", semester_id)
    if academic_year_id is not None and int(academic_year_id) != sem.academic_year_id:
        raise InvalidScopeError(
            "Semester does not belong to the requested academic year",
            semester_id=semester_id, academic_year_id=academic_year_id,
        )
    return CalculationPeriod(
        period_type="semester",
        academic_year_id=sem.academic_year_id,
        semester_id=sem.id,
        start_date=sem.start_date,
        end_date=sem.end_date,
    )


def academic_year_period(academic_year_id: int) -> CalculationPeriod:
    ay = _year_or_404(academic_year_id)
    return CalculationPeriod(
        period_type="academic_year",
        academic_year_id=ay.id,
        start_date=ay.start_date,
        end_date=ay.end_date,
    )


def monthly_period(academic_year_id: int, year: int, month: int) -> CalculationPeriod:
    ay = _year_or_404(academic_year_id)
    if not 1 <= int(month) <= 12:
        raise InvalidScopeError("month must be between 1 and 12", month=month)
    first = date(int(year), int(month), 1)
    last = date(int(year), int(month), pycal.monthrange(int(year), int(month))[1])
    if not (ay.contains(first) or ay.contains(last)):
        raise InvalidScopeError(
            "Month lies outside the academic year",
            academic_year_id=ay.id, year=year, month=month,
        )
    # clip to the academic year so assignments outside it never leak in
    return CalculationPeriod(
        period_type="monthly",
        academic_year_id=ay.id,
        start_date=max(first, ay.start_date),
        end_date=min(last, ay.end_date),
        month=int(month),
    )


def custom_period(academic_year_id: int, start: date, end: date) -> CalculationPeriod:
    ay = _year_or_404(academic_year_id)
    if end < start:
        raise InvalidScopeError("end date must be >= start date",
                                start=start.isoformat(), end=end.isoformat())
    if not (ay.contains(start) and ay.contains(end)):
        raise InvalidScopeError(
            "Custom period must lie inside the academic year",
            academic_year_id=ay.id, start=start.isoformat(), end=end.isoformat(),
        )
    return CalculationPeriod(
        period_type="custom",
        academic_year_id=ay.id,
        start_date=start,
        end_date=end,
    )


def _int(data: dict, name: str):
    v = data.get(name)
    if v in (None, ""):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        raise InvalidScopeError(f"{name} must be an integer", **{name: v})


def _iso(data: dict, name: str):
    v = data.get(name)
    if not v:
        return None
    try:
        return date.fromisoformat(str(v))
    except ValueError:
        raise InvalidScopeError(f"{name} must be YYYY-MM-DD", **{name: v})


def period_from_request(data: dict) -> CalculationPeriod:
    """
    Build a period from request fields (JSON body or query args):
      semesterId [academicYearId]          -> semester
      academicYearId year month            -> monthly
      academicYearId startDate endDate     -> custom
      academicYearId                       -> academic year
    """
    semester_id = _int(data, "semesterId")
    ay_id = _int(data, "academicYearId")
    if semester_id is not None:
        return semester_period(semester_id, ay_id)
    if ay_id is None:
        raise InvalidScopeError("semesterId or academicYearId is required")

    month = _int(data, "month")
    if month is not None:
        year = _int(data, "year")
        if year is None:
            raise InvalidScopeError("year is required with month", month=month)
        return monthly_period(ay_id, year, month)

    start, end = _iso(data, "startDate"), _iso(data, "endDate")
    if start or end:
        if not (start and end):
            raise InvalidScopeError("startDate and endDate go together")
        return custom_period(ay_id, start, end)
    return academic_year_period(ay_id)
