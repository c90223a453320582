from __future__ import annotations
import logging
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from teachpay_api.common.errors import AmbiguousRateError, InvalidScopeError, RateNotFoundError
from teachpay_api.models.academic import AcademicYear
from teachpay_api.models.rates import EFFECTIVE_STATUSES, PeriodRate, RateSetting
from teachpay_api.services.coefficients import class_coefficient_for
from teachpay_api.services.valuation import RatePart

log = logging.getLogger(__name__)


class RateCategory:
    PERIOD_RATE = "period_rate"
    BASE_HOURLY = "base_hourly"
    OVERTIME = "overtime"
    HOLIDAY = "holiday"
    BONUS = "bonus"
    ALLOWANCE = "allowance"
    COEFFICIENT = "coefficient"

    ALL = (PERIOD_RATE, BASE_HOURLY, OVERTIME, HOLIDAY, BONUS, ALLOWANCE, COEFFICIENT)


@dataclass(frozen=True)
class RateScope:
    """What an assignment looks like to the resolver."""
    department_id: Optional[int] = None
    degree_id: Optional[int] = None
    position: Optional[str] = None
    subject_type: Optional[str] = None
    class_type: Optional[str] = None

    def specificity(self, rate: RateSetting) -> Optional[int]:
        """
        2 = exact target (degree/position/subject type/class type),
        1 = department, 0 = university-wide, None = rate does not apply.
        """
        scope = rate.applicable_scope
        if scope == "university":
            return 0
        if scope == "department":
            return 1 if self.department_id is not None and rate.target_id == self.department_id else None
        if scope == "degree":
            return 2 if self.degree_id is not None and rate.target_id == self.degree_id else None
        wanted = {
            "position": self.position,
            "subject_type": self.subject_type,
            "class_type": self.class_type,
        }.get(scope)
        return 2 if wanted is not None and rate.target_value == wanted else None

    def as_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class Coefficients:
    degree: RatePart
    subject: RatePart
    klass: RatePart


class RateResolver:
    """
    Picks the single effective rate record per category for one academic year.

    Resolution for RateSetting categories, among active (or superseded) rows
    of the category whose effective period contains the date:
      1) most specific scope (targeted > department > university)
      2) higher priority
      3) most recent start date
    Two rows left tied, or two active rows of the same (type, scope, target)
    covering the same date, are a data error and raise AmbiguousRateError.

    Rows are loaded once per category and reused, so one resolver should
    serve a whole calculation.
    """

    def __init__(self, academic_year: AcademicYear, semester_id: Optional[int] = None):
        self.academic_year = academic_year
        self.semester_id = semester_id
        self._settings: Dict[str, List[RateSetting]] = {}
        self._period_rates: Optional[List[PeriodRate]] = None

    # ---------- loading ----------
    def _load_settings(self, rate_type: str) -> List[RateSetting]:
        rows = self._settings.get(rate_type)
        if rows is None:
            ay_id = self.academic_year.id
            rows = (
                RateSetting.query
                .filter(RateSetting.rate_type == rate_type)
                .filter(RateSetting.status.in_(EFFECTIVE_STATUSES))
                .filter((RateSetting.academic_year_id.is_(None)) | (RateSetting.academic_year_id == ay_id))
                .order_by(RateSetting.id.asc())
                .all()
            )
            self._settings[rate_type] = rows
        return rows

    def _load_period_rates(self) -> List[PeriodRate]:
        if self._period_rates is None:
            self._period_rates = (
                PeriodRate.query
                .filter(PeriodRate.academic_year_id == self.academic_year.id)
                .filter(PeriodRate.approval_status == "approved")
                .filter(PeriodRate.is_active.is_(True))
                .order_by(PeriodRate.id.asc())
                .all()
            )
        return self._period_rates

    # ---------- checks ----------
    def _check(self, on_date: date, category: str) -> None:
        if category not in RateCategory.ALL:
            raise InvalidScopeError(f"Unknown rate category '{category}'", category=category)
        if not self.academic_year.contains(on_date):
            raise InvalidScopeError(
                "Date falls outside the academic year",
                date=on_date.isoformat(),
                academic_year_id=self.academic_year.id,
                category=category,
            )

    def _semester_matches(self, rate: RateSetting, on_date: date) -> bool:
        if rate.semester_id is None:
            return True
        if self.semester_id is not None:
            return rate.semester_id == self.semester_id
        sem = rate.semester
        return sem is not None and sem.start_date <= on_date <= sem.end_date

    # ---------- selection ----------
    def _pick(self, category: str, on_date: date,
              ranked: Sequence[Tuple[int, RateSetting]]) -> Optional[RateSetting]:
        if not ranked:
            return None

        seen: Dict[tuple, RateSetting] = {}
        for _, rate in ranked:
            ident = (rate.rate_type, rate.applicable_scope, rate.target)
            if ident in seen:
                refs = [seen[ident].ref, rate.ref]
                log.warning("overlapping active %s rates on %s: %s", category, on_date, refs)
                raise AmbiguousRateError(category, on_date, refs, reason="overlapping_active")
            seen[ident] = rate

        def _key(item):
            rank, rate = item
            return (rank, rate.priority or 0, rate.start_date)

        ordered = sorted(ranked, key=_key, reverse=True)
        if len(ordered) > 1 and _key(ordered[0]) == _key(ordered[1]):
            tied = [r.ref for s, r in ordered if _key((s, r)) == _key(ordered[0])]
            log.warning("tied %s rates on %s: %s", category, on_date, tied)
            raise AmbiguousRateError(category, on_date, tied, reason="tie")
        return ordered[0][1]

    def _candidates(self, category: str, on_date: date, scope: RateScope):
        out = []
        for rate in self._load_settings(category):
            if not rate.contains(on_date) or not self._semester_matches(rate, on_date):
                continue
            rank = scope.specificity(rate)
            if rank is not None:
                out.append((rank, rate))
        return out

    def _resolve_period_rate(self, on_date: date) -> Optional[PeriodRate]:
        hits = [r for r in self._load_period_rates() if r.contains(on_date)]
        if len(hits) > 1:
            refs = [r.ref for r in hits]
            log.warning("overlapping period rates on %s: %s", on_date, refs)
            raise AmbiguousRateError(RateCategory.PERIOD_RATE, on_date, refs, reason="overlapping_active")
        return hits[0] if hits else None

    # ---------- public ----------
    def resolve_optional(self, on_date: date, category: str, scope: Optional[RateScope] = None):
        self._check(on_date, category)
        if category == RateCategory.PERIOD_RATE:
            return self._resolve_period_rate(on_date)
        return self._pick(category, on_date, self._candidates(category, on_date, scope or RateScope()))

    def resolve(self, on_date: date, category: str, scope: Optional[RateScope] = None):
        """Return the effective RateSetting / PeriodRate or raise RateNotFoundError."""
        found = self.resolve_optional(on_date, category, scope)
        if found is None:
            raise RateNotFoundError(
                category, on_date,
                scope=(scope or RateScope()).as_dict() or None,
                academic_year_id=self.academic_year.id,
            )
        return found

    def _targeted_coefficient(self, on_date: date, scope_name: str, target) -> Optional[RateSetting]:
        if target is None:
            return None
        ranked = []
        for rate in self._load_settings(RateCategory.COEFFICIENT):
            if rate.applicable_scope != scope_name or rate.target != target:
                continue
            if rate.contains(on_date) and self._semester_matches(rate, on_date):
                ranked.append((2, rate))
        return self._pick(RateCategory.COEFFICIENT, on_date, ranked)

    def resolve_coefficients(self, on_date: date, degree, subject, klass) -> Coefficients:
        """
        Degree, subject and class-size coefficients for one assignment. An
        active 'coefficient' rate aimed at the exact degree or subject type
        replaces the entity's own value. The class-size coefficient always
        comes from the class's student count.
        """
        self._check(on_date, RateCategory.COEFFICIENT)

        def _one(entity_value, entity_ref, scope_name, target):
            override = self._targeted_coefficient(on_date, scope_name, target)
            if override is not None:
                return RatePart(Decimal(str(override.coefficient)), override.ref)
            return RatePart(Decimal(str(entity_value)), entity_ref)

        return Coefficients(
            degree=_one(degree.coefficient, f"degree:{degree.id}", "degree", degree.id),
            subject=_one(subject.coefficient, f"subject:{subject.id}", "subject_type", subject.subject_type),
            klass=RatePart(class_coefficient_for(klass.student_count), f"class:{klass.id}"),
        )
