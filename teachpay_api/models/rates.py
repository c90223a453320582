from datetime import datetime
from decimal import Decimal

from teachpay_api.extensions import db

RATE_TYPES = ("base_hourly", "overtime", "holiday", "bonus", "allowance", "coefficient")
RATE_SCOPES = ("university", "department", "degree", "position", "subject_type", "class_type")
RATE_STATUSES = ("draft", "pending_approval", "approved", "active", "inactive", "superseded")
FORMULA_TYPES = ("fixed", "per_period")
PERIOD_RATE_APPROVAL = ("draft", "pending", "approved", "rejected")

# rows the resolver reads; superseded versions keep covering the dates before their successor
EFFECTIVE_STATUSES = ("active", "superseded")

# scopes whose target is a row id; the rest target a string value
ID_SCOPES = ("department", "degree")


class RateSetting(db.Model):
    """
    A versioned rate rule. Rows are never edited once active: a change is a
    new version (supersedes_id) and the old row moves to 'superseded'.

    Value block:
      base_amount     -> amount per unit (period, or per assignment for fixed bonuses)
      coefficient     -> multiplier on base_amount (or the coefficient itself
                         for rate_type='coefficient')
      step_increment  -> added per two full years of service
      minimum_rate / maximum_rate -> clamp on the effective amount
    """

    __tablename__ = "rate_settings"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(30), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    rate_type = db.Column(db.Enum(*RATE_TYPES, name="rate_type_enum"), nullable=False)
    applicable_scope = db.Column(
        db.Enum(*RATE_SCOPES, name="rate_scope_enum"), nullable=False, default="university"
    )
    target_id = db.Column(db.Integer, nullable=True)
    target_value = db.Column(db.String(60), nullable=True)

    base_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    minimum_rate = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    maximum_rate = db.Column(db.Numeric(14, 2), nullable=True)
    coefficient = db.Column(db.Numeric(6, 3), nullable=False, default=1)
    step_increment = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    formula_type = db.Column(
        db.Enum(*FORMULA_TYPES, name="rate_formula_enum"), nullable=False, default="fixed"
    )

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    academic_year_id = db.Column(db.Integer, db.ForeignKey("academic_years.id"), nullable=True)
    semester_id = db.Column(db.Integer, db.ForeignKey("semesters.id"), nullable=True)

    priority = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.Enum(*RATE_STATUSES, name="rate_status_enum"), nullable=False, default="draft")
    version = db.Column(db.Integer, nullable=False, default=1)
    supersedes_id = db.Column(db.Integer, db.ForeignKey("rate_settings.id"), nullable=True)

    approved_at = db.Column(db.DateTime)
    description = db.Column(db.String(1000))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index("ix_rate_settings_resolve", "rate_type", "applicable_scope", "status", "start_date", "end_date"),
    )

    supersedes = db.relationship("RateSetting", remote_side=[id])
    semester = db.relationship("Semester")

    @property
    def target(self):
        if self.applicable_scope == "university":
            return None
        if self.applicable_scope in ID_SCOPES:
            return self.target_id
        return self.target_value

    @property
    def ref(self) -> str:
        return f"rate_setting:{self.id}"

    def contains(self, on_date) -> bool:
        return self.start_date <= on_date and (self.end_date is None or on_date <= self.end_date)

    def overlaps(self, other: "RateSetting") -> bool:
        a_end = self.end_date
        b_end = other.end_date
        return (b_end is None or self.start_date <= b_end) and (a_end is None or other.start_date <= a_end)

    def effective_amount(self, years_of_service: int = 0) -> Decimal:
        amount = Decimal(str(self.base_amount or 0)) * Decimal(str(self.coefficient or 1))
        step = Decimal(str(self.step_increment or 0))
        if step > 0 and years_of_service:
            amount += (int(years_of_service) // 2) * step
        if self.minimum_rate:
            amount = max(amount, Decimal(str(self.minimum_rate)))
        if self.maximum_rate is not None:
            amount = min(amount, Decimal(str(self.maximum_rate)))
        return amount


class PeriodRate(db.Model):
    """Amount paid for one standard teaching period within one academic year."""

    __tablename__ = "period_rates"

    id = db.Column(db.Integer, primary_key=True)
    academic_year_id = db.Column(
        db.Integer,
        db.ForeignKey("academic_years.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    rate_per_period = db.Column(db.Numeric(14, 2), nullable=False)
    effective_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    approval_status = db.Column(
        db.Enum(*PERIOD_RATE_APPROVAL, name="period_rate_approval_enum"), nullable=False, default="draft"
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    approved_at = db.Column(db.DateTime)
    description = db.Column(db.String(1000))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("rate_per_period >= 0", name="ck_period_rate_non_negative"),
    )

    academic_year = db.relationship("AcademicYear")

    @property
    def ref(self) -> str:
        return f"period_rate:{self.id}"

    def contains(self, on_date) -> bool:
        return self.effective_date <= on_date and (self.end_date is None or on_date <= self.end_date)

    def overlaps(self, other: "PeriodRate") -> bool:
        return (other.end_date is None or self.effective_date <= other.end_date) and \
               (self.end_date is None or other.effective_date <= self.end_date)
