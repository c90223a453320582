from datetime import datetime

from teachpay_api.extensions import db

CALC_STATUSES = ("draft", "calculating", "calculated", "reviewing", "approved", "paid", "archived")
PERIOD_TYPES = ("monthly", "semester", "academic_year", "custom")
LINE_KINDS = ("base", "overtime", "holiday", "bonus", "allowance", "deduction")


class SalaryCalculation(db.Model):
    """
    Computed compensation of one teacher over one calculation period.

    Amounts are integer minor currency units. Several versions may exist per
    (teacher_id, period_key); the highest version is the current one.

    Records are written as 'calculated'. 'draft' and 'calculating' stay in the
    enum for schema compatibility but are never assigned: an in-flight
    calculation is represented by a CalculationLock row, not by a status.
    """

    __tablename__ = "salary_calculations"

    id = db.Column(db.Integer, primary_key=True)
    calculation_code = db.Column(db.String(40), unique=True, nullable=False)
    teacher_id = db.Column(db.Integer, db.ForeignKey("teachers.id"), nullable=False, index=True)

    period_type = db.Column(db.Enum(*PERIOD_TYPES, name="calc_period_type_enum"), nullable=False)
    period_key = db.Column(db.String(80), nullable=False, index=True)
    academic_year_id = db.Column(db.Integer, db.ForeignKey("academic_years.id"), nullable=False)
    semester_id = db.Column(db.Integer, db.ForeignKey("semesters.id"), nullable=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    month = db.Column(db.Integer)
    year = db.Column(db.Integer, nullable=False)

    status = db.Column(db.Enum(*CALC_STATUSES, name="calc_status_enum"), nullable=False, default="draft")
    version = db.Column(db.Integer, nullable=False, default=1)
    supersedes_id = db.Column(db.Integer, db.ForeignKey("salary_calculations.id"), nullable=True)

    assignment_count = db.Column(db.Integer, nullable=False, default=0)
    total_hours = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_periods = db.Column(db.Numeric(12, 4), nullable=False, default=0)
    base_periods = db.Column(db.Numeric(12, 4), nullable=False, default=0)
    overtime_periods = db.Column(db.Numeric(12, 4), nullable=False, default=0)
    total_students = db.Column(db.Integer, nullable=False, default=0)
    total_credits = db.Column(db.Numeric(8, 1), nullable=False, default=0)

    base_amount = db.Column(db.BigInteger, nullable=False, default=0)
    overtime_amount = db.Column(db.BigInteger, nullable=False, default=0)
    holiday_amount = db.Column(db.BigInteger, nullable=False, default=0)
    bonus_amount = db.Column(db.BigInteger, nullable=False, default=0)
    allowance_amount = db.Column(db.BigInteger, nullable=False, default=0)
    deduction_amount = db.Column(db.BigInteger, nullable=False, default=0)
    gross_amount = db.Column(db.BigInteger, nullable=False, default=0)
    net_amount = db.Column(db.BigInteger, nullable=False, default=0)

    fingerprint = db.Column(db.String(64), nullable=False)
    calc_meta = db.Column(db.JSON)      # summary of inputs used
    audit_trail = db.Column(db.JSON)    # [{action, actor, at, notes}]

    calculated_at = db.Column(db.DateTime)
    approved_at = db.Column(db.DateTime)
    paid_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("teacher_id", "period_key", "version", name="uq_salary_calc_version"),
    )

    teacher = db.relationship("Teacher", lazy="joined")
    supersedes = db.relationship("SalaryCalculation", remote_side=[id])
    lines = db.relationship(
        "SalaryCalculationLine",
        back_populates="calculation",
        order_by="SalaryCalculationLine.position",
        cascade="all, delete-orphan",
    )


class SalaryCalculationLine(db.Model):
    __tablename__ = "salary_calculation_lines"

    id = db.Column(db.Integer, primary_key=True)
    calculation_id = db.Column(db.Integer, db.ForeignKey("salary_calculations.id"),
                               nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    assignment_id = db.Column(db.Integer, db.ForeignKey("teaching_assignments.id"), nullable=True)
    kind = db.Column(db.Enum(*LINE_KINDS, name="calc_line_kind_enum"), nullable=False)

    quantity = db.Column(db.Numeric(12, 4), nullable=False, default=0)
    unit_rate = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    coefficient = db.Column(db.Numeric(10, 6), nullable=False, default=1)
    rate_ref = db.Column(db.String(40))
    amount = db.Column(db.BigInteger, nullable=False, default=0)
    calc_trace_json = db.Column(db.JSON)

    calculation = db.relationship("SalaryCalculation", back_populates="lines")


class CalculationLock(db.Model):
    """Row present while a (teacher, period) is being calculated."""

    __tablename__ = "calculation_locks"

    teacher_id = db.Column(db.Integer, primary_key=True)
    period_key = db.Column(db.String(80), primary_key=True)
    token = db.Column(db.String(36), nullable=False)
    acquired_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
