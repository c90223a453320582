from datetime import datetime

from teachpay_api.extensions import db

ASSIGNMENT_STATUSES = ("draft", "assigned", "confirmed", "in_progress", "completed", "cancelled")
ASSIGNMENT_TYPES = ("primary", "support", "substitute", "additional")


class TeachingAssignment(db.Model):
    """
    One teacher teaching one class section within one academic year.

    Workload is recorded in contact hours per kind; the engine converts hours
    to periods with the subject's period_minutes. holiday_hours are taught on
    public holidays and are paid at the holiday rate on top of the rest.
    """

    __tablename__ = "teaching_assignments"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    teacher_id = db.Column(
        db.Integer,
        db.ForeignKey("teachers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    class_id = db.Column(
        db.Integer,
        db.ForeignKey("classes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    academic_year_id = db.Column(
        db.Integer,
        db.ForeignKey("academic_years.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    semester_id = db.Column(db.Integer, db.ForeignKey("semesters.id"), nullable=True, index=True)
    assignment_type = db.Column(
        db.Enum(*ASSIGNMENT_TYPES, name="assignment_type_enum"), nullable=False, default="primary"
    )
    status = db.Column(
        db.Enum(*ASSIGNMENT_STATUSES, name="assignment_status_enum"), nullable=False, default="draft"
    )

    lecture_hours = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    practice_hours = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    lab_hours = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    other_hours = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    holiday_hours = db.Column(db.Numeric(8, 2), nullable=False, default=0)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.String(1000))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index("ix_assignments_teacher_period", "teacher_id", "academic_year_id", "semester_id", "status"),
    )

    teacher = db.relationship("Teacher", lazy="joined")
    klass = db.relationship("ClassSection", lazy="joined")
    academic_year = db.relationship("AcademicYear")
    semester = db.relationship("Semester")

    @property
    def teaching_hours(self):
        return (self.lecture_hours or 0) + (self.practice_hours or 0) + \
               (self.lab_hours or 0) + (self.other_hours or 0)
