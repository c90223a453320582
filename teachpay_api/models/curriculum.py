from datetime import datetime

from sqlalchemy import event
from sqlalchemy.orm import validates

from teachpay_api.extensions import db
from teachpay_api.services.coefficients import class_coefficient_for

SUBJECT_TYPES = ("general", "major", "specialization", "elective", "internship")
CLASS_TYPES = ("theory", "practice", "lab", "seminar", "online")


class Subject(db.Model):
    """
    A course in the catalogue.

    period_minutes is the subject's period definition: how many minutes of
    contact time make one paid teaching period.
    """

    __tablename__ = "subjects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(15), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    credits = db.Column(db.Numeric(4, 1), nullable=False, default=3)
    coefficient = db.Column(db.Numeric(6, 3), nullable=False, default=1)
    subject_type = db.Column(
        db.Enum(*SUBJECT_TYPES, name="subject_type_enum"), nullable=False, default="major"
    )
    department_id = db.Column(
        db.Integer,
        db.ForeignKey("departments.id", ondelete="RESTRICT"),
        nullable=False,
    )
    period_minutes = db.Column(db.Integer, nullable=False, default=50)
    lecture_periods = db.Column(db.Integer, nullable=False, default=0)
    practice_periods = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("period_minutes > 0", name="ck_subject_period_minutes"),
    )

    department = db.relationship("Department", lazy="joined")


class ClassSection(db.Model):
    """One class section of a subject. class_coefficient follows student_count."""

    __tablename__ = "classes"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(30), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    subject_id = db.Column(
        db.Integer,
        db.ForeignKey("subjects.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    semester_id = db.Column(db.Integer, db.ForeignKey("semesters.id"), nullable=True)
    student_count = db.Column(db.Integer, nullable=False, default=0)
    max_students = db.Column(db.Integer, nullable=False, default=200)
    class_type = db.Column(
        db.Enum(*CLASS_TYPES, name="class_type_enum"), nullable=False, default="theory"
    )
    class_coefficient = db.Column(db.Numeric(4, 2), nullable=False, default=1)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    subject = db.relationship("Subject", lazy="joined")

    @validates("student_count")
    def _sync_coefficient(self, key, value):
        value = int(value or 0)
        if value < 0:
            raise ValueError("student_count must be >= 0")
        self.class_coefficient = class_coefficient_for(value)
        return value


@event.listens_for(ClassSection, "before_insert")
@event.listens_for(ClassSection, "before_update")
def _recompute_class_coefficient(mapper, connection, target):
    target.class_coefficient = class_coefficient_for(target.student_count or 0)
