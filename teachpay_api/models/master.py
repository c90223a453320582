from datetime import datetime

from teachpay_api.extensions import db


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Degree(db.Model):
    __tablename__ = "degrees"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    coefficient = db.Column(db.Numeric(6, 3), nullable=False, default=1)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Teacher(db.Model):
    """
    A member of the teaching staff.

    standard_load_periods -> periods per calculation period paid at the base
                             rate; anything above is overtime. NULL falls back
                             to the STANDARD_LOAD_PERIODS config value.
    """

    __tablename__ = "teachers"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200))
    department_id = db.Column(
        db.Integer,
        db.ForeignKey("departments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    degree_id = db.Column(
        db.Integer,
        db.ForeignKey("degrees.id", ondelete="RESTRICT"),
        nullable=False,
    )
    position = db.Column(db.String(60), default="lecturer")
    years_of_service = db.Column(db.Integer, default=0, nullable=False)
    standard_load_periods = db.Column(db.Numeric(8, 2), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    department = db.relationship(
        "Department", backref=db.backref("teachers", lazy="dynamic")
    )
    degree = db.relationship("Degree", lazy="joined")
