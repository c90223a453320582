import os
from datetime import date, datetime
from decimal import Decimal
from itertools import count
from types import SimpleNamespace

import pytest

from teachpay_api import create_app
from teachpay_api.extensions import db
from teachpay_api.models.academic import AcademicYear, Semester
from teachpay_api.models.assignment import TeachingAssignment
from teachpay_api.models.curriculum import ClassSection, Subject
from teachpay_api.models.master import Degree, Department, Teacher
from teachpay_api.models.rates import PeriodRate, RateSetting

_seq = count(1)


def _mk_app(**config):
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    return create_app({"TESTING": True, **config})


@pytest.fixture
def app():
    app = _mk_app()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# ---------- builders ----------

def add(*rows):
    db.session.add_all(rows)
    db.session.commit()
    return rows[0] if len(rows) == 1 else rows


def make_department(code=None):
    code = code or f"D{next(_seq)}"
    return add(Department(code=code, name=f"Department {code}"))


def make_degree(coefficient="1.2", code=None):
    code = code or f"DG{next(_seq)}"
    return add(Degree(code=code, name=f"Degree {code}", coefficient=Decimal(coefficient)))


def make_teacher(department, degree, **kw):
    n = next(_seq)
    kw.setdefault("code", f"GV{n:03d}")
    kw.setdefault("full_name", f"Teacher {n}")
    return add(Teacher(department_id=department.id, degree_id=degree.id, **kw))


def make_subject(department, coefficient="1.0", period_minutes=50, subject_type="major"):
    n = next(_seq)
    return add(Subject(code=f"SUB{n}", name=f"Subject {n}", credits=Decimal("3"),
                       coefficient=Decimal(coefficient), subject_type=subject_type,
                       department_id=department.id, period_minutes=period_minutes))


def make_class(subject, student_count=35, class_type="theory", semester=None):
    n = next(_seq)
    return add(ClassSection(code=f"CL{n}", name=f"Class {n}", subject_id=subject.id,
                            semester_id=semester.id if semester else None,
                            student_count=student_count, class_type=class_type))


def make_assignment(w, teacher, klass, status="completed", end_date=date(2024, 12, 20), semester="sem1", **hours):
    sem = getattr(w, semester) if semester else None
    return add(TeachingAssignment(
        code=f"PC{next(_seq):05d}",
        teacher_id=teacher.id,
        class_id=klass.id,
        academic_year_id=w.ay.id,
        semester_id=sem.id if sem else None,
        status=status,
        start_date=date(2024, 9, 5),
        end_date=end_date,
        **{k: Decimal(str(v)) for k, v in hours.items()},
    ))


def make_rate(rate_type, base_amount, scope="university", status="active", start=date(2024, 9, 1), **kw):
    n = next(_seq)
    return add(RateSetting(
        code=kw.pop("code", f"R{n}"),
        name=kw.pop("name", f"{rate_type} {n}"),
        rate_type=rate_type,
        applicable_scope=scope,
        base_amount=Decimal(str(base_amount)),
        start_date=start,
        status=status,
        **kw,
    ))


def make_period_rate(w, amount="150000", effective=date(2024, 9, 1), end=None, status="approved"):
    return add(PeriodRate(academic_year_id=w.ay.id, name=f"Period rate {next(_seq)}",
                          rate_per_period=Decimal(amount), effective_date=effective, end_date=end,
                          approval_status=status, is_active=True, approved_at=datetime.utcnow()))


@pytest.fixture
def world(app):
    """
    One academic year with two semesters, a department, a master's degree
    (1.2), a 50-minute subject (1.0), a 35-student class (1.1), a teacher
    and an approved period rate of 150,000.
    """
    ay = add(AcademicYear(code="2024-2025", name="AY 2024-2025",
                          start_date=date(2024, 9, 1), end_date=date(2025, 8, 31)))
    sem1 = add(Semester(academic_year_id=ay.id, code="HK1", name="Semester 1",
                        start_date=date(2024, 9, 1), end_date=date(2025, 1, 15)))
    sem2 = add(Semester(academic_year_id=ay.id, code="HK2", name="Semester 2",
                        start_date=date(2025, 1, 16), end_date=date(2025, 6, 30)))
    dept = make_department("CNTT")
    degree = make_degree("1.2", "THS")
    subject = make_subject(dept)
    klass = make_class(subject, 35, semester=sem1)
    teacher = make_teacher(dept, degree)
    w = SimpleNamespace(ay=ay, sem1=sem1, sem2=sem2, dept=dept, degree=degree,
                        subject=subject, klass=klass, teacher=teacher)
    w.period_rate = make_period_rate(w)
    return w
