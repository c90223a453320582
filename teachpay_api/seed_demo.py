"""Demo data for local runs (`flask seed-demo`). Safe to run repeatedly."""
from datetime import date, datetime
from decimal import Decimal

from teachpay_api.extensions import db
from teachpay_api.models.academic import AcademicYear, Semester
from teachpay_api.models.assignment import TeachingAssignment
from teachpay_api.models.curriculum import ClassSection, Subject
from teachpay_api.models.master import Degree, Department, Teacher
from teachpay_api.models.rates import PeriodRate, RateSetting


def _ensure(model, lookup: dict, **values):
    row = model.query.filter_by(**lookup).first()
    if row is None:
        row = model(**lookup, **values)
        db.session.add(row)
        db.session.flush()
    return row


def seed_demo() -> dict:
    ay = _ensure(AcademicYear, {"code": "2024-2025"}, name="Academic year 2024-2025",
                 start_date=date(2024, 9, 1), end_date=date(2025, 8, 31))
    hk1 = _ensure(Semester, {"academic_year_id": ay.id, "code": "HK1"}, name="Semester 1",
                  start_date=date(2024, 9, 1), end_date=date(2025, 1, 15))
    _ensure(Semester, {"academic_year_id": ay.id, "code": "HK2"}, name="Semester 2",
            start_date=date(2025, 1, 16), end_date=date(2025, 6, 30))

    it = _ensure(Department, {"code": "CNTT"}, name="Information Technology")
    eco = _ensure(Department, {"code": "KT"}, name="Economics")

    bachelor = _ensure(Degree, {"code": "CN"}, name="Bachelor", coefficient=Decimal("1.0"))
    master = _ensure(Degree, {"code": "THS"}, name="Master", coefficient=Decimal("1.2"))
    phd = _ensure(Degree, {"code": "TS"}, name="Doctor", coefficient=Decimal("1.5"))

    teachers = [
        _ensure(Teacher, {"code": "GV001"}, full_name="Nguyen Van An", department_id=it.id,
                degree_id=master.id, years_of_service=4),
        _ensure(Teacher, {"code": "GV002"}, full_name="Tran Thi Binh", department_id=it.id,
                degree_id=phd.id, years_of_service=10, standard_load_periods=Decimal("60")),
        _ensure(Teacher, {"code": "GV003"}, full_name="Le Van Cuong", department_id=eco.id,
                degree_id=bachelor.id, years_of_service=1),
    ]

    subjects = [
        _ensure(Subject, {"code": "INT1001"}, name="Introduction to Programming", credits=Decimal("3"),
                coefficient=Decimal("1.0"), subject_type="major", department_id=it.id,
                period_minutes=50, lecture_periods=45),
        _ensure(Subject, {"code": "INT2002"}, name="Databases", credits=Decimal("3"),
                coefficient=Decimal("1.1"), subject_type="specialization", department_id=it.id,
                period_minutes=50, lecture_periods=30, practice_periods=15),
        _ensure(Subject, {"code": "ECO1001"}, name="Microeconomics", credits=Decimal("2"),
                coefficient=Decimal("1.0"), subject_type="general", department_id=eco.id,
                period_minutes=45, lecture_periods=30),
    ]

    classes = [
        _ensure(ClassSection, {"code": "INT1001-01"}, name="Programming 01", subject_id=subjects[0].id,
                semester_id=hk1.id, student_count=35, class_type="theory"),
        _ensure(ClassSection, {"code": "INT2002-01"}, name="Databases 01", subject_id=subjects[1].id,
                semester_id=hk1.id, student_count=65, class_type="lab"),
        _ensure(ClassSection, {"code": "ECO1001-01"}, name="Microeconomics 01", subject_id=subjects[2].id,
                semester_id=hk1.id, student_count=120, class_type="theory"),
    ]

    plan = [
        ("PC-0001", teachers[0], classes[0], {"lecture_hours": Decimal("37.5")}, date(2024, 12, 20)),
        ("PC-0002", teachers[1], classes[1], {"lecture_hours": Decimal("25"), "lab_hours": Decimal("37.5"),
                                              "holiday_hours": Decimal("2.5")}, date(2024, 12, 27)),
        ("PC-0003", teachers[2], classes[2], {"lecture_hours": Decimal("22.5")}, date(2025, 1, 10)),
    ]
    for code, teacher, klass, hours, end in plan:
        _ensure(TeachingAssignment, {"code": code}, teacher_id=teacher.id, class_id=klass.id,
                academic_year_id=ay.id, semester_id=hk1.id, status="completed",
                start_date=hk1.start_date, end_date=end, **hours)

    _ensure(PeriodRate, {"academic_year_id": ay.id, "name": "Standard period rate 2024-2025"},
            rate_per_period=Decimal("150000"), effective_date=ay.start_date, approval_status="approved",
            is_active=True, approved_at=datetime.utcnow())

    rate_defaults = dict(start_date=ay.start_date, academic_year_id=ay.id, status="active",
                         approved_at=datetime.utcnow())
    _ensure(RateSetting, {"code": "OT-UNI"}, name="Overtime period rate", rate_type="overtime",
            applicable_scope="university", base_amount=Decimal("180000"), **rate_defaults)
    _ensure(RateSetting, {"code": "HOL-UNI"}, name="Holiday period rate", rate_type="holiday",
            applicable_scope="university", base_amount=Decimal("225000"), **rate_defaults)
    _ensure(RateSetting, {"code": "ALW-TS"}, name="Doctoral allowance", rate_type="allowance",
            applicable_scope="degree", target_id=phd.id, base_amount=Decimal("500000"),
            step_increment=Decimal("50000"), formula_type="fixed", **rate_defaults)

    db.session.commit()
    return {
        "academic_year_id": ay.id,
        "semester_id": hk1.id,
        "department_ids": [it.id, eco.id],
        "teacher_ids": [t.id for t in teachers],
    }
