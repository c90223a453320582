from datetime import date, datetime, timedelta

import pytest

from teachpay_api.common.errors import (
    CalculationInProgressError, ImmutableCalculationError, InvalidScopeError, InvalidTransitionError,
    RateNotFoundError,
)
from teachpay_api.extensions import db
from teachpay_api.models.salary import CalculationLock, SalaryCalculation
from teachpay_api.services import calculation_store as store
from teachpay_api.services.periods import academic_year_period, monthly_period, semester_period
from teachpay_api.services.salary_engine import calculate_teacher

from conftest import make_assignment, make_class, make_rate, make_teacher


def _calc(w, **kw):
    return calculate_teacher(w.teacher.id, semester_period(w.sem1.id), **kw)


def test_first_calculation_is_version_one(world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    calc = _calc(world)

    assert calc.version == 1
    assert calc.status == "calculated"
    assert calc.net_amount == 8_910_000
    assert calc.base_amount == 8_910_000
    assert calc.assignment_count == 1
    assert [l.kind for l in calc.lines] == ["base"]
    assert calc.lines[0].rate_ref == f"period_rate:{world.period_rate.id}"
    assert [e["action"] for e in calc.audit_trail] == ["created", "calculated"]
    assert CalculationLock.query.count() == 0


def test_zero_assignments_gives_zero_record(world):
    calc = _calc(world)
    assert calc.status == "calculated"
    assert calc.gross_amount == 0 and calc.net_amount == 0
    assert calc.lines == []


def test_only_eligible_assignments_count(world, app):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    make_assignment(world, world.teacher, world.klass, status="in_progress", lecture_hours="10")
    make_assignment(world, world.teacher, world.klass, lecture_hours="10", semester="sem2",
                    end_date=date(2025, 5, 1))
    assert _calc(world).assignment_count == 1

    app.config["ELIGIBLE_ASSIGNMENT_STATUSES"] = ("completed", "in_progress")
    assert _calc(world).assignment_count == 2


def test_recalculation_with_same_inputs_is_idempotent(world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    first = _calc(world)
    again = _calc(world)
    assert again.id == first.id
    assert again.version == 1
    assert SalaryCalculation.query.count() == 1


def test_changed_inputs_create_new_version(world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    v1 = _calc(world)
    make_assignment(world, world.teacher, world.klass, lecture_hours="25")
    v2 = _calc(world)

    assert v2.version == 2
    assert v2.supersedes_id == v1.id
    assert v2.net_amount == 8_910_000 + 5_940_000
    db.session.refresh(v1)
    assert v1.status == "archived"
    assert store.current_record(world.teacher.id, v2.period_key).id == v2.id


def test_overtime_consumes_standard_load_in_completion_order(world):
    make_rate("overtime", 200000)
    world.teacher.standard_load_periods = 50
    db.session.commit()
    late = make_assignment(world, world.teacher, world.klass, lecture_hours="25", end_date=date(2025, 1, 10))
    early = make_assignment(world, world.teacher, world.klass, lecture_hours="37.5", end_date=date(2024, 11, 30))

    calc = _calc(world)
    lines = {(l.assignment_id, l.kind): l for l in calc.lines}
    assert float(lines[(early.id, "base")].quantity) == 45
    assert float(lines[(late.id, "base")].quantity) == 5
    assert float(lines[(late.id, "overtime")].quantity) == 25
    assert calc.overtime_amount == 25 * 200000 * 132 // 100
    assert float(calc.overtime_periods) == 25


def test_year_uses_a_standard_load_per_semester(world):
    make_rate("overtime", 200000)
    world.teacher.standard_load_periods = 100
    db.session.commit()
    spring = make_class(world.subject, 35, semester=world.sem2)
    make_assignment(world, world.teacher, world.klass, lecture_hours="100", end_date=date(2024, 12, 20))
    make_assignment(world, world.teacher, spring, lecture_hours="50", end_date=date(2025, 5, 20), semester="sem2")

    s1 = calculate_teacher(world.teacher.id, semester_period(world.sem1.id))
    s2 = calculate_teacher(world.teacher.id, semester_period(world.sem2.id))
    year = calculate_teacher(world.teacher.id, academic_year_period(world.ay.id))

    assert float(s1.overtime_periods) == 20
    assert float(s2.overtime_periods) == 0
    assert float(year.overtime_periods) == 20
    assert s1.net_amount == 100 * 198000 + 20 * 264000
    assert s2.net_amount == 60 * 198000
    assert year.net_amount == s1.net_amount + s2.net_amount


def test_month_gets_a_day_weighted_share_of_the_load(world):
    make_rate("overtime", 200000)
    world.teacher.standard_load_periods = 100
    db.session.commit()
    make_assignment(world, world.teacher, world.klass, lecture_hours="75", end_date=date(2024, 12, 20))

    calc = calculate_teacher(world.teacher.id, monthly_period(world.ay.id, 2024, 12))
    # December is 31 of semester 1's 137 days
    assert calc.calc_meta["loadBySemester"][str(world.sem1.id)] == "3100/137"
    assert calc.calc_meta["loadBySemester"][str(world.sem2.id)] == "0"
    assert float(calc.base_periods) == pytest.approx(3100 / 137, abs=1e-3)
    assert float(calc.overtime_periods) == pytest.approx(90 - 3100 / 137, abs=1e-3)


def test_reviewing_record_is_immutable(world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    v1 = _calc(world)
    store.transition(v1.id, "reviewing", actor="auditor")

    make_assignment(world, world.teacher, world.klass, lecture_hours="25")
    with pytest.raises(ImmutableCalculationError) as ei:
        _calc(world)
    assert ei.value.payload["status"] == "reviewing"
    assert CalculationLock.query.count() == 0

    v2 = _calc(world, supersede=True)
    assert v2.version == 2 and v2.supersedes_id == v1.id
    db.session.refresh(v1)
    assert v1.status == "archived"


def test_supersede_leaves_approved_record_untouched(world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    v1 = _calc(world)
    store.transition(v1.id, "approved")
    make_assignment(world, world.teacher, world.klass, lecture_hours="25")

    v2 = _calc(world, supersede=True)
    db.session.refresh(v1)
    assert v1.status == "approved"
    assert v1.net_amount == 8_910_000
    assert v2.supersedes_id == v1.id


def test_workflow_transitions(world):
    calc = _calc(world)
    with pytest.raises(InvalidTransitionError):
        store.transition(calc.id, "paid")

    store.transition(calc.id, "approved", actor="dean")
    store.transition(calc.id, "paid", actor="finance", notes="batch 12")
    store.transition(calc.id, "archived")
    assert calc.approved_at is not None and calc.paid_at is not None
    assert [e["action"] for e in calc.audit_trail][-3:] == ["approved", "paid", "archived"]
    assert calc.audit_trail[-2]["notes"] == "batch 12"

    with pytest.raises(InvalidTransitionError):
        store.transition(calc.id, "reviewing")


def test_concurrent_calculation_is_refused(world):
    key = semester_period(world.sem1.id).key
    db.session.execute(CalculationLock.__table__.insert().values(
        teacher_id=world.teacher.id, period_key=key, token="other", acquired_at=datetime.utcnow()))
    db.session.commit()
    with pytest.raises(CalculationInProgressError):
        _calc(world)
    assert SalaryCalculation.query.count() == 0


def test_stale_lock_is_reclaimed(world, app):
    key = semester_period(world.sem1.id).key
    ttl = app.config["CALC_LOCK_TTL_SECONDS"]
    db.session.execute(CalculationLock.__table__.insert().values(
        teacher_id=world.teacher.id, period_key=key, token="dead",
        acquired_at=datetime.utcnow() - timedelta(seconds=ttl + 60)))
    db.session.commit()
    assert _calc(world).version == 1
    assert CalculationLock.query.count() == 0


def test_failure_releases_lock_and_writes_nothing(world):
    world.period_rate.approval_status = "rejected"
    db.session.commit()
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    with pytest.raises(RateNotFoundError):
        _calc(world)
    assert CalculationLock.query.count() == 0
    assert SalaryCalculation.query.count() == 0


def test_explicit_assignments_must_belong_to_teacher(world):
    other = make_teacher(world.dept, world.degree)
    foreign = make_assignment(world, other, world.klass, lecture_hours="10")
    with pytest.raises(InvalidScopeError):
        _calc(world, assignment_ids=[foreign.id])


def test_explicit_assignments_must_fall_in_period(world):
    later = make_assignment(world, world.teacher, world.klass, lecture_hours="10", semester="sem2",
                            end_date=date(2025, 5, 1))
    with pytest.raises(InvalidScopeError):
        _calc(world, assignment_ids=[later.id])


def test_deductions_are_recorded_as_lines(world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    calc = _calc(world, deductions=[{"code": "INSURANCE", "amount": 935550}])
    assert calc.gross_amount == 8_910_000
    assert calc.deduction_amount == 935_550
    assert calc.net_amount == 8_910_000 - 935_550
    assert calc.lines[-1].kind == "deduction" and calc.lines[-1].assignment_id is None


def test_semester_from_another_year_is_refused(world):
    with pytest.raises(InvalidScopeError):
        semester_period(world.sem1.id, academic_year_id=world.ay.id + 1)


def test_other_period_types(world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5", end_date=date(2024, 12, 20))
    december = monthly_period(world.ay.id, 2024, 12)
    assert december.key == f"monthly:{world.ay.id}:2024-12"
    assert calculate_teacher(world.teacher.id, december).net_amount == 8_910_000
    assert calculate_teacher(world.teacher.id, monthly_period(world.ay.id, 2024, 11)).net_amount == 0
    assert calculate_teacher(world.teacher.id, academic_year_period(world.ay.id)).assignment_count == 1


def test_base_hourly_rule_stands_in_for_missing_period_rate(world):
    world.period_rate.is_active = False
    db.session.commit()
    make_rate("base_hourly", 180000)
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    # 180,000 per hour -> 150,000 per 50-minute period
    assert _calc(world).base_amount == 8_910_000
