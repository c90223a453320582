from decimal import Decimal

import pytest

from teachpay_api.extensions import db
from teachpay_api.services.coefficients import class_coefficient_for

from conftest import make_class, make_department, make_subject


@pytest.mark.parametrize("students, expected", [
    (0, "1.0"), (30, "1.0"),
    (31, "1.1"), (50, "1.1"),
    (51, "1.2"), (70, "1.2"),
    (71, "1.3"), (100, "1.3"),
    (101, "1.4"), (450, "1.4"),
])
def test_tier_boundaries(students, expected):
    assert class_coefficient_for(students) == Decimal(expected)


def test_negative_head_count_rejected():
    with pytest.raises(ValueError):
        class_coefficient_for(-1)


def test_class_coefficient_follows_student_count(app):
    subject = make_subject(make_department())
    klass = make_class(subject, student_count=35)
    assert Decimal(klass.class_coefficient) == Decimal("1.1")

    klass.student_count = 101
    db.session.commit()
    assert Decimal(klass.class_coefficient) == Decimal("1.4")


def test_inconsistent_coefficient_is_never_stored(app):
    subject = make_subject(make_department())
    klass = make_class(subject, student_count=20)

    klass.class_coefficient = Decimal("2.5")
    db.session.commit()
    db.session.expire_all()
    assert Decimal(klass.class_coefficient) == Decimal("1.0")
