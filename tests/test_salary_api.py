from datetime import date

from teachpay_api.models.rates import RateSetting
from teachpay_api.services.rate_resolver import RateCategory, RateResolver

from conftest import make_assignment, make_department, make_rate, make_teacher


def _calculate(client, w, **extra):
    body = {"teacherId": w.teacher.id, "semesterId": w.sem1.id, **extra}
    return client.post("/api/salaries/calculate", json=body)


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "ok"


def test_calculate_reference_scenario(client, world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    r = _calculate(client, world)
    assert r.status_code == 200
    body = r.get_json()
    assert body["success"] is True
    data = body["data"]
    assert data["totalSalary"] == 8_910_000
    assert data["grossSalary"] == 8_910_000
    assert data["salaryComponents"] == {"base": 8_910_000, "overtime": 0, "holiday": 0, "bonus": 0, "allowance": 0}
    assert data["assignmentCount"] == 1
    assert data["totalHours"] == 37.5
    assert data["totalPeriods"] == 45
    assert data["status"] == "calculated"
    assert data["version"] == 1
    assert data["currency"] == "VND"
    assert data["lines"][0]["kind"] == "base"
    assert data["lines"][0]["coefficient"] == 1.32


def test_calculate_validation_errors(client, world):
    r = client.post("/api/salaries/calculate", json={"semesterId": world.sem1.id})
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "VALIDATION_ERROR"

    r = client.post("/api/salaries/calculate", json={"teacherId": world.teacher.id})
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "INVALID_SCOPE"


def test_unknown_teacher_is_404(client, world):
    r = client.post("/api/salaries/calculate", json={"teacherId": 9999, "semesterId": world.sem1.id})
    assert r.status_code == 404
    assert r.get_json()["error"]["code"] == "NOT_FOUND"


def test_missing_rate_is_reported_with_context(client, world):
    world.period_rate.approval_status = "rejected"
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    r = _calculate(client, world)
    assert r.status_code == 422
    err = r.get_json()["error"]
    assert err["code"] == "RATE_NOT_FOUND"
    assert err["detail"]["category"] == "period_rate"
    assert err["detail"]["date"] == "2024-12-20"


def test_workflow_and_immutability(client, world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    calc_id = _calculate(client, world).get_json()["data"]["id"]

    r = client.post(f"/api/salaries/{calc_id}/pay")
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "INVALID_TRANSITION"

    r = client.post(f"/api/salaries/{calc_id}/review", json={"actor": "auditor", "notes": "check hours"})
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "reviewing"

    make_assignment(world, world.teacher, world.klass, lecture_hours="25")
    r = _calculate(client, world)
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "IMMUTABLE_CALCULATION"

    r = _calculate(client, world, supersede=True)
    assert r.status_code == 200
    assert r.get_json()["data"]["version"] == 2
    assert r.get_json()["data"]["supersedesId"] == calc_id


def test_list_and_get(client, world):
    other = make_teacher(world.dept, world.degree)
    _calculate(client, world)
    client.post("/api/salaries/calculate", json={"teacherId": other.id, "semesterId": world.sem1.id})

    r = client.get(f"/api/salaries?teacherId={other.id}")
    body = r.get_json()
    assert r.status_code == 200
    assert body["meta"]["total"] == 1
    assert body["data"][0]["teacherId"] == other.id
    assert "lines" not in body["data"][0]

    calc_id = body["data"][0]["id"]
    r = client.get(f"/api/salaries/{calc_id}")
    assert r.get_json()["data"]["lines"] == []
    assert client.get("/api/salaries/424242").status_code == 404
    assert client.get("/api/salaries?status=bogus").status_code == 422


def test_department_endpoint(client, world):
    second = make_teacher(world.dept, world.degree)
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    make_assignment(world, second, world.klass, lecture_hours="25")
    r = client.post("/api/salaries/calculate/department",
                    json={"departmentId": world.dept.id, "semesterId": world.sem1.id})
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["departmentId"] == world.dept.id
    assert data["semesterId"] == world.sem1.id
    assert data["teacherCount"] == 2
    assert data["totalSalary"] == 14_850_000
    assert data["averageAmountPerTeacher"] == 7_425_000
    assert set(data["salariesByTeacher"]) == {str(world.teacher.id), str(second.id)}
    assert data["failedTeachers"] == []


def test_university_report(client, world):
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    r = client.get(f"/api/university/teaching-report?semesterId={world.sem1.id}")
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "INCOMPLETE_AGGREGATION"

    _calculate(client, world)
    r = client.get(f"/api/university/teaching-report?semesterId={world.sem1.id}")
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["totalTeachers"] == 1
    assert data["totalAmount"] == 8_910_000
    assert data["totalDepartments"] == 1
    assert data["departmentSummaries"][0]["percentage"] == 100.0
    assert data["teachers"][0]["totalSalary"] == 8_910_000


def test_rate_setting_lifecycle(client, world):
    body = {"code": "OT", "name": "Overtime", "rateType": "overtime", "applicableScope": "university",
            "baseAmount": 200000, "startDate": "2024-09-01"}
    r = client.post("/api/rates/settings", json=body)
    assert r.status_code == 201
    rid = r.get_json()["data"]["id"]
    assert r.get_json()["data"]["status"] == "draft"

    assert client.post(f"/api/rates/settings/{rid}/activate").status_code == 409
    assert client.post(f"/api/rates/settings/{rid}/approve").status_code == 200
    r = client.post(f"/api/rates/settings/{rid}/activate")
    assert r.get_json()["data"]["status"] == "active"

    dup = client.post("/api/rates/settings", json={**body, "code": "OT2"}).get_json()["data"]["id"]
    client.post(f"/api/rates/settings/{dup}/approve")
    r = client.post(f"/api/rates/settings/{dup}/activate")
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "RATE_OVERLAP"

    r = client.post(f"/api/rates/settings/{rid}/supersede", json={"baseAmount": 220000, "startDate": "2025-01-01"})
    assert r.status_code == 201
    data = r.get_json()["data"]
    assert data["previous"]["status"] == "superseded"
    assert data["previous"]["endDate"] == "2024-12-31"
    assert data["current"]["version"] == 2
    assert data["current"]["supersedesId"] == rid
    assert data["current"]["baseAmount"] == 220000
    assert RateSetting.query.filter_by(status="active").count() == 1


def test_rate_setting_validation(client, world):
    r = client.post("/api/rates/settings", json={"code": "X", "name": "X", "rateType": "overtime",
                                                 "applicableScope": "degree", "startDate": "2024-09-01"})
    assert r.status_code == 422
    r = client.post("/api/rates/settings", json={"code": "X", "name": "X", "rateType": "weekend",
                                                 "startDate": "2024-09-01"})
    assert r.status_code == 422


def test_period_rate_overlap_is_refused(client, world):
    r = client.post("/api/rates/period-rates", json={"academicYearId": world.ay.id, "name": "Raise",
                                                     "ratePerPeriod": 160000, "effectiveDate": "2025-01-01"})
    assert r.status_code == 201
    pid = r.get_json()["data"]["id"]
    r = client.post(f"/api/rates/period-rates/{pid}/approve")
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "RATE_OVERLAP"

    r = client.get(f"/api/rates/period-rates?academicYearId={world.ay.id}")
    assert r.get_json()["meta"]["total"] == 2


def test_overtime_rate_via_api_feeds_engine(client, world):
    world.teacher.standard_load_periods = 40
    make_rate("overtime", 200000)
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5", end_date=date(2024, 12, 20))
    data = _calculate(client, world).get_json()["data"]
    assert data["salaryComponents"]["base"] == 7_920_000
    assert data["salaryComponents"]["overtime"] == 1_320_000
    assert data["totalSalary"] == 9_240_000


def test_superseding_a_closed_rate_keeps_its_end_date(client, world):
    old = make_rate("allowance", 300000, status="active", start=date(2024, 9, 1), end_date=date(2024, 10, 31))
    r = client.post(f"/api/rates/settings/{old.id}/supersede", json={"baseAmount": 350000, "startDate": "2025-03-01"})
    assert r.status_code == 201
    data = r.get_json()["data"]
    assert data["previous"]["endDate"] == "2024-10-31"
    assert data["current"]["startDate"] == "2025-03-01"

    resolver = RateResolver(world.ay)
    assert resolver.resolve_optional(date(2025, 1, 10), RateCategory.ALLOWANCE) is None
    assert resolver.resolve_optional(date(2024, 10, 15), RateCategory.ALLOWANCE).id == old.id


def test_class_type_coefficient_rate_is_refused(client, world):
    r = client.post("/api/rates/settings", json={"code": "CC", "name": "Theory bump", "rateType": "coefficient",
                                                 "applicableScope": "class_type", "targetValue": "theory",
                                                 "coefficient": 2.5, "startDate": "2024-09-01"})
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "VALIDATION_ERROR"


def test_department_rerun_keeps_approved_teacher(client, world):
    second = make_teacher(world.dept, world.degree)
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    make_assignment(world, second, world.klass, lecture_hours="25")
    body = {"departmentId": world.dept.id, "semesterId": world.sem1.id}
    first = client.post("/api/salaries/calculate/department", json=body).get_json()["data"]
    approved_id = first["salariesByTeacher"][str(world.teacher.id)]["calculationId"]
    assert client.post(f"/api/salaries/{approved_id}/approve").status_code == 200

    r = client.post("/api/salaries/calculate/department", json=body)
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["failedTeachers"] == []
    assert data["totalSalary"] == first["totalSalary"] == 14_850_000
    assert data["salariesByTeacher"][str(world.teacher.id)]["status"] == "approved"

    report = client.get(f"/api/university/teaching-report?semesterId={world.sem1.id}").get_json()["data"]
    assert report["totalAmount"] == data["totalSalary"]


def test_salary_statistics(client, world):
    second = make_teacher(world.dept, world.degree)
    make_assignment(world, world.teacher, world.klass, lecture_hours="37.5")
    make_assignment(world, second, world.klass, lecture_hours="25")
    _calculate(client, world)
    make_assignment(world, world.teacher, world.klass, lecture_hours="25")
    _calculate(client, world)
    client.post("/api/salaries/calculate", json={"teacherId": second.id, "semesterId": world.sem1.id})

    r = client.get(f"/api/salaries/statistics?semesterId={world.sem1.id}")
    assert r.status_code == 200
    data = r.get_json()["data"]
    overall = data["overall"]
    assert overall["totalCalculations"] == 2
    assert overall["totalTeachers"] == 2
    assert overall["totalGrossSalary"] == 14_850_000 + 5_940_000
    assert overall["totalNetSalary"] == 14_850_000 + 5_940_000
    assert overall["averageNetSalary"] == 10_395_000
    assert overall["totalTeachingHours"] == 87.5
    assert data["statusBreakdown"] == [
        {"status": "calculated", "count": 2, "totalGrossSalary": 20_790_000},
        {"status": "archived", "count": 1, "totalGrossSalary": 8_910_000},
    ]
    assert data["departmentSummary"] is None

    data = client.get(f"/api/salaries/statistics?departmentId={world.dept.id}").get_json()["data"]
    assert data["departmentSummary"]["departmentCode"] == "CNTT"
    assert data["departmentSummary"]["totalCalculations"] == 2

    empty = make_department()
    data = client.get(f"/api/salaries/statistics?departmentId={empty.id}").get_json()["data"]
    assert data["departmentSummary"]["totalCalculations"] == 0
    assert data["departmentSummary"]["averageNetSalary"] == 0
    assert client.get("/api/salaries/statistics?departmentId=9999").status_code == 404
