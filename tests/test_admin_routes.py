import io

from academic_records.models import College, CourseOffering, Department, Student
from tests.conftest import count, login


class TestAccess:
    def test_requires_login(self, client, tree):
        resp = client.get("/admin/import/order")
        assert resp.status_code == 401

    def test_requires_admin_role(self, client, tree):
        assert login(client, "s.kumar").status_code == 200
        assert client.get("/admin/import/order").status_code == 403

    def test_bad_password(self, client, tree):
        resp = login(client, "admin", "wrong")
        assert resp.status_code == 401
        assert resp.get_json()["success"] is False

    def test_logout(self, admin_client):
        assert admin_client.post("/auth/logout").status_code == 200
        assert admin_client.get("/admin/import/order").status_code == 401


class TestImport:
    def test_order(self, admin_client):
        tables = admin_client.get("/admin/import/order").get_json()["tables"]
        assert tables[0] == "colleges"

    def test_json_rows(self, admin_client):
        resp = admin_client.post("/admin/import/departments", json={"rows": [
            {"college_code": "C1", "department_code": "ME", "department_name": "Mechanical"},
            {"college_code": "NONEXISTENT", "department_code": "EE", "department_name": "Electrical"},
        ]})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["records_processed"] == 1
        assert data["errors"] == ["Department EE: College NONEXISTENT not found"]
        assert data["success"] is False

    def test_csv_upload(self, admin_client):
        csv_data = b"college_code,department_code,department_name\nC2,ME,Mechanical\n"
        resp = admin_client.post("/admin/import/departments",
                                 data={"file": (io.BytesIO(csv_data), "departments.csv")},
                                 content_type="multipart/form-data")
        assert resp.get_json()["records_processed"] == 1
        assert count(Department, Department.college_id.isnot(None), Department.code == "ME") == 1

    def test_body_must_be_rows(self, admin_client):
        resp = admin_client.post("/admin/import/departments", json={"rows": "nope"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"


class TestDelete:
    def test_dependents(self, admin_client, tree):
        data = admin_client.get(f"/admin/colleges/{tree.c1}/dependents").get_json()
        assert data["can_delete"] is False
        assert data["dependents"]["departments"] == 2

    def test_safe_delete_conflict(self, admin_client, tree):
        resp = admin_client.delete(f"/admin/colleges/{tree.c1}")
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "CONFLICT_BLOCKED"
        assert body["details"]["dependents"]["departments"] == 2
        assert count(College) == 2

    def test_safe_delete_ok(self, admin_client, tree):
        resp = admin_client.delete(f"/admin/colleges/{tree.c2}")
        assert resp.status_code == 200
        assert resp.get_json()["deleted"] == {"colleges": 1}

    def test_force_delete(self, admin_client, tree):
        resp = admin_client.delete(f"/admin/colleges/{tree.c1}/force")
        assert resp.status_code == 200
        assert resp.get_json()["mode"] == "forced"
        assert count(College) == 1

    def test_not_found(self, admin_client, tree):
        resp = admin_client.delete("/admin/colleges/999")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "NOT_FOUND"

    def test_unknown_root(self, admin_client, tree):
        assert admin_client.delete(f"/admin/sections/{tree.sec_a}").status_code == 400


class TestOfferingsAndEnrollment:
    def test_upsert_offering(self, admin_client, tree):
        resp = admin_client.post(f"/admin/courses/{tree.cs101}/offerings",
                                 json={"academic_year_id": tree.year, "semester": 1})
        assert resp.status_code == 200
        assert resp.get_json()["id"] == tree.offering

        resp = admin_client.post(f"/admin/courses/{tree.oe1}/offerings",
                                 json={"academic_year_id": tree.year, "semester": 3,
                                       "teacher_id": tree.teacher})
        assert resp.status_code == 201
        assert resp.get_json()["teacher_id"] == tree.teacher

    def test_enroll_students(self, admin_client, tree):
        resp = admin_client.post(f"/admin/courses/{tree.cs101}/enroll-students",
                                 json={"year": 2024, "semester": 1, "student_ids": [tree.s1, tree.s3]})
        data = resp.get_json()
        assert resp.status_code == 200
        assert (data["enrollments_created"], data["already_enrolled"], data["errors"]) == (1, 1, 0)

    def test_eligible_students(self, admin_client, tree):
        resp = admin_client.get(f"/admin/courses/{tree.cs101}/eligible-students?semester=1")
        assert [s["usn"] for s in resp.get_json()["students"]] == ["1CS002"]

    def test_eligible_students_needs_semester(self, admin_client, tree):
        assert admin_client.get(f"/admin/courses/{tree.cs101}/eligible-students").status_code == 400

    def test_teacher_assignment(self, admin_client, db, tree):
        resp = admin_client.delete(f"/admin/offerings/{tree.offering}/teacher")
        assert resp.get_json()["previous_teacher_id"] == tree.teacher
        assert db.session.get(CourseOffering, tree.offering).teacher_id is None

        resp = admin_client.post(f"/admin/offerings/{tree.offering}/teacher",
                                 json={"teacher_id": tree.teacher})
        assert resp.get_json()["teacher_id"] == tree.teacher


class TestStudentEnrollment:
    def test_enroll_student_for_semester(self, admin_client, tree):
        resp = admin_client.post(f"/admin/students/{tree.s3}/enroll/semester/1")
        assert resp.status_code == 200
        assert resp.get_json()["enrollments_created"] == 1

    def test_enroll_without_offerings_is_a_bad_request(self, admin_client, tree):
        resp = admin_client.post(f"/admin/students/{tree.s3}/enroll/semester/6")
        assert resp.status_code == 400
        assert resp.get_json()["success"] is False

    def test_unknown_student(self, admin_client, tree):
        assert admin_client.post("/admin/students/999/promote").status_code == 404

    def test_promote(self, admin_client, db, tree):
        resp = admin_client.post(f"/admin/students/{tree.s3}/promote")
        assert resp.get_json()["promoted_from"] == 1
        assert db.session.get(Student, tree.s3).semester == 2

    def test_bulk_enroll(self, admin_client, tree):
        resp = admin_client.post("/admin/students/bulk-enroll/semester/1",
                                 json={"department_id": tree.cse})
        data = resp.get_json()
        assert resp.status_code == 200
        assert (data["total_students"], data["total_enrollments_created"]) == (2, 1)

    def test_bulk_enroll_needs_targets(self, admin_client, tree):
        resp = admin_client.post("/admin/students/bulk-enroll/semester/1", json={})
        assert resp.status_code == 400

    def test_course_enrollments(self, admin_client, tree):
        data = admin_client.get(f"/admin/courses/{tree.cs101}/enrollments?year=2024-25").get_json()
        assert data["total"] == 1
        assert data["enrollments"][0]["student"]["usn"] == "1CS001"

    def test_auto_assign_teachers(self, admin_client, db, tree):
        admin_client.delete(f"/admin/offerings/{tree.offering}/teacher")
        data = admin_client.post("/admin/auto-assign-teachers").get_json()
        assert data["total_assigned"] == 1
        assert data["assignments"][0]["teacher_id"] == tree.teacher
        assert db.session.get(CourseOffering, tree.offering).teacher_id == tree.teacher

    def test_bad_csv_upload_is_reported(self, admin_client):
        resp = admin_client.post("/admin/import/departments",
                                 data={"file": (io.BytesIO(b"college_code\n\xff\n"), "departments.csv")},
                                 content_type="multipart/form-data")
        assert resp.status_code == 200
        assert resp.get_json()["errors"][0].startswith("File is not valid UTF-8 CSV")
