import pytest

from academic_records.engine import deletion
from academic_records.engine.deletion import CascadeDeleter, DeleteMode, delete, dependents, force_delete, safe_delete
from academic_records.engine.errors import ConflictBlocked, NotFoundError, PartialDeletionError
from academic_records.engine.schema_graph import ENTITIES, SchemaGraphError
from academic_records.models import (
    Admin, Attendance, AttendanceRecord, College, Course, CourseOffering,
    Department, OpenElectiveRestriction, ReportViewer, Section, Student,
    StudentEnrollment, Teacher, TheoryMarks, User, UserRoleAssignment,
)
from tests.conftest import count


def snapshot():
    return {name: count(e.model) for name, e in ENTITIES.items()}


class TestSafeDelete:
    def test_college_with_departments_is_blocked_without_mutation(self, tree):
        before = snapshot()
        with pytest.raises(ConflictBlocked) as exc:
            safe_delete("colleges", tree.c1)
        assert exc.value.dependents["departments"] == 2
        assert exc.value.to_dict()["details"]["dependents"]["students"] == 3
        assert "Cannot delete College." in exc.value.message
        assert snapshot() == before

    def test_dependents_report(self, tree):
        counts = dependents("departments", tree.cse)
        assert counts == {"sections": 2, "courses": 1, "teachers": 1, "students": 2}
        assert dependents("colleges", tree.c2) == {}

    def test_empty_college_is_deleted(self, tree, db):
        result = safe_delete("colleges", tree.c2)
        assert result.deleted == {"colleges": 1}
        assert db.session.get(College, tree.c2) is None

    def test_course_restrictions_go_with_the_course(self, tree, db):
        # OE1 has a restriction (owned) but no offerings
        result = delete("course", tree.oe1)
        assert result.deleted == {"open_elective_restrictions": 1, "courses": 1}
        assert count(OpenElectiveRestriction) == 0

    def test_user_with_activity_is_blocked(self, tree):
        with pytest.raises(ConflictBlocked) as exc:
            safe_delete("users", tree.s1_user)
        assert exc.value.dependents == {"student_enrollments": 1, "attendance_records": 1}

    def test_teacher_user_is_blocked_by_taught_offerings(self, tree):
        counts = dependents("users", tree.teacher_user)
        assert counts == {"course_offerings": 1, "attendance": 1}

    def test_idle_user_is_deleted_with_profile_and_roles(self, tree, db):
        user = User(username="viewer", name="Viewer", password_hash="x")
        db.session.add(user)
        db.session.flush()
        db.session.add_all([UserRoleAssignment(user_id=user.id, role="report_viewer"),
                            ReportViewer(user_id=user.id)])
        db.session.commit()
        uid = user.id

        result = safe_delete("users", uid)
        assert result.deleted == {"report_viewers": 1, "user_roles": 1, "users": 1}
        assert count(UserRoleAssignment, UserRoleAssignment.user_id == uid) == 0
        assert db.session.get(User, uid) is None

    def test_missing_root(self, tree):
        with pytest.raises(NotFoundError, match="College with id '999' not found"):
            safe_delete("colleges", 999)

    def test_unknown_root(self, tree):
        with pytest.raises(SchemaGraphError):
            safe_delete("sections", tree.sec_a)


class TestForceDelete:
    def test_college_leaves_no_orphans(self, tree, db):
        result = force_delete("colleges", tree.c1)

        assert db.session.get(College, tree.c1) is None
        for model in (Department, Section, Course, CourseOffering, StudentEnrollment,
                      TheoryMarks, Attendance, AttendanceRecord, Student, Teacher,
                      OpenElectiveRestriction):
            assert count(model) == 0, model
        # the student and teacher profiles took their users along; the admin was detached
        assert count(User) == 1
        admin = db.session.get(User, tree.admin_user)
        assert count(Admin, Admin.user_id == admin.id, Admin.college_id.is_(None)) == 1
        assert result.detached["admins.college_id"] == 1
        assert result.detached["course_offerings.teacher_id"] == 1
        assert db.session.get(College, tree.c2) is not None
        assert result.mode is DeleteMode.FORCED
        assert result.deleted["students"] == 3

    def test_user_teacher_is_detached_from_offerings(self, tree, db):
        result = force_delete("users", tree.teacher_user)
        offering = db.session.get(CourseOffering, tree.offering)
        assert offering is not None
        assert offering.teacher_id is None
        assert db.session.get(Attendance, tree.attendance).teacher_id is None
        assert result.deleted == {"teachers": 1, "user_roles": 1, "users": 1}
        assert count(StudentEnrollment) == 1

    def test_student_user_takes_records_along(self, tree, db):
        force_delete("users", tree.s1_user)
        assert db.session.get(Student, tree.s1) is None
        assert count(StudentEnrollment) == 0
        assert count(TheoryMarks) == 0
        assert count(AttendanceRecord) == 0
        assert count(Attendance) == 1

    def test_course_removes_offerings_but_keeps_students(self, tree, db):
        result = force_delete("courses", tree.cs101)
        assert result.deleted["course_offerings"] == 1
        assert result.deleted["theory_marks"] == 1
        assert count(CourseOffering) == 0
        assert count(Student) == 3

    def test_department_takes_its_students_and_their_users(self, tree, db):
        force_delete("departments", tree.cse)
        assert count(Student) == 1
        assert count(Teacher) == 0
        assert db.session.get(User, tree.s1_user) is None
        assert count(Department) == 1

    def test_missing_root(self, tree):
        with pytest.raises(NotFoundError):
            force_delete("users", 999)

    def test_failing_layer_reports_progress(self, tree, monkeypatch):
        order = ("theory_marks", "colleges") + tuple(
            n for n in deletion.DELETION_ORDER if n not in ("theory_marks", "colleges"))
        monkeypatch.setattr(deletion, "DELETION_ORDER", order)
        with pytest.raises(PartialDeletionError) as exc:
            CascadeDeleter().force_delete("colleges", tree.c1)
        assert exc.value.failed_layer == "colleges"
        assert exc.value.deleted == {"theory_marks": 1}
        # the committed layer stays deleted; the failed one was rolled back
        assert count(TheoryMarks) == 0
        assert count(College) == 2

    def test_chunk_size_does_not_change_the_outcome(self, tree, db):
        result = CascadeDeleter(chunk_size=1).force_delete("colleges", tree.c1)
        assert result.deleted["users"] == 4
        assert count(Student) == 0

    def test_college_keeps_users_with_profiles_in_another_college(self, tree, db):
        mech = Department(college_id=tree.c2, code="ME", name="Mechanical")
        db.session.add(mech)
        db.session.flush()
        db.session.add(Teacher(user_id=tree.s1_user, college_id=tree.c2, department_id=mech.id))
        db.session.commit()

        result = force_delete("colleges", tree.c1)

        assert count(Teacher, Teacher.college_id == tree.c2) == 1
        assert db.session.get(User, tree.s1_user) is not None
        assert count(Student, Student.user_id == tree.s1_user) == 0
        assert result.deleted["users"] == 3
        assert count(Department, Department.college_id == tree.c2) == 1
