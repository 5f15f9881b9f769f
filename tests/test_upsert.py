from datetime import date

import pytest
from sqlalchemy import select

from academic_records.engine import upsert
from academic_records.engine.errors import ErrorCode, NotFoundError, ScopeResolutionError, ValidationError
from academic_records.engine.upsert import (
    ALREADY_ENROLLED, ENROLLED, ERROR, Term, assign_teacher, enroll_in_course,
    enroll_students, ensure_academic_year, ensure_enrollment, ensure_offering,
    auto_assign_teachers, record_retake, unassign_teacher,
)
from academic_records.models import AcademicYear, CourseOffering, StudentEnrollment
from tests.conftest import count


class TestEnsureOffering:
    def test_second_call_finds_the_same_row(self, tree):
        first = ensure_offering(tree.oe1, Term(tree.year, 3))
        second = ensure_offering(tree.oe1, Term(tree.year, 3))
        assert first.created and not second.created
        assert first.row.id == second.row.id
        assert count(CourseOffering, CourseOffering.course_id == tree.oe1) == 1

    def test_existing_offering_keeps_unsupplied_teacher(self, tree):
        result = ensure_offering(tree.cs101, Term(tree.year, 1))
        assert result.row.id == tree.offering
        assert result.changed == ()
        assert result.row.teacher_id == tree.teacher

    def test_explicit_none_unassigns_teacher(self, tree):
        result = ensure_offering(tree.cs101, Term(tree.year, 1), teacher=None)
        assert result.changed == ("teacher_id",)
        assert result.row.teacher_id is None

    def test_section_binds_to_sectionless_offering(self, tree):
        result = ensure_offering(tree.cs101, Term(tree.year, 1), section=tree.sec_a)
        assert not result.created
        assert result.row.id == tree.offering
        assert result.changed == ("section_id",)

    def test_unsectioned_lookup_among_several_sections_is_ambiguous(self, tree):
        ensure_offering(tree.cs101, Term(tree.year, 1), section=tree.sec_a)
        other = ensure_offering(tree.cs101, Term(tree.year, 1), section=tree.sec_b)
        assert other.created
        with pytest.raises(ScopeResolutionError) as exc:
            ensure_offering(tree.cs101, Term(tree.year, 1))
        assert exc.value.code == ErrorCode.AMBIGUOUS_REFERENCE

    def test_year_of_another_college_is_rejected(self, tree, db):
        foreign = AcademicYear(college_id=tree.c2, name="2024-25", start_date=date(2024, 6, 1),
                               end_date=date(2025, 5, 31))
        db.session.add(foreign)
        db.session.commit()
        with pytest.raises(ScopeResolutionError):
            ensure_offering(tree.cs101, Term(foreign.id, 1))

    def test_missing_course(self, tree):
        with pytest.raises(NotFoundError):
            ensure_offering(999, Term(tree.year, 1))

    def test_semester_must_be_positive(self, tree):
        with pytest.raises(ValidationError):
            ensure_offering(tree.cs101, Term(tree.year, 0))


class TestEnrollment:
    def test_enroll_then_already_enrolled(self, tree):
        first = ensure_enrollment(tree.s3, tree.offering)
        second = ensure_enrollment(tree.s3, tree.offering)
        assert (first.status, second.status) == (ENROLLED, ALREADY_ENROLLED)
        assert first.enrollment_id == second.enrollment_id
        assert count(StudentEnrollment, StudentEnrollment.student_id == tree.s3) == 1

    def test_new_enrollment_starts_at_first_attempt(self, tree, db):
        outcome = ensure_enrollment(tree.s3, tree.offering)
        enrollment = db.session.get(StudentEnrollment, outcome.enrollment_id)
        assert enrollment.attempt_number == 1
        assert enrollment.academic_year_id == tree.year

    def test_unique_race_converges(self, tree, monkeypatch):
        real = upsert._find_enrollment
        calls = []

        def racing(student_id, offering_id):
            calls.append(student_id)
            # the first lookup misses; a concurrent writer already inserted the row
            return None if len(calls) == 1 else real(student_id, offering_id)

        monkeypatch.setattr(upsert, "_find_enrollment", racing)
        outcome = ensure_enrollment(tree.s1, tree.offering)
        assert outcome.status == ALREADY_ENROLLED
        assert outcome.enrollment_id == tree.enrollment

    def test_missing_student_is_an_error_outcome(self, tree):
        outcome = ensure_enrollment(999, tree.offering)
        assert outcome.status == ERROR
        assert "Student with id '999' not found" in outcome.error

    def test_batch_is_independent_per_student(self, tree):
        batch = enroll_students(tree.offering, [tree.s1, tree.s3, tree.s3, 999])
        assert (batch.enrolled, batch.already_enrolled, batch.errors) == (1, 1, 2)
        assert batch.results[2].error == "Duplicate student id in batch"
        assert batch.to_dict()["already_enrolled"] == 1

    def test_retake_increments_attempt(self, tree):
        assert record_retake(tree.s1, tree.offering).attempt_number == 2
        assert count(StudentEnrollment, StudentEnrollment.student_id == tree.s1) == 1

    def test_retake_without_enrollment(self, tree):
        with pytest.raises(NotFoundError):
            record_retake(tree.s3, tree.offering)


class TestAcademicYear:
    def test_new_year_is_not_activated_while_another_is_active(self, tree):
        result = ensure_academic_year(tree.c1, 2025)
        year = result.row
        assert result.created
        assert year.name == "2025-26"
        assert (year.start_date, year.end_date) == (date(2025, 6, 1), date(2026, 5, 31))
        assert year.is_active is False
        assert not ensure_academic_year(tree.c1, 2025).created

    def test_first_year_of_a_college_becomes_active(self, tree):
        assert ensure_academic_year(tree.c2, 2024).row.is_active is True

    def test_explicit_activation_keeps_a_single_active_year(self, tree, db):
        ensure_academic_year(tree.c1, 2025, activate=True)
        names = db.session.scalars(select(AcademicYear.name).where(
            AcademicYear.college_id == tree.c1, AcademicYear.is_active.is_(True))).all()
        assert names == ["2025-26"]


class TestEnrollInCourse:
    def test_ineligible_students_are_reported(self, tree):
        result = enroll_in_course(tree.cs101, 2024, 1, [tree.s1, tree.s2, tree.s3], eligible_only=True)
        data = result.to_dict()
        assert data["enrollments_created"] == 1
        assert data["already_enrolled"] == 1
        assert data["errors"] == 1
        assert data["course_offering"]["id"] == tree.offering

    def test_teacher_only(self, tree):
        result = enroll_in_course(tree.oe1, 2024, 5, teacher=tree.teacher)
        assert result.offering.created
        assert result.offering.row.teacher_id == tree.teacher
        assert result.batch.results == []

    def test_new_year_stays_inactive_while_the_college_has_an_active_one(self, tree, db):
        result = enroll_in_course(tree.oe1, 2025, 1, teacher=tree.teacher)
        assert result.offering.row.academic_year.name == "2025-26"
        assert result.offering.row.academic_year.is_active is False
        assert db.session.get(AcademicYear, tree.year).is_active is True

    def test_nothing_to_do(self, tree):
        with pytest.raises(ValidationError):
            enroll_in_course(tree.cs101, 2024, 1)


class TestTeacherAssignment:
    def test_assign_and_unassign(self, tree):
        assert unassign_teacher(tree.offering)[1] == tree.teacher
        assert assign_teacher(tree.offering, tree.teacher).teacher_id == tree.teacher

    def test_teacher_of_another_college(self, tree, db):
        from academic_records.models import Department, Teacher, User

        dept = Department(college_id=tree.c2, code="X", name="X")
        user = User(username="other", name="Other", password_hash="x")
        db.session.add_all([dept, user])
        db.session.flush()
        teacher = Teacher(user_id=user.id, college_id=tree.c2, department_id=dept.id)
        db.session.add(teacher)
        db.session.commit()
        with pytest.raises(ScopeResolutionError):
            assign_teacher(tree.offering, teacher.id)


class TestAutoAssignTeachers:
    def test_teacherless_offerings_get_a_department_teacher(self, tree, db):
        unassign_teacher(tree.offering)
        open_elective = ensure_offering(tree.oe1, Term(tree.year, 3)).row

        assignments = auto_assign_teachers()

        assert [(o.id, t.id) for o, t in assignments] == [(tree.offering, tree.teacher)]
        assert db.session.get(CourseOffering, tree.offering).teacher_id == tree.teacher
        # OE1 has no department, so nobody is assigned to it
        assert db.session.get(CourseOffering, open_elective.id).teacher_id is None

    def test_round_robin_within_a_department(self, tree, db):
        from academic_records.models import Teacher, User

        user = User(username="t.second", name="Second", password_hash="x")
        db.session.add(user)
        db.session.flush()
        second = Teacher(user_id=user.id, college_id=tree.c1, department_id=tree.cse)
        db.session.add(second)
        db.session.commit()
        unassign_teacher(tree.offering)
        ensure_offering(tree.cs101, Term(tree.year, 2))

        assignments = auto_assign_teachers(tree.c1)
        assert [t.id for _, t in assignments] == [tree.teacher, second.id]
        assert auto_assign_teachers(tree.c1) == []
