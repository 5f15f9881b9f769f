"""
Idempotent find-or-create for academic years, course offerings and student
enrollments.

Every public function commits its own unit of work, so re-running a partially
applied batch is always safe: a second call for the same tuple finds the row
the first call created.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import (
    AcademicYear, College, Course, CourseOffering, Section, Student,
    StudentEnrollment, Teacher,
)
from .errors import (
    ErrorCode, NotFoundError, ScopeResolutionError, ValidationError,
)

logger = logging.getLogger(__name__)

ENROLLED = "enrolled"
ALREADY_ENROLLED = "already_enrolled"
ERROR = "error"


class _Unset:
    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class Term:
    academic_year: Any      # AcademicYear or its id
    semester: int


@dataclass
class UpsertResult:
    row: Any
    created: bool
    changed: Tuple[str, ...] = ()


@dataclass
class EnrollmentOutcome:
    student_id: Any
    status: str
    enrollment_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"student_id": self.student_id, "status": self.status}
        if self.enrollment_id is not None:
            result["enrollment_id"] = self.enrollment_id
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class EnrollmentBatchResult:
    results: List[EnrollmentOutcome] = field(default_factory=list)

    def _count(self, status):
        return sum(1 for r in self.results if r.status == status)

    @property
    def enrolled(self) -> int:
        return self._count(ENROLLED)

    @property
    def already_enrolled(self) -> int:
        return self._count(ALREADY_ENROLLED)

    @property
    def errors(self) -> int:
        return self._count(ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enrolled": self.enrolled,
            "already_enrolled": self.already_enrolled,
            "errors": self.errors,
            "results": [r.to_dict() for r in self.results],
        }


def _instance(model, value, label):
    if isinstance(value, model):
        return value
    obj = db.session.get(model, value) if value is not None else None
    if obj is None:
        raise NotFoundError(label, value)
    return obj


# ---------- Academic years ----------

def academic_year_name(start_year: int) -> str:
    return f"{start_year}-{str(start_year + 1)[-2:]}"


def set_active_year(year: AcademicYear) -> int:
    """Make ``year`` the only active year of its college. Does not commit."""
    result = db.session.execute(
        update(AcademicYear)
        .where(AcademicYear.college_id == year.college_id,
               AcademicYear.id != year.id,
               AcademicYear.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    year.is_active = True
    if result.rowcount:
        logger.info("Deactivated %s other academic year(s) of college %s",
                    result.rowcount, year.college_id)
    return result.rowcount


def ensure_academic_year(college, start_year: int, activate: Optional[bool] = None) -> UpsertResult:
    """Find or create the ``"2024-25"`` style year starting in ``start_year``.

    New years run June 1 to May 31. ``activate=None`` activates a new year
    only when the college has no active year yet.
    """
    college = _instance(College, college, "College")
    name = academic_year_name(start_year)
    year = db.session.scalar(
        select(AcademicYear).where(AcademicYear.college_id == college.id, AcademicYear.name == name)
    )
    created = False
    if year is None:
        year = AcademicYear(college_id=college.id, name=name,
                            start_date=date(start_year, 6, 1),
                            end_date=date(start_year + 1, 5, 31),
                            is_active=False)
        db.session.add(year)
        db.session.flush()
        created = True
        if activate is None:
            activate = db.session.scalar(
                select(AcademicYear.id).where(AcademicYear.college_id == college.id,
                                              AcademicYear.is_active.is_(True))
            ) is None
    changed = ()
    if activate and not year.is_active:
        set_active_year(year)
        changed = ("is_active",)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        year = db.session.scalar(
            select(AcademicYear).where(AcademicYear.college_id == college.id, AcademicYear.name == name)
        )
        if year is None:
            raise
        created = False
    return UpsertResult(year, created, changed)


# ---------- Offerings ----------

def _offering_candidates(course_id, academic_year_id, semester):
    return db.session.scalars(
        select(CourseOffering)
        .where(CourseOffering.course_id == course_id,
               CourseOffering.academic_year_id == academic_year_id,
               CourseOffering.semester == semester)
        .order_by(CourseOffering.id)
    ).all()


def _match_offering(candidates, course, semester, section):
    sectionless = [o for o in candidates if o.section_id is None]
    if section is UNSET:
        if sectionless:
            return sectionless[0]
        if len(candidates) > 1:
            raise ScopeResolutionError(
                f"Course {course.code} has {len(candidates)} offerings for semester {semester}; "
                f"a section is required to choose one",
                code=ErrorCode.AMBIGUOUS_REFERENCE,
            )
        return candidates[0] if candidates else None
    if section is None:
        return sectionless[0] if sectionless else None
    exact = [o for o in candidates if o.section_id == section.id]
    if exact:
        return exact[0]
    # A sectionless offering gets bound to the requested section instead of duplicated.
    return sectionless[0] if sectionless else None


def ensure_offering(course, term: Term, section=UNSET, teacher=UNSET) -> UpsertResult:
    """Find or create the offering for (course, semester, year[, section]).

    ``section`` and ``teacher`` are only written when supplied; pass ``None``
    explicitly to clear the teacher.
    """
    course = _instance(Course, course, "Course")
    year = _instance(AcademicYear, term.academic_year, "Academic year")
    if year.college_id != course.college_id:
        raise ScopeResolutionError(
            f"Academic year {year.name} does not belong to the college of course {course.code}")
    semester = term.semester
    if not isinstance(semester, int) or semester < 1:
        raise ValidationError(f"semester must be a positive integer, got {semester!r}")

    section_obj = UNSET
    if section is not UNSET:
        section_obj = None if section is None else _instance(Section, section, "Section")
        if section_obj is not None and section_obj.department.college_id != course.college_id:
            raise ScopeResolutionError(
                f"Section {section_obj.name} does not belong to the college of course {course.code}")
    teacher_obj = UNSET
    if teacher is not UNSET:
        teacher_obj = None if teacher is None else _instance(Teacher, teacher, "Teacher")
        if teacher_obj is not None and teacher_obj.college_id != course.college_id:
            raise ScopeResolutionError(
                f"Teacher #{teacher_obj.id} does not belong to the college of course {course.code}")

    offering = _match_offering(_offering_candidates(course.id, year.id, semester),
                               course, semester, section_obj)
    if offering is not None:
        changed = []
        if section_obj not in (UNSET, None) and offering.section_id != section_obj.id:
            offering.section_id = section_obj.id
            changed.append("section_id")
        if teacher_obj is not UNSET:
            new_teacher_id = teacher_obj.id if teacher_obj is not None else None
            if offering.teacher_id != new_teacher_id:
                offering.teacher_id = new_teacher_id
                changed.append("teacher_id")
        if changed:
            db.session.commit()
            logger.info("Updated offering %s (%s)", offering.id, ", ".join(changed))
        return UpsertResult(offering, False, tuple(changed))

    offering = CourseOffering(
        course_id=course.id, academic_year_id=year.id, semester=semester,
        section_id=section_obj.id if section_obj else None,
        teacher_id=teacher_obj.id if teacher_obj else None,
    )
    db.session.add(offering)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = _match_offering(_offering_candidates(course.id, year.id, semester),
                                   course, semester, section_obj)
        if existing is None:
            raise
        return UpsertResult(existing, False)
    logger.info("Created offering %s for course %s semester %s year %s",
                offering.id, course.code, semester, year.name)
    return UpsertResult(offering, True)


def assign_teacher(offering, teacher) -> CourseOffering:
    offering = _instance(CourseOffering, offering, "Course offering")
    teacher = _instance(Teacher, teacher, "Teacher")
    if teacher.college_id != offering.course.college_id:
        raise ScopeResolutionError(
            f"Teacher #{teacher.id} does not belong to the college of course {offering.course.code}")
    offering.teacher_id = teacher.id
    db.session.commit()
    return offering


def unassign_teacher(offering) -> Tuple[CourseOffering, Optional[int]]:
    offering = _instance(CourseOffering, offering, "Course offering")
    previous = offering.teacher_id
    offering.teacher_id = None
    db.session.commit()
    return offering, previous


def auto_assign_teachers(college=None) -> List[Tuple[CourseOffering, Teacher]]:
    """Give every teacherless offering a teacher of its course's department.

    Teachers of a department are handed out round-robin in id order.
    Offerings of courses without a department, or of departments without
    teachers, are left alone.
    """
    stmt = (select(CourseOffering).join(Course, CourseOffering.course_id == Course.id)
            .where(CourseOffering.teacher_id.is_(None), Course.department_id.isnot(None))
            .order_by(CourseOffering.id))
    if college is not None:
        stmt = stmt.where(Course.college_id == getattr(college, "id", college))
    offerings = db.session.scalars(stmt).all()

    by_department: Dict[int, List[Teacher]] = {}
    for teacher in db.session.scalars(select(Teacher).order_by(Teacher.id)):
        by_department.setdefault(teacher.department_id, []).append(teacher)

    turns: Dict[int, int] = {}
    assignments = []
    for offering in offerings:
        department_id = offering.course.department_id
        teachers = by_department.get(department_id)
        if not teachers:
            continue
        turn = turns.get(department_id, 0)
        teacher = teachers[turn % len(teachers)]
        turns[department_id] = turn + 1
        offering.teacher_id = teacher.id
        assignments.append((offering, teacher))
    db.session.commit()
    logger.info("Auto-assigned teachers to %s course offering(s)", len(assignments))
    return assignments


# ---------- Enrollments ----------

def _find_enrollment(student_id, offering_id):
    return db.session.scalar(
        select(StudentEnrollment).where(StudentEnrollment.student_id == student_id,
                                        StudentEnrollment.offering_id == offering_id)
    )


def ensure_enrollment(student, offering) -> EnrollmentOutcome:
    """Enroll once; a second call reports ``already_enrolled`` and changes nothing."""
    raw_id = getattr(student, "id", student)
    try:
        student = _instance(Student, student, "Student")
        offering = _instance(CourseOffering, offering, "Course offering")
    except NotFoundError as exc:
        return EnrollmentOutcome(raw_id, ERROR, error=exc.message)

    existing = _find_enrollment(student.id, offering.id)
    if existing is not None:
        return EnrollmentOutcome(student.id, ALREADY_ENROLLED, existing.id)

    enrollment = StudentEnrollment(student_id=student.id, offering_id=offering.id,
                                   academic_year_id=offering.academic_year_id,
                                   attempt_number=1)
    db.session.add(enrollment)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        existing = _find_enrollment(student.id, offering.id)
        if existing is not None:
            return EnrollmentOutcome(student.id, ALREADY_ENROLLED, existing.id)
        logger.warning("Enrollment of student %s in offering %s failed: %s",
                       student.id, offering.id, exc.orig)
        return EnrollmentOutcome(student.id, ERROR, error=str(exc.orig))
    return EnrollmentOutcome(student.id, ENROLLED, enrollment.id)


def enroll_students(offering, student_ids: Iterable[Any]) -> EnrollmentBatchResult:
    """Enroll each student independently; one failure never blocks the rest."""
    offering = _instance(CourseOffering, offering, "Course offering")
    batch = EnrollmentBatchResult()
    seen = set()
    for student_id in student_ids:
        if student_id in seen:
            batch.results.append(EnrollmentOutcome(student_id, ERROR,
                                                   error="Duplicate student id in batch"))
            continue
        seen.add(student_id)
        try:
            batch.results.append(ensure_enrollment(student_id, offering))
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Enrollment of student %s failed: %s", student_id, exc)
            batch.results.append(EnrollmentOutcome(student_id, ERROR, error=str(exc)))
    logger.info("Offering %s: %s enrolled, %s already enrolled, %s errors",
                offering.id, batch.enrolled, batch.already_enrolled, batch.errors)
    return batch


def record_retake(student, offering) -> StudentEnrollment:
    """Count another attempt on an existing enrollment instead of duplicating it."""
    student = _instance(Student, student, "Student")
    offering = _instance(CourseOffering, offering, "Course offering")
    enrollment = _find_enrollment(student.id, offering.id)
    if enrollment is None:
        raise NotFoundError("Enrollment", f"{student.usn}/{offering.id}")
    enrollment.attempt_number += 1
    db.session.commit()
    return enrollment


@dataclass
class CourseEnrollmentResult:
    offering: UpsertResult
    batch: EnrollmentBatchResult

    def to_dict(self) -> Dict[str, Any]:
        offering = self.offering.row
        return {
            "enrollments_created": self.batch.enrolled,
            "already_enrolled": self.batch.already_enrolled,
            "errors": self.batch.errors,
            "results": [r.to_dict() for r in self.batch.results],
            "course_offering": {
                "id": offering.id,
                "course_id": offering.course_id,
                "semester": offering.semester,
                "teacher_id": offering.teacher_id,
                "section_id": offering.section_id,
                "created": self.offering.created,
            },
        }


def enroll_in_course(course, year: int, semester: int, student_ids: Iterable[Any] = (),
                     teacher=None, section=UNSET, eligible_only: bool = False) -> CourseEnrollmentResult:
    """Ensure the year and the offering, optionally assign a teacher, enroll a batch."""
    from .eligibility import is_eligible

    student_ids = list(student_ids or ())
    if not student_ids and teacher is None:
        raise ValidationError("At least one student or a teacher assignment is required")
    if year is None or semester is None:
        raise ValidationError("year and semester are required")
    course = _instance(Course, course, "Course")
    academic_year = ensure_academic_year(course.college_id, year).row
    offering = ensure_offering(course, Term(academic_year, semester), section=section,
                               teacher=teacher if teacher is not None else UNSET)

    batch = EnrollmentBatchResult()
    if student_ids:
        admitted = student_ids
        if eligible_only:
            admitted = []
            for student_id in student_ids:
                student = db.session.get(Student, student_id)
                if student is not None and not is_eligible(student, course):
                    batch.results.append(EnrollmentOutcome(
                        student_id, ERROR,
                        error=f"Student {student.usn} is not eligible for course {course.code}"))
                else:
                    admitted.append(student_id)
        batch.results.extend(enroll_students(offering.row, admitted).results)
    return CourseEnrollmentResult(offering, batch)
