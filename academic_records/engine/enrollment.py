"""Automatic enrollment of a student into the core courses of their semester."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select

from ..extensions import db
from ..models import AcademicYear, Course, CourseOffering, Student, StudentEnrollment
from .errors import NotFoundError, ValidationError
from .upsert import ALREADY_ENROLLED, ENROLLED, ensure_enrollment

logger = logging.getLogger(__name__)


@dataclass
class AutoEnrollmentResult:
    student_id: int
    semester: int
    enrollments_created: int = 0
    already_enrolled: int = 0
    errors: List[str] = field(default_factory=list)
    promoted_from: Optional[int] = None

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "student_id": self.student_id,
            "semester": self.semester,
            "success": self.success,
            "enrollments_created": self.enrollments_created,
            "already_enrolled": self.already_enrolled,
            "errors": self.errors,
        }
        if self.promoted_from is not None:
            data["promoted_from"] = self.promoted_from
        return data


@dataclass
class BulkEnrollmentResult:
    semester: int
    results: List[AutoEnrollmentResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        succeeded = [r for r in self.results if r.success]
        return {
            "semester": self.semester,
            "total_students": len(self.results),
            "successful_enrollments": len(succeeded),
            "failed_enrollments": len(self.results) - len(succeeded),
            "total_enrollments_created": sum(r.enrollments_created for r in succeeded),
            "results": [r.to_dict() for r in self.results],
        }


def _core_offerings(student, semester, academic_year_id):
    stmt = (
        select(CourseOffering)
        .join(Course, CourseOffering.course_id == Course.id)
        .where(Course.college_id == student.college_id,
               Course.department_id == student.department_id,
               Course.type == "core",
               CourseOffering.academic_year_id == academic_year_id,
               CourseOffering.semester == semester)
        .order_by(Course.code, CourseOffering.id)
    )
    offerings = db.session.scalars(stmt).all()
    # One offering per course: the student's own section, else a sectionless one.
    chosen = {}
    for offering in offerings:
        if offering.section_id is not None and offering.section_id != student.section_id:
            continue
        current = chosen.get(offering.course_id)
        if current is None or (current.section_id is None and offering.section_id is not None):
            chosen[offering.course_id] = offering
    return list(chosen.values())


def _student(value) -> Student:
    if isinstance(value, Student):
        return value
    student = db.session.get(Student, value) if value is not None else None
    if student is None:
        raise NotFoundError("Student", value)
    return student


def auto_enroll_for_semester(student, semester: Optional[int] = None) -> AutoEnrollmentResult:
    student = _student(student)
    semester = semester or student.semester
    result = AutoEnrollmentResult(student.id, semester)

    years = db.session.scalars(
        select(AcademicYear)
        .where(AcademicYear.college_id == student.college_id, AcademicYear.is_active.is_(True))
        .order_by(AcademicYear.start_date.desc())
    ).all()
    if not years:
        result.errors.append("No active academic year")
        return result

    offerings = []
    for year in years:
        offerings = _core_offerings(student, semester, year.id)
        if offerings:
            break
    if not offerings:
        result.errors.append(f"No core course offerings for semester {semester}")
        return result

    for offering in offerings:
        outcome = ensure_enrollment(student, offering)
        if outcome.status == ENROLLED:
            result.enrollments_created += 1
        elif outcome.status == ALREADY_ENROLLED:
            result.already_enrolled += 1
        else:
            result.errors.append(f"{offering.course.code}: {outcome.error}")
    logger.info("Auto-enrolled student %s in %s course(s) for semester %s",
                student.usn, result.enrollments_created, semester)
    return result


def promote_student(student) -> AutoEnrollmentResult:
    """Move a student to the next semester and enroll them in its core courses.

    The promotion is committed before enrolling, so a semester without
    offerings still leaves the student promoted; the result then carries
    the enrollment errors.
    """
    student = _student(student)
    current = student.semester or 1
    student.semester = current + 1
    db.session.commit()
    logger.info("Promoted student %s from semester %s to %s", student.usn, current, student.semester)
    result = auto_enroll_for_semester(student, student.semester)
    result.promoted_from = current
    return result


def bulk_enroll_for_semester(semester: int, student_ids: Optional[Iterable[Any]] = None,
                             department=None, college=None) -> BulkEnrollmentResult:
    if not semester or (student_ids is None and department is None):
        raise ValidationError("Semester and either student ids or a department are required")
    if student_ids is None:
        stmt = select(Student.id).where(Student.department_id == getattr(department, "id", department),
                                        Student.semester == semester)
        if college is not None:
            stmt = stmt.where(Student.college_id == getattr(college, "id", college))
        student_ids = db.session.scalars(stmt.order_by(Student.usn)).all()
    student_ids = list(student_ids)
    if not student_ids:
        raise ValidationError("No students found to enroll")

    batch = BulkEnrollmentResult(semester)
    for student_id in student_ids:
        try:
            batch.results.append(auto_enroll_for_semester(student_id, semester))
        except NotFoundError as exc:
            batch.results.append(AutoEnrollmentResult(student_id, semester, errors=[exc.message]))
    return batch


def course_enrollments(course, year_name: Optional[str] = None,
                       semester: Optional[int] = None) -> List[StudentEnrollment]:
    if db.session.get(Course, getattr(course, "id", course)) is None:
        raise NotFoundError("Course", course)
    stmt = (select(StudentEnrollment)
            .join(CourseOffering, StudentEnrollment.offering_id == CourseOffering.id)
            .join(Student, StudentEnrollment.student_id == Student.id)
            .where(CourseOffering.course_id == getattr(course, "id", course)))
    if year_name:
        stmt = stmt.join(AcademicYear, StudentEnrollment.academic_year_id == AcademicYear.id) \
                   .where(AcademicYear.name == year_name)
    if semester is not None:
        stmt = stmt.where(CourseOffering.semester == semester)
    return db.session.scalars(stmt.order_by(Student.usn, StudentEnrollment.id)).all()
