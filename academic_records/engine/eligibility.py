"""Which students may take which course."""
from typing import List

from sqlalchemy import select

from ..extensions import db
from ..models import Course, CourseOffering, Department, Student, StudentEnrollment
from .errors import NotFoundError


def is_eligible(student: Student, course: Course) -> bool:
    if student.college_id != course.college_id:
        return False
    if course.type == "open_elective":
        return student.department_id not in course.restricted_department_ids
    # core and department_elective; a course with no department is college-wide
    return course.department_id is None or student.department_id == course.department_id


def eligible_students(course, semester: int) -> List[Student]:
    """Students in ``semester`` who may take ``course`` and are not yet enrolled in it."""
    if not isinstance(course, Course):
        found = db.session.get(Course, course)
        if found is None:
            raise NotFoundError("Course", course)
        course = found

    already = (
        select(StudentEnrollment.student_id)
        .join(CourseOffering, StudentEnrollment.offering_id == CourseOffering.id)
        .where(CourseOffering.course_id == course.id, CourseOffering.semester == semester)
    )
    stmt = (
        select(Student)
        .join(Department, Student.department_id == Department.id)
        .where(Student.college_id == course.college_id,
               Student.semester == semester,
               Student.id.not_in(already))
    )
    if course.type == "open_elective":
        restricted = course.restricted_department_ids
        if restricted:
            stmt = stmt.where(Student.department_id.not_in(restricted))
    elif course.department_id is not None:
        stmt = stmt.where(Student.department_id == course.department_id)
    return db.session.scalars(stmt.order_by(Department.code, Student.usn)).all()
