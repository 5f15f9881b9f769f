"""
Row-by-row bulk import.

Each recognised table has a writer registered with ``@importer``. A writer
resolves the row's natural-key references, coerces its scalars and adds the
new row to the session; the importer commits after every row, and a failing
row is rolled back on its own and reported as ``"<Label> <key>: <message>"``.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from flask import current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from ..extensions import db
from ..models import (
    ATTENDANCE_STATUSES, COURSE_TYPES, ROLES, AcademicYear, Admin, Attendance,
    AttendanceRecord, College, Course, CourseOffering, Department, LabMarks,
    OpenElectiveRestriction, ReportViewer, Section, Student, StudentEnrollment,
    Teacher, TheoryMarks, User, UserRoleAssignment,
)
from .coerce import choice, required, text, to_bool, to_date, to_int
from .enrollment import auto_enroll_for_semester
from .errors import EngineError, ErrorCode, ScopeResolutionError, ValidationError
from .resolver import NaturalKeyResolver
from .schema_graph import check_order
from .upsert import ALREADY_ENROLLED, ERROR, UNSET, Term, ensure_enrollment, ensure_offering, set_active_year

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    table: str
    records_processed: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def message(self) -> str:
        if self.errors:
            return (f"Imported {self.records_processed} {self.table} record(s) "
                    f"with {len(self.errors)} error(s)")
        return f"Imported {self.records_processed} {self.table} record(s)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "success": self.success,
            "message": self.message,
            "records_processed": self.records_processed,
            "errors": self.errors,
            "warnings": self.warnings,
        }


@dataclass
class ImportContext:
    session: Any
    resolver: NaturalKeyResolver
    auto_enroll: bool = True
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str):
        self.warnings.append(message)


@dataclass(frozen=True)
class TableImporter:
    table: str
    label: str
    key: Callable[[Mapping[str, Any]], str]
    write: Callable[[ImportContext, Mapping[str, Any]], None]


IMPORTERS: Dict[str, TableImporter] = {}


def importer(table: str, label: str, key: Callable[[Mapping[str, Any]], Any]):
    def decorator(fn):
        IMPORTERS[table] = TableImporter(table, label, key, fn)
        return fn
    return decorator


def supported_tables() -> Tuple[str, ...]:
    return tuple(IMPORTERS)


def _integrity_message(exc: IntegrityError) -> str:
    detail = str(getattr(exc, "orig", exc)).strip()
    if "UNIQUE" in detail.upper() or "DUPLICATE" in detail.upper():
        return f"already exists ({detail})"
    return f"violates a database constraint ({detail})"


class BulkImporter:
    def __init__(self, session=None, auto_enroll: Optional[bool] = None):
        self.session = session or db.session
        if auto_enroll is None:
            auto_enroll = current_app.config.get("IMPORT_AUTO_ENROLL", True) if has_app_context() else True
        self.auto_enroll = auto_enroll

    def import_table(self, table: str, rows: Iterable[Mapping[str, Any]]) -> ImportResult:
        name = (table or "").strip().lower()
        result = ImportResult(name or str(table))
        spec = IMPORTERS.get(name)
        if spec is None:
            result.errors.append(f"Unknown table: {table}")
            return result

        ctx = ImportContext(self.session, NaturalKeyResolver(self.session), self.auto_enroll)
        for row in rows:
            if not isinstance(row, Mapping):
                result.errors.append(f"{spec.label} ?: row is not a mapping")
                continue
            try:
                label = f"{spec.label} {spec.key(row)}"
            except Exception:  # key extraction must never abort the table
                label = f"{spec.label} ?"
            ctx.warnings = []
            try:
                spec.write(ctx, row)
                self.session.commit()
            except EngineError as exc:
                self.session.rollback()
                self._fail(result, label, exc.message)
                continue
            except IntegrityError as exc:
                self.session.rollback()
                self._fail(result, label, _integrity_message(exc))
                continue
            except Exception as exc:
                self.session.rollback()
                logger.exception("Unexpected failure importing %s", label)
                self._fail(result, label, f"{exc.__class__.__name__}: {exc}")
                continue
            result.records_processed += 1
            result.warnings.extend(f"{label}: {w}" for w in ctx.warnings)

        logger.info("Import %s: %s processed, %s errors, %s warnings", name,
                    result.records_processed, len(result.errors), len(result.warnings))
        return result

    @staticmethod
    def _fail(result: ImportResult, label: str, message: str):
        error = f"{label}: {message}"
        result.errors.append(error)
        logger.warning("Import row failed: %s", error)

    def import_tables(self, batches: Iterable[Tuple[str, Iterable[Mapping[str, Any]]]]) -> List[ImportResult]:
        batches = list(batches)
        for problem in check_order([(t or "").strip().lower() for t, _ in batches]):
            logger.warning("Import order: %s", problem)
        return [self.import_table(table, rows) for table, rows in batches]

    def import_csv(self, table: str, stream) -> ImportResult:
        data = stream.read() if hasattr(stream, "read") else stream
        try:
            if isinstance(data, bytes):
                data = data.decode("utf-8-sig")
            data = data.lstrip("\ufeff")
            rows = list(csv.DictReader(io.StringIO(data)))
        except (UnicodeDecodeError, csv.Error) as exc:
            result = ImportResult((table or "").strip().lower() or str(table))
            result.errors.append(f"File is not valid UTF-8 CSV: {exc}")
            logger.warning("Import %s rejected: %s", result.table, exc)
            return result
        return self.import_table(table, rows)


def import_table(table, rows) -> ImportResult:
    return BulkImporter().import_table(table, rows)


def import_tables(batches) -> List[ImportResult]:
    return BulkImporter().import_tables(batches)


def import_csv(table, stream) -> ImportResult:
    return BulkImporter().import_csv(table, stream)


# ---------- shared lookups ----------

def _college_id(ctx, row, required_field=True) -> Optional[int]:
    code = required(row, "college_code") if required_field else text(row, "college_code")
    if code is None:
        return None
    return ctx.resolver.college(code).require()


def _department_id(ctx, college_id, row, *names, college_code=None) -> int:
    code = required(row, *names)
    return ctx.resolver.department(college_id, code, college_code=college_code).require()


def _student(ctx, row) -> Student:
    usn = required(row, "student_usn", "usn")
    return ctx.session.get(Student, ctx.resolver.student(usn).require())


def _student_course(ctx, row, student) -> Course:
    code = required(row, "course_code")
    return ctx.session.get(Course, ctx.resolver.course(code, college_id=student.college_id).require())


def _academic_year_id(ctx, college_id, row) -> int:
    name = text(row, "academic_year", "year_name")
    if name:
        return ctx.resolver.academic_year(college_id, name).require()
    active = ctx.session.scalar(
        select(AcademicYear.id)
        .where(AcademicYear.college_id == college_id, AcademicYear.is_active.is_(True))
        .order_by(AcademicYear.start_date.desc())
    )
    if active is None:
        raise ScopeResolutionError("No academic year given and no active academic year")
    return active


def _enrollment(ctx, row) -> StudentEnrollment:
    student = _student(ctx, row)
    course = _student_course(ctx, row, student)
    stmt = (
        select(StudentEnrollment)
        .join(CourseOffering, StudentEnrollment.offering_id == CourseOffering.id)
        .where(StudentEnrollment.student_id == student.id, CourseOffering.course_id == course.id)
    )
    year_name = text(row, "academic_year", "year_name")
    if year_name:
        year_id = ctx.resolver.academic_year(course.college_id, year_name).require()
        stmt = stmt.where(StudentEnrollment.academic_year_id == year_id)
    enrollments = ctx.session.scalars(stmt.limit(2)).all()
    if not enrollments:
        raise ScopeResolutionError(f"Student {student.usn} is not enrolled in {course.code}")
    if len(enrollments) > 1:
        raise ScopeResolutionError(
            f"Student {student.usn} has several enrollments in {course.code}; give academic_year",
            code=ErrorCode.AMBIGUOUS_REFERENCE)
    return enrollments[0]


def _pick_offering(candidates, student, section_name, course, semester):
    if section_name:
        candidates = [o for o in candidates if o.section is not None and o.section.name == section_name]
    elif len(candidates) > 1:
        own = [o for o in candidates if student.section_id and o.section_id == student.section_id]
        sectionless = [o for o in candidates if o.section_id is None]
        candidates = own or sectionless or candidates
    if not candidates:
        where = f" section {section_name}" if section_name else ""
        raise ScopeResolutionError(f"Course offering for {course.code} semester {semester}{where} not found")
    if len(candidates) > 1:
        raise ScopeResolutionError(
            f"Course {course.code} has several offerings for semester {semester}; give section_name",
            code=ErrorCode.AMBIGUOUS_REFERENCE)
    return candidates[0]


def _update_marks(ctx, model, enrollment, row, fields):
    values = {f: to_int(row.get(f), f, minimum=0) for f in fields}
    marks = ctx.session.scalar(select(model).where(model.enrollment_id == enrollment.id))
    if marks is None:
        marks = model(enrollment_id=enrollment.id)
        ctx.session.add(marks)
    else:
        ctx.warn("existing marks updated")
    for name, value in values.items():
        if value is not None:
            setattr(marks, name, value)


# ---------- table writers ----------

@importer("colleges", "College", key=lambda r: text(r, "college_code", "code"))
def _import_college(ctx, row):
    ctx.session.add(College(
        code=required(row, "college_code", "code"),
        name=required(row, "college_name", "name"),
        logo_url=text(row, "logo_url"),
    ))


@importer("users", "User", key=lambda r: text(r, "username"))
def _import_user(ctx, row):
    password_hash = text(row, "password_hash")
    if password_hash is None:
        password = text(row, "password")
        if password is None:
            raise ValidationError("Missing required field password_hash",
                                  code=ErrorCode.MISSING_FIELD, details={"field": "password_hash"})
        password_hash = generate_password_hash(password)
    ctx.session.add(User(
        username=required(row, "username"),
        password_hash=password_hash,
        name=required(row, "name"),
        email=text(row, "email"),
        phone=text(row, "phone"),
    ))


@importer("user_roles", "User role", key=lambda r: f"{text(r, 'username')}/{text(r, 'role')}")
def _import_user_role(ctx, row):
    user_id = ctx.resolver.user(required(row, "username")).require()
    role = choice(text(row, "role"), "role", ROLES)
    ctx.session.add(UserRoleAssignment(user_id=user_id, role=role))
    if role == "admin" and ctx.session.scalar(select(Admin.id).where(Admin.user_id == user_id)) is None:
        ctx.session.add(Admin(user_id=user_id, college_id=_college_id(ctx, row, required_field=False)))
    elif role == "report_viewer" and ctx.session.scalar(
            select(ReportViewer.id).where(ReportViewer.user_id == user_id)) is None:
        ctx.session.add(ReportViewer(user_id=user_id))


@importer("departments", "Department", key=lambda r: text(r, "department_code", "code"))
def _import_department(ctx, row):
    ctx.session.add(Department(
        college_id=_college_id(ctx, row),
        code=required(row, "department_code", "code"),
        name=required(row, "department_name", "name"),
    ))


@importer("sections", "Section",
          key=lambda r: f"{text(r, 'department_code')}-{text(r, 'section_name', 'name')}")
def _import_section(ctx, row):
    college_id = _college_id(ctx, row)
    department_id = _department_id(ctx, college_id, row, "department_code",
                                   college_code=text(row, "college_code"))
    ctx.session.add(Section(department_id=department_id, name=required(row, "section_name", "name")))


@importer("courses", "Course", key=lambda r: text(r, "course_code", "code"))
def _import_course(ctx, row):
    college_id = _college_id(ctx, row)
    department_id = None
    if text(row, "department_code"):
        department_id = _department_id(ctx, college_id, row, "department_code",
                                       college_code=text(row, "college_code"))
    ctx.session.add(Course(
        college_id=college_id,
        department_id=department_id,
        code=required(row, "course_code", "code"),
        name=required(row, "course_name", "name"),
        type=choice(text(row, "course_type", "type"), "course_type", COURSE_TYPES, default="core"),
        has_theory=to_bool(row.get("has_theory"), "has_theory", default=True),
        has_lab=to_bool(row.get("has_lab"), "has_lab", default=False),
    ))


@importer("open_elective_restrictions", "Open elective restriction",
          key=lambda r: f"{text(r, 'course_code')}/{text(r, 'department_code')}")
def _import_restriction(ctx, row):
    college_id = _college_id(ctx, row)
    course = ctx.session.get(Course, ctx.resolver.course(required(row, "course_code"),
                                                         college_id=college_id).require())
    if course.type != "open_elective":
        raise ValidationError(f"Course {course.code} is not an open elective")
    department_id = _department_id(ctx, college_id, row, "department_code",
                                   college_code=text(row, "college_code"))
    ctx.session.add(OpenElectiveRestriction(course_id=course.id, department_id=department_id))


@importer("academic_years", "Academic year", key=lambda r: text(r, "year_name", "name"))
def _import_academic_year(ctx, row):
    start = to_date(row.get("start_date"), "start_date")
    end = to_date(row.get("end_date"), "end_date")
    if start > end:
        raise ValidationError(f"start_date {start} is after end_date {end}")
    year = AcademicYear(
        college_id=_college_id(ctx, row),
        name=required(row, "year_name", "name"),
        start_date=start,
        end_date=end,
        is_active=False,
    )
    ctx.session.add(year)
    if to_bool(row.get("is_active"), "is_active"):
        ctx.session.flush()
        if set_active_year(year):
            ctx.warn("other academic years of the college were deactivated")


@importer("teachers", "Teacher", key=lambda r: text(r, "username"))
def _import_teacher(ctx, row):
    user_id = ctx.resolver.user(required(row, "username")).require()
    college_id = _college_id(ctx, row)
    department_id = _department_id(ctx, college_id, row, "department_code",
                                   college_code=text(row, "college_code"))
    ctx.session.add(Teacher(user_id=user_id, college_id=college_id, department_id=department_id))


@importer("students", "Student", key=lambda r: text(r, "usn"))
def _import_student(ctx, row):
    user_id = ctx.resolver.user(required(row, "username")).require()
    college_id = _college_id(ctx, row)
    department_code = required(row, "department_code")
    department_id = ctx.resolver.department(college_id, department_code,
                                            college_code=text(row, "college_code")).require()
    section_id = None
    section_name = text(row, "section_name")
    if section_name:
        section_id = ctx.resolver.section(department_id, section_name, department_code).require()
    student = Student(
        user_id=user_id,
        college_id=college_id,
        department_id=department_id,
        section_id=section_id,
        usn=required(row, "usn"),
        semester=to_int(row.get("semester"), "semester", default=1, minimum=1),
        batch_year=to_int(row.get("batch_year"), "batch_year"),
    )
    ctx.session.add(student)
    if not ctx.auto_enroll:
        return
    ctx.session.commit()
    try:
        outcome = auto_enroll_for_semester(student)
    except Exception as exc:
        ctx.session.rollback()
        logger.warning("Auto-enrollment failed for %s: %s", student.usn, exc)
        ctx.warn(f"auto-enrollment failed: {exc}")
        return
    for error in outcome.errors:
        ctx.warn(f"auto-enrollment: {error}")


@importer("course_offerings", "Course offering",
          key=lambda r: f"{text(r, 'course_code')}/{text(r, 'academic_year')}/{text(r, 'semester')}")
def _import_course_offering(ctx, row):
    college_id = _college_id(ctx, row, required_field=False)
    department_id = None
    if college_id is not None and text(row, "department_code"):
        department_id = _department_id(ctx, college_id, row, "department_code",
                                       college_code=text(row, "college_code"))
    course = ctx.session.get(Course, ctx.resolver.course(
        required(row, "course_code"), college_id=college_id, department_id=department_id).require())
    year_id = ctx.resolver.academic_year(course.college_id,
                                         required(row, "academic_year", "year_name")).require()
    semester = to_int(row.get("semester"), "semester", default=1, minimum=1)

    section = UNSET
    section_name = text(row, "section_name")
    if section_name:
        dept_code = text(row, "section_dept_code", "department_code") or (
            course.department.code if course.department else None)
        if dept_code is None:
            raise ValidationError("Missing required field section_dept_code",
                                  code=ErrorCode.MISSING_FIELD, details={"field": "section_dept_code"})
        dept_id = ctx.resolver.department(course.college_id, dept_code).require()
        section = ctx.resolver.section(dept_id, section_name, dept_code).require()

    teacher = UNSET
    teacher_username = text(row, "teacher_username")
    if teacher_username:
        found = ctx.resolver.teacher(teacher_username, course.college_id)
        if found:
            teacher = found.id
        else:
            ctx.warn(f"{found.message}; offering left without a teacher")

    result = ensure_offering(course, Term(year_id, semester), section=section, teacher=teacher)
    if not result.created:
        logger.info("Offering %s already existed (changed: %s)", result.row.id,
                    ", ".join(result.changed) or "nothing")


@importer("student_enrollments", "Enrollment",
          key=lambda r: f"{text(r, 'student_usn', 'usn')}-{text(r, 'course_code')}")
def _import_enrollment(ctx, row):
    student = _student(ctx, row)
    course = _student_course(ctx, row, student)
    year_id = _academic_year_id(ctx, course.college_id, row)
    semester = to_int(row.get("semester"), "semester", default=student.semester, minimum=1)
    candidates = ctx.session.scalars(
        select(CourseOffering)
        .where(CourseOffering.course_id == course.id,
               CourseOffering.academic_year_id == year_id,
               CourseOffering.semester == semester)
        .order_by(CourseOffering.id)
    ).all()
    offering = _pick_offering(candidates, student, text(row, "section_name"), course, semester)
    outcome = ensure_enrollment(student, offering)
    if outcome.status == ERROR:
        raise ValidationError(outcome.error)
    if outcome.status == ALREADY_ENROLLED:
        ctx.warn("already enrolled")


@importer("attendance", "Attendance",
          key=lambda r: f"{text(r, 'course_code')}/{text(r, 'class_date')}/{text(r, 'period_number') or 1}")
def _import_attendance(ctx, row):
    college_id = _college_id(ctx, row, required_field=False)
    course = ctx.session.get(Course, ctx.resolver.course(required(row, "course_code"),
                                                         college_id=college_id).require())
    dept_code = required(row, "section_dept_code")
    dept_id = ctx.resolver.department(course.college_id, dept_code).require()
    section_id = ctx.resolver.section(dept_id, required(row, "section_name"), dept_code).require()

    stmt = select(CourseOffering).where(CourseOffering.course_id == course.id)
    if text(row, "academic_year"):
        stmt = stmt.where(CourseOffering.academic_year_id == ctx.resolver.academic_year(
            course.college_id, text(row, "academic_year")).require())
    semester = to_int(row.get("semester"), "semester", minimum=1)
    if semester is not None:
        stmt = stmt.where(CourseOffering.semester == semester)
    offerings = ctx.session.scalars(stmt.order_by(CourseOffering.id)).all()
    # A class of section A may be taught under a sectionless offering.
    offerings = ([o for o in offerings if o.section_id == section_id]
                 or [o for o in offerings if o.section_id is None])
    if len(offerings) > 1:
        active = [o for o in offerings if o.academic_year.is_active]
        offerings = active or offerings
    if not offerings:
        raise ScopeResolutionError(f"Course offering for {course.code} section {text(row, 'section_name')} not found")
    if len(offerings) > 1:
        raise ScopeResolutionError(
            f"Course {course.code} has several offerings for this section; give academic_year or semester",
            code=ErrorCode.AMBIGUOUS_REFERENCE)
    offering = offerings[0]

    teacher_id = offering.teacher_id
    teacher_username = text(row, "teacher_username")
    if teacher_username:
        found = ctx.resolver.teacher(teacher_username, course.college_id)
        if found:
            teacher_id = found.id
        else:
            ctx.warn(found.message)
    ctx.session.add(Attendance(
        offering_id=offering.id,
        teacher_id=teacher_id,
        class_date=to_date(row.get("class_date"), "class_date"),
        period_number=to_int(row.get("period_number"), "period_number", default=1, minimum=1),
        syllabus_covered=text(row, "syllabus_covered"),
    ))


@importer("attendance_records", "Attendance record",
          key=lambda r: f"{text(r, 'student_usn', 'usn')}/{text(r, 'course_code')}/{text(r, 'class_date')}")
def _import_attendance_record(ctx, row):
    student = _student(ctx, row)
    course = _student_course(ctx, row, student)
    class_date = to_date(row.get("class_date"), "class_date")
    period = to_int(row.get("period_number"), "period_number", default=1, minimum=1)
    sessions = ctx.session.scalars(
        select(Attendance)
        .join(CourseOffering, Attendance.offering_id == CourseOffering.id)
        .where(CourseOffering.course_id == course.id,
               Attendance.class_date == class_date,
               Attendance.period_number == period)
    ).all()
    if len(sessions) > 1:
        enrolled = {e.offering_id for e in student.enrollments}
        sessions = [s for s in sessions if s.offering_id in enrolled] or sessions
    if not sessions:
        raise ScopeResolutionError(f"Attendance for {course.code} on {class_date} period {period} not found")
    if len(sessions) > 1:
        raise ScopeResolutionError(
            f"Several attendance sessions for {course.code} on {class_date} period {period}",
            code=ErrorCode.AMBIGUOUS_REFERENCE)
    ctx.session.add(AttendanceRecord(
        attendance_id=sessions[0].id,
        student_id=student.id,
        status=choice(text(row, "status"), "status", ATTENDANCE_STATUSES, default="present"),
    ))


THEORY_FIELDS = ("mse1_marks", "mse2_marks", "mse3_marks", "task1_marks", "task2_marks", "task3_marks")
LAB_FIELDS = ("record_marks", "continuous_evaluation_marks", "lab_mse_marks")


@importer("theory_marks", "Theory marks",
          key=lambda r: f"{text(r, 'student_usn', 'usn')}-{text(r, 'course_code')}")
def _import_theory_marks(ctx, row):
    enrollment = _enrollment(ctx, row)
    if not enrollment.offering.course.has_theory:
        raise ValidationError(f"Course {enrollment.offering.course.code} has no theory component")
    _update_marks(ctx, TheoryMarks, enrollment, row, THEORY_FIELDS)


@importer("lab_marks", "Lab marks",
          key=lambda r: f"{text(r, 'student_usn', 'usn')}-{text(r, 'course_code')}")
def _import_lab_marks(ctx, row):
    enrollment = _enrollment(ctx, row)
    if not enrollment.offering.course.has_lab:
        raise ValidationError(f"Course {enrollment.offering.course.code} has no lab component")
    _update_marks(ctx, LabMarks, enrollment, row, LAB_FIELDS)
