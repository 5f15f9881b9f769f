"""
Static model of the entity graph.

Every entity type the engine knows is declared once in ``ENTITIES`` and every
foreign-key relationship once in ``EDGES``. Import order (parents first) and
deletion order (children first) are both derived from these declarations, so
a new table only has to be described here to be imported and cascaded
correctly.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import (
    AcademicYear, Admin, Attendance, AttendanceRecord, College, Course,
    CourseOffering, Department, LabMarks, OpenElectiveRestriction,
    ReportViewer, Section, Student, StudentEnrollment, Teacher, TheoryMarks,
    User, UserRoleAssignment,
)
from .errors import ErrorCode, EngineError

CASCADE = "cascade"
DETACH = "detach"


@dataclass(frozen=True)
class EntityType:
    name: str                       # import table name, e.g. "departments"
    model: type
    label: str                      # used in messages, e.g. "Department"
    natural_key: Tuple[str, ...]    # columns forming the human-readable key
    scope: Optional[str] = None     # column the key is unique within, if any


@dataclass(frozen=True)
class Edge:
    parent: str
    child: str
    column: str                     # FK column on the child model
    required: bool = True
    on_delete: str = CASCADE
    owned: bool = False             # child belongs to the parent's aggregate
    owner_follows: bool = False     # removing the child removes its parent too

    @property
    def child_column(self):
        return getattr(ENTITIES[self.child].model, self.column)


ENTITIES: Dict[str, EntityType] = {e.name: e for e in (
    EntityType("colleges", College, "College", ("code",)),
    EntityType("users", User, "User", ("username",)),
    EntityType("user_roles", UserRoleAssignment, "User role", ("role",), scope="user_id"),
    EntityType("admins", Admin, "Admin", ("user_id",)),
    EntityType("report_viewers", ReportViewer, "Report viewer", ("user_id",)),
    EntityType("departments", Department, "Department", ("code",), scope="college_id"),
    EntityType("sections", Section, "Section", ("name",), scope="department_id"),
    EntityType("courses", Course, "Course", ("code",), scope="college_id"),
    EntityType("open_elective_restrictions", OpenElectiveRestriction,
               "Open elective restriction", ("department_id",), scope="course_id"),
    EntityType("academic_years", AcademicYear, "Academic year", ("name",), scope="college_id"),
    EntityType("teachers", Teacher, "Teacher", ("user_id",)),
    EntityType("students", Student, "Student", ("usn",)),
    EntityType("course_offerings", CourseOffering, "Course offering",
               ("course_id", "academic_year_id", "semester", "section_id")),
    EntityType("student_enrollments", StudentEnrollment, "Enrollment",
               ("student_id", "offering_id")),
    EntityType("attendance", Attendance, "Attendance",
               ("offering_id", "class_date", "period_number")),
    EntityType("attendance_records", AttendanceRecord, "Attendance record",
               ("attendance_id", "student_id")),
    EntityType("theory_marks", TheoryMarks, "Theory marks", ("enrollment_id",)),
    EntityType("lab_marks", LabMarks, "Lab marks", ("enrollment_id",)),
)}

EDGES: Tuple[Edge, ...] = (
    Edge("colleges", "departments", "college_id"),
    Edge("departments", "sections", "department_id"),
    Edge("colleges", "courses", "college_id"),
    Edge("departments", "courses", "department_id", required=False),
    Edge("courses", "open_elective_restrictions", "course_id", owned=True),
    Edge("departments", "open_elective_restrictions", "department_id"),
    Edge("colleges", "academic_years", "college_id"),
    Edge("users", "user_roles", "user_id", owned=True),
    Edge("users", "admins", "user_id", owned=True),
    Edge("colleges", "admins", "college_id", required=False, on_delete=DETACH),
    Edge("users", "report_viewers", "user_id", owned=True),
    Edge("users", "teachers", "user_id", owned=True, owner_follows=True),
    Edge("colleges", "teachers", "college_id"),
    Edge("departments", "teachers", "department_id"),
    Edge("users", "students", "user_id", owned=True, owner_follows=True),
    Edge("colleges", "students", "college_id"),
    Edge("departments", "students", "department_id"),
    Edge("sections", "students", "section_id", required=False, on_delete=DETACH),
    Edge("courses", "course_offerings", "course_id"),
    Edge("academic_years", "course_offerings", "academic_year_id"),
    Edge("sections", "course_offerings", "section_id", required=False, on_delete=DETACH),
    Edge("teachers", "course_offerings", "teacher_id", required=False, on_delete=DETACH),
    Edge("students", "student_enrollments", "student_id"),
    Edge("course_offerings", "student_enrollments", "offering_id"),
    Edge("academic_years", "student_enrollments", "academic_year_id"),
    Edge("course_offerings", "attendance", "offering_id"),
    Edge("teachers", "attendance", "teacher_id", required=False, on_delete=DETACH),
    Edge("attendance", "attendance_records", "attendance_id"),
    Edge("students", "attendance_records", "student_id"),
    Edge("student_enrollments", "theory_marks", "enrollment_id"),
    Edge("student_enrollments", "lab_marks", "enrollment_id"),
)

ROOTS = ("colleges", "departments", "courses", "users")


class SchemaGraphError(EngineError):
    default_code = ErrorCode.UNKNOWN_ENTITY


def entity(name: str) -> EntityType:
    try:
        return ENTITIES[name]
    except KeyError:
        raise SchemaGraphError(f"Unknown entity type: {name}") from None


def children_of(name: str) -> List[Edge]:
    return [e for e in EDGES if e.parent == name]


def parents_of(name: str) -> List[Edge]:
    return [e for e in EDGES if e.child == name]


def _topological_order() -> Tuple[str, ...]:
    # Kahn's algorithm; ties resolved by declaration order so the result is stable.
    declared = list(ENTITIES)
    pending = {name: {e.parent for e in parents_of(name) if e.parent != name} for name in declared}
    order: List[str] = []
    while pending:
        ready = [name for name in declared if name in pending and not pending[name]]
        if not ready:
            raise SchemaGraphError(f"Cycle in schema graph among: {', '.join(sorted(pending))}")
        for name in ready:
            order.append(name)
            del pending[name]
        for parents in pending.values():
            parents.difference_update(ready)
    return tuple(order)


IMPORT_ORDER: Tuple[str, ...] = _topological_order()
DELETION_ORDER: Tuple[str, ...] = tuple(reversed(IMPORT_ORDER))


def import_order() -> Tuple[str, ...]:
    return IMPORT_ORDER


def deletion_order() -> Tuple[str, ...]:
    return DELETION_ORDER


def rank(name: str) -> int:
    return IMPORT_ORDER.index(entity(name).name)


def check_order(tables: Iterable[str]) -> List[str]:
    """Describe every table requested before one of its parents.

    Only parents that are themselves part of the request are considered; a
    parent imported in an earlier session is fine.
    """
    tables = list(tables)
    position = {name: i for i, name in enumerate(tables)}
    problems = []
    for name in tables:
        if name not in ENTITIES:
            continue
        for edge in parents_of(name):
            if edge.parent in position and position[edge.parent] > position[name]:
                problems.append(f"{name} requested before its parent {edge.parent}")
    return problems
