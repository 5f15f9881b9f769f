"""
Natural-key resolution.

Human-readable codes (college code, department code within a college, section
name within a department, course code, USN, username) are mapped to internal
ids. Scope is always part of the lookup key, so a department code that exists
in college A can never resolve inside college B.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Optional, Tuple

from sqlalchemy import select

from ..extensions import db
from ..models import (
    AcademicYear, College, Course, Department, Section, Student, Teacher, User,
)
from .errors import ErrorCode, ScopeResolutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Outcome of a lookup: either an id or a not-found explanation."""

    entity: str
    key: Tuple[Any, ...]
    id: Optional[int] = None
    message: Optional[str] = None
    ambiguous: bool = False

    @property
    def found(self) -> bool:
        return self.id is not None

    def require(self) -> int:
        if self.id is None:
            code = ErrorCode.AMBIGUOUS_REFERENCE if self.ambiguous else ErrorCode.SCOPE_RESOLUTION
            raise ScopeResolutionError(self.message, code=code,
                                       details={"entity": self.entity, "key": list(self.key)})
        return self.id

    def optional(self) -> Optional[int]:
        return self.id

    def __bool__(self):
        return self.found


class NaturalKeyResolver:
    """Resolves natural keys against the current session.

    Hits are memoised under the composite key ``(entity, scope, key)`` for the
    lifetime of the resolver; misses are not, because a later row in the same
    import may create the missing parent.
    """

    def __init__(self, session=None):
        self.session = session or db.session
        self._cache: Dict[Tuple[str, Hashable, Hashable], int] = {}

    def _lookup(self, entity: str, scope: Hashable, key: Hashable, stmt,
                not_found: str) -> Resolution:
        cache_key = (entity, scope, key)
        key_tuple = key if isinstance(key, tuple) else (key,)
        if cache_key in self._cache:
            return Resolution(entity, key_tuple, id=self._cache[cache_key])
        ids = self.session.execute(stmt.limit(2)).scalars().all()
        if not ids:
            return Resolution(entity, key_tuple, message=not_found)
        if len(ids) > 1:
            return Resolution(entity, key_tuple, ambiguous=True,
                              message=f"{not_found.rsplit(' not found', 1)[0]} is ambiguous")
        self._cache[cache_key] = ids[0]
        return Resolution(entity, key_tuple, id=ids[0])

    def resolve(self, entity: str, natural_key: Dict[str, Any], scope: Optional[int] = None) -> Resolution:
        """Generic entry point: ``resolve("departments", {"code": "CSE"}, scope=college_id)``."""
        handlers = {
            "colleges": lambda: self.college(natural_key.get("code")),
            "departments": lambda: self.department(scope, natural_key.get("code")),
            "sections": lambda: self.section(scope, natural_key.get("name")),
            "courses": lambda: self.course(natural_key.get("code"), college_id=scope,
                                           department_id=natural_key.get("department_id")),
            "academic_years": lambda: self.academic_year(scope, natural_key.get("name")),
            "users": lambda: self.user(natural_key.get("username")),
            "students": lambda: self.student(natural_key.get("usn")),
            "teachers": lambda: self.teacher(natural_key.get("username"), college_id=scope),
        }
        if entity not in handlers:
            return Resolution(entity, tuple(natural_key.values()),
                              message=f"No natural key defined for {entity}")
        return handlers[entity]()

    def clear(self):
        self._cache.clear()

    def college(self, code: Optional[str]) -> Resolution:
        return self._lookup(
            "colleges", None, code,
            select(College.id).where(College.code == code),
            f"College {code} not found",
        )

    def department(self, college_id: Optional[int], code: Optional[str],
                   college_code: Optional[str] = None) -> Resolution:
        where = f"in college {college_code}" if college_code else f"in college #{college_id}"
        if college_id is None:
            return Resolution("departments", (code,), message=f"Department {code} {where} not found")
        return self._lookup(
            "departments", college_id, code,
            select(Department.id).where(Department.college_id == college_id,
                                        Department.code == code),
            f"Department {code} {where} not found",
        )

    def section(self, department_id: Optional[int], name: Optional[str],
                department_code: Optional[str] = None) -> Resolution:
        where = f"in department {department_code}" if department_code else f"in department #{department_id}"
        if department_id is None:
            return Resolution("sections", (name,), message=f"Section {name} {where} not found")
        return self._lookup(
            "sections", department_id, name,
            select(Section.id).where(Section.department_id == department_id,
                                     Section.name == name),
            f"Section {name} {where} not found",
        )

    def course(self, code: Optional[str], college_id: Optional[int] = None,
               department_id: Optional[int] = None) -> Resolution:
        """Department scope when given, else college scope, else global.

        A global lookup that matches in several colleges is reported as
        ambiguous rather than picking one.
        """
        stmt = select(Course.id).where(Course.code == code)
        if department_id is not None:
            stmt = stmt.where(Course.department_id == department_id)
            scope = ("department", department_id)
        elif college_id is not None:
            stmt = stmt.where(Course.college_id == college_id)
            scope = ("college", college_id)
        else:
            scope = None
        return self._lookup("courses", scope, code, stmt, f"Course {code} not found")

    def academic_year(self, college_id: Optional[int], name: Optional[str]) -> Resolution:
        if college_id is None:
            return Resolution("academic_years", (name,), message=f"Academic year {name} not found")
        return self._lookup(
            "academic_years", college_id, name,
            select(AcademicYear.id).where(AcademicYear.college_id == college_id,
                                          AcademicYear.name == name),
            f"Academic year {name} not found",
        )

    def user(self, username: Optional[str]) -> Resolution:
        return self._lookup(
            "users", None, username,
            select(User.id).where(User.username == username),
            f"User {username} not found",
        )

    def student(self, usn: Optional[str]) -> Resolution:
        return self._lookup(
            "students", None, usn,
            select(Student.id).where(Student.usn == usn),
            f"Student {usn} not found",
        )

    def teacher(self, username: Optional[str], college_id: Optional[int] = None) -> Resolution:
        stmt = select(Teacher.id).join(User, Teacher.user_id == User.id).where(User.username == username)
        if college_id is not None:
            stmt = stmt.where(Teacher.college_id == college_id)
        return self._lookup("teachers", college_id, username, stmt, f"Teacher {username} not found")
