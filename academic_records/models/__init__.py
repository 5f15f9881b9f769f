from ..extensions import db
from .college import College, Department, Section, AcademicYear
from .course import Course, OpenElectiveRestriction, CourseOffering, COURSE_TYPES
from .people import Student, Teacher, Admin, ReportViewer
from .user import User, UserRoleAssignment, ROLES
from .enrollment import StudentEnrollment, TheoryMarks, LabMarks
from .attendance import Attendance, AttendanceRecord, ATTENDANCE_STATUSES

__all__ = [
    "College", "Department", "Section", "AcademicYear",
    "Course", "OpenElectiveRestriction", "CourseOffering",
    "Student", "Teacher", "Admin", "ReportViewer",
    "User", "UserRoleAssignment",
    "StudentEnrollment", "TheoryMarks", "LabMarks",
    "Attendance", "AttendanceRecord",
    "COURSE_TYPES", "ROLES", "ATTENDANCE_STATUSES",
]
