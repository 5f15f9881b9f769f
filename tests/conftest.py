"""
Shared fixtures: an app on in-memory SQLite and a small seeded college tree.

Seeded tree (ids exposed through the ``tree`` fixture):
    C1  departments CSE (sections A, B) and ECE, year 2024-25 (active)
        courses CS101 (core, CSE) and OE1 (open elective, ECE restricted)
        teacher t.rao (CSE) teaching the sectionless CS101 semester 1 offering
        students 1CS001 (CSE/A, enrolled, marks, attendance), 1EC001 (ECE),
        1CS002 (CSE, no section, not enrolled)
        admin user bound to C1
    C2  empty college
"""
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from werkzeug.security import generate_password_hash

from academic_records import create_app
from academic_records.extensions import db as _db
from academic_records.models import (
    AcademicYear, Admin, Attendance, AttendanceRecord, College, Course,
    CourseOffering, Department, OpenElectiveRestriction, Section, Student,
    StudentEnrollment, Teacher, TheoryMarks, User, UserRoleAssignment,
)

PASSWORD = "secret"


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


def count(model, *criteria):
    stmt = select(func.count()).select_from(model)
    if criteria:
        stmt = stmt.where(*criteria)
    return _db.session.scalar(stmt)


def _user(username, name, *roles):
    user = User(username=username, name=name, password_hash=generate_password_hash(PASSWORD))
    _db.session.add(user)
    _db.session.flush()
    for role in roles:
        _db.session.add(UserRoleAssignment(user_id=user.id, role=role))
    return user


@pytest.fixture
def tree(db):
    c1 = College(code="C1", name="First College")
    c2 = College(code="C2", name="Second College")
    db.session.add_all([c1, c2])
    db.session.flush()

    cse = Department(college_id=c1.id, code="CSE", name="Computer Science")
    ece = Department(college_id=c1.id, code="ECE", name="Electronics")
    db.session.add_all([cse, ece])
    db.session.flush()
    sec_a = Section(department_id=cse.id, name="A")
    sec_b = Section(department_id=cse.id, name="B")
    year = AcademicYear(college_id=c1.id, name="2024-25", start_date=date(2024, 6, 1),
                        end_date=date(2025, 5, 31), is_active=True)
    cs101 = Course(college_id=c1.id, department_id=cse.id, code="CS101", name="Programming",
                   type="core", has_theory=True, has_lab=True)
    oe1 = Course(college_id=c1.id, code="OE1", name="Photography", type="open_elective")
    db.session.add_all([sec_a, sec_b, year, cs101, oe1])
    db.session.flush()
    db.session.add(OpenElectiveRestriction(course_id=oe1.id, department_id=ece.id))

    admin_user = _user("admin", "Admin", "admin")
    db.session.add(Admin(user_id=admin_user.id, college_id=c1.id))

    teacher_user = _user("t.rao", "T Rao", "teacher")
    teacher = Teacher(user_id=teacher_user.id, college_id=c1.id, department_id=cse.id)
    db.session.add(teacher)

    s1_user = _user("s.kumar", "S Kumar", "student")
    s2_user = _user("e.iyer", "E Iyer", "student")
    s3_user = _user("a.das", "A Das", "student")
    s1 = Student(user_id=s1_user.id, college_id=c1.id, department_id=cse.id,
                 section_id=sec_a.id, usn="1CS001", semester=1, batch_year=2024)
    s2 = Student(user_id=s2_user.id, college_id=c1.id, department_id=ece.id,
                 usn="1EC001", semester=1, batch_year=2024)
    s3 = Student(user_id=s3_user.id, college_id=c1.id, department_id=cse.id,
                 usn="1CS002", semester=1, batch_year=2024)
    db.session.add_all([s1, s2, s3])
    db.session.flush()

    offering = CourseOffering(course_id=cs101.id, academic_year_id=year.id, semester=1,
                              teacher_id=teacher.id)
    db.session.add(offering)
    db.session.flush()
    enrollment = StudentEnrollment(student_id=s1.id, offering_id=offering.id,
                                   academic_year_id=year.id, attempt_number=1)
    session = Attendance(offering_id=offering.id, teacher_id=teacher.id,
                         class_date=date(2024, 8, 1), period_number=1)
    db.session.add_all([enrollment, session])
    db.session.flush()
    db.session.add_all([
        TheoryMarks(enrollment_id=enrollment.id, mse1_marks=18),
        AttendanceRecord(attendance_id=session.id, student_id=s1.id, status="present"),
    ])
    db.session.commit()

    return SimpleNamespace(
        c1=c1.id, c2=c2.id, cse=cse.id, ece=ece.id, sec_a=sec_a.id, sec_b=sec_b.id,
        year=year.id, cs101=cs101.id, oe1=oe1.id,
        admin_user=admin_user.id, teacher_user=teacher_user.id, teacher=teacher.id,
        s1_user=s1_user.id, s1=s1.id, s2=s2.id, s3=s3.id,
        offering=offering.id, enrollment=enrollment.id, attendance=session.id,
    )


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username, password=PASSWORD):
    return client.post("/auth/login", json={"username": username, "password": password})


@pytest.fixture
def admin_client(client, tree):
    resp = login(client, "admin")
    assert resp.status_code == 200
    return client
