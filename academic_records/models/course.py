from ..extensions import db

COURSE_TYPES = ("core", "department_elective", "open_elective")

class Course(db.Model):
    __tablename__ = "course"
    id = db.Column(db.Integer, primary_key=True)
    college_id = db.Column(db.Integer, db.ForeignKey("college.id"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("department.id"))  # None = cross-department
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    type = db.Column(db.String(32), nullable=False, default="core")
    has_theory = db.Column(db.Boolean, nullable=False, default=True)
    has_lab = db.Column(db.Boolean, nullable=False, default=False)
    __table_args__ = (
        db.UniqueConstraint("college_id", "code", name="uq_course_college_code"),
        db.CheckConstraint(
            "type IN ('core', 'department_elective', 'open_elective')", name="ck_course_type"
        ),
    )

    college = db.relationship("College")
    department = db.relationship("Department")
    offerings = db.relationship("CourseOffering", back_populates="course")
    restrictions = db.relationship("OpenElectiveRestriction", back_populates="course")

    @property
    def restricted_department_ids(self):
        return {r.department_id for r in self.restrictions}

    def __repr__(self):
        return f"<Course {self.code}>"

class OpenElectiveRestriction(db.Model):
    __tablename__ = "open_elective_restriction"
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("course.id"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("department.id"), nullable=False)
    __table_args__ = (
        db.UniqueConstraint("course_id", "department_id", name="uq_restriction_course_department"),
    )

    course = db.relationship("Course", back_populates="restrictions")
    department = db.relationship("Department")

class CourseOffering(db.Model):
    __tablename__ = "course_offering"
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("course.id"), nullable=False)
    academic_year_id = db.Column(db.Integer, db.ForeignKey("academic_year.id"), nullable=False)
    semester = db.Column(db.Integer, nullable=False, default=1)
    section_id = db.Column(db.Integer, db.ForeignKey("section.id"))
    teacher_id = db.Column(db.Integer, db.ForeignKey("teacher.id"))
    # NULL section_id is not covered by the constraint; the upsert layer guards that case.
    __table_args__ = (
        db.UniqueConstraint("course_id", "academic_year_id", "semester", "section_id",
                            name="uq_offering_course_year_semester_section"),
        db.CheckConstraint("semester >= 1", name="ck_offering_semester"),
    )

    course = db.relationship("Course", back_populates="offerings")
    academic_year = db.relationship("AcademicYear")
    section = db.relationship("Section")
    teacher = db.relationship("Teacher", back_populates="offerings")
    enrollments = db.relationship("StudentEnrollment", back_populates="offering")

    def __repr__(self):
        return f"<Offering course={self.course_id} sem={self.semester} year={self.academic_year_id}>"
