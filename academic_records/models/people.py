from ..extensions import db

class Student(db.Model):
    __tablename__ = "student"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    college_id = db.Column(db.Integer, db.ForeignKey("college.id"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("department.id"), nullable=False)
    section_id = db.Column(db.Integer, db.ForeignKey("section.id"))
    usn = db.Column(db.String(32), unique=True, nullable=False)
    semester = db.Column(db.Integer, nullable=False, default=1)   # authoritative progress field
    batch_year = db.Column(db.Integer)

    user = db.relationship("User", back_populates="student")
    college = db.relationship("College")
    department = db.relationship("Department")
    section = db.relationship("Section")
    enrollments = db.relationship("StudentEnrollment", back_populates="student")

    def __repr__(self):
        return f"<Student {self.usn}>"

class Teacher(db.Model):
    __tablename__ = "teacher"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    college_id = db.Column(db.Integer, db.ForeignKey("college.id"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("department.id"), nullable=False)

    user = db.relationship("User", back_populates="teacher")
    college = db.relationship("College")
    department = db.relationship("Department")
    offerings = db.relationship("CourseOffering", back_populates="teacher")

class Admin(db.Model):
    __tablename__ = "admin"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    college_id = db.Column(db.Integer, db.ForeignKey("college.id"))

    user = db.relationship("User", back_populates="admin")

class ReportViewer(db.Model):
    __tablename__ = "report_viewer"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)

    user = db.relationship("User", back_populates="report_viewer")
