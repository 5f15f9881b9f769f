from ..extensions import db

class College(db.Model):
    __tablename__ = "college"
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False)
    name = db.Column(db.String(128), nullable=False)
    logo_url = db.Column(db.String(255))

    departments = db.relationship("Department", back_populates="college")
    academic_years = db.relationship("AcademicYear", back_populates="college")

    def __repr__(self):
        return f"<College {self.code}>"

class Department(db.Model):
    __tablename__ = "department"
    id = db.Column(db.Integer, primary_key=True)
    college_id = db.Column(db.Integer, db.ForeignKey("college.id"), nullable=False)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    __table_args__ = (
        db.UniqueConstraint("college_id", "code", name="uq_department_college_code"),
    )

    college = db.relationship("College", back_populates="departments")
    sections = db.relationship("Section", back_populates="department")

    def __repr__(self):
        return f"<Department {self.code}>"

class Section(db.Model):
    __tablename__ = "section"
    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("department.id"), nullable=False)
    name = db.Column(db.String(32), nullable=False)    # "A", "B" ...
    __table_args__ = (
        db.UniqueConstraint("department_id", "name", name="uq_section_department_name"),
    )

    department = db.relationship("Department", back_populates="sections")

class AcademicYear(db.Model):
    __tablename__ = "academic_year"
    id = db.Column(db.Integer, primary_key=True)
    college_id = db.Column(db.Integer, db.ForeignKey("college.id"), nullable=False)
    name = db.Column(db.String(16), nullable=False)    # "2024-25"
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    __table_args__ = (
        db.UniqueConstraint("college_id", "name", name="uq_academic_year_college_name"),
        db.CheckConstraint("start_date <= end_date", name="ck_academic_year_range"),
    )

    college = db.relationship("College", back_populates="academic_years")

    def __repr__(self):
        return f"<AcademicYear {self.name}>"
