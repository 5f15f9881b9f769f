from ..extensions import db

class StudentEnrollment(db.Model):
    __tablename__ = "student_enrollment"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("student.id"), nullable=False)
    offering_id = db.Column(db.Integer, db.ForeignKey("course_offering.id"), nullable=False)
    academic_year_id = db.Column(db.Integer, db.ForeignKey("academic_year.id"), nullable=False)
    attempt_number = db.Column(db.Integer, nullable=False, default=1)
    __table_args__ = (
        db.UniqueConstraint("student_id", "offering_id", name="uq_student_offering"),
        db.CheckConstraint("attempt_number >= 1", name="ck_attempt_positive"),
    )

    student = db.relationship("Student", back_populates="enrollments")
    offering = db.relationship("CourseOffering", back_populates="enrollments")
    academic_year = db.relationship("AcademicYear")
    theory_marks = db.relationship("TheoryMarks", back_populates="enrollment", uselist=False)
    lab_marks = db.relationship("LabMarks", back_populates="enrollment", uselist=False)

class TheoryMarks(db.Model):
    __tablename__ = "theory_marks"
    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(db.Integer, db.ForeignKey("student_enrollment.id"),
                              unique=True, nullable=False)
    mse1_marks = db.Column(db.Integer)
    mse2_marks = db.Column(db.Integer)
    mse3_marks = db.Column(db.Integer)
    task1_marks = db.Column(db.Integer)
    task2_marks = db.Column(db.Integer)
    task3_marks = db.Column(db.Integer)

    enrollment = db.relationship("StudentEnrollment", back_populates="theory_marks")

class LabMarks(db.Model):
    __tablename__ = "lab_marks"
    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(db.Integer, db.ForeignKey("student_enrollment.id"),
                              unique=True, nullable=False)
    record_marks = db.Column(db.Integer)
    continuous_evaluation_marks = db.Column(db.Integer)
    lab_mse_marks = db.Column(db.Integer)

    enrollment = db.relationship("StudentEnrollment", back_populates="lab_marks")
