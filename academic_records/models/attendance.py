from ..extensions import db

ATTENDANCE_STATUSES = ("present", "absent")

class Attendance(db.Model):
    __tablename__ = "attendance"
    id = db.Column(db.Integer, primary_key=True)
    offering_id = db.Column(db.Integer, db.ForeignKey("course_offering.id"), nullable=False)
    teacher_id = db.Column(db.Integer, db.ForeignKey("teacher.id"))
    class_date = db.Column(db.Date, nullable=False)
    period_number = db.Column(db.Integer, nullable=False, default=1)
    syllabus_covered = db.Column(db.String(255))
    __table_args__ = (
        db.UniqueConstraint("offering_id", "class_date", "period_number",
                            name="uq_attendance_offering_period"),
    )

    offering = db.relationship("CourseOffering")
    teacher = db.relationship("Teacher")
    records = db.relationship("AttendanceRecord", back_populates="attendance")

class AttendanceRecord(db.Model):
    __tablename__ = "attendance_record"
    id = db.Column(db.Integer, primary_key=True)
    attendance_id = db.Column(db.Integer, db.ForeignKey("attendance.id"), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey("student.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="present")
    __table_args__ = (
        db.UniqueConstraint("attendance_id", "student_id", name="uq_attendance_student"),
        db.CheckConstraint("status IN ('present', 'absent')", name="ck_attendance_status"),
    )

    attendance = db.relationship("Attendance", back_populates="records")
    student = db.relationship("Student")
