from flask_login import UserMixin
from ..extensions import db

ROLES = ("admin", "teacher", "student", "report_viewer")

class User(UserMixin, db.Model):
    __tablename__ = "user"
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(128))
    phone = db.Column(db.String(32))

    roles = db.relationship("UserRoleAssignment", back_populates="user")
    student = db.relationship("Student", back_populates="user", uselist=False)
    teacher = db.relationship("Teacher", back_populates="user", uselist=False)
    admin = db.relationship("Admin", back_populates="user", uselist=False)
    report_viewer = db.relationship("ReportViewer", back_populates="user", uselist=False)

    def has_role(self, *roles):
        return any(r.role in roles for r in self.roles)

class UserRoleAssignment(db.Model):
    __tablename__ = "user_role"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    role = db.Column(db.String(16), nullable=False)
    __table_args__ = (
        db.UniqueConstraint("user_id", "role", name="uq_user_role"),
    )

    user = db.relationship("User", back_populates="roles")
