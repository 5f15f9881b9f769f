from functools import wraps

from flask import abort, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy import select
from werkzeug.security import check_password_hash

from ...extensions import db
from ...models.user import User
from . import bp


def role_required(*roles):
    def deco(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated or not current_user.has_role(*roles):
                abort(403)
            return f(*args, **kwargs)
        return wrapper
    return deco


@bp.post("/login")
def login():
    data = request.get_json(silent=True) or request.form
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    u = db.session.scalar(select(User).where(User.username == username))
    if u and check_password_hash(u.password_hash, password):
        login_user(u)
        return jsonify(success=True, id=u.id, username=u.username,
                       roles=sorted(r.role for r in u.roles))
    return jsonify(success=False, message="Incorrect username or password"), 401


@bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify(success=True)
