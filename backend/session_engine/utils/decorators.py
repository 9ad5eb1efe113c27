"""Role decorators built on the identity context carried by the JWT."""
from functools import wraps
from typing import Tuple
from flask import current_app
from flask_jwt_extended import get_jwt, get_jwt_identity
from session_engine.utils.errors import NotEligible
from session_engine.utils.helpers import error_response

STUDENT = 'student'
TEACHER = 'teacher'
ADMIN = 'admin'

def current_identity() -> Tuple[int, str]:
    """Return (participant id, role) for the authenticated caller."""
    claim = current_app.config.get('JWT_ROLE_CLAIM', 'role')
    role = get_jwt().get(claim, STUDENT)
    return int(get_jwt_identity()), role

def is_admin(role: str) -> bool:
    return role == ADMIN

def is_teacher(role: str) -> bool:
    """Teachers and admins may manage sessions."""
    return role in (TEACHER, ADMIN)

def teacher_required(f):
    """Decorator to require teacher role or higher."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        _, role = current_identity()

        if not is_teacher(role):
            return error_response("Teacher access required", 403)

        return f(*args, **kwargs)
    return decorated_function

def student_required(f):
    """Decorator to require student role."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        _, role = current_identity()

        if role != STUDENT:
            return error_response("Student access required", 403)

        return f(*args, **kwargs)
    return decorated_function

def ensure_owner(owner_id: int, user_id: int, role: str) -> None:
    """Only the owning teacher (or an admin) may manage an entity."""
    if owner_id != user_id and not is_admin(role):
        raise NotEligible("You do not manage this resource", 403)
