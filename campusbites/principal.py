# Authenticated principal (student / staff / admin) carried in the JWT
from collections import namedtuple
from datetime import timedelta
from functools import wraps

from flask import current_app, jsonify
from flask_jwt_extended import create_access_token, get_jwt, get_jwt_identity, verify_jwt_in_request

from campusbites.errors import CanteenError, Forbidden, Unauthorized
from campusbites.models.models import Staff, Student

Principal = namedtuple('Principal', ['role', 'id', 'can_id'])
ROLES = ('admin', 'staff', 'student')


def issue_token(role, subject_id, can_id):
    return create_access_token(
        identity=str(subject_id),
        additional_claims={'role': role, 'canID': can_id},
        expires_delta=timedelta(hours=current_app.config.get('JWT_ACCESS_TOKEN_HOURS', 24))
    )


def current_principal():
    claims = get_jwt()
    return Principal(claims.get('role'), int(get_jwt_identity()), claims.get('canID'))


def load_principal(roles):
    principal = current_principal()
    if principal.role not in ROLES or not principal.can_id:
        raise Unauthorized('Invalid session')
    if principal.role not in roles:
        raise Forbidden('This action is not available for your account')

    # Account state may change after the token was issued
    if principal.role == 'staff':
        staff = Staff.query.get(principal.id)
        if not staff or not staff.is_approved or staff.can_id != principal.can_id:
            raise Forbidden('Staff account is not approved')
    elif principal.role == 'student':
        student = Student.query.get(principal.id)
        if not student or student.can_id != principal.can_id:
            raise Unauthorized('Invalid session')
        if student.banned:
            raise Forbidden('Your account has been banned. Please contact support.')
    return principal


def roles_required(*roles):
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            try:
                load_principal(roles)
            except CanteenError as e:
                return jsonify(e.to_dict()), e.status_code
            return view(*args, **kwargs)
        return wrapper
    return decorator


def scoped_canteen(principal, requested_can_id=None):
    """The principal's canteen; a client-supplied canID must agree with it."""
    if requested_can_id and str(requested_can_id) != principal.can_id:
        raise Forbidden('Cannot act on another canteen')
    return principal.can_id


def scoped_student(principal, requested_student_id=None):
    if requested_student_id and str(requested_student_id) != str(principal.id):
        raise Forbidden('Cannot act for another student')
    return principal.id
