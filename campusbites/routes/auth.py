from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from campusbites import db
from campusbites.errors import CanteenError, Conflict, InvalidInput, NotFound, error_response, internal_error_response
from campusbites.models.models import Canteen, Staff, Student
from campusbites.principal import current_principal, issue_token, roles_required
from campusbites.services.tokens import generate_canteen_id
from campusbites.validators import (
    is_valid_email,
    is_valid_mobile,
    is_valid_password,
    normalize_email,
    normalize_mobile,
)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')

DUPLICATE_CONTACT = 'Mobile number or email already exists. Please use different details.'
DUPLICATE_ADMISSION = 'Student with this admission number already exists for this canID'


def _require_credentials(email, password):
    if not is_valid_email(email):
        raise InvalidInput('Please provide a valid email address')
    if not is_valid_password(password):
        raise InvalidInput('Password must be at least 8 characters')


@auth_bp.route('/admin/signup', methods=['POST'])
def admin_signup():
    """Register a canteen and its admin account"""
    try:
        data = request.get_json(silent=True) or {}
        college_name = str(data.get('collegeName') or '').strip()
        email = normalize_email(data.get('email'))
        password = data.get('password')

        if not college_name or not email or not password:
            raise InvalidInput('collegeName, email, and password are required')
        _require_credentials(email, password)

        if Canteen.query.filter_by(email=email).first():
            raise Conflict('Admin with this email already exists')

        canteen = Canteen(can_id=generate_canteen_id(), college_name=college_name, email=email)
        canteen.set_password(password)
        db.session.add(canteen)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict('Admin with this email already exists')

        current_app.logger.info(f"Canteen {canteen.can_id} registered")
        return jsonify({
            'success': True,
            'message': 'Admin signup successful',
            'canID': canteen.can_id,
            'adminId': canteen.id,
            'collegeName': canteen.college_name,
            'createdAt': canteen.to_dict()['createdAt']
        }), 201

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Admin signup failed: {e}")
        return internal_error_response('Signup failed')


@auth_bp.route('/admin/login', methods=['POST'])
def admin_login():
    """Login canteen admin and return JWT token"""
    try:
        data = request.get_json(silent=True) or {}
        email = normalize_email(data.get('email'))
        password = data.get('password')

        if not email or not password:
            raise InvalidInput('email and password are required')
        _require_credentials(email, password)

        canteen = Canteen.query.filter_by(email=email).first()
        if not canteen or not canteen.check_password(password):
            return jsonify({'success': False, 'error': 'Invalid credentials', 'kind': 'unauthorized'}), 401

        return jsonify({
            'success': True,
            'message': 'Login successful',
            'canID': canteen.can_id,
            'session': canteen.to_dict(),
            'access_token': issue_token('admin', canteen.id, canteen.can_id)
        })

    except CanteenError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception(f"Admin login failed: {e}")
        return internal_error_response('Login failed')


@auth_bp.route('/student/signup', methods=['POST'])
def student_signup():
    """Register a student under an existing canteen"""
    try:
        data = request.get_json(silent=True) or {}
        required = ('canID', 'name', 'classSemester', 'mobile', 'email', 'admissionNumber', 'password')
        if not all(data.get(k) for k in required):
            raise InvalidInput(f"{', '.join(required[:-1])}, and password are required")

        can_id = str(data['canID']).strip()
        email = normalize_email(data['email'])
        mobile = normalize_mobile(data['mobile'])
        admission_number = str(data['admissionNumber']).strip().upper()
        password = data['password']

        if not is_valid_email(email):
            raise InvalidInput('Please provide a valid email address')
        if not is_valid_mobile(mobile):
            raise InvalidInput('Please provide a valid 10-digit mobile number')
        if not is_valid_password(password):
            raise InvalidInput('Password must be at least 8 characters')

        if not Canteen.query.filter_by(can_id=can_id).first():
            raise NotFound('Invalid canID')

        if Student.query.filter((Student.email == email) | (Student.mobile == mobile)).first():
            raise Conflict(DUPLICATE_CONTACT)
        if Student.query.filter_by(can_id=can_id, admission_number=admission_number).first():
            raise Conflict(DUPLICATE_ADMISSION)

        student = Student(
            can_id=can_id,
            name=str(data['name']).strip(),
            class_semester=str(data['classSemester']).strip(),
            mobile=mobile,
            email=email,
            admission_number=admission_number
        )
        student.set_password(password)
        db.session.add(student)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            if 'admission_number' in str(e.orig):
                raise Conflict(DUPLICATE_ADMISSION)
            raise Conflict(DUPLICATE_CONTACT)

        return jsonify({
            'success': True,
            'message': 'Student signup successful',
            'student': student.to_dict()
        }), 201

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Student signup failed: {e}")
        return internal_error_response('Student signup failed')


@auth_bp.route('/student/login', methods=['POST'])
def student_login():
    """Login student by email or mobile and return JWT token"""
    try:
        data = request.get_json(silent=True) or {}
        login_mode = 'mobile' if data.get('loginWith') == 'mobile' else 'email'
        identifier = data.get('identifier', data.get('email'))
        password = data.get('password')

        if not identifier or not password:
            raise InvalidInput('email or phone and password are required')

        if login_mode == 'mobile':
            mobile = normalize_mobile(identifier)
            if not is_valid_mobile(mobile):
                raise InvalidInput('Please provide a valid 10-digit mobile number')
            student = Student.query.filter_by(mobile=mobile).first()
        else:
            email = normalize_email(identifier)
            if not is_valid_email(email):
                raise InvalidInput('Please provide a valid email address')
            student = Student.query.filter_by(email=email).first()

        if not is_valid_password(password):
            raise InvalidInput('Password must be at least 8 characters')

        if not student:
            return jsonify({'success': False, 'error': 'Invalid credentials', 'kind': 'unauthorized'}), 401
        if student.banned:
            return jsonify({
                'success': False,
                'error': 'Your account has been banned. Please contact support.',
                'kind': 'forbidden'
            }), 403
        if not student.check_password(password):
            return jsonify({'success': False, 'error': 'Invalid credentials', 'kind': 'unauthorized'}), 401

        return jsonify({
            'success': True,
            'message': 'Student login successful',
            'student': student.to_dict(),
            'access_token': issue_token('student', student.id, student.can_id)
        })

    except CanteenError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception(f"Student login failed: {e}")
        return internal_error_response('Student login failed')


@auth_bp.route('/staff/signup', methods=['POST'])
def staff_signup():
    """Request a staff account; an admin must approve it"""
    try:
        data = request.get_json(silent=True) or {}
        name = str(data.get('name') or '').strip()
        email = normalize_email(data.get('email'))
        password = data.get('password')
        can_id = str(data.get('canteenId') or data.get('canID') or '').strip()

        if not name or not email or not password or not can_id:
            raise InvalidInput('name, email, password, and canteenId are required')
        _require_credentials(email, password)

        if not Canteen.query.filter_by(can_id=can_id).first():
            raise NotFound('Invalid canteenId')
        if Staff.query.filter_by(email=email).first():
            raise Conflict('Staff with this email already exists')

        staff = Staff(name=name, email=email, can_id=can_id, status='Pending')
        staff.set_password(password)
        db.session.add(staff)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict('Staff with this email already exists')

        return jsonify({
            'success': True,
            'message': 'Signup received. Wait for admin approval.',
            'staff': staff.to_dict()
        }), 201

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Staff signup failed: {e}")
        return internal_error_response('Staff signup failed')


@auth_bp.route('/staff/login', methods=['POST'])
def staff_login():
    """Login approved staff and return JWT token"""
    try:
        data = request.get_json(silent=True) or {}
        email = normalize_email(data.get('email'))
        password = data.get('password')

        if not email or not password:
            raise InvalidInput('email and password are required')

        staff = Staff.query.filter_by(email=email).first()
        if not staff or not staff.check_password(password):
            return jsonify({'success': False, 'error': 'Invalid credentials', 'kind': 'unauthorized'}), 401
        if not staff.is_approved:
            return jsonify({
                'success': False,
                'error': f'Staff account is {staff.status.lower()}',
                'kind': 'forbidden'
            }), 403

        return jsonify({
            'success': True,
            'message': 'Login successful',
            'session': staff.to_dict(),
            'access_token': issue_token('staff', staff.id, staff.can_id)
        })

    except CanteenError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception(f"Staff login failed: {e}")
        return internal_error_response('Staff login failed')


@auth_bp.route('/staff/me', methods=['GET'])
@roles_required('staff')
def staff_me():
    """Current staff session"""
    staff = Staff.query.get(current_principal().id)
    return jsonify({'success': True, 'session': staff.to_dict()})
