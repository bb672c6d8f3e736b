# Canteen administration: staff approval, students, payment credentials
from flask import Blueprint, current_app, jsonify, request

from campusbites import db
from campusbites.errors import (
    CanteenError,
    Conflict,
    InvalidInput,
    NotFound,
    error_response,
    internal_error_response,
)
from campusbites.models.models import STAFF_STATUSES, Canteen, Order, Payment, Staff, Student
from campusbites.principal import current_principal, roles_required

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


@admin_bp.route('/staff', methods=['GET'])
@roles_required('admin')
def list_staff():
    """List staff accounts of the admin's canteen"""
    can_id = current_principal().can_id
    status = request.args.get('status')

    query = Staff.query.filter_by(can_id=can_id)
    if status:
        query = query.filter_by(status=status)

    return jsonify({'success': True, 'staff': [s.to_dict() for s in query.order_by(Staff.created_at.desc())]})


@admin_bp.route('/staff/<int:staff_id>/status', methods=['PUT'])
@roles_required('admin')
def update_staff_status(staff_id):
    """Approve or decline a staff account"""
    try:
        data = request.get_json(silent=True) or {}
        status = data.get('status')
        if status not in STAFF_STATUSES:
            raise InvalidInput(f"status must be one of {', '.join(STAFF_STATUSES)}")

        staff = Staff.query.filter_by(id=staff_id, can_id=current_principal().can_id).first()
        if not staff:
            raise NotFound('Staff not found')

        staff.status = status
        db.session.commit()
        current_app.logger.info(f"Staff {staff.email} set to {status}")

        return jsonify({'success': True, 'message': f'Staff {status.lower()}', 'staff': staff.to_dict()})

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Failed to update staff status: {e}")
        return internal_error_response('Failed to update staff status')


@admin_bp.route('/students', methods=['GET'])
@roles_required('admin')
def list_students():
    """List students of the admin's canteen"""
    students = Student.query.filter_by(can_id=current_principal().can_id).order_by(Student.name).all()
    return jsonify({'success': True, 'students': [s.to_dict() for s in students]})


@admin_bp.route('/students/<int:student_id>/ban', methods=['PATCH'])
@roles_required('admin')
def toggle_student_ban(student_id):
    """Ban or unban a student; toggles when no explicit value is given"""
    try:
        student = Student.query.filter_by(id=student_id, can_id=current_principal().can_id).first()
        if not student:
            raise NotFound('Student not found')

        data = request.get_json(silent=True) or {}
        banned = data['banned'] if isinstance(data.get('banned'), bool) else not student.banned
        student.set_banned(banned)
        db.session.commit()

        return jsonify({
            'success': True,
            'message': 'Student banned successfully' if banned else 'Student unbanned successfully',
            'student': student.to_dict()
        })

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Failed to update student ban status: {e}")
        return internal_error_response('Failed to update student ban status')


@admin_bp.route('/students/<int:student_id>', methods=['DELETE'])
@roles_required('admin')
def delete_student(student_id):
    """Delete a student account that has never ordered or paid"""
    try:
        student = Student.query.filter_by(id=student_id, can_id=current_principal().can_id).first()
        if not student:
            raise NotFound('Student not found')

        # Orders and payments are kept for the canteen's records
        has_history = (
            Order.query.filter_by(student_id=student.id).first() is not None
            or Payment.query.filter_by(user_id=student.id).first() is not None
        )
        if has_history:
            raise Conflict('Student has orders and cannot be deleted; ban the account instead',
                           reason='has_orders')

        db.session.delete(student)
        db.session.commit()
        current_app.logger.info(f"Student {student_id} deleted from {current_principal().can_id}")

        return jsonify({'success': True, 'message': 'Student deleted'})

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Failed to delete student: {e}")
        return internal_error_response('Failed to delete student')


@admin_bp.route('/payment-settings', methods=['PUT'])
@roles_required('admin')
def update_payment_settings():
    """Store the canteen's Razorpay key pair"""
    try:
        data = request.get_json(silent=True) or {}
        key_id = str(data.get('keyId') or '').strip()
        key_secret = str(data.get('keySecret') or '').strip()
        if not key_id or not key_secret:
            raise InvalidInput('keyId and keySecret are required')

        canteen = Canteen.query.filter_by(can_id=current_principal().can_id).first()
        if not canteen:
            raise NotFound('Canteen not found')

        canteen.razorpay_key_id = key_id
        canteen.razorpay_key_secret = key_secret
        db.session.commit()

        return jsonify({'success': True, 'message': 'Payment settings updated', 'canteen': canteen.to_dict()})

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Failed to update payment settings: {e}")
        return internal_error_response('Failed to update payment settings')
