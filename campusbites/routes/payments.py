from flask import Blueprint, current_app, jsonify, request

from campusbites import db
from campusbites.errors import CanteenError, error_response, internal_error_response
from campusbites.principal import current_principal, roles_required, scoped_canteen, scoped_student

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payments/razorpay')


@payments_bp.route('/order', methods=['POST'])
@roles_required('student')
def create_payment_order():
    """Price the cart and open a Razorpay order for checkout"""
    try:
        data = request.get_json(silent=True) or {}
        principal = current_principal()
        can_id = scoped_canteen(principal, data.get('canID'))
        student_id = scoped_student(principal, data.get('studentID'))

        checkout = current_app.payment_service.create_gateway_order(can_id, student_id, data.get('items'))
        return jsonify({'success': True, **checkout}), 201

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Failed to create payment order: {e}")
        return internal_error_response('Failed to create payment order')


@payments_bp.route('/verify-and-place', methods=['POST'])
@roles_required('student')
def verify_and_place():
    """Confirm a Razorpay payment and place its order exactly once"""
    try:
        data = request.get_json(silent=True) or {}
        principal = current_principal()
        can_id = scoped_canteen(principal, data.get('canID'))
        student_id = scoped_student(principal, data.get('studentID'))

        order, created = current_app.payment_service.verify_and_place(
            can_id,
            student_id,
            data.get('items'),
            data.get('razorpay_order_id'),
            data.get('razorpay_payment_id'),
            data.get('razorpay_signature')
        )
        return jsonify({
            'success': True,
            'message': 'Payment verified and order placed' if created else 'Order already placed for this payment',
            'order': order.to_dict()
        }), 201 if created else 200

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Payment verification failed: {e}")
        return internal_error_response('Payment verification failed')
