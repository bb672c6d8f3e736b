from flask import Blueprint, current_app, jsonify, request

from campusbites import db
from campusbites.errors import CanteenError, error_response, internal_error_response
from campusbites.principal import current_principal, roles_required, scoped_canteen, scoped_student
from campusbites.services.verification_service import parse_pickup_date

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


def _handle(e, message):
    db.session.rollback()
    if isinstance(e, CanteenError):
        return error_response(e)
    current_app.logger.exception(f"{message}: {e}")
    return internal_error_response(message)


@orders_bp.route('', methods=['POST'])
@roles_required('student')
def place_order():
    """Place an order for the signed-in student"""
    try:
        data = request.get_json(silent=True) or {}
        principal = current_principal()
        can_id = scoped_canteen(principal, data.get('canID'))
        student_id = scoped_student(principal, data.get('studentID'))

        order = current_app.order_service.create_order(can_id, student_id, data.get('items'))
        current_app.order_notifier.order_created(order)

        return jsonify({'success': True, 'message': 'Order placed', 'order': order.to_dict()}), 201
    except Exception as e:
        return _handle(e, 'Failed to place order')


@orders_bp.route('', methods=['GET'])
@roles_required('staff', 'admin')
def list_orders():
    """Orders of the caller's canteen for one day (default today)"""
    try:
        principal = current_principal()
        can_id = scoped_canteen(principal, request.args.get('canteenId'))
        day = request.args.get('date')
        order_date = parse_pickup_date(day) if day else None

        orders = current_app.order_service.list_orders(can_id, order_date)
        return jsonify({'success': True, 'orders': [order.to_dict() for order in orders]})
    except Exception as e:
        return _handle(e, 'Failed to load orders')


@orders_bp.route('/mine', methods=['GET'])
@roles_required('student')
def list_my_orders():
    try:
        principal = current_principal()
        orders = current_app.order_service.list_student_orders(principal.can_id, principal.id)
        return jsonify({'success': True, 'orders': [order.to_dict() for order in orders]})
    except Exception as e:
        return _handle(e, 'Failed to load student orders')


@orders_bp.route('/<order_id>', methods=['GET'])
@roles_required('student', 'staff', 'admin')
def get_order(order_id):
    try:
        principal = current_principal()
        if principal.role == 'student':
            order = current_app.order_service.get_student_order(order_id, principal.can_id, principal.id)
        else:
            order = current_app.order_service.get_order(order_id, principal.can_id)
        return jsonify({'success': True, 'order': order.to_dict()})
    except Exception as e:
        return _handle(e, 'Failed to load order')


@orders_bp.route('/<order_id>/ready', methods=['POST'])
@roles_required('staff', 'admin')
def mark_ready(order_id):
    """Mark an order Ready, issuing pickup tokens if it has none yet"""
    try:
        order = current_app.order_service.mark_ready(order_id, current_principal().can_id)
        return jsonify({'success': True, 'message': 'Order is ready', 'order': order.to_dict()})
    except Exception as e:
        return _handle(e, 'Failed to mark order ready')


@orders_bp.route('/<order_id>/status', methods=['PUT'])
@roles_required('staff', 'admin')
def set_status(order_id):
    """Administrative status override; does not enforce forward-only moves"""
    try:
        data = request.get_json(silent=True) or {}
        order = current_app.order_service.set_status(order_id, current_principal().can_id, data.get('status'))
        return jsonify({'success': True, 'message': 'Order status updated', 'order': order.to_dict()})
    except Exception as e:
        return _handle(e, 'Failed to update order status')


@orders_bp.route('/verify', methods=['POST'])
@roles_required('staff', 'admin')
def verify_pickup():
    """Deliver an order from a manually entered daily token"""
    try:
        data = request.get_json(silent=True) or {}
        principal = current_principal()
        can_id = scoped_canteen(principal, data.get('canteenId'))

        order = current_app.pickup_verifier.verify_and_deliver(
            data.get('orderId'), data.get('token'), can_id, data.get('date')
        )
        return jsonify({'success': True, 'message': 'Order delivered', 'order': order.to_dict()})
    except Exception as e:
        return _handle(e, 'Failed to verify pickup')


@orders_bp.route('/scan', methods=['POST'])
@roles_required('staff', 'admin')
def scan_pickup():
    """Deliver an order from scanned QR text (plain payload or signed token)"""
    try:
        data = request.get_json(silent=True) or {}
        order = current_app.pickup_verifier.verify_scan(
            data.get('qr') or data.get('token'), current_principal().can_id
        )
        return jsonify({'success': True, 'message': 'Order delivered', 'order': order.to_dict()})
    except Exception as e:
        return _handle(e, 'Failed to verify QR')


@orders_bp.route('/<order_id>/qr', methods=['POST'])
@roles_required('student')
def reissue_qr(order_id):
    """Fresh signed QR for the student's own undelivered order"""
    try:
        principal = current_principal()
        order = current_app.order_service.reissue_qr(order_id, principal.can_id, principal.id)
        return jsonify({'success': True, 'qrToken': order.qr_token, 'order': order.to_dict()})
    except Exception as e:
        return _handle(e, 'Failed to issue QR')
