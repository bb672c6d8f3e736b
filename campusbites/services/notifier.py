# Realtime order events for staff dashboards
from flask import current_app, request
from flask_jwt_extended import decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_socketio import join_room
from jwt import InvalidTokenError

from campusbites.models.models import Staff

NEW_ORDER = 'newOrder'
ORDER_UPDATED = 'orderUpdated'
STAFF_ROLES = ('staff', 'admin')


def canteen_room(can_id):
    return f"canteen:{can_id}"


class OrderNotifier:
    """Broadcasts order events to the Socket.IO room of the order's canteen.

    Delivery is fire-and-forget: clients that are not connected miss the
    event and catch up through their periodic poll.
    """

    def __init__(self, socketio=None):
        self.socketio = socketio

    def emit(self, event_name, order):
        if not self.socketio:
            return False

        try:
            self.socketio.emit(event_name, {'order': order.to_dict()}, room=canteen_room(order.can_id))
            current_app.logger.debug(f"Sent {event_name} for {order.order_id} to {canteen_room(order.can_id)}")
            return True
        except Exception as e:
            current_app.logger.warning(f"Failed to send {event_name} for {order.order_id}: {e}")
            return False

    def order_created(self, order):
        return self.emit(NEW_ORDER, order)

    def order_updated(self, order):
        return self.emit(ORDER_UPDATED, order)


def register_socket_events(socketio):
    @socketio.on('connect')
    def handle_connect(auth=None):
        token = (auth or {}).get('token') or request.args.get('token')
        if not token:
            return False

        try:
            claims = decode_token(token)
        except (InvalidTokenError, JWTExtendedException) as e:
            current_app.logger.info(f"Rejected socket connection: {e}")
            return False

        if claims.get('role') not in STAFF_ROLES or not claims.get('canID'):
            return False
        if claims['role'] == 'staff':
            staff = Staff.query.get(int(claims['sub']))
            if not staff or not staff.is_approved or staff.can_id != claims['canID']:
                return False

        join_room(canteen_room(claims['canID']))
        current_app.logger.debug(f"Socket joined {canteen_room(claims['canID'])}")
