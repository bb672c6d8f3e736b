# Pickup verification: manual token entry, plain QR payloads and signed QR tokens
import re
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from campusbites import db
from campusbites.errors import Conflict, Forbidden, InvalidInput, NotFound, QrTokenInvalid
from campusbites.models.models import Order
from campusbites.services.tokens import QR_TOKEN_TYPE, decode_qr_payload, is_plain_qr_payload

DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def parse_pickup_date(value):
    value = str(value or '').strip()
    if not DATE_RE.match(value):
        raise InvalidInput('date must be in YYYY-MM-DD format')
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise InvalidInput('date is not a valid calendar date')


def already_delivered(order, message='Order already delivered'):
    return Conflict(message, reason='already_delivered', order=order.to_dict())


class PickupVerifier:
    def __init__(self, notifier, qr_signer):
        self.notifier = notifier
        self.qr_signer = qr_signer

    def verify_and_deliver(self, order_id, token, can_id, date):
        """Deliver an order identified by its daily token on a given day."""
        if not order_id or not token or not can_id or not date:
            raise InvalidInput('orderId, token, canteenId, and date are required')
        order_date = parse_pickup_date(date)

        order = Order.query.filter_by(
            order_id=str(order_id),
            can_id=can_id,
            order_date=order_date,
            daily_token=str(token).strip()
        ).first()
        if not order:
            raise NotFound('No order matches this token for that date')
        if order.status == 'Delivered':
            raise already_delivered(order)

        result = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status != 'Delivered')
            .values(status='Delivered')
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        db.session.refresh(order)
        if result.rowcount == 0:
            raise already_delivered(order)

        current_app.logger.info(f"Order {order.order_id} delivered via token {order.daily_token}")
        self.notifier.order_updated(order)
        return order

    def verify_signed_qr(self, token, can_id):
        """Deliver the order named by a signed QR token, if it is Ready."""
        claims = self.qr_signer.verify(token)
        if claims.get('type') != QR_TOKEN_TYPE or not claims.get('orderId') or not claims.get('canID'):
            raise QrTokenInvalid('QR token is not an order pickup token')
        if claims['canID'] != can_id:
            raise Forbidden('This QR code belongs to another canteen')

        # Only one concurrent scan can match status == Ready
        result = db.session.execute(
            update(Order)
            .where(
                Order.order_id == claims['orderId'],
                Order.can_id == can_id,
                Order.status == 'Ready',
                Order.qr_token == token
            )
            .values(status='Delivered')
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

        order = Order.query.filter_by(order_id=claims['orderId'], can_id=can_id).first()
        if order is not None:
            db.session.refresh(order)

        if result.rowcount == 1:
            current_app.logger.info(f"Order {order.order_id} delivered via signed QR")
            self.notifier.order_updated(order)
            return order

        if order is None:
            raise NotFound('Order not found')
        if order.status == 'Delivered':
            raise already_delivered(order, 'QR already used, order already delivered')
        if order.status != 'Ready':
            raise Conflict('Order is not ready for pickup', reason='not_ready', order=order.to_dict())
        raise Conflict('Stale or invalid QR token for this order', reason='stale_token')

    def verify_scan(self, raw, can_id):
        """Dispatch scanned text to the plain-payload or signed-token path."""
        raw = str(raw or '').strip()
        if not raw:
            raise InvalidInput('Scanned QR text is empty')

        if is_plain_qr_payload(raw):
            payload = decode_qr_payload(raw)
            if payload.get('canID') and payload['canID'] != can_id:
                raise Forbidden('This QR code belongs to another canteen')
            return self.verify_and_deliver(
                payload.get('orderId'), payload.get('dailyToken'), can_id, payload.get('orderDate')
            )
        return self.verify_signed_qr(raw, can_id)
