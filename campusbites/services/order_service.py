"""
Order lifecycle: Preparing -> Ready -> Delivered.

Creation assigns the daily pickup token, the global pickup token and the
qrToken in one insert, retrying with fresh values when a uniqueness
constraint rejects the row. Status transitions are conditional updates so
concurrent staff actions on the same order are serialized by the database.
"""
from datetime import datetime
from zoneinfo import ZoneInfo

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from campusbites import db
from campusbites.errors import Conflict, Forbidden, Internal, InvalidInput, NotFound, OrderCreationFailed
from campusbites.models.models import ORDER_STATUSES, Order, OrderItem
from campusbites.services.order_backfill import backfill_order
from campusbites.services.order_validator import parse_positive_int, validate_order
from campusbites.services.tokens import (
    QrTokenSigner,
    build_qr_payload,
    encode_qr_payload,
    generate_daily_token,
    generate_order_id,
    generate_pickup_token,
)

QR_FORMATS = ('signed', 'plain')

# Constraint and column names that mean "draw fresh tokens and try again"
RETRYABLE_CONSTRAINTS = ('uq_orders_daily_token', 'order_id', 'pickup_token', 'daily_token')


def is_token_collision(error):
    message = str(getattr(error, 'orig', error)).lower()
    if 'unique' not in message and 'duplicate' not in message:
        return False
    return any(name in message for name in RETRYABLE_CONSTRAINTS)


def status_rank(status):
    return ORDER_STATUSES.index(status)


class OrderService:
    def __init__(self, notifier, qr_signer, qr_format='signed', timezone_name='UTC', create_attempts=12):
        if qr_format not in QR_FORMATS:
            raise ValueError(f"QR_TOKEN_FORMAT must be one of {', '.join(QR_FORMATS)}")
        self.notifier = notifier
        self.qr_signer = qr_signer
        self.qr_format = qr_format
        self.timezone_name = timezone_name
        self.create_attempts = create_attempts

    @classmethod
    def from_app(cls, app, notifier):
        return cls(
            notifier,
            QrTokenSigner.from_config(app.config),
            qr_format=app.config.get('QR_TOKEN_FORMAT', 'signed'),
            timezone_name=app.config.get('CANTEEN_TIMEZONE', 'UTC'),
            create_attempts=app.config.get('ORDER_CREATE_ATTEMPTS', 12)
        )

    def today(self):
        return datetime.now(ZoneInfo(self.timezone_name)).date()

    def build_qr_token(self, order_id, daily_token, can_id, order_date, pickup_token):
        if self.qr_format == 'signed':
            return self.qr_signer.sign(order_id, can_id, pickup_token)
        return encode_qr_payload(build_qr_payload(order_id, daily_token, can_id, order_date))

    def create_order(self, can_id, student_id, items, commit=True):
        """Validate the cart and persist a new Preparing order.

        With ``commit=False`` the order is only flushed and the caller owns
        the transaction. The caller is responsible for notifying staff.
        """
        validated = validate_order(can_id, student_id, items)
        order_date = self.today()

        for attempt in range(self.create_attempts):
            order_id = generate_order_id()
            daily_token = generate_daily_token(can_id, order_date)
            pickup_token = generate_pickup_token()

            order = Order(
                order_id=order_id,
                can_id=can_id,
                student_id=parse_positive_int(student_id),
                total=validated.total,
                order_date=order_date,
                daily_token=daily_token,
                pickup_token=pickup_token,
                qr_token=self.build_qr_token(order_id, daily_token, can_id, order_date, pickup_token),
                status='Preparing'
            )
            order.items = [
                OrderItem(position=position, food_id=item.food_id, name=item.name,
                          unit_price=item.unit_price, quantity=item.quantity)
                for position, item in enumerate(validated.items)
            ]

            db.session.add(order)
            try:
                db.session.flush()
                if commit:
                    db.session.commit()
            except IntegrityError as e:
                db.session.rollback()
                if is_token_collision(e):
                    current_app.logger.info(
                        f"Token collision creating order (attempt {attempt + 1}/{self.create_attempts}): {e.orig}"
                    )
                    continue
                current_app.logger.error(f"Failed to persist order for {can_id}: {e}")
                raise Internal('Failed to place order')

            current_app.logger.info(f"Order {order.order_id} created for {can_id} (token {daily_token})")
            return order

        current_app.logger.error(f"Order creation for {can_id} exhausted {self.create_attempts} attempts")
        raise OrderCreationFailed()

    def get_order(self, order_id, can_id):
        """Load an order owned by ``can_id``; other canteens' orders do not exist here."""
        order = Order.query.filter_by(order_id=str(order_id or ''), can_id=can_id).first()
        if not order:
            raise NotFound('Order not found')
        return order

    def get_student_order(self, order_id, can_id, student_id):
        order = self.get_order(order_id, can_id)
        if order.student_id != parse_positive_int(student_id):
            raise NotFound('Order not found')
        return order

    def list_orders(self, can_id, order_date=None):
        return (
            Order.query
            .filter_by(can_id=can_id, order_date=order_date or self.today())
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def list_student_orders(self, can_id, student_id):
        return (
            Order.query
            .filter_by(can_id=can_id, student_id=parse_positive_int(student_id))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def backfill(self, order):
        return backfill_order(
            order,
            self.build_qr_token,
            self.today(),
            timezone_name=self.timezone_name,
            attempts=self.create_attempts
        )

    def mark_ready(self, order_id, can_id):
        order = self.get_order(order_id, can_id)
        if order.status == 'Delivered':
            raise Conflict('Order already delivered', reason='already_delivered', order=order.to_dict())

        order = self.backfill(order)
        if order.status == 'Ready':
            return order

        result = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == 'Preparing')
            .values(status='Ready')
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        db.session.refresh(order)

        if result.rowcount == 0:
            if order.status == 'Ready':
                return order
            raise Conflict(f'Order is already {order.status}', reason='stale_state', order=order.to_dict())

        current_app.logger.info(f"Order {order.order_id} is ready (token {order.daily_token})")
        self.notifier.order_updated(order)
        return order

    def set_status(self, order_id, can_id, status):
        """Administrative override: set any valid status, including going backwards."""
        if status not in ORDER_STATUSES:
            raise InvalidInput('Invalid status value')

        order = self.get_order(order_id, can_id)
        if status != 'Preparing' and order.needs_backfill:
            order = self.backfill(order)

        previous = order.status
        order.status = status
        db.session.commit()

        if status_rank(status) < status_rank(previous):
            current_app.logger.warning(
                f"Status override moved order {order.order_id} back from {previous} to {status}"
            )
        self.notifier.order_updated(order)
        return order

    def reissue_qr(self, order_id, can_id, student_id):
        """Mint a fresh signed QR for the student's undelivered order."""
        order = self.get_student_order(order_id, can_id, student_id)
        if order.status == 'Delivered':
            raise Conflict('Order already delivered', reason='already_delivered', order=order.to_dict())
        if self.qr_format != 'signed':
            raise Forbidden('QR re-issue is only available for signed QR tokens')

        order = self.backfill(order)
        qr_token = self.qr_signer.sign(order.order_id, order.can_id, order.pickup_token)
        result = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status != 'Delivered')
            .values(qr_token=qr_token)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        db.session.refresh(order)

        if result.rowcount == 0:
            raise Conflict('Order already delivered', reason='already_delivered', order=order.to_dict())
        return order
