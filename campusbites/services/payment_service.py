"""
Razorpay integration and payment-to-order reconciliation.

Each Payment row resolves into at most one Order. The row's lock columns
move through ``unclaimed -> locked(lock_id) -> resolved(order_id)`` using
conditional updates only, so duplicate or concurrent confirmations for the
same payment either create the order, wait for the request that is
creating it, or give up with ``PaymentProcessing``.
"""
import time
from datetime import datetime, timedelta

import razorpay
import requests
from flask import current_app
from razorpay.errors import BadRequestError, GatewayError, ServerError, SignatureVerificationError
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError

from campusbites import db
from campusbites.errors import (
    Conflict,
    Forbidden,
    Internal,
    InvalidInput,
    NotFound,
    PaymentProcessing,
    UpstreamFailure,
)
from campusbites.models.models import LOCKED, PAYMENT_STATUSES, RESOLVED, UNCLAIMED, Canteen, Order, Payment
from campusbites.services.order_validator import parse_positive_int, to_minor_units, validate_order
from campusbites.services.tokens import random_chars

PAID_STATUSES = ('authorized', 'captured')


def verify_payment_signature(razorpay_order_id, razorpay_payment_id, signature, secret, client=None):
    """Check the checkout signature (HMAC-SHA256 of ``order_id|payment_id``) with the key secret."""
    if not secret or not signature:
        return False
    client = client or razorpay.Client(auth=('', secret))
    try:
        client.utility.verify_payment_signature({
            'razorpay_order_id': razorpay_order_id,
            'razorpay_payment_id': razorpay_payment_id,
            'razorpay_signature': str(signature)
        })
    except SignatureVerificationError:
        return False
    return True


def new_lock_id():
    return f"LOCK-{int(time.time() * 1000)}-{random_chars(6)}"


class RazorpayGateway:
    def __init__(self, key_id, key_secret, client=None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.client = client or razorpay.Client(auth=(key_id or '', key_secret or ''))

    @classmethod
    def for_canteen(cls, canteen, config):
        return cls(
            canteen.razorpay_key_id or config.get('RAZORPAY_KEY_ID'),
            canteen.razorpay_key_secret or config.get('RAZORPAY_KEY_SECRET')
        )

    @property
    def configured(self):
        return bool(self.key_id and self.key_secret)

    def _call(self, action, func, *args, **kwargs):
        if not self.configured:
            raise UpstreamFailure('Payment gateway is not configured for this canteen')

        try:
            return func(*args, **kwargs)
        except BadRequestError as e:
            current_app.logger.warning(f"Razorpay rejected {action}: {e}")
            raise InvalidInput(f"Payment gateway rejected the request: {e}")
        except (GatewayError, ServerError, requests.RequestException) as e:
            current_app.logger.error(f"Razorpay {action} failed: {e}")
            raise UpstreamFailure()

    def create_order(self, amount, currency, receipt, notes=None):
        return self._call('order create', self.client.order.create, data={
            'amount': amount,
            'currency': currency,
            'receipt': receipt,
            'notes': notes or {}
        })

    def fetch_payment(self, payment_id):
        return self._call('payment fetch', self.client.payment.fetch, payment_id)

    def verify_signature(self, razorpay_order_id, razorpay_payment_id, signature):
        return verify_payment_signature(razorpay_order_id, razorpay_payment_id, signature, self.key_secret,
                                        client=self.client)


class PaymentService:
    def __init__(self, order_service, notifier, gateway_factory, currency='INR',
                 lock_wait_attempts=10, lock_wait_seconds=0.3, lock_stale_seconds=120, sleep=time.sleep):
        self.order_service = order_service
        self.notifier = notifier
        self.gateway_factory = gateway_factory
        self.currency = currency
        self.lock_wait_attempts = lock_wait_attempts
        self.lock_wait_seconds = lock_wait_seconds
        self.lock_stale_seconds = lock_stale_seconds
        self.sleep = sleep

    @classmethod
    def from_app(cls, app, order_service, notifier, sleep=time.sleep):
        return cls(
            order_service,
            notifier,
            lambda canteen: RazorpayGateway.for_canteen(canteen, app.config),
            currency=app.config.get('PAYMENT_CURRENCY', 'INR'),
            lock_wait_attempts=app.config.get('PAYMENT_LOCK_WAIT_ATTEMPTS', 10),
            lock_wait_seconds=app.config.get('PAYMENT_LOCK_WAIT_SECONDS', 0.3),
            lock_stale_seconds=app.config.get('PAYMENT_LOCK_STALE_SECONDS', 120),
            sleep=sleep
        )

    def _gateway_for(self, can_id):
        canteen = Canteen.query.filter_by(can_id=can_id).first()
        if not canteen:
            raise NotFound('Canteen not found')
        return self.gateway_factory(canteen)

    def create_gateway_order(self, can_id, student_id, items):
        """Price the cart and open a gateway-side order for it."""
        validated = validate_order(can_id, student_id, items)
        amount = to_minor_units(validated.total)
        if amount <= 0:
            raise InvalidInput('Order total must be greater than zero for online payment')

        gateway = self._gateway_for(can_id)
        gateway_order = gateway.create_order(
            amount,
            self.currency,
            receipt=f"rcpt-{random_chars(12)}",
            notes={'canID': can_id, 'studentID': str(student_id)}
        )
        if not gateway_order.get('id'):
            raise UpstreamFailure('Payment gateway returned no order id')

        payment = Payment(
            razorpay_order_id=gateway_order['id'],
            user_id=parse_positive_int(student_id),
            can_id=can_id,
            amount=amount,
            currency=gateway_order.get('currency') or self.currency,
            status='created'
        )
        db.session.add(payment)
        db.session.commit()
        current_app.logger.info(f"Created gateway order {payment.razorpay_order_id} for {amount} {payment.currency}")

        return {
            'keyId': gateway.key_id,
            'razorpayOrderId': payment.razorpay_order_id,
            'amount': amount,
            'currency': payment.currency,
            'total': validated.total
        }

    def verify_and_place(self, can_id, student_id, items, razorpay_order_id, razorpay_payment_id,
                         razorpay_signature):
        """Turn a confirmed payment into exactly one order.

        Returns ``(order, created)``; ``created`` is False when the payment
        had already been resolved by an earlier confirmation.
        """
        if not razorpay_order_id or not razorpay_payment_id or not razorpay_signature:
            raise InvalidInput('razorpay_order_id, razorpay_payment_id, and razorpay_signature are required')

        user_id = parse_positive_int(student_id)
        gateway = self._gateway_for(can_id)
        if not gateway.verify_signature(razorpay_order_id, razorpay_payment_id, razorpay_signature):
            raise InvalidInput('Payment signature verification failed')

        existing = Payment.query.filter_by(razorpay_order_id=razorpay_order_id).first()
        if existing is not None:
            self._check_owner(existing, can_id, user_id)
            if existing.lock_state == RESOLVED and existing.order_id:
                return self._resolved_order(existing), False

        validated = validate_order(can_id, student_id, items)
        amount = to_minor_units(validated.total)
        if existing is not None and existing.amount != amount:
            raise InvalidInput('Payment amount does not match order total')

        gateway_payment = gateway.fetch_payment(razorpay_payment_id)
        if gateway_payment.get('order_id') != razorpay_order_id:
            raise InvalidInput('Payment does not belong to this gateway order')
        if int(gateway_payment.get('amount') or 0) != amount:
            raise InvalidInput('Payment amount does not match order total')

        status = gateway_payment.get('status')
        if status not in PAYMENT_STATUSES:
            raise InvalidInput(f"Unsupported payment status: {status}")

        payment = self.upsert_payment(
            razorpay_order_id, user_id, can_id, amount,
            gateway_payment.get('currency') or self.currency,
            razorpay_payment_id, status
        )
        if status not in PAID_STATUSES:
            raise InvalidInput(f"Payment is {status}, order not placed")

        return self.resolve_order(payment, can_id, student_id, items)

    def _check_owner(self, payment, can_id, user_id):
        if payment.user_id != user_id or payment.can_id != can_id:
            raise Forbidden('This payment belongs to another account')

    def upsert_payment(self, razorpay_order_id, user_id, can_id, amount, currency, razorpay_payment_id, status):
        payment = Payment.query.filter_by(razorpay_order_id=razorpay_order_id).first()
        if payment is None:
            payment = Payment(
                razorpay_order_id=razorpay_order_id,
                user_id=user_id,
                can_id=can_id,
                amount=amount,
                currency=currency
            )
            db.session.add(payment)
            try:
                db.session.commit()
            except IntegrityError:
                # Another confirmation inserted it first
                db.session.rollback()
                payment = Payment.query.filter_by(razorpay_order_id=razorpay_order_id).first()
                if payment is None:
                    raise Internal('Failed to record payment')

        self._check_owner(payment, can_id, user_id)

        payment.razorpay_payment_id = razorpay_payment_id or None
        payment.status = status
        payment.amount = amount
        payment.currency = currency
        if status in PAID_STATUSES and payment.paid_at is None:
            payment.paid_at = datetime.utcnow()
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict('This payment has already been used for another order', reason='duplicate')
        return payment

    def resolve_order(self, payment, can_id, student_id, items):
        """Return the payment's order, creating it under the payment lock if needed."""
        for attempt in range(self.lock_wait_attempts + 1):
            db.session.refresh(payment)
            if payment.lock_state == RESOLVED and payment.order_id:
                return self._resolved_order(payment), False

            lock_id = self._acquire_lock(payment)
            if lock_id:
                order = self._create_with_lock(payment, lock_id, can_id, student_id, items)
                if order is not None:
                    return order, True

            if attempt < self.lock_wait_attempts:
                current_app.logger.info(
                    f"Payment {payment.razorpay_order_id} is locked, waiting "
                    f"(attempt {attempt + 1}/{self.lock_wait_attempts})"
                )
                self.sleep(self.lock_wait_seconds)

        current_app.logger.warning(f"Gave up waiting for payment {payment.razorpay_order_id} lock")
        raise PaymentProcessing()

    def _acquire_lock(self, payment):
        lock_id = new_lock_id()
        now = datetime.utcnow()
        stale_before = now - timedelta(seconds=self.lock_stale_seconds)
        taking_over = payment.lock_state == LOCKED

        result = db.session.execute(
            update(Payment)
            .where(
                Payment.id == payment.id,
                or_(
                    Payment.lock_state == UNCLAIMED,
                    and_(Payment.lock_state == LOCKED, Payment.locked_at < stale_before)
                )
            )
            .values(lock_state=LOCKED, lock_id=lock_id, locked_at=now)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

        if result.rowcount != 1:
            return None
        if taking_over:
            current_app.logger.warning(f"Took over stale lock on payment {payment.razorpay_order_id}")
        return lock_id

    def _create_with_lock(self, payment, lock_id, can_id, student_id, items):
        """Insert the order and resolve the payment in a single transaction.

        Returns None when the lock was taken over before the commit; the
        order is rolled back and the caller goes back to waiting.
        """
        try:
            order = self.order_service.create_order(can_id, student_id, items, commit=False)
            order_id = order.order_id
            if not self._promote_lock(payment, lock_id, order_id):
                db.session.rollback()
                current_app.logger.warning(
                    f"Lost lock on payment {payment.razorpay_order_id}, discarded order {order_id}"
                )
                return None
            db.session.commit()
        except Exception:
            db.session.rollback()
            self._release_lock(payment, lock_id)
            raise

        current_app.logger.info(f"Payment {payment.razorpay_order_id} resolved to order {order.order_id}")
        self.notifier.order_created(order)
        return order

    def _promote_lock(self, payment, lock_id, order_id):
        result = db.session.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.lock_id == lock_id)
            .values(lock_state=RESOLVED, order_id=order_id, lock_id=None, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _release_lock(self, payment, lock_id):
        db.session.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.lock_id == lock_id)
            .values(lock_state=UNCLAIMED, lock_id=None, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        current_app.logger.info(f"Released lock on payment {payment.razorpay_order_id}")

    def _resolved_order(self, payment):
        order = Order.query.filter_by(order_id=payment.order_id, can_id=payment.can_id).first()
        if not order:
            raise Internal(f'Order {payment.order_id} for this payment is missing')
        return order
