"""
Shared fixtures: an app on in-memory SQLite, factories for canteen records,
and doubles for the realtime notifier and the payment gateway.
"""
import hashlib
import hmac
import itertools

import pytest

from campusbites import create_app, db
from campusbites.models.models import Canteen, Food, Staff, Student
from campusbites.principal import issue_token
from campusbites.services.order_service import OrderService
from campusbites.services.payment_service import PaymentService, verify_payment_signature
from campusbites.services.tokens import QrTokenSigner
from campusbites.services.verification_service import PickupVerifier
from config import TestingConfig

_seq = itertools.count(1)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def emit(self, event_name, order):
        self.events.append((event_name, order.order_id, order.status))
        return True

    def order_created(self, order):
        return self.emit('newOrder', order)

    def order_updated(self, order):
        return self.emit('orderUpdated', order)


class FakeGateway:
    """Stands in for Razorpay; payments are registered by the test."""

    def __init__(self, key_id='rzp_test_key', key_secret='rzp_test_secret'):
        self.key_id = key_id
        self.key_secret = key_secret
        self.orders = []
        self.payments = {}
        self.fetch_calls = 0

    def create_order(self, amount, currency, receipt, notes=None):
        gateway_order = {'id': f"order_{len(self.orders) + 1:06d}", 'amount': amount, 'currency': currency,
                         'receipt': receipt, 'notes': notes or {}}
        self.orders.append(gateway_order)
        return gateway_order

    def add_payment(self, payment_id, order_id, amount, status='captured'):
        self.payments[payment_id] = {'id': payment_id, 'order_id': order_id, 'amount': amount,
                                     'currency': 'INR', 'status': status}

    def fetch_payment(self, payment_id):
        self.fetch_calls += 1
        return self.payments[payment_id]

    def sign(self, order_id, payment_id):
        message = f"{order_id}|{payment_id}".encode()
        return hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()

    def verify_signature(self, order_id, payment_id, signature):
        return verify_payment_signature(order_id, payment_id, signature, self.key_secret)


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def qr_signer(app):
    return QrTokenSigner.from_config(app.config)


@pytest.fixture
def order_service(app, notifier, qr_signer):
    return OrderService(notifier, qr_signer, qr_format='signed', timezone_name='UTC')


@pytest.fixture
def plain_order_service(app, notifier, qr_signer):
    return OrderService(notifier, qr_signer, qr_format='plain', timezone_name='UTC')


@pytest.fixture
def verifier(notifier, qr_signer):
    return PickupVerifier(notifier, qr_signer)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def payment_service(order_service, notifier, gateway):
    return PaymentService(order_service, notifier, lambda canteen: gateway,
                          lock_wait_attempts=3, lock_wait_seconds=0, sleep=lambda seconds: None)


@pytest.fixture
def make_canteen(app):
    def factory(can_id=None, password='admin12345'):
        n = next(_seq)
        canteen = Canteen(can_id=can_id or f"CAN-TEST{n:04d}", college_name=f"College {n}",
                          email=f"admin{n}@college.edu")
        canteen.set_password(password)
        db.session.add(canteen)
        db.session.commit()
        return canteen
    return factory


@pytest.fixture
def make_student(app):
    def factory(canteen, banned=False, password='student12345'):
        n = next(_seq)
        student = Student(can_id=canteen.can_id, name=f"Student {n}", class_semester='CSE S4',
                          mobile=f"98{n:08d}", admission_number=f"ADM{n:04d}", email=f"student{n}@college.edu")
        student.set_password(password)
        student.set_banned(banned)
        db.session.add(student)
        db.session.commit()
        return student
    return factory


@pytest.fixture
def make_food(app):
    def factory(canteen, name='Masala Dosa', price=50, in_stock=True, category='food'):
        food = Food(can_id=canteen.can_id, name=name, price=price, in_stock=in_stock, category=category)
        db.session.add(food)
        db.session.commit()
        return food
    return factory


@pytest.fixture
def make_staff(app):
    def factory(canteen, status='Approved', password='staff12345'):
        n = next(_seq)
        staff = Staff(name=f"Staff {n}", email=f"staff{n}@college.edu", can_id=canteen.can_id, status=status)
        staff.set_password(password)
        db.session.add(staff)
        db.session.commit()
        return staff
    return factory


@pytest.fixture
def canteen(make_canteen):
    return make_canteen()


@pytest.fixture
def student(make_student, canteen):
    return make_student(canteen)


@pytest.fixture
def foods(make_food, canteen):
    return make_food(canteen, 'Masala Dosa', 50), make_food(canteen, 'Filter Coffee', 30, category='drink')


@pytest.fixture
def auth_headers(app):
    def factory(role, subject):
        token = issue_token(role, subject.id, subject.can_id)
        return {'Authorization': f"Bearer {token}"}
    return factory
