# Identifier and pickup-token generation, QR payloads and signed QR tokens
import json
import re
import secrets
import string
import time
from datetime import date, datetime, timedelta, timezone

import jwt
from flask import current_app

from campusbites.errors import Exhausted, QrTokenExpired, QrTokenInvalid
from campusbites.models.models import Canteen, Order

ID_ALPHABET = string.ascii_uppercase + string.digits
PICKUP_TOKEN_RE = re.compile(r'^\d{4}$')
QR_TOKEN_TYPE = 'order_pickup'
QR_ALGORITHM = 'HS256'


def random_chars(length, alphabet=ID_ALPHABET):
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def retry_until_unique(generate, is_taken, attempts, what='value'):
    """Draw candidates from ``generate`` until ``is_taken`` rejects none.

    Raises ``Exhausted`` after ``attempts`` collisions; never loops forever.
    """
    for attempt in range(attempts):
        candidate = generate()
        if not is_taken(candidate):
            return candidate
        current_app.logger.debug(f"Collision generating {what} (attempt {attempt + 1}/{attempts})")

    current_app.logger.error(f"Unable to generate a unique {what} after {attempts} attempts")
    raise Exhausted(f"Unable to generate a unique {what}")


# Candidate generators

def new_canteen_id():
    return f"CAN-{random_chars(8)}"


def new_order_id():
    return f"ORD-{int(time.time() * 1000)}-{random_chars(4)}"


def new_daily_token():
    # 1000-9999, never a leading zero
    return str(1000 + secrets.randbelow(9000))


def new_pickup_token():
    return f"{secrets.randbelow(10000):04d}"


# Store-checked generators

def generate_canteen_id(attempts=None):
    attempts = attempts or current_app.config['ID_GENERATION_ATTEMPTS']
    return retry_until_unique(
        new_canteen_id,
        lambda can_id: Canteen.query.filter_by(can_id=can_id).first() is not None,
        attempts,
        'canteen id'
    )


def generate_order_id(attempts=None):
    attempts = attempts or current_app.config['ID_GENERATION_ATTEMPTS']
    return retry_until_unique(
        new_order_id,
        lambda order_id: Order.query.filter_by(order_id=order_id).first() is not None,
        attempts,
        'order id'
    )


def generate_daily_token(can_id, order_date, attempts=None):
    attempts = attempts or current_app.config['DAILY_TOKEN_ATTEMPTS']
    return retry_until_unique(
        new_daily_token,
        lambda token: Order.query.filter_by(
            can_id=can_id, order_date=order_date, daily_token=token
        ).first() is not None,
        attempts,
        'daily token'
    )


def generate_pickup_token(attempts=None):
    attempts = attempts or current_app.config['PICKUP_TOKEN_ATTEMPTS']
    return retry_until_unique(
        new_pickup_token,
        lambda token: Order.query.filter_by(pickup_token=token).first() is not None,
        attempts,
        'pickup token'
    )


# QR payloads

def normalize_order_date(value):
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime('%Y-%m-%d')
    return datetime.strptime(str(value), '%Y-%m-%d').strftime('%Y-%m-%d')


def build_qr_payload(order_id, daily_token, can_id, order_date):
    return {
        'orderId': str(order_id),
        'dailyToken': str(daily_token),
        'canID': str(can_id),
        'orderDate': normalize_order_date(order_date)
    }


def encode_qr_payload(payload):
    """Plain qrToken form: compact JSON with stable key order."""
    return json.dumps(payload, sort_keys=True, separators=(',', ':'))


def is_plain_qr_payload(raw):
    return str(raw or '').lstrip().startswith('{')


def decode_qr_payload(raw):
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        raise QrTokenInvalid('QR payload is not valid JSON')
    if not isinstance(payload, dict):
        raise QrTokenInvalid('QR payload must be an object')
    return payload


class QrTokenSigner:
    """Signs and verifies time-limited pickup tokens."""

    def __init__(self, secret, expires_in=timedelta(hours=2)):
        if not secret:
            raise ValueError('QR_JWT_SECRET (or JWT_SECRET_KEY/SECRET_KEY) is required')
        self.secret = secret
        self.expires_in = expires_in

    @classmethod
    def from_config(cls, config):
        return cls(
            config.get('QR_JWT_SECRET') or config.get('JWT_SECRET_KEY') or config.get('SECRET_KEY'),
            timedelta(minutes=config.get('QR_TOKEN_EXPIRES_MINUTES', 120))
        )

    def sign(self, order_id, can_id, pickup_token, expires_in=None):
        if not order_id or not can_id or not PICKUP_TOKEN_RE.match(str(pickup_token or '')):
            raise ValueError('Invalid payload for QR token')

        now = datetime.now(timezone.utc)
        payload = {
            'type': QR_TOKEN_TYPE,
            'orderId': str(order_id),
            'canID': str(can_id),
            'pickupToken': str(pickup_token),
            'iat': now,
            'exp': now + (expires_in if expires_in is not None else self.expires_in),
            # Re-issued tokens must differ even within the same second
            'jti': secrets.token_hex(8)
        }
        return jwt.encode(payload, self.secret, algorithm=QR_ALGORITHM)

    def verify(self, token):
        try:
            return jwt.decode(str(token or ''), self.secret, algorithms=[QR_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise QrTokenExpired()
        except jwt.InvalidTokenError:
            raise QrTokenInvalid()
