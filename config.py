import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///campusbites.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'jwt-secret-key'
    JWT_ACCESS_TOKEN_HOURS = int(os.environ.get('JWT_ACCESS_TOKEN_HOURS', 24))

    # Pickup QR tokens
    QR_JWT_SECRET = os.environ.get('QR_JWT_SECRET') or os.environ.get('JWT_SECRET_KEY') or os.environ.get('SECRET_KEY')
    QR_TOKEN_EXPIRES_MINUTES = int(os.environ.get('QR_TOKEN_EXPIRES_MINUTES', 120))
    QR_TOKEN_FORMAT = os.environ.get('QR_TOKEN_FORMAT', 'signed')  # signed, plain

    # Orders
    CANTEEN_TIMEZONE = os.environ.get('CANTEEN_TIMEZONE', 'Asia/Kolkata')
    DAILY_TOKEN_ATTEMPTS = int(os.environ.get('DAILY_TOKEN_ATTEMPTS', 120))
    PICKUP_TOKEN_ATTEMPTS = int(os.environ.get('PICKUP_TOKEN_ATTEMPTS', 50))
    ID_GENERATION_ATTEMPTS = int(os.environ.get('ID_GENERATION_ATTEMPTS', 20))
    ORDER_CREATE_ATTEMPTS = int(os.environ.get('ORDER_CREATE_ATTEMPTS', 12))

    # Payments
    RAZORPAY_KEY_ID = os.environ.get('RAZORPAY_KEY_ID', '')
    RAZORPAY_KEY_SECRET = os.environ.get('RAZORPAY_KEY_SECRET', '')
    PAYMENT_CURRENCY = os.environ.get('PAYMENT_CURRENCY', 'INR')
    PAYMENT_LOCK_WAIT_ATTEMPTS = int(os.environ.get('PAYMENT_LOCK_WAIT_ATTEMPTS', 10))
    PAYMENT_LOCK_WAIT_SECONDS = float(os.environ.get('PAYMENT_LOCK_WAIT_SECONDS', 0.3))
    PAYMENT_LOCK_STALE_SECONDS = int(os.environ.get('PAYMENT_LOCK_STALE_SECONDS', 120))

    # Realtime
    SOCKETIO_MESSAGE_QUEUE = os.environ.get('SOCKETIO_MESSAGE_QUEUE')  # e.g. redis://localhost:6379/0
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Additional config for production
    DEBUG = os.environ.get('DEBUG', 'False').lower() == 'true'


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///campusbites.db'
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')  # Must be set in production


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SECRET_KEY = 'test-secret-key'
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    QR_JWT_SECRET = 'test-qr-secret-key-with-enough-length'
    QR_TOKEN_FORMAT = 'signed'
    CANTEEN_TIMEZONE = 'UTC'
    RAZORPAY_KEY_ID = 'rzp_test_key'
    RAZORPAY_KEY_SECRET = 'rzp_test_secret'
    PAYMENT_LOCK_WAIT_ATTEMPTS = 3
    PAYMENT_LOCK_WAIT_SECONDS = 0
    SOCKETIO_MESSAGE_QUEUE = None
    SOCKETIO_ASYNC_MODE = 'threading'
    LOG_LEVEL = 'DEBUG'
