from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_socketio import SocketIO
from config import Config

db = SQLAlchemy()
jwt = JWTManager()
migrate = Migrate()
socketio = SocketIO(cors_allowed_origins="*")


def _auth_error(message, status_code=401):
    kind = 'unauthorized' if status_code == 401 else 'forbidden'
    return jsonify({'success': False, 'error': message, 'kind': kind}), status_code


@jwt.unauthorized_loader
def missing_token(reason):
    return _auth_error(reason)


@jwt.invalid_token_loader
def invalid_token(reason):
    return _auth_error(reason)


@jwt.expired_token_loader
def expired_token(jwt_header, jwt_payload):
    return _auth_error('Session expired, please log in again')


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(app)
    jwt.init_app(app)
    migrate.init_app(app, db)
    socketio.init_app(
        app,
        message_queue=app.config.get('SOCKETIO_MESSAGE_QUEUE'),
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE')
    )

    # Import models to ensure they are registered with SQLAlchemy
    from campusbites.models import models

    from campusbites.routes import auth
    from campusbites.routes import admin
    from campusbites.routes import menu
    from campusbites.routes import orders
    from campusbites.routes import payments
    app.register_blueprint(auth.auth_bp)
    app.register_blueprint(admin.admin_bp)
    app.register_blueprint(menu.menu_bp)
    app.register_blueprint(orders.orders_bp)
    app.register_blueprint(payments.payments_bp)

    # Core services, shared by the blueprints
    from campusbites.services.notifier import OrderNotifier, register_socket_events
    from campusbites.services.order_service import OrderService
    from campusbites.services.payment_service import PaymentService
    from campusbites.services.verification_service import PickupVerifier

    notifier = OrderNotifier(socketio)
    app.order_notifier = notifier
    app.order_service = OrderService.from_app(app, notifier)
    app.pickup_verifier = PickupVerifier(notifier, app.order_service.qr_signer)
    app.payment_service = PaymentService.from_app(app, app.order_service, notifier, sleep=socketio.sleep)

    # Register Socket.IO events
    register_socket_events(socketio)

    @app.route('/health')
    def health_check():
        return jsonify({'status': 'healthy', 'service': 'campusbites'})

    return app
