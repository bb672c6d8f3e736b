"""
Error taxonomy shared by the order, payment and pickup services.

Every error carries a short machine-checkable ``kind`` and an HTTP-style
``status_code`` so blueprints can render it without inspecting the type.
"""
from flask import jsonify


class CanteenError(Exception):
    kind = 'internal'
    status_code = 500
    default_message = 'Something went wrong'

    def __init__(self, message=None, **extra):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.extra = extra

    def to_dict(self):
        payload = {'success': False, 'error': self.message, 'kind': self.kind}
        payload.update(self.extra)
        return payload


class InvalidInput(CanteenError):
    kind = 'invalid_input'
    status_code = 400
    default_message = 'Invalid input'


class QrTokenExpired(InvalidInput):
    kind = 'token_expired'
    default_message = 'QR token has expired'


class QrTokenInvalid(InvalidInput):
    kind = 'token_invalid'
    default_message = 'QR token is invalid'


class NotFound(CanteenError):
    kind = 'not_found'
    status_code = 404
    default_message = 'Not found'


class OutOfStock(CanteenError):
    kind = 'out_of_stock'
    status_code = 400
    default_message = 'Item is out of stock'


class Conflict(CanteenError):
    kind = 'conflict'
    status_code = 409
    default_message = 'Conflict'

    def __init__(self, message=None, reason='duplicate', order=None, **extra):
        if order is not None:
            extra['order'] = order
        super().__init__(message, reason=reason, **extra)
        self.reason = reason
        self.order = order


class PaymentProcessing(CanteenError):
    kind = 'payment_processing'
    status_code = 409
    default_message = 'Payment is still being processed, please retry shortly'


class Unauthorized(CanteenError):
    kind = 'unauthorized'
    status_code = 401
    default_message = 'Authentication required'


class Forbidden(CanteenError):
    kind = 'forbidden'
    status_code = 403
    default_message = 'Not allowed'


class UpstreamFailure(CanteenError):
    kind = 'upstream_failure'
    status_code = 502
    default_message = 'Payment gateway request failed'


class Exhausted(CanteenError):
    kind = 'exhausted'
    status_code = 500
    default_message = 'Retry limit exceeded'


class OrderCreationFailed(Exhausted):
    kind = 'order_creation_failed'
    default_message = 'Unable to create order, please try again'


class Internal(CanteenError):
    pass


def error_response(error):
    return jsonify(error.to_dict()), error.status_code


def internal_error_response(message):
    return jsonify({'success': False, 'error': message, 'kind': Internal.kind}), 500
