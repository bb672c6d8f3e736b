# Cart validation and authoritative totals
from collections import namedtuple

from campusbites.errors import InvalidInput, NotFound, OutOfStock
from campusbites.models.models import Food, Student

ValidatedOrder = namedtuple('ValidatedOrder', ['items', 'total'])
NormalizedItem = namedtuple('NormalizedItem', ['food_id', 'name', 'unit_price', 'quantity'])


def parse_positive_int(value):
    """Return ``value`` as a positive int, or None when it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number if number > 0 else None
    return None


def validate_order(can_id, student_id, items):
    """Check the cart against the canteen and compute the total server-side.

    Read-only: safe to call for direct orders and before payment.
    Any client-supplied price or total is ignored.
    """
    if not can_id or not student_id:
        raise InvalidInput('canID, studentID, and items are required')
    if not isinstance(items, (list, tuple)) or len(items) == 0:
        raise InvalidInput('canID, studentID, and items are required')

    parsed_student_id = parse_positive_int(student_id)
    if parsed_student_id is None:
        raise InvalidInput('Invalid studentID')

    requested = []
    for item in items:
        if not isinstance(item, dict):
            raise InvalidInput('Each item must have valid foodID and quantity > 0')
        food_id = parse_positive_int(item.get('foodID'))
        quantity = parse_positive_int(item.get('quantity'))
        if food_id is None or quantity is None:
            raise InvalidInput('Each item must have valid foodID and quantity > 0')
        requested.append((food_id, quantity))

    student = Student.query.filter_by(id=parsed_student_id, can_id=can_id).first()
    if not student:
        raise NotFound('Student not found for this canID')

    normalized = []
    total = 0.0
    for food_id, quantity in requested:
        food = Food.query.filter_by(id=food_id, can_id=can_id).first()
        if not food:
            raise NotFound(f'Food not found for id {food_id}')
        if not food.in_stock:
            raise OutOfStock(f'{food.name} is out of stock')

        total += food.price * quantity
        normalized.append(NormalizedItem(food.id, food.name, food.price, quantity))

    return ValidatedOrder(normalized, round(total, 2))


def to_minor_units(total):
    """Rupees to paise for the payment gateway."""
    return int(round(total * 100))
