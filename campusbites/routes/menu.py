from flask import Blueprint, current_app, jsonify, request

from campusbites import db
from campusbites.errors import CanteenError, InvalidInput, NotFound, error_response, internal_error_response
from campusbites.models.models import Food
from campusbites.principal import current_principal, roles_required
from campusbites.validators import normalize_food_category, normalize_image_url, parse_price

menu_bp = Blueprint('menu', __name__, url_prefix='/api/foods')


@menu_bp.route('', methods=['GET'])
@roles_required('admin', 'staff', 'student')
def list_foods():
    """Menu of the caller's canteen"""
    foods = Food.query.filter_by(can_id=current_principal().can_id).order_by(Food.name).all()
    return jsonify({'success': True, 'foods': [food.to_dict() for food in foods]})


@menu_bp.route('', methods=['POST'])
@roles_required('admin')
def add_food():
    try:
        data = request.get_json(silent=True) or {}
        name = str(data.get('name') or '').strip()
        price = parse_price(data.get('price'))
        if not name or price is None:
            raise InvalidInput('name and a non-negative price are required')

        food = Food(
            can_id=current_principal().can_id,
            name=name,
            price=price,
            in_stock=bool(data['inStock']) if 'inStock' in data else True,
            category=normalize_food_category(data.get('category')),
            image_url=normalize_image_url(data.get('imageUrl'))
        )
        db.session.add(food)
        db.session.commit()

        return jsonify({'success': True, 'message': 'Food added', 'food': food.to_dict()}), 201

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Failed to add food: {e}")
        return internal_error_response('Failed to add food')


@menu_bp.route('/<int:food_id>', methods=['PATCH'])
@roles_required('admin')
def update_food(food_id):
    try:
        food = Food.query.filter_by(id=food_id, can_id=current_principal().can_id).first()
        if not food:
            raise NotFound('Food not found')

        data = request.get_json(silent=True) or {}
        if 'name' in data:
            name = str(data['name'] or '').strip()
            if not name:
                raise InvalidInput('name cannot be empty')
            food.name = name
        if 'price' in data:
            price = parse_price(data['price'])
            if price is None:
                raise InvalidInput('price must be a non-negative number')
            food.price = price
        if 'inStock' in data:
            food.in_stock = bool(data['inStock'])
        if 'category' in data:
            food.category = normalize_food_category(data['category'])
        if 'imageUrl' in data:
            food.image_url = normalize_image_url(data['imageUrl'])

        db.session.commit()
        return jsonify({'success': True, 'message': 'Food updated', 'food': food.to_dict()})

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Failed to update food: {e}")
        return internal_error_response('Failed to update food')


@menu_bp.route('/<int:food_id>', methods=['DELETE'])
@roles_required('admin')
def delete_food(food_id):
    try:
        food = Food.query.filter_by(id=food_id, can_id=current_principal().can_id).first()
        if not food:
            raise NotFound('Food not found')

        db.session.delete(food)
        db.session.commit()
        return jsonify({'success': True, 'message': 'Food deleted'})

    except CanteenError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Failed to delete food: {e}")
        return internal_error_response('Failed to delete food')
