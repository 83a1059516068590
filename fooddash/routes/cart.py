from flask import Blueprint, request, jsonify, current_app
from fooddash import db
from fooddash.models.menu_item import MenuItem
from fooddash.services.cart import CartItem, RestaurantConflictError
from fooddash.services.checkout import quote_cart
from fooddash.services.promo import PromoCodeValidator
from fooddash.utils.auth import require_role
from fooddash.utils.validators import validate_quantity, validate_special_instructions

cart_bp = Blueprint('cart', __name__)

CART_ROLES = ('customer', 'admin')

def get_cart_registry():
    return current_app.extensions['cart_registry']

def get_user_cart(user):
    return get_cart_registry().get(user.id)

def cart_payload(cart, user, fulfillment_type='delivery'):
    """Cart contents plus totals priced against the current subtotal"""
    quote = quote_cart(cart, get_cart_registry().pricing, PromoCodeValidator(), user.id, fulfillment_type)
    data = cart.summary(quote.delivery_fee, quote.discount)
    data['fulfillment_type'] = fulfillment_type
    data['promo'] = quote.promo.to_dict() if quote.promo else None
    data['promo_error'] = quote.promo_error
    if quote.restaurant is not None:
        data['minimum_order'] = str(quote.restaurant.minimum_order or 0)
    return data

@cart_bp.route('', methods=['GET'])
@require_role(*CART_ROLES)
def get_cart(current_user):
    """Get user's cart"""
    fulfillment_type = request.args.get('fulfillment_type', 'delivery')
    cart = get_user_cart(current_user)
    return jsonify(cart_payload(cart, current_user, fulfillment_type)), 200

@cart_bp.route('/items', methods=['POST'])
@require_role(*CART_ROLES)
def add_to_cart(current_user):
    """Add item to cart"""
    data = request.get_json(silent=True) or {}
    
    if 'menu_item_id' not in data:
        return jsonify({'error': 'menu_item_id is required'}), 400
    
    quantity = data.get('quantity', 1)
    quantity_valid, quantity_error = validate_quantity(quantity)
    if not quantity_valid:
        return jsonify({'error': quantity_error}), 400
    
    instructions_valid, instructions_error = validate_special_instructions(data.get('special_instructions'))
    if not instructions_valid:
        return jsonify({'error': instructions_error}), 400
    
    replace = data.get('replace', True)
    if not isinstance(replace, bool):
        return jsonify({'error': 'replace must be true or false'}), 400
    
    try:
        menu_item = db.session.get(MenuItem, int(data['menu_item_id']))
    except (TypeError, ValueError):
        return jsonify({'error': 'menu_item_id must be an integer'}), 400
    
    if not menu_item:
        return jsonify({'error': 'Menu item not found'}), 404
    
    restaurant = menu_item.restaurant
    if not menu_item.is_available or not restaurant or not restaurant.is_active:
        return jsonify({'error': 'Menu item is not available'}), 400
    
    cart = get_user_cart(current_user)
    replaced = cart.restaurant_id is not None and cart.restaurant_id != str(restaurant.id)
    item = CartItem(
        menu_item_id=menu_item.id,
        name=menu_item.name,
        unit_price=menu_item.price,
        restaurant_id=restaurant.id,
        restaurant_name=restaurant.name,
        quantity=int(quantity),
        image_url=menu_item.image_url,
        special_instructions=data.get('special_instructions')
    )
    
    try:
        line = cart.add_item(item, replace=replace)
    except RestaurantConflictError as e:
        return jsonify({'error': str(e), 'current_restaurant_id': cart.restaurant_id}), 409
    
    return jsonify({
        'message': 'Item added to cart successfully',
        'cart_item': line.to_dict(),
        'cart_replaced': replaced,
        'cart': cart_payload(cart, current_user)
    }), 201

@cart_bp.route('/items/<menu_item_id>', methods=['DELETE'])
@require_role(*CART_ROLES)
def remove_from_cart(current_user, menu_item_id):
    """Remove one unit of an item from the cart"""
    cart = get_user_cart(current_user)
    cart.remove_item(menu_item_id)
    return jsonify({
        'message': 'Item removed from cart successfully',
        'cart': cart_payload(cart, current_user)
    }), 200

@cart_bp.route('/items/<menu_item_id>', methods=['PUT'])
@require_role(*CART_ROLES)
def update_cart_item(current_user, menu_item_id):
    """Set cart item quantity (0 or less removes the item)"""
    data = request.get_json(silent=True) or {}
    
    if 'quantity' not in data:
        return jsonify({'error': 'quantity is required'}), 400
    
    try:
        quantity = int(data['quantity'])
    except (TypeError, ValueError):
        return jsonify({'error': 'Quantity must be a whole number'}), 400
    
    cart = get_user_cart(current_user)
    if cart.get_item_quantity(menu_item_id) == 0:
        return jsonify({'error': 'Item is not in your cart'}), 404
    
    cart.update_quantity(menu_item_id, quantity)
    return jsonify({
        'message': 'Cart item updated successfully',
        'cart': cart_payload(cart, current_user)
    }), 200

@cart_bp.route('/items/<menu_item_id>', methods=['PATCH'])
@require_role(*CART_ROLES)
def update_cart_item_instructions(current_user, menu_item_id):
    """Set special instructions for a cart item"""
    data = request.get_json(silent=True) or {}
    instructions = data.get('special_instructions')
    
    instructions_valid, instructions_error = validate_special_instructions(instructions)
    if not instructions_valid:
        return jsonify({'error': instructions_error}), 400
    
    cart = get_user_cart(current_user)
    if cart.get_item_quantity(menu_item_id) == 0:
        return jsonify({'error': 'Item is not in your cart'}), 404
    
    cart.update_instructions(menu_item_id, instructions)
    return jsonify({
        'message': 'Instructions updated successfully',
        'cart': cart_payload(cart, current_user)
    }), 200

@cart_bp.route('', methods=['DELETE'])
@require_role(*CART_ROLES)
def clear_cart(current_user):
    """Clear entire cart"""
    cart = get_user_cart(current_user)
    cart.clear()
    return jsonify({'message': 'Cart cleared successfully'}), 200

@cart_bp.route('/promo', methods=['POST'])
@require_role(*CART_ROLES)
def apply_promo(current_user):
    """Validate a promo code against the cart and keep it applied for this session"""
    data = request.get_json(silent=True) or {}
    cart = get_user_cart(current_user)
    
    if cart.is_empty:
        return jsonify({'error': 'Please add items to your cart'}), 400
    
    result = PromoCodeValidator().validate(
        data.get('code'),
        cart.subtotal(),
        restaurant_id=cart.restaurant_id,
        service_type='food',
        user_id=current_user.id
    )
    if not result.valid:
        return jsonify({'error': result.error_message, 'validation': result.to_dict()}), 400
    
    cart.apply_promo(result.promo_code.code)
    return jsonify({
        'message': f'Promo code {result.promo_code.code} applied',
        'validation': result.to_dict(),
        'cart': cart_payload(cart, current_user)
    }), 200

@cart_bp.route('/promo', methods=['DELETE'])
@require_role(*CART_ROLES)
def remove_promo(current_user):
    """Remove the applied promo code"""
    cart = get_user_cart(current_user)
    cart.remove_promo()
    return jsonify({
        'message': 'Promo code removed',
        'cart': cart_payload(cart, current_user)
    }), 200
