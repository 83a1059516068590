from flask import Blueprint, request, jsonify, current_app
from fooddash import db
from fooddash.models.restaurant import Restaurant
from fooddash.services.promo import available_promo_codes
from fooddash.utils.auth import get_current_user

restaurants_bp = Blueprint('restaurants', __name__)

@restaurants_bp.route('', methods=['GET'])
def list_restaurants():
    """List active restaurants"""
    search = request.args.get('search')
    page = int(request.args.get('page', 1))
    per_page = int(request.args.get('per_page', 20))
    
    query = Restaurant.query.filter_by(is_active=True)
    if search:
        query = query.filter(Restaurant.name.ilike(f'%{search}%'))
    query = query.order_by(Restaurant.name.asc())
    
    pagination = query.paginate(page=page, per_page=per_page, error_out=False)
    
    return jsonify({
        'restaurants': [r.to_dict() for r in pagination.items],
        'total': pagination.total,
        'page': page,
        'per_page': per_page,
        'pages': pagination.pages
    }), 200

@restaurants_bp.route('/<int:restaurant_id>', methods=['GET'])
def get_restaurant(restaurant_id):
    """Get restaurant with its available menu and promotions"""
    restaurant = db.get_or_404(Restaurant, restaurant_id)
    
    if not restaurant.is_active:
        return jsonify({'error': 'Restaurant not found'}), 404
    
    data = restaurant.to_dict(include_menu=True)
    data['promotions'] = [p.to_dict() for p in available_promo_codes(restaurant.id)]
    
    # Show what the signed-in customer already has in the cart
    user = get_current_user()
    if user is not None and user.role in ('customer', 'admin'):
        cart = current_app.extensions['cart_registry'].get(user.id)
        for item in data.get('menu', []):
            item['cart_quantity'] = cart.get_item_quantity(item['id'])
    
    return jsonify(data), 200
