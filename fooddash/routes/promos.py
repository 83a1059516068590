from flask import Blueprint, request, jsonify
from datetime import datetime, timezone
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from fooddash import db
from fooddash.models.promo_code import PromoCode
from fooddash.services.promo import (
    DISCOUNT_TYPES, available_promo_codes, normalize_code, usage_history, validate_promo_code
)
from fooddash.utils.auth import require_role
from fooddash.utils.money import to_money
from fooddash.utils.rate_limiter import rate_limit
import logging

logger = logging.getLogger(__name__)

promos_bp = Blueprint('promos', __name__)

LIMIT_FIELDS = ('usage_limit', 'per_user_limit')

def _parse_datetime(value, field):
    if not value:
        raise ValueError(f'{field} is required')
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError as exc:
        raise ValueError(f'{field} must be an ISO 8601 timestamp') from exc
    # Stored naive, in UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

@promos_bp.route('/validate', methods=['POST'])
@require_role('customer', 'admin')
@rate_limit(max_requests=20, window_minutes=15)
def validate_code(current_user):
    """Check a promo code against an order total without applying it"""
    data = request.get_json(silent=True) or {}
    
    try:
        order_total = to_money(data.get('order_total'))
    except ValueError:
        return jsonify({'error': 'order_total must be a number'}), 400
    
    result = validate_promo_code(
        data.get('code'),
        order_total,
        restaurant_id=data.get('restaurant_id'),
        service_type=data.get('service_type', 'food'),
        user_id=current_user.id
    )
    return jsonify(result.to_dict()), 200

@promos_bp.route('/available', methods=['GET'])
@require_role('customer', 'admin')
def list_available(current_user):
    """List promo codes currently usable, optionally for one restaurant"""
    restaurant_id = request.args.get('restaurant_id')
    codes = available_promo_codes(restaurant_id)
    return jsonify({'promo_codes': [p.to_dict() for p in codes]}), 200

@promos_bp.route('/history', methods=['GET'])
@require_role('customer', 'admin')
def promo_history(current_user):
    """The caller's recent promo redemptions"""
    usages = usage_history(current_user.id)
    return jsonify({'history': [u.to_dict() for u in usages]}), 200

@promos_bp.route('', methods=['GET'])
@require_role('admin')
def list_promos(current_user):
    """List all promo codes (admin)"""
    promos = PromoCode.query.order_by(PromoCode.created_at.desc()).all()
    return jsonify({'promo_codes': [p.to_dict() for p in promos]}), 200

def _optional_money(value):
    return to_money(value) if value is not None else None

def _optional_limit(value, field):
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f'{field} must be a whole number')
    try:
        limit = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f'{field} must be a whole number') from exc
    if limit < 1:
        raise ValueError(f'{field} must be at least 1')
    return limit

def apply_promo_fields(promo, data):
    """Copy the fields present in a request body onto a promo; raises ValueError"""
    if 'code' in data:
        promo.code = normalize_code(data['code'])
    if 'description' in data:
        promo.description = data['description']
    if 'discount_type' in data:
        promo.discount_type = data['discount_type']
    if 'discount_value' in data:
        promo.discount_value = to_money(data['discount_value'])
    if 'max_discount_amount' in data:
        promo.max_discount_amount = _optional_money(data['max_discount_amount'])
    if 'min_order_amount' in data:
        promo.min_order_amount = _optional_money(data['min_order_amount'])
    if 'start_date' in data:
        promo.start_date = _parse_datetime(data['start_date'], 'start_date')
    if 'end_date' in data:
        promo.end_date = _parse_datetime(data['end_date'], 'end_date')
    for field in LIMIT_FIELDS:
        if field in data:
            setattr(promo, field, _optional_limit(data[field], field))
    if 'applicable_to' in data:
        promo.applicable_to = str(data['applicable_to'] or 'all')
    if 'is_active' in data:
        if not isinstance(data['is_active'], bool):
            raise ValueError('is_active must be true or false')
        promo.is_active = data['is_active']
    if 'restaurant_ids' in data:
        ids = data['restaurant_ids'] or []
        if not isinstance(ids, list):
            raise ValueError('restaurant_ids must be a list')
        promo.set_restaurant_ids(ids)
    
    # Rules on the merged result
    if not promo.code:
        raise ValueError('code is required')
    if promo.discount_type not in DISCOUNT_TYPES:
        raise ValueError(f'discount_type must be one of: {", ".join(DISCOUNT_TYPES)}')
    if promo.discount_value is None or to_money(promo.discount_value) <= 0:
        raise ValueError('discount_value must be greater than 0')
    if promo.discount_type == 'percentage' and to_money(promo.discount_value) > 100:
        raise ValueError('Percentage discount cannot exceed 100')
    if promo.end_date is None:
        raise ValueError('end_date is required')
    if promo.end_date <= promo.start_date:
        raise ValueError('end_date must be after start_date')

def _save_promo(promo, action):
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Promo code already exists'}), 409
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to %s promo code %s", action, promo.code)
        return jsonify({'error': f'Failed to {action} promo code'}), 500
    logger.info("Promo code %s %sd", promo.code, action)
    return None

@promos_bp.route('', methods=['POST'])
@require_role('admin')
def create_promo(current_user):
    """Create a promo code (admin)"""
    data = request.get_json(silent=True) or {}
    
    promo = PromoCode(
        start_date=datetime.utcnow(),
        applicable_to='all',
        usage_count=0,
        is_active=True,
        created_by=current_user.id
    )
    try:
        apply_promo_fields(promo, data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    
    db.session.add(promo)
    failed = _save_promo(promo, 'create')
    if failed:
        return failed
    
    return jsonify({
        'message': 'Promo code created successfully',
        'promo_code': promo.to_dict()
    }), 201

@promos_bp.route('/<int:promo_id>', methods=['PUT'])
@require_role('admin')
def update_promo(current_user, promo_id):
    """Update some or all fields of a promo code (admin)"""
    promo = db.get_or_404(PromoCode, promo_id)
    data = request.get_json(silent=True) or {}
    
    try:
        apply_promo_fields(promo, data)
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    
    failed = _save_promo(promo, 'update')
    if failed:
        return failed
    
    return jsonify({
        'message': 'Promo code updated successfully',
        'promo_code': promo.to_dict()
    }), 200

@promos_bp.route('/<int:promo_id>/deactivate', methods=['POST'])
@require_role('admin')
def deactivate_promo(current_user, promo_id):
    """Switch a promo code off without deleting its usage history (admin)"""
    promo = db.get_or_404(PromoCode, promo_id)
    promo.is_active = False
    
    failed = _save_promo(promo, 'deactivate')
    if failed:
        return failed
    
    return jsonify({
        'message': 'Promo code deactivated',
        'promo_code': promo.to_dict()
    }), 200
