from flask import Blueprint, request, jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from fooddash import db
from fooddash.models.user import User
from fooddash.utils.auth import generate_tokens, load_user
from fooddash.utils.validators import validate_email, validate_password, validate_name, validate_phone, normalize_phone
from fooddash.utils.rate_limiter import rate_limit
from flask_jwt_extended import jwt_required, get_jwt_identity
import logging

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

SELF_SERVICE_ROLES = ['customer', 'restaurant', 'delivery_partner']

@auth_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({'status': 'ok', 'message': 'Auth service is running'}), 200

@auth_bp.route('/register', methods=['POST'])
@rate_limit(max_requests=5, window_minutes=15)
def register():
    """Register a new user (customer, restaurant, or delivery partner)"""
    data = request.get_json(silent=True) or {}
    
    # Validate required fields
    required_fields = ['name', 'email', 'password']
    for field in required_fields:
        if field not in data:
            return jsonify({'error': f'{field} is required'}), 400
    
    # Validate inputs
    name_valid, name_error = validate_name(data['name'])
    if not name_valid:
        return jsonify({'error': name_error}), 400
    
    email_valid, email_error = validate_email(data['email'])
    if not email_valid:
        return jsonify({'error': email_error}), 400
    
    password_valid, password_error = validate_password(data['password'])
    if not password_valid:
        return jsonify({'error': password_error}), 400
    
    if data.get('phone'):
        phone_valid, phone_error = validate_phone(data['phone'])
        if not phone_valid:
            return jsonify({'error': phone_error}), 400
    
    # Validate role
    role = data.get('role', 'customer')
    if role not in SELF_SERVICE_ROLES:
        return jsonify({'error': f'Invalid role. Must be one of: {", ".join(SELF_SERVICE_ROLES)}'}), 400
    
    email = data['email'].strip().lower()
    
    # Check if user already exists
    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already registered'}), 409
    
    # Create user
    user = User(
        name=data['name'].strip(),
        email=email,
        phone=normalize_phone(data.get('phone')),
        role=role,
        is_active=True
    )
    user.set_password(data['password'])
    
    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Email already registered'}), 409
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Registration failed for %s", email)
        return jsonify({'error': 'Registration failed, please try again'}), 500
    
    # Generate tokens
    access_token, refresh_token = generate_tokens(user)
    
    return jsonify({
        'message': 'Registration successful',
        'user': user.to_dict(),
        'access_token': access_token,
        'refresh_token': refresh_token
    }), 201

@auth_bp.route('/login', methods=['POST'])
@rate_limit(max_requests=10, window_minutes=15)
def login():
    """Login user and return JWT tokens"""
    data = request.get_json(silent=True)
    
    if not data or 'email' not in data or 'password' not in data:
        return jsonify({'error': 'Email and password are required'}), 400
    
    user = User.query.filter_by(email=str(data['email']).strip().lower()).first()
    
    if not user or not user.check_password(data['password']):
        return jsonify({'error': 'Invalid email or password'}), 401
    
    if not user.is_active:
        return jsonify({'error': 'Account is inactive. Please contact support.'}), 403
    
    # Generate tokens
    access_token, refresh_token = generate_tokens(user)
    
    return jsonify({
        'message': 'Login successful',
        'user': user.to_dict(),
        'access_token': access_token,
        'refresh_token': refresh_token
    }), 200

@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """Refresh access token"""
    user = load_user(get_jwt_identity())
    
    if not user or not user.is_active:
        return jsonify({'error': 'Invalid or inactive user'}), 401
    
    access_token, _ = generate_tokens(user)
    
    return jsonify({
        'access_token': access_token
    }), 200

@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_current_user_info():
    """Get current authenticated user information"""
    user = load_user(get_jwt_identity())
    
    if not user:
        return jsonify({'error': 'User not found'}), 404
    
    return jsonify({'user': user.to_dict()}), 200
