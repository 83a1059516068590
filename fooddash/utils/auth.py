from functools import wraps
from flask import jsonify
from flask_jwt_extended import create_access_token, create_refresh_token, get_jwt_identity, jwt_required, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from fooddash import db
from fooddash.models.user import User

def generate_tokens(user):
    """Generate access and refresh tokens for user"""
    additional_claims = {
        'role': user.role,
        'email': user.email
    }
    # JWT subjects must be strings
    access_token = create_access_token(
        identity=str(user.id),
        additional_claims=additional_claims
    )
    refresh_token = create_refresh_token(
        identity=str(user.id),
        additional_claims=additional_claims
    )
    return access_token, refresh_token

def load_user(identity):
    """Resolve a JWT identity to a user row"""
    if identity is None:
        return None
    try:
        return db.session.get(User, int(identity))
    except (TypeError, ValueError):
        return None

def require_role(*roles):
    """Decorator to require specific role(s)"""
    def decorator(f):
        @wraps(f)
        @jwt_required()
        def decorated_function(*args, **kwargs):
            user = load_user(get_jwt_identity())
            
            if not user or not user.is_active:
                return jsonify({'error': 'Invalid or inactive user'}), 401
            
            if user.role not in roles:
                return jsonify({'error': 'Insufficient permissions'}), 403
            
            # Add user to kwargs
            kwargs['current_user'] = user
            return f(*args, **kwargs)
        return decorated_function
    return decorator

def get_current_user():
    """Get current authenticated user, or None for anonymous requests"""
    try:
        verify_jwt_in_request(optional=True)
    except (JWTExtendedException, PyJWTError):
        return None
    return load_user(get_jwt_identity())
