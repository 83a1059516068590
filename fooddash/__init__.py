from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_mail import Mail
import logging
import os
from datetime import timedelta

db = SQLAlchemy()
jwt = JWTManager()
mail = Mail()


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    logging.getLogger('fooddash').setLevel(level)


def create_app(config_name='development'):
    """Application factory pattern"""
    app = Flask(__name__)

    # Configuration
    if config_name == 'development':
        data_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'data')
        os.makedirs(data_dir, exist_ok=True)
        app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv(
            'DATABASE_URL',
            'sqlite:///' + os.path.join(data_dir, 'fooddash.db')
        )
        app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret-key-change-in-production')
        app.config['PAYFAST_SANDBOX'] = _env_bool('PAYFAST_SANDBOX', True)
        app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'DEBUG')
    elif config_name == 'testing':
        app.config['TESTING'] = True
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite://'
        app.config['JWT_SECRET_KEY'] = 'testing-secret-key-with-enough-length-for-hs256'
        app.config['PAYFAST_SANDBOX'] = True
        app.config['MAIL_SUPPRESS_SEND'] = True
        app.config['PAYMENT_VERIFY_INTERVAL'] = 0
        app.config['LOG_LEVEL'] = 'WARNING'
    else:
        # Production config - use environment variables
        app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL')
        if not app.config['SQLALCHEMY_DATABASE_URI']:
            raise ValueError('DATABASE_URL environment variable is required for production')
        app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY')
        if not app.config['JWT_SECRET_KEY']:
            raise ValueError('JWT_SECRET_KEY environment variable is required for production')
        app.config['PAYFAST_SANDBOX'] = _env_bool('PAYFAST_SANDBOX', False)
        app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(hours=1)
    app.config['JWT_REFRESH_TOKEN_EXPIRES'] = timedelta(days=30)

    # Platform pricing policy
    app.config['SERVICE_FEE_RATE'] = os.getenv('SERVICE_FEE_RATE', '0.045')
    app.config['TAX_RATE'] = os.getenv('TAX_RATE', '0.0')
    app.config['DEFAULT_DELIVERY_FEE'] = os.getenv('DEFAULT_DELIVERY_FEE', '2.49')
    app.config['CART_TTL_MINUTES'] = int(os.getenv('CART_TTL_MINUTES', 30))
    app.config.setdefault('PAYMENT_VERIFY_INTERVAL', float(os.getenv('PAYMENT_VERIFY_INTERVAL', 2.0)))
    app.config['RATELIMIT_ENABLED'] = _env_bool('RATELIMIT_ENABLED', True)

    # Hosted payment page (PayFast)
    app.config['PAYFAST_MERCHANT_ID'] = os.getenv('PAYFAST_MERCHANT_ID', '')
    app.config['PAYFAST_MERCHANT_KEY'] = os.getenv('PAYFAST_MERCHANT_KEY', '')
    app.config['PAYFAST_PASSPHRASE'] = os.getenv('PAYFAST_PASSPHRASE', '')
    app.config['PAYFAST_VALIDATE_ITN'] = _env_bool('PAYFAST_VALIDATE_ITN', config_name == 'production')
    app.config['PUBLIC_BASE_URL'] = os.getenv('PUBLIC_BASE_URL', 'http://localhost:5173')
    app.config['API_BASE_URL'] = os.getenv('API_BASE_URL', 'http://localhost:5000')

    app.config['MAIL_SERVER'] = os.getenv('MAIL_SERVER', 'smtp.gmail.com')
    app.config['MAIL_PORT'] = int(os.getenv('MAIL_PORT', 587))
    app.config['MAIL_USE_TLS'] = True
    app.config['MAIL_USERNAME'] = os.getenv('MAIL_USERNAME', '')
    app.config['MAIL_PASSWORD'] = os.getenv('MAIL_PASSWORD', '')
    app.config['MAIL_DEFAULT_SENDER'] = os.getenv('MAIL_DEFAULT_SENDER', 'orders@fooddash.local')

    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    jwt.init_app(app)
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    mail.init_app(app)

    from fooddash.services.order_status import ChangeFeed
    from fooddash.services.cart import CartRegistry
    from fooddash.services.pricing import PricingPolicy

    app.extensions['change_feed'] = ChangeFeed()
    app.extensions['cart_registry'] = CartRegistry(
        pricing=PricingPolicy.from_config(app.config),
        ttl=timedelta(minutes=app.config['CART_TTL_MINUTES'])
    )

    # Register blueprints
    from fooddash.routes.auth import auth_bp
    from fooddash.routes.restaurants import restaurants_bp
    from fooddash.routes.cart import cart_bp
    from fooddash.routes.promos import promos_bp
    from fooddash.routes.checkout import checkout_bp
    from fooddash.routes.orders import orders_bp
    from fooddash.routes.payments import payments_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(restaurants_bp, url_prefix='/api/restaurants')
    app.register_blueprint(cart_bp, url_prefix='/api/cart')
    app.register_blueprint(promos_bp, url_prefix='/api/promos')
    app.register_blueprint(checkout_bp, url_prefix='/api/checkout')
    app.register_blueprint(orders_bp, url_prefix='/api/orders')
    app.register_blueprint(payments_bp, url_prefix='/api/payments')

    # Create database tables
    with app.app_context():
        from fooddash import models  # noqa: F401
        db.create_all()

        if not app.config.get('TESTING'):
            # Create default admin user if not exists
            from fooddash.models.user import User
            admin = User.query.filter_by(email='admin@fooddash.local', role='admin').first()
            if not admin:
                admin = User(
                    name='Admin User',
                    email='admin@fooddash.local',
                    role='admin',
                    is_active=True
                )
                admin.set_password(os.getenv('ADMIN_PASSWORD', 'admin12345'))
                db.session.add(admin)
                db.session.commit()

    return app
