from fooddash import db
from datetime import datetime
from decimal import Decimal
import json

class PromoCode(db.Model):
    __tablename__ = 'promo_codes'
    
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)  # Stored upper-case
    description = db.Column(db.Text)
    
    # Discount rule
    discount_type = db.Column(db.String(20), nullable=False)  # percentage, fixed
    discount_value = db.Column(db.Numeric(10, 2), nullable=False)
    max_discount_amount = db.Column(db.Numeric(10, 2))
    min_order_amount = db.Column(db.Numeric(10, 2))
    
    # Eligibility
    start_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    end_date = db.Column(db.DateTime, nullable=False)
    usage_limit = db.Column(db.Integer)
    usage_count = db.Column(db.Integer, default=0)
    per_user_limit = db.Column(db.Integer)
    restaurant_ids = db.Column(db.Text)  # JSON array
    applicable_to = db.Column(db.String(100), default='all')  # all, or comma-separated service types
    is_active = db.Column(db.Boolean, default=True)
    
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    usages = db.relationship('PromoCodeUsage', backref='promo_code', lazy=True, cascade='all, delete-orphan')
    
    def get_restaurant_ids(self):
        """Parse restaurant scoping JSON"""
        if self.restaurant_ids:
            try:
                return [str(r) for r in json.loads(self.restaurant_ids)]
            except (TypeError, ValueError):
                return [r.strip() for r in self.restaurant_ids.split(',') if r.strip()]
        return []
    
    def set_restaurant_ids(self, ids):
        """Set restaurant scoping as JSON"""
        self.restaurant_ids = json.dumps([str(i) for i in ids]) if ids else None
    
    def status(self, now=None):
        """One of: inactive, scheduled, expired, exhausted, active"""
        if not self.is_active:
            return 'inactive'
        now = now or datetime.utcnow()
        if self.start_date and now < self.start_date:
            return 'scheduled'
        if self.end_date and now > self.end_date:
            return 'expired'
        if self.usage_limit and (self.usage_count or 0) >= self.usage_limit:
            return 'exhausted'
        return 'active'
    
    def display_discount(self):
        value = Decimal(str(self.discount_value))
        if self.discount_type == 'percentage':
            return f"{value.normalize():f}% off"
        return f"R{value:.2f} off"
    
    def to_dict(self):
        """Convert promo code to dictionary"""
        return {
            'id': self.id,
            'code': self.code,
            'description': self.description,
            'discount_type': self.discount_type,
            'discount_value': str(self.discount_value),
            'max_discount_amount': str(self.max_discount_amount) if self.max_discount_amount is not None else None,
            'min_order_amount': str(self.min_order_amount) if self.min_order_amount is not None else None,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'usage_limit': self.usage_limit,
            'usage_count': self.usage_count,
            'per_user_limit': self.per_user_limit,
            'restaurant_ids': self.get_restaurant_ids(),
            'applicable_to': self.applicable_to,
            'is_active': self.is_active,
            'status': self.status(),
            'display_discount': self.display_discount(),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }


class PromoCodeUsage(db.Model):
    __tablename__ = 'promo_code_usage'
    
    id = db.Column(db.Integer, primary_key=True)
    promo_code_id = db.Column(db.Integer, db.ForeignKey('promo_codes.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'))
    discount_applied = db.Column(db.Numeric(10, 2), nullable=False)
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    
    order = db.relationship('Order', lazy=True)
    
    def to_dict(self):
        promo = self.promo_code
        order = self.order
        return {
            'id': self.id,
            'discount_applied': str(self.discount_applied),
            'used_at': self.created_at.isoformat() if self.created_at else None,
            'promo_code': {
                'code': promo.code,
                'description': promo.description,
                'discount_type': promo.discount_type,
                'discount_value': str(promo.discount_value)
            } if promo else None,
            'order': {
                'id': order.id,
                'order_number': order.order_number,
                'total': str(order.total),
                'created_at': order.created_at.isoformat() if order.created_at else None
            } if order else None
        }
