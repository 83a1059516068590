from fooddash import db
from datetime import datetime
import random

class Order(db.Model):
    __tablename__ = 'orders'
    
    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), unique=True, nullable=False, index=True)
    
    # Customer & Restaurant
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    restaurant_id = db.Column(db.Integer, db.ForeignKey('restaurants.id'), nullable=False)
    delivery_partner_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    
    # Order details
    # pending, confirmed, preparing, ready_for_pickup, picked_up, out_for_delivery, delivered, cancelled, refunded
    status = db.Column(db.String(30), default='pending', index=True)
    payment_status = db.Column(db.String(20), default='pending')  # pending, paid, failed, refunded
    payment_reference = db.Column(db.String(255))  # PayFast pf_payment_id
    fulfillment_type = db.Column(db.String(20), default='delivery')  # delivery, pickup
    pickup_code = db.Column(db.String(4))
    
    # Pricing
    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    delivery_fee = db.Column(db.Numeric(10, 2), default=0)
    service_fee = db.Column(db.Numeric(10, 2), default=0)
    tax = db.Column(db.Numeric(10, 2), default=0)
    discount = db.Column(db.Numeric(10, 2), default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False)
    promo_code_id = db.Column(db.Integer, db.ForeignKey('promo_codes.id'))
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    items = db.relationship('OrderItem', backref='order', lazy=True, cascade='all, delete-orphan')
    promo_code = db.relationship('PromoCode', foreign_keys=[promo_code_id])
    
    @staticmethod
    def generate_order_number():
        """Generate unique order number"""
        timestamp = datetime.utcnow().strftime('%Y%m%d%H%M%S')
        random_suffix = random.randint(1000, 9999)
        return f'ORD{timestamp}{random_suffix}'
    
    @staticmethod
    def generate_pickup_code():
        """Generate 4-digit pickup code"""
        return str(random.randint(1000, 9999))
    
    def to_dict(self, include_items=True):
        """Convert order to dictionary"""
        data = {
            'id': self.id,
            'order_number': self.order_number,
            'customer_id': self.customer_id,
            'restaurant_id': self.restaurant_id,
            'delivery_partner_id': self.delivery_partner_id,
            'status': self.status,
            'payment_status': self.payment_status,
            'fulfillment_type': self.fulfillment_type,
            'pickup_code': self.pickup_code,
            'subtotal': str(self.subtotal),
            'delivery_fee': str(self.delivery_fee or 0),
            'service_fee': str(self.service_fee or 0),
            'tax': str(self.tax or 0),
            'discount': str(self.discount or 0),
            'total': str(self.total),
            'promo_code_id': self.promo_code_id,
            'restaurant': {
                'id': self.restaurant.id,
                'name': self.restaurant.name
            } if self.restaurant else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = 'order_items'
    
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    menu_item_id = db.Column(db.Integer, db.ForeignKey('menu_items.id'), nullable=False)
    
    name = db.Column(db.String(200), nullable=False)  # Snapshot at time of order
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)  # Snapshot at time of order
    quantity = db.Column(db.Integer, nullable=False, default=1)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    special_instructions = db.Column(db.Text)
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    
    def calculate_subtotal(self):
        """Calculate item subtotal"""
        self.subtotal = self.unit_price * self.quantity
    
    def to_dict(self):
        """Convert order item to dictionary"""
        return {
            'id': self.id,
            'order_id': self.order_id,
            'menu_item_id': self.menu_item_id,
            'name': self.name,
            'unit_price': str(self.unit_price),
            'quantity': self.quantity,
            'subtotal': str(self.subtotal),
            'special_instructions': self.special_instructions
        }
