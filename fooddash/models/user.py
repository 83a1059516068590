from fooddash import db
from datetime import datetime
from passlib.hash import argon2

class User(db.Model):
    __tablename__ = 'users'
    
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(20))
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='customer')  # customer, restaurant, delivery_partner, admin
    is_active = db.Column(db.Boolean, default=True)
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    orders = db.relationship('Order', backref='customer', lazy=True, foreign_keys='Order.customer_id')
    
    def set_password(self, password):
        """Hash password using Argon2"""
        self.password_hash = argon2.hash(password)
    
    def check_password(self, password):
        """Verify password; a malformed stored hash never matches"""
        if not password or not self.password_hash:
            return False
        try:
            return argon2.verify(password, self.password_hash)
        except ValueError:
            return False
    
    @property
    def first_name(self):
        """First name for payment forms, falling back to the email local part"""
        if self.name and self.name.strip():
            return self.name.strip().split()[0]
        if self.email:
            return self.email.split('@')[0]
        return 'Customer'
    
    def to_dict(self):
        """Convert user to dictionary"""
        return {
            'id': self.id,
            'name': self.name,
            'first_name': self.first_name,
            'email': self.email,
            'phone': self.phone,
            'role': self.role,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
