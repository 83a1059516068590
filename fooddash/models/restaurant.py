from fooddash import db
from datetime import datetime

class Restaurant(db.Model):
    __tablename__ = 'restaurants'
    
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    name = db.Column(db.String(100), nullable=False)
    cuisine = db.Column(db.String(100))
    image_url = db.Column(db.String(500))
    
    # Ordering rules
    delivery_fee = db.Column(db.Numeric(10, 2))  # None means platform default
    minimum_order = db.Column(db.Numeric(10, 2), default=0)
    
    is_active = db.Column(db.Boolean, default=True)
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    owner = db.relationship('User', backref='restaurants', foreign_keys=[owner_id])
    menu_items = db.relationship('MenuItem', backref='restaurant', lazy=True, cascade='all, delete-orphan')
    orders = db.relationship('Order', backref='restaurant', lazy=True, foreign_keys='Order.restaurant_id')
    
    def to_dict(self, include_menu=False):
        """Convert restaurant to dictionary"""
        data = {
            'id': self.id,
            'name': self.name,
            'cuisine': self.cuisine,
            'image_url': self.image_url,
            'delivery_fee': str(self.delivery_fee) if self.delivery_fee is not None else None,
            'minimum_order': str(self.minimum_order or 0),
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
        if include_menu:
            data['menu'] = [item.to_dict() for item in self.menu_items if item.is_available]
        return data
