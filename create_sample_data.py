"""
Script to create sample data for FoodDash
Run this from the project root
Usage: python create_sample_data.py
"""

from fooddash import create_app, db
from fooddash.models.user import User
from fooddash.models.restaurant import Restaurant
from fooddash.models.menu_item import MenuItem
from fooddash.models.promo_code import PromoCode
from datetime import datetime, timedelta
from decimal import Decimal

def get_or_create_user(email, name, role, password, phone=None):
    user = User.query.filter_by(email=email).first()
    if user:
        print(f"✓ {name} already exists")
        return user
    user = User(name=name, email=email, phone=phone, role=role, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()  # Get user ID
    print(f"✓ {name} created ({role})")
    return user

def create_restaurant(owner, name, cuisine, delivery_fee, minimum_order, menu):
    restaurant = Restaurant.query.filter_by(name=name).first()
    if restaurant:
        print(f"✓ {name} already exists")
        return restaurant
    restaurant = Restaurant(
        owner_id=owner.id,
        name=name,
        cuisine=cuisine,
        delivery_fee=delivery_fee,
        minimum_order=minimum_order,
        is_active=True
    )
    db.session.add(restaurant)
    db.session.flush()  # Get restaurant ID
    for position, (item_name, category, price, description) in enumerate(menu):
        db.session.add(MenuItem(
            restaurant_id=restaurant.id,
            name=item_name,
            category=category,
            price=Decimal(price),
            description=description,
            is_available=True,
            display_order=position
        ))
    print(f"✓ {name} created with {len(menu)} menu items")
    return restaurant

def create_sample_data():
    """Create sample users, restaurants, menu items and promo codes"""
    app = create_app()
    
    with app.app_context():
        print("=" * 50)
        print("Creating Sample Data for FoodDash")
        print("=" * 50)
        print()
        
        customer = get_or_create_user('customer@test.com', 'Thandi Customer', 'customer', 'customer123', '+27821234567')
        owner = get_or_create_user('owner@test.com', 'Sipho Owner', 'restaurant', 'owner123', '+27821234568')
        get_or_create_user('rider@test.com', 'Lerato Rider', 'delivery_partner', 'rider123', '+27821234569')
        print()
        
        burger_place = create_restaurant(
            owner, 'Burger Place', 'Burgers', None, Decimal('0'),
            [
                ('Classic Burger', 'Mains', '89.99', 'Beef patty, cheddar, pickles'),
                ('Chicken Burger', 'Mains', '79.99', 'Grilled chicken breast, lettuce, mayo'),
                ('Fries', 'Sides', '35.00', 'Hand-cut, salted'),
                ('Milkshake', 'Drinks', '45.00', 'Vanilla, chocolate or strawberry'),
            ]
        )
        create_restaurant(
            owner, 'Curry House', 'Indian', Decimal('25.00'), Decimal('250.00'),
            [
                ('Butter Chicken', 'Mains', '145.00', 'Creamy tomato-based curry'),
                ('Lamb Bunny Chow', 'Mains', '165.00', 'Quarter loaf filled with lamb curry'),
                ('Garlic Naan', 'Sides', '30.00', 'Baked in the tandoor'),
            ]
        )
        print()
        
        now = datetime.utcnow()
        promos = [
            dict(code='SAVE10', description='10% off your order', discount_type='percentage',
                 discount_value=Decimal('10'), max_discount_amount=Decimal('50')),
            dict(code='MIN200', description='R20 off orders over R200', discount_type='fixed',
                 discount_value=Decimal('20'), min_order_amount=Decimal('200')),
        ]
        for data in promos:
            if PromoCode.query.filter_by(code=data['code']).first():
                print(f"✓ Promo {data['code']} already exists")
                continue
            db.session.add(PromoCode(start_date=now - timedelta(days=1), end_date=now + timedelta(days=90), **data))
            print(f"✓ Promo {data['code']} created")
        
        burger_only = PromoCode.query.filter_by(code='BURGER15').first()
        if not burger_only:
            burger_only = PromoCode(
                code='BURGER15',
                description='R15 off at Burger Place',
                discount_type='fixed',
                discount_value=Decimal('15'),
                start_date=now - timedelta(days=1),
                end_date=now + timedelta(days=30),
                per_user_limit=1
            )
            burger_only.set_restaurant_ids([burger_place.id])
            db.session.add(burger_only)
            print("✓ Promo BURGER15 created")
        
        db.session.commit()
        
        print()
        print("=" * 50)
        print("Sample data ready")
        print("=" * 50)
        print(f"Customer login: {customer.email} / customer123")
        print("Restaurant login: owner@test.com / owner123")
        print("Delivery partner login: rider@test.com / rider123")

if __name__ == '__main__':
    create_sample_data()
