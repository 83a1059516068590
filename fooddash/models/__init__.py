from fooddash.models.user import User
from fooddash.models.restaurant import Restaurant
from fooddash.models.menu_item import MenuItem
from fooddash.models.order import Order, OrderItem
from fooddash.models.promo_code import PromoCode, PromoCodeUsage
from fooddash.models.stored_document import StoredDocument

__all__ = ['User', 'Restaurant', 'MenuItem', 'Order', 'OrderItem', 'PromoCode', 'PromoCodeUsage', 'StoredDocument']
