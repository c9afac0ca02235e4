from .auth import User, Profile, SessionToken
from .catalog import Product, ProductVariant, CartItem
from .events import Event, Ticket
from .orders import Purchase, PurchaseItem, Payment
from .settings import ShippingPrice, TaxPrice
from .notifications import Notification

__all__ = [
    'User', 'Profile', 'SessionToken',
    'Product', 'ProductVariant', 'CartItem',
    'Event', 'Ticket',
    'Purchase', 'PurchaseItem', 'Payment',
    'ShippingPrice', 'TaxPrice',
    'Notification',
]
