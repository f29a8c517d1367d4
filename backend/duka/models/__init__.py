from .auth import User, SessionToken
from .inventory import Product, InventoryAuditEntry
from .customers import Customer, CustomerDiscount
from .sales import Sale, SaleItem, Receipt

__all__ = [
    'User', 'SessionToken',
    'Product', 'InventoryAuditEntry',
    'Customer', 'CustomerDiscount',
    'Sale', 'SaleItem', 'Receipt',
]
