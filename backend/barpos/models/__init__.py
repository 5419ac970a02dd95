from .catalog import Category, Unit, Product
from .inventory import Inventory, Barrel, BarrelMovement
from .sales import Sale, SaleItem, Ticket
from .auth import User, SessionToken

__all__ = [
    'Category', 'Unit', 'Product',
    'Inventory', 'Barrel', 'BarrelMovement',
    'Sale', 'SaleItem', 'Ticket',
    'User', 'SessionToken',
]
