"""
Domain models
"""

from .entities import Canteen, MenuItem, Parent, Student
from .order import Order, OrderEvent, OrderItem, OrderStatus

__all__ = [
    "Canteen",
    "MenuItem",
    "Order",
    "OrderEvent",
    "OrderItem",
    "OrderStatus",
    "Parent",
    "Student",
]
