"""
Imports every ORM model so `Base.metadata` knows all tables.
"""

from codconfirm.calls.models import CallAttempt, CallResult
from codconfirm.orders.models import Order, OrderStatus
from codconfirm.settings.models import SettingEntry
from codconfirm.stores.models import Store

__all__ = [
    "CallAttempt",
    "CallResult",
    "Order",
    "OrderStatus",
    "SettingEntry",
    "Store",
]
