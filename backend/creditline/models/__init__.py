from .types import (
    Money,
    OrderStatus,
    DeliveryStatus,
    PaymentType,
    LedgerEntryType,
    StockMovementType,
    UserRole,
)
from .tenancy import Organization, User
from .customers import Customer, CustomerLedgerEntry
from .catalog import Product, StockMovement
from .orders import Order, OrderItem
from .payments import Payment, PaymentAllocation
from .deliveries import Delivery
from .registers import DailyCashRegister, CashRegisterAdjustment
from .documents import DailySequence, IdempotencyKey

__all__ = [
    'Money', 'OrderStatus', 'DeliveryStatus', 'PaymentType',
    'LedgerEntryType', 'StockMovementType', 'UserRole',
    'Organization', 'User',
    'Customer', 'CustomerLedgerEntry',
    'Product', 'StockMovement',
    'Order', 'OrderItem',
    'Payment', 'PaymentAllocation',
    'Delivery',
    'DailyCashRegister', 'CashRegisterAdjustment',
    'DailySequence', 'IdempotencyKey',
]
