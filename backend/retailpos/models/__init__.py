from .auth import User, UserRole, SessionToken
from .catalog import Brand, Product, Variant
from .inventory import StockLedgerEntry, StockLedgerType
from .sales import Sale, SaleItem, Payment
from .purchasing import (
    Supplier,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    GoodsReceipt,
    GoodsReceiptItem,
)

__all__ = [
    'User', 'UserRole', 'SessionToken',
    'Brand', 'Product', 'Variant',
    'StockLedgerEntry', 'StockLedgerType',
    'Sale', 'SaleItem', 'Payment',
    'Supplier', 'PurchaseOrder', 'PurchaseOrderItem', 'PurchaseOrderStatus',
    'GoodsReceipt', 'GoodsReceiptItem',
]
