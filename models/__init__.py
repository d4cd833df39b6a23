from .purchase_order import PurchaseOrder, LineItem, OrderStatus, ORDER_STATUSES, VAT_RATE
from .sku import SkuRecord, SkuHealth, classify
from .result import (
    DataQualityWarning, OrderSummary, IngestResult, SyncResult, SaveResult, UpsertResult,
)

__all__ = [
    "PurchaseOrder", "LineItem", "OrderStatus", "ORDER_STATUSES", "VAT_RATE",
    "SkuRecord", "SkuHealth", "classify",
    "DataQualityWarning", "OrderSummary", "IngestResult", "SyncResult", "SaveResult",
    "UpsertResult",
]
