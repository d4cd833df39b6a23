from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from .purchase_order import PurchaseOrder


WarningType = Literal[
    # Delivery
    "over_delivery",
    "negative_delivery",
    # Line arithmetic
    "vat_rate_mismatch",
    "line_amount_mismatch",
    # Ingest / enrichment
    "duplicate_line",
    "unknown_barcode",
]

SeverityLevel = Literal["warning", "info"]


class DataQualityWarning(BaseModel):
    """
    A non-fatal, advisory finding surfaced for human review.
    Nothing is rejected or clamped because of it.
    """
    type: str                               # One of WarningType values
    severity: SeverityLevel = "warning"
    description: str                        # Human-readable explanation
    field: Optional[str] = None             # Which field is affected
    barcode: Optional[str] = None           # Line item concerned, if any
    actual_value: Optional[str] = None
    expected_value: Optional[str] = None


class OrderSummary(BaseModel):
    """Order-level reconciliation figures, recomputed from the line items."""
    po_number: str

    # Ordered side
    ordered_excl_vat: float = 0.0
    ordered_vat: float = 0.0
    ordered_total: float = 0.0              # VAT inclusive

    # Invoiced side
    invoiced_total: float = 0.0             # excl VAT
    vat_total: float = 0.0
    grand_total: float = 0.0                # VAT inclusive

    service_level_pct: Optional[float] = None   # None when nothing was ordered
    commission_pct: Optional[float] = None
    commission_amount: Optional[float] = None

    line_count: int = 0
    delivered_line_count: int = 0
    warnings: List[DataQualityWarning] = Field(default_factory=list)


class IngestResult(BaseModel):
    """Outcome of ingesting one LPO document."""
    source: str
    order: PurchaseOrder
    warnings: List[DataQualityWarning] = Field(default_factory=list)

    @property
    def line_count(self) -> int:
        return len(self.order.line_items)


class SyncResult(BaseModel):
    """Outcome of one brand-performance projection run."""
    po_number: str
    invoice_number: str
    rows_written: int = 0
    rows_replaced: int = 0
    webhook: Optional[dict] = None          # status dict from the outbound call, if any


class SaveResult(BaseModel):
    """Outcome of saving invoice details against an LPO."""
    po_number: str
    invoice_number: str
    summary: OrderSummary
    lines_saved: int = 0
    failed_lines: List[str] = Field(default_factory=list)   # barcodes whose patch failed
    sync: Optional[SyncResult] = None
    sync_error: Optional[str] = None

    @property
    def partial(self) -> bool:
        return bool(self.failed_lines)


class UpsertResult(BaseModel):
    """Counts reported by a catalog upsert batch."""
    inserted: int = 0
    updated: int = 0
    skipped: int = 0                        # records without a barcode
    failed: int = 0                         # store errors on individual records
    commission_propagated: int = 0          # records whose commission was overwritten
