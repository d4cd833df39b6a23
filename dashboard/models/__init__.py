"""
Pydantic models for dashboard API requests.
"""
from pydantic import BaseModel, Field
from typing import Any, Optional


class InvoiceSave(BaseModel):
    invoice_number: str = ""
    invoice_date: Optional[str] = None          # YYYY-MM-DD
    deliveries: dict[str, float] = Field(default_factory=dict)   # barcode -> qty delivered
    commission_pct: Optional[float] = None
    status: Optional[str] = None                # pending | partial | delivered | complete
    customer: Optional[str] = None
    delivery_date: Optional[str] = None
    sync: bool = False


class SkuBulkRequest(BaseModel):
    rows: list[dict[str, Any]]                  # header-keyed spreadsheet rows
