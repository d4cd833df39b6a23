from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, computed_field

# VAT is fixed for every LPO in this domain
VAT_RATE = 0.05
VAT_PCT = VAT_RATE * 100

OrderStatus = Literal["pending", "partial", "delivered", "complete"]
ORDER_STATUSES = ("pending", "partial", "delivered", "complete")


def money(value: float) -> float:
    """Round a currency amount to fils (2 dp)."""
    return round(value, 2)


class LineItem(BaseModel):
    """
    A single product line on a purchase order.

    The *_invoiced amounts are derived from quantity_delivered on every read;
    any value passed in for them is ignored.
    """
    id: Optional[int] = None                # store identity, None until persisted
    po_number: Optional[str] = None
    barcode: str
    product_name: str
    brand: Optional[str] = None
    client: Optional[str] = None

    # Ordered side (as printed on the LPO)
    quantity_ordered: float
    unit_cost: float
    vat_pct: float = VAT_PCT
    amount_excl_vat: float
    vat_amount: float
    amount_incl_vat: float

    # Delivered / invoiced side
    quantity_delivered: float = 0
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None

    @computed_field
    @property
    def amount_invoiced(self) -> float:
        return money(self.quantity_delivered * self.unit_cost)

    @computed_field
    @property
    def vat_amount_invoiced(self) -> float:
        return money(self.amount_invoiced * VAT_RATE)

    @computed_field
    @property
    def total_incl_vat_invoiced(self) -> float:
        return money(self.amount_invoiced + self.vat_amount_invoiced)


class PurchaseOrder(BaseModel):
    """
    An LPO header plus the line items it exclusively owns.

    Order totals are always the sum of the line items and are never stored.
    """
    po_number: str
    order_date: Optional[date] = None
    delivery_date: Optional[date] = None
    supplier: Optional[str] = None
    delivery_location: Optional[str] = None
    customer: Optional[str] = None
    brand: Optional[str] = None
    client: Optional[str] = None
    status: OrderStatus = "pending"
    notes: Optional[str] = None

    # Set when invoice details are saved
    commission_pct: Optional[float] = None
    commission_amount: Optional[float] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None

    line_items: List[LineItem] = Field(default_factory=list)

    @computed_field
    @property
    def total_excl_vat(self) -> float:
        return money(sum(li.amount_excl_vat for li in self.line_items))

    @computed_field
    @property
    def total_vat(self) -> float:
        return money(sum(li.vat_amount for li in self.line_items))

    @computed_field
    @property
    def total_incl_vat(self) -> float:
        return money(sum(li.amount_incl_vat for li in self.line_items))
