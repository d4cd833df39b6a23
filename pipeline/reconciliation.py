"""
Reconciliation engine: ordered vs delivered vs invoiced.

The arithmetic helpers at the top are pure.  ReconciliationEngine wraps
them with the invoice-save protocol against the store:

  1. validate invoice number / date / status   (ValidationError, no writes)
  2. load the order                            (OrderNotFoundError, no writes)
  3. patch the order header, including the commission amount
  4. patch EVERY line item, zero deliveries included
  5. optionally run the brand-performance sync as a separate step

Steps 3-4 are individual store writes.  Each is a plain overwrite keyed by
po_number or line id, so a failed save is retried by re-issuing the whole
call.
"""
import logging
import sqlite3
from datetime import date
from typing import Mapping, Optional, Union

from config import Config
from models.purchase_order import (
    LineItem, PurchaseOrder, ORDER_STATUSES, VAT_PCT, money,
)
from models.result import DataQualityWarning, OrderSummary, SaveResult
from .brand_sync import BrandPerformanceSync
from .database import Database
from .errors import LpoError, OrderNotFoundError, ValidationError

logger = logging.getLogger(__name__)

_INVOICE_LINE_FIELDS = (
    "quantity_delivered", "amount_invoiced", "vat_amount_invoiced",
    "total_incl_vat_invoiced", "invoice_number", "invoice_date",
)


# ---------------------------------------------------------------------------
# Pure arithmetic
# ---------------------------------------------------------------------------

def apply_delivery(
    item: LineItem,
    quantity_delivered: float,
    invoice_number: Optional[str] = None,
    invoice_date: Optional[date] = None,
) -> LineItem:
    """
    Return a copy of item with quantity_delivered set and the invoiced
    amounts recomputed from it.  Out-of-range quantities are not rejected;
    see check_line_quality().
    """
    update: dict = {"quantity_delivered": quantity_delivered}
    if invoice_number is not None:
        update["invoice_number"] = invoice_number
    if invoice_date is not None:
        update["invoice_date"] = invoice_date
    return item.model_copy(update=update)


def service_level(invoiced_total: float, ordered_total: float) -> Optional[float]:
    """Invoiced / ordered as a percentage, or None when nothing was ordered."""
    if not ordered_total:
        return None
    return money(invoiced_total / ordered_total * 100)


def commission_amount(grand_total: float, commission_pct: Optional[float]) -> Optional[float]:
    if commission_pct is None:
        return None
    return money(grand_total * commission_pct / 100)


def check_line_quality(item: LineItem, amount_tolerance: float = 0.05) -> list[DataQualityWarning]:
    """Advisory findings for one line.  Nothing is clamped or rejected."""
    warnings: list[DataQualityWarning] = []

    if item.quantity_delivered > item.quantity_ordered:
        warnings.append(DataQualityWarning(
            type="over_delivery",
            description=(
                f"{item.barcode}: delivered {item.quantity_delivered:g} exceeds "
                f"ordered {item.quantity_ordered:g}"
            ),
            field="quantity_delivered",
            barcode=item.barcode,
            actual_value=f"{item.quantity_delivered:g}",
            expected_value=f"<= {item.quantity_ordered:g}",
        ))
    elif item.quantity_delivered < 0:
        warnings.append(DataQualityWarning(
            type="negative_delivery",
            description=f"{item.barcode}: delivered quantity is negative",
            field="quantity_delivered",
            barcode=item.barcode,
            actual_value=f"{item.quantity_delivered:g}",
            expected_value=">= 0",
        ))

    if abs(item.vat_pct - VAT_PCT) > 0.001:
        warnings.append(DataQualityWarning(
            type="vat_rate_mismatch",
            description=f"{item.barcode}: VAT {item.vat_pct:g}% differs from {VAT_PCT:g}%",
            field="vat_pct",
            barcode=item.barcode,
            actual_value=f"{item.vat_pct:g}",
            expected_value=f"{VAT_PCT:g}",
        ))

    expected = money(item.quantity_ordered * item.unit_cost)
    if abs(expected - item.amount_excl_vat) > amount_tolerance:
        warnings.append(DataQualityWarning(
            type="line_amount_mismatch",
            severity="info",
            description=(
                f"{item.barcode}: printed amount {item.amount_excl_vat:.2f} != "
                f"qty x unit cost {expected:.2f}"
            ),
            field="amount_excl_vat",
            barcode=item.barcode,
            actual_value=f"{item.amount_excl_vat:.2f}",
            expected_value=f"{expected:.2f}",
        ))
    return warnings


def summarize_order(order: PurchaseOrder, amount_tolerance: float = 0.05) -> OrderSummary:
    """Recompute every order-level figure from the line items."""
    lines = order.line_items
    invoiced = money(sum(li.amount_invoiced for li in lines))
    vat = money(sum(li.vat_amount_invoiced for li in lines))
    grand = money(sum(li.total_incl_vat_invoiced for li in lines))

    # The persisted amount wins so historical commission stays stable
    commission = order.commission_amount
    if commission is None:
        commission = commission_amount(grand, order.commission_pct)

    warnings: list[DataQualityWarning] = []
    for li in lines:
        warnings.extend(check_line_quality(li, amount_tolerance))

    return OrderSummary(
        po_number=order.po_number,
        ordered_excl_vat=order.total_excl_vat,
        ordered_vat=order.total_vat,
        ordered_total=order.total_incl_vat,
        invoiced_total=invoiced,
        vat_total=vat,
        grand_total=grand,
        service_level_pct=service_level(grand, order.total_incl_vat),
        commission_pct=order.commission_pct,
        commission_amount=commission,
        line_count=len(lines),
        delivered_line_count=sum(1 for li in lines if li.quantity_delivered > 0),
        warnings=warnings,
    )


# ---------------------------------------------------------------------------
# Save protocol
# ---------------------------------------------------------------------------

def _as_date(value: Union[date, str, None], field: str) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD), got {text!r}", [field])


class ReconciliationEngine:
    """Saves invoice details against a stored LPO."""

    def __init__(self, config: Config, db: Database, brand_sync: Optional[BrandPerformanceSync] = None):
        self.config = config
        self.db = db
        self.brand_sync = brand_sync or BrandPerformanceSync(config, db)

    def save_invoice(
        self,
        po_number: str,
        invoice_number: Optional[str],
        invoice_date: Union[date, str, None],
        deliveries: Optional[Mapping[str, float]] = None,
        commission_pct: Optional[float] = None,
        status: Optional[str] = None,
        customer: Optional[str] = None,
        delivery_date: Union[date, str, None] = None,
        sync: bool = False,
        actor: str = "system",
    ) -> SaveResult:
        """
        Record delivered quantities and invoice identifiers for one LPO.

        Args:
            deliveries:      barcode -> delivered quantity.  Lines not listed
                             keep their current delivered quantity.
            commission_pct:  Client commission; the existing percentage is
                             reused when None.
            status:          New order status; unchanged when None.
            sync:            Run the brand-performance sync after saving.

        Raises:
            ValidationError:     invoice number/date missing or malformed,
                                 or unknown status.  Nothing is written.
            OrderNotFoundError:  no such PO.  Nothing is written.
        """
        invoice_number = (invoice_number or "").strip()
        missing = []
        if not invoice_number:
            missing.append("invoice_number")
        inv_date = _as_date(invoice_date, "invoice_date")
        if inv_date is None:
            missing.append("invoice_date")
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}", missing)
        if status is not None and status not in ORDER_STATUSES:
            raise ValidationError(
                f"status must be one of {', '.join(ORDER_STATUSES)}, got {status!r}", ["status"]
            )
        dlv_date = _as_date(delivery_date, "delivery_date")

        order = self.db.get_order(po_number)
        if order is None:
            raise OrderNotFoundError(po_number)

        deliveries = dict(deliveries or {})
        known = {li.barcode for li in order.line_items}
        extra_warnings = [
            DataQualityWarning(
                type="unknown_barcode",
                description=f"{barcode}: not a line on LPO {po_number}; ignored",
                barcode=barcode,
            )
            for barcode in deliveries if barcode not in known
        ]

        updated_lines = [
            apply_delivery(
                li,
                deliveries.get(li.barcode, li.quantity_delivered),
                invoice_number=invoice_number,
                invoice_date=inv_date,
            )
            for li in order.line_items
        ]

        pct = commission_pct if commission_pct is not None else order.commission_pct
        grand = money(sum(li.total_incl_vat_invoiced for li in updated_lines))
        header = {
            "status": status or order.status,
            "commission_pct": pct,
            "commission_amount": commission_amount(grand, pct),
            "invoice_number": invoice_number,
            "invoice_date": inv_date,
        }
        if customer:
            header["customer"] = customer
        if dlv_date is not None:
            header["delivery_date"] = dlv_date

        self.db.patch_order(po_number, header)

        lines_saved = 0
        failed: list[str] = []
        for li in updated_lines:
            try:
                ok = self.db.patch_line_item(
                    li.id, {f: getattr(li, f) for f in _INVOICE_LINE_FIELDS}
                )
            except sqlite3.Error as exc:
                logger.error("Failed to save line %s on %s: %s", li.barcode, po_number, exc)
                ok = False
            if ok:
                lines_saved += 1
            else:
                failed.append(li.barcode)

        saved = order.model_copy(update={**header, "line_items": updated_lines})
        summary = summarize_order(saved, self.config.line_amount_tolerance)
        summary.warnings = extra_warnings + summary.warnings
        for w in summary.warnings:
            logger.warning("[%s] %s", po_number, w.description)

        self.db.log_audit(
            po_number, "invoice_saved", actor=actor,
            detail={
                "invoice_number": invoice_number,
                "invoice_date": inv_date.isoformat(),
                "grand_total": summary.grand_total,
                "commission_amount": summary.commission_amount,
                "lines_saved": lines_saved,
                "failed_lines": failed,
            },
        )
        logger.info(
            "Saved invoice %s for %s: %d/%d line(s), grand total %.2f",
            invoice_number, po_number, lines_saved, len(updated_lines), summary.grand_total,
        )

        result = SaveResult(
            po_number=po_number,
            invoice_number=invoice_number,
            summary=summary,
            lines_saved=lines_saved,
            failed_lines=failed,
        )
        if sync:
            try:
                result.sync = self.brand_sync.sync(po_number, actor=actor)
            except LpoError as exc:
                logger.error("Brand sync failed for %s: %s", po_number, exc)
                result.sync_error = str(exc)
        return result

    def summarize(self, po_number: str) -> OrderSummary:
        order = self.db.get_order(po_number)
        if order is None:
            raise OrderNotFoundError(po_number)
        return summarize_order(order, self.config.line_amount_tolerance)
