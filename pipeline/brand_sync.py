"""
Brand performance projection.

Each saved invoice is projected into one brand_performance row per line item
(ordered vs invoiced value, gap, service level, commission).  All rows for
a po_number are replaced as a set, so replaying a sync, or re-syncing after
the invoice number was corrected, never double-counts.

When BRAND_SYNC_URL is configured the same rows are also pushed to an external
system via a templated JSON payload, carrying an Idempotency-Key header of
"<po_number>:<invoice_number>".
"""
import json
import logging
import sqlite3
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from jinja2 import FileSystemLoader, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

from config import Config
from models.purchase_order import PurchaseOrder, money
from models.result import SyncResult
from .database import Database
from .errors import OrderNotFoundError, SyncError, ValidationError

logger = logging.getLogger(__name__)


def build_rows(order: PurchaseOrder, match_tolerance_qty: float = 2) -> list[Dict[str, Any]]:
    """Project every line item of an invoiced order into a brand performance row."""
    period = order.delivery_date or order.order_date or order.invoice_date
    pct = order.commission_pct
    rows = []
    for li in order.line_items:
        gap = li.quantity_ordered - li.quantity_delivered
        rows.append({
            "invoice_date": order.invoice_date,
            "year": period.year if period else None,
            "month": period.month if period else None,
            "po_date": order.order_date,
            "customer": order.customer,
            "brand": li.brand or order.brand,
            "client": li.client or order.client,
            "barcode": li.barcode,
            "product_name": li.product_name,
            "quantity_ordered": li.quantity_ordered,
            "quantity_delivered": li.quantity_delivered,
            "unit_cost": li.unit_cost,
            "lpo_value_excl_vat": li.amount_excl_vat,
            "lpo_value_incl_vat": li.amount_incl_vat,
            "invoiced_value_excl_vat": li.amount_invoiced,
            "invoiced_value_incl_vat": li.total_incl_vat_invoiced,
            "vat_amount_invoiced": li.vat_amount_invoiced,
            "gap_qty": gap,
            "service_level_pct": (
                money(li.quantity_delivered / li.quantity_ordered * 100)
                if li.quantity_ordered else None
            ),
            "commission_pct": pct,
            "commission_aed": (
                money(li.total_incl_vat_invoiced * pct / 100) if pct is not None else None
            ),
            "match_status": "MATCHED" if abs(gap) <= match_tolerance_qty else "DISCREPANCY",
        })
    return rows


class BrandPerformanceSync:
    """
    Writes the brand performance projection for one invoiced LPO and,
    optionally, sends it to a configured URL.
    """

    def __init__(self, config: Config, db: Database) -> None:
        self.config = config
        self.db = db
        self.jinja_env = SandboxedEnvironment(
            loader=FileSystemLoader(str(config.config_dir)),
            autoescape=select_autoescape(['json', 'xml']),
            keep_trailing_newline=True
        )

    def sync(self, po_number: str, actor: str = "system") -> SyncResult:
        """
        Raises:
            OrderNotFoundError:  no such PO.
            ValidationError:     the order has no saved invoice yet.
            SyncError:           the projection could not be written, or the
                                 outbound call failed (local rows are already
                                 written in that case; retrying is safe).
        """
        order = self.db.get_order(po_number)
        if order is None:
            raise OrderNotFoundError(po_number)
        if not order.invoice_number:
            raise ValidationError(
                f"LPO {po_number!r} has no saved invoice to sync", ["invoice_number"]
            )

        rows = build_rows(order, self.config.match_tolerance_qty)
        try:
            replaced = self.db.replace_brand_performance(po_number, order.invoice_number, rows)
        except sqlite3.Error as exc:
            raise SyncError(f"Could not write brand performance for {po_number}: {exc}") from exc

        webhook = self.send(order, rows)
        self.db.log_audit(
            po_number, "brand_synced", actor=actor,
            detail={
                "invoice_number": order.invoice_number,
                "rows_written": len(rows),
                "rows_replaced": replaced,
                "webhook": webhook,
            },
        )
        logger.info(
            "Brand sync %s/%s: %d row(s) written, %d replaced",
            po_number, order.invoice_number, len(rows), replaced,
        )
        if webhook.get("status") == "failed":
            raise SyncError(
                f"Brand sync webhook failed for {po_number}: "
                f"{webhook.get('error') or webhook.get('status_code')}"
            )
        return SyncResult(
            po_number=po_number,
            invoice_number=order.invoice_number,
            rows_written=len(rows),
            rows_replaced=replaced,
            webhook=webhook,
        )

    # ------------------------------------------------------------------
    # Outbound webhook
    # ------------------------------------------------------------------

    def render_payload(self, order: PurchaseOrder, rows: list[Dict[str, Any]]) -> str:
        """Render the outbound payload using the configured Jinja2 template."""
        template_name = self.config.brand_sync_template
        try:
            template = self.jinja_env.get_template(template_name)
        except Exception as e:
            logger.error("Brand sync template not found: %s (%s)", template_name, e)
            raise ValueError(
                f"Brand sync template '{template_name}' not found in {self.config.config_dir}"
            ) from e

        context = {
            "po_number": order.po_number,
            "invoice_number": order.invoice_number,
            "invoice_date": order.invoice_date.isoformat() if order.invoice_date else None,
            "customer": order.customer,
            "line_items": json.loads(json.dumps(rows, default=str)),
        }
        return template.render(**context)

    def send(self, order: PurchaseOrder, rows: list[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Push the projection to BRAND_SYNC_URL.

        Returns a dict describing the result (status, status_code, response)
        suitable for storing in the audit log.
        """
        url = self.config.brand_sync_url
        if not url:
            return {"status": "skipped", "reason": "BRAND_SYNC_URL not configured"}

        try:
            payload_data = self.render_payload(order, rows).encode('utf-8')
        except Exception as e:
            logger.error("Failed to render brand sync payload for %s: %s", order.po_number, e)
            return {"status": "failed", "error": f"Template rendering failed: {str(e)}"}

        req = urllib.request.Request(
            url,
            data=payload_data,
            method=self.config.brand_sync_method.upper()
        )
        req.add_header('Content-Type', 'application/json; charset=utf-8')
        req.add_header('User-Agent', 'LPO-Reconciliation-Brand-Sync/1.0')
        req.add_header('Idempotency-Key', idempotency_key(order.po_number, order.invoice_number))

        for k, v in self._custom_headers().items():
            req.add_header(k, str(v))

        try:
            with urllib.request.urlopen(req, timeout=self.config.brand_sync_timeout) as response:
                status_code = response.getcode()
                resp_body = response.read().decode('utf-8', errors='replace')
                logger.info("Brand sync sent for %s: HTTP %d", order.po_number, status_code)
                return {
                    "status": "success",
                    "status_code": status_code,
                    "response_summary": resp_body[:200]
                }
        except urllib.error.HTTPError as e:
            resp_body = e.read().decode('utf-8', errors='replace') if e.fp else str(e)
            logger.error("Brand sync failed for %s: HTTP %d - %s", order.po_number, e.code, resp_body)
            return {
                "status": "failed",
                "status_code": e.code,
                "error": resp_body[:500]
            }
        except (urllib.error.URLError, OSError) as e:
            logger.error("Brand sync error for %s: %s", order.po_number, e)
            return {
                "status": "failed",
                "error": str(e)
            }

    def _custom_headers(self) -> Dict[str, Any]:
        if not self.config.brand_sync_headers_json:
            return {}
        try:
            headers = json.loads(self.config.brand_sync_headers_json)
        except ValueError as e:
            logger.warning("Failed to parse BRAND_SYNC_HEADERS: %s", e)
            return {}
        return headers if isinstance(headers, dict) else {}


def idempotency_key(po_number: str, invoice_number: Optional[str]) -> str:
    return f"{po_number}:{invoice_number}"
