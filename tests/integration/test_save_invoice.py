"""
Integration tests for saving invoice details against a stored LPO.
"""
import json
import sqlite3
import urllib.error
from datetime import date

import pytest

from bootstrap import DEFAULTS_DIR, ensure_config_files
from pipeline.errors import OrderNotFoundError, ValidationError

CHIPS = "6291234567890"
JUICE = "6291234567891"


def _lines(test_db, po):
    return {li.barcode: li for li in test_db.list_line_items(po)}


@pytest.mark.integration
class TestSaveInvoiceValidation:

    def test_missing_invoice_number_writes_nothing(self, processor, test_db, ingested_po):
        with pytest.raises(ValidationError) as exc_info:
            processor.engine.save_invoice(
                ingested_po, invoice_number="  ", invoice_date="2026-02-06",
                deliveries={CHIPS: 8},
            )
        assert exc_info.value.fields == ["invoice_number"]

        order = test_db.get_order(ingested_po)
        assert order.invoice_number is None
        assert all(li.quantity_delivered == 0 for li in order.line_items)
        assert [e["action"] for e in test_db.get_audit_log(ingested_po)] == ["ingested"]

    def test_missing_both_fields(self, processor, ingested_po):
        with pytest.raises(ValidationError) as exc_info:
            processor.engine.save_invoice(ingested_po, invoice_number=None, invoice_date=None)
        assert exc_info.value.fields == ["invoice_number", "invoice_date"]

    def test_malformed_invoice_date(self, processor, test_db, ingested_po):
        with pytest.raises(ValidationError) as exc_info:
            processor.engine.save_invoice(ingested_po, "INV-1", "06/02/2026")
        assert exc_info.value.fields == ["invoice_date"]
        assert test_db.get_order(ingested_po).invoice_date is None

    def test_unknown_status(self, processor, ingested_po):
        with pytest.raises(ValidationError):
            processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", status="shipped")

    def test_unknown_po(self, processor):
        with pytest.raises(OrderNotFoundError):
            processor.engine.save_invoice("PO-NOPE", "INV-1", "2026-02-06")


@pytest.mark.integration
class TestSaveInvoice:

    def test_totals_and_commission(self, processor, test_db, ingested_po):
        result = processor.engine.save_invoice(
            ingested_po, "INV-889", "2026-02-06",
            deliveries={CHIPS: 8, JUICE: 24}, commission_pct=10, status="delivered",
        )

        s = result.summary
        assert s.invoiced_total == pytest.approx(186.00)
        assert s.vat_total == pytest.approx(9.30)
        assert s.grand_total == pytest.approx(195.30)
        assert s.commission_amount == pytest.approx(19.53)
        assert s.service_level_pct == pytest.approx(95.38)
        assert result.lines_saved == 2
        assert not result.partial

        order = test_db.get_order(ingested_po)
        assert order.status == "delivered"
        assert order.invoice_number == "INV-889"
        assert order.invoice_date == date(2026, 2, 6)
        assert order.commission_amount == pytest.approx(19.53)

    def test_lines_persist_invoiced_amounts(self, processor, test_db, ingested_po):
        processor.engine.save_invoice(ingested_po, "INV-889", date(2026, 2, 6), {CHIPS: 8})

        chips = _lines(test_db, ingested_po)[CHIPS]
        assert chips.quantity_delivered == 8
        assert chips.amount_invoiced == pytest.approx(36.00)
        assert chips.vat_amount_invoiced == pytest.approx(1.80)
        assert chips.total_incl_vat_invoiced == pytest.approx(37.80)

    def test_undelivered_lines_are_still_saved(self, processor, test_db, ingested_po):
        result = processor.engine.save_invoice(ingested_po, "INV-889", "2026-02-06", {CHIPS: 8})

        juice = _lines(test_db, ingested_po)[JUICE]
        assert result.lines_saved == 2
        assert juice.quantity_delivered == 0
        assert juice.total_incl_vat_invoiced == 0
        # every line carries the invoice identifiers, zero deliveries included
        assert juice.invoice_number == "INV-889"
        assert juice.invoice_date == date(2026, 2, 6)

    def test_unlisted_line_keeps_previous_quantity(self, processor, test_db, ingested_po):
        processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", {CHIPS: 8, JUICE: 20})
        processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", {CHIPS: 10})

        lines = _lines(test_db, ingested_po)
        assert lines[CHIPS].quantity_delivered == 10
        assert lines[JUICE].quantity_delivered == 20

    def test_reapplying_is_idempotent(self, processor, test_db, ingested_po):
        kwargs = dict(deliveries={CHIPS: 8, JUICE: 24}, commission_pct=12)
        first = processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", **kwargs)
        second = processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", **kwargs)

        assert first.summary == second.summary
        assert len(test_db.list_line_items(ingested_po)) == 2

    def test_commission_reused_when_not_given(self, processor, test_db, ingested_po):
        processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", {CHIPS: 10}, commission_pct=12)
        result = processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", {JUICE: 24})

        assert result.summary.commission_pct == 12
        assert result.summary.commission_amount == pytest.approx(24.57)

    def test_no_commission(self, processor, ingested_po):
        result = processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", {CHIPS: 10})
        assert result.summary.commission_amount is None

    def test_over_delivery_is_kept_and_flagged(self, processor, test_db, ingested_po):
        result = processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", {CHIPS: 12})

        assert _lines(test_db, ingested_po)[CHIPS].quantity_delivered == 12
        assert [w.barcode for w in result.summary.warnings if w.type == "over_delivery"] == [CHIPS]

    def test_unknown_barcode_in_deliveries(self, processor, ingested_po):
        result = processor.engine.save_invoice(
            ingested_po, "INV-1", "2026-02-06", {CHIPS: 10, "999": 5},
        )
        assert [w.barcode for w in result.summary.warnings if w.type == "unknown_barcode"] == ["999"]
        assert result.lines_saved == 2

    def test_header_overrides(self, processor, test_db, ingested_po):
        processor.engine.save_invoice(
            ingested_po, "INV-1", "2026-02-06",
            customer="Noon", delivery_date="2026-02-07",
        )
        order = test_db.get_order(ingested_po)
        assert order.customer == "Noon"
        assert order.delivery_date == date(2026, 2, 7)
        assert order.status == "pending"

    def test_save_is_audited(self, processor, test_db, ingested_po):
        processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", {CHIPS: 10}, actor="cli")

        entry = test_db.get_audit_log(ingested_po)[-1]
        assert entry["action"] == "invoice_saved"
        assert entry["actor"] == "cli"
        assert json.loads(entry["detail"])["lines_saved"] == 2

    def test_summarize_stored_order(self, processor, ingested_po):
        processor.engine.save_invoice(ingested_po, "INV-1", "2026-02-06", {CHIPS: 10}, commission_pct=20)

        summary = processor.engine.summarize(ingested_po)
        assert summary.grand_total == pytest.approx(47.25)
        assert summary.commission_amount == pytest.approx(9.45)
        assert summary.delivered_line_count == 1

    def test_summarize_unknown_po(self, processor):
        with pytest.raises(OrderNotFoundError):
            processor.engine.summarize("PO-NOPE")

    def test_line_store_failure_does_not_abort_save(self, processor, test_db, ingested_po, monkeypatch):
        juice_id = _lines(test_db, ingested_po)[JUICE].id
        real_patch = test_db.patch_line_item

        def flaky_patch(item_id, fields):
            if item_id == juice_id:
                raise sqlite3.OperationalError("database is locked")
            return real_patch(item_id, fields)

        monkeypatch.setattr(test_db, "patch_line_item", flaky_patch)
        result = processor.engine.save_invoice(
            ingested_po, "INV-1", "2026-02-06", {CHIPS: 10, JUICE: 24},
        )

        assert result.partial
        assert result.failed_lines == [JUICE]
        assert result.lines_saved == 1
        lines = _lines(test_db, ingested_po)
        assert lines[CHIPS].quantity_delivered == 10
        assert lines[CHIPS].invoice_number == "INV-1"
        assert lines[JUICE].quantity_delivered == 0
        assert json.loads(test_db.get_audit_log(ingested_po)[-1]["detail"])["failed_lines"] == [JUICE]


@pytest.mark.integration
class TestSaveInvoiceWithSync:

    def test_sync_writes_projection(self, processor, test_db, ingested_po):
        result = processor.engine.save_invoice(
            ingested_po, "INV-1", "2026-02-06", {CHIPS: 10, JUICE: 20}, sync=True,
        )

        assert result.sync.rows_written == 2
        assert result.sync_error is None
        assert len(test_db.list_brand_performance(po_number=ingested_po)) == 2

    def test_sync_failure_does_not_undo_save(self, processor, test_db, test_config, ingested_po, monkeypatch):
        def refuse(req, timeout=None):
            raise urllib.error.URLError("connection refused")

        ensure_config_files(test_config.config_dir, DEFAULTS_DIR)
        test_config.brand_sync_url = "http://brand-sync.invalid/rows"
        monkeypatch.setattr("urllib.request.urlopen", refuse)

        result = processor.engine.save_invoice(
            ingested_po, "INV-1", "2026-02-06", {CHIPS: 10}, sync=True,
        )

        assert result.sync is None
        assert "connection refused" in result.sync_error
        assert test_db.get_order(ingested_po).invoice_number == "INV-1"
        # local rows are written before the outbound call
        assert len(test_db.list_brand_performance(po_number=ingested_po)) == 2
