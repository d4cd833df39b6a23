"""
Integration tests for LPO ingest and SKU sheet import through LpoProcessor.
"""
import pytest

from models.sku import SkuRecord
from pipeline.errors import DuplicateKeyError, ExtractionError
from pipeline.processor import barcode_variants


@pytest.mark.integration
class TestIngest:

    def test_ingest_text_persists_order_and_lines(self, processor, test_db, sample_lpo_text):
        result = processor.ingest_text(sample_lpo_text, source="sample.txt")

        stored = test_db.get_order("PO-458812")
        assert stored is not None
        assert stored.status == "pending"
        assert stored.delivery_location == "UAE_DXB_3PL_WH01"
        assert len(stored.line_items) == 2
        assert all(li.quantity_delivered == 0 for li in stored.line_items)
        assert all(li.po_number == "PO-458812" for li in stored.line_items)
        assert stored.total_incl_vat == pytest.approx(204.75)
        assert [li.id for li in result.order.line_items] == [li.id for li in stored.line_items]

    def test_ingest_is_audited(self, processor, test_db, ingested_po):
        [entry] = test_db.get_audit_log(ingested_po)
        assert entry["action"] == "ingested"

    def test_duplicate_po_writes_nothing(self, processor, test_db, sample_lpo_text, ingested_po):
        with pytest.raises(DuplicateKeyError):
            processor.ingest_text(sample_lpo_text.replace("Orange Juice 1L", "Apple Juice 1L"))

        order = test_db.get_order(ingested_po)
        assert [li.product_name for li in order.line_items][1] == "Orange Juice 1L"
        assert len(test_db.get_audit_log(ingested_po)) == 1

    def test_extraction_error_writes_nothing(self, processor, test_db):
        with pytest.raises(ExtractionError):
            processor.ingest_text("   ")
        assert test_db.list_orders() == []

    def test_enrichment_from_catalog(self, processor, test_db, sample_lpo_text):
        test_db.insert_sku(SkuRecord(barcode="6291234567890", brand="Crispy", client="Acme Foods"))
        # the catalog keeps a leading zero the LPO drops
        test_db.insert_sku(SkuRecord(barcode="06291234567891", brand="Sunny", client="Acme Foods"))

        result = processor.ingest_text(sample_lpo_text)
        chips, juice = result.order.line_items

        assert (chips.brand, chips.client) == ("Crispy", "Acme Foods")
        assert juice.brand == "Sunny"
        assert result.order.client == "Acme Foods"
        assert result.order.brand is None
        assert not [w for w in result.warnings if w.type == "unknown_barcode"]

    def test_unknown_barcodes_reported(self, processor, sample_lpo_text):
        result = processor.ingest_text(sample_lpo_text)
        unknown = [w.barcode for w in result.warnings if w.type == "unknown_barcode"]
        assert unknown == ["6291234567890", "6291234567891"]

    def test_data_quality_warnings(self, processor):
        text = (
            "Purchase Order: PO-DQ\n"
            "1 6291234567890 Chips 150g 10 4.50 45.00 10% 4.50 49.50\n"
            "2 6291234567891 Juice 1L 2 6.25 13.00 5% 0.65 13.65\n"
        )
        result = processor.ingest_text(text)
        types = {(w.type, w.barcode) for w in result.warnings}
        assert ("vat_rate_mismatch", "6291234567890") in types
        assert ("line_amount_mismatch", "6291234567891") in types

    def test_repeated_barcode_kept_once(self, processor, test_db):
        text = (
            "Purchase Order: PO-DUP\n"
            "1 6291234567890 Chips 150g 10 4.50 45.00 5% 2.25 47.25\n"
            "2 6291234567890 Chips 150g 5 4.50 22.50 5% 1.13 23.63\n"
        )
        result = processor.ingest_text(text)
        assert len(test_db.list_line_items("PO-DUP")) == 1
        assert any(w.type == "duplicate_line" for w in result.warnings)

    def test_empty_order_is_stored(self, processor, test_db):
        result = processor.ingest_text("Purchase Order: PO-EMPTY\n")
        assert result.line_count == 0
        assert test_db.get_order("PO-EMPTY").line_items == []

    def test_ingest_txt_file(self, processor, temp_dir, sample_lpo_text):
        path = temp_dir / "lpo.txt"
        path.write_text(sample_lpo_text, encoding="utf-8")
        result = processor.ingest_file(path)
        assert result.source == str(path)
        assert result.order.po_number == "PO-458812"

    def test_ingest_directory_skips_failures(self, processor, temp_dir, sample_lpo_text):
        inbox = temp_dir / "inbox"
        inbox.mkdir()
        (inbox / "a.txt").write_text(sample_lpo_text, encoding="utf-8")
        (inbox / "b.txt").write_text(sample_lpo_text, encoding="utf-8")   # same PO again
        (inbox / "c.txt").write_text("", encoding="utf-8")                 # unparseable
        (inbox / "notes.md").write_text("ignored", encoding="utf-8")

        results = processor.ingest_directory(inbox)
        assert [r.order.po_number for r in results] == ["PO-458812"]

    def test_barcode_variants(self):
        assert barcode_variants("0629123") == ["0629123", "629123"]
        assert barcode_variants("629123") == ["629123", "0629123"]
        assert barcode_variants("00629123") == ["00629123", "629123", "0629123"]


@pytest.mark.integration
class TestImportSkuFile:

    def test_import_csv(self, processor, test_db, sample_sku_csv):
        result = processor.import_sku_file(sample_sku_csv)

        assert result.inserted == 3
        chips = test_db.get_sku("6291234567890")
        assert chips.sku_name == "Crispy Potato Chips Salted 150g"
        assert chips.case_pack == 12
        assert chips.ingredients_info == "Yes"
        # 0.12 in the sheet is a fraction; propagated to the whole client
        assert chips.mantaga_commission_pct == 12
        assert test_db.get_sku("6291234567891").mantaga_commission_pct == 12
        assert test_db.get_sku("6291234567892").mantaga_commission_pct is None

    def test_reimport_fills_only(self, processor, test_db, sample_sku_csv, temp_dir):
        processor.import_sku_file(sample_sku_csv)
        update = temp_dir / "update.csv"
        update.write_text(
            "Barcode,Brand,Category,Shelf Life\n"
            "6291234567892,Renamed,Beverages,12 months\n",
            encoding="utf-8",
        )
        result = processor.import_sku_file(update)

        bolt = test_db.get_sku("6291234567892")
        assert bolt.brand == "Bolt"
        assert bolt.category == "Beverages"
        assert bolt.shelf_life == "12 months"
        assert (result.inserted, result.updated) == (0, 1)
