"""
Main pipeline orchestrator.

LpoProcessor ties together document reading, extraction, catalog enrichment
and persistence, and owns the Catalog and ReconciliationEngine instances the
CLI and dashboard call into.

Ingest flow for one LPO document:
  1. PdfTextReader      -- PDF (or .txt export) -> plain text
  2. LpoExtractor       -- text -> PurchaseOrder with LineItems
  3. duplicate check    -- an existing po_number aborts before any write
  4. enrichment         -- brand / client copied from the master catalog by
                           barcode (exact, then leading-zero variants)
  5. data-quality check -- VAT rate and printed amount per line (advisory)
  6. persist            -- header with status "pending", then every line with
                           quantity_delivered 0

SKU import flow: CSV/XLSX -> load_rows -> SkuTableExtractor -> Catalog.upsert
"""
import logging
from pathlib import Path
from typing import Any, Optional

from config import Config
from models.purchase_order import LineItem, PurchaseOrder
from models.result import DataQualityWarning, IngestResult, UpsertResult
from models.sku import SkuRecord
from .brand_sync import BrandPerformanceSync
from .catalog import Catalog
from .database import Database
from .errors import DuplicateKeyError, LpoError
from .extractor import LpoExtractor, PdfTextReader, SkuTableExtractor
from .reconciliation import ReconciliationEngine, check_line_quality
from .spreadsheet import load_rows

logger = logging.getLogger(__name__)


def barcode_variants(barcode: str) -> list[str]:
    """Exact code first, then without leading zeros, then with a single one."""
    stripped = barcode.lstrip("0")
    variants = [barcode]
    for candidate in (stripped, "0" + stripped):
        if candidate and candidate not in variants:
            variants.append(candidate)
    return variants


class LpoProcessor:
    """
    Orchestrates LPO ingest and SKU imports against one store.

    Build one per process from a Config; every component receives the same
    Config and Database instances.
    """

    def __init__(self, config: Optional[Config] = None, db: Optional[Database] = None):
        self.config = config or Config()
        self.config.ensure_output_dir()

        self.db = db or Database(self.config.db_path)
        self.reader = PdfTextReader()
        self.extractor = LpoExtractor(self.config)
        self.sku_extractor = SkuTableExtractor(self.config)
        self.catalog = Catalog(self.config, self.db)
        self.brand_sync = BrandPerformanceSync(self.config, self.db)
        self.engine = ReconciliationEngine(self.config, self.db, self.brand_sync)

    # ------------------------------------------------------------------
    # LPO ingest
    # ------------------------------------------------------------------

    def ingest_file(self, path: str | Path, actor: str = "system") -> IngestResult:
        """Read, extract and store one LPO document."""
        path = Path(path)
        logger.info("=== Ingesting: %s ===", path.name)
        text = self.reader.read(path)
        return self.ingest_text(text, source=str(path), actor=actor)

    def ingest_text(self, raw_text: str, source: str = "<text>", actor: str = "system") -> IngestResult:
        """
        Raises:
            ExtractionError:    the text is not parseable at all.
            DuplicateKeyError:  the PO number is already stored.  Nothing is written.
        """
        order = self.extractor.extract(raw_text)
        if self.db.order_exists(order.po_number):
            raise DuplicateKeyError("PO number", order.po_number)

        warnings: list[DataQualityWarning] = []
        lines = self._dedupe_lines(order.line_items, warnings)
        lines = [self._enrich(li, warnings) for li in lines]
        for li in lines:
            warnings.extend(check_line_quality(li, self.config.line_amount_tolerance))

        order = order.model_copy(update={
            "status": "pending",
            "brand": _single(li.brand for li in lines),
            "client": _single(li.client for li in lines),
            "line_items": [
                li.model_copy(update={"po_number": order.po_number}) for li in lines
            ],
        })
        if not order.line_items:
            logger.warning("LPO %s has no line items; stored for manual review", order.po_number)

        self.db.insert_order(order, source_file=source)
        stored = [
            li.model_copy(update={"id": self.db.insert_line_item(li)})
            for li in order.line_items
        ]
        order = order.model_copy(update={"line_items": stored})

        for w in warnings:
            logger.warning("[%s] %s", order.po_number, w.description)
        self.db.log_audit(
            order.po_number, "ingested", actor=actor,
            detail={
                "source": source,
                "line_items": len(stored),
                "total_incl_vat": order.total_incl_vat,
                "warnings": len(warnings),
            },
        )
        logger.info(
            "Stored LPO %s: %d line item(s), %.2f incl VAT, %d warning(s)",
            order.po_number, len(stored), order.total_incl_vat, len(warnings),
        )
        return IngestResult(source=source, order=order, warnings=warnings)

    def ingest_directory(self, directory: str | Path) -> list[IngestResult]:
        """
        Ingest every PDF / .txt document in a directory (one-shot batch).
        Failures are logged and skipped; already-stored POs are skipped.
        """
        directory = Path(directory)
        docs = sorted(
            p for p in directory.iterdir()
            if p.is_file() and p.suffix.lower() in PdfTextReader.SUPPORTED_SUFFIXES
        )
        if not docs:
            logger.warning("No LPO documents found in %s", directory)
            return []

        logger.info("Batch ingesting %d document(s) from %s", len(docs), directory)
        results = []
        for i, doc in enumerate(docs, 1):
            logger.info("[%d/%d] %s", i, len(docs), doc.name)
            try:
                results.append(self.ingest_file(doc))
            except DuplicateKeyError as e:
                logger.info("Skipping %s: %s", doc.name, e)
            except (LpoError, OSError) as e:
                logger.error("Failed to ingest %s: %s", doc.name, e, exc_info=True)

        logger.info(
            "Batch complete: %d ingested, %d skipped or failed",
            len(results), len(docs) - len(results),
        )
        return results

    def _dedupe_lines(self, lines: list[LineItem], warnings: list[DataQualityWarning]) -> list[LineItem]:
        seen: set[str] = set()
        kept = []
        for li in lines:
            if li.barcode in seen:
                warnings.append(DataQualityWarning(
                    type="duplicate_line",
                    description=f"{li.barcode}: repeated on the LPO; only the first line is kept",
                    barcode=li.barcode,
                ))
                continue
            seen.add(li.barcode)
            kept.append(li)
        return kept

    def _enrich(self, item: LineItem, warnings: list[DataQualityWarning]) -> LineItem:
        sku = self.find_sku(item.barcode)
        if sku is None:
            warnings.append(DataQualityWarning(
                type="unknown_barcode",
                severity="info",
                description=f"{item.barcode}: not in the master SKU catalog",
                barcode=item.barcode,
            ))
            return item
        return item.model_copy(update={
            "brand": item.brand or sku.brand,
            "client": item.client or sku.client,
        })

    def find_sku(self, barcode: str) -> Optional[SkuRecord]:
        for candidate in barcode_variants(barcode):
            sku = self.db.get_sku(candidate)
            if sku is not None:
                return sku
        return None

    # ------------------------------------------------------------------
    # SKU master data
    # ------------------------------------------------------------------

    def import_sku_file(self, path: str | Path, actor: str = "system") -> UpsertResult:
        """Load a CSV / XLSX catalog sheet and upsert every row with a barcode."""
        path = Path(path)
        logger.info("=== Importing SKUs: %s ===", path.name)
        return self.import_sku_rows(load_rows(path), actor=actor)

    def import_sku_rows(self, rows: list[dict[str, Any]], actor: str = "system") -> UpsertResult:
        records = self.sku_extractor.extract_from_rows(rows)
        return self.catalog.upsert(records, actor=actor)

    # ------------------------------------------------------------------

    def get_order(self, po_number: str) -> Optional[PurchaseOrder]:
        return self.db.get_order(po_number)

    def check_setup(self) -> dict:
        """Verify that storage and config files are in place."""
        status = {}
        status["database"] = {
            "path": str(self.config.db_path),
            "exists": self.config.db_path.exists(),
            **self.db.get_stats(),
        }
        status["config_dir"] = {
            "path": str(self.config.config_dir),
            "exists": self.config.config_dir.exists(),
        }
        synonyms = self.config.config_dir / "header_synonyms.json"
        status["header_synonyms"] = {"path": str(synonyms), "exists": synonyms.exists()}
        template = self.config.config_dir / self.config.brand_sync_template
        status["brand_sync"] = {
            "url": self.config.brand_sync_url or None,
            "template": str(template),
            "template_exists": template.exists(),
        }
        status["inbox_dir"] = {
            "path": str(self.config.inbox_dir),
            "exists": self.config.inbox_dir.exists(),
        }
        return status


def _single(values) -> Optional[str]:
    """The one distinct non-empty value, or None when there are zero or several."""
    distinct = {v for v in values if v}
    return distinct.pop() if len(distinct) == 1 else None
