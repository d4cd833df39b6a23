"""
LPO Reconciliation Dashboard — FastAPI backend.

A thin transport over LpoProcessor: every route builds its answer from the
same pipeline objects the CLI uses, so business rules live in pipeline/ only.

Endpoints
---------
  GET  /api/health                      → liveness check
  GET  /api/stats                       → aggregate counts
  GET  /api/lpos                        → list LPOs (supports ?status= and ?customer=)
  GET  /api/lpos/{po}                   → one LPO with line items + reconciliation summary
  GET  /api/lpos/{po}/audit             → audit trail for one LPO
  POST /api/lpos/upload                 → upload an LPO PDF / .txt and ingest it
  POST /api/lpos/{po}/invoice           → save invoice details (optionally sync)
  POST /api/lpos/{po}/sync              → (re-)run the brand performance sync
  GET  /api/skus                        → catalog with red / amber / ok health
  POST /api/skus                        → add one complete SKU
  POST /api/skus/bulk                   → upsert header-keyed rows (JSON)
  POST /api/skus/import                 → upsert an uploaded CSV / XLSX sheet
  GET  /api/skus/health                 → health class counts
  GET  /api/brand-performance           → projection rows (?po_number= ?year= ?month=)

Pipeline errors map to HTTP status codes:
  ValidationError / ExtractionError → 400, OrderNotFoundError → 404,
  DuplicateKeyError → 409, SyncError → 502
"""
import json
import logging
import re
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from config import Config
from models.sku import SkuRecord, classify
from pipeline.errors import (
    DuplicateKeyError, ExtractionError, LpoError, OrderNotFoundError, SyncError, ValidationError,
)
from pipeline.extractor import PdfTextReader
from pipeline.processor import LpoProcessor
from pipeline.spreadsheet import CSV_SUFFIXES, EXCEL_SUFFIXES
from dashboard.models import InvoiceSave, SkuBulkRequest

logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (ValidationError, 400),
    (ExtractionError, 400),
    (OrderNotFoundError, 404),
    (DuplicateKeyError, 409),
    (SyncError, 502),
)


def _dump(model) -> dict:
    return json.loads(model.model_dump_json())


def _safe_destination(directory: Path, filename: str, default_stem: str) -> Path:
    """Sanitised, non-clobbering path for an uploaded file."""
    raw = Path(filename)
    safe_stem = re.sub(r"[^\w\-.]", "_", raw.stem).strip("_") or default_stem
    suffix = raw.suffix.lower()
    dest = directory / f"{safe_stem}{suffix}"
    counter = 1
    while dest.exists():
        dest = directory / f"{safe_stem}_{counter}{suffix}"
        counter += 1
    return dest


def create_app(config: Optional[Config] = None) -> FastAPI:
    """
    Build the dashboard app.  The processor (and with it the database) is
    opened on first request so startup doesn't fail on a missing volume.
    """
    app = FastAPI(title="LPO Reconciliation Dashboard", docs_url=None, redoc_url=None)
    state: dict = {"processor": None}

    def get_processor() -> LpoProcessor:
        if state["processor"] is None:
            state["processor"] = LpoProcessor(config or Config())
        return state["processor"]

    @app.exception_handler(LpoError)
    async def _lpo_error(request: Request, exc: LpoError):
        status = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500)
        body = {"detail": str(exc)}
        if isinstance(exc, ValidationError) and exc.fields:
            body["fields"] = exc.fields
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content=body)

    # ── Health ───────────────────────────────────────────────────────────────

    @app.get("/api/health")
    def health():
        cfg = get_processor().config
        return {
            "status": "ok",
            "db_path":   str(cfg.db_path),
            "db_exists": cfg.db_path.exists(),
            "inbox_dir": str(cfg.inbox_dir),
        }

    @app.get("/api/stats")
    def stats():
        return get_processor().db.get_stats()

    # ── LPOs ─────────────────────────────────────────────────────────────────

    @app.get("/api/lpos")
    def list_lpos(
        status: Optional[str] = Query(default=None),
        customer: Optional[str] = Query(default=None),
        limit: int = Query(default=500, le=2000),
        offset: int = Query(default=0, ge=0),
    ):
        orders = get_processor().db.list_orders(
            status=status or None,
            customer=customer or None,
            limit=limit,
            offset=offset,
        )
        return [
            {
                "po_number": o.po_number,
                "order_date": o.order_date,
                "delivery_date": o.delivery_date,
                "customer": o.customer,
                "supplier": o.supplier,
                "status": o.status,
                "invoice_number": o.invoice_number,
                "line_count": len(o.line_items),
                "total_incl_vat": o.total_incl_vat,
            }
            for o in orders
        ]

    @app.get("/api/lpos/{po_number}")
    def get_lpo(po_number: str):
        processor = get_processor()
        order = processor.get_order(po_number)
        if order is None:
            raise OrderNotFoundError(po_number)
        return {
            "order": _dump(order),
            "summary": _dump(processor.engine.summarize(po_number)),
        }

    @app.get("/api/lpos/{po_number}/audit")
    def get_lpo_audit(po_number: str):
        return get_processor().db.get_audit_log(po_number)

    @app.post("/api/lpos/upload")
    async def upload_lpo(file: UploadFile = File(...)):
        """
        Save an LPO document to the inbox and ingest it straight away.
        A stored file keeps a sanitised, non-clobbering name; a rejected one is removed.
        """
        processor = get_processor()
        filename = file.filename or ""
        if Path(filename).suffix.lower() not in PdfTextReader.SUPPORTED_SUFFIXES:
            raise HTTPException(400, "Only PDF or .txt LPO documents are accepted")

        contents = await file.read()
        if len(contents) == 0:
            raise HTTPException(400, "Uploaded file is empty")

        inbox = processor.config.inbox_dir
        inbox.mkdir(parents=True, exist_ok=True)
        dest = _safe_destination(inbox, filename, "lpo")
        dest.write_bytes(contents)
        logger.info("LPO uploaded to inbox: %s (%d bytes)", dest, len(contents))

        try:
            result = processor.ingest_file(dest, actor="dashboard")
        except LpoError:
            # rejected uploads stay out of the inbox batch
            dest.unlink(missing_ok=True)
            raise
        return {
            "filename": dest.name,
            "po_number": result.order.po_number,
            "line_count": result.line_count,
            "order": _dump(result.order),
            "warnings": [_dump(w) for w in result.warnings],
        }

    @app.post("/api/lpos/{po_number}/invoice")
    def save_invoice(po_number: str, body: InvoiceSave):
        result = get_processor().engine.save_invoice(
            po_number,
            invoice_number=body.invoice_number,
            invoice_date=body.invoice_date,
            deliveries=body.deliveries,
            commission_pct=body.commission_pct,
            status=body.status,
            customer=body.customer,
            delivery_date=body.delivery_date,
            sync=body.sync,
            actor="dashboard",
        )
        return {**_dump(result), "partial": result.partial}

    @app.post("/api/lpos/{po_number}/sync")
    def sync_lpo(po_number: str):
        return _dump(get_processor().brand_sync.sync(po_number, actor="dashboard"))

    # ── SKU catalog ──────────────────────────────────────────────────────────

    @app.get("/api/skus")
    def list_skus(
        client: Optional[str] = Query(default=None),
        search: Optional[str] = Query(default=None),
        health: Optional[str] = Query(default=None),
    ):
        rows = []
        for record in get_processor().db.list_skus(client=client or None, search=search or None):
            h = classify(record)
            if health and h.health != health:
                continue
            rows.append({**record.model_dump(), "health": h.health, "missing": h.missing})
        return rows

    @app.get("/api/skus/health")
    def sku_health(client: Optional[str] = Query(default=None)):
        return get_processor().catalog.catalog_health(client or None)

    @app.post("/api/skus", status_code=201)
    def add_sku(record: SkuRecord):
        return get_processor().catalog.add(record, actor="dashboard").model_dump()

    @app.post("/api/skus/bulk")
    def bulk_skus(body: SkuBulkRequest):
        return _dump(get_processor().import_sku_rows(body.rows, actor="dashboard"))

    @app.post("/api/skus/import")
    async def import_skus(file: UploadFile = File(...)):
        processor = get_processor()
        filename = file.filename or ""
        if Path(filename).suffix.lower() not in CSV_SUFFIXES + EXCEL_SUFFIXES:
            raise HTTPException(400, "Only .csv or .xlsx catalog sheets are accepted")
        contents = await file.read()
        if len(contents) == 0:
            raise HTTPException(400, "Uploaded file is empty")

        uploads = processor.config.output_dir / "uploads"
        uploads.mkdir(parents=True, exist_ok=True)
        dest = _safe_destination(uploads, filename, "skus")
        dest.write_bytes(contents)
        return _dump(processor.import_sku_file(dest, actor="dashboard"))

    # ── Brand performance ────────────────────────────────────────────────────

    @app.get("/api/brand-performance")
    def brand_performance(
        po_number: Optional[str] = Query(default=None),
        year: Optional[int] = Query(default=None),
        month: Optional[int] = Query(default=None, ge=1, le=12),
    ):
        return get_processor().db.list_brand_performance(
            po_number=po_number or None, year=year, month=month,
        )

    return app


app = create_app()
