"""
SQLite document store for the LPO reconciliation pipeline.

A single database file (output/lpo.db) holds:

  lpo_orders          LPO headers, keyed by po_number.  Order totals are NOT
                      stored; they are always summed from the line items.
  lpo_line_items      Line items, owned by exactly one order, unique per
                      (po_number, barcode).
  master_sku          The master SKU catalog, unique per barcode.
  brand_performance   Projection rows written by the brand sync, replaced
                      as a set per (po_number, invoice_number).
  audit_log           Append-only trail of pipeline actions.

Every public method opens its own short-lived connection, so a sequence of
calls is not one transaction.  Callers that patch several documents must be
prepared to re-issue the whole sequence; all patches are plain overwrites.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

from models.purchase_order import LineItem, PurchaseOrder
from models.sku import SkuRecord
from .errors import DuplicateKeyError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS lpo_orders (
    po_number          TEXT PRIMARY KEY,
    order_date         TEXT,
    delivery_date      TEXT,
    supplier           TEXT,
    delivery_location  TEXT,
    customer           TEXT,
    brand              TEXT,
    client             TEXT,
    status             TEXT NOT NULL DEFAULT 'pending',
    notes              TEXT,

    -- Set once invoice details are saved
    commission_pct     REAL,
    commission_amount  REAL,
    invoice_number     TEXT,
    invoice_date       TEXT,

    source_file        TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_customer   ON lpo_orders (customer);
CREATE INDEX IF NOT EXISTS idx_orders_status     ON lpo_orders (status);
CREATE INDEX IF NOT EXISTS idx_orders_order_date ON lpo_orders (order_date DESC);

CREATE TABLE IF NOT EXISTS lpo_line_items (
    id                       INTEGER PRIMARY KEY AUTOINCREMENT,
    po_number                TEXT NOT NULL REFERENCES lpo_orders (po_number),
    barcode                  TEXT NOT NULL,
    product_name             TEXT NOT NULL,
    brand                    TEXT,
    client                   TEXT,
    quantity_ordered         REAL NOT NULL,
    unit_cost                REAL NOT NULL,
    vat_pct                  REAL NOT NULL,
    amount_excl_vat          REAL NOT NULL,
    vat_amount               REAL NOT NULL,
    amount_incl_vat          REAL NOT NULL,
    quantity_delivered       REAL NOT NULL DEFAULT 0,
    amount_invoiced          REAL NOT NULL DEFAULT 0,
    vat_amount_invoiced      REAL NOT NULL DEFAULT 0,
    total_incl_vat_invoiced  REAL NOT NULL DEFAULT 0,
    invoice_number           TEXT,
    invoice_date             TEXT,
    UNIQUE (po_number, barcode)
);

CREATE INDEX IF NOT EXISTS idx_lines_po_number ON lpo_line_items (po_number);
CREATE INDEX IF NOT EXISTS idx_lines_barcode   ON lpo_line_items (barcode);

CREATE TABLE IF NOT EXISTS master_sku (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    barcode                 TEXT NOT NULL UNIQUE,
    client                  TEXT,
    brand                   TEXT,
    sku_name                TEXT,
    category                TEXT,
    subcategory             TEXT,
    case_pack               INTEGER,
    shelf_life              TEXT,
    packshot                TEXT,
    nutrition_info          TEXT,
    ingredients_info        TEXT,
    amazon_asin             TEXT,
    talabat_sku             TEXT,
    noon_zsku               TEXT,
    careem_code             TEXT,
    client_sellin_price     REAL,
    mantaga_commission_pct  REAL
);

CREATE INDEX IF NOT EXISTS idx_sku_client ON master_sku (client);
CREATE INDEX IF NOT EXISTS idx_sku_brand  ON master_sku (brand);

CREATE TABLE IF NOT EXISTS brand_performance (
    id                       INTEGER PRIMARY KEY AUTOINCREMENT,
    po_number                TEXT NOT NULL,
    invoice_number           TEXT NOT NULL,
    invoice_date             TEXT,
    year                     INTEGER,
    month                    INTEGER,
    po_date                  TEXT,
    customer                 TEXT,
    brand                    TEXT,
    client                   TEXT,
    barcode                  TEXT,
    product_name             TEXT,
    quantity_ordered         REAL,
    quantity_delivered       REAL,
    unit_cost                REAL,
    lpo_value_excl_vat       REAL,
    lpo_value_incl_vat       REAL,
    invoiced_value_excl_vat  REAL,
    invoiced_value_incl_vat  REAL,
    vat_amount_invoiced      REAL,
    gap_qty                  REAL,
    service_level_pct        REAL,
    commission_pct           REAL,
    commission_aed           REAL,
    match_status             TEXT,
    synced_at                TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bp_key        ON brand_performance (po_number, invoice_number);
CREATE INDEX IF NOT EXISTS idx_bp_year_month ON brand_performance (year, month);

CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    entity      TEXT    NOT NULL,   -- po_number or barcode
    timestamp   TEXT    NOT NULL,   -- ISO-8601 UTC
    action      TEXT    NOT NULL,   -- ingested | invoice_saved | sku_upserted |
                                    -- sku_added | brand_synced
    actor       TEXT    NOT NULL DEFAULT 'system',
    detail      TEXT                -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_entity    ON audit_log (entity);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
"""

_ORDER_COLUMNS = (
    "order_date", "delivery_date", "supplier", "delivery_location", "customer",
    "brand", "client", "status", "notes", "commission_pct", "commission_amount",
    "invoice_number", "invoice_date",
)
_LINE_COLUMNS = (
    "po_number", "barcode", "product_name", "brand", "client",
    "quantity_ordered", "unit_cost", "vat_pct", "amount_excl_vat", "vat_amount",
    "amount_incl_vat", "quantity_delivered", "amount_invoiced", "vat_amount_invoiced",
    "total_incl_vat_invoiced", "invoice_number", "invoice_date",
)
_SKU_COLUMNS = tuple(SkuRecord.model_fields)
_BP_COLUMNS = (
    "po_number", "invoice_number", "invoice_date", "year", "month", "po_date",
    "customer", "brand", "client", "barcode", "product_name", "quantity_ordered",
    "quantity_delivered", "unit_cost", "lpo_value_excl_vat", "lpo_value_incl_vat",
    "invoiced_value_excl_vat", "invoiced_value_incl_vat", "vat_amount_invoiced",
    "gap_qty", "service_level_pct", "commission_pct", "commission_aed", "match_status",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _check_columns(fields: dict, allowed: tuple[str, ...], table: str) -> None:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown {table} field(s): {sorted(unknown)}")


class Database:
    """Thin wrapper around an SQLite database file for LPO and catalog documents."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Database schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def insert_order(self, order: PurchaseOrder, source_file: Optional[str] = None) -> None:
        """Insert an LPO header.  Line items are inserted separately."""
        now = _now()
        row = {col: _to_db(getattr(order, col)) for col in _ORDER_COLUMNS}
        row.update(po_number=order.po_number, source_file=source_file,
                   created_at=now, updated_at=now)
        cols = ", ".join(row)
        marks = ", ".join(f":{c}" for c in row)
        try:
            with self._conn() as conn:
                conn.execute(f"INSERT INTO lpo_orders ({cols}) VALUES ({marks})", row)
        except sqlite3.IntegrityError as exc:
            raise DuplicateKeyError("PO number", order.po_number) from exc
        logger.info("DB inserted LPO: %s", order.po_number)

    def patch_order(self, po_number: str, fields: dict) -> bool:
        """Overwrite the given header fields.  Returns True if the order exists."""
        if not fields:
            return self.order_exists(po_number)
        _check_columns(fields, _ORDER_COLUMNS, "order")
        params = {k: _to_db(v) for k, v in fields.items()}
        assignments = ", ".join(f"{k} = :{k}" for k in params)
        params.update(po_number=po_number, updated_at=_now())
        with self._conn() as conn:
            conn.execute(
                f"UPDATE lpo_orders SET {assignments}, updated_at = :updated_at "
                f"WHERE po_number = :po_number",
                params,
            )
            return conn.execute("SELECT changes()").fetchone()[0] > 0

    def order_exists(self, po_number: str) -> bool:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM lpo_orders WHERE po_number = ?", (po_number,)
            ).fetchone()
        return row is not None

    def get_order(self, po_number: str) -> Optional[PurchaseOrder]:
        """Return the order with all its line items, or None."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM lpo_orders WHERE po_number = ?", (po_number,)
            ).fetchone()
        if row is None:
            return None
        data = {k: row[k] for k in row.keys() if k in PurchaseOrder.model_fields}
        return PurchaseOrder.model_validate({
            **data,
            "line_items": self.list_line_items(po_number),
        })

    def list_orders(
        self,
        status: Optional[str] = None,
        customer: Optional[str] = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[PurchaseOrder]:
        """Return orders (with line items) newest order date first."""
        clauses: list[str] = []
        params: list = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if customer:
            clauses.append("customer = ?")
            params.append(customer)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])

        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT po_number FROM lpo_orders {where} "
                f"ORDER BY order_date DESC, po_number LIMIT ? OFFSET ?",
                params,
            ).fetchall()
        orders = (self.get_order(r["po_number"]) for r in rows)
        return [o for o in orders if o is not None]

    # ------------------------------------------------------------------
    # Line items
    # ------------------------------------------------------------------

    def insert_line_item(self, item: LineItem) -> int:
        """Insert one line item and return its id."""
        row = {col: _to_db(getattr(item, col)) for col in _LINE_COLUMNS}
        cols = ", ".join(row)
        marks = ", ".join(f":{c}" for c in row)
        try:
            with self._conn() as conn:
                cur = conn.execute(
                    f"INSERT INTO lpo_line_items ({cols}) VALUES ({marks})", row
                )
                return int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise DuplicateKeyError(
                "Line item", f"{item.po_number}/{item.barcode}"
            ) from exc

    def patch_line_item(self, item_id: int, fields: dict) -> bool:
        """Overwrite the given line item fields.  Returns True if the item exists."""
        _check_columns(fields, _LINE_COLUMNS, "line item")
        params = {k: _to_db(v) for k, v in fields.items()}
        assignments = ", ".join(f"{k} = :{k}" for k in params)
        params["id"] = item_id
        with self._conn() as conn:
            conn.execute(f"UPDATE lpo_line_items SET {assignments} WHERE id = :id", params)
            return conn.execute("SELECT changes()").fetchone()[0] > 0

    def list_line_items(self, po_number: str) -> list[LineItem]:
        """All line items for one PO, in insertion order."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM lpo_line_items WHERE po_number = ? ORDER BY id",
                (po_number,),
            ).fetchall()
        return [LineItem.model_validate(dict(r)) for r in rows]

    # ------------------------------------------------------------------
    # Master SKU catalog
    # ------------------------------------------------------------------

    def get_sku(self, barcode: str) -> Optional[SkuRecord]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM master_sku WHERE barcode = ?", (barcode,)
            ).fetchone()
        return SkuRecord.model_validate(dict(row)) if row else None

    def insert_sku(self, record: SkuRecord) -> None:
        row = {col: getattr(record, col) for col in _SKU_COLUMNS}
        cols = ", ".join(row)
        marks = ", ".join(f":{c}" for c in row)
        try:
            with self._conn() as conn:
                conn.execute(f"INSERT INTO master_sku ({cols}) VALUES ({marks})", row)
        except sqlite3.IntegrityError as exc:
            raise DuplicateKeyError("Barcode", str(record.barcode)) from exc

    def patch_sku(self, barcode: str, fields: dict) -> bool:
        """Overwrite the given catalog fields.  Returns True if the barcode exists."""
        _check_columns(fields, _SKU_COLUMNS, "SKU")
        if "barcode" in fields:
            raise ValueError("barcode is the catalog key and cannot be patched")
        params = dict(fields)
        assignments = ", ".join(f"{k} = :{k}" for k in params)
        params["key"] = barcode
        with self._conn() as conn:
            conn.execute(f"UPDATE master_sku SET {assignments} WHERE barcode = :key", params)
            return conn.execute("SELECT changes()").fetchone()[0] > 0

    def list_skus(
        self,
        client: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[SkuRecord]:
        """
        Return catalog records ordered by brand then name.

        Args:
            client:  Exact client filter, or None for all.
            search:  Case-insensitive substring match on barcode, sku_name,
                     brand, or client.
        """
        clauses: list[str] = []
        params: list = []
        if client is not None:
            clauses.append("client = ?")
            params.append(client)
        if search:
            clauses.append(
                "(barcode LIKE ? OR sku_name LIKE ? OR brand LIKE ? OR client LIKE ?)"
            )
            like = f"%{search}%"
            params.extend([like, like, like, like])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM master_sku {where} ORDER BY brand, sku_name, barcode",
                params,
            ).fetchall()
        return [SkuRecord.model_validate(dict(r)) for r in rows]

    # ------------------------------------------------------------------
    # Brand performance projection
    # ------------------------------------------------------------------

    def replace_brand_performance(
        self,
        po_number: str,
        invoice_number: str,
        rows: list[dict],
    ) -> int:
        """
        Atomically replace every projection row for po_number with rows
        tagged invoice_number.  An order carries one invoice at a time, so
        rows from an earlier invoice number are dropped as well.

        Returns the number of rows that were replaced (0 on first sync).
        """
        synced_at = _now()
        with self._conn() as conn:
            cur = conn.execute(
                "DELETE FROM brand_performance WHERE po_number = ?", (po_number,)
            )
            replaced = cur.rowcount
            for row in rows:
                _check_columns(row, _BP_COLUMNS, "brand performance")
                data = {c: _to_db(row.get(c)) for c in _BP_COLUMNS}
                data.update(po_number=po_number, invoice_number=invoice_number,
                            synced_at=synced_at)
                cols = ", ".join(data)
                marks = ", ".join(f":{c}" for c in data)
                conn.execute(f"INSERT INTO brand_performance ({cols}) VALUES ({marks})", data)
        return replaced

    def list_brand_performance(
        self,
        po_number: Optional[str] = None,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> list[dict]:
        clauses: list[str] = []
        params: list = []
        if po_number:
            clauses.append("po_number = ?")
            params.append(po_number)
        if year is not None:
            clauses.append("year = ?")
            params.append(year)
        if month is not None:
            clauses.append("month = ?")
            params.append(month)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM brand_performance {where} ORDER BY po_number, id",
                params,
            ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def log_audit(
        self,
        entity: str,
        action: str,
        actor: str = "system",
        detail: Optional[dict] = None,
    ) -> None:
        """Append one entry to the audit log."""
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO audit_log (entity, timestamp, action, actor, detail)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    entity,
                    _now(),
                    action,
                    actor,
                    json.dumps(detail, default=str) if detail is not None else None,
                ),
            )

    def get_audit_log(self, entity: str) -> list[dict]:
        """Return all audit entries for one PO number or barcode, oldest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, timestamp, action, actor, detail
                   FROM audit_log WHERE entity = ?
                   ORDER BY timestamp ASC, id ASC""",
                (entity,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_stats(self) -> dict:
        """Return aggregate counts for the check command and dashboard."""
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM lpo_orders)                         AS orders,
                    (SELECT COUNT(*) FROM lpo_orders WHERE status = 'pending')  AS pending,
                    (SELECT COUNT(*) FROM lpo_orders WHERE status = 'partial')  AS partial,
                    (SELECT COUNT(*) FROM lpo_orders WHERE status = 'delivered') AS delivered,
                    (SELECT COUNT(*) FROM lpo_orders WHERE status = 'complete') AS complete,
                    (SELECT COUNT(*) FROM lpo_line_items)                     AS line_items,
                    (SELECT COUNT(*) FROM master_sku)                         AS skus,
                    (SELECT COUNT(*) FROM brand_performance)                  AS brand_rows
                """
            ).fetchone()
        return dict(row) if row else {}
