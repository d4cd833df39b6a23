"""
Document extraction module.

PdfTextReader   -- pdfplumber character-level extraction of LPO documents.
                   Plain .txt exports of the same template are read as-is.

LpoExtractor    -- turns the extracted text of a single-vendor LPO template
                   into a PurchaseOrder with LineItems.  Header fields come
                   from labelled-field patterns; line items from a per-line
                   row pattern.  Never fails for "no items found": an empty
                   order is returned and the caller decides what to do.

SkuTableExtractor -- maps spreadsheet rows (header-keyed dicts) onto
                   SkuRecords using a case-insensitive header synonym table,
                   with a rapidfuzz fallback for near-miss headers.
"""
from __future__ import annotations

import json
import logging
import math
import re
import time
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import pdfplumber
from rapidfuzz import fuzz, process

from config import Config
from models.purchase_order import LineItem, PurchaseOrder
from models.sku import SkuRecord, is_empty
from .errors import ExtractionError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# PdfTextReader
# ---------------------------------------------------------------------------

class PdfTextReader:
    """
    Fast plain-text extraction using pdfplumber.
    No table structure is preserved; the LPO row pattern works on text lines.
    """

    SUPPORTED_SUFFIXES = (".pdf", ".txt")

    def read(self, path: str | Path) -> str:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Document not found: {path}")

        suffix = path.suffix.lower()
        if suffix == ".txt":
            return path.read_text(encoding="utf-8", errors="replace")
        if suffix != ".pdf":
            raise ExtractionError(f"Unsupported document type: {path.name}")

        pages_text: list[str] = []
        try:
            with pdfplumber.open(str(path)) as pdf:
                page_count = len(pdf.pages)
                for i, page in enumerate(pdf.pages):
                    text = page.extract_text()
                    if text:
                        pages_text.append(text.strip())
                    else:
                        logger.debug("Page %d yielded no text (may be scanned)", i + 1)
        except Exception as exc:
            raise ExtractionError(f"Could not read PDF {path.name}: {exc}") from exc

        raw_text = "\n\n".join(pages_text)
        if not raw_text.strip():
            logger.warning("No text extracted from %s -- likely a scanned PDF", path.name)

        logger.info(
            "pdfplumber extracted %d chars from %s (%d pages)",
            len(raw_text), path.name, page_count,
        )
        return raw_text


# ---------------------------------------------------------------------------
# LpoExtractor
# ---------------------------------------------------------------------------

_PO_PATTERNS = (
    re.compile(r"\bPO\s*#\s*:?\s*([A-Z0-9][A-Z0-9\-/]*)", re.IGNORECASE),
    re.compile(
        r"Purchase\s*Order\s*(?:No\.?|Number|#)?\s*:\s*([A-Z0-9][A-Z0-9\-/]*)",
        re.IGNORECASE,
    ),
)
_ORDER_DATE_RE    = re.compile(r"Order\s*Date\s*:?\s*(\d{2})[/\-](\d{2})[/\-](\d{4})", re.IGNORECASE)
_DELIVERY_DATE_RE = re.compile(r"Delivery\s*Date\s*:?\s*(\d{2})[/\-](\d{2})[/\-](\d{4})", re.IGNORECASE)
_SUPPLIER_RE      = re.compile(r"Supplier\s*Information\s*:\s*([^\n]+)", re.IGNORECASE)
_LOCATION_RE      = re.compile(r"(UAE_[^\s]+)", re.IGNORECASE)
_STORE_RE         = re.compile(r"Store\s*Information\s*:\s*([^\n]+)", re.IGNORECASE)

_NUM = r"[\d,]*\.?\d+"

# No  [SKU]  Barcode  Product name  Qty  Unit cost  [Disc ...]  Amount  VAT%  VAT  Incl
_ITEM_RE = re.compile(
    rf"^\s*(?P<seq>\d+)\s+"
    rf"(?:[A-Z0-9\-]+\s+)??"
    rf"(?P<barcode>\d{{10,13}})\s+"
    rf"(?P<name>.+?)\s+"
    rf"(?P<qty>\d+(?:\.\d+)?)\s+"
    rf"(?P<cost>{_NUM})\s+"
    rf"(?:{_NUM}\s+)*?"
    rf"(?P<excl>{_NUM})\s+"
    rf"(?P<pct>\d+(?:\.\d+)?)\s*%\s*"
    rf"(?P<vat>{_NUM})\s+"
    rf"(?P<incl>{_NUM})\s*$",
    re.IGNORECASE,
)


class LpoExtractor:
    """Parse the text of one LPO document into a PurchaseOrder."""

    def __init__(self, config: Config):
        self.config = config

    def extract(self, raw_text: str) -> PurchaseOrder:
        """
        Raises ExtractionError only for input that is not text at all
        (None, bytes, blank).  Everything else yields an order, possibly
        with zero line items.
        """
        if not isinstance(raw_text, str) or not raw_text.strip():
            raise ExtractionError("LPO text is empty or not text")

        po_number = self._po_number(raw_text)
        order_date = _parse_dmy(_ORDER_DATE_RE.search(raw_text), "order date")
        delivery_date = _parse_dmy(_DELIVERY_DATE_RE.search(raw_text), "delivery date")
        items = self._line_items(raw_text)

        order = PurchaseOrder(
            po_number=po_number,
            order_date=order_date or date.today(),
            delivery_date=delivery_date,
            supplier=self._supplier(raw_text),
            delivery_location=self._location(raw_text),
            customer=self.config.default_customer,
            line_items=items,
        )
        logger.info(
            "Extracted LPO %s: %d line item(s), total incl VAT %.2f",
            order.po_number, len(items), order.total_incl_vat,
        )
        return order

    # ------------------------------------------------------------------

    @staticmethod
    def _po_number(text: str) -> str:
        for pattern in _PO_PATTERNS:
            m = pattern.search(text)
            if m:
                return m.group(1).strip()
        fallback = f"PO{int(time.time() * 1000)}"
        logger.warning("No PO number found in document; using %s", fallback)
        return fallback

    def _supplier(self, text: str) -> str:
        flat = re.sub(r"\s+", " ", text).upper()
        for needle, canonical in self.config.known_suppliers.items():
            if re.sub(r"\s+", " ", needle).upper() in flat:
                return canonical
        m = _SUPPLIER_RE.search(text)
        if m and m.group(1).strip():
            return m.group(1).strip()
        return "Unknown"

    def _location(self, text: str) -> str:
        m = _LOCATION_RE.search(text)
        if m:
            return m.group(1)
        m = _STORE_RE.search(text)
        if m and m.group(1).strip():
            return m.group(1).strip()
        return self.config.default_delivery_location

    @staticmethod
    def _line_items(text: str) -> list[LineItem]:
        items: list[LineItem] = []
        for line in text.splitlines():
            m = _ITEM_RE.match(line)
            if not m:
                continue
            qty = _to_float(m.group("qty")) or 0.0
            excl = _to_float(m.group("excl")) or 0.0
            if qty <= 0 or excl <= 0:
                logger.debug("Skipped row with qty=%s amount=%s: %s", qty, excl, line.strip())
                continue
            items.append(LineItem(
                barcode=m.group("barcode"),
                product_name=m.group("name").strip(),
                quantity_ordered=qty,
                unit_cost=_to_float(m.group("cost")) or 0.0,
                vat_pct=_to_float(m.group("pct")) or 0.0,
                amount_excl_vat=excl,
                vat_amount=_to_float(m.group("vat")) or 0.0,
                amount_incl_vat=_to_float(m.group("incl")) or 0.0,
            ))
        return items


def _parse_dmy(match: Optional[re.Match], label: str) -> Optional[date]:
    """DD/MM/YYYY match groups -> date.  Impossible dates are treated as absent."""
    if match is None:
        return None
    day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        logger.warning("Ignoring invalid %s: %s", label, match.group(0))
        return None


# ---------------------------------------------------------------------------
# SkuTableExtractor  -- spreadsheet rows -> SkuRecord
# ---------------------------------------------------------------------------

# Canonical field -> header synonyms (normalised: lowercase, collapsed whitespace)
_BUILTIN_SYNONYMS: dict[str, set[str]] = {
    "barcode":                {"barcode", "bar code", "ean", "ean code", "gtin", "upc"},
    "client":                 {"client", "client name", "principal"},
    "brand":                  {"brand", "brand name"},
    "sku_name":               {"sku name", "product name", "item name", "product",
                               "description", "item description", "name"},
    "category":               {"category", "main category"},
    "subcategory":            {"subcategory", "sub category"},
    "case_pack":              {"case pack", "casepack", "pack size", "units per case",
                               "case qty"},
    "shelf_life":             {"shelf life", "shelflife", "shelf life days"},
    "packshot":               {"packshot", "pack shot", "image", "image url"},
    "nutrition_info":         {"nutrition info", "nutrition", "nutritional info",
                               "nutrition facts"},
    "ingredients_info":       {"ingredients info", "ingredients", "ingredient list"},
    "amazon_asin":            {"amazon asin", "asin"},
    "talabat_sku":            {"talabat sku", "talabat code", "talabat id"},
    "noon_zsku":              {"noon zsku", "zsku", "noon sku"},
    "careem_code":            {"careem code", "careem sku", "careem id"},
    "client_sellin_price":    {"client sellin price", "sellin price", "sell in price",
                               "client sell in price", "selling price"},
    "mantaga_commission_pct": {"mantaga commission pct", "mantaga commission",
                               "commission pct", "commission", "commission %"},
}

_INT_FIELDS = {"case_pack"}
_FLOAT_FIELDS = {"client_sellin_price", "mantaga_commission_pct"}


def _load_header_synonyms(config_dir: Path) -> dict[str, set[str]]:
    """
    Load header synonym sets from <config_dir>/header_synonyms.json, merged
    over the builtin table.  Falls back to the builtins if the file is
    missing or invalid.
    """
    synonyms = {k: set(v) for k, v in _BUILTIN_SYNONYMS.items()}
    config_path = config_dir / "header_synonyms.json"
    if not config_path.exists():
        return synonyms
    try:
        with open(config_path, encoding="utf-8") as fh:
            data = json.load(fh)
        for key, vals in data.items():
            if key.startswith("_") or key not in synonyms or not isinstance(vals, list):
                continue
            synonyms[key] |= {_norm(v) for v in vals}
        logger.info("Loaded header_synonyms.json from %s", config_path)
    except (OSError, ValueError) as exc:
        logger.warning("Could not load header_synonyms.json (%s) -- using defaults", exc)
    return synonyms


def _norm(key: Any) -> str:
    """Normalise a column header for comparison."""
    return re.sub(r"[\s_\-\.]+", " ", str(key)).lower().strip()


class SkuTableExtractor:
    """
    Converts header-keyed spreadsheet rows into SkuRecords.

    Headers are resolved once per batch: exact synonym match first, then the
    best rapidfuzz ratio over every synonym if it clears
    config.header_fuzzy_threshold.  Unresolved columns are ignored.
    """

    def __init__(self, config: Config):
        self.config = config
        self.synonyms = _load_header_synonyms(config.config_dir)
        self._lookup = {syn: field for field, syns in self.synonyms.items() for syn in syns}

    def extract_from_rows(self, rows: Any) -> list[SkuRecord]:
        if not isinstance(rows, list) or any(not isinstance(r, Mapping) for r in rows):
            raise ExtractionError("Spreadsheet rows must be a list of header-keyed mappings")
        if not rows:
            return []

        col_map = self.build_col_map(_all_headers(rows))
        mapped = set(col_map.values())
        if "barcode" not in mapped and "sku_name" not in mapped:
            raise ExtractionError(
                "No barcode or SKU name column recognised in headers: "
                f"{[str(h) for h in _all_headers(rows)]}"
            )
        logger.info("SKU sheet col_map=%s, rows=%d", col_map, len(rows))

        records: list[SkuRecord] = []
        for i, row in enumerate(rows, start=1):
            data: dict[str, Any] = {}
            for header, field_name in col_map.items():
                value = _convert(field_name, row.get(header))
                if value is not None:
                    data[field_name] = value
            if is_empty(data.get("barcode")) and is_empty(data.get("sku_name")):
                logger.debug("Dropped row %d: no barcode or SKU name", i)
                continue
            records.append(SkuRecord.model_validate(data))

        logger.info("Extracted %d SKU record(s) from %d row(s)", len(records), len(rows))
        return records

    def build_col_map(self, headers: Iterable[Any]) -> dict[Any, str]:
        mapping: dict[Any, str] = {}
        assigned: set[str] = set()
        choices = list(self._lookup)
        for header in headers:
            # Tables without a header row get integer column indices
            if not isinstance(header, str):
                continue
            key = _norm(header)
            field_name = self._lookup.get(key)
            if field_name is None and key:
                best = process.extractOne(
                    key, choices,
                    scorer=fuzz.ratio,
                    score_cutoff=self.config.header_fuzzy_threshold,
                )
                if best:
                    field_name = self._lookup[best[0]]
                    logger.debug("Fuzzy header match %r -> %s (%.0f)", header, field_name, best[1])
            if field_name is None:
                logger.debug("Unmapped column: %r", header)
                continue
            if field_name in assigned:
                continue
            mapping[header] = field_name
            assigned.add(field_name)
        return mapping


def _all_headers(rows: list[Mapping]) -> list[Any]:
    seen: dict[Any, None] = {}
    for row in rows:
        for key in row.keys():
            seen.setdefault(key, None)
    return list(seen)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() in ("", "-", "–", "nan", "None")


def _convert(field_name: str, value: Any) -> Any:
    if _blank(value):
        return None
    if field_name == "barcode":
        return _barcode(value)
    if field_name in _INT_FIELDS:
        return _leading_int(value)
    if field_name == "mantaga_commission_pct":
        return _commission(value)
    if field_name in _FLOAT_FIELDS:
        return _to_float(str(value))
    return str(value).strip()


def _barcode(value: Any) -> str:
    # Excel hands long numeric codes back as floats
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    if re.fullmatch(r"\d+\.0+", text):
        text = text.split(".")[0]
    return text


def _commission(value: Any) -> Optional[float]:
    """
    "12%" -> 12.0, 12 -> 12.0, 0.12 -> 12.0.
    Spreadsheets formatted as percentages store the fraction, so any
    number in (0, 1] is read as a fraction.
    """
    text = str(value).strip()
    explicit_pct = text.endswith("%")
    num = _to_float(text)
    if num is None:
        return None
    if not explicit_pct and 0 < num <= 1:
        num = num * 100
    return round(num, 4)


def _leading_int(value: Any) -> Optional[int]:
    """First whole number in the cell: "12 x 6" -> 12, 12.0 -> 12, "n/a" -> None."""
    if isinstance(value, (int, float)):
        return int(value)
    m = re.match(r"\s*(\d+)", str(value))
    return int(m.group(1)) if m else None


def _to_float(value: str) -> Optional[float]:
    cleaned = re.sub(r"[^\d.\-]", "", value.replace(",", ""))
    try:
        return float(cleaned)
    except ValueError:
        return None
