from typing import List, Literal, Optional

from pydantic import BaseModel


# Fields a catalog record must carry to be considered complete ("red" otherwise)
REQUIRED_FIELDS = (
    "client", "brand", "barcode", "sku_name", "case_pack", "shelf_life", "talabat_sku",
)
# Content fields whose absence marks a complete record "amber"
CONTENT_FIELDS = ("packshot", "nutrition_info", "ingredients_info")

HealthClass = Literal["red", "amber", "ok"]


class SkuRecord(BaseModel):
    """
    A master catalog entry.  barcode is the natural key across every platform.
    Every attribute is optional so that partially-filled spreadsheet rows can
    be represented; completeness is judged by classify(), not by validation.
    """
    barcode: Optional[str] = None
    client: Optional[str] = None
    brand: Optional[str] = None
    sku_name: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    case_pack: Optional[int] = None
    shelf_life: Optional[str] = None
    packshot: Optional[str] = None
    nutrition_info: Optional[str] = None
    ingredients_info: Optional[str] = None

    # Cross-platform identifiers
    amazon_asin: Optional[str] = None
    talabat_sku: Optional[str] = None
    noon_zsku: Optional[str] = None
    careem_code: Optional[str] = None

    client_sellin_price: Optional[float] = None
    mantaga_commission_pct: Optional[float] = None   # client-level, e.g. 12 = 12%


class SkuHealth(BaseModel):
    """Derived completeness classification of one catalog record."""
    barcode: Optional[str] = None
    health: HealthClass
    missing: List[str] = []


def is_empty(value) -> bool:
    """True for None and blank strings; zero is a real value."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def classify(record: SkuRecord) -> SkuHealth:
    missing = [f for f in REQUIRED_FIELDS if is_empty(getattr(record, f))]
    if missing:
        return SkuHealth(barcode=record.barcode, health="red", missing=missing)

    lacking = [
        f for f in CONTENT_FIELDS
        if is_empty(getattr(record, f)) or str(getattr(record, f)).strip().lower() == "no"
    ]
    if lacking:
        return SkuHealth(barcode=record.barcode, health="amber", missing=lacking)
    return SkuHealth(barcode=record.barcode, health="ok")
