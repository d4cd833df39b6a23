from .errors import (
    LpoError, ExtractionError, ValidationError, DuplicateKeyError, OrderNotFoundError, SyncError,
)
from .extractor import PdfTextReader, LpoExtractor, SkuTableExtractor
from .database import Database
from .reconciliation import ReconciliationEngine, apply_delivery, summarize_order
from .catalog import Catalog
from .brand_sync import BrandPerformanceSync
from .processor import LpoProcessor

__all__ = [
    "LpoError", "ExtractionError", "ValidationError", "DuplicateKeyError",
    "OrderNotFoundError", "SyncError",
    "PdfTextReader", "LpoExtractor", "SkuTableExtractor", "Database",
    "ReconciliationEngine", "apply_delivery", "summarize_order",
    "Catalog", "BrandPerformanceSync", "LpoProcessor",
]
