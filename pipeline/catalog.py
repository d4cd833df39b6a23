"""
Master SKU catalog maintenance.

Upsert semantics (barcode is the join key):
  - new barcode          -> insert the incoming record as-is
  - known barcode        -> fill only fields that are empty on the stored
                            record; populated fields are never overwritten
  - commission supplied  -> overwrite mantaga_commission_pct on EVERY record
                            sharing the record's client
  - no barcode           -> skipped

Records are processed sequentially in input order, so a later duplicate in
the same batch only fills what the earlier one left empty.
"""
import logging
import sqlite3
from typing import Iterable, Optional

from config import Config
from models.sku import REQUIRED_FIELDS, SkuHealth, SkuRecord, classify, is_empty
from models.result import UpsertResult
from .database import Database
from .errors import DuplicateKeyError, ValidationError

logger = logging.getLogger(__name__)

_MERGE_FIELDS = tuple(f for f in SkuRecord.model_fields if f != "barcode")


def merge_missing(existing: SkuRecord, incoming: SkuRecord) -> dict:
    """Fields of incoming that would fill an empty field on existing."""
    changes = {}
    for field in _MERGE_FIELDS:
        new = getattr(incoming, field)
        if is_empty(getattr(existing, field)) and not is_empty(new):
            changes[field] = new
    return changes


class Catalog:

    def __init__(self, config: Config, db: Database):
        self.config = config
        self.db = db

    def upsert(self, batch: Iterable[SkuRecord], actor: str = "system") -> UpsertResult:
        result = UpsertResult()
        for record in batch:
            barcode = (record.barcode or "").strip()
            if not barcode:
                result.skipped += 1
                continue
            try:
                self._upsert_one(record.model_copy(update={"barcode": barcode}), result, actor)
            except (sqlite3.Error, DuplicateKeyError) as exc:
                logger.error("Catalog upsert failed for barcode %s: %s", barcode, exc)
                result.failed += 1

        logger.info(
            "Catalog upsert: %d inserted, %d updated, %d skipped, %d failed, "
            "commission propagated to %d record(s)",
            result.inserted, result.updated, result.skipped, result.failed,
            result.commission_propagated,
        )
        return result

    def _upsert_one(self, record: SkuRecord, result: UpsertResult, actor: str) -> None:
        existing = self.db.get_sku(record.barcode)
        if existing is None:
            self.db.insert_sku(record)
            result.inserted += 1
            client = record.client
            self.db.log_audit(record.barcode, "sku_upserted", actor=actor,
                              detail={"op": "insert"})
        else:
            changes = merge_missing(existing, record)
            if changes:
                self.db.patch_sku(record.barcode, changes)
                result.updated += 1
                self.db.log_audit(record.barcode, "sku_upserted", actor=actor,
                                  detail={"op": "fill", "fields": sorted(changes)})
            client = existing.client if not is_empty(existing.client) else changes.get("client")

        pct = record.mantaga_commission_pct
        if pct is not None and not is_empty(client):
            result.commission_propagated += self._propagate_commission(client, pct)

    def _propagate_commission(self, client: str, pct: float) -> int:
        count = 0
        for sku in self.db.list_skus(client=client):
            if sku.mantaga_commission_pct != pct:
                self.db.patch_sku(sku.barcode, {"mantaga_commission_pct": pct})
                count += 1
        if count:
            logger.info("Commission %.2f%% applied to %d record(s) for client %s",
                        pct, count, client)
        return count

    def add(self, record: SkuRecord, actor: str = "system") -> SkuRecord:
        """
        Insert one complete record from the manual form.

        Raises:
            ValidationError:    a required field is empty.
            DuplicateKeyError:  the barcode is already in the catalog.
        """
        missing = [f for f in REQUIRED_FIELDS if is_empty(getattr(record, f))]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}", missing)
        record = record.model_copy(update={"barcode": record.barcode.strip()})
        if self.db.get_sku(record.barcode) is not None:
            raise DuplicateKeyError("Barcode", record.barcode)
        self.db.insert_sku(record)
        self.db.log_audit(record.barcode, "sku_added", actor=actor)
        logger.info("Added SKU %s (%s)", record.barcode, record.sku_name)
        return record

    def health(self, client: Optional[str] = None) -> list[SkuHealth]:
        return [classify(r) for r in self.db.list_skus(client=client)]

    def catalog_health(self, client: Optional[str] = None) -> dict[str, int]:
        """Count of records per health class."""
        counts = {"red": 0, "amber": 0, "ok": 0}
        for h in self.health(client):
            counts[h.health] += 1
        counts["total"] = sum(counts.values())
        return counts
