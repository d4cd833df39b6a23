"""
Error taxonomy for the LPO pipeline.

Data-quality findings are not exceptions; see models.result.DataQualityWarning.
"""


class LpoError(Exception):
    """Base class for every error raised by the pipeline."""


class ExtractionError(LpoError):
    """Input text or rows could not be parsed into any structured record.

    An input that parses into an empty record (no line items) is not an error.
    """


class ValidationError(LpoError):
    """Required fields are missing before a save; nothing has been written."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class DuplicateKeyError(LpoError):
    """An insert collided with an existing barcode or PO number."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} {key!r} already exists")
        self.kind = kind
        self.key = key


class OrderNotFoundError(LpoError, LookupError):
    """No purchase order with the requested PO number."""

    def __init__(self, po_number: str) -> None:
        super().__init__(f"LPO {po_number!r} not found")
        self.po_number = po_number


class SyncError(LpoError):
    """The brand performance projection could not be written or delivered."""
