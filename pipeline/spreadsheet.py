"""
Spreadsheet loading for SKU master-data imports.

CSV files are read with the csv module; Excel workbooks (.xlsx / .xlsm)
are read through pandas with the openpyxl engine.  Either way the result is
a list of header-keyed row dicts with blank cells as None, ready for
SkuTableExtractor.extract_from_rows().
"""
import csv
import logging
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from .errors import ExtractionError

logger = logging.getLogger(__name__)

CSV_SUFFIXES = (".csv",)
EXCEL_SUFFIXES = (".xlsx", ".xlsm")


def load_rows(path: Path, sheet_name: Optional[str] = None) -> list[dict[str, Any]]:
    """
    Load a CSV or Excel file as a list of dictionaries.

    Args:
        path:        Path to the file.
        sheet_name:  Excel sheet to read; the first sheet when None.

    Raises:
        FileNotFoundError: the file does not exist.
        ExtractionError:   unsupported type, or the file could not be parsed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Spreadsheet not found: {path}")

    suffix = path.suffix.lower()
    if suffix in CSV_SUFFIXES:
        rows = _load_csv(path)
    elif suffix in EXCEL_SUFFIXES:
        rows = _load_excel(path, sheet_name)
    else:
        raise ExtractionError(f"Unsupported spreadsheet type: {path.name}")

    logger.info("Loaded %d row(s) from %s", len(rows), path.name)
    return rows


def _load_csv(path: Path) -> list[dict[str, Any]]:
    try:
        # utf-8-sig strips the BOM Excel adds to exported CSVs
        with open(path, newline="", encoding="utf-8-sig") as f:
            return [
                {k: (v if v != "" else None) for k, v in row.items() if k is not None}
                for row in csv.DictReader(f)
            ]
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise ExtractionError(f"Failed to read CSV {path.name}: {exc}") from exc


def _load_excel(path: Path, sheet_name: Optional[str]) -> list[dict[str, Any]]:
    try:
        df = pd.read_excel(path, engine="openpyxl", sheet_name=sheet_name or 0, dtype=object)
    except Exception as exc:
        raise ExtractionError(f"Failed to read workbook {path.name}: {exc}") from exc

    df = df.dropna(how="all")
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")
