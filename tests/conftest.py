"""
Pytest configuration and shared fixtures for the LPO reconciliation test suite.
"""
import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

# Run from the project root so relative defaults resolve
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


SAMPLE_LPO_TEXT = """\
talabat
Purchase Order: PO-458812
Order Date: 03/02/2026
Delivery Date: 05/02/2026
Supplier Information: QUADRANT INTERNATIONAL (L.L.C)
Store Information: UAE_DXB_3PL_WH01 Dubai Investment Park
No. SKU Barcode Product Qty Unit Cost Disc Amount VAT% VAT Amt Incl
1 6291234567890 Crispy Potato Chips Salted 150g 10 4.50 0.00 45.00 5% 2.25 47.25
2 6291234567891 Orange Juice 1L 24 6.25 0.00 150.00 5% 7.50 157.50
3 0629123456789 Dark Chocolate Bar 100g 0 8.00 0.00 0.00 5% 0.00 0.00
Total 195.00 9.75 204.75
"""


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="lpo_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    config = Config(
        output_dir=temp_dir / "output",
        db_path=temp_dir / "output" / "lpo.db",
        config_dir=temp_dir / "config",
        inbox_dir=temp_dir / "lpos",
        brand_sync_url=None,
        brand_sync_headers_json=None,
    )
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.ensure_output_dir()
    return config


@pytest.fixture
def test_db(test_config) -> "Database":
    """Provide a test database instance."""
    from pipeline.database import Database
    return Database(test_config.db_path)


@pytest.fixture
def processor(test_config, test_db) -> "LpoProcessor":
    from pipeline.processor import LpoProcessor
    return LpoProcessor(test_config, test_db)


@pytest.fixture
def sample_lpo_text() -> str:
    return SAMPLE_LPO_TEXT


@pytest.fixture
def ingested_po(processor, sample_lpo_text) -> str:
    """Ingest the sample LPO and return its PO number."""
    return processor.ingest_text(sample_lpo_text, source="sample.txt").order.po_number


@pytest.fixture
def sample_sku_csv(temp_dir: Path) -> Path:
    """Create a sample master SKU sheet with varied header spellings."""
    csv_path = temp_dir / "master_sku.csv"
    content = """Barcode,Client,Brand,SKU Name,Category,Case Pack,Shelf Life,Talabat SKU,Nutrition Info,Ingredients,Packshot,Commission
6291234567891,Acme Foods,Sunny,Orange Juice 1L,Beverages,6,6 months,TB-1002,No,Yes,Yes,
6291234567890,Acme Foods,Crispy,Crispy Potato Chips Salted 150g,Snacks,12,9 months,TB-1001,Yes,Yes,Yes,0.12
,Acme Foods,Nameless,,Snacks,,,,,,,
6291234567892,Bolt Trading,Bolt,Energy Drink 250ml,,24,,,,,,
"""
    csv_path.write_text(content, encoding="utf-8")
    return csv_path


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
