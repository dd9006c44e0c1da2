"""
Parser for POS store exports.

The export is a CSV (comma or semicolon separated) or Excel sheet with one
row per item:

    Item name | Barcode | Quantity | Item id (Do not change) | Variant id (Do not change)

The two "(Do not change)" columns carry Shopify ids written by an earlier
import; they become import hints for discovery.
"""

from dataclasses import dataclass, field
from io import BytesIO, StringIO
from pathlib import Path
from typing import Optional, Union
import structlog

import pandas as pd

from exceptions import ImportFileMissingColumnsError, ImportFileParseError
from models.inventory import LocalInventoryItem
from models.mapping import ImportHint
from utils.barcode_utils import normalize_barcode

logger = structlog.get_logger(__name__)

EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xls")

# normalized header -> field
COLUMNS = {
    "item name": "name",
    "barcode": "barcode",
    "quantity": "quantity",
    "item id (do not change)": "item_id",
    "variant id (do not change)": "variant_id",
}
REQUIRED = ["barcode", "quantity"]
DISPLAY_NAMES = {
    "name": "Item name",
    "barcode": "Barcode",
    "quantity": "Quantity",
    "item_id": "Item id (Do not change)",
    "variant_id": "Variant id (Do not change)",
}


@dataclass
class ParseError:
    """Single row problem."""
    row: int
    field: str
    error: str


@dataclass
class StoreExportParseResult:
    """Inventory snapshot and hints read from one export file."""
    items: list[LocalInventoryItem] = field(default_factory=list)
    hints: list[ImportHint] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    @property
    def has_data(self) -> bool:
        return len(self.items) > 0

    def to_dict(self) -> dict:
        return {
            "items": len(self.items),
            "hints": len(self.hints),
            "errors": [
                {"row": e.row, "field": e.field, "error": e.error}
                for e in self.errors
            ],
        }


def parse_store_export(
    file: Union[str, Path, BytesIO, StringIO],
    store_id: str,
    filename: Optional[str] = None,
    allow_blank_barcode: bool = False,
) -> StoreExportParseResult:
    """
    Parse a store export into sync input.

    Args:
        file: Path or file-like object
        store_id: Store the snapshot belongs to
        filename: Original name for uploads; decides CSV vs Excel
        allow_blank_barcode: Mark hints as trusted even when the Shopify
            record has no barcode yet (freshly created products)

    Returns:
        StoreExportParseResult. Rows without a barcode are kept as items (the
        sync reports them as skipped); rows with a bad quantity are errors.

    Raises:
        ImportFileParseError: File cannot be read
        ImportFileMissingColumnsError: Barcode or Quantity column missing
    """
    df = _read_frame(file, filename)
    logger.info("parsing_store_export", store_id=store_id, rows=len(df))

    df.columns = [COLUMNS.get(_normalize_column(col), _normalize_column(col)) for col in df.columns]

    missing = [col for col in REQUIRED if col not in df.columns]
    if missing:
        raise ImportFileMissingColumnsError(
            missing=[DISPLAY_NAMES[col] for col in missing],
            found=[str(col) for col in df.columns]
        )

    result = StoreExportParseResult()

    for idx, row in df.iterrows():
        row_num = idx + 2  # 1-indexed + header

        barcode = normalize_barcode(_cell(row, "barcode"))
        name = _cell(row, "name")
        if barcode is None and name is None and _cell(row, "quantity") is None:
            continue

        quantity = _parse_quantity(_cell(row, "quantity"))
        if quantity is None:
            result.errors.append(ParseError(
                row=row_num,
                field="Quantity",
                error=f"Not a whole number: {_cell(row, 'quantity')}"
            ))
            continue

        result.items.append(LocalInventoryItem(
            store_id=store_id,
            product_id=barcode or f"row-{row_num}",
            barcode=barcode,
            quantity=quantity,
            available_quantity=quantity,
            product_name=name,
        ))

        item_id = _cell(row, "item_id")
        variant_id = _cell(row, "variant_id")
        if barcode and (item_id or variant_id):
            result.hints.append(ImportHint(
                barcode=barcode,
                remote_product_id=item_id,
                remote_variant_id=variant_id,
                allow_blank_barcode=allow_blank_barcode,
            ))

    logger.info(
        "store_export_parsed",
        store_id=store_id,
        items=len(result.items),
        hints=len(result.hints),
        errors=len(result.errors)
    )
    return result


# ===================
# HELPER FUNCTIONS
# ===================

def _read_frame(file, filename: Optional[str]) -> pd.DataFrame:
    """Load everything as text so barcodes keep their leading zeros."""
    name = filename or (str(file) if isinstance(file, (str, Path)) else "")
    try:
        if name.lower().endswith(EXCEL_SUFFIXES):
            return pd.read_excel(file, engine="openpyxl", dtype=str)
        # sep=None sniffs comma vs semicolon
        return pd.read_csv(file, sep=None, engine="python", dtype=str, skipinitialspace=True)
    except Exception as e:
        logger.error("store_export_read_failed", filename=name, error=str(e))
        raise ImportFileParseError(
            message="Failed to read export file",
            details={"filename": name, "original_error": str(e)}
        )


def _normalize_column(col) -> str:
    """'  Variant id (Do not change) ' -> 'variant id (do not change)'"""
    return " ".join(str(col).replace('"', "").split()).lower()


def _cell(row: pd.Series, column: str) -> Optional[str]:
    value = row.get(column)
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


def _parse_quantity(value: Optional[str]) -> Optional[int]:
    """Empty -> 0; "5", "5.0" -> 5; anything else -> None."""
    if value is None:
        return 0
    try:
        number = float(value.replace(",", "."))
    except ValueError:
        return None
    if not number.is_integer():
        return None
    return int(number)
