"""Spreadsheet input handling with validation and grouping by product handle."""

import csv
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import pandas as pd
from rich.console import Console

from .models import CatalogData, SyncOutcome, UpsertRecord


PRODUCTS_SHEET = "Products"
IMAGES_SHEET = "Images"
METAFIELDS_SHEET = "Metafields"

REQUIRED_PRODUCT_COLUMNS = [
    "ProductHandle",
    "ProductTitle",
    "ProductDescriptionHtml",
    "ProductType",
    "Vendor",
    "Tags",
    "VariantSKU",
    "VariantTitle",
    "VariantPrice",
]

OPTIONAL_PRODUCT_COLUMNS = [
    "Status",
    "VariantCompareAtPrice",
    "VariantInventoryQuantity",
    "VariantBarcode",
    "VariantTaxable",
    "VariantRequiresShipping",
]

REQUIRED_IMAGE_COLUMNS = ["ProductHandle", "ImageSrc"]
OPTIONAL_IMAGE_COLUMNS = ["ImageAltText", "ImagePosition"]

REQUIRED_METAFIELD_COLUMNS = ["ProductHandle", "Namespace", "Key", "Type", "Value"]


class InputValidationError(ValueError):
    """The spreadsheet is missing a required sheet or column."""
    pass


class SpreadsheetProcessor:
    """Reads the product workbook and groups its rows by product handle."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self._skipped_rows = 0

    def read_sheets(self, file_path: Path) -> Dict[str, pd.DataFrame]:
        """Read every sheet of the workbook. A CSV file counts as the Products sheet."""
        if not file_path.exists():
            raise FileNotFoundError(f"Spreadsheet not found: {file_path}")

        try:
            if file_path.suffix.lower() == ".csv":
                sheets = {PRODUCTS_SHEET: pd.read_csv(file_path, dtype=object, encoding="utf-8")}
            else:
                sheets = pd.read_excel(file_path, sheet_name=None, dtype=object)
        except (ValueError, OSError) as e:
            raise InputValidationError(f"Failed to read spreadsheet {file_path}: {e}") from e

        self.console.print(f"[green]Loaded sheets {', '.join(sheets)} from {file_path}[/green]")
        return sheets

    def validate_required_columns(self, df: pd.DataFrame, required_columns: Sequence[str], sheet_name: str) -> None:
        """Validate that required columns exist."""
        missing_columns = [col for col in required_columns if col not in df.columns]

        if missing_columns:
            raise InputValidationError(
                f'Missing required columns in the "{sheet_name}" sheet: {", ".join(missing_columns)}'
            )

    def to_rows(self, df: pd.DataFrame) -> List[Dict[str, Any]]:
        """Convert a DataFrame into flat row dicts with blanks as ''."""
        return [
            {str(column): self._clean_value(value) for column, value in record.items()}
            for record in df.to_dict(orient="records")
        ]

    def _clean_value(self, value: Any) -> Any:
        """Blank cells become '', strings are stripped, numbers pass through."""
        if value is None:
            return ""
        try:
            if pd.isna(value):
                return ""
        except (TypeError, ValueError):
            pass
        if isinstance(value, str):
            return value.strip().replace("\r\n", "\n").replace("\r", "\n")
        return value

    def _group_rows(
        self,
        rows: List[Dict[str, Any]],
        required_fields: Sequence[str],
        sheet_name: str,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Group rows by ProductHandle, preserving first-seen order."""
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        skipped = 0

        for idx, row in enumerate(rows):
            values = [str(row.get(field, "")).strip() for field in required_fields]
            if not all(values):
                skipped += 1
                self.console.print(
                    f"[yellow]{sheet_name} row {idx + 2}: Missing {' or '.join(required_fields)} - skipped[/yellow]"
                )
                continue
            grouped.setdefault(values[0], []).append(row)

        self._skipped_rows += skipped
        return grouped

    def load_catalog(self, file_path: Path, limit: Optional[int] = None) -> CatalogData:
        """Read, validate and group the workbook.

        Raises:
            FileNotFoundError: the file does not exist.
            InputValidationError: no product rows, or a required column is absent.
        """
        self._skipped_rows = 0
        sheets = self.read_sheets(file_path)

        products_df = sheets.get(PRODUCTS_SHEET)
        if products_df is None or products_df.empty:
            raise InputValidationError(f'No product data found in the "{PRODUCTS_SHEET}" sheet')
        self.validate_required_columns(products_df, REQUIRED_PRODUCT_COLUMNS, PRODUCTS_SHEET)
        product_rows = self.to_rows(products_df)
        products_by_handle = self._group_rows(product_rows, ["ProductHandle"], PRODUCTS_SHEET)

        image_rows = self._optional_sheet_rows(sheets, IMAGES_SHEET, REQUIRED_IMAGE_COLUMNS)
        images_by_handle = self._group_rows(image_rows, ["ProductHandle", "ImageSrc"], IMAGES_SHEET)

        metafield_rows = self._optional_sheet_rows(sheets, METAFIELDS_SHEET, REQUIRED_METAFIELD_COLUMNS)
        metafields_by_handle = self._group_rows(
            metafield_rows, ["ProductHandle", "Namespace", "Key", "Type"], METAFIELDS_SHEET
        )

        handles = list(products_by_handle)
        if limit:
            handles = handles[:limit]
            self.console.print(f"[yellow]Limited to first {limit} product handles for processing[/yellow]")

        records = {
            handle: UpsertRecord(
                handle=handle,
                variant_rows=tuple(products_by_handle[handle]),
                image_rows=tuple(images_by_handle.get(handle, [])),
                metafield_rows=tuple(metafields_by_handle.get(handle, [])),
            )
            for handle in handles
        }

        catalog = CatalogData(
            records=records,
            product_rows=len(product_rows),
            image_rows=len(image_rows),
            metafield_rows=len(metafield_rows),
            skipped_rows=self._skipped_rows,
            missing_optional_columns=[c for c in OPTIONAL_PRODUCT_COLUMNS if c not in products_df.columns],
        )

        self.console.print(f"[green]Found {len(records)} unique product handles[/green]")
        return catalog

    def _optional_sheet_rows(
        self,
        sheets: Dict[str, pd.DataFrame],
        sheet_name: str,
        required_columns: Sequence[str],
    ) -> List[Dict[str, Any]]:
        df = sheets.get(sheet_name)
        if df is None:
            self.console.print(f'[dim]Sheet "{sheet_name}" not found in the workbook[/dim]')
            return []
        if df.empty:
            self.console.print(f'[yellow]No data found in the "{sheet_name}" sheet[/yellow]')
            return []
        self.validate_required_columns(df, required_columns, sheet_name)
        return self.to_rows(df)

    def write_failures_csv(self, outcomes: List[SyncOutcome], output_path: Path) -> None:
        """Write failed records to a CSV file."""
        failures = [o for o in outcomes if o.failed]
        if not failures:
            return

        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', newline='', encoding='utf-8') as f:
            fieldnames = ['handle', 'status', 'product_id', 'error']
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()

            for outcome in failures:
                writer.writerow({
                    'handle': outcome.handle,
                    'status': outcome.status,
                    'product_id': outcome.product_id or '',
                    'error': outcome.error_summary,
                })

        self.console.print(f"[yellow]Wrote {len(failures)} failures to {output_path}[/yellow]")
