"""Build Shopify ``ProductSetInput`` payloads from grouped spreadsheet rows."""

import math
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from .models import ExistingProduct, InventoryQuantity, UpsertRecord


VALID_STATUSES = ("ACTIVE", "DRAFT", "ARCHIVED", "UNLISTED")
DEFAULT_STATUS = "ACTIVE"
OPTION_NAME = "Title"
DEFAULT_IMAGE_FILENAME = "image.jpg"


def text(value: Any) -> str:
    """Cell value as a stripped string; blanks become ''."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Excel hands back 12345.0 for an integer-looking SKU or barcode
        return str(int(value))
    return str(value).strip()


def parse_tags(raw: Any) -> List[str]:
    """Split a comma-separated tag cell."""
    return [tag.strip() for tag in text(raw).split(",") if tag.strip()]


def map_status(raw: Any) -> str:
    status = text(raw).upper()
    return status if status in VALID_STATUSES else DEFAULT_STATUS


def parse_number(raw: Any) -> Optional[float]:
    """Parse a numeric cell. Blank or non-numeric values give None."""
    if isinstance(raw, bool):
        return None
    value = text(raw) if isinstance(raw, str) else raw
    if value == "" or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_quantity(raw: Any) -> Optional[int]:
    """Parse an inventory quantity. Only whole numbers are accepted."""
    number = parse_number(raw)
    if number is None or not number.is_integer():
        return None
    return int(number)


def parse_bool(raw: Any) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    value = text(raw).upper()
    if value in ("TRUE", "YES", "Y", "1"):
        return True
    if value in ("FALSE", "NO", "N", "0"):
        return False
    return None


def unique_option_values(rows: Tuple[Dict[str, Any], ...]) -> List[str]:
    """Distinct non-empty variant titles in first-seen order."""
    seen: Dict[str, None] = {}
    for row in rows:
        title = text(row.get("VariantTitle"))
        if title:
            seen.setdefault(title, None)
    return list(seen)


def build_variant_input(row: Dict[str, Any], variant_ids_by_sku: Dict[str, str]) -> Dict[str, Any]:
    """Map one variant row.

    A variant whose SKU already exists on the product carries that variant's
    id so Shopify updates it in place instead of creating a duplicate.
    """
    sku = text(row.get("VariantSKU"))
    title = text(row.get("VariantTitle"))

    variant: Dict[str, Any] = {}
    if sku and sku in variant_ids_by_sku:
        variant["id"] = variant_ids_by_sku[sku]
    if sku:
        variant["sku"] = sku

    price = parse_number(row.get("VariantPrice"))
    if price is not None:
        variant["price"] = price
    compare_at = parse_number(row.get("VariantCompareAtPrice"))
    if compare_at is not None:
        variant["compareAtPrice"] = compare_at

    variant["optionValues"] = [{"optionName": OPTION_NAME, "name": title}] if title else []

    barcode = text(row.get("VariantBarcode"))
    if barcode:
        variant["barcode"] = barcode
    taxable = parse_bool(row.get("VariantTaxable"))
    if taxable is not None:
        variant["taxable"] = taxable

    inventory_item: Dict[str, Any] = {"tracked": True}
    requires_shipping = parse_bool(row.get("VariantRequiresShipping"))
    if requires_shipping is not None:
        inventory_item["requiresShipping"] = requires_shipping
    variant["inventoryItem"] = inventory_item

    return variant


def _image_filename(src: str) -> str:
    path = urlparse(src).path
    return unquote(path.rsplit("/", 1)[-1]) or DEFAULT_IMAGE_FILENAME


def build_files(image_rows: Tuple[Dict[str, Any], ...]) -> List[Dict[str, Any]]:
    """Map image rows to ``FileSetInput`` entries, ordered by ImagePosition when given."""
    indexed = []
    for idx, row in enumerate(image_rows):
        src = text(row.get("ImageSrc"))
        if not src:
            continue
        position = parse_number(row.get("ImagePosition"))
        indexed.append((position is None, position or 0, idx, row, src))
    indexed.sort(key=lambda item: item[:3])

    files = []
    for _, _, _, row, src in indexed:
        file_input = {
            "originalSource": src,
            "filename": _image_filename(src),
            "contentType": "IMAGE",
        }
        alt = text(row.get("ImageAltText"))
        if alt:
            file_input["alt"] = alt
        files.append(file_input)
    return files


def build_metafields(metafield_rows: Tuple[Dict[str, Any], ...]) -> List[Dict[str, Any]]:
    return [
        {
            "namespace": text(row.get("Namespace")),
            "key": text(row.get("Key")),
            "type": text(row.get("Type")),
            "value": "" if row.get("Value") is None else str(row.get("Value")),
        }
        for row in metafield_rows
    ]


def build_product_set_input(record: UpsertRecord, existing: Optional[ExistingProduct] = None) -> Dict[str, Any]:
    """Build the ``productSet`` input for one handle.

    Product-level fields come from the first row of the group.
    """
    first_row = record.variant_rows[0]
    variant_ids_by_sku = existing.variant_ids_by_sku() if existing else {}

    option_values = unique_option_values(record.variant_rows)
    product_options = (
        [{"name": OPTION_NAME, "values": [{"name": value} for value in option_values]}]
        if option_values else []
    )

    product_input: Dict[str, Any] = {
        "title": text(first_row.get("ProductTitle")),
        "handle": record.handle,
        "descriptionHtml": "" if first_row.get("ProductDescriptionHtml") is None else str(first_row.get("ProductDescriptionHtml")),
        "tags": parse_tags(first_row.get("Tags")),
        "status": map_status(first_row.get("Status")),
        "productOptions": product_options,
        "variants": [build_variant_input(row, variant_ids_by_sku) for row in record.variant_rows],
    }

    product_type = text(first_row.get("ProductType"))
    if product_type:
        product_input["productType"] = product_type
    vendor = text(first_row.get("Vendor"))
    if vendor:
        product_input["vendor"] = vendor

    metafields = build_metafields(record.metafield_rows)
    if metafields:
        product_input["metafields"] = metafields
    files = build_files(record.image_rows)
    if files:
        product_input["files"] = files

    return product_input


def build_inventory_quantities(
    record: UpsertRecord,
    product: ExistingProduct,
    location_id: str,
) -> Tuple[List[InventoryQuantity], List[str]]:
    """Resolve quantity rows to inventory items via SKU.

    Returns the quantity lines plus the SKUs that had a quantity but no
    inventory item on the product.
    """
    inventory_item_ids = product.inventory_item_ids_by_sku()
    quantities: List[InventoryQuantity] = []
    unresolved: List[str] = []

    for row in record.variant_rows:
        sku = text(row.get("VariantSKU"))
        quantity = parse_quantity(row.get("VariantInventoryQuantity"))
        if not sku or quantity is None:
            continue

        inventory_item_id = inventory_item_ids.get(sku)
        if not inventory_item_id:
            unresolved.append(sku)
            continue

        quantities.append(InventoryQuantity(
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            quantity=quantity,
        ))

    return quantities, unresolved
