# app/loader.py
from typing import Any, Dict, IO, List, Optional, Union
import json
import logging

import pandas as pd

from .db import get_connection
from .schemas import ProductIn

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"name", "category", "price"}
LIST_COLUMNS = ("images", "sizes", "colors")


def load_products_to_db(source: Union[str, IO]) -> Dict[str, int]:
    """
    Bulk-imports products from a CSV file.

    List columns (images, sizes, colors) are comma separated. Rows carrying a
    sku that already exists update that product; every other row is inserted.

    Returns:
        Counts of inserted and updated products
    """
    df = pd.read_csv(source, dtype={"sku": str})

    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"CSV is missing required columns: {', '.join(sorted(missing))}")

    conn = get_connection()
    cur = conn.cursor()
    inserted = updated = 0

    try:
        for index, row in df.iterrows():
            product = row_to_product(row)
            if not product.name or not product.category:
                raise ValueError(f"Row {index + 1}: name and category are required")

            existing_id = None
            if product.sku:
                cur.execute("SELECT id FROM products WHERE sku = ?", [product.sku])
                found = cur.fetchone()
                existing_id = found[0] if found else None

            values = [
                product.name,
                product.description,
                product.price,
                product.original_price,
                product.category,
                product.subcategory,
                product.brand,
                product.sku,
                product.stock_quantity,
                json.dumps(product.images),
                json.dumps(product.sizes),
                json.dumps(product.colors),
                int(product.is_featured),
                int(product.is_active),
            ]

            if existing_id is not None:
                cur.execute("""
                    UPDATE products SET
                        name = ?, description = ?, price = ?, original_price = ?,
                        category = ?, subcategory = ?, brand = ?, sku = ?,
                        stock_quantity = ?, images = ?, sizes = ?, colors = ?,
                        is_featured = ?, is_active = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                """, values + [existing_id])
                updated += 1
            else:
                cur.execute("""
                    INSERT INTO products (
                        name, description, price, original_price,
                        category, subcategory, brand, sku,
                        stock_quantity, images, sizes, colors,
                        is_featured, is_active
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, values)
                inserted += 1

        conn.commit()
    finally:
        conn.close()

    logger.info(f"✅ Catalog import finished: {inserted} inserted, {updated} updated")
    return {"inserted": inserted, "updated": updated}


def _value(row: pd.Series, column: str, default: Any = None) -> Any:
    value = row.get(column, default)
    if value is None or (not isinstance(value, (list, str)) and pd.isna(value)):
        return default
    return value


def _split_list(value: Optional[Any]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in str(value).split(",") if item.strip()]


def _flag(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


def row_to_product(row: pd.Series) -> ProductIn:
    """
    Converts a CSV row into a validated product payload.
    """
    original_price = _value(row, "original_price")
    return ProductIn(
        name=str(_value(row, "name", "")).strip(),
        description=str(_value(row, "description", "")),
        price=float(_value(row, "price", 0)),
        original_price=float(original_price) if original_price is not None else None,
        category=str(_value(row, "category", "")).strip(),
        subcategory=_value(row, "subcategory"),
        brand=_value(row, "brand"),
        sku=_value(row, "sku"),
        stock_quantity=int(_value(row, "stock_quantity", 0)),
        images=_split_list(_value(row, "images")),
        sizes=_split_list(_value(row, "sizes")),
        colors=_split_list(_value(row, "colors")),
        is_featured=_flag(_value(row, "is_featured"), False),
        is_active=_flag(_value(row, "is_active"), True),
    )
