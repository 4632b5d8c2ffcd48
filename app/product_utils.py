"""Utility functions for product operations."""
from typing import Optional, List, Dict, Any
import json
import logging
from .db import get_connection
from .schemas import Product, ProductIn, ProductUpdate

logger = logging.getLogger(__name__)

PRODUCT_COLUMNS = """
    id,
    name,
    description,
    price,
    original_price,
    category,
    subcategory,
    brand,
    sku,
    stock_quantity,
    images,
    sizes,
    colors,
    is_featured,
    is_active,
    created_at,
    updated_at
"""

LIST_FIELDS = ("images", "sizes", "colors")

SORT_ORDERS = {
    "low-to-high": "price ASC",
    "high-to-low": "price DESC",
    "newest": "created_at DESC, id DESC",
}


def _row_to_product(row) -> Product:
    return Product(
        id=row[0],
        name=row[1],
        description=row[2] or "",
        price=row[3],
        original_price=row[4],
        category=row[5],
        subcategory=row[6],
        brand=row[7],
        sku=row[8],
        stock_quantity=row[9],
        images=json.loads(row[10] or "[]"),
        sizes=json.loads(row[11] or "[]"),
        colors=json.loads(row[12] or "[]"),
        is_featured=bool(row[13]),
        is_active=bool(row[14]),
        created_at=row[15],
        updated_at=row[16],
    )


def _to_columns(data: Dict[str, Any]) -> Dict[str, Any]:
    """Serializes list fields to JSON and booleans to ints for sqlite."""
    columns = {}
    for key, value in data.items():
        if key in LIST_FIELDS:
            value = json.dumps(value or [])
        elif isinstance(value, bool):
            value = int(value)
        columns[key] = value
    return columns


def get_products_simple(
    q: Optional[str] = None,
    category: Optional[str] = None,
    sort: Optional[str] = None,
    featured: Optional[bool] = None,
    include_inactive: bool = False,
    page: int = 1,
    page_size: int = 20
) -> tuple[List[Product], int]:
    """
    Catalog listing with simple SQL filters.

    Search matches name, description or category, case-insensitively.
    """
    conn = get_connection()
    cur = conn.cursor()

    sql_query = f"SELECT {PRODUCT_COLUMNS} FROM products WHERE 1=1"
    params: List[Any] = []

    if not include_inactive:
        sql_query += " AND is_active = 1"

    if q:
        sql_query += " AND (name LIKE ? OR description LIKE ? OR category LIKE ?)"
        like = f"%{q}%"
        params.extend([like, like, like])

    if category and category != "all":
        sql_query += " AND category = ?"
        params.append(category)

    if featured is not None:
        sql_query += " AND is_featured = ?"
        params.append(int(featured))

    count_query = f"SELECT COUNT(*) FROM ({sql_query})"
    cur.execute(count_query, params)
    total = cur.fetchone()[0]

    order_by = SORT_ORDERS.get(sort or "", "created_at DESC, id DESC")
    offset = (page - 1) * page_size
    sql_query += f" ORDER BY {order_by} LIMIT ? OFFSET ?"
    params.extend([page_size, offset])

    cur.execute(sql_query, params)
    products = [_row_to_product(row) for row in cur.fetchall()]

    conn.close()

    return products, total


def get_product(product_id: int, active_only: bool = True) -> Optional[Product]:
    conn = get_connection()
    cur = conn.cursor()

    sql_query = f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id = ?"
    if active_only:
        sql_query += " AND is_active = 1"

    cur.execute(sql_query, [product_id])
    row = cur.fetchone()
    conn.close()

    return _row_to_product(row) if row else None


def get_categories() -> List[Dict[str, Any]]:
    """
    Categories of active products with their product counts.
    """
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("""
        SELECT category, COUNT(*) as count
        FROM products
        WHERE is_active = 1
        GROUP BY category
        ORDER BY category ASC
    """)

    categories = [{"name": row[0], "count": row[1]} for row in cur.fetchall()]

    conn.close()
    return categories


def create_product(data: ProductIn) -> Product:
    columns = _to_columns(data.model_dump())
    names = ", ".join(columns)
    placeholders = ", ".join("?" for _ in columns)

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        f"INSERT INTO products ({names}) VALUES ({placeholders})",
        list(columns.values()),
    )
    product_id = cur.lastrowid
    conn.commit()
    conn.close()

    logger.info(f"✅ Product created: ID {product_id} ({data.name})")
    return get_product(product_id, active_only=False)


def update_product(product_id: int, data: ProductUpdate) -> Optional[Product]:
    """
    Applies the fields that were set on `data`.

    Returns:
        The updated product, or None if it does not exist
    """
    columns = _to_columns(data.model_dump(exclude_unset=True))
    if not columns:
        return get_product(product_id, active_only=False)

    assignments = ", ".join(f"{name} = ?" for name in columns)

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        f"UPDATE products SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        list(columns.values()) + [product_id],
    )
    matched = cur.rowcount
    conn.commit()
    conn.close()

    if matched == 0:
        return None
    return get_product(product_id, active_only=False)


def delete_product(product_id: int) -> bool:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("DELETE FROM products WHERE id = ?", [product_id])
    deleted = cur.rowcount
    conn.commit()
    conn.close()

    if deleted:
        logger.info(f"🗑️ Product deleted: ID {product_id}")
    return deleted > 0


def set_product_images(product_id: int, images: List[str]) -> Optional[Product]:
    return update_product(product_id, ProductUpdate(images=images))
