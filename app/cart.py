from typing import List, Dict, Any, Optional
from .db import get_connection
import json
import logging

logger = logging.getLogger(__name__)


def _get_or_create_cart(cur, user_id: str) -> int:
    """
    Returns the cart id for an identity, creating the cart on first use.
    """
    cur.execute(
        "SELECT id FROM carts WHERE user_id = ?",
        (user_id,),
    )
    row = cur.fetchone()

    if row:
        return row[0]

    cur.execute(
        "INSERT INTO carts (user_id) VALUES (?)",
        (user_id,),
    )
    logger.info(f"🛒 Cart created for user {user_id}")
    return cur.lastrowid


def add_to_cart(
    user_id: str,
    product_id: int,
    quantity: int = 1,
    size: Optional[str] = None,
    color: Optional[str] = None,
) -> int:
    """
    Adds a product to the identity's cart.
    A line with the same (product, size, color) gets its quantity incremented
    instead of being duplicated.

    Returns:
        The id of the cart line that holds the product.
    """
    conn = get_connection()
    cur = conn.cursor()
    try:
        cart_id = _get_or_create_cart(cur, user_id)

        # `IS` so that NULL size/color compare equal
        cur.execute(
            """
            SELECT id, quantity FROM cart_items
            WHERE cart_id = ? AND product_id = ? AND size IS ? AND color IS ?
            """,
            (cart_id, product_id, size, color),
        )
        row = cur.fetchone()

        if row:
            item_id, current_qty = row
            cur.execute(
                "UPDATE cart_items SET quantity = ? WHERE id = ?",
                (current_qty + quantity, item_id),
            )
        else:
            cur.execute(
                """
                INSERT INTO cart_items (cart_id, product_id, quantity, size, color)
                VALUES (?, ?, ?, ?, ?)
                """,
                (cart_id, product_id, quantity, size, color),
            )
            item_id = cur.lastrowid

        cur.execute(
            "UPDATE carts SET updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (cart_id,),
        )
        conn.commit()
    finally:
        conn.close()

    return item_id


def update_cart_item_quantity(user_id: str, item_id: int, new_quantity: int) -> bool:
    """
    Sets the quantity of a cart line.
    If new_quantity <= 0, the line is removed instead.

    Returns:
        True if a line was updated/removed, False if it was not found
    """
    conn = get_connection()
    cur = conn.cursor()
    try:
        if new_quantity <= 0:
            cur.execute(
                """
                DELETE FROM cart_items
                WHERE id = ? AND cart_id IN (SELECT id FROM carts WHERE user_id = ?)
                """,
                (item_id, user_id),
            )
        else:
            cur.execute(
                """
                UPDATE cart_items SET quantity = ?
                WHERE id = ? AND cart_id IN (SELECT id FROM carts WHERE user_id = ?)
                """,
                (new_quantity, item_id, user_id),
            )

        conn.commit()
        rows_affected = cur.rowcount
    finally:
        conn.close()

    return rows_affected > 0


def remove_from_cart(user_id: str, item_id: int) -> None:
    """
    Removes a line from the identity's cart. Unknown ids are ignored.
    """
    update_cart_item_quantity(user_id, item_id, 0)


def clear_cart(user_id: str) -> None:
    """
    Empties the identity's cart.
    """
    conn = get_connection()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            DELETE FROM cart_items
            WHERE cart_id IN (SELECT id FROM carts WHERE user_id = ?)
            """,
            (user_id,),
        )
        conn.commit()
    finally:
        conn.close()


def get_cart(user_id: str) -> List[Dict[str, Any]]:
    """
    Returns the identity's cart lines joined with current product data,
    in the order they were added.
    """
    conn = get_connection()
    cur = conn.cursor()

    cur.execute(
        """
        SELECT
            ci.id,
            ci.product_id,
            ci.quantity,
            ci.size,
            ci.color,
            p.name,
            p.price,
            p.images,
            p.stock_quantity
        FROM cart_items ci
        JOIN carts c ON ci.cart_id = c.id
        JOIN products p ON ci.product_id = p.id
        WHERE c.user_id = ?
        ORDER BY ci.id ASC
        """,
        (user_id,),
    )

    items: List[Dict[str, Any]] = []
    for (
        item_id,
        product_id,
        quantity,
        size,
        color,
        name,
        price,
        images,
        stock_quantity,
    ) in cur.fetchall():
        items.append(
            {
                "id": item_id,
                "product_id": product_id,
                "quantity": quantity,
                "size": size,
                "color": color,
                "product": {
                    "name": name,
                    "price": price,
                    "images": json.loads(images or "[]"),
                },
                "stock_quantity": stock_quantity,
            }
        )

    conn.close()
    return items
