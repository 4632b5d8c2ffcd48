"""Order persistence: order rows and their line items."""
from typing import List, Dict, Any, Optional
import json
import logging
from .db import get_connection
from .schemas import Address, Order, OrderItem, OrderStatus

logger = logging.getLogger(__name__)

ORDER_COLUMNS = """
    o.id, o.user_id, o.total_amount, o.status, o.payment_status, o.payment_method,
    o.shipping_address, o.billing_address, o.notes, o.created_at,
    p.full_name, p.email
"""

ORDER_SOURCE = "orders o LEFT JOIN profiles p ON p.user_id = o.user_id"


def _load_address(raw: Optional[str]) -> Optional[Address]:
    return Address(**json.loads(raw)) if raw else None


def _row_to_order(row, items: Optional[List[OrderItem]] = None) -> Order:
    return Order(
        id=row[0],
        user_id=row[1],
        total_amount=row[2],
        status=row[3],
        payment_status=row[4],
        payment_method=row[5],
        shipping_address=_load_address(row[6]),
        billing_address=_load_address(row[7]),
        notes=row[8],
        created_at=row[9],
        customer_name=row[10],
        customer_email=row[11],
        items=items or [],
    )


def create_order(
    user_id: str,
    total_amount: float,
    shipping_address: Address,
    billing_address: Address,
    notes: Optional[str] = None,
) -> Order:
    """
    Inserts a pending cash-on-delivery order and returns it with its generated id.
    """
    conn = get_connection()
    cur = conn.cursor()
    try:
        cur.execute("""
            INSERT INTO orders (
                user_id,
                total_amount,
                status,
                payment_status,
                payment_method,
                shipping_address,
                billing_address,
                notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            user_id,
            total_amount,
            OrderStatus.pending.value,
            "pending",
            "cod",
            shipping_address.model_dump_json(),
            billing_address.model_dump_json(),
            notes,
        ])
        order_id = cur.lastrowid
        conn.commit()
    finally:
        conn.close()

    logger.info(f"✅ Order created: ID {order_id}")
    return get_order(order_id)


def insert_order_items(order_id: int, items: List[OrderItem]) -> None:
    """
    Inserts all line items of an order in a single transaction.
    """
    conn = get_connection()
    try:
        with conn:
            conn.executemany("""
                INSERT INTO order_items (
                    order_id,
                    product_id,
                    product_name,
                    quantity,
                    price,
                    size,
                    color
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                (
                    order_id,
                    item.product_id,
                    item.product_name,
                    item.quantity,
                    item.price,
                    item.size,
                    item.color,
                )
                for item in items
            ])
    finally:
        conn.close()

    logger.info(f"📦 {len(items)} items added to order {order_id}")


def update_order_status(order_id: int, status: OrderStatus) -> bool:
    conn = get_connection()
    cur = conn.cursor()
    try:
        cur.execute(
            "UPDATE orders SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            [OrderStatus(status).value, order_id],
        )
        conn.commit()
        updated = cur.rowcount
    finally:
        conn.close()

    return updated > 0


def get_order_items(order_ids: List[int]) -> Dict[int, List[OrderItem]]:
    if not order_ids:
        return {}

    conn = get_connection()
    cur = conn.cursor()

    placeholders = ",".join(["?" for _ in order_ids])
    cur.execute(f"""
        SELECT id, order_id, product_id, product_name, quantity, price, size, color
        FROM order_items
        WHERE order_id IN ({placeholders})
        ORDER BY id ASC
    """, order_ids)

    items: Dict[int, List[OrderItem]] = {order_id: [] for order_id in order_ids}
    for row in cur.fetchall():
        items[row[1]].append(OrderItem(
            id=row[0],
            order_id=row[1],
            product_id=row[2],
            product_name=row[3],
            quantity=row[4],
            price=row[5],
            size=row[6],
            color=row[7],
        ))

    conn.close()
    return items


def get_order(order_id: int, user_id: Optional[str] = None) -> Optional[Order]:
    """
    Loads an order with its items. When user_id is given the order must belong to it.
    """
    conn = get_connection()
    cur = conn.cursor()

    sql_query = f"SELECT {ORDER_COLUMNS} FROM {ORDER_SOURCE} WHERE o.id = ?"
    params: List[Any] = [order_id]
    if user_id is not None:
        sql_query += " AND o.user_id = ?"
        params.append(user_id)

    cur.execute(sql_query, params)
    row = cur.fetchone()
    conn.close()

    if not row:
        return None
    return _row_to_order(row, get_order_items([order_id]).get(order_id))


def list_orders(user_id: Optional[str] = None) -> List[Order]:
    """
    Orders newest first, each with its items. Without user_id, every order (admin view).
    """
    conn = get_connection()
    cur = conn.cursor()

    sql_query = f"SELECT {ORDER_COLUMNS} FROM {ORDER_SOURCE}"
    params: List[Any] = []
    if user_id is not None:
        sql_query += " WHERE o.user_id = ?"
        params.append(user_id)
    sql_query += " ORDER BY o.created_at DESC, o.id DESC"

    cur.execute(sql_query, params)
    rows = cur.fetchall()
    conn.close()

    items = get_order_items([row[0] for row in rows])
    return [_row_to_order(row, items.get(row[0])) for row in rows]


def get_order_totals() -> Dict[str, Any]:
    """
    Order count and revenue, leaving out orders whose checkout failed.
    """
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("""
        SELECT COUNT(*), COALESCE(SUM(total_amount), 0.0)
        FROM orders
        WHERE status != ?
    """, [OrderStatus.failed.value])

    count, revenue = cur.fetchone()
    conn.close()

    return {"total_orders": count, "total_revenue": float(revenue)}
