"""
Order service: order creation with price snapshots, lookups, payment-attempt claims.
"""

import logging
import sqlite3
import uuid
from datetime import datetime
from decimal import Decimal

from app.database import get_db
from app.errors import NotFoundError, ValidationError
from app.models.schemas import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethodType,
    PaymentProvider,
)
from app.services.product_service import ProductService

logger = logging.getLogger(__name__)


def _row_to_order(row: sqlite3.Row, items: list[OrderItem] | None = None) -> Order:
    return Order(
        id=row["id"],
        store_id=row["store_id"],
        total=Decimal(str(row["total"])),
        status=OrderStatus(row["status"]),
        payment_provider=PaymentProvider(row["payment_provider"]) if row["payment_provider"] else None,
        payment_method=PaymentMethodType(row["payment_method"]) if row["payment_method"] else None,
        payment_id=row["payment_id"],
        external_reference=row["external_reference"],
        point_payment=bool(row["point_payment"]),
        items=items or [],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        paid_at=row["paid_at"],
    )


class OrderService:
    """Order creation and lookup."""

    def __init__(self, product_service: ProductService | None = None):
        self._products = product_service or ProductService()

    def create_order(self, store_id: str, items: list[dict]) -> Order:
        """
        Create a PENDING order from scanned items.

        Unit prices are copied from the live product at creation time; the
        total is the sum of those snapshots and is never recomputed.

        Args:
            store_id: owning store.
            items: list of {"product_id": str, "quantity": int}.

        Returns:
            The persisted Order with its items.

        Raises:
            ValidationError: missing store, empty cart or bad quantity.
            NotFoundError: a product does not exist in this store.
        """
        if not store_id:
            raise ValidationError("store_id is required")
        if not items:
            raise ValidationError("items are required")

        lines: list[tuple[str, int]] = []
        for item in items:
            product_id = item.get("product_id")
            quantity = item.get("quantity")
            if not product_id:
                raise ValidationError("product_id is required")
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
                raise ValidationError("quantity must be a positive integer")
            lines.append((product_id, quantity))

        products = self._products.get_many(store_id, list({pid for pid, _ in lines}))
        missing = {pid for pid, _ in lines} - products.keys()
        if missing:
            raise NotFoundError("one or more products were not found")

        order_items = []
        total = Decimal("0.00")
        for product_id, quantity in lines:
            product = products[product_id]
            order_items.append(OrderItem(
                product_id=product_id,
                product_name=product.name,
                unit_price=product.price,
                quantity=quantity,
            ))
            total += product.price * quantity
        total = total.quantize(Decimal("0.01"))

        order_id = uuid.uuid4().hex
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                """INSERT INTO orders (id, store_id, total, status, created_at, updated_at)
                   VALUES (?, ?, ?, 'PENDING', ?, ?)""",
                (order_id, store_id, str(total), now, now),
            )
            for item in order_items:
                cursor = db.execute(
                    """INSERT INTO order_items
                       (order_id, product_id, product_name, unit_price, quantity)
                       VALUES (?, ?, ?, ?, ?)""",
                    (order_id, item.product_id, item.product_name,
                     str(item.unit_price), item.quantity),
                )
                item.id = cursor.lastrowid
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("Order created: id=%s, store=%s, total=%s", order_id, store_id, total)
        return Order(
            id=order_id,
            store_id=store_id,
            total=total,
            items=order_items,
            created_at=now,
            updated_at=now,
        )

    def find_order(self, order_id: str) -> Order | None:
        return self._find_one("id = ?", (order_id,))

    def get_order(self, order_id: str) -> Order:
        """Raises NotFoundError when the order does not exist."""
        order = self.find_order(order_id)
        if not order:
            raise NotFoundError("order not found")
        return order

    def find_by_external_reference(self, external_reference: str) -> Order | None:
        return self._find_one("external_reference = ?", (external_reference,))

    def find_by_payment_id(self, payment_id: str, store_id: str | None = None) -> Order | None:
        if store_id:
            return self._find_one(
                "payment_id = ? AND store_id = ?", (payment_id, store_id)
            )
        return self._find_one("payment_id = ?", (payment_id,))

    def list_orders(self, store_id: str) -> list[Order]:
        db = get_db()
        try:
            rows = db.execute(
                "SELECT * FROM orders WHERE store_id = ? ORDER BY created_at DESC",
                (store_id,),
            ).fetchall()
            return [_row_to_order(row, self._load_items(db, row["id"])) for row in rows]
        finally:
            db.close()

    # ── Payment attempt bookkeeping ───────────────────────

    def claim_for_payment(
        self,
        order_id: str,
        provider: PaymentProvider,
        payment_method: PaymentMethodType | None,
        point_payment: bool,
    ) -> bool:
        """
        Mark the order as having a payment attempt in flight.

        Single conditional write: succeeds only while the order is PENDING and
        no provider has been recorded yet. The external reference (the order
        id) is set here and never changes afterwards.

        Returns:
            True when this caller won the claim.
        """
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """UPDATE orders
                   SET payment_provider = ?, payment_method = ?, point_payment = ?,
                       external_reference = COALESCE(external_reference, id),
                       updated_at = ?
                   WHERE id = ? AND status = 'PENDING' AND payment_provider IS NULL""",
                (provider.value, payment_method.value if payment_method else None,
                 1 if point_payment else 0, now, order_id),
            )
            db.commit()
            return cursor.rowcount == 1
        finally:
            db.close()

    def release_claim(self, order_id: str) -> None:
        """Undo a claim after the provider call failed, so the customer can retry."""
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                """UPDATE orders
                   SET payment_provider = NULL, payment_method = NULL,
                       point_payment = 0, updated_at = ?
                   WHERE id = ? AND status = 'PENDING' AND payment_id IS NULL""",
                (now, order_id),
            )
            db.commit()
        finally:
            db.close()

    def attach_payment_id(self, order_id: str, payment_id: str) -> bool:
        """Set the provider payment id if none is recorded yet. Returns True if written."""
        db = get_db()
        try:
            cursor = db.execute(
                "UPDATE orders SET payment_id = ? WHERE id = ? AND payment_id IS NULL",
                (payment_id, order_id),
            )
            db.commit()
            return cursor.rowcount == 1
        finally:
            db.close()

    # ── Internal ──────────────────────────────────────────

    def _find_one(self, where: str, params: tuple) -> Order | None:
        db = get_db()
        try:
            row = db.execute(
                f"SELECT * FROM orders WHERE {where}", params
            ).fetchone()
            if not row:
                return None
            return _row_to_order(row, self._load_items(db, row["id"]))
        finally:
            db.close()

    @staticmethod
    def _load_items(db: sqlite3.Connection, order_id: str) -> list[OrderItem]:
        rows = db.execute(
            """SELECT id, product_id, product_name, unit_price, quantity
               FROM order_items WHERE order_id = ? ORDER BY id ASC""",
            (order_id,),
        ).fetchall()
        return [
            OrderItem(
                id=row["id"],
                product_id=row["product_id"],
                product_name=row["product_name"],
                unit_price=Decimal(str(row["unit_price"])),
                quantity=row["quantity"],
            )
            for row in rows
        ]
