"""Product catalogue service: the minimum the checkout needs (create, update price, look up)."""

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation

from app.database import get_db
from app.errors import NotFoundError, ValidationError
from app.models.schemas import Product


def _parse_price(price) -> Decimal:
    try:
        value = Decimal(str(price)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("invalid price")
    if value < 0:
        raise ValidationError("price must not be negative")
    return value


def _row_to_product(row) -> Product:
    return Product(
        id=row["id"],
        store_id=row["store_id"],
        name=row["name"],
        price=Decimal(str(row["price"])),
        barcode=row["barcode"],
        active=row["active"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class ProductService:

    def create_product(
        self, store_id: str, name: str, price, barcode: str | None = None
    ) -> Product:
        if not name:
            raise ValidationError("product name is required")
        value = _parse_price(price)
        product_id = uuid.uuid4().hex
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            db.execute(
                """INSERT INTO products (id, store_id, barcode, name, price,
                                         active, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, 1, ?, ?)""",
                (product_id, store_id, barcode, name, str(value), now, now),
            )
            db.commit()
        finally:
            db.close()

        return Product(
            id=product_id,
            store_id=store_id,
            name=name,
            price=value,
            barcode=barcode,
            created_at=now,
            updated_at=now,
        )

    def update_price(self, product_id: str, price) -> None:
        value = _parse_price(price)
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                "UPDATE products SET price = ?, updated_at = ? WHERE id = ?",
                (str(value), now, product_id),
            )
            db.commit()
            if cursor.rowcount == 0:
                raise NotFoundError("product not found")
        finally:
            db.close()

    def get_by_barcode(self, store_id: str, barcode: str) -> Product:
        """Look up an active product by scanned barcode within a store."""
        db = get_db()
        try:
            row = db.execute(
                """SELECT * FROM products
                   WHERE store_id = ? AND barcode = ? AND active = 1""",
                (store_id, barcode),
            ).fetchone()
        finally:
            db.close()
        if not row:
            raise NotFoundError("product not found")
        return _row_to_product(row)

    def get_many(self, store_id: str, product_ids: list[str]) -> dict[str, Product]:
        """Fetch active products of one store, keyed by id."""
        if not product_ids:
            return {}
        placeholders = ",".join("?" for _ in product_ids)
        db = get_db()
        try:
            rows = db.execute(
                f"""SELECT * FROM products
                    WHERE store_id = ? AND active = 1 AND id IN ({placeholders})""",
                [store_id, *product_ids],
            ).fetchall()
        finally:
            db.close()
        return {row["id"]: _row_to_product(row) for row in rows}
