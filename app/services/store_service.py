"""Tenant (store) administration: creation and payment configuration storage."""

import re
import uuid
from datetime import datetime

from app.database import get_db
from app.errors import NotFoundError, ValidationError
from app.models.schemas import PaymentProvider, Store
from app.services.store_config import encrypt_secret

_SLUG_RE = re.compile(r"^[a-z0-9-]+$")

# Columns holding provider secrets; written encrypted.
_SECRET_FIELDS = {"mp_access_token", "mp_public_key", "mp_webhook_secret", "pb_token"}
_PLAIN_FIELDS = {
    "mp_point_device_id",
    "mp_point_enabled",
    "pb_email",
    "pb_point_serial",
    "pb_point_enabled",
}


class StoreService:
    """Store management: create, look up, update payment settings."""

    def create_store(
        self,
        slug: str,
        name: str,
        payment_provider: PaymentProvider = PaymentProvider.MERCADOPAGO,
    ) -> Store:
        """
        Create a store with a fresh id.

        Raises:
            ValidationError: bad slug or slug already taken.
        """
        if not slug or not name:
            raise ValidationError("slug and name are required")
        if not _SLUG_RE.match(slug):
            raise ValidationError(
                "slug may only contain lowercase letters, digits and hyphens"
            )

        store_id = uuid.uuid4().hex
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                """INSERT INTO stores (id, slug, name, active, payment_provider,
                                       created_at, updated_at)
                   VALUES (?, ?, ?, 1, ?, ?, ?)""",
                (store_id, slug, name, payment_provider.value, now, now),
            )
            db.commit()
        except Exception as e:
            db.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise ValidationError(f"store slug '{slug}' already exists") from e
            raise
        finally:
            db.close()

        return Store(
            id=store_id,
            slug=slug,
            name=name,
            active=1,
            payment_provider=payment_provider,
            created_at=now,
            updated_at=now,
        )

    def get_store(self, store_id: str) -> Store:
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM stores WHERE id = ?", (store_id,)
            ).fetchone()
        finally:
            db.close()
        if not row:
            raise NotFoundError("store not found")
        return Store(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            active=row["active"],
            payment_provider=PaymentProvider(row["payment_provider"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def save_payment_config(self, store_id: str, **fields) -> None:
        """
        Update the store's payment settings.

        Accepts ``payment_provider`` plus any of the mp_* / pb_* columns.
        Secret values are encrypted before they are written; passing None
        for a secret clears it.

        Raises:
            ValidationError: unknown field or provider.
            NotFoundError: store does not exist.
        """
        columns: dict[str, object] = {}
        for key, value in fields.items():
            if key == "payment_provider":
                try:
                    columns[key] = PaymentProvider(value).value
                except ValueError:
                    raise ValidationError(f"unknown payment provider: {value}")
            elif key in _SECRET_FIELDS:
                columns[key] = encrypt_secret(value)
            elif key in _PLAIN_FIELDS:
                if key.endswith("_enabled"):
                    value = 1 if value else 0
                columns[key] = value
            else:
                raise ValidationError(f"unknown payment setting: {key}")

        if not columns:
            return

        columns["updated_at"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        assignments = ", ".join(f"{col} = ?" for col in columns)
        db = get_db()
        try:
            cursor = db.execute(
                f"UPDATE stores SET {assignments} WHERE id = ?",
                [*columns.values(), store_id],
            )
            db.commit()
            if cursor.rowcount == 0:
                raise NotFoundError("store not found")
        finally:
            db.close()
