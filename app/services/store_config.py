"""
Store payment configuration: per-tenant provider settings and credentials.

Provider secrets are stored encrypted with Fernet; the key is derived from
SECRET_KEY through PBKDF2. Decrypted secrets only ever flow toward the
provider adapters, never toward HTTP callers (see StorePaymentConfig.public_view).
"""

import base64
import logging
import os
import sqlite3

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.database import get_db
from app.models.schemas import (
    AvailableOptions,
    PaymentProvider,
    ProviderCredentials,
    ProviderSettings,
    StorePaymentConfig,
)

logger = logging.getLogger(__name__)


def _get_fernet() -> Fernet:
    """Derive the Fernet key from the SECRET_KEY environment variable."""
    secret = os.getenv("SECRET_KEY", "default-secret-key")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"kiosk-checkout-salt",
        iterations=100_000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
    return Fernet(key)


def encrypt_secret(plaintext: str | None) -> str | None:
    if not plaintext:
        return None
    f = _get_fernet()
    return f.encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: str | None) -> str | None:
    if not ciphertext:
        return None
    f = _get_fernet()
    return f.decrypt(ciphertext.encode("utf-8")).decode("utf-8")


class StoreConfigResolver:
    """Read-only view of tenant payment configuration."""

    def get_config(self, store_id: str) -> StorePaymentConfig | None:
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM stores WHERE id = ?", (store_id,)
            ).fetchone()
        finally:
            db.close()
        return self._build_config(row) if row else None

    def get_config_by_slug(self, slug: str) -> StorePaymentConfig | None:
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM stores WHERE slug = ?", (slug,)
            ).fetchone()
        finally:
            db.close()
        return self._build_config(row) if row else None

    def get_available_options(self, config: StorePaymentConfig) -> AvailableOptions:
        """
        Compute which providers the tenant can use.

        A provider is available online when its credential is present, and
        for terminal payments when the terminal flag is on and a device id
        is configured as well.
        """
        options = AvailableOptions()
        for provider in PaymentProvider:
            settings = config.settings_for(provider)
            if not settings.credential_configured:
                continue
            options.online.append(provider)
            if settings.terminal_ready:
                options.terminal.append(provider)
        return options

    # ── Internal ──────────────────────────────────────────

    def _decrypt_column(self, row: sqlite3.Row, column: str) -> str | None:
        try:
            return decrypt_secret(row[column])
        except InvalidToken:
            logger.error("Failed to decrypt %s for store %s", column, row["id"])
            return None

    def _build_config(self, row: sqlite3.Row) -> StorePaymentConfig:
        mp_credentials = ProviderCredentials(
            access_token=self._decrypt_column(row, "mp_access_token")
            or os.getenv("MERCADOPAGO_ACCESS_TOKEN"),
            public_key=self._decrypt_column(row, "mp_public_key"),
            webhook_secret=self._decrypt_column(row, "mp_webhook_secret")
            or os.getenv("MERCADOPAGO_WEBHOOK_SECRET"),
        )
        pb_credentials = ProviderCredentials(
            access_token=self._decrypt_column(row, "pb_token")
            or os.getenv("PAGBANK_TOKEN"),
            email=row["pb_email"],
        )

        settings = {
            PaymentProvider.MERCADOPAGO: ProviderSettings(
                credential_configured=bool(mp_credentials.access_token),
                terminal_enabled=bool(row["mp_point_enabled"]),
                device_id=row["mp_point_device_id"]
                or os.getenv("MERCADOPAGO_DEVICE_ID"),
            ),
            PaymentProvider.PAGBANK: ProviderSettings(
                credential_configured=bool(pb_credentials.access_token),
                terminal_enabled=bool(row["pb_point_enabled"]),
                device_id=row["pb_point_serial"]
                or os.getenv("PAGBANK_POINT_DEVICE_SERIAL"),
            ),
        }

        try:
            default_provider = PaymentProvider(row["payment_provider"])
        except ValueError:
            logger.warning(
                "Unknown default provider %r for store %s, using MERCADOPAGO",
                row["payment_provider"], row["id"],
            )
            default_provider = PaymentProvider.MERCADOPAGO

        return StorePaymentConfig(
            store_id=row["id"],
            store_slug=row["slug"],
            default_provider=default_provider,
            settings=settings,
            credentials={
                PaymentProvider.MERCADOPAGO: mp_credentials,
                PaymentProvider.PAGBANK: pb_credentials,
            },
        )
