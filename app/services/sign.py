"""Webhook signature verification for Mercado Pago and PagBank notifications."""

import hmac as _hmac

from Crypto.Hash import HMAC, SHA256


def parse_mercadopago_signature(header: str | None) -> tuple[str | None, str | None]:
    """
    Split an ``x-signature`` header of the form ``ts=1704908010,v1=618c85...``.

    Returns:
        (ts, v1); either may be None when absent.
    """
    ts = v1 = None
    if not header:
        return ts, v1
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "ts":
            ts = value.strip()
        elif key == "v1":
            v1 = value.strip()
    return ts, v1


def generate_mercadopago_signature(
    secret: str, data_id: str, request_id: str | None, ts: str
) -> str:
    """
    HMAC-SHA256 of the Mercado Pago signing manifest.

    Manifest: ``id:{data.id};request-id:{x-request-id};ts:{ts};``. The
    request-id segment is omitted when the header was not sent. Alphanumeric
    ids are lower-cased, as the provider does when signing.

    Returns the lowercase hex digest.
    """
    manifest = f"id:{str(data_id).lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    h = HMAC.new(secret.encode("utf-8"), manifest.encode("utf-8"), digestmod=SHA256)
    return h.hexdigest()


def verify_mercadopago_signature(
    secret: str, header: str | None, data_id: str, request_id: str | None
) -> bool:
    ts, v1 = parse_mercadopago_signature(header)
    if not ts or not v1:
        return False
    expected = generate_mercadopago_signature(secret, data_id, request_id, ts)
    return _hmac.compare_digest(expected, v1.lower())


def generate_pagbank_signature(token: str, raw_body: bytes) -> str:
    """SHA-256 of ``{token}-{raw_body}``, the PagBank authenticity token."""
    h = SHA256.new(token.encode("utf-8") + b"-" + raw_body)
    return h.hexdigest()


def verify_pagbank_signature(token: str, raw_body: bytes, signature: str) -> bool:
    expected = generate_pagbank_signature(token, raw_body)
    return _hmac.compare_digest(expected, signature.strip().lower())
