"""Webhook signature module tests."""

import hashlib
import hmac

from app.services.sign import (
    generate_mercadopago_signature,
    generate_pagbank_signature,
    parse_mercadopago_signature,
    verify_mercadopago_signature,
    verify_pagbank_signature,
)

SECRET = "mp-webhook-secret"


class TestParseMercadoPagoSignature:

    def test_parses_ts_and_v1(self):
        assert parse_mercadopago_signature("ts=1704908010,v1=abc123") == ("1704908010", "abc123")

    def test_tolerates_spaces(self):
        assert parse_mercadopago_signature(" ts=1 , v1=ff ") == ("1", "ff")

    def test_missing_header(self):
        assert parse_mercadopago_signature(None) == (None, None)
        assert parse_mercadopago_signature("") == (None, None)

    def test_missing_part(self):
        assert parse_mercadopago_signature("ts=1") == ("1", None)


class TestMercadoPagoSignature:

    def test_matches_reference_hmac(self):
        manifest = "id:123456;request-id:req-1;ts:1704908010;"
        expected = hmac.new(SECRET.encode(), manifest.encode(), hashlib.sha256).hexdigest()
        assert generate_mercadopago_signature(SECRET, "123456", "req-1", "1704908010") == expected

    def test_request_id_segment_omitted_when_absent(self):
        manifest = "id:123456;ts:1704908010;"
        expected = hmac.new(SECRET.encode(), manifest.encode(), hashlib.sha256).hexdigest()
        assert generate_mercadopago_signature(SECRET, "123456", None, "1704908010") == expected

    def test_alphanumeric_id_lowercased(self):
        assert generate_mercadopago_signature(SECRET, "ABC", None, "1") == \
            generate_mercadopago_signature(SECRET, "abc", None, "1")

    def test_verify_valid(self):
        v1 = generate_mercadopago_signature(SECRET, "123", "req", "99")
        assert verify_mercadopago_signature(SECRET, f"ts=99,v1={v1}", "123", "req")

    def test_verify_uppercase_digest(self):
        v1 = generate_mercadopago_signature(SECRET, "123", "req", "99").upper()
        assert verify_mercadopago_signature(SECRET, f"ts=99,v1={v1}", "123", "req")

    def test_verify_wrong_secret(self):
        v1 = generate_mercadopago_signature("other", "123", "req", "99")
        assert not verify_mercadopago_signature(SECRET, f"ts=99,v1={v1}", "123", "req")

    def test_verify_tampered_id(self):
        v1 = generate_mercadopago_signature(SECRET, "123", "req", "99")
        assert not verify_mercadopago_signature(SECRET, f"ts=99,v1={v1}", "124", "req")

    def test_verify_missing_header(self):
        assert not verify_mercadopago_signature(SECRET, None, "123", "req")


class TestPagBankSignature:

    def test_is_sha256_of_token_dash_body(self):
        body = b'{"id":"ORDE_1"}'
        expected = hashlib.sha256(b"tok-" + body).hexdigest()
        assert generate_pagbank_signature("tok", body) == expected

    def test_verify_valid(self):
        body = b'{"id":"ORDE_1"}'
        assert verify_pagbank_signature("tok", body, generate_pagbank_signature("tok", body))

    def test_verify_tampered_body(self):
        sig = generate_pagbank_signature("tok", b'{"a":1}')
        assert not verify_pagbank_signature("tok", b'{"a":2}', sig)
