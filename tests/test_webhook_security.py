import base64
import hashlib
import hmac
import logging
from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from femisse import models
from femisse.db import settings
from femisse.services import webhook_security as ws
from femisse.services.user_sessions import utc_now

MP_SECRET = "mp-webhook-secret-for-tests"
ME_SECRET = "me-webhook-secret-for-tests"


def mp_signature(data_id, request_id, ts, secret=MP_SECRET):
    manifest = ws.mercado_pago_manifest(data_id, request_id, str(ts))
    return hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()


class TestMercadoPagoSignature:
    """Assinatura x-signature do Mercado Pago."""

    def test_parse_header(self):
        assert ws.parse_mercado_pago_signature("ts=1704908010, v1=abc123") == ("1704908010", "abc123")
        assert ws.parse_mercado_pago_signature("v1=abc123") is None
        assert ws.parse_mercado_pago_signature(None) is None

    def test_manifest_lowercases_alphanumeric_ids(self):
        assert ws.mercado_pago_manifest("ABC123", "req-1", "10") == "id:abc123;request-id:req-1;ts:10;"
        assert ws.mercado_pago_manifest(None, "req-1", "10") == "request-id:req-1;ts:10;"

    def test_valid_signature(self):
        ts = 1_700_000_000
        header = f"ts={ts},v1={mp_signature('123', 'req-1', ts)}"
        result = ws.verify_mercado_pago_signature(
            signature_header=header, request_id="req-1", data_id="123", secret=MP_SECRET, now=ts + 10
        )
        assert result.valid

    def test_millisecond_timestamp_is_accepted(self):
        ts = 1_700_000_000_000
        header = f"ts={ts},v1={mp_signature('123', 'req-1', ts)}"
        result = ws.verify_mercado_pago_signature(
            signature_header=header, request_id="req-1", data_id="123", secret=MP_SECRET, now=1_700_000_001
        )
        assert result.valid

    def test_tampered_data_id_is_rejected(self):
        ts = 1_700_000_000
        header = f"ts={ts},v1={mp_signature('123', 'req-1', ts)}"
        result = ws.verify_mercado_pago_signature(
            signature_header=header, request_id="req-1", data_id="999", secret=MP_SECRET, now=ts
        )
        assert not result.valid
        assert result.reason == "Invalid signature"

    def test_old_timestamp_is_rejected(self):
        ts = 1_700_000_000
        header = f"ts={ts},v1={mp_signature('123', 'req-1', ts)}"
        result = ws.verify_mercado_pago_signature(
            signature_header=header, request_id="req-1", data_id="123", secret=MP_SECRET, now=ts + 301
        )
        assert result.reason == "Timestamp expired"

    def test_future_timestamp_is_rejected(self):
        ts = 1_700_000_000
        header = f"ts={ts},v1={mp_signature('123', 'req-1', ts)}"
        result = ws.verify_mercado_pago_signature(
            signature_header=header, request_id="req-1", data_id="123", secret=MP_SECRET, now=ts - 301
        )
        assert not result.valid
        assert result.reason == "Timestamp expired"

    def test_missing_headers(self):
        assert ws.verify_mercado_pago_signature(
            signature_header=None, request_id="req-1", data_id="1", secret=MP_SECRET
        ).reason == "Missing x-signature header"
        assert ws.verify_mercado_pago_signature(
            signature_header="ts=1,v1=a", request_id=None, data_id="1", secret=MP_SECRET
        ).reason == "Missing x-request-id header"

    def test_missing_secret_fails_closed(self, monkeypatch):
        monkeypatch.setattr(settings, "mercado_pago_webhook_secret", None)
        with pytest.raises(ws.WebhookSecretMissing):
            ws.verify_mercado_pago_signature(signature_header="ts=1,v1=a", request_id="r", data_id="1")


class TestMelhorEnvioSignature:
    body = b'{"event":"order.posted","data":{"id":"me-1"}}'

    def test_hex_and_base64_signatures(self):
        digest = hmac.new(ME_SECRET.encode(), self.body, hashlib.sha256).digest()
        assert ws.verify_melhor_envio_signature(self.body, digest.hex(), secret=ME_SECRET).valid
        assert ws.verify_melhor_envio_signature(self.body, f"sha256={digest.hex()}", secret=ME_SECRET).valid
        assert ws.verify_melhor_envio_signature(
            self.body, base64.b64encode(digest).decode(), secret=ME_SECRET
        ).valid

    def test_invalid_signature(self):
        result = ws.verify_melhor_envio_signature(self.body, "deadbeef", secret=ME_SECRET)
        assert not result.valid
        assert not ws.verify_melhor_envio_signature(self.body, None, secret=ME_SECRET).valid

    def test_missing_secret_fails_closed(self, monkeypatch):
        monkeypatch.setattr(settings, "melhorenvio_webhook_secret", None)
        with pytest.raises(ws.WebhookSecretMissing):
            ws.verify_melhor_envio_signature(self.body, "x")


class TestIpAllowlist:
    def test_any_ip_allowed_outside_production(self):
        assert ws.is_allowed_webhook_ip(ws.PROVIDER_MERCADO_PAGO, "8.8.8.8")

    def test_production_checks_networks(self, monkeypatch):
        monkeypatch.setattr(settings, "app_env", "production")
        assert ws.is_allowed_webhook_ip(ws.PROVIDER_MERCADO_PAGO, "209.225.49.10")
        assert ws.is_allowed_webhook_ip(ws.PROVIDER_MERCADO_PAGO, "::ffff:209.225.49.10")
        assert not ws.is_allowed_webhook_ip(ws.PROVIDER_MERCADO_PAGO, "8.8.8.8")
        assert not ws.is_allowed_webhook_ip(ws.PROVIDER_MERCADO_PAGO, None)
        assert ws.is_allowed_webhook_ip(ws.PROVIDER_MELHOR_ENVIO, "8.8.8.8")


class TestReplayProtection:
    """Registro de webhooks já processados."""

    def test_second_delivery_is_duplicate(self, db):
        first = ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="n-1")
        db.commit()
        second = ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="n-1")
        assert first.valid
        assert not second.valid
        assert second.reason == "Duplicate webhook"

    def test_same_id_from_other_provider_is_not_duplicate(self, db):
        ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="n-1")
        db.commit()
        assert ws.check_webhook_replay(db, provider=ws.PROVIDER_MELHOR_ENVIO, webhook_id="n-1").valid

    def test_uncommitted_record_is_discarded_on_rollback(self, db):
        ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="n-2")
        db.rollback()
        assert ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="n-2").valid

    def test_database_failure_accepts_webhook(self, db, monkeypatch, caplog):
        def broken_query(*args, **kwargs):
            raise SQLAlchemyError("database unavailable")

        monkeypatch.setattr(db, "query", broken_query)
        with caplog.at_level(logging.ERROR, logger=ws.logger.name):
            result = ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="n-4")

        assert result.valid is True
        assert "Replay check failed" in caplog.text

    def test_record_outside_window_is_accepted_again(self, db):
        ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="n-3")
        db.commit()
        record = db.query(models.ProcessedWebhook).one()
        record.created_at = utc_now() - timedelta(minutes=ws.REPLAY_WINDOW_MINUTES + 5)
        db.commit()

        assert ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="n-3").valid
        db.commit()
        assert db.query(models.ProcessedWebhook).count() == 1

    def test_clean_old_records(self, db):
        ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="old")
        ws.check_webhook_replay(db, provider=ws.PROVIDER_MERCADO_PAGO, webhook_id="new")
        db.commit()
        old = (
            db.query(models.ProcessedWebhook)
            .filter(models.ProcessedWebhook.webhook_hash == ws.webhook_hash(ws.PROVIDER_MERCADO_PAGO, "old"))
            .one()
        )
        old.created_at = utc_now() - timedelta(hours=25)
        db.commit()

        assert ws.clean_old_webhook_records(db) == 1
        assert db.query(models.ProcessedWebhook).count() == 1
