"""
Tests for the webhook admin endpoints: auth guard, audit reads, config, test send.
"""
import json
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from stockloyal.api.webhook_admin import NOT_CONFIGURED, webhook_config, webhook_logs, webhook_stats, webhook_test
from stockloyal.config import get_settings
from stockloyal.database import get_optional_db
from stockloyal.main import create_app
from stockloyal.models.webhook_log import WebhookLog
from stockloyal.utils.webhook_signatures import format_signature_header
from tests.conftest import TEST_SECRET, make_settings


async def _seed(db):
    now = datetime.now(timezone.utc).replace(microsecond=0)
    rows = [
        WebhookLog(request_id="evt-1", event_type="points.earned", payload="{}",
                   signature_verified=True, source_ip="10.0.0.1", received_at=now - timedelta(hours=1)),
        WebhookLog(request_id="evt-2", event_type="points.earned", payload="{}",
                   signature_verified=False, source_ip="10.0.0.2", received_at=now - timedelta(hours=2)),
        WebhookLog(request_id="evt-3", event_type="points.redeemed", payload="{}",
                   signature_verified=True, source_ip="10.0.0.1", received_at=now - timedelta(hours=3)),
        WebhookLog(request_id="evt-old", event_type="order.placed", payload="{}",
                   signature_verified=False, source_ip="10.0.0.9", received_at=now - timedelta(days=3)),
    ]
    db.add_all(rows)
    await db.commit()
    return now


def _logs_kwargs(**overrides):
    values = {
        "event_type": None,
        "source_ip": None,
        "day": None,
        "verified": None,
        "page": 1,
        "per_page": 50,
    }
    values.update(overrides)
    return values


def _broken_db():
    db = AsyncMock()
    db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("gone away")))
    return db


class TestWebhookStats:
    async def test_last_24h_only(self, db):
        await _seed(db)
        result = await webhook_stats(db=db)

        assert result.success is True
        assert result.error is None
        stats = result.stats
        assert stats.total24h == 3
        assert stats.uniqueEvents == 2
        assert stats.uniqueIps == 2
        assert stats.verified == 2

    async def test_breakdown_ordered_by_count(self, db):
        await _seed(db)
        stats = (await webhook_stats(db=db)).stats
        assert [(b.event_type, b.count, b.verified) for b in stats.eventBreakdown] == [
            ("points.earned", 2, 1),
            ("points.redeemed", 1, 1),
        ]

    async def test_recent_errors_are_unverified(self, db):
        await _seed(db)
        stats = (await webhook_stats(db=db)).stats
        assert [e.request_id for e in stats.recentErrors] == ["evt-2"]

    async def test_empty_table(self, db):
        stats = (await webhook_stats(db=db)).stats
        assert stats.total24h == 0
        assert stats.verified == 0
        assert stats.eventBreakdown == []

    async def test_no_database(self):
        result = await webhook_stats(db=None)
        assert result.success is True
        assert result.stats.total24h == 0
        assert result.error == "database not configured"

    async def test_database_error(self):
        result = await webhook_stats(db=_broken_db())
        assert result.success is True
        assert result.error == "Database error"


class TestWebhookLogs:
    async def test_newest_first(self, db):
        await _seed(db)
        result = await webhook_logs(db=db, **_logs_kwargs())
        assert result.total == 4
        assert [log.request_id for log in result.logs] == ["evt-1", "evt-2", "evt-3", "evt-old"]

    async def test_filters(self, db):
        await _seed(db)
        result = await webhook_logs(db=db, **_logs_kwargs(event_type="points.earned", verified=0))
        assert result.total == 1
        assert result.logs[0].request_id == "evt-2"

        result = await webhook_logs(db=db, **_logs_kwargs(source_ip="10.0.0.1"))
        assert {log.request_id for log in result.logs} == {"evt-1", "evt-3"}

    async def test_date_filter(self, db):
        now = await _seed(db)
        old_day = (now - timedelta(days=3)).date()
        result = await webhook_logs(db=db, **_logs_kwargs(day=old_day))
        assert [log.request_id for log in result.logs] == ["evt-old"]

        result = await webhook_logs(db=db, **_logs_kwargs(day=date(2001, 1, 1)))
        assert result.total == 0

    async def test_per_page_clamped(self, db):
        await _seed(db)
        small = await webhook_logs(db=db, **_logs_kwargs(per_page=1))
        assert small.perPage == 10
        big = await webhook_logs(db=db, **_logs_kwargs(per_page=1000))
        assert big.perPage == 100

    async def test_pagination(self, db):
        await _seed(db)
        result = await webhook_logs(db=db, **_logs_kwargs(page=2, per_page=10))
        assert result.page == 2
        assert result.total == 4
        assert result.logs == []

    async def test_page_floor(self, db):
        result = await webhook_logs(db=db, **_logs_kwargs(page=0))
        assert result.page == 1

    async def test_no_database(self):
        result = await webhook_logs(db=None, **_logs_kwargs())
        assert result.logs == []
        assert result.total == 0
        assert result.error == "database not configured"

    async def test_database_error(self):
        result = await webhook_logs(db=_broken_db(), **_logs_kwargs())
        assert result.success is True
        assert result.error == "Database error"


def _mock_response(status_code: int = 200, text: str = '{"success": true}') -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    resp.json = MagicMock(side_effect=lambda: json.loads(text))
    return resp


def _build_mock_client(response=None, post_side_effect=None) -> AsyncMock:
    """Return a mock httpx.AsyncClient usable as an async ctx mgr."""
    client = AsyncMock()
    if post_side_effect is not None:
        client.post = AsyncMock(side_effect=post_side_effect)
    else:
        client.post = AsyncMock(return_value=response or _mock_response())
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


class TestAdminAuth:
    @pytest.fixture
    def client(self, settings):
        async def _no_db():
            return None

        app = create_app()
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_optional_db] = _no_db
        return TestClient(app)

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/webhook/stats"),
        ("get", "/api/webhook/logs"),
        ("get", "/api/webhook/config"),
        ("post", "/api/webhook/test"),
    ])
    def test_missing_key_rejected(self, client, method, path):
        resp = getattr(client, method)(path)
        assert resp.status_code == 401
        assert resp.json() == {"detail": "Unauthorized"}

    def test_wrong_key_rejected(self, client):
        resp = client.get("/api/webhook/stats", headers={"X-API-Key": "nope"})
        assert resp.status_code == 401

    def test_api_key_accepted(self, client):
        resp = client.get("/api/webhook/stats", headers={"X-API-Key": TEST_SECRET})
        assert resp.status_code == 200
        assert resp.json()["error"] == "database not configured"

    def test_bearer_accepted(self, client):
        resp = client.get("/api/webhook/config", headers={"Authorization": f"Bearer {TEST_SECRET}"})
        assert resp.status_code == 200
        assert resp.json()["config"]["apiKey"].endswith(TEST_SECRET[-4:])

    def test_unset_secret_locks_admin(self, tmp_path):
        app = create_app()
        app.dependency_overrides[get_settings] = lambda: make_settings(tmp_path, webhook_secret="")
        resp = TestClient(app).get("/api/webhook/config", headers={"X-API-Key": ""})
        assert resp.status_code == 401


class TestWebhookConfig:
    async def test_masks_api_key(self, settings):
        result = await webhook_config(settings=settings)
        assert result.success is True
        config = result.config
        assert config.webhookUrl == settings.webhook_url
        assert config.apiKey == "*" * (len(TEST_SECRET) - 4) + TEST_SECRET[-4:]
        assert TEST_SECRET not in result.model_dump_json()
        assert config.environment == "staging"
        assert config.requireSignature is False
        assert config.rateLimit == 60

    async def test_production_requires_signature(self, production_settings):
        result = await webhook_config(settings=production_settings)
        assert result.config.requireSignature is True


class TestWebhookTest:
    async def test_sends_signed_connection_event(self, settings):
        client = _build_mock_client(_mock_response(200, '{"success": true, "event_type": "test.connection"}'))
        with patch("httpx.AsyncClient", return_value=client) as mock_cls:
            result = await webhook_test(settings=settings)

        assert result["success"] is True
        assert result["request_id"].startswith("test_")
        assert len(result["request_id"]) == len("test_") + 16
        assert result["response"] == {"success": True, "event_type": "test.connection"}
        assert mock_cls.call_args.kwargs["timeout"] == 10

        args, kwargs = client.post.call_args
        assert args[0] == settings.webhook_url
        body = json.loads(kwargs["content"])
        assert body["event_type"] == "test.connection"
        assert body["request_id"] == result["request_id"]
        assert body["test"] is True
        assert body["source"] == "webhook_admin"
        assert kwargs["headers"]["X-Signature"] == format_signature_header(TEST_SECRET, kwargs["content"])
        assert kwargs["headers"]["X-API-Key"] == TEST_SECRET

    async def test_not_configured(self, tmp_path):
        settings = make_settings(tmp_path, webhook_url="")
        with patch("httpx.AsyncClient") as mock_cls:
            resp = await webhook_test(settings=settings)
        assert resp.status_code == 400
        assert json.loads(resp.body) == {"success": False, "error": NOT_CONFIGURED}
        mock_cls.assert_not_called()

    async def test_receiver_rejection_reported(self, settings):
        client = _build_mock_client(_mock_response(401, '{"success": false, "error": "Unauthorized"}'))
        with patch("httpx.AsyncClient", return_value=client):
            resp = await webhook_test(settings=settings)
        assert resp.status_code == 502
        data = json.loads(resp.body)
        assert data["success"] is False
        assert data["http_code"] == 401
        assert data["error"].startswith("HTTP 401: ")

    async def test_connection_error_reported(self, settings):
        client = _build_mock_client(post_side_effect=httpx.ConnectError("connection refused"))
        with patch("httpx.AsyncClient", return_value=client):
            resp = await webhook_test(settings=settings)
        assert resp.status_code == 502
        data = json.loads(resp.body)
        assert data["http_code"] == 0
        assert data["error"] == "HTTP 0: connection refused"
