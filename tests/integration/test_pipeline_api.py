import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import settings
from app.features.pipeline_scoring.api.router import (
    cron_router,
    get_archive_analytics_service,
    get_batch_orchestrator,
    get_ingestion_service,
    get_recalculation_dispatcher,
    get_recalculation_service,
    get_revenue_service,
    get_score_audit_service,
    router,
)
from app.features.pipeline_scoring.domain import TransientStorageError, ValidationError
from app.features.pipeline_scoring.services import (
    ArchiveAnalyticsService,
    BatchOrchestrator,
    CommunicationIngestionService,
    PipelineRevenueService,
    QueueProcessor,
    ScoreAuditService,
    StaleScoreSweeper,
)

CRON_SECRET = "test-cron-secret"


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def orchestrator(repos, recalculation, fast_options, now):
    sweeper = StaleScoreSweeper(
        deals=repos.deals,
        recalculator=recalculation,
        options=fast_options,
        threshold_hours=23,
        clock=lambda: now,
    )
    processor = QueueProcessor(queue=repos.queue, recalculator=recalculation, options=fast_options)
    return BatchOrchestrator(processor=processor, sweeper=sweeper, runs=repos.runs)


@pytest.fixture
def api_app(repos, recalculation, dispatcher, orchestrator, now):
    app = FastAPI()
    app.include_router(router)
    app.include_router(cron_router)

    app.dependency_overrides[get_recalculation_service] = lambda: recalculation
    app.dependency_overrides[get_recalculation_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_batch_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_archive_analytics_service] = lambda: ArchiveAnalyticsService(
        deals=repos.deals
    )
    app.dependency_overrides[get_revenue_service] = lambda: PipelineRevenueService(
        deals=repos.deals, clock=lambda: now
    )
    app.dependency_overrides[get_score_audit_service] = lambda: ScoreAuditService(
        deals=repos.deals, history=repos.history
    )
    app.dependency_overrides[get_ingestion_service] = lambda: CommunicationIngestionService(
        deals=repos.deals, events=repos.events, queue=repos.queue, dispatcher=dispatcher
    )
    return app


@pytest.fixture
def client(api_app):
    return TestClient(api_app)


class TestRecalculateEndpoint:
    def test_single_deal(self, repos, client, make_deal):
        repos.deals.add(make_deal())

        response = client.post("/pipeline/recalculate", json={"recommendation_id": "deal-1"})

        assert response.status_code == 200
        result = response.json()["results"][0]
        assert result["status"] == "succeeded"
        assert result["score"] == 97
        assert result["stage"] == "thriving"
        assert result["breakdown"] == {"silence": 3.0}

    def test_unknown_deal(self, client):
        response = client.post("/pipeline/recalculate", json={"recommendation_id": "missing"})

        assert response.status_code == 404

    def test_storage_unavailable(self, repos, client, make_deal):
        repos.deals.add(make_deal())
        repos.deals.fail_on.add("deal-1")

        response = client.post("/pipeline/recalculate", json={"recommendation_id": "deal-1"})

        assert response.status_code == 503
        assert response.json()["detail"] == "Storage unavailable"

    def test_terminal_deal_skipped(self, repos, client, make_deal):
        repos.deals.add(make_deal(status="accepted"))

        response = client.post("/pipeline/recalculate", json={"recommendation_id": "deal-1"})

        assert response.status_code == 200
        assert response.json()["results"][0]["status"] == "skipped"

    def test_many_deals_isolate_failures(self, repos, client, make_deal):
        repos.deals.add(make_deal(id="deal-1"))
        repos.deals.add(make_deal(id="deal-2"))
        repos.deals.fail_on.add("deal-2")

        response = client.post(
            "/pipeline/recalculate",
            json={"recommendation_ids": ["deal-1", "deal-2", "missing"], "reason": "bulk_edit"},
        )

        assert response.status_code == 200
        statuses = {r["recommendation_id"]: r["status"] for r in response.json()["results"]}
        assert statuses == {"deal-1": "succeeded", "deal-2": "failed", "missing": "skipped"}
        assert repos.history.entries[0].reason == "bulk_edit"

    def test_requires_a_target(self, client):
        response = client.post("/pipeline/recalculate", json={"reason": "manual"})

        assert response.status_code == 422


class TestTriggerEndpoint:
    def test_accepted(self, client, dispatcher):
        response = client.post("/pipeline/deals/deal-1/trigger", json={"reason": "deal_edited"})

        assert response.status_code == 202
        assert response.json() == {"accepted": True, "recommendation_id": "deal-1"}
        dispatcher.trigger_recalculation.assert_called_once_with("deal-1", "deal_edited")

    def test_validation_error(self, client, dispatcher):
        dispatcher.trigger_recalculation.side_effect = ValidationError("reason is required")

        response = client.post("/pipeline/deals/deal-1/trigger", json={"reason": " "})

        assert response.status_code == 400


class TestRefreshScoresEndpoint:
    def test_refreshes_active_deals(self, repos, client, make_deal):
        repos.deals.add(make_deal(id="deal-1"))
        repos.deals.add(make_deal(id="deal-2", status="declined"))
        repos.deals.add(make_deal(id="deal-3", status="accepted"))

        response = client.post("/pipeline/refresh-scores")

        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 2
        assert data["succeeded"] == 2
        assert data["errors"] == []


class TestCommunicationsEndpoint:
    def _payload(self, now, **overrides):
        payload = {
            "recommendation_id": "deal-1",
            "direction": "inbound",
            "channel": "email",
            "contact_at": (now - timedelta(hours=1)).isoformat(),
            "source": "webhook",
            "external_id": "msg-42",
        }
        payload.update(overrides)
        return payload

    def test_created_then_duplicate(self, repos, client, dispatcher, make_deal, now):
        repos.deals.add(make_deal())

        first = client.post("/pipeline/communications", json=self._payload(now))
        second = client.post("/pipeline/communications", json=self._payload(now))

        assert first.json() == {"recommendation_id": "deal-1", "created": True, "duplicate": False}
        assert second.json() == {"recommendation_id": "deal-1", "created": False, "duplicate": True}
        assert len(repos.events.events) == 1
        dispatcher.trigger_recalculation.assert_called_once_with("deal-1", "communication_inbound")

    def test_channel_from_message_type(self, repos, client, make_deal, now):
        repos.deals.add(make_deal())

        response = client.post(
            "/pipeline/communications",
            json=self._payload(now, channel=None, message_type="TYPE_SMS"),
        )

        assert response.status_code == 200
        assert repos.events.events[0].channel == "sms"

    def test_naive_timestamp_rejected(self, repos, client, make_deal):
        repos.deals.add(make_deal())

        response = client.post(
            "/pipeline/communications",
            json={
                "recommendation_id": "deal-1",
                "direction": "inbound",
                "channel": "email",
                "contact_at": "2025-03-10T11:00:00",
            },
        )

        assert response.status_code == 422

    def test_unknown_deal(self, client, now):
        response = client.post(
            "/pipeline/communications", json=self._payload(now, recommendation_id="missing")
        )

        assert response.status_code == 404


class TestArchiveAnalyticsEndpoint:
    def test_filters_by_rep(self, repos, client, make_deal, now):
        for deal_id, owner, reason in (("d1", "rep-1", "budget"), ("d2", "rep-2", "timing")):
            repos.deals.add(
                make_deal(
                    id=deal_id,
                    owner_id=owner,
                    status="archived",
                    archive_reason=reason,
                    archived_at=now - timedelta(days=2),
                    predicted_monthly=100.0,
                )
            )

        response = client.get("/pipeline/archive-analytics", params={"rep_id": "rep-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["total_archived"] == 1
        assert data["top_reason"] == "budget"
        assert data["lost_monthly"] == 100.0

    def test_inverted_range(self, client):
        response = client.get(
            "/pipeline/archive-analytics",
            params={
                "archived_after": "2025-03-10T00:00:00+00:00",
                "archived_before": "2025-03-01T00:00:00+00:00",
            },
        )

        assert response.status_code == 400


class TestRevenueSummaryEndpoint:
    def test_buckets_scored_deals(self, repos, client, make_deal, now):
        repos.deals.add(make_deal(id="deal-1", sent_at=now - timedelta(days=14, hours=1)))
        repos.deals.add(
            make_deal(id="deal-2", snoozed_until=now + timedelta(days=2), predicted_monthly=50.0)
        )
        repos.deals.deals["deal-1"].predicted_monthly = 1000.0
        client.post("/pipeline/recalculate", json={"recommendation_id": "deal-1"})

        response = client.get("/pipeline/revenue-summary", params={"current_mrr": 2000})

        assert response.status_code == 200
        data = response.json()
        assert data["closing_soon"]["deal_count"] == 1
        assert data["closing_soon_deals"][0]["recommendation_id"] == "deal-1"
        assert data["on_hold"]["deal_count"] == 1
        assert data["on_hold"]["avg_confidence"] is None
        assert data["projected_mrr"] == 2000 + data["closing_soon"]["weighted_mrr"]
        assert data["last_updated"] is not None

    def test_negative_mrr_rejected(self, client):
        response = client.get("/pipeline/revenue-summary", params={"current_mrr": -5})

        assert response.status_code == 422


class TestScoreHistoryEndpoints:
    def test_history_and_audit(self, repos, client, make_deal):
        repos.deals.add(make_deal())
        client.post("/pipeline/recalculate", json={"recommendation_id": "deal-1"})

        history = client.get("/pipeline/deals/deal-1/score-history")
        audit = client.get("/pipeline/deals/deal-1/score-audit", params={"limit": 10})

        assert history.status_code == 200
        assert [item["score"] for item in history.json()["history"]] == [97]
        assert audit.status_code == 200
        assert audit.json()["audit"][0]["score_delta"] is None

    def test_unknown_deal(self, client):
        assert client.get("/pipeline/deals/missing/score-history").status_code == 404

    def test_limit_bounds(self, repos, client, make_deal):
        repos.deals.add(make_deal())

        response = client.get("/pipeline/deals/deal-1/score-audit", params={"limit": 0})

        assert response.status_code == 422


class TestCronEndpoint:
    def test_missing_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)

        response = client.post("/cron/pipeline-scores")

        assert response.status_code == 401

    def test_wrong_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)

        response = client.get(
            "/cron/pipeline-scores", headers={"Authorization": "Bearer not-the-secret"}
        )

        assert response.status_code == 401

    def test_runs_daily_batch(self, repos, client, monkeypatch, make_deal):
        monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
        repos.deals.add(make_deal(id="deal-1"))
        repos.queue.add("deal-1", "communication_inbound")

        response = client.get(
            "/cron/pipeline-scores", headers={"Authorization": f"Bearer {CRON_SECRET}"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["queue_results"]["succeeded"] == 1
        assert data["stale_results"]["processed"] == 0

    def test_unconfigured_secret_outside_development(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", None)
        monkeypatch.setattr(settings, "environment", "production")

        assert client.post("/cron/pipeline-scores").status_code == 500

    def test_open_in_development(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", None)
        monkeypatch.setattr(settings, "environment", "development")

        assert client.post("/cron/pipeline-scores").status_code == 200

    def test_storage_failure(self, api_app, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
        orchestrator = AsyncMock()
        orchestrator.run_daily.side_effect = TransientStorageError("pool exhausted")
        api_app.dependency_overrides[get_batch_orchestrator] = lambda: orchestrator

        response = TestClient(api_app).post(
            "/cron/pipeline-scores", headers={"Authorization": f"Bearer {CRON_SECRET}"}
        )

        assert response.status_code == 503

    def test_time_budget(self, api_app, monkeypatch):
        async def slow():
            await asyncio.sleep(1)

        monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
        monkeypatch.setattr(settings, "PIPELINE_BATCH_TIMEOUT_SECONDS", 0.01)
        orchestrator = AsyncMock()
        orchestrator.run_daily.side_effect = slow
        api_app.dependency_overrides[get_batch_orchestrator] = lambda: orchestrator

        response = TestClient(api_app).post(
            "/cron/pipeline-scores", headers={"Authorization": f"Bearer {CRON_SECRET}"}
        )

        assert response.status_code == 504
