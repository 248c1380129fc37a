"""
Integration tests for the Decluttr HTTP API.

Routes run against a real orchestrator and memo cache; only the classifier
collaborator is faked. Verifies the {"error": ...} contract and status codes.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from decluttr.api.app import app
from decluttr.api.routes import classify as classify_routes
from decluttr.classification.exceptions import (
    EmptyResponse,
    InvalidCredential,
    NetworkError,
    RateLimited,
)
from decluttr.classification.orchestrator import ClassificationOrchestrator
from decluttr.storage.cache import MemoCache


@pytest.fixture
def api(make_client, clock):
    """TestClient wired to a scripted classifier; restores the real one after."""
    previous = classify_routes._orchestrator

    def _api(**client_kwargs):
        fake = make_client(**client_kwargs)
        classify_routes.set_orchestrator(
            ClassificationOrchestrator(fake, cache=MemoCache(timer=clock), sleep=lambda _s: None)
        )
        return TestClient(app), fake

    yield _api
    classify_routes.set_orchestrator(previous)


class TestSummarize:
    def test_job_interview(self, api):
        client, _ = api(
            default=(
                '{"summary":"Interview invite for Tuesday.","category":"Job application",'
                '"hasUnsubscribe":false,"transitionFrom":null,"transitionTo":"Interview"}'
            )
        )

        response = client.post("/classify/summarize", json={"content": "We'd like to interview you"})

        assert response.status_code == 200
        assert response.json() == {
            "summary": "Interview invite for Tuesday.",
            "category": "Job",
            "hasUnsubscribe": False,
            "unsubscribeLink": None,
            "jobStage": "interview",
            "transitionFrom": None,
            "transitionTo": "Interview",
        }

    def test_repeat_request_hits_cache(self, api, summary_json):
        client, fake = api(default=summary_json())

        client.post("/classify/summarize", json={"content": "same"})
        client.post("/classify/summarize", json={"content": "same"})

        assert fake.call_count == 1


class TestOtherModes:
    def test_categorize(self, api):
        client, _ = api(default='{"category": "Newsletter", "confidence": 0.7}')

        response = client.post("/classify/categorize", json={"content": "Weekly digest"})

        assert response.status_code == 200
        assert response.json() == {"category": "Newsletter", "confidence": 0.7}

    def test_match_label(self, api):
        client, fake = api(default='{"match": true}')

        response = client.post(
            "/classify/match-label",
            json={"content": "Hi from a recruiter", "labelName": "Recruiters", "labelDescription": "Outreach"},
        )

        assert response.status_code == 200
        assert response.json() == {"match": True}
        assert fake.calls[0][2] == {"labelName": "Recruiters", "labelDescription": "Outreach"}

    def test_detect_unsubscribe_makes_no_model_call(self, api):
        client, fake = api()

        response = client.post(
            "/classify/detect-unsubscribe",
            json={"content": "Manage your email preferences: https://x.example/prefs"},
        )

        assert response.json() == {
            "hasUnsubscribe": True,
            "unsubscribeLink": "https://x.example/prefs",
        }
        assert fake.call_count == 0


class TestErrors:
    @pytest.mark.parametrize(
        "body",
        [{"content": ""}, {"content": "   "}, {}, {"content": 42}, {"text": "wrong field"}],
    )
    def test_invalid_input_is_400(self, api, body):
        client, fake = api()

        response = client.post("/classify/summarize", json=body)

        assert response.status_code == 400
        assert "error" in response.json()
        assert fake.call_count == 0

    def test_missing_label_fields_are_400(self, api):
        client, _ = api()

        response = client.post(
            "/classify/match-label", json={"content": "x", "labelName": "", "labelDescription": "y"}
        )

        assert response.status_code == 400

    def test_invalid_credential_is_401(self, api):
        client, _ = api(default=InvalidCredential("bad key"))

        response = client.post("/classify/summarize", json={"content": "hello"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid API credential"}

    def test_rate_limited_after_retries_is_429(self, api):
        client, fake = api(default=RateLimited("quota"))

        response = client.post("/classify/categorize", json={"content": "hello"})

        assert response.status_code == 429
        assert fake.call_count == 3

    @pytest.mark.parametrize("outcome", [EmptyResponse(), NetworkError("down"), "not json"])
    def test_upstream_and_format_failures_are_500(self, api, outcome):
        client, _ = api(default=outcome)

        response = client.post("/classify/summarize", json={"content": "hello"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to process content"}


class TestHealth:
    def test_health(self):
        response = TestClient(app).get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert "llm" in body
