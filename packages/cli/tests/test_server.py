"""Tests for the webhook HTTP application."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from reviewrelay_cli.server import create_app


@pytest.fixture
def dispatcher():
    d = MagicMock()
    d.adapters = {"github": MagicMock(), "gitlab": MagicMock()}
    d.accepts.return_value = True
    return d


@pytest.fixture
def client(dispatcher):
    return TestClient(create_app(dispatcher))


class TestHealth:
    def test_lists_platforms(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "platforms": ["github", "gitlab"]}


class TestWebhookRoute:
    def test_unknown_platform_is_404(self, client, dispatcher):
        response = client.post("/azure_repos/webhook", json={"eventType": "git.pullrequest.created"})
        assert response.status_code == 404
        dispatcher.dispatch.assert_not_called()

    def test_invalid_json_is_400(self, client, dispatcher):
        response = client.post("/github/webhook", content=b"{not json", headers={"content-type": "application/json"})
        assert response.status_code == 400
        dispatcher.dispatch.assert_not_called()

    def test_non_object_payload_is_400(self, client):
        response = client.post("/github/webhook", json=[1, 2])
        assert response.status_code == 400

    def test_filtered_webhook_is_ignored(self, client, dispatcher):
        dispatcher.accepts.return_value = False

        response = client.post("/github/webhook", json={"zen": "Keep it simple"}, headers={"X-GitHub-Event": "ping"})

        assert response.status_code == 200
        assert response.text == "Webhook ignored"
        dispatcher.dispatch.assert_not_called()

    def test_accepted_webhook_dispatched_in_background(self, client, dispatcher):
        response = client.post(
            "/github/webhook", json={"action": "opened", "number": 4}, headers={"X-GitHub-Event": "pull_request"}
        )

        assert response.status_code == 200
        assert response.text == "Webhook received"
        dispatcher.dispatch.assert_called_once()
        webhook = dispatcher.dispatch.call_args.args[0]
        assert webhook.platform == "github"
        assert webhook.payload == {"action": "opened", "number": 4}
        assert webhook.header("X-GitHub-Event") == "pull_request"
