"""Tests for the attested scoring HTTP service."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from fastapi.testclient import TestClient

from agentscore.attestation.server import SERVICE_NAME, create_app
from agentscore.attestation.signer import AttestationSigner
from agentscore.chain.client import RPCError
from agentscore.chain.registry import ReputationSummary

OWNER = "0x" + "a" * 40
NOW = 1_780_000_000


@pytest.fixture
def reader():
    mock = MagicMock()
    mock.token_uri = AsyncMock(return_value="ipfs://agent.json?skills=true")
    mock.owner_of = AsyncMock(return_value=OWNER)
    mock.reputation_summary = AsyncMock(return_value=ReputationSummary(feedback_count=4, feedback_value=3200, value_decimals=1))
    return mock


@pytest.fixture
def signer():
    return AttestationSigner(Account.create())


@pytest.fixture
def client(reader, signer):
    app = create_app(reader, signer, rpc_label="https://rpc.test/***", clock=lambda: NOW)
    return TestClient(app)


class TestHealth:
    def test_health(self, client, signer):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == SERVICE_NAME
        assert body["signer"] == signer.address
        assert body["rpc"] == "https://rpc.test/***"


class TestScoreEndpoints:
    def test_score_from_chain(self, client, reader):
        response = client.get("/score/7")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["score"]["agentId"] == 7
        assert body["score"]["input"]["feedbackValue"] == 320.0
        # 26 peer + 0 tasks + 0 escrow + 10 identity
        assert body["score"]["score"] == 36
        assert body["attestation"]["timestamp"] == NOW
        reader.reputation_summary.assert_awaited_once_with(7)

    def test_reverted_reads_default(self, client, reader):
        reader.token_uri.side_effect = RPCError("reverted")
        reader.owner_of.side_effect = RPCError("reverted")
        reader.reputation_summary.side_effect = RPCError("reverted")

        body = client.get("/score/12345").json()

        assert body["score"]["score"] == 2

    def test_non_numeric_agent_id(self, client):
        response = client.get("/score/abc")

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid agentId"

    def test_prefetched_score(self, client):
        response = client.post(
            "/score",
            json={"agentId": 3, "completedMandates": 8, "totalMandates": 10, "totalEscrowWei": str(10**18)},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["score"]["components"]["taskCompletion"] == 23
        assert body["score"]["components"]["economicActivity"] == 10
        assert body["score"]["input"]["totalEscrowWei"] == str(10**18)

    def test_prefetched_score_validation(self, client):
        response = client.post("/score", json={"totalEscrowWei": "lots"})

        assert response.status_code == 400
        assert response.json()["fields"] == ["agentId", "totalEscrowWei"]


class TestVerifyEndpoint:
    def test_round_trip(self, client):
        signed = client.post("/score", json={"agentId": 1}).json()["attestation"]

        response = client.post("/verify", json={"message": signed["message"], "signature": signed["signature"]})

        assert response.status_code == 200
        assert response.json()["valid"] is True

    def test_missing_fields(self, client):
        response = client.post("/verify", json={"message": "hello"})

        assert response.status_code == 400

    def test_malformed_signature(self, client):
        response = client.post("/verify", json={"message": "hello", "signature": "0xdead"})

        assert response.json() == {"valid": False, "error": "Invalid signature"}


class TestLifespan:
    def test_shutdown_hook_runs_once_on_exit(self, reader, signer):
        on_shutdown = AsyncMock()
        app = create_app(reader, signer, rpc_label="https://rpc.test", on_shutdown=on_shutdown)

        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            on_shutdown.assert_not_awaited()

        on_shutdown.assert_awaited_once()
