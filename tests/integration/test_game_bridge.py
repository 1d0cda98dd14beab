"""Service-level tests of the game bridge through the FastAPI app."""

import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from src.database import Database
from src.playerhouse import server
from src.playerhouse.session import PlayerSession

from tests.stubs import FakeChain, make_spin_event


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def session(tmp_path, chain, owner_wallet):
    return PlayerSession(
        Database(str(tmp_path / "bridge.db")),
        chain_factory=lambda profile: chain,
        wallets=[owner_wallet],
        network_key="arbitrumSepolia",
    )


@pytest.fixture
def client(session):
    with patch.object(server, "session", session), patch("src.config.config.setup_delay_seconds", 0.0):
        with TestClient(server.app) as test_client:
            yield test_client


def wait_until_ready(client, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = client.get("/status").json()
        if status["state"] in ("ready", "ready_undeployed"):
            return status
        time.sleep(0.02)
    raise AssertionError(f"session never became ready: {status}")


@pytest.mark.integration
class TestGameBridge:
    """Test the HTTP and websocket surface."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["connection"] == {"status": "good", "failure_count": 0}

    def test_startup_runs_setup(self, client, session):
        status = wait_until_ready(client)

        assert status["text"] == "Ready (First tx deploys)"
        assert status["network"] == "arbitrumSepolia"
        assert status["wallet_type"] == "privy"
        assert status["address"] == session.account.address

    def test_networks_listing(self, client):
        networks = {n["key"]: n for n in client.get("/networks").json()}

        assert networks["arbitrumSepolia"]["active"] is True
        assert networks["arbitrum"]["chain_id"] == 42161

    def test_unknown_network_rejected(self, client):
        assert client.post("/network/base").status_code == 404

    def test_network_switch(self, client, session):
        wait_until_ready(client)

        body = client.post("/network/arbitrum").json()

        assert body["switched"] is True
        assert body["status"]["network"] == "arbitrum"
        assert session.account.network_key == "arbitrum"

    def test_confirm_without_pending_switch(self, client):
        assert client.post("/network/confirm").status_code == 409

    def test_spin_over_websocket(self, client, session, chain):
        """Test the wallet context is pushed and a spin round-trips."""
        wait_until_ready(client)
        chain.live_events = [make_spin_event(player=session.account.address, tot_win=500_000)]

        with client.websocket_connect("/ws/game") as ws:
            wallet = ws.receive_json()
            assert wallet == {
                "type": "wallet",
                "wallet": session.account.address.lower(),
                "network": "arbitrumSepolia",
                "walletType": "privy",
            }

            ws.send_json({"type": "spin", "bet": 0.1, "payline": 20})

            assert ws.receive_json() == {"type": "spin:loading"}
            result = ws.receive_json()
            assert result["type"] == "spinResult"
            assert result["id"] == 1
            assert result["result"]["res"] is True
            assert result["result"]["tot_win"] == 0.5

            ws.send_json({"type": "loaded"})
            assert ws.receive_json()["type"] == "wallet"

    def test_disconnect(self, client):
        wait_until_ready(client)

        body = client.post("/disconnect").json()

        assert body["status"]["address"] is None
        assert body["status"]["state"] == "configuring"
