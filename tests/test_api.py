"""
App level tests: health routes, the database-unavailable path and the indexes.
"""

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

import database
import main


def test_root(client):
    assert client.get("/").json() == {"name": "QT Trivia", "status": "ok"}


def test_database_check_connected(client, mongo):
    mongo["questions"].insert_one({"text": "x"})
    data = client.get("/test").json()
    assert data["backend"] == "✅ Running"
    assert data["database"] == "✅ Connected"
    assert "questions" in data["collections"]


def test_routes_answer_503_without_database(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    client = TestClient(main.app)
    response = client.get("/currency/balance", params={"fid": 1})
    assert response.status_code == 503
    assert "DATABASE_URL" in response.json()["detail"]
    assert client.get("/test").json()["database"] == "❌ Not Available"


def test_body_validation(client):
    assert client.post("/currency/spend", json={"amount": 5}).status_code == 422
    assert client.post("/time/start", json={"fid": 0}).status_code == 422
    assert client.post("/bet-mode/start", json={"fid": 1, "bet_amount": -1}).status_code == 422


def test_unique_indexes(mongo):
    mongo["currency_accounts"].insert_one({"fid": 1})
    with pytest.raises(DuplicateKeyError):
        mongo["currency_accounts"].insert_one({"fid": 1})

    mongo["lottery_tickets"].insert_one({"week_id": "2025-W10", "fid": 1})
    mongo["lottery_tickets"].insert_one({"week_id": "2025-W11", "fid": 1})
    with pytest.raises(DuplicateKeyError):
        mongo["lottery_tickets"].insert_one({"week_id": "2025-W10", "fid": 1})

    # txns without a tx_ref are not constrained
    mongo["qt_transactions"].insert_many([{"fid": 1, "type": "withdrawal"}, {"fid": 1, "type": "withdrawal"}])
    mongo["qt_transactions"].insert_one({"fid": 1, "type": "deposit", "tx_ref": "0xabc"})
    with pytest.raises(DuplicateKeyError):
        mongo["qt_transactions"].insert_one({"fid": 2, "type": "deposit", "tx_ref": "0xabc"})

    assert "fid_1_mode_1_quiz_id_1" in mongo["leaderboard"].index_information()
