"""
Shared fixtures: every test runs against a fresh in-memory Mongo (mongomock)
swapped in for the module level database handle.
"""

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
import main
from database import BET_MODE_QUESTIONS, CURRENCY_ACCOUNTS, QUESTIONS

ADMIN_SECRET = "test-admin-secret"
ADMIN_KEY = "test-admin-key"
CRON_SECRET = "test-cron-secret"


@pytest.fixture
def mongo(monkeypatch):
    """Fresh mongomock database for one test"""
    test_db = mongomock.MongoClient()["qt_trivia_test"]
    database.ensure_indexes(test_db)
    monkeypatch.setattr(database, "db", test_db)
    return test_db


@pytest.fixture
def admin_config(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_SECRET", ADMIN_SECRET)
    monkeypatch.setattr(config, "ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setattr(config, "CRON_SECRET", CRON_SECRET)
    monkeypatch.setattr(config, "ENFORCE_DAILY_SPIN", True)


@pytest.fixture
def client(mongo, admin_config):
    """Test client bound to the mongomock database"""
    return TestClient(main.app)


@pytest.fixture
def question_bank(mongo):
    """Twelve active classic questions"""
    mongo[QUESTIONS].insert_many([
        {
            "topic_key": "general" if i % 2 else "crypto",
            "type": "mcq",
            "text": f"Question {i}?",
            "options": ["a", "b", "c", "d"],
            "correct_index": i % 4,
            "is_active": True,
        }
        for i in range(12)
    ])
    mongo[QUESTIONS].insert_one({"topic_key": "general", "text": "Retired?", "is_active": False})
    return mongo


@pytest.fixture
def bet_questions(mongo):
    """Active Bet Mode questions; correct answer is always option 1"""
    levels = ["easy"] * 4 + ["medium"] * 2 + ["hard"] * 3 + ["expert"] * 3
    mongo[BET_MODE_QUESTIONS].insert_many([
        {
            "id": f"bq{i}",
            "text": f"Bet question {i}?",
            "options": ["w", "r", "x", "y"],
            "correct_index": 1,
            "difficulty": level,
            "explanation": f"Because {i}",
            "is_active": True,
        }
        for i, level in enumerate(levels)
    ])
    return mongo


def make_account(db, fid, balance=0, qt_balance=0, **extra):
    db[CURRENCY_ACCOUNTS].insert_one({
        "fid": fid,
        "balance": balance,
        "qt_balance": qt_balance,
        "daily_streak_day": 0,
        **extra,
    })


def account(db, fid):
    return db[CURRENCY_ACCOUNTS].find_one({"fid": fid})
