import sys
from datetime import datetime, timedelta
from pathlib import Path

import mongomock
import pytest
from fastapi.testclient import TestClient
from jose import jwt


BACKEND_ROOT = Path(__file__).resolve().parents[1] / "backend"
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from attempt_store import InMemoryAttemptStore
from config import JWT_ALGORITHM, JWT_SECRET
from engine import build_engine
from identity import ANONYMOUS
from result_cache import MemoryCacheBackend, ResultCache
from schemas import CallerIdentity, CreateTestRequest

BASE_TIME = datetime(2024, 1, 1, 9, 0, 0)

# authoritative correct indices for q1..q4
CORRECT = [0, 1, 2, 3]


def make_token(claims, expires_delta=None):
    """Sign a bearer token the way the auth service issues them."""
    payload = dict(claims, exp=datetime.utcnow() + (expires_delta or timedelta(days=7)))
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def make_question(qid, number, correct, exam="exam-1", subject="subj-1", paper="paper-1", status="published"):
    return {
        "_id": qid,
        "text": f"Question {number}?",
        "options": [{"text": f"Option {i}", "media": None} for i in range(4)],
        "correctIndex": correct,
        "explanation": f"Because {correct}.",
        "difficulty": "medium",
        "tags": ["general"],
        "media": [],
        "exam": exam,
        "subject": subject,
        "questionPaper": paper,
        "status": status,
        "createdAt": BASE_TIME + timedelta(minutes=number),
    }


@pytest.fixture
def db():
    db = mongomock.MongoClient()["exam_practice_test"]
    db["exam"].insert_one({"_id": "exam-1", "title": "Civil Services Prelims", "board": "board-1"})
    db["exam"].insert_one({"_id": "exam-empty", "title": "Nothing Yet", "board": "board-1"})
    db["subject"].insert_one({"_id": "subj-1", "name": "History", "icon": "book"})
    db["questionPaper"].insert_one(
        {"_id": "paper-1", "name": "Paper I", "section": "A", "subject": "subj-1", "exam": "exam-1"}
    )
    # inserted out of order: attempts follow creation time, not insertion order
    for number in (3, 1, 4, 2):
        db["question"].insert_one(make_question(f"q{number}", number, CORRECT[number - 1]))
    db["question"].insert_one(make_question("q-draft", 5, 0, status="draft"))
    return db


@pytest.fixture
def store():
    return InMemoryAttemptStore()


@pytest.fixture
def cache_backend():
    return MemoryCacheBackend()


@pytest.fixture
def engine(db, store, cache_backend):
    engine = build_engine(db, cache=ResultCache(cache_backend), store=store)
    engine.coordinator.sleep = lambda seconds: None
    return engine


@pytest.fixture
def alice():
    return CallerIdentity(user_id="user-alice")


@pytest.fixture
def bob():
    return CallerIdentity(user_id="user-bob")


@pytest.fixture
def anonymous():
    return ANONYMOUS


@pytest.fixture
def start(engine):
    def _start(caller, **selector):
        selector = selector or {"examId": "exam-1"}
        return engine.create_attempt(CreateTestRequest(**selector), caller)

    return _start


@pytest.fixture
def client(engine):
    from main import app, get_engine

    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def bearer():
    def _bearer(user_id):
        return {"Authorization": f"Bearer {make_token({'sub': user_id, 'role': 'student'})}"}

    return _bearer
