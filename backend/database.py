import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

QUESTIONS = "question"
EXAMS = "exam"
SUBJECTS = "subject"
QUESTION_PAPERS = "questionPaper"
TEST_ATTEMPTS = "testAttempt"

_client: Optional[MongoClient] = None
_db = None


def get_db():
    global _client, _db
    if _db is None:
        _client = MongoClient(DATABASE_URL)
        _db = _client[DATABASE_NAME]
    return _db


def ensure_indexes(db) -> None:
    attempts = db[TEST_ATTEMPTS]
    attempts.create_index("testId", unique=True)
    attempts.create_index([("ownerId", ASCENDING), ("status", ASCENDING), ("startedAt", DESCENDING)])
    attempts.create_index([("sessionId", ASCENDING), ("status", ASCENDING), ("startedAt", DESCENDING)])
    attempts.create_index([("ownerId", ASCENDING), ("examId", ASCENDING)])
    db[QUESTIONS].create_index([("questionPaper", ASCENDING), ("subject", ASCENDING), ("exam", ASCENDING)])
    logger.info("Indexes ensured on %s", db.name)


def id_candidates(value: Any) -> List[Any]:
    """Ids arrive as strings; content documents may key on ObjectId or on plain strings."""
    if isinstance(value, ObjectId):
        return [value, str(value)]
    candidates: List[Any] = [value]
    try:
        candidates.append(ObjectId(str(value)))
    except (InvalidId, TypeError):
        pass
    return candidates


def id_filter(value: Any) -> Dict[str, Any]:
    return {"$in": id_candidates(value)}

