"""Persistence for TestAttempt documents.

Every mutation is a single-record conditional operation:

* ``update_question`` touches the fields of one entry in ``questions`` and
  bumps ``version``; siblings are never rewritten.
* ``compare_and_set`` applies the whole submission field set only when the
  stored ``version`` still equals the one the caller read.

The match and the write happen in one single-document operation; the
attempt returned afterwards is a fresh read and may already include later
writes.
"""
import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

from database import TEST_ATTEMPTS
from errors import Transient
from schemas import IN_PROGRESS

logger = logging.getLogger(__name__)


class AttemptStore:
    def insert(self, attempt: Dict[str, Any]) -> None:
        raise NotImplementedError

    def get(self, test_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def update_question(
        self, test_id: str, owner: Dict[str, Any], question_id: str, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Returns the updated attempt, or None when no in-progress attempt matched."""
        raise NotImplementedError

    def compare_and_set(self, test_id: str, version: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Returns the updated attempt, or None when the version moved or it is no longer in progress."""
        raise NotImplementedError

    def exists(self, test_id: str) -> bool:
        raise NotImplementedError

    def delete(self, test_id: str) -> bool:
        raise NotImplementedError


@contextmanager
def _transient_on_failure(op: str):
    try:
        yield
    except PyMongoError as e:
        logger.error("Attempt store %s failed: %s", op, e)
        raise Transient("Attempt store unavailable. Please try again.") from e


class MongoAttemptStore(AttemptStore):
    def __init__(self, db):
        self.collection = db[TEST_ATTEMPTS]

    def insert(self, attempt: Dict[str, Any]) -> None:
        with _transient_on_failure("insert"):
            # insert_one adds _id to the dict it is given
            self.collection.insert_one(dict(attempt))

    def get(self, test_id: str) -> Optional[Dict[str, Any]]:
        with _transient_on_failure("get"):
            return self.collection.find_one({"testId": test_id}, {"_id": 0})

    def exists(self, test_id: str) -> bool:
        with _transient_on_failure("exists"):
            return self.collection.find_one({"testId": test_id}, {"_id": 1}) is not None

    def _apply(self, op: str, query: Dict[str, Any], update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with _transient_on_failure(op):
            if self.collection.update_one(query, update).matched_count != 1:
                return None
            return self.collection.find_one({"testId": query["testId"]}, {"_id": 0})

    def update_question(self, test_id, owner, question_id, fields):
        query = {"testId": test_id, "status": IN_PROGRESS, "questions.questionId": question_id, **owner}
        update = {
            "$set": {f"questions.$.{name}": value for name, value in fields.items()},
            "$inc": {"version": 1},
        }
        return self._apply("update_question", query, update)

    def compare_and_set(self, test_id, version, fields):
        query = {"testId": test_id, "status": IN_PROGRESS, "version": version}
        return self._apply("compare_and_set", query, {"$set": fields, "$inc": {"version": 1}})

    def delete(self, test_id: str) -> bool:
        with _transient_on_failure("delete"):
            return self.collection.delete_one({"testId": test_id}).deleted_count == 1


class InMemoryAttemptStore(AttemptStore):
    """Process-local store with one lock per attempt id."""

    def __init__(self):
        self._attempts: Dict[str, Dict[str, Any]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock(self, test_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(test_id)
            if lock is None:
                lock = self._locks[test_id] = threading.Lock()
            return lock

    def insert(self, attempt: Dict[str, Any]) -> None:
        test_id = attempt["testId"]
        with self._lock(test_id):
            if test_id in self._attempts:
                raise ValueError(f"duplicate testId {test_id}")
            self._attempts[test_id] = copy.deepcopy(attempt)

    def get(self, test_id: str) -> Optional[Dict[str, Any]]:
        with self._lock(test_id):
            attempt = self._attempts.get(test_id)
            return copy.deepcopy(attempt) if attempt is not None else None

    def exists(self, test_id: str) -> bool:
        with self._lock(test_id):
            return test_id in self._attempts

    def update_question(self, test_id, owner, question_id, fields):
        with self._lock(test_id):
            attempt = self._attempts.get(test_id)
            if attempt is None or attempt["status"] != IN_PROGRESS:
                return None
            if any(attempt.get(name) != value for name, value in owner.items()):
                return None
            for entry in attempt["questions"]:
                if entry["questionId"] == question_id:
                    entry.update(fields)
                    attempt["version"] += 1
                    return copy.deepcopy(attempt)
            return None

    def compare_and_set(self, test_id, version, fields):
        with self._lock(test_id):
            attempt = self._attempts.get(test_id)
            if attempt is None or attempt["status"] != IN_PROGRESS or attempt["version"] != version:
                return None
            attempt.update(copy.deepcopy(fields))
            attempt["version"] += 1
            return copy.deepcopy(attempt)

    def delete(self, test_id: str) -> bool:
        with self._lock(test_id):
            removed = self._attempts.pop(test_id, None) is not None
        with self._registry_lock:
            self._locks.pop(test_id, None)
        return removed
