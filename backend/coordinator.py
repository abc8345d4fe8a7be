"""Exactly-once submission of test attempts.

Submitting is a compare-and-swap on the attempt ``version``: the scored
field set is written only if nothing changed since the attempt was read.
Losing the race (a concurrent submit, or an autosave landing mid-scoring)
means reading again; an attempt found already submitted is answered from
its stored result, so duplicate and retried submits are idempotent.
"""
import logging
import random
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from attempt_store import AttemptStore
from config import SUBMIT_BACKOFF_SECONDS, SUBMIT_MAX_ATTEMPTS
from content import QuestionBank
from errors import Conflict, NotFound
from identity import check_access
from result_cache import ResultCache
from schemas import SUBMITTED, CallerIdentity, SubmitResponse, submitted_view

logger = logging.getLogger(__name__)


def _as_index(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def score_attempt(questions: List[Dict[str, Any]], answer_key: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Score stored answers against the authoritative answer key.

    A question missing from the key (unpublished or deleted since the attempt
    started) is scored against its snapshot. An unanswered question is never
    correct.
    """
    results = []
    correct_count = 0
    for entry in questions:
        snapshot = entry["question"]
        key = answer_key.get(entry["questionId"]) or snapshot
        user_answer = _as_index(entry.get("answer"))
        correct_answer = _as_index(key.get("correctIndex"))
        is_correct = user_answer is not None and correct_answer is not None and user_answer == correct_answer
        if is_correct:
            correct_count += 1
        results.append({
            "questionId": entry["questionId"],
            "question": snapshot,
            "userAnswer": user_answer,
            "correctAnswer": correct_answer,
            "isCorrect": is_correct,
            "explanation": key.get("explanation") or "",
            "flagged": bool(entry.get("flagged", False)),
        })
    total = len(questions)
    score = round(correct_count / total * 100, 2) if total else 0.0
    return {"score": score, "correctCount": correct_count, "total": total, "results": results}


class SubmissionCoordinator:
    def __init__(
        self,
        store: AttemptStore,
        bank: QuestionBank,
        cache: Optional[ResultCache] = None,
        max_attempts: int = SUBMIT_MAX_ATTEMPTS,
        backoff_seconds: float = SUBMIT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.bank = bank
        self.cache = cache
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def _stored(self, attempt: Dict[str, Any], already_submitted: bool) -> SubmitResponse:
        return SubmitResponse(
            testId=attempt["testId"],
            score=attempt["score"],
            correctCount=attempt["correctCount"],
            total=attempt["total"],
            results=attempt["results"],
            alreadySubmitted=already_submitted,
        )

    def _remember(self, attempt: Dict[str, Any]) -> None:
        if self.cache is not None:
            self.cache.put(attempt, submitted_view(attempt).model_dump(mode="json"))

    def submit(self, test_id: str, caller: CallerIdentity) -> SubmitResponse:
        for attempt_no in range(1, self.max_attempts + 1):
            attempt = self.store.get(test_id)
            if attempt is None:
                raise NotFound("Test not found")
            check_access(attempt, caller)

            if attempt["status"] == SUBMITTED:
                return self._stored(attempt, already_submitted=True)

            answer_key = self.bank.answer_key(q["questionId"] for q in attempt["questions"])
            fields = score_attempt(attempt["questions"], answer_key)
            fields["status"] = SUBMITTED
            fields["submittedAt"] = datetime.utcnow()

            updated = self.store.compare_and_set(test_id, attempt["version"], fields)
            if updated is not None:
                logger.info(
                    "Submitted %s score=%s correct=%s/%s",
                    test_id, updated["score"], updated["correctCount"], updated["total"],
                )
                self._remember(updated)
                return self._stored(updated, already_submitted=False)

            logger.info("Submit of %s lost version %s (try %s/%s)", test_id, attempt["version"], attempt_no, self.max_attempts)
            if attempt_no < self.max_attempts:
                self.sleep(self.backoff_seconds * attempt_no * random.uniform(0.5, 1.5))

        attempt = self.store.get(test_id)
        if attempt is not None and attempt["status"] == SUBMITTED:
            return self._stored(attempt, already_submitted=True)
        logger.warning("Giving up on submit of %s after %s tries", test_id, self.max_attempts)
        raise Conflict("Failed to submit test after retries. Please try again.")
