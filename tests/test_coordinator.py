import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from attempt_store import InMemoryAttemptStore
from coordinator import SubmissionCoordinator, score_attempt
from engine import build_engine
from errors import Conflict, Forbidden, NotFound
from result_cache import MemoryCacheBackend, ResultCache
from schemas import SUBMITTED, CreateTestRequest


class CountingStore(InMemoryAttemptStore):
    def __init__(self):
        super().__init__()
        self.successful_submits = 0
        self._count_lock = threading.Lock()

    def compare_and_set(self, test_id, version, fields):
        updated = super().compare_and_set(test_id, version, fields)
        if updated is not None:
            with self._count_lock:
                self.successful_submits += 1
        return updated


class NeverWinsStore(InMemoryAttemptStore):
    def compare_and_set(self, test_id, version, fields):
        return None


class LateWinnerStore(InMemoryAttemptStore):
    """Another submitter lands right after our first read."""

    def __init__(self, winner_fields):
        super().__init__()
        self.winner_fields = winner_fields

    def compare_and_set(self, test_id, version, fields):
        super().compare_and_set(test_id, version, self.winner_fields)
        return None


def answer(engine, test_id, caller, answers):
    for index, value in enumerate(answers):
        if value is not None:
            engine.answers.set_answer(test_id, f"q{index + 1}", value, caller)


def test_scenario_half_correct(engine, start, alice):
    created = start(alice)
    answer(engine, created.testId, alice, [0, None, 2, 1])
    result = engine.submit(created.testId, alice)
    assert result.correctCount == 2
    assert result.total == 4
    assert result.score == 50.00
    assert result.alreadySubmitted is False
    assert [r.isCorrect for r in result.results] == [True, False, True, False]
    assert [r.correctAnswer for r in result.results] == [0, 1, 2, 3]
    assert result.results[1].userAnswer is None


def test_nothing_answered_scores_zero(engine, start, anonymous):
    created = start(anonymous)
    result = engine.submit(created.testId, anonymous)
    assert result.score == 0.0
    assert result.correctCount == 0


def test_all_correct_scores_hundred(engine, start, alice):
    created = start(alice)
    answer(engine, created.testId, alice, [0, 1, 2, 3])
    assert engine.submit(created.testId, alice).score == 100.0


def test_score_rounds_to_two_places():
    questions = [{"questionId": f"q{i}", "question": {"correctIndex": 0}, "answer": 0 if i == 0 else None} for i in range(3)]
    assert score_attempt(questions, {})["score"] == 33.33


def test_resubmit_returns_stored_result(engine, start, store, alice):
    created = start(alice)
    answer(engine, created.testId, alice, [0, None, 2, 1])
    first = engine.submit(created.testId, alice)
    version = store.get(created.testId)["version"]

    second = engine.submit(created.testId, alice)
    assert second.alreadySubmitted is True
    assert second.model_dump(exclude={"alreadySubmitted"}) == first.model_dump(exclude={"alreadySubmitted"})
    assert repr(second.score) == repr(first.score)
    assert store.get(created.testId)["version"] == version


def test_submission_is_frozen(engine, start, store, db, alice):
    created = start(alice)
    answer(engine, created.testId, alice, [0, 1, None, None])
    engine.submit(created.testId, alice)
    db["question"].update_many({}, {"$set": {"correctIndex": 3}})
    again = engine.submit(created.testId, alice)
    assert again.correctCount == 2
    assert store.get(created.testId)["status"] == SUBMITTED


def test_answer_key_comes_from_the_bank(engine, start, db, alice):
    created = start(alice)
    answer(engine, created.testId, alice, [3, None, None, None])
    # answer key corrected after the attempt started
    db["question"].update_one({"_id": "q1"}, {"$set": {"correctIndex": 3}})
    result = engine.submit(created.testId, alice)
    assert result.results[0].isCorrect is True
    assert result.results[0].correctAnswer == 3


def test_removed_question_falls_back_to_snapshot(engine, start, db, alice):
    created = start(alice)
    answer(engine, created.testId, alice, [0, None, None, None])
    db["question"].delete_one({"_id": "q1"})
    result = engine.submit(created.testId, alice)
    assert result.results[0].isCorrect is True
    assert result.results[0].explanation == "Because 0."


def test_submit_does_not_touch_the_bank(engine, start, db, alice):
    before = list(db["question"].find({}))
    created = start(alice)
    engine.submit(created.testId, alice)
    assert list(db["question"].find({})) == before


def test_submit_checks_identity(engine, start, alice, bob, anonymous):
    created = start(alice)
    for caller in (bob, anonymous):
        with pytest.raises(Forbidden):
            engine.submit(created.testId, caller)
    with pytest.raises(NotFound):
        engine.submit("test_missing", alice)


def test_parallel_submits_score_once(db, alice):
    store = CountingStore()
    engine = build_engine(db, cache=ResultCache(MemoryCacheBackend()), store=store)
    engine.coordinator.sleep = lambda seconds: None
    created = engine.create_attempt(CreateTestRequest(examId="exam-1"), alice)
    answer(engine, created.testId, alice, [0, None, 2, 1])

    barrier = threading.Barrier(12)

    def submit(_):
        barrier.wait()
        return engine.submit(created.testId, alice)

    with ThreadPoolExecutor(max_workers=12) as pool:
        results = list(pool.map(submit, range(12)))

    assert store.successful_submits == 1
    assert sum(1 for r in results if not r.alreadySubmitted) == 1
    assert {(r.score, r.correctCount, r.total) for r in results} == {(50.0, 2, 4)}
    assert all(r.results == results[0].results for r in results)


def test_autosave_during_scoring_forces_a_reread(db, alice):
    store = InMemoryAttemptStore()
    engine = build_engine(db, store=store)
    engine.coordinator.sleep = lambda seconds: None
    created = engine.create_attempt(CreateTestRequest(examId="exam-1"), alice)
    bank = engine.coordinator.bank
    original_key = bank.answer_key
    calls = []

    def answer_key_with_late_save(ids):
        calls.append(1)
        if len(calls) == 1:
            engine.answers.set_answer(created.testId, "q1", 0, alice)
        return original_key(ids)

    bank.answer_key = answer_key_with_late_save
    result = engine.submit(created.testId, alice)
    assert len(calls) == 2
    assert result.correctCount == 1


def test_exhausted_retries_raise_conflict(db, alice):
    store = NeverWinsStore()
    sleeps = []
    engine = build_engine(db, store=store)
    engine.coordinator = SubmissionCoordinator(store, engine.coordinator.bank, sleep=sleeps.append)
    created = engine.create_attempt(CreateTestRequest(examId="exam-1"), alice)
    with pytest.raises(Conflict):
        engine.submit(created.testId, alice)
    assert len(sleeps) == 2
    assert 0.05 <= sleeps[0] <= 0.15
    assert 0.1 <= sleeps[1] <= 0.3


def test_lost_race_returns_the_winners_result(db, alice):
    winner = {"status": SUBMITTED, "score": 25.0, "correctCount": 1, "total": 4, "results": []}
    store = LateWinnerStore(winner)
    engine = build_engine(db, store=store)
    engine.coordinator.sleep = lambda seconds: None
    created = engine.create_attempt(CreateTestRequest(examId="exam-1"), alice)
    result = engine.submit(created.testId, alice)
    assert result.alreadySubmitted is True
    assert result.score == 25.0
