import logging
from typing import Optional, Union

from answers import AnswerStore
from attempt_store import AttemptStore, MongoAttemptStore
from builder import SessionBuilder
from content import ContentDirectory, QuestionBank
from coordinator import SubmissionCoordinator
from errors import NotFound
from identity import check_access
from result_cache import ResultCache
from schemas import (
    SUBMITTED,
    CallerIdentity,
    CreateTestRequest,
    CreateTestResponse,
    InProgressView,
    SaveAnswerRequest,
    SubmitResponse,
    SubmittedView,
    in_progress_view,
    submitted_view,
)

logger = logging.getLogger(__name__)


class AttemptEngine:
    """The attempt operations, each guarded by ownership before any state access."""

    def __init__(
        self,
        store: AttemptStore,
        bank: QuestionBank,
        directory: ContentDirectory,
        cache: Optional[ResultCache] = None,
        coordinator: Optional[SubmissionCoordinator] = None,
    ):
        self.store = store
        self.cache = cache
        self.builder = SessionBuilder(store, bank, directory)
        self.answers = AnswerStore(store)
        self.coordinator = coordinator or SubmissionCoordinator(store, bank, cache)

    def create_attempt(self, selector: CreateTestRequest, caller: CallerIdentity) -> CreateTestResponse:
        attempt, questions = self.builder.create(selector, caller)
        return CreateTestResponse(
            testId=attempt["testId"],
            exam=attempt["exam"],
            subject=attempt["subject"],
            questionPaper=attempt["questionPaper"],
            questions=questions,
        )

    def save_answer(self, test_id: str, data: SaveAnswerRequest, caller: CallerIdentity) -> dict:
        changes = {name: getattr(data, name) for name in ("answer", "flagged") if name in data.model_fields_set}
        self.answers.save(test_id, data.questionId, caller, **changes)
        return {"message": "Answer saved", "testId": test_id}

    def submit(self, test_id: str, caller: CallerIdentity) -> SubmitResponse:
        return self.coordinator.submit(test_id, caller)

    def get_result(self, test_id: str, caller: CallerIdentity) -> Union[InProgressView, SubmittedView]:
        if self.cache is not None:
            cached = self.cache.get(test_id)
            if cached is not None:
                check_access(cached, caller)
                # a delete racing the submit can leave an entry behind
                if not self.store.exists(test_id):
                    self.cache.evict(test_id)
                    raise NotFound("Test not found")
                logger.debug("Result cache HIT for %s", test_id)
                return SubmittedView.model_validate(cached["view"])

        attempt = self.store.get(test_id)
        if attempt is None:
            logger.warning("Test not found: %s", test_id)
            raise NotFound("Test not found")
        check_access(attempt, caller)

        if attempt["status"] != SUBMITTED:
            # in-progress attempts still change and are never cached
            return in_progress_view(attempt)

        view = submitted_view(attempt)
        if self.cache is not None:
            self.cache.put(attempt, view.model_dump(mode="json"))
        return view

    def delete_attempt(self, test_id: str, caller: CallerIdentity) -> dict:
        attempt = self.store.get(test_id)
        if attempt is None:
            raise NotFound("Test not found")
        check_access(attempt, caller)
        self.store.delete(test_id)
        if self.cache is not None:
            self.cache.evict(test_id)
        logger.info("Test %s deleted", test_id)
        return {"message": "Test deleted successfully"}


def build_engine(db, cache: Optional[ResultCache] = None, store: Optional[AttemptStore] = None) -> AttemptEngine:
    return AttemptEngine(
        store=store or MongoAttemptStore(db),
        bank=QuestionBank(db),
        directory=ContentDirectory(db),
        cache=cache,
    )
