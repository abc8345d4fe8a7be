import logging
from typing import Any, Dict, Optional

from attempt_store import AttemptStore
from errors import Conflict, NotFound
from identity import check_access, owner_filter
from schemas import IN_PROGRESS, CallerIdentity

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class AnswerStore:
    """Autosave of single-question answers and flags.

    Each call is one conditional update of one question entry, so concurrent
    saves for sibling questions never overwrite each other. For a given
    question the last accepted write wins.
    """

    def __init__(self, store: AttemptStore):
        self.store = store

    def set_answer(self, test_id: str, question_id: str, value: Optional[int], caller: CallerIdentity) -> int:
        return self.save(test_id, question_id, caller, answer=value)

    def set_flag(self, test_id: str, question_id: str, flagged: bool, caller: CallerIdentity) -> int:
        return self.save(test_id, question_id, caller, flagged=flagged)

    def save(self, test_id: str, question_id: str, caller: CallerIdentity, answer=_UNSET, flagged=_UNSET) -> int:
        """Apply answer and/or flag; returns the attempt version after the write."""
        fields: Dict[str, Any] = {}
        if answer is not _UNSET:
            fields["answer"] = int(answer) if answer is not None else None
        if flagged is not _UNSET:
            fields["flagged"] = bool(flagged)
        if not fields:
            raise ValueError("nothing to save")

        attempt = self.store.get(test_id)
        if attempt is None:
            raise NotFound("Test not found")
        check_access(attempt, caller)

        updated = self.store.update_question(test_id, owner_filter(caller), str(question_id), fields)
        if updated is not None:
            logger.debug("Saved %s on %s (version %s)", sorted(fields), test_id, updated["version"])
            return updated["version"]

        # explain why nothing matched
        current = self.store.get(test_id)
        if current is None:
            raise NotFound("Test not found")
        if current["status"] != IN_PROGRESS:
            raise Conflict("Test already submitted")
        if not any(q["questionId"] == str(question_id) for q in current["questions"]):
            raise NotFound("Question is not part of this test")
        raise Conflict()
