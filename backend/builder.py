import logging
from typing import Any, Dict, List, Optional, Tuple

from attempt_store import AttemptStore
from content import ContentDirectory, QuestionBank
from errors import EmptyPool, NotFound
from identity import new_attempt_identity
from schemas import IN_PROGRESS, AttemptQuestion, CallerIdentity, CreateTestRequest, TestAttempt, sanitize_question

logger = logging.getLogger(__name__)


def _snapshot(question: Dict[str, Any], number: int, exam, subject, paper) -> Dict[str, Any]:
    # a frozen copy: later edits to the question bank never reach the attempt
    snap = {
        "_id": str(question["_id"]),
        "questionNumber": number,
        "text": question.get("text", ""),
        "options": [dict(opt) for opt in question.get("options", [])],
        "correctIndex": question.get("correctIndex"),
        "explanation": question.get("explanation", ""),
        "difficulty": question.get("difficulty"),
        "tags": list(question.get("tags", [])),
        "media": list(question.get("media", [])),
    }
    if subject:
        snap["subject"] = {"_id": subject["_id"], "name": subject["name"], "icon": subject.get("icon")}
    if exam:
        snap["exam"] = {"_id": exam["_id"], "title": exam["name"]}
    if paper:
        snap["questionPaper"] = {"_id": paper["_id"], "name": paper["name"], "section": paper.get("section")}
    return snap


class SessionBuilder:
    def __init__(self, store: AttemptStore, bank: QuestionBank, directory: ContentDirectory):
        self.store = store
        self.bank = bank
        self.directory = directory

    def _resolve_scope(self, selector: CreateTestRequest):
        paper: Optional[Dict[str, Any]] = None
        subject: Optional[Dict[str, Any]] = None
        exam: Optional[Dict[str, Any]] = None

        if selector.questionPaperId:
            paper = self.directory.question_paper(selector.questionPaperId)
            if not paper:
                raise NotFound("Question paper not found")
            subject = self.directory.subject(paper["subject"])
            exam = self.directory.exam(paper["exam"])
            scope = {"questionPaper": selector.questionPaperId}
        else:
            exam = self.directory.exam(selector.examId)
            if not exam:
                raise NotFound("Exam not found")
            if selector.subjectId:
                subject = self.directory.subject(selector.subjectId)
                if not subject:
                    raise NotFound("Subject not found")
                scope = {"subject": selector.subjectId}
            else:
                scope = {"exam": selector.examId}
        return scope, exam, subject, paper

    def create(self, selector: CreateTestRequest, caller: CallerIdentity) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        scope, exam, subject, paper = self._resolve_scope(selector)

        pool = self.bank.pool(scope, selector.questions)
        if not pool:
            raise EmptyPool("No published questions found for this selection")

        snapshots = [_snapshot(q, idx + 1, exam, subject, paper) for idx, q in enumerate(pool)]
        attempt = TestAttempt(
            **new_attempt_identity(caller),
            examId=exam["_id"] if exam else None,
            subjectId=subject["_id"] if subject else None,
            questionPaperId=paper["_id"] if paper else None,
            exam=exam,
            subject=subject,
            subjectName=subject["name"] if subject else None,
            questionPaper={"_id": paper["_id"], "name": paper["name"]} if paper else None,
            questions=[AttemptQuestion(questionId=snap["_id"], question=snap) for snap in snapshots],
            status=IN_PROGRESS,
        ).model_dump()
        self.store.insert(attempt)
        logger.info(
            "Created attempt %s owner=%s exam=%s subject=%s paper=%s questions=%s",
            attempt["testId"],
            attempt["ownerId"] or "anonymous",
            attempt["examId"],
            attempt["subjectId"],
            attempt["questionPaperId"],
            len(snapshots),
        )
        return attempt, [sanitize_question(snap) for snap in snapshots]
