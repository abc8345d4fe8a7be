from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, model_validator
from datetime import datetime

IN_PROGRESS = "in_progress"
SUBMITTED = "submitted"

# fields a client must never see before the attempt is submitted
HIDDEN_UNTIL_SUBMIT = ("correctIndex", "explanation")


# Caller resolved from the bearer credential; user_id None means anonymous
class CallerIdentity(BaseModel):
    user_id: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


# Requests
class CreateTestRequest(BaseModel):
    examId: Optional[str] = None
    subjectId: Optional[str] = None
    questionPaperId: Optional[str] = None
    questions: Optional[List[str]] = None

    @model_validator(mode="after")
    def _needs_exam_or_paper(self):
        if not self.examId and not self.questionPaperId:
            raise ValueError("Either questionPaperId or examId must be provided")
        return self


class SaveAnswerRequest(BaseModel):
    questionId: str
    answer: Optional[int] = None
    flagged: Optional[bool] = None

    @model_validator(mode="after")
    def _needs_a_change(self):
        if "answer" not in self.model_fields_set and "flagged" not in self.model_fields_set:
            raise ValueError("Either answer or flagged must be provided")
        return self


# Attempt Collection Schema
class AttemptQuestion(BaseModel):
    questionId: str
    question: Dict[str, Any]
    answer: Optional[int] = None
    flagged: bool = False


class QuestionResult(BaseModel):
    questionId: str
    question: Dict[str, Any]
    userAnswer: Optional[int] = None
    correctAnswer: Optional[int] = None
    isCorrect: bool
    explanation: str = ""
    flagged: bool = False


class TestAttempt(BaseModel):
    testId: str
    ownerId: Optional[str] = None
    sessionId: Optional[str] = None
    examId: Optional[str] = None
    subjectId: Optional[str] = None
    questionPaperId: Optional[str] = None
    exam: Optional[Dict[str, Any]] = None
    subject: Optional[Dict[str, Any]] = None
    subjectName: Optional[str] = None
    questionPaper: Optional[Dict[str, Any]] = None
    questions: List[AttemptQuestion] = []
    status: str = IN_PROGRESS
    startedAt: datetime = Field(default_factory=datetime.utcnow)
    submittedAt: Optional[datetime] = None
    score: Optional[float] = None
    correctCount: Optional[int] = None
    total: Optional[int] = None
    results: Optional[List[QuestionResult]] = None
    version: int = 0

    @property
    def submitted(self) -> bool:
        return self.status == SUBMITTED


# Responses
class CreateTestResponse(BaseModel):
    testId: str
    exam: Optional[Dict[str, Any]] = None
    subject: Optional[Dict[str, Any]] = None
    questionPaper: Optional[Dict[str, Any]] = None
    questions: List[Dict[str, Any]]


class SubmitResponse(BaseModel):
    testId: str
    score: float
    correctCount: int
    total: int
    results: List[QuestionResult]
    alreadySubmitted: bool = False


class InProgressView(BaseModel):
    testId: str
    examId: Optional[str] = None
    subjectId: Optional[str] = None
    questionPaperId: Optional[str] = None
    exam: Optional[Dict[str, Any]] = None
    subject: Optional[Dict[str, Any]] = None
    submitted: bool = False
    startedAt: datetime
    questions: List[AttemptQuestion]


class SubmittedView(BaseModel):
    testId: str
    examId: Optional[str] = None
    subjectId: Optional[str] = None
    questionPaperId: Optional[str] = None
    subjectName: Optional[str] = None
    exam: Optional[Dict[str, Any]] = None
    boardId: Optional[str] = None
    score: float
    correctCount: int
    total: int
    startedAt: datetime
    submittedAt: datetime
    results: List[QuestionResult]
    submitted: bool = True


def sanitize_question(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in snapshot.items() if k not in HIDDEN_UNTIL_SUBMIT}


def in_progress_view(attempt: Dict[str, Any]) -> InProgressView:
    return InProgressView(
        testId=attempt["testId"],
        examId=attempt.get("examId"),
        subjectId=attempt.get("subjectId"),
        questionPaperId=attempt.get("questionPaperId"),
        exam={"_id": attempt["exam"]["_id"], "title": attempt["exam"].get("title")} if attempt.get("exam") else None,
        subject={"_id": attempt["subject"]["_id"], "name": attempt["subject"].get("name")} if attempt.get("subject") else None,
        startedAt=attempt["startedAt"],
        questions=[
            AttemptQuestion(
                questionId=q["questionId"],
                question=sanitize_question(q["question"]),
                answer=q.get("answer"),
                flagged=q.get("flagged", False),
            )
            for q in attempt["questions"]
        ],
    )


def submitted_view(attempt: Dict[str, Any]) -> SubmittedView:
    exam = attempt.get("exam")
    return SubmittedView(
        testId=attempt["testId"],
        examId=attempt.get("examId"),
        subjectId=attempt.get("subjectId"),
        questionPaperId=attempt.get("questionPaperId"),
        subjectName=attempt.get("subjectName"),
        exam=exam,
        boardId=exam.get("board") if exam else None,
        score=attempt["score"],
        correctCount=attempt["correctCount"],
        total=attempt["total"],
        startedAt=attempt["startedAt"],
        submittedAt=attempt["submittedAt"],
        results=attempt["results"],
    )
