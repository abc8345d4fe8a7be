from typing import Any, Dict, Iterable, List, Optional

from pymongo import ASCENDING

from database import EXAMS, QUESTION_PAPERS, QUESTIONS, SUBJECTS, id_candidates, id_filter

PUBLISHED = "published"

SNAPSHOT_FIELDS = {
    "_id": 1,
    "text": 1,
    "options": 1,
    "correctIndex": 1,
    "explanation": 1,
    "difficulty": 1,
    "tags": 1,
    "media": 1,
}


def _ref(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, dict):
        return _ref(value.get("_id"))
    return str(value)


class ContentDirectory:
    """Exam / subject / paper metadata, read at attempt creation only."""

    def __init__(self, db):
        self.db = db

    def _one(self, collection: str, ref: Any, fields: Dict[str, int]) -> Optional[Dict[str, Any]]:
        if ref is None:
            return None
        return self.db[collection].find_one({"_id": id_filter(ref)}, fields)

    def question_paper(self, ref: Any) -> Optional[Dict[str, Any]]:
        doc = self._one(QUESTION_PAPERS, ref, {"name": 1, "section": 1, "subject": 1, "exam": 1})
        if not doc:
            return None
        return {
            "_id": _ref(doc["_id"]),
            "name": doc.get("name"),
            "section": doc.get("section"),
            "subject": _ref(doc.get("subject")),
            "exam": _ref(doc.get("exam")),
        }

    def subject(self, ref: Any) -> Optional[Dict[str, Any]]:
        doc = self._one(SUBJECTS, ref, {"name": 1, "icon": 1})
        if not doc:
            return None
        return {"_id": _ref(doc["_id"]), "name": doc.get("name"), "icon": doc.get("icon")}

    def exam(self, ref: Any) -> Optional[Dict[str, Any]]:
        doc = self._one(EXAMS, ref, {"name": 1, "title": 1, "board": 1})
        if not doc:
            return None
        return {
            "_id": _ref(doc["_id"]),
            "name": doc.get("title") or doc.get("name"),
            "title": doc.get("title"),
            "board": _ref(doc.get("board")),
        }


class QuestionBank:
    """Read-only access to published questions."""

    def __init__(self, db):
        self.collection = db[QUESTIONS]

    def pool(self, scope: Dict[str, Any], question_ids: Iterable[Any] | None = None) -> List[Dict[str, Any]]:
        """Published questions in creation order.

        An explicit id list replaces the scope query; the scope then only
        supplies the attempt metadata.
        """
        query: Dict[str, Any] = {"status": PUBLISHED}
        if question_ids:
            ids: List[Any] = []
            for qid in question_ids:
                ids.extend(id_candidates(qid))
            query["_id"] = {"$in": ids}
        else:
            for field, ref in scope.items():
                query[field] = id_filter(ref)
        cursor = self.collection.find(query, SNAPSHOT_FIELDS).sort([("createdAt", ASCENDING), ("_id", ASCENDING)])
        return list(cursor)

    def answer_key(self, question_ids: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
        ids: List[Any] = []
        for qid in question_ids:
            ids.extend(id_candidates(qid))
        cursor = self.collection.find({"_id": {"$in": ids}, "status": PUBLISHED}, {"correctIndex": 1, "explanation": 1})
        return {str(doc["_id"]): doc for doc in cursor}
