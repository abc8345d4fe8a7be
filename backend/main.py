import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import CORS_ORIGINS, LOG_LEVEL, REDIS_URL
from database import ensure_indexes, get_db
from engine import AttemptEngine, build_engine
from errors import AttemptError
from identity import resolve_caller
from result_cache import ResultCache, make_cache_backend
from schemas import (
    CallerIdentity,
    CreateTestRequest,
    CreateTestResponse,
    SaveAnswerRequest,
    SubmitResponse,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_engine: Optional[AttemptEngine] = None


def get_engine() -> AttemptEngine:
    global _engine
    if _engine is None:
        db = get_db()
        ensure_indexes(db)
        _engine = build_engine(db, cache=ResultCache(make_cache_backend(REDIS_URL)))
    return _engine


def get_caller(authorization: Optional[str] = Header(None)) -> CallerIdentity:
    return resolve_caller(authorization)


@app.exception_handler(AttemptError)
async def attempt_error_handler(request: Request, exc: AttemptError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/")
async def root():
    return {"message": "Backend OK", "time": datetime.utcnow().isoformat()}


@app.get("/test")
def test():
    db = get_db()
    try:
        collections = db.list_collection_names()
        status = "connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        collections = []
        status = "unavailable"
    return {
        "backend": "FastAPI",
        "database": "MongoDB",
        "database_url": "env:DATABASE_URL",
        "database_name": db.name,
        "connection_status": status,
        "collections": collections,
    }


# Store handlers are sync: pymongo blocks, so FastAPI runs them in its threadpool.

@app.post("/students/tests", response_model=CreateTestResponse, status_code=201)
def create_test(data: CreateTestRequest, caller: CallerIdentity = Depends(get_caller), engine: AttemptEngine = Depends(get_engine)):
    return engine.create_attempt(data, caller)


@app.post("/students/tests/{test_id}/answer")
def save_answer(test_id: str, data: SaveAnswerRequest, caller: CallerIdentity = Depends(get_caller), engine: AttemptEngine = Depends(get_engine)):
    return engine.save_answer(test_id, data, caller)


@app.post("/students/tests/{test_id}/submit", response_model=SubmitResponse)
def submit_test(test_id: str, caller: CallerIdentity = Depends(get_caller), engine: AttemptEngine = Depends(get_engine)):
    return engine.submit(test_id, caller)


@app.get("/students/tests/{test_id}/result")
def get_test_result(test_id: str, caller: CallerIdentity = Depends(get_caller), engine: AttemptEngine = Depends(get_engine)):
    return engine.get_result(test_id, caller)


@app.delete("/students/tests/{test_id}")
def delete_test(test_id: str, caller: CallerIdentity = Depends(get_caller), engine: AttemptEngine = Depends(get_engine)):
    return engine.delete_attempt(test_id, caller)
