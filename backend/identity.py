"""Caller identity and attempt ownership.

Two ownership regimes exist and are fixed when an attempt is created:

* owned: ``ownerId`` is set; only that authenticated user may touch it.
* anonymous: ``ownerId`` is null and a session token is embedded in the
  ``testId``; only unauthenticated callers holding that id may touch it.
"""
import logging
import secrets
import time
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import JWT_ALGORITHM, JWT_SECRET
from errors import Forbidden
from schemas import CallerIdentity

logger = logging.getLogger(__name__)

ANONYMOUS = CallerIdentity()

SESSION_MARKER = "session_"


def resolve_caller(authorization: Optional[str]) -> CallerIdentity:
    # a missing or bad credential is an anonymous caller, never an error
    if not authorization:
        return ANONYMOUS
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return ANONYMOUS
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.debug("Rejected bearer token: %s", e)
        return ANONYMOUS
    user_id = payload.get("sub") or payload.get("userId")
    if user_id is None:
        return ANONYMOUS
    return CallerIdentity(user_id=str(user_id), role=payload.get("role"))


def new_attempt_identity(caller: CallerIdentity) -> Dict[str, Any]:
    """Pick the testId and ownership fields for a new attempt."""
    stamp = int(time.time() * 1000)
    if caller.is_authenticated:
        return {
            "testId": f"test_{stamp}_{secrets.token_urlsafe(12)}",
            "ownerId": caller.user_id,
            "sessionId": None,
        }
    session_id = f"{SESSION_MARKER}{secrets.token_urlsafe(24)}"
    return {
        "testId": f"test_{stamp}_{session_id}",
        "ownerId": None,
        "sessionId": session_id,
    }


def session_from_test_id(test_id: str) -> Optional[str]:
    _, marker, token = test_id.partition(SESSION_MARKER)
    if not marker or not token:
        return None
    return SESSION_MARKER + token


def owner_filter(caller: CallerIdentity) -> Dict[str, Any]:
    """Store predicate matching only attempts this caller may mutate."""
    if caller.is_authenticated:
        return {"ownerId": caller.user_id}
    return {"ownerId": None}


def check_access(attempt: Dict[str, Any], caller: CallerIdentity) -> None:
    owner_id = attempt.get("ownerId")
    test_id = attempt.get("testId", "")
    if owner_id is not None:
        if not caller.is_authenticated or str(owner_id) != caller.user_id:
            logger.info("Denied %s to %s", test_id, caller.user_id or "anonymous")
            raise Forbidden()
        return
    if caller.is_authenticated:
        logger.info("Denied anonymous attempt %s to user %s", test_id, caller.user_id)
        raise Forbidden()
    session_id = attempt.get("sessionId")
    if not session_id or not secrets.compare_digest(session_id, session_from_test_id(test_id) or ""):
        raise Forbidden()
