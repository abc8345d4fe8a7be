"""Error taxonomy for the attempt engine.

Each error carries the HTTP status the API layer answers with; the engine
itself never imports FastAPI.
"""


class AttemptError(Exception):
    status_code = 500
    default_detail = "Attempt error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFound(AttemptError):
    status_code = 404
    default_detail = "Not found"


class Forbidden(AttemptError):
    status_code = 403
    default_detail = "Not authorized"


class EmptyPool(AttemptError):
    status_code = 400
    default_detail = "No questions available for this test"


class Conflict(AttemptError):
    status_code = 409
    default_detail = "Update conflict. Please try again."


class Transient(AttemptError):
    status_code = 503
    default_detail = "Service temporarily unavailable"
