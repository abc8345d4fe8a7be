import os

DATABASE_URL = os.environ.get("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.environ.get("DATABASE_NAME", "exam_practice")

JWT_SECRET = os.environ.get("JWT_SECRET", "supersecretkey")  # in real deployment, use env
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")

# empty -> process-local memory cache
REDIS_URL = os.environ.get("REDIS_URL", "")
RESULT_CACHE_TTL_SECONDS = int(os.environ.get("RESULT_CACHE_TTL_SECONDS", str(60 * 60)))

SUBMIT_MAX_ATTEMPTS = int(os.environ.get("SUBMIT_MAX_ATTEMPTS", "3"))
SUBMIT_BACKOFF_SECONDS = float(os.environ.get("SUBMIT_BACKOFF_SECONDS", "0.1"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
