import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

if REDIS_PASSWORD:
    _DEFAULT_REDIS_URL = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"
else:
    _DEFAULT_REDIS_URL = f"redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"
REDIS_URL = os.getenv("REDIS_URL", _DEFAULT_REDIS_URL)

# "redis" in production, "memory" for local runs and tests
CACHE_BACKEND = os.getenv("CACHE_BACKEND", "redis")
# Shared by every key this deployment writes; must not contain ":"
CACHE_KEY_PREFIX = os.getenv("CACHE_KEY_PREFIX", "ephemeral")
CACHE_OP_TIMEOUT_SECONDS = float(os.getenv("CACHE_OP_TIMEOUT_SECONDS", 2.0))

LIKE_WINDOW_SECONDS = int(os.getenv("LIKE_WINDOW_SECONDS", 86400))
READ_WINDOW_SECONDS = int(os.getenv("READ_WINDOW_SECONDS", 86400))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
