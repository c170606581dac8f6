from __future__ import annotations
import os

OPENAI_API_BASE = os.environ.get("OPENAI_API_BASE", "https://api.openai.com")
OPENAI_API_MODEL = os.environ.get("OPENAI_API_MODEL", "gpt-4.1-mini")
POLL_TIMEOUT_SECONDS = int(os.environ.get("OPENAI_POLL_TIMEOUT_MS", "45000")) / 1000
POLL_INTERVAL_SECONDS = float(os.environ.get("POLL_INTERVAL_SECONDS", "1.5"))

HEARTBEAT_SECONDS = float(os.environ.get("HEARTBEAT_SECONDS", "15"))
JOB_RETENTION_SECONDS = int(os.environ.get("JOB_RETENTION_SECONDS", "3600"))
MAX_JOBS = int(os.environ.get("MAX_JOBS", "500"))

REDIS_URL = os.environ.get("REDIS_URL")
SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", "86400"))

PORT = int(os.environ.get("PORT", "3000"))
DEBUG = os.environ.get("INTENTION_DEBUG", "") == "1"


# Credentials are read at call time so a running server picks up rotated keys.
def openai_api_key() -> str | None:
    return os.environ.get("OPENAI_API_SECRET") or None


def openai_web_enabled() -> bool:
    return os.environ.get("OPENAI_ALLOW_WEB", "").lower() == "true"
