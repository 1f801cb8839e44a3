import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./mindcare.db")

# Connection pool (ignored for SQLite)
DB_POOL = {
    "pool_size": int(os.getenv("DB_POOL_SIZE", "20")),
    "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "30")),
    "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", "30")),
    "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "300")),
}
# Statements slower than this many seconds are logged; 0 disables the hook
DB_SLOW_QUERY_SECONDS = float(os.getenv("DB_SLOW_QUERY_SECONDS", "1.0"))

# Firebase Configuration (identity provider for applicants, clients and admins)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")

# Comma separated Firebase UIDs that always get admin rights, in addition to
# tokens carrying the "admin" custom claim
ADMIN_UIDS = {uid.strip() for uid in os.getenv("ADMIN_UIDS", "").split(",") if uid.strip()}

# Provider defaults applied when an application is approved
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "Europe/Bucharest")
DEFAULT_SESSION_PRICE = Decimal(os.getenv("DEFAULT_SESSION_PRICE", "100.00"))
CURRENCY = os.getenv("CURRENCY", "RON")

# Fast-track: applications in these specializations are approved on submit
FAST_TRACK_ENABLED = os.getenv("FAST_TRACK_ENABLED", "false").lower() == "true"
FAST_TRACK_SPECIALIZATIONS = {
    s.strip().lower() for s in os.getenv("FAST_TRACK_SPECIALIZATIONS", "").split(",") if s.strip()
}
FAST_TRACK_REVIEWER = "system:fast-track"

# Scheduling
DEFAULT_APPOINTMENT_MINUTES = int(os.getenv("DEFAULT_APPOINTMENT_MINUTES", "60"))
SLOT_STEP_MINUTES = int(os.getenv("SLOT_STEP_MINUTES", "15"))

# Transient storage failures (connection loss, deadlock) are retried this many times
STORAGE_RETRY_ATTEMPTS = int(os.getenv("STORAGE_RETRY_ATTEMPTS", "3"))
STORAGE_RETRY_DELAY = float(os.getenv("STORAGE_RETRY_DELAY", "0.1"))

# Redis (rate limiting + directory cache). Unset means in-memory only.
REDIS_URL = os.getenv("REDIS_URL")
DIRECTORY_CACHE_TTL = int(os.getenv("DIRECTORY_CACHE_TTL", "300"))
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

# Frontend origins allowed by CORS
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000,http://localhost:8080",
).split(",")
