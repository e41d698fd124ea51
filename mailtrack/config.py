"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Auth ─────────────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_ALGORITHM = "HS256"
TOKEN_EXPIRY_HOURS = int(os.getenv("TOKEN_EXPIRY_HOURS", "24"))

# ── Database ─────────────────────────────────────────────────────────
# Applied as statement_timeout on PostgreSQL and as the pool wait bound.
STATEMENT_TIMEOUT_MS = int(os.getenv("STATEMENT_TIMEOUT_MS", "15000"))

# ── Pagination ───────────────────────────────────────────────────────
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

# ── Uploads ──────────────────────────────────────────────────────────
UPLOAD_PATH = os.getenv("UPLOAD_PATH", "./uploads")
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", str(10 * 1024 * 1024)))
ALLOWED_FILE_TYPES = {
    ext.strip().lower()
    for ext in os.getenv("ALLOWED_FILE_TYPES", ".pdf,.doc,.docx,.jpg,.jpeg,.png").split(",")
    if ext.strip()
}
MAX_ATTACHMENTS = int(os.getenv("MAX_ATTACHMENTS", "10"))

# ── Logging ──────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
