import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env before reading any environment variables
load_dotenv()

HERE = Path(__file__).resolve().parent           # repo/backend/
REPO_ROOT = HERE.parent                          # repo/

CONFIGS_DIR = Path(os.getenv("CONFIGS_DIR", (REPO_ROOT / "configs").as_posix()))

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LLM_ENABLED = bool(OPENAI_API_KEY) and os.getenv("LLM_ENABLED", "true").lower() in {"1", "true", "yes", "on"}
LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "20"))

SESSION_COOKIE = "chat_session"
SESSION_TTL_SECS = int(os.getenv("SESSION_TTL_SECS", str(7 * 24 * 60 * 60)))
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "10000"))
# Set CROSS_SITE=1 when the widget is embedded from another domain
CROSS_SITE = os.getenv("CROSS_SITE") == "1"
COOKIE_SECURE = CROSS_SITE or os.getenv("ENV", "").lower() == "production"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
