import os
import logging
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / ".env", override=True)
# Document store path: use data/ dir if it exists (Docker), otherwise project root (local dev)
_data_dir = PROJECT_ROOT / "data"
if _data_dir.is_dir():
    DB_PATH = str(_data_dir / "reachbot.db")
else:
    DB_PATH = str(PROJECT_ROOT / "reachbot.db")

# --- GCP Secret Manager integration ---
GCP_PROJECT_ID = os.getenv("GCP_PROJECT_ID", "")

_SECRET_NAMES = {
    "ANTHROPIC_API_KEY": "anthropic-api-key",
    "SLACK_BOT_TOKEN": "slack-bot-token",
    "SLACK_APP_TOKEN": "slack-app-token",
    "INTEGRATION_API_KEY": "reachbot-integration-api-key",
}


def _get_secret(env_var: str) -> str:
    """Try env var first, then GCP Secret Manager, return empty string on failure."""
    val = os.getenv(env_var, "")
    if val:
        return val

    if not GCP_PROJECT_ID:
        return ""

    secret_id = _SECRET_NAMES.get(env_var)
    if not secret_id:
        return ""

    try:
        from google.cloud import secretmanager
        client = secretmanager.SecretManagerServiceClient()
        name = f"projects/{GCP_PROJECT_ID}/secrets/{secret_id}/versions/latest"
        response = client.access_secret_version(request={"name": name})
        val = response.payload.data.decode("UTF-8").strip()
        logger.info("Loaded %s from Secret Manager", env_var)
        return val
    except Exception as exc:
        logger.warning("Failed to load %s from Secret Manager: %s", env_var, exc)
        return ""


# API keys
ANTHROPIC_API_KEY = _get_secret("ANTHROPIC_API_KEY")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
SLACK_BOT_TOKEN = _get_secret("SLACK_BOT_TOKEN")
SLACK_APP_TOKEN = _get_secret("SLACK_APP_TOKEN")
INTEGRATION_API_KEY = _get_secret("INTEGRATION_API_KEY")

# Backend selection
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "claude").lower()

# Claude model config
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-5-20250929")

# Gemini model config
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-pro")

# Retry policy for transient provider failures
LLM_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", "5"))
LLM_BACKOFF_BASE_SECS = float(os.getenv("LLM_BACKOFF_BASE_SECS", "0.5"))
LLM_BACKOFF_MAX_SECS = float(os.getenv("LLM_BACKOFF_MAX_SECS", "8"))

# Cache
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
USER_CACHE_TTL_SECS = 3600
HISTORY_LENGTH = 30

# Outreach defaults
FANOUT_DELAY_SECS = float(os.getenv("FANOUT_DELAY_SECS", "3"))
MIN_PHONE_DIGITS = 10
DOCUMENT_CHAR_LIMIT = 5000
JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
JOB_POLL_TIMEOUT_SECS = 5

# External services
CANDIDATE_SEARCH_URL = os.getenv("CANDIDATE_SEARCH_URL", "")
INDEX_UPLOAD_URL = os.getenv("INDEX_UPLOAD_URL", "")
INTEGRATION_TIMEOUT_SECS = 60.0
