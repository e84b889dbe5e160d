import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env once, globally
load_dotenv()

# Project root (independent of current working directory).
PROJECT_ROOT = Path(__file__).resolve().parents[3]


def _from_env(env_key: str, default: str) -> Path:
    path = Path(os.getenv(env_key) or default).expanduser()
    return path if path.is_absolute() else PROJECT_ROOT / path


def resolve_dir(env_key: str, default: str) -> Path:
    """
    Directory from ENV, created on first use.
    Relative paths are resolved against PROJECT_ROOT.
    """
    path = _from_env(env_key, default)
    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_file(env_key: str, default: Path) -> Path:
    """File path from ENV, falling back to `default` inside a managed dir."""
    if not os.getenv(env_key):
        return default
    return _from_env(env_key, str(default))


SECRETS_DIR = resolve_dir("SUPPORT_TRIAGE_SECRETS_DIR", "secrets")
STATE_DIR = resolve_dir("SUPPORT_TRIAGE_STATE_DIR", ".state")
LOGS_DIR = resolve_dir("SUPPORT_TRIAGE_LOGS_DIR", "logs")

STATE_PATH = STATE_DIR / "state.json"
# Authorized-user JSON with token, refresh_token, client_id and client_secret.
TOKEN_PATH = resolve_file("SUPPORT_TRIAGE_TOKEN_FILE", SECRETS_DIR / "gmail_token.json")
KNOWLEDGE_BASE_PATH = resolve_file("SUPPORT_TRIAGE_KNOWLEDGE_BASE", STATE_DIR / "faqs.json")
AUDIT_LOG_PATH = resolve_file("SUPPORT_TRIAGE_AUDIT_LOG", LOGS_DIR / "ai_api_logs.jsonl")
