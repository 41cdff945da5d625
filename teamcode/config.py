"""
Runtime configuration.

Everything comes from the environment (optionally a .env file) so the same
code runs against Anthropic, a third-party Anthropic-compatible endpoint, or
any OpenAI-compatible server (Ollama, vLLM, ...).

    MODEL_ID              model name                 (claude-sonnet-4-5-20250929)
    TEAMCODE_PROVIDER     anthropic | openai         (anthropic)
    ANTHROPIC_BASE_URL    custom Anthropic endpoint
    OPENAI_BASE_URL       OpenAI-compatible endpoint (http://localhost:11434/v1)
    OPENAI_API_KEY        key for the endpoint above
    TEAMCODE_MAX_TURNS    agent loop turn ceiling    (100)
    TEAMCODE_MODE         default permission mode    (default)
    TEAMCODE_LOG_LEVEL    logging level              (WARNING)
"""

import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(override=True)

logger = logging.getLogger(__name__)

# When using third-party endpoints (e.g. GLM), clear ANTHROPIC_AUTH_TOKEN
# to prevent the SDK from sending a conflicting authorization header.
if os.getenv("ANTHROPIC_BASE_URL"):
    os.environ.pop("ANTHROPIC_AUTH_TOKEN", None)

WORKDIR = Path.cwd()
TEAMS_DIR = WORKDIR / ".teams"
TRANSCRIPT_DIR = WORKDIR / ".transcripts"
SETTINGS_PATH = WORKDIR / ".teamcode" / "settings.json"
SKILLS_DIR = WORKDIR / ".skills"
MEMORY_FILE = "TEAMCODE.md"

MODEL = os.getenv("MODEL_ID", "claude-sonnet-4-5-20250929")
PROVIDER = os.getenv("TEAMCODE_PROVIDER", "anthropic")
ANTHROPIC_BASE_URL = os.getenv("ANTHROPIC_BASE_URL")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "http://localhost:11434/v1")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "ollama")

MAX_TURNS = int(os.getenv("TEAMCODE_MAX_TURNS", "100"))
MAX_TOKENS = 8000
PERMISSION_MODE = os.getenv("TEAMCODE_MODE", "default")
LOG_LEVEL = os.getenv("TEAMCODE_LOG_LEVEL", "WARNING")

# Teammate idle cycle
IDLE_POLL_INTERVAL = 1     # seconds between idle polls
IDLE_TIMEOUT = 60          # seconds before an idle teammate gives up

DEFAULT_SETTINGS = {
    "defaultMode": PERMISSION_MODE,
    "maxTurns": MAX_TURNS,
    "permissions": {"allow": [], "deny": []},
    "hooks": [],
}


def load_settings(path: Path = None) -> dict:
    """Read .teamcode/settings.json on top of DEFAULT_SETTINGS.

    A missing file is normal; a corrupt one is logged and ignored.
    """
    path = path or SETTINGS_PATH
    settings = json.loads(json.dumps(DEFAULT_SETTINGS))
    if not path.exists():
        return settings
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
        return settings
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: expected an object", path)
        return settings

    for key in ("defaultMode", "maxTurns", "model"):
        if key in data:
            settings[key] = data[key]
    perms = data.get("permissions") or {}
    settings["permissions"]["allow"] = list(perms.get("allow", []))
    settings["permissions"]["deny"] = list(perms.get("deny", []))
    settings["hooks"] = list(data.get("hooks", []))
    return settings


def load_project_memory(workdir: Path = None) -> str:
    """Return the project memory file (TEAMCODE.md) contents, or ""."""
    path = (workdir or WORKDIR) / MEMORY_FILE
    try:
        return path.read_text()
    except OSError:
        return ""
