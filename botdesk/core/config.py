# botdesk/core/config.py
"""
Client configuration - loads from environment variables.
Single source of truth for all settings.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables FIRST
BASE_DIR = Path(__file__).resolve().parent.parent.parent
env_path = BASE_DIR / '.env'
load_dotenv(dotenv_path=env_path)

# ────────────────────────────────────────────
# Backend API
# ────────────────────────────────────────────
API_URL: str = os.getenv("BOTDESK_API_URL", "http://localhost:5000").rstrip("/")
HTTP_TIMEOUT: float = float(os.getenv("BOTDESK_HTTP_TIMEOUT", "10"))

# ────────────────────────────────────────────
# Live chat presence
# ────────────────────────────────────────────
PRESENCE_ONLINE_SECONDS: float = float(os.getenv("BOTDESK_PRESENCE_ONLINE_SECONDS", "20"))
PRESENCE_TYPING_SECONDS: float = float(os.getenv("BOTDESK_PRESENCE_TYPING_SECONDS", "15"))

# ────────────────────────────────────────────
# Logging
# ────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR: Path = Path(os.getenv("BOTDESK_LOG_DIR", str(BASE_DIR / "logs")))


# ────────────────────────────────────────────
# Settings Class
# ────────────────────────────────────────────
class Settings:
    API_URL: str = API_URL
    HTTP_TIMEOUT: float = HTTP_TIMEOUT
    PRESENCE_ONLINE_SECONDS: float = PRESENCE_ONLINE_SECONDS
    PRESENCE_TYPING_SECONDS: float = PRESENCE_TYPING_SECONDS
    LOG_LEVEL: str = LOG_LEVEL
    LOG_DIR: Path = LOG_DIR

settings = Settings()
