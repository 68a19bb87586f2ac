# companion/config.py
import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("companion")

# --- Configuration ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///companion.db")

LLM_MODEL = os.getenv("LLM_MODEL", "gemini-2.5-flash-lite")
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", "5"))
LLM_BASE_DELAY_SECONDS = float(os.getenv("LLM_BASE_DELAY_SECONDS", "1.0"))
LLM_MAX_DELAY_SECONDS = float(os.getenv("LLM_MAX_DELAY_SECONDS", "30"))

RISK_ALERT_LIMIT = int(os.getenv("RISK_ALERT_LIMIT", "10"))

SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT = int(os.getenv("SERVER_PORT", "4000"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGIN", "").split(",") if o.strip()]
