"""
Configuration module for the GA4 Insights Copilot.

This module centralizes all configuration settings for the backend, the
automation scripts and the dashboard, loading values from environment
variables with sensible defaults.
"""
import os
import logging
from dotenv import load_dotenv

from ga4_insights.utils.feature_flags import init_feature_flags

# Load environment variables from .env file
load_dotenv()

# Initialize logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


def _check_required_env_vars() -> None:
    """Check that required environment variables are set."""
    required_vars = [
        "OPENAI_API_KEY",
        "GOOGLE_CLIENT_ID",
        "GOOGLE_CLIENT_SECRET",
    ]

    missing_vars = [var for var in required_vars if not os.getenv(var)]

    if missing_vars:
        logger.error(f"Missing required environment variables: {', '.join(missing_vars)}")
        logger.error("Please set these variables in your .env file or environment")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# API Keys and Authentication
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
if not OPENAI_API_KEY:
    logger.warning("OPENAI_API_KEY not set - LLM functionality will not work")

# OpenAI Configuration
OPENAI_COMPLETION_MODEL = os.getenv("OPENAI_COMPLETION_MODEL", "gpt-4o")
INSIGHTS_TEMPERATURE = float(os.getenv("INSIGHTS_TEMPERATURE", "0.7"))
REPORT_TEMPERATURE = float(os.getenv("REPORT_TEMPERATURE", "0.4"))
SUMMARY_TEMPERATURE = float(os.getenv("SUMMARY_TEMPERATURE", "0.5"))
PLAN_TEMPERATURE = float(os.getenv("PLAN_TEMPERATURE", "0.5"))

# Frontend / redirects. Google sends the authorization code to the Streamlit
# dashboard, which posts it to the backend from its own HTTP session. Point
# GOOGLE_REDIRECT_URI at the backend /auth route only when a browser frontend
# talks to the API directly.
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:8501")
DASHBOARD_URL = os.getenv("DASHBOARD_URL", FRONTEND_URL)
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")

# Google OAuth Settings
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", FRONTEND_URL)
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"

# Session Settings
APP_ENV = os.getenv("APP_ENV", "development")
SESSION_SECRET = os.getenv("SESSION_SECRET", "ga4-insights-secret")
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(30 * 24 * 60 * 60)))  # 30 days
COOKIE_SECURE = _env_bool("COOKIE_SECURE", "true" if APP_ENV == "production" else "false")

# Database
DATABASE_URL = os.getenv("GA4_INSIGHTS_DB", "sqlite:///./ga4_insights.db")

# GA4 Settings
DEFAULT_SYNC_DAYS = int(os.getenv("DEFAULT_SYNC_DAYS", "30"))
MAX_SYNC_DAYS = int(os.getenv("MAX_SYNC_DAYS", "90"))
HISTORICAL_DAYS = int(os.getenv("HISTORICAL_DAYS", "60"))

# Initialize feature flags
init_feature_flags()

# Check required environment variables on import
_check_required_env_vars()
