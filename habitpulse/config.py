import os
from dotenv import load_dotenv

load_dotenv()

# --- Database ---
# Needs an async driver, e.g. sqlite+aiosqlite:// for local runs
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/habitpulse.db")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

# --- Cache ---
REDIS_URL = os.getenv("REDIS_URL", "")
CACHE_NAMESPACE = os.getenv("CACHE_NAMESPACE", "cache")
CACHE_REAP_INTERVAL_SECONDS = int(os.getenv("CACHE_REAP_INTERVAL_SECONDS", "300"))
CACHE_OP_TIMEOUT_SECONDS = float(os.getenv("CACHE_OP_TIMEOUT_SECONDS", "0.5"))
REDIS_RETRY_SECONDS = int(os.getenv("REDIS_RETRY_SECONDS", "30"))
CACHE_SCAN_COUNT = int(os.getenv("CACHE_SCAN_COUNT", "100"))

# TTL per analytics endpoint, in seconds
CACHE_TTL = {
    "overview": 5 * 60,
    "weekly": 5 * 60,
    "monthly": 10 * 60,
    "heatmap": 15 * 60,
    "streaks": 5 * 60,
    "insights": 10 * 60,
    "calendar": 10 * 60,
    "categories": 10 * 60,
    "comparison": 5 * 60,
    "trend": 10 * 60,
    "productivity": 5 * 60,
    "performance": 10 * 60,
    "correlations": 30 * 60,  # expensive
    "predictions": 15 * 60,
    "habit-stats": 5 * 60,
}

# --- Analytics ---
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")
WEEK_TREND_DEAD_ZONE = float(os.getenv("WEEK_TREND_DEAD_ZONE", "2"))  # percentage points
PRODUCTIVITY_TREND_DEAD_ZONE = float(os.getenv("PRODUCTIVITY_TREND_DEAD_ZONE", "0.1"))
MAX_RANGE_DAYS = int(os.getenv("MAX_RANGE_DAYS", "366"))

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
