import os

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
users_ms_url = os.environ.get("USERS_MS_URL", "http://localhost:8000")
payments_ms_url = os.environ.get("PAYMENTS_MS_URL", "http://localhost:8003")
notifications_ms_url = os.environ.get("NOTIFICATIONS_MS_URL", "http://localhost:8004")
frontend_url = os.environ.get("FRONTEND_URL", "http://localhost:5173")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
GENERATE_SCHEMAS = os.environ.get("GENERATE_SCHEMAS", "false").lower() in {"1", "true", "yes"}

LOG_DIR = os.environ.get("LOG_DIR", "logs")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Wall-clock rules (operating window, pricing hours, weekdays) use this zone.
VENUE_TIMEZONE = os.environ.get("VENUE_TIMEZONE", "Asia/Colombo")
CURRENCY = os.environ.get("CURRENCY", "LKR")

OPEN_HOUR = int(os.environ.get("OPEN_HOUR", "7"))
CLOSE_HOUR = int(os.environ.get("CLOSE_HOUR", "22"))
SLOT_ALIGNMENT_MINUTES = int(os.environ.get("SLOT_ALIGNMENT_MINUTES", "15"))
MIN_DURATION_HOURS = int(os.environ.get("MIN_DURATION_HOURS", "1"))
MAX_DURATION_HOURS = int(os.environ.get("MAX_DURATION_HOURS", "15"))

TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))
