import json
import os
from typing import Any

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

HISTORY_LOOKBACK_WEEKS = int(os.getenv("HISTORY_LOOKBACK_WEEKS", "2"))
RESHUFFLE_TIMEZONE = os.getenv("RESHUFFLE_TIMEZONE", "Africa/Nairobi")
# 0 = Monday, matching datetime.weekday()
RESHUFFLE_WEEKDAY = int(os.getenv("RESHUFFLE_WEEKDAY", "0"))
RESHUFFLE_HOUR = int(os.getenv("RESHUFFLE_HOUR", "6"))
RESHUFFLE_TIMEOUT_SECONDS = float(os.getenv("RESHUFFLE_TIMEOUT_SECONDS", "120"))
POINTER_DRAIN_SECONDS = float(os.getenv("POINTER_DRAIN_SECONDS", "10"))
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "4"))
RUN_LOG_SIZE = int(os.getenv("RUN_LOG_SIZE", "20"))
PAIRING_HISTORY_MAX_LIMIT = int(os.getenv("PAIRING_HISTORY_MAX_LIMIT", "500"))

REQUEST_EXPIRY_DAYS = int(os.getenv("REQUEST_EXPIRY_DAYS", "7"))
REQUEST_MESSAGE_MAX_LENGTH = 500

DEFAULT_SCORING_CONFIG: dict[str, Any] = {
    "BASE_SCORE": float(os.getenv("BASE_SCORE", "100")),
    "SELF_PAIR_SCORE": float(os.getenv("SELF_PAIR_SCORE", "-1000")),
    "RECENCY_THRESHOLD_WEEKS": int(os.getenv("RECENCY_THRESHOLD_WEEKS", "4")),
    "PENALTY_PER_WEEK": float(os.getenv("PENALTY_PER_WEEK", "25")),
    "NEW_MEMBER_WINDOW_DAYS": int(os.getenv("NEW_MEMBER_WINDOW_DAYS", "7")),
    "NEW_MEMBER_BONUS": float(os.getenv("NEW_MEMBER_BONUS", "50")),
    "MIXED_PAIR_BONUS": float(os.getenv("MIXED_PAIR_BONUS", "25")),
    "JITTER_MAX": float(os.getenv("JITTER_MAX", "10")),
}

if os.getenv("SCORING_CONFIG_JSON"):
    try:
        DEFAULT_SCORING_CONFIG.update(json.loads(os.getenv("SCORING_CONFIG_JSON", "{}")))
    except json.JSONDecodeError:
        pass
