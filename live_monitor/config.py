"""Configuration settings for the live monitor."""

import os
from typing import List


def _env_list(name: str, default: List[str]) -> List[str]:
    """Read a comma separated list from the environment."""
    raw = os.getenv(name)
    if not raw:
        return default
    return [item.strip() for item in raw.split(",") if item.strip()]


# CORS settings
CORS_ORIGINS: List[str] = _env_list("MONITOR_CORS_ORIGINS", ["*"])
CORS_METHODS: List[str] = ["*"]
CORS_HEADERS: List[str] = ["*"]

# API settings
API_TITLE = "Live Exam Monitor API"
API_VERSION = "1.0.0"
HOST = os.getenv("MONITOR_HOST", "0.0.0.0")
PORT = int(os.getenv("MONITOR_PORT", "8000"))

# Upstream exam server
SERVER_URL = os.getenv("MONITOR_SERVER_URL", "http://localhost:5000")
API_PREFIX = os.getenv("MONITOR_API_PREFIX", "/api")
API_TOKEN = os.getenv("MONITOR_API_TOKEN", "")
EXAM_ID = os.getenv("MONITOR_EXAM_ID") or None
SOCKETIO_PATH = "socket.io"
RECONNECT_DELAY_SECONDS = 0.5
RECONNECT_DELAY_MAX_SECONDS = 3.0
REQUEST_TIMEOUT_SECONDS = 20.0

# Cadence
POLL_INTERVAL_SECONDS = 20.0
TICK_SECONDS = 1.0
VIOLATIONS_FETCH_LIMIT = 1000
NOTICE_HISTORY = 50

# Time
DEFAULT_EXAM_DURATION_MINUTES = 120

# Session statuses that end an attempt
TERMINAL_STATUSES = ("submitted", "expired", "abandoned")

# Risk policy
CRITICAL_UNRESOLVED = 15
HIGH_UNRESOLVED = 10
HIGH_RISK_TYPE_UNRESOLVED = 5
HIGH_MIXED_UNRESOLVED = 5
MEDIUM_TAB_SWITCH_UNRESOLVED = 5
MEDIUM_UNRESOLVED = 3
MEDIUM_MIXED_UNRESOLVED = 2
MIXED_TYPE_COUNT = 2
AUTO_FLAG_UNRESOLVED = 5
TAB_SWITCH_TYPE = "tab_switch"

HIGH_RISK_TYPES: List[str] = _env_list("MONITOR_HIGH_RISK_TYPES", [
    "multiple_tabs", "copy_paste", "window_focus", "window_blur",
    "ai_detection", "screenshot", "camera_off", "dev_tools",
    "drag_attempt", "drop_attempt",
])
MEDIUM_RISK_TYPES: List[str] = _env_list("MONITOR_MEDIUM_RISK_TYPES", [
    "keyboard_shortcut", "text_selection", "window_resize",
    "inactivity", "mouse_outside",
])

# Penalty bounds (percent)
PENALTY_MIN = 0
PENALTY_MAX = 100

# Directories
REPORTS_DIR = os.getenv(
    "MONITOR_REPORTS_DIR",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "reports"),
)

# Logging Configuration
LOG_LEVEL = os.getenv("MONITOR_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
