import os
from dotenv import load_dotenv

load_dotenv(dotenv_path=".env")


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Record store lives next to the package unless overridden
_BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.getenv("COOKING_TIMERS_DATA_DIR", os.path.join(_BASE_DIR, "data"))

# Presentation refresh period (seconds)
TICK_INTERVAL = float(os.getenv("COOKING_TIMERS_TICK_INTERVAL", "1.0"))

# Desktop alerts via notify-send / osascript / PowerShell
DESKTOP_NOTIFICATIONS = _flag("COOKING_TIMERS_DESKTOP_NOTIFICATIONS", True)

HOST = os.getenv("COOKING_TIMERS_HOST", "0.0.0.0")
PORT = int(os.getenv("COOKING_TIMERS_PORT", "8000"))
LOG_LEVEL = os.getenv("COOKING_TIMERS_LOG_LEVEL", "INFO").upper()
