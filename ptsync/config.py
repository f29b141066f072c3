import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ptsync.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Google OAuth Configuration
# The refresh token is obtained once through the consent flow and stored in .env
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN")

# Remote owner keys - leave empty to disable that direction of sync
SYNC_SPREADSHEET_ID = os.getenv("SYNC_SPREADSHEET_ID", "")
SYNC_CALENDAR_ID = os.getenv("SYNC_CALENDAR_ID", "")

# Timezone used when building calendar event start/end times
SYNC_TIMEZONE = os.getenv("SYNC_TIMEZONE", "America/New_York")

# Queue draining
SYNC_MAX_BATCH_SIZE = int(os.getenv("SYNC_MAX_BATCH_SIZE", "5"))
SYNC_BATCH_DELAY_SECONDS = float(os.getenv("SYNC_BATCH_DELAY_SECONDS", "2.5"))

# Cycle timer and cooldowns
SYNC_INTERVAL_SECONDS = float(os.getenv("SYNC_INTERVAL_SECONDS", "120"))
SHEETS_SYNC_COOLDOWN_SECONDS = float(os.getenv("SHEETS_SYNC_COOLDOWN_SECONDS", "900"))  # 15 min
CALENDAR_BACKFILL_COOLDOWN_SECONDS = float(
    os.getenv("CALENDAR_BACKFILL_COOLDOWN_SECONDS", "300")
)  # 5 min

# Calendar pull window
CALENDAR_LOOKBACK_DAYS = int(os.getenv("CALENDAR_LOOKBACK_DAYS", "30"))
CALENDAR_LOOKAHEAD_DAYS = int(os.getenv("CALENDAR_LOOKAHEAD_DAYS", "365"))

# Per-call timeout for Google APIs
REMOTE_TIMEOUT_SECONDS = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "30"))


class SyncSettings(BaseModel):
    """Snapshot of sync configuration handed to the orchestrator"""

    spreadsheet_id: str = SYNC_SPREADSHEET_ID
    calendar_id: str = SYNC_CALENDAR_ID
    timezone: str = SYNC_TIMEZONE
    max_batch_size: int = SYNC_MAX_BATCH_SIZE
    batch_delay_seconds: float = SYNC_BATCH_DELAY_SECONDS
    interval_seconds: float = SYNC_INTERVAL_SECONDS
    sheets_cooldown_seconds: float = SHEETS_SYNC_COOLDOWN_SECONDS
    backfill_cooldown_seconds: float = CALENDAR_BACKFILL_COOLDOWN_SECONDS
    lookback_days: int = CALENDAR_LOOKBACK_DAYS
    lookahead_days: int = CALENDAR_LOOKAHEAD_DAYS

    @field_validator("max_batch_size")
    @classmethod
    def validate_batch_size(cls, v):
        if v < 1:
            raise ValueError("max_batch_size must be at least 1")
        return v

    @field_validator("spreadsheet_id", "calendar_id")
    @classmethod
    def strip_owner_key(cls, v):
        return (v or "").strip()
