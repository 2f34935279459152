import os
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medconsult.db")

# Fee split - platform keeps this share of every consultation fee, doctor earns the rest
PLATFORM_COMMISSION_PERCENT = float(os.getenv("PLATFORM_COMMISSION_PERCENT", "20"))

# Patient-initiated cancellation of a paid appointment
USER_CANCEL_REFUND_PERCENT = float(os.getenv("USER_CANCEL_REFUND_PERCENT", "70"))
USER_CANCEL_DOCTOR_COMMISSION = float(os.getenv("USER_CANCEL_DOCTOR_COMMISSION", "20"))
USER_CANCEL_ADMIN_COMMISSION = float(os.getenv("USER_CANCEL_ADMIN_COMMISSION", "10"))

MAX_RESCHEDULE = int(os.getenv("MAX_RESCHEDULE", "2"))

# Checkout lock on pending appointments (seconds)
CHECKOUT_LOCK_TTL_SECONDS = int(os.getenv("CHECKOUT_LOCK_TTL_SECONDS", "300"))
# Window around the requested date in which a pending booking can be reused
REUSE_WINDOW_HOURS = int(os.getenv("REUSE_WINDOW_HOURS", "12"))

# Ledger account that receives platform commission
PLATFORM_ACCOUNT_ID = os.getenv("PLATFORM_ACCOUNT_ID", "platform")

# Clinic operating timezone - appointment dates and "HH:MM" clock times are local to it
OPERATING_TIMEZONE = ZoneInfo(os.getenv("OPERATING_TIMEZONE", "Asia/Kolkata"))

# Background daemons
SESSION_TIMER_INTERVAL_SECONDS = int(os.getenv("SESSION_TIMER_INTERVAL_SECONDS", "30"))
REMINDER_INTERVAL_SECONDS = int(os.getenv("REMINDER_INTERVAL_SECONDS", "60"))
CLEANUP_INTERVAL_SECONDS = int(os.getenv("CLEANUP_INTERVAL_SECONDS", "300"))
UNPAID_BOOKING_GRACE_MINUTES = int(os.getenv("UNPAID_BOOKING_GRACE_MINUTES", "5"))

POST_CONSULTATION_WINDOW_HOURS = int(os.getenv("POST_CONSULTATION_WINDOW_HOURS", "24"))

# Doctor schedule defaults and limits
DEFAULT_SLOT_DURATION_MINUTES = 30
DEFAULT_BUFFER_TIME_MINUTES = 5
DEFAULT_MAX_PATIENTS_PER_SLOT = 1
MAX_SLOTS_PER_DAY = int(os.getenv("MAX_SLOTS_PER_DAY", "3"))
MIN_SLOT_MINUTES = 15
BLOCK_REASON_MAX_LENGTH = 500
