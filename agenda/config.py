import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./agenda.db")

# Timezone used to render dates and evaluate calendar days when a professional has none
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo")

# Resend Email Configuration (fallback)
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Agenda <noreply@agenda.app>")

# Platform SMTP relay, preferred over Resend when SMTP_HOST is set
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

# Shared secret for the payment status webhook (HMAC-SHA256 of the raw body)
PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")

# Buffer policy defaults, applied when the professional has no value configured
DEFAULT_BUFFER_BEFORE_MINUTES = int(os.getenv("DEFAULT_BUFFER_BEFORE_MINUTES", "0"))
DEFAULT_BUFFER_AFTER_MINUTES = int(os.getenv("DEFAULT_BUFFER_AFTER_MINUTES", "0"))
DEFAULT_MAX_APPOINTMENTS_PER_DAY = int(os.getenv("DEFAULT_MAX_APPOINTMENTS_PER_DAY", "100"))
DEFAULT_MIN_NOTICE_HOURS = float(os.getenv("DEFAULT_MIN_NOTICE_HOURS", "0"))
DEFAULT_RESERVATION_HOLD_MINUTES = int(os.getenv("DEFAULT_RESERVATION_HOLD_MINUTES", "15"))

# Unused holds are deleted this long after they expire
RESERVATION_RETENTION_HOURS = int(os.getenv("RESERVATION_RETENTION_HOURS", "24"))

# Reminder sweeps (offsets in minutes from "now")
REMINDER_24H_WINDOW_START_MINUTES = int(os.getenv("REMINDER_24H_WINDOW_START_MINUTES", "1410"))
REMINDER_24H_WINDOW_END_MINUTES = int(os.getenv("REMINDER_24H_WINDOW_END_MINUTES", "1470"))
REMINDER_3H_WINDOW_START_MINUTES = int(os.getenv("REMINDER_3H_WINDOW_START_MINUTES", "165"))
REMINDER_3H_WINDOW_END_MINUTES = int(os.getenv("REMINDER_3H_WINDOW_END_MINUTES", "195"))
# A "sending" marker older than this is treated as abandoned
REMINDER_LEASE_TTL_MINUTES = int(os.getenv("REMINDER_LEASE_TTL_MINUTES", "30"))

# Notifier circuit breakers
EMAIL_UPDATE_CEILING = int(os.getenv("EMAIL_UPDATE_CEILING", "10"))
WELCOME_EMAIL_CEILING = int(os.getenv("WELCOME_EMAIL_CEILING", "3"))

# Rate limiting
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory")  # memory or redis
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_GLOBAL_MAX = int(os.getenv("RATE_LIMIT_GLOBAL_MAX", "100"))
RATE_LIMIT_USER_MAX = int(os.getenv("RATE_LIMIT_USER_MAX", "50"))
RATE_LIMIT_ADMIN_MAX = int(os.getenv("RATE_LIMIT_ADMIN_MAX", "200"))
RATE_LIMIT_CLEANUP_SECONDS = int(os.getenv("RATE_LIMIT_CLEANUP_SECONDS", "300"))

# Enqueue notifier jobs on arq; set to false to run them inline in the API process
NOTIFIER_USE_QUEUE = os.getenv("NOTIFIER_USE_QUEUE", "true").lower() == "true"
