import os
import re
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from twilio.rest import Client

load_dotenv()

# --- Environment Variables ---
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/")
REVIEW_BASE_URL = os.getenv("REVIEW_BASE_URL", f"{APP_BASE_URL}/review").rstrip("/")

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_SMS_FROM = os.getenv("TWILIO_SMS_FROM")

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM = os.getenv("SMTP_FROM", "no-reply@proofly.app")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

DEFAULT_TIER = os.getenv("DEFAULT_TIER", "free")


# --- Twilio Client (used for outbound SMS) ---
twilio_client = None
if TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN:
    twilio_client = Client(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)


# --- Time helpers ---
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse what to_iso wrote. A trailing 'Z' (JS toISOString) is accepted too."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


# --- Helper Functions ---
def normalize_phone(p: str) -> str:
    """Normalize a free-form phone number to E.164-ish '+<digits>' for Twilio."""
    if not p:
        return ""
    digits = re.sub(r'\D', '', p)
    return f"+{digits}" if digits else ""


def review_url(token: str) -> str:
    return f"{REVIEW_BASE_URL}/{token}"
