import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./studio_sync.db")

# Optional - only used for the cross-instance sync lock
REDIS_URL = os.getenv("REDIS_URL")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Dashboard base URL used for links inside notifications
APP_URL = os.getenv("APP_URL", "http://localhost:3000")
STUDIO_NAME = os.getenv("STUDIO_NAME", "Jongno Studio")

# STO reservation portal
STO_BASE_URL = os.getenv("STO_BASE_URL", "https://sto3788.sto.or.kr")
STO_LOGIN_PATH = os.getenv("STO_LOGIN_PATH", "/sto3788/loginout/login")
STO_LOGIN_ACTION_PATH = os.getenv("STO_LOGIN_ACTION_PATH", "/sto3788/loginout/loginAction")
STO_VERIFY_ACTION_PATH = os.getenv("STO_VERIFY_ACTION_PATH", "/sto3788/loginout/certAction")
STO_LIST_PATH = os.getenv("STO_LIST_PATH", "/sto3788/reserveManage/stdioresvesttus/list")
STO_DETAIL_PATH = os.getenv("STO_DETAIL_PATH", "/sto3788/reserveManage/stdioresvesttus/view")
STO_SESSION_EXPIRY_MINUTES = int(os.getenv("STO_SESSION_EXPIRY_MINUTES", "30"))
STO_ITEMS_PER_PAGE = int(os.getenv("STO_ITEMS_PER_PAGE", "10"))
STO_REQUEST_TIMEOUT = float(os.getenv("STO_REQUEST_TIMEOUT", "20"))
STO_DETAIL_DELAY = float(os.getenv("STO_DETAIL_DELAY", "0.3"))  # seconds between detail pages

# Credentials for unattended re-login from the cron endpoint (optional)
STO_EMAIL = os.getenv("STO_EMAIL")
STO_PASSWORD = os.getenv("STO_PASSWORD")

# Gmail mailbox that receives the portal's verification codes
# The refresh token is obtained once through the OAuth playground
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN")
VERIFICATION_QUERY = os.getenv("VERIFICATION_QUERY", "subject:인증 newer_than:10m")
VERIFICATION_TIMEOUT_SECONDS = float(os.getenv("VERIFICATION_TIMEOUT_SECONDS", "60"))
VERIFICATION_POLL_INTERVAL_SECONDS = float(os.getenv("VERIFICATION_POLL_INTERVAL_SECONDS", "3"))

# Sync scheduling
SYNC_MAX_RECORDS = int(os.getenv("SYNC_MAX_RECORDS", "5"))
SYNC_INTERVAL_MINUTES = int(os.getenv("SYNC_INTERVAL_MINUTES", "10"))
SYNC_LOCK_TTL_SECONDS = int(os.getenv("SYNC_LOCK_TTL_SECONDS", "300"))
BUSINESS_HOURS_START = int(os.getenv("BUSINESS_HOURS_START", "9"))  # KST
BUSINESS_HOURS_END = int(os.getenv("BUSINESS_HOURS_END", "18"))  # KST
CRON_SECRET = os.getenv("CRON_SECRET")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Studio FMS <noreply@studio-fms.kr>")
ADMIN_NOTIFICATION_EMAILS = [
    email.strip() for email in os.getenv("ADMIN_NOTIFICATION_EMAILS", "").split(",") if email.strip()
]

# KakaoWork chat bot
KAKAOWORK_BOT_KEY = os.getenv("KAKAOWORK_BOT_KEY")
KAKAOWORK_API_URL = os.getenv("KAKAOWORK_API_URL", "https://api.kakaowork.com/v1")

# Firebase Cloud Messaging (push)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")
