import os

APP_NAME = "MatchIndeed API"
APP_URL = os.getenv("APP_URL", "http://localhost:3001").rstrip("/")
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:3001,http://127.0.0.1:3001",
    ).split(",")
    if o.strip()
]

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
CRON_SECRET = os.getenv("CRON_SECRET", "")

JWT_SECRET = os.getenv("JWT_SECRET", "")
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "60"))
REFRESH_TOKEN_TTL_DAYS = int(os.getenv("REFRESH_TOKEN_TTL_DAYS", "30"))
DEV_MODE = os.getenv("DEV_MODE", "false").lower() == "true"

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")

POSTMARK_SERVER_TOKEN = os.getenv("POSTMARK_SERVER_TOKEN", "")
POSTMARK_MESSAGE_STREAM = os.getenv("POSTMARK_MESSAGE_STREAM", "outbound")
EMAIL_FROM = os.getenv("EMAIL_FROM", "MatchIndeed <noreply@matchindeed.com>")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

MIN_MATCHING_AGE = int(os.getenv("MIN_MATCHING_AGE", "24"))
MIN_SIGNUP_AGE = int(os.getenv("MIN_SIGNUP_AGE", "18"))
DISCOVER_DEFAULT_LIMIT = int(os.getenv("DISCOVER_DEFAULT_LIMIT", "30"))
DRAFT_TTL_DAYS = int(os.getenv("DRAFT_TTL_DAYS", "30"))
DRAFT_MAX_BYTES = int(os.getenv("DRAFT_MAX_BYTES", str(64 * 1024)))
REPORT_DUPLICATE_WINDOW_HOURS = int(os.getenv("REPORT_DUPLICATE_WINDOW_HOURS", "24"))
REACTIVATION_AUTO_APPROVE_DAYS = int(os.getenv("REACTIVATION_AUTO_APPROVE_DAYS", "7"))
REACTIVATION_MIN_CUSTOM_WORDS = int(os.getenv("REACTIVATION_MIN_CUSTOM_WORDS", "200"))
WALLET_CORRECTION_THRESHOLD_CENTS = int(os.getenv("WALLET_CORRECTION_THRESHOLD_CENTS", "100"))
NOTIFICATION_LOOKAHEAD_MINUTES = int(os.getenv("NOTIFICATION_LOOKAHEAD_MINUTES", "5"))
MEMBERSHIP_PERIOD_DAYS = int(os.getenv("MEMBERSHIP_PERIOD_DAYS", "30"))

RL_AUTH_REGISTER_LIMIT = int(os.getenv("RL_AUTH_REGISTER_LIMIT", "20"))
RL_AUTH_LOGIN_LIMIT = int(os.getenv("RL_AUTH_LOGIN_LIMIT", "30"))
RL_AUTH_REFRESH_LIMIT = int(os.getenv("RL_AUTH_REFRESH_LIMIT", "120"))
RL_PAYMENTS_LIMIT = int(os.getenv("RL_PAYMENTS_LIMIT", "30"))
RL_REPORTS_LIMIT = int(os.getenv("RL_REPORTS_LIMIT", "20"))
RL_ACTIVITIES_LIMIT = int(os.getenv("RL_ACTIVITIES_LIMIT", "120"))
RL_DRAFTS_LIMIT = int(os.getenv("RL_DRAFTS_LIMIT", "240"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "60"))
