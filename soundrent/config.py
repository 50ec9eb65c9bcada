import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./soundrent.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Supabase Auth - access tokens are HS256 JWTs signed with the project JWT secret
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", SECRET_KEY)
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")

# Frontend base URL for redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", f"{FRONTEND_URL},http://localhost:3000").split(",")

BUSINESS_NAME = os.getenv("BUSINESS_NAME", "SoundRent")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Google Calendar OAuth Configuration
# Note: redirect URIs point to the FRONTEND, which posts the code back to the API
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", f"{FRONTEND_URL}/calendar-callback")

# Outlook (Microsoft Graph) OAuth Configuration
MICROSOFT_CLIENT_ID = os.getenv("MICROSOFT_CLIENT_ID")
MICROSOFT_CLIENT_SECRET = os.getenv("MICROSOFT_CLIENT_SECRET")
MICROSOFT_REDIRECT_URI = os.getenv("MICROSOFT_REDIRECT_URI", f"{FRONTEND_URL}/calendar-callback")
MICROSOFT_TENANT = os.getenv("MICROSOFT_TENANT", "common")

# Calendar sync
CALENDAR_NAME = os.getenv("CALENDAR_NAME", "SoundRent Réservations")
CALENDAR_TIMEZONE = os.getenv("CALENDAR_TIMEZONE", "Europe/Paris")

# Draft auto-save debounce, in seconds
DRAFT_AUTOSAVE_DELAY = float(os.getenv("DRAFT_AUTOSAVE_DELAY", "0.5"))
