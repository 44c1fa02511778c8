# config.py
import os
import json
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()


def _env(name, default=""):
    """Read NAME, falling back to the VITE_NAME spelling used by the browser build."""
    val = os.getenv(name)
    if val is None or val == "":
        val = os.getenv(f"VITE_{name}", default)
    return val


def _sa_info(raw):
    try:
        return json.loads(raw) if raw else None
    except ValueError:
        return None


class Config:
    # Flask
    SESSION_SECRET = os.getenv("SESSION_SECRET", "change-me")
    SESSION_DAYS = int(os.getenv("SESSION_DAYS", "30"))  # "remember me"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Google OAuth (user's own Google account)
    GOOGLE_CLIENT_ID = _env("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = _env("GOOGLE_CLIENT_SECRET")
    GOOGLE_REDIRECT_URI = _env("GOOGLE_REDIRECT_URI", "http://127.0.0.1:8080/auth/google/callback")
    # Refresh can go through a proxy that holds the client secret
    GOOGLE_TOKEN_REFRESH_URL = _env("GOOGLE_TOKEN_REFRESH_URL", "https://oauth2.googleapis.com/token")
    TOKEN_REFRESH_BUFFER = int(os.getenv("TOKEN_REFRESH_BUFFER", "300"))  # seconds before expiry

    # Optional shared-workbook mode: service account + fixed spreadsheet
    GOOGLE_SA_INFO = _sa_info(os.getenv("GOOGLE_SA_JSON"))
    SPREADSHEET_ID = os.getenv("SPREADSHEET_ID", "")

    # Supabase (user_profiles -> google_sheet_id)
    SUPABASE_URL = _env("SUPABASE_URL")
    SUPABASE_ANON_KEY = _env("SUPABASE_ANON_KEY")

    HTTP_TIMEOUT = int(os.getenv("HTTP_TIMEOUT", "15"))
    TIMEZONE = ZoneInfo(os.getenv("TIMEZONE", "Asia/Kolkata"))

    # ----- Invoice pages (CSS px at 96 DPI; 1 px = 0.75 pt)
    PAGE_WIDTH_PX = 794
    PAGE_HEIGHT_PX = 1122
    PAGE_PADDING_X_PX = 40
    PAGE_PADDING_TOP_PX = 20
    PAGE_PADDING_BOTTOM_PX = 40
    MAX_PAGE_BODY_HEIGHT = int(os.getenv("MAX_PAGE_BODY_HEIGHT", "1000"))
    RASTER_DPI = int(os.getenv("RASTER_DPI", "288"))  # 3x screen
